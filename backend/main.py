from fastapi import FastAPI, Depends, UploadFile, File, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
import logging

from database import get_db, engine, Base
import models
import schemas
import settings
from errors import KanbanError, PermissionDenied
from auth.dependencies import get_actor_id, get_current_team_member
import notifications
import project_membership
import suggestions
import task_lifecycle
import users

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Kanban Board API",
    description="Collaborative kanban boards with role-based project membership, time tracking and AI-assisted task creation",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def create_tables():
    """Create missing tables for local development databases."""
    if settings.CREATE_TABLES_ON_STARTUP:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")


@app.exception_handler(KanbanError)
async def kanban_error_handler(request: Request, exc: KanbanError):
    """Render domain errors as {"detail": message, ...details} with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.details})


# Ensure upload directory exists (skip when the filesystem is read-only)
try:
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    # Mount static files for serving uploads
    app.mount("/uploads", StaticFiles(directory=str(settings.UPLOAD_DIR)), name="uploads")
except (OSError, PermissionError) as e:
    logger.warning(f"Could not create upload directory: {e}. File uploads will not be served.")


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.post("/api/users", response_model=schemas.User)
def sync_user(
    user_data: schemas.UserSync,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Create or update the signed-in user and their team member record."""
    # SECURITY: a caller may only sync their own identity
    if user_data.clerk_user_id != actor_id:
        logger.info(f"Actor {actor_id} tried to sync identity {user_data.clerk_user_id}")
        raise PermissionDenied("Cannot sync another user's profile")
    return users.sync_user(db, user_data)


@app.get("/api/users/clerk/{clerk_user_id}", response_model=schemas.User)
def get_user(clerk_user_id: str, db: Session = Depends(get_db)):
    return users.get_user(db, clerk_user_id)


# ============== Projects ==============

@app.get("/api/projects/user/{clerk_user_id}", response_model=schemas.UserProjects)
def list_user_projects(clerk_user_id: str, db: Session = Depends(get_db)):
    """Projects the user manages, and projects they joined with another role."""
    return project_membership.list_user_projects(db, clerk_user_id)


@app.post("/api/projects", response_model=schemas.ProjectWithColumns)
def create_project(
    project: schemas.ProjectCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Create a project with default columns; the creator becomes manager."""
    return project_membership.create_project(db, project, actor_id)


@app.get("/api/projects/{project_id}", response_model=schemas.ProjectBoard)
def get_project(
    project_id: int,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Get the project board: columns with tasks, and members (requires observer)."""
    return project_membership.get_project_board(db, project_id, actor_id)


@app.get("/api/projects/{project_id}/stats", response_model=schemas.ProjectStats)
def get_project_stats(
    project_id: int,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    return project_membership.get_project_stats(db, project_id, actor_id)


@app.post("/api/projects/{project_id}/invitations", response_model=schemas.InviteUsersResult)
def invite_users(
    project_id: int,
    request: schemas.InviteUsersRequest,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Invite people to a project with a role (requires manager)."""
    count = project_membership.invite_users(db, project_id, actor_id, request.invitations)
    return {"message": "Invitations envoyées avec succès", "count": count}


@app.post("/api/projects/invitation/{token}", response_model=schemas.AcceptInvitationResult)
def accept_invitation(
    token: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    invitation = project_membership.accept_invitation(db, token, actor_id)
    return {
        "message": "Invitation acceptée avec succès",
        "project": invitation.project,
        "role": invitation.role,
    }


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.Task)
def create_task(
    task: schemas.TaskCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Create a new task (requires member role in the column's project)."""
    return task_lifecycle.create_task(db, task, actor_id)


@app.post("/api/tasks/move", response_model=schemas.Task)
def move_task(
    move: schemas.TaskMove,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Move a task between columns; its status follows the target column title."""
    return task_lifecycle.move_task(db, move.task_id, move.source_column_id, move.target_column_id, actor_id)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    return task_lifecycle.update_task(db, task_id, task_update, actor_id)


@app.delete("/api/tasks/{task_id}")
def delete_task(
    task_id: int,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    task_lifecycle.delete_task(db, task_id, actor_id)
    return {"message": "Task deleted"}


@app.post("/api/tasks/{task_id}/toggle-timer", response_model=schemas.Task)
def toggle_timer(
    task_id: int,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Start or stop the task timer; stopping adds elapsed whole minutes."""
    return task_lifecycle.toggle_timer(db, task_id, actor_id)


# ============== Comments & Attachments ==============

@app.post("/api/tasks/{task_id}/comments", response_model=schemas.Comment)
def create_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    return task_lifecycle.add_comment(db, task_id, comment.text, actor_id)


@app.post("/api/tasks/{task_id}/attachments", response_model=schemas.Attachment)
async def upload_attachment(
    task_id: int,
    file: UploadFile = File(...),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Upload a file attachment to a task (at most MAX_ATTACHMENT_SIZE bytes)."""
    logger.debug(f"Uploading attachment to task {task_id}: {file.filename}")

    # Read one byte past the limit so oversize files are detected without buffering them whole
    content = await file.read(settings.MAX_ATTACHMENT_SIZE + 1)
    return task_lifecycle.add_attachment(db, task_id, file.filename, file.content_type, content, actor_id)


# ============== AI task generation ==============

@app.post("/api/ai/generate-task", response_model=schemas.Task)
def generate_task(
    request: schemas.GenerateTaskRequest,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Create a task from a free-text description (remote model, local fallback)."""
    return suggestions.generate_task(db, request, actor_id)


# ============== Notifications ==============

@app.get("/api/notifications", response_model=schemas.NotificationList)
def list_notifications(
    team_member: models.TeamMember = Depends(get_current_team_member),
    db: Session = Depends(get_db)
):
    return notifications.list_notifications(db, team_member)


@app.put("/api/notifications/read-all")
def mark_all_notifications_read(
    team_member: models.TeamMember = Depends(get_current_team_member),
    db: Session = Depends(get_db)
):
    updated = notifications.mark_all_notifications_read(db, team_member)
    return {"message": "Notifications marked as read", "count": updated}


@app.put("/api/notifications/{notification_id}/read", response_model=schemas.Notification)
def mark_notification_read(
    notification_id: int,
    team_member: models.TeamMember = Depends(get_current_team_member),
    db: Session = Depends(get_db)
):
    return notifications.mark_notification_read(db, team_member, notification_id)


@app.delete("/api/notifications/{notification_id}")
def delete_notification(
    notification_id: int,
    team_member: models.TeamMember = Depends(get_current_team_member),
    db: Session = Depends(get_db)
):
    notifications.delete_notification(db, team_member, notification_id)
    return {"message": "Notification deleted"}
