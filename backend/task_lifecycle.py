"""
Task lifecycle: creation, field updates, kanban moves, time tracking, and
append-only children (comments, attachments).

Every mutation is gated by the permission utilities in `auth.permissions`.
A task's status follows the column it is moved into, using a title→status
mapping table that callers may replace.
"""

import logging
from typing import Mapping, Optional

from sqlalchemy.orm import Session

import settings
from attachment_storage import delete_attachment_file, save_attachment_file
from auth.permissions import (
    check_project_permission,
    get_task_project_id,
    get_team_member,
    require_identity,
    require_task_permission,
)
from database import transaction
from errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from models import Attachment, BoardColumn, Comment, ProjectRole, Task, TaskStatus, TeamMember
from time_utils import elapsed_minutes, utc_now
import schemas

logger = logging.getLogger(__name__)

# Column title (case-insensitive) -> derived task status
COLUMN_STATUS_MAP: Mapping[str, TaskStatus] = {
    "à faire": TaskStatus.a_faire,
    "en cours": TaskStatus.en_cours,
    "en révision": TaskStatus.en_revision,
    "terminé": TaskStatus.termine,
}

# Fields that may not be cleared through a partial update
NON_NULLABLE_FIELDS = {"title", "status", "priority", "estimated_time", "tags"}


def derive_status(column_title: str, status_map: Mapping[str, TaskStatus] = COLUMN_STATUS_MAP) -> Optional[TaskStatus]:
    """
    Map a column title to a task status.

    Returns:
        The mapped status, or None when the title is not in the table

    Example:
        >>> derive_status("EN COURS")
        <TaskStatus.en_cours: 'en_cours'>
        >>> derive_status("Backlog") is None
        True
    """
    normalized = {title.lower(): status for title, status in status_map.items()}
    return normalized.get((column_title or "").lower())


def _dedupe_tags(tags) -> list:
    return list(dict.fromkeys(tag for tag in tags if tag))


def _validate_assignee(db: Session, assignee_id: Optional[int]) -> None:
    if assignee_id is None:
        return
    exists = db.query(TeamMember.id).filter(TeamMember.id == assignee_id).first()
    if exists is None:
        logger.info(f"Assignee {assignee_id} not found")
        raise ValidationError(f"Assignee with ID {assignee_id} does not exist", field="assignee_id")


def require_writable_column(db: Session, column_id: int, actor_id: Optional[str]) -> BoardColumn:
    """
    Resolve a column the actor may create tasks in (member role or above).

    Raises:
        AuthenticationRequired: no actor identity
        NotFoundError: the column does not exist
        PermissionDenied: the actor is an observer or not a project member
    """
    require_identity(actor_id)

    column = db.query(BoardColumn).filter(BoardColumn.id == column_id).first()
    if column is None:
        raise NotFoundError("Column", column_id)

    if not check_project_permission(actor_id, column.project_id, ProjectRole.member, db):
        raise PermissionDenied("Observers and non-members cannot create tasks")
    return column


def create_task(db: Session, payload: schemas.TaskCreate, creator_id: Optional[str]) -> Task:
    """
    Create a task in a column. The creator needs at least the member role.

    The timer starts immediately: `timer_active` is true and `started_at` is now.
    """
    logger.info(f"Actor {creator_id} creating task: {payload.title} in column {payload.column_id}")
    require_writable_column(db, payload.column_id, creator_id)

    _validate_assignee(db, payload.assignee_id)

    task_data = payload.model_dump()
    task_data["tags"] = _dedupe_tags(task_data.get("tags") or [])

    # SECURITY: creator always comes from the authenticated identity
    db_task = Task(
        **task_data,
        creator_id=creator_id,
        actual_time=0,
        timer_active=True,
        started_at=utc_now(),
    )
    with transaction(db, "task creation"):
        db.add(db_task)
    db.refresh(db_task)

    logger.info(f"Task created successfully: id={db_task.id}")
    return db_task


def update_task(db: Session, task_id: int, update: schemas.TaskUpdate, actor_id: Optional[str]) -> Task:
    """Apply the provided fields to a task; omitted fields keep their values."""
    task = require_task_permission(actor_id, task_id, db)
    logger.info(f"Actor {actor_id} updating task {task_id}")

    update_data = update.model_dump(exclude_unset=True)

    for field_name in NON_NULLABLE_FIELDS:
        if field_name in update_data and update_data[field_name] is None:
            raise ValidationError(f"Field '{field_name}' cannot be null", field=field_name)

    if "assignee_id" in update_data:
        _validate_assignee(db, update_data["assignee_id"])
    if "tags" in update_data:
        update_data["tags"] = _dedupe_tags(update_data["tags"])

    with transaction(db, "task update"):
        for key, value in update_data.items():
            setattr(task, key, value)
    db.refresh(task)

    logger.info(f"Task {task_id} updated successfully ({', '.join(update_data) or 'no fields'})")
    return task


def move_task(
    db: Session,
    task_id: int,
    source_column_id: int,
    target_column_id: int,
    actor_id: Optional[str],
    status_map: Mapping[str, TaskStatus] = COLUMN_STATUS_MAP,
) -> Task:
    """
    Move a task to another column and derive its status from the column title.

    Raises:
        ConflictError: the task is no longer in `source_column_id`
        NotFoundError: the target column does not exist
        ValidationError: the target column belongs to another project
    """
    task = require_task_permission(actor_id, task_id, db)
    logger.info(f"Actor {actor_id} moving task {task_id} from column {source_column_id} to {target_column_id}")

    if task.column_id != source_column_id:
        logger.info(f"Task {task_id} is in column {task.column_id}, not in source column {source_column_id}")
        raise ConflictError(
            "Task does not belong to the source column",
            {"current_column_id": task.column_id, "source_column_id": source_column_id},
        )

    target = db.query(BoardColumn).filter(BoardColumn.id == target_column_id).first()
    if target is None:
        raise NotFoundError("Column", target_column_id)

    if target.project_id != get_task_project_id(task, db):
        raise ValidationError("Target column belongs to a different project", field="target_column_id")

    new_status = derive_status(target.title, status_map)
    with transaction(db, "task move"):
        task.column_id = target.id
        if new_status is not None:
            task.status = new_status
    db.refresh(task)

    if new_status is None:
        logger.debug(f"Column title '{target.title}' has no status mapping, status left as {task.status.value}")
    logger.info(f"Task {task_id} moved to column {target.id} with status {task.status.value}")
    return task


def toggle_timer(db: Session, task_id: int, actor_id: Optional[str]) -> Task:
    """
    Start or stop a task's timer.

    Stopping adds the whole minutes elapsed since `started_at` to `actual_time`;
    partial minutes are dropped.
    """
    task = require_task_permission(actor_id, task_id, db)
    now = utc_now()

    with transaction(db, "timer toggle"):
        if task.timer_active:
            elapsed = elapsed_minutes(task.started_at, now) if task.started_at else 0
            task.actual_time = (task.actual_time or 0) + elapsed
            task.timer_active = False
            logger.info(f"Timer stopped on task {task_id}: +{elapsed} min (total {task.actual_time})")
        else:
            task.timer_active = True
            task.started_at = now
            logger.info(f"Timer started on task {task_id}")
    db.refresh(task)
    return task


def add_comment(db: Session, task_id: int, text: str, actor_id: Optional[str]) -> Comment:
    task = require_task_permission(actor_id, task_id, db)
    author = get_team_member(actor_id, db)

    # SECURITY: author always comes from the authenticated identity
    comment = Comment(task_id=task.id, author_id=author.id, text=text)
    with transaction(db, "comment creation"):
        db.add(comment)
    db.refresh(comment)

    logger.info(f"Comment {comment.id} added to task {task_id} by team member {author.id}")
    return comment


def add_attachment(
    db: Session,
    task_id: int,
    filename: str,
    content_type: Optional[str],
    content: bytes,
    actor_id: Optional[str],
) -> Attachment:
    """
    Store a file and attach it to a task.

    Raises:
        ValidationError: the file exceeds MAX_ATTACHMENT_SIZE
    """
    task = require_task_permission(actor_id, task_id, db)

    file_size = len(content)
    if file_size > settings.MAX_ATTACHMENT_SIZE:
        logger.info(f"Attachment rejected for task {task_id}: {file_size} bytes")
        raise ValidationError(
            f"File too large. Maximum size: {settings.MAX_ATTACHMENT_SIZE / (1024 * 1024):.0f}MB",
            field="file",
            details={"size": file_size},
        )

    stored_filename, url = save_attachment_file(task.id, filename, content)

    attachment = Attachment(
        task_id=task.id,
        name=filename,
        type=content_type or "application/octet-stream",
        url=url,
        size=file_size,
    )
    try:
        with transaction(db, "attachment creation"):
            db.add(attachment)
    except Exception:
        # Clean up the stored file when the row could not be written
        delete_attachment_file(task.id, stored_filename)
        raise
    db.refresh(attachment)

    logger.info(f"Attachment {attachment.id} added to task {task_id} ({file_size} bytes)")
    return attachment


def delete_task(db: Session, task_id: int, actor_id: Optional[str]) -> None:
    task = require_task_permission(actor_id, task_id, db)
    with transaction(db, "task deletion"):
        db.delete(task)
    logger.info(f"Task {task_id} deleted by actor {actor_id}")
