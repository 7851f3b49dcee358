from pydantic import BaseModel, EmailStr, Field
from datetime import date, datetime
from typing import Optional, List, Any, Dict

from models import TaskStatus, TaskPriority, ProjectRole, InvitationStatus


# User schemas
class UserSync(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    clerk_user_id: str = Field(..., min_length=1, max_length=255)
    profile_picture_url: Optional[str] = None


class User(BaseModel):
    id: int
    name: str
    email: str
    clerk_user_id: str
    profile_picture_url: Optional[str] = None
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


# Team member schemas
class TeamMember(BaseModel):
    id: int
    name: str
    email: str
    avatar: Optional[str] = None
    clerk_user_id: str

    class Config:
        from_attributes = True


class ProjectMemberResponse(BaseModel):
    team_member_id: int
    role: ProjectRole
    team_member: TeamMember

    class Config:
        from_attributes = True


# Comment schemas
class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1)


class Comment(BaseModel):
    id: int
    task_id: int
    author_id: Optional[int]
    author: Optional[TeamMember] = None
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


# Attachment schemas
class Attachment(BaseModel):
    id: int
    task_id: int
    name: str
    type: str
    url: str
    size: int
    created_at: datetime

    class Config:
        from_attributes = True


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.a_faire
    priority: TaskPriority = TaskPriority.moyenne
    assignee_id: Optional[int] = None
    estimated_time: int = Field(0, ge=0, description="Estimated minutes (must be >= 0)")
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)


class TaskCreate(TaskBase):
    column_id: int


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[int] = None
    estimated_time: Optional[int] = Field(None, ge=0, description="Estimated minutes (must be >= 0)")
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None


class TaskMove(BaseModel):
    task_id: int
    source_column_id: int
    target_column_id: int


class Task(TaskBase):
    id: int
    column_id: int
    creator_id: str
    assignee: Optional[TeamMember] = None
    actual_time: int = 0
    started_at: Optional[datetime] = None
    timer_active: bool = False
    comments: List[Comment] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Task suggestion schemas
class TaskSuggestion(BaseModel):
    """Task-creation payload produced by both the remote model and the local heuristics."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    priority: TaskPriority = TaskPriority.moyenne
    estimated_time: int = Field(60, ge=0)
    tags: List[str] = Field(default_factory=list)


class GenerateTaskRequest(BaseModel):
    description: str = Field(..., min_length=10, description="Free-text description (at least 10 characters)")
    column_id: int


# Column schemas
class BoardColumn(BaseModel):
    id: int
    project_id: int
    title: str
    order: int

    class Config:
        from_attributes = True


class BoardColumnWithTasks(BoardColumn):
    tasks: List[Task] = []


# Project schemas
class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: date
    end_date: date


class ProjectCreate(ProjectBase):
    invited_members: List[EmailStr] = Field(default_factory=list)


class Project(ProjectBase):
    id: int
    clerk_user_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectWithColumns(Project):
    columns: List[BoardColumn] = []


class ProjectBoard(Project):
    columns: List[BoardColumnWithTasks] = []
    memberships: List[ProjectMemberResponse] = []


class UserProjects(BaseModel):
    manager_projects: List[Project] = []
    invited_projects: List[Project] = []


class ProjectStats(BaseModel):
    id: int
    name: str
    total_tasks: int
    completed_tasks: int
    completion_rate: float
    tasks_by_status: Dict[str, int]
    tasks_by_priority: Dict[str, int]


# Invitation schemas
class InvitationRequest(BaseModel):
    email: EmailStr
    role: ProjectRole = ProjectRole.member


class InviteUsersRequest(BaseModel):
    invitations: List[InvitationRequest] = Field(..., min_length=1)


class InviteUsersResult(BaseModel):
    message: str
    count: int


class InvitedMember(BaseModel):
    id: int
    project_id: int
    email: str
    status: InvitationStatus
    role: ProjectRole
    created_at: datetime

    class Config:
        from_attributes = True


class AcceptInvitationResult(BaseModel):
    message: str
    project: Project
    role: ProjectRole


# Notification schemas
class Notification(BaseModel):
    id: int
    type: str
    title: str
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    read: bool
    created_at: datetime
    sender: Optional[TeamMember] = None

    class Config:
        from_attributes = True


class NotificationList(BaseModel):
    notifications: List[Notification] = []
    unread_count: int = 0
