from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, Date, Enum, Boolean, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
import enum
from database import Base


def _enum_values(enum_cls):
    # Persist enum values (e.g. "à_faire"), not member names
    return [member.value for member in enum_cls]


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class TaskStatus(str, enum.Enum):
    a_faire = "à_faire"
    en_cours = "en_cours"
    en_revision = "en_révision"
    termine = "terminé"


class TaskPriority(str, enum.Enum):
    basse = "basse"
    moyenne = "moyenne"
    haute = "haute"
    urgente = "urgente"


class ProjectRole(str, enum.Enum):
    """Project roles, in ascending privilege order."""
    observer = "observer"
    member = "member"
    manager = "manager"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {ProjectRole.observer: 0, ProjectRole.member: 1, ProjectRole.manager: 2}


class InvitationStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    clerk_user_id = Column(String(255), unique=True, nullable=False, index=True)
    profile_picture_url = Column(String(512))
    role = Column(String(50), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    avatar = Column(String(512))
    clerk_user_id = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    memberships = relationship("ProjectMember", back_populates="team_member", cascade="all, delete-orphan")
    assigned_tasks = relationship("Task", back_populates="assignee")
    comments = relationship("Comment", back_populates="author")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(Date)
    end_date = Column(Date)
    clerk_user_id = Column(String(255), nullable=False)  # creator's external identity
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    columns = relationship(
        "BoardColumn", back_populates="project", cascade="all, delete-orphan", order_by="BoardColumn.order"
    )
    memberships = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    invitations = relationship("InvitedMember", back_populates="project", cascade="all, delete-orphan")


class ProjectMember(Base):
    __tablename__ = "project_team_member"
    __table_args__ = (UniqueConstraint("project_id", "team_member_id", name="uq_project_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    team_member_id = Column(Integer, ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False)
    role = Column(
        Enum(ProjectRole, name="project_role", values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.member,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project = relationship("Project", back_populates="memberships")
    team_member = relationship("TeamMember", back_populates="memberships")


class BoardColumn(Base):
    __tablename__ = "columns"
    __table_args__ = (UniqueConstraint("project_id", "order", name="uq_column_project_order"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project = relationship("Project", back_populates="columns")
    tasks = relationship("Task", back_populates="column", cascade="all, delete-orphan")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    column_id = Column(Integer, ForeignKey("columns.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(
        Enum(TaskStatus, name="task_status", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.a_faire,
    )
    priority = Column(
        Enum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.moyenne,
    )
    assignee_id = Column(Integer, ForeignKey("team_members.id", ondelete="SET NULL"))
    creator_id = Column(String(255), nullable=False)  # creator's external identity
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Time tracking fields (minutes)
    estimated_time = Column(Integer, nullable=False, default=0)
    actual_time = Column(Integer, nullable=False, default=0)
    due_date = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    timer_active = Column(Boolean, nullable=False, default=False)

    tags = Column(JSONType, default=list)

    # Relationships
    column = relationship("BoardColumn", back_populates="tasks")
    assignee = relationship("TeamMember", back_populates="assigned_tasks")
    comments = relationship("Comment", back_populates="task", cascade="all, delete-orphan")
    attachments = relationship("Attachment", back_populates="task", cascade="all, delete-orphan")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(Integer, ForeignKey("team_members.id", ondelete="SET NULL"))
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("TeamMember", back_populates="comments")


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(100), nullable=False)
    url = Column(String(512), nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="attachments")


class InvitedMember(Base):
    __tablename__ = "invited_members"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    status = Column(
        Enum(InvitationStatus, name="invitation_status", values_callable=_enum_values),
        nullable=False,
        default=InvitationStatus.pending,
    )
    invitation_token = Column(String(128), unique=True, nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, name="project_role", values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.member,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    project = relationship("Project", back_populates="invitations")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("team_members.id", ondelete="SET NULL"))
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text)
    data = Column(JSONType, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    recipient = relationship("TeamMember", foreign_keys=[user_id])
    sender = relationship("TeamMember", foreign_keys=[sender_id])
