"""
Projects and membership: project creation with default kanban columns,
role-gated invitations, invitation acceptance, and read-only project views.

Membership and invitation rows are the durable result of an invitation and are
written inside one transaction. Notifications go out after the commit and their
failures are only logged.
"""

import logging
import secrets
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from auth.permissions import get_membership, get_team_member, require_identity, require_project_permission
from database import transaction
from errors import ConflictError, NotFoundError
from models import (
    BoardColumn,
    InvitationStatus,
    InvitedMember,
    Project,
    ProjectMember,
    ProjectRole,
    Task,
    TaskPriority,
    TaskStatus,
    TeamMember,
)
from notifications import InvitationNotifier
import schemas

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ("À faire", "En cours", "En révision", "Terminé")


class Notifier(Protocol):
    def notify_invitation(
        self,
        project: Project,
        email: str,
        role: ProjectRole,
        invitation_token: Optional[str] = None,
        team_member: Optional[TeamMember] = None,
    ) -> None:
        ...


def generate_invitation_token() -> str:
    """Opaque single-use token: 32 random bytes, URL-safe (43 characters)."""
    return secrets.token_urlsafe(32)


def _find_team_member_by_email(db: Session, email: str) -> Optional[TeamMember]:
    return db.query(TeamMember).filter(func.lower(TeamMember.email) == email.lower()).first()


def _unique_emails(emails: Iterable) -> List[str]:
    """Drop repeated addresses, compared case-insensitively; the first spelling wins."""
    seen = {}
    for email in emails:
        seen.setdefault(str(email).lower(), str(email))
    return list(seen.values())


def _attach_or_invite(db: Session, project: Project, email: str, role: ProjectRole, outbox: List[dict]) -> None:
    """
    Give `email` the role in the project, reusing any existing row.

    A known team member gets a membership (or its role updated). Anyone else
    gets a pending invitation, refreshed with a new token if one is already
    pending. The queued notification is appended to `outbox`.
    """
    existing = _find_team_member_by_email(db, email)

    if existing is not None:
        membership = get_membership(existing.id, project.id, db)
        if membership is not None:
            membership.role = role
            logger.debug(f"Updated role of team member {existing.id} in project {project.id} to {role.value}")
        else:
            db.add(ProjectMember(project_id=project.id, team_member_id=existing.id, role=role))
            logger.debug(f"Attached team member {existing.id} to project {project.id} as {role.value}")
        outbox.append({"email": email, "role": role, "team_member": existing})
    else:
        token = generate_invitation_token()
        pending = (
            db.query(InvitedMember)
            .filter(
                InvitedMember.project_id == project.id,
                func.lower(InvitedMember.email) == email.lower(),
                InvitedMember.status == InvitationStatus.pending,
            )
            .first()
        )
        if pending is not None:
            pending.role = role
            pending.invitation_token = token
            logger.debug(f"Refreshed pending invitation {pending.id} for {email}")
        else:
            db.add(InvitedMember(
                project_id=project.id,
                email=email,
                status=InvitationStatus.pending,
                invitation_token=token,
                role=role,
            ))
            logger.debug(f"Created pending invitation for {email} on project {project.id}")
        outbox.append({"email": email, "role": role, "invitation_token": token})
    db.flush()


def _send_invitations(notifier: Notifier, project: Project, outbox: Iterable[dict], db: Session) -> int:
    """
    Deliver queued invitations, best-effort.

    Returns:
        Number of invitations delivered without error
    """
    delivered = 0
    for item in outbox:
        try:
            notifier.notify_invitation(project, **item)
            delivered += 1
        except Exception as e:
            # Delivery is best-effort: the invitation record is already committed
            logger.error(f"Failed to send invitation for project {project.id} to {item['email']}: {e}")
            db.rollback()
    return delivered


def create_project(
    db: Session,
    payload: schemas.ProjectCreate,
    creator_id: Optional[str],
    notifier: Optional[Notifier] = None,
) -> Project:
    """
    Create a project with its creator as manager and the default columns.

    Invited emails that match an existing team member are attached directly as
    members; the others get a pending invitation with a fresh token.
    """
    require_identity(creator_id)
    logger.debug(f"Actor {creator_id} creating project: {payload.name}")

    creator = get_team_member(creator_id, db)
    if creator is None:
        raise NotFoundError("Team member", creator_id)

    outbox: List[dict] = []
    with transaction(db, "project creation"):
        project = Project(
            name=payload.name,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            clerk_user_id=creator_id,
        )
        db.add(project)
        db.flush()  # Get project ID without committing

        db.add(ProjectMember(project_id=project.id, team_member_id=creator.id, role=ProjectRole.manager))

        for index, title in enumerate(DEFAULT_COLUMNS):
            db.add(BoardColumn(project_id=project.id, title=title, order=index))

        db.flush()

        for email in _unique_emails(payload.invited_members):
            if email.lower() == creator.email.lower():
                logger.debug(f"Skipping invitation of the creator ({email}) to project {project.id}")
                continue
            _attach_or_invite(db, project, email, ProjectRole.member, outbox)

    db.refresh(project)
    logger.info(f"Project created: {project.name} (ID: {project.id}) by team member {creator.id}")

    notifier = notifier or InvitationNotifier(db, sender_id=creator.id)
    _send_invitations(notifier, project, outbox, db)
    return project


def invite_users(
    db: Session,
    project_id: int,
    actor_id: Optional[str],
    invitations: List[schemas.InvitationRequest],
    notifier: Optional[Notifier] = None,
) -> int:
    """
    Invite people to a project with a given role. Requires manager.

    Returns:
        Number of invitations processed
    """
    project = require_project_permission(actor_id, project_id, ProjectRole.manager, db)
    logger.debug(f"Actor {actor_id} inviting {len(invitations)} people to project {project_id}")

    outbox: List[dict] = []
    with transaction(db, "project invitations"):
        for invitation in invitations:
            _attach_or_invite(db, project, str(invitation.email), invitation.role, outbox)

    logger.info(f"{len(outbox)} invitations processed for project {project.id}")

    if notifier is None:
        sender = get_team_member(actor_id, db)
        notifier = InvitationNotifier(db, sender_id=sender.id if sender else None)
    _send_invitations(notifier, project, outbox, db)
    return len(outbox)


def accept_invitation(db: Session, token: str, accepter_id: Optional[str]) -> InvitedMember:
    """
    Consume a pending invitation and attach the accepter with its role.

    Raises:
        NotFoundError: unknown token, or accepter has no team member record
        ConflictError: the invitation was already processed
    """
    require_identity(accepter_id)

    invitation = db.query(InvitedMember).filter(InvitedMember.invitation_token == token).first()
    if invitation is None:
        logger.info("Invitation token not found")
        raise NotFoundError("Invitation")

    if invitation.status != InvitationStatus.pending:
        logger.info(f"Invitation {invitation.id} already processed (status: {invitation.status.value})")
        raise ConflictError("Invitation already processed", {"status": invitation.status.value})

    team_member = get_team_member(accepter_id, db)
    if team_member is None:
        raise NotFoundError("Team member", accepter_id)

    with transaction(db, "invitation acceptance"):
        membership = get_membership(team_member.id, invitation.project_id, db)
        if membership is not None:
            membership.role = invitation.role
        else:
            db.add(ProjectMember(
                project_id=invitation.project_id,
                team_member_id=team_member.id,
                role=invitation.role,
            ))
        invitation.status = InvitationStatus.accepted
    db.refresh(invitation)

    logger.info(
        f"Team member {team_member.id} joined project {invitation.project_id} "
        f"as {invitation.role.value} via invitation {invitation.id}"
    )
    return invitation


def list_user_projects(db: Session, clerk_user_id: str) -> dict:
    """Split a team member's projects into managed ones and ones they were invited to."""
    team_member = get_team_member(clerk_user_id, db)
    if team_member is None:
        raise NotFoundError("Team member", clerk_user_id)

    memberships = (
        db.query(ProjectMember)
        .options(joinedload(ProjectMember.project))
        .filter(ProjectMember.team_member_id == team_member.id)
        .all()
    )
    manager_projects = [m.project for m in memberships if m.role == ProjectRole.manager]
    invited_projects = [m.project for m in memberships if m.role != ProjectRole.manager]

    logger.debug(
        f"Team member {team_member.id} manages {len(manager_projects)} projects, "
        f"invited to {len(invited_projects)}"
    )
    return {"manager_projects": manager_projects, "invited_projects": invited_projects}


def get_project_board(db: Session, project_id: int, actor_id: Optional[str]) -> Project:
    """Project with ordered columns, their tasks and the member list. Requires observer."""
    require_project_permission(actor_id, project_id, ProjectRole.observer, db)

    return (
        db.query(Project)
        .options(
            selectinload(Project.columns).selectinload(BoardColumn.tasks).selectinload(Task.comments),
            selectinload(Project.columns).selectinload(BoardColumn.tasks).selectinload(Task.attachments),
            selectinload(Project.memberships).joinedload(ProjectMember.team_member),
        )
        .filter(Project.id == project_id)
        .first()
    )


def get_project_stats(db: Session, project_id: int, actor_id: Optional[str]) -> dict:
    """Task counts by status and priority plus the completion rate. Requires observer."""
    project = require_project_permission(actor_id, project_id, ProjectRole.observer, db)

    tasks = (
        db.query(Task)
        .join(BoardColumn, Task.column_id == BoardColumn.id)
        .filter(BoardColumn.project_id == project_id)
        .all()
    )

    tasks_by_status = {status.value: 0 for status in TaskStatus}
    tasks_by_priority = {priority.value: 0 for priority in TaskPriority}
    for task in tasks:
        tasks_by_status[task.status.value] += 1
        tasks_by_priority[task.priority.value] += 1

    total_tasks = len(tasks)
    completed_tasks = tasks_by_status[TaskStatus.termine.value]

    return {
        "id": project.id,
        "name": project.name,
        "total_tasks": total_tasks,
        "completed_tasks": completed_tasks,
        "completion_rate": completed_tasks / total_tasks if total_tasks else 0.0,
        "tasks_by_status": tasks_by_status,
        "tasks_by_priority": tasks_by_priority,
    }
