"""
Project- and task-level permission checking utilities.

Actors are identified by their external identity string (`clerk_user_id`) and
resolved to a TeamMember before any role check. Roles come from the
Project↔TeamMember membership row.

Role policy ("at-least, with manager short-circuit"):
    manager   -> always allowed
    required manager, actor not manager -> denied
    required member   -> actor role must be exactly member
    required observer -> any of observer/member/manager

Because the manager short-circuit runs first, "exactly member" behaves like
"at least member" in practice; the ordering is kept explicit so the effective
policy never drifts.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from errors import AuthenticationRequired, NotFoundError, PermissionDenied
from models import BoardColumn, Project, ProjectMember, ProjectRole, Task, TeamMember

logger = logging.getLogger(__name__)


def role_satisfies(actual: ProjectRole, required: ProjectRole) -> bool:
    """
    Decide whether a membership role satisfies a required role.

    Args:
        actual: Role held by the actor in the project
        required: Minimum role demanded by the operation

    Returns:
        True if the role policy allows the actor, False otherwise

    Example:
        >>> role_satisfies(ProjectRole.manager, ProjectRole.member)
        True
        >>> role_satisfies(ProjectRole.observer, ProjectRole.member)
        False
    """
    if actual == ProjectRole.manager:
        return True
    if required == ProjectRole.manager:
        return False
    if required == ProjectRole.member:
        return actual == ProjectRole.member
    return actual.rank >= required.rank


def get_team_member(clerk_user_id: Optional[str], db: Session) -> Optional[TeamMember]:
    """Resolve a TeamMember by external identity, or None."""
    if not clerk_user_id:
        return None
    return db.query(TeamMember).filter(TeamMember.clerk_user_id == clerk_user_id).first()


def get_membership(team_member_id: int, project_id: int, db: Session) -> Optional[ProjectMember]:
    return (
        db.query(ProjectMember)
        .filter(
            ProjectMember.project_id == project_id,
            ProjectMember.team_member_id == team_member_id,
        )
        .first()
    )


def get_task_project_id(task: Task, db: Session) -> int:
    """Projects own columns, and tasks reference columns."""
    column = task.column
    if column is None:
        column = db.query(BoardColumn).filter(BoardColumn.id == task.column_id).first()
    return column.project_id


def check_project_permission(
    clerk_user_id: Optional[str], project_id: int, required_role: ProjectRole, db: Session
) -> bool:
    """
    Check if an actor holds the required role in a project.

    Args:
        clerk_user_id: External identity of the actor
        project_id: ID of the project to check access for
        required_role: Role required by the operation
        db: Database session

    Returns:
        True if the actor has permission, False otherwise
    """
    logger.debug(
        f"Checking project permission for actor {clerk_user_id}, "
        f"project {project_id}, required_role: {required_role.value}"
    )

    team_member = get_team_member(clerk_user_id, db)
    if team_member is None:
        logger.info(f"Actor {clerk_user_id} has no team member record, access denied to project {project_id}")
        return False

    membership = get_membership(team_member.id, project_id, db)
    if membership is None:
        logger.info(f"Team member {team_member.id} has no membership in project {project_id}")
        return False

    has_permission = role_satisfies(membership.role, required_role)
    if has_permission:
        logger.debug(
            f"Team member {team_member.id} has role '{membership.role.value}' in project {project_id}, "
            f"permission granted for required role '{required_role.value}'"
        )
    else:
        logger.info(
            f"Team member {team_member.id} has role '{membership.role.value}' in project {project_id}, "
            f"but '{required_role.value}' is required"
        )
    return has_permission


def check_task_permission(clerk_user_id: Optional[str], task: Task, db: Session) -> bool:
    """
    Check if an actor may mutate a specific task.

    Managers may act on every task of their project. Members may act only on
    tasks they created or are assigned to. Observers and non-members never may.
    """
    logger.debug(f"Checking task permission for actor {clerk_user_id} on task {task.id}")

    team_member = get_team_member(clerk_user_id, db)
    if team_member is None:
        logger.info(f"Actor {clerk_user_id} has no team member record, access denied to task {task.id}")
        return False

    project_id = get_task_project_id(task, db)
    membership = get_membership(team_member.id, project_id, db)
    if membership is None:
        logger.info(f"Team member {team_member.id} is not a member of project {project_id}")
        return False

    if membership.role == ProjectRole.manager:
        return True

    if membership.role == ProjectRole.member:
        is_owner = task.creator_id == clerk_user_id or task.assignee_id == team_member.id
        if not is_owner:
            logger.info(f"Member {team_member.id} is neither creator nor assignee of task {task.id}")
        return is_owner

    logger.info(f"Observer {team_member.id} cannot modify task {task.id}")
    return False


def require_identity(clerk_user_id: Optional[str]) -> str:
    if not clerk_user_id:
        logger.info("No actor identity provided")
        raise AuthenticationRequired()
    return clerk_user_id


def require_project_permission(
    clerk_user_id: Optional[str], project_id: int, required_role: ProjectRole, db: Session
) -> Project:
    """
    Require an actor to hold a role in a project, or raise.

    Raises:
        AuthenticationRequired: no identity supplied
        NotFoundError: project does not exist
        PermissionDenied: actor lacks the role

    Returns:
        The project
    """
    require_identity(clerk_user_id)

    project = db.query(Project).filter(Project.id == project_id).first()
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise NotFoundError("Project", project_id)

    if not check_project_permission(clerk_user_id, project_id, required_role, db):
        raise PermissionDenied(
            f"Insufficient permissions. Required role: {required_role.value}",
            {"required_role": required_role.value},
        )

    logger.debug(f"Permission check passed for actor {clerk_user_id} on project {project_id}")
    return project


def require_task_permission(clerk_user_id: Optional[str], task_id: int, db: Session) -> Task:
    """
    Require an actor to be allowed to mutate a task, or raise.

    Raises:
        AuthenticationRequired: no identity supplied
        NotFoundError: task does not exist
        PermissionDenied: actor lacks role or ownership

    Returns:
        The task
    """
    require_identity(clerk_user_id)

    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise NotFoundError("Task", task_id)

    if not check_task_permission(clerk_user_id, task, db):
        raise PermissionDenied("You do not have permission to modify this task")

    logger.debug(f"Task permission check passed for actor {clerk_user_id} on task {task_id}")
    return task
