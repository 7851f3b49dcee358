"""
FastAPI dependencies for actor identity.

The identity provider authenticates users upstream and forwards the external
identity in the `X-Clerk-User-Id` header. These dependencies extract it and
resolve it to a TeamMember; a missing header is always a 401, never an
anonymous observer.
"""

import logging
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from errors import AuthenticationRequired, NotFoundError
from models import TeamMember
from auth.permissions import get_team_member

logger = logging.getLogger(__name__)


async def get_actor_id(x_clerk_user_id: Optional[str] = Header(None)) -> str:
    """
    Extract the actor's external identity from the request headers.

    Raises:
        AuthenticationRequired: if the header is missing or blank

    Example:
        @app.post("/api/tasks")
        def create_task(actor_id: str = Depends(get_actor_id)):
            ...
    """
    if x_clerk_user_id is None or not x_clerk_user_id.strip():
        logger.info("No identity header provided")
        raise AuthenticationRequired()
    return x_clerk_user_id.strip()


async def get_current_team_member(
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> TeamMember:
    """
    Resolve the authenticated actor to a TeamMember record.

    Raises:
        NotFoundError: if no team member exists for the identity
    """
    team_member = get_team_member(actor_id, db)
    if team_member is None:
        logger.info(f"Team member not found for identity: {actor_id}")
        raise NotFoundError("Team member", actor_id)
    logger.debug(f"Resolved identity {actor_id} to team member {team_member.id}")
    return team_member
