"""
Account sync from the identity provider.

The frontend posts the signed-in profile after each login. The account row
(`User`) and the project-facing identity (`TeamMember`) are upserted together so
that a freshly signed-up person can immediately accept invitations.
"""

import logging

from sqlalchemy.orm import Session

from database import transaction
from errors import NotFoundError
from models import TeamMember, User
import schemas

logger = logging.getLogger(__name__)


def sync_user(db: Session, payload: schemas.UserSync) -> User:
    """
    Create or update the user and its team member record.

    Returns:
        The User row
    """
    logger.debug(f"Syncing user {payload.clerk_user_id} ({payload.email})")

    user = db.query(User).filter(User.clerk_user_id == payload.clerk_user_id).first()
    team_member = db.query(TeamMember).filter(TeamMember.clerk_user_id == payload.clerk_user_id).first()
    created = user is None

    with transaction(db, "user sync"):
        if user is None:
            user = User(clerk_user_id=payload.clerk_user_id, name=payload.name, email=str(payload.email))
            db.add(user)
        else:
            user.name = payload.name
            user.email = str(payload.email)
        user.profile_picture_url = payload.profile_picture_url

        if team_member is None:
            db.add(TeamMember(
                clerk_user_id=payload.clerk_user_id,
                name=payload.name,
                email=str(payload.email),
                avatar=payload.profile_picture_url,
            ))
        else:
            team_member.name = payload.name
            team_member.email = str(payload.email)
            team_member.avatar = payload.profile_picture_url
    db.refresh(user)

    logger.info(f"User {'created' if created else 'updated'}: {user.email} (ID: {user.id})")
    return user


def get_user(db: Session, clerk_user_id: str) -> User:
    user = db.query(User).filter(User.clerk_user_id == clerk_user_id).first()
    if user is None:
        raise NotFoundError("User", clerk_user_id)
    return user
