"""
Notifications: invitation delivery and the pull-based notification inbox.

Invitation delivery is best-effort. Callers send invitations after their
transaction has committed and only log failures; nothing here may undo a
membership or an invitation record.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

import settings
from errors import NotFoundError
from models import Notification, Project, ProjectRole, TeamMember

logger = logging.getLogger(__name__)

NOTIFICATION_PAGE_SIZE = 20

ROLE_LABELS = {
    ProjectRole.observer: "Observateur",
    ProjectRole.member: "Membre",
    ProjectRole.manager: "Manager",
}

ROLE_DESCRIPTIONS = {
    ProjectRole.observer: "vous pourrez voir les tâches mais ne pourrez pas les modifier.",
    ProjectRole.member: "vous pourrez modifier vos propres tâches et en créer de nouvelles.",
    ProjectRole.manager: "vous aurez un accès complet, pourrez assigner des tâches et modifier toutes les tâches.",
}


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LogEmailSender:
    """Email sender used when no SMTP server is configured: the message is only logged."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.warning(f"SMTP not configured, email to {to} not delivered: {subject}")
        logger.debug(f"Undelivered email body for {to}:\n{body}")


class SmtpEmailSender:
    def __init__(self, host: str, port: int, sender: str, timeout: float = 10.0) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(message)
        logger.info(f"Email sent to {to}: {subject}")


def get_email_sender() -> EmailSender:
    if settings.SMTP_HOST:
        return SmtpEmailSender(settings.SMTP_HOST, settings.SMTP_PORT, settings.SMTP_FROM)
    return LogEmailSender()


def build_join_link(project_id: int, invitation_token: Optional[str] = None) -> str:
    """
    Build the frontend link an invitee follows to join a project.

    Example:
        >>> build_join_link(7, "abc")  # with FRONTEND_URL=http://localhost:3000
        'http://localhost:3000/projects/7?token=abc'
    """
    link = f"{settings.FRONTEND_URL}/projects/{project_id}"
    if invitation_token:
        link += f"?token={invitation_token}"
    return link


def render_invitation_email(project: Project, join_link: str, role: ProjectRole) -> tuple[str, str]:
    """Return (subject, plain-text body) for a project invitation."""
    subject = f"Invitation à rejoindre le projet {project.name}"
    dates = ""
    if project.start_date and project.end_date:
        dates = (
            f"Date de début: {project.start_date.strftime('%d/%m/%Y')}\n"
            f"Date de fin: {project.end_date.strftime('%d/%m/%Y')}\n\n"
        )
    body = (
        "Bonjour,\n\n"
        f"Vous avez été invité(e) à rejoindre le projet: {project.name}\n\n"
        f"Description: {project.description or ''}\n"
        f"{dates}"
        f"Votre rôle: {ROLE_LABELS[role]}\n"
        f"En tant que {ROLE_LABELS[role]}, {ROLE_DESCRIPTIONS[role]}\n\n"
        f"Rejoindre le projet: {join_link}\n\n"
        "Bien cordialement,\n"
        f"L'équipe {settings.APP_NAME}\n"
    )
    return subject, body


class InvitationNotifier:
    """
    Deliver project invitations.

    Existing team members also get an inbox notification; pending invitees
    (no account yet) only receive the email with a tokenized join link.
    """

    def __init__(self, db: Session, email_sender: Optional[EmailSender] = None, sender_id: Optional[int] = None) -> None:
        self.db = db
        self.email_sender = email_sender or get_email_sender()
        self.sender_id = sender_id

    def notify_invitation(
        self,
        project: Project,
        email: str,
        role: ProjectRole,
        invitation_token: Optional[str] = None,
        team_member: Optional[TeamMember] = None,
    ) -> None:
        join_link = build_join_link(project.id, invitation_token)

        if team_member is not None:
            notification = Notification(
                user_id=team_member.id,
                sender_id=self.sender_id,
                type="project_invitation",
                title=f"Invitation au projet {project.name}",
                message=f"Vous avez été ajouté(e) au projet {project.name} en tant que {ROLE_LABELS[role]}.",
                data={"project_id": project.id, "role": role.value, "join_link": join_link},
            )
            try:
                self.db.add(notification)
                self.db.commit()
                logger.debug(f"Notification {notification.id} recorded for team member {team_member.id}")
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to record invitation notification for team member {team_member.id}: {e}")

        subject, body = render_invitation_email(project, join_link, role)
        try:
            self.email_sender.send(email, subject, body)
        except OSError as e:  # smtplib errors are OSError subclasses
            logger.error(f"Failed to email invitation for project {project.id} to {email}: {e}")
            return
        logger.info(f"Invitation for project {project.id} sent to {email} as {role.value}")


def list_notifications(db: Session, team_member: TeamMember) -> dict:
    """Unread notifications first, then newest first, capped at one page."""
    notifications = (
        db.query(Notification)
        .options(joinedload(Notification.sender))
        .filter(Notification.user_id == team_member.id)
        .order_by(Notification.read.asc(), Notification.created_at.desc(), Notification.id.desc())
        .limit(NOTIFICATION_PAGE_SIZE)
        .all()
    )
    unread_count = (
        db.query(Notification)
        .filter(Notification.user_id == team_member.id, Notification.read.is_(False))
        .count()
    )
    logger.debug(f"Team member {team_member.id} has {unread_count} unread notifications")
    return {"notifications": notifications, "unread_count": unread_count}


def _get_own_notification(db: Session, team_member: TeamMember, notification_id: int) -> Notification:
    # Someone else's notification is reported as missing
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == team_member.id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    return notification


def mark_notification_read(db: Session, team_member: TeamMember, notification_id: int) -> Notification:
    notification = _get_own_notification(db, team_member, notification_id)
    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_notifications_read(db: Session, team_member: TeamMember) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == team_member.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Marked {updated} notifications as read for team member {team_member.id}")
    return updated


def delete_notification(db: Session, team_member: TeamMember, notification_id: int) -> None:
    notification = _get_own_notification(db, team_member, notification_id)
    db.delete(notification)
    db.commit()
    logger.info(f"Notification {notification_id} deleted by team member {team_member.id}")
