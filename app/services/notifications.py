"""
In-app notifications, optionally mirrored by email.

Uses Resend if RESEND_API_KEY is set; otherwise only the database row is
written. Nothing here raises into the caller: a conversion or a payment must
never fail because a notification could not be stored or sent.
"""
import html
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import resend
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
FROM_EMAIL = os.getenv("NOTIFICATIONS_FROM_EMAIL", "Facturation <notifications@example.com>")
APP_NAME = os.getenv("APP_NAME", "REV")
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")


def create_notification(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    type: str = "INFO",
    related_type: Optional[str] = None,
    related_id: Optional[Any] = None,
    action_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    send_email: bool = True,
) -> Optional[Notification]:
    try:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            related_type=related_type,
            related_id=str(related_id) if related_id is not None else None,
            action_url=action_url,
            extra_metadata=metadata,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[Notifications] Could not store notification for user %s: %s", user_id, e)
        return None

    if send_email:
        send_notification_email(db, notification)
    return notification


def send_notification_email(db: Session, notification: Notification) -> bool:
    """
    Email a notification to its owner.
    Returns True if sent, False if skipped (no API key, opted out) or failed.
    """
    if not RESEND_API_KEY:
        return False

    user = db.query(User).filter(User.id == notification.user_id).first()
    if not user or not user.email or not user.email_notifications:
        return False

    resend.api_key = RESEND_API_KEY

    body = f"""
    <p>Bonjour,</p>
    <p><strong>{html.escape(notification.title)}</strong></p>
    <p>{html.escape(notification.message)}</p>
    """
    if notification.action_url:
        link = html.escape(f"{APP_BASE_URL}{notification.action_url}")
        body += f'<p><a href="{link}">Voir dans {html.escape(APP_NAME)}</a></p>'

    try:
        resend.Emails.send({
            "from": FROM_EMAIL,
            "to": [user.email],
            "subject": f"{APP_NAME} - {notification.title}",
            "html": body.strip(),
        })
    except Exception as e:
        logger.warning("[Notifications] Failed to email notification %s to %s: %s", notification.id, user.email, e)
        return False

    try:
        notification.email_sent = True
        notification.email_sent_at = datetime.utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("[Notifications] Email sent but flag not saved for %s: %s", notification.id, e)
    logger.info("[Notifications] Email sent to %s for notification %s", user.email, notification.id)
    return True


def list_notifications(db: Session, user_id: int, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.is_read.asc(), Notification.created_at.desc(), Notification.id.desc()).all()


def mark_notification_read(db: Session, user_id: int, notification_id: int) -> Optional[Notification]:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if not notification:
        return None
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
