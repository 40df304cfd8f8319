from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.core.errors import NotFoundError
from app.schemas.notification import NotificationResponse
from app.services.notifications import list_notifications, mark_notification_read

router = APIRouter()


def _serialize(notification) -> dict:
    return NotificationResponse.model_validate(notification).model_dump(by_alias=True, mode="json")


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    notifications = list_notifications(db, user_id, unread_only=unread_only)
    return {
        "notifications": [_serialize(n) for n in notifications],
        "unreadCount": sum(1 for n in notifications if not n.is_read),
    }


@router.patch("/{notification_id}/read")
async def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    notification = mark_notification_read(db, user_id, notification_id)
    if not notification:
        raise NotFoundError("Notification non trouvée")
    return _serialize(notification)
