from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from bookpay.database import get_session
from bookpay.dependencies.auth import Principal, require_admin
from bookpay.errors import NotFoundError
from bookpay.models.notifications import Notification, RecipientRole
from bookpay.services.notification_service import list_admin_notifications

router = APIRouter()


@router.get("")
def admin_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    admin: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return list_admin_notifications(session, unread_only=unread_only, limit=limit)


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: int,
    admin: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
):
    notification = session.get(Notification, notification_id)
    if not notification or notification.recipient_role != RecipientRole.admin:
        raise NotFoundError("Notification not found")

    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
    session.add(notification)
    session.commit()
    return {"message": "Notification marked as read"}
