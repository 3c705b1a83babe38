from typing import List, Optional

from sqlmodel import Session, select

from bookpay.models.notifications import (
    Notification,
    RecipientRole,
    NotificationChannel,
)


def create_notification(
    *,
    session: Session,
    recipient_role: RecipientRole,
    user_id: Optional[int],
    trigger_source: str,
    related_id: Optional[str],
    title: str,
    content: str,
    channel: NotificationChannel = NotificationChannel.system,
):
    notification = Notification(
        recipient_role=recipient_role,
        user_id=user_id,
        trigger_source=trigger_source,
        related_id=related_id,
        title=title,
        content=content,
        channel=channel,
    )
    session.add(notification)
    session.flush()
    return notification


def list_admin_notifications(session: Session, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = select(Notification).where(Notification.recipient_role == RecipientRole.admin)
    if unread_only:
        query = query.where(Notification.read_at.is_(None))
    return list(session.exec(query.order_by(Notification.created_at.desc()).limit(limit)).all())
