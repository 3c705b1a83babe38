import logging
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from bookpay.config import Settings
from bookpay.models.notifications import RecipientRole
from bookpay.models.user import User
from bookpay.notifications.channels import Channel
from bookpay.notifications.email_handlers import send_admin_email, send_user_email
from bookpay.notifications.events import PurchaseEventType
from bookpay.notifications.rules import EMAIL_TEMPLATES, NOTIFICATION_RULES
from bookpay.services.notification_service import create_notification

logger = logging.getLogger(__name__)


def _run_safely(fn, kwargs):
    try:
        fn(**kwargs)
    except Exception:
        logger.exception(f"Notification task {fn.__name__} failed")


def schedule(background_tasks: Optional[BackgroundTasks], fn, **kwargs):
    """Run after the response when a request is in flight, inline otherwise."""
    if background_tasks is not None:
        background_tasks.add_task(_run_safely, fn, kwargs)
    else:
        _run_safely(fn, kwargs)


def dispatch_purchase_event(
    *,
    event: PurchaseEventType,
    session: Session,
    settings: Settings,
    related_id=None,
    user_id: Optional[int] = None,
    extra: Optional[dict] = None,
    background_tasks: Optional[BackgroundTasks] = None,
):
    """
    Central notification dispatcher. Call only after the state change committed.

    Handles:
    - admin in-app notifications
    - user email
    - admin email
    Nothing here raises; failures are logged.
    """

    rules = NOTIFICATION_RULES.get(event, {})
    extra = dict(extra or {})
    extra.setdefault("reference", related_id)

    # -------------------------
    # ADMIN IN-APP NOTIFICATION
    # -------------------------
    if rules.get(Channel.INAPP_ADMIN):
        try:
            create_notification(
                session=session,
                recipient_role=RecipientRole.admin,
                user_id=user_id,
                trigger_source=event.value,
                related_id=str(related_id) if related_id is not None else None,
                title=extra.get("admin_title", event.value.replace("_", " ").capitalize()),
                content=extra.get("admin_content", ""),
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"Admin notification failed for {event.value} ({related_id})")

    # -------------------------
    # USER EMAIL
    # -------------------------
    if rules.get(Channel.EMAIL_USER) and user_id is not None:
        user = session.get(User, user_id)
        template = EMAIL_TEMPLATES.get((event, Channel.EMAIL_USER))
        if user and user.email and template:
            schedule(
                background_tasks,
                send_user_email,
                template=template[0],
                subject=template[1].format_map(_Defaults(extra)),
                to=user.email,
                settings=settings,
                first_name=user.first_name,
                **extra,
            )

    # -------------------------
    # ADMIN EMAIL
    # -------------------------
    if rules.get(Channel.EMAIL_ADMIN) and settings.admin_emails:
        template = EMAIL_TEMPLATES.get((event, Channel.EMAIL_ADMIN))
        if template:
            schedule(
                background_tasks,
                send_admin_email,
                template=template[0],
                subject=template[1].format_map(_Defaults(extra)),
                settings=settings,
                **extra,
            )


class _Defaults(dict):
    def __missing__(self, key):
        return ""


class Notifier:
    """Binds the dispatcher to one request's session, settings and background tasks."""

    def __init__(self, session: Session, settings: Settings, background_tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.settings = settings
        self.background_tasks = background_tasks

    def dispatch(self, event: PurchaseEventType, *, related_id=None, user_id=None, **extra):
        dispatch_purchase_event(
            event=event,
            session=self.session,
            settings=self.settings,
            related_id=related_id,
            user_id=user_id,
            extra=extra,
            background_tasks=self.background_tasks,
        )
