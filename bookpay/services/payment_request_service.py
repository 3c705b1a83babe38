"""Contact-based purchases: the user asks, an admin closes the sale by hand."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bookpay.config import Settings
from bookpay.dependencies.auth import Principal
from bookpay.errors import (
    ConflictError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from bookpay.models.payment_request import (
    ALLOWED_REQUEST_TRANSITIONS,
    PaymentRequest,
    PaymentRequestStatus,
)
from bookpay.notifications import Notifier, PurchaseEventType
from bookpay.services.fulfillment import FulfillmentDispatcher
from bookpay.services.item_resolver import resolve_item
from bookpay.utils.pagination import paginate

logger = logging.getLogger(__name__)

OPEN_REQUEST_STATUSES = (PaymentRequestStatus.pending, PaymentRequestStatus.contacted)


def _sources_for(new_status: PaymentRequestStatus) -> tuple:
    return tuple(
        current for current, targets in ALLOWED_REQUEST_TRANSITIONS.items()
        if new_status in targets
    )


class PaymentRequestService:
    def __init__(self, session: Session, settings: Settings, notifier: Optional[Notifier] = None):
        self.session = session
        self.settings = settings
        self.notifier = notifier or Notifier(session, settings)
        self.fulfillment = FulfillmentDispatcher(session, self.notifier)

    def get(self, request_id: int) -> PaymentRequest:
        request = self.session.get(PaymentRequest, request_id, populate_existing=True)
        if not request:
            raise NotFoundError("Payment request not found")
        return request

    def create(
        self,
        principal: Principal,
        item_type,
        item_id: int,
        preferred_contact_method: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> PaymentRequest:
        item = resolve_item(self.session, item_type, item_id)
        if item.is_free:
            raise ValidationError("This item is free; add it to your library instead")

        existing = self.session.exec(
            select(PaymentRequest)
            .where(PaymentRequest.user_id == principal.user_id)
            .where(PaymentRequest.item_type == item.item_type)
            .where(PaymentRequest.item_id == item.id)
            .where(PaymentRequest.status.in_(OPEN_REQUEST_STATUSES))
        ).first()
        if existing:
            raise DuplicateError("You already have an open request for this item")

        request = PaymentRequest(
            user_id=principal.user_id,
            item_type=item.item_type,
            item_id=item.id,
            amount=item.price,
            currency=self.settings.currency,
            preferred_contact_method=preferred_contact_method,
            user_message=user_message,
        )
        self.session.add(request)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateError("You already have an open request for this item")
        self.session.refresh(request)

        logger.info(f"Payment request {request.id} created by user {principal.user_id} for {item.title}")
        self.notifier.dispatch(
            PurchaseEventType.PAYMENT_REQUEST_CREATED,
            related_id=request.id,
            user_id=principal.user_id,
            item_title=item.title,
            amount=str(request.amount),
            currency=request.currency,
            preferred_contact_method=preferred_contact_method,
            user_message=user_message,
            admin_title="New purchase request",
            admin_content=f"{item.title} for {request.amount} {request.currency}",
        )
        # the in-app notification commits, which expires the row
        self.session.refresh(request)
        return request

    def list_for_user(self, user_id: int) -> List[PaymentRequest]:
        return list(self.session.exec(
            select(PaymentRequest)
            .where(PaymentRequest.user_id == user_id)
            .order_by(PaymentRequest.created_at.desc())
        ).all())

    def list_by_status(self, status: Optional[PaymentRequestStatus], page: int = 1, limit: int = 20, serialize=None) -> dict:
        query = select(PaymentRequest)
        if status:
            query = query.where(PaymentRequest.status == status)
        query = query.order_by(PaymentRequest.created_at.asc())
        return paginate(session=self.session, query=query, page=page, limit=limit, serialize=serialize)

    def transition(
        self,
        request_id: int,
        new_status: PaymentRequestStatus,
        principal: Principal,
        admin_notes: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
    ) -> PaymentRequest:
        try:
            new_status = PaymentRequestStatus(new_status)
        except ValueError:
            raise ValidationError("Unknown payment request status")

        expected = _sources_for(new_status)
        if not expected:
            raise ValidationError(f"Cannot move a request to {new_status.value}")

        now = datetime.utcnow()
        values = {"status": new_status, "updated_at": now}
        if admin_notes is not None:
            values["admin_notes"] = admin_notes
        if cancellation_reason is not None:
            values["cancellation_reason"] = cancellation_reason
        if new_status == PaymentRequestStatus.contacted:
            values["contacted_at"] = now
        if new_status == PaymentRequestStatus.completed:
            values["completed_at"] = now

        result = self.session.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == request_id)
            .where(PaymentRequest.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            current = self.get(request_id)
            raise ConflictError(
                f"Request is {current.status.value}; cannot move to {new_status.value}",
                current=current,
            )
        self.session.commit()

        request = self.get(request_id)
        logger.info(f"Payment request {request_id} -> {new_status.value} by {principal.actor}")

        item_title = self.fulfillment.item_title(request.item_type, request.item_id)
        self.notifier.dispatch(
            PurchaseEventType.PAYMENT_REQUEST_UPDATED,
            related_id=request.id,
            user_id=request.user_id,
            item_title=item_title,
            status=new_status.value,
            admin_notes=admin_notes,
        )

        if new_status == PaymentRequestStatus.completed:
            self.fulfillment.grant_access(
                request.user_id,
                request.item_type,
                request.item_id,
                payment_request_id=request.id,
            )
        self.session.refresh(request)
        return request

    def cancel(self, request_id: int, principal: Principal, reason: Optional[str] = None) -> PaymentRequest:
        request = self.get(request_id)
        if request.user_id != principal.user_id and not principal.is_admin:
            raise ForbiddenError("You do not have access to this request")
        return self.transition(
            request_id,
            PaymentRequestStatus.cancelled,
            principal,
            cancellation_reason=(reason or "").strip() or "Cancelled by user",
        )
