"""Persistence for purchases.

Status changes only ever go through ``update_status``: a single
``UPDATE ... WHERE id = :id AND status IN (:expected)`` whose affected-row
count decides the winner when two requests race on the same purchase.
"""
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bookpay.config import Settings
from bookpay.errors import (
    ConflictError,
    DependencyError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from bookpay.models.purchase import (
    ACTIVE_PURCHASE_STATUSES,
    ItemType,
    Purchase,
    PurchaseStatus,
)
from bookpay.services.purchase_event_service import log_purchase_event
from bookpay.utils.pagination import paginate

logger = logging.getLogger(__name__)

REFERENCE_ATTEMPTS = 5

IMMUTABLE_FIELDS = frozenset({
    "id",
    "user_id",
    "item_type",
    "item_id",
    "amount",
    "currency",
    "transaction_reference",
    "initiation_token",
    "created_at",
})

StatusSet = Union[PurchaseStatus, Iterable[PurchaseStatus]]


def generate_transaction_reference(prefix: str) -> str:
    return f"{prefix}-{datetime.utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


def generate_initiation_token() -> str:
    return secrets.token_urlsafe(24)


def _as_tuple(statuses: StatusSet) -> tuple:
    if isinstance(statuses, PurchaseStatus):
        return (statuses,)
    return tuple(statuses)


class PurchaseStore:
    def __init__(self, session: Session, settings: Settings):
        self.session = session
        self.settings = settings

    # ---------- reads ----------

    def get_by_id(self, purchase_id: str) -> Purchase:
        purchase = self.session.get(Purchase, purchase_id, populate_existing=True)
        if not purchase:
            raise NotFoundError("Purchase not found")
        return purchase

    def get_by_token(self, initiation_token: str) -> Purchase:
        purchase = self.session.exec(
            select(Purchase).where(Purchase.initiation_token == initiation_token)
        ).first()
        if not purchase:
            raise NotFoundError("Invalid or expired token")
        return purchase

    def get_by_reference(self, transaction_reference: str) -> Purchase:
        purchase = self.session.exec(
            select(Purchase).where(Purchase.transaction_reference == transaction_reference)
        ).first()
        if not purchase:
            raise NotFoundError("Purchase not found")
        return purchase

    def find_active(self, user_id: int, item_type: ItemType, item_id: int) -> Optional[Purchase]:
        return self.session.exec(
            select(Purchase)
            .where(Purchase.user_id == user_id)
            .where(Purchase.item_type == item_type)
            .where(Purchase.item_id == item_id)
            .where(Purchase.status.in_(ACTIVE_PURCHASE_STATUSES))
        ).first()

    def find_completed(self, user_id: int, item_type: ItemType, item_id: int) -> Optional[Purchase]:
        return self.session.exec(
            select(Purchase)
            .where(Purchase.user_id == user_id)
            .where(Purchase.item_type == item_type)
            .where(Purchase.item_id == item_id)
            .where(Purchase.status == PurchaseStatus.completed)
        ).first()

    def list_for_user(self, user_id: int) -> List[Purchase]:
        return list(self.session.exec(
            select(Purchase)
            .where(Purchase.user_id == user_id)
            .order_by(Purchase.created_at.desc())
        ).all())

    def list_pending(self, page: int = 1, limit: int = 20, serialize=None) -> dict:
        """Verification queue, oldest first."""
        query = (
            select(Purchase)
            .where(Purchase.status == PurchaseStatus.pending_verification)
            .order_by(Purchase.created_at.asc(), Purchase.id.asc())
        )
        return paginate(session=self.session, query=query, page=page, limit=limit, serialize=serialize)

    # ---------- writes ----------

    def create(
        self,
        *,
        user_id: int,
        item_type: ItemType,
        item_id: int,
        amount: Decimal,
        status: PurchaseStatus = PurchaseStatus.pending_initiation,
        created_by: str = "system",
    ) -> Purchase:
        if amount is None or Decimal(amount) <= 0:
            raise ValidationError("Purchase amount must be greater than zero")

        if self.find_active(user_id, item_type, item_id):
            raise DuplicateError("You already have a pending purchase for this item")

        for attempt in range(1, REFERENCE_ATTEMPTS + 1):
            purchase = Purchase(
                user_id=user_id,
                item_type=item_type,
                item_id=item_id,
                amount=Decimal(amount),
                currency=self.settings.currency,
                status=status,
                transaction_reference=generate_transaction_reference(
                    self.settings.transaction_reference_prefix
                ),
                initiation_token=generate_initiation_token(),
            )
            self.session.add(purchase)

            try:
                self.session.flush()
                log_purchase_event(
                    self.session,
                    purchase.id,
                    status.value,
                    "Purchase created",
                    created_by=created_by,
                    meta={"amount": str(purchase.amount), "reference": purchase.transaction_reference},
                )
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                # a concurrent request may have created the same purchase first
                if self.find_active(user_id, item_type, item_id):
                    raise DuplicateError("You already have a pending purchase for this item")
                logger.warning(f"Transaction reference collision (attempt {attempt}), retrying")
                continue

            self.session.refresh(purchase)
            logger.info(
                f"Purchase {purchase.id} created for user {user_id} "
                f"({item_type.value} {item_id}, ref {purchase.transaction_reference})"
            )
            return purchase

        raise DependencyError("Could not allocate a unique transaction reference")

    def update_status(
        self,
        purchase_id: str,
        expected: StatusSet,
        new_status: Optional[PurchaseStatus],
        *,
        label: Optional[str] = None,
        actor: str = "system",
        meta: Optional[dict] = None,
        **fields,
    ) -> Purchase:
        """Apply the change only if the row is still in one of ``expected``.

        Raises ConflictError (with the current row) when it is not, and
        NotFoundError when the row does not exist. ``new_status=None`` updates
        fields without moving the status.
        """
        expected_statuses = _as_tuple(expected)

        frozen = IMMUTABLE_FIELDS.intersection(fields)
        if frozen:
            raise ValueError(f"Fields cannot be changed: {', '.join(sorted(frozen))}")

        values = dict(fields)
        if new_status is not None:
            values["status"] = new_status
        values["updated_at"] = datetime.utcnow()

        result = self.session.execute(
            update(Purchase)
            .where(Purchase.id == purchase_id)
            .where(Purchase.status.in_(expected_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            self.session.rollback()
            current = self.session.get(Purchase, purchase_id, populate_existing=True)
            if current is None:
                raise NotFoundError("Purchase not found")
            expected_text = ", ".join(s.value for s in expected_statuses)
            raise ConflictError(
                f"Purchase is {current.status.value}; expected {expected_text}",
                current=current,
            )

        if label:
            log_purchase_event(
                self.session,
                purchase_id,
                new_status.value if new_status else "updated",
                label,
                created_by=actor,
                meta=meta,
            )

        self.session.commit()
        return self.get_by_id(purchase_id)

    def update_fields(
        self,
        purchase_id: str,
        expected: StatusSet,
        *,
        label: Optional[str] = None,
        actor: str = "system",
        meta: Optional[dict] = None,
        **fields,
    ) -> Purchase:
        """Conditional write that leaves the status where it is."""
        return self.update_status(
            purchase_id, expected, None, label=label, actor=actor, meta=meta, **fields
        )
