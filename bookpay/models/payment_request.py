from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field

from bookpay.models.purchase import ItemType


class PaymentRequestStatus(str, Enum):
    pending = "pending"
    contacted = "contacted"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"


ALLOWED_REQUEST_TRANSITIONS = {
    PaymentRequestStatus.pending: [
        PaymentRequestStatus.contacted,
        PaymentRequestStatus.rejected,
        PaymentRequestStatus.cancelled,
    ],
    PaymentRequestStatus.contacted: [
        PaymentRequestStatus.approved,
        PaymentRequestStatus.rejected,
        PaymentRequestStatus.cancelled,
    ],
    PaymentRequestStatus.approved: [PaymentRequestStatus.completed],
    PaymentRequestStatus.rejected: [],
    PaymentRequestStatus.completed: [],
    PaymentRequestStatus.cancelled: [],
}

_OPEN_SQL = text("status IN ('pending', 'contacted')")


class PaymentRequest(SQLModel, table=True):
    """Contact-based purchase: the user asks an admin to process the sale by hand."""

    __tablename__ = "payment_requests"
    __table_args__ = (
        Index(
            "uq_payment_requests_open_item",
            "user_id", "item_type", "item_id",
            unique=True,
            postgresql_where=_OPEN_SQL,
            sqlite_where=_OPEN_SQL,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    item_type: ItemType
    item_id: int

    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="ETB", max_length=3)
    status: PaymentRequestStatus = Field(default=PaymentRequestStatus.pending, index=True)

    preferred_contact_method: Optional[str] = None
    user_message: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    contacted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
