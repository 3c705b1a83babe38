from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import BigInteger, Column, Index, text
from sqlmodel import SQLModel, Field


class ItemType(str, Enum):
    book = "book"
    bundle = "bundle"


class PurchaseStatus(str, Enum):
    pending_initiation = "pending_initiation"
    awaiting_payment = "awaiting_payment"
    pending_verification = "pending_verification"
    completed = "completed"
    rejected = "rejected"


ACTIVE_PURCHASE_STATUSES = (
    PurchaseStatus.pending_initiation,
    PurchaseStatus.awaiting_payment,
    PurchaseStatus.pending_verification,
)
TERMINAL_PURCHASE_STATUSES = (PurchaseStatus.completed, PurchaseStatus.rejected)

_ACTIVE_SQL = text(
    "status IN ('pending_initiation', 'awaiting_payment', 'pending_verification')"
)


class Purchase(SQLModel, table=True):
    __tablename__ = "purchases"
    __table_args__ = (
        # at most one in-flight purchase per (user, item)
        Index(
            "uq_purchases_active_item",
            "user_id", "item_type", "item_id",
            unique=True,
            postgresql_where=_ACTIVE_SQL,
            sqlite_where=_ACTIVE_SQL,
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)

    user_id: int = Field(foreign_key="user.id", index=True)
    item_type: ItemType
    item_id: int = Field(index=True)

    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="ETB", max_length=3)
    transaction_reference: str = Field(unique=True, index=True)

    status: PurchaseStatus = Field(default=PurchaseStatus.pending_initiation, index=True)

    initiation_token: str = Field(unique=True, index=True)
    payment_provider_id: Optional[str] = Field(default=None, index=True)
    transaction_id: Optional[str] = None
    claimed_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)

    telegram_chat_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    telegram_user_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    reviewer_notes: Optional[str] = None
    reviewed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    reviewed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PURCHASE_STATUSES
