from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class SubmissionStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ManualPaymentSubmission(SQLModel, table=True):
    """Receipt evidence for a purchase. Append-only; only the status moves."""

    __tablename__ = "manual_payment_submissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_id: str = Field(foreign_key="purchases.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    receipt_paths: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    claimed_amount: Optional[str] = None

    status: SubmissionStatus = Field(default=SubmissionStatus.pending, index=True)
    admin_notes: Optional[str] = None
    reviewed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    reviewed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
