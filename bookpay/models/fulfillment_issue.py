from datetime import datetime
from typing import List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from bookpay.models.purchase import ItemType


class FulfillmentIssue(SQLModel, table=True):
    """Reconciliation record for a paid item whose library grant did not go through."""

    id: Optional[int] = Field(default=None, primary_key=True)

    purchase_id: Optional[str] = Field(default=None, foreign_key="purchases.id", index=True)
    payment_request_id: Optional[int] = Field(default=None, foreign_key="payment_requests.id")

    user_id: int = Field(foreign_key="user.id")
    item_type: ItemType
    item_id: int

    failed_book_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    error: str
    status: str = Field(default="open", index=True)  # open | resolved
    attempts: int = Field(default=1)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
