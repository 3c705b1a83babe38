from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from bookpay.models.payment_request import PaymentRequestStatus
from bookpay.models.purchase import ItemType


class PaymentRequestCreate(BaseModel):
    item_type: str
    item_id: int
    preferred_contact_method: Optional[str] = None
    user_message: Optional[str] = None


class PaymentRequestCancel(BaseModel):
    reason: Optional[str] = None


class PaymentRequestTransition(BaseModel):
    status: PaymentRequestStatus
    admin_notes: Optional[str] = None


class PaymentRequestRead(BaseModel):
    id: int
    user_id: int
    item_type: ItemType
    item_id: int
    amount: Decimal
    currency: str
    status: PaymentRequestStatus
    preferred_contact_method: Optional[str] = None
    user_message: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    contacted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
