from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from bookpay.models.manual_payment import SubmissionStatus
from bookpay.models.purchase import ItemType, Purchase, PurchaseStatus


class PurchaseCreate(BaseModel):
    item_type: str
    item_id: int


class TransactionSubmit(BaseModel):
    transaction_id: str
    amount: Optional[Decimal] = None


class ProofSubmit(BaseModel):
    receipt_paths: List[str]
    amount: Optional[Decimal] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class VerifyRequest(BaseModel):
    approve: bool
    notes: Optional[str] = None


class PurchaseRead(BaseModel):
    id: str
    user_id: int
    item_type: ItemType
    item_id: int
    amount: Decimal
    currency: str
    transaction_reference: str
    status: PurchaseStatus
    transaction_id: Optional[str] = None
    claimed_amount: Optional[Decimal] = None
    payment_provider_id: Optional[str] = None
    reviewer_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PurchaseInitiated(PurchaseRead):
    initiation_token: str
    item_title: str
    telegram_link: Optional[str] = None


class TransitionResponse(BaseModel):
    message: str
    changed: bool
    purchase: PurchaseRead


class SubmissionRead(BaseModel):
    id: int
    purchase_id: str
    user_id: int
    receipt_paths: List[str]
    claimed_amount: Optional[str] = None
    status: SubmissionStatus
    admin_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    receipt_urls: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


# ---------- bot / gateway ----------

class TelegramDataUpdate(BaseModel):
    purchase_id: str
    telegram_chat_id: int
    telegram_user_id: Optional[int] = None


class BotProofSubmit(BaseModel):
    purchase_id: str
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None


class FinalizeRequest(BaseModel):
    purchase_id: str
    status: str


class PaymentWebhook(BaseModel):
    tx_ref: str
    status: str
    provider_ref: Optional[str] = None


def purchase_summary(purchase: Purchase) -> dict:
    return PurchaseRead.model_validate(purchase).model_dump(mode="json")
