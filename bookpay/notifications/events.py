from enum import Enum


class PurchaseEventType(str, Enum):
    PURCHASE_INITIATED = "purchase_initiated"
    PROOF_SUBMITTED = "proof_submitted"
    PURCHASE_COMPLETED = "purchase_completed"
    PURCHASE_REJECTED = "purchase_rejected"
    PURCHASE_CANCELLED = "purchase_cancelled"

    ACCESS_GRANTED = "access_granted"
    FULFILLMENT_FAILED = "fulfillment_failed"

    PAYMENT_REQUEST_CREATED = "payment_request_created"
    PAYMENT_REQUEST_UPDATED = "payment_request_updated"
