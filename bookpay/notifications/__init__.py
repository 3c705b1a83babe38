from .events import PurchaseEventType
from .dispatcher import Notifier, dispatch_purchase_event

__all__ = [
    "PurchaseEventType",
    "Notifier",
    "dispatch_purchase_event",
]
