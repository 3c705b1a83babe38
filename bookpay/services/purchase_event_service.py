from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from bookpay.models.purchase_event import PurchaseEvent


def log_purchase_event(
    session: Session,
    purchase_id: str,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
):
    """
    Append-only event log for the purchase timeline.
    Added to the session only; the caller's commit persists it.
    """

    event = PurchaseEvent(
        purchase_id=purchase_id,
        event_type=event_type,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=datetime.utcnow(),
    )

    session.add(event)
    return event


def list_purchase_events(session: Session, purchase_id: str) -> List[PurchaseEvent]:
    return list(session.exec(
        select(PurchaseEvent)
        .where(PurchaseEvent.purchase_id == purchase_id)
        .order_by(PurchaseEvent.created_at)
    ).all())
