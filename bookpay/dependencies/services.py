from fastapi import BackgroundTasks, Depends
from sqlmodel import Session

from bookpay.config import Settings, get_settings
from bookpay.database import get_session
from bookpay.notifications import Notifier
from bookpay.services.fulfillment import FulfillmentDispatcher
from bookpay.services.payment_request_service import PaymentRequestService
from bookpay.services.purchase_workflow import PurchaseWorkflow


def get_notifier(
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Notifier:
    return Notifier(session, settings, background_tasks)


def get_workflow(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
) -> PurchaseWorkflow:
    return PurchaseWorkflow(session, settings, notifier)


def get_fulfillment(
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
) -> FulfillmentDispatcher:
    return FulfillmentDispatcher(session, notifier)


def get_payment_requests(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentRequestService:
    return PaymentRequestService(session, settings, notifier)
