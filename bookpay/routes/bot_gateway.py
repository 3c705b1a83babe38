"""Endpoints for the Telegram bot and the payment gateway callback.

Every route here requires the shared bot secret. Redelivered callbacks for
unknown or already-final purchases are acknowledged with
``{"success": true, "processed": false}`` so the sender stops retrying.
"""
import logging

from fastapi import APIRouter, Depends, Query

from bookpay.dependencies.auth import Principal, PrincipalKind, Role, require_bot
from bookpay.dependencies.services import get_workflow
from bookpay.errors import ConflictError, NotFoundError
from bookpay.schemas.purchase_schemas import (
    BotProofSubmit,
    FinalizeRequest,
    PaymentWebhook,
    TelegramDataUpdate,
    purchase_summary,
)
from bookpay.services.purchase_workflow import PurchaseWorkflow

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()

PROVIDER_STATUS_MAP = {
    "success": "completed",
    "successful": "completed",
    "completed": "completed",
    "failed": "rejected",
    "rejected": "rejected",
    "cancelled": "rejected",
}


def _ack(purchase=None, processed=True, **extra):
    body = {"success": True, "processed": processed}
    if purchase is not None:
        body["data"] = purchase_summary(purchase)
    body.update(extra)
    return body


def _acknowledged(action: str, purchase_id: str, operation):
    """Run a bot operation; unknown or already-final purchases are acked, not failed."""
    try:
        result = operation()
    except NotFoundError:
        logger.warning(f"{action} for unknown purchase {purchase_id} acknowledged")
        return _ack(processed=False)
    except ConflictError as e:
        if e.current is not None and e.current.is_terminal:
            logger.info(f"{action} for {purchase_id} ignored; already {e.current.status.value}")
            return _ack(e.current, processed=False)
        raise
    return _ack(result.purchase, processed=result.changed)


def _finalize(workflow: PurchaseWorkflow, principal: Principal, purchase_id: str, status: str, provider_ref=None):
    return _acknowledged(
        "Finalize",
        purchase_id,
        lambda: workflow.finalize_purchase(purchase_id, status, principal, provider_ref=provider_ref),
    )


@router.get("/find-by-token")
def find_by_token(
    token: str = Query(...),
    principal: Principal = Depends(require_bot),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    purchase = workflow.find_by_token(token)
    data = purchase_summary(purchase)
    data["item_title"] = workflow.item_title(purchase)
    data["telegram_chat_id"] = purchase.telegram_chat_id
    return {"success": True, "data": data}


@router.post("/update-telegram-data")
def update_telegram_data(
    data: TelegramDataUpdate,
    principal: Principal = Depends(require_bot),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return _acknowledged(
        "Telegram link",
        data.purchase_id,
        lambda: workflow.attach_telegram_chat(
            data.purchase_id,
            data.telegram_chat_id,
            data.telegram_user_id,
            principal,
        ),
    )


@router.post("/submit-proof")
def submit_proof(
    data: BotProofSubmit,
    principal: Principal = Depends(require_bot),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    def relay():
        if not data.transaction_id:
            return workflow.mark_proof_received(data.purchase_id, principal)
        # the bot relays on behalf of the purchase owner
        purchase = workflow.store.get_by_id(data.purchase_id)
        owner = Principal(kind=PrincipalKind.user, user_id=purchase.user_id, role=Role.user)
        return workflow.submit_transaction_id(data.purchase_id, owner, data.transaction_id, data.amount)

    return _acknowledged("Proof", data.purchase_id, relay)


@router.post("/finalize")
def finalize(
    data: FinalizeRequest,
    principal: Principal = Depends(require_bot),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return _finalize(workflow, principal, data.purchase_id, data.status)


@webhook_router.post("/payment")
def payment_webhook(
    data: PaymentWebhook,
    principal: Principal = Depends(require_bot),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    status = PROVIDER_STATUS_MAP.get(data.status.strip().lower())
    if status is None:
        logger.info(f"Webhook status '{data.status}' for {data.tx_ref} is not final; ignored")
        return _ack(processed=False)

    try:
        purchase = workflow.store.get_by_reference(data.tx_ref)
    except NotFoundError:
        logger.warning(f"Webhook for unknown reference {data.tx_ref} acknowledged")
        return _ack(processed=False)

    return _finalize(workflow, principal, purchase.id, status, provider_ref=data.provider_ref)
