from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status

from bookpay.config import Settings, get_settings
from bookpay.dependencies.auth import Principal, require_user
from bookpay.dependencies.services import get_workflow
from bookpay.schemas.purchase_schemas import (
    CancelRequest,
    ProofSubmit,
    PurchaseCreate,
    PurchaseInitiated,
    PurchaseRead,
    SubmissionRead,
    TransactionSubmit,
    TransitionResponse,
)
from bookpay.services.purchase_workflow import PurchaseWorkflow
from bookpay.services.receipt_storage import ReceiptStorage, get_receipt_storage

router = APIRouter()


@router.post("", response_model=PurchaseInitiated, status_code=status.HTTP_201_CREATED)
def initiate_purchase(
    data: PurchaseCreate,
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
    settings: Settings = Depends(get_settings),
):
    purchase = workflow.initiate_purchase(principal, data.item_type, data.item_id)

    telegram_link = None
    if settings.telegram_bot_username:
        telegram_link = f"https://t.me/{settings.telegram_bot_username}?start={purchase.initiation_token}"

    return PurchaseInitiated(
        **PurchaseRead.model_validate(purchase).model_dump(),
        initiation_token=purchase.initiation_token,
        item_title=workflow.item_title(purchase),
        telegram_link=telegram_link,
    )


@router.get("", response_model=List[PurchaseRead])
def my_purchases(
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return workflow.store.list_for_user(principal.user_id)


@router.get("/{purchase_id}", response_model=PurchaseRead)
def get_purchase(
    purchase_id: str,
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return workflow.get_for_principal(purchase_id, principal)


@router.post("/{purchase_id}/transaction", response_model=TransitionResponse)
def submit_transaction(
    purchase_id: str,
    data: TransactionSubmit,
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    result = workflow.submit_transaction_id(purchase_id, principal, data.transaction_id, data.amount)
    return {
        "message": "Transaction submitted for verification" if result.changed else "Already submitted",
        "changed": result.changed,
        "purchase": result.purchase,
    }


@router.post("/{purchase_id}/receipts", status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    purchase_id: str,
    file: UploadFile = File(...),
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
    storage: ReceiptStorage = Depends(get_receipt_storage),
):
    purchase = workflow.get_for_principal(purchase_id, principal)
    contents = await file.read()
    key = storage.upload_receipt(contents, file.content_type, purchase.id, file.filename)
    return {"path": key, "size": len(contents)}


@router.post("/{purchase_id}/proof", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
def submit_proof(
    purchase_id: str,
    data: ProofSubmit,
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return workflow.submit_manual_proof(purchase_id, principal, data.receipt_paths, data.amount)


@router.post("/{purchase_id}/cancel", response_model=TransitionResponse)
def cancel_purchase(
    purchase_id: str,
    data: CancelRequest,
    principal: Principal = Depends(require_user),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    result = workflow.cancel_purchase(purchase_id, principal, data.reason)
    return {"message": "Purchase cancelled", "changed": result.changed, "purchase": result.purchase}
