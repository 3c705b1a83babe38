import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from bookpay.dependencies.auth import Principal, require_admin
from bookpay.dependencies.services import get_fulfillment, get_workflow
from bookpay.errors import ConfigurationError, DependencyError
from bookpay.models.manual_payment import SubmissionStatus
from bookpay.schemas.purchase_schemas import (
    CancelRequest,
    SubmissionRead,
    TransitionResponse,
    VerifyRequest,
    purchase_summary,
)
from bookpay.services.fulfillment import FulfillmentDispatcher
from bookpay.services.purchase_event_service import list_purchase_events
from bookpay.services.purchase_workflow import PurchaseWorkflow
from bookpay.services.receipt_storage import ReceiptStorage, get_receipt_storage

logger = logging.getLogger(__name__)

router = APIRouter()


def _submission_with_urls(submission, storage: ReceiptStorage) -> dict:
    data = SubmissionRead.model_validate(submission).model_dump(mode="json")
    try:
        data["receipt_urls"] = [storage.get_signed_url(path) for path in submission.receipt_paths]
    except (ConfigurationError, DependencyError) as e:
        logger.warning(f"Receipt links unavailable for submission {submission.id}: {e.detail}")
    return data


# -------- PURCHASES --------

@router.get("/purchases/pending")
def list_pending(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return workflow.store.list_pending(page=page, limit=limit, serialize=purchase_summary)


@router.get("/purchases/{purchase_id}")
def purchase_detail(
    purchase_id: str,
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
    storage: ReceiptStorage = Depends(get_receipt_storage),
):
    purchase = workflow.store.get_by_id(purchase_id)
    data = purchase_summary(purchase)
    data["item_title"] = workflow.item_title(purchase)
    data["telegram_chat_id"] = purchase.telegram_chat_id
    data["telegram_user_id"] = purchase.telegram_user_id

    return {
        "purchase": data,
        "submissions": [
            _submission_with_urls(s, storage) for s in workflow.submissions_for(purchase.id)
        ],
        "timeline": [
            {
                "event_type": e.event_type,
                "label": e.label,
                "meta": e.meta,
                "created_by": e.created_by,
                "created_at": e.created_at,
            }
            for e in list_purchase_events(workflow.session, purchase.id)
        ],
    }


@router.post("/purchases/{purchase_id}/verify", response_model=TransitionResponse)
def verify_purchase(
    purchase_id: str,
    data: VerifyRequest,
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    result = workflow.admin_verify(purchase_id, admin, data.approve, data.notes)
    if not result.changed:
        message = f"Purchase already {result.purchase.status.value}"
    else:
        message = "Payment approved" if data.approve else "Payment rejected"
    return {"message": message, "changed": result.changed, "purchase": result.purchase}


@router.post("/purchases/{purchase_id}/cancel", response_model=TransitionResponse)
def cancel_purchase(
    purchase_id: str,
    data: CancelRequest,
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    result = workflow.cancel_purchase(purchase_id, admin, data.reason or "Cancelled by admin")
    return {"message": "Purchase cancelled", "changed": result.changed, "purchase": result.purchase}


# -------- SUBMISSIONS --------

@router.get("/submissions")
def list_submissions(
    status: Optional[SubmissionStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    return workflow.list_submissions(status=status, page=page, limit=limit)


@router.post("/submissions/{submission_id}/review", response_model=TransitionResponse)
def review_submission(
    submission_id: int,
    data: VerifyRequest,
    admin: Principal = Depends(require_admin),
    workflow: PurchaseWorkflow = Depends(get_workflow),
):
    result = workflow.review_submission(submission_id, admin, data.approve, data.notes)
    return {
        "message": "Submission approved" if data.approve else "Submission rejected",
        "changed": result.changed,
        "purchase": result.purchase,
    }


# -------- FULFILLMENT --------

@router.get("/fulfillment-issues")
def list_fulfillment_issues(
    status: Optional[str] = Query("open"),
    admin: Principal = Depends(require_admin),
    fulfillment: FulfillmentDispatcher = Depends(get_fulfillment),
):
    return fulfillment.list_issues(status)


@router.post("/fulfillment-issues/{issue_id}/retry")
def retry_fulfillment_issue(
    issue_id: int,
    admin: Principal = Depends(require_admin),
    fulfillment: FulfillmentDispatcher = Depends(get_fulfillment),
):
    issue = fulfillment.retry_issue(issue_id)
    logger.info(f"Fulfillment issue {issue_id} retried by {admin.actor}")
    return {"message": "Access granted", "issue": issue}
