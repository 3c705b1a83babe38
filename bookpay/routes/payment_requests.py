from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from bookpay.dependencies.auth import Principal, require_admin, require_user
from bookpay.dependencies.services import get_payment_requests
from bookpay.models.payment_request import PaymentRequestStatus
from bookpay.schemas.payment_request_schemas import (
    PaymentRequestCancel,
    PaymentRequestCreate,
    PaymentRequestRead,
    PaymentRequestTransition,
)
from bookpay.services.payment_request_service import PaymentRequestService

router = APIRouter()
admin_router = APIRouter()


# -------- USER --------

@router.post("", response_model=PaymentRequestRead, status_code=status.HTTP_201_CREATED)
def create_request(
    data: PaymentRequestCreate,
    principal: Principal = Depends(require_user),
    service: PaymentRequestService = Depends(get_payment_requests),
):
    return service.create(
        principal,
        data.item_type,
        data.item_id,
        preferred_contact_method=data.preferred_contact_method,
        user_message=data.user_message,
    )


@router.get("", response_model=List[PaymentRequestRead])
def my_requests(
    principal: Principal = Depends(require_user),
    service: PaymentRequestService = Depends(get_payment_requests),
):
    return service.list_for_user(principal.user_id)


@router.post("/{request_id}/cancel", response_model=PaymentRequestRead)
def cancel_request(
    request_id: int,
    data: PaymentRequestCancel,
    principal: Principal = Depends(require_user),
    service: PaymentRequestService = Depends(get_payment_requests),
):
    return service.cancel(request_id, principal, data.reason)


# -------- ADMIN --------

@admin_router.get("")
def list_requests(
    status: Optional[PaymentRequestStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: Principal = Depends(require_admin),
    service: PaymentRequestService = Depends(get_payment_requests),
):
    return service.list_by_status(
        status,
        page=page,
        limit=limit,
        serialize=PaymentRequestRead.model_validate,
    )


@admin_router.post("/{request_id}/status", response_model=PaymentRequestRead)
def update_request_status(
    request_id: int,
    data: PaymentRequestTransition,
    admin: Principal = Depends(require_admin),
    service: PaymentRequestService = Depends(get_payment_requests),
):
    return service.transition(request_id, data.status, admin, admin_notes=data.admin_notes)
