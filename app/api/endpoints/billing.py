import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import (
    get_current_active_user,
    get_current_admin,
    get_payment_service,
    get_webhook_service,
)
from app.core.config import settings
from app.core.exceptions import (
    AlreadyPremium,
    GatewayError,
    InvalidPlan,
    PendingNotFound,
    RecordNotFound,
    UserNotFound,
    VerificationError,
)
from app.core.security import TokenData
from app.schemas.common import APIResponse
from app.schemas.payment import (
    BillingStatus,
    HistoryFilters,
    OrderCreateRequest,
    OrderResponse,
    PaymentFailureRequest,
    PaymentHistory,
    PaymentOrder,
    PaymentStats,
    PaymentStatus,
    PaymentVerificationRequest,
    VerificationResponse,
)
from app.schemas.plan import Plan
from app.services.payment_service import PaymentService
from app.services.webhook_service import WebhookService

router = APIRouter()
logger = logging.getLogger(__name__)


def _build_filters(**values) -> HistoryFilters:
    try:
        return HistoryFilters(**values)
    except PydanticValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False, include_context=False, include_input=False))


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    x_razorpay_event_id: Optional[str] = Header(None),
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Handle Razorpay webhook events.

    The raw body is read before parsing so its signature can be checked.
    Processing errors are acknowledged with 200 so Razorpay does not retry.
    """
    body = await request.body()
    try:
        result = await service.process_webhook(body, x_razorpay_signature, x_razorpay_event_id)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.exception("Webhook processing error")
        return {"success": False, "error": str(e)}
    return {"success": True, "data": result}


@router.get("/plans", response_model=APIResponse[List[Plan]])
async def get_available_plans(
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    return APIResponse(data=service.list_plans())


@router.get("/status", response_model=APIResponse[BillingStatus])
async def get_billing_status(
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    try:
        return APIResponse(data=await service.billing_status(current_user.id))
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/history", response_model=APIResponse[PaymentHistory])
async def get_payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    filters = _build_filters(status=status_filter)
    page_size = min(limit, settings.HISTORY_MAX_PAGE_SIZE)
    return APIResponse(data=await service.history(current_user.id, filters, page, page_size))


@router.post("/upgrade", response_model=APIResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
async def create_upgrade_order(
    request: OrderCreateRequest,
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    """
    Create a Razorpay order for a premium upgrade.

    Returns the order id and checkout parameters for the client.
    """
    try:
        order = await service.create_order(current_user.id, request.planType)
        return APIResponse(data=order, message="Order created successfully")
    except InvalidPlan as e:
        raise HTTPException(status_code=400, detail=e.message)
    except AlreadyPremium as e:
        raise HTTPException(status_code=409, detail=e.message)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except GatewayError as e:
        logger.error(f"Failed to create order: {e.message}")
        raise HTTPException(status_code=502, detail=f"Failed to create order: {e.message}")


@router.post("/verify", response_model=APIResponse[VerificationResponse])
async def verify_payment(
    request: PaymentVerificationRequest,
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    try:
        result = await service.verify_payment(
            request.razorpay_order_id,
            request.razorpay_payment_id,
            request.razorpay_signature,
        )
        return APIResponse(data=result, message="Payment verified successfully. Premium features activated!")
    except (RecordNotFound, VerificationError) as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.post("/failure", response_model=APIResponse[PaymentOrder])
async def handle_payment_failure(
    request: PaymentFailureRequest,
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    try:
        payment = await service.handle_payment_failure(request.orderId, request.reason, user_id=current_user.id)
        return APIResponse(data=payment, message="Payment failure recorded")
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/cancel/{order_id}", response_model=APIResponse[PaymentOrder])
async def cancel_payment(
    order_id: str,
    current_user: TokenData = Depends(get_current_active_user),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    try:
        payment = await service.cancel_payment(order_id, current_user.id)
        return APIResponse(data=payment, message="Payment cancelled successfully")
    except PendingNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/admin/stats", response_model=APIResponse[PaymentStats])
async def get_payment_stats(
    admin: TokenData = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    return APIResponse(data=await service.stats())


@router.get("/admin/payments", response_model=APIResponse[PaymentHistory])
async def get_all_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None, alias="userId"),
    plan_type: Optional[str] = Query(None, alias="planType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    min_amount: Optional[int] = Query(None, alias="minAmount", ge=0),
    max_amount: Optional[int] = Query(None, alias="maxAmount", ge=0),
    admin: TokenData = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    filters = _build_filters(
        status=status_filter,
        plan_type=plan_type,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    page_size = min(limit, settings.ADMIN_MAX_PAGE_SIZE)
    return APIResponse(data=await service.history(user_id, filters, page, page_size))
