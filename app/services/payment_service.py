import logging
import time
import uuid
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import (
    AlreadyPremium,
    PendingNotFound,
    RecordNotFound,
    UserNotFound,
    VerificationFailed,
)
from app.core.signature import verify_payment_signature
from app.schemas.payment import (
    BillingStatus,
    BillingUser,
    CheckoutUser,
    HistoryFilters,
    OrderResponse,
    Pagination,
    PaymentHistory,
    PaymentOrder,
    PaymentStats,
    PaymentStatus,
    VerificationResponse,
)
from app.schemas.plan import Plan
from app.services.gateway import PaymentGateway
from app.services.order_store import OrderStore, total_pages, utcnow
from app.services.plan_catalog import PlanCatalog
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40
INVALID_SIGNATURE_REASON = "Invalid payment signature"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_receipt(user_id: str, now_ms: Optional[int] = None) -> str:
    """
    Short receipt reference for Razorpay (max 40 chars): the tail of the user
    id plus a base36 millisecond timestamp. Not meant to be unguessable.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    uid = str(user_id or "")[-8:]
    return f"r_{uid}_{_base36(now_ms)}"[:RECEIPT_MAX_LENGTH]


class PaymentService:
    """
    Order creation, client-side verification, failure/cancel bookkeeping and
    reporting for premium upgrades.

    Every status change goes through the store's conditional transition, so
    this service and WebhookService can act on the same order concurrently.
    """

    def __init__(
        self,
        orders: OrderStore,
        users: UserStore,
        gateway: PaymentGateway,
        catalog: Optional[PlanCatalog] = None,
        key_secret: Optional[str] = None,
    ):
        self.orders = orders
        self.users = users
        self.gateway = gateway
        self.catalog = catalog or PlanCatalog()
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET

    async def create_order(self, user_id: str, plan_type: str) -> OrderResponse:
        plan = self.catalog.lookup(plan_type)

        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFound()
        if user.is_premium:
            raise AlreadyPremium()

        notes = {
            "userId": str(user_id),
            "planType": str(plan_type),
            "userEmail": str(user.email or ""),
            "userName": user.full_name,
        }
        gateway_order = await self.gateway.create_order(
            amount=plan.amount,
            currency=plan.currency,
            receipt=generate_receipt(user_id),
            notes=notes,
        )

        now = utcnow()
        record = await self.orders.create(PaymentOrder(
            id=str(uuid.uuid4()),
            user_id=str(user_id),
            razorpay_order_id=gateway_order.external_order_id,
            amount=plan.amount,
            currency=plan.currency,
            plan_type=plan.planId,
            description=plan.description,
            status=PaymentStatus.PENDING,
            notes=notes,
            created_at=now,
            updated_at=now,
        ))
        logger.info(f"Created order {record.razorpay_order_id} for user {user_id} ({plan_type})")

        return OrderResponse(
            orderId=gateway_order.external_order_id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            planType=plan.planId,
            description=plan.description,
            gatewayKeyId=self.gateway.key_id,
            user=CheckoutUser(name=user.full_name, email=user.email),
        )

    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> VerificationResponse:
        record = await self.orders.find_by_external_order_id(order_id)
        if record is None:
            raise RecordNotFound()

        if not verify_payment_signature(order_id, payment_id, signature, self.key_secret):
            _, applied = await self.orders.update_to_failed(record, INVALID_SIGNATURE_REASON)
            if applied:
                logger.warning(f"Order {order_id} failed: invalid payment signature")
            raise VerificationFailed()

        updated, applied = await self.orders.update_to_completed(record, payment_id, signature)
        if applied:
            logger.info(f"Order {order_id} completed via verification (payment {payment_id})")
            # Only the caller whose transition applied grants premium.
            await self.users.set_premium(updated.user_id)
        elif updated.status != PaymentStatus.COMPLETED:
            logger.warning(f"Verification for order {order_id} ignored, order is already {updated.status.value}")
            raise VerificationFailed(f"Payment verification failed: order is {updated.status.value}")

        return VerificationResponse(
            success=True,
            paymentId=updated.razorpay_payment_id or payment_id,
            orderId=updated.razorpay_order_id,
            planType=updated.plan_type,
            amount=updated.amount,
            currency=updated.currency,
        )

    async def handle_payment_failure(self, order_id: str, reason: str, user_id: Optional[str] = None) -> PaymentOrder:
        record = await self.orders.find_by_external_order_id(order_id)
        # Another user's order is reported as missing.
        if record is None or (user_id is not None and record.user_id != str(user_id)):
            raise RecordNotFound()

        updated, applied = await self.orders.update_to_failed(record, reason)
        if applied:
            logger.info(f"Order {order_id} failed: {reason}")
        else:
            logger.info(f"Failure report for order {order_id} ignored, order is already {updated.status.value}")
        return updated

    async def cancel_payment(self, order_id: str, user_id: str) -> PaymentOrder:
        record = await self.orders.find_pending_for_user(order_id, user_id)
        if record is None:
            raise PendingNotFound()

        updated, applied = await self.orders.update_to_cancelled(record, user_id=user_id)
        if not applied:
            # Finalised by another request between the lookup and the update.
            raise PendingNotFound()
        logger.info(f"Order {order_id} cancelled by user {user_id}")
        return updated

    def list_plans(self) -> List[Plan]:
        return self.catalog.list_all()

    async def history(
        self,
        user_id: Optional[str],
        filters: Optional[HistoryFilters] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> PaymentHistory:
        filters = filters or HistoryFilters()
        if user_id:
            filters = filters.model_copy(update={"user_id": user_id})

        records, total = await self.orders.paginated_query(filters, page, page_size)
        return PaymentHistory(
            records=records,
            pagination=Pagination(
                currentPage=page,
                totalPages=total_pages(total, page_size),
                totalItems=total,
                itemsPerPage=page_size,
            ),
        )

    async def stats(self, user_id: Optional[str] = None) -> PaymentStats:
        return await self.orders.aggregate_stats(user_id)

    async def billing_status(self, user_id: str) -> BillingStatus:
        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFound()

        recent = await self.history(user_id, page=1, page_size=5)
        stats = await self.stats(user_id)
        return BillingStatus(
            user=BillingUser(isPremium=user.is_premium, email=user.email, name=user.full_name),
            recentPayments=recent.records,
            stats=stats,
        )
