"""
Persistence for payment records.

All status transitions go through a conditional update keyed on the current
status being "pending". Whoever applies it first wins; a caller that loses
gets the stored record back with applied=False and must treat that as a no-op.
"""
import asyncio
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import InternalError
from app.core.supabase import db
from app.schemas.payment import HistoryFilters, PaymentOrder, PaymentStats, PaymentStatus

logger = logging.getLogger(__name__)

Transition = Tuple[Optional[PaymentOrder], bool]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


class OrderStore(ABC):

    @abstractmethod
    async def create(self, order: PaymentOrder) -> PaymentOrder:
        ...

    @abstractmethod
    async def find_by_external_order_id(self, order_id: str) -> Optional[PaymentOrder]:
        ...

    @abstractmethod
    async def find_pending_for_user(self, order_id: str, user_id: str) -> Optional[PaymentOrder]:
        ...

    @abstractmethod
    async def _transition(self, order_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> Transition:
        """Apply `changes` only if the record is pending (and owned by user_id, when given)."""

    @abstractmethod
    async def record_webhook_event(self, order_id: str, event_id: str) -> Optional[PaymentOrder]:
        ...

    @abstractmethod
    async def paginated_query(self, filters: HistoryFilters, page: int, page_size: int) -> Tuple[List[PaymentOrder], int]:
        ...

    @abstractmethod
    async def aggregate_stats(self, user_id: Optional[str] = None) -> PaymentStats:
        ...

    async def update_to_completed(self, record: PaymentOrder, payment_id: str, signature: Optional[str]) -> Transition:
        return await self._transition(record.razorpay_order_id, {
            "status": PaymentStatus.COMPLETED.value,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
        })

    async def update_to_failed(self, record: PaymentOrder, reason: str) -> Transition:
        return await self._transition(record.razorpay_order_id, {
            "status": PaymentStatus.FAILED.value,
            "failure_reason": reason,
        })

    async def update_to_cancelled(self, record: PaymentOrder, user_id: Optional[str] = None) -> Transition:
        return await self._transition(
            record.razorpay_order_id,
            {"status": PaymentStatus.CANCELLED.value},
            user_id=user_id,
        )


def _accumulate(stats: PaymentStats, amount: int, status: str) -> None:
    stats.totalPayments += 1
    stats.totalAmount += amount
    if status == PaymentStatus.COMPLETED.value:
        stats.completedPayments += 1
        stats.completedAmount += amount
    elif status == PaymentStatus.FAILED.value:
        stats.failedPayments += 1
    elif status == PaymentStatus.PENDING.value:
        stats.pendingPayments += 1


class InMemoryOrderStore(OrderStore):
    """Process-local store. One lock serialises every read and write."""

    def __init__(self):
        self._records: Dict[str, PaymentOrder] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: PaymentOrder) -> PaymentOrder:
        async with self._lock:
            if order.razorpay_order_id in self._records:
                raise InternalError(f"Duplicate order id {order.razorpay_order_id}")
            self._records[order.razorpay_order_id] = order.model_copy(deep=True)
            return order.model_copy(deep=True)

    async def find_by_external_order_id(self, order_id: str) -> Optional[PaymentOrder]:
        async with self._lock:
            record = self._records.get(order_id)
            return record.model_copy(deep=True) if record else None

    async def find_pending_for_user(self, order_id: str, user_id: str) -> Optional[PaymentOrder]:
        async with self._lock:
            record = self._records.get(order_id)
            if record and record.user_id == user_id and record.status == PaymentStatus.PENDING:
                return record.model_copy(deep=True)
            return None

    async def _transition(self, order_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> Transition:
        async with self._lock:
            record = self._records.get(order_id)
            if record is None:
                return None, False
            if record.status != PaymentStatus.PENDING or (user_id is not None and record.user_id != user_id):
                return record.model_copy(deep=True), False
            updated = record.model_copy(update={**changes, "status": PaymentStatus(changes["status"]), "updated_at": utcnow()})
            self._records[order_id] = updated
            return updated.model_copy(deep=True), True

    async def record_webhook_event(self, order_id: str, event_id: str) -> Optional[PaymentOrder]:
        async with self._lock:
            record = self._records.get(order_id)
            if record is None:
                return None
            updated = record.model_copy(update={"webhook_event_id": event_id, "updated_at": utcnow()})
            self._records[order_id] = updated
            return updated.model_copy(deep=True)

    @staticmethod
    def _matches(record: PaymentOrder, filters: HistoryFilters) -> bool:
        if filters.user_id and record.user_id != filters.user_id:
            return False
        if filters.status and record.status != filters.status:
            return False
        if filters.plan_type and record.plan_type != filters.plan_type:
            return False
        if filters.start_date and record.created_at < filters.start_date:
            return False
        if filters.end_date and record.created_at > filters.end_date:
            return False
        if filters.min_amount is not None and record.amount < filters.min_amount:
            return False
        if filters.max_amount is not None and record.amount > filters.max_amount:
            return False
        return True

    async def paginated_query(self, filters: HistoryFilters, page: int, page_size: int) -> Tuple[List[PaymentOrder], int]:
        async with self._lock:
            matching = [r for r in self._records.values() if self._matches(r, filters)]
        matching.sort(key=lambda r: r.created_at, reverse=True)
        start = (page - 1) * page_size
        return [r.model_copy(deep=True) for r in matching[start:start + page_size]], len(matching)

    async def aggregate_stats(self, user_id: Optional[str] = None) -> PaymentStats:
        stats = PaymentStats()
        async with self._lock:
            for record in self._records.values():
                if user_id is None or record.user_id == user_id:
                    _accumulate(stats, record.amount, record.status.value)
        return stats


class SupabaseOrderStore(OrderStore):
    """
    Payments table in Supabase (PostgREST).

    Conditional transitions are a single PATCH filtered on status=pending;
    PostgREST returns only the rows it changed, so an empty result means
    another writer already finalised the record.
    """

    STATS_CHUNK = 1000

    def __init__(self, table: str = None):
        self.table = table or settings.PAYMENTS_TABLE

    async def _client(self):
        return await db.get_service_client()

    @staticmethod
    def _row(order: PaymentOrder) -> Dict[str, Any]:
        return order.model_dump(mode="json", exclude={"formatted_amount"})

    async def create(self, order: PaymentOrder) -> PaymentOrder:
        supabase = await self._client()
        try:
            result = await supabase.table(self.table).insert(self._row(order)).execute()
        except Exception as e:
            logger.error(f"Failed to insert payment record {order.razorpay_order_id}: {e}")
            raise InternalError(f"Could not save payment record: {e}")
        if not result.data:
            raise InternalError("Payment record insert returned no data")
        return PaymentOrder.model_validate(result.data[0])

    async def find_by_external_order_id(self, order_id: str) -> Optional[PaymentOrder]:
        supabase = await self._client()
        try:
            result = await supabase.table(self.table).select("*").eq("razorpay_order_id", order_id).execute()
        except Exception as e:
            logger.error(f"Failed to load payment record {order_id}: {e}")
            raise InternalError(f"Could not load payment record: {e}")
        if result.data:
            return PaymentOrder.model_validate(result.data[0])
        return None

    async def find_pending_for_user(self, order_id: str, user_id: str) -> Optional[PaymentOrder]:
        supabase = await self._client()
        try:
            result = await (
                supabase.table(self.table).select("*")
                .eq("razorpay_order_id", order_id)
                .eq("user_id", user_id)
                .eq("status", PaymentStatus.PENDING.value)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to load pending payment {order_id}: {e}")
            raise InternalError(f"Could not load payment record: {e}")
        if result.data:
            return PaymentOrder.model_validate(result.data[0])
        return None

    async def _transition(self, order_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> Transition:
        supabase = await self._client()
        payload = {**changes, "updated_at": utcnow().isoformat()}
        try:
            query = (
                supabase.table(self.table).update(payload)
                .eq("razorpay_order_id", order_id)
                .eq("status", PaymentStatus.PENDING.value)
            )
            if user_id is not None:
                query = query.eq("user_id", user_id)
            result = await query.execute()
        except Exception as e:
            logger.error(f"Failed to update payment {order_id} to {changes.get('status')}: {e}")
            raise InternalError(f"Could not update payment record: {e}")
        if result.data:
            return PaymentOrder.model_validate(result.data[0]), True
        return await self.find_by_external_order_id(order_id), False

    async def record_webhook_event(self, order_id: str, event_id: str) -> Optional[PaymentOrder]:
        supabase = await self._client()
        try:
            result = await (
                supabase.table(self.table)
                .update({"webhook_event_id": event_id, "updated_at": utcnow().isoformat()})
                .eq("razorpay_order_id", order_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to record webhook event on {order_id}: {e}")
            raise InternalError(f"Could not update payment record: {e}")
        if result.data:
            return PaymentOrder.model_validate(result.data[0])
        return None

    @staticmethod
    def _apply_filters(query, filters: HistoryFilters):
        if filters.user_id:
            query = query.eq("user_id", filters.user_id)
        if filters.status:
            query = query.eq("status", filters.status.value)
        if filters.plan_type:
            query = query.eq("plan_type", filters.plan_type)
        if filters.start_date:
            query = query.gte("created_at", filters.start_date.isoformat())
        if filters.end_date:
            query = query.lte("created_at", filters.end_date.isoformat())
        if filters.min_amount is not None:
            query = query.gte("amount", filters.min_amount)
        if filters.max_amount is not None:
            query = query.lte("amount", filters.max_amount)
        return query

    async def paginated_query(self, filters: HistoryFilters, page: int, page_size: int) -> Tuple[List[PaymentOrder], int]:
        supabase = await self._client()
        start = (page - 1) * page_size
        try:
            query = self._apply_filters(supabase.table(self.table).select("*", count="exact"), filters)
            result = await query.order("created_at", desc=True).range(start, start + page_size - 1).execute()
        except Exception as e:
            logger.error(f"Failed to query payment history: {e}")
            raise InternalError(f"Could not load payment history: {e}")
        records = [PaymentOrder.model_validate(row) for row in result.data or []]
        return records, result.count or 0

    async def aggregate_stats(self, user_id: Optional[str] = None) -> PaymentStats:
        supabase = await self._client()
        stats = PaymentStats()
        offset = 0
        try:
            while True:
                query = supabase.table(self.table).select("amount,status")
                if user_id:
                    query = query.eq("user_id", user_id)
                result = await query.order("id").range(offset, offset + self.STATS_CHUNK - 1).execute()
                rows = result.data or []
                for row in rows:
                    _accumulate(stats, int(row["amount"]), row["status"])
                if len(rows) < self.STATS_CHUNK:
                    break
                offset += self.STATS_CHUNK
        except Exception as e:
            logger.error(f"Failed to aggregate payment stats: {e}")
            raise InternalError(f"Could not load payment stats: {e}")
        return stats
