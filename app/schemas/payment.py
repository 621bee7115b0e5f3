from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field, model_validator


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED})


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class PaymentOrder(BaseModel):
    """A payment record as stored in the payments table."""
    id: str
    user_id: str
    razorpay_order_id: str
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    # Minor currency unit (paise). Floats are rejected rather than rounded.
    amount: int = Field(ge=0, strict=True)
    currency: str = "INR"
    plan_type: str
    description: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    failure_reason: Optional[str] = None
    notes: Dict[str, str] = Field(default_factory=dict)
    webhook_event_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[int] = Field(default=None, ge=0)
    refund_status: Optional[RefundStatus] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @computed_field
    @property
    def formatted_amount(self) -> str:
        return f"{self.currency} {self.amount / 100:.2f}"


# Requests

class OrderCreateRequest(BaseModel):
    planType: str = Field(min_length=1)


class PaymentVerificationRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


class PaymentFailureRequest(BaseModel):
    orderId: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=500)


class HistoryFilters(BaseModel):
    user_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    plan_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[int] = Field(default=None, ge=0)
    max_amount: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_ranges(self) -> "HistoryFilters":
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        if self.min_amount is not None and self.max_amount is not None and self.max_amount <= self.min_amount:
            raise ValueError("Maximum amount must be greater than minimum amount")
        return self


# Responses

class CheckoutUser(BaseModel):
    name: str
    email: Optional[str] = None


class OrderResponse(BaseModel):
    orderId: str
    amount: int
    currency: str
    planType: str
    description: str
    gatewayKeyId: str
    user: CheckoutUser


class VerificationResponse(BaseModel):
    success: bool = True
    paymentId: str
    orderId: str
    planType: str
    amount: int
    currency: str


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalItems: int
    itemsPerPage: int


class PaymentHistory(BaseModel):
    records: List[PaymentOrder]
    pagination: Pagination


class PaymentStats(BaseModel):
    totalPayments: int = 0
    totalAmount: int = 0
    completedPayments: int = 0
    completedAmount: int = 0
    failedPayments: int = 0
    pendingPayments: int = 0


class BillingUser(BaseModel):
    isPremium: bool
    email: Optional[str] = None
    name: str


class BillingStatus(BaseModel):
    user: BillingUser
    recentPayments: List[PaymentOrder]
    stats: PaymentStats
