from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime


class PaymentType(str, Enum):
    FULL = "full"
    INSTALLMENT = "emi"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value.strip().lower() in {"installment", "emi"}:
            return cls.INSTALLMENT
        if isinstance(value, str) and value.strip().lower() == "full":
            return cls.FULL
        return None


class CourseFeeIn(BaseModel):
    registration_number: str
    enrollment_id: Optional[str] = None
    course_name: str
    total_fees: int = 0
    discount_percentage: float = 0.0
    duration: Optional[int] = None


class CourseFeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    registration_number: str
    enrollment_id: Optional[str] = None
    course_name: str
    total_fees: int
    discount_percentage: float
    final_fees: int
    duration: Optional[int] = None


class PaymentLockIn(BaseModel):
    register_number: str
    payment_type: PaymentType
    enrollment_id: Optional[str] = None


class PaymentLockOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    registration_number: str
    enrollment_id: str
    payment_type: PaymentType
    locked_at: Optional[datetime] = None


class PaymentLockStatus(BaseModel):
    success: bool
    data: Optional[PaymentLockOut] = None


class CreateOrderIn(BaseModel):
    amount: int
    registration_number: str
    enrollment_id: str
    payment_type: PaymentType
    course_name: Optional[str] = None
    course_duration: Optional[int] = None
    original_fees: int = 0
    discount_percentage: float = 0.0
    final_fees: Optional[int] = None
    emi_duration: Optional[int] = None
    current_emi: Optional[int] = None
    student_name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


class OrderOut(BaseModel):
    id: str
    amount: int = Field(description="Amount in the smallest currency unit (paise)")
    currency: str


class CreateOrderOut(BaseModel):
    success: bool = True
    order: OrderOut
    key: str


class VerifyIn(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

    @field_validator("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    order_id: str
    registration_number: str
    enrollment_id: str
    course_name: Optional[str] = None
    payment_type: PaymentType
    period_index: Optional[int] = None
    period_count: Optional[int] = None
    amount: int
    original_fees: int = 0
    discount_percentage: float = 0.0
    status: str
    next_due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class VerifyOut(BaseModel):
    success: bool = True
    transaction: TransactionOut


class PaymentStatusOut(BaseModel):
    success: bool = True
    verified: bool
    transaction: Optional[TransactionOut] = None


class TransactionsOut(BaseModel):
    transactions: List[TransactionOut]


class EnrollmentEvent(BaseModel):
    type: str
    payload: Dict[str, Any] = {}
