"""Gateway order creation with the payment-plan policy checks."""

import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app import config, fees, locks, models
from app.errors import FeeUnavailable, FreeCourse, InvalidAmount, NotLocked, NotNextPeriod
from app.gateway import GatewayOrder, PaymentGateway
from app.schedule import final_amount, next_period, period_amount
from app.schemas import CreateOrderIn, PaymentType

logger = logging.getLogger(__name__)


def enrollment_transactions(db: Session, enrollment_id: str):
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.enrollment_id == enrollment_id, models.Transaction.status == "verified")
        .all()
    )


def paid_periods(txns) -> set:
    return {t.period_index for t in txns if t.payment_type == PaymentType.INSTALLMENT.value and t.period_index}


def _fee_terms(db: Session, data: CreateOrderIn) -> Tuple[int, float, Optional[int]]:
    """Original fee, discount and duration the order is checked against.

    Only server-side records count: the enrollment's fee row, an earlier
    transaction for the same course, or the registration-wide row when this
    is the registration's only locked enrollment.
    """
    try:
        fee = fees.get_course_fee(db, data.registration_number, data.enrollment_id)
        return fee.total_fees, fee.discount_percentage, fee.duration
    except FeeUnavailable:
        pass

    if data.course_name:
        prior = (
            db.query(models.Transaction)
            .filter(
                models.Transaction.registration_number == data.registration_number,
                models.Transaction.course_name == data.course_name,
            )
            .order_by(models.Transaction.created_at.desc())
            .first()
        )
        if prior is not None:
            return prior.original_fees, prior.discount_percentage, None

    only_lock = locks.find_registration_lock(db, data.registration_number)
    if only_lock is not None and only_lock.enrollment_id == data.enrollment_id:
        fee = fees.get_course_fee(db, data.registration_number)
        if fee.enrollment_id in (None, data.enrollment_id):
            return fee.total_fees, fee.discount_percentage, fee.duration

    raise FeeUnavailable(
        f"No fee information for registration {data.registration_number} enrollment {data.enrollment_id}"
    )


def _plan_length(txns, data: CreateOrderIn, duration: Optional[int]) -> int:
    """Installment count, fixed by the first paid installment once there is one."""
    paid = [t.period_count for t in txns if t.payment_type == PaymentType.INSTALLMENT.value and t.period_count]
    if paid:
        period_count = paid[0]
        requested = data.emi_duration or data.course_duration
        if requested and requested != period_count:
            raise InvalidAmount(f"This enrollment is on a {period_count}-month plan, not {requested}")
        return period_count
    return duration or data.emi_duration or data.course_duration or 1


def create_order(db: Session, gateway: PaymentGateway, data: CreateOrderIn) -> Tuple[models.PaymentOrder, GatewayOrder]:
    if fees.is_free_course(data.course_name):
        raise FreeCourse()

    lock = locks.get_lock(db, data.enrollment_id)
    if lock is None:
        raise NotLocked()
    if lock.payment_type != data.payment_type.value:
        raise NotLocked(f"This enrollment is locked for '{lock.payment_type}' payments")

    if data.amount <= 0:
        raise InvalidAmount("Payment amount must be greater than zero")

    original_fees, discount, duration = _fee_terms(db, data)
    total = final_amount(original_fees, discount)
    txns = enrollment_transactions(db, data.enrollment_id)

    period_index = period_count = None
    if data.payment_type is PaymentType.FULL:
        if any(t.payment_type == PaymentType.FULL.value for t in txns):
            raise NotNextPeriod("Full payment is already completed for this enrollment")
        if data.amount != total:
            raise InvalidAmount(f"Full payment must be {total}, got {data.amount}")
    else:
        period_count = _plan_length(txns, data, duration)
        period_index = data.current_emi
        expected_period = next_period(paid_periods(txns))
        if expected_period > period_count:
            raise NotNextPeriod("All installments are already paid")
        if period_index != expected_period:
            raise NotNextPeriod(f"Installment {expected_period} is due next, not {period_index}")
        expected_amount = period_amount(total, period_count, period_index)
        if expected_amount <= 0 or data.amount != expected_amount:
            raise InvalidAmount(f"Installment {period_index} must be {expected_amount}, got {data.amount}")

    gateway_order = gateway.create_order(
        data.amount,
        config.PAYMENT_CURRENCY,
        {
            "registration_number": data.registration_number,
            "enrollment_id": data.enrollment_id,
            "payment_type": data.payment_type.value,
            "current_emi": period_index,
        },
    )

    order = models.PaymentOrder(
        order_id=gateway_order.order_id,
        registration_number=data.registration_number,
        enrollment_id=data.enrollment_id,
        course_name=data.course_name,
        payment_type=data.payment_type.value,
        period_index=period_index,
        period_count=period_count,
        amount=data.amount,
        original_fees=original_fees,
        discount_percentage=discount,
        currency=gateway_order.currency,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info(
        "Created order %s enrollment=%s type=%s period=%s amount=%s",
        order.order_id, order.enrollment_id, order.payment_type, period_index, order.amount,
    )
    return order, gateway_order
