"""Fee lookups (service side) and fee resolution (client side).

A registration may hold several enrollments with independent fee terms, so a
quote is scoped to one enrollment's course whenever more than one exists.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app import config, models
from app.errors import FeeUnavailable, PaymentError
from app.schedule import final_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeQuote:
    enrollment_id: Optional[str]
    course_name: Optional[str]
    original_fee: int
    discount_percentage: float
    final_amount: int
    duration: int
    is_free: bool = False

    @classmethod
    def build(cls, enrollment_id, course_name, original_fee, discount_percentage, duration, is_free=False):
        original_fee = int(original_fee or 0)
        discount_percentage = float(discount_percentage or 0)
        return cls(
            enrollment_id=enrollment_id,
            course_name=course_name,
            original_fee=original_fee,
            discount_percentage=discount_percentage,
            final_amount=final_amount(original_fee, discount_percentage),
            duration=max(int(duration or 1), 1),
            is_free=is_free,
        )


def is_free_course(course_name: Optional[str]) -> bool:
    return bool(course_name) and course_name in config.FREE_COURSE_CODES


# ---------- service side ----------

def to_fee_payload(fee: models.CourseFee) -> dict:
    return {
        "registration_number": fee.registration_number,
        "enrollment_id": fee.enrollment_id,
        "course_name": fee.course_name,
        "total_fees": fee.total_fees,
        "discount_percentage": fee.discount_percentage,
        "final_fees": final_amount(fee.total_fees, fee.discount_percentage),
        "duration": fee.duration,
    }


def get_course_fee(db: Session, registration_number: str, enrollment_id: Optional[str] = None) -> models.CourseFee:
    """Return the fee row for a registration, or for one of its enrollments."""
    q = db.query(models.CourseFee).filter(models.CourseFee.registration_number == registration_number)
    if enrollment_id:
        fee = q.filter(models.CourseFee.enrollment_id == enrollment_id).first()
    else:
        fee = q.order_by(models.CourseFee.enrollment_id.is_(None).desc(), models.CourseFee.id.asc()).first()
    if fee is None:
        raise FeeUnavailable(
            f"No fee information for registration {registration_number}"
            + (f" enrollment {enrollment_id}" if enrollment_id else "")
        )
    return fee


def upsert_course_fee(db: Session, data: dict) -> models.CourseFee:
    registration_number = data["registration_number"]
    enrollment_id = data.get("enrollment_id")
    q = db.query(models.CourseFee).filter(models.CourseFee.registration_number == registration_number)
    if enrollment_id:
        q = q.filter(models.CourseFee.enrollment_id == enrollment_id)
    else:
        q = q.filter(models.CourseFee.enrollment_id.is_(None))
    fee = q.first()
    if fee is None:
        fee = models.CourseFee(registration_number=registration_number, enrollment_id=enrollment_id)
        db.add(fee)
    fee.course_name = data.get("course_name") or fee.course_name or "Unknown Course"
    fee.total_fees = int(data.get("total_fees") or 0)
    fee.discount_percentage = float(data.get("discount_percentage") or 0)
    fee.duration = data.get("duration") or fee.duration
    db.commit()
    db.refresh(fee)
    logger.info(
        "Stored fee terms registration=%s enrollment=%s course=%s total=%s discount=%s",
        registration_number, enrollment_id, fee.course_name, fee.total_fees, fee.discount_percentage,
    )
    return fee


# ---------- client side ----------

def quote_from_payload(enrollment, payload: dict) -> FeeQuote:
    return FeeQuote.build(
        enrollment_id=getattr(enrollment, "enrollment_id", None) or payload.get("enrollment_id"),
        course_name=payload.get("course_name") or getattr(enrollment, "course_name", None),
        original_fee=payload.get("total_fees"),
        discount_percentage=payload.get("discount_percentage"),
        duration=payload.get("duration") or getattr(enrollment, "duration", None),
    )


def resolve_fee(registration_number: str, enrollment, enrollments: Sequence, transactions: Sequence, source) -> FeeQuote:
    """Work out the payable amount for ``enrollment``.

    ``transactions`` is the registration's ledger, newest first. ``source``
    provides ``fetch_course_fees`` and ``fetch_course_fees_by_enrollment``.
    Raises ``FeeUnavailable`` when no fee terms can be found.
    """
    if enrollment is None:
        raise FeeUnavailable("No enrollment selected")

    if is_free_course(enrollment.course_name):
        return FeeQuote(
            enrollment_id=enrollment.enrollment_id,
            course_name=enrollment.course_name,
            original_fee=0,
            discount_percentage=0.0,
            final_amount=0,
            duration=max(int(enrollment.duration or 1), 1),
            is_free=True,
        )

    if len(enrollments) <= 1:
        try:
            payload = source.fetch_course_fees(registration_number)
        except PaymentError as exc:
            raise FeeUnavailable(exc.message, enrollment=enrollment) from exc
        return quote_from_payload(enrollment, payload)

    # stored final amount on an installment transaction is a period amount,
    # so the total is always recomputed from original fee and discount
    course_txns = [t for t in transactions if t.course_name == enrollment.course_name]
    if course_txns:
        latest = course_txns[0]
        return FeeQuote.build(
            enrollment_id=enrollment.enrollment_id,
            course_name=enrollment.course_name,
            original_fee=latest.original_fees,
            discount_percentage=latest.discount_percentage,
            duration=enrollment.duration,
        )

    try:
        payload = source.fetch_course_fees_by_enrollment(registration_number, enrollment.enrollment_id)
    except PaymentError as exc:
        logger.warning("Fee lookup failed for course %s: %s", enrollment.course_name, exc.message)
        raise FeeUnavailable(
            f'Unable to load fee information for "{enrollment.course_name}". '
            "Please contact your center administrator for assistance.",
            enrollment=enrollment,
        ) from exc
    return quote_from_payload(enrollment, payload)
