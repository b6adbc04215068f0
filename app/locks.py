"""Write-once payment-type locks, one per enrollment."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import events, models
from app.errors import AlreadyLocked, NoActiveEnrollment
from app.schemas import PaymentType

logger = logging.getLogger(__name__)


def get_lock(db: Session, enrollment_id: Optional[str]) -> Optional[models.PaymentLock]:
    if not enrollment_id:
        return None
    return db.query(models.PaymentLock).filter(models.PaymentLock.enrollment_id == enrollment_id).first()


def find_registration_lock(db: Session, registration_number: str) -> Optional[models.PaymentLock]:
    """Lock of a registration's only enrollment, for callers that do not pass one."""
    locks = (
        db.query(models.PaymentLock)
        .filter(models.PaymentLock.registration_number == registration_number)
        .limit(2)
        .all()
    )
    return locks[0] if len(locks) == 1 else None


def _check_existing(lock: models.PaymentLock, payment_type: PaymentType) -> models.PaymentLock:
    if lock.payment_type != payment_type.value:
        raise AlreadyLocked(
            f"Payment type is already locked as '{lock.payment_type}' for this enrollment",
            lock=lock,
        )
    return lock


def confirm_lock(db: Session, registration_number: str, enrollment_id: Optional[str], payment_type) -> models.PaymentLock:
    """Record the payment type for an enrollment.

    Confirming the type that is already locked returns the existing lock;
    any other type raises ``AlreadyLocked``.
    """
    if not enrollment_id or not str(enrollment_id).strip():
        raise NoActiveEnrollment()
    payment_type = PaymentType(payment_type)

    existing = get_lock(db, enrollment_id)
    if existing is not None:
        return _check_existing(existing, payment_type)

    lock = models.PaymentLock(
        registration_number=registration_number,
        enrollment_id=enrollment_id,
        payment_type=payment_type.value,
    )
    db.add(lock)
    try:
        db.commit()
    except IntegrityError:
        # another request locked this enrollment first
        db.rollback()
        return _check_existing(get_lock(db, enrollment_id), payment_type)
    db.refresh(lock)

    logger.info("Locked payment type=%s enrollment=%s registration=%s", lock.payment_type, enrollment_id, registration_number)
    events.publish_lock_confirmed(lock)
    return lock
