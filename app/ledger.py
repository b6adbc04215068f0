"""Payment verification and the append-only transaction ledger.

``verify`` is the only code path that inserts ``Transaction`` rows. It is
keyed by gateway order id and safe to call any number of times, including
concurrently, for the same order.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import events, models
from app.errors import OrderNotFound, SignatureMismatch
from app.gateway import PaymentGateway
from app.schedule import due_date

logger = logging.getLogger(__name__)


def get_transaction(db: Session, order_id: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(models.Transaction.order_id == order_id).first()


def get_transaction_by_payment(db: Session, payment_id: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(models.Transaction.payment_id == payment_id).first()


def list_transactions(db: Session, registration_number: Optional[str] = None, enrollment_id: Optional[str] = None) -> List[models.Transaction]:
    q = db.query(models.Transaction)
    if registration_number:
        q = q.filter(models.Transaction.registration_number == registration_number)
    if enrollment_id:
        q = q.filter(models.Transaction.enrollment_id == enrollment_id)
    return q.order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc()).all()


def verify(db: Session, gateway: PaymentGateway, order_id: str, payment_id: str, signature: str) -> models.Transaction:
    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("Signature mismatch for order=%s payment=%s", order_id, payment_id)
        raise SignatureMismatch()

    existing = get_transaction(db, order_id)
    if existing is not None:
        logger.info("Order %s already verified as payment %s", order_id, existing.payment_id)
        return existing

    order = db.query(models.PaymentOrder).filter(models.PaymentOrder.order_id == order_id).first()
    if order is None:
        raise OrderNotFound(f"Unknown order {order_id}")

    now = datetime.now(timezone.utc)
    next_due = None
    if order.period_index and order.period_count:
        next_due = due_date(now, order.period_index, order.period_count)

    txn = models.Transaction(
        payment_id=payment_id,
        order_id=order_id,
        registration_number=order.registration_number,
        enrollment_id=order.enrollment_id,
        course_name=order.course_name,
        payment_type=order.payment_type,
        period_index=order.period_index,
        period_count=order.period_count,
        amount=order.amount,
        original_fees=order.original_fees,
        discount_percentage=order.discount_percentage,
        status="verified",
        next_due_date=next_due,
        created_at=now,
    )
    db.add(txn)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent verify for the same order won the insert
        db.rollback()
        winner = get_transaction(db, order_id)
        if winner is None:
            raise
        logger.info("Order %s was verified concurrently, returning existing transaction", order_id)
        return winner
    db.refresh(txn)

    logger.info(
        "Verified order=%s payment=%s enrollment=%s type=%s period=%s amount=%s",
        order_id, payment_id, txn.enrollment_id, txn.payment_type, txn.period_index, txn.amount,
    )
    events.publish_transaction_verified(txn)
    return txn
