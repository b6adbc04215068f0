"""Drives one payment from order creation to a verified ledger entry.

Once the gateway reports success the money has moved, so from that point the
attempt is never dropped: the result is written to the pending store before
verification starts, and any verification failure leaves it there for the
recovery manager.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from app.client.api import PaymentApiClient
from app.client.notices import INFO, SUCCESS, WARNING, Notifier
from app.client.store import InflightOrders, PendingPaymentRecord, PendingPaymentStore
from app.client.view import PaymentView
from app.errors import InvalidAmount, NotLocked, NotNextPeriod, PaymentError, PaymentNotCompleted
from app.gateway import GatewayOrder, LocalGateway
from app.schemas import PaymentType, TransactionOut

logger = logging.getLogger(__name__)

CHECKOUT_SUCCESS = "success"
CHECKOUT_CANCELLED = "cancelled"
CHECKOUT_FAILED = "failed"


@dataclass
class CheckoutResult:
    status: str
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    reason: Optional[str] = None


class CheckoutDriver:
    """Hands an order to the gateway checkout and blocks until it finishes."""

    def await_result(self, order: GatewayOrder) -> CheckoutResult:
        raise NotImplementedError


class LocalCheckout(CheckoutDriver):
    def __init__(self, gateway: LocalGateway, outcome: str = CHECKOUT_SUCCESS):
        self.gateway = gateway
        self.outcome = outcome

    def await_result(self, order: GatewayOrder) -> CheckoutResult:
        if self.outcome != CHECKOUT_SUCCESS:
            return CheckoutResult(self.outcome, order.order_id, reason=f"checkout {self.outcome}")
        payment_id, signature = self.gateway.complete(order.order_id)
        return CheckoutResult(CHECKOUT_SUCCESS, order.order_id, payment_id, signature)


@dataclass
class PaymentIntent:
    order: GatewayOrder
    enrollment_id: str
    payment_type: PaymentType
    period_index: Optional[int]
    amount: int


@dataclass
class PaymentOutcome:
    order_id: str
    verified: bool
    amount: int
    payment_type: PaymentType
    period_index: Optional[int] = None
    payment_id: Optional[str] = None
    transaction: Optional[TransactionOut] = None


class PaymentOrchestrator:
    def __init__(
        self,
        api: PaymentApiClient,
        store: PendingPaymentStore,
        view: PaymentView,
        checkout: CheckoutDriver,
        notifier: Notifier,
        inflight: InflightOrders = None,
    ):
        self.api = api
        self.store = store
        self.view = view
        self.checkout = checkout
        self.notifier = notifier
        self.inflight = inflight or InflightOrders()
        self._verifying = threading.Event()

    @property
    def do_not_interrupt(self) -> bool:
        """Advisory: a just-completed payment is being verified."""
        return self._verifying.is_set()

    def create_intent(self, enrollment_id: str, amount: int, period_index: Optional[int] = None) -> PaymentIntent:
        requested = PaymentType.FULL if period_index is None else PaymentType.INSTALLMENT
        lock = self.view.lock
        if lock is None or lock.enrollment_id != enrollment_id:
            raise NotLocked()
        if lock.payment_type != requested:
            raise NotLocked(f"This enrollment is locked for '{lock.payment_type.value}' payments")
        if amount is None or amount <= 0:
            raise InvalidAmount("Payment amount must be greater than zero")
        if requested is PaymentType.FULL and self.view.full_paid:
            raise NotNextPeriod("Full payment is already completed for this enrollment")
        if requested is PaymentType.INSTALLMENT and period_index != self.view.next_period():
            raise NotNextPeriod(f"Installment {self.view.next_period()} is due next, not {period_index}")

        quote = self.view.quote
        order = self.api.create_order({
            "amount": amount,
            "registration_number": self.view.registration_number,
            "enrollment_id": enrollment_id,
            "payment_type": requested.value,
            "course_name": quote.course_name if quote else None,
            "course_duration": quote.duration if quote else None,
            "original_fees": quote.original_fee if quote else 0,
            "discount_percentage": quote.discount_percentage if quote else 0,
            "final_fees": amount if requested is PaymentType.INSTALLMENT else (quote.final_amount if quote else amount),
            "emi_duration": quote.duration if quote and requested is PaymentType.INSTALLMENT else None,
            "current_emi": period_index,
        })
        logger.info("Created intent order=%s enrollment=%s period=%s amount=%s", order.order_id, enrollment_id, period_index, amount)
        return PaymentIntent(order, enrollment_id, requested, period_index, amount)

    def pay(self, intent: PaymentIntent) -> PaymentOutcome:
        """Run checkout for ``intent`` and verify the result.

        Raises ``PaymentNotCompleted`` when the student cancels or the charge
        fails. Otherwise returns an outcome whose ``verified`` flag is False
        when verification has been handed to the recovery manager.
        """
        result = self.checkout.await_result(intent.order)
        if result.status != CHECKOUT_SUCCESS or not result.payment_id:
            self.notifier.notify(INFO, "Payment was not completed. You can try again.", intent.order.order_id)
            raise PaymentNotCompleted(result.reason)

        record = PendingPaymentRecord(
            order_id=result.order_id,
            payment_id=result.payment_id,
            signature=result.signature or "",
            amount=intent.amount,
            payment_type=intent.payment_type.value,
            period_index=intent.period_index,
            enrollment_id=intent.enrollment_id,
        )
        self.store.save(record)

        outcome = PaymentOutcome(
            order_id=record.order_id,
            verified=False,
            amount=intent.amount,
            payment_type=intent.payment_type,
            period_index=intent.period_index,
            payment_id=record.payment_id,
        )
        if not self.inflight.claim(record.order_id):
            logger.info("Order %s is already being verified", record.order_id)
            return outcome

        self._verifying.set()
        try:
            txn = self.api.verify_payment(record.order_id, record.payment_id, record.signature)
        except PaymentError as exc:
            logger.warning("Verification of order %s failed: %s", record.order_id, exc.message)
            self.notifier.notify(WARNING, "Payment verification failed. We'll retry automatically.", record.order_id)
            return outcome
        finally:
            self._verifying.clear()
            self.inflight.release(record.order_id)

        self.store.delete(record.order_id)
        self.view.record_verified(txn)
        self.notifier.notify(SUCCESS, f"Payment of {txn.amount} received.", txn.order_id)
        outcome.verified = True
        outcome.transaction = txn
        return outcome
