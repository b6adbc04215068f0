"""Student-facing payment session.

Every public method returns a ``Result``; expected business conditions
(already locked, wrong installment, free course, ...) come back as typed
errors on the result instead of being raised.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from app.client.api import PaymentApiClient
from app.client.enrollments import EnrollmentClient
from app.client.notices import Notifier
from app.client.orchestrator import CheckoutDriver, PaymentOrchestrator
from app.client.reconciler import StateReconciler
from app.client.recovery import RecoveryManager
from app.client.store import InflightOrders, PendingPaymentStore
from app.client.view import PaymentView
from app.errors import FreeCourse, InvalidAmount, NoActiveEnrollment, NotNextPeriod, PaymentError, Result
from app.fees import resolve_fee
from app.schedule import schedule
from app.schemas import PaymentType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockState:
    enrollment_id: Optional[str]
    locked: bool
    payment_type: PaymentType
    locked_at: Optional[datetime] = None


@dataclass(frozen=True)
class Installment:
    period_index: int
    amount: int
    paid: bool
    payable: bool


def _as_result(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return Result(value=fn(*args, **kwargs))
        except PaymentError as exc:
            return Result(error=exc)
    return wrapper


class PaymentSession:
    def __init__(
        self,
        registration_number: str,
        checkout: CheckoutDriver,
        api: PaymentApiClient = None,
        enrollments: EnrollmentClient = None,
        store: PendingPaymentStore = None,
        notifier: Notifier = None,
        reconcile_interval: float = None,
        enrollment_interval: float = None,
    ):
        self.registration_number = registration_number
        self.api = api or PaymentApiClient()
        self.enrollments = enrollments or EnrollmentClient()
        self.store = store or PendingPaymentStore()
        self.notifier = notifier or Notifier()
        self.view = PaymentView(registration_number)

        inflight = InflightOrders()
        self.orchestrator = PaymentOrchestrator(self.api, self.store, self.view, checkout, self.notifier, inflight)
        self.recovery = RecoveryManager(self.api, self.store, self.notifier, self.view, inflight)
        self.reconciler = StateReconciler(
            self.api, self.enrollments, self.view, reconcile_interval, enrollment_interval
        )

    # ---------- lifecycle ----------

    def start(self, background: bool = True) -> None:
        """Recover interrupted payments, load state and start polling."""
        self.recovery.recover_pending()
        self.reconciler.refresh_enrollments()
        self.reconciler.poll_once()
        if background:
            self.reconciler.start()
        logger.info("Payment session started registration=%s enrollment=%s", self.registration_number, self.view.enrollment_id)

    def close(self) -> None:
        self.reconciler.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def do_not_interrupt(self) -> bool:
        return self.orchestrator.do_not_interrupt

    # ---------- enrollment context ----------

    @_as_result
    def select_enrollment(self, enrollment_id: str):
        if not enrollment_id or all(e.enrollment_id != enrollment_id for e in self.view.enrollments):
            raise NoActiveEnrollment()
        if self.view.switch_enrollment(enrollment_id):
            try:
                self.view.apply_lock(self.api.fetch_lock(self.registration_number, enrollment_id))
            except PaymentError as exc:
                logger.warning("Lock fetch for enrollment %s failed, leaving it to the reconciler: %s", enrollment_id, exc.message)
        return self.view.active_enrollment

    def _require_enrollment(self):
        enrollment = self.view.active_enrollment
        if enrollment is None:
            raise NoActiveEnrollment()
        return enrollment

    def _quote(self):
        enrollment = self._require_enrollment()
        if self.view.quote is None or self.view.quote.enrollment_id != enrollment.enrollment_id:
            self.view.quote = resolve_fee(
                self.registration_number,
                enrollment,
                self.view.enrollments,
                self.view.transactions,
                self.api,
            )
        return self.view.quote

    # ---------- UI surface ----------

    @_as_result
    def get_fee_quote(self):
        return self._quote()

    @_as_result
    def get_lock_state(self) -> LockState:
        lock = self.view.lock
        return LockState(
            enrollment_id=self.view.enrollment_id,
            locked=lock is not None,
            payment_type=lock.payment_type if lock else self.view.selected_type,
            locked_at=lock.locked_at if lock else None,
        )

    @_as_result
    def select_payment_type(self, payment_type):
        return self.view.select_payment_type(payment_type)

    @_as_result
    def confirm_lock(self, payment_type=None):
        enrollment = self._require_enrollment()
        if self._quote().is_free:
            raise FreeCourse()
        payment_type = self.view.select_payment_type(payment_type or self.view.selected_type)
        lock = self.api.lock_payment_type(self.registration_number, payment_type, enrollment.enrollment_id)
        self.view.apply_lock(lock)
        return lock

    @_as_result
    def get_installment_schedule(self) -> List[Installment]:
        quote = self._quote()
        if quote.is_free:
            return []
        next_due = self.view.next_period()
        paid = self.view.paid_periods
        return [
            Installment(period_index=i, amount=amount, paid=i in paid, payable=i == next_due and i not in paid)
            for i, amount in enumerate(schedule(quote.final_amount, quote.duration), start=1)
        ]

    @_as_result
    def pay_now(self, period_index: Optional[int] = None):
        enrollment = self._require_enrollment()
        quote = self._quote()
        if quote.is_free:
            raise FreeCourse()
        if period_index is None:
            amount = quote.final_amount
        else:
            if not 1 <= period_index <= quote.duration:
                raise NotNextPeriod(f"Installment {period_index} is outside the {quote.duration}-month plan")
            amount = schedule(quote.final_amount, quote.duration)[period_index - 1]
        if amount <= 0:
            raise InvalidAmount("Nothing to pay for this enrollment")

        intent = self.orchestrator.create_intent(enrollment.enrollment_id, amount, period_index)
        return self.orchestrator.pay(intent)

    @_as_result
    def get_transactions(self):
        return self.view.enrollment_transactions()

    @_as_result
    def recover_pending(self):
        return self.recovery.recover_pending()

    @_as_result
    def refresh(self) -> bool:
        return self.reconciler.poll_once()
