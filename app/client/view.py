"""Client-side cache of payment state for one registration.

Nothing here is authoritative. The server ledger and lock table are, and the
reconciler keeps this view in line with them. Transactions confirmed by a
verify call in this process are pinned until the server lists them, so a
slow ledger read never hides a payment the student just made.
"""

import threading
from typing import Dict, List, Optional, Set

from app.client.enrollments import Enrollment
from app.errors import AlreadyLocked
from app.fees import FeeQuote
from app.schedule import next_period
from app.schemas import PaymentLockOut, PaymentType, TransactionOut


def _dump(items) -> list:
    return [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in items]


class PaymentView:
    def __init__(self, registration_number: str):
        self.registration_number = registration_number
        self.enrollments: List[Enrollment] = []
        self.enrollment_id: Optional[str] = None
        self.lock: Optional[PaymentLockOut] = None
        self.selected_type = PaymentType.FULL
        self.quote: Optional[FeeQuote] = None
        self.transactions: List[TransactionOut] = []
        self.paid_periods: Set[int] = set()
        self.full_paid = False
        self._pinned: Dict[str, TransactionOut] = {}
        self._lock = threading.RLock()

    # ---------- enrollment context ----------

    @property
    def active_enrollment(self) -> Optional[Enrollment]:
        with self._lock:
            for enrollment in self.enrollments:
                if enrollment.enrollment_id == self.enrollment_id:
                    return enrollment
            return None

    def merge_enrollments(self, enrollments: List[Enrollment]) -> bool:
        with self._lock:
            if list(enrollments) == self.enrollments:
                return False
            self.enrollments = list(enrollments)
            if self.enrollment_id is None and self.enrollments:
                self.switch_enrollment(self.enrollments[0].enrollment_id)
            return True

    def switch_enrollment(self, enrollment_id: str) -> bool:
        """Make ``enrollment_id`` active. Returns False when it already was."""
        with self._lock:
            if enrollment_id == self.enrollment_id:
                return False
            self.enrollment_id = enrollment_id
            self.lock = None
            self.selected_type = PaymentType.FULL
            self.quote = None
            self._recompute()
            return True

    # ---------- lock ----------

    @property
    def is_locked(self) -> bool:
        return self.lock is not None

    def apply_lock(self, lock: Optional[PaymentLockOut]) -> bool:
        with self._lock:
            if lock is not None and lock.enrollment_id != self.enrollment_id:
                return False
            # locks are write-once; a poll that predates the lock cannot undo it
            if lock is None and self.lock is not None:
                return False
            if lock == self.lock:
                return False
            self.lock = lock
            if lock is not None:
                self.selected_type = lock.payment_type
            return True

    def select_payment_type(self, payment_type) -> PaymentType:
        payment_type = PaymentType(payment_type)
        with self._lock:
            if self.lock is not None and self.lock.payment_type != payment_type:
                raise AlreadyLocked()
            self.selected_type = payment_type
            return payment_type

    # ---------- ledger ----------

    def enrollment_transactions(self) -> List[TransactionOut]:
        with self._lock:
            return [t for t in self.transactions if t.enrollment_id == self.enrollment_id]

    def has_transaction(self, order_id: str) -> bool:
        with self._lock:
            return any(t.order_id == order_id for t in self.transactions)

    def record_verified(self, txn: TransactionOut) -> None:
        with self._lock:
            self._pinned[txn.order_id] = txn
            if not self.has_transaction(txn.order_id):
                self.transactions = [txn] + self.transactions
                self._recompute()

    def merge_transactions(self, fetched: List[TransactionOut]) -> bool:
        """Adopt the server list, keeping pinned local confirmations it lacks.

        Returns True when the cached list changed.
        """
        with self._lock:
            server_ids = {t.order_id for t in fetched}
            for order_id in list(self._pinned):
                if order_id in server_ids:
                    del self._pinned[order_id]
            merged = [t for t in self._pinned.values()] + list(fetched)
            if _dump(merged) == _dump(self.transactions):
                return False
            self.transactions = merged
            self._recompute()
            return True

    def next_period(self) -> int:
        with self._lock:
            return next_period(self.paid_periods)

    def _recompute(self) -> None:
        txns = self.enrollment_transactions()
        verified = [t for t in txns if t.status == "verified"]
        self.full_paid = any(t.payment_type == PaymentType.FULL for t in verified)
        self.paid_periods = {
            t.period_index for t in verified if t.payment_type == PaymentType.INSTALLMENT and t.period_index
        }
