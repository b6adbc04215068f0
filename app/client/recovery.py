"""Replays verification for payments left in the pending store."""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from app.client.api import PaymentApiClient
from app.client.notices import SUCCESS, WARNING, Notifier
from app.client.store import InflightOrders, PendingPaymentRecord, PendingPaymentStore
from app.client.view import PaymentView
from app.errors import PaymentError
from app.schemas import TransactionOut

logger = logging.getLogger(__name__)

RECOVERED = "verified"
ALREADY_VERIFIED = "already_verified"
RETRY = "retry"
IN_PROGRESS = "in_progress"


@dataclass
class RecoveryResult:
    order_id: str
    status: str
    transaction: Optional[TransactionOut] = None
    error: Optional[PaymentError] = None


class RecoveryManager:
    def __init__(
        self,
        api: PaymentApiClient,
        store: PendingPaymentStore,
        notifier: Notifier,
        view: PaymentView = None,
        inflight: InflightOrders = None,
    ):
        self.api = api
        self.store = store
        self.notifier = notifier
        self.view = view
        self.inflight = inflight or InflightOrders()
        self._run_lock = threading.Lock()

    def recover_pending(self) -> List[RecoveryResult]:
        """Verify every stored attempt. Never raises for verification failures."""
        with self._run_lock:
            records = self.store.list()
            if records:
                logger.info("Recovering %d pending payment(s)", len(records))
            return [self._recover(record) for record in records]

    def _recover(self, record: PendingPaymentRecord) -> RecoveryResult:
        if not self.inflight.claim(record.order_id):
            return RecoveryResult(record.order_id, IN_PROGRESS)
        try:
            try:
                existing = self.api.get_transaction_by_order(record.order_id)
                if existing is not None:
                    self._finish(record, existing)
                    return RecoveryResult(record.order_id, ALREADY_VERIFIED, existing)
                txn = self.api.verify_payment(record.order_id, record.payment_id, record.signature)
            except PaymentError as exc:
                logger.warning("Pending order %s not verified yet: %s", record.order_id, exc.message)
                self.notifier.notify(
                    WARNING,
                    "We could not verify your previous payment. We'll keep trying automatically.",
                    record.order_id,
                )
                return RecoveryResult(record.order_id, RETRY, error=exc)
            self._finish(record, txn)
            return RecoveryResult(record.order_id, RECOVERED, txn)
        finally:
            self.inflight.release(record.order_id)

    def _finish(self, record: PendingPaymentRecord, txn: TransactionOut) -> None:
        self.store.delete(record.order_id)
        if self.view is not None:
            self.view.record_verified(txn)
        self.notifier.notify(SUCCESS, f"Your previous payment of {txn.amount} is confirmed.", txn.order_id)
