import logging
import threading
import time

from app import config
from app.client.api import PaymentApiClient
from app.client.enrollments import EnrollmentClient
from app.client.view import PaymentView
from app.errors import PaymentError

logger = logging.getLogger(__name__)


class StateReconciler:
    """Background polling of ledger, lock and enrollment state into the view."""

    def __init__(
        self,
        api: PaymentApiClient,
        enrollments: EnrollmentClient,
        view: PaymentView,
        interval: float = None,
        enrollment_interval: float = None,
    ):
        self.api = api
        self.enrollments = enrollments
        self.view = view
        self.interval = interval if interval is not None else config.RECONCILE_INTERVAL
        self.enrollment_interval = enrollment_interval if enrollment_interval is not None else config.ENROLLMENT_REFRESH_INTERVAL
        self._stop = threading.Event()
        self._thread = None

    def poll_once(self) -> bool:
        """Fetch transactions and the active lock. Returns True if the view changed."""
        changed = False
        try:
            changed = self.view.merge_transactions(self.api.get_transactions(self.view.registration_number))
        except PaymentError as exc:
            logger.warning("Transaction poll failed: %s", exc.message)

        enrollment_id = self.view.enrollment_id
        if enrollment_id:
            try:
                lock = self.api.fetch_lock(self.view.registration_number, enrollment_id)
            except PaymentError as exc:
                logger.warning("Lock poll failed: %s", exc.message)
            else:
                # the active enrollment may have changed while the request was out
                if enrollment_id == self.view.enrollment_id:
                    changed = self.view.apply_lock(lock) or changed
        return changed

    def refresh_enrollments(self) -> bool:
        if self.enrollments is None:
            return False
        try:
            return self.view.merge_enrollments(self.enrollments.list_enrollments(self.view.registration_number))
        except PaymentError as exc:
            logger.warning("Enrollment poll failed: %s", exc.message)
            return False

    def _run(self):
        next_enrollment_refresh = 0.0
        while not self._stop.is_set():
            now = time.monotonic()
            if now >= next_enrollment_refresh:
                self.refresh_enrollments()
                next_enrollment_refresh = now + self.enrollment_interval
            self.poll_once()
            self._stop.wait(self.interval)

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="payment-reconciler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
