"""HTTP client for the payment service, used by the client engine."""

import logging
from contextlib import contextmanager
from typing import List, Optional

import httpx
from pydantic import ValidationError

from app import config
from app.errors import PaymentError, ServiceUnavailable, error_from_payload
from app.gateway import GatewayOrder
from app.schemas import PaymentLockOut, PaymentType, TransactionOut

logger = logging.getLogger(__name__)


@contextmanager
def _response_body(path: str):
    """Turn a malformed success body into a transient error."""
    try:
        yield
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        logger.warning("Unexpected response body from %s: %s", path, exc)
        raise ServiceUnavailable(f"Unexpected response from payment service ({path})") from exc


class PaymentApiClient:
    def __init__(self, base_url: str = None, http: httpx.Client = None):
        self.http = http or httpx.Client(base_url=base_url or config.PAYMENT_SERVICE_URL, timeout=config.HTTP_TIMEOUT)

    def close(self):
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self.http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ServiceUnavailable(f"Payment service unreachable: {exc}") from exc
        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            raise error_from_payload(payload, resp.status_code)
        return resp

    # fees
    def fetch_course_fees(self, registration_number: str) -> dict:
        path = f"/student-course-fees/{registration_number}"
        resp = self._request("GET", path)
        with _response_body(path):
            return dict(resp.json())

    def fetch_course_fees_by_enrollment(self, registration_number: str, enrollment_id: str) -> dict:
        path = f"/student-course-fees/{registration_number}/{enrollment_id}"
        resp = self._request("GET", path)
        with _response_body(path):
            return dict(resp.json())

    # locks
    def fetch_lock(self, registration_number: str, enrollment_id: str) -> Optional[PaymentLockOut]:
        path = f"/payment-lock/{registration_number}"
        resp = self._request("GET", path, params={"enrollment_id": enrollment_id})
        with _response_body(path):
            body = resp.json()
            if body.get("success") and body.get("data"):
                return PaymentLockOut.model_validate(body["data"])
        return None

    def lock_payment_type(self, registration_number: str, payment_type: PaymentType, enrollment_id: str) -> PaymentLockOut:
        resp = self._request("POST", "/payment-lock", json={
            "register_number": registration_number,
            "payment_type": PaymentType(payment_type).value,
            "enrollment_id": enrollment_id,
        })
        with _response_body("/payment-lock"):
            return PaymentLockOut.model_validate(resp.json()["data"])

    # gateway round trip
    def create_order(self, payload: dict) -> GatewayOrder:
        resp = self._request("POST", "/razorpay/create-order", json=payload)
        with _response_body("/razorpay/create-order"):
            body = resp.json()
            order = body["order"]
            return GatewayOrder(
                order_id=order["id"],
                checkout_key=body["key"],
                amount=int(order["amount"]) // 100,
                currency=order["currency"],
            )

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> TransactionOut:
        resp = self._request("POST", "/razorpay/verify", json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
        })
        with _response_body("/razorpay/verify"):
            return TransactionOut.model_validate(resp.json()["transaction"])

    # ledger
    def get_transactions(self, registration_number: str) -> List[TransactionOut]:
        resp = self._request("GET", "/payments", params={"registration_number": registration_number})
        with _response_body("/payments"):
            body = resp.json()
            items = body.get("transactions") if isinstance(body, dict) else None
            return [TransactionOut.model_validate(t) for t in items or []]

    def get_transaction_by_order(self, order_id: str) -> Optional[TransactionOut]:
        path = f"/payments/order/{order_id}"
        try:
            resp = self._request("GET", path)
        except PaymentError as exc:
            if isinstance(exc, ServiceUnavailable):
                raise
            return None
        with _response_body(path):
            return TransactionOut.model_validate(resp.json())
