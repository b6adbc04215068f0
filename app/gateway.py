"""Payment gateway adapters.

The gateway owns order creation and checkout. This service only creates orders
and checks the signature the checkout hands back, which is
``HMAC_SHA256(key_secret, "<order_id>|<payment_id>")`` in hex.
"""

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import httpx

from app import config
from app.errors import ServiceUnavailable

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    order_id: str
    checkout_key: str
    amount: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def amount_subunits(self) -> int:
        return self.amount * 100


def sign(key_secret: str, order_id: str, payment_id: str) -> str:
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class PaymentGateway:
    def __init__(self, key_id: str, key_secret: str):
        self.key_id = key_id
        self.key_secret = key_secret

    def create_order(self, amount: int, currency: str, metadata: Optional[Dict[str, str]] = None) -> GatewayOrder:
        raise NotImplementedError

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret or not signature:
            return False
        expected = sign(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)


class RazorpayGateway(PaymentGateway):
    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float = 30, transport: httpx.BaseTransport = None):
        super().__init__(key_id, key_secret)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def create_order(self, amount: int, currency: str, metadata: Optional[Dict[str, str]] = None) -> GatewayOrder:
        payload = {
            "amount": amount * 100,
            "currency": currency,
            "receipt": f"rcpt_{uuid.uuid4().hex[:16]}",
            "notes": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.post(f"{self.base_url}/orders", json=payload, auth=(self.key_id, self.key_secret))
        except httpx.HTTPError as exc:
            logger.warning("Razorpay order creation failed: %s", exc)
            raise ServiceUnavailable("Payment gateway is unreachable") from exc

        if resp.status_code >= 400:
            logger.error("Razorpay order creation failed (%s): %s", resp.status_code, resp.text)
            raise ServiceUnavailable(f"Payment gateway rejected the order ({resp.status_code})")

        body = resp.json()
        return GatewayOrder(
            order_id=body["id"],
            checkout_key=self.key_id,
            amount=int(body.get("amount", amount * 100)) // 100,
            currency=body.get("currency", currency),
            metadata=payload["notes"],
        )


class LocalGateway(PaymentGateway):
    """In-process gateway for development and tests.

    Orders are minted locally and ``complete`` plays the part of the hosted
    checkout, returning the ids and signature the real one would.
    """

    def __init__(self, key_id: str = "rzp_local", key_secret: str = "local-secret"):
        super().__init__(key_id, key_secret)
        self.orders: Dict[str, GatewayOrder] = {}

    def create_order(self, amount: int, currency: str, metadata: Optional[Dict[str, str]] = None) -> GatewayOrder:
        order = GatewayOrder(
            order_id=f"order_{uuid.uuid4().hex[:14]}",
            checkout_key=self.key_id,
            amount=amount,
            currency=currency,
            metadata={k: str(v) for k, v in (metadata or {}).items() if v is not None},
        )
        self.orders[order.order_id] = order
        logger.info("Local gateway created order %s amount=%s %s", order.order_id, amount, currency)
        return order

    def complete(self, order_id: str) -> Tuple[str, str]:
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        return payment_id, sign(self.key_secret, order_id, payment_id)


_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        if config.PAYMENT_GATEWAY == "local":
            _gateway = LocalGateway(config.RAZORPAY_KEY_ID or "rzp_local", config.RAZORPAY_KEY_SECRET or "local-secret")
        else:
            _gateway = RazorpayGateway(
                config.RAZORPAY_KEY_ID,
                config.RAZORPAY_KEY_SECRET,
                config.RAZORPAY_API_BASE_URL,
                timeout=config.HTTP_TIMEOUT,
            )
    return _gateway
