"""Typed payment errors shared by the service and the client engine.

Business-rule violations are raised as ``PaymentError`` subclasses inside the
service layer and turned into ``{"success": false, "code": ..., "detail": ...}``
responses by ``app.main``. The client engine maps those payloads back to the
same classes and hands them to the UI inside a ``Result``.
"""

from dataclasses import dataclass
from typing import Any, Optional


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400
    default_message = "Payment could not be processed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "detail": self.message}


class FeeUnavailable(PaymentError):
    code = "fee_unavailable"
    status_code = 404
    default_message = "Fee information is not available for this enrollment"


class FreeCourse(PaymentError):
    code = "free_course"
    status_code = 409
    default_message = "This course does not require payment"


class NoActiveEnrollment(PaymentError):
    code = "no_active_enrollment"
    status_code = 400
    default_message = "Please select a batch first"


class AlreadyLocked(PaymentError):
    code = "already_locked"
    status_code = 409
    default_message = "Payment type is already locked for this enrollment"


class NotLocked(PaymentError):
    code = "not_locked"
    status_code = 409
    default_message = "Lock a payment type before paying"


class InvalidAmount(PaymentError):
    code = "invalid_amount"
    status_code = 422
    default_message = "Payment amount is not valid"


class NotNextPeriod(PaymentError):
    code = "not_next_period"
    status_code = 409
    default_message = "Installments must be paid in order"


class SignatureMismatch(PaymentError):
    code = "signature_mismatch"
    status_code = 400
    default_message = "Payment signature could not be verified"


class OrderNotFound(PaymentError):
    code = "order_not_found"
    status_code = 404
    default_message = "Payment order not found"


class PaymentNotCompleted(PaymentError):
    code = "payment_not_completed"
    status_code = 402
    default_message = "Payment was not completed. Please try again."


class ServiceUnavailable(PaymentError):
    code = "service_unavailable"
    status_code = 503
    default_message = "Payment service is temporarily unavailable"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        FeeUnavailable,
        FreeCourse,
        NoActiveEnrollment,
        AlreadyLocked,
        NotLocked,
        InvalidAmount,
        NotNextPeriod,
        SignatureMismatch,
        OrderNotFound,
        PaymentNotCompleted,
        ServiceUnavailable,
    )
}


def error_from_payload(payload: Any, status_code: int) -> PaymentError:
    """Rebuild a typed error from a service error response."""
    code = detail = None
    if isinstance(payload, dict):
        code = payload.get("code")
        detail = payload.get("detail")
    cls = ERRORS_BY_CODE.get(code)
    if cls is None:
        cls = ServiceUnavailable if status_code >= 500 else PaymentError
    return cls(detail if isinstance(detail, str) else None)


@dataclass
class Result:
    value: Any = None
    error: Optional[PaymentError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
