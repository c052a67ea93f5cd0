"""
Payment error taxonomy.

Every expected failure of the bridge is one of these ``BusinessException``
subclasses. The API client and the webhook processor hand them back inside
result objects instead of raising them to their callers.
"""
from __future__ import annotations

from typing import Any, Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentError(BusinessException):
    """Common base so callers can match on the whole family."""

    code_value: PaymentCode = PaymentCode.PROVIDER_ERROR
    error_name: str = "PaymentError"

    def __init__(self, message: str, *, details: Optional[dict] = None, field: Optional[str] = None):
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=self.error_name,
            details=details,
            field=field,
        )


# --- remote API ---------------------------------------------------------------


class ConnectivityError(PaymentError):
    code_value = PaymentCode.CONNECTIVITY_ERROR
    error_name = "ConnectivityError"


class RemoteApiError(PaymentError):
    """Remote answered with a 4xx/5xx status."""

    code_value = PaymentCode.PROVIDER_ERROR
    error_name = "RemoteApiError"

    def __init__(self, message: str, *, status_code: int, body: Any = None, details: Optional[dict] = None):
        self.status_code = status_code
        self.body = body
        merged = {"status_code": status_code}
        if details:
            merged.update(details)
        super().__init__(message, details=merged)


class AuthError(RemoteApiError):
    code_value = PaymentCode.AUTH_ERROR
    error_name = "AuthError"


class MalformedResponse(PaymentError):
    code_value = PaymentCode.MALFORMED_RESPONSE
    error_name = "MalformedResponse"

    def __init__(self, message: str = "Invalid JSON response from API", *, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, details={"status_code": status_code})


class CustomerConflict(RemoteApiError):
    """The remote already knows this customer; recover by referencing its id."""

    code_value = PaymentCode.CUSTOMER_CONFLICT
    error_name = "CustomerConflict"


class CustomerConflictUnresolved(PaymentError):
    code_value = PaymentCode.CUSTOMER_CONFLICT_UNRESOLVED
    error_name = "CustomerConflictUnresolved"

    def __init__(self, email: str, reason: str):
        self.email = email
        self.reason = reason
        super().__init__(
            "A customer with this email already exists and could not be matched. "
            "Use a different email address or contact support.",
            details={"reason": reason},
            field="email",
        )


class InvalidCheckoutRequest(PaymentError):
    code_value = PaymentCode.INVALID_CHECKOUT_REQUEST
    error_name = "InvalidCheckoutRequest"


class StoreUnavailable(PaymentError):
    """The expiring store (token cache, customer ids) could not be reached."""

    code_value = PaymentCode.STORE_UNAVAILABLE
    error_name = "StoreUnavailable"


# --- webhooks -----------------------------------------------------------------


class SignatureInvalid(PaymentError):
    code_value = PaymentCode.SIGNATURE_ERROR
    error_name = "SignatureInvalid"


class StructureInvalid(PaymentError):
    code_value = PaymentCode.STRUCTURE_INVALID
    error_name = "StructureInvalid"


class UnknownEventType(PaymentError):
    code_value = PaymentCode.UNKNOWN_EVENT_TYPE
    error_name = "UnknownEventType"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type}", details={"event_type": event_type})


# --- order state --------------------------------------------------------------


class UnknownStatus(PaymentError):
    code_value = PaymentCode.UNKNOWN_STATUS
    error_name = "UnknownStatus"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unknown remote status: {status}", details={"status": status})


class OrderNotFound(PaymentError):
    code_value = PaymentCode.ORDER_NOT_FOUND
    error_name = "OrderNotFound"

    def __init__(self, identifier: str):
        super().__init__(f"Order not found: {identifier}", details={"identifier": identifier})


class InvalidTransition(PaymentError):
    code_value = PaymentCode.INVALID_TRANSITION
    error_name = "InvalidTransition"

    def __init__(self, order_id: str, current: str, target: str):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target}",
            details={"order_id": order_id, "from": current, "to": target},
        )


class RefundExceedsTotal(PaymentError):
    code_value = PaymentCode.REFUND_EXCEEDS_TOTAL
    error_name = "RefundExceedsTotal"


class CheckoutUnavailable(PaymentError):
    """Short, shopper-facing wrapper around remote failures."""

    code_value = PaymentCode.PROVIDER_ERROR
    error_name = "CheckoutUnavailable"

    def __init__(self, message: str, *, cause: PaymentError):
        self.cause = cause
        super().__init__(message, details={"cause": cause.error_type})
