"""
Payment specific codes and the BNA status / event tables.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    SUCCESS = 0

    # Remote API / network (6xxxx)
    PROVIDER_ERROR = 60000
    CONNECTIVITY_ERROR = 60001
    SIGNATURE_ERROR = 60002
    AUTH_ERROR = 60004
    MALFORMED_RESPONSE = 60005
    CUSTOMER_CONFLICT = 60006
    CUSTOMER_CONFLICT_UNRESOLVED = 60007
    STORE_UNAVAILABLE = 60008

    # Webhook / order state (61xxx)
    STRUCTURE_INVALID = 61000
    UNKNOWN_EVENT_TYPE = 61001
    UNKNOWN_STATUS = 61002
    ORDER_NOT_FOUND = 61003
    INVALID_TRANSITION = 61004
    REFUND_EXCEEDS_TOTAL = 61005
    INVALID_CHECKOUT_REQUEST = 61006


# Remote transaction status (lower-cased) -> local order status value.
REMOTE_STATUS_TO_LOCAL = {
    "completed": "processing",
    "approved": "processing",
    "success": "processing",
    "declined": "failed",
    "failed": "failed",
    "cancelled": "cancelled",
    "refunded": "refunded",
    "pending": "pending",
}

# Normalized webhook event type -> handler action.
WEBHOOK_EVENT_TO_ACTION = {
    "payment.completed": "success",
    "payment.approved": "success",
    "payment.success": "success",
    "payment.failed": "failure",
    "payment.declined": "failure",
    "payment.error": "failure",
    "payment.pending": "pending",
    "payment.cancelled": "cancelled",
    "payment.refunded": "refunded",
    "refund.completed": "refunded",
    "payment.chargeback": "chargeback",
}

# Remote status an action drives through the state machine.
ACTION_TO_REMOTE_STATUS = {
    "success": "completed",
    "failure": "failed",
    "pending": "pending",
    "cancelled": "cancelled",
}

# Browser postMessage type -> outcome.
BROWSER_MESSAGE_TO_OUTCOME = {
    "payment_success": "success",
    "payment_failed": "failure",
    "payment_error": "failure",
}
