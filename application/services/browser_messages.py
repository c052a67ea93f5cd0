"""Classification of postMessage events sent by the hosted payment iframe.

Informational only: the outcome drives the shopper's UI, while order state
is changed exclusively by webhooks and status polls.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from application.dtos.payments import BrowserMessage, BrowserOutcome
from core.logging_config import get_logger
from shared.codes.payment_codes import BROWSER_MESSAGE_TO_OUTCOME

logger = get_logger(__name__)


def _origin(value: str) -> str:
    parts = urlsplit(value.strip())
    if not parts.scheme or not parts.netloc:
        return value.strip().rstrip("/").lower()
    return f"{parts.scheme}://{parts.netloc}".lower()


def classify_browser_message(
    origin: Optional[str],
    message: Any,
    allowed_origins: Iterable[str],
) -> BrowserOutcome:
    if not origin or _origin(origin) not in {_origin(o) for o in allowed_origins}:
        logger.warning("browser_message_origin_rejected", origin=origin)
        return BrowserOutcome(accepted=False, reason="origin not allowed")

    try:
        parsed = BrowserMessage.model_validate(message)
    except ValidationError:
        return BrowserOutcome(accepted=False, reason="malformed message")

    outcome = BROWSER_MESSAGE_TO_OUTCOME.get(parsed.type.strip().lower())
    if outcome is None:
        return BrowserOutcome(accepted=False, reason=f"unknown message type: {parsed.type}")

    data = parsed.data or {}
    token = data.get("transactionToken") or data.get("transaction_token") or data.get("id")
    return BrowserOutcome(
        accepted=True,
        outcome=outcome,  # type: ignore[arg-type]
        reason=parsed.message,
        transaction_token=str(token) if token else None,
    )
