"""
BNA webhook processor.

Received -> SignatureVerified -> StructureValidated -> EventDispatched ->
Applied | Rejected. The processor never raises: every inbound call ends in
a ``WebhookResult`` carrying a 200 or a 400.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from application.dtos.payments import WebhookEnvelope, WebhookResult
from application.services.order_status_service import OrderStatusService
from application.services.signature import SIGNATURE_HEADER, SignatureVerifier, get_header
from core.logging_config import get_logger
from domain.payment.exceptions import (
    OrderNotFound,
    PaymentError,
    SignatureInvalid,
    StructureInvalid,
    UnknownEventType,
)
from shared.codes.payment_codes import ACTION_TO_REMOTE_STATUS, WEBHOOK_EVENT_TO_ACTION

logger = get_logger(__name__)

SUCCESS_MESSAGE = "Webhook processed successfully"


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid webhook payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid webhook payload: {location} {first.get('msg', '')}".strip()


class WebhookProcessor:
    def __init__(self, verifier: SignatureVerifier, order_status: OrderStatusService):
        self._verifier = verifier
        self._orders = order_status

    async def process(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        logger.info("bna_webhook_received", size=len(raw_body or b""))
        envelope: Optional[WebhookEnvelope] = None
        try:
            envelope = self.parse(raw_body, headers)
            action = WEBHOOK_EVENT_TO_ACTION.get(envelope.normalized_type)
            if action is None:
                raise UnknownEventType(envelope.event_type)
            applied = await self._dispatch(action, envelope)
        except PaymentError as exc:
            return await self._reject(exc, envelope)
        except Exception as exc:
            logger.error("bna_webhook_failed", error=str(exc), exc_info=True)
            return WebhookResult(
                status_code=400,
                body={"status": "error", "message": "Webhook processing failed"},
                outcome="rejected",
            )

        logger.info(
            "bna_webhook_applied" if applied else "bna_webhook_noop",
            event_type=envelope.normalized_type,
            event_id=envelope.event_id,
            token=envelope.transaction_token,
        )
        return WebhookResult(
            status_code=200,
            body={"status": "success", "message": SUCCESS_MESSAGE, "event_id": envelope.event_id},
            outcome="applied" if applied else "noop",
        )

    def parse(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEnvelope:
        """Signature first, then JSON, then the envelope fields."""
        if not raw_body or not raw_body.strip():
            raise StructureInvalid("Empty webhook payload")

        if not self._verifier.verify(raw_body, get_header(headers, SIGNATURE_HEADER)):
            raise SignatureInvalid("Invalid webhook signature")

        try:
            data = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StructureInvalid("Invalid JSON payload") from exc
        if not isinstance(data, dict):
            raise StructureInvalid("Webhook payload must be a JSON object")

        try:
            return WebhookEnvelope.model_validate(data)
        except ValidationError as exc:
            raise StructureInvalid(_first_error(exc)) from exc

    async def _dispatch(self, action: str, envelope: WebhookEnvelope) -> bool:
        payload = self._audit_payload(envelope)
        token = envelope.transaction_token

        if action in ACTION_TO_REMOTE_STATUS:
            update = await self._orders.update_status_by_token(
                token, ACTION_TO_REMOTE_STATUS[action], payload, event_id=envelope.event_id
            )
            return update.applied

        if action == "refunded":
            amount = self._amount(envelope.refund_amount, envelope.amount, "refund_amount")
            refund = await self._orders.apply_refund(token, amount, payload, event_id=envelope.event_id)
            return refund.applied

        if action == "chargeback":
            amount = self._amount(envelope.chargeback_amount, envelope.amount, "chargeback_amount")
            update = await self._orders.record_chargeback(token, amount, payload, event_id=envelope.event_id)
            return update.applied

        raise UnknownEventType(envelope.event_type)

    @staticmethod
    def _amount(primary: Optional[Decimal], fallback: Optional[Decimal], name: str) -> Decimal:
        amount = primary if primary is not None else fallback
        if amount is None:
            raise StructureInvalid(f"{name} or amount is required", field=name)
        return amount

    @staticmethod
    def _audit_payload(envelope: WebhookEnvelope) -> dict[str, Any]:
        payload = envelope.model_dump(mode="json", exclude_none=True)
        payload["event_type"] = envelope.normalized_type
        return payload

    async def _reject(self, exc: PaymentError, envelope: Optional[WebhookEnvelope]) -> WebhookResult:
        logger.warning(
            "bna_webhook_rejected",
            error_type=exc.error_type,
            error=exc.message,
            event_type=envelope.event_type if envelope else None,
            event_id=envelope.event_id if envelope else None,
        )
        # only trusted (verified, well-formed) payloads may annotate an order
        if envelope is not None and not isinstance(exc, OrderNotFound):
            try:
                await self._orders.record_rejection(
                    envelope.transaction_token,
                    envelope.normalized_type,
                    exc.message,
                    self._audit_payload(envelope),
                )
            except Exception as note_exc:
                logger.error("bna_webhook_rejection_note_failed", error=str(note_exc), exc_info=True)
        return WebhookResult(
            status_code=400,
            body={"status": "error", "message": exc.message},
            outcome="rejected",
        )
