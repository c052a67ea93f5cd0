import hashlib
import hmac
import json
from decimal import Decimal

import pytest

from domain.payment.entity import OrderStatus

SECRET = "whsec-test"


def _delivery(payload) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    signature = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-BNA-Signature": signature, "Content-Type": "application/json"}


async def _send(processor, payload):
    body, headers = _delivery(payload)
    return await processor.process(body, headers)


async def _paid_order(order_status, processor):
    await order_status.register_transaction("1001", "tok-1")
    result = await _send(
        processor,
        {"event_type": "payment.completed", "transaction_token": "tok-1", "event_id": "evt-paid"},
    )
    assert result.outcome == "applied"


@pytest.mark.asyncio
async def test_repeated_completion_is_applied_once(processor, order_status, hooks):
    await order_status.register_transaction("1001", "tok-1")
    payload = {
        "event_type": "payment.completed",
        "transaction_token": "tok-1",
        "reference_number": "REF-9",
        "amount": "50.00",
        "currency": "CAD",
    }

    results = [await _send(processor, {**payload, "event_id": f"evt-{i}"}) for i in range(3)]

    assert [r.status_code for r in results] == [200, 200, 200]
    assert [r.outcome for r in results] == ["applied", "noop", "noop"]
    assert results[0].body == {
        "status": "success",
        "message": "Webhook processed successfully",
        "event_id": "evt-0",
    }
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PROCESSING
    assert order.paid_at is not None
    notes = await order_status.list_notes("1001")
    assert len(notes) == 1
    assert "completed successfully" in notes[0].message
    assert "Reference: REF-9" in notes[0].message
    assert "Amount: 50.00 CAD" in notes[0].message
    assert hooks.completed == [("1001", "tok-1")]
    assert hooks.stock_reduced == ["1001"]


@pytest.mark.asyncio
async def test_event_type_is_case_insensitive(processor, order_status):
    await order_status.register_transaction("1001", "tok-1")
    result = await _send(processor, {"event_type": " Payment.Completed ", "transaction_token": "tok-1"})
    assert result.status_code == 200


@pytest.mark.asyncio
async def test_failure_note_carries_reason(processor, order_status, hooks):
    await order_status.register_transaction("1001", "tok-1")
    result = await _send(
        processor,
        {"event_type": "payment.failed", "transaction_token": "tok-1", "failure_reason": "Insufficient funds"},
    )
    assert result.status_code == 200
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.FAILED
    notes = await order_status.list_notes("1001")
    assert "Insufficient funds" in notes[-1].message
    assert hooks.completed == []


@pytest.mark.asyncio
async def test_tampered_body_is_rejected_without_side_effects(processor, order_status):
    await order_status.register_transaction("1001", "tok-1")
    body, headers = _delivery({"event_type": "payment.completed", "transaction_token": "tok-1"})

    result = await processor.process(body.replace(b"completed", b"cancelled"), headers)

    assert result.status_code == 400
    assert result.body == {"status": "error", "message": "Invalid webhook signature"}
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PENDING
    assert await order_status.list_notes("1001") == []


@pytest.mark.asyncio
async def test_non_ascii_signature_is_an_invalid_signature(processor, order_status):
    await order_status.register_transaction("1001", "tok-1")
    body, headers = _delivery({"event_type": "payment.completed", "transaction_token": "tok-1"})
    headers["X-BNA-Signature"] = "é" * 64

    result = await processor.process(body, headers)

    assert result.status_code == 400
    assert result.body == {"status": "error", "message": "Invalid webhook signature"}
    assert (await order_status.find_order("tok-1")).status is OrderStatus.PENDING
    assert await order_status.list_notes("1001") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"", b"   ", b"not json", b"[1, 2]", b'{"event_type": "payment.completed"}', b'{"transaction_token": "tok-1"}'],
)
async def test_malformed_payloads_are_rejected(processor, body):
    signature = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
    result = await processor.process(body, {"X-BNA-Signature": signature})
    assert result.status_code == 400
    assert result.body["status"] == "error"


@pytest.mark.asyncio
async def test_unknown_event_type_is_rejected_with_note(processor, order_status):
    await order_status.register_transaction("1001", "tok-1")
    result = await _send(processor, {"event_type": "payment.teleported", "transaction_token": "tok-1"})

    assert result.status_code == 400
    assert result.body["message"] == "Unknown event type: payment.teleported"
    notes = await order_status.list_notes("1001")
    assert len(notes) == 1
    assert "rejected" in notes[0].message


@pytest.mark.asyncio
async def test_unknown_token_is_rejected(processor, order_status):
    result = await _send(processor, {"event_type": "payment.completed", "transaction_token": "tok-unknown"})
    assert result.status_code == 400
    assert "Order not found" in result.body["message"]
    assert await order_status.list_notes("1001") == []


@pytest.mark.asyncio
async def test_invalid_transition_is_rejected_and_noted(processor, order_status):
    await _paid_order(order_status, processor)
    result = await _send(processor, {"event_type": "payment.failed", "transaction_token": "tok-1"})

    assert result.status_code == 400
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PROCESSING
    notes = await order_status.list_notes("1001")
    assert len(notes) == 2
    assert "cannot move from processing to failed" in notes[-1].message


@pytest.mark.asyncio
async def test_late_pending_does_not_regress(processor, order_status):
    await _paid_order(order_status, processor)
    result = await _send(processor, {"event_type": "payment.pending", "transaction_token": "tok-1"})
    assert result.status_code == 200
    assert result.outcome == "noop"
    assert (await order_status.find_order("tok-1")).status is OrderStatus.PROCESSING


@pytest.mark.asyncio
async def test_full_refund_and_replay(processor, order_status):
    await _paid_order(order_status, processor)
    payload = {
        "event_type": "payment.refunded",
        "transaction_token": "tok-1",
        "event_id": "evt-refund",
        "refund_amount": "50.00",
    }

    first = await _send(processor, payload)
    replay = await _send(processor, payload)

    assert first.outcome == "applied"
    assert replay.status_code == 200 and replay.outcome == "noop"
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.REFUNDED
    assert order.refunded_total == Decimal("50.00")


@pytest.mark.asyncio
async def test_partial_refund_replay_by_event_id(processor, order_status):
    await _paid_order(order_status, processor)
    payload = {"event_type": "refund.completed", "transaction_token": "tok-1", "event_id": "evt-r1", "amount": "20.00"}

    await _send(processor, payload)
    replay = await _send(processor, payload)

    assert replay.outcome == "noop"
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PROCESSING
    assert order.refunded_total == Decimal("20.00")


@pytest.mark.asyncio
async def test_refund_above_total_is_rejected(processor, order_status):
    await _paid_order(order_status, processor)
    result = await _send(
        processor, {"event_type": "payment.refunded", "transaction_token": "tok-1", "refund_amount": "50.01"}
    )
    assert result.status_code == 400
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PROCESSING
    assert order.refunded_total == Decimal("0")


@pytest.mark.asyncio
async def test_refund_without_amount_is_rejected(processor, order_status):
    await _paid_order(order_status, processor)
    result = await _send(processor, {"event_type": "payment.refunded", "transaction_token": "tok-1"})
    assert result.status_code == 400
    assert "amount is required" in result.body["message"]


@pytest.mark.asyncio
async def test_chargeback_is_recorded_once(processor, order_status):
    await _paid_order(order_status, processor)
    payload = {
        "event_type": "payment.chargeback",
        "transaction_token": "tok-1",
        "chargeback_amount": "50.00",
        "reference_number": "CB-1",
    }

    first = await _send(processor, payload)
    second = await _send(processor, payload)

    assert first.outcome == "applied"
    assert second.outcome == "noop"
    order = await order_status.find_order("tok-1")
    assert order.chargeback.amount == Decimal("50.00")
    assert order.chargeback.reference == "CB-1"
    notes = await order_status.list_notes("1001")
    assert sum("chargeback" in n.message for n in notes) == 1


@pytest.mark.asyncio
async def test_direct_status_update_by_order_id(order_status, hooks):
    await order_status.register_transaction("1001", "tok-1")

    update = await order_status.update_status("1001", "Approved", {"reference_number": "REF-2"})
    repeat = await order_status.update_status("1001", "approved")

    assert (update.previous, update.current, update.applied) == ("pending", "processing", True)
    assert repeat.applied is False
    assert hooks.completed == [("1001", "tok-1")]
