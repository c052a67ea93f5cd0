import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.services.order_status_service import OrderStatusService
from application.services.signature import SignatureVerifier
from application.services.webhook_processor import WebhookProcessor
from domain.payment.entity import Order, OrderNote, OrderStatus, Transaction
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.unit_of_work import sqlalchemy_uow_factory


async def _database(url: str = "sqlite+aiosqlite:///:memory:"):
    engine = build_engine(url)
    await create_tables(engine)
    factory = sqlalchemy_uow_factory(build_session_factory(engine))
    async with factory() as uow:
        await uow.orders.save(Order(order_id="1001", status=OrderStatus.PENDING, total=Decimal("50.00")))
    return engine, factory


@pytest.mark.asyncio
async def test_order_round_trip_and_notes():
    engine, factory = await _database()
    try:
        async with factory() as uow:
            order = await uow.orders.get_for_update("1001")
            order.transition_to(OrderStatus.PROCESSING)
            order.flag_chargeback(Decimal("12.50"), "CB-1")
            await uow.orders.save(order)
            await uow.orders.add_note(OrderNote(order_id="1001", message="first"))
            await uow.orders.add_note(OrderNote(order_id="1001", message="second"))

        async with factory(readonly=True) as uow:
            stored = await uow.orders.get("1001")
            notes = await uow.orders.list_notes("1001")

        assert stored.status is OrderStatus.PROCESSING
        assert stored.total == Decimal("50.00")
        assert stored.paid_at is not None and stored.paid_at.tzinfo is not None
        assert stored.chargeback.amount == Decimal("12.50")
        assert stored.chargeback.reference == "CB-1"
        assert [n.message for n in notes] == ["first", "second"]
        assert await _missing(factory) is None
    finally:
        await engine.dispose()


async def _missing(factory):
    async with factory(readonly=True) as uow:
        return await uow.orders.get("nope")


@pytest.mark.asyncio
async def test_failed_unit_of_work_rolls_back():
    engine, factory = await _database()
    try:
        with pytest.raises(RuntimeError):
            async with factory() as uow:
                order = await uow.orders.get_for_update("1001")
                order.transition_to(OrderStatus.CANCELLED)
                await uow.orders.save(order)
                await uow.orders.add_note(OrderNote(order_id="1001", message="never"))
                raise RuntimeError("boom")

        async with factory(readonly=True) as uow:
            assert (await uow.orders.get("1001")).status is OrderStatus.PENDING
            assert await uow.orders.list_notes("1001") == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_newest_transaction_wins():
    engine, factory = await _database()
    now = datetime.now(timezone.utc)
    try:
        async with factory() as uow:
            await uow.transactions.add(
                Transaction(id=None, order_id="1001", transaction_token="tok-old", created_at=now - timedelta(minutes=5))
            )
            added = await uow.transactions.add(
                Transaction(id=None, order_id="1001", transaction_token="tok-new", created_at=now)
            )
            added.record("approved", {"reference_number": "R-1"}, event_id="e-1", reference_number="R-1")
            await uow.transactions.update(added)

        async with factory(readonly=True) as uow:
            latest = await uow.transactions.get_latest_for_order("1001")
            by_token = await uow.transactions.get_latest_by_token("tok-old")
            unknown = await uow.transactions.get_latest_by_token("tok-none")

        assert latest.transaction_token == "tok-new"
        assert latest.status == "approved"
        assert latest.reference_number == "R-1"
        assert latest.raw_payload == {"reference_number": "R-1"}
        assert latest.applied_event_ids == ["e-1"]
        assert by_token.transaction_token == "tok-old"
        assert unknown is None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_webhook_flow_on_sqlalchemy():
    engine, factory = await _database()
    try:
        order_status = OrderStatusService(factory)
        processor = WebhookProcessor(SignatureVerifier("whsec-test"), order_status)
        await order_status.register_transaction("1001", "tok-1")

        body = json.dumps(
            {"event_type": "payment.completed", "transaction_token": "tok-1", "event_id": "e-1"}
        ).encode()
        headers = {"X-BNA-Signature": hmac.new(b"whsec-test", body, hashlib.sha256).hexdigest()}
        first = await processor.process(body, headers)
        second = await processor.process(body, headers)

        refund = json.dumps(
            {"event_type": "payment.refunded", "transaction_token": "tok-1", "refund_amount": "50.00"}
        ).encode()
        refunded = await processor.process(
            refund, {"X-BNA-Signature": hmac.new(b"whsec-test", refund, hashlib.sha256).hexdigest()}
        )

        assert (first.outcome, second.outcome, refunded.outcome) == ("applied", "noop", "applied")
        order = await order_status.find_order("tok-1")
        assert order.status is OrderStatus.REFUNDED
        assert order.refunded_total == Decimal("50.00")
        assert len(await order_status.list_notes("1001")) == 2
    finally:
        await engine.dispose()


def _signed(payload: dict) -> tuple:
    body = json.dumps(payload).encode()
    return body, {"X-BNA-Signature": hmac.new(b"whsec-test", body, hashlib.sha256).hexdigest()}


async def _deliver_completion_three_times(url: str, hooks):
    engine, factory = await _database(url)
    try:
        order_status = OrderStatusService(factory, hooks=hooks)
        processor = WebhookProcessor(SignatureVerifier("whsec-test"), order_status)
        await order_status.register_transaction("1001", "tok-1")

        body, headers = _signed(
            {"event_type": "payment.completed", "transaction_token": "tok-1", "reference_number": "REF-1"}
        )
        results = await asyncio.gather(*(processor.process(body, headers) for _ in range(3)))
        notes = await order_status.list_notes("1001")
        order = await order_status.find_order("tok-1")
    finally:
        await engine.dispose()
    return results, notes, order


@pytest.mark.asyncio
async def test_concurrent_completions_apply_once_on_sqlite_file(tmp_path, hooks):
    url = f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}"

    results, notes, order = await _deliver_completion_three_times(url, hooks)

    assert [r.status_code for r in results] == [200, 200, 200]
    assert sorted(r.outcome for r in results) == ["applied", "noop", "noop"]
    assert order.status is OrderStatus.PROCESSING
    assert len(notes) == 1
    assert hooks.completed == [("1001", "tok-1")]
    assert hooks.stock_reduced == ["1001"]


@pytest.mark.asyncio
async def test_concurrent_completions_apply_once_on_sqlite_memory(hooks):
    results, notes, order = await _deliver_completion_three_times("sqlite+aiosqlite:///:memory:", hooks)

    assert sorted(r.outcome for r in results) == ["applied", "noop", "noop"]
    assert len(notes) == 1
    assert hooks.completed == [("1001", "tok-1")]
