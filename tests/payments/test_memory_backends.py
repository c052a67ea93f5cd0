import asyncio
from decimal import Decimal

import pytest

from domain.payment.entity import Order, OrderNote, OrderStatus
from infrastructure.cache.memory_store import InMemoryExpiringStore
from infrastructure.tasks.tasks import payments as payment_tasks
from main import _sweep_periodically


@pytest.mark.asyncio
async def test_store_entries_expire(clock, store):
    await store.set("a", {"v": 1}, ttl=10)
    await store.set("b", {"v": 2}, ttl=100)

    clock.advance(11)

    assert await store.get("a") is None
    assert await store.get("b") == {"v": 2}
    assert await store.keys() == ["b"]


@pytest.mark.asyncio
async def test_sweep_removes_only_expired(clock, store):
    await store.set("bna:token:x", "1", ttl=10)
    await store.set("bna:token:y", "2", ttl=100)
    clock.advance(50)

    assert await store.sweep_expired() == 1
    assert await store.keys() == ["bna:token:y"]


@pytest.mark.asyncio
async def test_lifespan_sweeper_evicts_from_the_live_store(clock, store):
    await store.set("bna:token:x", "1", ttl=10)
    await store.set("bna:token:y", "2", ttl=100)
    clock.advance(50)

    sweeper = asyncio.create_task(_sweep_periodically(store, 0))
    for _ in range(3):
        await asyncio.sleep(0)
    sweeper.cancel()
    with pytest.raises(asyncio.CancelledError):
        await sweeper

    # nothing left for a manual sweep: the background loop already evicted it
    assert await store.sweep_expired() == 0
    assert await store.keys() == ["bna:token:y"]


@pytest.mark.asyncio
async def test_store_clear_by_prefix():
    store = InMemoryExpiringStore()
    await store.set("bna:token:s1:a", "1", ttl=60)
    await store.set("bna:token:s2:b", "2", ttl=60)
    await store.set("bna:customer:c", "3", ttl=60)

    assert await store.clear("bna:token:s1:") == 1
    assert sorted(await store.keys()) == ["bna:customer:c", "bna:token:s2:b"]


@pytest.mark.asyncio
async def test_rolled_back_unit_of_work_publishes_nothing(db):
    factory = db.uow_factory()
    with pytest.raises(RuntimeError):
        async with factory() as uow:
            order = await uow.orders.get_for_update("1001")
            order.transition_to(OrderStatus.FAILED)
            await uow.orders.save(order)
            await uow.orders.add_note(OrderNote(order_id="1001", message="never"))
            raise RuntimeError("boom")

    assert db.orders["1001"].status is OrderStatus.PENDING
    assert db.notes.get("1001", []) == []


@pytest.mark.asyncio
async def test_order_lock_serializes_units_of_work(db):
    factory = db.uow_factory()
    seen = []

    async def bump(label):
        async with factory() as uow:
            order = await uow.orders.get_for_update("1001")
            seen.append((label, order.refunded_total))
            await asyncio.sleep(0)
            order.refunded_total += Decimal("1")
            await uow.orders.save(order)

    await asyncio.gather(bump("a"), bump("b"))

    assert [total for _, total in seen] == [Decimal("0"), Decimal("1")]
    assert db.orders["1001"].refunded_total == Decimal("2")


@pytest.mark.asyncio
async def test_readonly_unit_of_work_does_not_publish(db):
    db.add_order(Order(order_id="2002", status=OrderStatus.PENDING, total=Decimal("5")))
    async with db.uow_factory()(readonly=True) as uow:
        order = await uow.orders.get("2002")
        order.status = OrderStatus.CANCELLED
        await uow.orders.save(order)
    assert db.orders["2002"].status is OrderStatus.PENDING


def test_poll_status_task_returns_view(monkeypatch):
    async def fake_reconcile(token):
        return {"status": "approved", "token": token}

    monkeypatch.setattr(payment_tasks, "reconcile_status", fake_reconcile)

    result = payment_tasks.task_poll_status.apply(args=["tok-1"])

    assert result.get() == {"status": "approved", "token": "tok-1"}


@pytest.mark.asyncio
async def test_store_locks_are_dropped_once_released(store):
    for n in range(200):
        async with store.lock(f"bna:token:cart-{n}"):
            pass

    assert store.lock_count == 0


@pytest.mark.asyncio
async def test_contended_store_lock_survives_until_last_waiter(store):
    order = []

    async def hold(label):
        async with store.lock("bna:token:shared"):
            order.append((label, store.lock_count))
            await asyncio.sleep(0)

    await asyncio.gather(hold("a"), hold("b"), hold("c"))

    assert [label for label, _ in order] == ["a", "b", "c"]
    assert all(count == 1 for _, count in order)
    assert store.lock_count == 0


@pytest.mark.asyncio
async def test_order_locks_are_dropped_after_units_of_work(db):
    factory = db.uow_factory()
    for n in range(50):
        db.add_order(Order(order_id=f"o-{n}", status=OrderStatus.PENDING, total=Decimal("5")))

    async def touch(order_id):
        async with factory() as uow:
            await uow.orders.get_for_update(order_id)
            await asyncio.sleep(0)

    await asyncio.gather(*(touch(f"o-{n % 10}") for n in range(50)))

    assert db.lock_count == 0
