from decimal import Decimal

import pytest

from domain.payment.entity import Order, OrderStatus, map_remote_status
from domain.payment.exceptions import InvalidTransition, RefundExceedsTotal, UnknownStatus


@pytest.mark.parametrize(
    "remote,local",
    [
        ("completed", OrderStatus.PROCESSING),
        ("Approved", OrderStatus.PROCESSING),
        (" SUCCESS ", OrderStatus.PROCESSING),
        ("declined", OrderStatus.FAILED),
        ("failed", OrderStatus.FAILED),
        ("cancelled", OrderStatus.CANCELLED),
        ("refunded", OrderStatus.REFUNDED),
        ("pending", OrderStatus.PENDING),
    ],
)
def test_remote_status_mapping(remote, local):
    assert map_remote_status(remote) is local


@pytest.mark.parametrize("remote", ["", None, "settled", "complete"])
def test_unknown_status_has_no_default(remote):
    with pytest.raises(UnknownStatus):
        map_remote_status(remote)


def _order(status: OrderStatus, total: str = "50.00") -> Order:
    return Order(order_id="o-1", status=status, total=Decimal(total))


def test_repeated_transition_is_noop():
    order = _order(OrderStatus.PENDING)
    assert order.transition_to(OrderStatus.PROCESSING) is True
    paid_at = order.paid_at
    assert paid_at is not None
    assert order.transition_to(OrderStatus.PROCESSING) is False
    assert order.paid_at == paid_at


def test_completed_order_satisfies_processing_and_ignores_late_pending():
    order = _order(OrderStatus.COMPLETED)
    assert order.transition_to(OrderStatus.PROCESSING) is False
    assert order.transition_to(OrderStatus.PENDING) is False
    assert order.status is OrderStatus.COMPLETED


def test_failed_order_can_be_retried():
    order = _order(OrderStatus.FAILED)
    assert order.transition_to(OrderStatus.PROCESSING) is True


@pytest.mark.parametrize(
    "start,target",
    [
        (OrderStatus.PROCESSING, OrderStatus.FAILED),
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
        (OrderStatus.REFUNDED, OrderStatus.PROCESSING),
        (OrderStatus.PENDING, OrderStatus.REFUNDED),
    ],
)
def test_disallowed_transitions_raise(start, target):
    order = _order(start)
    with pytest.raises(InvalidTransition):
        order.transition_to(target)
    assert order.status is start


def test_refund_equal_to_total_is_full():
    order = _order(OrderStatus.PROCESSING)
    assert order.apply_refund(Decimal("50.00")) is True
    assert order.status is OrderStatus.REFUNDED


def test_partial_refunds_accumulate_to_full():
    order = _order(OrderStatus.PROCESSING)
    assert order.apply_refund(Decimal("20.00")) is False
    assert order.status is OrderStatus.PROCESSING
    assert order.apply_refund(Decimal("30.00")) is True
    assert order.refunded_total == Decimal("50.00")
    assert order.status is OrderStatus.REFUNDED


@pytest.mark.parametrize("amount", ["50.01", "0", "-1"])
def test_refund_outside_bounds_is_rejected(amount):
    order = _order(OrderStatus.PROCESSING)
    with pytest.raises(RefundExceedsTotal):
        order.apply_refund(Decimal(amount))
    assert order.refunded_total == Decimal("0")
    assert order.status is OrderStatus.PROCESSING
