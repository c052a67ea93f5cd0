"""Checkout through settlement: token issuance, webhook deliveries, status polls."""
import asyncio
import hashlib
import hmac
import json
from decimal import Decimal

import pytest

from application.dtos.payments import ApiResult, StartCheckout, TransactionDetails
from application.services.checkout_service import CheckoutService
from application.services.customer_resolver import CustomerConflictResolver
from application.services.token_cache import TokenCache
from domain.payment.entity import OrderStatus
from domain.payment.exceptions import (
    CheckoutUnavailable,
    ConnectivityError,
    InvalidCheckoutRequest,
    StoreUnavailable,
)
from infrastructure.cache.memory_store import InMemoryExpiringStore


@pytest.fixture
def checkout(gateway, store, clock, order_status):
    customers = CustomerConflictResolver(gateway, store, scope="test")
    tokens = TokenCache(store, customers.issue_token, scope="test", cache_duration=1500, clock=clock)
    return CheckoutService(tokens, order_status, gateway, lambda token: f"https://pay.example/checkout/{token}")


def _signed(payload):
    body = json.dumps(payload).encode()
    return body, {"X-BNA-Signature": hmac.new(b"whsec-test", body, hashlib.sha256).hexdigest()}


@pytest.mark.asyncio
async def test_checkout_then_repeated_webhook_settles_once(checkout, processor, order_status, gateway, hooks, make_request):
    session = await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))
    again = await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))

    assert session.token == "tok-1"
    assert session.iframe_url == "https://pay.example/checkout/tok-1"
    assert again.token == "tok-1" and again.from_cache is True
    assert len(gateway.checkout_calls) == 1

    body, headers = _signed(
        {"event_type": "payment.completed", "transaction_token": "tok-1", "reference_number": "REF-1"}
    )
    results = await asyncio.gather(*(processor.process(body, headers) for _ in range(3)))

    assert all(r.status_code == 200 for r in results)
    assert sorted(r.outcome for r in results) == ["applied", "noop", "noop"]
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.PROCESSING
    assert len(await order_status.list_notes("1001")) == 1
    assert hooks.completed == [("1001", "tok-1")]

    # a late poll agrees with the webhook and changes nothing
    gateway.status_result = ApiResult.success(
        TransactionDetails(transaction_token="tok-1", status="approved", reference_number="REF-1")
    )
    view = await checkout.poll_status("tok-1")
    assert view.status == "approved"
    assert len(await order_status.list_notes("1001")) == 1
    assert len(hooks.completed) == 1


@pytest.mark.asyncio
async def test_status_poll_moves_order(checkout, order_status, gateway, hooks, make_request):
    await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))
    gateway.status_result = ApiResult.success(
        TransactionDetails(
            transaction_token="tok-1",
            status="Declined",
            amount=Decimal("20.00"),
            currency="CAD",
            message="Card declined",
        )
    )

    view = await checkout.poll_status("tok-1")

    assert view.message == "Card declined"
    order = await order_status.find_order("tok-1")
    assert order.status is OrderStatus.FAILED
    assert hooks.completed == []


@pytest.mark.asyncio
async def test_status_poll_with_unknown_remote_status_keeps_order(checkout, order_status, gateway, make_request):
    await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))
    gateway.status_result = ApiResult.success(TransactionDetails(transaction_token="tok-1", status="on_hold"))

    view = await checkout.poll_status("tok-1")

    assert view.status == "on_hold"
    assert (await order_status.find_order("tok-1")).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_status_poll_failure_is_generic(checkout, gateway):
    gateway.status_result = ApiResult.failure(ConnectivityError("connection refused"))

    with pytest.raises(CheckoutUnavailable) as exc_info:
        await checkout.poll_status("tok-1")

    assert exc_info.value.message == "Payment status unavailable, please try again."


@pytest.mark.asyncio
async def test_empty_cart_is_rejected_before_any_remote_call(checkout, gateway, make_request):
    with pytest.raises(InvalidCheckoutRequest):
        await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request(items=[], subtotal="0")))
    assert gateway.checkout_calls == []


@pytest.mark.asyncio
async def test_remote_failure_is_reported_generically(checkout, gateway, order_status, make_request):
    gateway.checkout_results.append(ApiResult.failure(ConnectivityError("connection refused")))

    with pytest.raises(CheckoutUnavailable) as exc_info:
        await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))

    assert exc_info.value.message == "Payment form unavailable, please try again."
    assert "connection refused" not in exc_info.value.message
    assert await order_status.find_order("tok-1") is None


class UnreachableStore(InMemoryExpiringStore):
    async def get(self, key):
        raise StoreUnavailable("Expiring store unavailable during get")


@pytest.mark.asyncio
async def test_store_outage_is_reported_generically(gateway, clock, order_status, make_request):
    store = UnreachableStore(clock=clock)
    customers = CustomerConflictResolver(gateway, store, scope="test")
    tokens = TokenCache(store, customers.issue_token, scope="test", clock=clock)
    checkout = CheckoutService(tokens, order_status, gateway, lambda token: token)

    with pytest.raises(CheckoutUnavailable) as exc_info:
        await checkout.start_checkout(StartCheckout(order_id="1001", request=make_request()))

    assert exc_info.value.message == "Payment form unavailable, please try again."
    assert exc_info.value.details == {"cause": "StoreUnavailable"}
    assert gateway.checkout_calls == []
