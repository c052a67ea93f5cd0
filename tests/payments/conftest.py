"""Shared fakes and fixtures for the payment tests."""
import asyncio
from decimal import Decimal
from typing import Optional

import pytest

from application.dtos.payments import (
    ApiResult,
    CheckoutItem,
    CheckoutRequest,
    CheckoutTokenResponse,
    CustomerInfo,
    TransactionDetails,
)
from application.services.order_status_service import OrderStatusService
from application.services.signature import SignatureVerifier
from application.services.webhook_processor import WebhookProcessor
from domain.payment.entity import Order, OrderStatus
from infrastructure.cache.memory_store import InMemoryExpiringStore
from infrastructure.repositories.memory import InMemoryDatabase


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Scripted stand-in for the BNA client; records every call."""

    def __init__(self):
        self.checkout_results: list = []
        self.checkout_calls: list[CheckoutRequest] = []
        self.search_result = ApiResult.success([])
        self.list_result = ApiResult.success([])
        self.status_result: Optional[ApiResult] = None
        self.search_calls: list[str] = []
        self.list_calls = 0
        self.connected = True

    async def create_checkout_token(self, req: CheckoutRequest):
        self.checkout_calls.append(req)
        # yield so concurrent callers really interleave
        await asyncio.sleep(0)
        if self.checkout_results:
            return self.checkout_results.pop(0)
        return ApiResult.success(
            CheckoutTokenResponse(token=f"tok-{len(self.checkout_calls)}", expires_in=1800)
        )

    async def get_transaction(self, transaction_token: str):
        return await self.get_transaction_status(transaction_token)

    async def get_transaction_status(self, transaction_token: str):
        if self.status_result is not None:
            return self.status_result
        return ApiResult.success(TransactionDetails(transaction_token=transaction_token, status="pending"))

    async def search_customers(self, email: str):
        self.search_calls.append(email)
        return self.search_result

    async def list_customers(self):
        self.list_calls += 1
        return self.list_result

    async def test_connection(self) -> bool:
        return self.connected


class RecordingHooks:
    def __init__(self):
        self.completed: list[tuple[str, Optional[str]]] = []
        self.stock_reduced: list[str] = []

    async def payment_complete(self, order_id: str, transaction_token: Optional[str]) -> None:
        self.completed.append((order_id, transaction_token))

    async def reduce_stock(self, order_id: str) -> None:
        self.stock_reduced.append(order_id)


def build_request(
    email: str = "jane@example.com",
    subtotal: str = "20.00",
    items: Optional[list] = None,
    iframe_id: str = "iframe-test",
) -> CheckoutRequest:
    if items is None:
        items = [CheckoutItem(description="Mug", sku="MUG-1", price=Decimal("10.00"), quantity=2)]
    return CheckoutRequest(
        iframe_id=iframe_id,
        customer_info=CustomerInfo(email=email, first_name="Jane", last_name="Doe"),
        items=items,
        subtotal=Decimal(subtotal),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryExpiringStore:
    return InMemoryExpiringStore(clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def hooks() -> RecordingHooks:
    return RecordingHooks()


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def db() -> InMemoryDatabase:
    database = InMemoryDatabase()
    database.add_order(Order(order_id="1001", status=OrderStatus.PENDING, total=Decimal("50.00")))
    return database


@pytest.fixture
def order_status(db, hooks) -> OrderStatusService:
    return OrderStatusService(db.uow_factory(), hooks=hooks)


@pytest.fixture
def processor(order_status) -> WebhookProcessor:
    return WebhookProcessor(SignatureVerifier("whsec-test"), order_status)
