"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application services depend on this Protocol; the BNA REST adapter in
infrastructure implements it. Implementations return ``ApiResult`` values
and never raise for remote failures.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    ApiResult,
    CheckoutRequest,
    CheckoutTokenResponse,
    Customer,
    TransactionDetails,
)


@runtime_checkable
class PaymentGateway(Protocol):
    provider: str

    async def create_checkout_token(self, req: CheckoutRequest) -> ApiResult[CheckoutTokenResponse]: ...

    async def get_transaction(self, transaction_token: str) -> ApiResult[TransactionDetails]: ...

    async def get_transaction_status(self, transaction_token: str) -> ApiResult[TransactionDetails]: ...

    async def search_customers(self, email: str) -> ApiResult[list[Customer]]: ...

    async def list_customers(self) -> ApiResult[list[Customer]]: ...

    async def test_connection(self) -> bool: ...
