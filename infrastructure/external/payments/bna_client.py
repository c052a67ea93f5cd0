"""
BNA Smart Payment REST adapter.

Every public operation returns an ``ApiResult``; transport, HTTP and decoding
failures come back as typed errors instead of propagating.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx

from application.dtos.payments import (
    ApiResult,
    CheckoutRequest,
    CheckoutTokenResponse,
    Customer,
    TransactionDetails,
    normalize_customers,
)
from core.config import BnaSettings
from core.logging_config import get_logger
from domain.payment.exceptions import (
    AuthError,
    CustomerConflict,
    MalformedResponse,
    PaymentError,
    RemoteApiError,
)
from infrastructure.external.api_clients.base import (
    APIResponse,
    BaseAPIClient,
    extract_error_message,
)
from infrastructure.external.payments.credentials import CredentialResolver

logger = get_logger(__name__)

CONFLICT_MARKERS = ("already exists", "duplicate")


def is_conflict_response(status_code: int, message: str) -> bool:
    if status_code == 409:
        return True
    return status_code == 400 and any(marker in message.lower() for marker in CONFLICT_MARKERS)


def _dig(data: Any, *keys: str) -> Any:
    """First non-empty value for any key, at top level or under ``data``."""
    if not isinstance(data, dict):
        return None
    scopes = [data]
    if isinstance(data.get("data"), dict):
        scopes.append(data["data"])
    for scope in scopes:
        for key in keys:
            value = scope.get(key)
            if value not in (None, ""):
                return value
    return None


def _expires_in(data: Any) -> Optional[int]:
    raw = _dig(data, "expiresIn", "expires_in")
    if raw is not None:
        try:
            return max(int(float(raw)), 0)
        except (TypeError, ValueError):
            return None
    raw_at = _dig(data, "expiresAt", "expires_at")
    if isinstance(raw_at, str):
        try:
            expires_at = datetime.fromisoformat(raw_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return max(int((expires_at - datetime.now(timezone.utc)).total_seconds()), 0)
    return None


class BnaApiClient(BaseAPIClient):
    provider = "bna"

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        timeout: float = 30.0,
        connect_test_timeout: float = 5.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        user_agent: str = "BNA-Payment-Bridge/1.0.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        debug: bool = False,
    ):
        super().__init__(
            base_url=credentials.base_url(),
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            headers={"Authorization": credentials.auth_header(), "User-Agent": user_agent},
            verify_ssl=credentials.verify_tls,
            transport=transport,
            debug=debug,
        )
        self.credentials = credentials
        self.connect_test_timeout = connect_test_timeout

    @classmethod
    def from_settings(
        cls,
        bna: BnaSettings,
        credentials: Optional[CredentialResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BnaApiClient":
        return cls(
            credentials or CredentialResolver.from_settings(bna),
            timeout=bna.timeout_seconds,
            connect_test_timeout=bna.connect_test_timeout_seconds,
            max_retries=bna.max_retries,
            retry_delay=bna.retry_delay,
            user_agent=bna.user_agent,
            transport=transport,
        )

    def _error_for(self, response: APIResponse) -> RemoteApiError:
        message = extract_error_message(response.status_code, response.data)
        if is_conflict_response(response.status_code, message):
            return CustomerConflict(message, status_code=response.status_code, body=response.data)
        return super()._error_for(response)

    async def _call(self, method: str, endpoint: str, **kwargs) -> ApiResult[APIResponse]:
        if not self.credentials.is_configured:
            return ApiResult.failure(
                AuthError("BNA API credentials are not configured", status_code=401)
            )
        try:
            return ApiResult.success(await self._request(method, endpoint, **kwargs))
        except PaymentError as exc:
            logger.warning(
                "bna_api_call_failed",
                method=method,
                endpoint=endpoint,
                error_type=exc.error_type,
                error=exc.message,
            )
            return ApiResult.failure(exc)

    async def create_checkout_token(self, req: CheckoutRequest) -> ApiResult[CheckoutTokenResponse]:
        result = await self._call("POST", "/checkout", json_data=req.to_api_payload())
        if not result.ok:
            return ApiResult.failure(result.error)  # type: ignore[arg-type]

        data = result.value.data  # type: ignore[union-attr]
        token = _dig(data, "token", "checkoutToken", "iframeToken")
        if not token:
            return ApiResult.failure(
                MalformedResponse("Checkout token missing from API response", status_code=result.value.status_code)  # type: ignore[union-attr]
            )
        customer_id = _dig(data, "customerId", "customer_id")
        logger.info(
            "bna_checkout_token_created",
            iframe_id=req.iframe_id,
            by_customer_id=bool(req.customer_id),
        )
        return ApiResult.success(
            CheckoutTokenResponse(
                token=str(token),
                expires_in=_expires_in(data),
                customer_id=str(customer_id) if customer_id else None,
                raw=data if isinstance(data, dict) else {},
            )
        )

    async def get_transaction(self, transaction_token: str) -> ApiResult[TransactionDetails]:
        result = await self._call("GET", f"/transactions/{quote(transaction_token, safe='')}")
        if not result.ok:
            return ApiResult.failure(result.error)  # type: ignore[arg-type]
        return ApiResult.success(TransactionDetails.from_api(transaction_token, result.value.data))  # type: ignore[union-attr]

    async def get_transaction_status(self, transaction_token: str) -> ApiResult[TransactionDetails]:
        result = await self._call("GET", f"/transactions/{quote(transaction_token, safe='')}/status")
        if not result.ok:
            return ApiResult.failure(result.error)  # type: ignore[arg-type]
        return ApiResult.success(TransactionDetails.from_api(transaction_token, result.value.data))  # type: ignore[union-attr]

    async def search_customers(self, email: str) -> ApiResult[list[Customer]]:
        result = await self._call("GET", "/customers", params={"email": email.strip()})
        if not result.ok:
            return ApiResult.failure(result.error)  # type: ignore[arg-type]
        return ApiResult.success(normalize_customers(result.value.data))  # type: ignore[union-attr]

    async def list_customers(self) -> ApiResult[list[Customer]]:
        result = await self._call("GET", "/customers")
        if not result.ok:
            return ApiResult.failure(result.error)  # type: ignore[arg-type]
        return ApiResult.success(normalize_customers(result.value.data))  # type: ignore[union-attr]

    async def test_connection(self) -> bool:
        """Ping the API; any failure degrades to False."""
        result = await self._call(
            "GET", "/ping", timeout=self.connect_test_timeout, max_retries=0
        )
        logger.info(
            "bna_connection_tested",
            environment=self.credentials.environment.value,
            ok=result.ok,
        )
        return result.ok


async def check_credentials(
    bna: BnaSettings,
    base: CredentialResolver,
    *,
    access_key: Optional[str] = None,
    secret_key: Optional[str] = None,
    environment: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Ping with candidate credentials without touching the configured client."""
    candidate = base.with_credentials(access_key, secret_key, environment)
    async with BnaApiClient.from_settings(bna, credentials=candidate, transport=transport) as client:
        return await client.test_connection()
