"""
Checkout token cache.

Reuses a remote checkout token for identical carts while it is still
comfortably inside its remote lifetime, and collapses concurrent refreshes of
one key into a single remote call.
"""
from __future__ import annotations

import hashlib
import json
import math
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from application.dtos.payments import (
    ApiResult,
    CachedToken,
    CheckoutRequest,
    CheckoutTokenResponse,
    CustomerIdentity,
    TokenGrant,
    to_cents,
)
from application.ports.cache import ExpiringStore
from core.logging_config import get_logger
from domain.payment.exceptions import InvalidCheckoutRequest, StoreUnavailable

logger = get_logger(__name__)

TOKEN_CACHE_PREFIX = "bna_bridge_token_"

TokenIssuer = Callable[
    [CheckoutRequest, Optional[CustomerIdentity]], Awaitable[ApiResult[CheckoutTokenResponse]]
]


def build_cache_key(request: CheckoutRequest) -> str:
    """md5 over iframe id, customer email, subtotal and item count.

    Item contents and payment method are deliberately not part of the key.
    """
    key_data = {
        "iframe_id": request.iframe_id,
        "customer_email": request.customer_email,
        "subtotal": str(to_cents(request.subtotal)),
        "items_count": len(request.items),
    }
    raw = json.dumps(key_data, separators=(",", ":"))
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def validate_checkout_request(request: CheckoutRequest) -> Optional[InvalidCheckoutRequest]:
    if not request.iframe_id.strip():
        return InvalidCheckoutRequest("iframe id is not configured", field="iframe_id")
    if not request.customer_id and not request.customer_email:
        return InvalidCheckoutRequest("customer email is required", field="email")
    if not request.items:
        return InvalidCheckoutRequest("cart has no items", field="items")
    if request.subtotal <= 0:
        return InvalidCheckoutRequest("subtotal must be greater than zero", field="subtotal")
    return None


class TokenCache:
    def __init__(
        self,
        store: ExpiringStore,
        issuer: TokenIssuer,
        *,
        scope: str,
        cache_duration: int = 1500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._scope = scope
        self._cache_duration = cache_duration
        self._clock = clock

    @property
    def scope_prefix(self) -> str:
        return f"{TOKEN_CACHE_PREFIX}{self._scope}:"

    def store_key(self, cache_key: str) -> str:
        return f"{self.scope_prefix}{cache_key}"

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def _read(self, cache_key: str) -> Optional[CachedToken]:
        raw = await self._store.get(self.store_key(cache_key))
        if raw is None:
            return None
        entry = CachedToken.model_validate(raw)
        if self._clock() < entry.expires_at.timestamp():
            return entry
        await self._store.delete(self.store_key(cache_key))
        return None

    async def get_or_create(
        self,
        request: CheckoutRequest,
        force_refresh: bool = False,
        identity: Optional[CustomerIdentity] = None,
    ) -> ApiResult[TokenGrant]:
        invalid = validate_checkout_request(request)
        if invalid is not None:
            return ApiResult.failure(invalid)

        cache_key = build_cache_key(request)
        try:
            return await self._get_or_issue(cache_key, request, force_refresh, identity)
        except StoreUnavailable as exc:
            logger.error("checkout_token_store_failed", cache_key=cache_key, error=exc.message)
            return ApiResult.failure(exc)

    async def _get_or_issue(
        self,
        cache_key: str,
        request: CheckoutRequest,
        force_refresh: bool,
        identity: Optional[CustomerIdentity],
    ) -> ApiResult[TokenGrant]:
        if not force_refresh:
            cached = await self._read(cache_key)
            if cached is not None:
                logger.debug("checkout_token_cache_hit", cache_key=cache_key)
                return ApiResult.success(
                    TokenGrant(token=cached.token, expires_at=cached.expires_at, from_cache=True)
                )

        async with self._store.lock(self.store_key(cache_key)):
            if not force_refresh:
                # filled by a concurrent caller while we waited
                cached = await self._read(cache_key)
                if cached is not None:
                    return ApiResult.success(
                        TokenGrant(token=cached.token, expires_at=cached.expires_at, from_cache=True)
                    )

            result = await self._issuer(request, identity)
            if not result.ok:
                return ApiResult.failure(result.error)  # type: ignore[arg-type]
            issued = result.unwrap()

            lifetime = self._cache_duration
            if issued.expires_in is not None:
                lifetime = min(lifetime, issued.expires_in)
            created_at = self._now()
            expires_at = datetime.fromtimestamp(self._clock() + lifetime, tz=timezone.utc)

            if lifetime > 0:
                entry = CachedToken(
                    token=issued.token,
                    created_at=created_at,
                    expires_at=expires_at,
                    cache_key=cache_key,
                )
                await self._store.set(
                    self.store_key(cache_key), entry.model_dump(mode="json"), ttl=math.ceil(lifetime)
                )
            logger.info(
                "checkout_token_cached",
                cache_key=cache_key,
                lifetime=lifetime,
                forced=force_refresh,
            )
            return ApiResult.success(
                TokenGrant(token=issued.token, expires_at=expires_at, from_cache=False)
            )

    async def invalidate(self, target: Union[CheckoutRequest, str]) -> bool:
        cache_key = build_cache_key(target) if isinstance(target, CheckoutRequest) else target
        return await self._store.delete(self.store_key(cache_key))

    async def clear(self, all_scopes: bool = False) -> int:
        prefix = TOKEN_CACHE_PREFIX if all_scopes else self.scope_prefix
        cleared = await self._store.clear(prefix)
        logger.info("checkout_token_cache_cleared", cleared=cleared, all_scopes=all_scopes)
        return cleared

    async def stats(self) -> dict:
        return {
            "cached_tokens": len(await self._store.keys(self.scope_prefix)),
            "cache_duration": self._cache_duration,
            "cache_prefix": TOKEN_CACHE_PREFIX,
        }
