"""
Customer conflict resolution for checkout token creation.

The remote API refuses to create a customer whose email it already knows
(409, or a 400 saying "already exists"). Recovery looks the customer up by
email, remembers its id for the shopper and retries the checkout by id.
Every failure along the way ends in ``CustomerConflictUnresolved``.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from application.dtos.payments import (
    ApiResult,
    CheckoutRequest,
    CheckoutTokenResponse,
    Customer,
    CustomerIdentity,
    normalize_email,
)
from application.ports.cache import ExpiringStore
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.exceptions import (
    CustomerConflict,
    CustomerConflictUnresolved,
    RemoteApiError,
    StoreUnavailable,
)

logger = get_logger(__name__)

CUSTOMER_ID_PREFIX = "bna_customer_"
WEEK_SECONDS = 7 * 24 * 3600


def find_matching_customer(customers: list[Customer], email: str) -> Optional[Customer]:
    """First customer whose email equals ``email`` (trimmed, case-insensitive)."""
    for customer in customers:
        if customer.matches_email(email):
            return customer
    return None


class CustomerConflictResolver:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: ExpiringStore,
        *,
        scope: str,
        customer_id_ttl: int = WEEK_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._scope = scope
        self._ttl = max(customer_id_ttl, WEEK_SECONDS)

    def identity_key(self, identity: CustomerIdentity) -> Optional[str]:
        if identity.user_id:
            suffix = f"user:{identity.user_id}"
        elif normalize_email(identity.email):
            digest = hashlib.md5(normalize_email(identity.email).encode("utf-8")).hexdigest()
            suffix = f"email:{digest}"
        else:
            return None
        return f"{CUSTOMER_ID_PREFIX}{self._scope}:{suffix}"

    async def get_stored_customer_id(self, identity: CustomerIdentity) -> Optional[str]:
        key = self.identity_key(identity)
        if key is None:
            return None
        value = await self._store.get(key)
        return str(value) if value else None

    async def remember(self, identity: CustomerIdentity, customer_id: str) -> None:
        key = self.identity_key(identity)
        if key is None:
            return
        try:
            await self._store.set(key, customer_id, ttl=self._ttl)
        except StoreUnavailable as exc:
            # the checkout itself can proceed; the lookup simply repeats next time
            logger.error("customer_id_store_failed", error=str(exc))

    async def forget(self, identity: CustomerIdentity) -> None:
        key = self.identity_key(identity)
        if key is not None:
            await self._store.delete(key)

    async def issue_token(
        self, request: CheckoutRequest, identity: Optional[CustomerIdentity] = None
    ) -> ApiResult[CheckoutTokenResponse]:
        """Create a checkout token, transparently recovering from customer conflicts."""
        identity = identity or CustomerIdentity(email=request.customer_email)
        outgoing = request
        stored_id: Optional[str] = None
        if request.customer_info is not None:
            stored_id = await self.get_stored_customer_id(identity)
            if stored_id:
                outgoing = request.with_customer_id(stored_id)

        result = await self._gateway.create_checkout_token(outgoing)
        if result.ok:
            issued = result.unwrap()
            if issued.customer_id and issued.customer_id != stored_id:
                await self.remember(identity, issued.customer_id)
            return result

        error = result.error
        if isinstance(error, CustomerConflict):
            logger.info("customer_conflict_detected", status_code=error.status_code)
            return await self.resolve(request, identity)

        if stored_id and isinstance(error, RemoteApiError) and error.status_code in (400, 404):
            # remembered id no longer valid remotely; start over with inline details
            logger.warning("stored_customer_id_rejected", status_code=error.status_code)
            await self.forget(identity)
            return await self.issue_token(request, identity)

        return result

    async def resolve(
        self, request: CheckoutRequest, identity: Optional[CustomerIdentity] = None
    ) -> ApiResult[CheckoutTokenResponse]:
        identity = identity or CustomerIdentity(email=request.customer_email)
        email = request.customer_email or identity.email
        if not normalize_email(email):
            return ApiResult.failure(CustomerConflictUnresolved(email, "no email to search by"))

        customer_id, reason = await self.find_customer_id(email)
        if customer_id is None:
            logger.warning("customer_conflict_unresolved", reason=reason)
            return ApiResult.failure(CustomerConflictUnresolved(email, reason))

        await self.remember(identity, customer_id)
        retry = await self._gateway.create_checkout_token(request.with_customer_id(customer_id))
        if retry.ok:
            logger.info("customer_conflict_resolved", customer_id=customer_id)
            return retry
        if isinstance(retry.error, CustomerConflict):
            return ApiResult.failure(
                CustomerConflictUnresolved(email, "conflict persisted after retry by customer id")
            )
        return retry

    async def find_customer_id(self, email: str) -> tuple[Optional[str], str]:
        """Filtered search first, then a full listing scanned locally."""
        failures: list[str] = []

        search = await self._gateway.search_customers(email)
        if search.ok:
            match = find_matching_customer(search.unwrap(), email)
            if match is not None:
                return match.id, ""
        else:
            failures.append(f"search failed: {search.error.message}")  # type: ignore[union-attr]

        listing = await self._gateway.list_customers()
        if listing.ok:
            match = find_matching_customer(listing.unwrap(), email)
            if match is not None:
                logger.info("customer_found_by_listing")
                return match.id, ""
        else:
            failures.append(f"listing failed: {listing.error.message}")  # type: ignore[union-attr]

        return None, "; ".join(failures) or "no customer matched the email"
