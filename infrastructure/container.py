"""
Wiring for the payment-session services.

``build_payment_container`` assembles every collaborator from settings and
explicit infrastructure pieces; ``open_payment_container`` adds ownership
of the engine, redis pool and HTTP client for one event loop (API process
lifespan or a single celery task run).
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from application.ports.cache import ExpiringStore
from application.ports.storefront import StorefrontHooks
from application.services.checkout_service import CheckoutService
from application.services.customer_resolver import CustomerConflictResolver
from application.services.order_status_service import OrderStatusService
from application.services.signature import SignatureVerifier
from application.services.token_cache import TokenCache
from application.services.webhook_processor import WebhookProcessor
from core.config import Settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.cache.memory_store import InMemoryExpiringStore
from infrastructure.cache.redis_cache import init_redis_store, shutdown_redis_store
from infrastructure.database import build_engine, build_session_factory
from infrastructure.external.payments.bna_client import BnaApiClient
from infrastructure.external.payments.credentials import CredentialResolver
from infrastructure.storefront import LoggingStorefrontHooks
from infrastructure.unit_of_work import sqlalchemy_uow_factory

logger = get_logger(__name__)


@dataclass
class PaymentContainer:
    settings: Settings
    credentials: CredentialResolver
    client: BnaApiClient
    store: ExpiringStore
    customers: CustomerConflictResolver
    token_cache: TokenCache
    order_status: OrderStatusService
    verifier: SignatureVerifier
    webhooks: WebhookProcessor
    checkout: CheckoutService

    async def aclose(self) -> None:
        await self.client.close()


def build_payment_container(
    settings: Settings,
    *,
    store: ExpiringStore,
    uow_factory: Callable[..., AbstractUnitOfWork],
    hooks: Optional[StorefrontHooks] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> PaymentContainer:
    bna = settings.bna
    credentials = CredentialResolver.from_settings(bna)
    client = BnaApiClient.from_settings(bna, credentials=credentials, transport=transport)
    customers = CustomerConflictResolver(
        client,
        store,
        scope=credentials.scope,
        customer_id_ttl=bna.customer_id_ttl_seconds,
    )
    token_cache = TokenCache(
        store,
        customers.issue_token,
        scope=credentials.scope,
        cache_duration=bna.token_cache_seconds,
        clock=clock,
    )
    order_status = OrderStatusService(uow_factory, hooks=hooks or LoggingStorefrontHooks())
    verifier = SignatureVerifier(bna.webhook_secret)
    return PaymentContainer(
        settings=settings,
        credentials=credentials,
        client=client,
        store=store,
        customers=customers,
        token_cache=token_cache,
        order_status=order_status,
        verifier=verifier,
        webhooks=WebhookProcessor(verifier, order_status),
        checkout=CheckoutService(token_cache, order_status, client, credentials.iframe_url),
    )


@asynccontextmanager
async def open_payment_container(
    settings: Settings,
    *,
    engine: Optional[AsyncEngine] = None,
    store: Optional[ExpiringStore] = None,
    hooks: Optional[StorefrontHooks] = None,
) -> AsyncIterator[PaymentContainer]:
    """Container bound to the running event loop; resources it opened are closed on exit."""
    owns_engine = engine is None
    if engine is None:
        engine = build_engine(settings.database.url, echo=settings.database.echo)

    owns_redis = False
    if store is None:
        if settings.redis.url:
            store = await init_redis_store(settings.redis)
            owns_redis = True
            logger.info("expiring_store_selected", backend="redis")
        else:
            store = InMemoryExpiringStore()
            logger.warning(
                "expiring_store_selected",
                backend="memory",
                message="Tokens and customer ids are not shared between processes",
            )

    container = build_payment_container(
        settings,
        store=store,
        uow_factory=sqlalchemy_uow_factory(build_session_factory(engine)),
        hooks=hooks,
    )
    try:
        yield container
    finally:
        await container.aclose()
        if owns_redis:
            await shutdown_redis_store()
        if owns_engine:
            await engine.dispose()
