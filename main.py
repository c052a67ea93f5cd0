"""
FastAPI application entry point
"""
import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.cache.memory_store import InMemoryExpiringStore
from infrastructure.cache.redis_cache import RedisExpiringStore
from infrastructure.container import open_payment_container
from infrastructure.database import create_tables, engine


configure_logging()
logger = get_logger(__name__)


async def _sweep_periodically(store: InMemoryExpiringStore, interval: int) -> None:
    """Evict expired tokens and customer ids; redis expires keys on its own."""
    while True:
        await asyncio.sleep(interval)
        removed = await store.sweep_expired()
        if removed:
            logger.info("expired_entries_swept", removed=removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info("database_migrations_required", message="Tables are not auto-created outside DEBUG")

    async with open_payment_container(settings, engine=engine) as payments:
        app.state.payments = payments
        if not payments.credentials.is_configured:
            logger.warning("bna_credentials_missing", environment=payments.credentials.environment.value)

        sweeper = None
        if isinstance(payments.store, InMemoryExpiringStore):
            sweeper = asyncio.create_task(
                _sweep_periodically(payments.store, settings.bna.sweep_interval_seconds)
            )
        logger.info("payments_initialized", environment=payments.credentials.environment.value)

        yield

        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        app.state.payments = None

    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="Payment-session bridge between a storefront and BNA Smart Payment",
    )

    # middleware runs bottom-up: request id first, then logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(payments_routes.router, prefix=settings.API_PREFIX)

    @app.get("/", tags=["Root"])
    async def root():
        return success_response(
            data={
                "name": settings.PROJECT_NAME,
                "version": settings.VERSION,
                "docs": "/docs",
                "redoc": "/redoc",
            },
            message="Welcome",
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        data = {"status": "healthy"}
        payments = getattr(app.state, "payments", None)
        if isinstance(getattr(payments, "store", None), RedisExpiringStore):
            try:
                data["store"] = "ok" if await payments.store.health_check() else "unavailable"
            except RedisError as exc:
                logger.warning("redis_health_check_failed", error=str(exc))
                data["store"] = "unavailable"
        return success_response(data=data, message="OK")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
