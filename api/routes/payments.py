"""
Payments API routes.

Thin HTTP layer over the checkout service, the webhook processor and the
token cache. The webhook endpoint answers with the processor's own body and
status (200 or 400) instead of the unified envelope.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from api.dependencies import (
    get_checkout_service,
    get_payments,
    get_token_cache,
    get_webhook_processor,
)
from application.dtos.payments import (
    CheckoutItem,
    CheckoutRequest,
    CustomerIdentity,
    CustomerInfo,
    StartCheckout,
)
from application.services.browser_messages import classify_browser_message
from application.services.checkout_service import CheckoutService
from application.services.token_cache import TokenCache
from application.services.webhook_processor import WebhookProcessor
from core.logging_config import get_logger
from core.response import success_response
from domain.payment.exceptions import InvalidCheckoutRequest
from infrastructure.container import PaymentContainer
from infrastructure.external.payments.bna_client import check_credentials


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


class CheckoutBody(BaseModel):
    order_id: str = Field(min_length=1)
    iframe_id: Optional[str] = None
    customer_info: Optional[CustomerInfo] = None
    customer_id: Optional[str] = None
    items: list[CheckoutItem] = Field(default_factory=list)
    subtotal: Decimal
    currency: str = "CAD"
    user_id: Optional[str] = None
    force_refresh: bool = False


class ConnectionTestBody(BaseModel):
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    environment: Optional[str] = None

    @property
    def overrides(self) -> bool:
        return any(v is not None for v in (self.access_key, self.secret_key, self.environment))


class BrowserEventBody(BaseModel):
    origin: Optional[str] = None
    message: Any = None


def _to_checkout_request(body: CheckoutBody, default_iframe_id: str) -> CheckoutRequest:
    try:
        return CheckoutRequest(
            iframe_id=body.iframe_id or default_iframe_id,
            customer_info=body.customer_info,
            customer_id=body.customer_id,
            items=body.items,
            subtotal=body.subtotal,
            currency=body.currency,
        )
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ())) or None
        raise InvalidCheckoutRequest(str(first.get("msg", "invalid checkout request")), field=field)


@router.post("/checkout")
async def start_checkout(
    body: CheckoutBody,
    payments: PaymentContainer = Depends(get_payments),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    request = _to_checkout_request(body, payments.settings.bna.iframe_id)
    identity = CustomerIdentity(email=request.customer_email or "", user_id=body.user_id)
    session = await checkout.start_checkout(
        StartCheckout(
            order_id=body.order_id,
            request=request,
            identity=identity,
            force_refresh=body.force_refresh,
        )
    )
    return success_response(data=session.model_dump(mode="json"))


@router.get("/transactions/{transaction_token}/status")
async def transaction_status(
    transaction_token: str,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    view = await checkout.poll_status(transaction_token)
    return success_response(data=view.model_dump(mode="json"))


@router.post("/webhook")
async def payments_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    result = await processor.process(raw_body, headers)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/test-connection")
async def test_connection(
    body: Optional[ConnectionTestBody] = None,
    payments: PaymentContainer = Depends(get_payments),
):
    if body is not None and body.overrides:
        candidate = payments.credentials.with_credentials(
            body.access_key, body.secret_key, body.environment
        )
        connected = await check_credentials(
            payments.settings.bna,
            payments.credentials,
            access_key=body.access_key,
            secret_key=body.secret_key,
            environment=body.environment,
        )
        environment = candidate.environment.value
    else:
        connected = await payments.client.test_connection()
        environment = payments.credentials.environment.value
    return success_response(
        data={"connected": connected, "environment": environment},
        message="Connection successful" if connected else "Connection failed",
    )


@router.post("/browser-events")
async def browser_event(
    body: BrowserEventBody,
    payments: PaymentContainer = Depends(get_payments),
):
    outcome = classify_browser_message(
        body.origin, body.message, payments.settings.bna.allowed_origins
    )
    return success_response(data=outcome.model_dump(mode="json"))


@router.get("/cache/stats")
async def token_cache_stats(tokens: TokenCache = Depends(get_token_cache)):
    return success_response(data=await tokens.stats())


@router.delete("/cache")
async def clear_token_cache(tokens: TokenCache = Depends(get_token_cache)):
    cleared = await tokens.clear()
    return success_response(data={"cleared": cleared})
