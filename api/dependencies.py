"""
API dependencies: accessors for the payment services built in the lifespan.
"""
from fastapi import Depends, Request

from application.services.checkout_service import CheckoutService
from application.services.token_cache import TokenCache
from application.services.webhook_processor import WebhookProcessor
from domain.common.exceptions import BusinessException
from infrastructure.container import PaymentContainer
from shared.codes import BusinessCode


def get_payments(request: Request) -> PaymentContainer:
    container = getattr(request.app.state, "payments", None)
    if container is None:
        raise BusinessException(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Payment services are not initialised",
            error_type="ServiceUnavailable",
        )
    return container


def get_checkout_service(payments: PaymentContainer = Depends(get_payments)) -> CheckoutService:
    return payments.checkout


def get_webhook_processor(payments: PaymentContainer = Depends(get_payments)) -> WebhookProcessor:
    return payments.webhooks


def get_token_cache(payments: PaymentContainer = Depends(get_payments)) -> TokenCache:
    return payments.token_cache
