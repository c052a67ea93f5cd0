"""
Checkout orchestration: token issuance for an order and status polling.
"""
from __future__ import annotations

from typing import Callable

from application.dtos.payments import (
    CheckoutSession,
    StartCheckout,
    TransactionStatusView,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.order_status_service import OrderStatusService
from application.services.token_cache import TokenCache
from core.logging_config import get_logger
from domain.payment.exceptions import (
    CheckoutUnavailable,
    CustomerConflictUnresolved,
    InvalidCheckoutRequest,
    InvalidTransition,
    OrderNotFound,
    UnknownStatus,
)

logger = get_logger(__name__)

CHECKOUT_UNAVAILABLE = "Payment form unavailable, please try again."
STATUS_UNAVAILABLE = "Payment status unavailable, please try again."

# Errors the shopper can act on are surfaced as-is.
ACTIONABLE_ERRORS = (CustomerConflictUnresolved, InvalidCheckoutRequest)


class CheckoutService:
    def __init__(
        self,
        token_cache: TokenCache,
        order_status: OrderStatusService,
        gateway: PaymentGateway,
        iframe_url: Callable[[str], str],
    ):
        self._tokens = token_cache
        self._orders = order_status
        self._gateway = gateway
        self._iframe_url = iframe_url

    async def start_checkout(self, cmd: StartCheckout) -> CheckoutSession:
        """Token + iframe URL for an order; the token is linked to the order for webhooks."""
        result = await self._tokens.get_or_create(
            cmd.request, force_refresh=cmd.force_refresh, identity=cmd.identity
        )
        if not result.ok:
            error = result.error
            if isinstance(error, ACTIONABLE_ERRORS):
                raise error
            logger.error(
                "checkout_token_unavailable",
                order_id=cmd.order_id,
                error_type=error.error_type,  # type: ignore[union-attr]
                error=error.message,  # type: ignore[union-attr]
            )
            raise CheckoutUnavailable(CHECKOUT_UNAVAILABLE, cause=error)  # type: ignore[arg-type]

        grant = result.unwrap()
        await self._orders.register_transaction(
            cmd.order_id,
            grant.token,
            {"iframe_id": cmd.request.iframe_id, "subtotal": str(cmd.request.subtotal)},
        )
        logger.info("checkout_started", order_id=cmd.order_id, from_cache=grant.from_cache)
        return CheckoutSession(
            token=grant.token,
            iframe_url=self._iframe_url(grant.token),
            expires_at=grant.expires_at,
            from_cache=grant.from_cache,
        )

    async def poll_status(self, transaction_token: str) -> TransactionStatusView:
        """Fetch the remote status and move the owning order along when it is known."""
        result = await self._gateway.get_transaction_status(transaction_token)
        if not result.ok:
            raise CheckoutUnavailable(STATUS_UNAVAILABLE, cause=result.error)  # type: ignore[arg-type]
        details = result.unwrap()

        try:
            await self._orders.update_status_by_token(
                transaction_token,
                details.status,
                {
                    "reference_number": details.reference_number,
                    "amount": str(details.amount) if details.amount is not None else None,
                    "currency": details.currency,
                    "source": "status_poll",
                },
            )
        except (UnknownStatus, OrderNotFound, InvalidTransition) as exc:
            logger.warning(
                "status_poll_not_applied",
                error_type=exc.error_type,
                error=exc.message,
            )

        return TransactionStatusView(
            status=details.status,
            reference_number=details.reference_number,
            payment_method=details.payment_method,
            amount=details.amount,
            currency=details.currency,
            message=details.message,
        )
