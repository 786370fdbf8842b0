"""Payment gateway seam for the registration flow.

The checkout widget (Razorpay) runs outside this process: a browser page, a
webview, or a test double. The flow only needs one awaitable operation:
open the widget for an order and wait for the outcome.

- success: the widget hands back order id, payment id and signature
- dismissal: the user closed the widget -> ``GatewayDismissedError``
- anything else raised while opening is a gateway failure
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from core.config import Settings, get_settings
from core.logger import get_logger
from schemas import (
    CheckoutOptions,
    CheckoutPrefill,
    Event,
    GatewayResponse,
    OrderResponse,
    RegistrationDraft,
)

logger = get_logger(__name__)


class GatewayDismissedError(Exception):
    """Raised when the user closes the checkout widget without paying."""


class GatewayNotConfiguredError(Exception):
    """Raised when checkout is attempted without a public Razorpay key."""


class PaymentGateway(Protocol):
    async def open(self, options: CheckoutOptions) -> GatewayResponse: ...


SuccessCallback = Callable[[dict[str, Any]], None]
DismissCallback = Callable[[], None]
WidgetLauncher = Callable[[CheckoutOptions, SuccessCallback, DismissCallback], None]


def build_checkout_options(
    event: Event,
    order: OrderResponse,
    draft: RegistrationDraft,
    settings: Settings | None = None,
) -> CheckoutOptions:
    """Assemble widget options for an order.

    The displayed amount always comes from the event price, in paise; the
    backend's order amount is authoritative for the actual charge.

    Raises:
        GatewayNotConfiguredError: If RAZORPAY_KEY_ID is not set
    """
    settings = settings or get_settings()
    if not settings.razorpay_key_id:
        raise GatewayNotConfiguredError(
            "RAZORPAY_KEY_ID must be set to open the checkout."
        )
    return CheckoutOptions(
        key=settings.razorpay_key_id,
        amount=event.amount_in_paise,
        currency=order.currency,
        name=settings.checkout_name,
        description=event.title,
        order_id=order.order_id,
        prefill=CheckoutPrefill(
            name=draft.name, email=draft.email, contact=draft.phone
        ),
        theme_color=settings.checkout_theme_color,
    )


class CallbackGateway:
    """Adapts a callback-style checkout widget to ``PaymentGateway``.

    ``launcher`` opens the widget and must eventually call exactly one of the
    two callbacks it receives. Callbacks may fire from another thread; the
    first one wins and later calls are ignored.
    """

    def __init__(self, launcher: WidgetLauncher) -> None:
        self._launcher = launcher

    async def open(self, options: CheckoutOptions) -> GatewayResponse:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[GatewayResponse] = loop.create_future()

        def _settle(result: GatewayResponse | None) -> None:
            if outcome.done():
                return
            if result is None:
                outcome.set_exception(GatewayDismissedError("Payment cancelled."))
            else:
                outcome.set_result(result)

        def _on_success(payload: dict[str, Any]) -> None:
            response = GatewayResponse.model_validate(payload or {})
            loop.call_soon_threadsafe(_settle, response)

        def _on_dismiss() -> None:
            loop.call_soon_threadsafe(_settle, None)

        logger.info("gateway.opening", order_id=options.order_id)
        self._launcher(options, _on_success, _on_dismiss)
        return await outcome
