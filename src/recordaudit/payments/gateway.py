"""Stripe checkout sessions and webhook verification through the Stripe SDK."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import stripe

from recordaudit.errors import PaymentError, SignatureVerificationError

LOGGER = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300


@dataclass(slots=True)
class CheckoutSession:
    id: str
    url: str


class StripeGateway:
    """Per-request Stripe access; the API key is passed on each call, never set globally."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        prices: Optional[Mapping[str, str]] = None,
        tolerance: int = DEFAULT_TOLERANCE,
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.prices = dict(prices or {})
        self.tolerance = tolerance

    def price_for(self, tier: str) -> str:
        price = self.prices.get(tier)
        if not price:
            raise PaymentError(f"No price configured for tier '{tier}'", code="price_not_configured")
        return price

    def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CheckoutSession:
        if not self.secret_key:
            raise PaymentError("Stripe secret key is not configured", code="payment_not_configured")

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=client_reference_id,
                metadata={key: str(value) for key, value in (metadata or {}).items() if value is not None},
            )
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc)
            LOGGER.error("Stripe rejected checkout session: %s", message)
            raise PaymentError(f"Checkout session failed: {message}") from exc

        if not session.get("id") or not session.get("url"):
            raise PaymentError("Checkout session response missing id or url")

        LOGGER.info("Created checkout session %s", session["id"])
        return CheckoutSession(id=str(session["id"]), url=str(session["url"]))

    def verify_webhook(self, payload: bytes, header: Optional[str]) -> Dict[str, Any]:
        """Check the ``Stripe-Signature`` header and return the event as a plain dict."""
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret is not configured")
        if not header:
            raise SignatureVerificationError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, header, self.webhook_secret, tolerance=self.tolerance)
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError(f"Webhook signature verification failed: {exc}") from exc
        except ValueError as exc:
            raise SignatureVerificationError("Webhook payload is not valid JSON") from exc

        event = json.loads(payload)
        if not isinstance(event, dict):
            raise SignatureVerificationError("Webhook payload is not an event object")
        return event
