"""Stripe client wrapper for checkout-session operations.

Uses the modern ``stripe.StripeClient`` pattern (v1 namespace) bound to the
configured secret key and API version.
"""

import logging
from typing import TYPE_CHECKING, Any

import stripe

from django_boutique.settings import get_config
from django_boutique.shop.stripe_utils import convert_amount_for_api, obfuscate_key

if TYPE_CHECKING:
    from decimal import Decimal

    from django_boutique.settings import BoutiqueConfig

logger = logging.getLogger(__name__)


class StripeClient:
    """Boutique Stripe API client.

    Args:
        config: The boutique configuration; defaults to :func:`get_config`.

    Raises:
        ValueError: If no Stripe secret key is configured.
    """

    def __init__(self, config: "BoutiqueConfig | None" = None) -> None:
        """Initialize the client with the configured Stripe credentials."""
        self.config = config or get_config()
        secret_key = self.config.stripe.secret_key
        if not secret_key:
            msg = (
                "No Stripe secret key configured. "
                "Set DJANGO_BOUTIQUE['stripe']['secret_key'] before initializing StripeClient."
            )
            raise ValueError(msg)

        self.client = stripe.StripeClient(
            secret_key,
            stripe_version=self.config.stripe.api_version,
        )
        logger.debug("Initialized StripeClient with key %s", obfuscate_key(secret_key))

    def create_checkout_session(self, params: dict[str, Any], *, idempotency_key: str) -> stripe.checkout.Session:
        """Create a hosted checkout session.

        Args:
            params: Session parameters as built by ``CheckoutSessionBuilder``.
            idempotency_key: Key that makes retried creations safe.

        Returns:
            The created ``stripe.checkout.Session``.
        """
        return self.client.v1.checkout.sessions.create(
            params=params,
            options={"idempotency_key": idempotency_key},
        )

    def create_discount_coupon(self, amount: "Decimal", *, name: str, idempotency_key: str) -> str:
        """Create a one-off ``amount_off`` coupon for a single session.

        Stripe rejects negative line items, so a boutique discount is handed
        to the session as a processor-side coupon instead.

        Args:
            amount: The discount in the store currency.
            name: Label shown on the hosted checkout page.
            idempotency_key: Key that makes retried creations safe.

        Returns:
            The Stripe coupon ID.
        """
        currency = self.config.currency
        coupon = self.client.v1.coupons.create(
            params={
                "amount_off": convert_amount_for_api(amount, currency),
                "currency": currency.lower(),
                "duration": "once",
                "name": name[:40],
            },
            options={"idempotency_key": idempotency_key},
        )
        return coupon.id

    def list_session_line_items(self, session_id: str) -> list[dict[str, Any]]:
        """Return a session's line items with their products expanded.

        Args:
            session_id: The Stripe checkout session ID.

        Returns:
            A list of line-item dicts as returned by the Stripe API.
        """
        result = self.client.v1.checkout.sessions.line_items.list(
            session_id,
            params={"expand": ["data.price.product"], "limit": 100},
        )
        return [item.to_dict() if hasattr(item, "to_dict") else dict(item) for item in result.data]
