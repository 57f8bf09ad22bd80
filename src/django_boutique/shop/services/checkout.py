"""Checkout: turning a validated cart into a PENDING order and a payment handoff.

The flow is: resolve customer details, price the cart, resolve the coupon,
write the PENDING order, then either confirm it on the spot (zero total) or
create a hosted Stripe Checkout session for it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import stripe
from django.core.exceptions import ValidationError

from django_boutique.settings import BoutiqueConfig, get_config
from django_boutique.shop.cart import MAX_AMOUNT, CartLine, CheckoutRequest, DiversLine, EventLine, WineLine
from django_boutique.shop.models import Order
from django_boutique.shop.services.confirmation import confirm_order
from django_boutique.shop.services.coupons import CouponResolver
from django_boutique.shop.services.ledger import CustomerDetails, OrderLedger
from django_boutique.shop.services.loyalty import calculate_points
from django_boutique.shop.services.pricing import ZERO, PricingEngine
from django_boutique.shop.stripe_client import StripeClient
from django_boutique.shop.stripe_utils import convert_amount_for_api

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

logger = logging.getLogger(__name__)

PAYMENT_METHOD_TYPES: dict[str, list[str]] = {
    "card": ["card"],
    "twint": ["card", "twint"],
}

_NON_ADDRESS_KEYS = frozenset({"email"})


class PaymentProcessorError(Exception):
    """Raised when the payment processor rejects a checkout session request.

    Args:
        message: Human-readable error detail from the processor.
        code: The processor's error code, when it supplied one.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        """Store the processor message and error code."""
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    """Where to send the customer after a successful checkout request."""

    url: str
    order: Order
    zero_total: bool = False


def _describe(line: CartLine) -> str:
    """Return the product description shown on the hosted checkout page."""
    if isinstance(line, WineLine):
        parts = [line.winery, str(line.vintage) if line.vintage else ""]
        return " ".join(part for part in parts if part) or "Schweizer Wein"
    if isinstance(line, EventLine):
        return f"Event am {line.event_date}" if line.event_date else "Event-Ticket"
    if isinstance(line, DiversLine):
        return "Divers & Zubehör"
    return "Geschenkgutschein"


def _format_rate(rate: Decimal) -> str:
    return f"{(rate * 100).normalize():f}"


class CheckoutSessionBuilder:
    """Build the parameters of a Stripe Checkout session for a priced order.

    Taxes are surfaced as a visible line item so the amount the processor
    collects equals the stored order total to the cent.

    Args:
        config: The boutique configuration (currency, URLs, tax rate).
    """

    def __init__(self, config: BoutiqueConfig) -> None:
        """Bind the builder to a configuration value."""
        self.config = config

    def _line_item(self, name: str, description: str, amount: Decimal, quantity: int = 1, image_url: str = "") -> dict:
        product_data: dict[str, Any] = {"name": name or "Produkt", "description": description}
        if image_url.startswith(("http://", "https://")):
            product_data["images"] = [image_url]
        return {
            "price_data": {
                "currency": self.config.currency.lower(),
                "product_data": product_data,
                "unit_amount": convert_amount_for_api(amount, self.config.currency),
            },
            "quantity": quantity,
        }

    def line_items(self, order: Order, lines: list[CartLine]) -> list[dict[str, Any]]:
        """Return one processor line item per cart line plus synthetic fee lines.

        Args:
            order: The PENDING order holding the computed fees.
            lines: The cart lines the order was priced from.

        Returns:
            Line item dicts for ``line_items``.
        """
        items = [
            self._line_item(
                line.name,
                _describe(line),
                line.price,
                line.quantity,
                getattr(line, "image_url", ""),
            )
            for line in lines
        ]
        if order.shipping_cost > ZERO:
            express = order.shipping_method == Order.ShippingMethod.EXPRESS
            items.append(
                self._line_item(
                    f"Versandkosten ({'Express-Versand' if express else 'Standard-Versand'})",
                    "1-2 Werktage" if express else "3-5 Werktage",
                    order.shipping_cost,
                )
            )
        if order.gift_wrap_cost > ZERO:
            items.append(self._line_item("Geschenkverpackung", "Elegante Geschenkverpackung", order.gift_wrap_cost))
        if order.tax_amount > ZERO:
            items.append(
                self._line_item(
                    f"Mehrwertsteuer ({_format_rate(self.config.pricing.tax_rate)}%)",
                    "Gesetzliche Schweizer MwSt.",
                    order.tax_amount,
                )
            )
        return items

    def success_url(self, order: Order, *, with_session: bool = True) -> str:
        """Return the customer-facing success destination for ``order``."""
        base = f"{self.config.base_url.rstrip('/')}{self.config.success_path}"
        if with_session:
            return f"{base}?session_id={{CHECKOUT_SESSION_ID}}&{urlencode({'order_id': order.pk})}"
        return f"{base}?{urlencode({'order_id': order.pk})}"

    def cancel_url(self) -> str:
        """Return the destination for an abandoned checkout."""
        return f"{self.config.base_url.rstrip('/')}{self.config.cancel_path}"

    def build(
        self,
        order: Order,
        lines: list[CartLine],
        *,
        discount_coupon_id: str | None = None,
    ) -> dict[str, Any]:
        """Build the complete session parameters.

        Args:
            order: The PENDING order to collect payment for.
            lines: The cart lines the order was priced from.
            discount_coupon_id: A processor coupon carrying the order's
                discount, when one applies.

        Returns:
            Parameters for ``checkout.sessions.create``.
        """
        user_ref = str(order.user_id) if order.user_id else "guest"
        metadata = {
            "order_id": str(order.pk),
            "order_number": order.order_number,
            "user": user_ref,
            "payment_method": order.payment_method,
        }
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": self.line_items(order, lines),
            "client_reference_id": user_ref,
            "customer_email": order.customer_email,
            "metadata": metadata,
            "payment_intent_data": {"metadata": dict(metadata)},
            "payment_method_types": PAYMENT_METHOD_TYPES.get(order.payment_method, ["card"]),
            "success_url": self.success_url(order),
            "cancel_url": self.cancel_url(),
        }
        if order.payment_method == "twint":
            params["currency"] = self.config.currency.lower()
        if discount_coupon_id:
            params["discounts"] = [{"coupon": discount_coupon_id}]
        return params


def _clean(value: object) -> str:
    return str(value or "").strip()


def resolve_customer(
    request: CheckoutRequest,
    user: "AbstractBaseUser | None",
    config: BoutiqueConfig,
) -> CustomerDetails:
    """Work out contact fields and address snapshots for a checkout.

    Values typed into the checkout form win over the account's profile. A
    PICKUP order takes the store address with the customer's name and phone.
    Billing falls back to the shipping address.

    Raises:
        ValidationError: If no email address or first name can be found.
    """
    shipping_data = request.shipping_data
    email = _clean(shipping_data.get("email")) or _clean(getattr(user, "email", ""))
    first_name = _clean(shipping_data.get("firstName")) or _clean(getattr(user, "first_name", ""))
    last_name = _clean(shipping_data.get("lastName")) or _clean(getattr(user, "last_name", ""))
    phone = _clean(shipping_data.get("phone"))

    if not email:
        raise ValidationError("Please enter your email address.")
    if not first_name:
        raise ValidationError("Please enter your first name.")

    if request.delivery_method == Order.DeliveryMethod.PICKUP:
        shipping_address = {
            "firstName": first_name,
            "lastName": last_name,
            **config.pickup_address,
            "phone": phone,
        }
    else:
        shipping_address = {key: value for key, value in shipping_data.items() if key not in _NON_ADDRESS_KEYS}
    billing_address = dict(request.billing_data) or dict(shipping_address)

    return CustomerDetails(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        shipping_address=shipping_address,
        billing_address=billing_address,
    )


class CheckoutService:
    """Stateless service running a checkout request end to end."""

    @staticmethod
    def create_checkout(
        request: CheckoutRequest,
        user: "AbstractBaseUser | None" = None,
        *,
        stripe_client: StripeClient | None = None,
    ) -> CheckoutResult:
        """Price the cart, write the PENDING order, and hand it off for payment.

        An unusable coupon is silently ignored. When the priced total is
        exactly zero the processor is bypassed and the order is confirmed
        immediately.

        Args:
            request: The validated checkout request.
            user: The identified customer, or ``None`` for guests.
            stripe_client: Client to use instead of a freshly configured one.

        Returns:
            A :class:`CheckoutResult` with the hosted checkout URL or, for a
            zero-total order, the success page URL.

        Raises:
            ValidationError: If required contact fields are missing or the
                order total is larger than an order can hold.
            PaymentProcessorError: If Stripe rejects the session. The PENDING
                order is kept for manual reconciliation.
        """
        config = get_config()
        customer = resolve_customer(request, user, config)
        lines = list(request.lines)

        engine = PricingEngine(config.pricing)
        options = {
            "delivery_method": request.delivery_method,
            "shipping_method": request.shipping_method,
            "gift_wrap": request.gift_wrap,
        }
        undiscounted = engine.price(lines, **options)

        coupon = None
        discount = ZERO
        resolution = CouponResolver.resolve(
            request.coupon_code,
            user=user,
            subtotal=undiscounted.subtotal,
            pre_discount_total=undiscounted.pre_discount_total,
        )
        if resolution is not None:
            coupon = resolution.coupon
            discount = resolution.discount_amount
        elif request.coupon_code:
            logger.info("Coupon %s does not apply; continuing without discount", request.coupon_code)
        priced = engine.price(lines, discount=discount, **options)
        if priced.pre_discount_total + priced.tax_amount > MAX_AMOUNT:
            msg = "The order total exceeds the maximum order amount."
            raise ValidationError(msg)

        order = OrderLedger.create_pending_order(
            lines,
            priced,
            customer,
            user=user,
            coupon=coupon,
            delivery_method=request.delivery_method,
            shipping_method=request.shipping_method,
            payment_method=request.payment_method,
            is_gift=request.is_gift,
            gift_wrap=request.gift_wrap,
            customer_note=request.gift_message,
            points_earned=calculate_points(priced.total, config.loyalty),
        )

        builder = CheckoutSessionBuilder(config)
        if priced.is_zero_total:
            result = confirm_order(order.pk, source="zero_total", payment_method="gift_card")
            return CheckoutResult(
                url=builder.success_url(order, with_session=False),
                order=result.order,
                zero_total=True,
            )

        client = stripe_client or StripeClient(config)
        try:
            discount_coupon_id = None
            if priced.discount_amount > ZERO:
                discount_coupon_id = client.create_discount_coupon(
                    priced.discount_amount,
                    name=f"Gutschein: {coupon.code}",
                    idempotency_key=f"discount-{order.order_number}",
                )
            session = client.create_checkout_session(
                builder.build(order, lines, discount_coupon_id=discount_coupon_id),
                idempotency_key=f"checkout-{order.order_number}",
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe rejected checkout for order %s", order.order_number)
            raise PaymentProcessorError(
                getattr(exc, "user_message", None) or str(exc) or "Payment processor error",
                code=getattr(exc, "code", None),
            ) from exc

        OrderLedger.attach_external_reference(order.pk, session.id)
        logger.info("Created Stripe session %s for order %s", session.id, order.order_number)
        return CheckoutResult(url=session.url, order=order)
