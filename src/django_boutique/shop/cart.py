"""Typed cart lines and checkout requests.

The storefront posts its cart as loosely-typed JSON. This module turns that
payload into a closed set of line variants (:class:`WineLine`,
:class:`EventLine`, :class:`DiversLine`, :class:`GiftCardLine`) and a
:class:`CheckoutRequest`, rejecting malformed input with ``ValidationError``
before anything touches the database.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from django.core.exceptions import ValidationError

from django_boutique.shop.models import Order, OrderItem

_TYPE_ALIASES: dict[str, str] = {
    "wine": OrderItem.ItemType.WINE,
    "event": OrderItem.ItemType.EVENT,
    "divers": OrderItem.ItemType.DIVERS,
    "giftcard": OrderItem.ItemType.GIFT_CARD,
    "gift_card": OrderItem.ItemType.GIFT_CARD,
    "geschenkgutschein": OrderItem.ItemType.GIFT_CARD,
}

_PAYMENT_METHODS = frozenset({"card", "twint"})

# Bounds of the order and item columns (DecimalField(max_digits=10,
# decimal_places=2) and PositiveIntegerField).
MAX_AMOUNT = Decimal("99999999.99")
MAX_QUANTITY = 2147483647
_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class CartLine:
    """Fields shared by every cart line variant."""

    item_id: str
    name: str
    price: Decimal
    quantity: int

    item_type = ""

    @property
    def line_total(self) -> Decimal:
        """Return ``price * quantity``."""
        return self.price * self.quantity


@dataclass(frozen=True, slots=True)
class WineLine(CartLine):
    """A bottle of wine from the catalog."""

    winery: str = ""
    vintage: int | None = None
    bottle_size: Decimal = Decimal("0.75")
    image_url: str = ""

    item_type = OrderItem.ItemType.WINE


@dataclass(frozen=True, slots=True)
class EventLine(CartLine):
    """Seats for a ticketed event, identified by the event's slug."""

    event_slug: str = ""
    event_date: str = ""

    item_type = OrderItem.ItemType.EVENT


@dataclass(frozen=True, slots=True)
class DiversLine(CartLine):
    """An accessory or other non-wine product."""

    image_url: str = ""

    item_type = OrderItem.ItemType.DIVERS


@dataclass(frozen=True, slots=True)
class GiftCardLine(CartLine):
    """A purchased gift card. Excluded from the tax base."""

    item_type = OrderItem.ItemType.GIFT_CARD


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """A validated checkout submission."""

    lines: tuple[CartLine, ...]
    delivery_method: str = Order.DeliveryMethod.SHIPPING
    shipping_method: str = Order.ShippingMethod.STANDARD
    payment_method: str = "card"
    shipping_data: dict[str, Any] = field(default_factory=dict)
    billing_data: dict[str, Any] = field(default_factory=dict)
    is_gift: bool = False
    gift_wrap: bool = False
    gift_message: str = ""
    coupon_code: str = ""


def _parse_price(raw: object, idx: int) -> Decimal:
    msg = f"Cart item {idx + 1} has an invalid price."
    try:
        price = Decimal(str(raw))
        if not price.is_finite() or price < 0 or price > MAX_AMOUNT:
            raise ValidationError(msg)
        return price.quantize(_CENT)
    except InvalidOperation:
        raise ValidationError(msg) from None


def _parse_quantity(raw: object, idx: int) -> int:
    msg = f"Cart item {idx + 1} has an invalid quantity."
    try:
        quantity = int(str(raw if raw is not None else 1))
    except ValueError:
        raise ValidationError(msg) from None
    if not 1 <= quantity <= MAX_QUANTITY:
        raise ValidationError(msg)
    return quantity


def _optional_int(raw: object) -> int | None:
    if raw in (None, ""):
        return None
    try:
        return int(str(raw))
    except ValueError:
        return None


def parse_cart_line(raw: Mapping[str, Any], idx: int = 0) -> CartLine:
    """Build the line variant for a single raw cart item.

    Args:
        raw: A mapping as posted by the storefront.
        idx: Position of the item, used in error messages.

    Returns:
        The typed cart line.

    Raises:
        ValidationError: If the type tag is unknown or a required field is
            missing or malformed.
    """
    if not isinstance(raw, Mapping):
        msg = f"Cart item {idx + 1} is not an object."
        raise ValidationError(msg)

    tag = str(raw.get("type") or "").strip().lower()
    item_type = _TYPE_ALIASES.get(tag)
    if item_type is None:
        msg = f"Cart item {idx + 1} has an unknown type {tag!r}."
        raise ValidationError(msg)

    name = str(raw.get("name") or "").strip()
    if not name:
        msg = f"Cart item {idx + 1} is missing a name."
        raise ValidationError(msg)

    common = {
        "item_id": str(raw.get("id") or ""),
        "name": name,
        "price": _parse_price(raw.get("price"), idx),
        "quantity": _parse_quantity(raw.get("quantity"), idx),
    }
    if common["price"] * common["quantity"] > MAX_AMOUNT:
        msg = f"Cart item {idx + 1} exceeds the maximum order amount."
        raise ValidationError(msg)

    if item_type == OrderItem.ItemType.WINE:
        return WineLine(
            **common,
            winery=str(raw.get("winery") or ""),
            vintage=_optional_int(raw.get("vintage")),
            image_url=str(raw.get("imageUrl") or ""),
        )
    if item_type == OrderItem.ItemType.EVENT:
        slug = str(raw.get("slug") or raw.get("eventSlug") or "").strip()
        if not slug:
            msg = f"Event item {name!r} is missing its event slug."
            raise ValidationError(msg)
        return EventLine(**common, event_slug=slug, event_date=str(raw.get("eventDate") or ""))
    if item_type == OrderItem.ItemType.DIVERS:
        return DiversLine(**common, image_url=str(raw.get("imageUrl") or ""))
    return GiftCardLine(**common)


def parse_checkout_request(payload: Mapping[str, Any]) -> CheckoutRequest:
    """Validate a raw checkout payload.

    Args:
        payload: The decoded JSON body of a checkout request.

    Returns:
        The typed checkout request.

    Raises:
        ValidationError: If the cart is empty or any field is malformed.
    """
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        msg = "The cart is empty."
        raise ValidationError(msg)
    lines = tuple(parse_cart_line(raw, idx) for idx, raw in enumerate(items))
    if sum((line.line_total for line in lines), Decimal(0)) > MAX_AMOUNT:
        msg = "The cart total exceeds the maximum order amount."
        raise ValidationError(msg)

    delivery_method = str(payload.get("deliveryMethod") or Order.DeliveryMethod.SHIPPING).lower()
    if delivery_method not in Order.DeliveryMethod.values:
        msg = f"Unknown delivery method {delivery_method!r}."
        raise ValidationError(msg)

    shipping_method = str(payload.get("shippingMethod") or Order.ShippingMethod.STANDARD).lower()
    if shipping_method not in Order.ShippingMethod.values:
        msg = f"Unknown shipping method {shipping_method!r}."
        raise ValidationError(msg)

    payment_method = str(payload.get("paymentMethod") or "card").lower()
    if payment_method not in _PAYMENT_METHODS:
        msg = f"Unknown payment method {payment_method!r}."
        raise ValidationError(msg)

    shipping_data = payload.get("shippingData") or {}
    billing_data = payload.get("billingData") or {}
    gift_options = payload.get("giftOptions") or {}
    for label, value in (("shippingData", shipping_data), ("billingData", billing_data), ("giftOptions", gift_options)):
        if not isinstance(value, Mapping):
            msg = f"{label} must be an object."
            raise ValidationError(msg)

    return CheckoutRequest(
        lines=lines,
        delivery_method=delivery_method,
        shipping_method=shipping_method,
        payment_method=payment_method,
        shipping_data=dict(shipping_data),
        billing_data=dict(billing_data),
        is_gift=bool(gift_options.get("isGift")),
        gift_wrap=bool(gift_options.get("giftWrap")),
        gift_message=str(gift_options.get("giftMessage") or ""),
        coupon_code=str(payload.get("couponCode") or "").strip().upper(),
    )
