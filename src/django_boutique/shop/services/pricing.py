"""Pure order pricing.

The :class:`PricingEngine` turns cart lines and checkout options into the
monetary fields stored on an order. It performs no I/O and reads no global
state, so the same inputs always produce the same :class:`PricedCart`.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django_boutique.settings import PricingConfig
from django_boutique.shop.cart import CartLine, GiftCardLine
from django_boutique.shop.models import Order

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
    """Round an amount to cents, half away from zero."""
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class PricedCart:
    """Monetary breakdown of a cart."""

    subtotal: Decimal
    shipping_cost: Decimal
    gift_wrap_cost: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total: Decimal

    @property
    def pre_discount_total(self) -> Decimal:
        """Return ``subtotal + shipping + gift wrap`` before any discount."""
        return self.subtotal + self.shipping_cost + self.gift_wrap_cost

    @property
    def is_zero_total(self) -> bool:
        """Return True when nothing is left to collect."""
        return self.total == ZERO


class PricingEngine:
    """Compute subtotal, shipping, gift wrap, tax, and total for a cart.

    Args:
        config: The pricing policy constants.
    """

    def __init__(self, config: PricingConfig) -> None:
        """Bind the engine to a pricing policy."""
        self.config = config

    @staticmethod
    def subtotal(lines: Iterable[CartLine]) -> Decimal:
        """Return the sum of ``price * quantity`` over all lines."""
        return quantize_money(sum((line.line_total for line in lines), ZERO))

    def shipping_cost(self, subtotal: Decimal, delivery_method: str, shipping_method: str) -> Decimal:
        """Return the shipping fee, computed on the pre-discount subtotal.

        Pickup is always free. Standard shipping is free once the subtotal
        reaches the threshold. Express shipping is reduced, never waived, at
        the threshold.
        """
        if delivery_method == Order.DeliveryMethod.PICKUP:
            return ZERO
        free_eligible = subtotal >= self.config.free_shipping_threshold
        if shipping_method == Order.ShippingMethod.EXPRESS:
            fee = self.config.express_shipping_reduced_fee if free_eligible else self.config.express_shipping_fee
            return quantize_money(fee)
        return ZERO if free_eligible else quantize_money(self.config.standard_shipping_fee)

    def gift_wrap_cost(self, gift_wrap: bool) -> Decimal:  # noqa: FBT001
        """Return the flat gift-wrap fee when wrapping was requested."""
        return quantize_money(self.config.gift_wrap_fee) if gift_wrap else ZERO

    def price(
        self,
        lines: Iterable[CartLine],
        *,
        delivery_method: str = Order.DeliveryMethod.SHIPPING,
        shipping_method: str = Order.ShippingMethod.STANDARD,
        gift_wrap: bool = False,
        discount: Decimal = ZERO,
    ) -> PricedCart:
        """Price a cart.

        Args:
            lines: The typed cart lines.
            delivery_method: ``shipping`` or ``pickup``.
            shipping_method: ``standard`` or ``express``.
            gift_wrap: Whether gift wrapping was requested.
            discount: The discount already resolved for this cart.

        Returns:
            The full monetary breakdown. Gift-card lines are excluded from
            the tax base; the discounted amount is floored at zero.
        """
        lines = list(lines)
        subtotal = self.subtotal(lines)
        shipping = self.shipping_cost(subtotal, delivery_method, shipping_method)
        wrap = self.gift_wrap_cost(gift_wrap)
        discount = quantize_money(max(discount, ZERO))

        after_discount = max(ZERO, subtotal + shipping + wrap - discount)
        gift_card_total = quantize_money(
            sum((line.line_total for line in lines if isinstance(line, GiftCardLine)), ZERO)
        )
        taxable = max(ZERO, after_discount - gift_card_total)
        tax = quantize_money(taxable * self.config.tax_rate)

        return PricedCart(
            subtotal=subtotal,
            shipping_cost=shipping,
            gift_wrap_cost=wrap,
            discount_amount=discount,
            taxable_amount=taxable,
            tax_amount=tax,
            total=after_discount + tax,
        )
