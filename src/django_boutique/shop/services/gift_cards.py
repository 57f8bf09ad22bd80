"""Gift card minting.

Two situations create new GIFT_CARD coupons during order confirmation:

* a gift card used as a coupon was worth more than the order consumed, so
  the remainder is reissued under a new single-use code, and
* the order itself bought gift cards, which become redeemable once paid.

Both run inside the confirmation transaction and therefore happen at most
once per order.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from decimal import Decimal

from django.utils import timezone

from django_boutique.settings import get_config
from django_boutique.shop.models import Coupon, Order, OrderItem

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 6
_MAX_ATTEMPTS = 100


@dataclass(frozen=True, slots=True)
class IssuedGiftCard:
    """A freshly minted gift card and the reason it exists."""

    coupon: Coupon
    is_remainder: bool
    source_code: str = ""


def _generate_unique_code(prefix: str) -> str:
    """Generate a coupon code ``{prefix}-{6 chars}`` that is not yet taken.

    Raises:
        RuntimeError: If no free code is found after 100 attempts.
    """
    for _ in range(_MAX_ATTEMPTS):
        random_part = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))
        code = f"{prefix}-{random_part}"
        if not Coupon.objects.filter(code=code).exists():
            return code
    msg = f"Failed to generate a unique coupon code with prefix '{prefix}' after {_MAX_ATTEMPTS} attempts"
    raise RuntimeError(msg)


class GiftCardSplitter:
    """Stateless service minting gift cards for confirmed orders."""

    @staticmethod
    def split(order: Order) -> IssuedGiftCard | None:
        """Reissue the unused balance of a gift card applied to ``order``.

        When the order's coupon is a gift card whose value exceeds the
        discount the order actually received, a new GIFT_CARD coupon holding
        ``value - discount_amount`` is created with a single use and the
        original card's expiry.

        Returns:
            The remainder card, or ``None`` when nothing is left over.
        """
        coupon = order.coupon
        if coupon is None or coupon.coupon_type != Coupon.CouponType.GIFT_CARD:
            return None
        if coupon.value <= order.discount_amount:
            return None

        existing = Coupon.objects.filter(parent=coupon, source_order=order).first()
        if existing is not None:
            return IssuedGiftCard(coupon=existing, is_remainder=True, source_code=coupon.code)

        remainder = remaining_balance(coupon, order.discount_amount)
        new_coupon = Coupon.objects.create(
            code=_generate_unique_code(get_config().remainder_code_prefix),
            coupon_type=Coupon.CouponType.GIFT_CARD,
            value=remainder,
            description=f"Remaining balance of gift card {coupon.code}",
            valid_from=timezone.now(),
            valid_until=coupon.valid_until,
            max_uses=1,
            parent=coupon,
            source_order=order,
        )
        logger.info(
            "Issued remainder gift card %s (%s) from %s for order %s",
            new_coupon.code,
            remainder,
            coupon.code,
            order.order_number,
        )
        return IssuedGiftCard(coupon=new_coupon, is_remainder=True, source_code=coupon.code)

    @staticmethod
    def issue_purchased(order: Order) -> list[IssuedGiftCard]:
        """Mint one redeemable gift card per purchased gift-card unit.

        Returns:
            The cards created for the order's gift-card lines.
        """
        if Coupon.objects.filter(source_order=order, parent__isnull=True).exists():
            return []

        prefix = get_config().gift_card_code_prefix
        issued: list[IssuedGiftCard] = []
        for item in order.items.filter(item_type=OrderItem.ItemType.GIFT_CARD):
            for _ in range(item.quantity):
                coupon = Coupon.objects.create(
                    code=_generate_unique_code(prefix),
                    coupon_type=Coupon.CouponType.GIFT_CARD,
                    value=item.unit_price,
                    description=f"Gift card purchased with order {order.order_number}",
                    valid_from=timezone.now(),
                    max_uses=1,
                    source_order=order,
                )
                issued.append(IssuedGiftCard(coupon=coupon, is_remainder=False))
        return issued


def remaining_balance(coupon: Coupon, discount_amount: Decimal) -> Decimal:
    """Return what is left on a gift card after applying ``discount_amount``."""
    return max(coupon.value - discount_amount, Decimal("0.00"))
