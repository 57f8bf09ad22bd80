"""Coupon resolution for checkout.

An invalid or inapplicable coupon never aborts a checkout: the resolver
simply reports "no discount". The coupon preview endpoint uses the same
validation chain through :meth:`CouponResolver.check` to tell the customer
which rule rejected the code.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

from django_boutique.shop.models import Coupon, Order
from django_boutique.shop.services.pricing import ZERO, quantize_money

if TYPE_CHECKING:
    import datetime

    from django.contrib.auth.models import AbstractBaseUser


class CouponRejection(enum.StrEnum):
    """Why a coupon code did not apply, in validation order."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    USAGE_EXHAUSTED = "usage_exhausted"
    USER_LIMIT_REACHED = "user_limit_reached"
    BELOW_MINIMUM = "below_minimum"


REJECTION_MESSAGES: dict[CouponRejection, str] = {
    CouponRejection.NOT_FOUND: "Invalid coupon code.",
    CouponRejection.INACTIVE: "This coupon code is no longer active.",
    CouponRejection.NOT_YET_VALID: "This coupon code is not valid yet.",
    CouponRejection.EXPIRED: "This coupon code has expired.",
    CouponRejection.USAGE_EXHAUSTED: "This coupon code has been used too many times.",
    CouponRejection.USER_LIMIT_REACHED: "You have already used this coupon code.",
    CouponRejection.BELOW_MINIMUM: "The minimum order amount for this coupon has not been reached.",
}


@dataclass(frozen=True, slots=True)
class CouponResolution:
    """A coupon that applies to the cart and the discount it grants."""

    coupon: Coupon
    discount_amount: Decimal


@dataclass(frozen=True, slots=True)
class CouponCheck:
    """Outcome of running the validation chain for a code."""

    coupon: Coupon | None
    discount_amount: Decimal = ZERO
    rejection: CouponRejection | None = None

    @property
    def applies(self) -> bool:
        """Return True when the coupon passed every rule."""
        return self.rejection is None and self.coupon is not None


class CouponResolver:
    """Validate redemption codes and compute their discount.

    Validation short-circuits at the first failing rule: existence and
    activity, validity window, global usage cap, per-user usage cap, then
    minimum order amount.
    """

    @staticmethod
    def compute_discount(coupon: Coupon, subtotal: Decimal, pre_discount_total: Decimal) -> Decimal:
        """Return the discount a valid coupon grants.

        Percentage coupons take ``value`` percent of the subtotal, capped at
        ``max_discount``. Fixed-amount and gift-card coupons grant their
        value, capped at the pre-tax grand total so the order never goes
        negative.

        Args:
            coupon: The coupon being applied.
            subtotal: Sum of all cart lines.
            pre_discount_total: Subtotal plus shipping and gift wrap.

        Returns:
            The discount, rounded to cents.
        """
        if coupon.coupon_type == Coupon.CouponType.PERCENTAGE:
            discount = subtotal * coupon.value / Decimal(100)
            if coupon.max_discount is not None and discount > coupon.max_discount:
                discount = coupon.max_discount
        else:
            discount = min(coupon.value, pre_discount_total)
        return quantize_money(max(discount, ZERO))

    @staticmethod
    def check(
        code: str,
        *,
        user: "AbstractBaseUser | None",
        subtotal: Decimal,
        pre_discount_total: Decimal | None = None,
        now: "datetime.datetime | None" = None,
    ) -> CouponCheck:
        """Run the validation chain and report the first failing rule.

        Args:
            code: The redemption code as entered (case-insensitive).
            user: The identified caller, or ``None`` for guests.
            subtotal: The pre-discount cart subtotal.
            pre_discount_total: Subtotal plus shipping and gift wrap;
                defaults to ``subtotal``.
            now: Evaluation time; defaults to the current time.

        Returns:
            A :class:`CouponCheck` carrying either the discount or the
            rejection reason.
        """
        now = now or timezone.now()
        if pre_discount_total is None:
            pre_discount_total = subtotal

        coupon = Coupon.objects.filter(code=(code or "").strip().upper()).first()
        if coupon is None:
            return CouponCheck(coupon=None, rejection=CouponRejection.NOT_FOUND)
        if not coupon.is_active:
            return CouponCheck(coupon=coupon, rejection=CouponRejection.INACTIVE)
        if coupon.valid_from and now < coupon.valid_from:
            return CouponCheck(coupon=coupon, rejection=CouponRejection.NOT_YET_VALID)
        if coupon.valid_until and now > coupon.valid_until:
            return CouponCheck(coupon=coupon, rejection=CouponRejection.EXPIRED)
        if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
            return CouponCheck(coupon=coupon, rejection=CouponRejection.USAGE_EXHAUSTED)
        if coupon.max_uses_per_user is not None and user is not None:
            used = (
                Order.objects.filter(user=user, coupon=coupon).exclude(status=Order.Status.CANCELLED).count()
            )
            if used >= coupon.max_uses_per_user:
                return CouponCheck(coupon=coupon, rejection=CouponRejection.USER_LIMIT_REACHED)
        if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
            return CouponCheck(coupon=coupon, rejection=CouponRejection.BELOW_MINIMUM)

        discount = CouponResolver.compute_discount(coupon, subtotal, pre_discount_total)
        return CouponCheck(coupon=coupon, discount_amount=discount)

    @staticmethod
    def resolve(
        code: str,
        *,
        user: "AbstractBaseUser | None",
        subtotal: Decimal,
        pre_discount_total: Decimal | None = None,
        now: "datetime.datetime | None" = None,
    ) -> CouponResolution | None:
        """Return the applicable coupon and discount, or ``None``.

        Never raises for an invalid coupon; the caller simply proceeds
        without a discount.
        """
        if not code:
            return None
        result = CouponResolver.check(
            code,
            user=user,
            subtotal=subtotal,
            pre_discount_total=pre_discount_total,
            now=now,
        )
        if not result.applies:
            return None
        return CouponResolution(coupon=result.coupon, discount_amount=result.discount_amount)
