"""Tests for gift card minting in django_boutique.shop.services.gift_cards."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone

from django_boutique.shop.models import Coupon, Order, OrderItem
from django_boutique.shop.services.gift_cards import (
    GiftCardSplitter,
    _generate_unique_code,
    remaining_balance,
)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def gift_card(db):
    return Coupon.objects.create(
        code="GC-ORIG01",
        coupon_type=Coupon.CouponType.GIFT_CARD,
        value=Decimal("80.00"),
        valid_until=timezone.now() + timedelta(days=365),
        max_uses=1,
    )


@pytest.fixture
def order(gift_card):
    return Order.objects.create(
        order_number="VK-1700000000000-GIFTS",
        customer_email="anna@example.com",
        customer_first_name="Anna",
        subtotal=Decimal("40.10"),
        shipping_cost=Decimal("9.90"),
        discount_amount=Decimal("50.00"),
        total=Decimal("0.00"),
        coupon=gift_card,
        coupon_code=gift_card.code,
    )


# =============================================================================
# TestSplit
# =============================================================================


@pytest.mark.django_db
class TestSplit:
    def test_mints_remainder(self, order, gift_card):
        issued = GiftCardSplitter.split(order)

        assert issued is not None
        assert issued.is_remainder is True
        assert issued.source_code == "GC-ORIG01"
        remainder = issued.coupon
        assert remainder.code.startswith("REST-")
        assert len(remainder.code) == len("REST-") + 6
        assert remainder.coupon_type == Coupon.CouponType.GIFT_CARD
        assert remainder.value == Decimal("30.00")
        assert remainder.max_uses == 1
        assert remainder.current_uses == 0
        assert remainder.valid_until == gift_card.valid_until
        assert remainder.parent == gift_card
        assert remainder.source_order == order

    def test_original_card_is_unchanged(self, order, gift_card):
        GiftCardSplitter.split(order)
        gift_card.refresh_from_db()
        assert gift_card.value == Decimal("80.00")

    def test_split_is_idempotent(self, order):
        first = GiftCardSplitter.split(order)
        second = GiftCardSplitter.split(order)

        assert first.coupon.pk == second.coupon.pk
        assert Coupon.objects.filter(code__startswith="REST-").count() == 1

    def test_fully_consumed_card_mints_nothing(self, order, gift_card):
        order.discount_amount = Decimal("80.00")
        assert GiftCardSplitter.split(order) is None
        assert not Coupon.objects.filter(parent=gift_card).exists()

    def test_non_gift_card_coupon_is_ignored(self, order, gift_card):
        gift_card.coupon_type = Coupon.CouponType.FIXED_AMOUNT
        gift_card.save()
        order.refresh_from_db()
        assert GiftCardSplitter.split(order) is None

    def test_order_without_coupon(self, db):
        order = Order.objects.create(
            order_number="VK-1700000000001-GIFTS",
            customer_email="anna@example.com",
            customer_first_name="Anna",
        )
        assert GiftCardSplitter.split(order) is None


# =============================================================================
# TestIssuePurchased
# =============================================================================


@pytest.mark.django_db
class TestIssuePurchased:
    @pytest.fixture
    def purchase(self, db):
        order = Order.objects.create(
            order_number="VK-1700000000002-GIFTS",
            customer_email="anna@example.com",
            customer_first_name="Anna",
            subtotal=Decimal("100.00"),
            total=Decimal("109.90"),
        )
        OrderItem.objects.create(
            order=order,
            item_type=OrderItem.ItemType.GIFT_CARD,
            name="Geschenkgutschein",
            unit_price=Decimal("50.00"),
            quantity=2,
            line_total=Decimal("100.00"),
        )
        return order

    def test_mints_one_card_per_unit(self, purchase):
        issued = GiftCardSplitter.issue_purchased(purchase)

        assert len(issued) == 2
        for card in issued:
            assert card.is_remainder is False
            assert card.coupon.code.startswith("GC-")
            assert card.coupon.value == Decimal("50.00")
            assert card.coupon.coupon_type == Coupon.CouponType.GIFT_CARD
            assert card.coupon.source_order == purchase
            assert card.coupon.parent is None
        assert issued[0].coupon.code != issued[1].coupon.code

    def test_second_call_mints_nothing(self, purchase):
        GiftCardSplitter.issue_purchased(purchase)
        assert GiftCardSplitter.issue_purchased(purchase) == []
        assert Coupon.objects.filter(source_order=purchase).count() == 2

    def test_order_without_gift_card_lines(self, order):
        assert GiftCardSplitter.issue_purchased(order) == []


# =============================================================================
# TestHelpers
# =============================================================================


@pytest.mark.django_db
class TestHelpers:
    def test_remaining_balance(self, gift_card):
        assert remaining_balance(gift_card, Decimal("50.00")) == Decimal("30.00")
        assert remaining_balance(gift_card, Decimal("120.00")) == Decimal("0.00")

    def test_generate_unique_code_gives_up(self, gift_card):
        with patch("django_boutique.shop.services.gift_cards.secrets.choice", return_value="X"):
            Coupon.objects.create(code="GC-XXXXXX", value=Decimal("10.00"))
            with pytest.raises(RuntimeError, match="Failed to generate a unique coupon code"):
                _generate_unique_code("GC")
