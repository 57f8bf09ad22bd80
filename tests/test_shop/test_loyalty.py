"""Tests for loyalty accrual in django_boutique.shop.services.loyalty."""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from django_boutique.settings import LoyaltyConfig
from django_boutique.shop.models import LoyaltyAccount, LoyaltyTransaction, Order
from django_boutique.shop.services.loyalty import LoyaltyService, calculate_points, level_for_points

User = get_user_model()


@pytest.fixture
def user(db):
    return User.objects.create_user(username="sommelier", email="sommelier@example.com", password="testpass123")


@pytest.mark.unit
class TestCalculatePoints:
    def test_rounds_down(self):
        assert calculate_points(Decimal("162.04")) == 162
        assert calculate_points(Decimal("0.99")) == 0

    def test_non_positive_amounts_earn_nothing(self):
        assert calculate_points(Decimal("0.00")) == 0
        assert calculate_points(Decimal("-10.00")) == 0

    def test_custom_rate(self):
        config = LoyaltyConfig(points_per_unit=Decimal("2.5"))
        assert calculate_points(Decimal("10.30"), config) == 25


@pytest.mark.unit
class TestLevelForPoints:
    @pytest.mark.parametrize(
        ("points", "expected"),
        [(0, 1), (499, 1), (500, 2), (1499, 2), (1500, 3), (5000, 4), (12000, 5), (25000, 6), (60000, 7), (10**6, 7)],
    )
    def test_default_levels(self, points, expected):
        assert level_for_points(points).level == expected


@pytest.mark.django_db
class TestAwardPoints:
    def test_creates_account_on_first_use(self, user):
        award = LoyaltyService.award_points(user.pk, 120, reason="Purchase", spent=Decimal("120.50"))

        account = LoyaltyAccount.objects.get(user=user)
        assert account.points == 120
        assert account.level == 1
        assert account.total_spent == Decimal("120.50")
        assert award.points == 120
        assert award.level_changed is False

    def test_records_transaction(self, user):
        LoyaltyService.award_points(user.pk, 80, reason="Purchase")
        LoyaltyService.award_points(user.pk, 40, reason="Bonus")

        latest = LoyaltyTransaction.objects.filter(account__user=user).order_by("-pk").first()
        assert latest.points == 40
        assert latest.balance_before == 80
        assert latest.balance_after == 120
        assert latest.reason == "Bonus"

    def test_level_up(self, user):
        LoyaltyService.award_points(user.pk, 450, reason="Purchase")
        award = LoyaltyService.award_points(user.pk, 60, reason="Purchase")

        assert award.old_level == 1
        assert award.new_level == 2
        assert award.level_changed is True

    def test_balance_never_negative(self, user):
        LoyaltyService.award_points(user.pk, 30, reason="Purchase")
        award = LoyaltyService.award_points(user.pk, -100, reason="Correction")

        assert award.account.points == 0
        assert LoyaltyTransaction.objects.filter(reason="Correction").get().points == -30


@pytest.mark.django_db
class TestAccrueForOrder:
    def _order(self, user=None):
        return Order.objects.create(
            order_number="VK-1700000000000-LOYAL",
            user=user,
            customer_email="sommelier@example.com",
            customer_first_name="Sam",
            total=Decimal("162.04"),
            points_earned=162,
        )

    def test_credits_recorded_points(self, user):
        order = self._order(user)

        award = LoyaltyService.accrue_for_order(order)

        assert award.account.points == 162
        assert award.account.total_spent == Decimal("162.04")
        assert LoyaltyTransaction.objects.get(order=order).points == 162

    def test_guest_orders_accrue_nothing(self, db):
        assert LoyaltyService.accrue_for_order(self._order()) is None
        assert not LoyaltyAccount.objects.exists()
