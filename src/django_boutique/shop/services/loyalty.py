"""Loyalty point accrual and level bookkeeping."""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction

from django_boutique.settings import LoyaltyConfig, LoyaltyLevel, get_config
from django_boutique.shop.models import LoyaltyAccount, LoyaltyTransaction

if TYPE_CHECKING:
    from django_boutique.shop.models import Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PointsAward:
    """Result of a loyalty balance change."""

    account: LoyaltyAccount
    points: int
    old_level: int
    new_level: int

    @property
    def level_changed(self) -> bool:
        """Return True when the change moved the customer to another tier."""
        return self.old_level != self.new_level


def calculate_points(amount: Decimal, config: LoyaltyConfig | None = None) -> int:
    """Return the points earned for spending ``amount`` (rounded down)."""
    config = config or get_config().loyalty
    if amount <= 0:
        return 0
    return math.floor(amount * config.points_per_unit)


def level_for_points(points: int, config: LoyaltyConfig | None = None) -> LoyaltyLevel:
    """Return the highest level whose threshold ``points`` reaches."""
    config = config or get_config().loyalty
    current = config.levels[0]
    for level in config.levels:
        if points >= level.min_points:
            current = level
    return current


class LoyaltyService:
    """Stateless service updating loyalty balances."""

    @staticmethod
    @transaction.atomic
    def award_points(
        user_id: int,
        delta: int,
        *,
        reason: str,
        order: "Order | None" = None,
        spent: Decimal = Decimal("0.00"),
    ) -> PointsAward:
        """Apply a point delta to a user's loyalty balance.

        Creates the account on first use, records a :class:`LoyaltyTransaction`
        and recomputes the level. Balances never go below zero.

        Args:
            user_id: The customer's user ID.
            delta: Points to add (or subtract when negative).
            reason: Human-readable reason stored on the transaction.
            order: The order that triggered the change, if any.
            spent: Amount to add to the customer's lifetime spend.

        Returns:
            The updated account together with the old and new levels.
        """
        account, _ = LoyaltyAccount.objects.select_for_update().get_or_create(user_id=user_id)
        balance_before = account.points
        account.points = max(0, balance_before + delta)
        account.total_spent += spent
        old_level = account.level
        account.level = level_for_points(account.points).level
        account.save(update_fields=["points", "total_spent", "level", "updated_at"])

        LoyaltyTransaction.objects.create(
            account=account,
            points=account.points - balance_before,
            reason=reason,
            order=order,
            balance_before=balance_before,
            balance_after=account.points,
        )
        if old_level != account.level:
            logger.info("User %s moved from loyalty level %d to %d", user_id, old_level, account.level)
        return PointsAward(account=account, points=delta, old_level=old_level, new_level=account.level)

    @staticmethod
    def accrue_for_order(order: "Order") -> PointsAward | None:
        """Credit the points recorded on a confirmed order to its customer.

        Guest orders accrue nothing.
        """
        if order.user_id is None:
            return None
        return LoyaltyService.award_points(
            order.user_id,
            order.points_earned,
            reason="Purchase",
            order=order,
            spent=order.total,
        )
