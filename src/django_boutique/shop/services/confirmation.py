"""Shared payment confirmation routine.

Both the zero-total checkout path and the payment webhooks confirm orders
through :func:`confirm_order`. Whoever wins the conditional transition to
PAID performs every side effect (tickets, coupon usage, gift cards, loyalty)
inside the same transaction; every other caller observes
``already_confirmed`` and does nothing.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from django.db import models, transaction

from django_boutique.shop.models import Coupon, EventTicket, Order
from django_boutique.shop.notifications import dispatch_order_confirmation
from django_boutique.shop.services.gift_cards import GiftCardSplitter, IssuedGiftCard
from django_boutique.shop.services.ledger import OrderLedger
from django_boutique.shop.services.loyalty import LoyaltyService
from django_boutique.shop.services.tickets import TicketAllocator
from django_boutique.shop.signals import payment_confirmed

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    """Outcome of a confirmation attempt."""

    order: Order
    already_confirmed: bool
    tickets: list[EventTicket] = field(default_factory=list)
    gift_cards: list[IssuedGiftCard] = field(default_factory=list)


def _announce_confirmation(order: Order, source: str) -> None:
    """Send ``payment_confirmed``, logging receivers that fail."""
    for receiver, response in payment_confirmed.send_robust(sender=Order, order=order, source=source):
        if isinstance(response, Exception):
            logger.error(
                "payment_confirmed receiver %r failed for order %s: %s",
                receiver,
                order.order_number,
                response,
            )


@transaction.atomic
def confirm_order(
    order_id: int,
    *,
    source: str,
    payment_reference: str = "",
    customer_overrides: Mapping[str, Any] | None = None,
    payment_method: str = "",
) -> ConfirmationResult:
    """Mark an order as paid and run its confirmation side effects once.

    Args:
        order_id: Primary key of the order to confirm.
        source: What triggered the confirmation (``zero_total`` or
            ``webhook``); passed on to ``payment_confirmed`` receivers.
        payment_reference: The processor's payment intent ID, if any.
        customer_overrides: Processor-supplied contact/address values.
        payment_method: Overrides the recorded payment method.

    Returns:
        A :class:`ConfirmationResult`. ``already_confirmed`` is True when a
        previous call had already confirmed the order.
    """
    order, transitioned = OrderLedger.transition_to_paid(
        order_id,
        payment_reference=payment_reference,
        customer_overrides=customer_overrides,
        payment_method=payment_method,
    )
    if not transitioned:
        logger.info("Order %s already confirmed; skipping side effects", order.order_number)
        return ConfirmationResult(order=order, already_confirmed=True)

    tickets = TicketAllocator.allocate(order)

    if order.coupon_id is not None:
        Coupon.objects.filter(pk=order.coupon_id).update(current_uses=models.F("current_uses") + 1)

    gift_cards: list[IssuedGiftCard] = []
    remainder = GiftCardSplitter.split(order)
    if remainder is not None:
        gift_cards.append(remainder)
    gift_cards.extend(GiftCardSplitter.issue_purchased(order))

    LoyaltyService.accrue_for_order(order)

    transaction.on_commit(
        partial(
            dispatch_order_confirmation,
            order.pk,
            [(card.coupon.pk, card.source_code) for card in gift_cards],
        ),
        robust=True,
    )
    transaction.on_commit(partial(_announce_confirmation, order, source), robust=True)

    logger.info(
        "Confirmed order %s via %s (%d ticket(s), %d gift card(s))",
        order.order_number,
        source,
        len(tickets),
        len(gift_cards),
    )
    return ConfirmationResult(order=order, already_confirmed=False, tickets=tickets, gift_cards=gift_cards)
