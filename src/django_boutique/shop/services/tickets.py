"""Event ticket allocation for confirmed orders.

Tickets are issued inside the confirmation transaction, after the order has
won the transition to PAID, so each order's seats are allocated exactly
once. A paid order is never refused: a missing event is recreated from the
order line, and seats beyond capacity are issued with a warning signal.
"""

import datetime
import logging

from django.db import IntegrityError, models, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from django_boutique.catalog.models import Event
from django_boutique.settings import get_config
from django_boutique.shop.models import EventTicket, Order, OrderItem
from django_boutique.shop.services.ledger import make_reference
from django_boutique.shop.signals import reconciliation_anomaly, ticket_overbooked

logger = logging.getLogger(__name__)

FALLBACK_EVENT_CAPACITY = 100
FALLBACK_EVENT_DURATION = datetime.timedelta(hours=2)


def _parse_event_start(raw: str) -> datetime.datetime:
    """Best-effort parse of the event date carried on a cart line."""
    if raw:
        parsed = parse_datetime(raw)
        if parsed is None:
            day = parse_date(raw[:10])
            if day is not None:
                parsed = datetime.datetime.combine(day, datetime.time(18, 0))
        if parsed is not None:
            if timezone.is_naive(parsed):
                parsed = timezone.make_aware(parsed)
            return parsed
    return timezone.now()


def _create_fallback_event(item: OrderItem) -> Event:
    """Create an unpublished event from an order line's snapshot."""
    slug = item.event_slug or f"event-{timezone.now():%Y%m%d%H%M%S%f}"
    start = _parse_event_start(item.event_date)
    try:
        with transaction.atomic():
            event = Event.objects.create(
                slug=slug,
                title=item.name,
                description="Automatically created from a paid order.",
                start_datetime=start,
                end_datetime=start + FALLBACK_EVENT_DURATION,
                max_capacity=FALLBACK_EVENT_CAPACITY,
                price=item.unit_price,
                status=Event.Status.DRAFT,
            )
    except IntegrityError:
        return Event.objects.select_for_update().get(slug=slug)

    reconciliation_anomaly.send(
        sender=Event,
        kind="missing_event",
        reference=slug,
        detail=f"Event created from order line {item.pk} ({item.name!r}) of order {item.order.order_number}",
    )
    return event


def _unique_ticket_numbers(prefix: str, count: int) -> list[str]:
    numbers: set[str] = set()
    while len(numbers) < count:
        numbers.add(make_reference(prefix))
    return sorted(numbers)


class TicketAllocator:
    """Issue event tickets for the event lines of a confirmed order.

    Must be called inside the confirmation transaction; the event row is
    locked while its capacity is read and incremented.
    """

    @staticmethod
    def allocate(order: Order) -> list[EventTicket]:
        """Issue tickets for every event line of ``order``.

        Returns:
            All tickets created for the order.
        """
        tickets: list[EventTicket] = []
        for item in order.items.filter(item_type=OrderItem.ItemType.EVENT):
            tickets.extend(TicketAllocator.allocate_line(order, item))
        return tickets

    @staticmethod
    def allocate_line(order: Order, item: OrderItem) -> list[EventTicket]:
        """Issue one ticket per seat on a single event line.

        Resolves the event by slug (creating it from the line snapshot when
        it is missing), warns when the request exceeds the remaining
        capacity, creates the tickets, and raises ``current_capacity`` by the
        requested quantity.

        Args:
            order: The confirmed order.
            item: An event line of that order.

        Returns:
            The tickets created for this line.
        """
        event = Event.objects.select_for_update().filter(slug=item.event_slug).first()
        if event is None:
            event = _create_fallback_event(item)

        requested = item.quantity
        available = event.max_capacity - event.current_capacity
        if available < requested:
            ticket_overbooked.send(
                sender=Event,
                event=event,
                order=order,
                requested=requested,
                available=available,
            )

        prefix = get_config().ticket_number_prefix
        tickets = [
            EventTicket(
                order=order,
                event=event,
                user=order.user,
                ticket_number=number,
                redemption_code=f"QR-{number}",
                holder_first_name=order.customer_first_name,
                holder_last_name=order.customer_last_name,
                holder_email=order.customer_email,
                price=item.unit_price,
            )
            for number in _unique_ticket_numbers(prefix, requested)
        ]
        EventTicket.objects.bulk_create(tickets)
        Event.objects.filter(pk=event.pk).update(
            current_capacity=models.F("current_capacity") + requested,
            updated_at=timezone.now(),
        )

        logger.debug("Issued %d ticket(s) for event %s on order %s", requested, event.slug, order.order_number)
        return tickets
