"""Outbound notifications for confirmed orders.

Email delivery and ticket PDF rendering are collaborators outside the
checkout core: they receive a recipient and a structured payload and are
invoked after the confirmation transaction has committed. A failing
notification is logged and never undoes a confirmed payment.

The dispatcher and renderer are configured by dotted path::

    DJANGO_BOUTIQUE = {
        "email_dispatcher": "myproject.mail.TemplatedDispatcher",
        "ticket_renderer": "myproject.tickets.PdfRenderer",
    }
"""

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from django.conf import settings
from django.core.mail import EmailMessage
from django.utils.module_loading import import_string

from django_boutique.settings import get_config
from django_boutique.shop.models import Coupon, EventTicket, Order

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION = "order_confirmation"
ADMIN_NEW_ORDER = "admin_new_order"
EVENT_TICKETS = "event_tickets"
GIFT_CARD = "gift_card"

_SUBJECTS: dict[str, str] = {
    ORDER_CONFIRMATION: "Order confirmation {order_number}",
    ADMIN_NEW_ORDER: "New order {order_number}",
    EVENT_TICKETS: "Your tickets for order {order_number}",
    GIFT_CARD: "Your gift card {code}",
}


class EmailDispatcher(Protocol):
    """Sends a structured payload to a recipient."""

    def send(
        self,
        recipient: str,
        template: str,
        payload: dict[str, Any],
        attachments: Sequence[tuple[str, bytes, str]] = (),
    ) -> None:
        """Deliver one message."""
        ...


class TicketRenderer(Protocol):
    """Renders a ticket payload into a binary document."""

    def render(self, payload: dict[str, Any]) -> bytes:
        """Return the rendered document."""
        ...


class MailDispatcher:
    """Default dispatcher sending plain-text mail through Django's email backend."""

    def send(
        self,
        recipient: str,
        template: str,
        payload: dict[str, Any],
        attachments: Sequence[tuple[str, bytes, str]] = (),
    ) -> None:
        """Send ``payload`` as a JSON-formatted plain-text message."""
        subject = _SUBJECTS.get(template, template).format_map(_SafeDict(payload))
        message = EmailMessage(
            subject=subject,
            body=json.dumps(payload, indent=2, ensure_ascii=False, default=str),
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
            to=[recipient],
        )
        for filename, content, mimetype in attachments:
            message.attach(filename, content, mimetype)
        message.send(fail_silently=False)


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def get_email_dispatcher() -> EmailDispatcher:
    """Instantiate the configured email dispatcher."""
    return import_string(get_config().email_dispatcher)()


def get_ticket_renderer() -> TicketRenderer | None:
    """Instantiate the configured ticket renderer, if any."""
    path = get_config().ticket_renderer
    return import_string(path)() if path else None


def build_order_payload(order: Order) -> dict[str, Any]:
    """Serialize an order for confirmation emails."""
    return {
        "order_number": order.order_number,
        "customer_first_name": order.customer_first_name,
        "customer_last_name": order.customer_last_name,
        "customer_email": order.customer_email,
        "created_at": order.created_at.isoformat(),
        "items": [
            {
                "name": item.name,
                "vendor": item.vendor,
                "vintage": item.vintage,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "line_total": str(item.line_total),
            }
            for item in order.items.all()
        ],
        "tickets": [ticket.ticket_number for ticket in order.tickets.all()],
        "subtotal": str(order.subtotal),
        "shipping_cost": str(order.shipping_cost),
        "gift_wrap_cost": str(order.gift_wrap_cost),
        "discount_amount": str(order.discount_amount),
        "tax_amount": str(order.tax_amount),
        "total": str(order.total),
        "billing_address": order.billing_address,
        "shipping_address": order.shipping_address,
        "delivery_method": order.delivery_method,
        "shipping_method": order.shipping_method,
        "payment_method": order.payment_method,
    }


def build_ticket_payload(ticket: EventTicket) -> dict[str, Any]:
    """Serialize a ticket and its event for the ticket renderer."""
    event = ticket.event
    return {
        "ticket_number": ticket.ticket_number,
        "redemption_code": ticket.redemption_code,
        "holder_first_name": ticket.holder_first_name,
        "holder_last_name": ticket.holder_last_name,
        "holder_email": ticket.holder_email,
        "price": str(ticket.price),
        "event": {
            "title": event.title,
            "subtitle": event.subtitle,
            "venue": event.venue,
            "start_datetime": event.start_datetime.isoformat(),
        },
    }


def _send_ticket_email(dispatcher: EmailDispatcher, order: Order) -> None:
    tickets = list(order.tickets.select_related("event"))
    if not tickets:
        return
    renderer = get_ticket_renderer()
    payloads = [build_ticket_payload(ticket) for ticket in tickets]
    attachments: list[tuple[str, bytes, str]] = []
    if renderer is not None:
        for payload in payloads:
            try:
                attachments.append((f"{payload['ticket_number']}.pdf", renderer.render(payload), "application/pdf"))
            except Exception:
                logger.exception("Failed to render ticket %s", payload["ticket_number"])
    dispatcher.send(
        order.customer_email,
        EVENT_TICKETS,
        {"order_number": order.order_number, "customer_first_name": order.customer_first_name, "tickets": payloads},
        attachments,
    )


def send_gift_card_email(dispatcher: EmailDispatcher, order: Order, coupon: Coupon, *, source_code: str = "") -> None:
    """Mail a minted gift card code to the order's customer."""
    dispatcher.send(
        order.customer_email,
        GIFT_CARD,
        {
            "code": coupon.code,
            "amount": str(coupon.value),
            "recipient_name": order.customer_first_name,
            "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
            "source_code": source_code,
        },
    )


def dispatch_order_confirmation(order_id: int, gift_cards: Sequence[tuple[int, str]] = ()) -> None:
    """Send every notification belonging to a freshly confirmed order.

    Each message is sent independently; failures are logged and do not stop
    the remaining messages.

    Args:
        order_id: Primary key of the confirmed order.
        gift_cards: ``(coupon_id, source_code)`` pairs of gift cards minted
            during confirmation.
    """
    try:
        order = Order.objects.prefetch_related("items", "tickets").get(pk=order_id)
        dispatcher = get_email_dispatcher()
        payload = build_order_payload(order)
    except Exception:
        logger.exception("Could not prepare notifications for order %s", order_id)
        return

    try:
        dispatcher.send(order.customer_email, ORDER_CONFIRMATION, payload)
    except Exception:
        logger.exception("Failed to send confirmation for order %s", order.order_number)

    admin_email = get_config().admin_email
    if admin_email:
        try:
            dispatcher.send(admin_email, ADMIN_NEW_ORDER, payload)
        except Exception:
            logger.exception("Failed to send admin notification for order %s", order.order_number)

    try:
        _send_ticket_email(dispatcher, order)
    except Exception:
        logger.exception("Failed to send tickets for order %s", order.order_number)

    for coupon in Coupon.objects.filter(pk__in=[coupon_id for coupon_id, _ in gift_cards]):
        source_code = dict(gift_cards).get(coupon.pk, "")
        try:
            send_gift_card_email(dispatcher, order, coupon, source_code=source_code)
        except Exception:
            logger.exception("Failed to send gift card %s for order %s", coupon.code, order.order_number)
