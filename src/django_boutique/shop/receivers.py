"""Log records for shop domain events."""

import logging
from typing import TYPE_CHECKING

from django.dispatch import receiver

from django_boutique.shop.signals import (
    order_created,
    payment_confirmed,
    payment_failed,
    reconciliation_anomaly,
    ticket_overbooked,
)

if TYPE_CHECKING:
    from django_boutique.catalog.models import Event
    from django_boutique.shop.models import Order

logger = logging.getLogger("django_boutique.shop.events")


@receiver(order_created, dispatch_uid="boutique_shop.log_order_created")
def log_order_created(sender: object, *, order: "Order", **kwargs: object) -> None:  # noqa: ARG001
    """Log a newly written pending order."""
    logger.info("Order %s created (total %s)", order.order_number, order.total)


@receiver(payment_confirmed, dispatch_uid="boutique_shop.log_payment_confirmed")
def log_payment_confirmed(sender: object, *, order: "Order", source: str, **kwargs: object) -> None:  # noqa: ARG001
    """Log a confirmed payment."""
    logger.info("Order %s confirmed via %s", order.order_number, source)


@receiver(payment_failed, dispatch_uid="boutique_shop.log_payment_failed")
def log_payment_failed(sender: object, *, order: "Order", reason: str, **kwargs: object) -> None:  # noqa: ARG001
    """Log a failed payment."""
    logger.warning("Payment failed for order %s: %s", order.order_number, reason)


@receiver(ticket_overbooked, dispatch_uid="boutique_shop.log_ticket_overbooked")
def log_ticket_overbooked(
    sender: object,  # noqa: ARG001
    *,
    event: "Event",
    order: "Order",
    requested: int,
    available: int,
    **kwargs: object,  # noqa: ARG001
) -> None:
    """Log tickets issued beyond an event's capacity."""
    logger.warning(
        "Event %s overbooked by order %s: requested %d, available %d",
        event.slug,
        order.order_number,
        requested,
        available,
    )


@receiver(reconciliation_anomaly, dispatch_uid="boutique_shop.log_reconciliation_anomaly")
def log_reconciliation_anomaly(
    sender: object,  # noqa: ARG001
    *,
    kind: str,
    reference: str,
    detail: str,
    **kwargs: object,  # noqa: ARG001
) -> None:
    """Log a fabricated record for operator follow-up."""
    logger.error("Reconciliation anomaly (%s) for %s: %s", kind, reference, detail)
