"""Durable order record operations.

The :class:`OrderLedger` is the only writer of order status and monetary
fields. The transition into PAID is a single conditional ``UPDATE`` so that
concurrent confirmations of the same order (zero-total path, duplicate or
out-of-order webhook deliveries) resolve to exactly one winner.
"""

import logging
import secrets
import string
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, models, transaction
from django.utils import timezone

from django_boutique.settings import get_config
from django_boutique.shop.models import EventTicket, Order, OrderItem
from django_boutique.shop.signals import order_created, payment_failed

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from django_boutique.shop.cart import CartLine
    from django_boutique.shop.models import Coupon
    from django_boutique.shop.services.pricing import PricedCart

logger = logging.getLogger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
_REFERENCE_SUFFIX_LENGTH = 5
_MAX_NUMBER_ATTEMPTS = 10

OVERRIDABLE_FIELDS: frozenset[str] = frozenset(
    {
        "customer_email",
        "customer_first_name",
        "customer_last_name",
        "customer_phone",
        "shipping_address",
        "billing_address",
    }
)


def make_reference(prefix: str) -> str:
    """Generate a human-distinguishable reference like ``VK-1718000000000-A1B2C``.

    References combine a prefix, a millisecond timestamp, and a short random
    suffix. They are unique in practice but not secrets.
    """
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(_REFERENCE_SUFFIX_LENGTH))
    return f"{prefix}-{time.time_ns() // 1_000_000}-{suffix}"


@dataclass(frozen=True, slots=True)
class CustomerDetails:
    """Contact fields and address snapshots captured at checkout."""

    email: str
    first_name: str
    last_name: str = ""
    phone: str = ""
    shipping_address: dict[str, Any] = field(default_factory=dict)
    billing_address: dict[str, Any] = field(default_factory=dict)


def _item_from_line(line: "CartLine") -> OrderItem:
    item = OrderItem(
        item_type=line.item_type,
        product_id=line.item_id,
        name=line.name,
        unit_price=line.price,
        quantity=line.quantity,
        line_total=line.line_total,
    )
    if line.item_type == OrderItem.ItemType.WINE:
        item.vendor = line.winery or "Unbekannt"
        item.vintage = line.vintage
        item.bottle_size = line.bottle_size
    elif line.item_type == OrderItem.ItemType.EVENT:
        item.event_slug = line.event_slug
        item.event_date = line.event_date
    elif line.item_type == OrderItem.ItemType.DIVERS:
        item.vendor = "Zubehör & Divers"
    return item


class OrderLedger:
    """Stateless service over the order tables."""

    @staticmethod
    @transaction.atomic
    def create_pending_order(
        lines: "Iterable[CartLine]",
        priced: "PricedCart",
        customer: CustomerDetails,
        *,
        user: "AbstractBaseUser | None" = None,
        coupon: "Coupon | None" = None,
        delivery_method: str = Order.DeliveryMethod.SHIPPING,
        shipping_method: str = Order.ShippingMethod.STANDARD,
        payment_method: str = "card",
        is_gift: bool = False,
        gift_wrap: bool = False,
        customer_note: str = "",
        points_earned: int = 0,
    ) -> Order:
        """Write a PENDING/PENDING order and snapshot its lines.

        Args:
            lines: The typed cart lines to snapshot as order items.
            priced: The pricing breakdown for the cart.
            customer: Contact fields and address snapshots.
            user: The identified customer, or ``None`` for guests.
            coupon: The coupon that produced ``priced.discount_amount``.
            delivery_method: ``shipping`` or ``pickup``.
            shipping_method: ``standard`` or ``express``.
            payment_method: The payment method the customer chose.
            is_gift: Whether the order is a gift.
            gift_wrap: Whether gift wrapping was requested.
            customer_note: Free-text note (gift message).
            points_earned: Loyalty points the order will accrue once paid.

        Returns:
            The new order with a freshly assigned order number.
        """
        prefix = get_config().order_number_prefix
        order_kwargs = {
            "user": user,
            "customer_email": customer.email,
            "customer_first_name": customer.first_name,
            "customer_last_name": customer.last_name,
            "customer_phone": customer.phone,
            "shipping_address": customer.shipping_address,
            "billing_address": customer.billing_address,
            "delivery_method": delivery_method,
            "shipping_method": shipping_method,
            "payment_method": payment_method,
            "is_gift": is_gift,
            "gift_wrap": gift_wrap,
            "customer_note": customer_note,
            "subtotal": priced.subtotal,
            "shipping_cost": priced.shipping_cost,
            "gift_wrap_cost": priced.gift_wrap_cost,
            "tax_amount": priced.tax_amount,
            "discount_amount": priced.discount_amount,
            "total": priced.total,
            "coupon": coupon,
            "coupon_code": coupon.code if coupon else "",
            "points_earned": points_earned,
        }
        for _ in range(_MAX_NUMBER_ATTEMPTS):
            try:
                with transaction.atomic():
                    order = Order.objects.create(order_number=make_reference(prefix), **order_kwargs)
                break
            except IntegrityError:
                continue
        else:
            msg = "Could not allocate a unique order number"
            raise RuntimeError(msg)

        items = [_item_from_line(line) for line in lines]
        for item in items:
            item.order = order
        OrderItem.objects.bulk_create(items)

        order_created.send(sender=Order, order=order)
        return order

    @staticmethod
    def attach_external_reference(order_id: int, reference: str) -> None:
        """Store the processor's checkout session ID on the order."""
        Order.objects.filter(pk=order_id).update(stripe_session_id=reference, updated_at=timezone.now())

    @staticmethod
    def record_payment_reference(order_id: int, payment_intent_id: str) -> None:
        """Store the processor's payment reference without changing status.

        Used when a checkout completes with a delayed payment method and the
        actual confirmation arrives later.
        """
        if not payment_intent_id:
            return
        Order.objects.filter(pk=order_id, payment_status=Order.PaymentStatus.PENDING).update(
            payment_intent_id=payment_intent_id,
            updated_at=timezone.now(),
        )

    @staticmethod
    def transition_to_paid(
        order_id: int,
        *,
        payment_reference: str = "",
        customer_overrides: Mapping[str, Any] | None = None,
        payment_method: str = "",
    ) -> tuple[Order, bool]:
        """Move an order to PAID/CONFIRMED exactly once.

        The status check and the write are one conditional ``UPDATE``: the
        row is only changed when it is not already PAID and not COMPLETED.
        Customer overrides replace a field only when the processor actually
        supplied a value.

        Args:
            order_id: Primary key of the order.
            payment_reference: The processor's payment intent ID.
            customer_overrides: Processor-supplied contact/address values
                keyed by order field name.
            payment_method: Overrides the recorded payment method.

        Returns:
            ``(order, transitioned)`` where ``transitioned`` is ``False``
            when the order had already been confirmed, in which case nothing
            was written.
        """
        now = timezone.now()
        values: dict[str, Any] = {
            "payment_status": Order.PaymentStatus.PAID,
            "status": Order.Status.CONFIRMED,
            "paid_at": now,
            "updated_at": now,
            "cancellation_reason": "",
            "cancelled_at": None,
        }
        if payment_reference:
            values["payment_intent_id"] = payment_reference
        if payment_method:
            values["payment_method"] = payment_method
        for key, value in (customer_overrides or {}).items():
            if key in OVERRIDABLE_FIELDS and value not in (None, "", {}):
                values[key] = value

        updated = (
            Order.objects.filter(pk=order_id)
            .exclude(payment_status=Order.PaymentStatus.PAID)
            .exclude(status=Order.Status.COMPLETED)
            .update(**values)
        )
        order = Order.objects.get(pk=order_id)
        return order, updated == 1

    @staticmethod
    def transition_to_failed(order_id: int, reason: str) -> tuple[Order, bool]:
        """Move a still-pending order to FAILED/CANCELLED.

        Orders that were already paid, failed, or cancelled are left alone.

        Returns:
            ``(order, transitioned)``.
        """
        now = timezone.now()
        updated = Order.objects.filter(
            pk=order_id,
            payment_status=Order.PaymentStatus.PENDING,
            status=Order.Status.PENDING,
        ).update(
            payment_status=Order.PaymentStatus.FAILED,
            status=Order.Status.CANCELLED,
            cancellation_reason=reason,
            cancelled_at=now,
            updated_at=now,
        )
        order = Order.objects.get(pk=order_id)
        if updated == 1:
            payment_failed.send(sender=Order, order=order, reason=reason)
        return order, updated == 1

    @staticmethod
    def find_by_id(order_id: object) -> Order | None:
        """Return the order with the given primary key, tolerating junk input."""
        try:
            return Order.objects.filter(pk=int(str(order_id))).first()
        except (TypeError, ValueError):
            return None

    @staticmethod
    def find_by_external_reference(reference: str) -> Order | None:
        """Return the order carrying this session or payment intent ID."""
        if not reference:
            return None
        return Order.objects.filter(
            models.Q(stripe_session_id=reference) | models.Q(payment_intent_id=reference),
        ).first()

    @staticmethod
    @transaction.atomic
    def claim_guest_orders(user: "AbstractBaseUser") -> int:
        """Link guest orders and tickets bought with the user's email address.

        Args:
            user: The newly identified customer.

        Returns:
            The number of orders that were linked.
        """
        email = getattr(user, "email", "")
        if not email:
            return 0
        linked = Order.objects.filter(user__isnull=True, customer_email__iexact=email).update(user=user)
        EventTicket.objects.filter(user__isnull=True, order__user=user).update(user=user)
        if linked:
            logger.info("Linked %d guest order(s) to user %s", linked, user.pk)
        return linked
