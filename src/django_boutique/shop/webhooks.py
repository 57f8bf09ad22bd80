"""Stripe webhook handling for the shop app.

Provides a registry-based dispatch system for reconciling Stripe payment
events into order state. Each event kind (e.g. ``checkout.session.completed``)
maps to a handler class; every handler that confirms a payment goes through
the shared :func:`~django_boutique.shop.services.confirmation.confirm_order`
routine, so duplicate or out-of-order deliveries confirm an order once.

The ``stripe_webhook`` view verifies the event signature before touching the
database, deduplicates by Stripe event ID, and delegates to the handler.

Usage in URL configuration::

    from django_boutique.shop.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook),
    ]
"""

import json
import logging
import traceback
from typing import TYPE_CHECKING, Any

import stripe
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from django_boutique.settings import get_config
from django_boutique.shop.cart import CartLine, WineLine
from django_boutique.shop.models import EventProcessingException, Order, StripeEvent
from django_boutique.shop.services.confirmation import confirm_order
from django_boutique.shop.services.ledger import CustomerDetails, OrderLedger
from django_boutique.shop.services.loyalty import calculate_points
from django_boutique.shop.services.pricing import ZERO, PricedCart
from django_boutique.shop.signals import reconciliation_anomaly
from django_boutique.shop.stripe_client import StripeClient
from django_boutique.shop.stripe_utils import convert_amount_for_db

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)

_SHIPPING_PREFIX = "Versandkosten"
_GIFT_WRAP_PREFIX = "Geschenkverpackung"
_TAX_PREFIX = "Mehrwertsteuer"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class WebhookRegistry:
    """Registry mapping Stripe event kinds to handler classes.

    Handlers are registered at module load time and looked up by the webhook
    view when an event arrives.
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._registry: dict[str, "type[Webhook]"] = {}

    def register(self, kind: str, handler_class: "type[Webhook]") -> None:
        """Register a handler class for a Stripe event kind.

        Args:
            kind: The Stripe event type string (e.g. ``"checkout.session.completed"``).
            handler_class: A ``Webhook`` subclass that handles this event kind.
        """
        self._registry[kind] = handler_class

    def get(self, kind: str) -> "type[Webhook] | None":
        """Return the handler class for a given event kind, or ``None``."""
        return self._registry.get(kind)

    def keys(self) -> list[str]:
        """Return all registered event kinds."""
        return list(self._registry.keys())


registry = WebhookRegistry()


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------


class Webhook:
    """Base class for Stripe webhook event handlers.

    Subclasses set ``name`` to the Stripe event kind they handle and
    implement ``process_webhook()``. The base ``process()`` method skips
    events already processed and captures failures to
    ``EventProcessingException``.

    Attributes:
        name: The Stripe event kind this handler processes.
        event: The ``StripeEvent`` model instance being handled.
    """

    name: str = ""

    def __init__(self, event: StripeEvent) -> None:
        """Bind the handler to a persisted Stripe event record."""
        self.event = event

    def process(self) -> None:
        """Run the handler with duplicate detection and error capture.

        On success the event is marked as processed. On failure the
        traceback is captured to ``EventProcessingException`` and the
        exception re-raised; the event stays unprocessed so that Stripe's
        redelivery can retry it.
        """
        if self.event.processed:
            logger.info("Event %s already processed, skipping", self.event.stripe_id)
            return

        try:
            self.process_webhook()
            self.event.processed = True
            self.event.save(update_fields=["processed"])
        except Exception:
            self.log_exception()
            raise

    def process_webhook(self) -> None:
        """Implement event-specific processing logic.

        Raises:
            NotImplementedError: Subclasses must override this method.
        """
        raise NotImplementedError

    def log_exception(self) -> None:
        """Capture the current exception to ``EventProcessingException``."""
        tb = traceback.format_exc()
        logger.error(
            "Error processing webhook %s (event %s): %s",
            self.name,
            self.event.stripe_id,
            tb,
        )
        EventProcessingException.objects.create(
            event=self.event,
            data=str(self.event.payload),
            message=str(tb)[:500],
            traceback=tb,
        )


def _event_data_object(event: StripeEvent) -> dict[str, Any]:
    """Extract the ``data.object`` dict from a StripeEvent payload."""
    payload = event.payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            obj = data.get("object")
            if isinstance(obj, dict):
                return obj
    return {}


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _split_name(name: str) -> tuple[str, str]:
    first, _, rest = (name or "").strip().partition(" ")
    return first, rest.strip()


def _address_snapshot(address: object) -> dict[str, str]:
    """Translate a Stripe address into the storefront's address keys, dropping blanks."""
    if not isinstance(address, dict):
        return {}
    mapped = {
        "street": address.get("line1"),
        "streetNumber": address.get("line2"),
        "postalCode": address.get("postal_code"),
        "city": address.get("city"),
        "country": address.get("country"),
    }
    return {key: str(value) for key, value in mapped.items() if value}


def _shipping_details(session: dict[str, Any]) -> dict[str, Any]:
    details = session.get("shipping_details")
    if not isinstance(details, dict):
        collected = session.get("collected_information")
        details = collected.get("shipping_details") if isinstance(collected, dict) else None
    return details if isinstance(details, dict) else {}


def customer_overrides(session: dict[str, Any], order: Order | None = None) -> dict[str, Any]:
    """Collect the contact and address values Stripe supplied for a session.

    Only values Stripe actually filled in are returned, so applying the
    result never blanks a field captured at checkout. Addresses are merged
    over the order's existing snapshots.

    Args:
        session: The ``checkout.session`` object from the event payload.
        order: The order being confirmed, whose snapshots are merged into.

    Returns:
        A mapping of order field names to override values.
    """
    overrides: dict[str, Any] = {}
    details = session.get("customer_details")
    details = details if isinstance(details, dict) else {}

    if details.get("email"):
        overrides["customer_email"] = str(details["email"])
    first_name, last_name = _split_name(str(details.get("name") or ""))
    if first_name:
        overrides["customer_first_name"] = first_name
    if last_name:
        overrides["customer_last_name"] = last_name
    if details.get("phone"):
        overrides["customer_phone"] = str(details["phone"])

    billing = _address_snapshot(details.get("address"))
    if billing:
        base = dict(order.billing_address) if order is not None else {}
        overrides["billing_address"] = {**base, **billing}

    shipping_details = _shipping_details(session)
    shipping = _address_snapshot(shipping_details.get("address"))
    if shipping:
        base = dict(order.shipping_address) if order is not None else {}
        ship_first, ship_last = _split_name(str(shipping_details.get("name") or ""))
        names = {key: value for key, value in (("firstName", ship_first), ("lastName", ship_last)) if value}
        overrides["shipping_address"] = {**base, **names, **shipping}
    return overrides


def _line_from_stripe(item: dict[str, Any], currency: str) -> CartLine:
    price = item.get("price") if isinstance(item.get("price"), dict) else {}
    product = price.get("product") if isinstance(price.get("product"), dict) else {}
    metadata = _metadata(product)
    vintage = str(metadata.get("vintage") or "")
    return WineLine(
        item_id=str(product.get("id") or ""),
        name=str(product.get("name") or item.get("description") or "Produkt"),
        price=convert_amount_for_db(int(price.get("unit_amount") or 0), currency),
        quantity=int(item.get("quantity") or 1),
        winery=str(metadata.get("winery") or ""),
        vintage=int(vintage) if vintage.isdigit() else None,
    )


def fetch_session_line_items(session_id: str, *, stripe_client: StripeClient | None = None) -> list[dict[str, Any]]:
    """Fetch a checkout session's line items from Stripe.

    Called before any database transaction is opened so that no
    transaction is held across the network request.
    """
    client = stripe_client or StripeClient(get_config())
    return client.list_session_line_items(session_id)


def reconstruct_order(session: dict[str, Any], line_items: list[dict[str, Any]]) -> Order:
    """Rebuild a PENDING order from a completed session's own line items.

    Used only when a paid session references no order we know about.
    Synthetic shipping, gift-wrap and tax lines become the order's fee
    fields. A session without a customer email falls back to the configured
    ``guest_email``. The reconstruction is reported through the
    ``reconciliation_anomaly`` signal.

    Args:
        session: The ``checkout.session`` object from the event payload.
        line_items: The session's line items, see :func:`fetch_session_line_items`.

    Returns:
        The reconstructed PENDING order, ready to be confirmed.
    """
    config = get_config()
    currency = config.currency
    session_id = str(session.get("id") or "")

    lines: list[CartLine] = []
    fees = {"shipping": ZERO, "wrap": ZERO, "tax": ZERO}
    for item in line_items:
        line = _line_from_stripe(item, currency)
        if line.name.startswith(_SHIPPING_PREFIX):
            fees["shipping"] += line.line_total
        elif line.name.startswith(_GIFT_WRAP_PREFIX):
            fees["wrap"] += line.line_total
        elif line.name.startswith(_TAX_PREFIX):
            fees["tax"] += line.line_total
        else:
            lines.append(line)

    subtotal = sum((line.line_total for line in lines), ZERO)
    total_details = session.get("total_details") if isinstance(session.get("total_details"), dict) else {}
    discount = convert_amount_for_db(int(total_details.get("amount_discount") or 0), currency)
    if session.get("amount_total") is not None:
        total = convert_amount_for_db(int(session["amount_total"]), currency)
    else:
        total = max(ZERO, subtotal + fees["shipping"] + fees["wrap"] - discount) + fees["tax"]
    priced = PricedCart(
        subtotal=subtotal,
        shipping_cost=fees["shipping"],
        gift_wrap_cost=fees["wrap"],
        discount_amount=discount,
        taxable_amount=max(ZERO, total - fees["tax"]),
        tax_amount=fees["tax"],
        total=total,
    )

    overrides = customer_overrides(session)
    email = overrides.get("customer_email") or config.guest_email
    user = get_user_model().objects.filter(email__iexact=email).first() if email else None
    customer = CustomerDetails(
        email=email,
        first_name=overrides.get("customer_first_name", "Gast"),
        last_name=overrides.get("customer_last_name", ""),
        phone=overrides.get("customer_phone", ""),
        shipping_address=overrides.get("shipping_address", {}),
        billing_address=overrides.get("billing_address", {}),
    )
    order = OrderLedger.create_pending_order(
        lines,
        priced,
        customer,
        user=user,
        payment_method=str(_metadata(session).get("payment_method") or "card"),
        points_earned=calculate_points(total, config.loyalty),
    )
    OrderLedger.attach_external_reference(order.pk, session_id)
    detail = f"Order {order.order_number} reconstructed from {len(lines)} Stripe line item(s)"
    if not overrides.get("customer_email"):
        detail += "; no customer email supplied"
    reconciliation_anomaly.send(sender=Order, kind="missing_order", reference=session_id, detail=detail)
    return order


# ---------------------------------------------------------------------------
# Concrete handlers
# ---------------------------------------------------------------------------


class CheckoutSessionCompletedWebhook(Webhook):
    """Handles ``checkout.session.completed`` events.

    Locates the order through the session metadata (or the session ID),
    reconstructs it from Stripe's line items if it does not exist, and
    confirms it. Sessions paid with a delayed method (``payment_status``
    ``"unpaid"``) only record the payment reference; confirmation arrives
    later through ``payment_intent.succeeded``.
    """

    name = "checkout.session.completed"

    def locate_order(self, session: dict[str, Any]) -> Order | None:
        """Return the order a session belongs to, if it exists."""
        order = OrderLedger.find_by_id(_metadata(session).get("order_id"))
        if order is None:
            order = OrderLedger.find_by_external_reference(str(session.get("id") or ""))
        return order

    def process_webhook(self) -> None:
        """Confirm the session's order."""
        session = _event_data_object(self.event)
        payment_intent = str(session.get("payment_intent") or "")

        # Line items are fetched before the transaction opens.
        line_items: list[dict[str, Any]] = []
        if self.locate_order(session) is None:
            line_items = fetch_session_line_items(str(session.get("id") or ""))

        with transaction.atomic():
            order = self.locate_order(session)
            if order is None:
                logger.error(
                    "No order found for checkout session %s; reconstructing from line items",
                    session.get("id"),
                )
                order = reconstruct_order(session, line_items)

            if session.get("payment_status") == "unpaid":
                OrderLedger.record_payment_reference(order.pk, payment_intent)
                logger.info(
                    "Checkout session %s completed unpaid; waiting for payment of order %s",
                    session.get("id"),
                    order.order_number,
                )
                return

            confirm_order(
                order.pk,
                source="webhook",
                payment_reference=payment_intent,
                customer_overrides=customer_overrides(session, order),
                payment_method=str(_metadata(session).get("payment_method") or ""),
            )


class CheckoutSessionAsyncPaymentSucceededWebhook(CheckoutSessionCompletedWebhook):
    """Handles ``checkout.session.async_payment_succeeded`` events."""

    name = "checkout.session.async_payment_succeeded"


class PaymentIntentSucceededWebhook(Webhook):
    """Handles ``payment_intent.succeeded`` events.

    Confirms the order named in the intent metadata. When the checkout
    session event already confirmed it, this is a no-op.
    """

    name = "payment_intent.succeeded"

    def process_webhook(self) -> None:
        """Confirm the intent's order."""
        intent = _event_data_object(self.event)
        intent_id = str(intent.get("id") or "")
        order = OrderLedger.find_by_id(_metadata(intent).get("order_id"))
        if order is None:
            order = OrderLedger.find_by_external_reference(intent_id)
        if order is None:
            logger.warning("No order found for payment_intent %s", intent_id)
            return

        confirm_order(order.pk, source="webhook", payment_reference=intent_id)


class PaymentIntentPaymentFailedWebhook(Webhook):
    """Handles ``payment_intent.payment_failed`` events.

    Moves a still-pending order to FAILED/CANCELLED with Stripe's failure
    message. Orders that already left PENDING are left untouched.
    """

    name = "payment_intent.payment_failed"

    def process_webhook(self) -> None:
        """Mark the matching order as failed."""
        intent = _event_data_object(self.event)
        intent_id = str(intent.get("id") or "")

        order = OrderLedger.find_by_external_reference(intent_id)
        if order is None:
            order = OrderLedger.find_by_id(_metadata(intent).get("order_id"))
        if order is None:
            logger.warning("No order found for failed payment_intent %s", intent_id)
            return

        error = intent.get("last_payment_error")
        reason = "Payment failed"
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            reason = error["message"]

        _, transitioned = OrderLedger.transition_to_failed(order.pk, reason)
        if not transitioned:
            logger.info(
                "Ignoring payment failure for order %s in state %s/%s",
                order.order_number,
                order.payment_status,
                order.status,
            )


class CheckoutSessionAsyncPaymentFailedWebhook(Webhook):
    """Handles ``checkout.session.async_payment_failed`` events."""

    name = "checkout.session.async_payment_failed"

    def process_webhook(self) -> None:
        """Mark the session's order as failed."""
        session = _event_data_object(self.event)
        order = OrderLedger.find_by_id(_metadata(session).get("order_id"))
        if order is None:
            order = OrderLedger.find_by_external_reference(str(session.get("id") or ""))
        if order is None:
            logger.warning("No order found for failed checkout session %s", session.get("id"))
            return
        OrderLedger.transition_to_failed(order.pk, "Asynchronous payment failed")


# ---------------------------------------------------------------------------
# Handler registration
# ---------------------------------------------------------------------------

registry.register("checkout.session.completed", CheckoutSessionCompletedWebhook)
registry.register("checkout.session.async_payment_succeeded", CheckoutSessionAsyncPaymentSucceededWebhook)
registry.register("checkout.session.async_payment_failed", CheckoutSessionAsyncPaymentFailedWebhook)
registry.register("payment_intent.succeeded", PaymentIntentSucceededWebhook)
registry.register("payment_intent.payment_failed", PaymentIntentPaymentFailedWebhook)


# ---------------------------------------------------------------------------
# Webhook endpoint view
# ---------------------------------------------------------------------------


def _record_event(event: dict[str, Any]) -> StripeEvent | None:
    """Persist a verified event, returning ``None`` when it was already processed."""
    stripe_id = str(event["id"])
    existing = StripeEvent.objects.filter(stripe_id=stripe_id).first()
    if existing is not None:
        return None if existing.processed else existing
    try:
        with transaction.atomic():
            return StripeEvent.objects.create(
                stripe_id=stripe_id,
                kind=str(event.get("type", "")),
                livemode=bool(event.get("livemode", False)),
                payload=event,
                api_version=str(event.get("api_version") or ""),
            )
    except IntegrityError:
        return None


@csrf_exempt
@require_POST
def stripe_webhook(request: "HttpRequest") -> HttpResponse:
    """Receive and process Stripe webhook events.

    Verifies the event signature against the configured webhook secret
    before any database access, deduplicates by Stripe event ID, persists the
    raw event, and dispatches to the registered handler.

    Returns HTTP 400 when the signature is missing or invalid. Otherwise
    returns HTTP 200 to acknowledge receipt, even when processing fails;
    errors are logged and captured to ``EventProcessingException``.

    Args:
        request: The incoming HTTP request from Stripe.

    Returns:
        An ``HttpResponse`` with status 200 or 400.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")

    config = get_config()
    webhook_secret = config.stripe.webhook_secret
    if not webhook_secret:
        logger.error("No Stripe webhook secret configured; rejecting event")
        return HttpResponse(status=400)
    if not sig_header:
        logger.warning("Stripe webhook received without a signature header")
        return HttpResponse(status=400)

    try:
        stripe.Webhook.construct_event(
            payload,
            sig_header,
            str(webhook_secret),
            tolerance=config.stripe.webhook_tolerance,
        )
        event = json.loads(payload)
    except (stripe.SignatureVerificationError, ValueError):
        logger.warning("Invalid Stripe webhook payload or signature")
        return HttpResponse(status=400)
    if not isinstance(event, dict) or not event.get("id"):
        logger.warning("Stripe webhook payload is not an event object")
        return HttpResponse(status=400)

    kind = str(event.get("type", ""))
    stripe_event = _record_event(event)
    if stripe_event is None:
        logger.info("Duplicate Stripe event %s, returning 200", event.get("id"))
        return HttpResponse(status=200)

    handler_class = registry.get(kind)
    if handler_class is None:
        logger.info("No handler registered for event kind '%s'", kind)
        return HttpResponse(status=200)

    try:
        handler = handler_class(stripe_event)
        handler.process()
    except Exception:
        logger.exception(
            "Error processing Stripe event %s (kind=%s)",
            stripe_event.stripe_id,
            kind,
        )

    return HttpResponse(status=200)
