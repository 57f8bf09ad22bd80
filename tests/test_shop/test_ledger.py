"""Tests for the OrderLedger in django_boutique.shop.services.ledger."""

import re
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from django_boutique.catalog.models import Event
from django_boutique.settings import PricingConfig
from django_boutique.shop.cart import DiversLine, EventLine, WineLine
from django_boutique.shop.models import EventTicket, Order, OrderItem
from django_boutique.shop.services.ledger import CustomerDetails, OrderLedger, make_reference
from django_boutique.shop.services.pricing import PricingEngine
from django_boutique.shop.signals import order_created, payment_failed

User = get_user_model()


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def lines():
    return [
        WineLine(item_id="w1", name="Pinot Noir", price=Decimal("35.00"), quantity=2, vintage=2020),
        EventLine(
            item_id="e1",
            name="Weindegustation",
            price=Decimal("45.00"),
            quantity=1,
            event_slug="degustation",
            event_date="2026-11-20",
        ),
        DiversLine(item_id="d1", name="Dekanter", price=Decimal("30.00"), quantity=1),
    ]


@pytest.fixture
def customer():
    return CustomerDetails(
        email="anna@example.com",
        first_name="Anna",
        last_name="Muster",
        phone="+41 79 000 00 00",
        shipping_address={"street": "Bahnhofstrasse", "streetNumber": "1", "city": "Zürich"},
        billing_address={"street": "Bahnhofstrasse", "streetNumber": "1", "city": "Zürich"},
    )


@pytest.fixture
def order(db, lines, customer):
    priced = PricingEngine(PricingConfig()).price(lines)
    return OrderLedger.create_pending_order(lines, priced, customer, points_earned=int(priced.total))


@pytest.fixture
def user(db):
    return User.objects.create_user(username="anna", email="Anna@Example.com", password="testpass123")


# =============================================================================
# TestMakeReference
# =============================================================================


@pytest.mark.unit
class TestMakeReference:
    def test_format(self):
        assert re.fullmatch(r"VK-\d{13}-[A-Z0-9]{5}", make_reference("VK"))

    def test_references_differ(self):
        assert len({make_reference("TK") for _ in range(50)}) == 50


# =============================================================================
# TestCreatePendingOrder
# =============================================================================


@pytest.mark.django_db
class TestCreatePendingOrder:
    def test_writes_pending_order(self, order):
        assert order.payment_status == Order.PaymentStatus.PENDING
        assert order.status == Order.Status.PENDING
        assert order.order_number.startswith("VK-")
        assert order.customer_email == "anna@example.com"
        assert order.user is None
        assert order.paid_at is None

    def test_stores_priced_amounts(self, order):
        assert order.subtotal == Decimal("145.00")
        assert order.shipping_cost == Decimal("9.90")
        assert order.tax_amount == Decimal("12.55")
        assert order.total == Decimal("167.45")
        assert order.points_earned == 167

    def test_snapshots_lines(self, order):
        items = list(order.items.all())
        assert [item.item_type for item in items] == [
            OrderItem.ItemType.WINE,
            OrderItem.ItemType.EVENT,
            OrderItem.ItemType.DIVERS,
        ]
        wine, event, divers = items
        assert wine.vendor == "Unbekannt"
        assert wine.vintage == 2020
        assert wine.line_total == Decimal("70.00")
        assert event.event_slug == "degustation"
        assert event.event_date == "2026-11-20"
        assert divers.vendor == "Zubehör & Divers"

    def test_sends_order_created(self, db, lines, customer):
        received = []

        def handler(sender, **kwargs):
            received.append(kwargs["order"])

        order_created.connect(handler)
        try:
            priced = PricingEngine(PricingConfig()).price(lines)
            order = OrderLedger.create_pending_order(lines, priced, customer)
        finally:
            order_created.disconnect(handler)

        assert received == [order]

    def test_order_numbers_are_unique(self, db, lines, customer):
        priced = PricingEngine(PricingConfig()).price(lines)
        numbers = {OrderLedger.create_pending_order(lines, priced, customer).order_number for _ in range(5)}
        assert len(numbers) == 5


# =============================================================================
# TestTransitionToPaid
# =============================================================================


@pytest.mark.django_db
class TestTransitionToPaid:
    def test_first_transition_wins(self, order):
        paid, transitioned = OrderLedger.transition_to_paid(order.pk, payment_reference="pi_123")
        assert transitioned is True
        assert paid.payment_status == Order.PaymentStatus.PAID
        assert paid.status == Order.Status.CONFIRMED
        assert paid.payment_intent_id == "pi_123"
        assert paid.paid_at is not None

    def test_second_transition_is_a_no_op(self, order):
        first, _ = OrderLedger.transition_to_paid(order.pk, payment_reference="pi_123")
        second, transitioned = OrderLedger.transition_to_paid(
            order.pk,
            payment_reference="pi_other",
            customer_overrides={"customer_email": "other@example.com"},
        )
        assert transitioned is False
        assert second.paid_at == first.paid_at
        assert second.payment_intent_id == "pi_123"
        assert second.customer_email == "anna@example.com"

    def test_overrides_replace_only_supplied_values(self, order):
        paid, _ = OrderLedger.transition_to_paid(
            order.pk,
            customer_overrides={
                "customer_email": "anna.new@example.com",
                "customer_phone": "",
                "customer_last_name": None,
                "shipping_address": {},
                "total": Decimal("0.00"),
            },
        )
        assert paid.customer_email == "anna.new@example.com"
        assert paid.customer_phone == "+41 79 000 00 00"
        assert paid.customer_last_name == "Muster"
        assert paid.shipping_address["city"] == "Zürich"
        assert paid.total == Decimal("167.45")

    def test_payment_method_override(self, order):
        paid, _ = OrderLedger.transition_to_paid(order.pk, payment_method="gift_card")
        assert paid.payment_method == "gift_card"

    def test_failed_order_can_still_be_paid(self, order):
        OrderLedger.transition_to_failed(order.pk, "Card declined")
        paid, transitioned = OrderLedger.transition_to_paid(order.pk)
        assert transitioned is True
        assert paid.status == Order.Status.CONFIRMED
        assert paid.cancellation_reason == ""
        assert paid.cancelled_at is None

    def test_completed_order_is_not_touched(self, order):
        Order.objects.filter(pk=order.pk).update(status=Order.Status.COMPLETED)
        unchanged, transitioned = OrderLedger.transition_to_paid(order.pk)
        assert transitioned is False
        assert unchanged.payment_status == Order.PaymentStatus.PENDING


# =============================================================================
# TestTransitionToFailed
# =============================================================================


@pytest.mark.django_db
class TestTransitionToFailed:
    def test_marks_pending_order_failed(self, order):
        failed, transitioned = OrderLedger.transition_to_failed(order.pk, "Your card was declined.")
        assert transitioned is True
        assert failed.payment_status == Order.PaymentStatus.FAILED
        assert failed.status == Order.Status.CANCELLED
        assert failed.cancellation_reason == "Your card was declined."
        assert failed.cancelled_at is not None

    def test_paid_order_is_left_alone(self, order):
        OrderLedger.transition_to_paid(order.pk)
        unchanged, transitioned = OrderLedger.transition_to_failed(order.pk, "late failure")
        assert transitioned is False
        assert unchanged.payment_status == Order.PaymentStatus.PAID
        assert unchanged.cancellation_reason == ""

    def test_sends_payment_failed_once(self, order):
        received = []

        def handler(sender, **kwargs):
            received.append(kwargs["reason"])

        payment_failed.connect(handler)
        try:
            OrderLedger.transition_to_failed(order.pk, "declined")
            OrderLedger.transition_to_failed(order.pk, "declined again")
        finally:
            payment_failed.disconnect(handler)

        assert received == ["declined"]


# =============================================================================
# TestLookups
# =============================================================================


@pytest.mark.django_db
class TestLookups:
    def test_find_by_id(self, order):
        assert OrderLedger.find_by_id(order.pk) == order
        assert OrderLedger.find_by_id(str(order.pk)) == order

    @pytest.mark.parametrize("value", [None, "", "abc", "12.5"])
    def test_find_by_id_tolerates_junk(self, db, value):
        assert OrderLedger.find_by_id(value) is None

    def test_find_by_session_id(self, order):
        OrderLedger.attach_external_reference(order.pk, "cs_test_123")
        assert OrderLedger.find_by_external_reference("cs_test_123") == order

    def test_find_by_payment_intent(self, order):
        OrderLedger.record_payment_reference(order.pk, "pi_test_123")
        assert OrderLedger.find_by_external_reference("pi_test_123") == order

    def test_find_by_empty_reference(self, order):
        assert OrderLedger.find_by_external_reference("") is None

    def test_record_payment_reference_skips_paid_orders(self, order):
        OrderLedger.transition_to_paid(order.pk, payment_reference="pi_first")
        OrderLedger.record_payment_reference(order.pk, "pi_second")
        order.refresh_from_db()
        assert order.payment_intent_id == "pi_first"


# =============================================================================
# TestClaimGuestOrders
# =============================================================================


@pytest.mark.django_db
class TestClaimGuestOrders:
    def test_links_orders_and_tickets_by_email(self, order, user):
        event = Event.objects.create(slug="degustation", title="Degustation", start_datetime=timezone.now())
        EventTicket.objects.create(order=order, event=event, ticket_number="TK-1", redemption_code="QR-TK-1")

        assert OrderLedger.claim_guest_orders(user) == 1

        order.refresh_from_db()
        assert order.user == user
        assert EventTicket.objects.get(ticket_number="TK-1").user == user

    def test_leaves_other_customers_alone(self, order, db):
        other = User.objects.create_user(username="bob", email="bob@example.com", password="testpass123")
        assert OrderLedger.claim_guest_orders(other) == 0
        order.refresh_from_db()
        assert order.user is None

    def test_user_without_email(self, order, db):
        nobody = User.objects.create_user(username="nobody", password="testpass123")
        assert OrderLedger.claim_guest_orders(nobody) == 0
