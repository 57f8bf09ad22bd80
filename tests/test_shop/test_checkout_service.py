"""Tests for the checkout flow in django_boutique.shop.services.checkout."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe as _stripe
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.utils import timezone

from django_boutique.catalog.models import Event
from django_boutique.settings import get_config
from django_boutique.shop.cart import DiversLine, EventLine, GiftCardLine, WineLine, parse_checkout_request
from django_boutique.shop.models import Coupon, EventTicket, Order
from django_boutique.shop.services.checkout import (
    CheckoutService,
    CheckoutSessionBuilder,
    PaymentProcessorError,
    resolve_customer,
)

User = get_user_model()


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def stripe_client():
    client = MagicMock()
    client.create_checkout_session.return_value = MagicMock(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )
    client.create_discount_coupon.return_value = "coupon_test_123"
    return client


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="anna",
        email="anna@example.com",
        password="testpass123",
        first_name="Anna",
        last_name="Muster",
    )


def _request(**overrides):
    payload = {
        "items": [
            {"id": "w1", "type": "wine", "name": "Pinot Noir", "price": "70.00", "quantity": 2, "winery": "Gantenbein"},
        ],
        "shippingData": {
            "email": "anna@example.com",
            "firstName": "Anna",
            "lastName": "Muster",
            "street": "Bahnhofstrasse",
            "streetNumber": "1",
            "postalCode": "8001",
            "city": "Zürich",
            "phone": "+41 79 000 00 00",
        },
    }
    payload.update(overrides)
    return parse_checkout_request(payload)


def _line_names(params):
    return [item["price_data"]["product_data"]["name"] for item in params["line_items"]]


# =============================================================================
# TestResolveCustomer
# =============================================================================


@pytest.mark.unit
class TestResolveCustomer:
    def test_shipping_address_from_form(self):
        customer = resolve_customer(_request(), None, get_config())

        assert customer.email == "anna@example.com"
        assert customer.first_name == "Anna"
        assert customer.phone == "+41 79 000 00 00"
        assert "email" not in customer.shipping_address
        assert customer.shipping_address["city"] == "Zürich"
        assert customer.billing_address == customer.shipping_address

    def test_separate_billing_address(self):
        request = _request(billingData={"street": "Marktgasse", "city": "Bern"})
        customer = resolve_customer(request, None, get_config())
        assert customer.billing_address == {"street": "Marktgasse", "city": "Bern"}

    def test_pickup_uses_store_address(self):
        request = _request(deliveryMethod="pickup")
        customer = resolve_customer(request, None, get_config())

        assert customer.shipping_address["city"] == "Seengen"
        assert customer.shipping_address["postalCode"] == "5707"
        assert customer.shipping_address["firstName"] == "Anna"
        assert customer.shipping_address["phone"] == "+41 79 000 00 00"

    def test_missing_email(self):
        with pytest.raises(ValidationError, match="Please enter your email address."):
            resolve_customer(_request(shippingData={"firstName": "Anna"}), None, get_config())

    def test_missing_first_name(self):
        with pytest.raises(ValidationError, match="Please enter your first name."):
            resolve_customer(_request(shippingData={"email": "anna@example.com"}), None, get_config())

    @pytest.mark.django_db
    def test_falls_back_to_account(self, user):
        customer = resolve_customer(_request(shippingData={"city": "Aarau"}), user, get_config())
        assert customer.email == "anna@example.com"
        assert customer.first_name == "Anna"
        assert customer.last_name == "Muster"


# =============================================================================
# TestCheckoutSessionBuilder
# =============================================================================


@pytest.mark.django_db
class TestCheckoutSessionBuilder:
    @pytest.fixture
    def order(self, db):
        return Order.objects.create(
            order_number="VK-1700000000000-BUILD",
            customer_email="anna@example.com",
            customer_first_name="Anna",
            subtotal=Decimal("140.00"),
            shipping_cost=Decimal("19.90"),
            shipping_method=Order.ShippingMethod.EXPRESS,
            gift_wrap_cost=Decimal("5.00"),
            tax_amount=Decimal("13.36"),
            total=Decimal("178.26"),
        )

    def test_line_items(self, order):
        lines = [
            WineLine(
                item_id="w1",
                name="Pinot Noir",
                price=Decimal("35.00"),
                quantity=2,
                winery="Gantenbein",
                vintage=2020,
            ),
            WineLine(item_id="w2", name="Hauswein", price=Decimal("20.00"), quantity=1),
            EventLine(item_id="e1", name="Degustation", price=Decimal("50.00"), quantity=1, event_slug="degu"),
        ]
        items = CheckoutSessionBuilder(get_config()).line_items(order, lines)

        assert [item["price_data"]["product_data"]["description"] for item in items[:3]] == [
            "Gantenbein 2020",
            "Schweizer Wein",
            "Event-Ticket",
        ]
        assert items[0]["price_data"]["unit_amount"] == 3500
        assert items[0]["price_data"]["currency"] == "chf"
        assert items[0]["quantity"] == 2
        assert [item["price_data"]["product_data"]["name"] for item in items[3:]] == [
            "Versandkosten (Express-Versand)",
            "Geschenkverpackung",
            "Mehrwertsteuer (8.1%)",
        ]
        assert items[-1]["price_data"]["unit_amount"] == 1336

    def test_collected_amount_matches_order_total(self, order):
        lines = [WineLine(item_id="w1", name="Pinot Noir", price=Decimal("70.00"), quantity=2)]
        items = CheckoutSessionBuilder(get_config()).line_items(order, lines)
        assert sum(item["price_data"]["unit_amount"] * item["quantity"] for item in items) == 17826

    def test_images_only_for_absolute_urls(self, order):
        lines = [
            WineLine(item_id="w1", name="A", price=Decimal("1"), quantity=1, image_url="https://cdn.example.com/a.jpg"),
            DiversLine(item_id="d1", name="B", price=Decimal("1"), quantity=1, image_url="/media/b.jpg"),
        ]
        items = CheckoutSessionBuilder(get_config()).line_items(order, lines)
        assert items[0]["price_data"]["product_data"]["images"] == ["https://cdn.example.com/a.jpg"]
        assert "images" not in items[1]["price_data"]["product_data"]
        assert items[1]["price_data"]["product_data"]["description"] == "Divers & Zubehör"

    def test_free_fees_are_omitted(self, order):
        order.shipping_cost = Decimal("0.00")
        order.gift_wrap_cost = Decimal("0.00")
        lines = [GiftCardLine(item_id="g1", name="Gutschein", price=Decimal("50"), quantity=1)]
        items = CheckoutSessionBuilder(get_config()).line_items(order, lines)
        assert [item["price_data"]["product_data"]["name"] for item in items] == ["Gutschein", "Mehrwertsteuer (8.1%)"]

    def test_build(self, order):
        params = CheckoutSessionBuilder(get_config()).build(order, [], discount_coupon_id="coupon_x")

        assert params["mode"] == "payment"
        assert params["customer_email"] == "anna@example.com"
        assert params["client_reference_id"] == "guest"
        assert params["metadata"] == {
            "order_id": str(order.pk),
            "order_number": "VK-1700000000000-BUILD",
            "user": "guest",
            "payment_method": "card",
        }
        assert params["payment_intent_data"]["metadata"] == params["metadata"]
        assert params["payment_method_types"] == ["card"]
        assert params["discounts"] == [{"coupon": "coupon_x"}]
        assert params["success_url"] == (
            f"https://shop.example.com/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&order_id={order.pk}"
        )
        assert params["cancel_url"] == "https://shop.example.com/warenkorb"
        assert "currency" not in params

    def test_build_twint(self, order):
        order.payment_method = "twint"
        params = CheckoutSessionBuilder(get_config()).build(order, [])

        assert params["payment_method_types"] == ["card", "twint"]
        assert params["currency"] == "chf"
        assert "discounts" not in params


# =============================================================================
# TestCreateCheckout
# =============================================================================


@pytest.mark.django_db
class TestCreateCheckout:
    def test_creates_pending_order_and_session(self, stripe_client):
        result = CheckoutService.create_checkout(_request(), stripe_client=stripe_client)

        assert result.url == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert result.zero_total is False
        order = Order.objects.get(pk=result.order.pk)
        assert order.payment_status == Order.PaymentStatus.PENDING
        assert order.status == Order.Status.PENDING
        assert order.stripe_session_id == "cs_test_123"
        assert order.total == Decimal("162.04")
        assert order.points_earned == 162

        params = stripe_client.create_checkout_session.call_args.args[0]
        assert _line_names(params) == ["Pinot Noir", "Versandkosten (Standard-Versand)", "Mehrwertsteuer (8.1%)"]
        assert params["metadata"]["order_id"] == str(order.pk)
        assert stripe_client.create_checkout_session.call_args.kwargs["idempotency_key"] == (
            f"checkout-{order.order_number}"
        )
        stripe_client.create_discount_coupon.assert_not_called()

    def test_identified_user(self, stripe_client, user):
        result = CheckoutService.create_checkout(_request(), user, stripe_client=stripe_client)

        assert result.order.user == user
        params = stripe_client.create_checkout_session.call_args.args[0]
        assert params["client_reference_id"] == str(user.pk)
        assert params["metadata"]["user"] == str(user.pk)

    def test_discount_is_passed_as_processor_coupon(self, stripe_client):
        Coupon.objects.create(code="SUMMER10", coupon_type=Coupon.CouponType.PERCENTAGE, value=Decimal("10"))

        result = CheckoutService.create_checkout(_request(couponCode="summer10"), stripe_client=stripe_client)

        order = result.order
        assert order.coupon_code == "SUMMER10"
        assert order.discount_amount == Decimal("14.00")
        assert order.total == Decimal("146.91")
        args, kwargs = stripe_client.create_discount_coupon.call_args
        assert args[0] == Decimal("14.00")
        assert kwargs["name"] == "Gutschein: SUMMER10"
        params = stripe_client.create_checkout_session.call_args.args[0]
        assert params["discounts"] == [{"coupon": "coupon_test_123"}]

    def test_invalid_coupon_is_ignored(self, stripe_client):
        result = CheckoutService.create_checkout(_request(couponCode="NOPE"), stripe_client=stripe_client)

        assert result.order.discount_amount == Decimal("0.00")
        assert result.order.coupon is None
        assert result.order.coupon_code == ""

    def test_coupon_usage_not_counted_before_payment(self, stripe_client):
        coupon = Coupon.objects.create(code="MINUS10", value=Decimal("10.00"))

        CheckoutService.create_checkout(_request(couponCode="MINUS10"), stripe_client=stripe_client)

        coupon.refresh_from_db()
        assert coupon.current_uses == 0

    def test_zero_total_skips_stripe(self, stripe_client):
        gift_card = Coupon.objects.create(
            code="GC-FULL01",
            coupon_type=Coupon.CouponType.GIFT_CARD,
            value=Decimal("200.00"),
        )
        request = _request(
            items=[{"id": "w1", "type": "wine", "name": "Pinot Noir", "price": "100.00", "quantity": 1}],
            couponCode="GC-FULL01",
        )

        result = CheckoutService.create_checkout(request, stripe_client=stripe_client)

        assert result.zero_total is True
        assert result.url == f"https://shop.example.com/checkout/success?order_id={result.order.pk}"
        stripe_client.create_checkout_session.assert_not_called()
        stripe_client.create_discount_coupon.assert_not_called()
        order = Order.objects.get(pk=result.order.pk)
        assert order.total == Decimal("0.00")
        assert order.discount_amount == Decimal("109.90")
        assert order.payment_status == Order.PaymentStatus.PAID
        assert order.status == Order.Status.CONFIRMED
        assert order.payment_method == "gift_card"
        gift_card.refresh_from_db()
        assert gift_card.current_uses == 1
        remainder = Coupon.objects.get(parent=gift_card)
        assert remainder.value == Decimal("90.10")

    def test_zero_total_issues_tickets(self, stripe_client):
        event = Event.objects.create(
            slug="degustation",
            title="Degustation",
            start_datetime=timezone.now() + timedelta(days=3),
            max_capacity=30,
        )
        Coupon.objects.create(code="GC-FULL02", coupon_type=Coupon.CouponType.GIFT_CARD, value=Decimal("500"))
        request = _request(
            items=[{"type": "event", "name": "Degustation", "price": "45", "quantity": 2, "slug": "degustation"}],
            couponCode="GC-FULL02",
        )

        result = CheckoutService.create_checkout(request, stripe_client=stripe_client)

        assert EventTicket.objects.filter(order=result.order, event=event).count() == 2

    def test_stripe_error_keeps_pending_order(self, stripe_client):
        stripe_client.create_checkout_session.side_effect = _stripe.InvalidRequestError(
            "Invalid currency", param="currency", code="parameter_invalid_string"
        )

        with pytest.raises(PaymentProcessorError) as exc_info:
            CheckoutService.create_checkout(_request(), stripe_client=stripe_client)

        assert "Invalid currency" in exc_info.value.message
        assert exc_info.value.code == "parameter_invalid_string"
        order = Order.objects.get()
        assert order.payment_status == Order.PaymentStatus.PENDING
        assert order.stripe_session_id == ""

    def test_discount_coupon_failure_aborts_checkout(self, stripe_client):
        Coupon.objects.create(code="MINUS10", value=Decimal("10.00"))
        stripe_client.create_discount_coupon.side_effect = _stripe.APIConnectionError("Network down")

        with pytest.raises(PaymentProcessorError):
            CheckoutService.create_checkout(_request(couponCode="MINUS10"), stripe_client=stripe_client)

        stripe_client.create_checkout_session.assert_not_called()
        assert Order.objects.count() == 1

    def test_missing_contact_fails_before_writing(self, stripe_client):
        with pytest.raises(ValidationError):
            CheckoutService.create_checkout(_request(shippingData={}), stripe_client=stripe_client)

        assert not Order.objects.exists()
        stripe_client.create_checkout_session.assert_not_called()

    def test_total_above_column_bound_fails_before_writing(self, stripe_client):
        items = [{"type": "wine", "name": "Grand Cru", "price": "99999000.00", "quantity": 1}]

        with pytest.raises(ValidationError, match="The order total exceeds the maximum order amount."):
            CheckoutService.create_checkout(_request(items=items), stripe_client=stripe_client)

        assert not Order.objects.exists()
        stripe_client.create_checkout_session.assert_not_called()
