"""Django admin configuration for the shop app."""

from typing import TYPE_CHECKING

from django.contrib import admin

if TYPE_CHECKING:
    from django.http import HttpRequest

from django_boutique.shop.models import (
    Coupon,
    EventProcessingException,
    EventTicket,
    LoyaltyAccount,
    LoyaltyTransaction,
    Order,
    OrderItem,
    StripeEvent,
)


class _ReadOnlyAdmin(admin.ModelAdmin):
    """Admin for records that are only ever written by the payment workflow."""

    def has_add_permission(self, request: "HttpRequest") -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: "HttpRequest", obj: object = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: "HttpRequest", obj: object = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    """Admin interface for coupons and gift cards.

    ``current_uses`` is incremented by order confirmation and shown
    read-only. Remainder gift cards link back to their parent card and the
    order that produced them.
    """

    list_display = (
        "code",
        "coupon_type",
        "value",
        "current_uses",
        "max_uses",
        "valid_until",
        "is_active",
    )
    list_filter = ("coupon_type", "is_active")
    search_fields = ("code", "description")
    readonly_fields = ("current_uses", "parent", "source_order", "created_at", "updated_at")


class OrderItemInline(admin.TabularInline):
    """Order lines are immutable snapshots from checkout and are shown read-only."""

    model = OrderItem
    extra = 0
    readonly_fields = (
        "item_type",
        "name",
        "vendor",
        "vintage",
        "event_slug",
        "unit_price",
        "quantity",
        "line_total",
    )
    exclude = ("product_id", "bottle_size", "event_date")


class EventTicketInline(admin.TabularInline):
    """Inline display of the tickets issued for an order."""

    model = EventTicket
    extra = 0
    readonly_fields = ("event", "ticket_number", "redemption_code", "price")
    fields = ("event", "ticket_number", "redemption_code", "holder_email", "price", "status")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin interface for orders.

    Money and payment fields are read-only; they change only through
    checkout and webhook reconciliation.
    """

    list_display = ("order_number", "customer_email", "payment_status", "status", "total", "created_at")
    list_filter = ("payment_status", "status", "delivery_method")
    search_fields = ("order_number", "customer_email", "customer_last_name", "stripe_session_id", "payment_intent_id")
    readonly_fields = (
        "order_number",
        "subtotal",
        "shipping_cost",
        "gift_wrap_cost",
        "tax_amount",
        "discount_amount",
        "total",
        "payment_status",
        "stripe_session_id",
        "payment_intent_id",
        "coupon",
        "coupon_code",
        "points_earned",
        "paid_at",
        "created_at",
        "updated_at",
    )
    inlines = (OrderItemInline, EventTicketInline)


@admin.register(EventTicket)
class EventTicketAdmin(admin.ModelAdmin):
    """Admin interface for issued tickets, filterable by event and status."""

    list_display = ("ticket_number", "event", "holder_email", "status", "created_at")
    list_filter = ("status", "event")
    search_fields = ("ticket_number", "redemption_code", "holder_email", "order__order_number")
    readonly_fields = ("order", "event", "ticket_number", "redemption_code", "price", "created_at")


class LoyaltyTransactionInline(admin.TabularInline):
    """Inline display of an account's point history."""

    model = LoyaltyTransaction
    extra = 0
    readonly_fields = ("points", "reason", "order", "balance_before", "balance_after", "created_at")

    def has_add_permission(self, request: "HttpRequest", obj: object = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(LoyaltyAccount)
class LoyaltyAccountAdmin(admin.ModelAdmin):
    """Admin interface for loyalty balances."""

    list_display = ("user", "points", "level", "total_spent", "updated_at")
    list_filter = ("level",)
    search_fields = ("user__email", "user__username")
    readonly_fields = ("points", "level", "total_spent", "updated_at")
    inlines = (LoyaltyTransactionInline,)


@admin.register(StripeEvent)
class StripeEventAdmin(_ReadOnlyAdmin):
    """Read-only admin for Stripe webhook events."""

    list_display = ("stripe_id", "kind", "processed", "livemode", "created_at")
    list_filter = ("kind", "processed", "livemode")
    search_fields = ("stripe_id",)
    readonly_fields = ("stripe_id", "kind", "livemode", "payload", "processed", "api_version", "created_at")


@admin.register(EventProcessingException)
class EventProcessingExceptionAdmin(_ReadOnlyAdmin):
    """Read-only admin for webhook processing errors."""

    list_display = ("message", "event", "created_at")
    list_filter = ("created_at",)
    search_fields = ("message",)
    readonly_fields = ("event", "data", "message", "traceback", "created_at")
