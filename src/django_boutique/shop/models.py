"""Coupon, order, ticket, loyalty, and payment-event models for django-boutique."""

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class Coupon(models.Model):
    """A redeemable discount code.

    Coupons either take a percentage off the subtotal, a fixed amount off the
    order, or act as a stored-value gift card. A gift card that is only
    partially consumed by an order is never mutated to hold the remainder;
    instead a fresh single-use coupon is minted with ``parent`` pointing back
    at the original.
    """

    class CouponType(models.TextChoices):
        """The kind of discount a coupon provides."""

        PERCENTAGE = "percentage", "Percentage discount"
        FIXED_AMOUNT = "fixed_amount", "Fixed amount discount"
        GIFT_CARD = "gift_card", "Gift card"

    code = models.CharField(max_length=100, unique=True)
    coupon_type = models.CharField(
        max_length=20,
        choices=CouponType.choices,
        default=CouponType.FIXED_AMOUNT,
    )
    value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Percentage (0-100) or amount depending on coupon_type.",
    )
    max_discount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Upper bound for percentage coupons.",
    )
    description = models.TextField(blank=True, default="")
    valid_from = models.DateTimeField(default=timezone.now)
    valid_until = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    current_uses = models.PositiveIntegerField(default=0)
    max_uses = models.PositiveIntegerField(null=True, blank=True)
    max_uses_per_user = models.PositiveIntegerField(null=True, blank=True)
    min_order_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    parent = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="derived_coupons",
        help_text="The gift card this coupon holds the remaining balance of.",
    )
    source_order = models.ForeignKey(
        "Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="issued_coupons",
        help_text="The order whose confirmation minted this coupon.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.code} ({self.coupon_type})"

    def save(self, *args: object, **kwargs: object) -> None:
        """Store codes upper-cased so lookups are case-insensitive."""
        self.code = self.code.upper()
        super().save(*args, **kwargs)


class Order(models.Model):
    """A priced checkout and its payment state.

    Orders are written as PENDING/PENDING before any processor contact and
    move to PAID/CONFIRMED exactly once, either through the zero-total path
    or through webhook reconciliation. Addresses and customer fields are
    snapshots taken at checkout time.
    """

    class PaymentStatus(models.TextChoices):
        """Payment state reported by the processor."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    class Status(models.TextChoices):
        """Fulfilment lifecycle of an order."""

        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        CANCELLED = "cancelled", "Cancelled"
        COMPLETED = "completed", "Completed"

    class DeliveryMethod(models.TextChoices):
        """How the goods reach the customer."""

        SHIPPING = "shipping", "Shipping"
        PICKUP = "pickup", "Pickup"

    class ShippingMethod(models.TextChoices):
        """Carrier service level for shipped orders."""

        STANDARD = "standard", "Standard"
        EXPRESS = "express", "Express"

    order_number = models.CharField(
        max_length=100,
        unique=True,
        help_text='Human-readable order number, e.g. "VK-1718000000000-A1B2C".',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="boutique_orders",
    )
    customer_email = models.EmailField()
    customer_first_name = models.CharField(max_length=150)
    customer_last_name = models.CharField(max_length=150, blank=True, default="")
    customer_phone = models.CharField(max_length=50, blank=True, default="")
    shipping_address = models.JSONField(default=dict, blank=True)
    billing_address = models.JSONField(default=dict, blank=True)
    delivery_method = models.CharField(
        max_length=20,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.SHIPPING,
    )
    shipping_method = models.CharField(
        max_length=20,
        choices=ShippingMethod.choices,
        default=ShippingMethod.STANDARD,
    )
    payment_method = models.CharField(max_length=30, default="card")
    is_gift = models.BooleanField(default=False)
    gift_wrap = models.BooleanField(default=False)
    customer_note = models.TextField(blank=True, default="")
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    gift_wrap_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    stripe_session_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Checkout session id handed out by the payment processor.",
    )
    payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    coupon = models.ForeignKey(
        Coupon,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    coupon_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Snapshot of the coupon code applied at checkout.",
    )
    points_earned = models.PositiveIntegerField(default=0)
    points_used = models.PositiveIntegerField(default=0)
    cancellation_reason = models.TextField(blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total__gte=0) & models.Q(discount_amount__gte=0),
                name="boutique_shop_order_non_negative_amounts",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_number} ({self.payment_status}/{self.status})"

    @property
    def is_paid(self) -> bool:
        """Return True once the processor (or the zero-total path) confirmed payment."""
        return self.payment_status == self.PaymentStatus.PAID

    @property
    def customer_name(self) -> str:
        """Return the customer's full name."""
        return f"{self.customer_first_name} {self.customer_last_name}".strip()


class OrderItem(models.Model):
    """A snapshot of a purchased cart line.

    Items are immutable records of what was bought at which price. Catalog
    changes after checkout never alter them. Event lines keep the event slug
    and date so tickets can be issued once payment is confirmed.
    """

    class ItemType(models.TextChoices):
        """The catalog category of a purchased line."""

        WINE = "wine", "Wine"
        EVENT = "event", "Event"
        DIVERS = "divers", "Divers"
        GIFT_CARD = "gift_card", "Gift card"

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="items",
    )
    item_type = models.CharField(max_length=20, choices=ItemType.choices, default=ItemType.WINE)
    product_id = models.CharField(max_length=100, blank=True, default="")
    name = models.CharField(max_length=300)
    vendor = models.CharField(max_length=300, blank=True, default="")
    vintage = models.PositiveIntegerField(null=True, blank=True)
    bottle_size = models.DecimalField(max_digits=5, decimal_places=3, null=True, blank=True)
    event_slug = models.CharField(max_length=200, blank=True, default="")
    event_date = models.CharField(max_length=100, blank=True, default="")
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    line_total = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.quantity}x {self.name}"


class EventTicket(models.Model):
    """A single issued seat for an event.

    Tickets are created when the owning order is confirmed. ``user`` is
    empty for guest purchases and can be linked later when the guest signs
    up with the same email address.
    """

    class Status(models.TextChoices):
        """Redemption state of a ticket."""

        VALID = "valid", "Valid"
        REDEEMED = "redeemed", "Redeemed"
        CANCELLED = "cancelled", "Cancelled"

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    event = models.ForeignKey(
        "boutique_catalog.Event",
        on_delete=models.PROTECT,
        related_name="tickets",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="boutique_tickets",
    )
    ticket_number = models.CharField(max_length=100, unique=True)
    redemption_code = models.CharField(max_length=120, unique=True)
    holder_first_name = models.CharField(max_length=150, blank=True, default="")
    holder_last_name = models.CharField(max_length=150, blank=True, default="")
    holder_email = models.EmailField(blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.VALID)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.ticket_number} ({self.event.slug})"


class LoyaltyAccount(models.Model):
    """A customer's loyalty balance and tier."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="loyalty_account",
    )
    points = models.PositiveIntegerField(default=0)
    level = models.PositiveSmallIntegerField(default=1)
    total_spent = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.user} ({self.points} pts, level {self.level})"


class LoyaltyTransaction(models.Model):
    """An audit record of a single loyalty point movement."""

    account = models.ForeignKey(
        LoyaltyAccount,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    points = models.IntegerField()
    reason = models.CharField(max_length=200)
    order = models.ForeignKey(
        Order,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="loyalty_transactions",
    )
    balance_before = models.PositiveIntegerField()
    balance_after = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.points:+d} pts for {self.account.user} ({self.reason})"


class StripeEvent(models.Model):
    """A verified webhook event received from Stripe.

    The unique ``stripe_id`` lets redelivered events be acknowledged without
    running their handler a second time.
    """

    stripe_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=255)
    livemode = models.BooleanField(default=False)
    payload = models.JSONField(default=dict)
    processed = models.BooleanField(default=False)
    api_version = models.CharField(max_length=50, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} ({self.stripe_id})"


class EventProcessingException(models.Model):
    """A captured failure while handling a Stripe webhook event."""

    event = models.ForeignKey(
        StripeEvent,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="exceptions",
    )
    data = models.TextField(blank=True, default="")
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.message[:50]} ({self.created_at})"
