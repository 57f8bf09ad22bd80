"""Catalog models for django-boutique."""

from django.db import models


class Event(models.Model):
    """A ticketed boutique event (tasting, wine dinner, vineyard tour).

    Events are capacity-bounded: ``max_capacity`` is the number of seats the
    venue offers, ``current_capacity`` the running count of tickets issued so
    far. ``current_capacity`` only ever increases and may exceed
    ``max_capacity`` when a paid order is accepted into an overbooked event.
    """

    class EventType(models.TextChoices):
        """The kind of event being hosted."""

        TASTING = "tasting", "Tasting"
        DINNER = "dinner", "Dinner"
        TOUR = "tour", "Tour"
        OTHER = "other", "Other"

    class Status(models.TextChoices):
        """Publication state of an event."""

        DRAFT = "draft", "Draft"
        PUBLISHED = "published", "Published"
        CANCELLED = "cancelled", "Cancelled"

    slug = models.SlugField(max_length=200, unique=True)
    title = models.CharField(max_length=300)
    subtitle = models.CharField(max_length=300, blank=True, default="")
    description = models.TextField(blank=True, default="")
    event_type = models.CharField(max_length=20, choices=EventType.choices, default=EventType.TASTING)
    venue = models.CharField(max_length=300, blank=True, default="")
    venue_address = models.JSONField(default=dict, blank=True)
    start_datetime = models.DateTimeField()
    end_datetime = models.DateTimeField(null=True, blank=True)
    max_capacity = models.PositiveIntegerField(default=0)
    current_capacity = models.PositiveIntegerField(
        default=0,
        help_text="Number of tickets issued so far.",
    )
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start_datetime"]

    def __str__(self) -> str:
        return f"{self.title} ({self.slug})"

    @property
    def available_seats(self) -> int:
        """Return the number of seats left, negative when overbooked."""
        return self.max_capacity - self.current_capacity
