"""Django admin configuration for the catalog app."""

from django.contrib import admin

from django_boutique.catalog.models import Event


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    """Admin interface for events.

    ``current_capacity`` is maintained by ticket allocation and is therefore
    read-only here.
    """

    list_display = ("title", "slug", "start_datetime", "max_capacity", "current_capacity", "status")
    list_filter = ("status", "event_type")
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}
    readonly_fields = ("current_capacity", "created_at", "updated_at")
