"""Django app configuration for the shop app."""

from django.apps import AppConfig


class DjangoBoutiqueShopConfig(AppConfig):
    """Configuration for the shop app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_boutique.shop"
    label = "boutique_shop"
    verbose_name = "Shop"

    def ready(self) -> None:
        """Connect the logging receivers for domain events."""
        import django_boutique.shop.receivers  # noqa: F401, PLC0415
