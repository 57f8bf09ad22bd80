"""Django app configuration for the catalog app."""

from django.apps import AppConfig


class DjangoBoutiqueCatalogConfig(AppConfig):
    """Configuration for the catalog app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_boutique.catalog"
    label = "boutique_catalog"
    verbose_name = "Catalog"
