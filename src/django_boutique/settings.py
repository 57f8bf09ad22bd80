"""Typed configuration for django-boutique.

Reads a single ``DJANGO_BOUTIQUE`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_boutique.settings import get_config

    config = get_config()
    config.stripe.secret_key
    config.pricing.tax_rate
    config.currency
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe payment gateway configuration."""

    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_version: str = "2024-12-18"
    webhook_tolerance: int = 300


@dataclass(frozen=True, slots=True)
class PricingConfig:
    """Policy constants used by the pricing engine.

    All monetary values are in the store currency's standard unit.
    """

    tax_rate: Decimal = Decimal("0.081")
    free_shipping_threshold: Decimal = Decimal("150.00")
    standard_shipping_fee: Decimal = Decimal("9.90")
    express_shipping_fee: Decimal = Decimal("19.90")
    express_shipping_reduced_fee: Decimal = Decimal("9.90")
    gift_wrap_fee: Decimal = Decimal("5.00")


@dataclass(frozen=True, slots=True)
class LoyaltyLevel:
    """A single tier of the loyalty program."""

    level: int
    name: str
    min_points: int


DEFAULT_LOYALTY_LEVELS: tuple[LoyaltyLevel, ...] = (
    LoyaltyLevel(1, "Novize", 0),
    LoyaltyLevel(2, "Kellerfreund", 500),
    LoyaltyLevel(3, "Kenner", 1500),
    LoyaltyLevel(4, "Sommelier-Kreis", 5000),
    LoyaltyLevel(5, "Weinguts-Partner", 12000),
    LoyaltyLevel(6, "Connaisseur-Elite", 25000),
    LoyaltyLevel(7, "Grand-Cru Ehrenmitglied", 60000),
)


@dataclass(frozen=True, slots=True)
class LoyaltyConfig:
    """Loyalty program configuration."""

    points_per_unit: Decimal = Decimal("1.0")
    levels: tuple[LoyaltyLevel, ...] = DEFAULT_LOYALTY_LEVELS


def _default_pickup_address() -> dict[str, str]:
    return {
        "street": "Steinbrunnengasse",
        "streetNumber": "3a",
        "postalCode": "5707",
        "city": "Seengen",
        "country": "CH",
    }


@dataclass(frozen=True, slots=True)
class BoutiqueConfig:
    """Top-level django-boutique configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    loyalty: LoyaltyConfig = field(default_factory=LoyaltyConfig)
    currency: str = "CHF"
    base_url: str = "http://localhost:8000"
    success_path: str = "/checkout/success"
    cancel_path: str = "/warenkorb"
    order_number_prefix: str = "VK"
    ticket_number_prefix: str = "TK"
    remainder_code_prefix: str = "REST"
    gift_card_code_prefix: str = "GC"
    pickup_address: dict[str, str] = field(default_factory=_default_pickup_address)
    email_dispatcher: str = "django_boutique.shop.notifications.MailDispatcher"
    ticket_renderer: str | None = None
    admin_email: str = ""
    guest_email: str = ""


_PRICING_FIELDS = frozenset(PricingConfig.__dataclass_fields__)


def _to_decimal(value: object, key: str) -> Decimal:
    """Coerce a configured monetary or rate value into a ``Decimal``."""
    if isinstance(value, bool):
        msg = f"DJANGO_BOUTIQUE[{key!r}] must be a number"
        raise TypeError(msg)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        msg = f"DJANGO_BOUTIQUE[{key!r}] must be a number, got {value!r}"
        raise ValueError(msg) from None


def _section(raw_data: dict[str, object], name: str) -> dict[str, object]:
    data = raw_data.pop(name, {})
    if not isinstance(data, Mapping):
        msg = f"DJANGO_BOUTIQUE['{name}'] must be a mapping (dict-like object)"
        raise TypeError(msg)
    return dict(data)


@functools.lru_cache(maxsize=1)
def get_config() -> BoutiqueConfig:
    """Build and return the boutique configuration.

    Reads ``settings.DJANGO_BOUTIQUE`` (a plain dict) and returns a frozen
    :class:`BoutiqueConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_BOUTIQUE", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_BOUTIQUE must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    stripe_data = _section(raw_data, "stripe")
    pricing_data = _section(raw_data, "pricing")
    loyalty_data = _section(raw_data, "loyalty")

    unknown = set(pricing_data) - _PRICING_FIELDS
    if unknown:
        msg = f"Unknown DJANGO_BOUTIQUE['pricing'] keys: {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    pricing = PricingConfig(**{key: _to_decimal(value, f"pricing.{key}") for key, value in pricing_data.items()})

    if "points_per_unit" in loyalty_data:
        loyalty_data["points_per_unit"] = _to_decimal(loyalty_data["points_per_unit"], "loyalty.points_per_unit")
    if "levels" in loyalty_data:
        loyalty_data["levels"] = tuple(
            level if isinstance(level, LoyaltyLevel) else LoyaltyLevel(**dict(level))
            for level in loyalty_data["levels"]
        )

    config = BoutiqueConfig(
        stripe=StripeConfig(**stripe_data),
        pricing=pricing,
        loyalty=LoyaltyConfig(**loyalty_data),
        **raw_data,
    )
    _validate_boutique_config(config)
    return config


def _validate_boutique_config(config: BoutiqueConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or len(config.currency.strip()) != 3:  # noqa: PLR2004
        msg = "DJANGO_BOUTIQUE['currency'] must be a three-letter ISO 4217 code"
        raise ValueError(msg)
    if not isinstance(config.base_url, str) or not config.base_url.startswith(("http://", "https://")):
        msg = "DJANGO_BOUTIQUE['base_url'] must be an absolute http(s) URL"
        raise ValueError(msg)
    if not 0 <= config.pricing.tax_rate < 1:
        msg = "DJANGO_BOUTIQUE['pricing']['tax_rate'] must be between 0 and 1"
        raise ValueError(msg)
    for name in _PRICING_FIELDS - {"tax_rate"}:
        if getattr(config.pricing, name) < 0:
            msg = f"DJANGO_BOUTIQUE['pricing']['{name}'] must not be negative"
            raise ValueError(msg)
    if config.loyalty.points_per_unit < 0:
        msg = "DJANGO_BOUTIQUE['loyalty']['points_per_unit'] must not be negative"
        raise ValueError(msg)
    if not config.loyalty.levels or config.loyalty.levels[0].min_points != 0:
        msg = "DJANGO_BOUTIQUE['loyalty']['levels'] must start with a level at 0 points"
        raise ValueError(msg)
    if not isinstance(config.stripe.webhook_tolerance, int) or config.stripe.webhook_tolerance <= 0:
        msg = "DJANGO_BOUTIQUE['stripe']['webhook_tolerance'] must be a positive integer"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_BOUTIQUE":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_boutique.settings.clear_config_cache")
