"""JSON views for the storefront checkout.

Both endpoints accept a JSON body and answer with JSON. Authentication is
handled by the host project; an anonymous caller checks out as a guest.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views import View

from django_boutique.shop.cart import MAX_AMOUNT, parse_checkout_request
from django_boutique.shop.services.checkout import CheckoutService, PaymentProcessorError
from django_boutique.shop.services.coupons import REJECTION_MESSAGES, CouponResolver

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser
    from django.http import HttpRequest

logger = logging.getLogger(__name__)


def _json_body(request: "HttpRequest") -> dict[str, Any]:
    """Decode the request body as a JSON object.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    try:
        data = json.loads(request.body or b"{}")
    except ValueError:
        raise ValidationError("Request body must be valid JSON.") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _caller(request: "HttpRequest") -> "AbstractBaseUser | None":
    user = getattr(request, "user", None)
    return user if user is not None and user.is_authenticated else None


def _error_message(exc: ValidationError) -> str:
    return " ".join(exc.messages)


class CheckoutSessionView(View):
    """Create an order from the posted cart and return where to send the customer."""

    http_method_names = ["post"]

    def post(self, request: "HttpRequest", **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Run the checkout.

        Args:
            request: The incoming HTTP request carrying the cart as JSON.
            **kwargs: URL keyword arguments (unused).

        Returns:
            ``{"url": ...}`` on success, ``{"error": ...}`` with status 400
            for invalid input, or ``{"error", "details", "code"}`` with
            status 502 when the payment processor fails.
        """
        try:
            checkout_request = parse_checkout_request(_json_body(request))
            result = CheckoutService.create_checkout(checkout_request, _caller(request))
        except ValidationError as exc:
            return JsonResponse({"error": _error_message(exc)}, status=400)
        except PaymentProcessorError as exc:
            return JsonResponse(
                {
                    "error": "The payment could not be started. Please try again.",
                    "details": exc.message,
                    "code": exc.code,
                },
                status=502,
            )
        return JsonResponse({"url": result.url})


class CouponValidateView(View):
    """Preview whether a coupon code applies to a given order amount."""

    http_method_names = ["post"]

    def post(self, request: "HttpRequest", **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Validate ``code`` against ``orderAmount``.

        Returns:
            The coupon summary and the discount it would grant, or
            ``{"valid": false, "error": ...}`` with status 400 naming the
            rule that rejected it.
        """
        try:
            data = _json_body(request)
        except ValidationError as exc:
            return JsonResponse({"valid": False, "error": _error_message(exc)}, status=400)

        code = str(data.get("code") or "").strip()
        if not code:
            return JsonResponse({"valid": False, "error": "Please enter a coupon code."}, status=400)
        try:
            amount = Decimal(str(data.get("orderAmount", "0")))
        except InvalidOperation:
            return JsonResponse({"valid": False, "error": "Invalid order amount."}, status=400)
        if not amount.is_finite() or not 0 <= amount <= MAX_AMOUNT:
            return JsonResponse({"valid": False, "error": "Invalid order amount."}, status=400)

        result = CouponResolver.check(code, user=_caller(request), subtotal=amount)
        if not result.applies:
            return JsonResponse(
                {"valid": False, "reason": result.rejection, "error": REJECTION_MESSAGES[result.rejection]},
                status=400,
            )

        coupon = result.coupon
        return JsonResponse(
            {
                "valid": True,
                "coupon": {
                    "code": coupon.code,
                    "type": coupon.coupon_type,
                    "value": str(coupon.value),
                    "description": coupon.description,
                },
                "discountAmount": str(result.discount_amount),
            }
        )
