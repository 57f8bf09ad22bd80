"""URL configuration for the shop app.

Mount these under any prefix in the host project::

    urlpatterns = [
        path("shop/", include("django_boutique.shop.urls")),
    ]
"""

from django.urls import path

from django_boutique.shop.views import CheckoutSessionView, CouponValidateView
from django_boutique.shop.webhooks import stripe_webhook

app_name = "shop"

urlpatterns = [
    path("checkout/session/", CheckoutSessionView.as_view(), name="checkout-session"),
    path("coupons/validate/", CouponValidateView.as_view(), name="coupon-validate"),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
