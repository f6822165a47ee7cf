"""Summary: Payment processor clients for subscription billing.

Importance: Starts checkout, opens the billing portal, and reads subscription state.
Alternatives: Call the processor's REST API by hand.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import stripe

from replydesk.config import AppConfig
from replydesk.errors import BillingError


logger = logging.getLogger(__name__)

STATUS_INCOMPLETE = "incomplete"
STATUS_ACTIVE = "active"
STATUS_TRIALING = "trialing"
STATUS_CANCELED = "canceled"
PREMIUM_STATUSES = {STATUS_ACTIVE, STATUS_TRIALING}


class BillingProvider(ABC):
    """Summary: Abstract payment processor operations used by the subscription service.

    Importance: Lets tests and local demos run without processor credentials.
    Alternatives: Use the processor SDK directly in services.
    """

    @abstractmethod
    def create_customer(self, email: str, name: str | None = None) -> str:
        """Summary: Create a processor customer and return its reference."""

    @abstractmethod
    def create_checkout_session(self, customer_ref: str, success_url: str, cancel_url: str) -> str:
        """Summary: Create a subscription checkout session and return its URL."""

    @abstractmethod
    def create_portal_session(self, customer_ref: str, return_url: str) -> str:
        """Summary: Create a self-service billing portal session and return its URL."""

    @abstractmethod
    def retrieve_subscription(self, subscription_ref: str) -> dict[str, Any]:
        """Summary: Fetch the processor's current view of a subscription."""


class StripeBillingProvider(BillingProvider):
    """Summary: Billing provider backed by the Stripe SDK.

    Importance: Production payment processing for the premium tier.
    Alternatives: Paddle or Lemon Squeezy.
    """

    def __init__(self, api_key: str, price_id: str) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required for stripe billing")
        stripe.api_key = api_key
        self._price_id = price_id

    def create_customer(self, email: str, name: str | None = None) -> str:
        params: dict[str, Any] = {"email": email}
        if name:
            params["name"] = name
        try:
            customer = stripe.Customer.create(**params)
        except stripe.StripeError as exc:
            raise BillingError(f"Failed to create Stripe customer: {exc}") from exc
        logger.info("Created Stripe customer %s.", customer.id)
        return customer.id

    def create_checkout_session(self, customer_ref: str, success_url: str, cancel_url: str) -> str:
        if not self._price_id:
            raise BillingError("STRIPE_PRICE_ID is not configured")
        try:
            session = stripe.checkout.Session.create(
                customer=customer_ref,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": self._price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as exc:
            raise BillingError(f"Failed to create checkout session: {exc}") from exc
        return session.url

    def create_portal_session(self, customer_ref: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(customer=customer_ref, return_url=return_url)
        except stripe.StripeError as exc:
            raise BillingError(f"Failed to create portal session: {exc}") from exc
        return session.url

    def retrieve_subscription(self, subscription_ref: str) -> dict[str, Any]:
        try:
            subscription = stripe.Subscription.retrieve(subscription_ref)
        except stripe.StripeError as exc:
            raise BillingError(f"Failed to retrieve subscription {subscription_ref}: {exc}") from exc
        return subscription.to_dict()


class MockBillingProvider(BillingProvider):
    """Summary: In-memory billing provider for local runs and tests.

    Importance: Exercises checkout and event handling without a processor account.
    Alternatives: Stripe test mode with real API keys.
    """

    def __init__(self, app_url: str = "http://localhost:8000") -> None:
        self._app_url = app_url.rstrip("/")
        self.customers: list[str] = []
        self.subscriptions: dict[str, dict[str, Any]] = {}

    def create_customer(self, email: str, name: str | None = None) -> str:
        customer_ref = f"cus_mock_{len(self.customers) + 1}"
        self.customers.append(customer_ref)
        return customer_ref

    def create_checkout_session(self, customer_ref: str, success_url: str, cancel_url: str) -> str:
        return f"{self._app_url}/mock-checkout?customer={customer_ref}"

    def create_portal_session(self, customer_ref: str, return_url: str) -> str:
        return f"{self._app_url}/mock-portal?customer={customer_ref}"

    def retrieve_subscription(self, subscription_ref: str) -> dict[str, Any]:
        if subscription_ref not in self.subscriptions:
            raise BillingError(f"Subscription {subscription_ref} not found")
        return self.subscriptions[subscription_ref]


def build_billing_provider(config: AppConfig) -> BillingProvider:
    """Summary: Construct the configured billing provider.

    Importance: Keeps provider selection in one place.
    Alternatives: Branch on configuration inside each service call.
    """

    if config.billing_provider == "stripe":
        return StripeBillingProvider(config.stripe_secret_key or "", config.stripe_price_id)
    return MockBillingProvider(config.app_url)


def subscription_fields(subscription: dict[str, Any]) -> dict[str, Any]:
    """Summary: Extract the stored subscription columns from a processor subscription.

    Importance: Shared by checkout completion and subscription update events.
    Alternatives: Store the raw processor object as JSON.
    """

    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}
    period_start = subscription.get("current_period_start") or first_item.get("current_period_start")
    period_end = subscription.get("current_period_end") or first_item.get("current_period_end")
    return {
        "subscription_ref": subscription.get("id"),
        "status": subscription.get("status", STATUS_INCOMPLETE),
        "price_ref": price.get("id"),
        "period_start": _epoch_to_iso(period_start),
        "period_end": _epoch_to_iso(period_end),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end", False)),
    }


def _epoch_to_iso(value: int | None) -> str | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()
