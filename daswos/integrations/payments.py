# daswos/integrations/payments.py
"""
Payment providers for coin purchases.

PaymentProvider is the contract the coin API depends on; StripePaymentProvider
talks to Stripe Checkout, MockPaymentProvider is a deterministic stand-in for
development and tests. The provider only creates checkout sessions and turns
webhook deliveries into PaymentEvent objects; crediting coins is the caller's job.
"""

from __future__ import annotations

import asyncio
import json
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping, Optional

import stripe

from daswos.core.exceptions import ExternalServiceError, InvalidArgumentError
from daswos.core.logging import get_logger
from daswos.utils.money import parse_amount

if TYPE_CHECKING:  # pragma: no cover
    from daswos.core.config import Settings

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class PaymentEvent:
    type: str
    user_id: Optional[int] = None
    coin_amount: Optional[Decimal] = None
    payment_reference: Optional[str] = None

    @property
    def is_checkout_completed(self) -> bool:
        return self.type == CHECKOUT_COMPLETED


class PaymentProvider:
    name = "base"

    async def create_checkout_session(self, *, user_id: Optional[int], coin_amount: Decimal, price_cents: int) -> CheckoutSession:
        raise NotImplementedError

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        raise NotImplementedError


def _success_url(client_url: str) -> str:
    return f"{client_url}/daswos-coins/success?session_id={{CHECKOUT_SESSION_ID}}"


def _cancel_url(client_url: str) -> str:
    return f"{client_url}/daswos-coins/cancel"


def event_from_checkout_object(event_type: str, obj: Mapping[str, Any]) -> PaymentEvent:
    """Extract user/coins/payment reference from a checkout.session object."""
    if event_type != CHECKOUT_COMPLETED:
        return PaymentEvent(type=event_type)

    metadata = obj.get("metadata") or {}
    raw_user = metadata.get("userId")
    if raw_user in (None, ""):
        raise InvalidArgumentError("Missing userId in session metadata", code="MISSING_USER_ID")
    try:
        user_id = int(str(raw_user))
    except ValueError:
        raise InvalidArgumentError("Invalid userId in session metadata", code="INVALID_USER_ID") from None
    coin_amount = parse_amount(metadata.get("coinAmount"), field="coinAmount")
    reference = obj.get("payment_intent") or obj.get("id")
    if not reference:
        raise InvalidArgumentError("Missing payment reference", code="MISSING_PAYMENT_REFERENCE")
    return PaymentEvent(type=event_type, user_id=user_id, coin_amount=coin_amount, payment_reference=str(reference))


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------
class StripePaymentProvider(PaymentProvider):
    name = "stripe"

    def __init__(self, *, secret_key: str, webhook_secret: str, client_url: str, currency: str = "usd") -> None:
        if not secret_key or not webhook_secret:
            raise ValueError("Stripe secret key and webhook secret are required")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._client_url = client_url.rstrip("/")
        self._currency = currency

    def _create_session(self, user_id: Optional[int], coin_amount: Decimal, price_cents: int) -> Any:
        return stripe.checkout.Session.create(
            api_key=self._secret_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self._currency,
                        "product_data": {
                            "name": f"{coin_amount} DasWos Coins",
                            "description": "Virtual currency for DasWos platform",
                        },
                        "unit_amount": price_cents,
                    },
                    "quantity": 1,
                }
            ],
            success_url=_success_url(self._client_url),
            cancel_url=_cancel_url(self._client_url),
            metadata={
                "coinAmount": str(coin_amount),
                "userId": "" if user_id is None else str(user_id),
            },
        )

    async def create_checkout_session(self, *, user_id: Optional[int], coin_amount: Decimal, price_cents: int) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(self._create_session, user_id, coin_amount, price_cents)
        except stripe.StripeError as e:
            logger.error("stripe_checkout_failed", error=str(e), user_id=user_id)
            raise ExternalServiceError("Failed to create checkout session", code="PAYMENT_PROVIDER_ERROR") from e
        return CheckoutSession(id=session["id"], url=session["url"])

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        if not signature:
            raise InvalidArgumentError("Missing Stripe-Signature header", code="WEBHOOK_SIGNATURE_MISSING")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidArgumentError("Webhook signature verification failed", code="WEBHOOK_SIGNATURE_INVALID") from e
        except ValueError as e:
            raise InvalidArgumentError("Webhook payload is not valid JSON", code="WEBHOOK_PAYLOAD_INVALID") from e
        # StripeObject не dict: разбираем обычный словарь
        return event_from_checkout_object(event["type"], event["data"]["object"].to_dict())


# ---------------------------------------------------------------------------
# Mock
# ---------------------------------------------------------------------------
class MockPaymentProvider(PaymentProvider):
    """No network; webhooks are plain Stripe-shaped JSON without a signature."""

    name = "mock"

    def __init__(self, *, client_url: str = "http://localhost:3003") -> None:
        self._client_url = client_url.rstrip("/")
        self.sessions: dict[str, dict[str, Any]] = {}

    async def create_checkout_session(self, *, user_id: Optional[int], coin_amount: Decimal, price_cents: int) -> CheckoutSession:
        session_id = f"cs_mock_{secrets.token_hex(8)}"
        self.sessions[session_id] = {"user_id": user_id, "coin_amount": coin_amount, "price_cents": price_cents}
        url = _success_url(self._client_url).replace("{CHECKOUT_SESSION_ID}", session_id)
        return CheckoutSession(id=session_id, url=url)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        try:
            event = json.loads(payload or b"{}")
        except ValueError as e:
            raise InvalidArgumentError("Webhook payload is not valid JSON", code="WEBHOOK_PAYLOAD_INVALID") from e
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidArgumentError("Webhook payload has no event type", code="WEBHOOK_PAYLOAD_INVALID")
        obj = ((event.get("data") or {}).get("object")) or {}
        return event_from_checkout_object(str(event["type"]), obj)


def build_payment_provider(settings: "Settings") -> PaymentProvider:
    if settings.PAYMENT_PROVIDER == "stripe":
        return StripePaymentProvider(
            secret_key=settings.STRIPE_SECRET_KEY or "",
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET or "",
            client_url=settings.CLIENT_URL,
            currency=settings.STRIPE_CURRENCY,
        )
    return MockPaymentProvider(client_url=settings.CLIENT_URL)


__all__ = [
    "CHECKOUT_COMPLETED",
    "CheckoutSession",
    "PaymentEvent",
    "PaymentProvider",
    "StripePaymentProvider",
    "MockPaymentProvider",
    "event_from_checkout_object",
    "build_payment_provider",
]
