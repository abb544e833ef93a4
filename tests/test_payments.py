import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
import stripe
from httpx import ASGITransport, AsyncClient

from daswos.core.exceptions import ExternalServiceError, InvalidArgumentError
from daswos.integrations.payments import (
    CHECKOUT_COMPLETED,
    MockPaymentProvider,
    StripePaymentProvider,
    build_payment_provider,
    event_from_checkout_object,
)
from daswos.main import create_app

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def _stripe_provider() -> StripePaymentProvider:
    return StripePaymentProvider(
        secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, client_url="http://shop.test/"
    )


def _event(metadata, event_type=CHECKOUT_COMPLETED) -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": "cs_1", "object": "checkout.session", "payment_intent": "pi_1", "metadata": metadata}},
        }
    ).encode()


# ======================================================================================
# разбор событий
# ======================================================================================
def test_event_from_checkout_object():
    event = event_from_checkout_object(
        CHECKOUT_COMPLETED, {"id": "cs_9", "metadata": {"userId": "12", "coinAmount": "250"}}
    )
    assert event.is_checkout_completed
    assert event.user_id == 12
    assert event.coin_amount == Decimal("250.00")
    assert event.payment_reference == "cs_9"


def test_other_events_carry_no_payload():
    event = event_from_checkout_object("invoice.paid", {})
    assert not event.is_checkout_completed
    assert event.user_id is None


@pytest.mark.parametrize(
    "metadata,code",
    [({"coinAmount": "5"}, "MISSING_USER_ID"), ({"userId": "abc", "coinAmount": "5"}, "INVALID_USER_ID")],
)
def test_bad_metadata(metadata, code):
    with pytest.raises(InvalidArgumentError) as ei:
        event_from_checkout_object(CHECKOUT_COMPLETED, {"id": "cs_1", "metadata": metadata})
    assert ei.value.code == code


def test_bad_coin_amount():
    with pytest.raises(InvalidArgumentError):
        event_from_checkout_object(CHECKOUT_COMPLETED, {"id": "cs_1", "metadata": {"userId": "1", "coinAmount": "-3"}})


# ======================================================================================
# Stripe
# ======================================================================================
def test_stripe_webhook_signature_verified():
    payload = _event({"userId": "7", "coinAmount": "100"})
    event = _stripe_provider().parse_webhook(payload, _sign(payload))
    assert event.user_id == 7
    assert event.coin_amount == Decimal("100.00")
    assert event.payment_reference == "pi_1"


def test_stripe_webhook_bad_signature():
    payload = _event({"userId": "7", "coinAmount": "100"})
    with pytest.raises(InvalidArgumentError) as ei:
        _stripe_provider().parse_webhook(payload, _sign(payload, secret="whsec_other"))
    assert ei.value.code == "WEBHOOK_SIGNATURE_INVALID"


def test_stripe_webhook_missing_signature():
    with pytest.raises(InvalidArgumentError) as ei:
        _stripe_provider().parse_webhook(b"{}", None)
    assert ei.value.code == "WEBHOOK_SIGNATURE_MISSING"


@pytest.mark.asyncio
async def test_stripe_checkout_session(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_live_1", "url": "https://checkout.stripe.test/cs_live_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = await _stripe_provider().create_checkout_session(user_id=3, coin_amount=Decimal("500"), price_cents=500)

    assert session.id == "cs_live_1"
    assert captured["mode"] == "payment"
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 500
    assert captured["metadata"] == {"coinAmount": "500", "userId": "3"}
    assert captured["success_url"] == "http://shop.test/daswos-coins/success?session_id={CHECKOUT_SESSION_ID}"


@pytest.mark.asyncio
async def test_stripe_errors_become_external_service_errors(monkeypatch):
    def failing_create(**kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", failing_create)
    with pytest.raises(ExternalServiceError):
        await _stripe_provider().create_checkout_session(user_id=None, coin_amount=Decimal("1"), price_cents=1)


def test_stripe_provider_requires_secrets():
    with pytest.raises(ValueError):
        StripePaymentProvider(secret_key="", webhook_secret="", client_url="http://shop.test")


# ======================================================================================
# Mock / фабрика
# ======================================================================================
@pytest.mark.asyncio
async def test_mock_provider_records_sessions():
    provider = MockPaymentProvider(client_url="http://shop.test")
    session = await provider.create_checkout_session(user_id=None, coin_amount=Decimal("10"), price_cents=10)
    assert provider.sessions[session.id]["user_id"] is None
    assert session.url == f"http://shop.test/daswos-coins/success?session_id={session.id}"


def test_build_payment_provider(settings):
    assert isinstance(build_payment_provider(settings), MockPaymentProvider)
    stripe_settings = settings.model_copy(
        update={"PAYMENT_PROVIDER": "stripe", "STRIPE_SECRET_KEY": "sk_x", "STRIPE_WEBHOOK_SECRET": "whsec_x"}
    )
    assert isinstance(build_payment_provider(stripe_settings), StripePaymentProvider)


# ======================================================================================
# Stripe webhook через приложение
# ======================================================================================
@pytest.mark.asyncio
async def test_signed_stripe_webhook_credits_coins_once(settings, database, provisioned, auth_headers):
    app = create_app(settings, database=database, payment_provider=_stripe_provider())
    payload = _event({"userId": "7", "coinAmount": "100"})

    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            for _ in range(2):
                r = await c.post(
                    "/api/v1/coins/webhook", content=payload, headers={"Stripe-Signature": _sign(payload)}
                )
                assert r.status_code == 200
                assert r.json() == {"received": True}

            r = await c.get("/api/v1/coins/balance", headers=auth_headers(7))
            assert r.json()["balance"] == "100.00"

            r = await c.post(
                "/api/v1/coins/webhook", content=payload, headers={"Stripe-Signature": _sign(payload, secret="whsec_x")}
            )
            assert r.status_code == 422
            assert r.json()["code"] == "WEBHOOK_SIGNATURE_INVALID"
