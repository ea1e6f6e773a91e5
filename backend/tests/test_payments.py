"""
Memora Backend — Payment Provider Adapter Tests
=================================================

What:  Signature verification and event normalization for each provider,
       plus the circuit breaker guarding PayPal verification.
How:   Signatures are computed the way each provider computes them; PayPal's
       HTTP API is replaced with httpx.MockTransport.
"""

import hashlib
import hmac
import json
import time

import httpx
import pytest

from memora.config import settings
from memora.exceptions import (
    CircuitBreakerOpenError,
    ErrorCode,
    NotFoundError,
    PaymentProviderError,
    WebhookSignatureError,
)
from memora.services.payments import get_provider
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    from_timestamp,
    minor_units,
    to_cents,
)
from memora.services.payments.flutterwave import FlutterwaveProvider
from memora.services.payments.paypal import CircuitBreaker, PayPalProvider
from memora.services.payments.paystack import PaystackProvider, sign
from memora.services.payments.stripe_provider import StripeProvider


def stripe_signature(payload: str, secret: str, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ══════════════════════════════════════════════════════════════════════════
# Registry
# ══════════════════════════════════════════════════════════════════════════

class TestRegistry:

    def test_known_providers(self):
        for name in ("stripe", "paystack", "flutterwave", "paypal"):
            assert get_provider(name).name == name

    def test_unknown_provider(self):
        with pytest.raises(NotFoundError) as exc_info:
            get_provider("bitpay")
        assert exc_info.value.code == ErrorCode.UNSUPPORTED_PROVIDER


# ══════════════════════════════════════════════════════════════════════════
# Paystack
# ══════════════════════════════════════════════════════════════════════════

class TestPaystack:

    def setup_method(self):
        self.provider = PaystackProvider(secret_key="sk_test_abc")

    def _body(self, event="subscription.create", **data):
        payload = {
            "event": event,
            "data": {
                "subscription_code": "SUB_123",
                "amount": 500000,
                "customer": {"customer_code": "CUS_1", "email": "Owner@Example.com"},
                "plan": {"plan_code": "PLN_pro_monthly", "interval": "monthly", "currency": "NGN"},
                **data,
            },
        }
        return json.dumps(payload).encode("utf-8")

    @pytest.mark.asyncio
    async def test_valid_signature(self):
        body = self._body()
        payload = await self.provider.verify_signature(
            body, {"x-paystack-signature": sign(body, "sk_test_abc")}
        )
        assert payload["event"] == "subscription.create"

    @pytest.mark.asyncio
    async def test_tampered_body_rejected(self):
        body = self._body()
        signature = sign(body, "sk_test_abc")
        with pytest.raises(WebhookSignatureError):
            await self.provider.verify_signature(
                body.replace(b"500000", b"1"), {"x-paystack-signature": signature}
            )

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self):
        with pytest.raises(WebhookSignatureError):
            await self.provider.verify_signature(self._body(), {})

    def test_subscription_create(self):
        event = self.provider.normalize(json.loads(self._body()))
        assert event.type == SUBSCRIPTION_CREATED
        assert event.subscription_id == "SUB_123"
        assert event.plan_id == "PLN_pro_monthly"
        assert event.billing_cycle == "monthly"
        assert event.amount_cents == 500000

    def test_disable_is_cancellation(self):
        event = self.provider.normalize(json.loads(self._body(event="subscription.disable")))
        assert event.type == SUBSCRIPTION_CANCELED

    def test_one_off_charge_is_ignored(self):
        payload = json.loads(self._body(event="charge.success"))
        payload["data"]["plan"] = {}
        assert self.provider.normalize(payload) is None

    def test_event_id_prefers_subscription_code(self):
        assert self.provider.event_id_of(json.loads(self._body())) == "SUB_123"


# ══════════════════════════════════════════════════════════════════════════
# Stripe
# ══════════════════════════════════════════════════════════════════════════

class TestStripe:

    def setup_method(self):
        self.provider = StripeProvider(webhook_secret="whsec_unit")

    def _checkout(self):
        return json.dumps(
            {
                "id": "evt_1",
                "object": "event",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": "cs_1",
                        "object": "checkout.session",
                        "mode": "subscription",
                        "subscription": "sub_1",
                        "customer": "cus_1",
                        "customer_details": {"email": "owner@example.com"},
                        "amount_total": 1900,
                        "currency": "usd",
                        "metadata": {"user_id": "u-1", "tier": "pro", "billing_cycle": "monthly"},
                    }
                },
            }
        )

    @pytest.mark.asyncio
    async def test_valid_signature(self):
        payload = self._checkout()
        parsed = await self.provider.verify_signature(
            payload.encode("utf-8"),
            {"stripe-signature": stripe_signature(payload, "whsec_unit")},
        )
        assert parsed["id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self):
        payload = self._checkout()
        with pytest.raises(WebhookSignatureError):
            await self.provider.verify_signature(
                payload.encode("utf-8"),
                {"stripe-signature": stripe_signature(payload, "whsec_other")},
            )

    @pytest.mark.asyncio
    async def test_stale_timestamp_rejected(self):
        payload = self._checkout()
        stale = int(time.time()) - 3600
        with pytest.raises(WebhookSignatureError):
            await self.provider.verify_signature(
                payload.encode("utf-8"),
                {"stripe-signature": stripe_signature(payload, "whsec_unit", stale)},
            )

    def test_checkout_completed(self):
        event = self.provider.normalize(json.loads(self._checkout()))
        assert event.type == SUBSCRIPTION_CREATED
        assert event.subscription_id == "sub_1"
        assert event.customer_email == "owner@example.com"
        assert event.tier == "pro"
        assert event.currency == "USD"

    def test_subscription_updated(self):
        payload = {
            "id": "evt_2",
            "type": "customer.subscription.updated",
            "data": {
                "object": {
                    "id": "sub_1",
                    "customer": "cus_1",
                    "status": "active",
                    "current_period_start": 1700000000,
                    "current_period_end": 1702592000,
                    "items": {
                        "data": [
                            {
                                "price": {
                                    "id": "price_studio",
                                    "unit_amount": 4900,
                                    "currency": "usd",
                                    "recurring": {"interval": "year"},
                                }
                            }
                        ]
                    },
                }
            },
        }
        event = self.provider.normalize(payload)
        assert event.type == SUBSCRIPTION_UPDATED
        assert event.plan_id == "price_studio"
        assert event.billing_cycle == "annual"
        assert event.period_start == from_timestamp(1700000000)

    def test_invoice_failed(self):
        payload = {
            "id": "evt_3",
            "type": "invoice.payment_failed",
            "data": {"object": {"subscription": "sub_1", "amount_due": 1900}},
        }
        event = self.provider.normalize(payload)
        assert event.type == PAYMENT_FAILED
        assert event.amount_cents == 1900

    def test_unrelated_event(self):
        assert self.provider.normalize({"type": "charge.refunded", "data": {"object": {}}}) is None


# ══════════════════════════════════════════════════════════════════════════
# Flutterwave
# ══════════════════════════════════════════════════════════════════════════

class TestFlutterwave:

    def setup_method(self):
        self.provider = FlutterwaveProvider(secret_hash="flw_hash")

    @pytest.mark.asyncio
    async def test_verif_hash(self):
        body = json.dumps({"event": "charge.completed", "data": {}}).encode("utf-8")
        assert (await self.provider.verify_signature(body, {"verif-hash": "flw_hash"}))["event"]
        with pytest.raises(WebhookSignatureError):
            await self.provider.verify_signature(body, {"verif-hash": "nope"})

    def test_successful_plan_charge(self):
        payload = {
            "event": "charge.completed",
            "data": {
                "id": 4567,
                "tx_ref": "mem_abc",
                "status": "successful",
                "amount": 19.99,
                "currency": "USD",
                "payment_plan": 321,
                "customer": {"id": 99, "email": "owner@example.com"},
            },
            "meta_data": {"tier": "pro"},
        }
        event = self.provider.normalize(payload)
        assert event.type == SUBSCRIPTION_CREATED
        assert event.subscription_id == "mem_abc"
        assert event.amount_cents == 1999
        assert event.plan_id == "321"
        assert event.tier == "pro"

    def test_failed_charge_is_ignored(self):
        payload = {"event": "charge.completed", "data": {"status": "failed", "payment_plan": 1}}
        assert self.provider.normalize(payload) is None

    def test_malformed_amount_is_dropped(self):
        payload = {
            "event": "charge.completed",
            "data": {
                "tx_ref": "mem_abc",
                "status": "successful",
                "amount": "12,00",
                "payment_plan": 321,
            },
        }
        event = self.provider.normalize(payload)
        assert event.subscription_id == "mem_abc"
        assert event.amount_cents is None


class TestAmounts:

    def test_major_units(self):
        assert to_cents("19.99") == 1999
        assert to_cents(5) == 500
        assert to_cents("12,00") is None
        assert to_cents({"value": 1}) is None
        assert to_cents("") is None

    def test_minor_units(self):
        assert minor_units(500000) == 500000
        assert minor_units("2500") == 2500
        assert minor_units("25.00") is None
        assert minor_units(None) is None


# ══════════════════════════════════════════════════════════════════════════
# PayPal & Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

PAYPAL_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.paypal.com/cert.pem",
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-sig": "sig",
    "paypal-transmission-time": "2026-10-19T00:00:00Z",
}

PAYPAL_EVENT = {
    "id": "WH-EVT-1",
    "event_type": "BILLING.SUBSCRIPTION.ACTIVATED",
    "resource": {
        "id": "I-SUB1",
        "plan_id": "P-PRO",
        "status": "ACTIVE",
        "custom_id": "user-1",
        "subscriber": {"payer_id": "PAYER1", "email_address": "owner@example.com"},
        "billing_info": {
            "last_payment": {"amount": {"value": "19.00", "currency_code": "USD"}},
            "next_billing_time": "2026-11-19T00:00:00Z",
        },
    },
}


def paypal_transport(status="SUCCESS"):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-token"})
        body = json.loads(request.content)
        assert body["webhook_id"] == "WH-CONFIG"
        assert body["transmission_id"] == "tx-1"
        return httpx.Response(200, json={"verification_status": status})

    return httpx.MockTransport(handler)


class TestCircuitBreaker:

    def setup_method(self):
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=self.clock)

    def test_opens_after_threshold(self):
        self.breaker.record_failure()
        assert self.breaker.can_execute() is True
        self.breaker.record_failure()
        assert self.breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            self.breaker.can_execute()
        assert exc_info.value.recovery_time == 30

    def test_half_open_after_timeout(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.clock.now = 30
        assert self.breaker.can_execute() is True
        assert self.breaker.state == CircuitBreaker.HALF_OPEN

    def test_half_open_failure_reopens(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.clock.now = 31
        self.breaker.can_execute()
        self.breaker.record_failure()
        assert self.breaker.state == CircuitBreaker.OPEN

    def test_success_closes(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.clock.now = 31
        self.breaker.can_execute()
        self.breaker.record_success()
        assert self.breaker.state == CircuitBreaker.CLOSED
        assert self.breaker.failure_count == 0


class TestPayPal:

    @pytest.fixture(autouse=True)
    def webhook_id(self, monkeypatch):
        monkeypatch.setattr(settings, "paypal_webhook_id", "WH-CONFIG")

    @pytest.mark.asyncio
    async def test_verified_by_paypal(self):
        provider = PayPalProvider(transport=paypal_transport())
        payload = await provider.verify_signature(
            json.dumps(PAYPAL_EVENT).encode("utf-8"), PAYPAL_HEADERS
        )
        assert payload["id"] == "WH-EVT-1"
        assert provider.health() == CircuitBreaker.CLOSED

    @pytest.mark.asyncio
    async def test_failure_status_rejected(self):
        provider = PayPalProvider(transport=paypal_transport(status="FAILURE"))
        with pytest.raises(WebhookSignatureError):
            await provider.verify_signature(
                json.dumps(PAYPAL_EVENT).encode("utf-8"), PAYPAL_HEADERS
            )

    @pytest.mark.asyncio
    async def test_missing_headers_rejected_without_calling_paypal(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        provider = PayPalProvider(transport=httpx.MockTransport(handler))
        with pytest.raises(WebhookSignatureError):
            await provider.verify_signature(json.dumps(PAYPAL_EVENT).encode("utf-8"), {})
        assert calls == []

    @pytest.mark.asyncio
    async def test_unreachable_paypal_records_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        provider = PayPalProvider(transport=httpx.MockTransport(handler), circuit_breaker=breaker)

        with pytest.raises(PaymentProviderError):
            await provider.verify_signature(
                json.dumps(PAYPAL_EVENT).encode("utf-8"), PAYPAL_HEADERS
            )
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_token_response_without_access_token(self):
        def handler(request):
            return httpx.Response(200, json={"error": "invalid_client"})

        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        provider = PayPalProvider(transport=httpx.MockTransport(handler), circuit_breaker=breaker)

        with pytest.raises(PaymentProviderError):
            await provider.verify_signature(
                json.dumps(PAYPAL_EVENT).encode("utf-8"), PAYPAL_HEADERS
            )
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        provider = PayPalProvider(transport=paypal_transport(), circuit_breaker=breaker)

        with pytest.raises(CircuitBreakerOpenError):
            await provider.verify_signature(
                json.dumps(PAYPAL_EVENT).encode("utf-8"), PAYPAL_HEADERS
            )

    def test_normalize_activation(self):
        event = PayPalProvider().normalize(PAYPAL_EVENT)
        assert event.type == SUBSCRIPTION_CREATED
        assert event.subscription_id == "I-SUB1"
        assert event.user_id == "user-1"
        assert event.amount_cents == 1900
        assert event.status == "active"

    def test_sale_completed_uses_billing_agreement(self):
        payload = {
            "event_type": "PAYMENT.SALE.COMPLETED",
            "resource": {"billing_agreement_id": "I-SUB1", "amount": {"total": "19.00"}},
        }
        event = PayPalProvider().normalize(payload)
        assert event.type == PAYMENT_SUCCEEDED
        assert event.subscription_id == "I-SUB1"
