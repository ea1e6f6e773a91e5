"""
Memora Backend — PayPal Webhook Adapter
=========================================

What:  PayPal webhook verification and event mapping.
Why:   PayPal has no shared-secret signature; authenticity is confirmed by
       asking PayPal itself (POST /v1/notifications/verify-webhook-signature).
How:   OAuth2 client-credentials token, then the verification call, both over
       httpx. The pair is retried with tenacity (exponential backoff + jitter)
       on transport errors and guarded by a circuit breaker.

Resilience Strategy:
    1. Tenacity retry on httpx.TransportError (connect reset, timeouts)
    2. Circuit breaker so a PayPal outage fails webhooks instantly (503)
       instead of tying up workers; PayPal redelivers non-2xx webhooks
    3. Anything still failing surfaces as PaymentProviderError (502)

Event mapping:
    BILLING.SUBSCRIPTION.ACTIVATED                → subscription_created
    BILLING.SUBSCRIPTION.UPDATED                  → subscription_updated
    BILLING.SUBSCRIPTION.CANCELLED/SUSPENDED/EXPIRED → subscription_canceled
    PAYMENT.SALE.COMPLETED                        → payment_succeeded
    BILLING.SUBSCRIPTION.PAYMENT.FAILED           → payment_failed
"""

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from memora.config import settings
from memora.exceptions import CircuitBreakerOpenError, PaymentProviderError, WebhookSignatureError
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    PaymentProvider,
    SubscriptionEvent,
    from_timestamp,
    to_cents,
)

logger = logging.getLogger(__name__)

_EVENT_MAP = {
    "BILLING.SUBSCRIPTION.ACTIVATED": SUBSCRIPTION_CREATED,
    "BILLING.SUBSCRIPTION.UPDATED": SUBSCRIPTION_UPDATED,
    "BILLING.SUBSCRIPTION.CANCELLED": SUBSCRIPTION_CANCELED,
    "BILLING.SUBSCRIPTION.SUSPENDED": SUBSCRIPTION_CANCELED,
    "BILLING.SUBSCRIPTION.EXPIRED": SUBSCRIPTION_CANCELED,
    "PAYMENT.SALE.COMPLETED": PAYMENT_SUCCEEDED,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": PAYMENT_FAILED,
}

_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    State Machine:
        CLOSED    → each failure increments failure_count;
                    at failure_threshold → OPEN
        OPEN      → calls raise CircuitBreakerOpenError immediately;
                    after recovery_timeout seconds → HALF_OPEN
        HALF_OPEN → one call goes through; success → CLOSED, failure → OPEN

    Not thread-safe. uvicorn async workers share one process per worker, and
    each worker keeps its own breaker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self._clock = clock

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError: OPEN and the recovery timeout has not elapsed
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures", self.failure_count
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# PayPal Provider
# ══════════════════════════════════════════════════════════════════════════

class PayPalProvider(PaymentProvider):
    name = "paypal"

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        # `transport` lets tests substitute httpx.MockTransport
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        """
        Flow:
            1. Required PayPal transmission headers present, body is JSON
            2. Circuit breaker check → may raise CircuitBreakerOpenError
            3. Remote verification with retry
            4. verification_status must be "SUCCESS"

        Raises:
            WebhookSignatureError: Missing headers, bad JSON, or PayPal says FAILURE
            CircuitBreakerOpenError: Too many recent verification failures
            PaymentProviderError: PayPal unreachable after all retries
        """
        if not settings.paypal_webhook_id:
            raise WebhookSignatureError(provider=self.name, message="PayPal webhook id not configured")

        fields = {key: headers.get(header) for key, header in _SIGNATURE_HEADERS.items()}
        missing = [header for key, header in _SIGNATURE_HEADERS.items() if not fields[key]]
        if missing:
            raise WebhookSignatureError(
                provider=self.name,
                message="Missing PayPal transmission headers",
                context={"missing": missing},
            )

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise WebhookSignatureError(provider=self.name, message="Invalid PayPal payload")

        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        try:
            status = await self._verify_with_retry(fields, payload, request_id)
            self.circuit_breaker.record_success()
        except CircuitBreakerOpenError:
            raise
        except (httpx.HTTPError, KeyError, ValueError) as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] PayPal verification failed after retries: %s", request_id, str(e))
            raise PaymentProviderError(
                provider=self.name,
                message="Could not verify the PayPal webhook. It will be redelivered.",
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )

        if status != "SUCCESS":
            logger.warning("[%s] PayPal reported verification_status=%s", request_id, status)
            raise WebhookSignatureError(provider=self.name)
        return payload

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _verify_with_retry(
        self, fields: Dict[str, Optional[str]], payload: Dict[str, Any], request_id: str
    ) -> str:
        start_time = time.time()
        async with httpx.AsyncClient(
            base_url=settings.paypal_api_base,
            timeout=settings.paypal_timeout_seconds,
            transport=self._transport,
        ) as client:
            token_response = await client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(settings.paypal_client_id, settings.paypal_client_secret),
            )
            token_response.raise_for_status()
            access_token = token_response.json()["access_token"]

            verify_response = await client.post(
                "/v1/notifications/verify-webhook-signature",
                json={**fields, "webhook_id": settings.paypal_webhook_id, "webhook_event": payload},
                headers={"Authorization": f"Bearer {access_token}"},
            )
            verify_response.raise_for_status()
            status = verify_response.json().get("verification_status", "")

        logger.info(
            "[%s] PayPal verification completed in %.0fms: %s",
            request_id,
            (time.time() - start_time) * 1000,
            status,
        )
        return status

    def health(self) -> str:
        return self.circuit_breaker.state

    def normalize(self, payload: Dict[str, Any]) -> Optional[SubscriptionEvent]:
        event_type = payload.get("event_type") or ""
        normalized = _EVENT_MAP.get(event_type)
        if normalized is None:
            return None

        resource = payload.get("resource") or {}
        subscriber = resource.get("subscriber") or {}
        billing_info = resource.get("billing_info") or {}
        last_payment = billing_info.get("last_payment") or {}
        amount = last_payment.get("amount") or resource.get("amount") or {}
        value = amount.get("value") or amount.get("total")

        if normalized == PAYMENT_SUCCEEDED:
            subscription_id = resource.get("billing_agreement_id")
        else:
            subscription_id = resource.get("id")

        return SubscriptionEvent(
            provider=self.name,
            type=normalized,
            provider_event_type=event_type,
            event_id=payload.get("id"),
            subscription_id=subscription_id,
            customer_id=subscriber.get("payer_id"),
            customer_email=subscriber.get("email_address"),
            plan_id=resource.get("plan_id"),
            user_id=resource.get("custom_id") or resource.get("custom"),
            status=_status(resource.get("status")),
            amount_cents=to_cents(value),
            currency=amount.get("currency_code") or amount.get("currency"),
            period_start=from_timestamp(resource.get("start_time")),
            period_end=from_timestamp(billing_info.get("next_billing_time")),
        )

    def event_type_of(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("event_type")


def _status(value: Optional[str]) -> Optional[str]:
    return {
        "ACTIVE": "active",
        "APPROVAL_PENDING": "incomplete",
        "APPROVED": "incomplete",
        "SUSPENDED": "past_due",
        "CANCELLED": "canceled",
        "EXPIRED": "canceled",
    }.get((value or "").upper())
