"""
Memora Backend — Stripe Webhook Adapter
=========================================

Signature: `Stripe-Signature` header checked by stripe.Webhook.construct_event
(HMAC-SHA256 over "{timestamp}.{body}" with the endpoint secret, plus a
timestamp tolerance).

Event mapping:
    checkout.session.completed      → subscription_created (subscription id
                                      from `subscription`, metadata carries
                                      user_id / tier / billing_cycle)
    customer.subscription.created   → subscription_created
    customer.subscription.updated   → subscription_updated
    customer.subscription.deleted   → subscription_canceled
    invoice.payment_succeeded       → payment_succeeded
    invoice.payment_failed          → payment_failed
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

import stripe

from memora.config import settings
from memora.exceptions import WebhookSignatureError
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    PaymentProvider,
    SubscriptionEvent,
    from_timestamp,
    minor_units,
)

logger = logging.getLogger(__name__)

_SUBSCRIPTION_EVENTS = {
    "customer.subscription.created": SUBSCRIPTION_CREATED,
    "customer.subscription.updated": SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": SUBSCRIPTION_CANCELED,
}
_INVOICE_EVENTS = {
    "invoice.payment_succeeded": PAYMENT_SUCCEEDED,
    "invoice.payment_failed": PAYMENT_FAILED,
}


class StripeProvider(PaymentProvider):
    name = "stripe"

    def __init__(self, webhook_secret: Optional[str] = None):
        self._secret = webhook_secret

    @property
    def webhook_secret(self) -> str:
        return self._secret if self._secret is not None else settings.stripe_webhook_secret

    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        signature = headers.get("stripe-signature")
        if not self.webhook_secret or not signature:
            raise WebhookSignatureError(provider=self.name, message="Missing Stripe signature")

        try:
            payload = raw_body.decode("utf-8")
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.webhook_secret,
            )
        except ValueError as exc:
            logger.warning("Invalid Stripe payload: %s", exc)
            raise WebhookSignatureError(provider=self.name, message="Invalid Stripe payload")
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid Stripe signature: %s", exc)
            raise WebhookSignatureError(provider=self.name)

        return json.loads(payload)

    def normalize(self, payload: Dict[str, Any]) -> Optional[SubscriptionEvent]:
        event_type = payload.get("type") or ""
        obj = (payload.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}

        if event_type == "checkout.session.completed":
            if obj.get("mode") not in (None, "subscription") or not obj.get("subscription"):
                return None
            details = obj.get("customer_details") or {}
            return SubscriptionEvent(
                provider=self.name,
                type=SUBSCRIPTION_CREATED,
                provider_event_type=event_type,
                event_id=payload.get("id"),
                subscription_id=str(obj["subscription"]),
                customer_id=_str_or_none(obj.get("customer")),
                customer_email=obj.get("customer_email") or details.get("email"),
                user_id=metadata.get("user_id") or obj.get("client_reference_id"),
                tier=metadata.get("tier"),
                billing_cycle=metadata.get("billing_cycle"),
                status="active",
                amount_cents=minor_units(obj.get("amount_total")),
                currency=_upper(obj.get("currency")),
                metadata=metadata,
            )

        if event_type in _SUBSCRIPTION_EVENTS:
            item = _first_item(obj)
            price = item.get("price") or {}
            recurring = price.get("recurring") or {}
            return SubscriptionEvent(
                provider=self.name,
                type=_SUBSCRIPTION_EVENTS[event_type],
                provider_event_type=event_type,
                event_id=payload.get("id"),
                subscription_id=_str_or_none(obj.get("id")),
                customer_id=_str_or_none(obj.get("customer")),
                plan_id=price.get("id"),
                user_id=metadata.get("user_id"),
                tier=metadata.get("tier"),
                billing_cycle=metadata.get("billing_cycle") or _cycle(recurring.get("interval")),
                status=obj.get("status"),
                amount_cents=minor_units(price.get("unit_amount")),
                currency=_upper(price.get("currency")),
                period_start=from_timestamp(obj.get("current_period_start")),
                period_end=from_timestamp(obj.get("current_period_end")),
                metadata=metadata,
            )

        if event_type in _INVOICE_EVENTS:
            line = _first_line(obj)
            period = line.get("period") or {}
            return SubscriptionEvent(
                provider=self.name,
                type=_INVOICE_EVENTS[event_type],
                provider_event_type=event_type,
                event_id=payload.get("id"),
                subscription_id=_str_or_none(obj.get("subscription")),
                customer_id=_str_or_none(obj.get("customer")),
                customer_email=obj.get("customer_email"),
                amount_cents=(
                    minor_units(obj.get("amount_paid")) or minor_units(obj.get("amount_due"))
                ),
                currency=_upper(obj.get("currency")),
                period_start=from_timestamp(period.get("start")),
                period_end=from_timestamp(period.get("end")),
                metadata=metadata,
            )

        return None


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value else None


def _upper(value: Any) -> Optional[str]:
    return str(value).upper() if value else None


def _cycle(interval: Optional[str]) -> Optional[str]:
    return {"month": "monthly", "year": "annual"}.get(interval or "")


def _first_item(obj: Dict[str, Any]) -> Dict[str, Any]:
    data = (obj.get("items") or {}).get("data") or []
    return data[0] if data else {}


def _first_line(obj: Dict[str, Any]) -> Dict[str, Any]:
    data = (obj.get("lines") or {}).get("data") or []
    return data[0] if data else {}
