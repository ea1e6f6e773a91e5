"""
Memora Backend — Payment Provider Registry
============================================

Maps the `{provider}` path segment of POST /api/webhooks/{provider} to its
adapter instance. Adapters are singletons so the PayPal circuit breaker keeps
its state across requests.
"""

from typing import Dict

from memora.exceptions import ErrorCode, NotFoundError
from memora.services.payments.base import PaymentProvider, SubscriptionEvent
from memora.services.payments.flutterwave import FlutterwaveProvider
from memora.services.payments.paypal import PayPalProvider
from memora.services.payments.paystack import PaystackProvider
from memora.services.payments.stripe_provider import StripeProvider

paypal_provider = PayPalProvider()

PROVIDERS: Dict[str, PaymentProvider] = {
    "stripe": StripeProvider(),
    "paystack": PaystackProvider(),
    "flutterwave": FlutterwaveProvider(),
    "paypal": paypal_provider,
}


def get_provider(name: str) -> PaymentProvider:
    provider = PROVIDERS.get(name.lower())
    if provider is None:
        raise NotFoundError(
            resource="payment provider", resource_id=name, code=ErrorCode.UNSUPPORTED_PROVIDER
        )
    return provider


__all__ = ["PROVIDERS", "PaymentProvider", "SubscriptionEvent", "get_provider", "paypal_provider"]
