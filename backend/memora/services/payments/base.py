"""
Memora Backend — Abstract Payment Provider Interface
======================================================

What:  Contract every payment provider adapter implements, plus the
       provider-neutral event the subscription service consumes.
How:   Each adapter verifies the raw webhook body against its own signature
       scheme and maps its event vocabulary onto five normalized types.
Who:   routes/webhooks.py → provider.verify_signature() → provider.normalize()
       → SubscriptionService.handle_event().

Normalized event types:
    subscription_created   new paid subscription (first payment captured)
    subscription_updated   plan, status or period changed provider-side
    subscription_canceled  cancelled, disabled, suspended or expired
    payment_succeeded      renewal charge captured
    payment_failed         renewal charge declined
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

SUBSCRIPTION_CREATED = "subscription_created"
SUBSCRIPTION_UPDATED = "subscription_updated"
SUBSCRIPTION_CANCELED = "subscription_canceled"
PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"

EVENT_TYPES = (
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SUBSCRIPTION_CANCELED,
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
)


@dataclass
class SubscriptionEvent:
    """A provider webhook reduced to the fields reconciliation needs."""

    provider: str
    type: str
    provider_event_type: str
    event_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    tier: Optional[str] = None
    billing_cycle: Optional[str] = None
    status: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def from_timestamp(value: Any) -> Optional[datetime]:
    """Unix seconds or ISO-8601 string → aware UTC datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_cents(value: Any) -> Optional[int]:
    """Major-unit amount ("12.50", 12.5) → minor units; malformed amounts are dropped."""
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(round(float(value) * 100))
    except (TypeError, ValueError, OverflowError):
        return None


def minor_units(value: Any) -> Optional[int]:
    """Amount already in minor units; anything that is not a whole number is dropped."""
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PaymentProvider(ABC):
    """
    Contract:
        - verify_signature() raises WebhookSignatureError on a bad or missing
          signature and returns the parsed JSON payload otherwise
        - normalize() returns None for event types Memora does not act on
        - Provider-specific errors never leak past the adapter
    """

    name: str = ""

    @abstractmethod
    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def normalize(self, payload: Dict[str, Any]) -> Optional[SubscriptionEvent]:
        ...

    def event_type_of(self, payload: Dict[str, Any]) -> Optional[str]:
        """Raw provider event name, used when recording the webhook."""
        return payload.get("event") or payload.get("type")

    def event_id_of(self, payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get("id")
        return str(value) if value is not None else None
