"""
Memora Backend — Subscription Reconciliation Service
======================================================

What:  Applies normalized provider events to subscriptions, history and the
       user's tier; also starts checkouts and answers billing queries.
Who:   routes/webhooks.py (handle_event), routes/subscriptions.py.
When:  Inside the webhook request's transaction; the route commits.

subscription_created flow:
    ┌────────────────┐   ┌──────────────┐   ┌───────────────────────────────┐
    │ exists(provider│──▶│ resolve user │──▶│ supersede live row, insert new│
    │ , sub id)?     │   │ + tier       │   │ row, history, user.memora_tier│
    └────────────────┘   └──────────────┘   └───────────────────────────────┘
          │ yes                 │ unknown                     │
          ▼                     ▼                             ▼
      "duplicate"           "ignored"          notify + drop pending checkout

User resolution order: event metadata user_id → pending checkout
(`checkout_pending:{provider}:{email}`) → account with the customer email.
Tier resolution order: event metadata tier → PLAN_TIERS[plan_id] → pending
checkout tier.

Outcomes: "processed", "duplicate", "ignored".
"""

import logging
import secrets
import uuid
from typing import List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.config import settings
from memora.models.mixins import utcnow
from memora.models.subscription import (
    LIVE_STATUSES,
    SUBSCRIPTION_STATUSES,
    Subscription,
    SubscriptionHistory,
)
from memora.models.user import DEFAULT_TIER, TIER_RANKS, User
from memora.schemas.common import PaginationMeta
from memora.schemas.subscription import (
    CheckoutRequest,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    SubscriptionResponse,
)
from memora.services.cache_service import TTLCache, cache
from memora.services.notification_service import notification_service
from memora.services.pagination import paginate
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SubscriptionEvent,
)
from memora.services.user_service import user_service

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"


def pending_checkout_key(provider: str, email: str) -> str:
    return f"checkout_pending:{provider}:{email.strip().lower()}"


def tier_change(from_tier: Optional[str], to_tier: str) -> str:
    """History event type for moving between tiers."""
    from_rank = TIER_RANKS.get(from_tier or DEFAULT_TIER, 0)
    to_rank = TIER_RANKS.get(to_tier, 0)
    if (from_tier or DEFAULT_TIER) == DEFAULT_TIER:
        return "created"
    if to_rank > from_rank:
        return "upgraded"
    if to_rank < from_rank:
        return "downgraded"
    return "created"


class SubscriptionService:

    def __init__(self, pending_cache: Optional[TTLCache] = None):
        self.cache = pending_cache if pending_cache is not None else cache

    # ── Checkout ──────────────────────────────────────────────────────────

    def create_checkout(self, user: User, data: CheckoutRequest) -> CheckoutResponse:
        """Remembers the intended tier so the provider's webhook can be matched to the user."""
        reference = f"mem_{secrets.token_hex(12)}"
        ttl = settings.pending_checkout_ttl_seconds
        self.cache.set(
            pending_checkout_key(data.provider, user.email),
            {
                "user_id": str(user.id),
                "tier": data.tier,
                "billing_cycle": data.billing_cycle,
                "reference": reference,
            },
            ttl=ttl,
        )
        query = urlencode({"provider": data.provider, "reference": reference})
        callback_url = f"{settings.frontend_url.rstrip('/')}/memora/subscription/callback?{query}"
        logger.info(
            "Checkout %s started by user %s (%s, %s)", reference, user.id, data.provider, data.tier
        )
        return CheckoutResponse(
            reference=reference,
            provider=data.provider,
            callback_url=callback_url,
            expires_in=ttl,
        )

    # ── Queries ───────────────────────────────────────────────────────────

    async def get_live_subscription(
        self, db: AsyncSession, user_id: uuid.UUID, provider: Optional[str] = None
    ) -> Optional[Subscription]:
        query = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
            .order_by(Subscription.created_at.desc())
        )
        if provider:
            query = query.where(Subscription.payment_provider == provider)
        result = await db.execute(query)
        return result.scalars().first()

    async def current(self, db: AsyncSession, user: User) -> CurrentSubscriptionResponse:
        subscription = await self.get_live_subscription(db, user.id)
        return CurrentSubscriptionResponse(
            memora_tier=user.memora_tier,
            subscription=SubscriptionResponse.model_validate(subscription) if subscription else None,
        )

    async def history(
        self, db: AsyncSession, user: User, page: int, per_page: int
    ) -> Tuple[List[SubscriptionHistory], PaginationMeta]:
        query = (
            select(SubscriptionHistory)
            .where(SubscriptionHistory.user_id == user.id)
            .order_by(SubscriptionHistory.created_at.desc())
        )
        return await paginate(db, query, page, per_page)

    # ── Reconciliation ────────────────────────────────────────────────────

    async def handle_event(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        handlers = {
            SUBSCRIPTION_CREATED: self._on_created,
            SUBSCRIPTION_UPDATED: self._on_updated,
            SUBSCRIPTION_CANCELED: self._on_canceled,
            PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            PAYMENT_FAILED: self._on_payment_failed,
        }
        handler = handlers.get(event.type)
        if handler is None:
            return IGNORED
        outcome = await handler(db, event)
        logger.info(
            "%s webhook %s (%s) → %s",
            event.provider,
            event.provider_event_type,
            event.subscription_id,
            outcome,
        )
        return outcome

    async def _find(self, db: AsyncSession, event: SubscriptionEvent) -> Optional[Subscription]:
        if event.subscription_id:
            result = await db.execute(
                select(Subscription).where(
                    Subscription.payment_provider == event.provider,
                    Subscription.provider_subscription_id == event.subscription_id,
                )
            )
            subscription = result.scalar_one_or_none()
            if subscription is not None:
                return subscription

        # Fall back to the customer's live subscription with this provider
        if event.customer_id:
            result = await db.execute(
                select(Subscription)
                .where(
                    Subscription.payment_provider == event.provider,
                    Subscription.provider_customer_id == event.customer_id,
                    Subscription.status.in_(LIVE_STATUSES + ("past_due",)),
                )
                .order_by(Subscription.created_at.desc())
            )
            subscription = result.scalars().first()
            if subscription is not None:
                return subscription

        if event.customer_email:
            user = await user_service.get_by_email(db, event.customer_email)
            if user is not None:
                return await self.get_live_subscription(db, user.id, event.provider)
        return None

    async def _resolve_user(
        self, db: AsyncSession, event: SubscriptionEvent, pending: Optional[dict]
    ) -> Optional[User]:
        for candidate in (event.user_id, (pending or {}).get("user_id")):
            if not candidate:
                continue
            try:
                user = await db.get(User, uuid.UUID(str(candidate)))
            except ValueError:
                continue
            if user is not None:
                return user
        if event.customer_email:
            return await user_service.get_by_email(db, event.customer_email)
        return None

    def _resolve_tier(self, event: SubscriptionEvent, pending: Optional[dict]) -> Optional[str]:
        for candidate in (
            event.tier,
            settings.plan_tiers.get(event.plan_id or ""),
            (pending or {}).get("tier"),
        ):
            if candidate and candidate in TIER_RANKS and candidate != DEFAULT_TIER:
                return candidate
        return None

    def _history(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        event_type: str,
        subscription: Subscription,
        from_tier: Optional[str],
        to_tier: Optional[str],
        notes: Optional[str] = None,
    ) -> None:
        db.add(
            SubscriptionHistory(
                user_id=user_id,
                event_type=event_type,
                from_tier=from_tier,
                to_tier=to_tier,
                billing_cycle=subscription.billing_cycle,
                amount_cents=subscription.amount_cents,
                currency=subscription.currency,
                payment_provider=subscription.payment_provider,
                payment_reference=subscription.provider_subscription_id,
                notes=notes,
            )
        )

    async def _other_live(
        self, db: AsyncSession, subscription: Subscription
    ) -> List[Subscription]:
        result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == subscription.user_id,
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.id != subscription.id,
            )
        )
        return list(result.scalars().all())

    async def _is_replaced(self, db: AsyncSession, subscription: Subscription) -> bool:
        """A canceled row whose user has since moved to another live subscription."""
        if subscription.canceled_at is None and subscription.status != "canceled":
            return False
        return bool(await self._other_live(db, subscription))

    async def _revive(self, db: AsyncSession, subscription: Subscription) -> None:
        """Makes this row the user's only live subscription."""
        now = utcnow()
        for other in await self._other_live(db, subscription):
            other.status = "canceled"
            other.canceled_at = now
        subscription.canceled_at = None

    async def _on_created(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        if not event.subscription_id:
            return IGNORED

        already = await db.scalar(
            select(
                exists().where(
                    Subscription.payment_provider == event.provider,
                    Subscription.provider_subscription_id == event.subscription_id,
                )
            )
        )
        if already:
            return DUPLICATE

        pending_key = pending_checkout_key(event.provider, event.customer_email or "")
        pending = self.cache.get(pending_key) if event.customer_email else None

        user = await self._resolve_user(db, event, pending)
        if user is None:
            logger.warning(
                "%s subscription %s has no matching user", event.provider, event.subscription_id
            )
            return IGNORED
        tier = self._resolve_tier(event, pending)
        if tier is None:
            logger.warning(
                "%s subscription %s has no resolvable tier (plan %s)",
                event.provider,
                event.subscription_id,
                event.plan_id,
            )
            return IGNORED

        now = utcnow()
        live = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user.id, Subscription.status.in_(LIVE_STATUSES)
            )
        )
        for previous in live.scalars().all():
            previous.status = "canceled"
            previous.canceled_at = now

        subscription = Subscription(
            user_id=user.id,
            payment_provider=event.provider,
            provider_subscription_id=event.subscription_id,
            provider_customer_id=event.customer_id,
            provider_plan_id=event.plan_id,
            tier=tier,
            billing_cycle=event.billing_cycle or (pending or {}).get("billing_cycle") or "monthly",
            status="active",
            amount_cents=event.amount_cents or 0,
            currency=(event.currency or "USD").upper()[:3],
            current_period_start=event.period_start or now,
            current_period_end=event.period_end,
            extra=dict(event.metadata or {}),
        )
        db.add(subscription)

        from_tier = user.memora_tier
        self._history(db, user.id, tier_change(from_tier, tier), subscription, from_tier, tier)
        user.memora_tier = tier
        await db.flush()

        await notification_service.notify(
            "subscription.created", user.email, tier=tier, provider=event.provider
        )
        if pending is not None:
            self.cache.forget(pending_key)
        return PROCESSED

    async def _on_canceled(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        subscription = await self._find(db, event)
        if subscription is None:
            return IGNORED
        if subscription.status == "canceled":
            return DUPLICATE

        subscription.status = "canceled"
        subscription.canceled_at = utcnow()

        user = await db.get(User, subscription.user_id)
        from_tier = user.memora_tier if user else subscription.tier
        self._history(db, subscription.user_id, "cancelled", subscription, from_tier, DEFAULT_TIER)
        await db.flush()

        if user is not None and await self.get_live_subscription(db, user.id) is None:
            user.memora_tier = DEFAULT_TIER
            await db.flush()
            await notification_service.notify(
                "subscription.canceled", user.email, provider=event.provider
            )
        return PROCESSED

    async def _on_payment_succeeded(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        subscription = await self._find(db, event)
        if subscription is None:
            return IGNORED
        if await self._is_replaced(db, subscription):
            logger.info(
                "Ignoring payment for replaced subscription %s",
                subscription.provider_subscription_id,
            )
            return IGNORED

        if event.period_start:
            subscription.current_period_start = event.period_start
        if event.period_end:
            subscription.current_period_end = event.period_end
        if event.amount_cents:
            subscription.amount_cents = event.amount_cents
        was_live = subscription.status in LIVE_STATUSES
        subscription.status = "active"

        self._history(
            db, subscription.user_id, "renewed", subscription, subscription.tier, subscription.tier
        )
        if not was_live:
            await self._revive(db, subscription)
            user = await db.get(User, subscription.user_id)
            if user is not None:
                user.memora_tier = subscription.tier
        await db.flush()
        return PROCESSED

    async def _on_payment_failed(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        subscription = await self._find(db, event)
        if subscription is None or subscription.status == "canceled":
            return IGNORED

        subscription.status = "past_due"
        self._history(
            db,
            subscription.user_id,
            "payment_failed",
            subscription,
            subscription.tier,
            subscription.tier,
        )
        await db.flush()

        user = await db.get(User, subscription.user_id)
        if user is not None:
            await notification_service.notify(
                "subscription.payment_failed", user.email, provider=event.provider
            )
        return PROCESSED

    async def _on_updated(self, db: AsyncSession, event: SubscriptionEvent) -> str:
        subscription = await self._find(db, event)
        if subscription is None:
            return IGNORED
        if event.status == "canceled":
            return await self._on_canceled(db, event)
        if await self._is_replaced(db, subscription):
            logger.info(
                "Ignoring update for replaced subscription %s",
                subscription.provider_subscription_id,
            )
            return IGNORED

        previous_status = subscription.status
        if event.status in SUBSCRIPTION_STATUSES:
            subscription.status = event.status
        if event.period_start:
            subscription.current_period_start = event.period_start
        if event.period_end:
            subscription.current_period_end = event.period_end
        if event.plan_id:
            subscription.provider_plan_id = event.plan_id
        if event.billing_cycle:
            subscription.billing_cycle = event.billing_cycle
        if event.amount_cents:
            subscription.amount_cents = event.amount_cents

        revived = previous_status not in LIVE_STATUSES and subscription.status in LIVE_STATUSES
        if revived:
            await self._revive(db, subscription)

        user = await db.get(User, subscription.user_id)
        new_tier = self._resolve_tier(event, None)
        if new_tier and new_tier != subscription.tier:
            old_tier = subscription.tier
            subscription.tier = new_tier
            change = "upgraded" if TIER_RANKS[new_tier] > TIER_RANKS.get(old_tier, 0) else "downgraded"
            self._history(db, subscription.user_id, change, subscription, old_tier, new_tier)
            if user is not None and subscription.status in LIVE_STATUSES:
                user.memora_tier = new_tier
        elif revived:
            self._history(
                db,
                subscription.user_id,
                "reactivated",
                subscription,
                user.memora_tier if user else None,
                subscription.tier,
            )
            if user is not None:
                user.memora_tier = subscription.tier

        await db.flush()
        return PROCESSED


# ── Singleton Instance ────────────────────────────────────────────────────
subscription_service = SubscriptionService()
