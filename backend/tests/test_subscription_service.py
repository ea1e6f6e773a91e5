"""
Memora Backend — Subscription Reconciliation Tests
====================================================

What we test:
    ✅ subscription_created: new row, history, user tier; repeats are duplicates
    ✅ Tier from metadata, PLAN_TIERS, or the pending checkout
    ✅ Unknown users and unknown plans are ignored, not failed
    ✅ Cancellation drops the user back to starter; repeats are duplicates
    ✅ Renewals and failed payments update the matching subscription
    ✅ A replaced subscription never becomes live again
"""

import pytest
from sqlalchemy import func, select

from memora.models.subscription import LIVE_STATUSES, Subscription, SubscriptionHistory
from memora.models.user import User
from memora.schemas.subscription import CheckoutRequest
from memora.services.cache_service import TTLCache
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SubscriptionEvent,
)
from memora.services.subscription_service import (
    DUPLICATE,
    IGNORED,
    PROCESSED,
    SubscriptionService,
    pending_checkout_key,
    tier_change,
)


async def seed_user(db, email="owner@example.com"):
    user = User(email=email, name="Owner")
    db.add(user)
    await db.flush()
    return user


def created_event(user=None, **overrides):
    fields = dict(
        provider="paystack",
        type=SUBSCRIPTION_CREATED,
        provider_event_type="subscription.create",
        subscription_id="SUB_1",
        customer_id="CUS_1",
        customer_email=user.email if user else "owner@example.com",
        plan_id="PLN_pro_monthly",
        amount_cents=500000,
        currency="NGN",
    )
    fields.update(overrides)
    return SubscriptionEvent(**fields)


async def history_types(db, user):
    result = await db.execute(
        select(SubscriptionHistory.event_type)
        .where(SubscriptionHistory.user_id == user.id)
        .order_by(SubscriptionHistory.created_at)
    )
    return list(result.scalars().all())


class TestTierChange:

    def test_from_starter_is_created(self):
        assert tier_change("starter", "pro") == "created"
        assert tier_change(None, "studio") == "created"

    def test_up_and_down(self):
        assert tier_change("pro", "studio") == "upgraded"
        assert tier_change("business", "pro") == "downgraded"


class TestSubscriptionCreated:

    def setup_method(self):
        self.service = SubscriptionService(pending_cache=TTLCache())

    @pytest.mark.asyncio
    async def test_creates_subscription_and_upgrades_user(self, db_session):
        user = await seed_user(db_session)

        outcome = await self.service.handle_event(db_session, created_event(user))

        assert outcome == PROCESSED
        assert user.memora_tier == "pro"
        subscription = await self.service.get_live_subscription(db_session, user.id)
        assert subscription.provider_subscription_id == "SUB_1"
        assert subscription.tier == "pro"
        assert subscription.currency == "NGN"
        assert await history_types(db_session, user) == ["created"]

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(self, db_session):
        user = await seed_user(db_session)
        await self.service.handle_event(db_session, created_event(user))

        outcome = await self.service.handle_event(db_session, created_event(user))

        assert outcome == DUPLICATE
        count = await db_session.scalar(select(func.count(Subscription.id)))
        assert count == 1

    @pytest.mark.asyncio
    async def test_metadata_tier_wins_over_plan(self, db_session):
        user = await seed_user(db_session)
        event = created_event(user, tier="studio", user_id=str(user.id))

        await self.service.handle_event(db_session, event)
        assert user.memora_tier == "studio"

    @pytest.mark.asyncio
    async def test_pending_checkout_supplies_tier(self, db_session):
        user = await seed_user(db_session)
        self.service.create_checkout(user, CheckoutRequest(provider="paystack", tier="studio"))
        key = pending_checkout_key("paystack", user.email)
        assert self.service.cache.has(key)

        outcome = await self.service.handle_event(
            db_session, created_event(user, plan_id="PLN_unmapped")
        )

        assert outcome == PROCESSED
        assert user.memora_tier == "studio"
        assert self.service.cache.has(key) is False

    @pytest.mark.asyncio
    async def test_unknown_user_is_ignored(self, db_session):
        event = created_event(customer_email="nobody@example.com")
        assert await self.service.handle_event(db_session, event) == IGNORED

    @pytest.mark.asyncio
    async def test_unknown_plan_is_ignored(self, db_session):
        user = await seed_user(db_session)
        outcome = await self.service.handle_event(
            db_session, created_event(user, plan_id="PLN_unmapped")
        )
        assert outcome == IGNORED
        assert user.memora_tier == "starter"

    @pytest.mark.asyncio
    async def test_new_subscription_supersedes_the_live_one(self, db_session):
        user = await seed_user(db_session)
        await self.service.handle_event(db_session, created_event(user))
        await self.service.handle_event(
            db_session, created_event(user, subscription_id="SUB_2", tier="studio")
        )

        live = await self.service.get_live_subscription(db_session, user.id)
        assert live.provider_subscription_id == "SUB_2"
        assert user.memora_tier == "studio"
        assert await history_types(db_session, user) == ["created", "upgraded"]


class TestSubscriptionLifecycle:

    def setup_method(self):
        self.service = SubscriptionService(pending_cache=TTLCache())

    async def _subscribe(self, db):
        user = await seed_user(db)
        await self.service.handle_event(db, created_event(user))
        return user

    @pytest.mark.asyncio
    async def test_cancel_returns_user_to_starter(self, db_session):
        user = await self._subscribe(db_session)
        cancel = created_event(
            user, type=SUBSCRIPTION_CANCELED, provider_event_type="subscription.disable"
        )

        assert await self.service.handle_event(db_session, cancel) == PROCESSED
        assert user.memora_tier == "starter"
        assert await self.service.get_live_subscription(db_session, user.id) is None

        assert await self.service.handle_event(db_session, cancel) == DUPLICATE
        assert await history_types(db_session, user) == ["created", "cancelled"]

    @pytest.mark.asyncio
    async def test_cancel_of_unknown_subscription_is_ignored(self, db_session):
        event = created_event(
            type=SUBSCRIPTION_CANCELED,
            subscription_id="SUB_missing",
            customer_id=None,
            customer_email=None,
        )
        assert await self.service.handle_event(db_session, event) == IGNORED

    @pytest.mark.asyncio
    async def test_payment_failed_then_renewed(self, db_session):
        user = await self._subscribe(db_session)

        failed = created_event(user, type=PAYMENT_FAILED, provider_event_type="invoice.payment_failed")
        assert await self.service.handle_event(db_session, failed) == PROCESSED
        subscription = (
            await db_session.execute(select(Subscription).where(Subscription.user_id == user.id))
        ).scalar_one()
        assert subscription.status == "past_due"

        renewed = created_event(
            user,
            type=PAYMENT_SUCCEEDED,
            provider_event_type="charge.success",
            amount_cents=600000,
        )
        assert await self.service.handle_event(db_session, renewed) == PROCESSED
        assert subscription.status == "active"
        assert subscription.amount_cents == 600000
        assert await history_types(db_session, user) == ["created", "payment_failed", "renewed"]

    @pytest.mark.asyncio
    async def test_update_to_mapped_plan_changes_tier(self, db_session):
        user = await self._subscribe(db_session)

        updated = created_event(
            user,
            type=SUBSCRIPTION_UPDATED,
            provider_event_type="subscription.update",
            plan_id="price_studio",
            status="active",
        )
        assert await self.service.handle_event(db_session, updated) == PROCESSED
        assert user.memora_tier == "studio"
        assert await history_types(db_session, user) == ["created", "upgraded"]


async def live_count(db, user):
    return await db.scalar(
        select(func.count(Subscription.id)).where(
            Subscription.user_id == user.id, Subscription.status.in_(LIVE_STATUSES)
        )
    )


class TestReplacedSubscription:
    """
    A user who switched plans keeps exactly one live subscription.

    ✅ Late renewals of the old subscription are ignored
    ✅ Updates reporting the old subscription as active are ignored
    ✅ Failed payments never touch a canceled subscription
    ✅ A canceled subscription with no successor can come back
    """

    def setup_method(self):
        self.service = SubscriptionService(pending_cache=TTLCache())

    async def _switch_plans(self, db):
        user = await seed_user(db)
        await self.service.handle_event(db, created_event(user, subscription_id="SUB_A"))
        await self.service.handle_event(
            db, created_event(user, subscription_id="SUB_B", tier="studio")
        )
        return user

    @pytest.mark.asyncio
    async def test_renewal_of_old_subscription_is_ignored(self, db_session):
        user = await self._switch_plans(db_session)

        renewal = created_event(
            user,
            type=PAYMENT_SUCCEEDED,
            provider_event_type="charge.success",
            subscription_id="SUB_A",
        )

        assert await self.service.handle_event(db_session, renewal) == IGNORED
        assert await live_count(db_session, user) == 1
        live = await self.service.get_live_subscription(db_session, user.id)
        assert live.provider_subscription_id == "SUB_B"
        assert user.memora_tier == "studio"

    @pytest.mark.asyncio
    async def test_active_update_of_old_subscription_is_ignored(self, db_session):
        user = await self._switch_plans(db_session)

        updated = created_event(
            user,
            type=SUBSCRIPTION_UPDATED,
            provider_event_type="subscription.update",
            subscription_id="SUB_A",
            status="active",
        )

        assert await self.service.handle_event(db_session, updated) == IGNORED
        assert await live_count(db_session, user) == 1
        assert user.memora_tier == "studio"

    @pytest.mark.asyncio
    async def test_failed_payment_of_old_subscription_is_ignored(self, db_session):
        user = await self._switch_plans(db_session)

        failed = created_event(
            user,
            type=PAYMENT_FAILED,
            provider_event_type="invoice.payment_failed",
            subscription_id="SUB_A",
        )

        assert await self.service.handle_event(db_session, failed) == IGNORED
        old = (
            await db_session.execute(
                select(Subscription).where(Subscription.provider_subscription_id == "SUB_A")
            )
        ).scalar_one()
        assert old.status == "canceled"

    @pytest.mark.asyncio
    async def test_canceled_subscription_without_successor_comes_back(self, db_session):
        user = await seed_user(db_session)
        await self.service.handle_event(db_session, created_event(user))
        await self.service.handle_event(
            db_session,
            created_event(user, type=SUBSCRIPTION_CANCELED, provider_event_type="subscription.disable"),
        )
        assert user.memora_tier == "starter"

        renewal = created_event(user, type=PAYMENT_SUCCEEDED, provider_event_type="charge.success")

        assert await self.service.handle_event(db_session, renewal) == PROCESSED
        live = await self.service.get_live_subscription(db_session, user.id)
        assert live.provider_subscription_id == "SUB_1"
        assert live.canceled_at is None
        assert user.memora_tier == "pro"
