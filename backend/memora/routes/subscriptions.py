"""
Memora Backend — Subscription Routes (Owner)
==============================================

What:  Starts a checkout and reports the caller's tier and billing history.
Why:   The provider's webhook, not the browser redirect, changes the tier;
       checkout only records which tier the owner chose so the webhook can
       be matched back to them.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.dependencies import PageParams, get_current_owner, pagination_params
from memora.models.user import User
from memora.schemas.common import ErrorResponse, Page
from memora.schemas.subscription import (
    CheckoutRequest,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    SubscriptionHistoryItem,
)
from memora.services.subscription_service import subscription_service

router = APIRouter(
    prefix="/api/subscriptions",
    tags=["Subscriptions"],
    responses={401: {"description": "Missing or invalid access token", "model": ErrorResponse}},
)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Start a subscription checkout",
)
async def start_checkout(
    body: CheckoutRequest,
    owner: User = Depends(get_current_owner),
) -> CheckoutResponse:
    return subscription_service.create_checkout(owner, body)


@router.get(
    "/current",
    response_model=CurrentSubscriptionResponse,
    summary="Current tier and live subscription",
)
async def current_subscription(
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentSubscriptionResponse:
    return await subscription_service.current(db, owner)


@router.get(
    "/history",
    response_model=Page[SubscriptionHistoryItem],
    summary="Subscription history, newest first",
)
async def subscription_history(
    params: PageParams = Depends(pagination_params),
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> Page[SubscriptionHistoryItem]:
    items, meta = await subscription_service.history(db, owner, params.page, params.per_page)
    return Page[SubscriptionHistoryItem](
        data=[SubscriptionHistoryItem.model_validate(item) for item in items],
        pagination=meta,
    )
