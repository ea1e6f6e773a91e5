"""
Memora Backend — Payment Provider Webhooks
============================================

What:  POST /api/webhooks/{provider} for stripe, paystack, flutterwave, paypal.

Flow:
    ┌───────────┐    ┌──────────────┐    ┌───────────┐    ┌──────────────┐
    │ raw body  │───▶│ verify       │───▶│ normalize │───▶│ reconcile    │
    │ + headers │    │ signature    │    │ event     │    │ (one txn)    │
    └───────────┘    └──────────────┘    └───────────┘    └──────────────┘
    Every delivery is recorded in webhook_events. On failure the
    reconciliation work is rolled back, the failed delivery is recorded and
    committed on its own, and the error envelope is returned so the provider
    retries. Unexpected errors are recorded the same way with a 500.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.exceptions import MemoraError
from memora.schemas.common import ErrorResponse
from memora.schemas.subscription import WebhookAck
from memora.services.payments import get_provider
from memora.services.subscription_service import IGNORED, subscription_service
from memora.services.webhook_event_service import webhook_event_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


async def _record_failure(
    db: AsyncSession,
    provider: str,
    response_code: int,
    event_type: Optional[str],
    event_id: Optional[str],
    message: str,
) -> None:
    await db.rollback()
    recorded = await webhook_event_service.record(
        db,
        provider=provider,
        status="failed",
        response_code=response_code,
        event_type=event_type,
        event_id=event_id,
        error_message=message,
    )
    if recorded:
        await db.commit()
    else:
        await db.rollback()


@router.post(
    "/{provider}",
    response_model=WebhookAck,
    responses={
        400: {"description": "Signature verification failed", "model": ErrorResponse},
        404: {"description": "Unsupported provider", "model": ErrorResponse},
        500: {"description": "Unexpected processing failure", "model": ErrorResponse},
        502: {"description": "Provider verification unreachable", "model": ErrorResponse},
        503: {"description": "Verification circuit open", "model": ErrorResponse},
    },
    summary="Receive a payment provider webhook",
)
async def receive_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> WebhookAck:
    adapter = get_provider(provider)
    raw_body = await request.body()
    event_type = None
    event_id = None

    try:
        payload = await adapter.verify_signature(raw_body, request.headers)
        event_type = adapter.event_type_of(payload)
        event_id = adapter.event_id_of(payload)

        event = adapter.normalize(payload)
        outcome = IGNORED if event is None else await subscription_service.handle_event(db, event)
    except MemoraError as exc:
        await _record_failure(db, adapter.name, exc.status_code, event_type, event_id, exc.message)
        raise
    except Exception as exc:
        logger.error(
            "%s webhook %s failed unexpectedly: %s", adapter.name, event_type, str(exc), exc_info=True
        )
        await _record_failure(db, adapter.name, 500, event_type, event_id, type(exc).__name__)
        raise

    await webhook_event_service.record(
        db,
        provider=adapter.name,
        status=outcome,
        response_code=200,
        event_type=event_type,
        event_id=event_id,
    )
    return WebhookAck(received=True, status=outcome)
