"""
Memora Backend — Webhook Delivery Log
=======================================

What:  Writes one webhook_events row per received webhook, failures included.
How:   Best-effort: a failure to record is logged and never changes the
       response the provider receives.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memora.models.subscription import WebhookEvent

logger = logging.getLogger(__name__)


class WebhookEventService:

    async def record(
        self,
        db: AsyncSession,
        provider: str,
        status: str,
        response_code: int,
        event_type: Optional[str] = None,
        event_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        try:
            db.add(
                WebhookEvent(
                    provider=provider,
                    event_type=event_type,
                    event_id=event_id,
                    status=status,
                    response_code=response_code,
                    error_message=error_message,
                )
            )
            await db.flush()
            return True
        except Exception as e:
            logger.warning(
                "Failed to record %s webhook (%s): %s", provider, event_type, str(e), exc_info=True
            )
            return False


# ── Singleton Instance ────────────────────────────────────────────────────
webhook_event_service = WebhookEventService()
