"""
Memora Backend — Retention Service
====================================

What:  Clears out media the guest did not keep once a completed phase passes
       its auto_delete_at date.
Who:   The maintenance loop started in main.py's lifespan.

Sweep (per phase kind):
    phases with auto_delete_at <= now and not deleted
        → soft-delete media that are not selected (deleted_at = now)
        → clear auto_delete_at so the phase is not swept again
    The phase, its sets and the selected media stay intact.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from memora.models.media import Media, MediaSet
from memora.models.mixins import utcnow
from memora.models.phase import PhaseKind
from memora.services.phase_registry import capabilities_for

logger = logging.getLogger(__name__)


class RetentionService:

    async def purge_expired_phases(
        self, db: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """Returns the number of media items soft-deleted."""
        now = now or utcnow()
        removed = 0
        for kind in PhaseKind:
            caps = capabilities_for(kind)
            model = caps.model
            result = await db.execute(
                select(model).where(
                    model.auto_delete_at.is_not(None),
                    model.auto_delete_at <= now,
                    model.deleted_at.is_(None),
                )
            )
            for phase in result.scalars().all():
                set_ids = select(MediaSet.id).where(caps.set_fk_column == phase.id)
                outcome = await db.execute(
                    update(Media)
                    .where(
                        Media.set_id.in_(set_ids),
                        Media.is_selected.is_(False),
                        Media.deleted_at.is_(None),
                    )
                    .values(deleted_at=now)
                    .execution_options(synchronize_session="fetch")
                )
                count = outcome.rowcount or 0
                phase.auto_delete_at = None
                removed += count
                logger.info(
                    "Auto-delete: %s %s lost %d unselected media item(s)",
                    caps.label,
                    phase.id,
                    count,
                )
        await db.flush()
        return removed


# ── Singleton Instance ────────────────────────────────────────────────────
retention_service = RetentionService()
