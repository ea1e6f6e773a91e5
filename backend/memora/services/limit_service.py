"""
Memora Backend — Limit Resolver
=================================

What:  Decides whether one more media item may be marked selected in a
       phase/set, and restarts the counting window on owner reset.
Why:   Guests choose a bounded number of photos (or raw files); the owner
       can grant a fresh quota without clearing earlier selections.
How:   Generic over phase kind through `PhaseCapabilities`.

Precedence (highest wins):
    1. MediaSet limit, if set and non-null   → counted within that set
    2. Phase limit, if set and non-null      → counted across the phase
    3. Unlimited

Counting window:
    Selected, non-deleted media. When reset_*_limit_at = T is set, only
    selections with selected_at >= T count.

Decision:
    allowed ⇔ limit is None or current_count < limit

Concurrency:
    Callers hold a row lock on the phase (MediaService locks it with
    SELECT ... FOR UPDATE) so two guests cannot both pass the check for the
    last free slot.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from memora.exceptions import ConflictError, LimitReachedError, ValidationError
from memora.models.media import MediaSet
from memora.models.mixins import utcnow
from memora.models.phase import PhaseMixin, PhaseStatus
from memora.services.phase_registry import PhaseCapabilities

logger = logging.getLogger(__name__)

SCOPE_SET = "set"
SCOPE_PHASE = "phase"


@dataclass(frozen=True)
class LimitDecision:
    limit: Optional[int]
    current_count: int
    scope: Optional[str]

    @property
    def is_unlimited(self) -> bool:
        return self.limit is None

    @property
    def allowed(self) -> bool:
        return self.limit is None or self.current_count < self.limit

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.current_count)


class LimitService:
    """Generic limit resolver shared by every phase kind that has a limit."""

    def effective_limit(
        self,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media_set: Optional[MediaSet] = None,
    ) -> Tuple[Optional[int], Optional[str]]:
        """Returns (limit, scope); (None, None) means unlimited."""
        set_limit = caps.get_set_limit(media_set)
        if set_limit is not None:
            return set_limit, SCOPE_SET
        phase_limit = caps.get_phase_limit(phase)
        if phase_limit is not None:
            return phase_limit, SCOPE_PHASE
        return None, None

    async def evaluate(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media_set: Optional[MediaSet] = None,
    ) -> LimitDecision:
        limit, scope = self.effective_limit(caps, phase, media_set)
        set_id = media_set.id if scope == SCOPE_SET and media_set is not None else None
        current = await caps.count_selected(db, phase, set_id=set_id)
        return LimitDecision(limit=limit, current_count=current, scope=scope)

    async def assert_can_select(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media_set: Optional[MediaSet] = None,
    ) -> LimitDecision:
        """
        Raises:
            LimitReachedError: current_count >= effective limit
        """
        decision = await self.evaluate(db, caps, phase, media_set)
        if not decision.allowed:
            logger.info(
                "%s limit reached for phase %s (%s scope): %d/%d",
                caps.label,
                phase.id,
                decision.scope,
                decision.current_count,
                decision.limit,
            )
            raise LimitReachedError(
                message=caps.limit_reached_message,
                limit=decision.limit,
                current_count=decision.current_count,
                code=caps.limit_reached_code,
            )
        return decision

    async def remaining(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media_set: Optional[MediaSet] = None,
    ) -> Optional[int]:
        """max(0, limit - count), or None when unlimited."""
        decision = await self.evaluate(db, caps, phase, media_set)
        return decision.remaining

    async def reset_limit(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
    ) -> datetime:
        """
        Restarts the counting window at now. Earlier selections are kept.

        Raises:
            ValidationError: The phase kind has no limit
            ConflictError: The phase is still a draft
        """
        if not caps.has_limit:
            raise ValidationError(
                message=f"{caps.label.capitalize()} phases have no limit to reset",
                field="limit",
            )
        if phase.status == PhaseStatus.DRAFT.value:
            raise ConflictError(
                message="The limit can only be reset on an active or completed phase",
                context={"status": phase.status},
            )

        now = utcnow()
        caps.set_reset_timestamp(phase, now)
        await db.flush()
        logger.info("%s limit reset for phase %s at %s", caps.label, phase.id, now.isoformat())
        return now


# ── Singleton Instance ────────────────────────────────────────────────────
limit_service = LimitService()
