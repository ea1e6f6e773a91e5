"""
Memora Backend — Media Service (Guest Mutations & Listings)
=============================================================

What:  Selection toggling, proofing approve/reject, set and media listings
       and selected-filename export.
Who:   Public guest routes and the owner phase routes (listings).

Toggle flow (PATCH .../media/{id}/toggle-selected):
    ┌──────────────┐    ┌────────────────┐    ┌───────────────┐    ┌─────────┐
    │ resolve token│───▶│ lock phase row │───▶│ limit resolver│───▶│  write  │
    │ (active only)│    │ (FOR UPDATE)   │    │ (select only) │    │ + flush │
    └──────────────┘    └────────────────┘    └───────────────┘    └─────────┘
    Unselecting never consults the limit and clears selected_at.
"""

import logging
import uuid
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.exceptions import AccessDeniedError, ErrorCode, NotFoundError
from memora.models.media import Media, MediaSet
from memora.models.mixins import utcnow
from memora.models.phase import PhaseMixin
from memora.schemas.common import PaginationMeta
from memora.schemas.phase import MediaResponse, MediaSetResponse, ToggleSelectedResponse
from memora.services.guest_access_service import GuestContext
from memora.services.limit_service import LimitDecision, limit_service
from memora.services.pagination import paginate
from memora.services.phase_registry import PhaseCapabilities

logger = logging.getLogger(__name__)


class MediaService:

    # ── Lookups ───────────────────────────────────────────────────────────

    async def get_set(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        set_id: uuid.UUID,
    ) -> MediaSet:
        result = await db.execute(
            select(MediaSet).where(MediaSet.id == set_id, caps.set_fk_column == phase.id)
        )
        media_set = result.scalar_one_or_none()
        if media_set is None:
            raise NotFoundError(resource="media set", resource_id=str(set_id))
        return media_set

    async def get_media_in_phase(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media_id: uuid.UUID,
    ) -> Tuple[Media, MediaSet]:
        """
        Raises:
            NotFoundError: Media does not exist or is deleted
            AccessDeniedError (MEDIA_NOT_IN_PHASE): Media belongs to another phase
        """
        result = await db.execute(
            select(Media, MediaSet)
            .join(MediaSet, Media.set_id == MediaSet.id)
            .where(Media.id == media_id, Media.deleted_at.is_(None))
        )
        row = result.first()
        if row is None:
            raise NotFoundError(resource="media", resource_id=str(media_id))

        media, media_set = row
        if getattr(media_set, caps.set_fk) != phase.id:
            raise AccessDeniedError(
                message=f"This media item does not belong to this {caps.label}",
                code=ErrorCode.MEDIA_NOT_IN_PHASE,
            )
        return media, media_set

    # ── Selection ─────────────────────────────────────────────────────────

    async def _select(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        media: Media,
        media_set: MediaSet,
    ) -> None:
        await limit_service.assert_can_select(db, caps, phase, media_set)
        media.is_selected = True
        media.selected_at = utcnow()
        await db.flush()

    async def toggle_selected(
        self,
        db: AsyncSession,
        ctx: GuestContext,
        media_id: uuid.UUID,
    ) -> ToggleSelectedResponse:
        """
        Flips is_selected on one media item.

        The caller resolves `ctx` with require_active=True and lock_phase=True,
        so the count-then-write below runs under the phase row lock.

        Raises:
            LimitReachedError: Selecting would exceed the effective limit
        """
        caps, phase = ctx.caps, ctx.phase
        media, media_set = await self.get_media_in_phase(db, caps, phase, media_id)

        if media.is_selected:
            media.is_selected = False
            media.selected_at = None
            await db.flush()
            logger.info("Media %s unselected by %s", media.id, ctx.email)
        else:
            await self._select(db, caps, phase, media, media_set)
            logger.info("Media %s selected by %s", media.id, ctx.email)

        decision: LimitDecision = await limit_service.evaluate(db, caps, phase, media_set)
        return ToggleSelectedResponse(
            media=MediaResponse.model_validate(media),
            limit=decision.limit,
            remaining=decision.remaining,
        )

    async def select_many(
        self,
        db: AsyncSession,
        ctx: GuestContext,
        media_ids: Iterable[uuid.UUID],
    ) -> int:
        """Marks each not-yet-selected item selected, enforcing the limit per item."""
        caps, phase = ctx.caps, ctx.phase
        newly_selected = 0
        for media_id in dict.fromkeys(media_ids):
            media, media_set = await self.get_media_in_phase(db, caps, phase, media_id)
            if media.is_selected:
                continue
            await self._select(db, caps, phase, media, media_set)
            newly_selected += 1
        return newly_selected

    # ── Proofing review ───────────────────────────────────────────────────

    def _require_review(self, caps: PhaseCapabilities) -> None:
        if not caps.supports_review:
            raise NotFoundError(resource=f"{caps.label} review action")

    async def approve(self, db: AsyncSession, ctx: GuestContext, media_id: uuid.UUID) -> Media:
        """
        Raises:
            AccessDeniedError (MEDIA_REJECTED): The item was already rejected
        """
        self._require_review(ctx.caps)
        media, _ = await self.get_media_in_phase(db, ctx.caps, ctx.phase, media_id)
        if media.is_rejected:
            raise AccessDeniedError(
                message="A rejected media item cannot be approved",
                code=ErrorCode.MEDIA_REJECTED,
            )
        media.is_completed = True
        await db.flush()
        logger.info("Media %s approved by %s", media.id, ctx.email)
        return media

    async def reject(self, db: AsyncSession, ctx: GuestContext, media_id: uuid.UUID) -> Media:
        self._require_review(ctx.caps)
        media, _ = await self.get_media_in_phase(db, ctx.caps, ctx.phase, media_id)
        media.is_rejected = True
        media.is_completed = False
        await db.flush()
        logger.info("Media %s rejected by %s", media.id, ctx.email)
        return media

    # ── Listings ──────────────────────────────────────────────────────────

    async def list_sets(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
    ) -> List[MediaSetResponse]:
        result = await db.execute(
            select(MediaSet)
            .where(caps.set_fk_column == phase.id)
            .order_by(MediaSet.sort_order, MediaSet.created_at)
        )
        sets = list(result.scalars().all())
        if not sets:
            return []

        counts_result = await db.execute(
            select(
                Media.set_id,
                func.count(Media.id),
                func.sum(case((Media.is_selected.is_(True), 1), else_=0)),
            )
            .where(Media.set_id.in_([s.id for s in sets]), Media.deleted_at.is_(None))
            .group_by(Media.set_id)
        )
        counts = {set_id: (total, selected or 0) for set_id, total, selected in counts_result.all()}

        return [
            MediaSetResponse(
                id=s.id,
                name=s.name,
                sort_order=s.sort_order,
                limit=caps.get_set_limit(s),
                media_count=counts.get(s.id, (0, 0))[0],
                selected_count=counts.get(s.id, (0, 0))[1],
            )
            for s in sets
        ]

    async def list_media(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        set_id: uuid.UUID,
        page: int,
        per_page: int,
    ) -> Tuple[List[MediaResponse], PaginationMeta]:
        await self.get_set(db, caps, phase, set_id)
        query = (
            select(Media)
            .where(Media.set_id == set_id, Media.deleted_at.is_(None))
            .order_by(Media.created_at, Media.filename)
        )
        items, meta = await paginate(db, query, page, per_page)
        return [MediaResponse.model_validate(m) for m in items], meta

    async def selected_filenames(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        set_id: Optional[uuid.UUID] = None,
    ) -> List[str]:
        query = (
            select(Media.filename)
            .join(MediaSet, Media.set_id == MediaSet.id)
            .where(
                caps.set_fk_column == phase.id,
                Media.is_selected.is_(True),
                Media.deleted_at.is_(None),
            )
            .order_by(Media.filename)
        )
        if set_id is not None:
            await self.get_set(db, caps, phase, set_id)
            query = query.where(MediaSet.id == set_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def media_for_download(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        set_id: Optional[uuid.UUID] = None,
    ) -> List[Media]:
        """Selected media of the phase; every media item when nothing is selected."""
        base = (
            select(Media)
            .join(MediaSet, Media.set_id == MediaSet.id)
            .where(caps.set_fk_column == phase.id, Media.deleted_at.is_(None))
            .order_by(Media.filename)
        )
        if set_id is not None:
            await self.get_set(db, caps, phase, set_id)
            base = base.where(MediaSet.id == set_id)

        selected = await db.execute(base.where(Media.is_selected.is_(True)))
        items = list(selected.scalars().all())
        if items:
            return items
        everything = await db.execute(base)
        return list(everything.scalars().all())


# ── Singleton Instance ────────────────────────────────────────────────────
media_service = MediaService()
