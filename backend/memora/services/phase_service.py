"""
Memora Backend — Phase Service (Owner Workflow & Guest Completion)
====================================================================

What:  Owner operations on phases of every kind, plus the guest "complete"
       transition.
Who:   routes/phases.py (owner) and routes/public.py (guest completion,
       phase detail).

Publish toggle:
    draft     → active   (requires a non-empty allowed_emails list)
    active    → draft
    completed → active   (reopen; auto-delete schedule cleared)

Guest completion (one request transaction):
    1. Optionally mark the given media selected (limit enforced per item)
    2. status=completed, completed_at, completed_by_email,
       auto_delete_at = now + auto_delete_days
    3. Stamp the guest token used_at
    4. Notify the owner, best-effort

Ownership:
    A phase owned by someone else answers 404, the same as a missing one,
    so phase ids cannot be probed.
"""

import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.config import settings
from memora.exceptions import DatabaseError, MemoraError, NotFoundError, ValidationError
from memora.models.media import Media, MediaSet
from memora.models.mixins import utcnow
from memora.models.phase import PhaseKind, PhaseMixin, PhaseStatus
from memora.models.user import User
from memora.schemas.common import PaginationMeta
from memora.schemas.phase import (
    MediaCreate,
    MediaSetCreate,
    OwnerPhaseResponse,
    PhaseCreate,
    PhaseResponse,
    PhaseUpdate,
)
from memora.security import hash_secret
from memora.services.guest_access_service import GuestContext, guest_access_service
from memora.services.limit_service import limit_service
from memora.services.media_service import media_service
from memora.services.notification_service import notification_service
from memora.services.pagination import paginate
from memora.services.phase_registry import PhaseCapabilities, capabilities_for

logger = logging.getLogger(__name__)


class PhaseService:

    # ── Responses ─────────────────────────────────────────────────────────

    async def to_response(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase: PhaseMixin,
        for_owner: bool = False,
    ) -> PhaseResponse:
        decision = await limit_service.evaluate(db, caps, phase)
        data = dict(
            id=phase.id,
            kind=caps.kind.value,
            name=phase.name,
            description=phase.description,
            status=phase.status,
            has_password=phase.has_password,
            limit=caps.get_phase_limit(phase),
            selected_count=decision.current_count,
            remaining=decision.remaining,
            completed_at=phase.completed_at,
            created_at=phase.created_at,
        )
        if not for_owner:
            return PhaseResponse(**data)
        return OwnerPhaseResponse(
            **data,
            allowed_emails=list(phase.allowed_emails or []),
            reset_limit_at=caps.get_reset_timestamp(phase),
            completed_by_email=phase.completed_by_email,
            auto_delete_at=phase.auto_delete_at,
            has_download_pin=bool(getattr(phase, "download_pin_hash", None)),
        )

    # ── Owner CRUD ────────────────────────────────────────────────────────

    async def get_owned_phase(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        lock: bool = False,
    ) -> PhaseMixin:
        caps = capabilities_for(kind)
        phase = await guest_access_service.get_phase(db, caps, phase_id, lock=lock)
        if phase.user_id != owner.id:
            raise NotFoundError(resource=caps.label, resource_id=str(phase_id))
        return phase

    async def create_phase(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        data: PhaseCreate,
    ) -> PhaseMixin:
        caps = capabilities_for(kind)
        if data.limit is not None and not caps.has_limit:
            raise ValidationError(
                message=f"{caps.label.capitalize()} phases do not support a limit", field="limit"
            )
        if data.download_pin is not None and not caps.supports_download:
            raise ValidationError(
                message="Only raw file phases support a download PIN", field="download_pin"
            )

        phase = caps.model(
            user_id=owner.id,
            name=data.name,
            description=data.description,
            status=PhaseStatus.DRAFT.value,
            password_hash=hash_secret(data.password) if data.password else None,
            allowed_emails=[str(e).lower() for e in data.allowed_emails],
        )
        caps.set_phase_limit(phase, data.limit)
        if data.download_pin is not None:
            phase.download_pin_hash = hash_secret(data.download_pin)

        db.add(phase)
        await db.flush()
        logger.info("%s %s created by user %s", caps.label, phase.id, owner.id)
        return phase

    async def list_phases(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        page: int,
        per_page: int,
        status: Optional[str] = None,
    ) -> Tuple[List[PhaseMixin], PaginationMeta]:
        caps = capabilities_for(kind)
        model = caps.model
        try:
            query = (
                select(model)
                .where(model.user_id == owner.id, model.deleted_at.is_(None))
                .order_by(model.created_at.desc())
            )
            if status:
                query = query.where(model.status == status)
            return await paginate(db, query, page, per_page)
        except MemoraError:
            raise
        except Exception as e:
            logger.error("Database error listing %s phases: %s", caps.label, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve phases. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def update_phase(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        data: PhaseUpdate,
    ) -> PhaseMixin:
        caps = capabilities_for(kind)
        phase = await self.get_owned_phase(db, owner, kind, phase_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes and changes["name"] is not None:
            phase.name = changes["name"]
        if "description" in changes:
            phase.description = changes["description"]
        if "password" in changes:
            password = changes["password"]
            phase.password_hash = hash_secret(password) if password else None
        if "allowed_emails" in changes:
            phase.allowed_emails = [str(e).lower() for e in (changes["allowed_emails"] or [])]
        if "limit" in changes:
            if not caps.has_limit:
                raise ValidationError(
                    message=f"{caps.label.capitalize()} phases do not support a limit",
                    field="limit",
                )
            caps.set_phase_limit(phase, changes["limit"])
        if "download_pin" in changes:
            if not caps.supports_download:
                raise ValidationError(
                    message="Only raw file phases support a download PIN", field="download_pin"
                )
            pin = changes["download_pin"]
            phase.download_pin_hash = hash_secret(pin) if pin else None

        await db.flush()
        return phase

    async def delete_phase(
        self, db: AsyncSession, owner: User, kind: PhaseKind, phase_id: uuid.UUID
    ) -> None:
        phase = await self.get_owned_phase(db, owner, kind, phase_id)
        phase.deleted_at = utcnow()
        await db.flush()
        logger.info("%s %s soft-deleted", capabilities_for(kind).label, phase.id)

    async def publish(
        self, db: AsyncSession, owner: User, kind: PhaseKind, phase_id: uuid.UUID
    ) -> PhaseMixin:
        phase = await self.get_owned_phase(db, owner, kind, phase_id)
        previous = phase.status

        if previous == PhaseStatus.DRAFT.value:
            if not phase.allowed_emails:
                raise ValidationError(
                    message="Add at least one allowed email before publishing",
                    field="allowed_emails",
                )
            phase.status = PhaseStatus.ACTIVE.value
        elif previous == PhaseStatus.ACTIVE.value:
            phase.status = PhaseStatus.DRAFT.value
        else:
            phase.status = PhaseStatus.ACTIVE.value
            phase.auto_delete_at = None

        await db.flush()
        logger.info("Phase %s status %s → %s", phase.id, previous, phase.status)
        return phase

    async def reset_limit(
        self, db: AsyncSession, owner: User, kind: PhaseKind, phase_id: uuid.UUID
    ) -> PhaseMixin:
        phase = await self.get_owned_phase(db, owner, kind, phase_id, lock=True)
        await limit_service.reset_limit(db, capabilities_for(kind), phase)
        return phase

    # ── Sets & media ──────────────────────────────────────────────────────

    async def create_set(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        data: MediaSetCreate,
    ) -> MediaSet:
        caps = capabilities_for(kind)
        phase = await self.get_owned_phase(db, owner, kind, phase_id)
        if data.limit is not None and not caps.has_limit:
            raise ValidationError(
                message=f"{caps.label.capitalize()} sets do not support a limit", field="limit"
            )
        media_set = MediaSet(name=data.name, sort_order=data.sort_order)
        setattr(media_set, caps.set_fk, phase.id)
        caps.set_set_limit(media_set, data.limit)
        db.add(media_set)
        await db.flush()
        return media_set

    async def add_media(
        self,
        db: AsyncSession,
        owner: User,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        set_id: uuid.UUID,
        data: MediaCreate,
    ) -> Media:
        caps = capabilities_for(kind)
        phase = await self.get_owned_phase(db, owner, kind, phase_id)
        media_set = await media_service.get_set(db, caps, phase, set_id)
        media = Media(set_id=media_set.id, filename=data.filename, file_path=data.file_path)
        db.add(media)
        await db.flush()
        return media

    # ── Guest completion ──────────────────────────────────────────────────

    async def complete(
        self,
        db: AsyncSession,
        ctx: GuestContext,
        media_ids: Optional[List[uuid.UUID]] = None,
    ) -> PhaseMixin:
        """Completes the phase on behalf of the guest (see module docstring)."""
        phase = ctx.phase
        if media_ids:
            await media_service.select_many(db, ctx, media_ids)

        now = utcnow()
        phase.status = PhaseStatus.COMPLETED.value
        phase.completed_at = now
        phase.completed_by_email = ctx.email
        phase.auto_delete_at = now + timedelta(days=settings.auto_delete_days)
        await guest_access_service.mark_used(db, ctx.token)
        await db.flush()
        logger.info("%s %s completed by %s", ctx.caps.label, phase.id, ctx.email)

        owner = await db.get(User, phase.user_id)
        if owner is not None:
            await notification_service.notify(
                "phase.completed",
                owner.email,
                phase_id=str(phase.id),
                phase_kind=ctx.caps.kind.value,
                phase_name=phase.name,
                completed_by=ctx.email,
            )
        return phase


# ── Singleton Instance ────────────────────────────────────────────────────
phase_service = PhaseService()
