"""
Memora Backend — Phase Capability Registry
============================================

What:  One descriptor per phase kind naming the model, the media_sets FK,
       the limit and reset columns, and the error codes of that kind.
Why:   Selection and RawFile limit logic is identical except for column
       names. Services stay generic and ask the descriptor instead of
       branching on kind.
How:   `capabilities_for(kind)` returns a frozen `PhaseCapabilities`.

Capability surface (used by LimitService):
    get_set_limit(media_set)        → set-level override or None
    get_phase_limit(phase)          → phase-level default or None
    get_reset_timestamp(phase)      → start of the counting window or None
    count_selected(db, phase, ...)  → selected, non-deleted media in window
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Type

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.exceptions import ErrorCode
from memora.models.media import Media, MediaSet
from memora.models.phase import PhaseKind, PhaseMixin, Proofing, RawFile, Selection


@dataclass(frozen=True)
class PhaseCapabilities:
    kind: PhaseKind
    model: Type[PhaseMixin]
    label: str
    code_prefix: str
    set_fk: str
    limit_attr: Optional[str] = None
    reset_attr: Optional[str] = None
    supports_download: bool = False
    supports_review: bool = False

    @property
    def has_limit(self) -> bool:
        return self.limit_attr is not None

    @property
    def set_fk_column(self):
        return getattr(MediaSet, self.set_fk)

    # ── Error codes ───────────────────────────────────────────────────────
    @property
    def not_accessible_code(self) -> ErrorCode:
        return ErrorCode(f"{self.code_prefix}_NOT_ACCESSIBLE")

    @property
    def not_active_code(self) -> ErrorCode:
        return ErrorCode(f"{self.code_prefix}_NOT_ACTIVE")

    @property
    def limit_reached_code(self) -> ErrorCode:
        return ErrorCode(f"{self.code_prefix}_LIMIT_REACHED")

    @property
    def limit_reached_message(self) -> str:
        return f"{self.label.capitalize()} limit reached. Cannot select more items."

    # ── Limits ────────────────────────────────────────────────────────────
    def get_set_limit(self, media_set: Optional[MediaSet]) -> Optional[int]:
        if media_set is None or not self.has_limit:
            return None
        return getattr(media_set, self.limit_attr)

    def set_set_limit(self, media_set: MediaSet, value: Optional[int]) -> None:
        if self.has_limit:
            setattr(media_set, self.limit_attr, value)

    def get_phase_limit(self, phase: PhaseMixin) -> Optional[int]:
        if not self.has_limit:
            return None
        return getattr(phase, self.limit_attr)

    def set_phase_limit(self, phase: PhaseMixin, value: Optional[int]) -> None:
        if self.has_limit:
            setattr(phase, self.limit_attr, value)

    def get_reset_timestamp(self, phase: PhaseMixin) -> Optional[datetime]:
        if self.reset_attr is None:
            return None
        return getattr(phase, self.reset_attr)

    def set_reset_timestamp(self, phase: PhaseMixin, value: datetime) -> None:
        if self.reset_attr is None:
            raise AttributeError(f"{self.label} phases have no limit to reset")
        setattr(phase, self.reset_attr, value)

    async def count_selected(
        self,
        db: AsyncSession,
        phase: PhaseMixin,
        set_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Counts selected, non-deleted media of the phase (optionally one set).

        With a reset timestamp only selections made at or after it count;
        earlier selections stay selected but no longer use up the quota.
        """
        query = (
            select(func.count(Media.id))
            .join(MediaSet, Media.set_id == MediaSet.id)
            .where(
                self.set_fk_column == phase.id,
                Media.is_selected.is_(True),
                Media.deleted_at.is_(None),
            )
        )
        if set_id is not None:
            query = query.where(MediaSet.id == set_id)

        reset_at = self.get_reset_timestamp(phase)
        if reset_at is not None:
            query = query.where(Media.selected_at >= reset_at)

        result = await db.execute(query)
        return result.scalar() or 0


PHASE_REGISTRY: Dict[PhaseKind, PhaseCapabilities] = {
    PhaseKind.SELECTION: PhaseCapabilities(
        kind=PhaseKind.SELECTION,
        model=Selection,
        label="selection",
        code_prefix="SELECTION",
        set_fk="selection_id",
        limit_attr="selection_limit",
        reset_attr="reset_selection_limit_at",
    ),
    PhaseKind.PROOFING: PhaseCapabilities(
        kind=PhaseKind.PROOFING,
        model=Proofing,
        label="proofing",
        code_prefix="PROOFING",
        set_fk="proofing_id",
        supports_review=True,
    ),
    PhaseKind.RAW_FILE: PhaseCapabilities(
        kind=PhaseKind.RAW_FILE,
        model=RawFile,
        label="raw file",
        code_prefix="RAW_FILE",
        set_fk="raw_file_id",
        limit_attr="raw_file_limit",
        reset_attr="reset_raw_file_limit_at",
        supports_download=True,
    ),
}


def capabilities_for(kind: PhaseKind) -> PhaseCapabilities:
    return PHASE_REGISTRY[PhaseKind(kind)]
