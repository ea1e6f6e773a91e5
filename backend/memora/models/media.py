"""
Memora Backend — MediaSet & Media SQLAlchemy Models
=====================================================

What:  MediaSet groups media inside one phase ("Ceremony", "Reception");
       Media is a single delivered file with guest-mutated flags.

Table Design:
    - media_sets carries one nullable FK per phase kind; exactly one is set.
      The set-level limit columns override the phase-level limit.
    - media.selected_at is the timestamp the limit resolver's reset window
      compares against, so it is written on every select and cleared on
      unselect.
    - (set_id, is_selected) index serves the selected-count query.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


class MediaSet(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "media_sets"

    selection_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("selections.id", ondelete="CASCADE"), nullable=True, index=True
    )
    proofing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("proofings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    raw_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("raw_files.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    selection_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    raw_file_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<MediaSet(id={self.id}, name='{self.name}')>"


class Media(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "media"

    set_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("media_sets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    # Relative to settings.storage_root
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    selected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set when the client approves a closure request on this item
    is_ready_for_revision: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_media_set_selected", "set_id", "is_selected"),
    )

    def __repr__(self) -> str:
        return f"<Media(id={self.id}, filename='{self.filename}', selected={self.is_selected})>"
