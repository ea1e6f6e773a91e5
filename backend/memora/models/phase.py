"""
Memora Backend — Phase SQLAlchemy Models
==========================================

What:  Selection, Proofing and RawFile phases: the stages of a delivery
       workflow that guests reach through a tokenized link.
Why:   Each phase kind lives in its own table (they diverge in limit and PIN
       columns) but shares one column set via `PhaseMixin`.

Lifecycle:
    draft ──publish──▶ active ──guest completes──▶ completed
      ▲                  │                            │
      └────unpublish─────┘◀──────────reopen───────────┘
    Soft-deleted via deleted_at; never hard-deleted by the API.

Columns per kind:
    Selection: selection_limit, reset_selection_limit_at
    RawFile:   raw_file_limit, reset_raw_file_limit_at, download_pin_hash
    Proofing:  no limit (approve/reject workflow)
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


class PhaseKind(str, Enum):
    """Phase type; the value doubles as the URL segment."""

    SELECTION = "selections"
    PROOFING = "proofing"
    RAW_FILE = "raw-files"


class PhaseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"


class PhaseMixin(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PhaseStatus.DRAFT.value
    )
    # bcrypt hash; NULL means the phase is not password protected
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Empty list means any email may receive a guest token
    allowed_emails: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auto_delete_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, status='{self.status}')>"


class Selection(PhaseMixin, Base):
    __tablename__ = "selections"

    selection_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reset_selection_limit_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class Proofing(PhaseMixin, Base):
    __tablename__ = "proofings"


class RawFile(PhaseMixin, Base):
    __tablename__ = "raw_files"

    raw_file_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reset_raw_file_limit_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # bcrypt hash of the 4-digit download PIN
    download_pin_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
