"""
Memora Backend — GuestToken SQLAlchemy Model
==============================================

What:  Time-limited, email-bound credential granting a guest access to one
       phase. One table serves every phase kind (`phase_kind` + `phase_id`).

Lifecycle:
    1. Issued by the owner or through the public token endpoint
       (expires_at = issuance + guest_token_ttl_days)
    2. Presented on guest requests; must be unexpired and bound to the
       requested phase
    3. used_at stamped when the guest completes the phase

    Several live tokens for the same (phase, email) may coexist; expiry is
    the only boundary.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import UUIDPrimaryKeyMixin, utcnow


class GuestToken(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "guest_tokens"

    phase_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    # No FK: the target table depends on phase_kind
    phase_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Lookup is always "this token, not yet expired"
    __table_args__ = (
        Index("idx_guest_tokens_token_expires", "token", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<GuestToken(id={self.id}, phase_kind='{self.phase_kind}', "
            f"phase_id={self.phase_id}, email='{self.email}')>"
        )
