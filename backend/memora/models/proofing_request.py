"""
Memora Backend — ProofingRequest SQLAlchemy Model
===================================================

What:  A question the photographer puts to the client about one proofing
       media item, answered through a tokenized link.

Request types:
    closure:  "these edits are done, may I close this round?" (carries a
              todo list); approval marks the media ready for revision
    approval: "please sign off on this media"; approval marks the media
              approved (is_completed)

Lifecycle:
    pending ──approve──▶ approved   (approved_at, approved_by_email)
       └─────reject────▶ rejected   (rejected_at, rejected_by_email, reason)
    At most one pending request per (media, request_type).
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin

REQUEST_CLOSURE = "closure"
REQUEST_APPROVAL = "approval"
REQUEST_TYPES = (REQUEST_CLOSURE, REQUEST_APPROVAL)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


class ProofingRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "proofing_requests"

    proofing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("proofings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    media_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("media.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    todos: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_proofing_requests_media_status", "media_id", "request_type", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProofingRequest(id={self.id}, type='{self.request_type}', "
            f"status='{self.status}')>"
        )
