"""
Memora Backend — User SQLAlchemy Model
========================================

What:  Photographer account that owns phases and holds a subscription tier.
How:   Owners authenticate with a personal access token; only its sha256
       digest is stored (`api_token_hash`), the plaintext is shown once.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin

DEFAULT_TIER = "starter"

# Rank used to tell an upgrade from a downgrade
TIER_RANKS = {"starter": 0, "pro": 1, "studio": 2, "business": 3}


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    memora_tier: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DEFAULT_TIER
    )
    api_token_hash: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', tier='{self.memora_tier}')>"
