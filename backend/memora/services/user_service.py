"""
Memora Backend — Owner Accounts
=================================

What:  Registers photographer accounts and resolves personal access tokens.
How:   A fresh token is generated on registration and returned once; only
       its sha256 digest is persisted and used as the lookup key.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.exceptions import ConflictError
from memora.models.user import DEFAULT_TIER, User
from memora.security import generate_token, hash_api_token

logger = logging.getLogger(__name__)


class UserService:

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def create_user(self, db: AsyncSession, email: str, name: str = "") -> Tuple[User, str]:
        """
        Returns:
            (user, plaintext access token)

        Raises:
            ConflictError: An account with this email already exists
        """
        if await self.get_by_email(db, email) is not None:
            raise ConflictError(message="An account with this email already exists")

        token = generate_token(32)
        user = User(
            email=email.strip().lower(),
            name=name,
            memora_tier=DEFAULT_TIER,
            api_token_hash=hash_api_token(token),
        )
        db.add(user)
        await db.flush()
        logger.info("User %s registered", user.id)
        return user, token

    async def get_by_token(self, db: AsyncSession, token: str) -> Optional[User]:
        result = await db.execute(
            select(User).where(User.api_token_hash == hash_api_token(token))
        )
        return result.scalar_one_or_none()


# ── Singleton Instance ────────────────────────────────────────────────────
user_service = UserService()
