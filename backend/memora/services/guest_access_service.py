"""
Memora Backend — Guest Access Resolver
========================================

What:  Issues guest tokens and decides whether a request carrying one may
       read or mutate a given phase.
Who:   Public guest routes (via the `guest_context` dependency) and the
       owner-facing token endpoint.

Resolution order (first failure wins):
    1. No token presented                       → 401 GUEST_TOKEN_MISSING
    2. Token unknown or expired                 → 404 NOT_FOUND
    3. Token bound to another phase (or kind)   → 403 INVALID_TOKEN
    4. Phase missing or soft-deleted            → 404 NOT_FOUND
    5. Phase is draft                           → 403 <KIND>_NOT_ACCESSIBLE
    6. Mutation on a non-active phase           → 403 <KIND>_NOT_ACTIVE

Issuance:
    Phase must be active or completed. A non-empty allow-list is checked
    (case-insensitively) before any token row is written. Tokens expire
    guest_token_ttl_days after issuance; several may be live at once.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.config import settings
from memora.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from memora.models.guest_token import GuestToken
from memora.models.mixins import utcnow
from memora.models.phase import PhaseKind, PhaseMixin, PhaseStatus
from memora.models.user import User
from memora.security import generate_token, verify_secret
from memora.services.phase_registry import PhaseCapabilities, capabilities_for

logger = logging.getLogger(__name__)

GUEST_VISIBLE_STATUSES = (PhaseStatus.ACTIVE.value, PhaseStatus.COMPLETED.value)


@dataclass
class GuestContext:
    """A resolved guest request: the token and the phase it unlocks."""
    caps: PhaseCapabilities
    phase: PhaseMixin
    token: GuestToken

    @property
    def email(self) -> str:
        return self.token.email


class GuestAccessService:

    # ── Phase lookup ──────────────────────────────────────────────────────

    async def get_phase(
        self,
        db: AsyncSession,
        caps: PhaseCapabilities,
        phase_id: uuid.UUID,
        lock: bool = False,
    ) -> PhaseMixin:
        """Loads a non-deleted phase; `lock` takes a row lock for the transaction."""
        model = caps.model
        query = select(model).where(model.id == phase_id, model.deleted_at.is_(None))
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        phase = result.scalar_one_or_none()
        if phase is None:
            raise NotFoundError(resource=caps.label, resource_id=str(phase_id))
        return phase

    @staticmethod
    def is_accessible_to_guests(phase: PhaseMixin) -> bool:
        return phase.status in GUEST_VISIBLE_STATUSES

    @staticmethod
    def is_email_allowed(phase: PhaseMixin, email: str) -> bool:
        allowed = phase.allowed_emails or []
        if not allowed:
            return True
        wanted = email.strip().lower()
        return any(candidate.strip().lower() == wanted for candidate in allowed)

    # ── Issuance ──────────────────────────────────────────────────────────

    async def issue_token(
        self,
        db: AsyncSession,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        email: str,
        password: Optional[str] = None,
        check_password: bool = False,
    ) -> GuestToken:
        """
        Creates a guest token for `email` on the phase.

        Args:
            check_password: Guest-initiated issuance must present the phase
                password when one is set; owner issuance skips it.

        Raises:
            NotFoundError: Phase does not exist
            AccessDeniedError: Phase is a draft, or email not on the allow-list
            AuthenticationError: Password missing or wrong
        """
        caps = capabilities_for(kind)
        phase = await self.get_phase(db, caps, phase_id)

        if not self.is_accessible_to_guests(phase):
            raise AccessDeniedError(
                message=f"This {caps.label} is not available to guests yet",
                code=caps.not_accessible_code,
                context={"status": phase.status},
            )

        if check_password and phase.has_password:
            if not password or not verify_secret(password, phase.password_hash):
                raise AuthenticationError(
                    message="Incorrect password",
                    code=ErrorCode.INVALID_PASSWORD,
                )

        # Allow-list is checked before anything is written
        if not self.is_email_allowed(phase, email):
            logger.info("Guest token refused for %s on %s %s: not allowed", email, caps.label, phase.id)
            raise AccessDeniedError(
                message="This email address is not allowed to access this phase",
                code=ErrorCode.EMAIL_NOT_ALLOWED,
            )

        token = GuestToken(
            phase_kind=caps.kind.value,
            phase_id=phase.id,
            email=email.strip().lower(),
            token=generate_token(),
            expires_at=utcnow() + timedelta(days=settings.guest_token_ttl_days),
        )
        db.add(token)
        await db.flush()
        logger.info("Guest token issued for %s on %s %s", token.email, caps.label, phase.id)
        return token

    # ── Resolution ────────────────────────────────────────────────────────

    async def resolve(
        self,
        db: AsyncSession,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        raw_token: Optional[str],
        require_active: bool = False,
        lock_phase: bool = False,
    ) -> GuestContext:
        """Validates `raw_token` against the requested phase (see module docstring)."""
        caps = capabilities_for(kind)

        if not raw_token:
            raise AuthenticationError(
                message="A guest token is required to access this resource",
                code=ErrorCode.GUEST_TOKEN_MISSING,
            )

        result = await db.execute(
            select(GuestToken).where(
                GuestToken.token == raw_token,
                GuestToken.expires_at > utcnow(),
            )
        )
        token = result.scalar_one_or_none()
        if token is None:
            raise NotFoundError(resource="guest token")

        if token.phase_kind != caps.kind.value or token.phase_id != phase_id:
            logger.warning(
                "Guest token for %s %s presented against %s %s",
                token.phase_kind,
                token.phase_id,
                caps.kind.value,
                phase_id,
            )
            raise AccessDeniedError(
                message="This token does not grant access to this phase",
                code=ErrorCode.INVALID_TOKEN,
            )

        phase = await self.get_phase(db, caps, phase_id, lock=lock_phase)

        if not self.is_accessible_to_guests(phase):
            raise AccessDeniedError(
                message=f"This {caps.label} is not accessible",
                code=caps.not_accessible_code,
                context={"status": phase.status},
            )

        if require_active and phase.status != PhaseStatus.ACTIVE.value:
            raise AccessDeniedError(
                message=f"This {caps.label} is no longer active",
                code=caps.not_active_code,
                context={"status": phase.status},
            )

        return GuestContext(caps=caps, phase=phase, token=token)

    async def mark_used(self, db: AsyncSession, token: GuestToken) -> None:
        token.used_at = utcnow()
        await db.flush()

    # ── Public (token-less) checks ────────────────────────────────────────

    async def check_status(
        self,
        db: AsyncSession,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        owner: Optional[User] = None,
    ) -> dict:
        """Status shown before a guest has a token; owners may see drafts."""
        caps = capabilities_for(kind)
        phase = await self.get_phase(db, caps, phase_id)
        is_owner = owner is not None and owner.id == phase.user_id
        return {
            "id": phase.id,
            "status": phase.status,
            "name": phase.name,
            "is_owner": is_owner,
            "is_accessible": self.is_accessible_to_guests(phase) or is_owner,
        }

    async def verify_password(
        self,
        db: AsyncSession,
        kind: PhaseKind,
        phase_id: uuid.UUID,
        password: str,
    ) -> None:
        """
        Raises:
            AccessDeniedError: Phase is a draft
            ValidationError (NO_PASSWORD): Phase has no password
            AuthenticationError (INVALID_PASSWORD): Mismatch
        """
        caps = capabilities_for(kind)
        phase = await self.get_phase(db, caps, phase_id)

        if not self.is_accessible_to_guests(phase):
            raise AccessDeniedError(
                message=f"This {caps.label} is not accessible",
                code=caps.not_accessible_code,
            )
        if not phase.has_password:
            raise ValidationError(
                message=f"This {caps.label} is not password protected",
                code=ErrorCode.NO_PASSWORD,
            )
        if not verify_secret(password, phase.password_hash):
            raise AuthenticationError(
                message="Incorrect password",
                code=ErrorCode.INVALID_PASSWORD,
            )


# ── Singleton Instance ────────────────────────────────────────────────────
guest_access_service = GuestAccessService()
