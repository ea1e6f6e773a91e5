"""
Memora Backend — Guest Access Tests
=====================================

What we test:
    ✅ Token issuance: draft refused, allow-list (case-insensitive), password
    ✅ A refused email leaves no token row behind
    ✅ Resolution order: missing → expired → other phase → draft → not active
    ✅ Owner-aware status check
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from memora.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from memora.models.guest_token import GuestToken
from memora.models.mixins import utcnow
from memora.models.phase import PhaseKind, Proofing, Selection
from memora.models.user import User
from memora.security import hash_secret
from memora.services.guest_access_service import GuestAccessService


async def seed_owner(db):
    user = User(email="owner@example.com", name="Owner")
    db.add(user)
    await db.flush()
    return user


async def seed_phase(db, owner, status="active", allowed=("guest@example.com",), password=None):
    phase = Selection(
        user_id=owner.id,
        name="Engagement",
        status=status,
        allowed_emails=list(allowed),
        password_hash=hash_secret(password) if password else None,
    )
    db.add(phase)
    await db.flush()
    return phase


async def token_count(db):
    return (await db.execute(select(func.count(GuestToken.id)))).scalar()


class TestIssueToken:

    def setup_method(self):
        self.service = GuestAccessService()

    @pytest.mark.asyncio
    async def test_issues_token_for_allowed_email(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)

        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )

        assert token.phase_id == phase.id
        assert token.phase_kind == "selections"
        assert len(token.token) == 64
        assert token.expires_at > utcnow() + timedelta(days=6)

    @pytest.mark.asyncio
    async def test_allow_list_is_case_insensitive(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, allowed=("Guest@Example.com",))

        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "GUEST@example.COM"
        )
        assert token.email == "guest@example.com"

    @pytest.mark.asyncio
    async def test_empty_allow_list_admits_anyone(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, allowed=())

        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "anyone@example.com"
        )
        assert token.email == "anyone@example.com"

    @pytest.mark.asyncio
    async def test_refused_email_creates_no_token(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.issue_token(
                db_session, PhaseKind.SELECTION, phase.id, "stranger@example.com"
            )

        assert exc_info.value.code == ErrorCode.EMAIL_NOT_ALLOWED
        assert await token_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_draft_phase_refuses_tokens(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, status="draft")

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.issue_token(
                db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
            )
        assert exc_info.value.code == ErrorCode.SELECTION_NOT_ACCESSIBLE
        assert await token_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_guest_issuance_requires_the_password(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, password="s3cret-pass")

        with pytest.raises(AuthenticationError) as exc_info:
            await self.service.issue_token(
                db_session,
                PhaseKind.SELECTION,
                phase.id,
                "guest@example.com",
                password="wrong",
                check_password=True,
            )
        assert exc_info.value.code == ErrorCode.INVALID_PASSWORD

        token = await self.service.issue_token(
            db_session,
            PhaseKind.SELECTION,
            phase.id,
            "guest@example.com",
            password="s3cret-pass",
            check_password=True,
        )
        assert token.id is not None

    @pytest.mark.asyncio
    async def test_several_live_tokens_may_coexist(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)

        first = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )
        second = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )

        assert first.token != second.token
        assert await token_count(db_session) == 2

    @pytest.mark.asyncio
    async def test_missing_phase(self, db_session):
        with pytest.raises(NotFoundError):
            await self.service.issue_token(
                db_session, PhaseKind.SELECTION, uuid4(), "guest@example.com"
            )


class TestResolve:

    def setup_method(self):
        self.service = GuestAccessService()

    @pytest.mark.asyncio
    async def test_resolves_valid_token(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )

        ctx = await self.service.resolve(db_session, PhaseKind.SELECTION, phase.id, token.token)

        assert ctx.phase.id == phase.id
        assert ctx.email == "guest@example.com"

    @pytest.mark.asyncio
    async def test_missing_token(self, db_session):
        with pytest.raises(AuthenticationError) as exc_info:
            await self.service.resolve(db_session, PhaseKind.SELECTION, uuid4(), None)
        assert exc_info.value.code == ErrorCode.GUEST_TOKEN_MISSING

    @pytest.mark.asyncio
    async def test_expired_token_is_not_found(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )
        token.expires_at = utcnow() - timedelta(minutes=1)
        await db_session.flush()

        with pytest.raises(NotFoundError):
            await self.service.resolve(db_session, PhaseKind.SELECTION, phase.id, token.token)

    @pytest.mark.asyncio
    async def test_token_for_another_phase_is_invalid(self, db_session):
        owner = await seed_owner(db_session)
        phase_a = await seed_phase(db_session, owner)
        phase_b = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase_a.id, "guest@example.com"
        )

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.resolve(db_session, PhaseKind.SELECTION, phase_b.id, token.token)
        assert exc_info.value.code == ErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_token_for_another_kind_is_invalid(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.resolve(db_session, PhaseKind.PROOFING, phase.id, token.token)
        assert exc_info.value.code == ErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_unpublished_phase_is_not_accessible(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )
        phase.status = "draft"
        await db_session.flush()

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.resolve(db_session, PhaseKind.SELECTION, phase.id, token.token)
        assert exc_info.value.code == ErrorCode.SELECTION_NOT_ACCESSIBLE

    @pytest.mark.asyncio
    async def test_completed_phase_is_readable_but_not_mutable(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)
        token = await self.service.issue_token(
            db_session, PhaseKind.SELECTION, phase.id, "guest@example.com"
        )
        phase.status = "completed"
        await db_session.flush()

        ctx = await self.service.resolve(db_session, PhaseKind.SELECTION, phase.id, token.token)
        assert ctx.phase.status == "completed"

        with pytest.raises(AccessDeniedError) as exc_info:
            await self.service.resolve(
                db_session, PhaseKind.SELECTION, phase.id, token.token, require_active=True
            )
        assert exc_info.value.code == ErrorCode.SELECTION_NOT_ACTIVE


class TestPublicChecks:

    def setup_method(self):
        self.service = GuestAccessService()

    @pytest.mark.asyncio
    async def test_status_of_draft_for_owner_and_guest(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, status="draft")

        as_guest = await self.service.check_status(db_session, PhaseKind.SELECTION, phase.id)
        as_owner = await self.service.check_status(
            db_session, PhaseKind.SELECTION, phase.id, owner=owner
        )

        assert as_guest["is_accessible"] is False
        assert as_owner["is_owner"] is True
        assert as_owner["is_accessible"] is True

    @pytest.mark.asyncio
    async def test_verify_password_without_password(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner)

        with pytest.raises(ValidationError) as exc_info:
            await self.service.verify_password(db_session, PhaseKind.SELECTION, phase.id, "x")
        assert exc_info.value.code == ErrorCode.NO_PASSWORD

    @pytest.mark.asyncio
    async def test_verify_password_mismatch(self, db_session):
        owner = await seed_owner(db_session)
        phase = await seed_phase(db_session, owner, password="correct-horse")

        await self.service.verify_password(
            db_session, PhaseKind.SELECTION, phase.id, "correct-horse"
        )
        with pytest.raises(AuthenticationError):
            await self.service.verify_password(
                db_session, PhaseKind.SELECTION, phase.id, "battery-staple"
            )

    @pytest.mark.asyncio
    async def test_proofing_phases_resolve_through_their_own_table(self, db_session):
        owner = await seed_owner(db_session)
        proofing = Proofing(
            user_id=owner.id, name="Album proofs", status="active", allowed_emails=[]
        )
        db_session.add(proofing)
        await db_session.flush()

        with pytest.raises(NotFoundError):
            await self.service.check_status(db_session, PhaseKind.SELECTION, proofing.id)
        result = await self.service.check_status(db_session, PhaseKind.PROOFING, proofing.id)
        assert result["status"] == "active"
