"""
Memora Backend — Proofing Request Service (Closure & Approval)
================================================================

What:  The photographer asks the client to sign off on one proofing media
       item; the client answers through a tokenized link.
Who:   routes/proofing_requests.py.

Flow:
    ┌──────────────┐    ┌──────────────────┐    ┌───────────────────────────┐
    │ owner creates│───▶│ client opens link│───▶│ approve: request + media  │
    │ (pending)    │    │ (token)          │    │ updated in one transaction│
    └──────────────┘    └──────────────────┘    │ reject: request only      │
                                                └───────────────────────────┘

Approval effect per request type:
    closure  → media.is_ready_for_revision = True
    approval → media.is_completed = True

Who may decide:
    Any email on the proofing's allow-list (any email when the list is
    empty), never the owner's own email.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.config import settings
from memora.exceptions import AccessDeniedError, ConflictError, ErrorCode, NotFoundError
from memora.models.media import Media
from memora.models.mixins import utcnow
from memora.models.phase import PhaseKind, Proofing
from memora.models.proofing_request import (
    REQUEST_APPROVAL,
    REQUEST_CLOSURE,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    ProofingRequest,
)
from memora.models.user import User
from memora.schemas.proofing_request import OwnerProofingRequestResponse, ProofingRequestCreate
from memora.security import generate_token
from memora.services.guest_access_service import guest_access_service
from memora.services.media_service import media_service
from memora.services.notification_service import notification_service
from memora.services.phase_registry import capabilities_for
from memora.services.phase_service import phase_service

logger = logging.getLogger(__name__)


def public_url(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/memora/proofing-request/{token}"


class ProofingRequestService:

    # ── Owner side ────────────────────────────────────────────────────────

    async def create(
        self,
        db: AsyncSession,
        owner: User,
        proofing_id: uuid.UUID,
        data: ProofingRequestCreate,
    ) -> ProofingRequest:
        """
        Raises:
            NotFoundError: Proofing not owned by `owner`, or media missing
            AccessDeniedError (MEDIA_NOT_IN_PHASE): Media of another phase
            ConflictError: Media already approved or rejected, or a request of
                this type is already pending for it
        """
        caps = capabilities_for(PhaseKind.PROOFING)
        proofing = await phase_service.get_owned_phase(db, owner, PhaseKind.PROOFING, proofing_id)
        media, _ = await media_service.get_media_in_phase(db, caps, proofing, data.media_id)
        self._assert_media_open(media)

        pending = await db.scalar(
            select(
                exists().where(
                    ProofingRequest.media_id == media.id,
                    ProofingRequest.request_type == data.request_type,
                    ProofingRequest.status == STATUS_PENDING,
                )
            )
        )
        if pending:
            raise ConflictError(
                message=f"A {data.request_type} request is already pending for this media",
                code=ErrorCode.REQUEST_ALREADY_PENDING,
            )

        request = ProofingRequest(
            proofing_id=proofing.id,
            media_id=media.id,
            user_id=owner.id,
            request_type=data.request_type,
            token=generate_token(),
            todos=list(data.todos) if data.request_type == REQUEST_CLOSURE else [],
            message=data.message,
            status=STATUS_PENDING,
        )
        db.add(request)
        await db.flush()
        logger.info(
            "%s request %s created for media %s", data.request_type, request.id, media.id
        )

        for email in proofing.allowed_emails or []:
            await notification_service.notify(
                f"proofing.{data.request_type}_requested",
                email,
                proofing=proofing.name,
                filename=media.filename,
                url=public_url(request.token),
            )
        return request

    async def list_for_media(
        self,
        db: AsyncSession,
        owner: User,
        proofing_id: uuid.UUID,
        media_id: uuid.UUID,
    ) -> List[ProofingRequest]:
        caps = capabilities_for(PhaseKind.PROOFING)
        proofing = await phase_service.get_owned_phase(db, owner, PhaseKind.PROOFING, proofing_id)
        await media_service.get_media_in_phase(db, caps, proofing, media_id)
        result = await db.execute(
            select(ProofingRequest)
            .where(ProofingRequest.media_id == media_id)
            .order_by(ProofingRequest.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    def to_owner_response(request: ProofingRequest) -> OwnerProofingRequestResponse:
        return OwnerProofingRequestResponse.model_validate(
            {
                **{
                    column: getattr(request, column)
                    for column in OwnerProofingRequestResponse.model_fields
                    if hasattr(request, column)
                },
                "public_url": public_url(request.token),
            }
        )

    # ── Client side ───────────────────────────────────────────────────────

    async def get_by_token(
        self, db: AsyncSession, token: str, lock: bool = False
    ) -> ProofingRequest:
        query = select(ProofingRequest).where(ProofingRequest.token == token)
        if lock:
            query = query.with_for_update()
        request = (await db.execute(query)).scalar_one_or_none()
        if request is None:
            raise NotFoundError(resource="proofing request")
        return request

    async def approve(self, db: AsyncSession, token: str, email: str) -> ProofingRequest:
        """
        Marks the request approved and applies its effect to the media.

        Both writes share the request's transaction: if either fails,
        neither is committed.

        Raises:
            ConflictError: Request already decided, media already approved
                or rejected
            AccessDeniedError: Owner's own email, or email not allowed
        """
        request, proofing, owner = await self._load_for_decision(db, token, email)
        media = await db.get(Media, request.media_id, with_for_update=True)
        if media is None or media.deleted_at is not None:
            raise NotFoundError(resource="media", resource_id=str(request.media_id))
        self._assert_media_open(media)

        request.status = STATUS_APPROVED
        request.approved_at = utcnow()
        request.approved_by_email = email.strip().lower()
        if request.request_type == REQUEST_APPROVAL:
            media.is_completed = True
        else:
            media.is_ready_for_revision = True
        await db.flush()
        logger.info("%s request %s approved by %s", request.request_type, request.id, email)

        if owner is not None:
            await notification_service.notify(
                f"proofing.{request.request_type}_approved",
                owner.email,
                proofing=proofing.name,
                approved_by=request.approved_by_email,
            )
        return request

    async def reject(
        self, db: AsyncSession, token: str, email: str, reason: Optional[str] = None
    ) -> ProofingRequest:
        request, proofing, owner = await self._load_for_decision(db, token, email)

        request.status = STATUS_REJECTED
        request.rejected_at = utcnow()
        request.rejected_by_email = email.strip().lower()
        request.rejection_reason = reason
        await db.flush()
        logger.info("%s request %s rejected by %s", request.request_type, request.id, email)

        if owner is not None:
            await notification_service.notify(
                f"proofing.{request.request_type}_rejected",
                owner.email,
                proofing=proofing.name,
                rejected_by=request.rejected_by_email,
                reason=reason,
            )
        return request

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _load_for_decision(self, db: AsyncSession, token: str, email: str):
        request = await self.get_by_token(db, token, lock=True)
        if request.status != STATUS_PENDING:
            raise ConflictError(
                message=f"This {request.request_type} request has already been {request.status}",
                code=ErrorCode.REQUEST_ALREADY_PROCESSED,
                context={"status": request.status},
            )

        proofing = await db.get(Proofing, request.proofing_id)
        if proofing is None or proofing.deleted_at is not None:
            raise NotFoundError(resource="proofing", resource_id=str(request.proofing_id))

        owner = await db.get(User, request.user_id)
        if owner is not None and owner.email.lower() == email.strip().lower():
            raise AccessDeniedError(
                message="Photographers cannot answer their own requests",
                code=ErrorCode.OWNER_CANNOT_DECIDE,
            )
        if not guest_access_service.is_email_allowed(proofing, email):
            raise AccessDeniedError(
                message="This email is not allowed to answer for this proofing",
                code=ErrorCode.EMAIL_NOT_ALLOWED,
            )
        return request, proofing, owner

    @staticmethod
    def _assert_media_open(media: Media) -> None:
        if media.is_completed:
            raise ConflictError(
                message="This media item has already been approved",
                code=ErrorCode.MEDIA_APPROVED,
            )
        if media.is_rejected:
            raise ConflictError(
                message="This media item has been rejected",
                code=ErrorCode.MEDIA_REJECTED,
            )


# ── Singleton Instance ────────────────────────────────────────────────────
proofing_request_service = ProofingRequestService()
