"""
Memora Backend — Public Guest Routes
======================================

What:  Everything a client's guest does with a shared phase link.
Who:   The guest gallery; rate limited per IP by RateLimitMiddleware.

Token-less:
    GET   /api/public/{kind}/{id}/status
    POST  /api/public/{kind}/{id}/verify-password
    POST  /api/public/{kind}/{id}/token

Guest token (Bearer → X-Guest-Token → ?guest_token=):
    GET   /api/public/{kind}/{id}
    GET   /api/public/{kind}/{id}/sets
    GET   /api/public/{kind}/{id}/sets/{set_id}/media
    GET   /api/public/{kind}/{id}/filenames
    PATCH /api/public/{kind}/{id}/media/{media_id}/toggle-selected   (active only)
    POST  /api/public/proofing/{id}/media/{media_id}/approve         (active only)
    POST  /api/public/proofing/{id}/media/{media_id}/reject          (active only)
    POST  /api/public/{kind}/{id}/complete                           (active only)

Mutations resolve the token with the phase row locked, so concurrent
toggles from the same gallery cannot overshoot the limit.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.dependencies import (
    PageParams,
    extract_guest_token,
    get_optional_owner,
    pagination_params,
)
from memora.models.phase import PhaseKind
from memora.models.user import User
from memora.schemas.common import ErrorResponse, Page
from memora.schemas.phase import (
    CompleteRequest,
    FilenamesResponse,
    GuestTokenCreate,
    GuestTokenResponse,
    MediaResponse,
    MediaSetResponse,
    PasswordVerifyRequest,
    PasswordVerifyResponse,
    PhaseResponse,
    PhaseStatusResponse,
    ToggleSelectedResponse,
)
from memora.services.guest_access_service import guest_access_service
from memora.services.media_service import media_service
from memora.services.phase_service import phase_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/public",
    tags=["Guest"],
    responses={
        401: {"description": "Guest token missing", "model": ErrorResponse},
        403: {"description": "Token or phase state does not allow this", "model": ErrorResponse},
        404: {"description": "Phase, token or media not found", "model": ErrorResponse},
        429: {"description": "Too many requests", "model": ErrorResponse},
    },
)


# ── Token-less ────────────────────────────────────────────────────────────

@router.get(
    "/{kind}/{phase_id}/status",
    response_model=PhaseStatusResponse,
    summary="Phase availability",
    description="Lets the gallery decide between a password prompt, an email prompt or a 'not available' page.",
)
async def phase_status(
    kind: PhaseKind,
    phase_id: UUID,
    owner: Optional[User] = Depends(get_optional_owner),
    db: AsyncSession = Depends(get_db_session),
) -> PhaseStatusResponse:
    result = await guest_access_service.check_status(db, kind, phase_id, owner)
    return PhaseStatusResponse(**result)


@router.post(
    "/{kind}/{phase_id}/verify-password",
    response_model=PasswordVerifyResponse,
    responses={400: {"description": "Phase has no password", "model": ErrorResponse}},
    summary="Check a phase password",
)
async def verify_password(
    kind: PhaseKind,
    phase_id: UUID,
    body: PasswordVerifyRequest,
    db: AsyncSession = Depends(get_db_session),
) -> PasswordVerifyResponse:
    await guest_access_service.verify_password(db, kind, phase_id, body.password)
    return PasswordVerifyResponse(verified=True, message="Password verified")


@router.post(
    "/{kind}/{phase_id}/token",
    response_model=GuestTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Obtain a guest token",
    description="The email must be on the allow-list when one is set; a protected phase needs its password.",
)
async def obtain_token(
    kind: PhaseKind,
    phase_id: UUID,
    body: GuestTokenCreate,
    db: AsyncSession = Depends(get_db_session),
) -> GuestTokenResponse:
    token = await guest_access_service.issue_token(
        db, kind, phase_id, body.email, password=body.password, check_password=True
    )
    return GuestTokenResponse(
        token=token.token,
        email=token.email,
        phase_id=token.phase_id,
        expires_at=token.expires_at,
    )


# ── Guest reads ───────────────────────────────────────────────────────────

@router.get(
    "/{kind}/{phase_id}",
    response_model=PhaseResponse,
    summary="Phase details for the guest",
)
async def get_phase(
    kind: PhaseKind,
    phase_id: UUID,
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> PhaseResponse:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token)
    return await phase_service.to_response(db, ctx.caps, ctx.phase)


@router.get(
    "/{kind}/{phase_id}/sets",
    response_model=List[MediaSetResponse],
    summary="Media sets of the phase",
)
async def list_sets(
    kind: PhaseKind,
    phase_id: UUID,
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> List[MediaSetResponse]:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token)
    return await media_service.list_sets(db, ctx.caps, ctx.phase)


@router.get(
    "/{kind}/{phase_id}/sets/{set_id}/media",
    response_model=Page[MediaResponse],
    summary="Media of one set",
)
async def list_media(
    kind: PhaseKind,
    phase_id: UUID,
    set_id: UUID,
    params: PageParams = Depends(pagination_params),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> Page[MediaResponse]:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token)
    data, meta = await media_service.list_media(
        db, ctx.caps, ctx.phase, set_id, params.page, params.per_page
    )
    return Page[MediaResponse](data=data, pagination=meta)


@router.get(
    "/{kind}/{phase_id}/filenames",
    response_model=FilenamesResponse,
    summary="Filenames of selected media",
)
async def selected_filenames(
    kind: PhaseKind,
    phase_id: UUID,
    set_id: Optional[UUID] = Query(default=None),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> FilenamesResponse:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token)
    filenames = await media_service.selected_filenames(db, ctx.caps, ctx.phase, set_id)
    return FilenamesResponse(filenames=filenames, count=len(filenames))


# ── Guest mutations ───────────────────────────────────────────────────────

@router.patch(
    "/{kind}/{phase_id}/media/{media_id}/toggle-selected",
    response_model=ToggleSelectedResponse,
    responses={400: {"description": "Limit reached", "model": ErrorResponse}},
    summary="Select or unselect a media item",
)
async def toggle_selected(
    kind: PhaseKind,
    phase_id: UUID,
    media_id: UUID,
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> ToggleSelectedResponse:
    ctx = await guest_access_service.resolve(
        db, kind, phase_id, token, require_active=True, lock_phase=True
    )
    return await media_service.toggle_selected(db, ctx, media_id)


@router.post(
    "/{kind}/{phase_id}/media/{media_id}/approve",
    response_model=MediaResponse,
    summary="Approve a proof",
)
async def approve_media(
    kind: PhaseKind,
    phase_id: UUID,
    media_id: UUID,
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> MediaResponse:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token, require_active=True)
    media = await media_service.approve(db, ctx, media_id)
    return MediaResponse.model_validate(media)


@router.post(
    "/{kind}/{phase_id}/media/{media_id}/reject",
    response_model=MediaResponse,
    summary="Reject a proof",
)
async def reject_media(
    kind: PhaseKind,
    phase_id: UUID,
    media_id: UUID,
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> MediaResponse:
    ctx = await guest_access_service.resolve(db, kind, phase_id, token, require_active=True)
    media = await media_service.reject(db, ctx, media_id)
    return MediaResponse.model_validate(media)


@router.post(
    "/{kind}/{phase_id}/complete",
    response_model=PhaseResponse,
    responses={400: {"description": "Limit reached", "model": ErrorResponse}},
    summary="Complete the phase",
)
async def complete_phase(
    kind: PhaseKind,
    phase_id: UUID,
    body: Optional[CompleteRequest] = Body(default=None),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> PhaseResponse:
    ctx = await guest_access_service.resolve(
        db, kind, phase_id, token, require_active=True, lock_phase=True
    )
    phase = await phase_service.complete(db, ctx, body.media_ids if body else None)
    return await phase_service.to_response(db, ctx.caps, phase)
