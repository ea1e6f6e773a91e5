"""
Memora Backend — Owner Phase Routes
=====================================

What:  Phase management for the photographer, for every phase kind:
       /api/selections, /api/proofing, /api/raw-files.
Who:   The Memora dashboard, authenticated with the owner's access token.

Endpoint map ({kind} ∈ selections | proofing | raw-files):
    POST   /api/{kind}                                 create (draft)
    GET    /api/{kind}                                 list (paginated)
    GET    /api/{kind}/{id}                            detail
    PATCH  /api/{kind}/{id}                            partial update
    DELETE /api/{kind}/{id}                            soft delete
    POST   /api/{kind}/{id}/publish                    draft ⇄ active, completed → active
    POST   /api/{kind}/{id}/reset-limit                restart the limit window
    POST   /api/{kind}/{id}/sets                       create media set
    GET    /api/{kind}/{id}/sets                       list media sets
    POST   /api/{kind}/{id}/sets/{set_id}/media        register media
    GET    /api/{kind}/{id}/sets/{set_id}/media        list media (paginated)
    GET    /api/{kind}/{id}/filenames                  selected filenames
    POST   /api/{kind}/{id}/guest-tokens               issue a guest token
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.dependencies import PageParams, get_current_owner, pagination_params
from memora.models.phase import PhaseKind, PhaseStatus
from memora.models.user import User
from memora.schemas.common import ErrorResponse, MessageResponse, Page
from memora.schemas.phase import (
    FilenamesResponse,
    GuestTokenCreate,
    GuestTokenResponse,
    MediaCreate,
    MediaResponse,
    MediaSetCreate,
    MediaSetResponse,
    OwnerPhaseResponse,
    PhaseCreate,
    PhaseUpdate,
    ResetLimitResponse,
)
from memora.services.guest_access_service import guest_access_service
from memora.services.media_service import media_service
from memora.services.phase_registry import capabilities_for
from memora.services.phase_service import phase_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Phases"],
    responses={
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
        404: {"description": "Phase not found", "model": ErrorResponse},
    },
)


# ── Phases ────────────────────────────────────────────────────────────────

@router.post(
    "/{kind}",
    response_model=OwnerPhaseResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Invalid phase settings", "model": ErrorResponse}},
    summary="Create a phase",
    description="Creates a selection, proofing or raw-files phase in draft status.",
)
async def create_phase(
    kind: PhaseKind,
    body: PhaseCreate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> OwnerPhaseResponse:
    phase = await phase_service.create_phase(db, owner, kind, body)
    return await phase_service.to_response(db, capabilities_for(kind), phase, for_owner=True)


@router.get(
    "/{kind}",
    response_model=Page[OwnerPhaseResponse],
    summary="List phases",
)
async def list_phases(
    kind: PhaseKind,
    status_filter: Optional[PhaseStatus] = Query(default=None, alias="status"),
    params: PageParams = Depends(pagination_params),
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> Page[OwnerPhaseResponse]:
    caps = capabilities_for(kind)
    items, meta = await phase_service.list_phases(
        db,
        owner,
        kind,
        params.page,
        params.per_page,
        status=status_filter.value if status_filter else None,
    )
    data = [await phase_service.to_response(db, caps, phase, for_owner=True) for phase in items]
    return Page[OwnerPhaseResponse](data=data, pagination=meta)


@router.get(
    "/{kind}/{phase_id}",
    response_model=OwnerPhaseResponse,
    summary="Get a phase",
)
async def get_phase(
    kind: PhaseKind,
    phase_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> OwnerPhaseResponse:
    phase = await phase_service.get_owned_phase(db, owner, kind, phase_id)
    return await phase_service.to_response(db, capabilities_for(kind), phase, for_owner=True)


@router.patch(
    "/{kind}/{phase_id}",
    response_model=OwnerPhaseResponse,
    responses={400: {"description": "Invalid phase settings", "model": ErrorResponse}},
    summary="Update a phase",
    description="Only fields present in the body change. An empty password or PIN removes it.",
)
async def update_phase(
    kind: PhaseKind,
    phase_id: UUID,
    body: PhaseUpdate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> OwnerPhaseResponse:
    phase = await phase_service.update_phase(db, owner, kind, phase_id, body)
    return await phase_service.to_response(db, capabilities_for(kind), phase, for_owner=True)


@router.delete(
    "/{kind}/{phase_id}",
    response_model=MessageResponse,
    summary="Delete a phase",
)
async def delete_phase(
    kind: PhaseKind,
    phase_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await phase_service.delete_phase(db, owner, kind, phase_id)
    return MessageResponse(message="Phase deleted")


@router.post(
    "/{kind}/{phase_id}/publish",
    response_model=OwnerPhaseResponse,
    responses={400: {"description": "No allowed emails configured", "model": ErrorResponse}},
    summary="Toggle publication",
)
async def publish_phase(
    kind: PhaseKind,
    phase_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> OwnerPhaseResponse:
    phase = await phase_service.publish(db, owner, kind, phase_id)
    return await phase_service.to_response(db, capabilities_for(kind), phase, for_owner=True)


@router.post(
    "/{kind}/{phase_id}/reset-limit",
    response_model=ResetLimitResponse,
    responses={
        400: {"description": "Phase kind has no limit", "model": ErrorResponse},
        409: {"description": "Phase is still a draft", "model": ErrorResponse},
    },
    summary="Reset the selection limit window",
    description="Selections made before now stop counting toward the limit.",
)
async def reset_limit(
    kind: PhaseKind,
    phase_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> ResetLimitResponse:
    phase = await phase_service.reset_limit(db, owner, kind, phase_id)
    return ResetLimitResponse(
        id=phase.id,
        reset_limit_at=capabilities_for(kind).get_reset_timestamp(phase),
        message="Limit reset",
    )


# ── Sets & media ──────────────────────────────────────────────────────────

@router.post(
    "/{kind}/{phase_id}/sets",
    response_model=MediaSetResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a media set",
)
async def create_set(
    kind: PhaseKind,
    phase_id: UUID,
    body: MediaSetCreate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> MediaSetResponse:
    media_set = await phase_service.create_set(db, owner, kind, phase_id, body)
    return MediaSetResponse(
        id=media_set.id,
        name=media_set.name,
        sort_order=media_set.sort_order,
        limit=capabilities_for(kind).get_set_limit(media_set),
    )


@router.get(
    "/{kind}/{phase_id}/sets",
    response_model=List[MediaSetResponse],
    summary="List media sets",
)
async def list_sets(
    kind: PhaseKind,
    phase_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> List[MediaSetResponse]:
    phase = await phase_service.get_owned_phase(db, owner, kind, phase_id)
    return await media_service.list_sets(db, capabilities_for(kind), phase)


@router.post(
    "/{kind}/{phase_id}/sets/{set_id}/media",
    response_model=MediaResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a media file in a set",
)
async def add_media(
    kind: PhaseKind,
    phase_id: UUID,
    set_id: UUID,
    body: MediaCreate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> MediaResponse:
    media = await phase_service.add_media(db, owner, kind, phase_id, set_id, body)
    return MediaResponse.model_validate(media)


@router.get(
    "/{kind}/{phase_id}/sets/{set_id}/media",
    response_model=Page[MediaResponse],
    summary="List media in a set",
)
async def list_media(
    kind: PhaseKind,
    phase_id: UUID,
    set_id: UUID,
    params: PageParams = Depends(pagination_params),
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> Page[MediaResponse]:
    phase = await phase_service.get_owned_phase(db, owner, kind, phase_id)
    data, meta = await media_service.list_media(
        db, capabilities_for(kind), phase, set_id, params.page, params.per_page
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
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> FilenamesResponse:
    phase = await phase_service.get_owned_phase(db, owner, kind, phase_id)
    filenames = await media_service.selected_filenames(db, capabilities_for(kind), phase, set_id)
    return FilenamesResponse(filenames=filenames, count=len(filenames))


# ── Guest tokens ──────────────────────────────────────────────────────────

@router.post(
    "/{kind}/{phase_id}/guest-tokens",
    response_model=GuestTokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Draft phase or email not allowed", "model": ErrorResponse}},
    summary="Issue a guest token",
    description="Owner-issued tokens skip the phase password but respect the allow-list.",
)
async def issue_guest_token(
    kind: PhaseKind,
    phase_id: UUID,
    body: GuestTokenCreate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> GuestTokenResponse:
    await phase_service.get_owned_phase(db, owner, kind, phase_id)
    token = await guest_access_service.issue_token(db, kind, phase_id, body.email)
    return GuestTokenResponse(
        token=token.token,
        email=token.email,
        phase_id=token.phase_id,
        expires_at=token.expires_at,
    )
