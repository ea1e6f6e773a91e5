"""
Memora Backend — Proofing Closure & Approval Request Routes
=============================================================

What:  The photographer asks for sign-off on a proofing media item; the
       client answers through the request's token link.
Who:   Owner: the Memora dashboard. Client: the public request page.

Owner (access token):
    POST  /api/proofing/{id}/requests                       create
    GET   /api/proofing/{id}/media/{media_id}/requests      history for one media

Client (request token in the path):
    GET   /api/public/proofing-requests/{token}             view
    POST  /api/public/proofing-requests/{token}/approve
    POST  /api/public/proofing-requests/{token}/reject

Mounted before phases.py and public.py, whose {kind}/{id} segments would
otherwise capture these paths.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.dependencies import get_current_owner
from memora.models.user import User
from memora.schemas.common import ErrorResponse
from memora.schemas.proofing_request import (
    OwnerProofingRequestResponse,
    ProofingRequestCreate,
    ProofingRequestDecision,
    ProofingRequestResponse,
)
from memora.services.proofing_request_service import proofing_request_service

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Proofing Requests"],
    responses={
        404: {"description": "Proofing, media or request not found", "model": ErrorResponse},
        409: {"description": "Media or request already decided", "model": ErrorResponse},
    },
)


# ── Owner ─────────────────────────────────────────────────────────────────

@router.post(
    "/api/proofing/{proofing_id}/requests",
    response_model=OwnerProofingRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
    summary="Ask the client to close or approve a media item",
    description="At most one pending request of each type per media item.",
)
async def create_request(
    proofing_id: UUID,
    body: ProofingRequestCreate,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> OwnerProofingRequestResponse:
    request = await proofing_request_service.create(db, owner, proofing_id, body)
    return proofing_request_service.to_owner_response(request)


@router.get(
    "/api/proofing/{proofing_id}/media/{media_id}/requests",
    response_model=List[OwnerProofingRequestResponse],
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
    summary="Requests for one media item, newest first",
)
async def list_requests(
    proofing_id: UUID,
    media_id: UUID,
    owner: User = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db_session),
) -> List[OwnerProofingRequestResponse]:
    requests = await proofing_request_service.list_for_media(db, owner, proofing_id, media_id)
    return [proofing_request_service.to_owner_response(r) for r in requests]


# ── Client ────────────────────────────────────────────────────────────────

@router.get(
    "/api/public/proofing-requests/{token}",
    response_model=ProofingRequestResponse,
    summary="View a request",
)
async def view_request(
    token: str,
    db: AsyncSession = Depends(get_db_session),
) -> ProofingRequestResponse:
    request = await proofing_request_service.get_by_token(db, token)
    return ProofingRequestResponse.model_validate(request)


@router.post(
    "/api/public/proofing-requests/{token}/approve",
    response_model=ProofingRequestResponse,
    responses={403: {"description": "Email may not answer this request", "model": ErrorResponse}},
    summary="Approve a request",
    description="Closure marks the media ready for revision; approval marks it approved.",
)
async def approve_request(
    token: str,
    body: ProofingRequestDecision,
    db: AsyncSession = Depends(get_db_session),
) -> ProofingRequestResponse:
    request = await proofing_request_service.approve(db, token, body.email)
    return ProofingRequestResponse.model_validate(request)


@router.post(
    "/api/public/proofing-requests/{token}/reject",
    response_model=ProofingRequestResponse,
    responses={403: {"description": "Email may not answer this request", "model": ErrorResponse}},
    summary="Reject a request",
)
async def reject_request(
    token: str,
    body: ProofingRequestDecision,
    db: AsyncSession = Depends(get_db_session),
) -> ProofingRequestResponse:
    request = await proofing_request_service.reject(db, token, body.email, body.reason)
    return ProofingRequestResponse.model_validate(request)
