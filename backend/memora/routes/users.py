"""
Memora Backend — Owner Account Routes
=======================================
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.schemas.common import ErrorResponse
from memora.schemas.subscription import UserCreate, UserCreatedResponse
from memora.services.user_service import user_service

router = APIRouter(prefix="/api", tags=["Users"])


@router.post(
    "/users",
    response_model=UserCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Email already registered", "model": ErrorResponse}},
    summary="Register a photographer account",
    description=(
        "Creates an owner account on the starter tier and returns its personal access "
        "token. The token is shown only in this response; send it as a Bearer token."
    ),
)
async def register_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db_session),
) -> UserCreatedResponse:
    user, token = await user_service.create_user(db, email=body.email, name=body.name)
    return UserCreatedResponse(
        id=user.id,
        email=user.email,
        memora_tier=user.memora_tier,
        api_token=token,
    )
