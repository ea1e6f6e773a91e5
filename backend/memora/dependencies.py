"""
Memora Backend — Request Dependencies
=======================================

What:  FastAPI dependencies shared by routers: owner authentication, guest
       token extraction and pagination parameters.

Credentials:
    Owner:  Authorization: Bearer <personal access token>
    Guest:  Authorization: Bearer <guest token>  →  X-Guest-Token header
            →  ?guest_token= query parameter (first one present wins)
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.exceptions import AuthenticationError
from memora.models.user import User
from memora.services.pagination import DEFAULT_PER_PAGE, MAX_PER_PAGE
from memora.services.user_service import user_service

bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[User]:
    """The owner for a valid access token, else None (guest tokens resolve to None)."""
    if credentials is None or not credentials.credentials:
        return None
    return await user_service.get_by_token(db, credentials.credentials)


async def get_current_owner(owner: Optional[User] = Depends(get_optional_owner)) -> User:
    if owner is None:
        raise AuthenticationError(message="A valid owner access token is required")
    return owner


async def extract_guest_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_guest_token: Optional[str] = Header(default=None, alias="X-Guest-Token"),
    guest_token: Optional[str] = Query(default=None, description="Guest token fallback"),
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return x_guest_token or guest_token or None


@dataclass
class PageParams:
    page: int
    per_page: int


def pagination_params(
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    per_page: int = Query(
        default=DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE, description="Items per page"
    ),
) -> PageParams:
    return PageParams(page=page, per_page=per_page)
