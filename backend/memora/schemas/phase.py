"""
Memora Backend — Phase, Media & Guest Access Schemas
======================================================

What:  Request bodies and responses for owner phase management and the
       public guest endpoints.
Who:   Owner routes (routes/phases.py), guest routes (routes/public.py),
       raw-file downloads (routes/downloads.py).

Field naming:
    Guest-facing status and verification payloads keep the camelCase keys the
    web client already consumes (isOwner, isAccessible); everything else is
    snake_case.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from memora.security import is_valid_pin


# ══════════════════════════════════════════════════════════════════════════
# Owner Requests
# ══════════════════════════════════════════════════════════════════════════


class PhaseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    password: Optional[str] = Field(default=None, min_length=4, max_length=72)
    allowed_emails: List[EmailStr] = Field(default_factory=list)
    limit: Optional[int] = Field(
        default=None, ge=1, description="Phase-level selection/raw-file limit (null = unlimited)"
    )
    download_pin: Optional[str] = Field(
        default=None, description="4-digit PIN required to download raw files"
    )

    @field_validator("download_pin")
    @classmethod
    def validate_pin(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_pin(v):
            raise ValueError("download_pin must be exactly 4 digits")
        return v


class PhaseUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    password: Optional[str] = Field(
        default=None, max_length=72, description="Empty string removes the password"
    )
    allowed_emails: Optional[List[EmailStr]] = None
    limit: Optional[int] = Field(default=None, ge=1)
    download_pin: Optional[str] = Field(default=None, description="Empty string removes the PIN")

    @field_validator("download_pin")
    @classmethod
    def validate_pin(cls, v: Optional[str]) -> Optional[str]:
        if v and not is_valid_pin(v):
            raise ValueError("download_pin must be exactly 4 digits")
        return v


class MediaSetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sort_order: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(
        default=None, ge=1, description="Set-level limit; overrides the phase limit"
    )


class MediaCreate(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    file_path: str = Field(
        min_length=1, max_length=1024, description="Path relative to the storage root"
    )

    @field_validator("file_path")
    @classmethod
    def validate_relative(cls, v: str) -> str:
        if v.startswith("/") or ".." in v.split("/"):
            raise ValueError("file_path must be relative to the storage root")
        return v


class GuestTokenCreate(BaseModel):
    email: EmailStr
    password: Optional[str] = Field(
        default=None, description="Required when the phase is password protected"
    )


class PasswordVerifyRequest(BaseModel):
    password: str = Field(min_length=1, max_length=72)


class CompleteRequest(BaseModel):
    media_ids: List[uuid.UUID] = Field(
        default_factory=list, description="Media to mark selected before completing"
    )


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


class PhaseResponse(BaseModel):
    """Guest-safe phase representation (no allow-list, no hashes)."""
    id: uuid.UUID
    kind: str
    name: str
    description: Optional[str] = None
    status: str
    has_password: bool
    limit: Optional[int] = Field(default=None, description="Phase-level limit (null = unlimited)")
    selected_count: Optional[int] = Field(default=None, description="Selections counted toward the limit")
    remaining: Optional[int] = Field(default=None, description="Selections left (null = unlimited)")
    completed_at: Optional[datetime] = None
    created_at: datetime


class OwnerPhaseResponse(PhaseResponse):
    allowed_emails: List[str] = Field(default_factory=list)
    reset_limit_at: Optional[datetime] = None
    completed_by_email: Optional[str] = None
    auto_delete_at: Optional[datetime] = None
    has_download_pin: bool = False


class PhaseStatusResponse(BaseModel):
    id: uuid.UUID
    status: str
    name: str
    is_owner: bool = Field(serialization_alias="isOwner")
    is_accessible: bool = Field(serialization_alias="isAccessible")


class PasswordVerifyResponse(BaseModel):
    verified: bool
    message: str


class GuestTokenResponse(BaseModel):
    token: str
    email: str
    phase_id: uuid.UUID
    expires_at: datetime


class MediaSetResponse(BaseModel):
    id: uuid.UUID
    name: str
    sort_order: int
    limit: Optional[int] = Field(default=None, description="Set-level override (null = inherit)")
    media_count: int = 0
    selected_count: int = 0


class MediaResponse(BaseModel):
    id: uuid.UUID
    set_id: uuid.UUID
    filename: str
    file_path: str
    is_selected: bool
    selected_at: Optional[datetime] = None
    is_completed: bool
    is_rejected: bool
    is_ready_for_revision: bool = False

    model_config = {"from_attributes": True}


class ToggleSelectedResponse(BaseModel):
    media: MediaResponse
    limit: Optional[int] = None
    remaining: Optional[int] = None


class FilenamesResponse(BaseModel):
    filenames: List[str]
    count: int


class ResetLimitResponse(BaseModel):
    id: uuid.UUID
    reset_limit_at: datetime
    message: str


class DownloadJobResponse(BaseModel):
    job_id: str
    status: str = Field(description="processing, completed or failed")
    file_count: Optional[int] = None
    error: Optional[str] = None
