"""
Memora Backend — Proofing Request Schemas
===========================================

What:  Bodies and responses for closure/approval requests.
Who:   routes/proofing_requests.py.

The owner view includes the token and public_url to send to the client;
the client view (fetched by token) leaves the token out.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class ProofingRequestCreate(BaseModel):
    media_id: uuid.UUID
    request_type: Literal["closure", "approval"]
    todos: List[str] = Field(
        default_factory=list, max_length=50, description="Closure requests: outstanding edits"
    )
    message: Optional[str] = Field(default=None, max_length=5000)


class ProofingRequestDecision(BaseModel):
    email: EmailStr
    reason: Optional[str] = Field(default=None, max_length=5000, description="Rejections only")


class ProofingRequestResponse(BaseModel):
    id: uuid.UUID
    proofing_id: uuid.UUID
    media_id: uuid.UUID
    request_type: str
    status: str
    todos: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by_email: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by_email: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OwnerProofingRequestResponse(ProofingRequestResponse):
    token: str
    public_url: str
