"""
Memora Backend — Account & Subscription Schemas
=================================================
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Provider = Literal["stripe", "paystack", "flutterwave", "paypal"]
Tier = Literal["pro", "studio", "business"]
BillingCycle = Literal["monthly", "annual"]


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(default="", max_length=255)


class UserCreatedResponse(BaseModel):
    id: uuid.UUID
    email: str
    memora_tier: str
    api_token: str = Field(description="Personal access token; shown only once")


class CheckoutRequest(BaseModel):
    provider: Provider
    tier: Tier
    billing_cycle: BillingCycle = "monthly"


class CheckoutResponse(BaseModel):
    reference: str
    provider: str
    callback_url: str
    expires_in: int = Field(description="Seconds the pending checkout is remembered")


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    payment_provider: str
    tier: str
    billing_cycle: str
    status: str
    amount_cents: int
    currency: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CurrentSubscriptionResponse(BaseModel):
    memora_tier: str
    subscription: Optional[SubscriptionResponse] = None


class SubscriptionHistoryItem(BaseModel):
    id: uuid.UUID
    event_type: str
    from_tier: Optional[str] = None
    to_tier: Optional[str] = None
    billing_cycle: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookAck(BaseModel):
    received: bool = True
    status: str = Field(description="processed, duplicate or ignored")
