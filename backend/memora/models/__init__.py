"""
Memora Backend — ORM Models
=============================

Importing this package registers every table on `Base.metadata`, which is
what Alembic autogenerate and the test suite's `create_all` rely on.
"""

from memora.models.guest_token import GuestToken
from memora.models.media import Media, MediaSet
from memora.models.phase import PhaseKind, PhaseStatus, Proofing, RawFile, Selection
from memora.models.proofing_request import ProofingRequest
from memora.models.subscription import Subscription, SubscriptionHistory, WebhookEvent
from memora.models.user import User

__all__ = [
    "GuestToken",
    "Media",
    "MediaSet",
    "PhaseKind",
    "PhaseStatus",
    "Proofing",
    "ProofingRequest",
    "RawFile",
    "Selection",
    "Subscription",
    "SubscriptionHistory",
    "User",
    "WebhookEvent",
]
