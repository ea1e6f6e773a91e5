"""
Memora Backend — Health Check Route
=====================================

What:  Liveness/readiness probe for Docker and load balancers.
How:   SELECT 1 through the request's session, plus the PayPal verification
       circuit breaker state (no outbound call is made).

Status levels:
    healthy    database reachable, PayPal circuit closed
    degraded   database reachable, PayPal circuit open or half-open
    unhealthy  database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from memora import __version__
from memora.database import get_db_session
from memora.schemas.common import HealthResponse
from memora.services.payments import paypal_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Database connectivity and payment verification circuit state.",
)
async def health_check(
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    paypal_status = paypal_provider.health()
    if paypal_status != "closed" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        paypal=paypal_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
