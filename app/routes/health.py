"""
Irshad Backend: Health Check Route
===================================

What:  GET /health for Docker health checks and load balancer probes.
How:   `SELECT 1` against the database plus the Stripe circuit breaker state.

Status levels:
    healthy    database reachable, breaker closed              (200)
    degraded   database reachable, Stripe breaker open         (200)
    unhealthy  database unreachable                            (503)
"""

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app import __version__
from app.database import engine
from app.schemas.common import HealthResponse
from app.services.stripe_service import stripe_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    stripe_state = stripe_gateway.circuit_breaker.state
    if stripe_state == "open" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        database=db_status,
        stripe=stripe_state,
        version=__version__,
    )
