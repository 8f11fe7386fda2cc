"""Health check endpoint.

Verifies connectivity to the database and the chain node, returns
structured status. Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from title_registry.api.deps import get_db_session, get_gateway
from title_registry.infrastructure.chain.gateway import ChainGateway
from title_registry.logging_config import get_logger
from title_registry.schemas.property import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    session: AsyncSession = Depends(get_db_session),
    gateway: ChainGateway = Depends(get_gateway),
) -> HealthResponse:
    """Check connectivity to the database and the chain."""
    db_status = "unknown"
    chain_status = "unknown"

    try:
        await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    try:
        block = await gateway.ping()
        chain_status = f"healthy (block {block})"
    except Exception as exc:
        chain_status = f"unhealthy: {exc}"
        logger.error("health.chain_check_failed", error=str(exc))

    overall = (
        "ok" if db_status == "healthy" and chain_status.startswith("healthy") else "degraded"
    )

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        chain=chain_status,
    )
