"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from app.config import settings
from app.database import get_db
from app.models.schemas import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _provider_status() -> dict:
    """Whether each external provider has credentials configured."""
    keys = {
        "perplexity": settings.PERPLEXITY_API_KEY,
        "gateway": settings.AI_GATEWAY_API_KEY,
        "anthropic": settings.ANTHROPIC_API_KEY,
        "firecrawl": settings.FIRECRAWL_API_KEY,
    }
    return {name: "configured" if key else "missing" for name, key in keys.items()}


@router.get("/", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and AI provider keys
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    providers = _provider_status()

    # Firecrawl is optional; the LLM providers are not
    llm_ready = all(providers[name] == "configured" for name in ("perplexity", "gateway", "anthropic"))
    overall_status = "healthy" if db_status == "ok" and llm_ready else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        providers=providers,
        timestamp=datetime.utcnow()
    )
