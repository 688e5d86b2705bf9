"""
Capstone assignment endpoint.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.clients import get_gateway_client, get_perplexity_client, provider_http_error
from app.models.schemas import CapstoneAssignmentRequest, CapstoneAssignmentResponse
from app.services.ai_clients import AIProviderError, GatewayClient, PerplexityClient
from app.services.assignments import AssignmentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=CapstoneAssignmentResponse)
async def generate_assignment(
    request: CapstoneAssignmentRequest,
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> CapstoneAssignmentResponse:
    """
    Practical assignment for a capstone step.

    Tries extraction from the step's sources, then OER repositories, then
    synthesizes one; ``source_tier`` tells which tier produced it.
    """
    service = AssignmentService(perplexity, gateway, db)
    try:
        row, cached = await service.generate(
            request.step_title,
            request.discipline,
            source_urls=request.source_urls,
            modules_covered=request.modules_covered,
            force_refresh=request.force_refresh,
        )
    except AIProviderError as exc:
        logger.error("Assignment generation failed for '%s': %s", request.step_title, exc)
        raise provider_http_error(exc)

    response = CapstoneAssignmentResponse.model_validate(row)
    response.cached = cached
    return response
