"""
Step summary (course notes) endpoint.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.clients import get_gateway_client, provider_http_error
from app.models.schemas import StepSummaryRequest, StepSummaryResponse
from app.services.ai_clients import AIProviderError, GatewayClient
from app.services.step_summary import StepSummaryService, resolve_length

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=StepSummaryResponse)
async def generate_step_summary(
    request: StepSummaryRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> StepSummaryResponse:
    """
    HTML course notes for a step, cached per (step, discipline, length, locale).
    """
    length = resolve_length(request.length)
    service = StepSummaryService(gateway, db)
    try:
        summary, cached = await service.generate(
            request.step_title,
            request.discipline,
            length=length,
            locale=request.locale,
            force_refresh=request.force_refresh,
            step_description=request.step_description,
            source_content=request.source_content,
            resources=request.resources.model_dump() if request.resources else None,
            learning_objective=request.learning_objective,
            pedagogical_function=request.pedagogical_function,
            cognitive_level=request.cognitive_level,
            narrative_position=request.narrative_position,
            evidence_of_mastery=request.evidence_of_mastery,
        )
    except AIProviderError as exc:
        logger.error("Summary generation failed for '%s': %s", request.step_title, exc)
        raise provider_http_error(exc)

    return StepSummaryResponse(
        step_title=request.step_title,
        discipline=request.discipline,
        length=length,
        locale=request.locale,
        summary=summary,
        cached=cached,
    )
