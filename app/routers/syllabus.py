"""
Syllabus generation endpoints.

Route summary
-------------
POST /generate                  - tiered or course-grammar ("architect") generation
POST /infer-pillars             - infer topic pillars from module titles
POST /validate-grammar          - score modules against course-grammar rules
GET  /community                 - recently generated community syllabi
GET  /community/{discipline}    - one community syllabus
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.clients import get_gateway_client, get_perplexity_client, provider_http_error
from app.models.schemas import (
    CommunitySyllabusSummary,
    GrammarValidation,
    GrammarValidationRequest,
    PillarInferenceRequest,
    PillarInferenceResponse,
    SyllabusGenerateRequest,
    SyllabusResponse,
)
from app.services.ai_clients import AIProviderError, GatewayClient, PerplexityClient
from app.services.course_grammar import validate_course_grammar
from app.services.syllabus_generator import SyllabusGenerator, community_row_to_response
from app.services.topic_analysis import infer_topic_pillars

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=SyllabusResponse)
async def generate_syllabus(
    request: SyllabusGenerateRequest,
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> SyllabusResponse:
    """
    Generate (or fetch from the community cache) a syllabus for a discipline.

    ``mode=tiered`` searches real syllabi first and falls back to a designed
    course; ``mode=architect`` runs the course-grammar pipeline.
    """
    generator = SyllabusGenerator(perplexity, gateway)
    try:
        result = await generator.generate(
            request.discipline,
            db,
            discipline_path=request.discipline_path,
            mode=request.mode.value,
            force_refresh=request.force_refresh,
        )
    except AIProviderError as exc:
        logger.error("Syllabus generation failed for '%s': %s", request.discipline, exc)
        raise provider_http_error(exc)
    return SyllabusResponse(**result)


@router.post("/infer-pillars", response_model=PillarInferenceResponse)
async def infer_pillars(
    request: PillarInferenceRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> PillarInferenceResponse:
    """Infer thematic pillars for an existing module list."""
    if not request.discipline or not request.modules:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Discipline and modules are required",
        )
    modules = [m.model_dump() for m in request.modules]
    try:
        result = await infer_topic_pillars(gateway, request.discipline, modules, db)
    except AIProviderError as exc:
        logger.error("Pillar inference failed for '%s': %s", request.discipline, exc)
        raise provider_http_error(exc)
    return PillarInferenceResponse(**result)


@router.post("/validate-grammar", response_model=GrammarValidation)
async def validate_grammar(request: GrammarValidationRequest) -> GrammarValidation:
    modules = [m.model_dump() for m in request.modules]
    return GrammarValidation(**validate_course_grammar(modules, request.course_grammar))


@router.get("/community", response_model=List[CommunitySyllabusSummary])
async def list_community_syllabi(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> List[CommunitySyllabusSummary]:
    rows = await SyllabusGenerator.list_community(db, limit)
    return [
        CommunitySyllabusSummary(
            discipline=row.discipline,
            discipline_path=row.discipline_path,
            source=row.source,
            module_count=len(row.modules or []),
            composition_type=row.composition_type,
            updated_at=row.updated_at,
        )
        for row in rows
    ]


@router.get("/community/{discipline}", response_model=SyllabusResponse)
async def get_community_syllabus(
    discipline: str,
    db: AsyncSession = Depends(get_db),
) -> SyllabusResponse:
    row = await SyllabusGenerator.get_community(discipline, db)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No community syllabus for '{discipline}'.",
        )
    return SyllabusResponse(**community_row_to_response(row))
