"""
Step resource endpoints.

Route summary
-------------
POST /step             - curated resources for a step (cached per step/discipline)
POST /additional       - find one more resource of a given type
POST /report           - report a broken link and get a replacement
POST /recover-podcast  - find a working URL for a podcast episode
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_optional_user_id
from app.dependencies.clients import get_perplexity_client, get_web_probe, provider_http_error
from app.models.schemas import (
    AdditionalResourceRequest,
    AdditionalResourceResponse,
    RecoverPodcastRequest,
    RecoverPodcastResponse,
    ReportResourceRequest,
    ReportResourceResponse,
    StepResources,
    StepResourcesRequest,
    StepResourcesResponse,
)
from app.services.ai_clients import AIProviderError, PerplexityClient
from app.services.step_resources import StepResourceService
from app.services.web_probe import WebProbe

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/step", response_model=StepResourcesResponse)
async def get_step_resources(
    request: StepResourcesRequest,
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    probe: WebProbe = Depends(get_web_probe),
) -> StepResourcesResponse:
    """
    Video, deep reading, book and alternatives for one step.

    ``used_video_urls`` lists videos already shown on earlier steps; they are
    not offered again as the primary video.
    """
    service = StepResourceService(perplexity, db, probe)
    try:
        resources, cached = await service.fetch(
            request.step_title,
            request.discipline,
            syllabus_urls=request.syllabus_urls,
            used_video_urls=request.used_video_urls,
            force_refresh=request.force_refresh,
        )
    except AIProviderError as exc:
        logger.error("Resource fetch failed for '%s': %s", request.step_title, exc)
        raise provider_http_error(exc)

    return StepResourcesResponse(
        step_title=request.step_title,
        discipline=request.discipline,
        resources=StepResources(**resources),
        cached=cached,
    )


@router.post("/additional", response_model=AdditionalResourceResponse)
async def find_additional_resource(
    request: AdditionalResourceRequest,
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    probe: WebProbe = Depends(get_web_probe),
) -> AdditionalResourceResponse:
    service = StepResourceService(perplexity, db, probe)
    try:
        data = await service.find_additional(
            request.resource_type.value,
            request.step_title,
            request.discipline,
            existing_urls=request.existing_urls,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except AIProviderError as exc:
        raise provider_http_error(exc)
    return AdditionalResourceResponse(**data)


@router.post("/report", response_model=ReportResourceResponse)
async def report_broken_link(
    request: ReportResourceRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    probe: WebProbe = Depends(get_web_probe),
) -> ReportResourceResponse:
    """Record the broken link; the report stands even when no replacement is found."""
    service = StepResourceService(perplexity, db, probe)
    data = await service.report_and_replace(
        request.broken_url,
        request.resource_type,
        request.step_title,
        request.discipline,
        report_reason=request.report_reason,
        user_id=user_id,
    )
    return ReportResourceResponse(**data)


@router.post("/recover-podcast", response_model=RecoverPodcastResponse)
async def recover_podcast(
    request: RecoverPodcastRequest,
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    probe: WebProbe = Depends(get_web_probe),
) -> RecoverPodcastResponse:
    service = StepResourceService(perplexity, db, probe)
    data = await service.recover_podcast_link(
        request.title, source=request.source, original_url=request.original_url
    )
    return RecoverPodcastResponse(**data)
