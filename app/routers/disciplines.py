"""
Academic discipline catalog endpoints.

Route summary
-------------
GET  /browse          - children one level below an ancestor path
GET  /search          - prefix + trigram fuzzy search
POST /ai-match        - LLM-assisted matching of a free-text query
POST /import          - load the bundled CSV for a locale
POST /import/upload   - load an uploaded CSV for a locale
POST /translate       - translate a batch of the English catalog
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.clients import get_anthropic_client, get_gateway_client, provider_http_error
from app.models.schemas import (
    AIMatchRequest,
    AIMatchResponse,
    DisciplineBrowseResponse,
    DisciplineImportRequest,
    DisciplineImportResponse,
    DisciplineSearchResponse,
    DisciplineTranslateRequest,
    DisciplineTranslateResponse,
)
from app.services.ai_clients import AIProviderError, AnthropicClient, GatewayClient
from app.services.disciplines import DisciplineCatalog, match_dict

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_locale(locale: str) -> str:
    if locale not in settings.SUPPORTED_LOCALES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported locale '{locale}'. Must be one of: {', '.join(settings.SUPPORTED_LOCALES)}",
        )
    return locale


# ---------------------------------------------------------------------------
# Browse & search
# ---------------------------------------------------------------------------

@router.get("/browse", response_model=DisciplineBrowseResponse)
async def browse_disciplines(
    locale: str = "en",
    path: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> DisciplineBrowseResponse:
    """
    List the distinct children below *path* (repeat ``path`` once per level,
    e.g. ``?path=Humanities&path=Philosophy``).  No path lists the L1 domains.
    """
    _check_locale(locale)
    try:
        data = await DisciplineCatalog(db).browse(locale, path or [])
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return DisciplineBrowseResponse(**data)


@router.get("/search", response_model=DisciplineSearchResponse)
async def search_disciplines(
    q: str = Query(..., min_length=1),
    locale: str = "en",
    limit: int = Query(20, ge=1, le=100),
    threshold: float = Query(DisciplineCatalog.DEFAULT_THRESHOLD, ge=0.0, le=1.0),
    db: AsyncSession = Depends(get_db),
) -> DisciplineSearchResponse:
    _check_locale(locale)
    results = await DisciplineCatalog(db).search(q, locale, limit, threshold)
    return DisciplineSearchResponse(
        query=q,
        results=[match_dict(d, score, match_type) for d, score, match_type in results],
    )


@router.post("/ai-match", response_model=AIMatchResponse)
async def ai_match_disciplines(
    request: AIMatchRequest,
    db: AsyncSession = Depends(get_db),
    anthropic: AnthropicClient = Depends(get_anthropic_client),
) -> AIMatchResponse:
    """
    Let Claude choose the catalog entries that best match a free-text query.

    AI failures are reported in ``error`` with an empty match list (200).
    """
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")
    _check_locale(request.locale)

    data = await DisciplineCatalog(db).ai_match(
        anthropic, request.query, request.limit, request.locale
    )
    logger.info("AI match for '%s': %d matches", request.query, len(data["matches"]))
    return AIMatchResponse(**data)


# ---------------------------------------------------------------------------
# Import & translation
# ---------------------------------------------------------------------------

@router.post("/import", response_model=DisciplineImportResponse)
async def import_disciplines(
    request: DisciplineImportRequest,
    db: AsyncSession = Depends(get_db),
) -> DisciplineImportResponse:
    """Load ``academic_disciplines[_<locale>].csv`` from the catalog data directory."""
    _check_locale(request.locale)
    try:
        data = await DisciplineCatalog(db).import_csv_file(request.locale, request.replace)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return DisciplineImportResponse(**data)


@router.post("/import/upload", response_model=DisciplineImportResponse)
async def upload_disciplines(
    file: UploadFile = File(...),
    locale: str = Form("en"),
    replace: bool = Form(False),
    db: AsyncSession = Depends(get_db),
) -> DisciplineImportResponse:
    """Load catalog rows for *locale* from an uploaded CSV file."""
    _check_locale(locale)
    content = await file.read()
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="CSV file must be UTF-8 encoded",
        )
    data = await DisciplineCatalog(db).import_csv_text(text, locale, replace)
    return DisciplineImportResponse(**data)


@router.post("/translate", response_model=DisciplineTranslateResponse)
async def translate_disciplines(
    request: DisciplineTranslateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> DisciplineTranslateResponse:
    """Translate one batch of the English catalog; call again with ``next_offset``."""
    try:
        data = await DisciplineCatalog(db).translate_batch(
            gateway, request.target_locale, request.offset, request.batch_size
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except AIProviderError as exc:
        raise provider_http_error(exc)
    return DisciplineTranslateResponse(**data)
