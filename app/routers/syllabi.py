"""
Saved syllabi and Mission Control endpoints.

All routes are scoped to the X-User-Id caller; another learner's syllabus
is reported as 404.

Route summary
-------------
POST   /api/syllabi                                  - save a syllabus
GET    /api/syllabi                                  - list the caller's syllabi
GET    /api/syllabi/{syllabus_id}                    - syllabus detail
DELETE /api/syllabi/{syllabus_id}                    - delete (cascades to schedules)
PUT    /api/syllabi/{syllabus_id}/modules            - replace modules (resets Mission Control)
GET    /api/syllabi/{syllabus_id}/export             - markdown export with cached resources

GET    /api/syllabi/{syllabus_id}/mission            - Mission Control state
POST   /api/syllabi/{syllabus_id}/mission/toggle     - toggle a step in the selection
POST   /api/syllabi/{syllabus_id}/mission/select-all
POST   /api/syllabi/{syllabus_id}/mission/deselect-all
POST   /api/syllabi/{syllabus_id}/mission/reset-selection
POST   /api/syllabi/{syllabus_id}/mission/confirm    - confirm path (+ background prefetch)
POST   /api/syllabi/{syllabus_id}/mission/navigate   - move to a confirmed step
POST   /api/syllabi/{syllabus_id}/mission/re-enable  - bring a skipped step back
POST   /api/syllabi/{syllabus_id}/mission/reset      - back to draft

GET    /api/syllabi/{syllabus_id}/prefetch           - prefetch progress
POST   /api/syllabi/{syllabus_id}/prefetch/stop      - stop prefetching
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id, get_owned_syllabus
from app.dependencies.clients import get_perplexity_client, get_web_probe
from app.models.database_models import SavedSyllabus
from app.models.schemas import (
    ConfirmPathRequest,
    MissionControlResponse,
    MissionStats,
    MissionStep,
    PrefetchStatusResponse,
    SavedSyllabusCreate,
    SavedSyllabusModulesUpdate,
    SavedSyllabusResponse,
    StepIndexRequest,
)
from app.services.ai_clients import PerplexityClient
from app.services.mission_control import MissionControl
from app.services.prefetch_manager import PrefetchStatus, prefetch_manager, run_prefetch
from app.services.syllabus_export import export_filename, export_saved_syllabus
from app.services.web_probe import WebProbe

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _prefetch_response(status_obj: PrefetchStatus) -> PrefetchStatusResponse:
    return PrefetchStatusResponse(
        syllabus_id=status_obj.syllabus_id,
        phase=status_obj.phase.value,
        total=status_obj.total,
        progress=status_obj.progress,
        current_step=status_obj.current_step,
        completed_steps=list(status_obj.completed_steps),
        failed_steps=list(status_obj.failed_steps),
        is_running=prefetch_manager.is_running(status_obj.syllabus_id),
        elapsed_seconds=status_obj.elapsed_seconds,
    )


def _mission_response(saved: SavedSyllabus, mc: MissionControl) -> MissionControlResponse:
    prefetch = prefetch_manager.get_status(saved.id)
    current = mc.current_step
    return MissionControlResponse(
        syllabus_id=saved.id,
        mode=mc.mode,
        selected_steps=sorted(mc.selected_steps),
        active_step_index=mc.active_step_index,
        confirmed_steps=[MissionStep(**s) for s in mc.confirmed_steps],
        current_step=MissionStep(**current) if current else None,
        stats=MissionStats(**mc.stats),
        prefetch=_prefetch_response(prefetch) if prefetch else None,
    )


def _load_mission(saved: SavedSyllabus) -> MissionControl:
    return MissionControl.from_persisted(saved.modules or [], saved.mission_state)


async def _apply(
    saved: SavedSyllabus,
    db: AsyncSession,
    action: Callable[[MissionControl], None],
) -> MissionControlResponse:
    """Run *action* on the syllabus' Mission Control and persist the result."""
    mc = _load_mission(saved)
    try:
        action(mc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    saved.mission_state = mc.to_persisted()
    await db.flush()
    return _mission_response(saved, mc)


# ---------------------------------------------------------------------------
# Saved syllabus CRUD
# ---------------------------------------------------------------------------

@router.post("", response_model=SavedSyllabusResponse, status_code=status.HTTP_201_CREATED)
async def create_saved_syllabus(
    payload: SavedSyllabusCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SavedSyllabusResponse:
    saved = SavedSyllabus(
        user_id=user_id,
        discipline=payload.discipline,
        discipline_path=payload.discipline_path,
        modules=[m.model_dump() for m in payload.modules],
        source=payload.source,
        source_url=payload.source_url,
        raw_sources=payload.raw_sources,
    )
    db.add(saved)
    await db.flush()
    await db.refresh(saved)
    logger.info("Saved syllabus %s for user %s (%s)", saved.id, user_id, saved.discipline)
    return SavedSyllabusResponse.model_validate(saved)


@router.get("", response_model=List[SavedSyllabusResponse])
async def list_saved_syllabi(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[SavedSyllabusResponse]:
    result = await db.execute(
        select(SavedSyllabus)
        .where(SavedSyllabus.user_id == user_id)
        .order_by(SavedSyllabus.created_at.desc())
    )
    return [SavedSyllabusResponse.model_validate(s) for s in result.scalars().all()]


@router.get("/{syllabus_id}", response_model=SavedSyllabusResponse)
async def get_saved_syllabus(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
) -> SavedSyllabusResponse:
    return SavedSyllabusResponse.model_validate(saved)


@router.delete("/{syllabus_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_saved_syllabus(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> Response:
    prefetch_manager.stop(saved.id)
    await db.delete(saved)
    await db.flush()
    logger.info("Deleted saved syllabus %s", saved.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{syllabus_id}/modules", response_model=SavedSyllabusResponse)
async def replace_modules(
    payload: SavedSyllabusModulesUpdate,
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> SavedSyllabusResponse:
    """Replace the module list; Mission Control starts over in draft mode."""
    prefetch_manager.stop(saved.id)
    saved.modules = [m.model_dump() for m in payload.modules]
    saved.mission_state = MissionControl(saved.modules).to_persisted()
    await db.flush()
    await db.refresh(saved)
    return SavedSyllabusResponse.model_validate(saved)


@router.get("/{syllabus_id}/export")
async def export_syllabus(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Download the syllabus as markdown (hidden modules left out)."""
    markdown = await export_saved_syllabus(saved, db)
    filename = export_filename(saved.discipline)
    return Response(
        content=markdown,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Mission Control
# ---------------------------------------------------------------------------

@router.get("/{syllabus_id}/mission", response_model=MissionControlResponse)
async def get_mission(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
) -> MissionControlResponse:
    return _mission_response(saved, _load_mission(saved))


@router.post("/{syllabus_id}/mission/toggle", response_model=MissionControlResponse)
async def toggle_step(
    payload: StepIndexRequest,
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    return await _apply(saved, db, lambda mc: mc.toggle_step(payload.index))


@router.post("/{syllabus_id}/mission/select-all", response_model=MissionControlResponse)
async def select_all_steps(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    return await _apply(saved, db, lambda mc: mc.select_all())


@router.post("/{syllabus_id}/mission/deselect-all", response_model=MissionControlResponse)
async def deselect_all_steps(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    return await _apply(saved, db, lambda mc: mc.deselect_all())


@router.post("/{syllabus_id}/mission/reset-selection", response_model=MissionControlResponse)
async def reset_selection(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    return await _apply(saved, db, lambda mc: mc.reset_selection())


@router.post("/{syllabus_id}/mission/confirm", response_model=MissionControlResponse)
async def confirm_path(
    payload: Optional[ConfirmPathRequest] = None,
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
    perplexity: PerplexityClient = Depends(get_perplexity_client),
    probe: WebProbe = Depends(get_web_probe),
) -> MissionControlResponse:
    """
    Confirm the selected steps as the learning path.

    Unless ``prefetch`` is false, resources for every confirmed step are
    then fetched in the background (poll ``/prefetch`` for progress).
    """
    payload = payload or ConfirmPathRequest()
    mc = _load_mission(saved)
    titles = mc.confirm_path()
    if not titles:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Select at least one step before confirming the path.",
        )
    saved.mission_state = mc.to_persisted()
    await db.flush()

    if payload.prefetch:
        steps = [dict(s) for s in mc.confirmed_steps]
        prefetch_status = PrefetchStatus(syllabus_id=saved.id, total=len(steps))
        prefetch_manager.start(
            saved.id,
            run_prefetch(saved.discipline, steps, prefetch_status, perplexity, probe),
            prefetch_status,
        )

    return _mission_response(saved, mc)


@router.post("/{syllabus_id}/mission/navigate", response_model=MissionControlResponse)
async def navigate_to_step(
    payload: StepIndexRequest,
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    return await _apply(saved, db, lambda mc: mc.navigate_to_step(payload.index))


@router.post("/{syllabus_id}/mission/re-enable", response_model=MissionControlResponse)
async def re_enable_step(
    payload: StepIndexRequest,
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    """Add a skipped step (by its syllabus index) back into the path."""
    return await _apply(saved, db, lambda mc: mc.re_enable_step(payload.index))


@router.post("/{syllabus_id}/mission/reset", response_model=MissionControlResponse)
async def reset_mission(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
    db: AsyncSession = Depends(get_db),
) -> MissionControlResponse:
    prefetch_manager.stop(saved.id)
    return await _apply(saved, db, lambda mc: mc.reset())


# ---------------------------------------------------------------------------
# Prefetch
# ---------------------------------------------------------------------------

@router.get("/{syllabus_id}/prefetch", response_model=PrefetchStatusResponse)
async def get_prefetch_status(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
) -> PrefetchStatusResponse:
    prefetch = prefetch_manager.get_status(saved.id)
    if prefetch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No prefetch has been started for this syllabus.",
        )
    return _prefetch_response(prefetch)


@router.post("/{syllabus_id}/prefetch/stop", response_model=PrefetchStatusResponse)
async def stop_prefetch(
    saved: SavedSyllabus = Depends(get_owned_syllabus),
) -> PrefetchStatusResponse:
    prefetch = prefetch_manager.get_status(saved.id)
    if prefetch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No prefetch has been started for this syllabus.",
        )
    prefetch_manager.stop(saved.id)
    return _prefetch_response(prefetch)
