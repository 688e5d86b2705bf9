"""
Learning schedule endpoints.

Route summary
-------------
POST  /                          - create (or replace) a schedule for a saved syllabus
GET   /{schedule_id}             - schedule with its events
POST  /{schedule_id}/recalibrate - move pending events forward from today
PATCH /events/{event_id}         - mark an event done / not done
POST  /feasibility               - validate a time budget and recommend a depth
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.models.database_models import LearningSchedule, SavedSyllabus
from app.models.schemas import (
    FeasibilityRequest,
    FeasibilityResponse,
    ScheduleCreate,
    ScheduleCreateResponse,
    ScheduleEventResponse,
    ScheduleEventUpdate,
    ScheduleResponse,
)
from app.services.mission_control import plan_summary
from app.services.scheduler import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _schedule_response(service: ScheduleService, schedule: LearningSchedule) -> ScheduleResponse:
    events = await service.get_events(schedule.id)
    return ScheduleResponse(
        id=schedule.id,
        saved_syllabus_id=schedule.saved_syllabus_id,
        availability=schedule.availability or {},
        start_date=schedule.start_date,
        is_active=schedule.is_active,
        events=[ScheduleEventResponse.model_validate(e) for e in events],
    )


async def _owned_schedule(
    service: ScheduleService, schedule_id: str, user_id: str
) -> LearningSchedule:
    schedule = await service.get_schedule(schedule_id, user_id)
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Schedule {schedule_id} not found.",
        )
    return schedule


@router.post("/feasibility", response_model=FeasibilityResponse)
async def check_feasibility(request: FeasibilityRequest) -> FeasibilityResponse:
    """Whether the weekly hours and duration can cover the material."""
    return FeasibilityResponse(
        **plan_summary(request.hours_per_week, request.duration_weeks, request.skill_level.value)
    )


@router.post("", response_model=ScheduleCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    payload: ScheduleCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScheduleCreateResponse:
    """
    Map the syllabus' steps onto the learner's weekly availability.

    Passing ``existing_schedule_id`` replaces that schedule's events.
    """
    result = await db.execute(
        select(SavedSyllabus).where(
            SavedSyllabus.id == payload.saved_syllabus_id,
            SavedSyllabus.user_id == user_id,
        )
    )
    saved = result.scalar_one_or_none()
    if saved is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Saved syllabus {payload.saved_syllabus_id} not found.",
        )

    service = ScheduleService(db)
    existing = None
    if payload.existing_schedule_id:
        existing = await _owned_schedule(service, payload.existing_schedule_id, user_id)

    try:
        schedule, count = await service.create_or_replace(
            user_id, saved, payload.availability, payload.start_date, existing=existing
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    return ScheduleCreateResponse(success=True, schedule_id=schedule.id, events_count=count)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScheduleResponse:
    service = ScheduleService(db)
    schedule = await _owned_schedule(service, schedule_id, user_id)
    return await _schedule_response(service, schedule)


@router.post("/{schedule_id}/recalibrate", response_model=ScheduleResponse)
async def recalibrate_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScheduleResponse:
    """Re-place pending events from today; completed events keep their dates."""
    service = ScheduleService(db)
    schedule = await _owned_schedule(service, schedule_id, user_id)
    try:
        updated = await service.recalibrate(schedule)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.info("Recalibrated %d events of schedule %s", updated, schedule_id)
    return await _schedule_response(service, schedule)


@router.patch("/events/{event_id}", response_model=ScheduleEventResponse)
async def update_event(
    event_id: str,
    payload: ScheduleEventUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScheduleEventResponse:
    service = ScheduleService(db)
    event = await service.get_event(event_id, user_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found.",
        )
    event = await service.mark_event(event, payload.is_done)
    return ScheduleEventResponse.model_validate(event)
