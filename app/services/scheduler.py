"""
Learning schedules: map curriculum steps onto calendar days.

Availability is a mapping of lower-case weekday names to study minutes.
Each step becomes one event placed on the first day (from a moving cursor)
with enough minutes for it; the cursor then moves to the following day, so
there is at most one step per day.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import LearningSchedule, SavedSyllabus, ScheduleEvent
from app.services.mission_control import active_steps

logger = logging.getLogger(__name__)

# Indexed like date.weekday()
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def validate_availability(availability: Mapping[str, Any]) -> Dict[str, int]:
    """
    Normalise an availability mapping.

    Raises:
        ValueError: unknown weekday or negative minutes.
    """
    cleaned: Dict[str, int] = {}
    for day, minutes in availability.items():
        key = str(day).strip().lower()
        if key not in WEEKDAYS:
            raise ValueError(f"Unknown weekday in availability: {day}")
        minutes = int(minutes or 0)
        if minutes < 0:
            raise ValueError(f"Availability for {key} cannot be negative")
        cleaned[key] = minutes
    return cleaned


def _next_fitting_day(cursor: date, minutes: int, availability: Mapping[str, int]) -> date:
    # one week is enough to see every weekday once
    for offset in range(7):
        day = cursor + timedelta(days=offset)
        if availability.get(WEEKDAYS[day.weekday()], 0) >= minutes:
            return day
    raise ValueError(
        f"No day in the weekly availability has {minutes} free minutes for a study session"
    )


def flatten_steps(modules: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Modules with nested ``steps`` contribute each step; others count as one step."""
    flat: List[Dict[str, Any]] = []
    for module in modules:
        nested = module.get("steps")
        if isinstance(nested, list) and nested:
            flat.extend(dict(step) for step in nested if isinstance(step, Mapping))
        else:
            flat.append(dict(module))
    return flat


def generate_calendar_mapping(
    steps: Sequence[Mapping[str, Any]],
    availability: Mapping[str, int],
    start_date: date,
    default_minutes: int = settings.DEFAULT_STEP_MINUTES,
) -> List[Dict[str, Any]]:
    """
    Place each step on the calendar.

    Returns event dicts (``module_index``, ``step_title``,
    ``estimated_minutes``, ``scheduled_date``, ``is_done``).

    Raises:
        ValueError: a step fits on no weekday.
    """
    events: List[Dict[str, Any]] = []
    cursor = start_date
    for index, step in enumerate(steps):
        minutes = int(step.get("estimated_minutes") or default_minutes)
        day = _next_fitting_day(cursor, minutes, availability)
        events.append(
            {
                "module_index": index,
                "step_title": step.get("title") or "Untitled Step",
                "estimated_minutes": minutes,
                "scheduled_date": day,
                "is_done": False,
            }
        )
        cursor = day + timedelta(days=1)
    return events


def recalculate_event_dates(
    events: Sequence[Dict[str, Any]],
    availability: Mapping[str, int],
    start_date: date,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """
    Re-place pending events from ``max(start_date, today)`` onwards.

    Completed events keep their dates.  Returns the completed events
    followed by the re-dated pending ones (ordered by module index).
    """
    today = today or date.today()
    done = [e for e in events if e.get("is_done")]
    pending = sorted((e for e in events if not e.get("is_done")), key=lambda e: e["module_index"])

    cursor = max(start_date, today)
    updated = []
    for event in pending:
        minutes = event.get("estimated_minutes") or settings.DEFAULT_STEP_MINUTES
        day = _next_fitting_day(cursor, minutes, availability)
        updated.append({**event, "scheduled_date": day})
        cursor = day + timedelta(days=1)
    return done + updated


class ScheduleService:
    """Persistence around the calendar mapping."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_schedule(self, schedule_id: str, user_id: str) -> Optional[LearningSchedule]:
        result = await self.db.execute(
            select(LearningSchedule).where(
                LearningSchedule.id == schedule_id,
                LearningSchedule.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_events(self, schedule_id: str) -> List[ScheduleEvent]:
        result = await self.db.execute(
            select(ScheduleEvent)
            .where(ScheduleEvent.schedule_id == schedule_id)
            .order_by(ScheduleEvent.module_index)
        )
        return list(result.scalars().all())

    async def get_event(self, event_id: str, user_id: str) -> Optional[ScheduleEvent]:
        result = await self.db.execute(
            select(ScheduleEvent)
            .join(LearningSchedule, ScheduleEvent.schedule_id == LearningSchedule.id)
            .where(ScheduleEvent.id == event_id, LearningSchedule.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def steps_for(saved: SavedSyllabus) -> List[Dict[str, Any]]:
        """Confirmed steps of an active mission, otherwise every module step."""
        modules = saved.modules or []
        confirmed = active_steps(modules, saved.mission_state)
        return flatten_steps(confirmed if confirmed is not None else modules)

    async def create_or_replace(
        self,
        user_id: str,
        saved: SavedSyllabus,
        availability: Mapping[str, Any],
        start_date: date,
        existing: Optional[LearningSchedule] = None,
    ) -> Tuple[LearningSchedule, int]:
        """
        Build a schedule for *saved*, replacing the events of *existing*.

        Raises:
            ValueError: invalid availability, or a step that fits no day.
        """
        availability = validate_availability(availability)
        events = generate_calendar_mapping(self.steps_for(saved), availability, start_date)
        logger.info("Generated %d schedule events for syllabus %s", len(events), saved.id)

        if existing is not None:
            schedule = existing
            schedule.availability = availability
            schedule.start_date = start_date
            await self.db.execute(delete(ScheduleEvent).where(ScheduleEvent.schedule_id == schedule.id))
        else:
            schedule = LearningSchedule(
                user_id=user_id,
                saved_syllabus_id=saved.id,
                availability=availability,
                start_date=start_date,
                is_active=True,
            )
            self.db.add(schedule)
            await self.db.flush()

        self.db.add_all(ScheduleEvent(schedule_id=schedule.id, **event) for event in events)
        await self.db.flush()
        return schedule, len(events)

    async def recalibrate(self, schedule: LearningSchedule, today: Optional[date] = None) -> int:
        """Move pending events forward from today; returns the number of events updated."""
        events = await self.get_events(schedule.id)
        logger.info("Recalibrating %d events of schedule %s", len(events), schedule.id)
        by_id = {e.id: e for e in events}
        updated = recalculate_event_dates(
            [
                {
                    "id": e.id,
                    "module_index": e.module_index,
                    "estimated_minutes": e.estimated_minutes,
                    "scheduled_date": e.scheduled_date,
                    "is_done": e.is_done,
                }
                for e in events
            ],
            schedule.availability or {},
            schedule.start_date,
            today,
        )
        for item in updated:
            by_id[item["id"]].scheduled_date = item["scheduled_date"]
        await self.db.flush()
        return len(updated)

    async def mark_event(self, event: ScheduleEvent, is_done: bool) -> ScheduleEvent:
        event.is_done = is_done
        event.completed_at = datetime.now(timezone.utc) if is_done else None
        await self.db.flush()
        return event
