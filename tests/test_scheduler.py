"""Tests for calendar mapping and the /api/schedules endpoints."""
from datetime import date

import pytest

from app.services.scheduler import (
    flatten_steps,
    generate_calendar_mapping,
    recalculate_event_dates,
    validate_availability,
)
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_saved, make_modules

MONDAY = date(2030, 1, 7)
MON_WED = {"monday": 60, "wednesday": 60}


# ---------------------------------------------------------------------------
# Calendar mapping
# ---------------------------------------------------------------------------

def test_one_step_per_fitting_day():
    steps = [{"title": f"Step {i}"} for i in range(4)]
    events = generate_calendar_mapping(steps, MON_WED, MONDAY, default_minutes=45)

    assert [e["scheduled_date"] for e in events] == [
        date(2030, 1, 7),
        date(2030, 1, 9),
        date(2030, 1, 14),
        date(2030, 1, 16),
    ]
    assert [e["module_index"] for e in events] == [0, 1, 2, 3]
    assert all(e["estimated_minutes"] == 45 and not e["is_done"] for e in events)


def test_long_step_waits_for_a_day_with_enough_time():
    availability = {"monday": 30, "saturday": 120}
    steps = [{"title": "Short", "estimated_minutes": 30}, {"title": "Long", "estimated_minutes": 90}]
    events = generate_calendar_mapping(steps, availability, MONDAY)

    assert events[0]["scheduled_date"] == MONDAY
    assert events[1]["scheduled_date"] == date(2030, 1, 12)


def test_step_that_fits_no_day_raises():
    with pytest.raises(ValueError):
        generate_calendar_mapping([{"title": "Marathon", "estimated_minutes": 300}], MON_WED, MONDAY)


def test_untitled_step_gets_placeholder():
    events = generate_calendar_mapping([{}], MON_WED, MONDAY)
    assert events[0]["step_title"] == "Untitled Step"


def test_validate_availability():
    assert validate_availability({"Monday": 30, "friday": None}) == {"monday": 30, "friday": 0}
    with pytest.raises(ValueError):
        validate_availability({"funday": 30})
    with pytest.raises(ValueError):
        validate_availability({"monday": -5})


def test_flatten_steps_expands_nested_steps():
    modules = [
        {"title": "Module 1", "steps": [{"title": "1a"}, {"title": "1b"}]},
        {"title": "Module 2"},
    ]
    assert [s["title"] for s in flatten_steps(modules)] == ["1a", "1b", "Module 2"]


def test_recalculate_keeps_done_events_and_moves_pending():
    events = [
        {"module_index": 0, "estimated_minutes": 45, "scheduled_date": date(2030, 1, 7), "is_done": True},
        {"module_index": 2, "estimated_minutes": 45, "scheduled_date": date(2030, 1, 14), "is_done": False},
        {"module_index": 1, "estimated_minutes": 45, "scheduled_date": date(2030, 1, 9), "is_done": False},
    ]
    updated = recalculate_event_dates(events, MON_WED, MONDAY, today=date(2030, 1, 10))

    assert updated[0]["scheduled_date"] == date(2030, 1, 7)
    assert [(e["module_index"], e["scheduled_date"]) for e in updated[1:]] == [
        (1, date(2030, 1, 14)),
        (2, date(2030, 1, 16)),
    ]


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

async def _create_schedule(client, saved_id, availability=None, **extra):
    return await client.post(
        "/api/schedules",
        json={
            "saved_syllabus_id": saved_id,
            "availability": availability or MON_WED,
            "start_date": MONDAY.isoformat(),
            **extra,
        },
        headers=AUTH_HEADERS,
    )


@pytest.mark.asyncio
async def test_create_and_get_schedule(client):
    saved = await create_saved(client)
    resp = await _create_schedule(client, saved["id"])
    assert resp.status_code == 201
    data = resp.json()
    assert data["success"] is True
    assert data["events_count"] == 4

    resp = await client.get(f"/api/schedules/{data['schedule_id']}", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    schedule = resp.json()
    assert schedule["saved_syllabus_id"] == saved["id"]
    assert schedule["availability"] == MON_WED
    assert [e["scheduled_date"] for e in schedule["events"]] == [
        "2030-01-07",
        "2030-01-09",
        "2030-01-14",
        "2030-01-16",
    ]
    assert schedule["events"][0]["step_title"] == "Week 1: Topic 1"


@pytest.mark.asyncio
async def test_schedule_uses_confirmed_path(client):
    saved = await create_saved(client)
    base = f"/api/syllabi/{saved['id']}/mission"
    await client.post(f"{base}/toggle", json={"index": 1}, headers=AUTH_HEADERS)
    await client.post(f"{base}/confirm", json={"prefetch": False}, headers=AUTH_HEADERS)

    resp = await _create_schedule(client, saved["id"])
    assert resp.json()["events_count"] == 3

    resp = await client.get(f"/api/schedules/{resp.json()['schedule_id']}", headers=AUTH_HEADERS)
    titles = [e["step_title"] for e in resp.json()["events"]]
    assert titles == ["Week 1: Topic 1", "Week 3: Topic 3", "Week 4: Topic 4"]


@pytest.mark.asyncio
async def test_replace_existing_schedule(client):
    saved = await create_saved(client)
    first = (await _create_schedule(client, saved["id"])).json()

    resp = await _create_schedule(
        client,
        saved["id"],
        availability={"saturday": 120},
        existing_schedule_id=first["schedule_id"],
    )
    assert resp.status_code == 201
    assert resp.json()["schedule_id"] == first["schedule_id"]

    resp = await client.get(f"/api/schedules/{first['schedule_id']}", headers=AUTH_HEADERS)
    events = resp.json()["events"]
    assert len(events) == 4
    assert events[0]["scheduled_date"] == "2030-01-12"
    assert events[1]["scheduled_date"] == "2030-01-19"


@pytest.mark.asyncio
async def test_invalid_availability_returns_400(client):
    saved = await create_saved(client)
    resp = await _create_schedule(client, saved["id"], availability={"funday": 60})
    assert resp.status_code == 400

    resp = await _create_schedule(client, saved["id"], availability={"monday": 10})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_mark_event_and_recalibrate(client):
    saved = await create_saved(client)
    created = (await _create_schedule(client, saved["id"])).json()
    schedule = (await client.get(f"/api/schedules/{created['schedule_id']}", headers=AUTH_HEADERS)).json()
    first_event = schedule["events"][0]

    resp = await client.patch(
        f"/api/schedules/events/{first_event['id']}", json={"is_done": True}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["is_done"] is True
    assert resp.json()["completed_at"] is not None

    # start date lies in the future, so pending events restart from it
    resp = await client.post(
        f"/api/schedules/{created['schedule_id']}/recalibrate", headers=AUTH_HEADERS
    )
    assert resp.status_code == 200
    events = resp.json()["events"]
    assert events[0]["is_done"] is True
    assert events[0]["scheduled_date"] == "2030-01-07"
    assert [e["scheduled_date"] for e in events[1:]] == ["2030-01-07", "2030-01-09", "2030-01-14"]

    resp = await client.patch(
        f"/api/schedules/events/{first_event['id']}", json={"is_done": False}, headers=AUTH_HEADERS
    )
    assert resp.json()["completed_at"] is None


@pytest.mark.asyncio
async def test_schedules_are_private(client):
    saved = await create_saved(client)
    created = (await _create_schedule(client, saved["id"])).json()

    resp = await client.get(f"/api/schedules/{created['schedule_id']}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    schedule = (await client.get(f"/api/schedules/{created['schedule_id']}", headers=AUTH_HEADERS)).json()
    resp = await client.patch(
        f"/api/schedules/events/{schedule['events'][0]['id']}",
        json={"is_done": True},
        headers=AUTH_HEADERS_USER2,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_existing_schedule_returns_404(client):
    saved = await create_saved(client, modules=make_modules(2))
    resp = await _create_schedule(client, saved["id"], existing_schedule_id="does-not-exist")
    assert resp.status_code == 404
