"""Tests for the Mission Control stepper and the learning-path constraint helpers."""
from datetime import date

import pytest

from app.services.mission_control import (
    MODE_ACTIVE,
    MODE_DRAFT,
    MissionControl,
    active_steps,
    calculate_completion_date,
    compute_recommended_depth,
    plan_summary,
    validate_feasibility,
)
from tests.conftest import AUTH_HEADERS, create_saved, make_modules


def _steps(count: int = 5):
    return [{"title": f"Step {i}", "estimated_hours": None} for i in range(count)]


# ---------------------------------------------------------------------------
# Draft mode
# ---------------------------------------------------------------------------

def test_initial_state_selects_every_step():
    mc = MissionControl(_steps(3))
    assert mc.mode == MODE_DRAFT
    assert mc.selected_steps == {0, 1, 2}
    assert mc.active_step_index is None
    assert [s["original_index"] for s in mc.steps] == [0, 1, 2]


def test_toggle_select_and_deselect():
    mc = MissionControl(_steps(3))
    mc.toggle_step(1)
    assert mc.selected_steps == {0, 2}
    mc.toggle_step(1)
    assert mc.selected_steps == {0, 1, 2}
    mc.deselect_all()
    assert mc.selected_steps == set()
    mc.reset_selection()
    assert mc.selected_steps == {0, 1, 2}


def test_toggle_out_of_range_raises():
    mc = MissionControl(_steps(3))
    with pytest.raises(ValueError):
        mc.toggle_step(3)
    with pytest.raises(ValueError):
        mc.toggle_step(-1)


def test_stats_default_one_hour_per_step():
    mc = MissionControl([{"title": "A", "estimated_hours": 2.5}, {"title": "B"}, {"title": "C"}])
    mc.toggle_step(2)
    assert mc.stats == {"total": 3, "selected": 2, "estimated_hours": 3.5}


# ---------------------------------------------------------------------------
# Active mode
# ---------------------------------------------------------------------------

def test_confirm_with_empty_selection_is_noop():
    mc = MissionControl(_steps(3))
    mc.deselect_all()
    assert mc.confirm_path() == []
    assert mc.mode == MODE_DRAFT


def test_confirm_keeps_syllabus_order():
    mc = MissionControl(_steps(5))
    mc.toggle_step(1)
    mc.toggle_step(3)
    titles = mc.confirm_path()
    assert titles == ["Step 0", "Step 2", "Step 4"]
    assert mc.mode == MODE_ACTIVE
    assert mc.active_step_index == 0
    assert mc.current_step["title"] == "Step 0"


def test_navigate_requires_active_mode_and_valid_index():
    mc = MissionControl(_steps(3))
    with pytest.raises(ValueError):
        mc.navigate_to_step(0)

    mc.confirm_path()
    mc.navigate_to_step(2)
    assert mc.current_step["title"] == "Step 2"
    with pytest.raises(ValueError):
        mc.navigate_to_step(3)


def test_re_enable_inserts_in_original_order_and_keeps_current():
    mc = MissionControl(_steps(5))
    mc.toggle_step(1)
    mc.confirm_path()
    mc.navigate_to_step(2)  # Step 3
    mc.re_enable_step(1)

    assert [s["title"] for s in mc.confirmed_steps] == ["Step 0", "Step 1", "Step 2", "Step 3", "Step 4"]
    assert mc.current_step["title"] == "Step 3"
    assert 1 in mc.selected_steps

    mc.re_enable_step(1)
    assert len(mc.confirmed_steps) == 5


def test_re_enable_in_draft_only_selects():
    mc = MissionControl(_steps(3))
    mc.toggle_step(0)
    mc.re_enable_step(0)
    assert mc.selected_steps == {0, 1, 2}
    assert mc.confirmed_steps == []


def test_reset_returns_to_draft():
    mc = MissionControl(_steps(3))
    mc.toggle_step(0)
    mc.confirm_path()
    mc.reset()
    assert mc.mode == MODE_DRAFT
    assert mc.selected_steps == {0, 1, 2}
    assert mc.confirmed_steps == []
    assert mc.current_step is None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def test_persisted_active_state_round_trips():
    steps = _steps(4)
    mc = MissionControl(steps)
    mc.toggle_step(2)
    mc.confirm_path()
    mc.navigate_to_step(1)

    restored = MissionControl.from_persisted(steps, mc.to_persisted())
    assert restored.mode == MODE_ACTIVE
    assert [s["title"] for s in restored.confirmed_steps] == ["Step 0", "Step 1", "Step 3"]
    assert restored.active_step_index == 1
    assert restored.selected_steps == {0, 1, 3}


def test_changed_steps_reset_the_state():
    mc = MissionControl(_steps(3))
    mc.confirm_path()
    persisted = mc.to_persisted()

    restored = MissionControl.from_persisted(_steps(4), persisted)
    assert restored.mode == MODE_DRAFT
    assert restored.selected_steps == {0, 1, 2, 3}


def test_unknown_confirmed_titles_are_dropped():
    persisted = {
        "mode": "active",
        "confirmed_step_titles": ["Step 0", "Gone", "Step 2"],
        "active_step_index": 7,
        "selected_step_indices": [0, 2, 9],
    }
    restored = MissionControl.from_persisted(_steps(3), persisted)
    assert [s["title"] for s in restored.confirmed_steps] == ["Step 0", "Step 2"]
    assert restored.active_step_index == 0
    assert restored.selected_steps == {0, 2}


def test_repeated_titles_restore_their_own_steps():
    steps = [{"title": t} for t in ("Review", "Ethics", "Review")]
    mc = MissionControl(steps)
    mc.toggle_step(2)
    mc.confirm_path()
    mc.navigate_to_step(0)

    restored = MissionControl.from_persisted(steps, mc.to_persisted())
    assert [s["original_index"] for s in restored.confirmed_steps] == [0, 1]
    assert restored.current_step["original_index"] == 0

    restored.re_enable_step(2)
    assert [s["original_index"] for s in restored.confirmed_steps] == [0, 1, 2]
    assert [s["original_index"] for s in active_steps(steps, restored.to_persisted())] == [0, 1, 2]


def test_title_only_state_maps_repeats_to_first_unused_step():
    steps = [{"title": t} for t in ("Review", "Ethics", "Review")]
    persisted = {
        "mode": "active",
        "confirmed_step_titles": ["Review", "Review"],
        "active_step_index": 1,
        "selected_step_indices": [0, 2],
    }
    restored = MissionControl.from_persisted(steps, persisted)
    assert [s["original_index"] for s in restored.confirmed_steps] == [0, 2]
    assert restored.current_step["original_index"] == 2


def test_active_steps_is_none_in_draft():
    assert active_steps(_steps(2), None) is None
    mc = MissionControl(_steps(2))
    mc.toggle_step(0)
    mc.confirm_path()
    assert [s["title"] for s in active_steps(_steps(2), mc.to_persisted())] == ["Step 1"]


# ---------------------------------------------------------------------------
# Learning-path constraints
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "hours, skill, depth, coverage",
    [
        (4, "intermediate", None, 0),
        (10, "intermediate", "overview", 40),
        (20, "intermediate", "standard", 75),
        (60, "intermediate", "detailed", 100),
        (14, "advanced", "standard", 75),
        (18, "beginner", "overview", 40),
    ],
)
def test_compute_recommended_depth(hours, skill, depth, coverage):
    result = compute_recommended_depth(hours, skill)
    assert result["depth"] == depth
    assert result["coverage_percent"] == coverage
    assert result["feasible"] is (depth is not None)


def test_impossible_plan_suggests_fixes():
    result = validate_feasibility(1, 2, "beginner")
    assert result["status"] == "impossible"
    # 5 h x 1.3 = 6.5 h needed
    assert result["suggested_hours_per_week"] == 4
    assert result["suggested_weeks"] == 7


def test_intensive_plan_warns():
    assert validate_feasibility(45, 4, "intermediate")["status"] == "warning"


def test_short_beginner_plan_warns():
    result = validate_feasibility(8, 1, "beginner")
    assert result["status"] == "warning"
    assert result["suggested_weeks"] == 4


def test_reasonable_plan_is_valid():
    assert validate_feasibility(5, 4, "intermediate")["status"] == "valid"


def test_unknown_skill_level_raises():
    with pytest.raises(ValueError):
        validate_feasibility(5, 4, "wizard")


def test_completion_date():
    assert calculate_completion_date(3, today=date(2026, 1, 1)) == date(2026, 1, 22)


def test_plan_summary_combines_everything():
    summary = plan_summary(10, 3, "intermediate", today=date(2026, 1, 1))
    assert summary["status"] == "valid"
    assert summary["total_hours"] == 30
    assert summary["recommended_depth"] == "standard"
    assert summary["coverage_percent"] == 75
    assert summary["estimated_completion_date"] == date(2026, 1, 22)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------



@pytest.mark.asyncio
async def test_mission_starts_in_draft(client):
    saved = await create_saved(client, modules=make_modules(4, hours=2))

    resp = await client.get(f"/api/syllabi/{saved['id']}/mission", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "draft"
    assert data["selected_steps"] == [0, 1, 2, 3]
    assert data["confirmed_steps"] == []
    assert data["current_step"] is None
    assert data["stats"] == {"total": 4, "selected": 4, "estimated_hours": 8.0}
    assert data["prefetch"] is None


@pytest.mark.asyncio
async def test_mission_selection_is_persisted(client):
    saved = await create_saved(client)
    base = f"/api/syllabi/{saved['id']}/mission"

    resp = await client.post(f"{base}/toggle", json={"index": 1}, headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["selected_steps"] == [0, 2, 3]

    resp = await client.get(base, headers=AUTH_HEADERS)
    assert resp.json()["selected_steps"] == [0, 2, 3]

    resp = await client.post(f"{base}/deselect-all", headers=AUTH_HEADERS)
    assert resp.json()["selected_steps"] == []

    resp = await client.post(f"{base}/select-all", headers=AUTH_HEADERS)
    assert resp.json()["selected_steps"] == [0, 1, 2, 3]

    await client.post(f"{base}/toggle", json={"index": 0}, headers=AUTH_HEADERS)
    resp = await client.post(f"{base}/reset-selection", headers=AUTH_HEADERS)
    assert resp.json()["selected_steps"] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_toggle_out_of_range_returns_400(client):
    saved = await create_saved(client)
    resp = await client.post(
        f"/api/syllabi/{saved['id']}/mission/toggle", json={"index": 10}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 400

    resp = await client.post(
        f"/api/syllabi/{saved['id']}/mission/toggle", json={"index": -1}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_confirm_navigate_and_re_enable(client):
    saved = await create_saved(client, modules=make_modules(5))
    base = f"/api/syllabi/{saved['id']}/mission"

    await client.post(f"{base}/toggle", json={"index": 2}, headers=AUTH_HEADERS)
    resp = await client.post(f"{base}/confirm", json={"prefetch": False}, headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "active"
    assert [s["original_index"] for s in data["confirmed_steps"]] == [0, 1, 3, 4]
    assert data["current_step"]["title"] == "Week 1: Topic 1"
    assert data["prefetch"] is None

    resp = await client.post(f"{base}/navigate", json={"index": 2}, headers=AUTH_HEADERS)
    assert resp.json()["current_step"]["title"] == "Week 4: Topic 4"

    resp = await client.post(f"{base}/re-enable", json={"index": 2}, headers=AUTH_HEADERS)
    data = resp.json()
    assert [s["original_index"] for s in data["confirmed_steps"]] == [0, 1, 2, 3, 4]
    assert data["active_step_index"] == 3
    assert data["current_step"]["title"] == "Week 4: Topic 4"

    resp = await client.post(f"{base}/navigate", json={"index": 9}, headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_navigate_in_draft_returns_400(client):
    saved = await create_saved(client)
    resp = await client.post(
        f"/api/syllabi/{saved['id']}/mission/navigate", json={"index": 0}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_confirm_with_nothing_selected_returns_400(client):
    saved = await create_saved(client)
    base = f"/api/syllabi/{saved['id']}/mission"
    await client.post(f"{base}/deselect-all", headers=AUTH_HEADERS)

    resp = await client.post(f"{base}/confirm", json={"prefetch": False}, headers=AUTH_HEADERS)
    assert resp.status_code == 400
    assert "at least one step" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_reset_returns_to_draft(client):
    saved = await create_saved(client)
    base = f"/api/syllabi/{saved['id']}/mission"
    await client.post(f"{base}/confirm", json={"prefetch": False}, headers=AUTH_HEADERS)

    resp = await client.post(f"{base}/reset", headers=AUTH_HEADERS)
    data = resp.json()
    assert data["mode"] == "draft"
    assert data["confirmed_steps"] == []
    assert data["selected_steps"] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_replacing_modules_resets_mission(client):
    saved = await create_saved(client)
    base = f"/api/syllabi/{saved['id']}/mission"
    await client.post(f"{base}/toggle", json={"index": 0}, headers=AUTH_HEADERS)
    await client.post(f"{base}/confirm", json={"prefetch": False}, headers=AUTH_HEADERS)

    resp = await client.put(
        f"/api/syllabi/{saved['id']}/modules",
        json={"modules": make_modules(2)},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    assert len(resp.json()["modules"]) == 2

    resp = await client.get(base, headers=AUTH_HEADERS)
    data = resp.json()
    assert data["mode"] == "draft"
    assert data["selected_steps"] == [0, 1]


@pytest.mark.asyncio
async def test_prefetch_status_404_before_confirm(client):
    saved = await create_saved(client)
    resp = await client.get(f"/api/syllabi/{saved['id']}/prefetch", headers=AUTH_HEADERS)
    assert resp.status_code == 404
    resp = await client.post(f"/api/syllabi/{saved['id']}/prefetch/stop", headers=AUTH_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_feasibility_endpoint(client):
    resp = await client.post(
        "/api/schedules/feasibility",
        json={"hours_per_week": 10, "duration_weeks": 3, "skill_level": "intermediate"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "valid"
    assert data["recommended_depth"] == "standard"
    assert data["coverage_percent"] == 75

    resp = await client.post(
        "/api/schedules/feasibility",
        json={"hours_per_week": 1, "duration_weeks": 2, "skill_level": "beginner"},
    )
    data = resp.json()
    assert data["status"] == "impossible"
    assert data["recommended_depth"] is None
    assert data["suggested_weeks"] == 7

    resp = await client.post(
        "/api/schedules/feasibility", json={"hours_per_week": 0, "duration_weeks": 2}
    )
    assert resp.status_code == 422
