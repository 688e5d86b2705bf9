"""Tests for background resource prefetching."""
import asyncio

import pytest

from app.services.prefetch_manager import (
    PrefetchManager,
    PrefetchPhase,
    PrefetchStatus,
    run_prefetch,
)
from tests.conftest import AUTH_HEADERS, FakeProbe, ScriptedLLM, create_saved, make_modules

DETAILS = {"description": "Overview", "difficulty": "Introductory"}


def _resources(video_id):
    return {
        "primaryVideo": {"url": f"https://www.youtube.com/watch?v={video_id}", "title": video_id},
        "alternatives": [],
    }


@pytest.fixture(autouse=True)
def _reset_manager():
    yield
    PrefetchManager.stop_all()
    PrefetchManager._tasks.clear()
    PrefetchManager._status.clear()


@pytest.mark.asyncio
async def test_run_prefetch_records_completed_and_failed_steps(db_session):
    perplexity = ScriptedLLM("perplexity").queue(DETAILS, _resources("AAAAAAAAAAA"))
    steps = [{"title": "Prefetch Step 1"}, {"title": "Prefetch Step 2"}]
    status = PrefetchStatus(syllabus_id="s-1", total=len(steps))

    await run_prefetch("Philosophy", steps, status, perplexity, FakeProbe(), delay=0)

    assert status.phase == PrefetchPhase.COMPLETED
    assert status.progress == 2
    assert status.completed_steps == ["Prefetch Step 1"]
    assert status.failed_steps == ["Prefetch Step 2"]
    assert status.used_video_urls == ["https://www.youtube.com/watch?v=AAAAAAAAAAA"]


@pytest.mark.asyncio
async def test_run_prefetch_skips_provider_for_cached_steps(db_session):
    perplexity = ScriptedLLM("perplexity").queue(DETAILS, _resources("AAAAAAAAAAA"))
    steps = [{"title": "Cached Step"}]
    await run_prefetch("Philosophy", steps, PrefetchStatus(syllabus_id="s-1"), perplexity, FakeProbe(), delay=0)

    status = PrefetchStatus(syllabus_id="s-2")
    await run_prefetch("Philosophy", steps, status, perplexity, FakeProbe(), delay=0)
    assert status.completed_steps == ["Cached Step"]
    assert len(perplexity.calls) == 2


@pytest.mark.asyncio
async def test_later_steps_avoid_earlier_videos(db_session):
    perplexity = ScriptedLLM("perplexity").queue(
        DETAILS,
        _resources("AAAAAAAAAAA"),
        DETAILS,
        _resources("BBBBBBBBBBB"),
    )
    steps = [{"title": "Video Step 1"}, {"title": "Video Step 2"}]
    status = PrefetchStatus(syllabus_id="s-1")
    await run_prefetch("Philosophy", steps, status, perplexity, FakeProbe(), delay=0)

    assert "https://www.youtube.com/watch?v=AAAAAAAAAAA" in perplexity.prompt(3)
    assert len(status.used_video_urls) == 2


@pytest.mark.asyncio
async def test_manager_stop_marks_status_stopped():
    status = PrefetchManager.start("s-1", asyncio.sleep(30), PrefetchStatus(syllabus_id="s-1"))
    await asyncio.sleep(0)
    assert PrefetchManager.is_running("s-1")

    assert PrefetchManager.stop("s-1") is True
    await PrefetchManager.wait("s-1")

    assert status.phase == PrefetchPhase.STOPPED
    assert not PrefetchManager.is_running("s-1")
    assert PrefetchManager.get_status("s-1") is status
    assert PrefetchManager.stop("s-1") is False


@pytest.mark.asyncio
async def test_manager_new_start_supersedes_running_task():
    first = PrefetchManager.start("s-1", asyncio.sleep(30))
    await asyncio.sleep(0)

    async def _finish(status):
        status.phase = PrefetchPhase.COMPLETED

    second_status = PrefetchStatus(syllabus_id="s-1")
    PrefetchManager.start("s-1", _finish(second_status), second_status)
    await PrefetchManager.wait("s-1")
    await asyncio.sleep(0)

    assert first.phase == PrefetchPhase.STOPPED
    assert second_status.phase == PrefetchPhase.COMPLETED
    assert PrefetchManager.get_status("s-1") is second_status


@pytest.mark.asyncio
async def test_manager_failed_task_is_reported():
    async def _boom():
        raise RuntimeError("boom")

    status = PrefetchManager.start("s-1", _boom())
    await PrefetchManager.wait("s-1")
    assert status.phase == PrefetchPhase.FAILED
    assert status.completed_at is not None


@pytest.mark.asyncio
async def test_confirm_starts_prefetch(client, perplexity):
    saved = await create_saved(client, modules=make_modules(1))
    resp = await client.post(f"/api/syllabi/{saved['id']}/mission/confirm", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["prefetch"]["total"] == 1

    # nothing queued, so the provider call for the single step fails
    await PrefetchManager.wait(saved["id"])
    resp = await client.get(f"/api/syllabi/{saved['id']}/prefetch", headers=AUTH_HEADERS)
    data = resp.json()
    assert data["phase"] in ("completed", "failed")
    assert data["is_running"] is False
