"""
In-memory singleton that tracks background resource prefetching per saved
syllabus.

When a learner confirms a Mission Control path, the resources of every
confirmed step are fetched one after another (with a fixed pause between
provider calls) so that they are cached before the learner opens the step.

Usage
-----
    from app.services.prefetch_manager import prefetch_manager, PrefetchStatus

    status = PrefetchStatus(syllabus_id=saved.id, total=len(steps))
    prefetch_manager.start(saved.id, run_prefetch(..., status), status)
    # ... later ...
    current = prefetch_manager.get_status(saved.id)
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Any, Coroutine, Dict, List, Mapping, Optional, Sequence

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.ai_clients import AIProviderError, PerplexityClient
from app.services.step_resources import StepResourceService
from app.services.web_probe import WebProbe

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prefetch phase enum
# ---------------------------------------------------------------------------

class PrefetchPhase(str, enum.Enum):
    QUEUED = "queued"
    FETCHING = "fetching"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


_FINAL_PHASES = (PrefetchPhase.COMPLETED, PrefetchPhase.STOPPED, PrefetchPhase.FAILED)


# ---------------------------------------------------------------------------
# Prefetch status (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class PrefetchStatus:
    syllabus_id: str
    phase: PrefetchPhase = PrefetchPhase.QUEUED
    total: int = 0
    progress: int = 0
    current_step: Optional[str] = None
    completed_steps: List[str] = dataclasses.field(default_factory=list)
    failed_steps: List[str] = dataclasses.field(default_factory=list)
    used_video_urls: List[str] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)


# ---------------------------------------------------------------------------
# Prefetch manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

class PrefetchManager:
    """Manages background prefetch asyncio.Tasks per saved syllabus."""

    _tasks: Dict[str, asyncio.Task] = {}
    _status: Dict[str, PrefetchStatus] = {}

    @classmethod
    def is_running(cls, syllabus_id: str) -> bool:
        task = cls._tasks.get(syllabus_id)
        return task is not None and not task.done()

    @classmethod
    def get_status(cls, syllabus_id: str) -> Optional[PrefetchStatus]:
        return cls._status.get(syllabus_id)

    @classmethod
    def start(
        cls,
        syllabus_id: str,
        coro: Coroutine[Any, Any, Any],
        status: Optional[PrefetchStatus] = None,
    ) -> PrefetchStatus:
        """
        Launch a background prefetch task for *syllabus_id*.

        A prefetch already running for the same syllabus is stopped first,
        since a newly confirmed path supersedes the old one.

        Returns the PrefetchStatus object (shared with the running task so
        fields update in real time).
        """
        if cls.is_running(syllabus_id):
            cls.stop(syllabus_id)

        if status is None:
            status = PrefetchStatus(syllabus_id=syllabus_id)
        cls._status[syllabus_id] = status

        async def _wrapper() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                status.phase = PrefetchPhase.STOPPED
                raise
            except Exception as exc:
                logger.error(
                    "Prefetch task failed for syllabus %s: %s", syllabus_id, exc, exc_info=True
                )
                status.phase = PrefetchPhase.FAILED
            finally:
                status.completed_at = time.monotonic()
                status.current_step = None
                if status.phase not in _FINAL_PHASES:
                    status.phase = PrefetchPhase.FAILED

        task = asyncio.create_task(_wrapper())
        cls._tasks[syllabus_id] = task

        # Cleanup reference when done
        task.add_done_callback(lambda t: cls._cleanup(syllabus_id, t))

        logger.info("Prefetch task started for syllabus %s", syllabus_id)
        return status

    @classmethod
    def stop(cls, syllabus_id: str) -> bool:
        """Cancel a running prefetch; returns False when none was running."""
        task = cls._tasks.get(syllabus_id)
        if task is None or task.done():
            return False
        task.cancel()
        status = cls._status.get(syllabus_id)
        if status is not None and status.phase not in _FINAL_PHASES:
            status.phase = PrefetchPhase.STOPPED
        logger.info("Prefetch task stop requested for syllabus %s", syllabus_id)
        return True

    @classmethod
    def stop_all(cls) -> int:
        """Cancel every running prefetch (used on shutdown)."""
        return sum(1 for syllabus_id in list(cls._tasks) if cls.stop(syllabus_id))

    @classmethod
    async def wait(cls, syllabus_id: str) -> None:
        """Wait until the prefetch for *syllabus_id* has finished (or was stopped)."""
        task = cls._tasks.get(syllabus_id)
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    @classmethod
    def _cleanup(cls, syllabus_id: str, task: asyncio.Task) -> None:
        """Remove the task reference (status is kept for polling)."""
        if cls._tasks.get(syllabus_id) is task:
            cls._tasks.pop(syllabus_id, None)


# Module-level singleton instance
prefetch_manager = PrefetchManager


# ---------------------------------------------------------------------------
# Prefetch coroutine
# ---------------------------------------------------------------------------

async def run_prefetch(
    discipline: str,
    steps: Sequence[Mapping[str, Any]],
    status: PrefetchStatus,
    perplexity: PerplexityClient,
    probe: Optional[WebProbe] = None,
    delay: float = settings.PREFETCH_DELAY_SECONDS,
) -> None:
    """
    Fetch and cache resources for *steps* in order.

    Cached steps are skipped without a provider call; a failing step is
    recorded and the loop moves on.  Primary videos picked for earlier
    steps are passed along so later steps get different ones.
    """
    status.phase = PrefetchPhase.FETCHING
    status.total = len(steps)
    called_provider = False

    for step in steps:
        title = step["title"]
        status.current_step = title

        async with AsyncSessionLocal() as session:
            service = StepResourceService(perplexity, session, probe)
            try:
                if await service.get_cached(title, discipline) is None:
                    if called_provider and delay > 0:
                        await asyncio.sleep(delay)
                    called_provider = True
                resources, cached = await service.fetch(
                    title,
                    discipline,
                    syllabus_urls=step.get("source_urls") or [],
                    used_video_urls=status.used_video_urls,
                )
                await session.commit()
            except AIProviderError as exc:
                await session.rollback()
                logger.warning("Prefetch failed for step '%s': %s", title, exc)
                status.failed_steps.append(title)
                status.progress += 1
                continue

        video = resources.get("primary_video") or {}
        if video.get("url"):
            status.used_video_urls.append(video["url"])
        status.completed_steps.append(title)
        status.progress += 1
        logger.info(
            "Prefetched %d/%d '%s'%s", status.progress, status.total, title, " (cached)" if cached else ""
        )

    status.phase = PrefetchPhase.COMPLETED
    logger.info(
        "Prefetch finished: %d completed, %d failed",
        len(status.completed_steps), len(status.failed_steps),
    )
