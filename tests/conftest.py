"""
Shared fixtures for Hermes backend integration tests.

Runs against a throwaway SQLite database by default; point TEST_DATABASE_URL
at PostgreSQL (asyncpg) to run the same suite there.  Each test function gets
its own session, tables are created via create_all and emptied afterwards.

AI providers and web probes are replaced with scripted fakes through
``app.dependency_overrides``, so no test touches the network.
"""
from __future__ import annotations

import json
import os
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Set

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./hermes_test.db",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from app.database import Base, get_db  # noqa: E402
from app.dependencies.clients import (  # noqa: E402
    get_anthropic_client,
    get_gateway_client,
    get_perplexity_client,
    get_web_probe,
)
from app.main import app  # noqa: E402
from app.services.ai_clients import AIProviderError, ChatCompletionClient  # noqa: E402
from app.services.prefetch_manager import PrefetchManager  # noqa: E402
from app.services.web_probe import WebProbe  # noqa: E402

# Table names in dependency order (children first) for cleanup
_ALL_TABLES = [
    "schedule_events",
    "learning_schedules",
    "saved_syllabi",
    "step_resources",
    "step_summaries",
    "reported_links",
    "capstone_assignments",
    "community_syllabi",
    "disciplines",
]

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class ScriptedLLM(ChatCompletionClient):
    """
    Chat client that answers from a queue of scripted replies.

    Dict / list replies are serialised to JSON, exceptions are raised, and an
    empty queue behaves like a provider outage.
    """

    def __init__(self, provider: str = "gateway") -> None:
        super().__init__(api_key="test-key", base_url="http://llm.test", model="test-model")
        self.provider = provider
        self.fast_model = "test-fast-model"
        self.replies: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies: Any) -> "ScriptedLLM":
        self.replies.extend(replies)
        return self

    async def complete(
        self,
        messages,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **extra: Any,
    ) -> str:
        self.calls.append(
            {"messages": messages, "model": model, "temperature": temperature, **extra}
        )
        if not self.replies:
            raise AIProviderError(f"{self.provider} unavailable", status_code=503, provider=self.provider)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return reply

    def prompt(self, call_index: int = -1) -> str:
        """All message contents of one recorded call, joined."""
        return "\n".join(m["content"] for m in self.calls[call_index]["messages"])


class FakeProbe(WebProbe):
    """Every link is alive and every YouTube video exists unless listed as dead."""

    def __init__(self, dead: Iterable[str] = ()) -> None:
        super().__init__(firecrawl_api_key="")
        self.dead: Set[str] = set(dead)

    async def validate_url(self, url: Optional[str]) -> bool:
        return bool(url) and url not in self.dead

    async def verify_youtube_video(self, url: Optional[str]) -> Optional[Dict[str, Any]]:
        if not url or url in self.dead:
            return None
        return {
            "video_id": "dQw4w9WgXcQ",
            "title": "Verified title",
            "author": "Verified channel",
            "thumbnail_url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        }

    async def scrape_article(self, url: Optional[str]) -> Optional[str]:
        return None


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test. After the test, all tables are emptied
    so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    # Ensure tables exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        for table in _ALL_TABLES:
            await conn.execute(text(f"DELETE FROM {table}"))

    await engine.dispose()


@pytest_asyncio.fixture
async def perplexity() -> ScriptedLLM:
    return ScriptedLLM("perplexity")


@pytest_asyncio.fixture
async def gateway() -> ScriptedLLM:
    return ScriptedLLM("gateway")


@pytest_asyncio.fixture
async def anthropic() -> ScriptedLLM:
    return ScriptedLLM("anthropic")


@pytest_asyncio.fixture
async def probe() -> FakeProbe:
    return FakeProbe()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    perplexity: ScriptedLLM,
    gateway: ScriptedLLM,
    anthropic: ScriptedLLM,
    probe: FakeProbe,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session and the AI clients replaced by fakes.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_perplexity_client] = lambda: perplexity
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_anthropic_client] = lambda: anthropic
    app.dependency_overrides[get_web_probe] = lambda: probe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    PrefetchManager.stop_all()
    PrefetchManager._tasks.clear()
    PrefetchManager._status.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}


def make_modules(count: int = 4, hours: Optional[float] = None) -> List[Dict[str, Any]]:
    """Plain module payloads for saved-syllabus requests."""
    return [
        {
            "title": f"Week {i + 1}: Topic {i + 1}",
            "tag": "Theory",
            "source": "MIT",
            "source_url": f"https://ocw.mit.edu/course/week{i + 1}",
            "estimated_hours": hours,
        }
        for i in range(count)
    ]


async def create_saved(
    client: AsyncClient,
    modules: Optional[List[Dict[str, Any]]] = None,
    headers: Optional[Dict[str, str]] = None,
    discipline: str = "Philosophy",
) -> Dict[str, Any]:
    resp = await client.post(
        "/api/syllabi",
        json={"discipline": discipline, "modules": modules or make_modules()},
        headers=headers or AUTH_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
