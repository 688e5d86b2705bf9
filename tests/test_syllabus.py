"""Tests for syllabus generation, the community cache and pillar inference."""
import pytest
from httpx import AsyncClient

from app.services.syllabus_generator import HARVARD_SOURCE, HARVARD_URL, SyllabusGenerator


def _weeks(count: int, source: str = "MIT", url: str = "https://ocw.mit.edu/courses/24-231"):
    return [
        {"title": f"Week {i + 1}: Topic {i + 1}", "tag": "Theory", "source": source, "sourceUrl": url}
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_tier1_syllabus_with_capstone_checkpoints(client: AsyncClient, perplexity):
    perplexity.queue({"modules": _weeks(6), "sourceUrl": "https://ocw.mit.edu/courses/24-231"})

    resp = await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["cached"] is False
    assert data["source"] == "Direct syllabus from MIT"
    assert data["source_url"] == "https://ocw.mit.edu/courses/24-231"

    titles = [m["title"] for m in data["modules"]]
    assert len(titles) == 9
    assert titles[2] == "Capstone Checkpoint: Project Planning for Ethics"
    assert titles[5] == "Capstone Checkpoint: Draft & Peer Review"
    assert titles[-1] == "Final Capstone: Ethics Project Presentation"
    assert [m["is_capstone"] for m in data["modules"]].count(True) == 3

    assert perplexity.calls[0]["search_domain_filter"] == ["ocw.mit.edu", "oyc.yale.edu"]


@pytest.mark.asyncio
async def test_tier2_used_when_tier1_too_short(client: AsyncClient, perplexity):
    perplexity.queue(
        {"modules": _weeks(3)},
        {
            "modules": _weeks(5, source="Coursera", url="https://www.coursera.org/learn/ethics"),
            "aggregatedFrom": ["https://www.coursera.org/learn/ethics", "https://www.edx.org/ethics"],
        },
    )

    resp = await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})
    data = resp.json()
    assert data["source"] == "Aggregated from 2 online courses"
    assert data["source_url"] == "https://www.coursera.org/learn/ethics"
    assert [s["url"] for s in data["raw_sources"]] == [
        "https://www.coursera.org/learn/ethics",
        "https://www.edx.org/ethics",
    ]
    assert len(data["modules"]) == 8


@pytest.mark.asyncio
async def test_fallback_template_when_every_tier_fails(client: AsyncClient, perplexity):
    resp = await client.post("/api/syllabus/generate", json={"discipline": "Astrobiology"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == HARVARD_SOURCE
    assert data["source_url"] == HARVARD_URL
    assert len(data["modules"]) == 11
    assert data["modules"][0]["title"] == "Week 1: Introduction to Astrobiology"
    assert len(perplexity.calls) == 3


@pytest.mark.asyncio
async def test_second_request_served_from_community_cache(client: AsyncClient, perplexity):
    perplexity.queue({"modules": _weeks(6)})
    await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})

    resp = await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})
    data = resp.json()
    assert data["cached"] is True
    assert len(data["modules"]) == 9
    assert len(perplexity.calls) == 1


@pytest.mark.asyncio
async def test_force_refresh_regenerates(client: AsyncClient, perplexity):
    perplexity.queue({"modules": _weeks(6)})
    await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})

    perplexity.queue({"modules": _weeks(7)})
    resp = await client.post(
        "/api/syllabus/generate", json={"discipline": "Ethics", "force_refresh": True}
    )
    data = resp.json()
    assert data["cached"] is False
    assert len(data["modules"]) == 10


@pytest.mark.asyncio
async def test_architect_mode_degrades_to_deterministic_synthesis(client: AsyncClient, perplexity, gateway):
    resp = await client.post(
        "/api/syllabus/generate", json={"discipline": "Game Design", "mode": "architect"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["composition_type"] == "single"
    assert data["topic_pillars"]
    assert data["course_grammar"]["mastery_outcome"]["cognitive_verbs"]
    assert data["grammar_validation"] is not None

    modules = data["modules"]
    assert modules[-1]["is_capstone"] is True
    assert all(m["pedagogical_function"] for m in modules)
    assert len(modules) <= 15


@pytest.mark.asyncio
async def test_architect_mode_uses_synthesis_reply(client: AsyncClient, perplexity, gateway):
    gateway.queue(
        {
            "compositionType": "vocational",
            "pillars": [{"name": "Level Design", "searchTerms": ["levels"], "priority": "core"}],
            "narrativeFlow": "Play → Prototype → Ship",
        },
        {"authorities": [{"name": "GDC Vault", "domain": "gdcvault.com", "authorityType": "industry_standard"}]},
        {"masteryOutcome": {"capstoneType": "portfolio", "cognitiveVerbs": ["Design"]}},
    )
    perplexity.queue(
        {"modules": [{"title": "Prototype a Level", "tag": "Applied", "sourceUrls": ["https://gdcvault.com/a"]}]},
        {
            "synthesisRationale": "Backwards from a shipped level",
            "modules": [
                {
                    "title": "Design Core Loops",
                    "learningObjective": "Design a core loop",
                    "pedagogicalFunction": "concept_exposition",
                    "cognitiveLevel": "create",
                },
                {"title": "Ship a Level", "isCapstone": True, "pedagogicalFunction": "assessment_checkpoint"},
            ],
        },
    )

    resp = await client.post(
        "/api/syllabus/generate", json={"discipline": "Game Design", "mode": "architect"}
    )
    data = resp.json()
    assert data["composition_type"] == "vocational"
    assert data["narrative_flow"] == "Play → Prototype → Ship"
    assert data["synthesis_rationale"] == "Backwards from a shipped level"
    assert data["source_url"] == "https://gdcvault.com"
    assert [m["title"] for m in data["modules"]] == ["Design Core Loops", "Ship a Level"]
    assert data["modules"][0]["origin"] == "external"
    assert data["course_grammar"]["mastery_outcome"]["capstone_type"] == "portfolio"


@pytest.mark.asyncio
async def test_tiered_refresh_drops_architect_analysis(client: AsyncClient, perplexity, gateway):
    resp = await client.post(
        "/api/syllabus/generate", json={"discipline": "Game Design", "mode": "architect"}
    )
    assert resp.json()["course_grammar"] is not None

    perplexity.queue({"modules": _weeks(6)})
    resp = await client.post(
        "/api/syllabus/generate", json={"discipline": "Game Design", "force_refresh": True}
    )
    assert resp.status_code == 200

    resp = await client.get("/api/syllabus/community/Game Design")
    data = resp.json()
    assert len(data["modules"]) == 9
    assert data["course_grammar"] is None
    assert data["grammar_validation"] is None
    assert data["topic_pillars"] is None
    assert data["synthesis_rationale"] is None


def test_group_by_source_merges_duplicate_urls():
    sources = [
        {"institution": "GDC Vault", "url": "https://gdcvault.com"},
        {"institution": "GDC Talks", "url": "https://gdcvault.com"},
        {"institution": "Gamasutra", "url": "https://gamedeveloper.com"},
    ]
    modules = [
        {"title": "Loops", "source_urls": ["https://gdcvault.com/loops"]},
        {"title": "Economy", "source_urls": ["https://gamedeveloper.com/economy"]},
        {"title": "Orphan", "source_urls": []},
    ]
    extractions = SyllabusGenerator._group_by_source(modules, sources)

    assert [e["source"]["institution"] for e in extractions] == ["GDC Vault", "Gamasutra"]
    assert [m["title"] for m in extractions[0]["modules"]] == ["Loops", "Orphan"]
    assert [m["title"] for m in extractions[1]["modules"]] == ["Economy"]


# ---------------------------------------------------------------------------
# Community cache
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_community_list_and_detail(client: AsyncClient, perplexity):
    perplexity.queue({"modules": _weeks(6)})
    await client.post("/api/syllabus/generate", json={"discipline": "Ethics"})

    resp = await client.get("/api/syllabus/community")
    assert resp.status_code == 200
    rows = resp.json()
    assert len(rows) == 1
    assert rows[0]["discipline"] == "Ethics"
    assert rows[0]["module_count"] == 9

    resp = await client.get("/api/syllabus/community/Ethics")
    assert resp.status_code == 200
    assert resp.json()["cached"] is True

    resp = await client.get("/api/syllabus/community/Unknown")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Pillars & grammar
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_infer_pillars_requires_modules(client: AsyncClient):
    resp = await client.post("/api/syllabus/infer-pillars", json={"discipline": "Ethics"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_infer_pillars_normalizes_priorities(client: AsyncClient, gateway):
    gateway.queue(
        {
            "pillars": [
                {"name": "Normative Theory", "searchTerms": ["kant"], "priority": "core"},
                {"name": "Applied Ethics", "priority": "urgent"},
                {"priority": "core"},
            ],
            "narrativeFlow": "Theory → Cases",
            "compositionType": "something-else",
        }
    )
    resp = await client.post(
        "/api/syllabus/infer-pillars",
        json={"discipline": "Ethics", "modules": [{"title": "Kant"}, {"title": "Bioethics"}]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert [p["name"] for p in data["pillars"]] == ["Normative Theory", "Applied Ethics"]
    assert data["pillars"][0]["search_terms"] == ["kant"]
    assert data["pillars"][1]["priority"] == "important"
    assert data["composition_type"] == "single"
    assert "1. Kant" in gateway.prompt()


@pytest.mark.asyncio
async def test_infer_pillars_unparseable_reply_is_bad_gateway(client: AsyncClient, gateway):
    gateway.queue("Sorry, no JSON today.")
    resp = await client.post(
        "/api/syllabus/infer-pillars",
        json={"discipline": "Ethics", "modules": [{"title": "Kant"}]},
    )
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_infer_pillars_rate_limit_passes_through(client: AsyncClient, gateway):
    from app.services.ai_clients import AIProviderError

    gateway.queue(AIProviderError("slow down", status_code=429, provider="gateway"))
    resp = await client.post(
        "/api/syllabus/infer-pillars",
        json={"discipline": "Ethics", "modules": [{"title": "Kant"}]},
    )
    assert resp.status_code == 429


@pytest.mark.asyncio
async def test_validate_grammar_flags_missing_capstone(client: AsyncClient):
    resp = await client.post(
        "/api/syllabus/validate-grammar",
        json={"modules": [{"title": "Read Kant"}, {"title": "Read Mill"}]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["valid"] is False
    assert "Missing capstone/evidence of mastery" in data["violations"]
    assert data["score"] == 100 - 20 - 15 - 15 - 10 - 5
