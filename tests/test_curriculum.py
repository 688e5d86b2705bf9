"""Tests for the shared curriculum building blocks."""
import pytest

from app.services.ai_clients import AIProviderError
from app.services.curriculum import (
    CAPSTONE_TAG,
    coerce_module,
    ensure_capstone,
    fallback_synthesis,
    generate_lightweight_structure,
    synthesize_curriculum,
)
from tests.conftest import ScriptedLLM

SOURCES = [
    {"institution": "MIT", "course_name": "Intro to Ethics", "url": "https://ocw.mit.edu/ethics", "type": "university"},
    {"institution": "Yale", "course_name": "Moral Foundations", "url": "https://oyc.yale.edu/moral", "type": "university"},
]


def _extraction(source, *titles):
    return {"source": source, "modules": [{"title": t} for t in titles]}


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def test_coerce_module_accepts_camel_case():
    module = coerce_module(
        {
            "title": "  Analyze Virtue Ethics ",
            "sourceUrl": "https://ocw.mit.edu/virtue",
            "isCapstone": False,
            "estimatedHours": "3.5",
            "pedagogicalFunction": "guided_practice",
            "cognitiveLevel": "memorize",
        }
    )

    assert module["title"] == "Analyze Virtue Ethics"
    assert module["source_url"] == "https://ocw.mit.edu/virtue"
    assert module["source_urls"] == ["https://ocw.mit.edu/virtue"]
    assert module["estimated_hours"] == 3.5
    assert module["pedagogical_function"] == "guided_practice"
    assert module["cognitive_level"] is None
    assert module["tag"] == "General"


def test_coerce_module_placeholder_title():
    assert coerce_module({}, index=4)["title"] == "Module 5"


def test_ensure_capstone_promotes_last_module():
    modules = [coerce_module({"title": "Ethics Basics"}), coerce_module({"title": "Applied Ethics"})]
    ensure_capstone(modules)

    assert modules[-1]["is_capstone"] is True
    assert modules[-1]["tag"] == CAPSTONE_TAG
    assert modules[-1]["title"] == "Final Project: Applied Ethics"
    assert modules[0]["is_capstone"] is False


def test_ensure_capstone_keeps_existing_capstone():
    modules = [coerce_module({"title": "Capstone Essay", "isCapstone": True}), coerce_module({"title": "Extra"})]
    ensure_capstone(modules)
    assert modules[1]["is_capstone"] is False
    assert modules[1]["title"] == "Extra"


# ---------------------------------------------------------------------------
# Lightweight structure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_lightweight_structure_attributes_sources():
    llm = ScriptedLLM("perplexity").queue(
        {
            "modules": [
                {"title": "Foundations of Ethics", "tag": "Foundational", "sourceUrls": []},
                {"title": "Moral Psychology", "tag": "Core Theory", "sourceUrls": ["https://oyc.yale.edu/moral"]},
                {"tag": "Applied"},
            ]
        }
    )
    modules = await generate_lightweight_structure(llm, "Ethics", SOURCES)

    assert [m["title"] for m in modules] == [
        "Foundations of Ethics",
        "Moral Psychology",
        "Final Project: Untitled Module",
    ]
    assert all(m["source"] == "MIT" for m in modules)
    assert modules[0]["source_urls"] == ["https://ocw.mit.edu/ethics"]
    assert modules[1]["source_url"] == "https://oyc.yale.edu/moral"
    assert modules[-1]["is_capstone"] is True
    assert "- MIT: Intro to Ethics (https://ocw.mit.edu/ethics)" in llm.prompt()


@pytest.mark.asyncio
async def test_lightweight_structure_empty_on_failure():
    llm = ScriptedLLM("perplexity").queue(AIProviderError("down", status_code=500))
    assert await generate_lightweight_structure(llm, "Ethics", SOURCES) == []

    llm = ScriptedLLM("perplexity").queue({"steps": []})
    assert await generate_lightweight_structure(llm, "Ethics", []) == []
    assert "No specific sources provided" in llm.prompt()


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

def test_fallback_synthesis_dedupes_and_appends_capstone():
    extractions = [
        _extraction(SOURCES[0], "Intro to Ethics", "Utilitarianism", "Kant", "Virtue"),
        _extraction(SOURCES[1], "Intro to ethics!", "Moral Luck"),
    ]
    result = fallback_synthesis(extractions, "Ethics")
    titles = [m["title"] for m in result["modules"]]

    assert titles == ["Intro to Ethics", "Utilitarianism", "Kant", "Moral Luck", "Create Your Ethics Project"]
    assert result["modules"][0]["pedagogical_function"] == "pre_exposure"
    assert result["modules"][0]["narrative_position"] == "Foundation for subsequent learning"
    assert result["modules"][3]["source_urls"] == ["https://oyc.yale.edu/moral"]
    capstone = result["modules"][-1]
    assert capstone["is_capstone"] is True
    assert capstone["cognitive_level"] == "create"
    assert result["synthesis_rationale"].startswith("Fallback synthesis")


def test_fallback_synthesis_uses_grammar_capstone_type():
    grammar = {"mastery_outcome": {"capstone_type": "portfolio", "evidence_of_mastery": "A case portfolio"}}
    result = fallback_synthesis([_extraction(SOURCES[0], "Intro")], "Ethics", grammar)

    assert result["modules"][-1]["title"] == "Create Your Ethics Portfolio"
    assert result["modules"][-1]["evidence_of_mastery"] == "A case portfolio"


def test_fallback_synthesis_caps_module_count():
    extractions = [
        _extraction(dict(SOURCES[0], url=f"https://example.edu/{i}"), f"Alpha {chr(97 + i)}", f"Beta {chr(97 + i)}", f"Gamma {chr(97 + i)}")
        for i in range(6)
    ]
    assert len(fallback_synthesis(extractions, "Ethics")["modules"]) == 15


@pytest.mark.asyncio
async def test_synthesize_curriculum_uses_reply():
    llm = ScriptedLLM("perplexity").queue(
        {
            "synthesisRationale": "Backward from the capstone",
            "modules": [
                {"title": "Analyze Moral Theories", "pedagogicalFunction": "concept_exposition"},
                {"title": "Create Your Ethics Portfolio", "tag": CAPSTONE_TAG, "isCapstone": True},
            ],
        }
    )
    result = await synthesize_curriculum(
        llm,
        [_extraction(SOURCES[0], "Intro")],
        "Ethics",
        [{"name": "Moral Theories", "priority": "essential", "search_terms": ["ethics theory"]}],
        "linear",
    )

    assert result["synthesis_rationale"] == "Backward from the capstone"
    assert result["modules"][0]["tag"] == "Core Concepts"
    assert result["modules"][0]["origin"] == "external"
    assert result["modules"][1]["is_capstone"] is True
    prompt = llm.prompt()
    assert "1. Moral Theories (essential) - Search: ethics theory" in prompt
    assert "=== Source 1: MIT - Intro to Ethics ===" in prompt


@pytest.mark.asyncio
async def test_synthesize_curriculum_falls_back():
    llm = ScriptedLLM("perplexity").queue("no json here")
    result = await synthesize_curriculum(llm, [_extraction(SOURCES[0], "Intro")], "Ethics", [], "linear")

    assert result["synthesis_rationale"].startswith("Fallback synthesis")
    assert result["modules"][-1]["is_capstone"] is True
