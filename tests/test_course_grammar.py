"""Tests for course grammar design and validation."""
import pytest

from app.services.ai_clients import AIProviderError
from app.services.course_grammar import (
    complete_course_grammar,
    default_course_grammar,
    design_course_grammar,
    validate_course_grammar,
)
from tests.conftest import ScriptedLLM

PILLARS = [{"name": "Normative Theories", "priority": "essential"}, {"name": "Applied Cases"}]


def _module(title, **fields):
    return {"title": title, **fields}


def test_well_formed_course_scores_100():
    modules = [
        _module("Analyze Theories", learning_objective="x", pedagogical_function="concept_exposition",
                narrative_position="opening"),
        _module("Apply to Cases", learning_objective="y", pedagogical_function="guided_practice"),
        _module("Capstone", is_capstone=True),
    ]
    grammar = {"mastery_outcome": {"cognitive_verbs": ["Apply", "Analyze"]}}
    assert validate_course_grammar(modules, grammar) == {
        "valid": True,
        "score": 100,
        "violations": [],
        "suggestions": [],
    }


def test_bare_modules_collect_every_penalty():
    result = validate_course_grammar([_module("Intro"), _module("More")], {"mastery_outcome": {"cognitive_verbs": ["Create"]}})
    assert result["valid"] is False
    # -20 capstone, -15 objectives, -15 exposition, -10 practice, -5 narrative, -5 verbs
    assert result["score"] == 30
    assert len(result["violations"]) == 3
    assert len(result["suggestions"]) == 3


def test_partial_objective_coverage_is_a_suggestion():
    modules = [
        _module("A", learning_objective="x", pedagogical_function="concept_exposition", narrative_position="p"),
        _module("B", learning_objective="y", pedagogical_function="independent_practice"),
        _module("C"),
        _module("Final", is_capstone=True),
    ]
    result = validate_course_grammar(modules)
    assert result["valid"] is True
    assert result["score"] == 95
    assert result["suggestions"] == ["Consider adding learning objectives to more modules"]


def test_complete_course_grammar_fills_defaults():
    grammar = complete_course_grammar(
        {"mastery_outcome": {"capstone_type": "interpretive_dance"}}, "Ethics", PILLARS, "linear"
    )
    assert grammar["mastery_outcome"]["capstone_type"] == "project"
    assert grammar["mastery_outcome"]["cognitive_verbs"] == ["Apply", "Analyze"]
    assert [i["pillar_name"] for i in grammar["module_intents"]] == ["Normative Theories", "Applied Cases"]
    assert grammar["lesson_grammar"]["narrative_arc"] == "linear"
    assert grammar["metalearning"]["learner_motivation"] == "mixed"


@pytest.mark.asyncio
async def test_design_normalizes_llm_reply():
    llm = ScriptedLLM().queue(
        {
            "metalearning": {"learnerMotivation": "intrinsic", "academicBenchmarks": ["Harvard PHIL 10"]},
            "masteryOutcome": {"capstoneType": "portfolio", "cognitiveVerbs": ["Evaluate"]},
            "moduleIntents": [{"pillarName": "Normative Theories", "learningIntent": "Compare theories"}],
            "lessonGrammar": {"narrativeArc": "problem-based", "bottlenecks": ["Relativism confusion"]},
        }
    )
    grammar = await design_course_grammar(llm, "Ethics", PILLARS, "linear")

    assert grammar["metalearning"]["learner_motivation"] == "intrinsic"
    assert grammar["mastery_outcome"]["capstone_type"] == "portfolio"
    assert grammar["module_intents"][0]["learning_intent"] == "Compare theories"
    assert grammar["module_intents"][0]["emphasize"] == []
    assert grammar["lesson_grammar"]["bottlenecks"] == ["Relativism confusion"]
    assert "1. Normative Theories (essential)" in llm.prompt()
    assert "2. Applied Cases (important)" in llm.prompt()


@pytest.mark.asyncio
async def test_design_falls_back_on_failure():
    llm = ScriptedLLM().queue(AIProviderError("down", status_code=500))
    assert await design_course_grammar(llm, "Ethics", PILLARS, "linear") == default_course_grammar(
        "Ethics", PILLARS, "linear"
    )

    llm = ScriptedLLM().queue("not json")
    grammar = await design_course_grammar(llm, "Ethics", PILLARS, "linear")
    assert grammar["mastery_outcome"]["capstone_type"] == "project"
