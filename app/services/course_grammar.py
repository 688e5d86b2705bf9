"""
Course Grammar: backward-design architecture for a curriculum.

The grammar is designed by the LLM *before* content is selected and is
later used to validate the synthesised module list.

Grammar shape (snake_case after normalisation)::

    {
      "metalearning": {
        "learner_motivation": "intrinsic" | "extrinsic" | "mixed",
        "knowledge_decomposition": {"facts": [...], "concepts": [...], "procedures": [...]},
        "academic_benchmarks": [...]
      },
      "mastery_outcome": {
        "short_term", "long_term", "evidence_of_mastery",
        "capstone_type", "cognitive_verbs": [...]
      },
      "module_intents": [
        {"pillar_name", "learning_intent", "summative_checkpoint",
         "emphasize": [...], "exclude": [...]}
      ],
      "lesson_grammar": {
        "narrative_arc", "bottlenecks": [...], "drill_opportunities": [...],
        "direct_practice_contexts": [...]
      }
    }
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from app.services.ai_clients import AIProviderError, ChatCompletionClient
from app.utils.helpers import snake_keys

logger = logging.getLogger(__name__)


PEDAGOGICAL_FUNCTIONS = (
    "pre_exposure",           # schema activation, prior knowledge check
    "concept_exposition",     # core teaching
    "expert_demonstration",   # mastery in action
    "guided_practice",        # scaffolded doing with feedback
    "independent_practice",   # solo application
    "assessment_checkpoint",  # evidence of mastery
)

COGNITIVE_LEVELS = ("remember", "understand", "apply", "analyze", "evaluate", "create")

VALID_PEDAGOGICAL_FUNCTIONS = frozenset(PEDAGOGICAL_FUNCTIONS)
VALID_COGNITIVE_LEVELS = frozenset(COGNITIVE_LEVELS)
VALID_CAPSTONE_TYPES = frozenset(
    {"essay", "project", "analysis", "presentation", "portfolio", "practical_demonstration"}
)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_GRAMMAR_SYSTEM_PROMPT = """\
You are an expert in ULTRALEARNING methodology and learner-centered course design. \
Your task is to design course architecture using BACKWARD DESIGN principles.

KEY PRINCIPLES:
1. START FROM MASTERY: Define what the learner should be able to DO at course end BEFORE selecting content
2. METALEARNING: Decompose the subject into Facts (memorize), Concepts (understand), Procedures (practice)
3. CONSTRUCTIVE ALIGNMENT: Learning objectives, activities, and assessments use the same cognitive verbs
4. DIRECTNESS: Prioritize practice contexts that resemble real-world use ("flight simulator" principle)
5. BOTTLENECK FOCUS: Identify likely learning bottlenecks and design drills that isolate them

COGNITIVE VERB HIERARCHY (Bloom's Revised):
- Remember: recall facts, terms, concepts
- Understand: explain ideas, interpret, summarize
- Apply: use information in new situations
- Analyze: draw connections, find patterns, break apart
- Evaluate: justify decisions, make judgments, critique
- Create: produce new work, design, synthesize

Respond ONLY with valid JSON."""

_GRAMMAR_USER_PROMPT = """\
Design the course grammar for: "{topic}"

PEDAGOGICAL PILLARS:
{pillar_list}

NARRATIVE FLOW: {narrative_flow}

Return JSON with this structure:
{{
  "metalearning": {{
    "learnerMotivation": "intrinsic" | "extrinsic" | "mixed",
    "knowledgeDecomposition": {{
      "facts": ["Fact 1 to memorize"],
      "concepts": ["Concept 1 to deeply understand"],
      "procedures": ["Procedure 1 to practice"]
    }},
    "academicBenchmarks": ["MIT 6.001", "Harvard CS50"]
  }},
  "masteryOutcome": {{
    "shortTerm": "By end of course, learner can [specific observable behavior]",
    "longTerm": "6 months later, learner can [transfer skill]",
    "evidenceOfMastery": "Complete a [specific capstone deliverable]",
    "capstoneType": "project" | "essay" | "analysis" | "presentation" | "portfolio" | "practical_demonstration",
    "cognitiveVerbs": ["Analyze", "Create", "Evaluate"]
  }},
  "moduleIntents": [
    {{
      "pillarName": "Pillar Name",
      "learningIntent": "Why this module exists in the curriculum",
      "summativeCheckpoint": "Quiz/draft/analysis/task that proves mastery",
      "emphasize": ["Topic to definitely cover"],
      "exclude": ["Topic to explicitly omit"]
    }}
  ],
  "lessonGrammar": {{
    "narrativeArc": "From X to Y: A journey of...",
    "bottlenecks": ["Common misconception 1"],
    "drillOpportunities": ["Skill to isolate and practice"],
    "directPracticeContexts": ["Real-world scenario 1"]
  }}
}}"""


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def _default_module_intents(pillars: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "pillar_name": p.get("name", ""),
            "learning_intent": f"Develop competence in {p.get('name', '')}",
            "summative_checkpoint": f"Assessment covering {p.get('name', '')}",
            "emphasize": [],
            "exclude": [],
        }
        for p in pillars
    ]


def default_course_grammar(
    topic: str,
    pillars: Sequence[Dict[str, Any]],
    narrative_flow: str,
) -> Dict[str, Any]:
    """Grammar used when the LLM is unavailable or returns nothing usable."""
    return {
        "metalearning": {
            "learner_motivation": "mixed",
            "knowledge_decomposition": {
                "facts": [f"Key terminology in {topic}"],
                "concepts": [f"Core principles of {topic}"],
                "procedures": [f"Practical application of {topic}"],
            },
            "academic_benchmarks": [],
        },
        "mastery_outcome": {
            "short_term": f"Demonstrate foundational competence in {topic}",
            "long_term": f"Apply {topic} knowledge in professional contexts",
            "evidence_of_mastery": f"Complete a comprehensive project demonstrating {topic} skills",
            "capstone_type": "project",
            "cognitive_verbs": ["Apply", "Analyze", "Create"],
        },
        "module_intents": _default_module_intents(pillars),
        "lesson_grammar": {
            "narrative_arc": narrative_flow,
            "bottlenecks": [],
            "drill_opportunities": [],
            "direct_practice_contexts": [],
        },
    }


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def complete_course_grammar(
    raw: Dict[str, Any],
    topic: str,
    pillars: Sequence[Dict[str, Any]],
    narrative_flow: str,
) -> Dict[str, Any]:
    """Fill every missing field of an LLM-produced grammar with its default."""
    meta = raw.get("metalearning") or {}
    decomposition = meta.get("knowledge_decomposition") or {}
    mastery = raw.get("mastery_outcome") or {}
    lesson = raw.get("lesson_grammar") or {}

    capstone_type = mastery.get("capstone_type")
    if capstone_type not in VALID_CAPSTONE_TYPES:
        capstone_type = "project"

    intents = raw.get("module_intents")
    if isinstance(intents, list) and intents:
        module_intents = [
            {
                "pillar_name": str(i.get("pillar_name") or ""),
                "learning_intent": str(i.get("learning_intent") or ""),
                "summative_checkpoint": str(i.get("summative_checkpoint") or ""),
                "emphasize": _str_list(i.get("emphasize")),
                "exclude": _str_list(i.get("exclude")),
            }
            for i in intents
            if isinstance(i, dict)
        ]
    else:
        module_intents = _default_module_intents(pillars)

    return {
        "metalearning": {
            "learner_motivation": meta.get("learner_motivation") or "mixed",
            "knowledge_decomposition": {
                "facts": _str_list(decomposition.get("facts")),
                "concepts": _str_list(decomposition.get("concepts")),
                "procedures": _str_list(decomposition.get("procedures")),
            },
            "academic_benchmarks": _str_list(meta.get("academic_benchmarks")),
        },
        "mastery_outcome": {
            "short_term": mastery.get("short_term")
            or f"Demonstrate foundational competence in {topic}",
            "long_term": mastery.get("long_term")
            or f"Apply {topic} knowledge in professional contexts",
            "evidence_of_mastery": mastery.get("evidence_of_mastery")
            or f"Complete a capstone project in {topic}",
            "capstone_type": capstone_type,
            "cognitive_verbs": _str_list(mastery.get("cognitive_verbs")) or ["Apply", "Analyze"],
        },
        "module_intents": module_intents,
        "lesson_grammar": {
            "narrative_arc": lesson.get("narrative_arc") or narrative_flow,
            "bottlenecks": _str_list(lesson.get("bottlenecks")),
            "drill_opportunities": _str_list(lesson.get("drill_opportunities")),
            "direct_practice_contexts": _str_list(lesson.get("direct_practice_contexts")),
        },
    }


# ---------------------------------------------------------------------------
# Design
# ---------------------------------------------------------------------------

async def design_course_grammar(
    client: ChatCompletionClient,
    topic: str,
    pillars: Sequence[Dict[str, Any]],
    narrative_flow: str,
) -> Dict[str, Any]:
    """
    Ask the LLM for the course grammar of *topic*.

    Never raises: any provider or parsing failure yields
    :func:`default_course_grammar`.
    """
    pillar_list = "\n".join(
        f"{i}. {p.get('name', '')} ({p.get('priority', 'important')})"
        for i, p in enumerate(pillars, start=1)
    )
    messages = [
        {"role": "system", "content": _GRAMMAR_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": _GRAMMAR_USER_PROMPT.format(
                topic=topic, pillar_list=pillar_list, narrative_flow=narrative_flow
            ),
        },
    ]

    try:
        ok, parsed = await client.complete_json(messages, temperature=0.3)
    except AIProviderError as exc:
        logger.error("Course grammar design failed for '%s': %s", topic, exc)
        return default_course_grammar(topic, pillars, narrative_flow)

    if not ok or not isinstance(parsed, dict):
        logger.error("Course grammar design returned no usable JSON for '%s'", topic)
        return default_course_grammar(topic, pillars, narrative_flow)

    logger.info("Designed course grammar for '%s'", topic)
    return complete_course_grammar(snake_keys(parsed), topic, pillars, narrative_flow)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_course_grammar(
    modules: Sequence[Dict[str, Any]],
    grammar: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Score a module list against course-grammar rules (0-100).

    Rules and penalties:
    - no capstone module                           -> violation, -20
    - learning-objective coverage of non-capstone
      modules below 50 %                           -> violation, -15
      below 80 %                                   -> suggestion, -5
    - no concept_exposition module                 -> violation, -15
    - no guided or independent practice            -> suggestion, -10
    - no module carries a narrative position       -> suggestion, -5
    - fewer than half of the mastery cognitive
      verbs appear in the module titles            -> suggestion, -5
      (only checked when a grammar is supplied)

    Returns ``{"valid", "score", "violations", "suggestions"}``; ``valid`` is
    True iff there are no violations.
    """
    violations: List[str] = []
    suggestions: List[str] = []
    score = 100

    # 1. Evidence of mastery
    if not any(m.get("is_capstone") for m in modules):
        violations.append("Missing capstone/evidence of mastery")
        score -= 20

    # 2. Learning objective coverage
    non_capstone = [m for m in modules if not m.get("is_capstone")]
    with_objectives = [m for m in non_capstone if m.get("learning_objective")]
    coverage = (len(with_objectives) / len(non_capstone) * 100) if non_capstone else 0.0

    if coverage < 50:
        violations.append(f"Only {round(coverage)}% of modules have learning objectives")
        score -= 15
    elif coverage < 80:
        suggestions.append("Consider adding learning objectives to more modules")
        score -= 5

    # 3. Pedagogical function distribution
    functions = {m.get("pedagogical_function") for m in modules if m.get("pedagogical_function")}
    if "concept_exposition" not in functions:
        violations.append("Missing concept exposition phase")
        score -= 15
    if not functions & {"guided_practice", "independent_practice"}:
        suggestions.append("Consider adding guided practice modules")
        score -= 10

    # 4. Narrative progression
    if not any(m.get("narrative_position") for m in modules):
        suggestions.append("Add narrative positioning to improve course coherence")
        score -= 5

    # 5. Alignment with mastery cognitive verbs
    if grammar:
        verbs = (grammar.get("mastery_outcome") or {}).get("cognitive_verbs") or []
        titles = " ".join((m.get("title") or "").lower() for m in modules)
        found = [v for v in verbs if v.lower() in titles]
        if len(found) < len(verbs) / 2:
            suggestions.append(
                f"Consider using more cognitive verbs in module titles: {', '.join(verbs)}"
            )
            score -= 5

    return {
        "valid": not violations,
        "score": max(0, score),
        "violations": violations,
        "suggestions": suggestions,
    }
