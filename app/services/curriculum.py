"""
Module-level curriculum building blocks shared by the syllabus generators.

* ``coerce_module``            – normalise one LLM module dict
* ``generate_lightweight_structure`` – titles + tags only, 8-12 modules
* ``synthesize_curriculum``    – "curriculum architect" pass that selects,
  sequences and annotates modules from several source extractions, with a
  deterministic fallback when the LLM is unavailable

A *source* is ``{"institution", "course_name", "url", "type"}``; an
*extraction* is ``{"source": <source>, "modules": [<module>, ...]}``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from app.services.ai_clients import AIProviderError, PerplexityClient
from app.services.course_grammar import VALID_COGNITIVE_LEVELS, VALID_PEDAGOGICAL_FUNCTIONS
from app.utils.helpers import normalize_title, snake_keys

logger = logging.getLogger(__name__)

CAPSTONE_TAG = "Capstone Integration"
MAX_SYNTHESIZED_MODULES = 15
MODULES_PER_SOURCE = 3

_FUNCTION_SEQUENCE = (
    "pre_exposure",
    "concept_exposition",
    "concept_exposition",
    "guided_practice",
    "concept_exposition",
    "guided_practice",
    "independent_practice",
    "assessment_checkpoint",
)

_COGNITIVE_SEQUENCE = (
    "remember",
    "understand",
    "understand",
    "apply",
    "analyze",
    "apply",
    "create",
    "evaluate",
)

_MODULE_TEXT_FIELDS = (
    "description",
    "priority",
    "pillar",
    "learning_objective",
    "narrative_position",
    "evidence_of_mastery",
    "origin",
    "selection_rationale",
)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def coerce_module(raw: Dict[str, Any], index: int = 0, default_source: str = "") -> Dict[str, Any]:
    """
    Turn a loosely-typed module dict into the canonical module record.

    Accepts camelCase or snake_case keys.  Unknown pedagogical functions and
    cognitive levels are dropped to None.
    """
    m = snake_keys(raw) if isinstance(raw, dict) else {}

    source_urls = [u for u in (m.get("source_urls") or []) if isinstance(u, str) and u]
    source_url = m.get("source_url") or (source_urls[0] if source_urls else None)
    if source_url and not source_urls:
        source_urls = [source_url]

    function = m.get("pedagogical_function")
    level = m.get("cognitive_level")

    module: Dict[str, Any] = {
        "title": str(m.get("title") or f"Module {index + 1}").strip(),
        "tag": str(m.get("tag") or "General"),
        "source": str(m.get("source") or default_source),
        "source_url": source_url,
        "source_urls": source_urls,
        "is_capstone": bool(m.get("is_capstone")),
        "estimated_hours": _as_float(m.get("estimated_hours")),
        "pedagogical_function": function if function in VALID_PEDAGOGICAL_FUNCTIONS else None,
        "cognitive_level": level if level in VALID_COGNITIVE_LEVELS else None,
        "is_ai_discovered": bool(m.get("is_ai_discovered")),
        "from_custom_pillar": m.get("from_custom_pillar") or None,
        "is_hidden_for_time": bool(m.get("is_hidden_for_time")),
        "is_hidden_for_depth": bool(m.get("is_hidden_for_depth")),
    }
    for field in _MODULE_TEXT_FIELDS:
        value = m.get(field)
        module[field] = str(value) if value else None
    if isinstance(m.get("steps"), list):
        module["steps"] = m["steps"]
    return module


def ensure_capstone(modules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Promote the last module to capstone when none is marked.

    Its tag becomes ``Capstone Integration`` and its title gains a
    ``Final Project: `` prefix unless it already mentions "Capstone".
    """
    if modules and not any(m.get("is_capstone") for m in modules):
        last = modules[-1]
        last["is_capstone"] = True
        last["tag"] = CAPSTONE_TAG
        if "Capstone" not in last["title"]:
            last["title"] = f"Final Project: {last['title']}"
    return modules


# ---------------------------------------------------------------------------
# Lightweight structure
# ---------------------------------------------------------------------------

_STRUCTURE_PROMPT = """\
Create a comprehensive learning path for "{discipline}".

Reference these authoritative sources:
{sources_text}

Generate a syllabus with 8-12 modules covering the topic comprehensively. Include:
- 1-2 capstone/project modules (mark with isCapstone: true)
- Regular content modules covering foundational through advanced topics

Return ONLY valid JSON in this format:
{{
  "modules": [
    {{
      "title": "Introduction to Core Concepts",
      "tag": "Foundational",
      "sourceUrls": ["https://source1.edu/...", "https://source2.edu/..."],
      "isCapstone": false
    }},
    {{
      "title": "Final Capstone Project",
      "tag": "Capstone Integration",
      "sourceUrls": ["https://source1.edu/..."],
      "isCapstone": true
    }}
  ]
}}

Tags should be: "Foundational", "Core Theory", "Applied", "Advanced", "Capstone Integration"

Attribution: Each module's sourceUrls should list URLs from the provided sources that cover that topic. \
Multiple URLs are encouraged when topics overlap across sources.

Return ONLY the JSON, no other text."""


async def generate_lightweight_structure(
    client: PerplexityClient,
    discipline: str,
    sources: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Module titles and tags for *discipline*, attributed to *sources*.

    Detailed descriptions and resources are fetched later per step.
    Returns an empty list on failure.
    """
    if sources:
        sources_text = "\n".join(
            f"- {s.get('institution', '')}: {s.get('course_name', '')} ({s.get('url', '')})"
            for s in sources[:5]
        )
    else:
        sources_text = "No specific sources provided"

    messages = [
        {
            "role": "system",
            "content": "You are a curriculum designer. Create a comprehensive learning path "
                       "with module titles and tags. Return valid JSON only.",
        },
        {
            "role": "user",
            "content": _STRUCTURE_PROMPT.format(discipline=discipline, sources_text=sources_text),
        },
    ]

    try:
        ok, parsed = await client.complete_json(
            messages, model=client.model, temperature=0.2, max_tokens=4000
        )
    except AIProviderError as exc:
        logger.error("Lightweight structure failed for '%s': %s", discipline, exc)
        return []

    if not ok or not isinstance(parsed, dict) or not isinstance(parsed.get("modules"), list):
        logger.warning("Lightweight structure returned no module list for '%s'", discipline)
        return []

    first = sources[0] if sources else {}
    default_source = first.get("institution") or "Generated"
    default_url = first.get("url") or None

    modules = []
    for idx, raw in enumerate(parsed["modules"]):
        if not isinstance(raw, dict):
            continue
        module = coerce_module(raw, idx, default_source=default_source)
        if not raw.get("title"):
            module["title"] = "Untitled Module"
        # Attribution always comes from the discovered sources
        module["source"] = default_source
        if not module["source_urls"] and default_url:
            module["source_urls"] = [default_url]
        module["source_url"] = module["source_urls"][0] if module["source_urls"] else default_url
        modules.append(module)

    return ensure_capstone(modules)


# ---------------------------------------------------------------------------
# Curriculum synthesis
# ---------------------------------------------------------------------------

_SYNTHESIS_SYSTEM_PROMPT = """\
You are a SENIOR INSTRUCTIONAL DESIGNER and CURRICULUM ARCHITECT using CANONICAL ACADEMIC COURSE GRAMMAR.

You design TAUGHT COURSES, not resource compilations.

CRITICAL MINDSET:
- A search engine lists everything it finds
- A curriculum architect SELECTS the best and DISCARDS the rest
- You are an EDITOR, not an AGGREGATOR
- Every module must have LEARNING INTENT, not just content

PEDAGOGICAL FUNCTIONS (assign one to each module):
- pre_exposure: Schema activation, preview concepts
- concept_exposition: Core teaching, explain ideas deeply
- expert_demonstration: Show mastery in action
- guided_practice: Scaffolded doing with feedback
- independent_practice: Solo application
- assessment_checkpoint: Evidence of mastery

COGNITIVE LEVELS (Bloom's Revised):
- remember, understand, apply, analyze, evaluate, create

CONSTRUCTIVE ALIGNMENT: Module title verb = Activity verb = Assessment verb"""

_SYNTHESIS_USER_PROMPT = """\
Design a comprehensive curriculum for "{discipline}" using BACKWARD DESIGN.

PEDAGOGICAL PILLARS TO COVER:
{pillar_descriptions}

NARRATIVE FLOW:
{narrative_flow}
{grammar_context}
RAW SOURCE MATERIALS:
{source_descriptions}

YOUR TASK AS CURRICULUM ARCHITECT:
1. Start from mastery: confirm the capstone outcome and work backwards.
2. Cluster all source modules by concept.
3. For each cluster, select ONLY THE SINGLE BEST RESOURCE.
4. Assign each module a pedagogical function and cognitive level.
5. Write intent-based titles with cognitive verbs ("Analyze X", "Apply Z"), never "Introduction" or "Chapter 1".
6. Sequence in a novice-to-expert progression with narrative continuity.

CONSTRAINTS:
- Target 8-15 modules MAXIMUM
- Each module must have a learning objective and a pedagogical function
- Include narrative positioning (why this, why now, what next)
- Final capstone must demonstrate the mastery outcome

Return ONLY valid JSON:
{{
  "synthesisRationale": "Brief explanation of backward design decisions",
  "modules": [
    {{
      "title": "Analyze the Core Principles of [Topic]",
      "tag": "Foundations",
      "source": "MIT OCW",
      "sourceUrl": "https://...",
      "pillar": "Core Concepts",
      "description": "One sentence explaining what this covers",
      "learningObjective": "By end of this module, learner can [action verb + object]",
      "pedagogicalFunction": "concept_exposition",
      "cognitiveLevel": "understand",
      "narrativePosition": "Sets foundation for X, prepares learner for Y",
      "selectionRationale": "Chosen over alternatives because..."
    }},
    {{
      "title": "Create Your [Capstone Deliverable]",
      "tag": "Capstone Integration",
      "isCapstone": true,
      "pedagogicalFunction": "assessment_checkpoint",
      "cognitiveLevel": "create",
      "learningObjective": "Demonstrate mastery by producing [deliverable]",
      "evidenceOfMastery": "Completed [specific artifact]"
    }}
  ]
}}"""


def _grammar_context(grammar: Optional[Dict[str, Any]]) -> str:
    if not grammar:
        return ""
    mastery = grammar["mastery_outcome"]
    lesson = grammar["lesson_grammar"]
    intents = "\n".join(
        f"- {mi['pillar_name']}: {mi['learning_intent']}\n"
        f"  Checkpoint: {mi['summative_checkpoint']}\n"
        f"  Emphasize: {', '.join(mi['emphasize']) or 'General coverage'}\n"
        f"  Exclude: {', '.join(mi['exclude']) or 'None specified'}"
        for mi in grammar["module_intents"]
    )
    return (
        "\nCOURSE GRAMMAR (BACKWARD DESIGN):\n"
        f"Mastery Outcome: {mastery['short_term']}\n"
        f"Evidence of Mastery: {mastery['evidence_of_mastery']}\n"
        f"Capstone Type: {mastery['capstone_type']}\n"
        f"Required Cognitive Verbs: {', '.join(mastery['cognitive_verbs'])}\n"
        f"Known Bottlenecks to Address: {', '.join(lesson['bottlenecks']) or 'None identified'}\n"
        f"Direct Practice Contexts: {', '.join(lesson['direct_practice_contexts']) or 'General practice'}\n"
        f"Narrative Arc: {lesson['narrative_arc']}\n\n"
        f"MODULE INTENTS (what each pillar must achieve):\n{intents}\n"
    )


async def synthesize_curriculum(
    client: PerplexityClient,
    extractions: Sequence[Dict[str, Any]],
    discipline: str,
    pillars: Sequence[Dict[str, Any]],
    narrative_flow: str,
    grammar: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Architect a single curriculum from several source extractions.

    Returns ``{"modules": [...], "synthesis_rationale": str}``.  Falls back
    to :func:`fallback_synthesis` on any provider or parsing failure.
    """
    source_descriptions = "\n\n".join(
        f"=== Source {idx}: {ext['source'].get('institution', '')} - "
        f"{ext['source'].get('course_name', '')} ===\n"
        f"URL: {ext['source'].get('url', '')}\n"
        f"Type: {ext['source'].get('type', '')}\n"
        f"Modules (showing first 10 of {len(ext['modules'])}):\n"
        + "\n".join(f"  - {m.get('title', '')}" for m in ext["modules"][:10])
        for idx, ext in enumerate(extractions, start=1)
    )
    pillar_descriptions = "\n".join(
        f"{idx}. {p.get('name', '')} ({p.get('priority', 'important')}) - "
        f"Search: {', '.join((p.get('search_terms') or [])[:2])}"
        for idx, p in enumerate(pillars, start=1)
    )

    messages = [
        {"role": "system", "content": _SYNTHESIS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": _SYNTHESIS_USER_PROMPT.format(
                discipline=discipline,
                pillar_descriptions=pillar_descriptions,
                narrative_flow=narrative_flow,
                grammar_context=_grammar_context(grammar),
                source_descriptions=source_descriptions,
            ),
        },
    ]

    try:
        ok, parsed = await client.complete_json(
            messages, model=client.model, temperature=0.3, max_tokens=5000
        )
    except AIProviderError as exc:
        logger.error("Curriculum synthesis failed for '%s': %s", discipline, exc)
        return fallback_synthesis(extractions, discipline, grammar)

    if not ok or not isinstance(parsed, dict) or not isinstance(parsed.get("modules"), list):
        logger.error("Curriculum synthesis returned no module list for '%s'", discipline)
        return fallback_synthesis(extractions, discipline, grammar)

    modules = []
    for idx, raw in enumerate(m for m in parsed["modules"] if isinstance(m, dict)):
        module = coerce_module(raw, idx, default_source="Synthesized")
        if not raw.get("tag"):
            module["tag"] = "Core Concepts"
        module["origin"] = "external"
        module["is_ai_discovered"] = True
        modules.append(module)

    logger.info("Synthesised curriculum for '%s' with %d modules", discipline, len(modules))
    return {
        "modules": modules,
        "synthesis_rationale": parsed.get("synthesisRationale")
        or parsed.get("synthesis_rationale")
        or "Curriculum designed using backward design principles",
    }


def fallback_synthesis(
    extractions: Sequence[Dict[str, Any]],
    discipline: str,
    grammar: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Deterministic synthesis: the first modules of every source, deduplicated
    by letters-only title, annotated from fixed pedagogical sequences, with a
    capstone appended when none exists and capped at 15 modules.
    """
    seen = set()
    modules: List[Dict[str, Any]] = []

    for ext in extractions:
        source = ext.get("source") or {}
        for raw in (ext.get("modules") or [])[:MODULES_PER_SOURCE]:
            key = normalize_title(raw.get("title", ""))
            if key in seen:
                continue
            seen.add(key)

            position = len(modules)
            module = coerce_module(raw, position, default_source=source.get("institution", ""))
            module.update(
                {
                    "source_urls": [source["url"]] if source.get("url") else module["source_urls"],
                    "origin": "external",
                    "is_ai_discovered": True,
                    "pedagogical_function": _FUNCTION_SEQUENCE[position % len(_FUNCTION_SEQUENCE)],
                    "cognitive_level": _COGNITIVE_SEQUENCE[position % len(_COGNITIVE_SEQUENCE)],
                    "learning_objective": f"Understand and apply concepts from {module['title']}",
                    "narrative_position": "Foundation for subsequent learning"
                    if position == 0
                    else "Builds on previous modules, preparing for mastery",
                }
            )
            modules.append(module)

    if not any(m["is_capstone"] for m in modules):
        mastery = (grammar or {}).get("mastery_outcome") or {}
        capstone_type = mastery.get("capstone_type") or "project"
        evidence = mastery.get("evidence_of_mastery") or (
            f"Complete a comprehensive {capstone_type} demonstrating {discipline} skills"
        )
        capstone = coerce_module(
            {
                "title": f"Create Your {discipline} {capstone_type[:1].upper()}{capstone_type[1:]}",
                "tag": CAPSTONE_TAG,
                "source": "Synthesized",
                "description": evidence,
                "is_capstone": True,
                "pedagogical_function": "assessment_checkpoint",
                "cognitive_level": "create",
                "learning_objective": f"Demonstrate mastery of {discipline}",
                "evidence_of_mastery": evidence,
                "narrative_position": "Final demonstration of all learned skills",
            },
            len(modules),
        )
        capstone["origin"] = "external"
        capstone["is_ai_discovered"] = True
        modules.append(capstone)

    return {
        "modules": modules[:MAX_SYNTHESIZED_MODULES],
        "synthesis_rationale": "Fallback synthesis: selected representative modules "
                               "with pedagogical defaults",
    }
