"""
Topic analysis: decomposing a subject into pedagogical pillars and finding
the authorities that define it.

Public API
----------
analyze_topic_composition(client, topic)        -> Dict  (never raises)
identify_domain_authorities(client, topic)      -> Dict  (never raises)
infer_topic_pillars(client, discipline, modules, db) -> Dict
    Raises AIProviderError when the provider fails or returns no JSON.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import CommunitySyllabus
from app.services.ai_clients import AIProviderError, ChatCompletionClient
from app.utils.helpers import snake_keys

logger = logging.getLogger(__name__)

VALID_COMPOSITION_TYPES = frozenset({"single", "composite_program", "vocational"})
VALID_PRIORITIES = frozenset({"core", "important", "nice-to-have"})
VALID_AUTHORITY_TYPES = frozenset({"industry_standard", "academic", "practitioner", "standard_body"})

DEFAULT_NARRATIVE_FLOW = "Foundations → Core Concepts → Advanced Topics → Application"


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_COMPOSITION_SYSTEM_PROMPT = """\
You are a Senior Instructional Designer. Analyze learning topics to design curriculum architecture.

Your job is to decompose topics into PEDAGOGICAL PILLARS - the 4-6 distinct areas that a learner must master.

COMPOSITION TYPES:
1. single - A traditional academic discipline (e.g., "Physics", "History", "Philosophy")
2. composite_program - A degree or program combining multiple disciplines (e.g., "MBA", "Data Science Bootcamp")
3. vocational - A practical skill or craft (e.g., "French Cooking", "Carpentry", "Photography")

For each topic, identify:
1. The composition type
2. 4-6 distinct PEDAGOGICAL PILLARS (learning domains, not just subject areas)
3. For each pillar: specific search terms to find relevant syllabi
4. Recommended source types (academic vs vocational/practical)
5. A narrative flow describing how the curriculum should progress

EXAMPLE - Topic: "Machine Learning"
- Type: single
- Pillars: Mathematical Foundations (core), Core Algorithms (core), Deep Learning (important),
  Practical Implementation (important), Advanced Topics (nice-to-have)
- Narrative: Math foundations first, then classic ML, then deep learning, then practical projects
- Vocational First: NO

Respond ONLY with valid JSON."""

_COMPOSITION_USER_PROMPT = """\
Analyze this topic and design its curriculum architecture: "{topic}"

Return JSON with this exact structure:
{{
  "compositionType": "single" | "composite_program" | "vocational",
  "constituentDisciplines": ["Discipline 1", "Discipline 2"],
  "pillars": [
    {{
      "name": "Pillar Name",
      "searchTerms": ["search term 1", "search term 2"],
      "recommendedSources": ["coursera.org", "mit.edu"],
      "priority": "core" | "important" | "nice-to-have"
    }}
  ],
  "narrativeFlow": "Description of how the curriculum should progress from beginner to expert",
  "recommendedSources": ["domain1.com", "domain2.edu"],
  "vocationalFirst": true | false
}}"""

_AUTHORITY_SYSTEM_PROMPT = """\
You are a Domain Researcher specializing in identifying authoritative sources for learning.

Your task is to identify the "Standard Bearers" - the undisputed authorities, standard bodies, \
and elite practitioners - for any given topic.

CRITICAL RULES:
1. Do NOT pick popular blogs or generic sources
2. Pick organizations that DEFINE standards in the field
3. Prefer industry leaders over academic institutions for vocational/practical topics
4. Include both foundational authorities AND modern practitioners
5. Each authority must have a specific, verifiable domain

Return your analysis as valid JSON only."""

_AUTHORITY_USER_PROMPT = """\
Identify the "Standard Bearers" (authoritative sources) for: "{topic}"

EXAMPLES of good authority identification:
- "UX Design" → NNGroup (nngroup.com), IDEO (ideo.com), Interaction Design Foundation (interaction-design.org)
- "Product Management" → Silicon Valley Product Group (svpg.com), Reforge (reforge.com)
- "Cooking" → Serious Eats (seriouseats.com), America's Test Kitchen (americastestkitchen.com)
- "Finance" → CFA Institute (cfainstitute.org), Investopedia (investopedia.com)

Return JSON with 3-6 authorities:

{{
  "authorities": [
    {{
      "name": "Full Organization Name",
      "domain": "example.com",
      "authorityType": "industry_standard" | "academic" | "practitioner" | "standard_body",
      "authorityReason": "Why this is THE authority",
      "focusAreas": ["Specific Area 1", "Specific Area 2"]
    }}
  ],
  "searchStrategy": "Brief description of how to search these sources for {topic} content"
}}"""

_PILLAR_SYSTEM_PROMPT = """\
You are a Senior Instructional Designer analyzing an existing syllabus to identify its pedagogical structure.

Given a list of module titles from a curriculum, your job is to:
1. Identify 4-6 distinct PEDAGOGICAL PILLARS that these modules cover
2. Determine the narrative flow (how topics progress)
3. Classify the composition type

PILLARS should be high-level learning domains, not just module titles. Group related modules together.

For each pillar:
- "core" = Essential to understanding the subject (usually 1-2 pillars)
- "important" = Builds significant competence (usually 2-3 pillars)
- "nice-to-have" = Advanced or specialized content (usually 1-2 pillars)

Respond ONLY with valid JSON."""

_PILLAR_USER_PROMPT = """\
Analyze this existing syllabus and identify its pedagogical pillars:

Discipline: "{discipline}"

Modules:
{module_list}

Return JSON:
{{
  "compositionType": "single" | "composite_program" | "vocational",
  "pillars": [
    {{
      "name": "Pillar Name",
      "searchTerms": ["related search term 1", "related search term 2"],
      "recommendedSources": ["relevant-domain.edu"],
      "priority": "core" | "important" | "nice-to-have"
    }}
  ],
  "narrativeFlow": "Description of how the curriculum progresses"
}}"""


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def default_pillars(topic: str) -> List[Dict[str, Any]]:
    return [
        {
            "name": "Foundations",
            "search_terms": [f"{topic} fundamentals", f"introduction to {topic}"],
            "recommended_sources": ["coursera.org", "edx.org", "ocw.mit.edu"],
            "priority": "core",
        },
        {
            "name": "Core Concepts",
            "search_terms": [f"{topic} core concepts", f"{topic} theory"],
            "recommended_sources": ["coursera.org", "edx.org"],
            "priority": "core",
        },
        {
            "name": "Practical Application",
            "search_terms": [f"{topic} practical", f"{topic} hands-on"],
            "recommended_sources": ["coursera.org", "udemy.com"],
            "priority": "important",
        },
        {
            "name": "Advanced Topics",
            "search_terms": [f"advanced {topic}", f"{topic} deep dive"],
            "recommended_sources": ["coursera.org", "ocw.mit.edu"],
            "priority": "nice-to-have",
        },
    ]


def default_composition(topic: str) -> Dict[str, Any]:
    return {
        "composition_type": "single",
        "constituent_disciplines": [],
        "pillars": default_pillars(topic),
        "narrative_flow": DEFAULT_NARRATIVE_FLOW,
        "recommended_sources": ["coursera.org", "edx.org", "ocw.mit.edu"],
        "vocational_first": False,
    }


def _authority(name, domain, authority_type, reason, focus_areas) -> Dict[str, Any]:
    return {
        "name": name,
        "domain": domain,
        "authority_type": authority_type,
        "authority_reason": reason,
        "focus_areas": focus_areas,
    }


def default_authorities(topic: str) -> Dict[str, Any]:
    """Keyword-matched standard bearers for common topics."""
    lowered = topic.lower()

    if any(k in lowered for k in ("ux", "user experience", "usability")):
        return {
            "authorities": [
                _authority("Nielsen Norman Group", "nngroup.com", "industry_standard",
                           "Founded by Don Norman and Jakob Nielsen, pioneers of UX research",
                           ["Usability", "UX Research", "Heuristics"]),
                _authority("IDEO", "ideo.com", "practitioner",
                           "World-renowned design firm that pioneered human-centered design",
                           ["Design Thinking", "Human-Centered Design"]),
                _authority("Interaction Design Foundation", "interaction-design.org", "academic",
                           "Largest online design school with industry-recognized courses",
                           ["Interaction Design", "UI Design"]),
            ],
            "search_strategy": "Search nngroup.com, ideo.com, and interaction-design.org "
                               "for UX curriculum and best practices",
        }

    if "product management" in lowered or "product manager" in lowered:
        return {
            "authorities": [
                _authority("Silicon Valley Product Group", "svpg.com", "industry_standard",
                           "Founded by Marty Cagan, former VP of Product at eBay",
                           ["Product Strategy", "Product Discovery"]),
                _authority("Reforge", "reforge.com", "practitioner",
                           "Advanced growth and product programs from top tech leaders",
                           ["Growth", "Product-Led Growth"]),
                _authority("Mind the Product", "mindtheproduct.com", "standard_body",
                           "Largest global product management community",
                           ["Product Community", "Best Practices"]),
            ],
            "search_strategy": "Search svpg.com, reforge.com, and mindtheproduct.com "
                               "for product management frameworks",
        }

    if (
        "data science" in lowered
        or "machine learning" in lowered
        or re.search(r"\bai\b", lowered)
    ):
        return {
            "authorities": [
                _authority("Google AI", "ai.google", "industry_standard",
                           "Leading AI research organization with open publications",
                           ["Machine Learning", "AI Research"]),
                _authority("Kaggle", "kaggle.com", "practitioner",
                           "World's largest data science community with competitions and courses",
                           ["Practical ML", "Data Analysis"]),
                _authority("Fast.ai", "fast.ai", "academic",
                           "Free courses making deep learning accessible, founded by Jeremy Howard",
                           ["Deep Learning", "Practical AI"]),
            ],
            "search_strategy": "Search ai.google, kaggle.com, and fast.ai for data science curriculum",
        }

    return {
        "authorities": [
            _authority("Coursera", "coursera.org", "academic",
                       "Top university courses from Stanford, Yale, and others",
                       ["Academic Courses"]),
            _authority("MIT OpenCourseWare", "ocw.mit.edu", "academic",
                       "Free course materials from MIT", ["University Curriculum"]),
        ],
        "search_strategy": f"Search coursera.org and ocw.mit.edu for {topic} courses",
    }


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------

def normalize_pillars(raw: Any) -> List[Dict[str, Any]]:
    """Keep well-formed pillars; unknown priorities become ``important``."""
    pillars = []
    if not isinstance(raw, list):
        return pillars
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        p = snake_keys(item)
        priority = p.get("priority")
        pillars.append(
            {
                "name": str(p["name"]),
                "search_terms": [str(t) for t in (p.get("search_terms") or []) if t],
                "recommended_sources": [str(s) for s in (p.get("recommended_sources") or []) if s],
                "priority": priority if priority in VALID_PRIORITIES else "important",
            }
        )
    return pillars


def _composition_type(value: Any) -> str:
    return value if value in VALID_COMPOSITION_TYPES else "single"


# ---------------------------------------------------------------------------
# Composition analysis
# ---------------------------------------------------------------------------

async def analyze_topic_composition(client: ChatCompletionClient, topic: str) -> Dict[str, Any]:
    """Composition type, pillars and narrative flow for *topic* (defaults on failure)."""
    messages = [
        {"role": "system", "content": _COMPOSITION_SYSTEM_PROMPT},
        {"role": "user", "content": _COMPOSITION_USER_PROMPT.format(topic=topic)},
    ]
    try:
        ok, parsed = await client.complete_json(messages, temperature=0.3)
    except AIProviderError as exc:
        logger.error("Topic analysis failed for '%s': %s", topic, exc)
        return default_composition(topic)

    if not ok or not isinstance(parsed, dict):
        logger.error("Topic analysis returned no usable JSON for '%s'", topic)
        return default_composition(topic)

    analysis = snake_keys(parsed)
    pillars = normalize_pillars(parsed.get("pillars")) or default_pillars(topic)
    logger.info(
        "Topic analysis for '%s': %s with %d pillars",
        topic, analysis.get("composition_type"), len(pillars),
    )
    return {
        "composition_type": _composition_type(analysis.get("composition_type")),
        "constituent_disciplines": analysis.get("constituent_disciplines") or [],
        "pillars": pillars,
        "narrative_flow": analysis.get("narrative_flow") or DEFAULT_NARRATIVE_FLOW,
        "recommended_sources": analysis.get("recommended_sources") or [],
        "vocational_first": bool(analysis.get("vocational_first")),
    }


# ---------------------------------------------------------------------------
# Domain authorities
# ---------------------------------------------------------------------------

async def identify_domain_authorities(client: ChatCompletionClient, topic: str) -> Dict[str, Any]:
    """3-6 standard bearers for *topic* plus a search strategy (defaults on failure)."""
    messages = [
        {"role": "system", "content": _AUTHORITY_SYSTEM_PROMPT},
        {"role": "user", "content": _AUTHORITY_USER_PROMPT.format(topic=topic)},
    ]
    try:
        ok, parsed = await client.complete_json(messages, temperature=0.3, max_tokens=2000)
    except AIProviderError as exc:
        logger.error("Authority discovery failed for '%s': %s", topic, exc)
        return default_authorities(topic)

    if not ok or not isinstance(parsed, dict):
        return default_authorities(topic)

    result = snake_keys(parsed)
    authorities = [
        {
            "name": str(a.get("name")),
            "domain": str(a.get("domain")),
            "authority_type": a.get("authority_type")
            if a.get("authority_type") in VALID_AUTHORITY_TYPES
            else "practitioner",
            "authority_reason": a.get("authority_reason") or "",
            "focus_areas": a.get("focus_areas") or [],
        }
        for a in (result.get("authorities") or [])
        if isinstance(a, dict) and a.get("name") and a.get("domain")
    ][:6]

    if not authorities:
        return default_authorities(topic)

    for a in authorities:
        logger.info("  authority: %s (%s) [%s]", a["name"], a["domain"], a["authority_type"])

    return {
        "authorities": authorities,
        "search_strategy": result.get("search_strategy")
        or f"Search {', '.join(a['domain'] for a in authorities)} for {topic} content",
    }


# ---------------------------------------------------------------------------
# Pillar inference for an existing syllabus
# ---------------------------------------------------------------------------

async def infer_topic_pillars(
    client: ChatCompletionClient,
    discipline: str,
    modules: Sequence[Dict[str, Any]],
    db: AsyncSession,
) -> Dict[str, Any]:
    """
    Infer pillars, narrative flow and composition type from module titles.

    The community cache row for *discipline* (if any) is updated with the
    result; a failed cache update is logged and otherwise ignored.

    Raises:
        AIProviderError: provider failure or no JSON in the reply.
    """
    logger.info("Inferring pillars from %d modules for '%s'", len(modules), discipline)

    module_list = "\n".join(
        f"{i}. {m.get('title', '')}"
        f"{' [' + m['tag'] + ']' if m.get('tag') else ''}"
        f"{' (Capstone)' if m.get('is_capstone') else ''}"
        for i, m in enumerate(modules, start=1)
    )
    messages = [
        {"role": "system", "content": _PILLAR_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": _PILLAR_USER_PROMPT.format(discipline=discipline, module_list=module_list),
        },
    ]

    ok, parsed = await client.complete_json(messages, temperature=0.3)
    if not ok or not isinstance(parsed, dict):
        raise AIProviderError("Invalid response format", provider=client.provider)

    analysis = snake_keys(parsed)
    result = {
        "pillars": normalize_pillars(parsed.get("pillars")),
        "narrative_flow": analysis.get("narrative_flow"),
        "composition_type": _composition_type(analysis.get("composition_type")),
    }
    logger.info(
        "Identified %d pillars: %s",
        len(result["pillars"]), ", ".join(p["name"] for p in result["pillars"]),
    )

    try:
        async with db.begin_nested():
            await db.execute(
                update(CommunitySyllabus)
                .where(CommunitySyllabus.discipline == discipline)
                .values(
                    topic_pillars=result["pillars"],
                    narrative_flow=result["narrative_flow"],
                    composition_type=result["composition_type"],
                )
            )
    except SQLAlchemyError as exc:
        logger.error("Failed to update community cache with pillars: %s", exc)

    return result
