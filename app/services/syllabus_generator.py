"""
Syllabus generation.

Two strategies are available:

``tiered`` (default)
    1. Tier 1 – extract a real week-by-week syllabus from MIT OCW / Yale OYC.
    2. Tier 2 – aggregate Coursera / edX course structures.
    3. Tier 3 – design an 8-week course with Harvard Bok Center backward
       design, or fall back to a fixed 8-week template.
    Capstone checkpoints are then woven into the module list.

``architect``
    Topic composition -> domain authorities -> lightweight structure ->
    course grammar -> curriculum synthesis -> grammar validation.

Every generated syllabus is stored in the ``community_syllabi`` cache,
which is consulted first unless the caller forces a refresh.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import CommunitySyllabus
from app.services.ai_clients import AIProviderError, GatewayClient, PerplexityClient
from app.services.course_grammar import design_course_grammar, validate_course_grammar
from app.services.curriculum import (
    CAPSTONE_TAG,
    coerce_module,
    generate_lightweight_structure,
    synthesize_curriculum,
)
from app.services.topic_analysis import analyze_topic_composition, identify_domain_authorities

logger = logging.getLogger(__name__)

MIN_TIER_MODULES = 4
HARVARD_URL = "https://bokcenter.harvard.edu/backward-design"
HARVARD_SOURCE = "AI-generated using Harvard Backward Design Framework"


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_TIER1_SYSTEM = (
    "You are a syllabus extractor. Search for real course syllabi from MIT OpenCourseWare "
    "and Yale Open Courses. Extract the actual week-by-week course structure with specific "
    "topics. You MUST return valid JSON only, no other text."
)

_TIER1_PROMPT = """\
Find the syllabus for a course on "{discipline}" from MIT OpenCourseWare (ocw.mit.edu) \
or Yale Open Courses (oyc.yale.edu).

Extract the week-by-week breakdown with specific topics covered each week. \
Return ONLY valid JSON in this exact format:

{{
  "modules": [
    {{"title": "Week 1: [Actual topic from syllabus]", "tag": "Theory", "source": "MIT" or "Yale", "sourceUrl": "https://ocw.mit.edu/..."}},
    {{"title": "Week 2: [Actual topic]", "tag": "Theory", "source": "MIT" or "Yale", "sourceUrl": "https://ocw.mit.edu/..."}}
  ],
  "sourceUrl": "https://ocw.mit.edu/[course-url]"
}}

Requirements:
- Find actual syllabi with weekly schedules
- Extract real topic titles from the syllabus
- Include the exact course URL
- Return at least 6 modules
- Return ONLY the JSON, no other text"""

_TIER2_SYSTEM = (
    "You are a curriculum aggregator. Find real courses from Coursera and edX, extract their "
    "syllabi, and aggregate them into a coherent structure. You MUST return valid JSON only."
)

_TIER2_PROMPT = """\
Search for courses on "{discipline}" from Coursera (coursera.org) and edX (edx.org). \
Look for course syllabi with weekly modules or learning units.

Aggregate the content into 6-8 modules with specific topics. Return ONLY valid JSON:

{{
  "modules": [
    {{"title": "Week 1: [Topic from actual course]", "tag": "Theory", "source": "Coursera" or "edX", "sourceUrl": "https://www.coursera.org/..."}},
    {{"title": "Week 2: [Topic]", "tag": "Theory", "source": "Coursera" or "edX", "sourceUrl": "https://www.coursera.org/..."}}
  ],
  "aggregatedFrom": ["https://www.coursera.org/course1", "https://www.edx.org/course2"]
}}

Find real courses with actual syllabus structures. Return ONLY the JSON, no other text."""

_TIER3_SYSTEM = (
    "You are a Harvard-trained curriculum designer. Design comprehensive course structures "
    "using Backward Design principles from the Harvard Bok Center. You MUST return valid JSON only."
)

_TIER3_PROMPT = """\
Design a comprehensive 8-week course on "{discipline}" using Harvard Bok Center's Backward Design methodology.

Structure the course using these phases:
- Phase 1 (Weeks 1-2): Foundational Concepts - Build core knowledge
- Phase 2 (Weeks 3-5): Application & Practice - Apply concepts to problems
- Phase 3 (Weeks 6-8): Synthesis & Integration - Advanced topics and connections

For each week, create specific, detailed learning topics relevant to {discipline}.

Return ONLY valid JSON:

{{
  "modules": [
    {{"title": "Week 1: [Specific foundational topic]", "tag": "Theory", "source": "Harvard Framework", "sourceUrl": "{url}"}},
    {{"title": "Week 3: [Application methods]", "tag": "Application", "source": "Harvard Framework", "sourceUrl": "{url}"}},
    {{"title": "Week 6: [Integration concepts]", "tag": "Synthesis", "source": "Harvard Framework", "sourceUrl": "{url}"}}
  ]
}}

Return ONLY the JSON, no other text."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def fallback_syllabus(discipline: str) -> Dict[str, Any]:
    """Fixed 8-week Harvard-framework template."""
    weeks = [
        (f"Week 1: Introduction to {discipline}", "Theory"),
        (f"Week 2: Foundational Concepts in {discipline}", "Theory"),
        ("Week 3: Core Methodologies", "Application"),
        ("Week 4: Practical Applications", "Application"),
        ("Week 5: Advanced Techniques & Analysis", "Application"),
        ("Week 6: Integration & Cross-Disciplinary Connections", "Synthesis"),
        ("Week 7: Contemporary Issues & Debates", "Synthesis"),
        ("Week 8: Synthesis & Future Directions", "Synthesis"),
    ]
    return {
        "modules": [
            coerce_module(
                {"title": title, "tag": tag, "source": "Harvard Framework", "source_url": HARVARD_URL},
                idx,
            )
            for idx, (title, tag) in enumerate(weeks)
        ],
        "source": HARVARD_SOURCE,
        "source_url": HARVARD_URL,
    }


def _milestone(title: str) -> Dict[str, Any]:
    return coerce_module(
        {"title": title, "tag": CAPSTONE_TAG, "source": "Project Milestone", "is_capstone": True}
    )


def weave_capstone_checkpoints(modules: List[Dict[str, Any]], discipline: str) -> List[Dict[str, Any]]:
    """
    Insert capstone milestones into *modules*.

    With ``n`` modules, a planning checkpoint follows index ``n // 3 - 1``, a
    draft & peer-review checkpoint follows index ``2 * n // 3 - 1`` and a
    final presentation is appended at the end.
    """
    total = len(modules)
    planning_after = total // 3 - 1
    draft_after = (total * 2) // 3 - 1

    result: List[Dict[str, Any]] = []
    for i, module in enumerate(modules):
        result.append(module)
        if i == planning_after:
            result.append(_milestone(f"Capstone Checkpoint: Project Planning for {discipline}"))
        if i == draft_after:
            result.append(_milestone("Capstone Checkpoint: Draft & Peer Review"))

    result.append(_milestone(f"Final Capstone: {discipline} Project Presentation"))
    return result


def _coerce_modules(raw_modules: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_modules, list):
        return []
    return [coerce_module(m, idx) for idx, m in enumerate(raw_modules) if isinstance(m, dict)]


def community_row_to_response(row: CommunitySyllabus, cached: bool = True) -> Dict[str, Any]:
    validation = None
    if row.course_grammar:
        validation = validate_course_grammar(row.modules or [], row.course_grammar)
    return {
        "discipline": row.discipline,
        "discipline_path": row.discipline_path,
        "modules": row.modules or [],
        "source": row.source,
        "source_url": row.source_url,
        "raw_sources": row.raw_sources,
        "topic_pillars": row.topic_pillars,
        "narrative_flow": row.narrative_flow,
        "composition_type": row.composition_type,
        "course_grammar": row.course_grammar,
        "grammar_validation": validation,
        "synthesis_rationale": row.synthesis_rationale,
        "cached": cached,
        "timestamp": row.updated_at or datetime.utcnow(),
    }


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class SyllabusGenerator:
    """Builds syllabi with Perplexity (search) and the gateway (analysis)."""

    def __init__(self, perplexity: PerplexityClient, gateway: GatewayClient) -> None:
        self.perplexity = perplexity
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate(
        self,
        discipline: str,
        db: AsyncSession,
        discipline_path: Optional[str] = None,
        mode: str = "tiered",
        force_refresh: bool = False,
    ) -> Dict[str, Any]:
        """Return a syllabus for *discipline*, from cache when possible."""
        if not force_refresh:
            cached = await self.get_community(discipline, db)
            if cached is not None and cached.modules:
                logger.info("Community cache hit for '%s'", discipline)
                return community_row_to_response(cached)

        logger.info("Generating %s syllabus for '%s'", mode, discipline)
        if mode == "architect":
            result = await self.generate_architected(discipline)
        else:
            result = await self.generate_tiered(discipline)

        result["discipline"] = discipline
        result["discipline_path"] = discipline_path
        await self._store_community(result, db)
        result["cached"] = False
        result["timestamp"] = datetime.utcnow()
        return result

    # ------------------------------------------------------------------
    # Tiered generation
    # ------------------------------------------------------------------

    async def generate_tiered(self, discipline: str) -> Dict[str, Any]:
        tier = await self._search_tier1(discipline)
        if tier is None:
            logger.info("Tier 1 insufficient for '%s', trying Tier 2", discipline)
            tier = await self._search_tier2(discipline)
        if tier is None:
            logger.info("Tier 2 insufficient for '%s', using Tier 3", discipline)
            tier = await self._generate_tier3(discipline)

        tier["modules"] = weave_capstone_checkpoints(tier["modules"], discipline)
        return tier

    async def _search(self, system: str, prompt: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        messages = [{"role": "system", "content": system}, {"role": "user", "content": prompt}]
        try:
            ok, parsed = await self.perplexity.complete_json(messages, **kwargs)
        except AIProviderError as exc:
            logger.error("Syllabus search failed: %s", exc)
            return None
        if not ok or not isinstance(parsed, dict):
            return None
        return parsed

    async def _search_tier1(self, discipline: str) -> Optional[Dict[str, Any]]:
        parsed = await self._search(
            _TIER1_SYSTEM,
            _TIER1_PROMPT.format(discipline=discipline),
            temperature=0.1,
            max_tokens=3000,
            search_domain_filter=["ocw.mit.edu", "oyc.yale.edu"],
            return_citations=True,
        )
        modules = _coerce_modules((parsed or {}).get("modules"))
        if len(modules) < MIN_TIER_MODULES:
            return None

        logger.info("Tier 1 parsed %d modules for '%s'", len(modules), discipline)
        return {
            "modules": modules,
            "source": f"Direct syllabus from {modules[0]['source'] or 'MIT/Yale'}",
            "source_url": parsed.get("sourceUrl") or modules[0]["source_url"],
        }

    async def _search_tier2(self, discipline: str) -> Optional[Dict[str, Any]]:
        parsed = await self._search(
            _TIER2_SYSTEM,
            _TIER2_PROMPT.format(discipline=discipline),
            temperature=0.1,
            max_tokens=3000,
            search_domain_filter=["coursera.org", "edx.org"],
            return_citations=True,
        )
        modules = _coerce_modules((parsed or {}).get("modules"))
        if len(modules) < MIN_TIER_MODULES:
            return None

        aggregated = [u for u in (parsed.get("aggregatedFrom") or []) if isinstance(u, str)]
        logger.info("Tier 2 aggregated %d modules for '%s'", len(modules), discipline)
        return {
            "modules": modules,
            "source": f"Aggregated from {len(aggregated) or 'multiple'} online courses",
            "source_url": aggregated[0] if aggregated else None,
            "raw_sources": [{"url": u} for u in aggregated] or None,
        }

    async def _generate_tier3(self, discipline: str) -> Dict[str, Any]:
        parsed = await self._search(
            _TIER3_SYSTEM,
            _TIER3_PROMPT.format(discipline=discipline, url=HARVARD_URL),
            temperature=0.3,
            max_tokens=3000,
        )
        modules = _coerce_modules((parsed or {}).get("modules"))
        if not modules:
            logger.warning("Tier 3 failed for '%s', using fallback syllabus", discipline)
            return fallback_syllabus(discipline)

        return {"modules": modules, "source": HARVARD_SOURCE, "source_url": HARVARD_URL}

    # ------------------------------------------------------------------
    # Architected generation
    # ------------------------------------------------------------------

    async def generate_architected(self, discipline: str) -> Dict[str, Any]:
        composition = await analyze_topic_composition(self.gateway, discipline)
        authorities = await identify_domain_authorities(self.gateway, discipline)

        sources = [
            {
                "institution": a["name"],
                "course_name": f"{discipline} ({', '.join(a['focus_areas']) or 'general'})",
                "url": f"https://{a['domain']}",
                "type": a["authority_type"],
                "authority_reason": a["authority_reason"],
            }
            for a in authorities["authorities"]
        ]

        structure = await generate_lightweight_structure(self.perplexity, discipline, sources)
        if not structure:
            # No structure from the authorities: seed synthesis with a tiered syllabus
            tiered = await self.generate_tiered(discipline)
            structure = [m for m in tiered["modules"] if m["source"] != "Project Milestone"]
            sources = [{"institution": tiered["source"], "course_name": discipline,
                        "url": tiered.get("source_url") or "", "type": "syllabus"}]

        grammar = await design_course_grammar(
            self.gateway, discipline, composition["pillars"], composition["narrative_flow"]
        )
        extractions = self._group_by_source(structure, sources)
        synthesis = await synthesize_curriculum(
            self.perplexity,
            extractions,
            discipline,
            composition["pillars"],
            composition["narrative_flow"],
            grammar,
        )
        modules = synthesis["modules"]
        validation = validate_course_grammar(modules, grammar)
        logger.info(
            "Architected '%s': %d modules, grammar score %d",
            discipline, len(modules), validation["score"],
        )

        return {
            "modules": modules,
            "source": f"Synthesized from {len(sources)} domain authorities",
            "source_url": sources[0]["url"] if sources else None,
            "raw_sources": sources,
            "topic_pillars": composition["pillars"],
            "narrative_flow": composition["narrative_flow"],
            "composition_type": composition["composition_type"],
            "course_grammar": grammar,
            "grammar_validation": validation,
            "synthesis_rationale": synthesis["synthesis_rationale"],
        }

    @staticmethod
    def _group_by_source(
        modules: List[Dict[str, Any]], sources: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """One extraction per source; modules citing no known source join the first."""
        if not sources:
            return [{"source": {"institution": "Generated", "url": ""}, "modules": modules}]

        unique: Dict[str, Dict[str, Any]] = {}
        for source in sources:
            unique.setdefault(source["url"], source)
        sources = list(unique.values())

        buckets: Dict[str, List[Dict[str, Any]]] = {s["url"]: [] for s in sources}
        for module in modules:
            target = next(
                (s["url"] for s in sources
                 if any(u.startswith(s["url"]) for u in module.get("source_urls") or [])),
                sources[0]["url"],
            )
            buckets[target].append(module)
        return [{"source": s, "modules": buckets[s["url"]]} for s in sources if buckets[s["url"]]]

    # ------------------------------------------------------------------
    # Community cache
    # ------------------------------------------------------------------

    @staticmethod
    async def get_community(discipline: str, db: AsyncSession) -> Optional[CommunitySyllabus]:
        result = await db.execute(
            select(CommunitySyllabus).where(CommunitySyllabus.discipline == discipline)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_community(db: AsyncSession, limit: int = 20) -> List[CommunitySyllabus]:
        result = await db.execute(
            select(CommunitySyllabus)
            .order_by(CommunitySyllabus.updated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _store_community(self, result: Dict[str, Any], db: AsyncSession) -> None:
        row = await self.get_community(result["discipline"], db)
        if row is None:
            row = CommunitySyllabus(discipline=result["discipline"])
            db.add(row)

        row.discipline_path = result.get("discipline_path")
        row.modules = result["modules"]
        row.source = result.get("source")
        row.source_url = result.get("source_url")
        row.raw_sources = result.get("raw_sources")
        # Analysis of the previous modules does not carry over to new ones
        row.topic_pillars = result.get("topic_pillars")
        row.narrative_flow = result.get("narrative_flow")
        row.composition_type = result.get("composition_type")
        row.course_grammar = result.get("course_grammar")
        row.synthesis_rationale = result.get("synthesis_rationale")
        await db.flush()
        await db.refresh(row)
        logger.info("Stored community syllabus for '%s'", result["discipline"])
