"""
Capstone assignment briefs.

Three tiers are tried in order:

1. ``extraction``    - rewrite a real assignment found on the step's source pages
2. ``oer_search``    - adapt an assignment from an OER repository
3. ``bok_synthesis`` - design one with Harvard Bok Center principles

Tiers 1 and 2 only count when the model reports ``"found": true``.  The
result is cached per (step title, discipline).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import CapstoneAssignment
from app.services.ai_clients import AIProviderError, ChatCompletionClient, PerplexityClient
from app.utils.helpers import snake_keys

logger = logging.getLogger(__name__)

TIER_EXTRACTION = "extraction"
TIER_OER = "oer_search"
TIER_BOK = "bok_synthesis"

DISCIPLINE_ROLES: Dict[str, Dict[str, str]] = {
    "Philosophy": {
        "role": "Junior Philosopher",
        "audience": "Academic journal readers",
        "format": "1000-word analytical essay",
    },
    "Computer Science": {
        "role": "Software Engineer",
        "audience": "Technical team",
        "format": "Working code with documentation",
    },
    "History": {
        "role": "Historian",
        "audience": "Peer historians",
        "format": "800-word research memo",
    },
    "Mathematics": {
        "role": "Applied Mathematician",
        "audience": "Technical stakeholders",
        "format": "Problem set with solutions",
    },
    "Mathematical Logic": {
        "role": "Logic Researcher",
        "audience": "Academic peers",
        "format": "Proof document with explanations",
    },
}
DEFAULT_ROLE = {
    "role": "Subject matter expert",
    "audience": "Informed general reader",
    "format": "Written analysis",
}


_EXTRACTION_PROMPT = """\
You are searching for assignment materials for this self-directed learner studying: \
"{step_title}" in {discipline}.

CRITICAL: This learner has NOT seen any original course syllabus. Create a COMPLETELY STANDALONE assignment that:
- Provides full context and background (assume they only know the topic title)
- Does NOT reference "the course", "your proposal", due dates, or syllabus materials
- Focuses on practical real-world application, not academic submission
{modules_context}
Search these URLs for assignment pages, problem sets, labs, or projects:
{urls}

Look for /assignments/, /problem-sets/, /labs/, or /projects/ pages.

If found, extract and REWRITE as a standalone assignment with:
1. Assignment name
2. Context/scenario explaining why this matters (2-3 sentences)
3. Instructions as formatted HTML using <h3>, <p>, <ul>, <li>, <strong>
4. Deliverable format
5. Estimated time

Return ONLY valid JSON:
{{
  "found": true,
  "assignmentName": "Practical Exercise: [Topic]",
  "sourceUrl": "https://...",
  "sourceLabel": "MIT Assignment",
  "scenario": "This exercise helps you apply [topic] to real-world problems...",
  "instructions": "<h3>Setup</h3><p>Begin by...</p><h3>Requirements</h3><ul><li>Complete...</li></ul>",
  "deliverableFormat": "PDF document",
  "estimatedTime": "2 hours",
  "resourceAttachments": []
}}

If not found: {{"found": false}}"""

_OER_PROMPT = """\
Search for assignment materials for a self-directed learner studying: "{step_title}" in {discipline}.

CRITICAL: The learner has NOT seen any course. Create a STANDALONE assignment:
- Full context and background included
- NO references to "the course" or syllabus
- Practical real-world application focus
{modules_context}
Search OER repositories: oercommons.org, merlot.org, curriki.org, teach.com

Return ONLY valid JSON:
{{
  "found": true,
  "assignmentName": "Practical Exercise: [Topic]",
  "sourceUrl": "https://...",
  "sourceLabel": "OER Commons",
  "scenario": "This exercise helps you apply [topic] by...",
  "instructions": "<h3>Part 1: Foundation</h3><p>Start by...</p><h3>Part 2: Application</h3><ul><li>Apply...</li></ul>",
  "deliverableFormat": "Written report",
  "estimatedTime": "1.5 hours",
  "resourceAttachments": []
}}

If not found: {{"found": false}}"""

_BOK_PROMPT = """\
Create a STANDALONE practical assignment for a self-directed learner studying "{step_title}" in {discipline}.

CRITICAL REQUIREMENTS:
- This is a STANDALONE assignment - the learner has NOT seen any course materials
- DO NOT reference "the course", "your proposal", due dates, or Week X
- Provide complete context assuming they only know the topic title
- Focus on REAL-WORLD practical application, not academic submission
- Use Harvard Bok Center principles (authentic task, clear objectives, scaffolded)
{modules_context}
Assignment Context:
- Role: Act as a {role}
- Audience: Create deliverable for {audience}
- Format: {format}

Output the instructions as formatted HTML:
- Use <h3> for section headers (e.g., "Background", "Your Task", "Requirements")
- Use <p> for paragraphs
- Use <ul><li> for bulleted lists
- Use <strong> for emphasis
- Keep it clear, practical, and actionable

Return ONLY valid JSON:
{{
  "assignmentName": "Practical Application: {step_title}",
  "sourceLabel": "Harvard Bok Framework",
  "scenario": "To master {step_title}, you need to apply it in a realistic context. This assignment simulates a real-world scenario where...",
  "instructions": "<h3>Background</h3><p>Understanding {step_title} requires...</p><h3>Your Task</h3><p>You will...</p><h3>Requirements</h3><ul><li>Analyze...</li><li>Document...</li><li>Present...</li></ul><h3>Deliverable</h3><p>Submit a {format} that demonstrates...</p>",
  "deliverableFormat": "{format}",
  "estimatedTime": "2-3 hours",
  "role": "{role}",
  "audience": "{audience}",
  "resourceAttachments": []
}}"""


def _modules_context(modules_covered: Optional[List[str]]) -> str:
    if not modules_covered:
        return ""
    return "\nThe learner has already studied: " + ", ".join(modules_covered) + "\n"


class AssignmentService:
    """Generate and cache capstone assignment briefs."""

    def __init__(
        self,
        perplexity: PerplexityClient,
        gateway: ChatCompletionClient,
        db: AsyncSession,
    ) -> None:
        self.perplexity = perplexity
        self.gateway = gateway
        self.db = db

    async def get_cached(self, step_title: str, discipline: str) -> Optional[CapstoneAssignment]:
        result = await self.db.execute(
            select(CapstoneAssignment).where(
                CapstoneAssignment.step_title == step_title,
                CapstoneAssignment.discipline == discipline,
            )
        )
        return result.scalar_one_or_none()

    async def generate(
        self,
        step_title: str,
        discipline: str,
        source_urls: Optional[List[str]] = None,
        modules_covered: Optional[List[str]] = None,
        force_refresh: bool = False,
    ) -> Tuple[CapstoneAssignment, bool]:
        """
        Assignment for a capstone step.

        Returns:
            ``(row, cached)``

        Raises:
            AIProviderError: the synthesis tier failed.
        """
        if not force_refresh:
            cached = await self.get_cached(step_title, discipline)
            if cached is not None:
                logger.info("[Cache Hit] Assignment for '%s' (%s)", step_title, discipline)
                return cached, True

        source_urls = source_urls or []
        context = _modules_context(modules_covered)
        assignment: Optional[Dict[str, Any]] = None
        tier = ""

        if source_urls:
            logger.info("[Tier 1] Extracting assignment for '%s' from %d URLs", step_title, len(source_urls))
            assignment = await self._search(
                _EXTRACTION_PROMPT.format(
                    step_title=step_title,
                    discipline=discipline,
                    modules_context=context,
                    urls=", ".join(source_urls[:3]),
                )
            )
            tier = TIER_EXTRACTION

        if assignment is None:
            logger.info("[Tier 2] Searching OER repositories for '%s'", step_title)
            assignment = await self._search(
                _OER_PROMPT.format(step_title=step_title, discipline=discipline, modules_context=context)
            )
            tier = TIER_OER

        if assignment is None:
            logger.info("[Tier 3] Synthesizing assignment for '%s'", step_title)
            assignment = await self._synthesize(step_title, discipline, context)
            tier = TIER_BOK

        row = await self._store(step_title, discipline, tier, assignment, modules_covered)
        logger.info("Assignment for '%s' stored from tier %s", step_title, tier)
        return row, False

    async def _search(self, prompt: str) -> Optional[Dict[str, Any]]:
        try:
            ok, parsed = await self.perplexity.complete_json(
                [{"role": "user", "content": prompt}],
                model=self.perplexity.fast_model,
                temperature=0.2,
                max_tokens=3000,
            )
        except AIProviderError as exc:
            logger.error("Assignment search failed: %s", exc)
            return None
        if not ok or not isinstance(parsed, dict) or parsed.get("found") is not True:
            return None
        return snake_keys(parsed)

    async def _synthesize(self, step_title: str, discipline: str, context: str) -> Dict[str, Any]:
        mapping = DISCIPLINE_ROLES.get(discipline, DEFAULT_ROLE)
        prompt = _BOK_PROMPT.format(
            step_title=step_title,
            discipline=discipline,
            modules_context=context,
            **mapping,
        )
        ok, parsed = await self.gateway.complete_json(
            [{"role": "user", "content": prompt}], temperature=0.7, max_tokens=3000
        )
        if not ok or not isinstance(parsed, dict):
            raise AIProviderError("No JSON in assignment response", provider=self.gateway.provider)

        assignment = snake_keys(parsed)
        assignment.setdefault("role", mapping["role"])
        assignment.setdefault("audience", mapping["audience"])
        assignment.setdefault("deliverable_format", mapping["format"])
        return assignment

    async def _store(
        self,
        step_title: str,
        discipline: str,
        tier: str,
        assignment: Dict[str, Any],
        modules_covered: Optional[List[str]],
    ) -> CapstoneAssignment:
        row = await self.get_cached(step_title, discipline)
        if row is None:
            row = CapstoneAssignment(step_title=step_title, discipline=discipline)
            self.db.add(row)

        row.assignment_title = assignment.get("assignment_name") or f"Practical Application: {step_title}"
        row.scenario = assignment.get("scenario")
        instructions = assignment.get("instructions")
        if isinstance(instructions, list):
            instructions = "<ul>" + "".join(f"<li>{item}</li>" for item in instructions) + "</ul>"
        row.instructions = instructions
        row.deliverable_format = assignment.get("deliverable_format")
        row.estimated_time = assignment.get("estimated_time")
        row.role = assignment.get("role")
        row.audience = assignment.get("audience")
        row.resource_attachments = assignment.get("resource_attachments") or []
        row.modules_covered = modules_covered or []
        row.source_tier = tier
        row.source_label = assignment.get("source_label")
        row.source_url = assignment.get("source_url")
        await self.db.flush()
        return row
