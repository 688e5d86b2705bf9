"""
Markdown export of a saved syllabus.

The document lists the learning path the way a learner sees it: overview,
pillars, narrative, the visible modules with any cached step resources,
discovered authorities and the source syllabi.  Modules hidden for time or
depth are left out.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import CommunitySyllabus, SavedSyllabus, StepResource
from app.services.topic_analysis import VALID_AUTHORITY_TYPES

logger = logging.getLogger(__name__)

_COMPOSITION_LABELS = {
    "composite_program": "Composite Program",
    "vocational": "Vocational",
}

_PILLAR_GROUPS = (
    ("core", "Core"),
    ("important", "Important"),
    ("nice-to-have", "Nice to Have"),
)


def _format_date(day: date) -> str:
    return f"{day:%B} {day.day}, {day.year}"


def export_filename(discipline: str, day: Optional[date] = None) -> str:
    """``<discipline-slug>-syllabus-<YYYY-MM-DD>.md``"""
    slug = re.sub(r"[^a-z0-9]+", "-", discipline.lower()).strip("-")
    return f"{slug}-syllabus-{(day or date.today()).isoformat()}.md"


def visible_modules(modules: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return [
        m for m in modules
        if not m.get("is_hidden_for_time") and not m.get("is_hidden_for_depth")
    ]


def authorities_from_sources(sources: Sequence[Mapping[str, Any]]) -> List[Dict[str, str]]:
    """Domain authorities recorded among the raw sources of an architected syllabus."""
    authorities = []
    for s in sources:
        if s.get("type") not in VALID_AUTHORITY_TYPES:
            continue
        authorities.append(
            {
                "name": s.get("institution") or "",
                "domain": urlparse(s.get("url") or "").netloc or s.get("url") or "",
                "authority_type": s["type"],
                "authority_reason": s.get("authority_reason") or "",
            }
        )
    return authorities


def _resource_line(resource: Mapping[str, Any], rationale_key: Optional[str] = None) -> str:
    line = f"- [{resource.get('title') or resource.get('url')}]({resource.get('url') or ''})"
    if resource.get("author"):
        line += f" by {resource['author']}"
    if resource.get("duration"):
        line += f" ({resource['duration']})"
    rationale = resource.get(rationale_key) if rationale_key else None
    if rationale:
        line += f" - {rationale}"
    return line


def _resource_lines(resources: Mapping[str, Any]) -> List[str]:
    lines = ["#### Resources", ""]

    video = resources.get("primary_video")
    if video and video.get("url"):
        lines += ["**📺 Core Video:**", _resource_line(video, "why_this_video"), ""]

    reading = resources.get("deep_reading")
    if reading and reading.get("url"):
        lines += ["**📖 Core Reading:**", _resource_line(reading, "focus_highlight"), ""]

    book = resources.get("book")
    if book and book.get("title"):
        line = _resource_line(book, "why")
        if book.get("chapter_recommendation"):
            line += f" ({book['chapter_recommendation']})"
        lines += ["**📚 Book:**", line, ""]

    alternatives = [a for a in resources.get("alternatives") or [] if a.get("url")]
    moocs = [a for a in alternatives if a.get("type") == "mooc"]
    others = [a for a in alternatives if a.get("type") != "mooc"]
    if moocs:
        lines.append("**🎓 Online Courses:**")
        for mooc in moocs:
            provider = mooc.get("source") or mooc.get("provider") or ""
            lines.append(f"- [{mooc.get('title') or mooc['url']}]({mooc['url']})"
                         f"{f' - {provider}' if provider else ''}")
        lines.append("")
    if others:
        lines.append("**🔍 Additional Resources:**")
        lines.extend(_resource_line(a) for a in others)
        lines.append("")
    return lines


def build_syllabus_markdown(
    discipline: str,
    modules: Sequence[Mapping[str, Any]],
    raw_sources: Optional[Sequence[Mapping[str, Any]]] = None,
    composition_type: Optional[str] = None,
    topic_pillars: Optional[Sequence[Mapping[str, Any]]] = None,
    narrative_flow: Optional[str] = None,
    synthesis_rationale: Optional[str] = None,
    resources: Optional[Mapping[str, Mapping[str, Any]]] = None,
    today: Optional[date] = None,
) -> str:
    """
    Render a syllabus as markdown.

    Args:
        discipline: Discipline name, used in the title
        modules: Module dicts; hidden ones are skipped
        raw_sources: Discovered sources (authorities are picked out by type)
        composition_type: ``single``, ``composite_program`` or ``vocational``
        topic_pillars: Pillars with a ``priority`` of core/important/nice-to-have
        narrative_flow: Learning narrative text
        synthesis_rationale: Overview text
        resources: Cached step resources keyed by module title
        today: Export date (defaults to today)

    Returns:
        The markdown document
    """
    stamp = _format_date(today or date.today())
    shown = visible_modules(modules)
    sources = list(raw_sources or [])
    composition = _COMPOSITION_LABELS.get(composition_type or "", "Single Source")

    lines = [
        f"# {discipline} Learning Path",
        "",
        f"> Generated on {stamp} | {composition} | {len(shown)} modules",
        "",
    ]

    if synthesis_rationale:
        lines += ["## Overview", "", synthesis_rationale, ""]

    if topic_pillars:
        lines += ["## Curriculum Pillars", ""]
        for priority, label in _PILLAR_GROUPS:
            names = [p.get("name", "") for p in topic_pillars if p.get("priority") == priority]
            if names:
                lines.append(f"- **{label}:** {', '.join(names)}")
        lines.append("")

    if narrative_flow:
        lines += ["## Learning Narrative", "", narrative_flow, ""]

    lines += ["## Course Modules", ""]
    for number, module in enumerate(shown, start=1):
        markers = (" 🎓" if module.get("is_capstone") else "") + (
            " ✨" if module.get("is_ai_discovered") else ""
        )
        lines += [f"### {number}. {module.get('title', '')}{markers}", ""]

        meta = []
        if module.get("tag"):
            meta.append(f"**Tag:** {module['tag']}")
        if module.get("source"):
            meta.append(f"**Source:** {module['source']}")
        if module.get("estimated_hours"):
            meta.append(f"**Est. Time:** {module['estimated_hours']:g}h")
        if module.get("priority"):
            meta.append(f"**Priority:** {module['priority']}")
        if meta:
            lines += [" | ".join(meta), ""]

        if module.get("description"):
            lines += [module["description"], ""]

        step_resources = (resources or {}).get(module.get("title", ""))
        if step_resources:
            lines += _resource_lines(step_resources)

        lines += ["---", ""]

    authorities = authorities_from_sources(sources)
    if authorities:
        lines += ["## Discovered Authorities", "", "| Name | Domain | Type | Why |", "|------|--------|------|-----|"]
        for a in authorities:
            type_label = a["authority_type"].replace("_", " ").title()
            lines.append(f"| {a['name']} | {a['domain']} | {type_label} | {a['authority_reason']} |")
        lines.append("")

    if sources:
        lines += ["## Source Syllabi", ""]
        for s in sources:
            label = " - ".join(part for part in (s.get("institution"), s.get("course_name")) if part)
            lines.append(f"- [{label or s.get('url', '')}]({s.get('url', '')})")
        lines.append("")

    lines += ["---", "", f"*Exported from Hermes on {stamp}*"]
    return "\n".join(lines)


async def export_saved_syllabus(
    saved: SavedSyllabus, db: AsyncSession, today: Optional[date] = None
) -> str:
    """
    Markdown for a saved syllabus.

    Topic analysis comes from the community syllabus of the same discipline;
    resources come from the step resource cache.
    """
    community = (
        await db.execute(
            select(CommunitySyllabus).where(CommunitySyllabus.discipline == saved.discipline)
        )
    ).scalar_one_or_none()

    modules = saved.modules or []
    titles = [m.get("title") for m in visible_modules(modules) if m.get("title")]
    cached: Dict[str, Mapping[str, Any]] = {}
    if titles:
        rows = (
            await db.execute(
                select(StepResource).where(
                    StepResource.discipline == saved.discipline,
                    StepResource.step_title.in_(titles),
                )
            )
        ).scalars().all()
        cached = {row.step_title: row.resources for row in rows}

    logger.info(
        "Exporting syllabus %s (%d modules, %d with cached resources)",
        saved.id, len(modules), len(cached),
    )
    return build_syllabus_markdown(
        saved.discipline,
        modules,
        raw_sources=saved.raw_sources or (community.raw_sources if community else None),
        composition_type=community.composition_type if community else None,
        topic_pillars=community.topic_pillars if community else None,
        narrative_flow=community.narrative_flow if community else None,
        synthesis_rationale=community.synthesis_rationale if community else None,
        resources=cached,
        today=today,
    )
