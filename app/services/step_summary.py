"""
AI course notes for a curriculum step.

Notes are long-form HTML written by the gateway model, cached per
(step title, discipline, length, locale).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import StepSummary
from app.services.ai_clients import AIProviderError, ChatCompletionClient

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {"en": "English", "es": "Spanish", "fr": "French"}

LENGTH_CONFIG: Dict[str, Dict[str, Any]] = {
    "brief": {
        "max_tokens": 4000,
        "instruction": (
            "Provide a focused explanation of core concepts with key definitions and examples. "
            "While concise, still include substantive academic content. CRITICAL: Always complete "
            "your thoughts and sentences - never end mid-sentence."
        ),
    },
    "standard": {
        "max_tokens": 8000,
        "instruction": (
            "Provide substantial course notes including conceptual exposition, expert "
            "demonstrations, application examples, and transition to next concepts. Aim for "
            "600-900 words of prose. CRITICAL: Always complete your thoughts and sentences - "
            "never end mid-sentence."
        ),
    },
    "comprehensive": {
        "max_tokens": 14000,
        "instruction": (
            "Provide exhaustive Harvard-style course notes with 800-1200+ words of prose. Include "
            "deep conceptual exposition, structured frameworks/models, embedded resource "
            "references, application/interpretation layer, and transition forward. CRITICAL: "
            "Always complete your thoughts and sentences - never end mid-sentence."
        ),
    },
}

FUNCTION_DESCRIPTIONS = {
    "pre_exposure": "This is a PRE-EXPOSURE module: activate prior knowledge, preview key concepts",
    "concept_exposition": "This is a CONCEPT EXPOSITION module: explain ideas deeply, build understanding",
    "expert_demonstration": "This is an EXPERT DEMONSTRATION module: show mastery in action, model expert thinking",
    "guided_practice": "This is a GUIDED PRACTICE module: scaffold learner doing with feedback",
    "independent_practice": "This is an INDEPENDENT PRACTICE module: learner applies solo",
    "assessment_checkpoint": "This is an ASSESSMENT CHECKPOINT: evidence of mastery",
}

LEVEL_DESCRIPTIONS = {
    "remember": "Focus on RECALL: facts, terms, definitions",
    "understand": "Focus on EXPLANATION: interpret, summarize, paraphrase",
    "apply": "Focus on APPLICATION: use in new situations",
    "analyze": "Focus on ANALYSIS: draw connections, find patterns",
    "evaluate": "Focus on EVALUATION: justify, critique, assess",
    "create": "Focus on CREATION: produce, design, synthesize new work",
}


_SYSTEM_PROMPT = """\
You are an ACADEMIC COURSE AUTHOR producing authoritative COURSE NOTES comparable to \
Harvard ManageMentor or MIT OpenCourseWare.

You are NOT generating a syllabus summary or resource list. You are writing the PRIMARY learning material.

CRITICAL: Generate ALL content in {language}. This includes headings, paragraphs, terminology \
explanations, and all text.

LEVEL: {level}
{instruction}

OUTPUT CONTRACT (CRITICAL)

FORBIDDEN OUTPUT PATTERNS:
- Labeling content as "Core material" or "resources"
- Limiting sections to < 500 words of prose
- Presenting resources without surrounding explanation
- Treating videos as replacements for text
- Outputs resembling playlists, resource lists, or minimal summaries

REQUIRED OUTPUT SHAPE:

1. CONCEPTUAL EXPOSITION (PRIMARY - 400-700 words)
   - Explanatory prose as the BACKBONE
   - Definitions, distinctions, concrete examples
   - Explicit causal reasoning
   - Written as lecture notes, NOT marketing copy

2. STRUCTURED VISUAL/MODEL (SECONDARY)
   - Framework, process, or conceptual model explained inline
   - Use HTML tables or structured lists to visualize relationships

3. APPLICATION / INTERPRETATION LAYER
   - "How this is used in practice"
   - Trade-offs, failure modes, misapplications

4. TRANSITION FORWARD
   - What this enables next
   - How it connects to the following section

CRITICAL CONTENT REQUIREMENTS:
1. Use formal academic tone (NO casual greetings, NO conversational fillers)
2. Explain IDEAS and ARGUMENTS directly - not just topics
3. Identify key thinkers and their specific contributions
4. Provide historical and intellectual context
5. Use CONCRETE EXAMPLES to illustrate abstract concepts
6. Include clickable links inline as HTML: <a href="URL">Source Name</a>
7. Italicize key terms using <em> tags

ABSOLUTELY EXCLUDE:
1. NO course logistics (reading assignments, page counts, schedules)
2. NO grading or assessment criteria
3. NO study tips or "how to approach" advice
4. NO references to "this course" or "this class"

REQUIRED HTML FORMAT - Academic Outline Structure:

<h1>Topic Title</h1>
<h2>I. Conceptual Exposition</h2>
<h3>A. Key Concept or Framework</h3>
<p class="intro">Contextualizing introduction to the concept.</p>
<p class="point"><strong>1. First Key Idea</strong>: Detailed explanation with examples and reasoning.</p>
<p class="detail"><strong>a.</strong> Supporting detail with specific evidence or example...</p>
<h2>II. Application & Interpretation</h2>
<h2>III. Transition Forward</h2>

COGNITIVE METADATA (include at end if pedagogical context provided):
<div class="cognitive-metadata">
  <p><strong>Cognitive Level:</strong> [Analyze/Apply/Create/etc.]</p>
  <p><strong>Learner can now:</strong> [Specific actionable capability]</p>
  <p><strong>Common misconception addressed:</strong> [What this prevents]</p>
</div>"""

_USER_PROMPT = """\
Generate formal academic COURSE NOTES in HTML format for: {step_title}

{context}

Remember: You are the PRIMARY TEXT, not a reference to other materials. Write substantive \
explanatory prose (400-700+ words minimum) that teaches the concepts directly. Use the structured \
outline format with separate elements for proper visual hierarchy.

Return ONLY valid HTML. Focus on explaining ideas, theories, key thinkers, their arguments, \
historical context, practical applications, and transitions to next concepts."""


def resolve_length(length: Optional[str]) -> str:
    return length if length in LENGTH_CONFIG else "standard"


def build_summary_context(
    step_title: str,
    discipline: str,
    step_description: Optional[str] = None,
    source_content: Optional[str] = None,
    resources: Optional[Mapping[str, Any]] = None,
    learning_objective: Optional[str] = None,
    pedagogical_function: Optional[str] = None,
    cognitive_level: Optional[str] = None,
    narrative_position: Optional[str] = None,
    evidence_of_mastery: Optional[str] = None,
) -> str:
    """Plain-text context block handed to the notes author."""
    parts: List[str] = [
        f"Step Title: {step_title}",
        f"Discipline: {discipline}",
        f"Step Description: {step_description or 'Not provided'}",
    ]

    if learning_objective or pedagogical_function or narrative_position:
        parts.append("\n--- PEDAGOGICAL CONTEXT (Course Grammar) ---")
        if learning_objective:
            parts.append(f"Learning Objective: {learning_objective}")
        if pedagogical_function:
            parts.append(
                "Pedagogical Function: "
                + FUNCTION_DESCRIPTIONS.get(pedagogical_function, pedagogical_function)
            )
        if cognitive_level:
            parts.append(
                "Cognitive Level: " + LEVEL_DESCRIPTIONS.get(cognitive_level, cognitive_level)
            )
        if narrative_position:
            parts.append(f"Narrative Position: {narrative_position}")
        if evidence_of_mastery:
            parts.append(f"Evidence of Mastery: {evidence_of_mastery}")
        parts.append("--- END PEDAGOGICAL CONTEXT ---\n")

    if source_content and source_content.strip():
        parts.append(f"\nOriginal Syllabus Content:\n{source_content}")

    if resources:
        video = resources.get("primary_video")
        if video:
            parts.append(f"\nPrimary Video: \"{video.get('title')}\" by {video.get('author')}")
            parts.append(f"Video URL: {video.get('url')}")
            if video.get("why_this_video"):
                parts.append(f"Why this video: {video['why_this_video']}")

        reading = resources.get("deep_reading")
        if reading:
            parts.append(f"\nDeep Reading: \"{reading.get('title')}\"")
            parts.append(f"Reading URL: {reading.get('url')}")
            parts.append(f"Focus: {reading.get('focus_highlight')}")
            parts.append(f"Snippet: {reading.get('snippet')}")

        book = resources.get("book")
        if book:
            parts.append(f"\nRecommended Book: \"{book.get('title')}\" by {book.get('author')}")
            if book.get("chapter_recommendation"):
                parts.append(f"Chapter Recommendation: {book['chapter_recommendation']}")
            parts.append(f"Why this book: {book.get('why')}")

        alternatives = resources.get("alternatives") or []
        if alternatives:
            parts.append(
                f"\nAlternative Resources: {len(alternatives)} additional resources available"
            )

    return "\n".join(parts)


class StepSummaryService:
    """Generate and cache AI course notes."""

    def __init__(self, gateway: ChatCompletionClient, db: AsyncSession) -> None:
        self.gateway = gateway
        self.db = db

    async def get_cached(
        self, step_title: str, discipline: str, length: str, locale: str
    ) -> Optional[StepSummary]:
        result = await self.db.execute(
            select(StepSummary).where(
                StepSummary.step_title == step_title,
                StepSummary.discipline == discipline,
                StepSummary.length == length,
                StepSummary.locale == locale,
            )
        )
        return result.scalar_one_or_none()

    async def generate(
        self,
        step_title: str,
        discipline: str,
        length: str = "standard",
        locale: str = "en",
        force_refresh: bool = False,
        **context: Any,
    ) -> Tuple[str, bool]:
        """
        Course notes for a step.

        Args:
            step_title: Step title
            discipline: Discipline the step belongs to
            length: ``brief``, ``standard`` or ``comprehensive``
            locale: Output language code
            force_refresh: Ignore the cache
            **context: Extra fields for :func:`build_summary_context`

        Returns:
            ``(html, cached)``

        Raises:
            AIProviderError: generation failed or returned nothing.
        """
        length = resolve_length(length)
        language = LANGUAGE_NAMES.get(locale, "English")

        if not force_refresh:
            cached = await self.get_cached(step_title, discipline, length, locale)
            if cached is not None:
                logger.info("Returning cached summary for '%s' (%s, %s)", step_title, length, locale)
                return cached.summary, True

        config = LENGTH_CONFIG[length]
        logger.info(
            "Generating %s summary for '%s' in %s (pedagogical context: %s)",
            length, step_title, language, bool(context.get("learning_objective")),
        )
        messages = [
            {
                "role": "system",
                "content": _SYSTEM_PROMPT.format(
                    language=language, level=length.upper(), instruction=config["instruction"]
                ),
            },
            {
                "role": "user",
                "content": _USER_PROMPT.format(
                    step_title=step_title,
                    context=build_summary_context(step_title, discipline, **context),
                ),
            },
        ]
        raw = await self.gateway.complete(
            messages, temperature=0.7, max_tokens=config["max_tokens"]
        )
        summary = ChatCompletionClient.strip_code_fences(raw)
        if not summary:
            raise AIProviderError("No summary generated from AI", provider=self.gateway.provider)

        await self._store(step_title, discipline, length, locale, summary)
        return summary, False

    async def _store(
        self, step_title: str, discipline: str, length: str, locale: str, summary: str
    ) -> None:
        try:
            async with self.db.begin_nested():
                row = await self.get_cached(step_title, discipline, length, locale)
                if row is None:
                    row = StepSummary(
                        step_title=step_title, discipline=discipline, length=length, locale=locale
                    )
                    self.db.add(row)
                row.summary = summary
        except SQLAlchemyError as exc:
            logger.error("Error caching summary for '%s': %s", step_title, exc)
