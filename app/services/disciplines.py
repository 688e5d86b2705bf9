"""
Academic discipline catalog: hierarchy browsing, fuzzy search, AI-assisted
matching, CSV import and machine translation of the taxonomy.

The catalog is a flat table of six-level paths (``l1`` … ``l6``), one set of
rows per locale.  Fuzzy search mirrors PostgreSQL ``pg_trgm`` semantics in
Python so it behaves the same on every database backend.
"""
from __future__ import annotations

import csv
import io
import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiofiles
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import DISCIPLINE_LEVELS, Discipline
from app.services.ai_clients import AIProviderError, ChatCompletionClient
from app.utils.helpers import build_search_text, search_fragments, trigram_similarity

logger = logging.getLogger(__name__)

MAX_DEPTH = len(DISCIPLINE_LEVELS)
LANGUAGE_NAMES = {"en": "English", "es": "Spanish", "fr": "French"}

ScoredDiscipline = Tuple[Discipline, float, str]


_MATCH_SYSTEM_PROMPT = """\
You are an academic discipline matcher. Given a user's search query and a list of academic \
disciplines from a catalog, identify the most relevant disciplines that match what the user is looking for.

IMPORTANT RULES:
1. Only select disciplines that genuinely match the user's intent
2. Consider synonyms, related terms, and conceptual matches (e.g., "Bible" matches "Biblical Studies")
3. Return between 0 and {limit} matches - don't force matches if none are relevant
4. Provide a confidence score (0.5-1.0) and brief rationale for each match

Respond in JSON format:
{{
  "matches": [
    {{"id": "uuid", "confidence": 0.95, "rationale": "Brief explanation"}}
  ]
}}

If no good matches exist, return {{"matches": []}}"""

_MATCH_USER_PROMPT = """\
User search query: "{query}"

Available disciplines:
{candidate_list}

Find the best matching disciplines for this query."""

_TRANSLATE_PROMPT = """\
Translate these academic discipline hierarchies from English to {language}.
Each line is a hierarchy separated by " > ".
Return ONLY a JSON array of objects with keys: l1, l2, l3, l4, l5, l6 (use null for missing levels).
Keep the same order. Use proper academic terminology in {language}.

Input:
{terms}"""


def _level_columns() -> List[Any]:
    return [getattr(Discipline, name) for name in DISCIPLINE_LEVELS]


def match_dict(
    discipline: Discipline,
    score: float,
    match_type: str,
    rationale: Optional[str] = None,
) -> Dict[str, Any]:
    """Serialisable search/match result for one catalog row."""
    data = {name: getattr(discipline, name) for name in DISCIPLINE_LEVELS}
    data.update(
        {
            "id": discipline.id,
            "locale": discipline.locale,
            "path": discipline.path,
            "similarity_score": round(score, 4),
            "match_type": match_type,
            "rationale": rationale,
        }
    )
    return data


def parse_discipline_csv(text: str) -> Tuple[List[List[Optional[str]]], int]:
    """
    Parse catalog CSV text (header row first) into level lists.

    Returns ``(rows, skipped)`` where each row holds exactly six entries
    (``None`` for missing levels).  Blank lines and rows without an L1 value
    are skipped.
    """
    reader = csv.reader(io.StringIO(text))
    next(reader, None)  # header

    rows: List[List[Optional[str]]] = []
    skipped = 0
    for fields in reader:
        cleaned = [f.strip() or None for f in fields[:MAX_DEPTH]]
        if not cleaned or not cleaned[0]:
            if any(f.strip() for f in fields):
                skipped += 1
            continue
        cleaned += [None] * (MAX_DEPTH - len(cleaned))
        rows.append(cleaned)
    return rows, skipped


def csv_path_for_locale(locale: str) -> str:
    suffix = "" if locale == "en" else f"_{locale}"
    return os.path.join(settings.DISCIPLINE_CSV_DIR, f"academic_disciplines{suffix}.csv")


class DisciplineCatalog:
    """Queries and maintenance operations over the ``disciplines`` table."""

    DEFAULT_THRESHOLD: float = 0.3
    CANDIDATE_POOL: int = 500
    AI_CANDIDATE_LIMIT: int = 100
    AI_MIN_CANDIDATES: int = 20
    AI_TOP_LEVEL_PAD: int = 50

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    async def browse(self, locale: str, path: Sequence[str]) -> Dict[str, Any]:
        """
        Distinct children one level below *path*.

        Raises:
            ValueError: *path* already addresses the deepest level.
        """
        path = [p for p in path if p]
        if len(path) >= MAX_DEPTH:
            raise ValueError(f"Hierarchy has at most {MAX_DEPTH} levels")

        columns = _level_columns()
        child_col = columns[len(path)]
        grandchild_col = columns[len(path) + 1] if len(path) + 1 < MAX_DEPTH else None

        count_expr = func.count(grandchild_col) if grandchild_col is not None else func.count()
        stmt = select(child_col, count_expr).where(
            Discipline.locale == locale, child_col.isnot(None)
        )
        for col, value in zip(columns, path):
            stmt = stmt.where(col == value)
        stmt = stmt.group_by(child_col).order_by(child_col)

        result = await self.db.execute(stmt)
        children = [
            {"name": name, "has_children": grandchild_col is not None and count > 0}
            for name, count in result.all()
        ]
        return {"locale": locale, "path": list(path), "level": len(path) + 1, "children": children}

    # ------------------------------------------------------------------
    # Fuzzy search
    # ------------------------------------------------------------------

    async def search(
        self,
        term: str,
        locale: str = "en",
        limit: int = 20,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> List[ScoredDiscipline]:
        """
        Prefix matches first (score 1.0), then trigram matches at or above
        *threshold*, best first.
        """
        term = (term or "").strip().lower()
        if not term:
            return []
        columns = _level_columns()

        prefix_rows = (
            await self.db.execute(
                select(Discipline)
                .where(Discipline.locale == locale, or_(*[c.ilike(f"{term}%") for c in columns]))
                .order_by(Discipline.l1, Discipline.l2, Discipline.l3)
                .limit(limit)
            )
        ).scalars().all()

        results: List[ScoredDiscipline] = [(d, 1.0, "prefix") for d in prefix_rows]
        if len(results) >= limit:
            return results

        fragments = search_fragments(term)
        if not fragments:
            return results

        seen = {d.id for d in prefix_rows}
        conditions = [c.ilike(f"%{frag}%") for frag in fragments for c in columns]
        candidates = (
            await self.db.execute(
                select(Discipline)
                .where(Discipline.locale == locale, or_(*conditions))
                .limit(self.CANDIDATE_POOL)
            )
        ).scalars().all()

        fuzzy: List[ScoredDiscipline] = []
        for d in candidates:
            if d.id in seen:
                continue
            score = trigram_similarity(d.search_text, term)
            if score >= threshold:
                fuzzy.append((d, score, "fuzzy"))

        fuzzy.sort(key=lambda item: item[1], reverse=True)
        return (results + fuzzy)[:limit]

    # ------------------------------------------------------------------
    # AI matching
    # ------------------------------------------------------------------

    async def _gather_ai_candidates(self, term: str, locale: str) -> List[Discipline]:
        threshold = 0.15 if len(term) <= 6 else 0.2
        candidates = [
            d for d, _, _ in await self.search(term, locale, self.AI_CANDIDATE_LIMIT, threshold)
        ]

        if not candidates:
            logger.info("Fuzzy search found nothing for '%s', falling back to word match", term)
            words = term.split()
            conditions = [c.ilike(f"%{w}%") for w in words for c in _level_columns()]
            candidates = list(
                (
                    await self.db.execute(
                        select(Discipline)
                        .where(Discipline.locale == locale, or_(*conditions))
                        .limit(self.AI_CANDIDATE_LIMIT)
                    )
                ).scalars().all()
            )

        if len(candidates) < self.AI_MIN_CANDIDATES:
            top_level = (
                await self.db.execute(
                    select(Discipline)
                    .where(Discipline.locale == locale, Discipline.l3.is_(None))
                    .order_by(Discipline.l1, Discipline.l2)
                    .limit(self.AI_TOP_LEVEL_PAD)
                )
            ).scalars().all()
            existing = {d.id for d in candidates}
            candidates += [d for d in top_level if d.id not in existing]

        return candidates[: self.AI_CANDIDATE_LIMIT]

    async def ai_match(
        self,
        client: ChatCompletionClient,
        query: str,
        limit: int = 10,
        locale: str = "en",
    ) -> Dict[str, Any]:
        """
        Let the LLM pick the best catalog entries for a free-text query.

        Provider failures are reported in ``error`` with an empty match list.
        """
        term = query.lower().strip()
        candidates = await self._gather_ai_candidates(term, locale)
        response: Dict[str, Any] = {
            "query": query,
            "matches": [],
            "candidates_considered": len(candidates),
            "error": None,
            "message": None,
        }
        if not candidates:
            response["message"] = "No disciplines found in catalog"
            return response

        candidate_list = "\n".join(
            f"{i}. [ID: {d.id}] {d.path}" for i, d in enumerate(candidates, start=1)
        )
        prompt = (
            _MATCH_SYSTEM_PROMPT.format(limit=limit)
            + "\n\n"
            + _MATCH_USER_PROMPT.format(query=query, candidate_list=candidate_list)
        )

        try:
            ok, parsed = await client.complete_json(
                [{"role": "user", "content": prompt}], max_tokens=1024
            )
        except AIProviderError as exc:
            logger.error("AI discipline matching failed: %s", exc)
            response["error"] = "AI matching service unavailable"
            return response

        ai_matches = parsed.get("matches") if ok and isinstance(parsed, dict) else None
        if not isinstance(ai_matches, list):
            logger.warning("AI matcher returned no match list for '%s'", query)
            ai_matches = []

        by_id = {d.id: d for d in candidates}
        matches = []
        for m in ai_matches:
            if not isinstance(m, dict) or m.get("id") not in by_id:
                continue
            matches.append(
                match_dict(by_id[m["id"]], _clamp(m.get("confidence")), "ai", m.get("rationale"))
            )
            if len(matches) >= limit:
                break

        response["matches"] = matches
        return response

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def count(self, locale: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Discipline).where(Discipline.locale == locale)
        )
        return result.scalar_one()

    async def import_csv_text(self, text: str, locale: str, replace: bool = False) -> Dict[str, Any]:
        """Load catalog rows for *locale* from CSV text."""
        existing = await self.count(locale)
        if existing and not replace:
            return {
                "locale": locale,
                "imported": 0,
                "skipped": 0,
                "replaced": False,
                "message": f"Catalog already populated with {existing} disciplines for locale '{locale}'",
            }

        if existing:
            await self.db.execute(delete(Discipline).where(Discipline.locale == locale))

        rows, skipped = parse_discipline_csv(text)
        self.db.add_all(self._build_rows(rows, locale))
        await self.db.flush()
        logger.info("Imported %d disciplines for locale %s (%d skipped)", len(rows), locale, skipped)
        return {
            "locale": locale,
            "imported": len(rows),
            "skipped": skipped,
            "replaced": bool(existing),
            "message": None,
        }

    async def import_csv_file(self, locale: str, replace: bool = False) -> Dict[str, Any]:
        """
        Load the bundled ``academic_disciplines[_<locale>].csv``.

        Raises:
            FileNotFoundError: no CSV exists for *locale*.
        """
        path = csv_path_for_locale(locale)
        if not os.path.exists(path):
            raise FileNotFoundError(f"CSV file for locale '{locale}' not found: {path}")

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            text = await f.read()
        return await self.import_csv_text(text, locale, replace)

    @staticmethod
    def _build_rows(rows: Sequence[Sequence[Optional[str]]], locale: str) -> List[Discipline]:
        return [
            Discipline(
                locale=locale,
                search_text=build_search_text(levels),
                **{name: value for name, value in zip(DISCIPLINE_LEVELS, levels)},
            )
            for levels in rows
        ]

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    async def translate_batch(
        self,
        client: ChatCompletionClient,
        target_locale: str,
        offset: int = 0,
        batch_size: int = 25,
    ) -> Dict[str, Any]:
        """
        Translate one batch of English catalog rows into *target_locale*.

        Raises:
            ValueError: unsupported target locale.
            AIProviderError: provider failure or unparseable translation.
        """
        if target_locale == "en" or target_locale not in LANGUAGE_NAMES:
            raise ValueError("Invalid locale. Must be one of: es, fr")

        total = await self.count("en")
        existing = await self.count(target_locale)
        if existing and offset == 0:
            return {
                "target_locale": target_locale,
                "translated": 0,
                "offset": offset,
                "next_offset": offset,
                "remaining": 0,
                "message": f"Catalog for '{target_locale}' already has {existing} disciplines",
            }

        batch = (
            await self.db.execute(
                select(Discipline)
                .where(Discipline.locale == "en")
                .order_by(*_level_columns(), Discipline.id)
                .offset(offset)
                .limit(batch_size)
            )
        ).scalars().all()

        translated_rows: List[List[Optional[str]]] = []
        if batch:
            language = LANGUAGE_NAMES[target_locale]
            messages = [
                {
                    "role": "system",
                    "content": "You are an expert translator specializing in academic terminology. "
                               f"Translate discipline names accurately to {language}, using proper "
                               "academic conventions. Return only valid JSON.",
                },
                {
                    "role": "user",
                    "content": _TRANSLATE_PROMPT.format(
                        language=language, terms="\n".join(d.path for d in batch)
                    ),
                },
            ]
            ok, parsed = await client.complete_json(messages, expect="array", temperature=0.3)
            if not ok or not isinstance(parsed, list):
                raise AIProviderError(
                    "Failed to parse AI translation response", provider=client.provider
                )

            for item in parsed[: len(batch)]:
                if not isinstance(item, dict) or not item.get("l1"):
                    continue
                translated_rows.append([item.get(name) or None for name in DISCIPLINE_LEVELS])

            self.db.add_all(self._build_rows(translated_rows, target_locale))
            await self.db.flush()

        next_offset = offset + len(batch)
        logger.info(
            "Translated %d/%d disciplines to %s", len(translated_rows), len(batch), target_locale
        )
        return {
            "target_locale": target_locale,
            "translated": len(translated_rows),
            "offset": offset,
            "next_offset": next_offset,
            "remaining": max(0, total - next_offset),
            "message": None,
        }


def _clamp(value: Any, lo: float = 0.0, hi: float = 1.0) -> float:
    """Parse *value* as float, clamped to [lo, hi]; returns midpoint on error."""
    try:
        return max(lo, min(hi, float(value)))
    except (TypeError, ValueError):
        return (lo + hi) / 2.0
