"""
Common utility functions and helpers.
"""
from typing import Any, Iterable, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit
import re


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_YOUTUBE_ID = re.compile(r"(?:v=|youtu\.be/|/embed/|/shorts/)([a-zA-Z0-9_-]{11})")


def camel_to_snake(name: str) -> str:
    """
    Convert a camelCase key into snake_case.

    Args:
        name: Key such as ``primaryVideo`` or ``isCapstone``

    Returns:
        ``primary_video`` / ``is_capstone``.  Keys that are already
        snake_case are returned unchanged.
    """
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def snake_keys(value: Any) -> Any:
    """
    Recursively rename every dict key of an LLM JSON payload to snake_case.

    Args:
        value: Parsed JSON (dict, list or scalar)

    Returns:
        Structure of the same shape with snake_case keys
    """
    if isinstance(value, dict):
        return {
            camel_to_snake(k) if isinstance(k, str) else k: snake_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [snake_keys(item) for item in value]
    return value


def normalize_title(title: str) -> str:
    """
    Reduce a module title to lowercase letters only, for deduplication.

    Args:
        title: Raw module title

    Returns:
        Letters-only lowercase key
    """
    return re.sub(r"[^a-z]", "", (title or "").lower())


def normalize_url(url: Optional[str]) -> str:
    """
    Canonical form of a URL for duplicate detection.

    Lower-cases scheme and host, drops ``www.``, the fragment and any
    trailing slash.  Returns an empty string for empty input.
    """
    if not url:
        return ""
    parts = urlsplit(url.strip())
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), host, path, parts.query, ""))


def trigram_set(text: str) -> Set[str]:
    """
    Trigrams of *text* the way PostgreSQL's pg_trgm builds them.

    Each alphanumeric word is lower-cased and padded with two leading blanks
    and one trailing blank before being cut into three-character windows.
    """
    grams: Set[str] = set()
    for word in re.findall(r"[^\W_]+", (text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def trigram_similarity(a: str, b: str) -> float:
    """
    Jaccard similarity of the trigram sets of *a* and *b* (0-1).

    Args:
        a: First string
        b: Second string

    Returns:
        Shared trigrams divided by distinct trigrams; 0.0 if either is empty
    """
    grams_a = trigram_set(a)
    grams_b = trigram_set(b)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)


def search_fragments(term: str, min_length: int = 3) -> List[str]:
    """
    Word stems used to pre-select fuzzy-search candidates.

    Each word longer than *min_length* is cut down by two characters so that
    ``biblical`` still finds ``bible``-style variants.
    """
    fragments = []
    for word in re.findall(r"[^\W_]+", (term or "").lower()):
        if len(word) <= min_length:
            fragments.append(word)
        else:
            fragments.append(word[:max(min_length, len(word) - 2)])
    return list(dict.fromkeys(fragments))


def extract_youtube_id(url: Optional[str]) -> Optional[str]:
    """Return the 11-character YouTube video id in *url*, or None."""
    if not url:
        return None
    match = _YOUTUBE_ID.search(url)
    return match.group(1) if match else None


def youtube_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/maxresdefault.jpg"


def build_search_text(levels: Iterable[Optional[str]]) -> str:
    """Lower-cased, space-joined discipline levels (empty levels skipped)."""
    return " ".join(level.strip().lower() for level in levels if level and level.strip())


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
