"""Small helpers shared by the service modules."""
import math
import re
from typing import Optional, Tuple

from .config import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT

# Upper bound on OR-ed terms in a generated tsquery
MAX_QUERY_TERMS = 32


def iso(value) -> Optional[str]:
    """ISO-8601 string for a datetime column, None for NULL."""
    return value.isoformat() if value else None


def normalize_pagination(page: Optional[int], limit: Optional[int]) -> Tuple[int, int, int]:
    """Clamp page/limit to sane bounds and return (page, limit, offset)."""
    page = page if page and page > 0 else DEFAULT_PAGE
    limit = limit if limit and limit > 0 else DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)
    return page, limit, (page - 1) * limit


def build_pagination(page: int, limit: int, total: int) -> dict:
    """Pagination block returned alongside list results."""
    pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def build_or_tsquery(text: str) -> Optional[str]:
    """Turn free text into a ``to_tsquery`` expression matching ANY term.

    Terms are reduced to word characters so the result is always valid
    tsquery syntax. Returns None when the text has no searchable words.

    >>> build_or_tsquery("How do I reset my password?")
    'how | do | i | reset | my | password'
    """
    if not text:
        return None
    terms = []
    for term in re.findall(r"\w+", text.lower()):
        term = term.strip("_")
        if term and term not in terms:
            terms.append(term)
        if len(terms) >= MAX_QUERY_TERMS:
            break
    if not terms:
        return None
    return " | ".join(terms)


def parse_tags(value) -> list:
    """Accept a list or a comma-separated string and return clean tags."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [t.strip() for t in value if t and t.strip()]


def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable form."""
    if not size_bytes:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(size_bytes)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_uptime(seconds: float) -> str:
    """Render an uptime in seconds as e.g. '2d 3h 4m 5s'."""
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours or parts:
        parts.append(f"{hours}h")
    if minutes or parts:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)
