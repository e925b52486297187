"""FAQ knowledge base: CRUD, keyword extraction, feedback and analytics."""
import logging
import re
from typing import Any, Dict, List, Optional

import psycopg2
from fastapi import HTTPException
from psycopg2.extras import RealDictCursor

from .config import DEFAULT_CATEGORY
from .db import get_db
from .utils import build_pagination, iso, normalize_pagination, parse_tags

logger = logging.getLogger("support.faqs")

MAX_QUESTION_LENGTH = 500
MAX_ANSWER_LENGTH = 5000
MAX_KEYWORDS = 10

STOP_WORDS = frozenset([
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "this", "that",
    "these", "those", "i", "you", "he", "she", "it", "we", "they", "what",
    "which", "who", "when", "where", "why", "how", "all", "each", "every",
    "both", "few", "more", "most", "other", "some", "such", "no", "not",
    "only", "own", "same", "so", "than", "too", "very", "just", "my", "your",
])

FAQ_COLUMNS = """
    f.id, f.question, f.answer, f.category, f.tags, f.alternative_questions,
    f.keywords, f.priority, f.is_active, f.is_public, f.created_by, f.updated_by,
    f.view_count, f.useful_count, f.not_useful_count, f.last_used_at,
    f.created_at, f.updated_at
"""

# Fields an admin may change through update_faq
UPDATABLE_FIELDS = (
    "question", "answer", "category", "tags", "keywords",
    "alternative_questions", "priority", "is_active", "is_public",
)


def extract_keywords(text: str) -> List[str]:
    """Pick up to ten meaningful lowercase words from *text*.

    Punctuation is stripped, then words of two characters or fewer and
    common stop words are dropped.

    >>> extract_keywords("How do I reset my password?")
    ['reset', 'password']
    """
    if not text:
        return []
    cleaned = re.sub(r"[^\w\s]", "", text.lower())
    words = [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]
    return words[:MAX_KEYWORDS]


def serialize_faq(row: Dict[str, Any]) -> Dict[str, Any]:
    faq = {
        "id": row["id"],
        "question": row["question"],
        "answer": row["answer"],
        "category": row["category"],
        "tags": row.get("tags") or [],
        "alternative_questions": row.get("alternative_questions") or [],
        "keywords": row.get("keywords") or [],
        "priority": row["priority"],
        "is_active": row["is_active"],
        "is_public": row["is_public"],
        "created_by": row.get("created_by"),
        "updated_by": row.get("updated_by"),
        "view_count": row["view_count"],
        "useful_count": row["useful_count"],
        "not_useful_count": row["not_useful_count"],
        "last_used_at": iso(row.get("last_used_at")),
        "created_at": iso(row.get("created_at")),
        "updated_at": iso(row.get("updated_at")),
    }
    total_feedback = faq["useful_count"] + faq["not_useful_count"]
    faq["usefulness_ratio"] = (
        round(faq["useful_count"] / total_feedback * 100) if total_feedback else None
    )
    if row.get("creator_first_name") is not None:
        faq["creator"] = {
            "first_name": row["creator_first_name"],
            "last_name": row.get("creator_last_name"),
        }
    return faq


def public_faq(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "question": row["question"],
        "answer": row["answer"],
        "category": row["category"],
        "tags": row.get("tags") or [],
    }


def _clean_text(value: Optional[str], field: str, max_length: int) -> str:
    if value is not None and not isinstance(value, str):
        raise HTTPException(400, f"{field} must be text")
    value = (value or "").strip()
    if not value:
        raise HTTPException(400, f"{field} is required")
    if len(value) > max_length:
        raise HTTPException(400, f"{field} cannot exceed {max_length} characters")
    return value


def _clean_priority(value: Any) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, "Priority must be a number between 0 and 100")
    if not 0 <= priority <= 100:
        raise HTTPException(400, "Priority must be a number between 0 and 100")
    return priority


def _clean_list(value: Any, field: str, split: bool = True) -> List[str]:
    """Accept a list of strings, or one string (comma-separated when *split*)."""
    if isinstance(value, str):
        value = value.split(",") if split else [value]
    if value and not (isinstance(value, list) and all(isinstance(v, str) for v in value)):
        raise HTTPException(400, f"{field} must be a list of strings")
    return parse_tags(value)


def _clean_category(value: Any) -> str:
    if value is not None and not isinstance(value, str):
        raise HTTPException(400, "Category must be text")
    return (value or DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY


def _clean_keywords(value: Any) -> List[str]:
    return [k.lower() for k in _clean_list(value, "Keywords")]


def create_faq(data: Dict[str, Any], user_id: Optional[int]) -> Dict[str, Any]:
    """Create an FAQ; keywords default to those extracted from the question."""
    question = _clean_text(data.get("question"), "Question", MAX_QUESTION_LENGTH)
    answer = _clean_text(data.get("answer"), "Answer", MAX_ANSWER_LENGTH)
    keywords = _clean_keywords(data.get("keywords")) or extract_keywords(question)
    priority = _clean_priority(data.get("priority") if data.get("priority") is not None else 0)
    category = _clean_category(data.get("category"))
    tags = _clean_list(data.get("tags"), "Tags")
    alternatives = _clean_list(data.get("alternative_questions"), "Alternative questions", split=False)

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                INSERT INTO faqs AS f (
                    question, answer, category, tags, alternative_questions, keywords,
                    priority, is_active, is_public, created_by, updated_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {FAQ_COLUMNS}
                """,
                (
                    question,
                    answer,
                    category,
                    tags,
                    alternatives,
                    keywords,
                    priority,
                    data.get("is_active", True),
                    data.get("is_public", True),
                    user_id,
                    user_id,
                ),
            )
            row = cur.fetchone()
        conn.commit()

    logger.info("FAQ created: %s by user: %s", row["id"], user_id)
    return serialize_faq(row)


def get_faqs(
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    search: Optional[str] = None,
    is_public: Optional[bool] = None,
) -> Dict[str, Any]:
    """List active FAQs for administration, highest priority first."""
    page, limit, offset = normalize_pagination(page, limit)

    conditions = ["f.is_active = TRUE"]
    params: List[Any] = []
    if is_public is not None:
        conditions.append("f.is_public = %s")
        params.append(is_public)
    if category:
        conditions.append("f.category = %s")
        params.append(category)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            "(f.question ILIKE %s OR f.answer ILIKE %s "
            "OR EXISTS (SELECT 1 FROM unnest(f.keywords) k WHERE k ILIKE %s))"
        )
        params.extend([pattern, pattern, pattern])
    where = " AND ".join(conditions)

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {FAQ_COLUMNS},
                       u.first_name AS creator_first_name, u.last_name AS creator_last_name
                FROM faqs f
                LEFT JOIN users u ON u.id = f.created_by
                WHERE {where}
                ORDER BY f.priority DESC, f.view_count DESC
                LIMIT %s OFFSET %s
                """,
                (*params, limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM faqs f WHERE {where}", params)
            total = cur.fetchone()["total"]

    return {
        "faqs": [serialize_faq(r) for r in rows],
        "pagination": build_pagination(page, limit, total),
    }


def get_public_faqs(category: Optional[str] = None) -> List[Dict[str, Any]]:
    query = "SELECT f.id, f.question, f.answer, f.category, f.tags FROM faqs f WHERE f.is_active AND f.is_public"
    params: List[Any] = []
    if category:
        query += " AND f.category = %s"
        params.append(category)
    query += " ORDER BY f.priority DESC, f.view_count DESC"

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params)
            return [public_faq(r) for r in cur.fetchall()]


def get_faq_by_id(faq_id: int, public_only: bool = False) -> Dict[str, Any]:
    """Fetch one FAQ.

    With ``public_only`` inactive or private FAQs are reported as missing.
    """
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {FAQ_COLUMNS},
                       u.first_name AS creator_first_name, u.last_name AS creator_last_name
                FROM faqs f
                LEFT JOIN users u ON u.id = f.created_by
                WHERE f.id = %s
                """,
                (faq_id,),
            )
            row = cur.fetchone()

    if not row or (public_only and not (row["is_active"] and row["is_public"])):
        raise HTTPException(404, "FAQ not found")
    return public_faq(row) if public_only else serialize_faq(row)


def update_faq(faq_id: int, updates: Dict[str, Any], user_id: int) -> Dict[str, Any]:
    """Apply the allowed *updates*; a new question refreshes the keywords."""
    fields: Dict[str, Any] = {}
    for key in UPDATABLE_FIELDS:
        if key in updates and updates[key] is not None:
            fields[key] = updates[key]

    if "question" in fields:
        fields["question"] = _clean_text(fields["question"], "Question", MAX_QUESTION_LENGTH)
    if "answer" in fields:
        fields["answer"] = _clean_text(fields["answer"], "Answer", MAX_ANSWER_LENGTH)
    if "priority" in fields:
        fields["priority"] = _clean_priority(fields["priority"])
    if "category" in fields:
        fields["category"] = _clean_category(fields["category"])
    if "tags" in fields:
        fields["tags"] = _clean_list(fields["tags"], "Tags")
    if "alternative_questions" in fields:
        fields["alternative_questions"] = _clean_list(
            fields["alternative_questions"], "Alternative questions", split=False
        )
    if "keywords" in fields:
        fields["keywords"] = _clean_keywords(fields["keywords"])
    if "question" in fields and not fields.get("keywords"):
        fields["keywords"] = extract_keywords(fields["question"])

    fields["updated_by"] = user_id
    assignments = ", ".join(f"{name} = %s" for name in fields)

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE faqs AS f
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE f.id = %s
                RETURNING {FAQ_COLUMNS}
                """,
                (*fields.values(), faq_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "FAQ not found")
        conn.commit()

    logger.info("FAQ updated: %s by user: %s", faq_id, user_id)
    return serialize_faq(row)


def delete_faq(faq_id: int, user_id: int) -> None:
    """Soft-delete an FAQ."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE faqs SET is_active = FALSE, updated_by = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s RETURNING id
                """,
                (user_id, faq_id),
            )
            if not cur.fetchone():
                raise HTTPException(404, "FAQ not found")
        conn.commit()
    logger.info("FAQ deleted: %s by user: %s", faq_id, user_id)


def add_feedback(faq_id: int, is_useful: bool) -> None:
    column = "useful_count" if is_useful else "not_useful_count"
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE faqs SET {column} = {column} + 1 WHERE id = %s AND is_active RETURNING id",
                (faq_id,),
            )
            if not cur.fetchone():
                raise HTTPException(404, "FAQ not found")
        conn.commit()


def get_categories() -> List[str]:
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT DISTINCT category FROM faqs WHERE is_active ORDER BY category")
            return [r[0] for r in cur.fetchall()]


def bulk_import(faqs: List[Dict[str, Any]], user_id: int) -> Dict[str, Any]:
    """Create many FAQs, collecting per-item failures instead of aborting."""
    results = {"success": 0, "failed": 0, "errors": []}

    for data in faqs:
        if not isinstance(data, dict):
            results["failed"] += 1
            results["errors"].append({"question": None, "error": "FAQ entry must be an object"})
            continue
        try:
            create_faq(data, user_id)
            results["success"] += 1
        except (HTTPException, psycopg2.Error) as e:
            results["failed"] += 1
            results["errors"].append({
                "question": data.get("question"),
                "error": e.detail if isinstance(e, HTTPException) else str(e),
            })

    logger.info("Bulk FAQ import: %d success, %d failed", results["success"], results["failed"])
    return results


def get_faq_analytics() -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE is_public) AS public,
                       COALESCE(SUM(view_count), 0) AS total_views,
                       COALESCE(SUM(useful_count), 0) AS total_useful,
                       COALESCE(SUM(not_useful_count), 0) AS total_not_useful
                FROM faqs
                WHERE is_active
            """)
            totals = cur.fetchone()

            cur.execute("""
                SELECT category, COUNT(*) AS count
                FROM faqs WHERE is_active
                GROUP BY category
                ORDER BY count DESC
            """)
            by_category = [dict(r) for r in cur.fetchall()]

            cur.execute("""
                SELECT id, question, view_count, useful_count, not_useful_count
                FROM faqs WHERE is_active
                ORDER BY view_count DESC
                LIMIT 10
            """)
            top_viewed = [dict(r) for r in cur.fetchall()]

    return {
        "total_faqs": totals["total"],
        "public_faqs": totals["public"],
        "faqs_by_category": by_category,
        "top_viewed_faqs": top_viewed,
        "feedback_stats": {
            "total_views": int(totals["total_views"]),
            "total_useful": int(totals["total_useful"]),
            "total_not_useful": int(totals["total_not_useful"]),
        },
    }
