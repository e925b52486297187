"""Chat service: conversations, messages, context retrieval and AI replies.

A user message is stored first, then the assistant reply is generated from
the recent conversation plus company context (documents and FAQs found by
full-text search, or the most used/most important ones when the search
finds nothing). AI failures never lose the user's message: an apology
message carrying the error is stored instead.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from psycopg2.extras import Json, RealDictCursor

from . import ai_service
from .config import Config, AI_ERROR_MESSAGE, DEFAULT_CHAT_TITLE
from .db import get_db
from .faqs import extract_keywords
from .utils import build_or_tsquery, build_pagination, iso, normalize_pagination

logger = logging.getLogger("support.chats")

MAX_MESSAGE_LENGTH = 50000
MAX_TITLE_LENGTH = 200
TITLE_FROM_MESSAGE_CHARS = 50

CHAT_COLUMNS = """
    c.id, c.user_id, c.title, c.status, c.message_count, c.last_message_at,
    c.user_agent, c.ip_address, c.session_id, c.tags,
    c.rating_score, c.rating_feedback, c.rated_at, c.created_at, c.updated_at
"""

MESSAGE_COLUMNS = """
    id, chat_id, type, content, model, provider, prompt_tokens, completion_tokens,
    total_tokens, response_time_ms, context_sources, error_code, error_message,
    is_edited, edited_at, helpful, feedback_text, feedback_at, created_at
"""


def serialize_chat(row: Dict[str, Any]) -> Dict[str, Any]:
    chat = {
        "id": row["id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "status": row["status"],
        "message_count": row["message_count"],
        "last_message_at": iso(row.get("last_message_at")),
        "metadata": {
            "user_agent": row.get("user_agent"),
            "ip_address": row.get("ip_address"),
            "session_id": row.get("session_id"),
        },
        "tags": row.get("tags") or [],
        "rating": None,
        "created_at": iso(row.get("created_at")),
        "updated_at": iso(row.get("updated_at")),
    }
    if row.get("rating_score") is not None:
        chat["rating"] = {
            "score": row["rating_score"],
            "feedback": row.get("rating_feedback"),
            "rated_at": iso(row.get("rated_at")),
        }
    if "email" in row:
        chat["user"] = {
            "id": row["user_id"],
            "first_name": row.get("first_name"),
            "last_name": row.get("last_name"),
            "email": row.get("email"),
        }
    return chat


def serialize_message(row: Dict[str, Any]) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"context_sources": row.get("context_sources") or []}
    if row.get("model") or row.get("provider"):
        metadata.update({
            "model": row.get("model"),
            "provider": row.get("provider"),
            "tokens_used": {
                "prompt": row.get("prompt_tokens") or 0,
                "completion": row.get("completion_tokens") or 0,
                "total": row.get("total_tokens") or 0,
            },
            "response_time": row.get("response_time_ms"),
        })
    if row.get("error_code"):
        metadata["error"] = {"code": row["error_code"], "message": row.get("error_message")}

    feedback = None
    if row.get("helpful") is not None or row.get("feedback_text"):
        feedback = {
            "helpful": row.get("helpful"),
            "feedback_text": row.get("feedback_text"),
            "feedback_at": iso(row.get("feedback_at")),
        }

    return {
        "id": row["id"],
        "chat_id": row["chat_id"],
        "type": row["type"],
        "content": row["content"],
        "metadata": metadata,
        "is_edited": row.get("is_edited", False),
        "edited_at": iso(row.get("edited_at")),
        "feedback": feedback,
        "created_at": iso(row.get("created_at")),
    }


# ============================================================
# Conversation lifecycle
# ============================================================

def create_or_get_chat(
    user_id: int,
    chat_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Return the user's active chat *chat_id*, or start a new one.

    Raises:
        HTTPException: 404 if *chat_id* is not an active chat of the user
    """
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            if chat_id:
                cur.execute(
                    f"SELECT {CHAT_COLUMNS} FROM chats c "
                    "WHERE c.id = %s AND c.user_id = %s AND c.status = 'active'",
                    (chat_id, user_id),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(404, "Chat not found")
                return serialize_chat(row)

            metadata = metadata or {}
            cur.execute(
                f"""
                INSERT INTO chats AS c (user_id, title, user_agent, ip_address, session_id)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {CHAT_COLUMNS}
                """,
                (
                    user_id,
                    DEFAULT_CHAT_TITLE,
                    metadata.get("user_agent"),
                    metadata.get("ip_address"),
                    metadata.get("session_id"),
                ),
            )
            row = cur.fetchone()
        conn.commit()

    logger.info("Created chat %s for user %s", row["id"], user_id)
    return serialize_chat(row)


def save_message(
    chat_id: int,
    message_type: str,
    content: str,
    ai_metadata: Optional[Dict[str, Any]] = None,
    context_sources: Optional[List[Dict[str, Any]]] = None,
    error: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Insert a message and bump the chat's message_count/last_message_at.

    Returns the serialized message with ``message_count`` (the chat's new
    count) added.
    """
    ai_metadata = ai_metadata or {}
    tokens = ai_metadata.get("tokens_used") or {}
    error = error or {}

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                INSERT INTO messages (
                    chat_id, type, content, model, provider, prompt_tokens,
                    completion_tokens, total_tokens, response_time_ms,
                    context_sources, error_code, error_message
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {MESSAGE_COLUMNS}
                """,
                (
                    chat_id,
                    message_type,
                    (content or "")[:MAX_MESSAGE_LENGTH],
                    ai_metadata.get("model"),
                    ai_metadata.get("provider"),
                    tokens.get("prompt"),
                    tokens.get("completion"),
                    tokens.get("total"),
                    ai_metadata.get("response_time"),
                    Json(context_sources or []),
                    error.get("code"),
                    error.get("message"),
                ),
            )
            message = cur.fetchone()
            cur.execute(
                """
                UPDATE chats
                SET message_count = message_count + 1,
                    last_message_at = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                RETURNING message_count
                """,
                (chat_id,),
            )
            message_count = cur.fetchone()["message_count"]
        conn.commit()

    result = serialize_message(message)
    result["message_count"] = message_count
    return result


def title_from_message(message: str) -> str:
    """Derive a chat title from the first user message."""
    title = message.strip()
    if len(title) > TITLE_FROM_MESSAGE_CHARS:
        return title[:TITLE_FROM_MESSAGE_CHARS] + "..."
    return title or DEFAULT_CHAT_TITLE


def set_chat_title(chat_id: int, title: str) -> None:
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE chats SET title = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (title[:MAX_TITLE_LENGTH], chat_id),
            )
        conn.commit()


def get_recent_messages(chat_id: int, limit: int) -> List[Dict[str, Any]]:
    """Return the last *limit* messages of a chat, oldest first."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT type, content FROM (
                    SELECT id, type, content, created_at
                    FROM messages
                    WHERE chat_id = %s
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                ) recent
                ORDER BY created_at ASC, id ASC
                """,
                (chat_id, limit),
            )
            return [dict(row) for row in cur.fetchall()]


# ============================================================
# Context retrieval
# ============================================================

def get_context_for_ai(query: str) -> Dict[str, Any]:
    """Collect company documents and FAQs relevant to *query*.

    Returns:
        {"documents": [...], "faqs": [...], "sources": [...]} where sources
        lists only records matched by the text search.
    """
    tsquery = build_or_tsquery(query)
    keywords = extract_keywords(query)
    ts_config = Config.TEXT_SEARCH_CONFIG
    sources: List[Dict[str, Any]] = []

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            documents = []
            if tsquery:
                cur.execute(
                    """
                    SELECT d.id, d.title, d.content_raw, ts_rank(d.search_tsv, q) AS rank
                    FROM documents d, to_tsquery(%s::regconfig, %s) q
                    WHERE d.is_active = TRUE
                      AND d.status = 'processed'
                      AND d.search_tsv @@ q
                    ORDER BY rank DESC
                    LIMIT %s
                    """,
                    (ts_config, tsquery, Config.CONTEXT_DOCUMENT_LIMIT),
                )
                documents = cur.fetchall()

            for doc in documents:
                sources.append({
                    "type": "document",
                    "source_id": doc["id"],
                    "title": doc["title"],
                    "relevance_score": 1,
                })

            if not documents:
                cur.execute(
                    """
                    SELECT id, title, content_raw
                    FROM documents
                    WHERE is_active = TRUE AND status = 'processed'
                    ORDER BY usage_count DESC, id ASC
                    LIMIT %s
                    """,
                    (Config.CONTEXT_DOCUMENT_LIMIT,),
                )
                documents = cur.fetchall()

            faqs = []
            if tsquery:
                cur.execute(
                    """
                    SELECT f.id, f.question, f.answer, ts_rank(f.search_tsv, q) AS rank
                    FROM faqs f, to_tsquery(%s::regconfig, %s) q
                    WHERE f.is_active = TRUE
                      AND f.is_public = TRUE
                      AND (f.search_tsv @@ q OR f.keywords && %s::text[])
                    ORDER BY rank DESC, f.priority DESC
                    LIMIT %s
                    """,
                    (ts_config, tsquery, keywords, Config.CONTEXT_FAQ_LIMIT),
                )
                faqs = cur.fetchall()

            for faq in faqs:
                sources.append({
                    "type": "faq",
                    "source_id": faq["id"],
                    "title": faq["question"],
                    "relevance_score": 1,
                })

            if not faqs:
                cur.execute(
                    """
                    SELECT id, question, answer
                    FROM faqs
                    WHERE is_active = TRUE AND is_public = TRUE
                    ORDER BY priority DESC, view_count DESC
                    LIMIT %s
                    """,
                    (Config.CONTEXT_FAQ_LIMIT,),
                )
                faqs = cur.fetchall()

    return {
        "documents": [dict(d) for d in documents],
        "faqs": [dict(f) for f in faqs],
        "sources": sources,
    }


def update_context_usage(sources: List[Dict[str, Any]]) -> None:
    """Record that the given documents/FAQs were used to answer a question."""
    document_ids = [s["source_id"] for s in sources if s["type"] == "document"]
    faq_ids = [s["source_id"] for s in sources if s["type"] == "faq"]
    if not document_ids and not faq_ids:
        return

    with get_db() as conn:
        with conn.cursor() as cur:
            if document_ids:
                cur.execute(
                    """
                    UPDATE documents
                    SET usage_count = usage_count + 1, last_used_at = CURRENT_TIMESTAMP
                    WHERE id = ANY(%s)
                    """,
                    (document_ids,),
                )
            if faq_ids:
                cur.execute(
                    """
                    UPDATE faqs
                    SET view_count = view_count + 1, last_used_at = CURRENT_TIMESTAMP
                    WHERE id = ANY(%s)
                    """,
                    (faq_ids,),
                )
        conn.commit()


# ============================================================
# Messaging
# ============================================================

async def send_message(
    user_id: int,
    message: str,
    chat_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Store the user's message and answer it with the AI assistant.

    Returns:
        {"chat_id", "title", "user_message", "ai_message"} plus
        ``"is_error": True`` when the reply is the fallback apology.
    """
    chat = create_or_get_chat(user_id, chat_id, metadata)
    chat_id = chat["id"]
    title = chat["title"]

    user_message = save_message(chat_id, "user", message)
    if user_message.pop("message_count") == 1:
        title = title_from_message(message)
        set_chat_title(chat_id, title)

    try:
        context = get_context_for_ai(message)
        history = get_recent_messages(chat_id, Config.CHAT_HISTORY_LIMIT)
        system_prompt = ai_service.build_system_prompt(context)

        ai_response = await ai_service.generate_response(history, system_prompt)

        ai_message = save_message(
            chat_id,
            "ai",
            ai_response["content"],
            ai_metadata=ai_response["metadata"],
            context_sources=context["sources"],
        )
        ai_message.pop("message_count")
        update_context_usage(context["sources"])

        return {
            "chat_id": chat_id,
            "title": title,
            "user_message": user_message,
            "ai_message": ai_message,
        }
    except Exception as e:
        logger.error("Error generating AI reply for chat %s: %s", chat_id, e, exc_info=True)
        error_message = save_message(
            chat_id,
            "ai",
            AI_ERROR_MESSAGE,
            error={"code": "AI_ERROR", "message": str(e)},
        )
        error_message.pop("message_count")
        return {
            "chat_id": chat_id,
            "title": title,
            "user_message": user_message,
            "ai_message": error_message,
            "is_error": True,
        }


# ============================================================
# User-facing chat management
# ============================================================

def get_chat_history(user_id: int, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """List the user's active chats, most recently used first."""
    page, limit, offset = normalize_pagination(page, limit)
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {CHAT_COLUMNS} FROM chats c
                WHERE c.user_id = %s AND c.status = 'active'
                ORDER BY c.last_message_at DESC
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(
                "SELECT COUNT(*) AS total FROM chats WHERE user_id = %s AND status = 'active'",
                (user_id,),
            )
            total = cur.fetchone()["total"]

    return {
        "chats": [serialize_chat(r) for r in rows],
        "pagination": build_pagination(page, limit, total),
    }


def get_chat_by_id(chat_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    """Return a chat with all of its messages.

    Pass ``user_id=None`` for admin access to any chat.

    Raises:
        HTTPException: 404 if the chat does not exist or is not the user's
    """
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            query = (
                f"SELECT {CHAT_COLUMNS}, u.first_name, u.last_name, u.email "
                "FROM chats c LEFT JOIN users u ON u.id = c.user_id WHERE c.id = %s"
            )
            params: List[Any] = [chat_id]
            if user_id is not None:
                query += " AND c.user_id = %s"
                params.append(user_id)
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Chat not found")

            cur.execute(
                f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE chat_id = %s ORDER BY created_at, id",
                (chat_id,),
            )
            messages = cur.fetchall()

    chat = serialize_chat(row)
    chat["messages"] = [serialize_message(m) for m in messages]
    return chat


def delete_chat(chat_id: int, user_id: Optional[int] = None) -> None:
    """Permanently delete a chat and its messages.

    ``user_id=None`` lets an admin delete any chat.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            if user_id is None:
                cur.execute("DELETE FROM chats WHERE id = %s RETURNING id", (chat_id,))
            else:
                cur.execute(
                    "DELETE FROM chats WHERE id = %s AND user_id = %s RETURNING id",
                    (chat_id, user_id),
                )
            if not cur.fetchone():
                raise HTTPException(404, "Chat not found")
        conn.commit()
    logger.info("Chat %s deleted", chat_id)


def add_message_feedback(
    message_id: int,
    user_id: int,
    helpful: bool,
    feedback_text: Optional[str] = None,
) -> Dict[str, Any]:
    """Attach helpful/not-helpful feedback to a message in the user's chat."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT m.id, c.user_id
                FROM messages m
                JOIN chats c ON c.id = m.chat_id
                WHERE m.id = %s
                """,
                (message_id,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Message not found")
            if row["user_id"] != user_id:
                raise HTTPException(403, "Access denied")

            cur.execute(
                f"""
                UPDATE messages
                SET helpful = %s, feedback_text = %s, feedback_at = CURRENT_TIMESTAMP
                WHERE id = %s
                RETURNING {MESSAGE_COLUMNS}
                """,
                (helpful, feedback_text, message_id),
            )
            message = cur.fetchone()
        conn.commit()

    return serialize_message(message)


def _update_owned_chat(chat_id: int, user_id: int, assignments: str, params: tuple) -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE chats AS c
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE c.id = %s AND c.user_id = %s AND c.status <> 'deleted'
                RETURNING {CHAT_COLUMNS}
                """,
                (*params, chat_id, user_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Chat not found")
        conn.commit()
    return serialize_chat(row)


def rename_chat(chat_id: int, user_id: int, title: str) -> Dict[str, Any]:
    title = (title or "").strip()
    if not title:
        raise HTTPException(400, "Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise HTTPException(400, f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
    return _update_owned_chat(chat_id, user_id, "title = %s", (title,))


def archive_chat(chat_id: int, user_id: int) -> Dict[str, Any]:
    return _update_owned_chat(chat_id, user_id, "status = 'archived'", ())


def rate_chat(chat_id: int, user_id: int, score: int, feedback: Optional[str] = None) -> Dict[str, Any]:
    """Store the user's 1-5 satisfaction rating for a conversation."""
    if score is None or not 1 <= score <= 5:
        raise HTTPException(400, "Rating score must be between 1 and 5")
    return _update_owned_chat(
        chat_id,
        user_id,
        "rating_score = %s, rating_feedback = %s, rated_at = CURRENT_TIMESTAMP",
        (score, feedback),
    )


def get_chat_for_export(chat_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    """Shape a chat for the export module: title, dates and role/content turns."""
    chat = get_chat_by_id(chat_id, user_id)
    return {
        "id": chat["id"],
        "title": chat["title"] or "Untitled",
        "created_at": chat["created_at"] or "",
        "messages": [
            {
                "role": "user" if m["type"] == "user" else "assistant",
                "content": m["content"],
                "created_at": m["created_at"],
            }
            for m in chat["messages"]
        ],
    }


# ============================================================
# Admin views
# ============================================================

def get_all_chats(
    page: int = 1,
    limit: int = 20,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """List chats across all users with owner details."""
    page, limit, offset = normalize_pagination(page, limit)

    conditions = []
    params: List[Any] = []
    if user_id:
        conditions.append("c.user_id = %s")
        params.append(user_id)
    if status:
        conditions.append("c.status = %s")
        params.append(status)
    if search:
        conditions.append("c.title ILIKE %s")
        params.append(f"%{search}%")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {CHAT_COLUMNS}, u.first_name, u.last_name, u.email
                FROM chats c
                LEFT JOIN users u ON u.id = c.user_id
                {where}
                ORDER BY c.last_message_at DESC
                LIMIT %s OFFSET %s
                """,
                (*params, limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM chats c {where}", params)
            total = cur.fetchone()["total"]

    return {
        "chats": [serialize_chat(r) for r in rows],
        "pagination": build_pagination(page, limit, total),
    }


def get_chat_analytics() -> Dict[str, Any]:
    """Conversation volume figures for the admin dashboard."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE status = 'active') AS active,
                       COALESCE(AVG(message_count), 0) AS avg_messages
                FROM chats
            """)
            chat_stats = cur.fetchone()

            cur.execute("""
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE created_at >= CURRENT_DATE) AS today
                FROM messages
            """)
            message_stats = cur.fetchone()

            cur.execute("""
                SELECT DATE(created_at) AS day, COUNT(*) AS count
                FROM chats
                WHERE created_at >= CURRENT_DATE - INTERVAL '29 days'
                GROUP BY DATE(created_at)
                ORDER BY day
            """)
            by_day = cur.fetchall()

    return {
        "total_chats": chat_stats["total"],
        "active_chats": chat_stats["active"],
        "total_messages": message_stats["total"],
        "messages_today": message_stats["today"],
        "avg_messages_per_chat": round(float(chat_stats["avg_messages"]), 1),
        "chats_by_day": [{"date": iso(r["day"]), "count": r["count"]} for r in by_day],
    }


def get_recent_chats(limit: int = 5) -> List[Dict[str, Any]]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {CHAT_COLUMNS}, u.first_name, u.last_name, u.email
                FROM chats c
                LEFT JOIN users u ON u.id = c.user_id
                ORDER BY c.last_message_at DESC NULLS LAST
                LIMIT %s
                """,
                (limit,),
            )
            return [serialize_chat(r) for r in cur.fetchall()]
