"""Company documents: upload, text extraction, management and analytics.

Uploads are stored on disk and recorded as ``pending``; the background
worker (see :mod:`supportdesk.worker`) picks them up and calls
:func:`process_document` to extract their text.
"""
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from psycopg2.extras import RealDictCursor

from .config import Config, ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES, DEFAULT_CATEGORY
from .db import get_db
from .extraction import extract_text
from .utils import build_pagination, format_file_size, iso, normalize_pagination, parse_tags

logger = logging.getLogger("support.documents")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000

# Listing columns; content_raw is only returned by get_document_by_id
DOCUMENT_COLUMNS = """
    d.id, d.title, d.description, d.file_name, d.original_name, d.file_type,
    d.mime_type, d.file_size, d.status, d.page_count, d.word_count,
    d.processing_started_at, d.processing_completed_at, d.processing_error,
    d.retry_count, d.uploaded_by, d.is_active, d.category, d.tags,
    d.usage_count, d.last_used_at, d.created_at, d.updated_at
"""

UPDATABLE_FIELDS = ("title", "description", "category", "tags", "is_active")


def serialize_document(row: Dict[str, Any]) -> Dict[str, Any]:
    doc = {
        "id": row["id"],
        "title": row["title"],
        "description": row.get("description"),
        "file_name": row["file_name"],
        "original_name": row["original_name"],
        "file_type": row["file_type"],
        "mime_type": row.get("mime_type"),
        "file_size": row.get("file_size"),
        "file_size_formatted": format_file_size(row.get("file_size") or 0),
        "status": row["status"],
        "metadata": {
            "page_count": row.get("page_count"),
            "word_count": row.get("word_count"),
        },
        "processing": {
            "started_at": iso(row.get("processing_started_at")),
            "completed_at": iso(row.get("processing_completed_at")),
            "error": row.get("processing_error"),
            "retry_count": row.get("retry_count", 0),
        },
        "uploaded_by": row.get("uploaded_by"),
        "is_active": row["is_active"],
        "category": row["category"],
        "tags": row.get("tags") or [],
        "usage_count": row.get("usage_count", 0),
        "last_used_at": iso(row.get("last_used_at")),
        "created_at": iso(row.get("created_at")),
        "updated_at": iso(row.get("updated_at")),
    }
    if "content_raw" in row:
        doc["content"] = row["content_raw"]
    if row.get("uploader_email") is not None:
        doc["uploader"] = {
            "first_name": row.get("uploader_first_name"),
            "last_name": row.get("uploader_last_name"),
            "email": row["uploader_email"],
        }
    return doc


# ============================================================
# Upload
# ============================================================

def validate_upload(original_name: str, mime_type: Optional[str], size: int) -> str:
    """Check an uploaded file against the allowed types and size.

    Returns:
        The document file_type ("pdf", "docx", "txt" or "md").

    Raises:
        HTTPException: 400 for a disallowed type or an oversized file
    """
    ext = os.path.splitext(original_name or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS or (mime_type and mime_type not in ALLOWED_MIME_TYPES):
        raise HTTPException(
            400,
            f"Invalid file type: {original_name}. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )
    if size > Config.MAX_FILE_SIZE:
        raise HTTPException(
            400, f"File size exceeds limit of {format_file_size(Config.MAX_FILE_SIZE)}"
        )
    if size == 0:
        raise HTTPException(400, f"File is empty: {original_name}")
    return ALLOWED_EXTENSIONS[ext]


def store_upload(content: bytes, original_name: str, mime_type: Optional[str]) -> Dict[str, Any]:
    """Validate and persist an uploaded file under UPLOAD_DIR/documents.

    Returns the file_info dict expected by :func:`upload_document`.
    """
    file_type = validate_upload(original_name, mime_type, len(content))
    ext = os.path.splitext(original_name)[1].lower()

    upload_dir = os.path.join(Config.UPLOAD_DIR, "documents")
    os.makedirs(upload_dir, exist_ok=True)
    file_name = f"{uuid.uuid4().hex}{ext}"
    file_path = os.path.join(upload_dir, file_name)

    with open(file_path, "wb") as f:
        f.write(content)

    return {
        "file_name": file_name,
        "original_name": os.path.basename(original_name),
        "file_path": file_path,
        "file_type": file_type,
        "mime_type": mime_type,
        "file_size": len(content),
    }


def upload_document(file_info: Dict[str, Any], metadata: Dict[str, Any], user_id: int) -> Dict[str, Any]:
    """Record an uploaded file as a ``pending`` document.

    The title defaults to the original file name and the category to
    "General". Text extraction happens later in the worker.
    """
    title = (metadata.get("title") or file_info["original_name"]).strip()[:MAX_TITLE_LENGTH]
    description = (metadata.get("description") or "").strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise HTTPException(400, f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                INSERT INTO documents AS d (
                    title, description, file_name, original_name, file_path, file_type,
                    mime_type, file_size, status, uploaded_by, category, tags
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'pending', %s, %s, %s)
                RETURNING {DOCUMENT_COLUMNS}
                """,
                (
                    title,
                    description or None,
                    file_info["file_name"],
                    file_info["original_name"],
                    file_info["file_path"],
                    file_info["file_type"],
                    file_info.get("mime_type"),
                    file_info["file_size"],
                    user_id,
                    (metadata.get("category") or DEFAULT_CATEGORY).strip(),
                    parse_tags(metadata.get("tags")),
                ),
            )
            row = cur.fetchone()
        conn.commit()

    logger.info("Document uploaded: %s (%s) by user: %s", row["id"], file_info["original_name"], user_id)
    return serialize_document(row)


# ============================================================
# Processing
# ============================================================

def process_document(document_id: int) -> Dict[str, Any]:
    """Extract the text of a document and mark it processed.

    On failure the document is marked ``failed`` with the error and an
    incremented retry_count, and the exception is re-raised.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT file_path, file_type FROM documents WHERE id = %s",
                (document_id,),
            )
            row = cur.fetchone()
    if not row:
        raise ValueError(f"Document {document_id} not found")
    file_path, file_type = row

    try:
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"File not found: {file_path}")
        extracted = extract_text(file_path, file_type)
    except Exception as e:
        logger.error("Document processing failed for %s: %s", document_id, e)
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE documents
                    SET status = 'failed',
                        processing_error = %s,
                        retry_count = retry_count + 1,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = %s
                    """,
                    (str(e), document_id),
                )
            conn.commit()
        raise

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE documents
                SET status = 'processed',
                    content_raw = %s,
                    page_count = %s,
                    word_count = %s,
                    processing_completed_at = CURRENT_TIMESTAMP,
                    processing_error = NULL,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (extracted["text"], extracted["page_count"], extracted["word_count"], document_id),
            )
        conn.commit()

    logger.info("Document processed: %s (%d words)", document_id, extracted["word_count"])
    return {"page_count": extracted["page_count"], "word_count": extracted["word_count"]}


def reprocess_document(document_id: int) -> None:
    """Queue a failed document for another extraction attempt.

    Raises:
        HTTPException: 404 if missing, 400 if the document has not failed
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT status FROM documents WHERE id = %s FOR UPDATE", (document_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Document not found")
            if row[0] != "failed":
                raise HTTPException(400, "Document is not in failed state")

            cur.execute(
                """
                UPDATE documents
                SET status = 'pending', processing_error = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (document_id,),
            )
        conn.commit()
    logger.info("Document %s queued for reprocessing", document_id)


# ============================================================
# Management
# ============================================================

def get_documents(
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """List active documents (without their extracted text), newest first."""
    page, limit, offset = normalize_pagination(page, limit)

    conditions = ["d.is_active = TRUE"]
    params: List[Any] = []
    if category:
        conditions.append("d.category = %s")
        params.append(category)
    if status:
        conditions.append("d.status = %s")
        params.append(status)
    if search:
        conditions.append("(d.title ILIKE %s OR d.description ILIKE %s)")
        params.extend([f"%{search}%", f"%{search}%"])
    where = " AND ".join(conditions)

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {DOCUMENT_COLUMNS},
                       u.first_name AS uploader_first_name,
                       u.last_name AS uploader_last_name,
                       u.email AS uploader_email
                FROM documents d
                LEFT JOIN users u ON u.id = d.uploaded_by
                WHERE {where}
                ORDER BY d.created_at DESC
                LIMIT %s OFFSET %s
                """,
                (*params, limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM documents d WHERE {where}", params)
            total = cur.fetchone()["total"]

    return {
        "documents": [serialize_document(r) for r in rows],
        "pagination": build_pagination(page, limit, total),
    }


def get_document_by_id(document_id: int) -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {DOCUMENT_COLUMNS}, d.content_raw,
                       u.first_name AS uploader_first_name,
                       u.last_name AS uploader_last_name,
                       u.email AS uploader_email
                FROM documents d
                LEFT JOIN users u ON u.id = d.uploaded_by
                WHERE d.id = %s
                """,
                (document_id,),
            )
            row = cur.fetchone()
    if not row:
        raise HTTPException(404, "Document not found")
    return serialize_document(row)


def update_document(document_id: int, updates: Dict[str, Any], user_id: int) -> Dict[str, Any]:
    """Update title, description, category, tags or is_active."""
    fields = {k: updates[k] for k in UPDATABLE_FIELDS if k in updates and updates[k] is not None}

    if "title" in fields:
        fields["title"] = fields["title"].strip()
        if not fields["title"] or len(fields["title"]) > MAX_TITLE_LENGTH:
            raise HTTPException(400, f"Title must be 1-{MAX_TITLE_LENGTH} characters")
    if "description" in fields and len(fields["description"]) > MAX_DESCRIPTION_LENGTH:
        raise HTTPException(400, f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    if "tags" in fields:
        fields["tags"] = parse_tags(fields["tags"])

    if not fields:
        return get_document_by_id(document_id)

    assignments = ", ".join(f"{name} = %s" for name in fields)
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE documents AS d
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE d.id = %s
                RETURNING {DOCUMENT_COLUMNS}
                """,
                (*fields.values(), document_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Document not found")
        conn.commit()

    logger.info("Document updated: %s by user: %s", document_id, user_id)
    return serialize_document(row)


def delete_document(document_id: int, user_id: int) -> None:
    """Remove the stored file and soft-delete the document."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE documents SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s RETURNING file_path
                """,
                (document_id,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "Document not found")
        conn.commit()

    file_path = row[0]
    try:
        os.remove(file_path)
    except OSError as e:
        logger.warning("Failed to delete file %s: %s", file_path, e)

    logger.info("Document deleted: %s by user: %s", document_id, user_id)


def get_categories() -> List[str]:
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT DISTINCT category FROM documents WHERE is_active ORDER BY category")
            return [r[0] for r in cur.fetchall()]


def get_document_analytics() -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE status = 'processed') AS processed,
                       COUNT(*) FILTER (WHERE status = 'failed') AS failed,
                       COUNT(*) FILTER (WHERE status IN ('pending', 'processing')) AS in_progress
                FROM documents
                WHERE is_active
            """)
            totals = cur.fetchone()

            cur.execute("""
                SELECT category, COUNT(*) AS count
                FROM documents WHERE is_active
                GROUP BY category
                ORDER BY count DESC
            """)
            by_category = [dict(r) for r in cur.fetchall()]

            cur.execute("""
                SELECT id, title, usage_count, last_used_at
                FROM documents
                WHERE is_active AND status = 'processed'
                ORDER BY usage_count DESC
                LIMIT 10
            """)
            top_used = [
                {**dict(r), "last_used_at": iso(r["last_used_at"])} for r in cur.fetchall()
            ]

    return {
        "total_documents": totals["total"],
        "processed_documents": totals["processed"],
        "failed_documents": totals["failed"],
        "in_progress_documents": totals["in_progress"],
        "documents_by_category": by_category,
        "top_used_documents": top_used,
    }


def get_top_documents(limit: int = 5) -> List[Dict[str, Any]]:
    """Most referenced processed documents, for the admin dashboard."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, title, file_type, usage_count, last_used_at
                FROM documents
                WHERE is_active AND status = 'processed'
                ORDER BY usage_count DESC
                LIMIT %s
                """,
                (limit,),
            )
            rows = cur.fetchall()
    return [
        {
            "id": r["id"],
            "title": r["title"],
            "file_type": r["file_type"],
            "reference_count": r["usage_count"] or 0,
            "last_used": iso(r["last_used_at"]),
        }
        for r in rows
    ]
