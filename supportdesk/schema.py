"""Idempotent schema bootstrap.

Every ``ensure_*`` function issues ``CREATE ... IF NOT EXISTS`` so the
schema can be (re)applied on each application start. Tables are created
in foreign-key order by :func:`bootstrap_schema`.
"""
import logging
import re

from .config import Config
from .db import get_db

logger = logging.getLogger("support.schema")

# Text kept in the documents tsvector; longer content would exceed the
# tsvector size limit.
_TSV_CONTENT_CHARS = 200000


def _ts_config() -> str:
    """Return the configured text search config, safe for DDL interpolation."""
    name = Config.TEXT_SEARCH_CONFIG
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"Invalid TEXT_SEARCH_CONFIG: {name!r}")
    return name


def ensure_users_table():
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    email VARCHAR(255) UNIQUE NOT NULL,
                    password_hash VARCHAR(255) NOT NULL,
                    first_name VARCHAR(50) NOT NULL,
                    last_name VARCHAR(50) NOT NULL,
                    role VARCHAR(20) NOT NULL DEFAULT 'user',
                    avatar TEXT,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    last_login_at TIMESTAMP,
                    refresh_token TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT users_role_check CHECK (role IN ('user', 'admin', 'super_admin'))
                );
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);")
        conn.commit()
    logger.info("users table ready")


def ensure_password_resets_table():
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS password_resets (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    token_hash VARCHAR(64) NOT NULL,
                    expires_at TIMESTAMP NOT NULL,
                    used BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_password_resets_token ON password_resets(token_hash);"
            )
        conn.commit()
    logger.info("password_resets table ready")


def ensure_chats_table():
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS chats (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    title VARCHAR(200) NOT NULL DEFAULT 'New Conversation',
                    status VARCHAR(20) NOT NULL DEFAULT 'active',
                    message_count INTEGER NOT NULL DEFAULT 0,
                    last_message_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    user_agent TEXT,
                    ip_address VARCHAR(64),
                    session_id VARCHAR(128),
                    tags TEXT[] NOT NULL DEFAULT '{}',
                    rating_score SMALLINT,
                    rating_feedback TEXT,
                    rated_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT chats_status_check CHECK (status IN ('active', 'archived', 'deleted')),
                    CONSTRAINT chats_rating_check CHECK (rating_score IS NULL OR rating_score BETWEEN 1 AND 5)
                );
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_chats_user_status
                ON chats(user_id, status, last_message_at DESC);
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_chats_created ON chats(created_at DESC);")
        conn.commit()
    logger.info("chats table ready")


def ensure_messages_table():
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id SERIAL PRIMARY KEY,
                    chat_id INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
                    type VARCHAR(10) NOT NULL,
                    content TEXT NOT NULL,
                    model VARCHAR(100),
                    provider VARCHAR(50),
                    prompt_tokens INTEGER,
                    completion_tokens INTEGER,
                    total_tokens INTEGER,
                    response_time_ms INTEGER,
                    context_sources JSONB NOT NULL DEFAULT '[]'::jsonb,
                    error_code VARCHAR(50),
                    error_message TEXT,
                    is_edited BOOLEAN NOT NULL DEFAULT FALSE,
                    edited_at TIMESTAMP,
                    helpful BOOLEAN,
                    feedback_text TEXT,
                    feedback_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT messages_type_check CHECK (type IN ('user', 'ai', 'system')),
                    CONSTRAINT messages_content_length CHECK (char_length(content) <= 50000)
                );
            """)
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_chat_created ON messages(chat_id, created_at);"
            )
        conn.commit()
    logger.info("messages table ready")


def ensure_documents_table():
    ts_config = _ts_config()
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS documents (
                    id SERIAL PRIMARY KEY,
                    title VARCHAR(200) NOT NULL,
                    description VARCHAR(1000),
                    file_name TEXT NOT NULL,
                    original_name TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    file_type VARCHAR(10) NOT NULL,
                    mime_type VARCHAR(255),
                    file_size BIGINT,
                    status VARCHAR(20) NOT NULL DEFAULT 'pending',
                    content_raw TEXT,
                    page_count INTEGER,
                    word_count INTEGER,
                    language VARCHAR(20),
                    author TEXT,
                    processing_started_at TIMESTAMP,
                    processing_completed_at TIMESTAMP,
                    processing_error TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    uploaded_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    category VARCHAR(100) NOT NULL DEFAULT 'General',
                    tags TEXT[] NOT NULL DEFAULT '{{}}',
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    last_used_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    search_tsv tsvector GENERATED ALWAYS AS (
                        setweight(to_tsvector('{ts_config}', coalesce(title, '')), 'A') ||
                        setweight(to_tsvector('{ts_config}', left(coalesce(content_raw, ''), {_TSV_CONTENT_CHARS})), 'B')
                    ) STORED,
                    CONSTRAINT documents_status_check
                        CHECK (status IN ('pending', 'processing', 'processed', 'failed')),
                    CONSTRAINT documents_type_check CHECK (file_type IN ('pdf', 'docx', 'txt', 'md'))
                );
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_documents_search ON documents USING GIN(search_tsv);")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_active_status ON documents(is_active, status);"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_documents_category ON documents(category);")
        conn.commit()
    logger.info("documents table ready")


def ensure_faqs_table():
    ts_config = _ts_config()
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS faqs (
                    id SERIAL PRIMARY KEY,
                    question VARCHAR(500) NOT NULL,
                    answer VARCHAR(5000) NOT NULL,
                    category VARCHAR(100) NOT NULL DEFAULT 'General',
                    tags TEXT[] NOT NULL DEFAULT '{{}}',
                    alternative_questions TEXT[] NOT NULL DEFAULT '{{}}',
                    keywords TEXT[] NOT NULL DEFAULT '{{}}',
                    priority INTEGER NOT NULL DEFAULT 0,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    is_public BOOLEAN NOT NULL DEFAULT TRUE,
                    created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    updated_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    view_count INTEGER NOT NULL DEFAULT 0,
                    useful_count INTEGER NOT NULL DEFAULT 0,
                    not_useful_count INTEGER NOT NULL DEFAULT 0,
                    last_used_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    search_tsv tsvector GENERATED ALWAYS AS (
                        setweight(to_tsvector('{ts_config}', coalesce(question, '')), 'A') ||
                        setweight(to_tsvector('{ts_config}', coalesce(answer, '')), 'B')
                    ) STORED,
                    CONSTRAINT faqs_priority_check CHECK (priority BETWEEN 0 AND 100)
                );
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_faqs_search ON faqs USING GIN(search_tsv);")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_faqs_keywords ON faqs USING GIN(keywords);")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_faqs_category ON faqs(category);")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_faqs_ranking ON faqs(priority DESC, view_count DESC);"
            )
        conn.commit()
    logger.info("faqs table ready")


def bootstrap_schema():
    """Create every table in dependency order.

    Returns True when the schema is ready, False if any step failed. The
    failure is logged so the API can still start and report an unhealthy
    database through /api/health.
    """
    try:
        ensure_users_table()
        ensure_password_resets_table()
        ensure_chats_table()
        ensure_messages_table()
        ensure_documents_table()
        ensure_faqs_table()
        logger.info("Database schema ready")
        return True
    except Exception as e:
        logger.error("Schema bootstrap failed: %s", e, exc_info=True)
        return False
