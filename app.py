"""AI customer-support chat API.

Signed-in customers chat with an AI assistant that answers from the
company's uploaded documents and FAQ entries. Administrators manage those
knowledge sources, users and conversations, and can switch the active LLM
provider at runtime.

Run locally with ``python app.py`` or ``uvicorn app:app --reload``.
"""
import logging
import os
import platform
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supportdesk.logging_config import setup_logging

# Configure logging before anything else
setup_logging()

logger = logging.getLogger("support.app")
access_logger = logging.getLogger("support.access")

import psutil
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from supportdesk import ai_service, auth, chats, documents, faqs, mailer, users
from supportdesk.auth import get_current_user, require_admin
from supportdesk.config import Config
from supportdesk.db import close_pool, get_db, init_pool, pool_status
from supportdesk.export import EXPORT_FORMATS, content_disposition, render_export
from supportdesk.ratelimit import limiter, rate_limit_exceeded_handler
from supportdesk.schema import bootstrap_schema
from supportdesk.utils import format_file_size, format_uptime

openapi_tags = [
    {
        "name": "Health",
        "description": "Application health and readiness checks.",
    },
    {
        "name": "Auth",
        "description": "Registration, login, token refresh, profile and password operations.",
    },
    {
        "name": "Chat",
        "description": "Send messages to the AI assistant and manage your conversations.",
    },
    {
        "name": "Documents",
        "description": "Upload and manage the support documents the assistant draws on (admin).",
    },
    {
        "name": "FAQs",
        "description": "Public FAQ browsing and feedback, plus FAQ administration.",
    },
    {
        "name": "Admin",
        "description": "Dashboard analytics, conversation review, user management and system health.",
    },
    {
        "name": "Users",
        "description": "Look up other users.",
    },
    {
        "name": "Models",
        "description": "List available LLM providers/models and switch the active model at runtime.",
    },
]

app = FastAPI(
    title="AI Support Chat API",
    description=(
        "Customer support backend with an AI assistant. Answers are grounded "
        "in uploaded company documents and curated FAQs, retrieved with "
        "PostgreSQL full-text search, and generated by OpenAI, Anthropic, "
        "Google Gemini or DeepSeek."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=openapi_tags,
)

# Worker thread handle, set on startup when RUN_WORKER is enabled
_worker = None


# --- Request ID Middleware ---------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Injects an X-Request-ID header and writes one access log line per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        access_logger.info(
            "%s %s %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[Config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler that returns JSON instead of HTML."""
    logger.error("Unhandled exception (global handler):", exc_info=exc)
    return JSONResponse(status_code=500, content={
        "detail": "Internal server error",
        "error": str(exc)
    })


def _client_metadata(request: Request) -> Dict[str, Any]:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
        "session_id": request.headers.get("X-Session-ID"),
    }


def _set_auth_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        key="auth_token",
        value=access_token,
        httponly=True,
        secure=Config.PROD,
        samesite="lax",
        max_age=Config.JWT_EXPIRY_HOURS * 3600,
    )


# Pydantic Models
class RegisterRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str

class LoginRequest(BaseModel):
    email: str
    password: str

class RefreshRequest(BaseModel):
    refresh_token: str

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str

class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=chats.MAX_MESSAGE_LENGTH)
    chat_id: Optional[int] = None

class RenameChatRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=chats.MAX_TITLE_LENGTH)

class RatingRequest(BaseModel):
    score: int
    feedback: Optional[str] = None

class MessageFeedbackRequest(BaseModel):
    helpful: bool
    feedback_text: Optional[str] = None

class DocumentUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=documents.MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, max_length=documents.MAX_DESCRIPTION_LENGTH)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None

class FAQCreate(BaseModel):
    question: str
    answer: str
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    alternative_questions: Optional[List[str]] = None
    keywords: Optional[List[str]] = None
    priority: Optional[int] = None
    is_public: Optional[bool] = None

class FAQUpdate(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    alternative_questions: Optional[List[str]] = None
    keywords: Optional[List[str]] = None
    priority: Optional[int] = None
    is_public: Optional[bool] = None
    is_active: Optional[bool] = None

class FAQBulkImport(BaseModel):
    faqs: List[Dict[str, Any]]

class FAQFeedbackRequest(BaseModel):
    is_useful: bool

class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None

class RoleUpdate(BaseModel):
    role: str

class StatusUpdate(BaseModel):
    is_active: bool

class ModelSelectRequest(BaseModel):
    provider: str
    model: str


# Health Check Endpoint
@app.get("/api/health", tags=["Health"], summary="Health check")
def health_check():
    """Health check endpoint for load balancers.

    Returns 200 if database is accessible, 503 otherwise.
    """
    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()

        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(e)}"
        )


# ============================================================
# Authentication Endpoints
# ============================================================

@app.post("/api/auth/register", status_code=201, tags=["Auth"], summary="Register new user")
@limiter.limit(Config.AUTH_RATE_LIMIT)
def register(request: Request, payload: RegisterRequest, response: Response):
    """Create a customer account. Returns the user with an access/refresh token pair."""
    result = auth.register(payload.email, payload.password, payload.first_name, payload.last_name)
    _set_auth_cookie(response, result["access_token"])
    return result


@app.post("/api/auth/login", tags=["Auth"], summary="Login")
@limiter.limit(Config.AUTH_RATE_LIMIT)
def login(request: Request, payload: LoginRequest, response: Response):
    """Authenticate with email and password."""
    result = auth.login(payload.email, payload.password)
    _set_auth_cookie(response, result["access_token"])
    return result


@app.post("/api/auth/refresh", tags=["Auth"], summary="Refresh token")
def refresh_token(payload: RefreshRequest, response: Response):
    """Exchange a refresh token for a new token pair. The old refresh token stops working."""
    tokens = auth.refresh_tokens(payload.refresh_token)
    _set_auth_cookie(response, tokens["access_token"])
    return tokens


@app.post("/api/auth/logout", tags=["Auth"], summary="Logout")
def logout(current_user: dict = Depends(get_current_user)):
    """Revoke the refresh token and clear the auth cookie."""
    auth.logout(current_user["id"])
    response = JSONResponse(content={"message": "Logged out successfully"})
    response.delete_cookie(key="auth_token")
    return response


@app.get("/api/auth/me", tags=["Auth"], summary="Get current user")
def get_current_user_info(current_user: dict = Depends(get_current_user)):
    return auth.get_profile(current_user["id"])


@app.put("/api/auth/profile", tags=["Auth"], summary="Update profile")
def update_profile(payload: ProfileUpdate, current_user: dict = Depends(get_current_user)):
    return auth.update_profile(current_user["id"], payload.model_dump(exclude_unset=True))


@app.put("/api/auth/password", tags=["Auth"], summary="Change password")
def change_password(payload: ChangePasswordRequest, current_user: dict = Depends(get_current_user)):
    """Change the password after verifying the current one. Other sessions must log in again."""
    auth.change_password(current_user["id"], payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@app.post("/api/auth/forgot-password", tags=["Auth"], summary="Request password reset")
@limiter.limit(Config.AUTH_RATE_LIMIT)
def forgot_password(request: Request, payload: ForgotPasswordRequest):
    """Request a password reset link.

    Always returns 200 regardless of whether the email exists to prevent
    email enumeration. If SMTP is configured the reset link is emailed;
    otherwise it is logged to the server console for development use.
    """
    token = auth.generate_reset_token(payload.email)

    if token:
        reset_link = f"{Config.APP_URL}/reset-password?token={token}"
        if not mailer.send_reset_email(payload.email, reset_link):
            logger.info("=== PASSWORD RESET LINK (no SMTP configured) ===")
            logger.info("Email: %s", payload.email)
            logger.info("Link:  %s", reset_link)
            logger.info("=" * 50)

    return {
        "message": "If an account exists with that email, a reset link has been sent."
    }


@app.post("/api/auth/reset-password", tags=["Auth"], summary="Reset password with token")
def reset_password_endpoint(payload: ResetPasswordRequest):
    """Reset password using a valid reset token from the forgot-password flow."""
    if not auth.reset_password(payload.token, payload.new_password):
        raise HTTPException(
            status_code=400,
            detail="Invalid or expired reset token"
        )

    return {"message": "Password has been reset successfully"}


# ============================================================
# Chat Endpoints
# ============================================================

@app.post("/api/chat/message", tags=["Chat"], summary="Send chat message")
@limiter.limit(Config.CHAT_RATE_LIMIT)
async def send_message(request: Request, payload: ChatMessageRequest, current_user: dict = Depends(get_current_user)):
    """Send a message and receive the assistant's reply.

    Without ``chat_id`` a new conversation is started. Provider failures do
    not fail the request: the reply is an apology flagged with ``is_error``.
    """
    return await chats.send_message(
        current_user["id"],
        payload.message,
        chat_id=payload.chat_id,
        metadata=_client_metadata(request),
    )


@app.post("/api/chat/new", status_code=201, tags=["Chat"], summary="Start a new chat")
def create_new_chat(request: Request, current_user: dict = Depends(get_current_user)):
    return chats.create_or_get_chat(current_user["id"], None, _client_metadata(request))


@app.get("/api/chat/history", tags=["Chat"], summary="List your chats")
def get_chat_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    current_user: dict = Depends(get_current_user),
):
    return chats.get_chat_history(current_user["id"], page, limit)


@app.post("/api/chat/feedback/{message_id}", tags=["Chat"], summary="Rate an assistant message")
def add_message_feedback(
    message_id: int,
    payload: MessageFeedbackRequest,
    current_user: dict = Depends(get_current_user),
):
    return chats.add_message_feedback(message_id, current_user["id"], payload.helpful, payload.feedback_text)


@app.get("/api/chat/{chat_id}", tags=["Chat"], summary="Get chat with messages")
def get_chat(chat_id: int, current_user: dict = Depends(get_current_user)):
    return chats.get_chat_by_id(chat_id, current_user["id"])


@app.put("/api/chat/{chat_id}", tags=["Chat"], summary="Rename chat")
def rename_chat(chat_id: int, payload: RenameChatRequest, current_user: dict = Depends(get_current_user)):
    return chats.rename_chat(chat_id, current_user["id"], payload.title)


@app.post("/api/chat/{chat_id}/archive", tags=["Chat"], summary="Archive chat")
def archive_chat(chat_id: int, current_user: dict = Depends(get_current_user)):
    return chats.archive_chat(chat_id, current_user["id"])


@app.post("/api/chat/{chat_id}/rating", tags=["Chat"], summary="Rate chat")
def rate_chat(chat_id: int, payload: RatingRequest, current_user: dict = Depends(get_current_user)):
    return chats.rate_chat(chat_id, current_user["id"], payload.score, payload.feedback)


@app.get("/api/chat/{chat_id}/export", tags=["Chat"], summary="Export chat")
def export_chat(
    chat_id: int,
    format: str = Query("md", description="Export format: md or json"),
    current_user: dict = Depends(get_current_user),
):
    """Download a chat transcript as Markdown or JSON."""
    if format not in EXPORT_FORMATS:
        raise HTTPException(400, "Format must be md or json")

    chat = chats.get_chat_for_export(chat_id, current_user["id"])
    content = render_export(chat, format)
    return StreamingResponse(
        iter([content]),
        media_type=EXPORT_FORMATS[format][0],
        headers={"Content-Disposition": content_disposition(chat["title"], format)},
    )


@app.delete("/api/chat/{chat_id}", tags=["Chat"], summary="Delete chat")
def delete_chat(chat_id: int, current_user: dict = Depends(get_current_user)):
    chats.delete_chat(chat_id, current_user["id"])
    return {"message": "Chat deleted successfully"}


# ============================================================
# Document Endpoints (admin)
# ============================================================

@app.get("/api/documents/categories", tags=["Documents"], summary="List document categories")
def get_document_categories(current_user: dict = Depends(require_admin)):
    return {"categories": documents.get_categories()}


@app.get("/api/documents/analytics", tags=["Documents"], summary="Document analytics")
def get_document_analytics(current_user: dict = Depends(require_admin)):
    return documents.get_document_analytics()


@app.get("/api/documents", tags=["Documents"], summary="List documents")
def list_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    category: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    current_user: dict = Depends(require_admin),
):
    return documents.get_documents(page, limit, category, status, search)


@app.post("/api/documents/upload", status_code=201, tags=["Documents"], summary="Upload document")
async def upload_document(
    document: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    current_user: dict = Depends(require_admin),
):
    """Upload a PDF, DOCX, TXT or MD file.

    The document is stored as ``pending``; the background worker extracts
    its text. ``tags`` is a comma-separated list.
    """
    content = await document.read()
    file_info = documents.store_upload(content, document.filename, document.content_type)
    metadata = {"title": title, "description": description, "category": category, "tags": tags}
    return documents.upload_document(file_info, metadata, current_user["id"])


@app.post("/api/documents/upload-multiple", status_code=201, tags=["Documents"], summary="Upload documents")
async def upload_multiple_documents(
    documents_: List[UploadFile] = File(..., alias="documents"),
    category: Optional[str] = Form(None),
    current_user: dict = Depends(require_admin),
):
    """Upload several files at once. Invalid files are reported without failing the batch."""
    if len(documents_) > Config.MAX_FILES_PER_UPLOAD:
        raise HTTPException(400, f"Too many files. Maximum is {Config.MAX_FILES_PER_UPLOAD}")

    results = []
    errors = []
    for file in documents_:
        content = await file.read()
        try:
            file_info = documents.store_upload(content, file.filename, file.content_type)
            results.append(documents.upload_document(file_info, {"category": category}, current_user["id"]))
        except HTTPException as e:
            errors.append({"filename": file.filename, "error": e.detail})

    return {"documents": results, "errors": errors}


@app.get("/api/documents/{document_id}", tags=["Documents"], summary="Get document")
def get_document(document_id: int, current_user: dict = Depends(require_admin)):
    return documents.get_document_by_id(document_id)


@app.put("/api/documents/{document_id}", tags=["Documents"], summary="Update document")
def update_document(document_id: int, payload: DocumentUpdate, current_user: dict = Depends(require_admin)):
    return documents.update_document(document_id, payload.model_dump(exclude_unset=True), current_user["id"])


@app.delete("/api/documents/{document_id}", tags=["Documents"], summary="Delete document")
def delete_document(document_id: int, current_user: dict = Depends(require_admin)):
    documents.delete_document(document_id, current_user["id"])
    return {"message": "Document deleted successfully"}


@app.post("/api/documents/{document_id}/reprocess", tags=["Documents"], summary="Reprocess failed document")
def reprocess_document(document_id: int, current_user: dict = Depends(require_admin)):
    """Queue a failed document for another extraction attempt."""
    documents.reprocess_document(document_id)
    return {"message": "Document queued for reprocessing", "document_id": document_id, "status": "pending"}


# ============================================================
# FAQ Endpoints
# ============================================================

@app.get("/api/faqs", tags=["FAQs"], summary="List public FAQs")
def list_public_faqs(category: Optional[str] = None):
    return {"faqs": faqs.get_public_faqs(category)}


@app.get("/api/faqs/categories", tags=["FAQs"], summary="List FAQ categories")
def get_faq_categories():
    return {"categories": faqs.get_categories()}


@app.get("/api/faqs/admin/all", tags=["FAQs"], summary="List all FAQs (admin)")
def list_all_faqs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    category: Optional[str] = None,
    search: Optional[str] = None,
    is_public: Optional[bool] = None,
    current_user: dict = Depends(require_admin),
):
    return faqs.get_faqs(page, limit, category, search, is_public)


@app.get("/api/faqs/admin/analytics", tags=["FAQs"], summary="FAQ analytics")
def get_faq_analytics(current_user: dict = Depends(require_admin)):
    return faqs.get_faq_analytics()


@app.post("/api/faqs", status_code=201, tags=["FAQs"], summary="Create FAQ")
def create_faq(payload: FAQCreate, current_user: dict = Depends(require_admin)):
    return faqs.create_faq(payload.model_dump(exclude_none=True), current_user["id"])


@app.post("/api/faqs/bulk-import", tags=["FAQs"], summary="Bulk import FAQs")
def bulk_import_faqs(payload: FAQBulkImport, current_user: dict = Depends(require_admin)):
    """Create many FAQs at once. Returns counts of created and failed entries with their errors."""
    if not payload.faqs:
        raise HTTPException(400, "FAQs array is required")
    return faqs.bulk_import(payload.faqs, current_user["id"])


@app.get("/api/faqs/{faq_id}", tags=["FAQs"], summary="Get FAQ")
def get_faq(faq_id: int):
    """Return a public, active FAQ."""
    return faqs.get_faq_by_id(faq_id, public_only=True)


@app.post("/api/faqs/{faq_id}/feedback", tags=["FAQs"], summary="Was this FAQ useful?")
def faq_feedback(faq_id: int, payload: FAQFeedbackRequest):
    faqs.add_feedback(faq_id, payload.is_useful)
    return {"message": "Thank you for your feedback"}


@app.put("/api/faqs/{faq_id}", tags=["FAQs"], summary="Update FAQ")
def update_faq(faq_id: int, payload: FAQUpdate, current_user: dict = Depends(require_admin)):
    return faqs.update_faq(faq_id, payload.model_dump(exclude_unset=True), current_user["id"])


@app.delete("/api/faqs/{faq_id}", tags=["FAQs"], summary="Delete FAQ")
def delete_faq(faq_id: int, current_user: dict = Depends(require_admin)):
    faqs.delete_faq(faq_id, current_user["id"])
    return {"message": "FAQ deleted successfully"}


# ============================================================
# Admin Endpoints
# ============================================================

@app.get("/api/admin/dashboard", tags=["Admin"], summary="Dashboard overview")
def get_dashboard(current_user: dict = Depends(require_admin)):
    """Headline numbers plus the full chat, user, document and FAQ analytics."""
    chat_stats = chats.get_chat_analytics()
    user_stats = users.get_user_stats()
    document_stats = documents.get_document_analytics()
    faq_stats = faqs.get_faq_analytics()

    return {
        "overview": {
            "total_users": user_stats["total_users"],
            "active_users": user_stats["active_users"],
            "active_users_today": user_stats["active_today"],
            "total_chats": chat_stats["total_chats"],
            "total_messages": chat_stats["total_messages"],
            "messages_today": chat_stats["messages_today"],
            "total_documents": document_stats["total_documents"],
            "total_faqs": faq_stats["total_faqs"],
            "recent_chats": chats.get_recent_chats(5),
            "top_documents": documents.get_top_documents(5),
        },
        "users": user_stats,
        "chats": chat_stats,
        "documents": document_stats,
        "faqs": faq_stats,
    }


@app.get("/api/admin/chats", tags=["Admin"], summary="List all chats")
def admin_list_chats(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    current_user: dict = Depends(require_admin),
):
    return chats.get_all_chats(page, limit, user_id, status, search)


@app.get("/api/admin/chats/{chat_id}", tags=["Admin"], summary="Get any chat")
def admin_get_chat(chat_id: int, current_user: dict = Depends(require_admin)):
    return chats.get_chat_by_id(chat_id)


@app.delete("/api/admin/chats/{chat_id}", tags=["Admin"], summary="Delete any chat")
def admin_delete_chat(chat_id: int, current_user: dict = Depends(require_admin)):
    chats.delete_chat(chat_id)
    logger.info("Chat %s deleted by admin %s", chat_id, current_user["id"])
    return {"message": "Chat deleted successfully"}


@app.get("/api/admin/users", tags=["Admin"], summary="List users")
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    role: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    current_user: dict = Depends(require_admin),
):
    return users.get_users(page, limit, role, search, is_active)


@app.put("/api/admin/users/{user_id}", tags=["Admin"], summary="Update user")
def admin_update_user(user_id: int, payload: UserUpdate, current_user: dict = Depends(require_admin)):
    return users.update_user(
        user_id, payload.model_dump(exclude_unset=True), current_user["id"], current_user["role"]
    )


@app.put("/api/admin/users/{user_id}/role", tags=["Admin"], summary="Change user role")
def admin_update_user_role(user_id: int, payload: RoleUpdate, current_user: dict = Depends(require_admin)):
    return users.update_user(user_id, {"role": payload.role}, current_user["id"], current_user["role"])


@app.put("/api/admin/users/{user_id}/status", tags=["Admin"], summary="Activate or deactivate user")
def admin_update_user_status(user_id: int, payload: StatusUpdate, current_user: dict = Depends(require_admin)):
    user = users.update_user(user_id, {"is_active": payload.is_active}, current_user["id"], current_user["role"])
    state = "activated" if payload.is_active else "deactivated"
    return {"message": f"User {state} successfully", "user": user}


@app.delete("/api/admin/users/{user_id}", tags=["Admin"], summary="Deactivate user")
def admin_delete_user(user_id: int, current_user: dict = Depends(require_admin)):
    users.delete_user(user_id, current_user["id"])
    return {"message": "User deactivated successfully"}


@app.get("/api/admin/system/health", tags=["Admin"], summary="System health and metrics")
def system_health(current_user: dict = Depends(require_admin)):
    """Process uptime and memory, host memory and the AI provider in use."""
    process = psutil.Process(os.getpid())
    uptime = time.time() - process.create_time()
    memory = process.memory_info()
    system_memory = psutil.virtual_memory()
    provider, model = ai_service.get_runtime_provider_model()

    return {
        "status": "healthy",
        "uptime": int(uptime),
        "uptime_formatted": format_uptime(uptime),
        "memory": {
            "rss": format_file_size(memory.rss),
            "vms": format_file_size(memory.vms),
            "system_percent": system_memory.percent,
            "system_total": format_file_size(system_memory.total),
        },
        "database": pool_status(),
        "worker_running": bool(_worker and _worker[0].is_alive()),
        "ai_provider": provider,
        "ai_model": model,
        "environment": "production" if Config.PROD else "development",
        "python_version": platform.python_version(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ============================================================
# User Lookup Endpoints
# ============================================================

@app.get("/api/users/search", tags=["Users"], summary="Search users")
def search_users(
    q: Optional[str] = None,
    limit: int = Query(10, ge=1),
    current_user: dict = Depends(get_current_user),
):
    return {"users": users.search_users(q, limit)}


@app.get("/api/users/{user_id}", tags=["Users"], summary="Get user")
def get_user(user_id: int, current_user: dict = Depends(get_current_user)):
    return users.get_user_by_id(user_id)


# ============================================================
# Multi-Model Selection Endpoints
# ============================================================

@app.get("/api/models", tags=["Models"], summary="List available models")
def get_models(current_user: dict = Depends(get_current_user)):
    """Return available LLM providers and their models, along with the currently active provider and model."""
    return ai_service.list_models()


@app.post("/api/models/select", tags=["Models"], summary="Switch active model")
def select_model(payload: ModelSelectRequest, current_user: dict = Depends(require_admin)):
    """Switch the active LLM provider and model at runtime. Validates that the provider is configured and the model is in the allowed list."""
    provider, model = ai_service.set_runtime_provider_model(payload.provider, payload.model)
    logger.info("Active model switched to %s/%s by admin %s", provider, model, current_user["id"])
    return {"status": "ok", "provider": provider, "model": model}


@app.on_event("startup")
async def startup():
    global _worker

    Config.validate()
    init_pool()
    if not bootstrap_schema():
        logger.error("Schema bootstrap failed; requests touching the database will error")

    if Config.RUN_WORKER:
        from supportdesk.worker import start_background_worker
        _worker = start_background_worker()

    logger.info("FastAPI application startup complete")


@app.on_event("shutdown")
async def shutdown():
    if _worker:
        thread, stop_event = _worker
        stop_event.set()
        thread.join(timeout=Config.WORKER_POLL_INTERVAL + 1)
    close_pool()
    logger.info("FastAPI application shutdown complete")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
