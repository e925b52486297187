"""Chat transcript export.

Renders a chat (as shaped by ``chats.get_chat_for_export``) to Markdown or
JSON. Both take a dict like::

    {
        "id": 7,
        "title": "Password reset",
        "created_at": "2025-01-01T00:00:00",
        "messages": [
            {"role": "user", "content": "How do I reset my password?", "created_at": "..."},
            {"role": "assistant", "content": "Click 'Forgot password'...", "created_at": "..."},
        ]
    }
"""
import json
import re
from datetime import datetime
from typing import Any, Dict
from urllib.parse import quote

from .config import Config

EXPORT_FORMATS = {
    "md": ("text/markdown; charset=utf-8", "md"),
    "json": ("application/json", "json"),
}

_ASCII_UNSAFE = r"[^A-Za-z0-9 _-]"
_UNICODE_UNSAFE = r"[^\w\s-]"


def _assistant_label() -> str:
    return f"{Config.COMPANY_NAME} Support" if Config.COMPANY_NAME else "Support Assistant"


def export_markdown(chat: Dict[str, Any]) -> str:
    title = chat.get("title") or "Untitled"
    created = chat.get("created_at") or ""
    assistant = _assistant_label()

    lines = [
        f"# {title}",
        "",
        f"*Exported on {datetime.now().strftime('%Y-%m-%d %H:%M')}*",
        "",
    ]
    if created:
        lines += [f"*Chat started: {created}*", ""]
    lines += ["---", ""]

    for msg in chat.get("messages", []):
        label = "You" if msg.get("role") == "user" else assistant
        stamp = msg.get("created_at")
        heading = f"### **{label}**" + (f" ({stamp})" if stamp else "")
        lines += [heading, "", msg.get("content", ""), "", "---", ""]

    return "\n".join(lines)


def export_json(chat: Dict[str, Any]) -> str:
    messages = chat.get("messages", [])
    data = {
        "id": chat.get("id"),
        "title": chat.get("title") or "Untitled",
        "created_at": chat.get("created_at") or "",
        "exported_at": datetime.now().isoformat(),
        "company": Config.COMPANY_NAME,
        "message_count": len(messages),
        "messages": [
            {
                "role": m.get("role", "unknown"),
                "content": m.get("content", ""),
                "created_at": m.get("created_at"),
            }
            for m in messages
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def _safe_title(title: str, pattern: str) -> str:
    safe_title = re.sub(pattern, "", title or "").strip()[:50] or "chat"
    return re.sub(r"\s+", "_", safe_title)


def export_filename(title: str, fmt: str) -> str:
    """Build an ASCII download filename like ``chat_Password_reset.md``.

    >>> export_filename("Where's my refund?", "json")
    'chat_Wheres_my_refund.json'
    """
    return f"chat_{_safe_title(title, _ASCII_UNSAFE)}.{EXPORT_FORMATS[fmt][1]}"


def content_disposition(title: str, fmt: str) -> str:
    """Attachment header for an export.

    Response headers are latin-1, so non-ASCII titles go in an RFC 5987
    ``filename*`` next to the ASCII ``filename``.
    """
    ascii_name = export_filename(title, fmt)
    header = f'attachment; filename="{ascii_name}"'
    full_name = f"chat_{_safe_title(title, _UNICODE_UNSAFE)}.{EXPORT_FORMATS[fmt][1]}"
    if full_name != ascii_name:
        header += f"; filename*=UTF-8''{quote(full_name)}"
    return header


def render_export(chat: Dict[str, Any], fmt: str) -> str:
    """Render *chat* in the given format ("md" or "json").

    Raises:
        ValueError: If the format is unknown.
    """
    if fmt == "md":
        return export_markdown(chat)
    if fmt == "json":
        return export_json(chat)
    raise ValueError(f"Unsupported export format: {fmt}")
