import json

import pytest

from supportdesk.export import content_disposition, export_filename, render_export
from supportdesk.utils import (
    build_or_tsquery,
    build_pagination,
    format_file_size,
    format_uptime,
    normalize_pagination,
    parse_tags,
)

CHAT = {
    "id": 7,
    "title": "Password reset",
    "created_at": "2025-01-01T00:00:00",
    "messages": [
        {"role": "user", "content": "How do I reset my password?", "created_at": "2025-01-01T00:00:01"},
        {"role": "assistant", "content": "Use the Forgot password link.", "created_at": None},
    ],
}


@pytest.mark.parametrize("page, limit, expected", [
    (None, None, (1, 20, 0)),
    (3, 10, (3, 10, 20)),
    (0, -5, (1, 20, 0)),
    (2, 500, (2, 100, 100)),
])
def test_normalize_pagination(page, limit, expected):
    assert normalize_pagination(page, limit) == expected


def test_build_pagination():
    assert build_pagination(2, 10, 25) == {
        "page": 2, "limit": 10, "total": 25, "pages": 3, "has_next": True, "has_prev": True,
    }
    assert build_pagination(1, 10, 0)["pages"] == 0


def test_build_or_tsquery():
    assert build_or_tsquery("Reset, reset my PASSWORD!") == "reset | my | password"
    assert build_or_tsquery("?!") is None
    assert build_or_tsquery("") is None
    assert build_or_tsquery(" ".join(f"w{i}" for i in range(50))).count("|") == 31


def test_parse_tags():
    assert parse_tags("billing, refunds ,,") == ["billing", "refunds"]
    assert parse_tags(["a", " ", "b "]) == ["a", "b"]
    assert parse_tags(None) == []


def test_format_file_size():
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512.0 B"
    assert format_file_size(10 * 1024 * 1024) == "10.0 MB"


def test_format_uptime():
    assert format_uptime(5) == "5s"
    assert format_uptime(3600) == "1h 0m 0s"
    assert format_uptime(90061) == "1d 1h 1m 1s"


def test_export_markdown_labels_speakers():
    text = render_export(CHAT, "md")
    assert text.startswith("# Password reset")
    assert "### **You** (2025-01-01T00:00:01)" in text
    assert "Use the Forgot password link." in text
    assert "*Chat started: 2025-01-01T00:00:00*" in text


def test_export_json_structure():
    data = json.loads(render_export(CHAT, "json"))
    assert data["message_count"] == 2
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
    assert data["title"] == "Password reset"


def test_export_rejects_unknown_format():
    with pytest.raises(ValueError):
        render_export(CHAT, "pdf")


def test_export_filename():
    assert export_filename("Where's my refund?", "json") == "chat_Wheres_my_refund.json"
    assert export_filename("", "md") == "chat_chat.md"
    assert export_filename("???", "md") == "chat_chat.md"


def test_content_disposition_is_latin1_safe():
    assert content_disposition("Refund question", "md") == 'attachment; filename="chat_Refund_question.md"'

    header = content_disposition("Café refund", "json")
    assert header == (
        'attachment; filename="chat_Caf_refund.json"; '
        "filename*=UTF-8''chat_Caf%C3%A9_refund.json"
    )
    header.encode("latin-1")


def test_json_log_formatter_includes_request_context():
    import logging

    from supportdesk.logging_config import JSONFormatter

    record = logging.LogRecord("support.access", logging.INFO, __file__, 10, "GET %s %d", ("/api/health", 200), None)
    record.request_id = "req-1"
    record.status_code = 200

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "GET /api/health 200"
    assert entry["request_id"] == "req-1"
    assert entry["status_code"] == 200
    assert "method" not in entry
