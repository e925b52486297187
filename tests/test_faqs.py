import psycopg2
import pytest
from fastapi import HTTPException

from supportdesk import faqs

FAQ_ROW = {
    "id": 3,
    "question": "Do you offer refunds?",
    "answer": "Within 30 days.",
    "category": "Billing",
    "tags": [],
    "alternative_questions": [],
    "keywords": ["offer", "refunds"],
    "priority": 80,
    "is_active": True,
    "is_public": True,
    "created_by": 2,
    "updated_by": 2,
    "view_count": 10,
    "useful_count": 3,
    "not_useful_count": 1,
    "last_used_at": None,
    "created_at": None,
    "updated_at": None,
}


def test_extract_keywords_drops_stop_words_and_short_words():
    assert faqs.extract_keywords("How can I cancel my subscription?") == ["cancel", "subscription"]
    assert faqs.extract_keywords("") == []


def test_extract_keywords_keeps_first_ten():
    text = " ".join(f"word{i}" for i in range(15))
    assert len(faqs.extract_keywords(text)) == 10


def test_serialize_faq_usefulness_ratio():
    assert faqs.serialize_faq(FAQ_ROW)["usefulness_ratio"] == 75
    assert faqs.serialize_faq({**FAQ_ROW, "useful_count": 0, "not_useful_count": 0})["usefulness_ratio"] is None


def test_create_faq_extracts_keywords_and_defaults(fake_db):
    cur = fake_db(faqs, fetchone=[FAQ_ROW])
    faqs.create_faq({"question": "Do you offer refunds?", "answer": "Within 30 days."}, 2)

    sql, params = cur.queries[0]
    assert sql.startswith("INSERT INTO faqs")
    category, tags, alternatives, keywords, priority = params[2:7]
    assert category == "General"
    assert keywords == ["offer", "refunds"]
    assert priority == 0


def test_create_faq_requires_answer():
    with pytest.raises(HTTPException) as exc:
        faqs.create_faq({"question": "Anything?"}, 2)
    assert exc.value.detail == "Answer is required"


def test_create_faq_priority_bounds():
    with pytest.raises(HTTPException):
        faqs.create_faq({"question": "Q?", "answer": "A", "priority": 101}, 2)


def test_public_lookup_hides_private_faq(fake_db):
    fake_db(faqs, fetchone=[{**FAQ_ROW, "is_public": False}])
    with pytest.raises(HTTPException) as exc:
        faqs.get_faq_by_id(3, public_only=True)
    assert exc.value.status_code == 404


def test_update_question_refreshes_keywords(fake_db):
    cur = fake_db(faqs, fetchone=[FAQ_ROW])
    faqs.update_faq(3, {"question": "How do refunds work?"}, 2)
    sql, params = cur.queries[0]
    assert "keywords = %s" in sql
    assert ["refunds", "work"] in params


def test_bulk_import_collects_failures(monkeypatch):
    def fake_create(data, user_id):
        if not data.get("answer"):
            raise HTTPException(400, "Answer is required")
        if data["question"] == "boom":
            raise psycopg2.DataError("value too long")
        return {"id": 1}

    monkeypatch.setattr(faqs, "create_faq", fake_create)
    result = faqs.bulk_import(
        [
            {"question": "Q1", "answer": "A1"},
            {"question": "Q2"},
            {"question": "boom", "answer": "A3"},
        ],
        user_id=2,
    )

    assert result["success"] == 1
    assert result["failed"] == 2
    assert result["errors"][0] == {"question": "Q2", "error": "Answer is required"}


def test_bulk_import_reports_malformed_entries(fake_db):
    cur = fake_db(faqs, fetchone=[FAQ_ROW])
    result = faqs.bulk_import(
        [
            {"question": "Do you offer refunds?", "answer": "Within 30 days."},
            {"question": 123, "answer": "A"},
            {"question": "Q?", "answer": "A", "tags": 5},
            "not an object",
        ],
        user_id=2,
    )

    assert result["success"] == 1
    assert result["failed"] == 3
    assert [e["error"] for e in result["errors"]] == [
        "Question must be text",
        "Tags must be a list of strings",
        "FAQ entry must be an object",
    ]
    assert len(cur.queries) == 1


@pytest.mark.parametrize("field, value, detail", [
    ("tags", 5, "Tags must be a list of strings"),
    ("tags", ["ok", 7], "Tags must be a list of strings"),
    ("alternative_questions", {"q": 1}, "Alternative questions must be a list of strings"),
    ("category", 9, "Category must be text"),
    ("answer", ["A"], "Answer must be text"),
])
def test_create_faq_rejects_wrong_types(field, value, detail):
    data = {"question": "Q?", "answer": "A", field: value}
    with pytest.raises(HTTPException) as exc:
        faqs.create_faq(data, 2)
    assert exc.value.status_code == 400
    assert exc.value.detail == detail


def test_update_faq_rejects_non_list_tags(fake_db):
    cur = fake_db(faqs, fetchone=[FAQ_ROW])
    with pytest.raises(HTTPException) as exc:
        faqs.update_faq(3, {"tags": 5}, 2)
    assert exc.value.status_code == 400
    assert cur.queries == []


def test_public_faq_endpoints(client, monkeypatch):
    monkeypatch.setattr(faqs, "get_public_faqs", lambda category=None: [faqs.public_faq(FAQ_ROW)])
    monkeypatch.setattr(faqs, "get_categories", lambda: ["Billing", "General"])

    res = client.get("/api/faqs")
    assert res.status_code == 200
    assert res.json()["faqs"][0]["question"] == "Do you offer refunds?"
    assert "view_count" not in res.json()["faqs"][0]

    assert client.get("/api/faqs/categories").json() == {"categories": ["Billing", "General"]}


def test_faq_feedback_endpoint(client, monkeypatch):
    calls = []
    monkeypatch.setattr(faqs, "add_feedback", lambda faq_id, is_useful: calls.append((faq_id, is_useful)))
    res = client.post("/api/faqs/3/feedback", json={"is_useful": False})
    assert res.status_code == 200
    assert calls == [(3, False)]


def test_create_faq_requires_admin(client, as_user):
    res = client.post("/api/faqs", json={"question": "Q?", "answer": "A"})
    assert res.status_code == 403


def test_create_faq_as_admin(client, as_admin, monkeypatch):
    monkeypatch.setattr(faqs, "create_faq", lambda data, user_id: {**FAQ_ROW, "created_by": user_id})
    res = client.post("/api/faqs", json={"question": "Do you offer refunds?", "answer": "Within 30 days."})
    assert res.status_code == 201
    assert res.json()["created_by"] == as_admin["id"]
