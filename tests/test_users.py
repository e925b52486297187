import pytest
from fastapi import HTTPException

from supportdesk import users

USER_ROW = {
    "id": 9,
    "email": "owner@example.com",
    "first_name": "Site",
    "last_name": "Owner",
    "role": "super_admin",
    "is_active": False,
    "is_verified": True,
}


def test_admin_cannot_deactivate_super_admin(fake_db):
    cur = fake_db(users, fetchone=[{"role": "super_admin"}])

    with pytest.raises(HTTPException) as exc:
        users.update_user(9, {"is_active": False}, admin_id=2)

    assert exc.value.status_code == 403
    assert "FOR UPDATE" in cur.queries[0][0]
    assert len(cur.queries) == 1


def test_admin_cannot_grant_super_admin(fake_db):
    cur = fake_db(users, fetchone=[{"role": "user"}])

    with pytest.raises(HTTPException) as exc:
        users.update_user(1, {"role": "super_admin"}, admin_id=2, admin_role="admin")

    assert exc.value.status_code == 403
    assert not any(sql.startswith("UPDATE") for sql, _ in cur.queries)


def test_super_admin_may_edit_super_admin(fake_db):
    cur = fake_db(users, fetchone=[{"role": "super_admin"}, USER_ROW])

    user = users.update_user(9, {"is_active": False}, admin_id=3, admin_role="super_admin")

    assert user["is_active"] is False
    assert cur.queries[-1] == ("UPDATE users SET refresh_token = NULL WHERE id = %s", (9,))


def test_update_missing_user(fake_db):
    fake_db(users)
    with pytest.raises(HTTPException) as exc:
        users.update_user(404, {"first_name": "Ann"}, admin_id=2)
    assert exc.value.status_code == 404


def test_admin_route_passes_caller_role(client, as_admin, monkeypatch):
    calls = []

    def fake_update(user_id, updates, admin_id, admin_role):
        calls.append(admin_role)
        raise HTTPException(403, "Only a super admin can change super admin accounts")

    monkeypatch.setattr(users, "update_user", fake_update)
    res = client.put("/api/admin/users/9/role", json={"role": "super_admin"})

    assert res.status_code == 403
    assert calls == ["admin"]
