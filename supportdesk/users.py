"""Administrative user management and user statistics."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from psycopg2.extras import RealDictCursor

from .auth import USER_COLUMNS, public_user, validate_name
from .config import ROLES
from .db import get_db
from .utils import build_pagination, iso, normalize_pagination

logger = logging.getLogger("support.users")

UPDATABLE_FIELDS = ("first_name", "last_name", "role", "is_active", "is_verified")


def get_users(
    page: int = 1,
    limit: int = 20,
    role: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Dict[str, Any]:
    """List users, newest first, filtered by role, status and a search term."""
    page, limit, offset = normalize_pagination(page, limit)

    conditions = []
    params: List[Any] = []
    if role:
        conditions.append("role = %s")
        params.append(role)
    if is_active is not None:
        conditions.append("is_active = %s")
        params.append(is_active)
    if search:
        pattern = f"%{search}%"
        conditions.append("(email ILIKE %s OR first_name ILIKE %s OR last_name ILIKE %s)")
        params.extend([pattern, pattern, pattern])
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {USER_COLUMNS} FROM users {where} ORDER BY created_at DESC LIMIT %s OFFSET %s",
                (*params, limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM users {where}", params)
            total = cur.fetchone()["total"]

    return {
        "users": [public_user(r) for r in rows],
        "pagination": build_pagination(page, limit, total),
    }


def get_user_by_id(user_id: int) -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
    if not row:
        raise HTTPException(404, "User not found")
    return public_user(row)


def update_user(
    user_id: int, updates: Dict[str, Any], admin_id: int, admin_role: str = "admin"
) -> Dict[str, Any]:
    """Apply admin edits limited to names, role and account flags.

    Only a super admin may edit a super admin account or grant that role.
    """
    fields = {k: updates[k] for k in UPDATABLE_FIELDS if k in updates and updates[k] is not None}

    if "first_name" in fields:
        fields["first_name"] = validate_name(fields["first_name"], "First name")
    if "last_name" in fields:
        fields["last_name"] = validate_name(fields["last_name"], "Last name")
    if "role" in fields and fields["role"] not in ROLES:
        raise HTTPException(400, f"Invalid role. Allowed roles: {', '.join(ROLES)}")

    if not fields:
        return get_user_by_id(user_id)

    assignments = ", ".join(f"{name} = %s" for name in fields)
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT role FROM users WHERE id = %s FOR UPDATE", (user_id,))
            target = cur.fetchone()
            if not target:
                raise HTTPException(404, "User not found")
            if admin_role != "super_admin" and "super_admin" in (target["role"], fields.get("role")):
                raise HTTPException(403, "Only a super admin can change super admin accounts")

            cur.execute(
                f"""
                UPDATE users
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                RETURNING {USER_COLUMNS}
                """,
                (*fields.values(), user_id),
            )
            row = cur.fetchone()
            if fields.get("is_active") is False:
                cur.execute("UPDATE users SET refresh_token = NULL WHERE id = %s", (user_id,))
        conn.commit()

    logger.info("User %s updated by admin %s: %s", user_id, admin_id, sorted(fields))
    return public_user(row)


def delete_user(user_id: int, admin_id: int) -> None:
    """Deactivate a user account. Super admins cannot be deleted."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT role FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(404, "User not found")
            if row[0] == "super_admin":
                raise HTTPException(403, "Cannot delete super admin")

            cur.execute(
                """
                UPDATE users
                SET is_active = FALSE, refresh_token = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (user_id,),
            )
        conn.commit()

    logger.info("User %s deleted by admin %s", user_id, admin_id)


def get_user_stats() -> Dict[str, Any]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE is_active) AS active,
                       COUNT(*) FILTER (WHERE last_login_at >= CURRENT_DATE) AS active_today,
                       COUNT(*) FILTER (WHERE created_at >= date_trunc('month', CURRENT_DATE)) AS new_this_month
                FROM users
            """)
            totals = cur.fetchone()

            cur.execute("SELECT role, COUNT(*) AS count FROM users GROUP BY role ORDER BY role")
            by_role = {r["role"]: r["count"] for r in cur.fetchall()}

            cur.execute("""
                SELECT DATE(created_at) AS day, COUNT(*) AS count
                FROM users
                WHERE created_at >= CURRENT_DATE - INTERVAL '29 days'
                GROUP BY DATE(created_at)
                ORDER BY day
            """)
            by_day = [{"date": iso(r["day"]), "count": r["count"]} for r in cur.fetchall()]

    return {
        "total_users": totals["total"],
        "active_users": totals["active"],
        "active_today": totals["active_today"],
        "new_users_this_month": totals["new_this_month"],
        "users_by_role": by_role,
        "users_by_day": by_day,
    }


def search_users(query: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Find active users by email or name."""
    if not query or not query.strip():
        raise HTTPException(400, "Search query is required")
    pattern = f"%{query.strip()}%"
    limit = max(1, min(limit, 50))

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, email, first_name, last_name, avatar
                FROM users
                WHERE is_active
                  AND (email ILIKE %s OR first_name ILIKE %s OR last_name ILIKE %s)
                ORDER BY first_name, last_name
                LIMIT %s
                """,
                (pattern, pattern, pattern, limit),
            )
            rows = cur.fetchall()

    return [
        {
            "id": r["id"],
            "email": r["email"],
            "first_name": r["first_name"],
            "last_name": r["last_name"],
            "full_name": f"{r['first_name']} {r['last_name']}",
            "avatar": r["avatar"],
        }
        for r in rows
    ]
