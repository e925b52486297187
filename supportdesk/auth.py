"""
Authentication module for JWT-based user authentication.

Provides password hashing, access/refresh token handling, account
registration and login, profile maintenance, password reset and the
FastAPI dependencies that guard the API routes.
"""
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import jwt
import psycopg2
from psycopg2.extras import RealDictCursor
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import Config, ADMIN_ROLES
from .db import get_db
from .utils import iso

logger = logging.getLogger("support.auth")

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")

USER_COLUMNS = """
    id, email, first_name, last_name, role, avatar, is_active, is_verified,
    last_login_at, created_at, updated_at
"""


def hash_password(password: str) -> str:
    """Hash a plain text password using bcrypt.

    bcrypt has a hard 72-byte limit. Truncate to stay within it.
    """
    return pwd_context.hash(password[:72])


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain text password against a bcrypt hash."""
    return pwd_context.verify(plain_password[:72], hashed_password)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email or raise 400 if it is malformed."""
    email = normalize_email(email)
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Please provide a valid email")
    return email


def validate_password_strength(password: str) -> None:
    """Require 8+ characters with an uppercase letter, a lowercase letter and a digit."""
    if not password or len(password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        raise HTTPException(
            status_code=400,
            detail="Password must contain at least one uppercase letter, one lowercase letter, and one number",
        )


def validate_name(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    if len(value) > 50:
        raise HTTPException(status_code=400, detail=f"{field} cannot exceed 50 characters")
    return value


# ============================================================
# Tokens
# ============================================================

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token.

    Args:
        data: Claims to encode (user_id, email, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=Config.JWT_EXPIRY_HOURS))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    try:
        payload = jwt.decode(token, Config.JWT_SECRET, algorithms=[Config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def create_refresh_token(user_id: int) -> str:
    """Create a long-lived refresh token signed with the refresh secret.

    A random ``jti`` makes every issued token distinct, so rotation always
    invalidates the previous one.
    """
    expire = datetime.now(timezone.utc) + timedelta(days=Config.JWT_REFRESH_EXPIRY_DAYS)
    payload = {
        "user_id": user_id,
        "type": "refresh",
        "jti": secrets.token_hex(8),
        "exp": expire,
    }
    return jwt.encode(payload, Config.JWT_REFRESH_SECRET, algorithm=Config.JWT_ALGORITHM)


def decode_refresh_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, Config.JWT_REFRESH_SECRET, algorithms=[Config.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.get("type") != "refresh" or payload.get("user_id") is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return payload


def _issue_tokens(cur, user: Dict[str, Any]) -> Dict[str, str]:
    """Create a token pair and persist the refresh token for *user*."""
    access_token = create_access_token(
        data={"user_id": user["id"], "email": user["email"], "role": user["role"]}
    )
    refresh_token = create_refresh_token(user["id"])
    cur.execute(
        "UPDATE users SET refresh_token = %s WHERE id = %s",
        (refresh_token, user["id"]),
    )
    return {"access_token": access_token, "refresh_token": refresh_token, "token_type": "bearer"}


# ============================================================
# Users
# ============================================================

def public_user(row: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a users row for API responses (never includes secrets)."""
    return {
        "id": row["id"],
        "email": row["email"],
        "first_name": row["first_name"],
        "last_name": row["last_name"],
        "full_name": f"{row['first_name']} {row['last_name']}",
        "role": row["role"],
        "avatar": row.get("avatar"),
        "is_active": row["is_active"],
        "is_verified": row["is_verified"],
        "last_login": iso(row.get("last_login_at")),
        "created_at": iso(row.get("created_at")),
        "updated_at": iso(row.get("updated_at")),
    }


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    """Return the users row for *user_id* (without secrets), or None."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            return cur.fetchone()


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE email = %s", (normalize_email(email),))
            return cur.fetchone()


def register(email: str, password: str, first_name: str, last_name: str) -> Dict[str, Any]:
    """Create a regular user account and sign it in.

    Self-registration always produces role ``user``; elevated roles are
    granted by an administrator.

    Raises:
        HTTPException: 400 on invalid input, 409 if the email is taken
    """
    email = validate_email(email)
    validate_password_strength(password)
    first_name = validate_name(first_name, "First name")
    last_name = validate_name(last_name, "Last name")

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            try:
                cur.execute(f"""
                    INSERT INTO users (email, password_hash, first_name, last_name, role)
                    VALUES (%s, %s, %s, %s, 'user')
                    RETURNING {USER_COLUMNS}
                """, (email, hash_password(password), first_name, last_name))
            except psycopg2.IntegrityError:
                conn.rollback()
                raise HTTPException(status_code=409, detail="User already exists")
            user = cur.fetchone()
            tokens = _issue_tokens(cur, user)
        conn.commit()

    logger.info("New user registered: %s", email)
    return {"user": public_user(user), **tokens}


def login(email: str, password: str) -> Dict[str, Any]:
    """Authenticate by email and password.

    Raises:
        HTTPException: 401 for bad credentials or a deactivated account
    """
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = %s",
                (normalize_email(email),),
            )
            user = cur.fetchone()

            if not user or not verify_password(password or "", user["password_hash"]):
                raise HTTPException(status_code=401, detail="Invalid email or password")

            if not user["is_active"]:
                raise HTTPException(status_code=401, detail="Account has been deactivated")

            cur.execute(
                "UPDATE users SET last_login_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING last_login_at",
                (user["id"],),
            )
            user["last_login_at"] = cur.fetchone()["last_login_at"]
            tokens = _issue_tokens(cur, user)
        conn.commit()

    logger.info("User logged in: %s", user["email"])
    return {"user": public_user(user), **tokens}


def refresh_tokens(refresh_token: str) -> Dict[str, Any]:
    """Exchange a valid refresh token for a new token pair (rotation)."""
    if not refresh_token:
        raise HTTPException(status_code=400, detail="Refresh token is required")

    payload = decode_refresh_token(refresh_token)

    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {USER_COLUMNS}, refresh_token FROM users WHERE id = %s",
                (payload["user_id"],),
            )
            user = cur.fetchone()
            if not user or not user["is_active"] or user["refresh_token"] != refresh_token:
                raise HTTPException(status_code=401, detail="Invalid or expired token")
            tokens = _issue_tokens(cur, user)
        conn.commit()

    return tokens


def logout(user_id: int) -> None:
    """Invalidate the stored refresh token."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE users SET refresh_token = NULL WHERE id = %s", (user_id,))
        conn.commit()


def get_profile(user_id: int) -> Dict[str, Any]:
    user = get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return public_user(user)


def update_profile(user_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Update the caller's own first_name, last_name and avatar."""
    fields = {}
    if updates.get("first_name") is not None:
        fields["first_name"] = validate_name(updates["first_name"], "First name")
    if updates.get("last_name") is not None:
        fields["last_name"] = validate_name(updates["last_name"], "Last name")
    if "avatar" in updates:
        fields["avatar"] = updates["avatar"]

    if not fields:
        user = get_user_by_id(user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return public_user(user)

    assignments = ", ".join(f"{name} = %s" for name in fields)
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP "
                f"WHERE id = %s RETURNING {USER_COLUMNS}",
                (*fields.values(), user_id),
            )
            user = cur.fetchone()
        conn.commit()

    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


def change_password(user_id: int, current_password: str, new_password: str) -> None:
    """Change the password after verifying the current one.

    Raises:
        HTTPException: 400 if the current password is wrong or the new one is weak
    """
    if not current_password or not new_password:
        raise HTTPException(status_code=400, detail="Current and new password required")
    validate_password_strength(new_password)

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT password_hash FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="User not found")

            if not verify_password(current_password, row[0]):
                raise HTTPException(status_code=400, detail="Current password is incorrect")

            cur.execute(
                "UPDATE users SET password_hash = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (hash_password(new_password), user_id),
            )
        conn.commit()

    logger.info("Password changed for user %s", user_id)


# ============================================================
# FastAPI dependencies
# ============================================================

def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
) -> Dict[str, Any]:
    """FastAPI dependency to get the current authenticated user.

    Supports bearer token in `Authorization: Bearer ...` or an HttpOnly cookie named `auth_token`.
    """
    if credentials and getattr(credentials, "credentials", None):
        token = credentials.credentials
    else:
        token = request.cookies.get("auth_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(token)

    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = get_user_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user["is_active"]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account has been deactivated")

    return public_user(user)


def require_roles(*roles: str):
    """Build a dependency that only admits users holding one of *roles*."""

    def dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user["role"] not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {' or '.join(roles)}",
            )
        return current_user

    return dependency


require_admin = require_roles(*ADMIN_ROLES)


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") in ADMIN_ROLES


# ============================================================
# Password Reset
# ============================================================

def _hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a reset token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _cleanup_expired_tokens(conn) -> None:
    """Delete expired or used password-reset tokens (lazy GC)."""
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM password_resets WHERE expires_at < NOW() OR used = TRUE"
        )
    conn.commit()


def generate_reset_token(email: str) -> Optional[str]:
    """Create a one-hour password-reset token for *email*.

    The raw token is returned so the caller can embed it in a link. Only
    its SHA-256 hash is stored. Returns None for unknown or inactive
    accounts; callers still answer 200 so emails cannot be enumerated.
    """
    user = get_user_by_email(email)
    if user is None or not user["is_active"]:
        return None

    raw_token = secrets.token_urlsafe(48)

    with get_db() as conn:
        _cleanup_expired_tokens(conn)

        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO password_resets (user_id, token_hash, expires_at)
                VALUES (%s, %s, NOW() + INTERVAL '1 hour')
                """,
                (user["id"], _hash_token(raw_token)),
            )
        conn.commit()

    return raw_token


def reset_password(token: str, new_password: str) -> bool:
    """Validate a reset token and update the user's password.

    The token is single-use and existing refresh tokens are revoked.

    Returns:
        True if the password was changed, False if the token is invalid,
        expired, or already used.
    """
    validate_password_strength(new_password)

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, user_id
                FROM password_resets
                WHERE token_hash = %s
                  AND used = FALSE
                  AND expires_at > NOW()
                """,
                (_hash_token(token),),
            )
            row = cur.fetchone()

            if not row:
                return False

            reset_id, user_id = row

            cur.execute(
                """
                UPDATE users
                SET password_hash = %s, refresh_token = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (hash_password(new_password), user_id),
            )
            cur.execute(
                "UPDATE password_resets SET used = TRUE WHERE id = %s",
                (reset_id,),
            )
        conn.commit()

    return True
