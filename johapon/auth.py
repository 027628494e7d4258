from __future__ import annotations

import base64
import logging
import os
from typing import Any, Callable, Optional

from fastapi import HTTPException, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from johapon.config import env_flag, env_int
from johapon.db import db_conn, get_user

logger = logging.getLogger("johapon.auth")

ROLE_SYSTEM_ADMIN = "SYSTEM_ADMIN"
ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"
ADMIN_ROLES = {ROLE_SYSTEM_ADMIN, ROLE_ADMIN}

_WEAK_SECRET_MARKERS = {
    "change-me",
    "change-this-secret",
    "johapon-dev-secret",
    "secret",
}
_SESSION_SALT = "johapon-session"


def _read_secret_key() -> str:
    raw = (os.getenv("JOHAPON_SECRET_KEY") or "").strip()
    lowered = raw.lower()
    if raw and lowered not in _WEAK_SECRET_MARKERS and len(raw) >= 16:
        return raw
    if not raw:
        generated = base64.urlsafe_b64encode(os.urandom(48)).decode("ascii")
        os.environ.setdefault("JOHAPON_SECRET_KEY", generated)
        return os.environ["JOHAPON_SECRET_KEY"]
    if env_flag("ALLOW_INSECURE_DEFAULTS"):
        return raw
    if lowered in _WEAK_SECRET_MARKERS:
        raise RuntimeError("JOHAPON_SECRET_KEY uses an insecure default-like value")
    raise RuntimeError("JOHAPON_SECRET_KEY must be at least 16 characters")


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(_read_secret_key(), salt=_SESSION_SALT)


def make_session(user_id: int, extras: dict[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {"uid": int(user_id)}
    if extras:
        payload.update(extras)
    return _serializer().dumps(payload)


def read_session(token: str) -> Optional[dict]:
    max_age = env_int("JOHAPON_SESSION_MAX_AGE", 43200, lo=60)
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        return None
    except BadSignature:
        return None
    return data if isinstance(data, dict) else None


def _resolve_user_id(request: Request) -> int:
    header = (request.headers.get("Authorization") or "").strip()
    if header.lower().startswith("bearer "):
        data = read_session(header[7:].strip())
        if not data or "uid" not in data:
            raise HTTPException(status_code=401, detail="invalid or expired session")
        return int(data["uid"])

    if env_flag("JOHAPON_TRUST_USER_HEADER"):
        raw = (request.headers.get("X-User-Id") or "").strip()
        if raw:
            try:
                return int(raw)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail="X-User-Id must be an integer") from exc

    raise HTTPException(status_code=401, detail="authorization required")


def get_current_user(request: Request) -> dict:
    """
    Authorization: Bearer <session> 또는 (개발용) X-User-Id 헤더로 사용자 확인.
    차단된 사용자는 403.
    """
    uid = _resolve_user_id(request)
    with db_conn() as db:
        row = get_user(db, uid)
    if not row:
        raise HTTPException(status_code=401, detail=f"unknown user: {uid}")
    if int(row.get("is_blocked") or 0) == 1:
        raise HTTPException(status_code=403, detail="blocked user")

    role = (row.get("role") or ROLE_USER).strip().upper()
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row.get("email"),
        "role": role,
        "union_id": row.get("union_id"),
        "user_status": row.get("user_status"),
        "is_admin": role in ADMIN_ROLES,
        "is_system_admin": role == ROLE_SYSTEM_ADMIN,
    }


def get_optional_user(request: Request) -> Optional[dict]:
    has_bearer = (request.headers.get("Authorization") or "").strip()
    has_header = env_flag("JOHAPON_TRUST_USER_HEADER") and (request.headers.get("X-User-Id") or "").strip()
    if not has_bearer and not has_header:
        return None
    return get_current_user(request)


def require_role(*allowed_roles: str) -> Callable:
    """
    Depends(require_role("ADMIN", "SYSTEM_ADMIN")) 형태로 사용
    """
    allowed = set(r.strip().upper() for r in allowed_roles if r and r.strip())

    def _dep(request: Request) -> dict:
        user = get_current_user(request)
        if allowed and user["role"] not in allowed:
            raise HTTPException(status_code=403, detail="forbidden")
        return user

    return _dep


require_admin = require_role(ROLE_ADMIN, ROLE_SYSTEM_ADMIN)
require_system_admin = require_role(ROLE_SYSTEM_ADMIN)


def can_access_union(user: dict, union_id: Optional[int]) -> bool:
    if user.get("is_system_admin"):
        return True
    if union_id is None or user.get("union_id") is None:
        return False
    return int(user["union_id"]) == int(union_id)


def ensure_union_access(user: dict, union_id: Optional[int]) -> None:
    if not can_access_union(user, union_id):
        raise HTTPException(status_code=403, detail="no access to this union")


def client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return "unknown"
