"""
외부 공유용 접근 토큰 (시스템 관리자 발급)
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional

from johapon.db import db_conn, now_iso, parse_ts, row_dict, to_json
from johapon.errors import NotFoundError, ValidationError

logger = logging.getLogger("johapon.access_tokens")

KEY_LENGTH = 32


def new_token_key() -> str:
    # token_urlsafe(24) -> 32 chars
    return secrets.token_urlsafe(24)[:KEY_LENGTH]


def _is_active(row: dict, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    if row.get("deleted_at"):
        return False
    expires = parse_ts(row.get("expires_at"))
    if expires and now > expires:
        return False
    max_usage = row.get("max_usage")
    if max_usage is not None and int(row.get("usage_count") or 0) >= int(max_usage):
        return False
    return True


def list_tokens() -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            """
            SELECT t.*, un.name AS union_name
            FROM access_tokens t LEFT JOIN unions un ON un.id=t.union_id
            WHERE t.deleted_at IS NULL
            ORDER BY t.created_at DESC, t.id DESC
            """
        ).fetchall()
    out = []
    now = datetime.now()
    for r in rows:
        item = row_dict(r, ("allowed_pages",))
        item["is_active"] = _is_active(item, now)
        out.append(item)
    return out


def create_token(
    name: str,
    created_by: Optional[int],
    union_id: Optional[int] = None,
    access_scope: str = "all",
    allowed_pages: Optional[list[str]] = None,
    expires_in_days: Optional[int] = None,
    max_usage: Optional[int] = None,
) -> dict:
    name = (name or "").strip()
    if not name:
        raise ValidationError("토큰 이름은 필수입니다.")
    expires_at = None
    if expires_in_days:
        expires_at = (datetime.now() + timedelta(days=int(expires_in_days))).replace(microsecond=0).isoformat(sep=" ")
    now = now_iso()
    with db_conn() as db:
        cur = db.execute(
            """
            INSERT INTO access_tokens(key, name, union_id, access_scope, allowed_pages, expires_at,
                                      max_usage, created_by, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?)
            """,
            (
                new_token_key(),
                name,
                union_id,
                access_scope or "all",
                to_json(allowed_pages),
                expires_at,
                max_usage,
                created_by,
                now,
                now,
            ),
        )
        db.commit()
        row = row_dict(db.execute("SELECT * FROM access_tokens WHERE id=?", (cur.lastrowid,)).fetchone(), ("allowed_pages",))
    row["is_active"] = _is_active(row)
    logger.info("access token %s created by %s", row["id"], created_by)
    return row


def delete_token(token_id: int) -> None:
    with db_conn() as db:
        cur = db.execute(
            "UPDATE access_tokens SET deleted_at=?, updated_at=? WHERE id=? AND deleted_at IS NULL",
            (now_iso(), now_iso(), int(token_id)),
        )
        if cur.rowcount == 0:
            raise NotFoundError("token not found")
        db.commit()


def verify_token(token_key: str, path: str = "", ip: str = "unknown", user_agent: str = "") -> dict[str, Any]:
    token_key = (token_key or "").strip()
    if not token_key:
        return {"valid": False, "reason": "not_found"}
    with db_conn() as db:
        row = row_dict(db.execute("SELECT * FROM access_tokens WHERE key=?", (token_key,)).fetchone(), ("allowed_pages",))
        if not row:
            return {"valid": False, "reason": "not_found"}
        if row.get("deleted_at"):
            return {"valid": False, "reason": "deleted"}
        expires = parse_ts(row.get("expires_at"))
        if expires and datetime.now() > expires:
            return {"valid": False, "reason": "expired"}
        if row.get("max_usage") is not None and int(row["usage_count"] or 0) >= int(row["max_usage"]):
            return {"valid": False, "reason": "max_usage_reached"}

        now = now_iso()
        db.execute(
            "UPDATE access_tokens SET usage_count=usage_count+1, last_used_at=?, updated_at=? WHERE id=?",
            (now, now, row["id"]),
        )
        db.execute(
            """
            INSERT INTO access_token_logs(token_id, accessed_path, ip_address, user_agent, accessed_at)
            VALUES(?,?,?,?,?)
            """,
            (row["id"], path or None, ip, user_agent or None, now),
        )
        db.commit()

    return {
        "valid": True,
        "tokenName": row["name"],
        "unionId": row.get("union_id"),
        "accessScope": row.get("access_scope"),
        "allowedPages": row.get("allowed_pages"),
    }
