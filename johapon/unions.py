from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Optional

from johapon.db import db_conn, get_union, get_union_by_slug, now_iso, rows_dicts
from johapon.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.unions")

_SLUG_RE = re.compile(r"^[a-z0-9_-]+$", re.IGNORECASE)

_UNION_FIELDS = (
    "name",
    "slug",
    "description",
    "address",
    "phone",
    "email",
    "logo_url",
    "business_type",
    "is_active",
    "alimtalk_sender_key",
    "alimtalk_channel_name",
    "notice_template_code",
)
PUBLIC_FIELDS = ("id", "name", "slug", "description", "address", "phone", "email", "logo_url", "business_type")


def is_valid_slug(slug: Optional[str]) -> bool:
    s = (slug or "").strip()
    return 2 <= len(s) <= 50 and bool(_SLUG_RE.match(s))


def _values(fields: dict) -> dict:
    out: dict[str, Any] = {}
    for k in _UNION_FIELDS:
        if k not in fields or fields[k] is None:
            continue
        v = fields[k]
        if k == "slug":
            if not is_valid_slug(v):
                raise ValidationError("slug는 영문/숫자/-/_ 2~50자여야 합니다.")
            v = v.strip().lower()
        elif k == "is_active":
            v = 1 if v else 0
        out[k] = v
    return out


def list_unions(search: Optional[str] = None, is_active: Optional[bool] = None) -> list[dict]:
    where = ["1=1"]
    params: list[Any] = []
    if search:
        where.append("name LIKE ?")
        params.append(f"%{search.strip()}%")
    if is_active is not None:
        where.append("is_active=?")
        params.append(1 if is_active else 0)
    with db_conn() as db:
        rows = db.execute(
            f"""
            SELECT un.*, (SELECT COUNT(*) FROM users u WHERE u.union_id=un.id AND u.user_status='APPROVED') AS member_count
            FROM unions un WHERE {' AND '.join(where)}
            ORDER BY created_at DESC, id DESC
            """,
            tuple(params),
        ).fetchall()
    return rows_dicts(rows)


def union_stats() -> dict:
    with db_conn() as db:
        row = db.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN is_active=1 THEN 1 ELSE 0 END), 0) AS active
            FROM unions
            """
        ).fetchone()
    total = int(row["total"])
    active = int(row["active"])
    return {"total": total, "active": active, "inactive": total - active}


def require_union(union_id: int) -> dict:
    with db_conn() as db:
        union = get_union(db, union_id)
    if not union:
        raise NotFoundError("조합을 찾을 수 없습니다.")
    return union


def active_union_by_slug(slug: str) -> dict:
    with db_conn() as db:
        union = get_union_by_slug(db, slug)
    if not union or not int(union.get("is_active") or 0):
        raise NotFoundError("조합을 찾을 수 없습니다.")
    return union


def create_union(fields: dict) -> dict:
    values = _values(fields)
    if not values.get("name") or not values.get("slug"):
        raise ValidationError("name과 slug는 필수입니다.")
    now = now_iso()
    cols = ", ".join(values)
    ph = ",".join(["?"] * len(values))
    with db_conn() as db:
        if get_union_by_slug(db, values["slug"]):
            raise ConflictError("이미 사용 중인 slug 입니다.")
        try:
            cur = db.execute(
                f"INSERT INTO unions({cols}, created_at, updated_at) VALUES({ph},?,?)",
                (*values.values(), now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError("이미 사용 중인 slug 입니다.") from exc
        db.commit()
        union = get_union(db, cur.lastrowid)
    logger.info("union created: %s (%s)", union["slug"], union["id"])
    return union


def update_union(union_id: int, fields: dict) -> dict:
    values = _values(fields)
    if not values:
        raise ValidationError("수정할 항목이 없습니다.")
    with db_conn() as db:
        if not get_union(db, union_id):
            raise NotFoundError("조합을 찾을 수 없습니다.")
        if "slug" in values:
            other = get_union_by_slug(db, values["slug"])
            if other and int(other["id"]) != int(union_id):
                raise ConflictError("이미 사용 중인 slug 입니다.")
        sets = ", ".join(f"{k}=?" for k in values)
        db.execute(f"UPDATE unions SET {sets}, updated_at=? WHERE id=?", (*values.values(), now_iso(), int(union_id)))
        db.commit()
        return get_union(db, union_id)


def delete_union(union_id: int) -> None:
    with db_conn() as db:
        cur = db.execute("DELETE FROM unions WHERE id=?", (int(union_id),))
        if cur.rowcount == 0:
            raise NotFoundError("조합을 찾을 수 없습니다.")
        db.commit()
    logger.info("union %s deleted", union_id)


def public_meta(union: dict) -> dict:
    return {k: union.get(k) for k in PUBLIC_FIELDS}


def list_union_admins(union_id: int) -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            """
            SELECT id, name, email, phone_number, role, user_status, created_at
            FROM users WHERE union_id=? AND role='ADMIN'
            ORDER BY created_at ASC, id ASC
            """,
            (int(union_id),),
        ).fetchall()
    return rows_dicts(rows)


def revoke_union_admin(union_id: int, user_id: int) -> None:
    with db_conn() as db:
        cur = db.execute(
            "UPDATE users SET role='USER', union_id=NULL, updated_at=? WHERE id=? AND union_id=? AND role='ADMIN'",
            (now_iso(), int(user_id), int(union_id)),
        )
        if cur.rowcount == 0:
            raise NotFoundError("관리자를 찾을 수 없습니다.")
        db.commit()
    logger.info("admin %s revoked from union %s", user_id, union_id)
