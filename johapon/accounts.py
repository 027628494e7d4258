"""
소셜 로그인 계정 연결 / 회원가입 / 세션 발급
"""
from __future__ import annotations

import logging
from typing import Optional

from johapon.auth import make_session
from johapon.db import db_conn, get_union, get_user, now_iso
from johapon.dedup import check_and_merge_duplicates
from johapon.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.accounts")

PROVIDERS = ("kakao", "naver", "email")

_PROFILE_FIELDS = (
    "email",
    "phone_number",
    "birth_date",
    "property_address",
    "property_address_detail",
    "property_address_road",
    "property_address_jibun",
    "property_pnu",
    "resident_address",
    "resident_address_detail",
    "resident_address_road",
    "resident_address_jibun",
    "resident_zonecode",
)


def _check_provider(provider: str) -> str:
    p = (provider or "").strip().lower()
    if p not in PROVIDERS:
        raise ValidationError(f"지원하지 않는 로그인 방식입니다: {provider}")
    return p


def register_user(provider: str, provider_user_id: str, name: str, union_id: Optional[int], profile: dict) -> dict:
    provider = _check_provider(provider)
    provider_user_id = (provider_user_id or "").strip()
    name = (name or "").strip()
    if not provider_user_id or not name:
        raise ValidationError("필수 파라미터가 누락되었습니다.")

    values = {k: profile[k] for k in _PROFILE_FIELDS if profile.get(k)}
    status = "PENDING_APPROVAL" if union_id else "PENDING_PROFILE"
    now = now_iso()
    with db_conn() as db:
        if union_id is not None and not get_union(db, union_id):
            raise NotFoundError("조합을 찾을 수 없습니다.")
        if db.execute(
            "SELECT 1 FROM user_auth_links WHERE provider=? AND provider_user_id=?",
            (provider, provider_user_id),
        ).fetchone():
            raise ConflictError("이미 가입된 계정입니다.")
        cols = ", ".join(["union_id", "name", *values.keys(), "role", "user_status", "created_at", "updated_at"])
        ph = ",".join(["?"] * (len(values) + 6))
        cur = db.execute(
            f"INSERT INTO users({cols}) VALUES({ph})",
            (union_id, name, *values.values(), "USER", status, now, now),
        )
        user_id = int(cur.lastrowid)
        db.execute(
            "INSERT INTO user_auth_links(user_id, provider, provider_user_id, created_at, updated_at) VALUES(?,?,?,?,?)",
            (user_id, provider, provider_user_id, now, now),
        )
        db.commit()

    merge = check_and_merge_duplicates(user_id)
    logger.info("user %s registered via %s (merged=%s)", user_id, provider, merge.get("merged_count"))
    with db_conn() as db:
        user = get_user(db, user_id)
    return {"user": user, "merge": merge, "token": make_session(user_id)}


def login(provider: str, provider_user_id: str) -> dict:
    provider = _check_provider(provider)
    with db_conn() as db:
        link = db.execute(
            "SELECT user_id FROM user_auth_links WHERE provider=? AND provider_user_id=?",
            (provider, (provider_user_id or "").strip()),
        ).fetchone()
        if not link:
            raise NotFoundError("가입되지 않은 계정입니다.")
        user = get_user(db, link["user_id"])
    if int(user.get("is_blocked") or 0):
        raise ForbiddenError("차단된 사용자입니다.")
    return {"token": make_session(user["id"], {"role": user["role"]}), "user": user}
