"""
동일 조합원 중복 정리

같은 조합 안에서 이름 + 거주지 지번(정규화)이 같은 사용자는 동일인으로 보고,
새로 만들어진 사용자(keeper)로 모든 참조를 옮긴 뒤 기존 레코드를 삭제한다.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Optional

from johapon.address import normalize_jibun_address, normalize_name
from johapon.db import db_conn, now_iso

logger = logging.getLogger("johapon.dedup")

# keeper 값이 비어 있으면 중복 레코드 값으로 채운다
_FILL_COLUMNS = (
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
    "resident_zonecode",
    "notes",
)

# (table, column) 단순 이관 대상
_REPOINT = (
    ("user_property_units", "user_id"),
    ("member_access_logs", "target_user_id"),
    ("member_access_logs", "user_id"),
    ("notices", "author_id"),
    ("questions", "author_id"),
    ("questions", "answer_author_id"),
    ("free_boards", "author_id"),
    ("comments", "author_id"),
    ("user_auth_links", "user_id"),
    ("member_invites", "user_id"),
    ("user_relationships", "user_id"),
    ("user_relationships", "related_user_id"),
    ("property_ownership_history", "from_user_id"),
    ("property_ownership_history", "to_user_id"),
)


def find_duplicate_users(
    con: sqlite3.Connection,
    union_id: int,
    name: Optional[str],
    resident_address_jibun: Optional[str],
    exclude_user_id: Optional[int] = None,
) -> list[dict]:
    norm_name = normalize_name(name)
    norm_jibun = normalize_jibun_address(resident_address_jibun)
    if not norm_name or not norm_jibun:
        return []

    rows = con.execute(
        """
        SELECT id, name, user_status, created_at, resident_address_jibun
        FROM users
        WHERE union_id=? AND resident_address_jibun IS NOT NULL
        ORDER BY created_at ASC, id ASC
        """,
        (int(union_id),),
    ).fetchall()
    out = []
    for r in rows:
        if exclude_user_id is not None and int(r["id"]) == int(exclude_user_id):
            continue
        if normalize_name(r["name"]) != norm_name:
            continue
        if normalize_jibun_address(r["resident_address_jibun"]) != norm_jibun:
            continue
        out.append(
            {
                "id": r["id"],
                "name": r["name"],
                "user_status": r["user_status"],
                "created_at": r["created_at"],
            }
        )
    return out


def _placeholders(ids: list[int]) -> str:
    return ",".join(["?"] * len(ids))


def _merge_consents(con: sqlite3.Connection, keeper_id: int, dup_ids: list[int]) -> int:
    ph = _placeholders(dup_ids)
    # keeper가 이미 가진 단계의 동의는 keeper 것을 유지
    con.execute(
        f"""
        DELETE FROM user_consents
        WHERE user_id IN ({ph})
          AND stage_id IN (SELECT stage_id FROM user_consents WHERE user_id=?)
        """,
        (*dup_ids, keeper_id),
    )
    # 중복 레코드끼리 같은 단계가 있으면 최신 것만 남긴다
    con.execute(
        f"""
        DELETE FROM user_consents
        WHERE user_id IN ({ph})
          AND id NOT IN (
            SELECT MAX(id) FROM user_consents WHERE user_id IN ({ph}) GROUP BY stage_id
          )
        """,
        (*dup_ids, *dup_ids),
    )
    cur = con.execute(
        f"UPDATE user_consents SET user_id=?, updated_at=? WHERE user_id IN ({ph})",
        (keeper_id, now_iso(), *dup_ids),
    )
    return cur.rowcount


def _merge_likes(con: sqlite3.Connection, keeper_id: int, dup_ids: list[int]) -> int:
    ph = _placeholders(dup_ids)
    touched = con.execute(
        f"SELECT DISTINCT entity_type, entity_id FROM post_likes WHERE user_id IN ({ph})",
        tuple(dup_ids),
    ).fetchall()
    con.execute(
        f"""
        DELETE FROM post_likes
        WHERE user_id IN ({ph})
          AND (entity_type || ':' || entity_id) IN (
            SELECT entity_type || ':' || entity_id FROM post_likes WHERE user_id=?
          )
        """,
        (*dup_ids, keeper_id),
    )
    con.execute(
        f"""
        DELETE FROM post_likes
        WHERE user_id IN ({ph})
          AND id NOT IN (
            SELECT MIN(id) FROM post_likes WHERE user_id IN ({ph}) GROUP BY entity_type, entity_id
          )
        """,
        (*dup_ids, *dup_ids),
    )
    cur = con.execute(
        f"UPDATE post_likes SET user_id=? WHERE user_id IN ({ph})",
        (keeper_id, *dup_ids),
    )
    for t in touched:
        if t["entity_type"] == "free_board":
            con.execute(
                """
                UPDATE free_boards
                SET like_count=(SELECT COUNT(*) FROM post_likes WHERE entity_type='free_board' AND entity_id=?)
                WHERE id=?
                """,
                (t["entity_id"], t["entity_id"]),
            )
    return cur.rowcount


def _fill_keeper_fields(con: sqlite3.Connection, keeper_id: int, dup_ids: list[int]) -> None:
    keeper = con.execute("SELECT * FROM users WHERE id=?", (keeper_id,)).fetchone()
    if not keeper:
        return
    ph = _placeholders(dup_ids)
    dups = con.execute(
        f"SELECT * FROM users WHERE id IN ({ph}) ORDER BY created_at DESC, id DESC",
        tuple(dup_ids),
    ).fetchall()
    updates = {}
    for col in _FILL_COLUMNS:
        if keeper[col]:
            continue
        for d in dups:
            if d[col]:
                updates[col] = d[col]
                break
    if not updates:
        return
    sets = ", ".join(f"{c}=?" for c in updates)
    con.execute(
        f"UPDATE users SET {sets}, updated_at=? WHERE id=?",
        (*updates.values(), now_iso(), keeper_id),
    )


def merge_users_keep_new(keeper_id: int, duplicate_ids: Iterable[int]) -> dict:
    """
    duplicate_ids의 모든 참조를 keeper_id로 옮기고 duplicate 사용자를 삭제한다.
    한 트랜잭션으로 처리되며 실패 시 전체 롤백.
    """
    keeper_id = int(keeper_id)
    dup_ids = sorted({int(x) for x in duplicate_ids if int(x) != keeper_id})
    if not dup_ids:
        return {"success": True, "keeper_id": keeper_id, "merged_count": 0, "affected": {}}

    affected: dict[str, int] = {}
    with db_conn() as db:
        try:
            if not db.execute("SELECT 1 FROM users WHERE id=?", (keeper_id,)).fetchone():
                return {"success": False, "keeper_id": keeper_id, "error": "keeper not found"}
            ph = _placeholders(dup_ids)
            existing = [
                int(r["id"]) for r in db.execute(f"SELECT id FROM users WHERE id IN ({ph})", tuple(dup_ids))
            ]
            if not existing:
                return {"success": True, "keeper_id": keeper_id, "merged_count": 0, "affected": {}}
            dup_ids = existing
            ph = _placeholders(dup_ids)

            _fill_keeper_fields(db, keeper_id, dup_ids)
            affected["user_consents"] = _merge_consents(db, keeper_id, dup_ids)
            affected["post_likes"] = _merge_likes(db, keeper_id, dup_ids)
            for table, col in _REPOINT:
                cur = db.execute(
                    f"UPDATE {table} SET {col}=? WHERE {col} IN ({ph})",
                    (keeper_id, *dup_ids),
                )
                key = table if col in ("user_id", "author_id") else f"{table}.{col}"
                affected[key] = affected.get(key, 0) + cur.rowcount

            cur = db.execute(f"DELETE FROM users WHERE id IN ({ph})", tuple(dup_ids))
            affected["users"] = cur.rowcount
            db.commit()
        except sqlite3.DatabaseError:
            db.rollback()
            raise

    logger.info("merged users %s into %s", dup_ids, keeper_id)
    return {
        "success": True,
        "keeper_id": keeper_id,
        "merged_count": len(dup_ids),
        "affected": affected,
    }


def check_and_merge_duplicates(user_id: int) -> dict:
    """새 사용자 생성 직후 호출. 실패해도 호출측 흐름은 막지 않는다."""
    try:
        with db_conn() as db:
            user = db.execute(
                "SELECT id, union_id, name, resident_address_jibun FROM users WHERE id=?",
                (int(user_id),),
            ).fetchone()
            if not user or user["union_id"] is None:
                return {"success": True, "keeper_id": user_id, "merged_count": 0, "affected": {}}
            dups = find_duplicate_users(
                db,
                user["union_id"],
                user["name"],
                user["resident_address_jibun"],
                exclude_user_id=user["id"],
            )
        if not dups:
            return {"success": True, "keeper_id": user_id, "merged_count": 0, "affected": {}}
        logger.info("found %d duplicate(s) for user %s", len(dups), user_id)
        return merge_users_keep_new(user_id, [d["id"] for d in dups])
    except Exception as exc:
        logger.exception("duplicate merge failed for user %s", user_id)
        return {"success": True, "keeper_id": user_id, "merged_count": 0, "error": str(exc)}
