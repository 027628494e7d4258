"""
조합원 초대 / 관리자 초대 / 사전 등록

엑셀 명단 기준 동기화 규칙
- 명단에 있고 DB에 없음 → 초대 생성
- DB에만 있는 PENDING 초대 → 삭제
- DB에만 있는 USED 초대 → 초대와 연결된 사용자 삭제
"""
from __future__ import annotations

import logging
import secrets
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Optional

from johapon import jobs
from johapon.address import normalize_dong, normalize_ho, parse_dong_ho, phone_digits
from johapon.db import db_conn, now_iso, parse_ts, row_dict
from johapon.dedup import check_and_merge_duplicates
from johapon.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.invites")

INVITE_PENDING = "PENDING"
INVITE_USED = "USED"
INVITE_EXPIRED = "EXPIRED"

SYNC_EXPIRES_HOURS = 24
ASYNC_EXPIRES_HOURS = 8760
ADMIN_INVITE_HOURS = 24


def new_invite_token() -> str:
    return secrets.token_urlsafe(24)


def _expires_at(hours: int) -> str:
    return (datetime.now() + timedelta(hours=int(hours))).replace(microsecond=0).isoformat(sep=" ")


def _member_key(name: Any, phone: Any, address: Any) -> tuple[str, str, str]:
    return (
        str(name or "").strip(),
        phone_digits(str(phone or "")),
        str(address or "").strip(),
    )


def _expire_if_needed(con: sqlite3.Connection, table: str, row: dict) -> dict:
    if row.get("status") != INVITE_PENDING:
        return row
    expires = parse_ts(row.get("expires_at"))
    if expires and datetime.now() > expires:
        con.execute(f"UPDATE {table} SET status=? WHERE id=?", (INVITE_EXPIRED, row["id"]))
        con.commit()
        row = dict(row)
        row["status"] = INVITE_EXPIRED
    return row


# --- member invites ---------------------------------------------------------

def sync_member_invites(
    union_id: int,
    created_by: Optional[int],
    members: list[dict],
    expires_hours: int = SYNC_EXPIRES_HOURS,
    job_id: Optional[str] = None,
) -> dict:
    wanted: dict[tuple[str, str, str], dict] = {}
    for m in members:
        key = _member_key(m.get("name"), m.get("phone_number"), m.get("property_address"))
        if not key[0] or not key[1]:
            continue
        wanted.setdefault(key, m)

    inserted = 0
    deleted_pending = 0
    deleted_used = 0
    deleted_auth_user_ids: list[str] = []
    total = len(wanted)
    step = jobs.progress_step(total)

    with db_conn() as db:
        existing = db.execute(
            "SELECT * FROM member_invites WHERE union_id=? AND status<>?",
            (int(union_id), INVITE_EXPIRED),
        ).fetchall()
        existing_keys = set()
        for inv in existing:
            key = _member_key(inv["name"], inv["phone_number"], inv["property_address"])
            if key in wanted:
                existing_keys.add(key)
                continue
            if inv["status"] == INVITE_PENDING:
                db.execute("DELETE FROM member_invites WHERE id=?", (inv["id"],))
                deleted_pending += 1
            elif inv["status"] == INVITE_USED:
                if inv["user_id"] is not None:
                    links = db.execute(
                        "SELECT provider_user_id FROM user_auth_links WHERE user_id=?",
                        (inv["user_id"],),
                    ).fetchall()
                    deleted_auth_user_ids.extend(str(r["provider_user_id"]) for r in links)
                    db.execute("DELETE FROM users WHERE id=?", (inv["user_id"],))
                db.execute("DELETE FROM member_invites WHERE id=?", (inv["id"],))
                deleted_used += 1

        expires_at = _expires_at(expires_hours)
        for i, (key, m) in enumerate(wanted.items(), start=1):
            if key not in existing_keys:
                db.execute(
                    """
                    INSERT INTO member_invites(union_id, name, phone_number, property_address,
                                               invite_token, status, expires_at, created_by, created_at)
                    VALUES(?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        int(union_id),
                        key[0],
                        str(m.get("phone_number") or "").strip(),
                        key[2] or None,
                        new_invite_token(),
                        INVITE_PENDING,
                        expires_at,
                        created_by,
                        now_iso(),
                    ),
                )
                inserted += 1
            if job_id and (i % step == 0 or i == total):
                db.commit()
                jobs.update_progress(job_id, i, total)
        db.commit()

    logger.info(
        "member invites synced union=%s inserted=%s deleted_pending=%s deleted_used=%s",
        union_id,
        inserted,
        deleted_pending,
        deleted_used,
    )
    return {
        "inserted": inserted,
        "deleted_pending": deleted_pending,
        "deleted_used": deleted_used,
        "deleted_auth_user_ids": deleted_auth_user_ids,
    }


def get_member_invite(token: str) -> dict:
    with db_conn() as db:
        row = row_dict(
            db.execute(
                """
                SELECT i.*, un.name AS union_name, un.slug AS union_slug
                FROM member_invites i JOIN unions un ON un.id=i.union_id
                WHERE i.invite_token=?
                """,
                (token,),
            ).fetchone()
        )
        if not row:
            raise NotFoundError("invite not found")
        return _expire_if_needed(db, "member_invites", row)


def accept_member_invite(token: str, user_id: int) -> dict:
    invite = get_member_invite(token)
    if invite["status"] != INVITE_PENDING:
        raise ValidationError(f"invite is {invite['status']}")

    now = now_iso()
    with db_conn() as db:
        user = db.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone()
        if not user:
            raise NotFoundError("user not found")
        if user["union_id"] is not None and int(user["union_id"]) != int(invite["union_id"]):
            raise ConflictError("user already belongs to another union")

        cur = db.execute(
            "UPDATE member_invites SET status=?, used_at=?, user_id=? WHERE id=? AND status=?",
            (INVITE_USED, now, int(user_id), invite["id"], INVITE_PENDING),
        )
        if cur.rowcount == 0:
            raise ConflictError("invite already used")
        # 수락 후에는 이전 상태와 무관하게 승인 대기
        db.execute(
            """
            UPDATE users
            SET union_id=?, name=?, phone_number=COALESCE(phone_number, ?),
                property_address=COALESCE(property_address, ?), user_status=?, updated_at=?
            WHERE id=?
            """,
            (
                invite["union_id"],
                invite["name"],
                invite["phone_number"],
                invite["property_address"],
                "PENDING_APPROVAL",
                now,
                int(user_id),
            ),
        )
        db.commit()

    merge = check_and_merge_duplicates(int(user_id))
    return {"invite_id": invite["id"], "union_id": invite["union_id"], "user_id": int(user_id), "merge": merge}


# --- pre-register / property sync --------------------------------------------

def pre_register_members(union_id: int, members: list[dict], job_id: Optional[str] = None) -> dict:
    created = 0
    skipped = 0
    merged = 0
    errors: list[dict] = []
    total = len(members)
    step = jobs.progress_step(total)
    new_ids: list[int] = []

    with db_conn() as db:
        for i, m in enumerate(members, start=1):
            name = str(m.get("name") or "").strip()
            phone = str(m.get("phone_number") or "").strip()
            if not name:
                errors.append({"row": i, "message": "이름이 없습니다."})
            else:
                dup = db.execute(
                    """
                    SELECT id FROM users
                    WHERE union_id=? AND name=? AND
                          replace(replace(COALESCE(phone_number,''),'-',''),' ','')=?
                    LIMIT 1
                    """,
                    (int(union_id), name, phone_digits(phone)),
                ).fetchone()
                if dup:
                    skipped += 1
                else:
                    now = now_iso()
                    cur = db.execute(
                        """
                        INSERT INTO users(union_id, name, phone_number, birth_date, property_address,
                                          property_address_jibun, property_address_road, property_pnu,
                                          resident_address_jibun, role, user_status, created_at, updated_at)
                        VALUES(?,?,?,?,?,?,?,?,?,'USER','PRE_REGISTERED',?,?)
                        """,
                        (
                            int(union_id),
                            name,
                            phone or None,
                            m.get("birth_date"),
                            m.get("property_address"),
                            m.get("property_address_jibun") or m.get("property_address"),
                            m.get("property_address_road"),
                            m.get("pnu"),
                            m.get("resident_address_jibun"),
                            now,
                            now,
                        ),
                    )
                    user_id = int(cur.lastrowid)
                    db.execute(
                        """
                        INSERT INTO user_property_units(user_id, pnu, dong, ho, ownership_type,
                                                        property_address_jibun, property_address_road,
                                                        created_at, updated_at)
                        VALUES(?,?,?,?,'OWNER',?,?,?,?)
                        """,
                        (
                            user_id,
                            m.get("pnu"),
                            normalize_dong(m.get("dong")),
                            normalize_ho(m.get("ho")),
                            m.get("property_address_jibun") or m.get("property_address"),
                            m.get("property_address_road"),
                            now,
                            now,
                        ),
                    )
                    new_ids.append(user_id)
                    created += 1
            if job_id and (i % step == 0 or i == total):
                db.commit()
                jobs.update_progress(job_id, i, total)
        db.commit()

    for uid in new_ids:
        result = check_and_merge_duplicates(uid)
        merged += int(result.get("merged_count") or 0)

    return {"created": created, "skipped": skipped, "merged": merged, "errors": errors}


def sync_property_units(union_id: int, job_id: Optional[str] = None) -> dict:
    linked = 0
    skipped = 0
    with db_conn() as db:
        users = db.execute(
            """
            SELECT * FROM users
            WHERE union_id=? AND user_status IN ('APPROVED','PRE_REGISTERED')
            ORDER BY id
            """,
            (int(union_id),),
        ).fetchall()
        total = len(users)
        step = jobs.progress_step(total)
        for i, u in enumerate(users, start=1):
            jibun = u["property_address_jibun"] or u["property_address"]
            pnu = u["property_pnu"]
            if not jibun and not pnu:
                skipped += 1
            else:
                dong, ho = parse_dong_ho(u["property_address_detail"])
                exists = db.execute(
                    """
                    SELECT 1 FROM user_property_units
                    WHERE user_id=? AND (
                      (pnu IS NOT NULL AND pnu=?) OR
                      (property_address_jibun IS NOT NULL AND property_address_jibun=?
                       AND COALESCE(dong,'')=COALESCE(?, '') AND COALESCE(ho,'')=COALESCE(?, ''))
                    )
                    """,
                    (u["id"], pnu, jibun, dong, ho),
                ).fetchone()
                if exists:
                    skipped += 1
                else:
                    now = now_iso()
                    db.execute(
                        """
                        INSERT INTO user_property_units(user_id, pnu, dong, ho, ownership_type,
                                                        property_address_jibun, property_address_road,
                                                        created_at, updated_at)
                        VALUES(?,?,?,?,'OWNER',?,?,?,?)
                        """,
                        (u["id"], pnu, dong, ho, jibun, u["property_address_road"], now, now),
                    )
                    linked += 1
            if job_id and (i % step == 0 or i == total):
                db.commit()
                jobs.update_progress(job_id, i, total)
        db.commit()
    return {"linked": linked, "skipped": skipped}


# --- admin invites -----------------------------------------------------------

def create_admin_invite(
    union_id: int,
    name: str,
    phone_number: Optional[str],
    email: Optional[str],
    created_by: Optional[int],
) -> dict:
    token = new_invite_token()
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM unions WHERE id=?", (int(union_id),)).fetchone():
            raise NotFoundError("union not found")
        cur = db.execute(
            """
            INSERT INTO admin_invites(union_id, name, phone_number, email, invite_token, status,
                                      created_by, expires_at, created_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (
                int(union_id),
                name.strip(),
                phone_number,
                email,
                token,
                INVITE_PENDING,
                created_by,
                _expires_at(ADMIN_INVITE_HOURS),
                now_iso(),
            ),
        )
        db.commit()
        row = db.execute("SELECT * FROM admin_invites WHERE id=?", (cur.lastrowid,)).fetchone()
    return dict(row)


def get_admin_invite(token: str) -> dict:
    with db_conn() as db:
        row = row_dict(
            db.execute(
                """
                SELECT i.*, un.name AS union_name, un.slug AS union_slug
                FROM admin_invites i JOIN unions un ON un.id=i.union_id
                WHERE i.invite_token=?
                """,
                (token,),
            ).fetchone()
        )
        if not row:
            raise NotFoundError("invite not found")
        return _expire_if_needed(db, "admin_invites", row)


def accept_admin_invite(token: str, user_id: int) -> dict:
    invite = get_admin_invite(token)
    if invite["status"] != INVITE_PENDING:
        raise ValidationError(f"invite is {invite['status']}")
    now = now_iso()
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM users WHERE id=?", (int(user_id),)).fetchone():
            raise NotFoundError("user not found")
        cur = db.execute(
            "UPDATE admin_invites SET status=?, used_at=? WHERE id=? AND status=?",
            (INVITE_USED, now, invite["id"], INVITE_PENDING),
        )
        if cur.rowcount == 0:
            raise ConflictError("invite already used")
        db.execute(
            """
            UPDATE users
            SET union_id=?, role='ADMIN', user_status='APPROVED', approved_at=COALESCE(approved_at, ?), updated_at=?
            WHERE id=? AND role<>'SYSTEM_ADMIN'
            """,
            (invite["union_id"], now, now, int(user_id)),
        )
        db.commit()
    logger.info("admin invite %s accepted by user %s", invite["id"], user_id)
    return {"invite_id": invite["id"], "union_id": invite["union_id"], "user_id": int(user_id)}


def list_admin_invites(union_id: int) -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            "SELECT * FROM admin_invites WHERE union_id=? ORDER BY created_at DESC, id DESC",
            (int(union_id),),
        ).fetchall()
        return [_expire_if_needed(db, "admin_invites", dict(r)) for r in rows]


def delete_admin_invite(invite_id: int) -> None:
    with db_conn() as db:
        cur = db.execute("DELETE FROM admin_invites WHERE id=?", (int(invite_id),))
        if cur.rowcount == 0:
            raise NotFoundError("invite not found")
        db.commit()


def list_member_invites(union_id: int, status: Optional[str] = None) -> list[dict]:
    sql = "SELECT * FROM member_invites WHERE union_id=?"
    params: list[Any] = [int(union_id)]
    if status:
        sql += " AND status=?"
        params.append(status)
    with db_conn() as db:
        rows = db.execute(sql + " ORDER BY created_at DESC, id DESC", tuple(params)).fetchall()
        return [_expire_if_needed(db, "member_invites", dict(r)) for r in rows]
