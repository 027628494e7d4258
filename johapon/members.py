"""
조합원 승인 / 반려 / 차단 / 물건지 관리 / 소유권 충돌 해결

승인 계열 동작(approve, reject, cancel-rejection)은 성공/실패와 무관하게
member_access_logs 에 한 줄씩 남긴다.
"""
from __future__ import annotations

import logging
import sqlite3
import time
from io import BytesIO
from typing import Any, Optional

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from johapon.address import (
    create_normalized_ho,
    format_property_address_display,
    is_valid_pnu,
    normalize_dong,
    normalize_ho,
)
from johapon.auth import can_access_union
from johapon.db import db_conn, now_iso, row_dict, rows_dicts, to_json
from johapon.errors import DomainError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.members")

ACTION_APPROVE = "APPROVE_MEMBER"
ACTION_REJECT = "REJECT_MEMBER"
ACTION_CANCEL_REJECTION = "CANCEL_REJECTION"

UPDATE_REASON = "동일인 정보 통합 처리됨"
TRANSFER_UNIT_NOTE = "소유권 이전으로 인한 변경"
TRANSFER_LOST_REASON = "소유권 이전으로 인한 조합원 자격 상실"
TRANSFER_HISTORY_REASON = "소유권 이전 (매매)"

_PROFILE_FIELDS = (
    "name",
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
_UPDATABLE_FIELDS = (
    "birth_date",
    "phone_number",
    "email",
    "resident_address",
    "resident_address_detail",
    "resident_address_road",
    "resident_address_jibun",
    "resident_zonecode",
    "notes",
)


def log_member_access(
    con: sqlite3.Connection,
    union_id: Optional[int],
    user_id: Optional[int],
    target_user_id: Optional[int],
    action: str,
    metadata: Optional[dict] = None,
    ip_address: str = "unknown",
    user_agent: str = "",
    status: str = "SUCCESS",
    duration_ms: Optional[int] = None,
    action_type: str = "WRITE",
) -> None:
    con.execute(
        """
        INSERT INTO member_access_logs(union_id, user_id, target_user_id, action, action_type, metadata,
                                       ip_address, user_agent, status, duration_ms, created_at)
        VALUES(?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            union_id,
            user_id,
            target_user_id,
            action,
            action_type,
            to_json(metadata),
            ip_address,
            user_agent or None,
            status,
            duration_ms,
            now_iso(),
        ),
    )


def _load_union_member(con: sqlite3.Connection, union_id: int, member_id: int) -> dict:
    row = con.execute(
        "SELECT * FROM users WHERE id=? AND union_id=?",
        (int(member_id), int(union_id)),
    ).fetchone()
    if not row:
        raise NotFoundError("조합원을 찾을 수 없습니다.")
    return dict(row)


def _approve(con: sqlite3.Connection, member: dict, reason: Optional[str]) -> None:
    if member["user_status"] != "PENDING_APPROVAL":
        raise ValidationError("승인 대기 상태가 아닙니다.", currentStatus=member["user_status"])
    now = now_iso()
    con.execute(
        """
        UPDATE users
        SET user_status='APPROVED', role='USER',
            approved_at=?, rejected_at=NULL, rejected_reason=NULL, updated_at=?
        WHERE id=?
        """,
        (now, now, member["id"]),
    )


def _reject(con: sqlite3.Connection, member: dict, reason: Optional[str]) -> None:
    if member["user_status"] != "PENDING_APPROVAL":
        raise ValidationError("승인 대기 상태가 아닙니다.", currentStatus=member["user_status"])
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("반려 사유를 입력해 주세요.")
    now = now_iso()
    con.execute(
        "UPDATE users SET user_status='REJECTED', rejected_at=?, rejected_reason=?, updated_at=? WHERE id=?",
        (now, reason, now, member["id"]),
    )


def _cancel_rejection(con: sqlite3.Connection, member: dict, reason: Optional[str]) -> None:
    if member["user_status"] != "REJECTED":
        raise ValidationError("반려 상태가 아닙니다.", currentStatus=member["user_status"])
    con.execute(
        """
        UPDATE users SET user_status='PENDING_APPROVAL', rejected_at=NULL, rejected_reason=NULL, updated_at=?
        WHERE id=?
        """,
        (now_iso(), member["id"]),
    )


_TRANSITIONS = {
    ACTION_APPROVE: _approve,
    ACTION_REJECT: _reject,
    ACTION_CANCEL_REJECTION: _cancel_rejection,
}


def change_member_status(
    action: str,
    union_id: int,
    member_id: int,
    actor: dict,
    ip_address: str = "unknown",
    user_agent: str = "",
    reason: Optional[str] = None,
) -> dict:
    transition = _TRANSITIONS[action]
    started = time.perf_counter()
    metadata: dict[str, Any] = {"memberId": member_id}
    if reason:
        metadata["reason"] = reason

    with db_conn() as db:
        try:
            if not can_access_union(actor, union_id):
                raise ForbiddenError("해당 조합에 대한 권한이 없습니다.")
            member = _load_union_member(db, union_id, member_id)
            metadata["previousStatus"] = member["user_status"]
            transition(db, member, reason)
        except DomainError as exc:
            db.rollback()
            metadata["error"] = exc.message
            log_member_access(
                db,
                union_id,
                actor.get("id"),
                member_id,
                f"{action}_FAILED",
                metadata,
                ip_address,
                user_agent,
                status="FAILURE",
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
            db.commit()
            raise

        log_member_access(
            db,
            union_id,
            actor.get("id"),
            member_id,
            action,
            metadata,
            ip_address,
            user_agent,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        db.commit()
        updated = row_dict(db.execute("SELECT * FROM users WHERE id=?", (int(member_id),)).fetchone())

    logger.info("%s member=%s union=%s by=%s", action, member_id, union_id, actor.get("id"))
    return updated


def list_members(
    union_id: int,
    status: Optional[str] = None,
    search: Optional[str] = None,
    blocked: Optional[bool] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    where = ["union_id=?"]
    params: list[Any] = [int(union_id)]
    if status:
        where.append("user_status=?")
        params.append(status)
    if search:
        like = f"%{search.strip()}%"
        where.append("(name LIKE ? OR phone_number LIKE ? OR property_address LIKE ? OR property_address_jibun LIKE ?)")
        params += [like, like, like, like]
    if blocked is not None:
        where.append("is_blocked=?")
        params.append(1 if blocked else 0)
    clause = " AND ".join(where)
    page = max(1, int(page))
    page_size = max(1, min(200, int(page_size)))

    with db_conn() as db:
        total = db.execute(f"SELECT COUNT(*) FROM users WHERE {clause}", tuple(params)).fetchone()[0]
        rows = db.execute(
            f"""
            SELECT * FROM users WHERE {clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {"items": rows_dicts(rows), "total": int(total), "page": page, "pageSize": page_size}


def set_blocked(user_id: int, blocked: bool, reason: Optional[str] = None) -> dict:
    now = now_iso()
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM users WHERE id=?", (int(user_id),)).fetchone():
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        if blocked:
            db.execute(
                "UPDATE users SET is_blocked=1, blocked_at=?, blocked_reason=?, updated_at=? WHERE id=?",
                (now, (reason or "").strip() or None, now, int(user_id)),
            )
        else:
            db.execute(
                "UPDATE users SET is_blocked=0, blocked_at=NULL, blocked_reason=NULL, updated_at=? WHERE id=?",
                (now, int(user_id)),
            )
        db.commit()
        return row_dict(db.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone())


def update_member(user_id: int, fields: dict) -> dict:
    changes = {k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS and v is not None}
    if not changes:
        raise ValidationError("수정할 항목이 없습니다.")
    sets = ", ".join(f"{k}=?" for k in changes)
    with db_conn() as db:
        cur = db.execute(
            f"UPDATE users SET {sets}, updated_at=? WHERE id=?",
            (*changes.values(), now_iso(), int(user_id)),
        )
        if cur.rowcount == 0:
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        db.commit()
        return row_dict(db.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone())


# --- property units ----------------------------------------------------------

def list_property_units(user_id: int) -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            "SELECT * FROM user_property_units WHERE user_id=? ORDER BY id",
            (int(user_id),),
        ).fetchall()
    out = []
    for r in rows:
        item = dict(r)
        item["display_address"] = format_property_address_display(
            r["property_address_jibun"], r["property_address_road"], r["dong"], r["ho"]
        )
        out.append(item)
    return out


def add_property_unit(user_id: int, unit: dict) -> dict:
    pnu = (unit.get("pnu") or "").strip() or None
    if pnu and not is_valid_pnu(pnu):
        raise ValidationError("PNU는 19자리 숫자여야 합니다.")
    ho = unit.get("ho")
    if unit.get("is_basement"):
        ho = create_normalized_ho(True, ho)
    else:
        ho = normalize_ho(ho)
    now = now_iso()
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM users WHERE id=?", (int(user_id),)).fetchone():
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        cur = db.execute(
            """
            INSERT INTO user_property_units(user_id, building_unit_id, pnu, dong, ho, ownership_type,
                                            land_ownership_ratio, building_ownership_ratio,
                                            property_address_jibun, property_address_road, notes,
                                            created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                int(user_id),
                unit.get("building_unit_id"),
                pnu,
                normalize_dong(unit.get("dong")),
                ho,
                unit.get("ownership_type") or "OWNER",
                float(unit.get("land_ownership_ratio", 100)),
                float(unit.get("building_ownership_ratio", 100)),
                unit.get("property_address_jibun"),
                unit.get("property_address_road"),
                unit.get("notes"),
                now,
                now,
            ),
        )
        db.commit()
        return dict(db.execute("SELECT * FROM user_property_units WHERE id=?", (cur.lastrowid,)).fetchone())


def delete_property_unit(user_id: int, unit_id: int) -> None:
    with db_conn() as db:
        cur = db.execute(
            "DELETE FROM user_property_units WHERE id=? AND user_id=?",
            (int(unit_id), int(user_id)),
        )
        if cur.rowcount == 0:
            raise NotFoundError("물건지를 찾을 수 없습니다.")
        db.commit()


# --- ownership conflicts -----------------------------------------------------

def check_conflict(user_id: int) -> dict:
    with db_conn() as db:
        pending = db.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone()
        if not pending:
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        units = db.execute("SELECT * FROM user_property_units WHERE user_id=?", (int(user_id),)).fetchall()

        conflicts = []
        for unit in units:
            if unit["building_unit_id"]:
                match_col, match_val = "building_unit_id", unit["building_unit_id"]
            elif unit["pnu"]:
                match_col, match_val = "pnu", unit["pnu"]
            else:
                continue
            owners = db.execute(
                f"""
                SELECT p.*, u.name AS owner_name, u.phone_number AS owner_phone, u.user_status AS owner_status
                FROM user_property_units p JOIN users u ON u.id=p.user_id
                WHERE p.{match_col}=? AND p.user_id<>? AND u.union_id IS ?
                  AND u.user_status IN ('APPROVED','PRE_REGISTERED')
                ORDER BY p.id
                """,
                (match_val, int(user_id), pending["union_id"]),
            ).fetchall()
            for o in owners:
                conflicts.append(
                    {
                        "propertyUnitId": o["id"],
                        "buildingUnitId": o["building_unit_id"],
                        "pnu": o["pnu"],
                        "dong": o["dong"],
                        "ho": o["ho"],
                        "address": format_property_address_display(
                            o["property_address_jibun"], o["property_address_road"], o["dong"], o["ho"]
                        ),
                        "existingOwner": {
                            "userId": o["user_id"],
                            "name": o["owner_name"],
                            "phone": o["owner_phone"],
                            "ownershipType": o["ownership_type"],
                            "shareRatio": o["land_ownership_ratio"],
                            "status": o["owner_status"],
                        },
                    }
                )

    return {
        "hasConflict": bool(conflicts),
        "conflicts": conflicts,
        "pendingUser": {
            "id": pending["id"],
            "name": pending["name"],
            "phone": pending["phone_number"],
            "propertyAddress": pending["property_address"] or pending["property_address_jibun"],
        },
    }


def _history(
    con: sqlite3.Connection,
    unit_id: Optional[int],
    from_user: Optional[int],
    to_user: Optional[int],
    change_type: str,
    previous_ratio: Optional[float],
    new_ratio: Optional[float],
    reason: str,
) -> None:
    con.execute(
        """
        INSERT INTO property_ownership_history(property_unit_id, from_user_id, to_user_id, change_type,
                                               previous_ratio, new_ratio, change_reason, created_at)
        VALUES(?,?,?,?,?,?,?,?)
        """,
        (unit_id, from_user, to_user, change_type, previous_ratio, new_ratio, reason, now_iso()),
    )


def _approve_user(con: sqlite3.Connection, user_id: int) -> None:
    now = now_iso()
    con.execute(
        """
        UPDATE users SET user_status='APPROVED', approved_at=?, rejected_at=NULL, rejected_reason=NULL, updated_at=?
        WHERE id=?
        """,
        (now, now, int(user_id)),
    )


def _fmt_ratio(value: float) -> str:
    return f"{value:g}"


def _resolve_update(con: sqlite3.Connection, pending: dict, existing: dict, unit: dict, opts: dict) -> str:
    updates = {c: pending[c] for c in _PROFILE_FIELDS if pending.get(c)}
    old_notes = (existing.get("notes") or "").strip()
    new_notes = (pending.get("notes") or "").strip()
    if new_notes and new_notes not in old_notes:
        updates["notes"] = f"{old_notes}\n---\n{new_notes}" if old_notes else new_notes
    if updates:
        sets = ", ".join(f"{k}=?" for k in updates)
        con.execute(f"UPDATE users SET {sets}, updated_at=? WHERE id=?", (*updates.values(), now_iso(), existing["id"]))
    con.execute("UPDATE user_property_units SET user_id=?, updated_at=? WHERE user_id=?", (existing["id"], now_iso(), pending["id"]))
    con.execute("UPDATE user_auth_links SET user_id=?, updated_at=? WHERE user_id=?", (existing["id"], now_iso(), pending["id"]))
    now = now_iso()
    con.execute(
        "UPDATE users SET user_status='REJECTED', rejected_at=?, rejected_reason=?, updated_at=? WHERE id=?",
        (now, UPDATE_REASON, now, pending["id"]),
    )
    return "기존 조합원 정보가 업데이트되었습니다."


def _resolve_transfer(con: sqlite3.Connection, pending: dict, existing: dict, unit: dict, opts: dict) -> str:
    con.execute(
        """
        UPDATE user_property_units
        SET land_ownership_ratio=0, building_ownership_ratio=0, notes=?, updated_at=?
        WHERE id=?
        """,
        (TRANSFER_UNIT_NOTE, now_iso(), unit["id"]),
    )
    remaining = con.execute(
        """
        SELECT COUNT(*) FROM user_property_units
        WHERE user_id=? AND (land_ownership_ratio>0 OR building_ownership_ratio>0)
        """,
        (existing["id"],),
    ).fetchone()[0]
    if int(remaining) == 0:
        con.execute(
            "UPDATE users SET user_status='TRANSFERRED', rejected_reason=?, updated_at=? WHERE id=?",
            (TRANSFER_LOST_REASON, now_iso(), existing["id"]),
        )
    _approve_user(con, pending["id"])
    con.execute(
        """
        UPDATE user_property_units
        SET ownership_type='OWNER', land_ownership_ratio=100, building_ownership_ratio=100, updated_at=?
        WHERE user_id=?
        """,
        (now_iso(), pending["id"]),
    )
    _history(
        con,
        unit["id"],
        existing["id"],
        pending["id"],
        "TRANSFER",
        unit["land_ownership_ratio"],
        100,
        TRANSFER_HISTORY_REASON,
    )
    return "소유권 이전이 완료되었습니다."


def _resolve_co_owner(con: sqlite3.Connection, pending: dict, existing: dict, unit: dict, opts: dict) -> str:
    try:
        existing_ratio = float(opts.get("existingRatio"))
        new_ratio = float(opts.get("newRatio"))
    except (TypeError, ValueError) as exc:
        raise ValidationError("지분율을 입력해 주세요.") from exc
    if existing_ratio < 0 or new_ratio < 0:
        raise ValidationError("지분율은 0 이상이어야 합니다.")

    if unit["building_unit_id"]:
        match_col, match_val = "building_unit_id", unit["building_unit_id"]
    else:
        match_col, match_val = "pnu", unit["pnu"]
    others = con.execute(
        f"""
        SELECT p.* FROM user_property_units p JOIN users u ON u.id=p.user_id
        WHERE p.{match_col}=? AND p.user_id NOT IN (?, ?)
          AND u.user_status='APPROVED' AND p.ownership_type IN ('OWNER','CO_OWNER')
        """,
        (match_val, existing["id"], pending["id"]),
    ).fetchall()

    adjustments = {}
    for adj in opts.get("adjustments") or []:
        try:
            adjustments[int(adj["propertyUnitId"])] = float(adj["newRatio"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("지분율 조정 정보가 올바르지 않습니다.") from exc

    total = existing_ratio + new_ratio
    for o in others:
        total += adjustments.get(int(o["id"]), float(o["land_ownership_ratio"] or 0))
    total = round(total, 4)
    if total > 100:
        raise ValidationError(f"지분율 합계가 100%를 초과합니다. (현재 합계: {_fmt_ratio(total)}%)", total=total)
    if total < 100:
        raise ValidationError(f"지분율 합계가 100%에 도달하지 않습니다. (현재 합계: {_fmt_ratio(total)}%)", total=total)

    now = now_iso()
    for o in others:
        if int(o["id"]) not in adjustments:
            continue
        ratio = adjustments[int(o["id"])]
        con.execute(
            """
            UPDATE user_property_units SET land_ownership_ratio=?, building_ownership_ratio=?, updated_at=?
            WHERE id=?
            """,
            (ratio, ratio, now, o["id"]),
        )
        _history(con, o["id"], o["user_id"], o["user_id"], "RATIO_CHANGED", o["land_ownership_ratio"], ratio, "공동 소유자 추가에 따른 지분 조정")

    con.execute(
        """
        UPDATE user_property_units
        SET ownership_type='CO_OWNER', land_ownership_ratio=?, building_ownership_ratio=?, updated_at=?
        WHERE id=?
        """,
        (existing_ratio, existing_ratio, now, unit["id"]),
    )
    _history(con, unit["id"], existing["id"], existing["id"], "RATIO_CHANGED", unit["land_ownership_ratio"], existing_ratio, "공동 소유자 추가에 따른 지분 조정")

    pending_units = con.execute(
        f"SELECT id FROM user_property_units WHERE user_id=? AND {match_col}=?",
        (pending["id"], match_val),
    ).fetchall()
    for pu in pending_units:
        con.execute(
            """
            UPDATE user_property_units
            SET ownership_type='CO_OWNER', land_ownership_ratio=?, building_ownership_ratio=?, updated_at=?
            WHERE id=?
            """,
            (new_ratio, new_ratio, now, pu["id"]),
        )
        _history(con, pu["id"], existing["id"], pending["id"], "CO_OWNER_ADDED", None, new_ratio, "공동 소유자 추가")
    _approve_user(con, pending["id"])
    return f"공동 소유자로 추가되었습니다. (기존 {_fmt_ratio(existing_ratio)}%, 신규 {_fmt_ratio(new_ratio)}%)"


def _resolve_proxy(con: sqlite3.Connection, pending: dict, existing: dict, unit: dict, opts: dict) -> str:
    rel = str(opts.get("relationshipType") or "").strip().upper()
    if rel not in ("FAMILY", "PROXY"):
        raise ValidationError("relationshipType은 FAMILY 또는 PROXY 여야 합니다.")
    note = f"소유주 가족 (원 소유주: {existing['id']})" if rel == "FAMILY" else f"대리인 (원 소유주: {existing['id']})"
    _approve_user(con, pending["id"])
    con.execute(
        """
        UPDATE user_property_units
        SET ownership_type=?, land_ownership_ratio=0, building_ownership_ratio=0, notes=?, updated_at=?
        WHERE user_id=?
        """,
        (rel, note, now_iso(), pending["id"]),
    )
    con.execute(
        """
        INSERT INTO user_relationships(user_id, related_user_id, relationship_type, verified, created_at)
        VALUES(?,?,?,1,?)
        """,
        (pending["id"], existing["id"], rel, now_iso()),
    )
    return "소유주 가족으로 등록되었습니다." if rel == "FAMILY" else "대리인으로 등록되었습니다."


_RESOLVERS = {
    "update": _resolve_update,
    "transfer": _resolve_transfer,
    "add_co_owner": _resolve_co_owner,
    "add_proxy": _resolve_proxy,
}


def resolve_conflict(
    pending_user_id: int,
    existing_user_id: int,
    property_unit_id: int,
    action: str,
    actor: dict,
    options: Optional[dict] = None,
    ip_address: str = "unknown",
    user_agent: str = "",
) -> dict:
    resolver = _RESOLVERS.get(action)
    if resolver is None:
        raise ValidationError(f"unknown action: {action}")
    options = options or {}
    started = time.perf_counter()

    with db_conn() as db:
        pending = row_dict(db.execute("SELECT * FROM users WHERE id=?", (int(pending_user_id),)).fetchone())
        existing = row_dict(db.execute("SELECT * FROM users WHERE id=?", (int(existing_user_id),)).fetchone())
        if not pending or not existing:
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        if pending["union_id"] != existing["union_id"]:
            raise ValidationError("서로 다른 조합의 사용자입니다.")
        if not can_access_union(actor, pending["union_id"]):
            raise ForbiddenError("해당 조합에 대한 권한이 없습니다.")
        unit = row_dict(
            db.execute(
                "SELECT * FROM user_property_units WHERE id=? AND user_id=?",
                (int(property_unit_id), int(existing_user_id)),
            ).fetchone()
        )
        if not unit:
            raise NotFoundError("물건지를 찾을 수 없습니다.")

        try:
            message = resolver(db, pending, existing, unit, options)
            log_member_access(
                db,
                pending["union_id"],
                actor.get("id"),
                pending["id"],
                "RESOLVE_CONFLICT",
                {"action": action, "existingUserId": existing["id"], "propertyUnitId": unit["id"]},
                ip_address,
                user_agent,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
            db.commit()
        except (DomainError, sqlite3.DatabaseError):
            db.rollback()
            raise

    logger.info("conflict resolved action=%s pending=%s existing=%s", action, pending_user_id, existing_user_id)
    return {"success": True, "action": action, "message": message}


# --- export / logs -----------------------------------------------------------

_EXPORT_HEADERS = ("이름", "연락처", "생년월일", "물건지 주소", "동", "호", "소유 구분", "지분율", "거주지 주소", "상태", "승인일")


def export_members_xlsx(union_id: int, status: Optional[str] = None) -> bytes:
    where = "u.union_id=?"
    params: list[Any] = [int(union_id)]
    if status:
        where += " AND u.user_status=?"
        params.append(status)
    with db_conn() as db:
        rows = db.execute(
            f"""
            SELECT u.*, p.dong, p.ho, p.ownership_type, p.land_ownership_ratio,
                   p.property_address_jibun AS unit_jibun, p.property_address_road AS unit_road
            FROM users u LEFT JOIN user_property_units p ON p.user_id=u.id
            WHERE {where}
            ORDER BY u.name ASC, u.id ASC, p.id ASC
            """,
            tuple(params),
        ).fetchall()

    wb = Workbook()
    ws = wb.active
    ws.title = "members"
    ws.append(list(_EXPORT_HEADERS))
    for r in rows:
        address = format_property_address_display(
            r["unit_jibun"] or r["property_address_jibun"] or r["property_address"],
            r["unit_road"] or r["property_address_road"],
        )
        ws.append(
            [
                r["name"],
                r["phone_number"] or "",
                r["birth_date"] or "",
                address,
                r["dong"] or "",
                r["ho"] or "",
                r["ownership_type"] or "",
                r["land_ownership_ratio"] if r["land_ownership_ratio"] is not None else "",
                r["resident_address"] or r["resident_address_jibun"] or "",
                r["user_status"],
                r["approved_at"] or "",
            ]
        )

    for i, h in enumerate(_EXPORT_HEADERS, start=1):
        max_len = len(h)
        for row in ws.iter_rows(min_row=2, min_col=i, max_col=i):
            val = row[0].value
            if val is None:
                continue
            max_len = max(max_len, len(str(val)))
        ws.column_dimensions[get_column_letter(i)].width = max(10, min(48, max_len + 2))
    ws.freeze_panes = "A2"

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def list_access_logs(union_id: int, page: int = 1, page_size: int = 50, action: Optional[str] = None) -> dict:
    where = "l.union_id=?"
    params: list[Any] = [int(union_id)]
    if action:
        where += " AND l.action=?"
        params.append(action)
    page = max(1, int(page))
    page_size = max(1, min(200, int(page_size)))
    with db_conn() as db:
        total = db.execute(f"SELECT COUNT(*) FROM member_access_logs l WHERE {where}", tuple(params)).fetchone()[0]
        rows = db.execute(
            f"""
            SELECT l.*, a.name AS user_name, t.name AS target_name
            FROM member_access_logs l
            LEFT JOIN users a ON a.id=l.user_id
            LEFT JOIN users t ON t.id=l.target_user_id
            WHERE {where}
            ORDER BY l.created_at DESC, l.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {"items": rows_dicts(rows, ("metadata",)), "total": int(total), "page": page, "pageSize": page_size}
