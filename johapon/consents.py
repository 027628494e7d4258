"""
동의서 처리 (일괄 동의 변경 / 엑셀 업로드 / 동의율 현황)
"""
from __future__ import annotations

import logging
import sqlite3
from io import BytesIO
from typing import Any, Optional

from openpyxl import load_workbook

from johapon import jobs
from johapon.address import normalize_dong, normalize_ho
from johapon.db import db_conn, now_iso, today_iso
from johapon.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.consents")

ASYNC_THRESHOLD = 50
CONSENT_STATUSES = ("AGREED", "DISAGREED")

_HEADER_FIELDS = {
    "이름": "name",
    "성명": "name",
    "name": "name",
    "주소": "address",
    "소재지": "address",
    "address": "address",
    "건물명": "buildingName",
    "buildingname": "buildingName",
    "동": "dong",
    "dong": "dong",
    "호": "ho",
    "호수": "ho",
    "ho": "ho",
    "동의여부": "status",
    "동의상태": "status",
    "상태": "status",
    "status": "status",
}


def get_stage(con: sqlite3.Connection, stage_id: int) -> dict:
    row = con.execute("SELECT * FROM consent_stages WHERE id=?", (int(stage_id),)).fetchone()
    if not row:
        raise NotFoundError("consent stage not found")
    return dict(row)


def upsert_consent(con: sqlite3.Connection, user_id: int, stage_id: int, status: str) -> None:
    now = now_iso()
    con.execute(
        """
        INSERT INTO user_consents(user_id, stage_id, status, consent_date, created_at, updated_at)
        VALUES(?,?,?,?,?,?)
        ON CONFLICT(user_id, stage_id) DO UPDATE SET
          status=excluded.status,
          consent_date=excluded.consent_date,
          updated_at=excluded.updated_at
        """,
        (int(user_id), int(stage_id), status, today_iso(), now, now),
    )


def _union_member_ids(con: sqlite3.Connection, union_id: int, member_ids: list[int]) -> set[int]:
    if not member_ids:
        return set()
    ph = ",".join(["?"] * len(member_ids))
    rows = con.execute(
        f"SELECT id FROM users WHERE union_id=? AND id IN ({ph})",
        (int(union_id), *member_ids),
    ).fetchall()
    return {int(r["id"]) for r in rows}


def apply_bulk_update(
    union_id: int,
    stage_id: int,
    member_ids: list[int],
    status: str,
    job_id: Optional[str] = None,
) -> dict:
    success = 0
    failed = 0
    total = len(member_ids)
    step = jobs.progress_step(total)
    with db_conn() as db:
        allowed = _union_member_ids(db, union_id, member_ids)
        for i, member_id in enumerate(member_ids, start=1):
            if int(member_id) not in allowed:
                failed += 1
            else:
                try:
                    upsert_consent(db, member_id, stage_id, status)
                    db.commit()
                    success += 1
                except sqlite3.DatabaseError as exc:
                    logger.warning("consent upsert failed user=%s stage=%s: %s", member_id, stage_id, exc)
                    db.rollback()
                    failed += 1
            if job_id and (i % step == 0 or i == total):
                jobs.update_progress(job_id, i, total)
    return {"successCount": success, "failCount": failed}


def start_bulk_update_job(
    union_id: int,
    stage_id: int,
    member_ids: list[int],
    status: str,
    created_by: Optional[int] = None,
) -> str:
    return jobs.create_job(
        jobs.JOB_CONSENT_BULK_UPDATE,
        union_id,
        len(member_ids),
        preview_data={
            "type": "consent_bulk_update",
            "stageId": stage_id,
            "memberCount": len(member_ids),
            "status": status,
        },
        created_by=created_by,
    )


def consent_status_from_text(value: Any) -> str:
    text = str(value or "").strip().upper()
    return "AGREED" if text == "AGREED" else "DISAGREED"


def find_member_for_row(con: sqlite3.Connection, union_id: int, row: dict) -> Optional[int]:
    name = str(row.get("name") or "").strip()
    if not name:
        return None
    sql = [
        "SELECT u.id FROM users u",
        "WHERE u.union_id=? AND u.user_status='APPROVED' AND lower(u.name)=lower(?)",
    ]
    params: list[Any] = [int(union_id), name]

    address = str(row.get("address") or "").strip()
    if address:
        sql.append("AND (u.property_address LIKE ? OR u.property_address_jibun LIKE ?)")
        params += [f"%{address}%", f"%{address}%"]

    dong = normalize_dong(str(row.get("dong") or "")) if row.get("dong") else None
    ho = normalize_ho(str(row.get("ho") or "")) if row.get("ho") else None
    if dong or ho:
        sub = ["SELECT 1 FROM user_property_units p WHERE p.user_id=u.id"]
        if dong:
            sub.append("AND p.dong LIKE ?")
            params.append(f"%{dong}%")
        if ho:
            sub.append("AND p.ho LIKE ?")
            params.append(f"%{ho}%")
        sql.append(f"AND EXISTS ({' '.join(sub)})")

    sql.append("ORDER BY u.id LIMIT 1")
    found = con.execute(" ".join(sql), tuple(params)).fetchone()
    return int(found["id"]) if found else None


def apply_bulk_upload(
    union_id: int,
    stage_id: int,
    rows: list[dict],
    job_id: Optional[str] = None,
) -> dict:
    success = 0
    failed = 0
    errors: list[dict] = []
    total = len(rows)
    step = jobs.progress_step(total)
    with db_conn() as db:
        for i, row in enumerate(rows, start=1):
            row_number = row.get("rowNumber") or i
            member_id = find_member_for_row(db, union_id, row)
            if member_id is None:
                errors.append({"row": row_number, "message": f"조합원을 찾을 수 없습니다: {row.get('name') or ''}"})
                failed += 1
            else:
                try:
                    upsert_consent(db, member_id, stage_id, consent_status_from_text(row.get("status")))
                    db.commit()
                    success += 1
                except sqlite3.DatabaseError as exc:
                    db.rollback()
                    errors.append({"row": row_number, "message": f"동의 처리 실패: {exc}"})
                    failed += 1
            if job_id and (i % step == 0 or i == total):
                jobs.update_progress(job_id, i, total)
    return {"successCount": success, "failCount": failed, "errors": errors}


def parse_consent_workbook(raw: bytes) -> list[dict]:
    try:
        wb = load_workbook(filename=BytesIO(raw), data_only=True, read_only=True)
    except Exception as exc:
        raise ValidationError(f"엑셀 파일을 읽을 수 없습니다: {exc}") from exc

    ws = wb.active
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if not rows:
        raise ValidationError("엑셀 시트에 데이터가 없습니다.")

    idx_field: dict[int, str] = {}
    for idx, h in enumerate(rows[0] or []):
        key = str(h or "").strip().replace(" ", "").lower()
        field = _HEADER_FIELDS.get(key)
        if field and field not in idx_field.values():
            idx_field[idx] = field
    if "name" not in idx_field.values():
        raise ValidationError("필수 컬럼 '이름'을 찾지 못했습니다.")

    parsed: list[dict] = []
    for row_number, values in enumerate(rows[1:], start=2):
        item: dict[str, Any] = {"rowNumber": row_number}
        for idx, field in idx_field.items():
            value = values[idx] if idx < len(values) else None
            item[field] = str(value).strip() if value is not None else ""
        if not item.get("name"):
            continue
        parsed.append(item)
    return parsed


def consent_overview(union_id: int, stage_id: int) -> dict:
    with db_conn() as db:
        stage = get_stage(db, stage_id)
        members = db.execute(
            """
            SELECT u.id, u.name, u.phone_number, u.property_address, u.property_address_jibun,
                   c.status AS consent_status, c.consent_date
            FROM users u
            LEFT JOIN user_consents c ON c.user_id=u.id AND c.stage_id=?
            WHERE u.union_id=? AND u.user_status='APPROVED'
            ORDER BY u.name ASC, u.id ASC
            """,
            (int(stage_id), int(union_id)),
        ).fetchall()

    items = []
    agreed = disagreed = 0
    for m in members:
        status = m["consent_status"] or "PENDING"
        if status == "AGREED":
            agreed += 1
        elif status == "DISAGREED":
            disagreed += 1
        items.append(
            {
                "id": m["id"],
                "name": m["name"],
                "phone_number": m["phone_number"],
                "property_address": m["property_address"] or m["property_address_jibun"],
                "current_consent_status": status,
                "consent_date": m["consent_date"],
            }
        )
    total = len(items)
    rate = round(agreed * 100.0 / total, 2) if total else 0.0
    required = float(stage["required_rate"] or 0)
    return {
        "stage": stage,
        "items": items,
        "summary": {
            "total": total,
            "agreed": agreed,
            "disagreed": disagreed,
            "pending": total - agreed - disagreed,
            "agreed_rate": rate,
            "required_rate": required,
            "achieved": total > 0 and rate >= required,
        },
    }


# --- stages ------------------------------------------------------------------

_STAGE_FIELDS = ("business_type", "stage_code", "stage_name", "required_rate", "sort_order")


def list_stages(business_type: Optional[str] = None) -> list[dict]:
    sql = "SELECT * FROM consent_stages"
    params: tuple = ()
    if business_type:
        sql += " WHERE business_type=?"
        params = (business_type,)
    with db_conn() as db:
        rows = db.execute(sql + " ORDER BY business_type, sort_order, id", params).fetchall()
    return [dict(r) for r in rows]


def create_stage(fields: dict) -> dict:
    values = {k: fields[k] for k in _STAGE_FIELDS if fields.get(k) is not None}
    now = now_iso()
    cols = ", ".join(values)
    ph = ",".join(["?"] * len(values))
    with db_conn() as db:
        try:
            cur = db.execute(
                f"INSERT INTO consent_stages({cols}, created_at, updated_at) VALUES({ph},?,?)",
                (*values.values(), now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError("이미 존재하는 동의 단계 코드입니다.") from exc
        db.commit()
        return get_stage(db, cur.lastrowid)


def update_stage(stage_id: int, fields: dict) -> dict:
    values = {k: fields[k] for k in _STAGE_FIELDS if fields.get(k) is not None}
    if not values:
        raise ValidationError("수정할 항목이 없습니다.")
    sets = ", ".join(f"{k}=?" for k in values)
    with db_conn() as db:
        get_stage(db, stage_id)
        db.execute(f"UPDATE consent_stages SET {sets}, updated_at=? WHERE id=?", (*values.values(), now_iso(), int(stage_id)))
        db.commit()
        return get_stage(db, stage_id)


def delete_stage(stage_id: int) -> None:
    with db_conn() as db:
        cur = db.execute("DELETE FROM consent_stages WHERE id=?", (int(stage_id),))
        if cur.rowcount == 0:
            raise NotFoundError("consent stage not found")
        db.commit()
