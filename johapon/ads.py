"""
광고 / 광고 계약 / 청구서 / 광고 대시보드
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from johapon.db import db_conn, now_iso, row_dict, rows_dicts, to_json
from johapon.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.ads")

PLACEMENTS = ("SIDE", "HOME", "BOARD")
BILLING_CYCLES = ("MONTHLY", "YEARLY")
CONTRACT_STATUSES = ("PENDING", "ACTIVE", "EXPIRED", "CANCELLED")
INVOICE_STATUSES = ("DUE", "PAID", "OVERDUE", "CANCELLED")
EXPIRING_DAYS = 30

_AD_FIELDS = (
    "title",
    "partner_name",
    "phone",
    "image_url",
    "thumbnail_url",
    "detail_image_url",
    "link_url",
    "is_desktop_enabled",
    "is_mobile_enabled",
    "is_active",
    "placements",
    "union_id",
)
_INVOICE_MESSAGES = {
    "PAID": "입금 처리되었습니다.",
    "OVERDUE": "연체 처리되었습니다.",
    "CANCELLED": "청구가 취소되었습니다.",
    "DUE": "청구 상태로 변경되었습니다.",
}


def _parse_date(value: Any, field: str) -> date:
    try:
        return date.fromisoformat(str(value or "").strip()[:10])
    except ValueError as exc:
        raise ValidationError(f"{field} 형식이 올바르지 않습니다. (YYYY-MM-DD)") from exc


def parse_month(month: Optional[str]) -> tuple[date, date]:
    """'YYYY-MM' -> (월 첫날, 월 마지막날)"""
    if not month:
        first = date.today().replace(day=1)
    else:
        try:
            first = datetime.strptime(month.strip(), "%Y-%m").date()
        except ValueError as exc:
            raise ValidationError("month 형식이 올바르지 않습니다. (YYYY-MM)") from exc
    last = first + relativedelta(months=1) - timedelta(days=1)
    return first, last


def _ad_row(row: Optional[sqlite3.Row]) -> Optional[dict]:
    item = row_dict(row, ("placements",))
    if item is not None and not isinstance(item.get("placements"), list):
        item["placements"] = []
    return item


# --- ads ---------------------------------------------------------------------

def list_ads(union_id: Optional[str] = None, is_active: Optional[bool] = None) -> list[dict]:
    where = ["1=1"]
    params: list[Any] = []
    if union_id == "common":
        where.append("a.union_id IS NULL")
    elif union_id:
        where.append("a.union_id=?")
        params.append(int(union_id))
    if is_active is not None:
        where.append("a.is_active=?")
        params.append(1 if is_active else 0)
    with db_conn() as db:
        rows = db.execute(
            f"""
            SELECT a.*, un.name AS union_name
            FROM ads a LEFT JOIN unions un ON un.id=a.union_id
            WHERE {' AND '.join(where)}
            ORDER BY a.created_at DESC, a.id DESC
            """,
            tuple(params),
        ).fetchall()
    return [_ad_row(r) for r in rows]


def get_ad(ad_id: int) -> dict:
    with db_conn() as db:
        ad = _ad_row(db.execute("SELECT * FROM ads WHERE id=?", (int(ad_id),)).fetchone())
        if not ad:
            raise NotFoundError("광고를 찾을 수 없습니다.")
        ad["contracts"] = rows_dicts(
            db.execute("SELECT * FROM ad_contracts WHERE ad_id=? ORDER BY start_date DESC", (int(ad_id),)).fetchall()
        )
    return ad


def _ad_values(fields: dict) -> dict:
    out = {}
    for k in _AD_FIELDS:
        if k not in fields:
            continue
        v = fields[k]
        if k == "placements":
            v = to_json(list(v or []))
        elif k.startswith("is_") and v is not None:
            v = 1 if v else 0
        out[k] = v
    return out


def create_ad(fields: dict) -> dict:
    values = _ad_values(fields)
    values.setdefault("placements", "[]")
    now = now_iso()
    cols = ", ".join(values)
    ph = ",".join(["?"] * len(values))
    with db_conn() as db:
        cur = db.execute(
            f"INSERT INTO ads({cols}, created_at, updated_at) VALUES({ph},?,?)",
            (*values.values(), now, now),
        )
        db.commit()
        return _ad_row(db.execute("SELECT * FROM ads WHERE id=?", (cur.lastrowid,)).fetchone())


def update_ad(ad_id: int, fields: dict) -> dict:
    values = _ad_values({k: v for k, v in fields.items() if v is not None})
    if not values:
        raise ValidationError("수정할 항목이 없습니다.")
    sets = ", ".join(f"{k}=?" for k in values)
    with db_conn() as db:
        cur = db.execute(f"UPDATE ads SET {sets}, updated_at=? WHERE id=?", (*values.values(), now_iso(), int(ad_id)))
        if cur.rowcount == 0:
            raise NotFoundError("광고를 찾을 수 없습니다.")
        db.commit()
        return _ad_row(db.execute("SELECT * FROM ads WHERE id=?", (int(ad_id),)).fetchone())


def delete_ad(ad_id: int) -> None:
    with db_conn() as db:
        cur = db.execute("DELETE FROM ads WHERE id=?", (int(ad_id),))
        if cur.rowcount == 0:
            raise NotFoundError("광고를 찾을 수 없습니다.")
        db.commit()


def tenant_ads(union_id: int, placement: Optional[str] = None) -> list[dict]:
    """해당 조합 광고 + 공통 광고 중 오늘 유효한 ACTIVE 계약이 있는 것"""
    today = date.today().isoformat()
    sql = """
        SELECT DISTINCT a.* FROM ads a
        JOIN ad_contracts c ON c.ad_id=a.id
        WHERE a.is_active=1 AND (a.union_id IS NULL OR a.union_id=?)
          AND c.status='ACTIVE' AND c.start_date<=? AND c.end_date>=?
    """
    params: list[Any] = [int(union_id), today, today]
    if placement:
        sql += " AND a.placements LIKE ?"
        params.append(f'%"{placement.strip().upper()}"%')
    sql += " ORDER BY a.created_at DESC, a.id DESC"
    with db_conn() as db:
        rows = db.execute(sql, tuple(params)).fetchall()
    return [_ad_row(r) for r in rows]


def tenant_ads_board(union_id: int, page: int = 1, page_size: int = 12, search: Optional[str] = None) -> dict:
    today = date.today().isoformat()
    where = """
        a.is_active=1 AND (a.union_id IS NULL OR a.union_id=?)
        AND EXISTS (SELECT 1 FROM ad_contracts c WHERE c.ad_id=a.id AND c.status='ACTIVE'
                    AND c.start_date<=? AND c.end_date>=?)
    """
    params: list[Any] = [int(union_id), today, today]
    if search:
        where += " AND (a.title LIKE ? OR a.partner_name LIKE ?)"
        params += [f"%{search}%", f"%{search}%"]
    page = max(1, int(page))
    page_size = max(1, min(100, int(page_size)))
    with db_conn() as db:
        total = db.execute(f"SELECT COUNT(*) FROM ads a WHERE {where}", tuple(params)).fetchone()[0]
        rows = db.execute(
            f"""
            SELECT a.id, a.title, a.partner_name, a.phone, a.thumbnail_url, a.detail_image_url,
                   a.placements, a.created_at
            FROM ads a WHERE {where}
            ORDER BY a.created_at DESC, a.id DESC LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    items = [_ad_row(r) for r in rows]
    return {"items": items, "total": int(total), "hasMore": len(items) == page_size, "page": page, "pageSize": page_size}


# --- contracts ---------------------------------------------------------------

def _check_overlap(con: sqlite3.Connection, ad_id: int, start: date, end: date, exclude_id: Optional[int] = None) -> None:
    sql = """
        SELECT id, start_date, end_date FROM ad_contracts
        WHERE ad_id=? AND status='ACTIVE' AND start_date<=? AND end_date>=?
    """
    params: list[Any] = [int(ad_id), end.isoformat(), start.isoformat()]
    if exclude_id is not None:
        sql += " AND id<>?"
        params.append(int(exclude_id))
    hit = con.execute(sql + " LIMIT 1", tuple(params)).fetchone()
    if hit:
        raise ConflictError(
            "해당 기간에 이미 활성 계약이 존재합니다.",
            conflictContractId=hit["id"],
        )


def create_contract(payload: dict) -> dict:
    required = ("ad_id", "start_date", "end_date", "billing_cycle", "amount")
    missing = [k for k in required if payload.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"필수 항목이 누락되었습니다: {', '.join(missing)}")
    start = _parse_date(payload["start_date"], "start_date")
    end = _parse_date(payload["end_date"], "end_date")
    if start >= end:
        raise ValidationError("시작일은 종료일보다 이전이어야 합니다.")
    billing_cycle = str(payload["billing_cycle"]).upper()
    if billing_cycle not in BILLING_CYCLES:
        raise ValidationError("billing_cycle은 MONTHLY 또는 YEARLY 여야 합니다.")
    try:
        amount = int(payload["amount"])
    except (TypeError, ValueError) as exc:
        raise ValidationError("금액이 올바르지 않습니다.") from exc
    if amount <= 0:
        raise ValidationError("금액은 0보다 커야 합니다.")
    status = str(payload.get("status") or "PENDING").upper()
    if status not in CONTRACT_STATUSES:
        raise ValidationError(f"invalid status: {status}")
    auto_invoice = payload.get("auto_invoice")
    auto_invoice = True if auto_invoice is None else bool(auto_invoice)

    now = now_iso()
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM ads WHERE id=?", (int(payload["ad_id"]),)).fetchone():
            raise NotFoundError("광고를 찾을 수 없습니다.")
        _check_overlap(db, int(payload["ad_id"]), start, end)
        cur = db.execute(
            """
            INSERT INTO ad_contracts(ad_id, start_date, end_date, billing_cycle, amount, status,
                                     auto_invoice, memo, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?)
            """,
            (
                int(payload["ad_id"]),
                start.isoformat(),
                end.isoformat(),
                billing_cycle,
                amount,
                status,
                1 if auto_invoice else 0,
                payload.get("memo"),
                now,
                now,
            ),
        )
        db.commit()
        row = row_dict(db.execute("SELECT * FROM ad_contracts WHERE id=?", (cur.lastrowid,)).fetchone())
    logger.info("ad contract %s created for ad %s", row["id"], row["ad_id"])
    return row


def list_contracts(
    union_id: Optional[str] = None,
    status: Optional[str] = None,
    ad_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    where = ["1=1"]
    params: list[Any] = []
    if union_id == "common":
        where.append("a.union_id IS NULL")
    elif union_id:
        where.append("a.union_id=?")
        params.append(int(union_id))
    if status:
        where.append("c.status=?")
        params.append(status)
    if ad_id:
        where.append("c.ad_id=?")
        params.append(int(ad_id))
    clause = " AND ".join(where)
    page = max(1, int(page))
    page_size = max(1, min(200, int(page_size)))
    with db_conn() as db:
        total = db.execute(
            f"SELECT COUNT(*) FROM ad_contracts c JOIN ads a ON a.id=c.ad_id WHERE {clause}",
            tuple(params),
        ).fetchone()[0]
        rows = db.execute(
            f"""
            SELECT c.*, a.title AS ad_title, a.partner_name, a.union_id
            FROM ad_contracts c JOIN ads a ON a.id=c.ad_id
            WHERE {clause}
            ORDER BY c.created_at DESC, c.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    total = int(total)
    return {"items": rows_dicts(rows), "total": total, "hasMore": page * page_size < total}


def get_contract(contract_id: int) -> dict:
    with db_conn() as db:
        row = row_dict(
            db.execute(
                """
                SELECT c.*, a.title AS ad_title, a.partner_name, a.union_id
                FROM ad_contracts c JOIN ads a ON a.id=c.ad_id WHERE c.id=?
                """,
                (int(contract_id),),
            ).fetchone()
        )
        if not row:
            raise NotFoundError("계약을 찾을 수 없습니다.")
        row["invoices"] = rows_dicts(
            db.execute(
                "SELECT * FROM ad_invoices WHERE contract_id=? ORDER BY period_start DESC",
                (int(contract_id),),
            ).fetchall()
        )
    return row


def update_contract(contract_id: int, fields: dict) -> dict:
    changes = {k: v for k, v in fields.items() if v is not None}
    if not changes:
        raise ValidationError("수정할 항목이 없습니다.")
    with db_conn() as db:
        current = db.execute("SELECT * FROM ad_contracts WHERE id=?", (int(contract_id),)).fetchone()
        if not current:
            raise NotFoundError("계약을 찾을 수 없습니다.")
        start = _parse_date(changes.get("start_date", current["start_date"]), "start_date")
        end = _parse_date(changes.get("end_date", current["end_date"]), "end_date")
        if start >= end:
            raise ValidationError("시작일은 종료일보다 이전이어야 합니다.")
        if "amount" in changes and int(changes["amount"]) <= 0:
            raise ValidationError("금액은 0보다 커야 합니다.")
        _check_overlap(db, current["ad_id"], start, end, exclude_id=int(contract_id))

        if "start_date" in changes:
            changes["start_date"] = start.isoformat()
        if "end_date" in changes:
            changes["end_date"] = end.isoformat()
        if "auto_invoice" in changes:
            changes["auto_invoice"] = 1 if changes["auto_invoice"] else 0
        sets = ", ".join(f"{k}=?" for k in changes)
        db.execute(
            f"UPDATE ad_contracts SET {sets}, updated_at=? WHERE id=?",
            (*changes.values(), now_iso(), int(contract_id)),
        )
        db.commit()
    return get_contract(contract_id)


def delete_contract(contract_id: int) -> None:
    with db_conn() as db:
        if not db.execute("SELECT 1 FROM ad_contracts WHERE id=?", (int(contract_id),)).fetchone():
            raise NotFoundError("계약을 찾을 수 없습니다.")
        paid = db.execute(
            "SELECT COUNT(*) FROM ad_invoices WHERE contract_id=? AND status='PAID'",
            (int(contract_id),),
        ).fetchone()[0]
        if int(paid) > 0:
            raise ValidationError("입금 완료된 청구서가 있는 계약은 삭제할 수 없습니다.")
        db.execute("DELETE FROM ad_contracts WHERE id=?", (int(contract_id),))
        db.commit()


# --- invoices ----------------------------------------------------------------

def list_invoices(
    status: Optional[str] = None,
    contract_id: Optional[int] = None,
    month: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    where = ["1=1"]
    params: list[Any] = []
    if status:
        where.append("i.status=?")
        params.append(status)
    if contract_id:
        where.append("i.contract_id=?")
        params.append(int(contract_id))
    if month:
        first, last = parse_month(month)
        where.append("i.period_start>=? AND i.period_start<=?")
        params += [first.isoformat(), last.isoformat()]
    clause = " AND ".join(where)
    page = max(1, int(page))
    page_size = max(1, min(200, int(page_size)))
    with db_conn() as db:
        total = int(db.execute(f"SELECT COUNT(*) FROM ad_invoices i WHERE {clause}", tuple(params)).fetchone()[0])
        rows = db.execute(
            f"""
            SELECT i.*, c.ad_id, c.billing_cycle, a.title AS ad_title, a.partner_name
            FROM ad_invoices i
            JOIN ad_contracts c ON c.id=i.contract_id
            JOIN ads a ON a.id=c.ad_id
            WHERE {clause}
            ORDER BY i.period_start DESC, i.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {"items": rows_dicts(rows), "total": total, "hasMore": page * page_size < total}


def generate_invoices(month: str) -> dict:
    first, last = parse_month(month)
    due = first + relativedelta(months=2) - timedelta(days=1)
    generated = 0
    with db_conn() as db:
        contracts = db.execute(
            """
            SELECT * FROM ad_contracts
            WHERE status='ACTIVE' AND auto_invoice=1 AND start_date<=? AND end_date>=?
            ORDER BY id
            """,
            (last.isoformat(), first.isoformat()),
        ).fetchall()
        now = now_iso()
        for c in contracts:
            amount = int(c["amount"])
            if c["billing_cycle"] == "YEARLY":
                amount = round(amount / 12)
            cur = db.execute(
                """
                INSERT OR IGNORE INTO ad_invoices(contract_id, period_start, period_end, amount, due_date,
                                                  status, created_at, updated_at)
                VALUES(?,?,?,?,?,'DUE',?,?)
                """,
                (c["id"], first.isoformat(), last.isoformat(), amount, due.isoformat(), now, now),
            )
            generated += cur.rowcount
        db.commit()
    logger.info("invoices generated month=%s count=%s", first.strftime("%Y-%m"), generated)
    return {"generated_count": generated, "month": first.strftime("%Y-%m")}


def update_invoice(invoice_id: int, status: Optional[str] = None, paid_at: Optional[str] = None, memo: Optional[str] = None) -> dict:
    changes: dict[str, Any] = {}
    if status is not None:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"invalid status: {status}")
        changes["status"] = status
        if status == "PAID":
            changes["paid_at"] = paid_at or now_iso()
        else:
            changes["paid_at"] = None
    elif paid_at is not None:
        changes["paid_at"] = paid_at
    if memo is not None:
        changes["memo"] = memo
    if not changes:
        raise ValidationError("수정할 항목이 없습니다.")

    sets = ", ".join(f"{k}=?" for k in changes)
    with db_conn() as db:
        cur = db.execute(f"UPDATE ad_invoices SET {sets}, updated_at=? WHERE id=?", (*changes.values(), now_iso(), int(invoice_id)))
        if cur.rowcount == 0:
            raise NotFoundError("청구서를 찾을 수 없습니다.")
        db.commit()
        row = row_dict(db.execute("SELECT * FROM ad_invoices WHERE id=?", (int(invoice_id),)).fetchone())
    return {"invoice": row, "message": _INVOICE_MESSAGES.get(status or "", "수정되었습니다.")}


# --- dashboard ---------------------------------------------------------------

def dashboard(month: Optional[str] = None) -> dict:
    first, last = parse_month(month)
    today = date.today()
    today_s = today.isoformat()
    soon_s = (today + timedelta(days=EXPIRING_DAYS)).isoformat()
    overdue_cond = "(i.status='OVERDUE' OR (i.status='DUE' AND i.due_date<?))"

    with db_conn() as db:
        m = db.execute(
            f"""
            SELECT
              COALESCE(SUM(CASE WHEN i.status='PAID' THEN i.amount END), 0) AS paid_amount,
              COALESCE(SUM(CASE WHEN i.status='DUE' THEN i.amount END), 0) AS due_amount,
              COALESCE(SUM(CASE WHEN {overdue_cond} THEN i.amount END), 0) AS overdue_amount
            FROM ad_invoices i
            WHERE i.period_start>=? AND i.period_start<=?
            """,
            (today_s, first.isoformat(), last.isoformat()),
        ).fetchone()

        overdue_rows = db.execute(
            f"""
            SELECT a.partner_name, a.title AS ad_title, c.id AS contract_id,
                   SUM(i.amount) AS overdue_amount, MIN(i.due_date) AS oldest_due_date, COUNT(*) AS invoice_count
            FROM ad_invoices i
            JOIN ad_contracts c ON c.id=i.contract_id
            JOIN ads a ON a.id=c.ad_id
            WHERE {overdue_cond}
            GROUP BY c.id
            ORDER BY oldest_due_date ASC
            """,
            (today_s,),
        ).fetchall()

        stats = db.execute(
            """
            SELECT
              SUM(CASE WHEN status='ACTIVE' THEN 1 ELSE 0 END) AS active,
              SUM(CASE WHEN status='PENDING' THEN 1 ELSE 0 END) AS pending,
              SUM(CASE WHEN status='EXPIRED' THEN 1 ELSE 0 END) AS expired,
              SUM(CASE WHEN status='CANCELLED' THEN 1 ELSE 0 END) AS cancelled,
              SUM(CASE WHEN status='ACTIVE' AND end_date>=? AND end_date<=? THEN 1 ELSE 0 END) AS expiring_soon
            FROM ad_contracts
            """,
            (today_s, soon_s),
        ).fetchone()

        expiring = db.execute(
            """
            SELECT c.*, a.title AS ad_title, a.partner_name
            FROM ad_contracts c JOIN ads a ON a.id=c.ad_id
            WHERE c.status='ACTIVE' AND c.end_date>=? AND c.end_date<=?
            ORDER BY c.end_date ASC LIMIT 10
            """,
            (today_s, soon_s),
        ).fetchall()

    overdue_partners = []
    for r in overdue_rows[:10]:
        item = dict(r)
        item["overdue_days"] = max(0, (today - date.fromisoformat(r["oldest_due_date"])).days)
        overdue_partners.append(item)
    expiring_contracts = []
    for r in expiring:
        item = dict(r)
        item["days_until_expiry"] = (date.fromisoformat(r["end_date"]) - today).days
        expiring_contracts.append(item)

    return {
        "month": first.strftime("%Y-%m"),
        "monthly": {
            "paid_amount": int(m["paid_amount"]),
            "due_amount": int(m["due_amount"]),
            "overdue_amount": int(m["overdue_amount"]),
            "overdue_partners_count": len({r["partner_name"] for r in overdue_rows}),
        },
        "contract_stats": {k: int(stats[k] or 0) for k in ("active", "pending", "expired", "cancelled", "expiring_soon")},
        "overdue_partners": overdue_partners,
        "expiring_contracts": expiring_contracts,
    }
