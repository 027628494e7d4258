from __future__ import annotations

from typing import Any

from johapon.db import db_conn, normalize_ts, now_iso, row_dict, rows_dicts
from johapon.errors import NotFoundError, ValidationError

_SLIDE_FIELDS = ("image_url", "link_url", "title", "starts_at", "ends_at", "sort_order", "is_active")
_WINDOW_FIELDS = ("starts_at", "ends_at")


def _values(fields: dict) -> dict:
    out: dict[str, Any] = {}
    for k in _SLIDE_FIELDS:
        if k in fields and fields[k] is not None:
            v = fields[k]
            if k == "is_active":
                v = 1 if v else 0
            elif k in _WINDOW_FIELDS:
                v = _window_ts(k, v)
            out[k] = v
    return out


def _window_ts(field: str, value: Any) -> Any:
    if not str(value).strip():
        return None
    ts = normalize_ts(value, end_of_day=field == "ends_at")
    if ts is None:
        raise ValidationError(f"{field} 형식이 올바르지 않습니다.")
    return ts


def list_slides(union_id: int) -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            "SELECT * FROM hero_slides WHERE union_id=? ORDER BY sort_order ASC, created_at DESC, id DESC",
            (int(union_id),),
        ).fetchall()
    return rows_dicts(rows)


def list_active_slides(union_id: int) -> list[dict]:
    now = now_iso()
    with db_conn() as db:
        rows = db.execute(
            """
            SELECT * FROM hero_slides
            WHERE union_id=? AND is_active=1
              AND (starts_at IS NULL OR starts_at<=?)
              AND (ends_at IS NULL OR ends_at>=?)
            ORDER BY sort_order ASC, created_at DESC, id DESC
            """,
            (int(union_id), now, now),
        ).fetchall()
    return rows_dicts(rows)


def create_slide(union_id: int, fields: dict) -> dict:
    values = _values(fields)
    if not values.get("image_url"):
        raise ValidationError("image_url은 필수입니다.")
    now = now_iso()
    cols = ", ".join(values)
    ph = ",".join(["?"] * len(values))
    with db_conn() as db:
        cur = db.execute(
            f"INSERT INTO hero_slides(union_id, {cols}, created_at, updated_at) VALUES(?,{ph},?,?)",
            (int(union_id), *values.values(), now, now),
        )
        db.commit()
        return row_dict(db.execute("SELECT * FROM hero_slides WHERE id=?", (cur.lastrowid,)).fetchone())


def get_slide(slide_id: int) -> dict:
    with db_conn() as db:
        row = row_dict(db.execute("SELECT * FROM hero_slides WHERE id=?", (int(slide_id),)).fetchone())
    if not row:
        raise NotFoundError("슬라이드를 찾을 수 없습니다.")
    return row


def update_slide(slide_id: int, fields: dict) -> dict:
    values = _values(fields)
    if not values:
        raise ValidationError("수정할 항목이 없습니다.")
    sets = ", ".join(f"{k}=?" for k in values)
    with db_conn() as db:
        cur = db.execute(f"UPDATE hero_slides SET {sets}, updated_at=? WHERE id=?", (*values.values(), now_iso(), int(slide_id)))
        if cur.rowcount == 0:
            raise NotFoundError("슬라이드를 찾을 수 없습니다.")
        db.commit()
    return get_slide(slide_id)


def delete_slide(slide_id: int) -> None:
    with db_conn() as db:
        cur = db.execute("DELETE FROM hero_slides WHERE id=?", (int(slide_id),))
        if cur.rowcount == 0:
            raise NotFoundError("슬라이드를 찾을 수 없습니다.")
        db.commit()
