"""
조합별 게시판: 공지사항 / 질문답변 / 자유게시판 / 댓글 / 좋아요 / 첨부파일
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from johapon.auth import can_access_union
from johapon.db import db_conn, normalize_ts, now_iso, row_dict, rows_dicts
from johapon.errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger("johapon.boards")

SECRET_TITLE = "비밀글입니다."
SECRET_FORBIDDEN = "비밀글은 작성자와 관리자만 볼 수 있습니다."
ENTITY_TABLES = {
    "notice": "notices",
    "question": "questions",
    "free_board": "free_boards",
}


def is_union_admin(user: Optional[dict], union_id: int) -> bool:
    return bool(user and user.get("is_admin") and can_access_union(user, union_id))


def _require_admin(user: Optional[dict], union_id: int) -> None:
    if not user:
        raise ForbiddenError("로그인이 필요합니다.")
    if not is_union_admin(user, union_id):
        raise ForbiddenError("관리자 권한이 필요합니다.")


def _require_member(user: Optional[dict], union_id: int) -> None:
    if not user:
        raise ForbiddenError("로그인이 필요합니다.")
    if not can_access_union(user, union_id):
        raise ForbiddenError("해당 조합의 조합원만 이용할 수 있습니다.")


def _can_modify(user: Optional[dict], union_id: int, author_id: Optional[int]) -> bool:
    if not user:
        return False
    if is_union_admin(user, union_id):
        return True
    return author_id is not None and int(author_id) == int(user["id"])


def _page(page: int, page_size: int) -> tuple[int, int]:
    return max(1, int(page)), max(1, min(100, int(page_size)))


def _load(con: sqlite3.Connection, table: str, union_id: int, item_id: int) -> dict:
    row = con.execute(
        f"""
        SELECT t.*, u.name AS author_name
        FROM {table} t LEFT JOIN users u ON u.id=t.author_id
        WHERE t.id=? AND t.union_id=?
        """,
        (int(item_id), int(union_id)),
    ).fetchone()
    if not row:
        raise NotFoundError("게시글을 찾을 수 없습니다.")
    return dict(row)


def _end_date(value: Optional[str]) -> Optional[str]:
    if not (value or "").strip():
        return None
    ts = normalize_ts(value, end_of_day=True)
    if ts is None:
        raise ValidationError("end_date 형식이 올바르지 않습니다.")
    return ts


def _delete_attachments(con: sqlite3.Connection, entity_type: str, entity_id: int) -> None:
    con.execute("DELETE FROM files WHERE entity_type=? AND entity_id=?", (entity_type, int(entity_id)))
    con.execute("DELETE FROM comments WHERE entity_type=? AND entity_id=?", (entity_type, int(entity_id)))
    con.execute("DELETE FROM post_likes WHERE entity_type=? AND entity_id=?", (entity_type, int(entity_id)))


# --- notices -----------------------------------------------------------------

def list_notices(union_id: int, page: int = 1, page_size: int = 10, popup: bool = False) -> dict:
    page, page_size = _page(page, page_size)
    where = "n.union_id=?"
    params: list[Any] = [int(union_id)]
    if popup:
        where += " AND n.is_popup=1 AND (n.end_date IS NULL OR n.end_date>=?)"
        params.append(now_iso())
    with db_conn() as db:
        total = int(db.execute(f"SELECT COUNT(*) FROM notices n WHERE {where}", tuple(params)).fetchone()[0])
        rows = db.execute(
            f"""
            SELECT n.*, u.name AS author_name
            FROM notices n LEFT JOIN users u ON u.id=n.author_id
            WHERE {where}
            ORDER BY n.created_at DESC, n.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {"items": rows_dicts(rows), "page": page, "page_size": page_size, "total": total}


def get_notice(union_id: int, notice_id: int) -> dict:
    with db_conn() as db:
        _load(db, "notices", union_id, notice_id)
        db.execute("UPDATE notices SET views=views+1 WHERE id=?", (int(notice_id),))
        db.commit()
        return _load(db, "notices", union_id, notice_id)


def create_notice(union_id: int, user: Optional[dict], data: dict) -> dict:
    _require_admin(user, union_id)
    now = now_iso()
    with db_conn() as db:
        cur = db.execute(
            """
            INSERT INTO notices(union_id, title, content, author_id, is_popup, end_date, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (
                int(union_id),
                data["title"].strip(),
                data["content"],
                user["id"],
                1 if data.get("is_popup") else 0,
                _end_date(data.get("end_date")),
                now,
                now,
            ),
        )
        db.commit()
        return _load(db, "notices", union_id, cur.lastrowid)


def update_notice(union_id: int, user: Optional[dict], notice_id: int, data: dict) -> dict:
    _require_admin(user, union_id)
    changes = {k: v for k, v in data.items() if k in ("title", "content", "is_popup", "end_date") and v is not None}
    if "is_popup" in changes:
        changes["is_popup"] = 1 if changes["is_popup"] else 0
    if "end_date" in changes:
        changes["end_date"] = _end_date(changes["end_date"])
    if not changes:
        raise ValidationError("수정할 항목이 없습니다.")
    with db_conn() as db:
        _load(db, "notices", union_id, notice_id)
        sets = ", ".join(f"{k}=?" for k in changes)
        db.execute(f"UPDATE notices SET {sets}, updated_at=? WHERE id=?", (*changes.values(), now_iso(), int(notice_id)))
        db.commit()
        return _load(db, "notices", union_id, notice_id)


def delete_notice(union_id: int, user: Optional[dict], notice_id: int) -> None:
    _require_admin(user, union_id)
    with db_conn() as db:
        _load(db, "notices", union_id, notice_id)
        _delete_attachments(db, "notice", notice_id)
        db.execute("DELETE FROM notices WHERE id=?", (int(notice_id),))
        db.commit()


# --- questions ---------------------------------------------------------------

def _mask_question(item: dict, user: Optional[dict], union_id: int) -> dict:
    if not int(item.get("is_secret") or 0):
        return item
    if _can_modify(user, union_id, item.get("author_id")):
        return item
    masked = dict(item)
    masked["title"] = SECRET_TITLE
    masked["content"] = None
    masked["answer_content"] = None
    return masked


def list_questions(
    union_id: int,
    user: Optional[dict],
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
) -> dict:
    page, page_size = _page(page, page_size)
    where = "q.union_id=?"
    params: list[Any] = [int(union_id)]
    if search:
        like = f"%{search.strip()}%"
        where += " AND (q.title LIKE ? OR q.content LIKE ? OR u.name LIKE ?)"
        params += [like, like, like]
    with db_conn() as db:
        total = int(
            db.execute(
                f"SELECT COUNT(*) FROM questions q LEFT JOIN users u ON u.id=q.author_id WHERE {where}",
                tuple(params),
            ).fetchone()[0]
        )
        rows = db.execute(
            f"""
            SELECT q.*, u.name AS author_name
            FROM questions q LEFT JOIN users u ON u.id=q.author_id
            WHERE {where}
            ORDER BY q.created_at DESC, q.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    items = [_mask_question(dict(r), user, union_id) for r in rows]
    return {"items": items, "page": page, "page_size": page_size, "total": total}


def get_question(union_id: int, user: Optional[dict], question_id: int) -> dict:
    with db_conn() as db:
        item = _load(db, "questions", union_id, question_id)
        if int(item.get("is_secret") or 0) and not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError(SECRET_FORBIDDEN)
        db.execute("UPDATE questions SET views=views+1 WHERE id=?", (int(question_id),))
        db.commit()
        return _load(db, "questions", union_id, question_id)


def create_question(union_id: int, user: Optional[dict], data: dict) -> dict:
    _require_member(user, union_id)
    now = now_iso()
    with db_conn() as db:
        cur = db.execute(
            """
            INSERT INTO questions(union_id, title, content, author_id, is_secret, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?)
            """,
            (int(union_id), data["title"].strip(), data["content"], user["id"], 1 if data.get("is_secret") else 0, now, now),
        )
        db.commit()
        return _load(db, "questions", union_id, cur.lastrowid)


def answer_question(union_id: int, user: Optional[dict], question_id: int, answer: str) -> dict:
    _require_admin(user, union_id)
    now = now_iso()
    with db_conn() as db:
        _load(db, "questions", union_id, question_id)
        db.execute(
            "UPDATE questions SET answer_content=?, answer_author_id=?, answered_at=?, updated_at=? WHERE id=?",
            (answer, user["id"], now, now, int(question_id)),
        )
        db.commit()
        return _load(db, "questions", union_id, question_id)


def delete_question(union_id: int, user: Optional[dict], question_id: int) -> None:
    with db_conn() as db:
        item = _load(db, "questions", union_id, question_id)
        if not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError("삭제 권한이 없습니다.")
        _delete_attachments(db, "question", question_id)
        db.execute("DELETE FROM questions WHERE id=?", (int(question_id),))
        db.commit()


# --- free boards -------------------------------------------------------------

def list_free_boards(union_id: int, page: int = 1, page_size: int = 10, search: Optional[str] = None) -> dict:
    page, page_size = _page(page, page_size)
    where = "f.union_id=?"
    params: list[Any] = [int(union_id)]
    if search:
        like = f"%{search.strip()}%"
        where += " AND (f.title LIKE ? OR f.content LIKE ? OR u.name LIKE ?)"
        params += [like, like, like]
    with db_conn() as db:
        total = int(
            db.execute(
                f"SELECT COUNT(*) FROM free_boards f LEFT JOIN users u ON u.id=f.author_id WHERE {where}",
                tuple(params),
            ).fetchone()[0]
        )
        rows = db.execute(
            f"""
            SELECT f.*, u.name AS author_name,
                   (SELECT COUNT(*) FROM comments c WHERE c.entity_type='free_board' AND c.entity_id=f.id) AS comment_count
            FROM free_boards f LEFT JOIN users u ON u.id=f.author_id
            WHERE {where}
            ORDER BY f.created_at DESC, f.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {"items": rows_dicts(rows), "page": page, "page_size": page_size, "total": total}


def get_free_board(union_id: int, post_id: int, user: Optional[dict] = None) -> dict:
    with db_conn() as db:
        _load(db, "free_boards", union_id, post_id)
        db.execute("UPDATE free_boards SET views=views+1 WHERE id=?", (int(post_id),))
        db.commit()
        item = _load(db, "free_boards", union_id, post_id)
        item["liked"] = bool(
            user
            and db.execute(
                "SELECT 1 FROM post_likes WHERE entity_type='free_board' AND entity_id=? AND user_id=?",
                (int(post_id), user["id"]),
            ).fetchone()
        )
        item["files"] = rows_dicts(
            db.execute(
                "SELECT * FROM files WHERE entity_type='free_board' AND entity_id=? ORDER BY id",
                (int(post_id),),
            ).fetchall()
        )
    return item


def create_free_board(union_id: int, user: Optional[dict], data: dict) -> dict:
    _require_member(user, union_id)
    now = now_iso()
    with db_conn() as db:
        cur = db.execute(
            """
            INSERT INTO free_boards(union_id, title, content, author_id, created_at, updated_at)
            VALUES(?,?,?,?,?,?)
            """,
            (int(union_id), data["title"].strip(), data["content"], user["id"], now, now),
        )
        db.commit()
        return _load(db, "free_boards", union_id, cur.lastrowid)


def update_free_board(union_id: int, user: Optional[dict], post_id: int, data: dict) -> dict:
    changes = {k: v for k, v in data.items() if k in ("title", "content") and v is not None}
    if not changes:
        raise ValidationError("수정할 항목이 없습니다.")
    with db_conn() as db:
        item = _load(db, "free_boards", union_id, post_id)
        if not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError("수정 권한이 없습니다.")
        sets = ", ".join(f"{k}=?" for k in changes)
        db.execute(f"UPDATE free_boards SET {sets}, updated_at=? WHERE id=?", (*changes.values(), now_iso(), int(post_id)))
        db.commit()
        return _load(db, "free_boards", union_id, post_id)


def delete_free_board(union_id: int, user: Optional[dict], post_id: int) -> None:
    with db_conn() as db:
        item = _load(db, "free_boards", union_id, post_id)
        if not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError("삭제 권한이 없습니다.")
        _delete_attachments(db, "free_board", post_id)
        db.execute("DELETE FROM free_boards WHERE id=?", (int(post_id),))
        db.commit()
    logger.info("free board %s deleted by %s", post_id, user["id"])


def toggle_like(union_id: int, user: Optional[dict], post_id: int) -> dict:
    _require_member(user, union_id)
    with db_conn() as db:
        _load(db, "free_boards", union_id, post_id)
        existing = db.execute(
            "SELECT id FROM post_likes WHERE entity_type='free_board' AND entity_id=? AND user_id=?",
            (int(post_id), user["id"]),
        ).fetchone()
        if existing:
            db.execute("DELETE FROM post_likes WHERE id=?", (existing["id"],))
            liked = False
        else:
            db.execute(
                "INSERT INTO post_likes(entity_type, entity_id, user_id, created_at) VALUES('free_board',?,?,?)",
                (int(post_id), user["id"], now_iso()),
            )
            liked = True
        db.execute(
            """
            UPDATE free_boards
            SET like_count=(SELECT COUNT(*) FROM post_likes WHERE entity_type='free_board' AND entity_id=?)
            WHERE id=?
            """,
            (int(post_id), int(post_id)),
        )
        db.commit()
        count = db.execute("SELECT like_count FROM free_boards WHERE id=?", (int(post_id),)).fetchone()[0]
    return {"liked": liked, "like_count": int(count)}


# --- comments ----------------------------------------------------------------

def _require_entity(con: sqlite3.Connection, union_id: int, entity_type: str, entity_id: int) -> dict:
    table = ENTITY_TABLES.get(entity_type)
    if not table:
        raise ValidationError(f"invalid entity_type: {entity_type}")
    return _load(con, table, union_id, entity_id)


def _require_readable(
    con: sqlite3.Connection, union_id: int, user: Optional[dict], entity_type: str, entity_id: int
) -> dict:
    # 비밀 질문의 댓글/첨부는 본문과 같은 범위(작성자, 관리자)만 열람
    item = _require_entity(con, union_id, entity_type, entity_id)
    if entity_type == "question" and int(item.get("is_secret") or 0):
        if not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError(SECRET_FORBIDDEN)
    return item


def list_comments(union_id: int, entity_type: str, entity_id: int, user: Optional[dict] = None) -> list[dict]:
    with db_conn() as db:
        _require_readable(db, union_id, user, entity_type, entity_id)
        rows = db.execute(
            """
            SELECT c.*, u.name AS author_name
            FROM comments c LEFT JOIN users u ON u.id=c.author_id
            WHERE c.union_id=? AND c.entity_type=? AND c.entity_id=?
            ORDER BY c.created_at ASC, c.id ASC
            """,
            (int(union_id), entity_type, int(entity_id)),
        ).fetchall()

    by_id: dict[int, dict] = {}
    roots: list[dict] = []
    for r in rows:
        item = dict(r)
        item["replies"] = []
        by_id[item["id"]] = item
    for item in by_id.values():
        parent = by_id.get(item["parent_id"]) if item["parent_id"] else None
        if parent is not None:
            parent["replies"].append(item)
        else:
            roots.append(item)
    return roots


def create_comment(union_id: int, user: Optional[dict], data: dict) -> dict:
    _require_member(user, union_id)
    with db_conn() as db:
        _require_readable(db, union_id, user, data["entity_type"], data["entity_id"])
        parent_id = data.get("parent_id")
        if parent_id:
            parent = db.execute(
                "SELECT entity_type, entity_id FROM comments WHERE id=? AND union_id=?",
                (int(parent_id), int(union_id)),
            ).fetchone()
            if not parent or parent["entity_type"] != data["entity_type"] or int(parent["entity_id"]) != int(data["entity_id"]):
                raise ValidationError("상위 댓글이 올바르지 않습니다.")
        now = now_iso()
        cur = db.execute(
            """
            INSERT INTO comments(union_id, entity_type, entity_id, parent_id, author_id, content, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (int(union_id), data["entity_type"], int(data["entity_id"]), parent_id, user["id"], data["content"], now, now),
        )
        db.commit()
        return row_dict(db.execute("SELECT * FROM comments WHERE id=?", (cur.lastrowid,)).fetchone())


def delete_comment(union_id: int, user: Optional[dict], comment_id: int) -> None:
    with db_conn() as db:
        row = db.execute(
            "SELECT * FROM comments WHERE id=? AND union_id=?",
            (int(comment_id), int(union_id)),
        ).fetchone()
        if not row:
            raise NotFoundError("댓글을 찾을 수 없습니다.")
        if not _can_modify(user, union_id, row["author_id"]):
            raise ForbiddenError("삭제 권한이 없습니다.")
        # 답글은 parent_id FK cascade 로 함께 삭제
        db.execute("DELETE FROM comments WHERE id=?", (int(comment_id),))
        db.commit()


# --- files -------------------------------------------------------------------

def add_file(union_id: int, user: Optional[dict], data: dict) -> dict:
    _require_member(user, union_id)
    with db_conn() as db:
        item = _load(db, ENTITY_TABLES[data["entity_type"]], union_id, data["entity_id"])
        if not _can_modify(user, union_id, item.get("author_id")):
            raise ForbiddenError("첨부 권한이 없습니다.")
        cur = db.execute(
            """
            INSERT INTO files(union_id, entity_type, entity_id, file_name, file_url, file_size, uploaded_by, created_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (
                int(union_id),
                data["entity_type"],
                int(data["entity_id"]),
                data["file_name"],
                data["file_url"],
                data.get("file_size"),
                user["id"],
                now_iso(),
            ),
        )
        db.commit()
        return dict(db.execute("SELECT * FROM files WHERE id=?", (cur.lastrowid,)).fetchone())


def list_files(union_id: int, entity_type: str, entity_id: int, user: Optional[dict] = None) -> list[dict]:
    with db_conn() as db:
        _require_readable(db, union_id, user, entity_type, entity_id)
        rows = db.execute(
            "SELECT * FROM files WHERE union_id=? AND entity_type=? AND entity_id=? ORDER BY id",
            (int(union_id), entity_type, int(entity_id)),
        ).fetchall()
    return rows_dicts(rows)
