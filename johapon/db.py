from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from johapon.config import env_str

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DEFAULT_DB_PATH = DATA_DIR / "johapon.db"

LOG = logging.getLogger("johapon.db")

_TABLE_COL_CACHE: Dict[str, List[str]] = {}

DEFAULT_PRICING = (("KAKAO", 15), ("SMS", 20), ("LMS", 50))


def db_path() -> Path:
    raw = env_str("JOHAPON_DB_PATH")
    return Path(raw) if raw else DEFAULT_DB_PATH


def _connect() -> sqlite3.Connection:
    path = db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    timeout_sec = 30.0
    try:
        raw = str(os.getenv("JOHAPON_SQLITE_TIMEOUT_SEC") or "").strip()
        if raw:
            timeout_sec = float(raw)
    except ValueError:
        timeout_sec = 30.0
    timeout_sec = max(1.0, min(60.0, timeout_sec))
    con = sqlite3.connect(str(path), timeout=timeout_sec)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON;")
    try:
        busy_ms = 30000
        raw_busy = str(os.getenv("JOHAPON_SQLITE_BUSY_TIMEOUT_MS") or "").strip()
        if raw_busy:
            busy_ms = int(raw_busy)
        busy_ms = max(1000, min(60000, busy_ms))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
    except (ValueError, sqlite3.DatabaseError):
        # busy_timeout is best-effort
        pass
    return con


@contextmanager
def db_conn() -> Iterator[sqlite3.Connection]:
    con = _connect()
    try:
        yield con
    finally:
        con.close()


def now_iso() -> str:
    return _dt.datetime.now().replace(microsecond=0).isoformat(sep=" ")


def today_iso() -> str:
    return _dt.date.today().isoformat()


def parse_ts(value: Any) -> Optional[_dt.datetime]:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        ts = _dt.datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts


def normalize_ts(value: Any, end_of_day: bool = False) -> Optional[str]:
    """
    now_iso() 와 문자열 비교가 가능한 'YYYY-MM-DD HH:MM:SS' 로 변환.
    날짜만 온 경우 end_of_day 이면 그날 23:59:59 까지로 본다.
    """
    ts = parse_ts(value)
    if ts is None:
        return None
    if end_of_day and len(str(value).strip()) == 10:
        ts = ts.replace(hour=23, minute=59, second=59)
    return ts.replace(microsecond=0).isoformat(sep=" ")


def row_dict(row: Optional[sqlite3.Row], json_cols: tuple[str, ...] = ()) -> Optional[dict]:
    if row is None:
        return None
    out = dict(row)
    for col in json_cols:
        raw = out.get(col)
        if isinstance(raw, str) and raw:
            try:
                out[col] = json.loads(raw)
            except ValueError:
                pass
    return out


def rows_dicts(rows: List[sqlite3.Row], json_cols: tuple[str, ...] = ()) -> List[dict]:
    return [row_dict(r, json_cols) for r in rows]


def to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def table_columns(con: sqlite3.Connection, table: str) -> List[str]:
    cols = _TABLE_COL_CACHE.get(table)
    if cols:
        return cols
    cols = [r[1] for r in con.execute(f"PRAGMA table_info({table})").fetchall()]
    _TABLE_COL_CACHE[table] = cols
    return cols


def _invalidate_col_cache(table: str) -> None:
    _TABLE_COL_CACHE.pop(table, None)


def _ensure_column(con: sqlite3.Connection, table: str, col_def: str) -> None:
    col_name = col_def.split()[0]
    cols = table_columns(con, table)
    if col_name in cols:
        return
    con.execute(f"ALTER TABLE {table} ADD COLUMN {col_def}")
    _invalidate_col_cache(table)


def ensure_tenant_tables(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS unions (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          slug TEXT NOT NULL UNIQUE,
          description TEXT,
          address TEXT,
          phone TEXT,
          email TEXT,
          logo_url TEXT,
          business_type TEXT,
          is_active INTEGER NOT NULL DEFAULT 1,
          alimtalk_sender_key TEXT,
          alimtalk_channel_name TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    _ensure_column(con, "unions", "notice_template_code TEXT")

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER REFERENCES unions(id) ON DELETE SET NULL,
          name TEXT NOT NULL,
          email TEXT,
          phone_number TEXT,
          birth_date TEXT,
          property_address TEXT,
          property_address_detail TEXT,
          property_address_road TEXT,
          property_address_jibun TEXT,
          property_pnu TEXT,
          resident_address TEXT,
          resident_address_detail TEXT,
          resident_address_road TEXT,
          resident_address_jibun TEXT,
          resident_zonecode TEXT,
          role TEXT NOT NULL DEFAULT 'USER',
          user_status TEXT NOT NULL DEFAULT 'PENDING_PROFILE',
          approved_at TEXT,
          rejected_at TEXT,
          rejected_reason TEXT,
          is_blocked INTEGER NOT NULL DEFAULT 0,
          blocked_at TEXT,
          blocked_reason TEXT,
          notes TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute("CREATE INDEX IF NOT EXISTS ix_users_union_status ON users(union_id, user_status);")

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS user_auth_links (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          provider TEXT NOT NULL,
          provider_user_id TEXT NOT NULL,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          UNIQUE(provider, provider_user_id)
        );
        """
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS user_property_units (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          building_unit_id TEXT,
          pnu TEXT,
          dong TEXT,
          ho TEXT,
          ownership_type TEXT NOT NULL DEFAULT 'OWNER',
          land_ownership_ratio REAL NOT NULL DEFAULT 100,
          building_ownership_ratio REAL NOT NULL DEFAULT 100,
          property_address_jibun TEXT,
          property_address_road TEXT,
          notes TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute("CREATE INDEX IF NOT EXISTS ix_upu_user ON user_property_units(user_id);")
    con.execute("CREATE INDEX IF NOT EXISTS ix_upu_building_unit ON user_property_units(building_unit_id);")
    con.execute("CREATE INDEX IF NOT EXISTS ix_upu_pnu ON user_property_units(pnu);")

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS property_ownership_history (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          property_unit_id INTEGER,
          from_user_id INTEGER,
          to_user_id INTEGER,
          change_type TEXT NOT NULL,
          previous_ratio REAL,
          new_ratio REAL,
          change_reason TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS user_relationships (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          related_user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          relationship_type TEXT NOT NULL,
          verified INTEGER NOT NULL DEFAULT 0,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS member_access_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER,
          user_id INTEGER,
          target_user_id INTEGER,
          action TEXT NOT NULL,
          action_type TEXT NOT NULL DEFAULT 'READ',
          metadata TEXT,
          ip_address TEXT,
          user_agent TEXT,
          status TEXT NOT NULL DEFAULT 'SUCCESS',
          duration_ms INTEGER,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute(
        "CREATE INDEX IF NOT EXISTS ix_member_access_logs_union ON member_access_logs(union_id, created_at DESC);"
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS admin_invites (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          name TEXT NOT NULL,
          phone_number TEXT,
          email TEXT,
          invite_token TEXT NOT NULL UNIQUE,
          status TEXT NOT NULL DEFAULT 'PENDING',
          created_by INTEGER,
          expires_at TEXT NOT NULL,
          used_at TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS member_invites (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          name TEXT NOT NULL,
          phone_number TEXT NOT NULL,
          property_address TEXT,
          invite_token TEXT NOT NULL UNIQUE,
          status TEXT NOT NULL DEFAULT 'PENDING',
          expires_at TEXT NOT NULL,
          created_by INTEGER,
          used_at TEXT,
          user_id INTEGER,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute("CREATE INDEX IF NOT EXISTS ix_member_invites_union ON member_invites(union_id, status);")

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS access_tokens (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          key TEXT NOT NULL UNIQUE,
          name TEXT NOT NULL,
          union_id INTEGER,
          access_scope TEXT NOT NULL DEFAULT 'all',
          allowed_pages TEXT,
          expires_at TEXT,
          max_usage INTEGER,
          usage_count INTEGER NOT NULL DEFAULT 0,
          last_used_at TEXT,
          created_by INTEGER,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          deleted_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS access_token_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          token_id INTEGER NOT NULL REFERENCES access_tokens(id) ON DELETE CASCADE,
          accessed_path TEXT,
          ip_address TEXT,
          user_agent TEXT,
          accessed_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )

    con.execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
          key TEXT PRIMARY KEY,
          value TEXT,
          updated_at TEXT
        );
        """
    )


def ensure_consent_tables(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS consent_stages (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          business_type TEXT NOT NULL,
          stage_code TEXT NOT NULL,
          stage_name TEXT NOT NULL,
          required_rate REAL NOT NULL DEFAULT 75,
          sort_order INTEGER NOT NULL DEFAULT 0,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          UNIQUE(business_type, stage_code)
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS user_consents (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          stage_id INTEGER NOT NULL REFERENCES consent_stages(id) ON DELETE CASCADE,
          status TEXT NOT NULL,
          consent_date TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          UNIQUE(user_id, stage_id)
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_jobs (
          id TEXT PRIMARY KEY,
          union_id INTEGER,
          job_type TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'PROCESSING',
          progress INTEGER NOT NULL DEFAULT 0,
          total_count INTEGER NOT NULL DEFAULT 0,
          processed_count INTEGER NOT NULL DEFAULT 0,
          preview_data TEXT,
          result TEXT,
          error_log TEXT,
          created_by INTEGER,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          completed_at TEXT
        );
        """
    )


def ensure_board_tables(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS notices (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          title TEXT NOT NULL,
          content TEXT NOT NULL,
          author_id INTEGER,
          is_popup INTEGER NOT NULL DEFAULT 0,
          end_date TEXT,
          views INTEGER NOT NULL DEFAULT 0,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS questions (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          title TEXT NOT NULL,
          content TEXT NOT NULL,
          author_id INTEGER,
          is_secret INTEGER NOT NULL DEFAULT 0,
          views INTEGER NOT NULL DEFAULT 0,
          answer_content TEXT,
          answer_author_id INTEGER,
          answered_at TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS free_boards (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          title TEXT NOT NULL,
          content TEXT NOT NULL,
          author_id INTEGER,
          views INTEGER NOT NULL DEFAULT 0,
          like_count INTEGER NOT NULL DEFAULT 0,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS comments (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          entity_type TEXT NOT NULL,
          entity_id INTEGER NOT NULL,
          parent_id INTEGER REFERENCES comments(id) ON DELETE CASCADE,
          author_id INTEGER,
          content TEXT NOT NULL,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute("CREATE INDEX IF NOT EXISTS ix_comments_entity ON comments(entity_type, entity_id);")
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS post_likes (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          entity_type TEXT NOT NULL,
          entity_id INTEGER NOT NULL,
          user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          UNIQUE(entity_type, entity_id, user_id)
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS files (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER,
          entity_type TEXT NOT NULL,
          entity_id INTEGER NOT NULL,
          file_name TEXT NOT NULL,
          file_url TEXT NOT NULL,
          file_size INTEGER,
          uploaded_by INTEGER,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS hero_slides (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER NOT NULL REFERENCES unions(id) ON DELETE CASCADE,
          image_url TEXT NOT NULL,
          link_url TEXT,
          title TEXT,
          starts_at TEXT,
          ends_at TEXT,
          sort_order INTEGER NOT NULL DEFAULT 0,
          is_active INTEGER NOT NULL DEFAULT 1,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )


def ensure_ad_tables(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS ads (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER REFERENCES unions(id) ON DELETE SET NULL,
          title TEXT NOT NULL,
          partner_name TEXT NOT NULL,
          phone TEXT,
          image_url TEXT,
          thumbnail_url TEXT,
          detail_image_url TEXT,
          link_url TEXT,
          is_desktop_enabled INTEGER NOT NULL DEFAULT 1,
          is_mobile_enabled INTEGER NOT NULL DEFAULT 1,
          is_active INTEGER NOT NULL DEFAULT 1,
          placements TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS ad_contracts (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          ad_id INTEGER NOT NULL REFERENCES ads(id) ON DELETE CASCADE,
          start_date TEXT NOT NULL,
          end_date TEXT NOT NULL,
          billing_cycle TEXT NOT NULL,
          amount INTEGER NOT NULL,
          status TEXT NOT NULL DEFAULT 'PENDING',
          auto_invoice INTEGER NOT NULL DEFAULT 1,
          memo TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS ad_invoices (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          contract_id INTEGER NOT NULL REFERENCES ad_contracts(id) ON DELETE CASCADE,
          period_start TEXT NOT NULL,
          period_end TEXT NOT NULL,
          amount INTEGER NOT NULL,
          due_date TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'DUE',
          paid_at TEXT,
          memo TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          updated_at TEXT,
          UNIQUE(contract_id, period_start)
        );
        """
    )


def ensure_notify_tables(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS alimtalk_templates (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          template_code TEXT NOT NULL UNIQUE,
          template_name TEXT,
          template_content TEXT,
          status TEXT,
          insp_status TEXT,
          buttons TEXT,
          synced_at TEXT,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS alimtalk_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER,
          sender_id INTEGER,
          title TEXT,
          content TEXT,
          notice_id INTEGER,
          template_code TEXT,
          template_name TEXT,
          sender_channel_name TEXT,
          recipient_count INTEGER NOT NULL DEFAULT 0,
          success_count INTEGER NOT NULL DEFAULT 0,
          fail_count INTEGER NOT NULL DEFAULT 0,
          kakao_success_count INTEGER NOT NULL DEFAULT 0,
          sms_success_count INTEGER NOT NULL DEFAULT 0,
          cost_per_msg INTEGER,
          estimated_cost INTEGER NOT NULL DEFAULT 0,
          recipient_details TEXT,
          aligo_response TEXT,
          sent_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS alimtalk_pricing (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          message_type TEXT NOT NULL,
          unit_price INTEGER NOT NULL,
          effective_from TEXT NOT NULL,
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        );
        """
    )
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_queue (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          union_id INTEGER,
          channel TEXT NOT NULL,
          recipient TEXT,
          payload_json TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'PENDING',
          created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
          sent_at TEXT,
          error TEXT
        );
        """
    )


def _ensure_bootstrap(con: sqlite3.Connection) -> None:
    # 기본 시스템 관리자 / 기본 단가
    email = env_str("JOHAPON_BOOTSTRAP_ADMIN_EMAIL", "admin@johapon.local")
    row = con.execute("SELECT id FROM users WHERE role='SYSTEM_ADMIN' LIMIT 1").fetchone()
    if not row:
        con.execute(
            """
            INSERT INTO users(name, email, role, user_status, approved_at, created_at, updated_at)
            VALUES('시스템관리자', ?, 'SYSTEM_ADMIN', 'APPROVED', ?, ?, ?)
            """,
            (email, now_iso(), now_iso(), now_iso()),
        )
        LOG.info("bootstrap system admin created: %s", email)

    has_pricing = con.execute("SELECT 1 FROM alimtalk_pricing LIMIT 1").fetchone()
    if not has_pricing:
        for message_type, unit_price in DEFAULT_PRICING:
            con.execute(
                "INSERT INTO alimtalk_pricing(message_type, unit_price, effective_from) VALUES(?,?,?)",
                (message_type, unit_price, "2000-01-01 00:00:00"),
            )


def init_db() -> None:
    _TABLE_COL_CACHE.clear()
    con = _connect()
    try:
        ensure_tenant_tables(con)
        ensure_consent_tables(con)
        ensure_board_tables(con)
        ensure_ad_tables(con)
        ensure_notify_tables(con)
        _ensure_bootstrap(con)
        con.commit()
    finally:
        con.close()


def get_setting(con: sqlite3.Connection, key: str) -> Optional[str]:
    row = con.execute("SELECT value FROM app_settings WHERE key=?", (key,)).fetchone()
    if not row:
        return None
    value = (row["value"] or "").strip()
    return value or None


def set_setting(con: sqlite3.Connection, key: str, value: Optional[str]) -> None:
    con.execute(
        """
        INSERT INTO app_settings(key, value, updated_at) VALUES(?,?,?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
        """,
        (key, value, now_iso()),
    )


def get_union(con: sqlite3.Connection, union_id: int) -> Optional[dict]:
    return row_dict(con.execute("SELECT * FROM unions WHERE id=?", (int(union_id),)).fetchone())


def get_union_by_slug(con: sqlite3.Connection, slug: str) -> Optional[dict]:
    return row_dict(con.execute("SELECT * FROM unions WHERE slug=?", (slug.strip().lower(),)).fetchone())


def get_user(con: sqlite3.Connection, user_id: int) -> Optional[dict]:
    return row_dict(con.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone())
