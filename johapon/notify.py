"""
알림톡(알리고) / SMS(프록시) 발송과 공지 알림 큐
"""
from __future__ import annotations

import html
import logging
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
import requests

from johapon.config import aligo_base_url, env_str, proxy_url
from johapon.db import db_conn, get_setting, get_union, now_iso, row_dict, rows_dicts, to_json
from johapon.errors import ConfigurationError, DomainError, NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger("johapon.notify")

DEFAULT_CHANNEL_NAME = "조합온"
DEFAULT_SENDER_SETTING = "JOHAPON_DEFAULT_SENDER_KEY"
DEFAULT_PRICES = {"KAKAO": 15, "SMS": 20, "LMS": 50}
SUCCESS_CODES = ("0", "1")
HTTP_TIMEOUT = 10
NOTICE_CONTENT_LIMIT = 1000
PROXY_TOKEN_MINUTES = 5
PROXY_SENDER_ID = "system-admin"

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_html(text: Optional[str], limit: int = NOTICE_CONTENT_LIMIT) -> str:
    plain = _TAG_RE.sub(" ", text or "")
    plain = _WS_RE.sub(" ", html.unescape(plain)).strip()
    return plain[:limit]


def _aligo_auth() -> dict:
    return {
        "apikey": env_str("ALIGO_API_KEY"),
        "userid": env_str("ALIGO_USER_ID"),
    }


def default_sender_key(con: sqlite3.Connection) -> str:
    return get_setting(con, DEFAULT_SENDER_SETTING) or env_str("ALIGO_DEFAULT_SENDER_KEY")


def resolve_sender(con: sqlite3.Connection, union_id: int) -> tuple[str, str, bool]:
    """(sender_key, channel_name, is_default_channel)"""
    union = get_union(con, union_id) or {}
    own_key = (union.get("alimtalk_sender_key") or "").strip()
    channel = (union.get("alimtalk_channel_name") or "").strip() or DEFAULT_CHANNEL_NAME
    if own_key:
        return own_key, channel, False
    return default_sender_key(con), channel, True


# --- pricing -----------------------------------------------------------------

def current_pricing(con: sqlite3.Connection) -> dict[str, int]:
    prices = dict(DEFAULT_PRICES)
    rows = con.execute(
        """
        SELECT p.message_type, p.unit_price
        FROM alimtalk_pricing p
        WHERE p.id = (
          SELECT p2.id FROM alimtalk_pricing p2
          WHERE p2.message_type=p.message_type AND p2.effective_from<=?
          ORDER BY p2.effective_from DESC, p2.id DESC LIMIT 1
        )
        """,
        (now_iso(),),
    ).fetchall()
    for r in rows:
        prices[r["message_type"]] = int(r["unit_price"])
    return prices


def get_current_pricing() -> dict[str, int]:
    with db_conn() as db:
        return current_pricing(db)


def list_pricing() -> list[dict]:
    with db_conn() as db:
        rows = db.execute(
            "SELECT * FROM alimtalk_pricing ORDER BY message_type, effective_from DESC, id DESC"
        ).fetchall()
    return rows_dicts(rows)


def create_pricing(message_type: str, unit_price: int, effective_from: Optional[str] = None) -> dict:
    effective = (effective_from or "").strip() or now_iso()
    with db_conn() as db:
        cur = db.execute(
            "INSERT INTO alimtalk_pricing(message_type, unit_price, effective_from, created_at) VALUES(?,?,?,?)",
            (message_type, int(unit_price), effective, now_iso()),
        )
        db.commit()
        return dict(db.execute("SELECT * FROM alimtalk_pricing WHERE id=?", (cur.lastrowid,)).fetchone())


# --- alimtalk ----------------------------------------------------------------

def substitute_variables(content: Optional[str], variables: Optional[dict]) -> str:
    message = content or ""
    for key, value in (variables or {}).items():
        message = message.replace(f"#{{{key}}}", str(value))
    return message


def _post_aligo(path: str, form: dict) -> dict:
    resp = requests.post(f"{aligo_base_url()}{path}", data=form, timeout=HTTP_TIMEOUT)
    return resp.json()


def _send_one(sender_key: str, template_code: str, title: Optional[str], content: Optional[str], recipient: dict) -> dict:
    variables = recipient.get("variables") or {}
    form = {
        **_aligo_auth(),
        "senderkey": sender_key,
        "tpl_code": template_code,
        "sender": "",
        "receiver_1": str(recipient.get("phoneNumber") or "").replace("-", ""),
        "recvname_1": recipient.get("name") or "",
        "subject_1": title or "",
        "message_1": substitute_variables(content, variables),
    }
    if variables:
        form["emtitle_1"] = str(list(variables.values())[-1])
    try:
        result = _post_aligo("/akv10/alimtalk/send/", form)
    except (requests.RequestException, ValueError) as exc:
        logger.warning("aligo send failed for %s: %s", form["receiver_1"], exc)
        return {"result_code": "-1", "message": str(exc), "success_cnt": 0, "error_cnt": 1}
    info = result.get("info") if isinstance(result.get("info"), dict) else {}
    return {
        "result_code": str(result.get("code", "-1")),
        "message": result.get("message") or "",
        "msg_id": result.get("msg_id") or info.get("mid"),
        "success_cnt": int(result.get("success_cnt") or info.get("scnt") or 0),
        "error_cnt": int(result.get("error_cnt") or info.get("fcnt") or 0),
        "msg_type": result.get("msg_type") or "AT",
    }


def send_alimtalk(
    union_id: int,
    sender_id: int,
    template_code: str,
    recipients: list[dict],
    template_name: Optional[str] = None,
    title: Optional[str] = None,
    content: Optional[str] = None,
    notice_id: Optional[int] = None,
) -> dict:
    if not union_id or not sender_id or not template_code or not recipients:
        raise ValidationError("Missing required fields")

    with db_conn() as db:
        sender_key, channel_name, is_default = resolve_sender(db, union_id)
        if not sender_key:
            raise ValidationError("Sender key not found")
        pricing = current_pricing(db)

    responses = [_send_one(sender_key, template_code, title, content, r) for r in recipients]

    kakao = sms = failed = 0
    for r in responses:
        if r["result_code"] in SUCCESS_CODES:
            if r.get("msg_type") in ("SM", "LM"):
                sms += r["success_cnt"] or 1
            else:
                kakao += r["success_cnt"] or 1
        else:
            failed += r["error_cnt"] or 1
    cost = kakao * pricing.get("KAKAO", DEFAULT_PRICES["KAKAO"]) + sms * pricing.get("SMS", DEFAULT_PRICES["SMS"])

    with db_conn() as db:
        db.execute(
            """
            INSERT INTO alimtalk_logs(union_id, sender_id, title, content, notice_id, template_code, template_name,
                                      sender_channel_name, recipient_count, success_count, fail_count,
                                      kakao_success_count, sms_success_count, cost_per_msg, estimated_cost,
                                      recipient_details, aligo_response, sent_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                int(union_id),
                int(sender_id),
                title,
                content,
                notice_id,
                template_code,
                template_name,
                channel_name,
                len(recipients),
                kakao + sms,
                failed,
                kakao,
                sms,
                pricing.get("KAKAO", DEFAULT_PRICES["KAKAO"]),
                cost,
                to_json(recipients),
                to_json(responses),
                now_iso(),
            ),
        )
        db.commit()

    logger.info(
        "alimtalk sent union=%s template=%s total=%s kakao=%s sms=%s failed=%s",
        union_id,
        template_code,
        len(recipients),
        kakao,
        sms,
        failed,
    )
    return {
        "success": True,
        "totalRecipients": len(recipients),
        "kakaoSuccessCount": kakao,
        "smsSuccessCount": sms,
        "failCount": failed,
        "estimatedCost": cost,
        "channelName": channel_name,
        "isDefaultChannel": is_default,
    }


def sync_templates() -> dict:
    with db_conn() as db:
        sender_key = default_sender_key(db)
    if not sender_key:
        raise ValidationError("Sender key not found")

    try:
        result = _post_aligo("/akv10/template/list/", {**_aligo_auth(), "senderkey": sender_key})
    except (requests.RequestException, ValueError) as exc:
        logger.error("aligo template list failed: %s", exc)
        raise UpstreamError(f"Aligo API error: {exc}") from exc
    if str(result.get("code")) not in SUCCESS_CODES:
        raise UpstreamError(f"Aligo API error: {result.get('message')}")

    templates = result.get("list") or []
    remote_codes = {t.get("templtCode") for t in templates if t.get("templtCode")}
    synced_at = now_iso()
    inserted = updated = 0

    with db_conn() as db:
        existing = {r["template_code"] for r in db.execute("SELECT template_code FROM alimtalk_templates")}
        to_delete = sorted(existing - remote_codes)
        for code in to_delete:
            db.execute("DELETE FROM alimtalk_templates WHERE template_code=?", (code,))
        for t in templates:
            code = t.get("templtCode")
            if not code:
                continue
            db.execute(
                """
                INSERT INTO alimtalk_templates(template_code, template_name, template_content, status,
                                               insp_status, buttons, synced_at, created_at)
                VALUES(?,?,?,?,?,?,?,?)
                ON CONFLICT(template_code) DO UPDATE SET
                  template_name=excluded.template_name,
                  template_content=excluded.template_content,
                  status=excluded.status,
                  insp_status=excluded.insp_status,
                  buttons=excluded.buttons,
                  synced_at=excluded.synced_at
                """,
                (
                    code,
                    t.get("templtName"),
                    t.get("templtContent"),
                    t.get("status"),
                    t.get("inspStatus"),
                    to_json(t.get("buttons")),
                    synced_at,
                    synced_at,
                ),
            )
            if code in existing:
                updated += 1
            else:
                inserted += 1
        db.commit()

    logger.info("alimtalk templates synced: +%s ~%s -%s", inserted, updated, len(to_delete))
    return {
        "totalFromAligo": len(templates),
        "inserted": inserted,
        "updated": updated,
        "deleted": len(to_delete),
        "syncedAt": synced_at,
    }


def list_templates() -> list[dict]:
    with db_conn() as db:
        rows = db.execute("SELECT * FROM alimtalk_templates ORDER BY template_code").fetchall()
    return rows_dicts(rows, ("buttons",))


def list_logs(union_id: Optional[int] = None, page: int = 1, page_size: int = 20) -> dict:
    where = "1=1"
    params: list[Any] = []
    if union_id is not None:
        where = "l.union_id=?"
        params.append(int(union_id))
    page = max(1, int(page))
    page_size = max(1, min(200, int(page_size)))
    with db_conn() as db:
        total = int(db.execute(f"SELECT COUNT(*) FROM alimtalk_logs l WHERE {where}", tuple(params)).fetchone()[0])
        rows = db.execute(
            f"""
            SELECT l.*, u.name AS sender_name, un.name AS union_name
            FROM alimtalk_logs l
            LEFT JOIN users u ON u.id=l.sender_id
            LEFT JOIN unions un ON un.id=l.union_id
            WHERE {where}
            ORDER BY l.sent_at DESC, l.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()
    return {
        "items": rows_dicts(rows, ("recipient_details", "aligo_response")),
        "total": total,
        "page": page,
        "pageSize": page_size,
    }


# --- sms (proxy) -------------------------------------------------------------

def make_proxy_token(union_id: Any, user_id: str = PROXY_SENDER_ID) -> str:
    secret = env_str("JWT_SECRET")
    if not secret:
        raise ConfigurationError("JWT_SECRET 환경변수가 설정되어 있지 않습니다.")
    now = datetime.now(timezone.utc)
    payload = {
        "unionId": union_id,
        "userId": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=PROXY_TOKEN_MINUTES),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def send_sms(union_id: Any, recipients: list[dict], message: str, msg_type: str, title: Optional[str] = None) -> dict:
    if not env_str("JWT_SECRET"):
        raise ConfigurationError("JWT_SECRET 환경변수가 설정되어 있지 않습니다.")
    if not union_id or recipients is None or not message or not msg_type:
        raise ValidationError("필수 파라미터가 누락되었습니다.")
    if not recipients:
        raise ValidationError("수신자가 없습니다.")
    msg_type = str(msg_type).upper()
    if msg_type not in ("SMS", "LMS", "MMS"):
        raise ValidationError("msgType은 SMS, LMS, MMS 중 하나여야 합니다.")

    token = make_proxy_token(union_id)
    body: dict[str, Any] = {
        "unionId": union_id,
        "senderId": PROXY_SENDER_ID,
        "message": message,
        "msgType": msg_type,
        "recipients": [{"name": r.get("name"), "phone": r.get("phone")} for r in recipients],
    }
    if msg_type in ("LMS", "MMS"):
        body["title"] = title

    try:
        resp = requests.post(
            f"{proxy_url()}/api/sms/send",
            headers={"Authorization": f"Bearer {token}"},
            json=body,
            timeout=HTTP_TIMEOUT,
        )
        result = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("sms proxy call failed union=%s: %s", union_id, exc)
        raise UpstreamError(f"프록시 서버 오류: {exc}", success_cnt=0, error_cnt=len(recipients)) from exc

    logger.info("sms sent via proxy union=%s recipients=%s status=%s", union_id, len(recipients), resp.status_code)
    if resp.ok and result.get("success"):
        data = result.get("data") or {}
        msg_ids = data.get("msgIds") or []
        return {
            "success": True,
            "msg_id": msg_ids[0] if msg_ids else None,
            "success_cnt": data.get("successCount") or len(recipients),
            "error_cnt": data.get("failCount") or 0,
            "message": "발송 완료",
        }
    raise UpstreamError(
        result.get("error") or result.get("message") or "프록시 서버 오류",
        status_code=resp.status_code if resp.status_code >= 400 else 400,
        success_cnt=0,
        error_cnt=len(recipients),
    )


# --- notice notification queue ----------------------------------------------

def queue_notice_notification(union_id: int, notice_id: int, title: str, content: str) -> int:
    payload = {
        "noticeId": notice_id,
        "title": f"[공지] {title}",
        "content": strip_html(content),
    }
    with db_conn() as db:
        cur = db.execute(
            """
            INSERT INTO notification_queue(union_id, channel, recipient, payload_json, status, created_at)
            VALUES(?, 'ALIMTALK', NULL, ?, 'PENDING', ?)
            """,
            (int(union_id), to_json(payload), now_iso()),
        )
        db.commit()
        return int(cur.lastrowid)


def list_queue(union_id: int, status: Optional[str] = None) -> list[dict]:
    sql = "SELECT * FROM notification_queue WHERE union_id=?"
    params: list[Any] = [int(union_id)]
    if status:
        sql += " AND status=?"
        params.append(status)
    with db_conn() as db:
        rows = db.execute(sql + " ORDER BY id DESC", tuple(params)).fetchall()
    return rows_dicts(rows, ("payload_json",))


def _mark_queue(queue_id: int, status: str, error: Optional[str] = None) -> None:
    with db_conn() as db:
        db.execute(
            "UPDATE notification_queue SET status=?, sent_at=?, error=? WHERE id=?",
            (status, now_iso() if status == "SENT" else None, error, int(queue_id)),
        )
        db.commit()


def dispatch_pending(union_id: int, sender_id: int) -> dict:
    with db_conn() as db:
        union = get_union(db, union_id)
        if not union:
            raise NotFoundError("조합을 찾을 수 없습니다.")
        pending = db.execute(
            "SELECT * FROM notification_queue WHERE union_id=? AND status='PENDING' ORDER BY id",
            (int(union_id),),
        ).fetchall()
        members = db.execute(
            """
            SELECT name, phone_number FROM users
            WHERE union_id=? AND user_status='APPROVED' AND is_blocked=0
              AND phone_number IS NOT NULL AND phone_number<>''
            ORDER BY id
            """,
            (int(union_id),),
        ).fetchall()

    template_code = (union.get("notice_template_code") or "").strip()
    sent = failed = 0
    for item in pending:
        payload = row_dict(item, ("payload_json",))["payload_json"] or {}
        if not template_code:
            _mark_queue(item["id"], "ERROR", "notice template not configured")
            failed += 1
            continue
        if not members:
            _mark_queue(item["id"], "ERROR", "no recipients")
            failed += 1
            continue
        recipients = [
            {"phoneNumber": m["phone_number"], "name": m["name"], "variables": {"제목": payload.get("title") or ""}}
            for m in members
        ]
        try:
            out = send_alimtalk(
                union_id,
                sender_id,
                template_code,
                recipients,
                title=payload.get("title"),
                content=payload.get("content"),
                notice_id=payload.get("noticeId"),
            )
        except DomainError as exc:
            _mark_queue(item["id"], "ERROR", exc.message)
            failed += 1
            continue
        except (sqlite3.Error, requests.RequestException) as exc:
            logger.exception("notice dispatch failed: queue_id=%s", item["id"])
            _mark_queue(item["id"], "ERROR", str(exc))
            failed += 1
            continue
        if not (out.get("kakaoSuccessCount") or 0) + (out.get("smsSuccessCount") or 0):
            _mark_queue(item["id"], "ERROR", f"all {out.get('failCount') or len(recipients)} recipients failed")
            failed += 1
            continue
        _mark_queue(item["id"], "SENT")
        sent += 1
    return {"sent": sent, "failed": failed, "total": len(pending)}
