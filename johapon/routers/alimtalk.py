from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from johapon import notify
from johapon.auth import ensure_union_access, require_admin, require_system_admin
from johapon.errors import ValidationError
from johapon.schemas import PricingIn

logger = logging.getLogger("johapon.alimtalk")

router = APIRouter(prefix="/api/alimtalk", tags=["alimtalk"])


@router.post("/send")
def alimtalk_send(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    union_id = payload.get("unionId")
    recipients = payload.get("recipients")
    sender_id = payload.get("senderId")
    if not union_id or not sender_id or not payload.get("templateCode") or not isinstance(recipients, list) or not recipients:
        raise ValidationError("Missing required fields")
    try:
        union_id, sender_id = int(union_id), int(sender_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("unionId/senderId 형식이 올바르지 않습니다.") from exc
    ensure_union_access(user, union_id)
    return notify.send_alimtalk(
        union_id,
        sender_id,
        str(payload["templateCode"]),
        recipients,
        template_name=payload.get("templateName"),
        title=payload.get("title"),
        content=payload.get("content"),
        notice_id=payload.get("noticeId"),
    )


@router.post("/templates/sync")
def alimtalk_templates_sync(user: dict = Depends(require_system_admin)):
    out = notify.sync_templates()
    logger.info("templates synced by user=%s", user["id"])
    return {"success": True, **out}


@router.get("/templates")
def alimtalk_templates(user: dict = Depends(require_admin)):
    return {"ok": True, "items": notify.list_templates()}


@router.get("/logs")
def alimtalk_logs(
    union_id: Optional[int] = Query(None, alias="unionId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200, alias="pageSize"),
    user: dict = Depends(require_admin),
):
    if union_id is None and not user["is_system_admin"]:
        union_id = user.get("union_id")
    if union_id is not None:
        ensure_union_access(user, union_id)
    return {"ok": True, **notify.list_logs(union_id, page=page, page_size=page_size)}


@router.get("/pricing")
def alimtalk_pricing_list(user: dict = Depends(require_system_admin)):
    return {"ok": True, "items": notify.list_pricing()}


@router.post("/pricing", status_code=201)
def alimtalk_pricing_create(payload: PricingIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": notify.create_pricing(payload.messageType, payload.unitPrice, payload.effectiveFrom)}


@router.get("/pricing/current")
def alimtalk_pricing_current(user: dict = Depends(require_admin)):
    return {"ok": True, "pricing": notify.get_current_pricing()}


@router.get("/queue")
def alimtalk_queue(
    union_id: int = Query(..., alias="unionId"),
    status: str = Query(""),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    return {"ok": True, "items": notify.list_queue(union_id, status or None)}


@router.post("/queue/dispatch")
def alimtalk_queue_dispatch(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    try:
        union_id = int(payload["unionId"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError("필수 파라미터가 누락되었습니다.") from exc
    ensure_union_access(user, union_id)
    return {"ok": True, **notify.dispatch_pending(union_id, int(user["id"]))}
