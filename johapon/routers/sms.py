from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from johapon import notify
from johapon.auth import ensure_union_access, require_admin

router = APIRouter(prefix="/api/sms", tags=["sms"])


@router.post("/send")
def sms_send(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    union_id = payload.get("unionId")
    if union_id:
        ensure_union_access(user, int(union_id))
    return notify.send_sms(
        union_id,
        payload.get("recipients"),
        str(payload.get("message") or ""),
        str(payload.get("msgType") or ""),
        title=payload.get("title"),
    )
