from __future__ import annotations

import io
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from johapon import members
from johapon.auth import client_ip, ensure_union_access, require_admin
from johapon.db import db_conn, get_user
from johapon.errors import NotFoundError, ValidationError
from johapon.schemas import BlockIn, ConflictResolveIn, MemberUpdateIn, PropertyUnitIn, parse_body

router = APIRouter(prefix="/api/members", tags=["members"])


def _ids(payload: Dict[str, Any]) -> tuple[int, int]:
    union_id = payload.get("unionId")
    member_id = payload.get("memberId")
    if not union_id or not member_id:
        raise ValidationError("필수 파라미터가 누락되었습니다.")
    try:
        return int(union_id), int(member_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("unionId/memberId 형식이 올바르지 않습니다.") from exc


def _member_in_scope(user: dict, member_id: int) -> dict:
    with db_conn() as db:
        member = get_user(db, member_id)
    if not member:
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    ensure_union_access(user, member.get("union_id"))
    return member


def _status_change(action: str, request: Request, payload: Dict[str, Any], user: dict) -> dict:
    union_id, member_id = _ids(payload)
    item = members.change_member_status(
        action,
        union_id,
        member_id,
        user,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "",
        reason=payload.get("reason"),
    )
    return {"ok": True, "item": item}


@router.get("")
def members_list(
    union_id: int = Query(..., alias="unionId"),
    status: str = Query(""),
    search: str = Query(""),
    blocked: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200, alias="pageSize"),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    out = members.list_members(union_id, status=status or None, search=search or None, blocked=blocked, page=page, page_size=page_size)
    return {"ok": True, **out}


@router.post("/approve")
def members_approve(request: Request, payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    return _status_change(members.ACTION_APPROVE, request, payload, user)


@router.post("/reject")
def members_reject(request: Request, payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    return _status_change(members.ACTION_REJECT, request, payload, user)


@router.post("/cancel-rejection")
def members_cancel_rejection(request: Request, payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    return _status_change(members.ACTION_CANCEL_REJECTION, request, payload, user)


@router.get("/check-conflict")
def members_check_conflict(user_id: int = Query(..., alias="userId"), user: dict = Depends(require_admin)):
    _member_in_scope(user, user_id)
    return {"ok": True, **members.check_conflict(user_id)}


@router.post("/resolve-conflict")
def members_resolve_conflict(request: Request, payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    body = parse_body(ConflictResolveIn, payload)
    out = members.resolve_conflict(
        body.pendingUserId,
        body.existingUserId,
        body.propertyUnitId,
        body.action,
        user,
        options=payload,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "",
    )
    return {"ok": True, **out}


@router.get("/export")
def members_export(
    union_id: int = Query(..., alias="unionId"),
    status: str = Query(""),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    xbytes = members.export_members_xlsx(union_id, status=status or None)
    filename = f"조합원명단_{union_id}.xlsx"
    cd = f"attachment; filename=members.xlsx; filename*=UTF-8''{quote(filename)}"
    return StreamingResponse(
        io.BytesIO(xbytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": cd},
    )


@router.get("/access-logs")
def members_access_logs(
    union_id: int = Query(..., alias="unionId"),
    action: str = Query(""),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200, alias="pageSize"),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    return {"ok": True, **members.list_access_logs(union_id, page=page, page_size=page_size, action=action or None)}


@router.post("/{member_id}/block")
def members_block(member_id: int, payload: BlockIn, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    if int(member_id) == int(user["id"]):
        raise HTTPException(status_code=400, detail="자기 자신은 차단할 수 없습니다.")
    return {"ok": True, "item": members.set_blocked(member_id, True, payload.reason)}


@router.post("/{member_id}/unblock")
def members_unblock(member_id: int, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    return {"ok": True, "item": members.set_blocked(member_id, False)}


@router.patch("/{member_id}")
def members_update(member_id: int, payload: MemberUpdateIn, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    return {"ok": True, "item": members.update_member(member_id, payload.model_dump(exclude_unset=True))}


@router.get("/{member_id}/units")
def members_units(member_id: int, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    return {"ok": True, "items": members.list_property_units(member_id)}


@router.post("/{member_id}/units", status_code=201)
def members_add_unit(member_id: int, payload: PropertyUnitIn, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    return {"ok": True, "item": members.add_property_unit(member_id, payload.model_dump())}


@router.delete("/{member_id}/units/{unit_id}")
def members_delete_unit(member_id: int, unit_id: int, user: dict = Depends(require_admin)):
    _member_in_scope(user, member_id)
    members.delete_property_unit(member_id, unit_id)
    return {"ok": True}
