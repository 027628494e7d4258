from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from johapon import invites
from johapon.auth import get_current_user, require_system_admin
from johapon.errors import ForbiddenError
from johapon.schemas import AdminInviteCreateIn, InviteAcceptIn

router = APIRouter(prefix="/api/admin-invites", tags=["admin-invites"])


@router.get("")
def admin_invites_list(union_id: int = Query(..., alias="unionId"), user: dict = Depends(require_system_admin)):
    return {"ok": True, "items": invites.list_admin_invites(union_id)}


@router.post("", status_code=201)
def admin_invites_create(payload: AdminInviteCreateIn, user: dict = Depends(require_system_admin)):
    item = invites.create_admin_invite(
        payload.union_id,
        payload.name,
        payload.phone_number,
        payload.email,
        created_by=user["id"],
    )
    return {"ok": True, "item": item}


@router.delete("/{invite_id}")
def admin_invites_delete(invite_id: int, user: dict = Depends(require_system_admin)):
    invites.delete_admin_invite(invite_id)
    return {"ok": True}


@router.get("/token/{token}")
def admin_invites_get(token: str):
    return {"ok": True, "item": invites.get_admin_invite(token)}


@router.post("/token/{token}/accept")
def admin_invites_accept(token: str, payload: InviteAcceptIn, request: Request):
    user = get_current_user(request)
    if int(user["id"]) != int(payload.userId) and not user["is_system_admin"]:
        raise ForbiddenError("본인 계정으로만 초대를 수락할 수 있습니다.")
    return {"ok": True, **invites.accept_admin_invite(token, payload.userId)}
