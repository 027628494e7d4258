from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from johapon import unions
from johapon.auth import require_system_admin
from johapon.schemas import UnionCreateIn, UnionUpdateIn

router = APIRouter(prefix="/api/unions", tags=["unions"])


@router.get("")
def unions_list(
    search: str = Query(""),
    is_active: Optional[bool] = Query(None),
    user: dict = Depends(require_system_admin),
):
    return {"ok": True, "items": unions.list_unions(search=search or None, is_active=is_active)}


@router.get("/stats")
def unions_stats(user: dict = Depends(require_system_admin)):
    return {"ok": True, **unions.union_stats()}


@router.post("", status_code=201)
def unions_create(payload: UnionCreateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": unions.create_union(payload.model_dump())}


@router.get("/{union_id}")
def unions_get(union_id: int, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": unions.require_union(union_id)}


@router.patch("/{union_id}")
def unions_update(union_id: int, payload: UnionUpdateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": unions.update_union(union_id, payload.model_dump(exclude_unset=True))}


@router.delete("/{union_id}")
def unions_delete(union_id: int, user: dict = Depends(require_system_admin)):
    unions.delete_union(union_id)
    return {"ok": True}


@router.get("/{union_id}/admins")
def unions_admins(union_id: int, user: dict = Depends(require_system_admin)):
    unions.require_union(union_id)
    return {"ok": True, "items": unions.list_union_admins(union_id)}


@router.delete("/{union_id}/admins/{user_id}")
def unions_revoke_admin(union_id: int, user_id: int, user: dict = Depends(require_system_admin)):
    unions.revoke_union_admin(union_id, user_id)
    return {"ok": True}
