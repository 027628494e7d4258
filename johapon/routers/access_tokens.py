from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from johapon import access_tokens
from johapon.auth import client_ip, require_system_admin
from johapon.schemas import AccessTokenCreateIn

router = APIRouter(prefix="/api/access-tokens", tags=["access-tokens"])


@router.get("")
def access_tokens_list(user: dict = Depends(require_system_admin)):
    return {"ok": True, "items": access_tokens.list_tokens()}


@router.post("", status_code=201)
def access_tokens_create(payload: AccessTokenCreateIn, user: dict = Depends(require_system_admin)):
    item = access_tokens.create_token(
        payload.name,
        created_by=user["id"],
        union_id=payload.union_id,
        access_scope=payload.access_scope,
        allowed_pages=payload.allowed_pages,
        expires_in_days=payload.expires_in_days,
        max_usage=payload.max_usage,
    )
    return {"ok": True, "item": item}


@router.delete("/{token_id}")
def access_tokens_delete(token_id: int, user: dict = Depends(require_system_admin)):
    access_tokens.delete_token(token_id)
    return {"ok": True}


@router.post("/verify")
def access_tokens_verify(request: Request, payload: Dict[str, Any] = Body(...)):
    return access_tokens.verify_token(
        str(payload.get("tokenKey") or ""),
        path=str(payload.get("path") or ""),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent") or "",
    )
