from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Request

from johapon import accounts
from johapon.auth import get_current_user
from johapon.schemas import RegisterIn, parse_body

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
def auth_register(payload: Dict[str, Any] = Body(...)):
    body = parse_body(RegisterIn, payload, "요청 형식이 올바르지 않습니다.")
    out = accounts.register_user(
        body.provider or "",
        body.providerUserId or "",
        body.name or "",
        body.unionId,
        payload,
    )
    return {"ok": True, **out}


@router.post("/login")
def auth_login(payload: Dict[str, Any] = Body(...)):
    out = accounts.login(str(payload.get("provider") or ""), str(payload.get("providerUserId") or ""))
    return {"ok": True, **out}


@router.get("/me")
def auth_me(request: Request):
    return {"ok": True, "user": get_current_user(request)}
