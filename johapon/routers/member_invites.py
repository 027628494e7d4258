from __future__ import annotations

from functools import partial
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request

from johapon import invites, jobs
from johapon.auth import ensure_union_access, get_current_user, require_admin
from johapon.errors import ForbiddenError, NotFoundError, ValidationError
from johapon.schemas import InviteAcceptIn

router = APIRouter(prefix="/api/member-invite", tags=["member-invite"])

MISSING_PARAMS = "필수 파라미터가 누락되었습니다."

# 업로드 명단(camelCase) -> 내부 필드
_MEMBER_KEYS = {
    "name": "name",
    "phoneNumber": "phone_number",
    "phone_number": "phone_number",
    "propertyAddress": "property_address",
    "property_address": "property_address",
    "propertyAddressJibun": "property_address_jibun",
    "propertyAddressRoad": "property_address_road",
    "residentAddressJibun": "resident_address_jibun",
    "birthDate": "birth_date",
    "pnu": "pnu",
    "dong": "dong",
    "ho": "ho",
}


def _member_rows(members: list) -> list[dict]:
    rows = []
    for m in members:
        if not isinstance(m, dict):
            continue
        rows.append({dst: m[src] for src, dst in _MEMBER_KEYS.items() if src in m})
    return rows


def _union_id(payload: Dict[str, Any]) -> int:
    try:
        return int(payload["unionId"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(MISSING_PARAMS) from exc


@router.get("")
def member_invites_list(
    union_id: int = Query(..., alias="unionId"),
    status: str = Query(""),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    return {"ok": True, "items": invites.list_member_invites(union_id, status or None)}


@router.post("/sync")
def member_invites_sync(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_admin)):
    members = payload.get("members")
    if not payload.get("unionId") or not payload.get("createdBy") or not isinstance(members, list):
        raise ValidationError(MISSING_PARAMS)
    union_id = _union_id(payload)
    ensure_union_access(user, union_id)
    return invites.sync_member_invites(
        union_id,
        int(payload["createdBy"]),
        _member_rows(members),
        expires_hours=int(payload.get("expiresHours") or invites.SYNC_EXPIRES_HOURS),
    )


@router.post("/sync-async")
def member_invites_sync_async(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(require_admin),
):
    members = payload.get("members")
    if not payload.get("unionId") or not isinstance(members, list):
        raise ValidationError(MISSING_PARAMS)
    union_id = _union_id(payload)
    ensure_union_access(user, union_id)
    rows = _member_rows(members)
    created_by = int(payload.get("createdBy") or user["id"])
    expires_hours = int(payload.get("expiresHours") or invites.ASYNC_EXPIRES_HOURS)

    job_id = jobs.create_job(
        jobs.JOB_MEMBER_SYNC,
        union_id,
        len(rows),
        preview_data={"type": "member_invite_sync", "memberCount": len(rows)},
        created_by=user["id"],
    )
    worker = partial(_sync_worker, union_id, created_by, rows, expires_hours)
    background_tasks.add_task(jobs.run_job, job_id, worker)
    return {"success": True, "jobId": job_id, "status": jobs.JOB_PROCESSING, "totalCount": len(rows)}


def _sync_worker(union_id: int, created_by: int, rows: list, expires_hours: int, job_id: str) -> dict:
    return invites.sync_member_invites(union_id, created_by, rows, expires_hours=expires_hours, job_id=job_id)


@router.post("/pre-register")
def member_invites_pre_register(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(require_admin),
):
    members = payload.get("members")
    if not payload.get("unionId") or not isinstance(members, list):
        raise ValidationError(MISSING_PARAMS)
    if not members:
        raise ValidationError("멤버 목록이 비어있습니다.")
    union_id = _union_id(payload)
    ensure_union_access(user, union_id)
    rows = _member_rows(members)

    job_id = jobs.create_job(
        jobs.JOB_PRE_REGISTER,
        union_id,
        len(rows),
        preview_data={"type": "pre_register", "memberCount": len(rows)},
        created_by=user["id"],
    )
    background_tasks.add_task(jobs.run_job, job_id, partial(_pre_register_worker, union_id, rows))
    return {
        "success": True,
        "jobId": job_id,
        "jobType": jobs.JOB_PRE_REGISTER,
        "status": jobs.JOB_PROCESSING,
        "totalCount": len(rows),
        "message": f"{len(rows)}명의 사전 등록 작업이 시작되었습니다.",
    }


def _pre_register_worker(union_id: int, rows: list, job_id: str) -> dict:
    return invites.pre_register_members(union_id, rows, job_id=job_id)


@router.post("/sync-properties")
def member_invites_sync_properties(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(require_admin),
):
    union_id = _union_id(payload)
    ensure_union_access(user, union_id)
    job_id = jobs.create_job(
        jobs.JOB_SYNC_PROPERTIES,
        union_id,
        0,
        preview_data={"type": "sync_properties"},
        created_by=user["id"],
    )
    background_tasks.add_task(jobs.run_job, job_id, partial(_sync_properties_worker, union_id))
    return {"success": True, "jobId": job_id, "jobType": jobs.JOB_SYNC_PROPERTIES, "status": jobs.JOB_PROCESSING}


def _sync_properties_worker(union_id: int, job_id: str) -> dict:
    return invites.sync_property_units(union_id, job_id=job_id)


@router.get("/job/{job_id}")
def member_invites_job(job_id: str, user: dict = Depends(require_admin)):
    job = jobs.get_job(job_id)
    if not job:
        raise NotFoundError("job not found")
    ensure_union_access(user, job.get("union_id"))
    return {"ok": True, "job": job}


@router.get("/token/{token}")
def member_invites_get(token: str):
    return {"ok": True, "item": invites.get_member_invite(token)}


@router.post("/token/{token}/accept")
def member_invites_accept(token: str, payload: InviteAcceptIn, request: Request):
    user = get_current_user(request)
    if int(user["id"]) != int(payload.userId) and not user["is_system_admin"]:
        raise ForbiddenError("본인 계정으로만 초대를 수락할 수 있습니다.")
    return {"ok": True, **invites.accept_member_invite(token, payload.userId)}
