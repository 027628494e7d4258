from __future__ import annotations

from functools import partial
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, HTTPException, Query, UploadFile

from johapon import consents, jobs
from johapon.auth import ensure_union_access, require_admin, require_system_admin
from johapon.errors import NotFoundError, ValidationError
from johapon.schemas import ConsentBulkUpdateIn, ConsentStageIn, parse_body

router = APIRouter(prefix="/api/consent", tags=["consent"])

EXCEL_UPLOAD_MAX_BYTES = 10 * 1024 * 1024


def _int_param(payload: Dict[str, Any], key: str) -> int:
    try:
        return int(payload[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError("필수 파라미터가 누락되었습니다.") from exc


def _start_upload(background_tasks: BackgroundTasks, union_id: int, stage_id: int, rows: list, user: dict) -> dict:
    if not rows:
        raise ValidationError("업로드할 데이터가 없습니다.")
    if len(rows) >= consents.ASYNC_THRESHOLD:
        job_id = jobs.create_job(
            jobs.JOB_CONSENT_BULK_UPDATE,
            union_id,
            len(rows),
            preview_data={"type": "consent_bulk_upload", "stageId": stage_id, "rowCount": len(rows)},
            created_by=user["id"],
        )
        worker = partial(_upload_worker, union_id, stage_id, rows)
        background_tasks.add_task(jobs.run_job, job_id, worker)
        return {"success": True, "async": True, "jobId": job_id, "totalCount": len(rows)}
    return {"success": True, **consents.apply_bulk_upload(union_id, stage_id, rows)}


def _upload_worker(union_id: int, stage_id: int, rows: list, job_id: str) -> dict:
    return consents.apply_bulk_upload(union_id, stage_id, rows, job_id=job_id)


def _update_worker(union_id: int, stage_id: int, member_ids: list, status: str, job_id: str) -> dict:
    return consents.apply_bulk_update(union_id, stage_id, member_ids, status, job_id=job_id)


@router.get("/stages")
def consent_stages_list(business_type: str = Query("", alias="businessType"), user: dict = Depends(require_admin)):
    return {"ok": True, "items": consents.list_stages(business_type or None)}


@router.post("/stages", status_code=201)
def consent_stages_create(payload: ConsentStageIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": consents.create_stage(payload.model_dump())}


@router.patch("/stages/{stage_id}")
def consent_stages_update(stage_id: int, payload: ConsentStageIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": consents.update_stage(stage_id, payload.model_dump())}


@router.delete("/stages/{stage_id}")
def consent_stages_delete(stage_id: int, user: dict = Depends(require_system_admin)):
    consents.delete_stage(stage_id)
    return {"ok": True}


@router.post("/bulk-update")
def consent_bulk_update(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(require_admin),
):
    body = parse_body(ConsentBulkUpdateIn, payload)
    union_id, stage_id, member_ids = body.unionId, body.stageId, body.memberIds
    status = body.status.upper()
    if status not in consents.CONSENT_STATUSES:
        raise ValidationError("status는 AGREED 또는 DISAGREED 여야 합니다.")
    ensure_union_access(user, union_id)

    if len(member_ids) >= consents.ASYNC_THRESHOLD:
        job_id = consents.start_bulk_update_job(union_id, stage_id, member_ids, status, created_by=user["id"])
        worker = partial(_update_worker, union_id, stage_id, member_ids, status)
        background_tasks.add_task(jobs.run_job, job_id, worker)
        return {"success": True, "async": True, "jobId": job_id, "totalCount": len(member_ids)}

    result = consents.apply_bulk_update(union_id, stage_id, member_ids, status)
    return {"success": True, "async": False, **result}


@router.post("/bulk-upload")
def consent_bulk_upload(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(require_admin),
):
    union_id = _int_param(payload, "unionId")
    stage_id = _int_param(payload, "stageId")
    rows = payload.get("data")
    if not isinstance(rows, list):
        raise ValidationError("필수 파라미터가 누락되었습니다.")
    ensure_union_access(user, union_id)
    return _start_upload(background_tasks, union_id, stage_id, rows, user)


@router.post("/bulk-upload/excel")
async def consent_bulk_upload_excel(
    background_tasks: BackgroundTasks,
    union_id: int = Form(..., alias="unionId"),
    stage_id: int = Form(..., alias="stageId"),
    file: UploadFile = File(...),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    filename = str(file.filename or "").strip()
    if not filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="엑셀 파일(.xlsx)만 업로드할 수 있습니다.")
    raw = await file.read(EXCEL_UPLOAD_MAX_BYTES + 1)
    if not raw:
        raise HTTPException(status_code=400, detail="업로드된 파일이 비어 있습니다.")
    if len(raw) > EXCEL_UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=413, detail="엑셀 업로드 크기 제한을 초과했습니다.")
    rows = consents.parse_consent_workbook(raw)
    return _start_upload(background_tasks, union_id, stage_id, rows, user)


@router.get("/status")
def consent_status(
    union_id: int = Query(..., alias="unionId"),
    stage_id: int = Query(..., alias="stageId"),
    user: dict = Depends(require_admin),
):
    ensure_union_access(user, union_id)
    return {"ok": True, **consents.consent_overview(union_id, stage_id)}


@router.get("/job/{job_id}")
def consent_job(job_id: str, user: dict = Depends(require_admin)):
    job = jobs.get_job(job_id)
    if not job:
        raise NotFoundError("job not found")
    ensure_union_access(user, job.get("union_id"))
    return {"ok": True, "job": job}
