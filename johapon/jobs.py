from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Optional

from johapon.db import db_conn, now_iso, row_dict, to_json

logger = logging.getLogger("johapon.jobs")

JOB_PROCESSING = "PROCESSING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"

JOB_CONSENT_BULK_UPDATE = "CONSENT_BULK_UPDATE"
JOB_MEMBER_SYNC = "MEMBER_SYNC"
JOB_PRE_REGISTER = "PRE_REGISTER"
JOB_SYNC_PROPERTIES = "SYNC_PROPERTIES"

_JSON_COLS = ("preview_data", "result")


def create_job(
    job_type: str,
    union_id: Optional[int],
    total_count: int,
    preview_data: Any = None,
    created_by: Optional[int] = None,
) -> str:
    job_id = str(uuid.uuid4())
    now = now_iso()
    with db_conn() as db:
        db.execute(
            """
            INSERT INTO sync_jobs(id, union_id, job_type, status, progress, total_count,
                                  processed_count, preview_data, created_by, created_at, updated_at)
            VALUES(?,?,?,?,0,?,0,?,?,?,?)
            """,
            (job_id, union_id, job_type, JOB_PROCESSING, int(total_count), to_json(preview_data), created_by, now, now),
        )
        db.commit()
    logger.info("job %s created: %s union=%s total=%s", job_id, job_type, union_id, total_count)
    return job_id


def update_progress(job_id: str, processed: int, total: int) -> None:
    progress = int(processed * 100 / total) if total else 0
    progress = max(0, min(99, progress))
    with db_conn() as db:
        db.execute(
            "UPDATE sync_jobs SET progress=?, processed_count=?, total_count=?, updated_at=? WHERE id=?",
            (progress, int(processed), int(total), now_iso(), job_id),
        )
        db.commit()


def complete_job(job_id: str, result: Any) -> None:
    now = now_iso()
    with db_conn() as db:
        db.execute(
            """
            UPDATE sync_jobs
            SET status=?, progress=100, processed_count=total_count, result=?, updated_at=?, completed_at=?
            WHERE id=?
            """,
            (JOB_COMPLETED, to_json(result), now, now, job_id),
        )
        db.commit()
    logger.info("job %s completed", job_id)


def fail_job(job_id: str, error: str) -> None:
    now = now_iso()
    with db_conn() as db:
        db.execute(
            "UPDATE sync_jobs SET status=?, error_log=?, updated_at=?, completed_at=? WHERE id=?",
            (JOB_FAILED, error, now, now, job_id),
        )
        db.commit()


def get_job(job_id: str) -> Optional[dict]:
    with db_conn() as db:
        row = db.execute("SELECT * FROM sync_jobs WHERE id=?", (job_id,)).fetchone()
    return row_dict(row, _JSON_COLS)


def run_job(job_id: str, worker: Callable[[str], Any]) -> None:
    """BackgroundTasks 진입점: worker(job_id)의 반환값을 결과로 저장"""
    try:
        result = worker(job_id)
    except Exception as exc:
        logger.exception("job %s failed", job_id)
        fail_job(job_id, str(exc))
        return
    complete_job(job_id, result)


def progress_step(total: int) -> int:
    return max(1, total // 10)
