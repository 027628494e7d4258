"""
/api/tenant/{slug}/... 조합 홈페이지용 공개 API

응답은 {"ok": true, "data": ...} / {"ok": false, "error": {"code", "message"}} 형태.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request

from johapon import ads, boards, notify, slides, unions
from johapon.auth import get_optional_user
from johapon.config import env_flag
from johapon.errors import ok
from johapon.schemas import (
    AnswerIn,
    CommentEntity,
    CommentIn,
    FileIn,
    FreeBoardIn,
    FreeBoardUpdateIn,
    NoticeIn,
    NoticeUpdateIn,
    QuestionIn,
)

logger = logging.getLogger("johapon.tenant")

router = APIRouter(prefix="/api/tenant/{slug}", tags=["tenant"])


def _union_id(slug: str) -> int:
    return int(unions.active_union_by_slug(slug)["id"])


@router.get("/meta")
def tenant_meta(slug: str):
    return ok(unions.public_meta(unions.active_union_by_slug(slug)))


# --- notices -----------------------------------------------------------------

@router.get("/notices")
def tenant_notices(
    slug: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    popup: bool = Query(False),
):
    return ok(boards.list_notices(_union_id(slug), page=page, page_size=page_size, popup=popup))


@router.get("/notices/{notice_id}")
def tenant_notice_get(slug: str, notice_id: int):
    return ok(boards.get_notice(_union_id(slug), notice_id))


@router.post("/notices", status_code=201)
def tenant_notice_create(slug: str, payload: NoticeIn, request: Request):
    union_id = _union_id(slug)
    user = get_optional_user(request)
    item = boards.create_notice(union_id, user, payload.model_dump())
    if payload.sendNotification:
        queue_id = notify.queue_notice_notification(union_id, item["id"], item["title"], item["content"])
        logger.info("notice %s queued for notification (queue=%s)", item["id"], queue_id)
        item["notificationQueueId"] = queue_id
    return ok(item)


@router.patch("/notices/{notice_id}")
def tenant_notice_update(slug: str, notice_id: int, payload: NoticeUpdateIn, request: Request):
    union_id = _union_id(slug)
    return ok(boards.update_notice(union_id, get_optional_user(request), notice_id, payload.model_dump(exclude_unset=True)))


@router.delete("/notices/{notice_id}")
def tenant_notice_delete(slug: str, notice_id: int, request: Request):
    boards.delete_notice(_union_id(slug), get_optional_user(request), notice_id)
    return ok({"id": notice_id})


# --- questions ---------------------------------------------------------------

@router.get("/questions")
def tenant_questions(
    slug: str,
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str = Query(""),
):
    union_id = _union_id(slug)
    return ok(boards.list_questions(union_id, get_optional_user(request), page=page, page_size=page_size, search=search or None))


@router.get("/questions/{question_id}")
def tenant_question_get(slug: str, question_id: int, request: Request):
    return ok(boards.get_question(_union_id(slug), get_optional_user(request), question_id))


@router.post("/questions", status_code=201)
def tenant_question_create(slug: str, payload: QuestionIn, request: Request):
    return ok(boards.create_question(_union_id(slug), get_optional_user(request), payload.model_dump()))


@router.post("/questions/{question_id}/answer")
def tenant_question_answer(slug: str, question_id: int, payload: AnswerIn, request: Request):
    return ok(boards.answer_question(_union_id(slug), get_optional_user(request), question_id, payload.answer_content))


@router.delete("/questions/{question_id}")
def tenant_question_delete(slug: str, question_id: int, request: Request):
    boards.delete_question(_union_id(slug), get_optional_user(request), question_id)
    return ok({"id": question_id})


# --- free boards -------------------------------------------------------------

@router.get("/free-boards")
def tenant_free_boards(
    slug: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str = Query(""),
):
    return ok(boards.list_free_boards(_union_id(slug), page=page, page_size=page_size, search=search or None))


@router.get("/free-boards/{post_id}")
def tenant_free_board_get(slug: str, post_id: int, request: Request):
    return ok(boards.get_free_board(_union_id(slug), post_id, get_optional_user(request)))


@router.post("/free-boards", status_code=201)
def tenant_free_board_create(slug: str, payload: FreeBoardIn, request: Request):
    return ok(boards.create_free_board(_union_id(slug), get_optional_user(request), payload.model_dump()))


@router.patch("/free-boards/{post_id}")
def tenant_free_board_update(slug: str, post_id: int, payload: FreeBoardUpdateIn, request: Request):
    union_id = _union_id(slug)
    return ok(boards.update_free_board(union_id, get_optional_user(request), post_id, payload.model_dump(exclude_unset=True)))


@router.delete("/free-boards/{post_id}")
def tenant_free_board_delete(slug: str, post_id: int, request: Request):
    boards.delete_free_board(_union_id(slug), get_optional_user(request), post_id)
    return ok({"id": post_id})


@router.post("/free-boards/{post_id}/like")
def tenant_free_board_like(slug: str, post_id: int, request: Request):
    return ok(boards.toggle_like(_union_id(slug), get_optional_user(request), post_id))


# --- comments / files --------------------------------------------------------

@router.get("/comments")
def tenant_comments(
    slug: str,
    request: Request,
    entity_type: CommentEntity = Query(...),
    entity_id: int = Query(..., ge=1),
):
    return ok(boards.list_comments(_union_id(slug), entity_type, entity_id, get_optional_user(request)))


@router.post("/comments", status_code=201)
def tenant_comment_create(slug: str, payload: CommentIn, request: Request):
    return ok(boards.create_comment(_union_id(slug), get_optional_user(request), payload.model_dump()))


@router.delete("/comments/{comment_id}")
def tenant_comment_delete(slug: str, comment_id: int, request: Request):
    boards.delete_comment(_union_id(slug), get_optional_user(request), comment_id)
    return ok({"id": comment_id})


@router.get("/files")
def tenant_files(
    slug: str,
    request: Request,
    entity_type: CommentEntity = Query(...),
    entity_id: int = Query(..., ge=1),
):
    return ok(boards.list_files(_union_id(slug), entity_type, entity_id, get_optional_user(request)))


@router.post("/files", status_code=201)
def tenant_file_create(slug: str, payload: FileIn, request: Request):
    return ok(boards.add_file(_union_id(slug), get_optional_user(request), payload.model_dump()))


# --- slides / ads ------------------------------------------------------------

@router.get("/slides")
def tenant_slides(slug: str):
    return ok(slides.list_active_slides(_union_id(slug)))


if env_flag("FEATURE_ADS", "1"):

    @router.get("/ads")
    def tenant_ads(slug: str, placement: str = Query("")):
        return ok(ads.tenant_ads(_union_id(slug), placement or None))

    @router.get("/ads/board")
    def tenant_ads_board(
        slug: str,
        page: int = Query(1, ge=1),
        page_size: int = Query(12, ge=1, le=100, alias="pageSize"),
        search: str = Query(""),
    ):
        return ok(ads.tenant_ads_board(_union_id(slug), page=page, page_size=page_size, search=search or None))
