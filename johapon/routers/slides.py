from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from johapon import slides
from johapon.auth import ensure_union_access, require_admin
from johapon.schemas import SlideIn, SlideUpdateIn

router = APIRouter(prefix="/api/slides", tags=["slides"])


def _slide_in_scope(user: dict, slide_id: int) -> dict:
    item = slides.get_slide(slide_id)
    ensure_union_access(user, item.get("union_id"))
    return item


@router.get("")
def slides_list(union_id: int = Query(..., alias="unionId"), user: dict = Depends(require_admin)):
    ensure_union_access(user, union_id)
    return {"ok": True, "items": slides.list_slides(union_id)}


@router.post("", status_code=201)
def slides_create(payload: SlideIn, union_id: int = Query(..., alias="unionId"), user: dict = Depends(require_admin)):
    ensure_union_access(user, union_id)
    return {"ok": True, "item": slides.create_slide(union_id, payload.model_dump())}


@router.get("/{slide_id}")
def slides_get(slide_id: int, user: dict = Depends(require_admin)):
    return {"ok": True, "item": _slide_in_scope(user, slide_id)}


@router.patch("/{slide_id}")
def slides_update(slide_id: int, payload: SlideUpdateIn, user: dict = Depends(require_admin)):
    _slide_in_scope(user, slide_id)
    return {"ok": True, "item": slides.update_slide(slide_id, payload.model_dump(exclude_unset=True))}


@router.delete("/{slide_id}")
def slides_delete(slide_id: int, user: dict = Depends(require_admin)):
    _slide_in_scope(user, slide_id)
    slides.delete_slide(slide_id)
    return {"ok": True}
