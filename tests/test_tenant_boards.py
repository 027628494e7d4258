from __future__ import annotations

import importlib
from datetime import date, datetime, timedelta


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def test_meta_and_unknown_slug(client, seed) -> None:
    seed.union(description="역삼 재개발")
    seed.union("closed", is_active=False)

    meta = client.get("/api/tenant/test-union/meta").json()
    assert meta["ok"] is True
    assert meta["data"]["slug"] == "test-union"
    assert "alimtalk_sender_key" not in meta["data"]

    for slug in ("nope", "closed"):
        res = client.get(f"/api/tenant/{slug}/meta")
        assert res.status_code == 404
        assert res.json()["ok"] is False
        assert res.json()["error"]["code"] == "NOT_FOUND"
        assert res.headers["cache-control"] == "no-store"


def test_notices_admin_only_and_popup_filter(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    member = seed.user(union["id"], "조합원")

    denied = client.post("/api/tenant/test-union/notices", json={"title": "t", "content": "c"}, headers=_h(member))
    assert denied.status_code == 403
    assert denied.json() == {"ok": False, "error": {"code": "FORBIDDEN", "message": "관리자 권한이 필요합니다."}}

    anon = client.post("/api/tenant/test-union/notices", json={"title": "t", "content": "c"})
    assert anon.status_code == 403

    created = client.post(
        "/api/tenant/test-union/notices",
        json={"title": "팝업 공지", "content": "본문", "is_popup": True},
        headers=_h(admin),
    ).json()["data"]
    client.post("/api/tenant/test-union/notices", json={"title": "일반 공지", "content": "본문"}, headers=_h(admin))
    assert "notificationQueueId" not in created

    listing = client.get("/api/tenant/test-union/notices").json()["data"]
    assert listing["total"] == 2
    popups = client.get("/api/tenant/test-union/notices", params={"popup": True}).json()["data"]
    assert [n["title"] for n in popups["items"]] == ["팝업 공지"]

    detail = client.get(f"/api/tenant/test-union/notices/{created['id']}").json()["data"]
    assert detail["views"] == 1
    assert detail["author_name"] == "관리자"

    patched = client.patch(
        f"/api/tenant/test-union/notices/{created['id']}", json={"title": "수정 공지"}, headers=_h(admin)
    ).json()["data"]
    assert patched["title"] == "수정 공지"

    assert client.delete(f"/api/tenant/test-union/notices/{created['id']}", headers=_h(admin)).status_code == 200
    assert client.get(f"/api/tenant/test-union/notices/{created['id']}").status_code == 404


def test_notice_from_other_union_not_visible(client, seed) -> None:
    union = seed.union()
    seed.union("other-union")
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    notice = client.post(
        "/api/tenant/test-union/notices", json={"title": "공지", "content": "본문"}, headers=_h(admin)
    ).json()["data"]

    res = client.get(f"/api/tenant/other-union/notices/{notice['id']}")
    assert res.status_code == 404
    assert client.get("/api/tenant/other-union/notices").json()["data"]["total"] == 0


def test_secret_question_masking(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    author = seed.user(union["id"], "작성자")
    other = seed.user(union["id"], "다른사람")

    q = client.post(
        "/api/tenant/test-union/questions",
        json={"title": "분담금 문의", "content": "얼마인가요", "is_secret": True},
        headers=_h(author),
    ).json()["data"]

    as_other = client.get("/api/tenant/test-union/questions", headers=_h(other)).json()["data"]["items"][0]
    assert as_other["title"] == "비밀글입니다."
    assert as_other["content"] is None
    as_author = client.get("/api/tenant/test-union/questions", headers=_h(author)).json()["data"]["items"][0]
    assert as_author["title"] == "분담금 문의"

    assert client.get(f"/api/tenant/test-union/questions/{q['id']}", headers=_h(other)).status_code == 403
    assert client.get(f"/api/tenant/test-union/questions/{q['id']}").status_code == 403

    not_admin = client.post(
        f"/api/tenant/test-union/questions/{q['id']}/answer", json={"answer_content": "답"}, headers=_h(author)
    )
    assert not_admin.status_code == 403
    answered = client.post(
        f"/api/tenant/test-union/questions/{q['id']}/answer",
        json={"answer_content": "추후 안내드립니다."},
        headers=_h(admin),
    ).json()["data"]
    assert answered["answer_content"] == "추후 안내드립니다."
    assert answered["answered_at"]

    assert client.delete(f"/api/tenant/test-union/questions/{q['id']}", headers=_h(other)).status_code == 403
    assert client.delete(f"/api/tenant/test-union/questions/{q['id']}", headers=_h(author)).status_code == 200


def test_secret_question_thread_hidden_from_others(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    author = seed.user(union["id"], "작성자")
    other = seed.user(union["id"], "다른사람")

    q = client.post(
        "/api/tenant/test-union/questions",
        json={"title": "개인 문의", "content": "내용", "is_secret": True},
        headers=_h(author),
    ).json()["data"]
    reply = client.post(
        "/api/tenant/test-union/comments",
        json={"entity_type": "question", "entity_id": q["id"], "content": "개인 답변 내용"},
        headers=_h(admin),
    )
    assert reply.status_code == 201
    client.post(
        "/api/tenant/test-union/files",
        json={"entity_type": "question", "entity_id": q["id"], "file_name": "등기.pdf", "file_url": "https://f/1.pdf"},
        headers=_h(author),
    )

    params = {"entity_type": "question", "entity_id": q["id"]}
    for headers in ({}, _h(other)):
        comments = client.get("/api/tenant/test-union/comments", params=params, headers=headers)
        assert comments.status_code == 403
        assert comments.json()["error"]["code"] == "FORBIDDEN"
        assert client.get("/api/tenant/test-union/files", params=params, headers=headers).status_code == 403

    sneaky = client.post(
        "/api/tenant/test-union/comments",
        json={"entity_type": "question", "entity_id": q["id"], "content": "끼어들기"},
        headers=_h(other),
    )
    assert sneaky.status_code == 403

    for viewer in (author, admin):
        thread = client.get("/api/tenant/test-union/comments", params=params, headers=_h(viewer)).json()["data"]
        assert [c["content"] for c in thread] == ["개인 답변 내용"]
        files = client.get("/api/tenant/test-union/files", params=params, headers=_h(viewer)).json()["data"]
        assert [f["file_name"] for f in files] == ["등기.pdf"]


def test_question_requires_membership(client, seed) -> None:
    seed.union()
    other_union = seed.union("other-union")
    outsider = seed.user(other_union["id"], "외부인")

    res = client.post("/api/tenant/test-union/questions", json={"title": "t", "content": "c"}, headers=_h(outsider))
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"
    assert client.post("/api/tenant/test-union/questions", json={"title": "t", "content": "c"}).status_code == 403


def test_tenant_request_validation_uses_envelope(client, seed) -> None:
    seed.union()
    res = client.get("/api/tenant/test-union/comments", params={"entity_type": "bad", "entity_id": 1})
    assert res.status_code == 422
    assert res.headers["cache-control"] == "no-store"
    body = res.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "BAD_REQUEST"
    assert "entity_type" in body["error"]["message"]

    res = client.post("/api/tenant/test-union/questions", json={"title": "t"}, headers=_h(1))
    assert res.status_code == 422
    assert res.json()["error"]["message"].startswith("content")

    # 테넌트 외 경로는 FastAPI 기본 형식 유지
    res = client.get("/api/members/check-conflict", headers=_h(1))
    assert res.status_code == 422
    assert "detail" in res.json()


def test_free_board_likes_comments_files(client, seed) -> None:
    union = seed.union()
    author = seed.user(union["id"], "작성자")
    reader = seed.user(union["id"], "독자")

    post = client.post(
        "/api/tenant/test-union/free-boards", json={"title": "안녕하세요", "content": "첫 글"}, headers=_h(author)
    ).json()["data"]
    pid = post["id"]

    assert client.patch(f"/api/tenant/test-union/free-boards/{pid}", json={"title": "x"}, headers=_h(reader)).status_code == 403
    edited = client.patch(f"/api/tenant/test-union/free-boards/{pid}", json={"title": "수정됨"}, headers=_h(author))
    assert edited.json()["data"]["title"] == "수정됨"

    liked = client.post(f"/api/tenant/test-union/free-boards/{pid}/like", headers=_h(reader)).json()["data"]
    assert liked == {"liked": True, "like_count": 1}
    unliked = client.post(f"/api/tenant/test-union/free-boards/{pid}/like", headers=_h(reader)).json()["data"]
    assert unliked == {"liked": False, "like_count": 0}

    root = client.post(
        "/api/tenant/test-union/comments",
        json={"entity_type": "free_board", "entity_id": pid, "content": "좋은 글"},
        headers=_h(reader),
    ).json()["data"]
    client.post(
        "/api/tenant/test-union/comments",
        json={"entity_type": "free_board", "entity_id": pid, "parent_id": root["id"], "content": "감사합니다"},
        headers=_h(author),
    )
    bad_parent = client.post(
        "/api/tenant/test-union/comments",
        json={"entity_type": "question", "entity_id": pid, "parent_id": root["id"], "content": "x"},
        headers=_h(author),
    )
    assert bad_parent.status_code == 404

    tree = client.get(
        "/api/tenant/test-union/comments", params={"entity_type": "free_board", "entity_id": pid}
    ).json()["data"]
    assert len(tree) == 1
    assert tree[0]["author_name"] == "독자"
    assert [r["content"] for r in tree[0]["replies"]] == ["감사합니다"]

    listing = client.get("/api/tenant/test-union/free-boards", params={"search": "수정"}).json()["data"]
    assert listing["total"] == 1
    assert listing["items"][0]["comment_count"] == 2

    denied_file = client.post(
        "/api/tenant/test-union/files",
        json={"entity_type": "free_board", "entity_id": pid, "file_name": "a.pdf", "file_url": "https://f/a.pdf"},
        headers=_h(reader),
    )
    assert denied_file.status_code == 403
    client.post(
        "/api/tenant/test-union/files",
        json={"entity_type": "free_board", "entity_id": pid, "file_name": "a.pdf", "file_url": "https://f/a.pdf", "file_size": 10},
        headers=_h(author),
    )
    files = client.get("/api/tenant/test-union/files", params={"entity_type": "free_board", "entity_id": pid}).json()["data"]
    assert [f["file_name"] for f in files] == ["a.pdf"]

    detail = client.get(f"/api/tenant/test-union/free-boards/{pid}", headers=_h(reader)).json()["data"]
    assert detail["liked"] is False
    assert len(detail["files"]) == 1

    assert client.delete(f"/api/tenant/test-union/comments/{root['id']}", headers=_h(author)).status_code == 403
    assert client.delete(f"/api/tenant/test-union/comments/{root['id']}", headers=_h(reader)).status_code == 200
    assert seed.fetch("SELECT COUNT(*) AS n FROM comments")[0]["n"] == 0

    assert client.delete(f"/api/tenant/test-union/free-boards/{pid}", headers=_h(author)).status_code == 200
    assert seed.fetch("SELECT COUNT(*) AS n FROM files")[0]["n"] == 0


def test_slides_admin_and_tenant_view(client, seed) -> None:
    union = seed.union()
    other = seed.union("other-union")
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    other_admin = seed.user(other["id"], "타조합", role="ADMIN")

    first = client.post(
        "/api/slides", params={"unionId": union["id"]}, json={"image_url": "https://img/1.png", "sort_order": 2}, headers=_h(admin)
    )
    assert first.status_code == 201
    client.post("/api/slides", params={"unionId": union["id"]}, json={"image_url": "https://img/0.png", "sort_order": 1}, headers=_h(admin))
    client.post(
        "/api/slides",
        params={"unionId": union["id"]},
        json={"image_url": "https://img/old.png", "ends_at": "2000-01-01 00:00:00"},
        headers=_h(admin),
    )
    hidden = client.post(
        "/api/slides", params={"unionId": union["id"]}, json={"image_url": "https://img/off.png", "is_active": False}, headers=_h(admin)
    ).json()["item"]

    slides = client.get("/api/tenant/test-union/slides").json()["data"]
    assert [s["image_url"] for s in slides] == ["https://img/0.png", "https://img/1.png"]

    assert client.get("/api/slides", params={"unionId": union["id"]}, headers=_h(other_admin)).status_code == 403
    assert client.patch(f"/api/slides/{hidden['id']}", json={"is_active": True}, headers=_h(other_admin)).status_code == 403
    client.patch(f"/api/slides/{hidden['id']}", json={"is_active": True}, headers=_h(admin))
    assert len(client.get("/api/tenant/test-union/slides").json()["data"]) == 3

    assert client.delete(f"/api/slides/{hidden['id']}", headers=_h(admin)).status_code == 200
    assert len(client.get("/api/slides", params={"unionId": union["id"]}, headers=_h(admin)).json()["items"]) == 3


def test_tenant_ads_need_active_contract(client, seed) -> None:
    ads = importlib.import_module("johapon.ads")
    union = seed.union()
    seed.union("other-union")
    today = date.today()

    common = ads.create_ad({"title": "공통 법무", "partner_name": "법무법인", "placements": ["HOME", "BOARD"]})
    own = ads.create_ad({"title": "조합 전용", "partner_name": "이사업체", "placements": ["SIDE"], "union_id": union["id"]})
    ads.create_ad({"title": "계약 없음", "partner_name": "무계약", "placements": ["HOME"]})
    for ad in (common, own):
        ads.create_contract(
            {
                "ad_id": ad["id"],
                "start_date": (today - timedelta(days=5)).isoformat(),
                "end_date": (today + timedelta(days=5)).isoformat(),
                "billing_cycle": "MONTHLY",
                "amount": 100000,
                "status": "ACTIVE",
            }
        )

    titles = {a["title"] for a in client.get("/api/tenant/test-union/ads").json()["data"]}
    assert titles == {"공통 법무", "조합 전용"}
    home = client.get("/api/tenant/test-union/ads", params={"placement": "home"}).json()["data"]
    assert [a["title"] for a in home] == ["공통 법무"]
    other = client.get("/api/tenant/other-union/ads").json()["data"]
    assert [a["title"] for a in other] == ["공통 법무"]

    board = client.get("/api/tenant/test-union/ads/board", params={"pageSize": 1}).json()["data"]
    assert board["total"] == 2
    assert board["hasMore"] is True
    searched = client.get("/api/tenant/test-union/ads/board", params={"search": "이사"}).json()["data"]
    assert [a["partner_name"] for a in searched["items"]] == ["이사업체"]


def test_slide_window_accepts_iso_timestamps(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    started = (datetime.now() - timedelta(minutes=1)).replace(microsecond=0)

    created = client.post(
        "/api/slides",
        params={"unionId": union["id"]},
        json={"image_url": "https://img/now.png", "starts_at": started.isoformat(), "ends_at": date.today().isoformat()},
        headers=_h(admin),
    ).json()["item"]
    assert created["starts_at"] == started.isoformat(sep=" ")
    assert created["ends_at"] == f"{date.today().isoformat()} 23:59:59"

    slides = client.get("/api/tenant/test-union/slides").json()["data"]
    assert [s["image_url"] for s in slides] == ["https://img/now.png"]

    bad = client.post(
        "/api/slides", params={"unionId": union["id"]}, json={"image_url": "x", "starts_at": "내일"}, headers=_h(admin)
    )
    assert bad.status_code == 400


def test_popup_with_date_only_end_date_lasts_whole_day(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    today = date.today().isoformat()
    yesterday = (date.today() - timedelta(days=1)).isoformat()

    client.post(
        "/api/tenant/test-union/notices",
        json={"title": "오늘까지", "content": "본문", "is_popup": True, "end_date": today},
        headers=_h(admin),
    )
    client.post(
        "/api/tenant/test-union/notices",
        json={"title": "어제까지", "content": "본문", "is_popup": True, "end_date": yesterday},
        headers=_h(admin),
    )

    popups = client.get("/api/tenant/test-union/notices", params={"popup": True}).json()["data"]["items"]
    assert [n["title"] for n in popups] == ["오늘까지"]
    assert popups[0]["end_date"] == f"{today} 23:59:59"
