from __future__ import annotations

from io import BytesIO

from openpyxl import load_workbook


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "User-Agent": "pytest"}


def _setup(seed):
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    pending = seed.user(union["id"], "신청자", status="PENDING_APPROVAL")
    return union, admin, pending


def test_approve_writes_success_log(client, seed) -> None:
    union, admin, pending = _setup(seed)
    res = client.post("/api/members/approve", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    assert res.status_code == 200
    item = res.json()["item"]
    assert item["user_status"] == "APPROVED"
    assert item["approved_at"]

    logs = seed.fetch("SELECT * FROM member_access_logs WHERE target_user_id=?", (pending,))
    assert len(logs) == 1
    assert logs[0]["action"] == "APPROVE_MEMBER"
    assert logs[0]["status"] == "SUCCESS"
    assert logs[0]["user_id"] == admin
    assert logs[0]["user_agent"] == "pytest"


def test_approve_sets_user_role(client, seed) -> None:
    union, admin, _ = _setup(seed)
    applicant = seed.user(union["id"], "관리자지원", role="ADMIN", status="PENDING_APPROVAL")
    res = client.post("/api/members/approve", json={"unionId": union["id"], "memberId": applicant}, headers=_h(admin))
    assert res.status_code == 200
    assert res.json()["item"]["role"] == "USER"
    assert seed.fetch("SELECT role, user_status FROM users WHERE id=?", (applicant,)) == [
        {"role": "USER", "user_status": "APPROVED"}
    ]


def test_approve_twice_logs_failure(client, seed) -> None:
    union, admin, pending = _setup(seed)
    client.post("/api/members/approve", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    res = client.post("/api/members/approve", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    assert res.status_code == 400
    body = res.json()
    assert body["currentStatus"] == "APPROVED"

    failed = seed.fetch("SELECT * FROM member_access_logs WHERE action='APPROVE_MEMBER_FAILED'")
    assert len(failed) == 1
    assert failed[0]["status"] == "FAILURE"


def test_reject_requires_reason_then_cancel(client, seed) -> None:
    union, admin, pending = _setup(seed)
    res = client.post("/api/members/reject", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    assert res.status_code == 400

    res = client.post(
        "/api/members/reject",
        json={"unionId": union["id"], "memberId": pending, "reason": "서류 미비"},
        headers=_h(admin),
    )
    assert res.json()["item"]["user_status"] == "REJECTED"
    assert res.json()["item"]["rejected_reason"] == "서류 미비"

    res = client.post("/api/members/cancel-rejection", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    item = res.json()["item"]
    assert item["user_status"] == "PENDING_APPROVAL"
    assert item["rejected_reason"] is None

    actions = [r["action"] for r in seed.fetch("SELECT action FROM member_access_logs ORDER BY id")]
    assert actions == ["REJECT_MEMBER_FAILED", "REJECT_MEMBER", "CANCEL_REJECTION"]


def test_other_union_admin_is_forbidden(client, seed) -> None:
    union, _, pending = _setup(seed)
    other = seed.union("other-union")
    stranger = seed.user(other["id"], "남의관리자", role="ADMIN")
    res = client.post("/api/members/approve", json={"unionId": union["id"], "memberId": pending}, headers=_h(stranger))
    assert res.status_code == 403
    assert seed.fetch("SELECT status FROM member_access_logs") == [{"status": "FAILURE"}]


def test_member_list_and_access_logs(client, seed) -> None:
    union, admin, pending = _setup(seed)
    seed.user(union["id"], "승인회원")
    res = client.get("/api/members", params={"unionId": union["id"], "status": "PENDING_APPROVAL"}, headers=_h(admin))
    body = res.json()
    assert body["total"] == 1
    assert body["items"][0]["id"] == pending

    client.post("/api/members/approve", json={"unionId": union["id"], "memberId": pending}, headers=_h(admin))
    logs = client.get("/api/members/access-logs", params={"unionId": union["id"]}, headers=_h(admin)).json()
    assert logs["total"] == 1
    assert logs["items"][0]["target_name"] == "신청자"
    assert logs["items"][0]["metadata"]["previousStatus"] == "PENDING_APPROVAL"


def test_block_and_unblock(client, seed) -> None:
    union, admin, _ = _setup(seed)
    member = seed.user(union["id"], "회원")
    assert client.post(f"/api/members/{admin}/block", json={"reason": "x"}, headers=_h(admin)).status_code == 400

    res = client.post(f"/api/members/{member}/block", json={"reason": "악성 게시글"}, headers=_h(admin))
    assert res.json()["item"]["is_blocked"] == 1
    assert client.get("/api/auth/me", headers=_h(member)).status_code == 403

    res = client.post(f"/api/members/{member}/unblock", headers=_h(admin))
    assert res.json()["item"]["is_blocked"] == 0
    assert client.get("/api/auth/me", headers=_h(member)).status_code == 200


def test_property_units_normalize_basement_and_validate_pnu(client, seed) -> None:
    union, admin, _ = _setup(seed)
    member = seed.user(union["id"], "회원")
    res = client.post(
        f"/api/members/{member}/units",
        json={"dong": "101동", "ho": "지하1", "is_basement": True, "property_address_jibun": "역삼동 1"},
        headers=_h(admin),
    )
    assert res.status_code == 201
    unit = res.json()["item"]
    assert unit["dong"] == "101"
    assert unit["ho"] == "B1"

    bad = client.post(f"/api/members/{member}/units", json={"pnu": "12345"}, headers=_h(admin))
    assert bad.status_code == 400

    items = client.get(f"/api/members/{member}/units", headers=_h(admin)).json()["items"]
    assert items[0]["display_address"] == "역삼동 1 101동 B1호"

    assert client.delete(f"/api/members/{member}/units/{unit['id']}", headers=_h(admin)).status_code == 200
    assert client.get(f"/api/members/{member}/units", headers=_h(admin)).json()["items"] == []


def test_export_members_xlsx(client, seed) -> None:
    union, admin, _ = _setup(seed)
    member = seed.user(union["id"], "가나다", phone_number="010-1111-2222")
    seed.unit(member, dong="101", ho="1001", property_address_jibun="역삼동 1")

    res = client.get("/api/members/export", params={"unionId": union["id"], "status": "APPROVED"}, headers=_h(admin))
    assert res.status_code == 200
    assert "attachment" in res.headers["content-disposition"]
    ws = load_workbook(BytesIO(res.content)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][0] == "이름"
    names = [r[0] for r in rows[1:]]
    assert "가나다" in names
    row = next(r for r in rows[1:] if r[0] == "가나다")
    assert row[1] == "010-1111-2222"
    assert row[4] == "101"


def _conflict(seed):
    union, admin, pending = _setup(seed)
    existing = seed.user(union["id"], "기존소유자")
    unit_id = seed.unit(existing, building_unit_id="BU-1", land_ownership_ratio=100, building_ownership_ratio=100)
    seed.unit(pending, building_unit_id="BU-1")
    return union, admin, pending, existing, unit_id


def test_check_conflict_finds_existing_owner(client, seed) -> None:
    _, admin, pending, existing, unit_id = _conflict(seed)
    body = client.get("/api/members/check-conflict", params={"userId": pending}, headers=_h(admin)).json()
    assert body["hasConflict"] is True
    assert body["conflicts"][0]["propertyUnitId"] == unit_id
    assert body["conflicts"][0]["existingOwner"]["userId"] == existing


def test_resolve_conflict_transfer(client, seed) -> None:
    _, admin, pending, existing, unit_id = _conflict(seed)
    res = client.post(
        "/api/members/resolve-conflict",
        json={"pendingUserId": pending, "existingUserId": existing, "propertyUnitId": unit_id, "action": "transfer"},
        headers=_h(admin),
    )
    assert res.status_code == 200
    assert res.json()["success"] is True

    users = {u["id"]: u for u in seed.fetch("SELECT id, user_status FROM users WHERE id IN (?,?)", (pending, existing))}
    assert users[pending]["user_status"] == "APPROVED"
    assert users[existing]["user_status"] == "TRANSFERRED"
    history = seed.fetch("SELECT * FROM property_ownership_history")
    assert history[0]["change_type"] == "TRANSFER"
    assert history[0]["from_user_id"] == existing
    assert history[0]["to_user_id"] == pending


def test_resolve_conflict_co_owner_ratio_must_total_100(client, seed) -> None:
    _, admin, pending, existing, unit_id = _conflict(seed)
    payload = {
        "pendingUserId": pending,
        "existingUserId": existing,
        "propertyUnitId": unit_id,
        "action": "add_co_owner",
        "existingRatio": 60,
        "newRatio": 30,
    }
    res = client.post("/api/members/resolve-conflict", json=payload, headers=_h(admin))
    assert res.status_code == 400
    assert "100%에 도달하지" in res.json()["error"]

    res = client.post("/api/members/resolve-conflict", json={**payload, "newRatio": 40}, headers=_h(admin))
    assert res.status_code == 200
    ratios = {
        r["user_id"]: (r["ownership_type"], r["land_ownership_ratio"])
        for r in seed.fetch("SELECT user_id, ownership_type, land_ownership_ratio FROM user_property_units")
    }
    assert ratios[existing] == ("CO_OWNER", 60)
    assert ratios[pending] == ("CO_OWNER", 40)


def test_resolve_conflict_proxy(client, seed) -> None:
    _, admin, pending, existing, unit_id = _conflict(seed)
    res = client.post(
        "/api/members/resolve-conflict",
        json={
            "pendingUserId": pending,
            "existingUserId": existing,
            "propertyUnitId": unit_id,
            "action": "add_proxy",
            "relationshipType": "FAMILY",
        },
        headers=_h(admin),
    )
    assert res.json()["message"] == "소유주 가족으로 등록되었습니다."
    rel = seed.fetch("SELECT * FROM user_relationships")
    assert rel[0]["user_id"] == pending
    assert rel[0]["relationship_type"] == "FAMILY"


def test_resolve_conflict_rejects_non_integer_ids(client, seed) -> None:
    _, admin, pending, existing, _ = _conflict(seed)
    res = client.post(
        "/api/members/resolve-conflict",
        json={"pendingUserId": pending, "existingUserId": existing, "propertyUnitId": "첫번째", "action": "transfer"},
        headers=_h(admin),
    )
    assert res.status_code == 400
    assert res.json()["fields"] == ["propertyUnitId"]

    missing = client.post("/api/members/resolve-conflict", json={"pendingUserId": pending}, headers=_h(admin))
    assert missing.status_code == 400
    assert missing.json()["error"] == "필수 파라미터가 누락되었습니다."
