from __future__ import annotations


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def _invite(seed, union_id: int, name: str, phone: str, status: str = "PENDING", user_id=None, address=None) -> int:
    with seed.db.db_conn() as con:
        cur = con.execute(
            """
            INSERT INTO member_invites(union_id, name, phone_number, property_address, invite_token, status,
                                       expires_at, user_id)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (union_id, name, phone, address, f"tok-{name}", status, "2999-01-01 00:00:00", user_id),
        )
        con.commit()
        return int(cur.lastrowid)


def test_sync_member_invites_inserts_and_deletes(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    _invite(seed, union["id"], "유지", "010-1111-1111", address="역삼동 1")
    _invite(seed, union["id"], "삭제대상", "010-2222-2222")
    used_user = seed.user(union["id"], "탈퇴대상")
    with seed.db.db_conn() as con:
        con.execute(
            "INSERT INTO user_auth_links(user_id, provider, provider_user_id) VALUES(?,?,?)",
            (used_user, "kakao", "kakao-777"),
        )
        con.commit()
    _invite(seed, union["id"], "탈퇴대상", "010-3333-3333", status="USED", user_id=used_user)

    res = client.post(
        "/api/member-invite/sync",
        json={
            "unionId": union["id"],
            "createdBy": admin,
            "members": [
                {"name": "유지", "phoneNumber": "01011111111", "propertyAddress": "역삼동 1"},
                {"name": "신규", "phoneNumber": "010-4444-4444"},
                {"name": "신규", "phoneNumber": "010-4444-4444"},
                {"name": "", "phoneNumber": "010-5555-5555"},
            ],
        },
        headers=_h(admin),
    )
    assert res.status_code == 200
    assert res.json() == {
        "inserted": 1,
        "deleted_pending": 1,
        "deleted_used": 1,
        "deleted_auth_user_ids": ["kakao-777"],
    }
    names = sorted(r["name"] for r in seed.fetch("SELECT name FROM member_invites"))
    assert names == ["신규", "유지"]
    assert seed.fetch("SELECT id FROM users WHERE id=?", (used_user,)) == []

    pending = client.get(
        "/api/member-invite", params={"unionId": union["id"], "status": "PENDING"}, headers=_h(admin)
    ).json()["items"]
    assert len(pending) == 2


def test_sync_requires_created_by(client, seed) -> None:
    union = seed.union()
    res = client.post("/api/member-invite/sync", json={"unionId": union["id"], "members": []}, headers=_h(1))
    assert res.status_code == 400
    assert res.json()["error"] == "필수 파라미터가 누락되었습니다."


def test_sync_async_job_completes(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    members = [{"name": f"조합원{i}", "phoneNumber": f"010-0000-{i:04d}"} for i in range(25)]

    started = client.post(
        "/api/member-invite/sync-async", json={"unionId": union["id"], "members": members}, headers=_h(admin)
    ).json()
    assert started["success"] is True
    assert started["totalCount"] == 25

    job = client.get(f"/api/member-invite/job/{started['jobId']}", headers=_h(admin)).json()["job"]
    assert job["status"] == "COMPLETED"
    assert job["progress"] == 100
    assert job["result"]["inserted"] == 25
    assert job["preview_data"]["memberCount"] == 25

    expires = seed.fetch("SELECT DISTINCT expires_at FROM member_invites")
    assert len(expires) == 1
    assert expires[0]["expires_at"] > "2026"


def test_pre_register_creates_and_skips(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    seed.user(union["id"], "기존", phone_number="010-1234-5678")

    empty = client.post("/api/member-invite/pre-register", json={"unionId": union["id"], "members": []}, headers=_h(admin))
    assert empty.status_code == 400

    started = client.post(
        "/api/member-invite/pre-register",
        json={
            "unionId": union["id"],
            "members": [
                {"name": "기존", "phoneNumber": "01012345678"},
                {"name": "신규", "phoneNumber": "010-9999-8888", "propertyAddress": "역삼동 10", "dong": "101", "ho": "1001"},
                {"phoneNumber": "010-0000-0000"},
            ],
        },
        headers=_h(admin),
    ).json()
    assert started["jobType"] == "PRE_REGISTER"

    job = client.get(f"/api/member-invite/job/{started['jobId']}", headers=_h(admin)).json()["job"]
    assert job["status"] == "COMPLETED"
    assert job["result"]["created"] == 1
    assert job["result"]["skipped"] == 1
    assert job["result"]["errors"] == [{"row": 3, "message": "이름이 없습니다."}]

    new_user = seed.fetch("SELECT * FROM users WHERE name='신규'")[0]
    assert new_user["user_status"] == "PRE_REGISTERED"
    unit = seed.fetch("SELECT * FROM user_property_units WHERE user_id=?", (new_user["id"],))[0]
    assert unit["dong"] == "101"
    assert unit["ho"] == "1001"
    assert unit["property_address_jibun"] == "역삼동 10"


def test_sync_properties_links_units(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    linked = seed.user(union["id"], "주소있음", property_address_jibun="역삼동 5", property_address_detail="101동 202호")
    seed.user(union["id"], "주소없음")
    has_unit = seed.user(union["id"], "이미연결", property_address_jibun="역삼동 7")
    seed.unit(has_unit, property_address_jibun="역삼동 7")

    started = client.post("/api/member-invite/sync-properties", json={"unionId": union["id"]}, headers=_h(admin)).json()
    job = client.get(f"/api/member-invite/job/{started['jobId']}", headers=_h(admin)).json()["job"]
    assert job["status"] == "COMPLETED"
    # 관리자 + 주소없음 + 이미연결 = 3
    assert job["result"] == {"linked": 1, "skipped": 3}

    unit = seed.fetch("SELECT dong, ho FROM user_property_units WHERE user_id=?", (linked,))[0]
    assert unit == {"dong": "101", "ho": "202"}


def test_accept_member_invite(client, seed) -> None:
    union = seed.union()
    _invite(seed, union["id"], "홍길동", "010-1212-3434", address="역삼동 3")
    newcomer = seed.user(None, "임시이름", status="PENDING_PROFILE")
    stranger = seed.user(None, "남", status="PENDING_PROFILE")

    info = client.get("/api/member-invite/token/tok-홍길동").json()["item"]
    assert info["union_slug"] == "test-union"
    assert info["status"] == "PENDING"

    denied = client.post("/api/member-invite/token/tok-홍길동/accept", json={"userId": newcomer}, headers=_h(stranger))
    assert denied.status_code == 403

    res = client.post("/api/member-invite/token/tok-홍길동/accept", json={"userId": newcomer}, headers=_h(newcomer))
    assert res.status_code == 200
    assert res.json()["union_id"] == union["id"]

    user = seed.fetch("SELECT * FROM users WHERE id=?", (newcomer,))[0]
    assert user["user_status"] == "PENDING_APPROVAL"
    assert user["name"] == "홍길동"
    assert user["phone_number"] == "010-1212-3434"
    assert user["union_id"] == union["id"]

    again = client.post("/api/member-invite/token/tok-홍길동/accept", json={"userId": newcomer}, headers=_h(newcomer))
    assert again.status_code == 400
    assert again.json()["error"] == "invite is USED"

    assert client.get("/api/member-invite/token/nope").status_code == 404


def test_accept_member_invite_resets_status_to_pending_approval(client, seed) -> None:
    union = seed.union()
    _invite(seed, union["id"], "김승인", "010-5656-7878")
    approved = seed.user(None, "김승인", status="APPROVED")

    res = client.post("/api/member-invite/token/tok-김승인/accept", json={"userId": approved}, headers=_h(approved))
    assert res.status_code == 200
    user = seed.fetch("SELECT union_id, user_status FROM users WHERE id=?", (approved,))[0]
    assert user == {"union_id": union["id"], "user_status": "PENDING_APPROVAL"}


def test_expired_member_invite(client, seed) -> None:
    union = seed.union()
    user = seed.user(None, "늦은사람", status="PENDING_PROFILE")
    with seed.db.db_conn() as con:
        con.execute(
            """
            INSERT INTO member_invites(union_id, name, phone_number, invite_token, status, expires_at)
            VALUES(?, '늦은사람', '010', 'tok-late', 'PENDING', '2000-01-01 00:00:00')
            """,
            (union["id"],),
        )
        con.commit()
    res = client.post("/api/member-invite/token/tok-late/accept", json={"userId": user}, headers=_h(user))
    assert res.status_code == 400
    assert seed.fetch("SELECT status FROM member_invites WHERE invite_token='tok-late'") == [{"status": "EXPIRED"}]
