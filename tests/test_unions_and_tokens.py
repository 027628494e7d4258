from __future__ import annotations


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def test_union_crud_requires_system_admin(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    assert client.get("/api/unions", headers=_h(admin)).status_code == 403
    assert client.get("/api/unions").status_code == 401

    res = client.post("/api/unions", json={"name": "새조합", "slug": "New-Union"}, headers=_h(1))
    assert res.status_code == 201
    created = res.json()["item"]
    assert created["slug"] == "new-union"

    dup = client.post("/api/unions", json={"name": "중복", "slug": "new-union"}, headers=_h(1))
    assert dup.status_code == 409
    bad = client.post("/api/unions", json={"name": "잘못", "slug": "한글슬러그"}, headers=_h(1))
    assert bad.status_code == 400

    res = client.patch(f"/api/unions/{created['id']}", json={"is_active": False}, headers=_h(1))
    assert res.json()["item"]["is_active"] == 0
    stats = client.get("/api/unions/stats", headers=_h(1)).json()
    assert stats == {"ok": True, "total": 2, "active": 1, "inactive": 1}

    assert client.delete(f"/api/unions/{created['id']}", headers=_h(1)).status_code == 200
    assert client.get(f"/api/unions/{created['id']}", headers=_h(1)).status_code == 404


def test_admin_invite_flow(client, seed) -> None:
    union = seed.union()
    res = client.post("/api/admin-invites", json={"union_id": union["id"], "name": "새관리자"}, headers=_h(1))
    assert res.status_code == 201
    token = res.json()["item"]["invite_token"]

    info = client.get(f"/api/admin-invites/token/{token}").json()["item"]
    assert info["union_slug"] == "test-union"
    assert info["status"] == "PENDING"

    user = seed.user(None, "가입자", status="PENDING_PROFILE")
    other = seed.user(None, "다른사람", status="PENDING_PROFILE")
    res = client.post(f"/api/admin-invites/token/{token}/accept", json={"userId": user}, headers=_h(other))
    assert res.status_code == 403

    res = client.post(f"/api/admin-invites/token/{token}/accept", json={"userId": user}, headers=_h(user))
    assert res.status_code == 200
    admins = client.get(f"/api/unions/{union['id']}/admins", headers=_h(1)).json()["items"]
    assert [a["id"] for a in admins] == [user]

    again = client.post(f"/api/admin-invites/token/{token}/accept", json={"userId": user}, headers=_h(user))
    assert again.status_code == 400

    assert client.delete(f"/api/unions/{union['id']}/admins/{user}", headers=_h(1)).status_code == 200
    assert client.get(f"/api/unions/{union['id']}/admins", headers=_h(1)).json()["items"] == []


def test_expired_admin_invite_is_marked(client, seed) -> None:
    union = seed.union()
    with seed.db.db_conn() as con:
        con.execute(
            """
            INSERT INTO admin_invites(union_id, name, invite_token, status, expires_at)
            VALUES(?, '만료', 'expired-token', 'PENDING', '2000-01-01 00:00:00')
            """,
            (union["id"],),
        )
        con.commit()
    info = client.get("/api/admin-invites/token/expired-token").json()["item"]
    assert info["status"] == "EXPIRED"
    assert seed.fetch("SELECT status FROM admin_invites") == [{"status": "EXPIRED"}]


def test_access_token_verify_counts_usage(client, seed) -> None:
    res = client.post("/api/access-tokens", json={"name": "외부 검토", "max_usage": 2, "expires_in_days": 7}, headers=_h(1))
    assert res.status_code == 201
    item = res.json()["item"]
    assert len(item["key"]) == 32
    assert item["is_active"] is True

    for _ in range(2):
        out = client.post("/api/access-tokens/verify", json={"tokenKey": item["key"], "path": "/admin"}).json()
        assert out["valid"] is True
        assert out["tokenName"] == "외부 검토"
    out = client.post("/api/access-tokens/verify", json={"tokenKey": item["key"]}).json()
    assert out == {"valid": False, "reason": "max_usage_reached"}
    assert len(seed.fetch("SELECT * FROM access_token_logs")) == 2

    tokens = client.get("/api/access-tokens", headers=_h(1)).json()["items"]
    assert tokens[0]["usage_count"] == 2
    assert tokens[0]["is_active"] is False


def test_access_token_delete_and_missing_name(client, seed) -> None:
    assert client.post("/api/access-tokens", json={"name": "  "}, headers=_h(1)).status_code == 400
    item = client.post("/api/access-tokens", json={"name": "임시"}, headers=_h(1)).json()["item"]
    assert client.delete(f"/api/access-tokens/{item['id']}", headers=_h(1)).status_code == 200
    out = client.post("/api/access-tokens/verify", json={"tokenKey": item["key"]}).json()
    assert out == {"valid": False, "reason": "deleted"}
    assert client.post("/api/access-tokens/verify", json={"tokenKey": "nope"}).json()["reason"] == "not_found"


def test_register_login_and_merge(client, seed) -> None:
    union = seed.union()
    old = seed.user(union["id"], "최가입", resident_address_jibun="역삼동 9", email="x@example.com")
    res = client.post(
        "/api/auth/register",
        json={
            "provider": "kakao",
            "providerUserId": "k-1",
            "name": "최가입",
            "unionId": union["id"],
            "resident_address_jibun": "역삼동 9",
        },
    )
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["user_status"] == "PENDING_APPROVAL"
    assert body["user"]["email"] == "x@example.com"
    assert body["merge"]["merged_count"] == 1
    assert seed.fetch("SELECT id FROM users WHERE id=?", (old,)) == []

    dup = client.post("/api/auth/register", json={"provider": "kakao", "providerUserId": "k-1", "name": "최가입"})
    assert dup.status_code == 409

    login = client.post("/api/auth/login", json={"provider": "kakao", "providerUserId": "k-1"}).json()
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {login['token']}"}).json()
    assert me["user"]["id"] == body["user"]["id"]

    assert client.post("/api/auth/login", json={"provider": "kakao", "providerUserId": "none"}).status_code == 404
    assert client.post("/api/auth/login", json={"provider": "github", "providerUserId": "k-1"}).status_code == 400


def test_register_rejects_non_integer_union_id(client, seed) -> None:
    seed.union()
    res = client.post(
        "/api/auth/register",
        json={"provider": "kakao", "providerUserId": "k-9", "name": "형식오류", "unionId": "union-1"},
    )
    assert res.status_code == 400
    assert res.json()["fields"] == ["unionId"]
    assert seed.fetch("SELECT id FROM user_auth_links WHERE provider_user_id='k-9'") == []
