from __future__ import annotations

from datetime import date, timedelta


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def _ad(client, union_id=None, placements=("SIDE",), title="동네 부동산") -> dict:
    res = client.post(
        "/api/admin/ads",
        json={"title": title, "partner_name": "역삼공인중개사", "placements": list(placements), "union_id": union_id},
        headers=_h(1),
    )
    assert res.status_code == 201
    return res.json()["item"]


def _contract(client, ad_id: int, start: str, end: str, **extra):
    payload = {"ad_id": ad_id, "start_date": start, "end_date": end, "billing_cycle": "MONTHLY", "amount": 100000}
    payload.update(extra)
    return client.post("/api/admin/ad-contracts", json=payload, headers=_h(1))


def test_ads_require_system_admin(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    assert client.get("/api/admin/ads", headers=_h(admin)).status_code == 403


def test_ad_crud_and_common_filter(client, seed) -> None:
    union = seed.union()
    common = _ad(client, placements=("SIDE", "HOME"))
    own = _ad(client, union_id=union["id"], title="조합 전용")
    assert common["placements"] == ["SIDE", "HOME"]

    items = client.get("/api/admin/ads", params={"unionId": "common"}, headers=_h(1)).json()["items"]
    assert [a["id"] for a in items] == [common["id"]]
    items = client.get("/api/admin/ads", params={"unionId": str(union["id"])}, headers=_h(1)).json()["items"]
    assert [a["id"] for a in items] == [own["id"]]

    res = client.patch(f"/api/admin/ads/{own['id']}", json={"is_active": False, "placements": ["BOARD"]}, headers=_h(1))
    assert res.json()["item"]["is_active"] == 0
    assert res.json()["item"]["placements"] == ["BOARD"]
    assert client.delete(f"/api/admin/ads/{own['id']}", headers=_h(1)).status_code == 200
    assert client.get(f"/api/admin/ads/{own['id']}", headers=_h(1)).status_code == 404


def test_contract_validation_and_overlap(client, seed) -> None:
    ad = _ad(client)
    res = _contract(client, ad["id"], "2025-03-01", "2025-01-01")
    assert res.status_code == 400

    res = client.post("/api/admin/ad-contracts", json={"ad_id": ad["id"]}, headers=_h(1))
    assert res.status_code == 400
    assert "start_date" in res.json()["error"]

    first = _contract(client, ad["id"], "2025-01-01", "2025-06-30", status="ACTIVE")
    assert first.status_code == 201
    overlap = _contract(client, ad["id"], "2025-06-01", "2025-12-31", status="ACTIVE")
    assert overlap.status_code == 409
    assert overlap.json()["conflictContractId"] == first.json()["item"]["id"]

    after = _contract(client, ad["id"], "2025-07-01", "2025-12-31", status="ACTIVE")
    assert after.status_code == 201

    listed = client.get("/api/admin/ad-contracts", params={"adId": ad["id"]}, headers=_h(1)).json()
    assert listed["total"] == 2
    assert listed["hasMore"] is False


def test_generate_invoices_is_idempotent(client, seed) -> None:
    ad = _ad(client)
    monthly = _contract(client, ad["id"], "2025-01-01", "2025-06-30", status="ACTIVE").json()["item"]
    ad2 = _ad(client, title="연간 광고")
    _contract(client, ad2["id"], "2025-01-01", "2025-12-31", status="ACTIVE", billing_cycle="YEARLY", amount=1200000)
    ad3 = _ad(client, title="대기 광고")
    _contract(client, ad3["id"], "2025-01-01", "2025-12-31", status="PENDING")

    res = client.post("/api/admin/ad-invoices/generate", json={"month": "2025-02"}, headers=_h(1))
    assert res.status_code == 200
    assert res.json()["generated_count"] == 2
    again = client.post("/api/admin/ad-invoices/generate", json={"month": "2025-02"}, headers=_h(1))
    assert again.json()["generated_count"] == 0

    invoices = client.get("/api/admin/ad-invoices", params={"month": "2025-02"}, headers=_h(1)).json()["items"]
    amounts = sorted(i["amount"] for i in invoices)
    assert amounts == [100000, 100000]
    inv = next(i for i in invoices if i["contract_id"] == monthly["id"])
    assert inv["period_start"] == "2025-02-01"
    assert inv["period_end"] == "2025-02-28"
    assert inv["due_date"] == "2025-03-31"
    assert inv["status"] == "DUE"

    assert client.post("/api/admin/ad-invoices/generate", json={"month": "2025-13"}, headers=_h(1)).status_code == 422


def test_paid_invoice_blocks_contract_delete(client, seed) -> None:
    ad = _ad(client)
    contract = _contract(client, ad["id"], "2025-01-01", "2025-06-30", status="ACTIVE").json()["item"]
    client.post("/api/admin/ad-invoices/generate", json={"month": "2025-01"}, headers=_h(1))
    detail = client.get(f"/api/admin/ad-contracts/{contract['id']}", headers=_h(1)).json()["item"]
    invoice_id = detail["invoices"][0]["id"]

    res = client.patch(f"/api/admin/ad-invoices/{invoice_id}", json={"status": "PAID"}, headers=_h(1))
    body = res.json()
    assert body["invoice"]["status"] == "PAID"
    assert body["invoice"]["paid_at"]
    assert body["message"] == "입금 처리되었습니다."

    assert client.delete(f"/api/admin/ad-contracts/{contract['id']}", headers=_h(1)).status_code == 400

    client.patch(f"/api/admin/ad-invoices/{invoice_id}", json={"status": "CANCELLED"}, headers=_h(1))
    assert client.delete(f"/api/admin/ad-contracts/{contract['id']}", headers=_h(1)).status_code == 200


def test_dashboard_overdue_and_expiring(client, seed) -> None:
    today = date.today()
    ad = _ad(client)
    start = (today - timedelta(days=90)).replace(day=1)
    end = today + timedelta(days=10)
    contract = _contract(client, ad["id"], start.isoformat(), end.isoformat(), status="ACTIVE").json()["item"]
    month = start.strftime("%Y-%m")
    client.post("/api/admin/ad-invoices/generate", json={"month": month}, headers=_h(1))

    body = client.get("/api/admin/ads-dashboard", params={"month": month}, headers=_h(1)).json()
    assert body["month"] == month
    assert body["monthly"]["overdue_amount"] == 100000
    assert body["monthly"]["overdue_partners_count"] == 1
    assert body["contract_stats"]["active"] == 1
    assert body["contract_stats"]["expiring_soon"] == 1
    assert body["overdue_partners"][0]["contract_id"] == contract["id"]
    assert body["overdue_partners"][0]["overdue_days"] > 0
    assert body["expiring_contracts"][0]["days_until_expiry"] == 10
