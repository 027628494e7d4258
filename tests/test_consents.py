from __future__ import annotations

from io import BytesIO

from openpyxl import Workbook


def _h(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def test_bulk_update_sync_counts_foreign_members_as_failed(client, seed) -> None:
    union = seed.union()
    other = seed.union("other-union")
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    stage_id = seed.stage()
    m1 = seed.user(union["id"], "조합원1")
    m2 = seed.user(union["id"], "조합원2")
    outsider = seed.user(other["id"], "외부인")

    res = client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": stage_id, "memberIds": [m1, m2, outsider], "status": "AGREED"},
        headers=_h(admin),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["async"] is False
    assert body["successCount"] == 2
    assert body["failCount"] == 1
    rows = seed.fetch("SELECT user_id, status, consent_date FROM user_consents ORDER BY user_id")
    assert [r["user_id"] for r in rows] == [m1, m2]
    assert all(r["status"] == "AGREED" and r["consent_date"] for r in rows)


def test_bulk_update_rejects_unknown_status(client, seed) -> None:
    union = seed.union()
    admin = seed.user(union["id"], "관리자", role="ADMIN")
    res = client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": 1, "memberIds": [1], "status": "MAYBE"},
        headers=_h(admin),
    )
    assert res.status_code == 400
    body = res.json()
    assert body["ok"] is False
    assert body["code"] == "BAD_REQUEST"


def test_bulk_update_async_job_completes(client, seed) -> None:
    union = seed.union()
    stage_id = seed.stage()
    member_ids = [seed.user(union["id"], f"조합원{i}") for i in range(55)]

    res = client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": stage_id, "memberIds": member_ids, "status": "DISAGREED"},
        headers=_h(1),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["async"] is True
    assert body["totalCount"] == 55

    job = client.get(f"/api/consent/job/{body['jobId']}", headers=_h(1)).json()["job"]
    assert job["status"] == "COMPLETED"
    assert job["progress"] == 100
    assert job["processed_count"] == 55
    assert job["result"] == {"successCount": 55, "failCount": 0}
    assert job["preview_data"]["status"] == "DISAGREED"


def test_consent_status_summary(client, seed) -> None:
    union = seed.union()
    stage_id = seed.stage(required_rate=50)
    a = seed.user(union["id"], "가")
    seed.user(union["id"], "나")
    seed.user(union["id"], "다", status="PENDING_APPROVAL")
    client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": stage_id, "memberIds": [a], "status": "AGREED"},
        headers=_h(1),
    )

    res = client.get("/api/consent/status", params={"unionId": union["id"], "stageId": stage_id}, headers=_h(1))
    assert res.status_code == 200
    summary = res.json()["summary"]
    assert summary["total"] == 2
    assert summary["agreed"] == 1
    assert summary["pending"] == 1
    assert summary["agreed_rate"] == 50.0
    assert summary["achieved"] is True


def test_bulk_upload_excel_matches_by_name_and_unit(client, seed) -> None:
    union = seed.union()
    stage_id = seed.stage()
    hong = seed.user(union["id"], "홍길동")
    seed.unit(hong, dong="101", ho="1001")

    wb = Workbook()
    ws = wb.active
    ws.append(["이름", "동", "호", "동의여부"])
    ws.append(["홍길동", "101동", "1001호", "agreed"])
    ws.append(["없는사람", "", "", "동의"])
    bio = BytesIO()
    wb.save(bio)

    res = client.post(
        "/api/consent/bulk-upload/excel",
        data={"unionId": str(union["id"]), "stageId": str(stage_id)},
        files={"file": ("consents.xlsx", bio.getvalue(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        headers=_h(1),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["successCount"] == 1
    assert body["failCount"] == 1
    assert body["errors"][0]["row"] == 3
    assert seed.fetch("SELECT status FROM user_consents WHERE user_id=?", (hong,)) == [{"status": "AGREED"}]


def test_bulk_upload_only_agreed_text_counts_as_agreed(client, seed) -> None:
    union = seed.union()
    stage_id = seed.stage()
    yes = seed.user(union["id"], "김예스")
    korean = seed.user(union["id"], "이동의")
    seed.unit(yes, dong="101", ho="1001")
    seed.unit(korean, dong="101", ho="1002")

    wb = Workbook()
    ws = wb.active
    ws.append(["이름", "동", "호", "동의여부"])
    ws.append(["김예스", "101", "1001", "Y"])
    ws.append(["이동의", "101", "1002", "동의"])
    bio = BytesIO()
    wb.save(bio)

    res = client.post(
        "/api/consent/bulk-upload/excel",
        data={"unionId": str(union["id"]), "stageId": str(stage_id)},
        files={"file": ("consents.xlsx", bio.getvalue(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        headers=_h(1),
    )
    assert res.status_code == 200
    assert res.json()["successCount"] == 2
    rows = seed.fetch("SELECT user_id, status FROM user_consents ORDER BY user_id")
    assert rows == [{"user_id": yes, "status": "DISAGREED"}, {"user_id": korean, "status": "DISAGREED"}]


def test_bulk_upload_excel_rejects_non_xlsx(client, seed) -> None:
    union = seed.union()
    res = client.post(
        "/api/consent/bulk-upload/excel",
        data={"unionId": str(union["id"]), "stageId": "1"},
        files={"file": ("consents.csv", b"a,b", "text/csv")},
        headers=_h(1),
    )
    assert res.status_code == 400


def test_bulk_update_rejects_non_integer_member_ids(client, seed) -> None:
    union = seed.union()
    stage_id = seed.stage()
    res = client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": stage_id, "memberIds": ["abc"], "status": "AGREED"},
        headers=_h(1),
    )
    assert res.status_code == 400
    assert res.json()["fields"] == ["memberIds.0"]
    assert seed.fetch("SELECT id FROM user_consents") == []


def test_admin_cannot_touch_other_union(client, seed) -> None:
    union = seed.union()
    other = seed.union("other-union")
    admin = seed.user(other["id"], "남의관리자", role="ADMIN")
    res = client.post(
        "/api/consent/bulk-update",
        json={"unionId": union["id"], "stageId": 1, "memberIds": [1], "status": "AGREED"},
        headers=_h(admin),
    )
    assert res.status_code == 403


def test_stage_crud_and_duplicate_code(client, seed) -> None:
    payload = {"business_type": "RECONSTRUCTION", "stage_code": "SALE", "stage_name": "매도 동의", "required_rate": 75}
    res = client.post("/api/consent/stages", json=payload, headers=_h(1))
    assert res.status_code == 201
    stage = res.json()["item"]

    dup = client.post("/api/consent/stages", json=payload, headers=_h(1))
    assert dup.status_code == 409

    res = client.patch(f"/api/consent/stages/{stage['id']}", json={**payload, "required_rate": 80}, headers=_h(1))
    assert res.json()["item"]["required_rate"] == 80

    items = client.get("/api/consent/stages", params={"businessType": "RECONSTRUCTION"}, headers=_h(1)).json()["items"]
    assert [s["stage_code"] for s in items] == ["SALE"]

    assert client.delete(f"/api/consent/stages/{stage['id']}", headers=_h(1)).status_code == 200
    assert client.delete(f"/api/consent/stages/{stage['id']}", headers=_h(1)).status_code == 404
