from __future__ import annotations

import importlib
import sys

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def johapon_main(tmp_path, monkeypatch):
    monkeypatch.setenv("JOHAPON_DB_PATH", str(tmp_path / "johapon_test.db"))
    monkeypatch.setenv("JOHAPON_SECRET_KEY", "S" * 32)
    monkeypatch.setenv("JOHAPON_TRUST_USER_HEADER", "1")
    monkeypatch.setenv("FEATURE_ADS", "1")
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.delenv("ALIGO_DEFAULT_SENDER_KEY", raising=False)

    for name in list(sys.modules):
        if name == "johapon" or name.startswith("johapon."):
            sys.modules.pop(name, None)

    db = importlib.import_module("johapon.db")
    main = importlib.import_module("johapon.main")
    db.init_db()
    return main, db


@pytest.fixture()
def client(johapon_main) -> TestClient:
    main, _ = johapon_main
    return TestClient(main.app)


class Seed:
    """테스트 데이터 생성 도우미"""

    def __init__(self, db):
        self.db = db
        self.unions = importlib.import_module("johapon.unions")

    def union(self, slug: str = "test-union", **fields) -> dict:
        return self.unions.create_union({"name": f"{slug} 조합", "slug": slug, "business_type": "REDEVELOPMENT", **fields})

    def user(self, union_id, name: str, role: str = "USER", status: str = "APPROVED", **fields) -> int:
        values = {"union_id": union_id, "name": name, "role": role, "user_status": status, **fields}
        cols = ", ".join(values)
        ph = ",".join(["?"] * len(values))
        with self.db.db_conn() as con:
            cur = con.execute(f"INSERT INTO users({cols}) VALUES({ph})", tuple(values.values()))
            con.commit()
            return int(cur.lastrowid)

    def unit(self, user_id: int, **fields) -> int:
        values = {"user_id": user_id, **fields}
        cols = ", ".join(values)
        ph = ",".join(["?"] * len(values))
        with self.db.db_conn() as con:
            cur = con.execute(f"INSERT INTO user_property_units({cols}) VALUES({ph})", tuple(values.values()))
            con.commit()
            return int(cur.lastrowid)

    def stage(self, code: str = "ASSOCIATION", required_rate: float = 50) -> int:
        with self.db.db_conn() as con:
            cur = con.execute(
                "INSERT INTO consent_stages(business_type, stage_code, stage_name, required_rate) VALUES(?,?,?,?)",
                ("REDEVELOPMENT", code, f"{code} 동의", required_rate),
            )
            con.commit()
            return int(cur.lastrowid)

    def fetch(self, sql: str, params: tuple = ()) -> list[dict]:
        with self.db.db_conn() as con:
            return [dict(r) for r in con.execute(sql, params).fetchall()]


@pytest.fixture()
def seed(johapon_main) -> Seed:
    _, db = johapon_main
    return Seed(db)
