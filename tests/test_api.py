import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from scheduler import Debouncer
from services import MonthSyncService
from store import RemoteReadError, SqlAlchemyMonthStore

HEADERS = {"X-User-Id": "ana"}


def make_store() -> SqlAlchemyMonthStore:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return SqlAlchemyMonthStore(
        sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    )


class UnreachableStore(SqlAlchemyMonthStore):
    def select_months(self, user_id):
        raise RemoteReadError("database unreachable")


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def client(monkeypatch, store):
    registry = main.SessionRegistry(
        sync=MonthSyncService(store), debouncer=Debouncer(quiet_period=30)
    )
    monkeypatch.setattr(main, "registry", registry)
    with TestClient(main.app) as test_client:
        yield test_client


def test_requires_open_session(client):
    response = client.get("/api/months", headers=HEADERS)
    assert response.status_code == 401

    response = client.get("/api/months")
    assert response.status_code == 422


def test_budget_flow(client, store):
    opened = client.post("/api/session", headers=HEADERS)
    assert opened.status_code == 200
    body = opened.json()
    month_id = body["current_month_id"]
    assert [m["id"] for m in body["months"]] == [month_id]
    assert body["months"][0]["sync_state"] == "synced"

    response = client.put(
        f"/api/months/{month_id}/salaries",
        json={"salary1_cents": "5.000,00", "salary2_cents": 100_000},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["totals"]["income"] == 600_000
    assert response.json()["sync_state"] == "synced_dirty"

    response = client.post(
        f"/api/months/{month_id}/expenses",
        json={"name": "Aluguel", "value_cents": "1.500,00", "type": "fixed", "category": "Casa"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    rent = response.json()
    assert rent["value_cents"] == 150_000
    assert rent["type"] == "fixed"

    response = client.post(
        f"/api/months/{month_id}/expenses",
        json={"name": "Cinema", "value_cents": 4_000, "type": "variable"},
        headers=HEADERS,
    )
    cinema = response.json()
    assert cinema["category"] == "Outros"

    response = client.put(
        f"/api/months/{month_id}/expenses/{cinema['id']}",
        json={"name": "Cinema", "value_cents": "45,50", "category": "casa"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["value_cents"] == 4_550
    assert response.json()["category"] == "Casa"

    totals = client.get(f"/api/months/{month_id}/totals", headers=HEADERS).json()
    assert totals == {
        "income": 600_000,
        "fixed": 150_000,
        "variable": 4_550,
        "total_expenses": 154_550,
        "balance": 445_450,
    }

    response = client.post(
        "/api/months", json={"year": 2030, "month": 1}, headers=HEADERS
    )
    assert response.status_code == 200
    created = response.json()
    assert created["id"] == "2030-01"
    assert created["label"] == "Janeiro 2030"
    assert [e["name"] for e in created["expenses"]] == ["Aluguel"]
    assert created["expenses"][0]["id"] != rent["id"]
    assert created["salary1_cents"] == 500_000

    response = client.post(f"/api/months/{month_id}/close", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["closed"] is True

    savings = client.get("/api/savings", headers=HEADERS).json()
    assert savings == {"accumulated_savings_cents": 445_450, "display": "R$ 4.454,50"}

    response = client.post(f"/api/months/{month_id}/reset", headers=HEADERS)
    assert response.status_code == 400

    response = client.post("/api/save", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"saved": [month_id, "2030-01"], "failed": []}

    status = client.get("/api/save-status", headers=HEADERS).json()
    assert status["sync_states"] == {month_id: "synced", "2030-01": "synced"}

    response = client.delete("/api/session", headers=HEADERS)
    assert response.json() == {"closed": True}

    stored = {m.id: m for m in MonthSyncService(store).load_all_months("ana")}
    assert set(stored) == {month_id, "2030-01"}
    assert stored[month_id].closed is True
    assert [e.value_cents for e in stored[month_id].expenses] == [150_000, 4_550]


def test_logout_flushes_pending_edits(client, store):
    month_id = client.post("/api/session", headers=HEADERS).json()["current_month_id"]
    client.put(
        f"/api/months/{month_id}/salaries",
        json={"salary1_cents": 123_456},
        headers=HEADERS,
    )
    assert MonthSyncService(store).load_all_months("ana")[0].salary1_cents == 0

    client.delete("/api/session", headers=HEADERS)

    assert MonthSyncService(store).load_all_months("ana")[0].salary1_cents == 123_456
    assert client.get("/api/months", headers=HEADERS).status_code == 401


def test_error_responses(client):
    month_id = client.post("/api/session", headers=HEADERS).json()["current_month_id"]

    assert client.get("/api/months/1999-01", headers=HEADERS).status_code == 404
    response = client.delete(
        f"/api/months/{month_id}/expenses/missing", headers=HEADERS
    )
    assert response.status_code == 404

    response = client.post(
        f"/api/months/{month_id}/expenses",
        json={"name": "", "value_cents": 100, "type": "fixed"},
        headers=HEADERS,
    )
    assert response.status_code == 422

    response = client.post(
        f"/api/months/{month_id}/expenses",
        json={"name": "Luz", "value_cents": "abc", "type": "fixed"},
        headers=HEADERS,
    )
    assert response.status_code == 422

    response = client.post(f"/api/months/{month_id}/close", headers=HEADERS)
    assert response.status_code == 400

    response = client.post(f"/api/months/{month_id}/import-fixed", headers=HEADERS)
    assert response.status_code == 400

    response = client.post(
        "/api/months", json={"year": 2030, "month": 13}, headers=HEADERS
    )
    assert response.status_code == 422


def test_delete_month(client, store):
    client.post("/api/session", headers=HEADERS)
    client.post(
        "/api/months",
        json={"year": 2030, "month": 2, "import_fixed": False},
        headers=HEADERS,
    )
    client.post("/api/save", headers=HEADERS)

    response = client.delete("/api/months/2030-02", headers=HEADERS)
    assert response.json() == {"deleted": True, "current_month_id": ""}
    assert "2030-02" not in {
        m.id for m in MonthSyncService(store).load_all_months("ana")
    }


def test_users_do_not_see_each_other(client):
    client.post("/api/session", headers=HEADERS)
    client.post("/api/months", json={"year": 2030, "month": 3}, headers=HEADERS)

    other = client.post("/api/session", headers={"X-User-Id": "bia"}).json()
    assert "2030-03" not in [m["id"] for m in other["months"]]


def test_unreachable_store_returns_503(monkeypatch):
    registry = main.SessionRegistry(
        sync=MonthSyncService(UnreachableStore(make_store().session_factory)),
        debouncer=Debouncer(quiet_period=30),
    )
    monkeypatch.setattr(main, "registry", registry)
    with TestClient(main.app) as client:
        response = client.post("/api/session", headers=HEADERS)
    assert response.status_code == 503
    assert response.json() == {"detail": "database unreachable"}
