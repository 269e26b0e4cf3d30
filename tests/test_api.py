import pytest

from app.odp import create_app
from app.odp.db import engine_options
from app.odp.models import Base


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app.test_client()


H = {"X-User-Id": "alice"}


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_requirement_lifecycle_over_http(client):
    r = client.post("/setup/stakeholder-categories", json={"name": "ATCO"}, headers=H)
    assert r.status_code == 201
    atco = r.json["id"]

    r = client.post(
        "/operational-requirements",
        json={"title": "Flight plans", "type": "ON", "impactsStakeholderCategories": [atco]},
        headers=H,
    )
    assert r.status_code == 201
    created = r.json
    assert created["createdBy"] == "alice"

    r = client.put(
        f"/operational-requirements/{created['itemId']}",
        json={"title": "Flight plans v2", "type": "ON", "expectedVersionId": created["versionId"]},
        headers={"X-User-Id": "bob"},
    )
    assert r.status_code == 200
    assert r.json["version"] == 2
    assert r.json["impactsStakeholderCategories"] == []

    # stale writer
    r = client.patch(
        f"/operational-requirements/{created['itemId']}",
        json={"title": "lost", "expectedVersionId": created["versionId"]},
        headers=H,
    )
    assert r.status_code == 409
    assert r.json["error"] == "VERSION_CONFLICT"

    r = client.get(f"/operational-requirements/{created['itemId']}/versions")
    assert [v["version"] for v in r.json] == [1, 2]
    assert [v["createdBy"] for v in r.json] == ["alice", "bob"]

    r = client.get(f"/operational-requirements/{created['itemId']}/versions/1")
    assert r.json["title"] == "Flight plans"

    r = client.get(f"/operational-requirements/{created['itemId']}/audit")
    assert [(e["action"], e["targetId"]) for e in r.json] == [("ADD", atco), ("REMOVE", atco)]

    r = client.delete(f"/operational-requirements/{created['itemId']}", headers=H)
    assert r.status_code == 204
    r = client.get(f"/operational-requirements/{created['itemId']}")
    assert r.status_code == 404


def test_validation_errors_are_itemised(client):
    r = client.post(
        "/operational-requirements",
        json={"title": "Orphan", "type": "OR", "impactsStakeholderCategories": [999]},
        headers=H,
    )
    assert r.status_code == 400
    assert r.json["error"] == "VALIDATION_ERROR"
    assert any("999" in d for d in r.json["details"])

    r = client.put("/operational-requirements/1", json={"title": "x", "type": "OR"}, headers=H)
    assert r.status_code == 400

    r = client.get("/operational-requirements?baseline=abc")
    assert r.status_code == 400


def test_baselines_and_milestones_over_http(client):
    r = client.post("/waves", json={"year": 2026, "quarter": 2, "date": "2026-04-01"}, headers=H)
    assert r.status_code == 201
    wave = r.json
    assert wave["name"] == "2026.2"

    r = client.post("/operational-changes", json={"title": "Change", "visibility": "NM"}, headers=H)
    change = r.json

    r = client.post(
        f"/operational-changes/{change['itemId']}/milestones",
        json={"title": "Go live", "eventTypes": ["SERVICE_ACTIVATION"], "waveId": wave["id"], "expectedVersionId": change["versionId"]},
        headers=H,
    )
    assert r.status_code == 201
    key = r.json["milestone"]["milestoneKey"]
    assert r.json["change"]["version"] == 2

    r = client.post("/baselines", json={"title": "Edition", "startsFromWaveId": wave["id"]}, headers=H)
    assert r.status_code == 201
    baseline = r.json
    assert baseline["capturedItemCount"] == 1

    r = client.get(f"/operational-changes?baseline={baseline['id']}&fromWave={wave['id']}")
    assert [c["itemId"] for c in r.json] == [change["itemId"]]

    r = client.get(f"/operational-changes/{change['itemId']}/milestones/{key}?baseline={baseline['id']}")
    assert r.json["title"] == "Go live"

    r = client.get(f"/waves/{wave['id']}/milestones")
    assert [m["milestoneKey"] for m in r.json] == [key]

    r = client.put(f"/baselines/{baseline['id']}", json={"title": "Renamed"}, headers=H)
    assert r.status_code == 405
    r = client.delete(f"/baselines/{baseline['id']}", headers=H)
    assert r.status_code == 405

    r = client.get(f"/baselines/{baseline['id']}/items")
    assert [i["itemId"] for i in r.json] == [change["itemId"]]

    r = client.get("/baselines/999")
    assert r.status_code == 404


def test_production_refuses_sqlite(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_reverse_lookup_routes(client):
    need = client.post("/operational-requirements", json={"title": "Need", "type": "ON"}, headers=H).json
    realisation = client.post(
        "/operational-requirements",
        json={"title": "Realisation", "type": "OR", "implementedONs": [need["itemId"]], "dependsOnRequirements": [need["itemId"]]},
        headers=H,
    ).json
    change = client.post(
        "/operational-changes",
        json={
            "title": "Change",
            "visibility": "NM",
            "satisfiesRequirements": [need["itemId"]],
            "supersedsRequirements": [need["itemId"]],
        },
        headers=H,
    ).json

    base = f"/operational-requirements/{need['itemId']}"
    assert [r["itemId"] for r in client.get(f"{base}/implemented-by").json] == [realisation["itemId"]]
    assert [r["itemId"] for r in client.get(f"{base}/dependents").json] == [realisation["itemId"]]
    assert [c["itemId"] for c in client.get(f"{base}/satisfied-by").json] == [change["itemId"]]
    assert [c["itemId"] for c in client.get(f"{base}/superseded-by").json] == [change["itemId"]]
    assert client.get("/operational-requirements/999/satisfied-by").status_code == 404


def test_malformed_milestone_key_is_rejected_with_400(client):
    change = client.post("/operational-changes", json={"title": "Change", "visibility": "NM"}, headers=H).json
    r = client.put(
        f"/operational-changes/{change['itemId']}",
        json={
            "title": "Change",
            "visibility": "NM",
            "milestones": [{"title": "M", "milestoneKey": ["x"]}],
            "expectedVersionId": change["versionId"],
        },
        headers=H,
    )
    assert r.status_code == 400
    assert r.json["details"] == ["milestones[0].milestoneKey must be a non-empty string"]


def test_engine_options_size_the_pool_only_for_postgres():
    assert engine_options("sqlite:///odp.db") == {"future": True, "pool_pre_ping": True}
    pg = engine_options("postgresql+psycopg2://odp@db/odp")
    assert pg["pool_size"] == 5
    assert pg["max_overflow"] == 10
    assert pg["pool_pre_ping"] is True
