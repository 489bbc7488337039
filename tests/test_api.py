from datetime import datetime

import pytest

from app.adrhub.db import session_scope
from app.adrhub.models import AuditEntry, Notification


@pytest.fixture()
def client(app, world):
    return app.test_client()


def _login(client, username, password="pw123456"):
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.json
    return r


def _adr_payload(**over):
    p = {
        "title": "Use Postgres",
        "context": "We need a relational store.",
        "decision": "Adopt Postgres.",
        "consequences": "Ops team runs Postgres.",
        "tags": ["db"],
    }
    p.update(over)
    return p


def test_requires_authentication(client, world):
    r = client.get(f"/api/projects/{world.project_id}/adrs")
    assert r.status_code == 401
    assert r.json["error"] == "authentication_required"


def test_login_me_logout(client):
    r = client.post("/auth/login", json={"username": "editor", "password": "wrong"})
    assert r.status_code == 401

    r = _login(client, "EDITOR")
    assert r.json["displayName"] == "Eddie Editor"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["username"] == "editor"

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_login_missing_fields(client):
    r = client.post("/auth/login", json={"username": ""})
    assert r.status_code == 400
    assert "username" in r.json["errors"]


def test_login_rate_limit(client):
    for _ in range(5):
        client.post("/auth/login", json={"username": "editor", "password": "wrong"})
    r = client.post("/auth/login", json={"username": "editor", "password": "pw123456"})
    assert r.status_code == 429


def test_record_lifecycle_over_http(app, client, world):
    _login(client, "editor")
    base = f"/api/projects/{world.project_id}/adrs"

    r = client.post(base, json=_adr_payload())
    assert r.status_code == 201
    rec = r.json
    assert rec["status"] == "draft"
    assert rec["version"] == "1.0"
    assert rec["sequenceNumber"] == 1

    r = client.patch(f"{base}/{rec['id']}/status", json={"status": "accepted", "reason": "skip"})
    assert r.status_code == 400
    assert r.json["error"] == "invalid_transition"
    assert r.json["from"] == "draft"
    assert r.json["to"] == "accepted"

    r = client.patch(f"{base}/{rec['id']}/status", json={"status": "proposed"})
    assert r.status_code == 400
    assert "reason" in r.json["errors"]

    r = client.patch(f"{base}/{rec['id']}/status", json={"status": "proposed", "reason": "ready"})
    assert r.status_code == 200
    assert r.json["version"] == "2.0"

    r = client.patch(f"{base}/{rec['id']}", json={"title": "Use Postgres 15", "changeReason": "version pin"})
    assert r.status_code == 200
    assert r.json["version"] == "2.1"
    assert r.json["tags"] == ["db"]

    r = client.get(f"{base}/{rec['id']}/versions")
    versions = r.json["items"]
    assert [v["version"] for v in versions] == ["1.0", "2.0", "2.1"]
    assert versions[-1]["changeReason"] == "version pin"

    r = client.get(f"{base}/{rec['id']}/versions/{versions[0]['id']}")
    assert r.status_code == 200
    assert r.json["title"] == "Use Postgres"

    r = client.patch(f"{base}/{rec['id']}/archive", json={"reason": "superseded by ADR-7"})
    assert r.status_code == 403
    assert r.json == {"error": "authorization_denied", "message": "insufficient permissions"}

    with session_scope(app) as s:
        assert s.query(Notification).filter(Notification.user_id == world.owner.id).count() == 1
        actions = [a.action for a in s.query(AuditEntry).filter(AuditEntry.entity_type == "adr").order_by(AuditEntry.id)]
        assert actions == ["created", "status_changed", "updated"]


def test_archive_by_project_admin(client, world):
    _login(client, "editor")
    base = f"/api/projects/{world.project_id}/adrs"
    rec = client.post(base, json=_adr_payload()).json
    client.post("/auth/logout")

    _login(client, "owner")
    r = client.patch(f"{base}/{rec['id']}/archive", json={"reason": "obsolete"})
    assert r.status_code == 200
    assert r.json["archived"] is True
    assert r.json["version"] == "1.0"

    assert client.get(base).json["items"] == []
    assert len(client.get(f"{base}?include_archived=1").json["items"]) == 1


def test_validation_errors_are_field_level(client, world):
    _login(client, "editor")
    r = client.post(f"/api/projects/{world.project_id}/adrs", json={"title": "Only a title"})
    assert r.status_code == 400
    assert r.json["error"] == "validation_failed"
    assert set(r.json["errors"]) == {"context", "decision", "consequences"}

    r = client.post(f"/api/projects/{world.project_id}/adrs", data="not json", content_type="text/plain")
    assert r.status_code == 400


def test_outsider_and_missing_records(client, world):
    _login(client, "outsider")
    assert client.get(f"/api/projects/{world.project_id}/adrs").status_code == 403
    client.post("/auth/logout")

    _login(client, "viewer")
    r = client.get(f"/api/projects/{world.project_id}/adrs/9999")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_comments_and_relations_over_http(client, world):
    _login(client, "editor")
    base = f"/api/projects/{world.project_id}/adrs"
    a = client.post(base, json=_adr_payload()).json
    b = client.post(base, json=_adr_payload(title="Use Postgres 16")).json

    r = client.post(f"{base}/{a['id']}/comments", json={"content": "LGTM", "section": "decision"})
    assert r.status_code == 201
    assert client.get(f"{base}/{a['id']}/comments").json["items"][0]["content"] == "LGTM"

    r = client.post(f"{base}/{b['id']}/relations", json={"targetAdrId": a["id"], "relationType": "supersedes"})
    assert r.status_code == 201
    r = client.post(f"{base}/{b['id']}/relations", json={"targetAdrId": a["id"], "relationType": "supersedes"})
    assert r.status_code == 409
    assert len(client.get(f"{base}/{a['id']}/relations").json["items"]) == 1


def test_projects_and_members_over_http(client, world):
    _login(client, "root")
    r = client.post("/api/projects", json={"name": "Identity", "key": "IDP"})
    assert r.status_code == 201
    pid = r.json["id"]

    r = client.post("/api/projects", json={"name": "Dup", "key": "IDP"})
    assert r.status_code == 409

    r = client.post(f"/api/projects/{pid}/members", json={"userId": world.viewer.id, "role": "viewer"})
    assert r.status_code == 201
    assert r.json["displayName"] == "Vera Viewer"

    r = client.get(f"/api/projects/{pid}/members")
    assert [m["userId"] for m in r.json["items"]] == [world.root.id, world.viewer.id]

    r = client.get(f"/api/projects/{pid}/members/candidates")
    assert r.status_code == 200
    ids = {u["id"] for u in r.json["items"]}
    assert world.viewer.id not in ids and world.root.id not in ids
    assert world.owner.id in ids
    assert all("passwordHash" not in u for u in r.json["items"])

    r = client.patch(f"/api/projects/{pid}/members/{world.viewer.id}", json={"role": "editor"})
    assert r.json["role"] == "editor"
    assert client.delete(f"/api/projects/{pid}/members/{world.viewer.id}").status_code == 200
    assert client.delete(f"/api/projects/{pid}").status_code == 200
    assert client.get(f"/api/projects/{pid}").status_code == 404


def test_notifications_over_http(client, world):
    _login(client, "editor")
    base = f"/api/projects/{world.project_id}/adrs"
    rec = client.post(base, json=_adr_payload()).json
    client.patch(f"{base}/{rec['id']}/status", json={"status": "proposed", "reason": "ready"})
    client.post("/auth/logout")

    _login(client, "viewer")
    assert client.get("/api/notifications/unread-count").json["count"] == 1
    items = client.get("/api/notifications/").json["items"]
    assert items[0]["title"] == "ADR 1 status changed"

    r = client.patch(f"/api/notifications/{items[0]['id']}/read")
    assert r.json["isRead"] is True
    assert client.patch("/api/notifications/read-all").json["updated"] == 0


def test_audit_log_and_users_are_admin_only(client, world):
    _login(client, "owner")
    assert client.get("/api/audit-logs").status_code == 403
    assert client.get("/api/users").status_code == 403
    client.post("/auth/logout")

    _login(client, "root")
    r = client.post("/api/users", json={"username": "newbie", "password": "secret1", "displayName": "New Bie"})
    assert r.status_code == 201
    new_id = r.json["id"]
    assert r.json["role"] == "viewer"

    r = client.post("/api/users", json={"username": "newbie", "password": "secret1", "displayName": "Again"})
    assert r.status_code == 409
    r = client.post("/api/users", json={"username": "ab", "password": "123", "displayName": "x"})
    assert set(r.json["errors"]) == {"username", "password"}

    r = client.patch(f"/api/users/{world.root.id}/role", json={"role": "viewer"})
    assert r.status_code == 400
    r = client.patch(f"/api/users/{new_id}/role", json={"role": "editor"})
    assert r.json["role"] == "editor"

    assert client.delete(f"/api/users/{world.root.id}").status_code == 400
    assert client.delete(f"/api/users/{new_id}").status_code == 200

    r = client.get("/api/audit-logs?entity_type=user")
    assert [e["action"] for e in r.json["items"]] == ["deleted", "role_updated", "created"]

    assert client.get("/api/audit-logs?from=yesterday").status_code == 400


def test_audit_log_end_date_covers_that_day_only(app, client, world):
    with session_scope(app) as s:
        for stamp, action in [
            (datetime(2024, 2, 29, 0, 0, 0), "first"),
            (datetime(2024, 2, 29, 23, 59, 59), "last"),
            (datetime(2024, 3, 1, 0, 0, 0), "next_day"),
        ]:
            s.add(
                AuditEntry(
                    performed_at=stamp, entity_type="adr", entity_id="1", action=action, performed_by="Root Admin"
                )
            )

    _login(client, "root")
    r = client.get("/api/audit-logs?from=2024-02-29&to=2024-02-29")
    assert r.status_code == 200
    assert [e["action"] for e in r.json["items"]] == ["last", "first"]


def test_duplicate_username_race_is_a_conflict(client, world, monkeypatch):
    _login(client, "root")

    # the pre-check misses; the unique index still fires at commit
    monkeypatch.setattr("app.adrhub.admin._username_taken", lambda s, username: False)
    r = client.post("/api/users", json={"username": "editor", "password": "secret1", "displayName": "Twin"})
    assert r.status_code == 409
    assert r.json["message"] == "username already exists"


def test_search_over_http(client, world):
    _login(client, "editor")
    base = f"/api/projects/{world.project_id}/adrs"
    client.post(base, json=_adr_payload())
    client.post(base, json=_adr_payload(title="Adopt Kafka", context="Event streaming.", tags=["messaging"]))

    r = client.get("/api/search?q=postgres&tag=db")
    assert r.status_code == 200
    items = r.json["items"]
    assert [i["title"] for i in items] == ["Use Postgres"]
    assert items[0]["projectKey"] == "PAY"
    assert items[0]["projectName"] == "Payments"

    r = client.get("/api/search?sort=sideways")
    assert r.status_code == 400
    assert "sort" in r.json["errors"]
