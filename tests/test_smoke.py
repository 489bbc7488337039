import pytest
from flask import g

from app.adrhub import create_app


def test_health_ok(app):
    client = app.test_client()
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200


def test_unknown_route_is_json_404(app):
    r = app.test_client().get("/nope")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_production_guardrails(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/db")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()

    monkeypatch.setenv("SECRET_KEY", "strong")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'x.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_config_flags_are_read_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'x.db'}")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "0")
    monkeypatch.setenv("GLOBAL_ADMIN_BYPASS", "false")
    app = create_app()
    assert app.config["NOTIFICATIONS_ENABLED"] is False
    assert app.config["GLOBAL_ADMIN_BYPASS"] is False


def test_request_session_is_reused_then_released(app):
    from app.adrhub.db import db_session, open_session, teardown_db_session

    with app.test_request_context("/api/projects"):
        s = db_session()
        assert db_session() is s
        assert s.get_bind() is app.extensions["sqlalchemy_engine"]
        teardown_db_session(None)
        assert "db_session" not in g
        assert db_session() is not s
        teardown_db_session(RuntimeError("boom"))

    other = open_session(app)
    try:
        assert other.get_bind() is app.extensions["sqlalchemy_engine"]
    finally:
        other.close()
