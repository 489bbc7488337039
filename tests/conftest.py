from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.adrhub import create_app
from app.adrhub.auth import Principal
from app.adrhub.constants import ProjectRole
from app.adrhub.db import open_session, session_scope
from app.adrhub.models import Base, User
from app.adrhub.modules.projects.models import Project, ProjectMembership


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("NOTIFICATIONS_ENABLED", "GLOBAL_ADMIN_BYPASS"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def session(app):
    s = open_session(app)
    try:
        yield s
    finally:
        s.close()


def _user(s, username: str, display_name: str, role: str = "viewer") -> User:
    u = User(
        username=username,
        display_name=display_name,
        password_hash=generate_password_hash("pw123456"),
        role=role,
        is_active=True,
    )
    s.add(u)
    s.flush()
    return u


@pytest.fixture()
def world(app):
    """
    One project ("PAY") with an admin, an editor and a viewer member, plus a
    global admin and a user with no membership at all.
    """
    with session_scope(app) as s:
        root = _user(s, "root", "Root Admin", role="admin")
        owner = _user(s, "owner", "Olivia Owner")
        editor = _user(s, "editor", "Eddie Editor", role="editor")
        viewer = _user(s, "viewer", "Vera Viewer")
        outsider = _user(s, "outsider", "Oscar Outsider", role="editor")

        p = Project(name="Payments", key="PAY", record_counter=0, created_by_user_id=root.id)
        s.add(p)
        s.flush()
        s.add_all(
            [
                ProjectMembership(project_id=p.id, user_id=owner.id, role=ProjectRole.ADMIN.value),
                ProjectMembership(project_id=p.id, user_id=editor.id, role=ProjectRole.EDITOR.value),
                ProjectMembership(project_id=p.id, user_id=viewer.id, role=ProjectRole.VIEWER.value),
            ]
        )
        s.flush()

        return SimpleNamespace(
            project_id=p.id,
            root=Principal.from_user(root),
            owner=Principal.from_user(owner),
            editor=Principal.from_user(editor),
            viewer=Principal.from_user(viewer),
            outsider=Principal.from_user(outsider),
        )


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    from app.adrhub import auth

    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()
