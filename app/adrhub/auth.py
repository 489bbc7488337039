from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from app.adrhub.constants import GlobalRole
from app.adrhub.db import db_session
from app.adrhub.errors import AuthenticationRequired, ValidationFailed
from app.adrhub.models import User

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as the governance services see it."""

    id: int
    display_name: str
    global_role: GlobalRole

    @property
    def is_global_admin(self) -> bool:
        return self.global_role is GlobalRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        try:
            role = GlobalRole(user.role)
        except ValueError:
            role = GlobalRole.VIEWER
        return cls(id=user.id, display_name=user.display_name, global_role=role)


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "displayName": user.display_name,
        "role": user.role,
        "isActive": user.is_active,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def current_principal() -> Principal:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise AuthenticationRequired()
    return Principal.from_user(user)


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if not username or not password:
        raise ValidationFailed("validation failed", field_errors={"username": "Username and password are required"})

    if _check_rate_limit(ip):
        return {"error": "rate_limited", "message": "Too many login attempts. Please wait 5 minutes."}, 429

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.username == username).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        current_app.logger.info("Login failed (username=%s request_id=%s)", username, getattr(g, "request_id", None))
        raise AuthenticationRequired("invalid username or password")

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    current_app.logger.info("Login ok (user_id=%s)", user.id)
    return user_to_dict(user)


@bp.post("/logout")
def logout():
    session.pop("user_id", None)
    return {"message": "logged out"}


@bp.get("/me")
def me():
    current_principal()
    return user_to_dict(g.current_user)
