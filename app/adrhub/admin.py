from __future__ import annotations

from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, request
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from app.adrhub.audit import AuditRecorder, audit_entry_to_dict, list_audit_entries
from app.adrhub.auth import current_principal, user_to_dict
from app.adrhub.constants import EntityType, GlobalRole
from app.adrhub.db import db_session
from app.adrhub.errors import Conflict, NotFound, ValidationFailed
from app.adrhub.models import Notification, User
from app.adrhub.modules.projects.models import Project, ProjectMembership
from app.adrhub.rbac import require_admin

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _parse_global_role(value, field: str = "role") -> GlobalRole:
    try:
        return GlobalRole((value or "").strip() if isinstance(value, str) else "")
    except ValueError:
        raise ValidationFailed(
            "validation failed",
            field_errors={field: "Invalid role. Must be one of: " + ", ".join(r.value for r in GlobalRole)},
        ) from None


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _username_taken(s, username: str) -> bool:
    return s.query(User.id).filter(User.username == username).first() is not None


@bp.get("/audit-logs")
@require_admin
def audit_list():
    """
    Audit trail, newest first. Filters:
    - entity_type, entity_id, action, performed_by (exact)
    - date range (YYYY-MM-DD, inclusive)
    """
    errors: dict[str, str] = {}
    raw_from = (request.args.get("from") or "").strip()
    raw_to = (request.args.get("to") or "").strip()
    date_from = _parse_date(raw_from)
    date_to = _parse_date(raw_to)
    if raw_from and not date_from:
        errors["from"] = "from must be YYYY-MM-DD"
    if raw_to and not date_to:
        errors["to"] = "to must be YYYY-MM-DD"
    if errors:
        raise ValidationFailed("validation failed", field_errors=errors)

    limit = min(_int_arg("limit", current_app.config.get("AUDIT_PAGE_LIMIT", 50)), 500)
    rows = list_audit_entries(
        db_session(),
        entity_type=(request.args.get("entity_type") or "").strip() or None,
        entity_id=(request.args.get("entity_id") or "").strip() or None,
        action=(request.args.get("action") or "").strip() or None,
        performed_by=(request.args.get("performed_by") or "").strip() or None,
        date_from=datetime.combine(date_from, time.min) if date_from else None,
        # inclusive end-date (treat as whole day)
        date_to=datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None,
        limit=limit,
        offset=_int_arg("offset", 0),
    )
    return {"items": [audit_entry_to_dict(e) for e in rows]}


@bp.get("/users")
@require_admin
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.username.asc()).all()
    return {"items": [user_to_dict(u) for u in users]}


@bp.post("/users")
@require_admin
def users_create():
    principal = current_principal()
    s = db_session()
    payload = request.get_json(silent=True) or {}

    username = (payload.get("username") or "").strip().lower() if isinstance(payload.get("username"), str) else ""
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    display_name = (payload.get("displayName") or "").strip() if isinstance(payload.get("displayName"), str) else ""

    errors: dict[str, str] = {}
    if len(username) < 3:
        errors["username"] = "Username must be at least 3 characters."
    if len(password) < 6:
        errors["password"] = "Password must be at least 6 characters."
    if not display_name:
        errors["displayName"] = "Display name is required."
    role = GlobalRole.VIEWER
    if payload.get("role") not in (None, ""):
        try:
            role = _parse_global_role(payload.get("role"))
        except ValidationFailed as e:
            errors.update(e.field_errors)
    if errors:
        raise ValidationFailed("validation failed", field_errors=errors)

    if _username_taken(s, username):
        raise Conflict("username already exists")

    user = User(
        username=username,
        display_name=display_name,
        password_hash=generate_password_hash(password),
        role=role.value,
        is_active=True,
    )
    try:
        s.add(user)
        s.commit()
    except IntegrityError as e:
        s.rollback()
        raise Conflict("username already exists") from e

    current_app.logger.info("User created (user_id=%s by=%s)", user.id, principal.id)
    AuditRecorder(s).record(
        EntityType.USER, user.id, "created", principal.display_name, metadata={"username": username, "role": role.value}
    )
    return user_to_dict(user), 201


@bp.patch("/users/<int:user_id>/role")
@require_admin
def users_update_role(user_id: int):
    principal = current_principal()
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        raise NotFound("User", user_id)
    if user.id == principal.id:
        raise ValidationFailed("validation failed", field_errors={"role": "You cannot change your own role."})

    payload = request.get_json(silent=True) or {}
    role = _parse_global_role(payload.get("role"))
    before = user.role
    user.role = role.value
    s.commit()

    AuditRecorder(s).record(
        EntityType.USER,
        user.id,
        "role_updated",
        principal.display_name,
        changes={"role": {"before": before, "after": role.value}},
    )
    return user_to_dict(user)


@bp.delete("/users/<int:user_id>")
@require_admin
def users_delete(user_id: int):
    principal = current_principal()
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        raise NotFound("User", user_id)
    if user.id == principal.id:
        raise ValidationFailed("validation failed", field_errors={"userId": "You cannot delete your own account."})

    username = user.username
    s.execute(delete(ProjectMembership).where(ProjectMembership.user_id == user_id))
    s.execute(delete(Notification).where(Notification.user_id == user_id))
    s.execute(update(Project).where(Project.created_by_user_id == user_id).values(created_by_user_id=None))
    s.delete(user)
    s.commit()

    AuditRecorder(s).record(EntityType.USER, user_id, "deleted", principal.display_name, metadata={"username": username})
    return {"message": "User deleted"}
