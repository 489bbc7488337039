from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from app.adrhub.auth import current_principal, user_to_dict
from app.adrhub.db import db_session
from app.adrhub.errors import ValidationFailed
from app.adrhub.modules.projects.service import membership_to_dict, project_service, project_to_dict

bp = Blueprint("projects", __name__)


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationFailed("request body must be a JSON object")
    return payload


@bp.get("/projects")
def list_projects():
    principal = current_principal()
    rows = project_service(db_session()).list_projects(principal)
    return {"items": [project_to_dict(p) for p in rows]}


@bp.post("/projects")
def create_project():
    principal = current_principal()
    p = project_service(db_session()).create_project(_json_body(), principal)
    return project_to_dict(p), 201


@bp.get("/projects/<int:project_id>")
def get_project(project_id: int):
    principal = current_principal()
    return project_to_dict(project_service(db_session()).get_project(project_id, principal))


@bp.patch("/projects/<int:project_id>")
def update_project(project_id: int):
    principal = current_principal()
    p = project_service(db_session()).update_project(project_id, _json_body(), principal)
    return project_to_dict(p)


@bp.delete("/projects/<int:project_id>")
def delete_project(project_id: int):
    principal = current_principal()
    project_service(db_session()).delete_project(project_id, principal)
    return {"message": "Project deleted"}


@bp.get("/projects/<int:project_id>/members")
def list_members(project_id: int):
    principal = current_principal()
    rows = project_service(db_session()).list_members(project_id, principal)
    return {"items": [membership_to_dict(m) for m in rows]}


@bp.get("/projects/<int:project_id>/members/candidates")
def list_member_candidates(project_id: int):
    principal = current_principal()
    rows = project_service(db_session()).list_member_candidates(project_id, principal)
    return {"items": [user_to_dict(u) for u in rows]}


@bp.post("/projects/<int:project_id>/members")
def add_member(project_id: int):
    principal = current_principal()
    payload = _json_body()
    m = project_service(db_session()).add_member(project_id, payload.get("userId"), payload.get("role"), principal)
    return membership_to_dict(m), 201


@bp.patch("/projects/<int:project_id>/members/<int:user_id>")
def update_member(project_id: int, user_id: int):
    principal = current_principal()
    payload = _json_body()
    m = project_service(db_session()).update_member_role(project_id, user_id, payload.get("role"), principal)
    return membership_to_dict(m)


@bp.delete("/projects/<int:project_id>/members/<int:user_id>")
def remove_member(project_id: int, user_id: int):
    principal = current_principal()
    project_service(db_session()).remove_member(project_id, user_id, principal)
    return {"message": "Member removed"}
