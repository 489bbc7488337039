from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from app.adrhub.auth import current_principal
from app.adrhub.db import db_session
from app.adrhub.errors import ValidationFailed
from app.adrhub.modules.decision_records.service import (
    comment_to_dict,
    decision_record_service,
    record_to_dict,
    relation_to_dict,
    search_result_to_dict,
    snapshot_to_dict,
)

bp = Blueprint("decision_records", __name__)


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationFailed("request body must be a JSON object")
    return payload


def _truthy_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


@bp.get("/projects/<int:project_id>/adrs")
def list_records(project_id: int):
    principal = current_principal()
    svc = decision_record_service(db_session())
    rows = svc.list_records(project_id, principal, include_archived=_truthy_arg("include_archived"))
    return {"items": [record_to_dict(r) for r in rows]}


@bp.post("/projects/<int:project_id>/adrs")
def create_record(project_id: int):
    principal = current_principal()
    svc = decision_record_service(db_session())
    rec = svc.create(project_id, _json_body(), principal)
    return record_to_dict(rec), 201


@bp.get("/projects/<int:project_id>/adrs/<int:record_id>")
def get_record(project_id: int, record_id: int):
    principal = current_principal()
    rec = decision_record_service(db_session()).get(record_id, project_id, principal)
    return record_to_dict(rec)


@bp.patch("/projects/<int:project_id>/adrs/<int:record_id>")
def update_record(project_id: int, record_id: int):
    principal = current_principal()
    payload = _json_body()
    change_reason = payload.pop("changeReason", None)
    rec = decision_record_service(db_session()).update_content(
        record_id, project_id, payload, change_reason, principal
    )
    return record_to_dict(rec)


@bp.patch("/projects/<int:project_id>/adrs/<int:record_id>/status")
def change_status(project_id: int, record_id: int):
    principal = current_principal()
    payload = _json_body()
    if not payload.get("status"):
        raise ValidationFailed("validation failed", field_errors={"status": "Status is required."})
    rec = decision_record_service(db_session()).change_status(
        record_id, project_id, payload.get("status"), payload.get("reason"), principal
    )
    return record_to_dict(rec)


@bp.patch("/projects/<int:project_id>/adrs/<int:record_id>/archive")
def archive_record(project_id: int, record_id: int):
    principal = current_principal()
    payload = _json_body()
    rec = decision_record_service(db_session()).archive(record_id, project_id, payload.get("reason"), principal)
    return record_to_dict(rec)


@bp.get("/projects/<int:project_id>/adrs/<int:record_id>/versions")
def list_versions(project_id: int, record_id: int):
    principal = current_principal()
    rows = decision_record_service(db_session()).list_snapshots(record_id, project_id, principal)
    return {"items": [snapshot_to_dict(v) for v in rows]}


@bp.get("/projects/<int:project_id>/adrs/<int:record_id>/versions/<int:snapshot_id>")
def get_version(project_id: int, record_id: int, snapshot_id: int):
    principal = current_principal()
    snap = decision_record_service(db_session()).get_snapshot(record_id, project_id, snapshot_id, principal)
    return snapshot_to_dict(snap)


@bp.get("/projects/<int:project_id>/adrs/<int:record_id>/comments")
def list_comments(project_id: int, record_id: int):
    principal = current_principal()
    rows = decision_record_service(db_session()).list_comments(record_id, project_id, principal)
    return {"items": [comment_to_dict(c) for c in rows]}


@bp.post("/projects/<int:project_id>/adrs/<int:record_id>/comments")
def add_comment(project_id: int, record_id: int):
    principal = current_principal()
    c = decision_record_service(db_session()).add_comment(record_id, project_id, _json_body(), principal)
    return comment_to_dict(c), 201


@bp.get("/projects/<int:project_id>/adrs/<int:record_id>/relations")
def list_relations(project_id: int, record_id: int):
    principal = current_principal()
    rows = decision_record_service(db_session()).list_relations(record_id, project_id, principal)
    return {"items": [relation_to_dict(r) for r in rows]}


@bp.post("/projects/<int:project_id>/adrs/<int:record_id>/relations")
def add_relation(project_id: int, record_id: int):
    principal = current_principal()
    payload = _json_body()
    rel = decision_record_service(db_session()).add_relation(
        record_id, project_id, payload.get("targetAdrId"), payload.get("relationType"), principal
    )
    return relation_to_dict(rel), 201


@bp.get("/search")
def search_records():
    principal = current_principal()
    rows = decision_record_service(db_session()).search(principal, request.args.to_dict())
    return {"items": [search_result_to_dict(r, p) for r, p in rows]}
