"""
Decision record service layer.

The only writer of decision records and version snapshots. Every mutating
operation runs the same sequence:

    authorize -> read current state -> validate -> record + snapshot (one
    transaction) -> audit entry -> notifications (status changes only)

Audit and notification writes happen after the primary commit and are
best-effort; they can fail without touching the record.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.adrhub.audit import AuditRecorder
from app.adrhub.constants import (
    DEFAULT_EDIT_REASON,
    INITIAL_CHANGE_REASON,
    NOTIFY_STATUS_CHANGED,
    SEARCH_DEFAULT_LIMIT,
    SEARCH_MAX_LIMIT,
    SEARCH_SORTS,
    TEAM_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    DecisionStatus,
    EntityType,
    ProjectRole,
    RelationType,
)
from app.adrhub.errors import Conflict, NotFound, ValidationFailed
from app.adrhub.modules.projects.models import Project

from . import versioning
from .models import DecisionComment, DecisionRecord, DecisionRelation, VersionSnapshot
from .store import DecisionRecordStore
from .transitions import parse_status, validate_transition

if TYPE_CHECKING:
    from app.adrhub.auth import Principal
    from app.adrhub.notifications import Notifier
    from app.adrhub.rbac import AccessEvaluator

logger = logging.getLogger(__name__)

REQUIRED_TEXT_FIELDS = ("title", "context", "decision", "consequences")


def _validate_content(payload: dict[str, Any], *, partial: bool) -> tuple[dict[str, Any], dict[str, str]]:
    """
    Normalize content fields. With partial=True only keys present in the
    payload are returned; absent keys mean "keep the current value".
    """
    errors: dict[str, str] = {}
    out: dict[str, Any] = {}

    for field in REQUIRED_TEXT_FIELDS:
        if field not in payload:
            if not partial:
                errors[field] = f"{field.capitalize()} is required."
            continue
        raw = payload.get(field)
        if not isinstance(raw, str) or not raw.strip():
            errors[field] = f"{field.capitalize()} is required."
            continue
        out[field] = raw.strip()

    if "title" in out and len(out["title"]) > TITLE_MAX_LENGTH:
        errors["title"] = f"Title must be at most {TITLE_MAX_LENGTH} characters."

    if "alternatives" in payload:
        raw = payload.get("alternatives")
        if raw is not None and not isinstance(raw, str):
            errors["alternatives"] = "Alternatives must be text."
        else:
            out["alternatives"] = (raw or "").strip() or None

    if "team" in payload:
        raw = payload.get("team")
        if raw is not None and not isinstance(raw, str):
            errors["team"] = "Team must be text."
        else:
            team = (raw or "").strip() or None
            if team and len(team) > TEAM_MAX_LENGTH:
                errors["team"] = f"Team must be at most {TEAM_MAX_LENGTH} characters."
            else:
                out["team"] = team

    if "tags" in payload:
        raw = payload.get("tags")
        if raw is None:
            out["tags"] = []
        elif not isinstance(raw, list) or not all(isinstance(t, str) for t in raw):
            errors["tags"] = "Tags must be a list of strings."
        else:
            seen: list[str] = []
            for t in raw:
                t = t.strip()
                if t and t not in seen:
                    seen.append(t)
            out["tags"] = seen

    return out, errors


def _require_reason(reason: str | None, field: str = "reason") -> str:
    reason = reason.strip() if isinstance(reason, str) else ""
    if not reason:
        raise ValidationFailed("validation failed", field_errors={field: "Reason is required."})
    return reason


def _int_param(params: Mapping[str, Any], name: str, default: int | None, errors: dict[str, str]) -> int | None:
    raw = params.get(name)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors[name] = f"{name} must be an integer."
        return default


def _date_param(params: Mapping[str, Any], name: str, errors: dict[str, str]) -> date | None:
    raw = params.get(name)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        errors[name] = f"{name} must be YYYY-MM-DD"
        return None


class DecisionRecordService:
    def __init__(
        self,
        s: Session,
        access: "AccessEvaluator",
        audit: AuditRecorder,
        notifier: "Notifier",
        store: DecisionRecordStore | None = None,
    ) -> None:
        self.s = s
        self.access = access
        self.audit = audit
        self.notifier = notifier
        self.store = store or DecisionRecordStore(s)

    # ---- helpers ----

    def _get_or_404(self, record_id: int, project_id: int) -> DecisionRecord:
        rec = self.store.get(record_id, project_id)
        if rec is None:
            raise NotFound("Decision record", record_id)
        return rec

    def _get_project_or_404(self, project_id: int) -> Project:
        p = self.s.get(Project, project_id)
        if p is None:
            raise NotFound("Project", project_id)
        return p

    def _commit_or_conflict(self, message: str) -> None:
        try:
            self.s.commit()
        except IntegrityError as e:
            self.s.rollback()
            logger.warning("Integrity error on commit: %s", e.orig)
            raise Conflict(message) from e

    # ---- reads ----

    def get(self, record_id: int, project_id: int, actor: "Principal") -> DecisionRecord:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        return self._get_or_404(record_id, project_id)

    def list_records(
        self, project_id: int, actor: "Principal", *, include_archived: bool = False
    ) -> list[DecisionRecord]:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        self._get_project_or_404(project_id)
        return self.store.list_for_project(project_id, include_archived=include_archived)

    def list_snapshots(self, record_id: int, project_id: int, actor: "Principal") -> list[VersionSnapshot]:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        rec = self._get_or_404(record_id, project_id)
        return self.store.list_snapshots(rec.id)

    def get_snapshot(self, record_id: int, project_id: int, snapshot_id: int, actor: "Principal") -> VersionSnapshot:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        rec = self._get_or_404(record_id, project_id)
        snap = self.store.get_snapshot(rec.id, snapshot_id)
        if snap is None:
            raise NotFound("Version", snapshot_id)
        return snap

    def search(self, actor: "Principal", params: Mapping[str, Any]) -> list[tuple[DecisionRecord, Project]]:
        """
        Keyword search across every project the actor can read.

        params (all optional, strings as they arrive on the query string):
        q, status, team, tag, author, projectId, from, to (YYYY-MM-DD, both
        inclusive), sort (newest|oldest|title|updated), limit, offset,
        include_archived.
        """
        errors: dict[str, str] = {}

        def text(name: str) -> str | None:
            raw = params.get(name)
            return (raw.strip() or None) if isinstance(raw, str) else None

        status = text("status")
        if status is not None:
            try:
                status = parse_status(status).value
            except ValidationFailed as e:
                errors.update(e.field_errors)

        project_id = _int_param(params, "projectId", None, errors)
        limit = _int_param(params, "limit", SEARCH_DEFAULT_LIMIT, errors)
        offset = _int_param(params, "offset", 0, errors)
        if limit is not None and limit < 1:
            errors["limit"] = "limit must be positive."
        if offset is not None and offset < 0:
            errors["offset"] = "offset must not be negative."

        created_from = _date_param(params, "from", errors)
        created_to = _date_param(params, "to", errors)

        sort = text("sort") or "newest"
        if sort not in SEARCH_SORTS:
            errors["sort"] = "sort must be one of: " + ", ".join(SEARCH_SORTS)
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        project_ids = self.access.accessible_project_ids(actor)
        return self.store.search(
            project_ids,
            q=text("q"),
            status=status,
            team=text("team"),
            tag=text("tag"),
            author=text("author"),
            project_id=project_id,
            created_from=datetime.combine(created_from, time.min) if created_from else None,
            created_before=datetime.combine(created_to + timedelta(days=1), time.min) if created_to else None,
            include_archived=(text("include_archived") or "").lower() in ("1", "true", "yes", "on"),
            sort=sort,
            limit=min(limit or SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT),
            offset=offset or 0,
        )

    # ---- mutations ----

    def create(self, project_id: int, fields: dict[str, Any], actor: "Principal") -> DecisionRecord:
        """Create a record at version 1.0 with its initial snapshot."""
        self.access.require(actor, project_id, ProjectRole.EDITOR)
        self._get_project_or_404(project_id)

        content, errors = _validate_content(fields, partial=False)
        status = DecisionStatus.DRAFT
        if fields.get("status") not in (None, ""):
            try:
                status = parse_status(fields.get("status"))
            except ValidationFailed as e:
                errors.update(e.field_errors)
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        now = datetime.utcnow()
        try:
            sequence_number = self.store.next_sequence_number(project_id)
            rec = self.store.create(
                {
                    "project_id": project_id,
                    "sequence_number": sequence_number,
                    "title": content["title"],
                    "status": status.value,
                    "context": content["context"],
                    "decision": content["decision"],
                    "consequences": content["consequences"],
                    "alternatives": content.get("alternatives"),
                    "tags": content.get("tags", []),
                    "team": content.get("team"),
                    "author": actor.display_name,
                    "version": versioning.initial_version(),
                    "archived": False,
                    "archive_reason": None,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            self.store.append_snapshot(rec, change_reason=INITIAL_CHANGE_REASON, changed_by=actor.display_name)
        except IntegrityError as e:
            self.s.rollback()
            logger.warning("Integrity error on create (project_id=%s): %s", project_id, e.orig)
            raise Conflict("sequence number already taken; retry the request") from e
        except Exception:
            self.s.rollback()
            raise
        self._commit_or_conflict("sequence number already taken; retry the request")

        logger.info("Decision record created (project_id=%s id=%s seq=%s)", project_id, rec.id, rec.sequence_number)
        self.audit.record(
            EntityType.ADR,
            rec.id,
            "created",
            actor.display_name,
            metadata={"projectId": project_id, "title": rec.title, "sequenceNumber": rec.sequence_number},
        )
        return rec

    def update_content(
        self,
        record_id: int,
        project_id: int,
        fields: dict[str, Any],
        change_reason: str | None,
        actor: "Principal",
    ) -> DecisionRecord:
        """Partial content edit; bumps MINOR and appends one snapshot."""
        self.access.require(actor, project_id, ProjectRole.EDITOR)
        rec = self._get_or_404(record_id, project_id)

        content, errors = _validate_content(fields, partial=True)
        if change_reason is not None and not isinstance(change_reason, str):
            errors["changeReason"] = "Change reason must be text."
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        changes = {k: {"before": getattr(rec, k), "after": v} for k, v in content.items()}
        expected = rec.version
        values: dict[str, Any] = dict(content)
        values["version"] = versioning.next_version_for_edit(expected)
        values["updated_at"] = datetime.utcnow()

        try:
            updated = self.store.update(rec.id, expected, values)
            if updated is None:
                raise Conflict("record was modified concurrently; reload and retry")
            self.store.append_snapshot(
                updated,
                change_reason=(change_reason or "").strip() or DEFAULT_EDIT_REASON,
                changed_by=actor.display_name,
            )
        except IntegrityError as e:
            self.s.rollback()
            raise Conflict("record was modified concurrently; reload and retry") from e
        except Exception:
            self.s.rollback()
            raise
        self._commit_or_conflict("record was modified concurrently; reload and retry")

        self.audit.record(
            EntityType.ADR,
            updated.id,
            "updated",
            actor.display_name,
            changes=changes,
            metadata={"version": updated.version},
        )
        return updated

    def change_status(
        self,
        record_id: int,
        project_id: int,
        new_status: str | DecisionStatus,
        reason: str | None,
        actor: "Principal",
    ) -> DecisionRecord:
        """Move along the status graph; bumps MAJOR, appends a snapshot, notifies members."""
        self.access.require(actor, project_id, ProjectRole.EDITOR)
        rec = self._get_or_404(record_id, project_id)

        target = parse_status(new_status)
        reason = _require_reason(reason)
        validate_transition(rec.status, target)

        before = rec.status
        expected = rec.version
        try:
            updated = self.store.update(
                rec.id,
                expected,
                {
                    "status": target.value,
                    "version": versioning.next_version_for_status_change(expected),
                    "updated_at": datetime.utcnow(),
                },
            )
            if updated is None:
                raise Conflict("record was modified concurrently; reload and retry")
            self.store.append_snapshot(
                updated,
                change_reason=f"Status changed to {target.value}: {reason}",
                changed_by=actor.display_name,
            )
        except IntegrityError as e:
            self.s.rollback()
            raise Conflict("record was modified concurrently; reload and retry") from e
        except Exception:
            self.s.rollback()
            raise
        self._commit_or_conflict("record was modified concurrently; reload and retry")

        logger.info(
            "Decision record status changed (id=%s %s -> %s version=%s)",
            updated.id,
            before,
            target.value,
            updated.version,
        )
        self.audit.record(
            EntityType.ADR,
            updated.id,
            "status_changed",
            actor.display_name,
            changes={"status": {"before": before, "after": target.value}},
            metadata={"reason": reason},
        )
        self.notifier.notify_members(
            project_id,
            actor.id,
            NOTIFY_STATUS_CHANGED,
            f"ADR {updated.sequence_number} status changed",
            f"{actor.display_name} changed status from {before} to {target.value}",
            f"/projects/{project_id}/adrs/{updated.id}",
        )
        return updated

    def archive(self, record_id: int, project_id: int, reason: str | None, actor: "Principal") -> DecisionRecord:
        """Flag as archived. Not a content or status change: no snapshot, no version bump."""
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        rec = self._get_or_404(record_id, project_id)
        reason = _require_reason(reason)

        try:
            self.store.set_archived(rec, reason)
        except Exception:
            self.s.rollback()
            raise
        self.s.commit()

        self.audit.record(EntityType.ADR, rec.id, "archived", actor.display_name, metadata={"reason": reason})
        return rec

    # ---- comments / relations ----

    def list_comments(self, record_id: int, project_id: int, actor: "Principal") -> list[DecisionComment]:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        rec = self._get_or_404(record_id, project_id)
        return self.store.list_comments(rec.id)

    def add_comment(
        self,
        record_id: int,
        project_id: int,
        payload: dict[str, Any],
        actor: "Principal",
    ) -> DecisionComment:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        rec = self._get_or_404(record_id, project_id)

        errors: dict[str, str] = {}
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            errors["content"] = "Content is required."
        section = payload.get("section")
        if section is not None and (not isinstance(section, str) or len(section) > 50):
            errors["section"] = "Section must be text of at most 50 characters."
        parent_id = payload.get("parentId")
        if parent_id is not None:
            parent = self.store.get_comment(parent_id) if isinstance(parent_id, int) else None
            if parent is None or parent.record_id != rec.id:
                errors["parentId"] = "Parent comment not found on this record."
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        try:
            comment = self.store.add_comment(
                record_id=rec.id,
                parent_id=parent_id,
                section=(section or "").strip() or None,
                content=content.strip(),
                author=actor.display_name,
            )
        except Exception:
            self.s.rollback()
            raise
        self.s.commit()

        self.audit.record(
            EntityType.COMMENT,
            comment.id,
            "created",
            actor.display_name,
            metadata={"recordId": rec.id, "section": comment.section},
        )
        return comment

    def list_relations(self, record_id: int, project_id: int, actor: "Principal") -> list[DecisionRelation]:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        rec = self._get_or_404(record_id, project_id)
        return self.store.list_relations(rec.id)

    def add_relation(
        self,
        record_id: int,
        project_id: int,
        target_id: Any,
        relation_type: Any,
        actor: "Principal",
    ) -> DecisionRelation:
        self.access.require(actor, project_id, ProjectRole.EDITOR)
        rec = self._get_or_404(record_id, project_id)

        errors: dict[str, str] = {}
        if not isinstance(target_id, int) or isinstance(target_id, bool):
            errors["targetAdrId"] = "Target record id is required."
        elif target_id == rec.id:
            errors["targetAdrId"] = "A record cannot relate to itself."
        try:
            rtype = RelationType(relation_type.strip() if isinstance(relation_type, str) else "")
        except ValueError as e:
            errors["relationType"] = "Invalid relation type. Must be one of: " + ", ".join(
                r.value for r in RelationType
            )
            raise ValidationFailed("validation failed", field_errors=errors) from e
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        target = self._get_or_404(target_id, project_id)
        try:
            relation = self.store.add_relation(
                source_record_id=rec.id,
                target_record_id=target.id,
                relation_type=rtype.value,
            )
        except IntegrityError as e:
            self.s.rollback()
            raise Conflict("relation already exists") from e
        except Exception:
            self.s.rollback()
            raise
        self._commit_or_conflict("relation already exists")

        self.audit.record(
            EntityType.RELATION,
            relation.id,
            "created",
            actor.display_name,
            metadata={"sourceId": rec.id, "targetId": target.id, "relationType": rtype.value},
        )
        return relation


def record_to_dict(r: DecisionRecord) -> dict[str, Any]:
    return {
        "id": r.id,
        "projectId": r.project_id,
        "sequenceNumber": r.sequence_number,
        "title": r.title,
        "status": r.status,
        "context": r.context,
        "decision": r.decision,
        "consequences": r.consequences,
        "alternatives": r.alternatives,
        "tags": list(r.tags or []),
        "team": r.team,
        "author": r.author,
        "version": r.version,
        "archived": r.archived,
        "archiveReason": r.archive_reason,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
        "updatedAt": r.updated_at.isoformat() if r.updated_at else None,
    }


def search_result_to_dict(r: DecisionRecord, p: Project) -> dict[str, Any]:
    d = record_to_dict(r)
    d["projectKey"] = p.key
    d["projectName"] = p.name
    return d


def snapshot_to_dict(v: VersionSnapshot) -> dict[str, Any]:
    return {
        "id": v.id,
        "recordId": v.record_id,
        "version": v.version,
        "title": v.title,
        "status": v.status,
        "context": v.context,
        "decision": v.decision,
        "consequences": v.consequences,
        "alternatives": v.alternatives,
        "tags": list(v.tags or []),
        "team": v.team,
        "author": v.author,
        "changeReason": v.change_reason,
        "changedBy": v.changed_by,
        "createdAt": v.created_at.isoformat() if v.created_at else None,
    }


def comment_to_dict(c: DecisionComment) -> dict[str, Any]:
    return {
        "id": c.id,
        "recordId": c.record_id,
        "parentId": c.parent_id,
        "section": c.section,
        "content": c.content,
        "author": c.author,
        "createdAt": c.created_at.isoformat() if c.created_at else None,
    }


def relation_to_dict(r: DecisionRelation) -> dict[str, Any]:
    return {
        "id": r.id,
        "sourceAdrId": r.source_record_id,
        "targetAdrId": r.target_record_id,
        "relationType": r.relation_type,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }


def decision_record_service(s: Session, config: dict | None = None) -> DecisionRecordService:
    from app.adrhub.notifications import notifier_for
    from app.adrhub.rbac import access_evaluator_for

    return DecisionRecordService(
        s,
        access_evaluator_for(s, config),
        AuditRecorder(s),
        notifier_for(s, config),
    )
