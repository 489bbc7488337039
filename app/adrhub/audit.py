from __future__ import annotations

import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.adrhub.constants import EntityType
from app.adrhub.models import AuditEntry

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _dumps(value: dict[str, Any] | None) -> str | None:
    if not value:
        return None
    return json.dumps(value, sort_keys=True, default=_json_default)


def record_event(
    s: Session,
    *,
    entity_type: EntityType | str,
    entity_id: int | str,
    action: str,
    performed_by: str,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEntry:
    """
    Append-only audit entry helper. Adds to the session; the caller commits.
    """
    rid = request_id
    if rid is None and has_request_context():
        rid = getattr(g, "request_id", None)
    entry = AuditEntry(
        request_id=rid,
        entity_type=entity_type.value if isinstance(entity_type, EntityType) else str(entity_type),
        entity_id=str(entity_id),
        action=action,
        performed_by=performed_by,
        changes_json=_dumps(changes),
        metadata_json=_dumps(metadata),
    )
    s.add(entry)
    return entry


class AuditRecorder:
    """
    Writes audit entries in their own transaction, after the primary mutation
    has committed. A failed write is logged and dropped; it never reaches the
    caller and never undoes the mutation it describes.
    """

    def __init__(self, s: Session) -> None:
        self.s = s

    def record(
        self,
        entity_type: EntityType | str,
        entity_id: int | str,
        action: str,
        performed_by: str,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry | None:
        try:
            entry = record_event(
                self.s,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                performed_by=performed_by,
                changes=changes,
                metadata=metadata,
            )
            self.s.commit()
            return entry
        except Exception:
            logger.exception(
                "Failed to record audit entry (entity_type=%s entity_id=%s action=%s)",
                entity_type,
                entity_id,
                action,
            )
            try:
                self.s.rollback()
            except Exception:
                logger.exception("Rollback after audit failure also failed")
            return None


def audit_entry_to_dict(e: AuditEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "entityType": e.entity_type,
        "entityId": e.entity_id,
        "action": e.action,
        "performedBy": e.performed_by,
        "changes": json.loads(e.changes_json) if e.changes_json else None,
        "metadata": json.loads(e.metadata_json) if e.metadata_json else None,
        "requestId": e.request_id,
        "performedAt": e.performed_at.isoformat() if e.performed_at else None,
    }


def list_audit_entries(
    s: Session,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    performed_by: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditEntry]:
    """`date_from` is inclusive, `date_to` exclusive."""
    q = s.query(AuditEntry)
    if entity_type:
        q = q.filter(AuditEntry.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEntry.entity_id == str(entity_id))
    if action:
        q = q.filter(AuditEntry.action == action)
    if performed_by:
        q = q.filter(AuditEntry.performed_by == performed_by)
    if date_from:
        q = q.filter(AuditEntry.performed_at >= date_from)
    if date_to:
        q = q.filter(AuditEntry.performed_at < date_to)
    return (
        q.order_by(AuditEntry.performed_at.desc(), AuditEntry.id.desc())
        .limit(max(1, limit))
        .offset(max(0, offset))
        .all()
    )
