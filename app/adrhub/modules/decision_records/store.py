from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.orm import Session

from app.adrhub.errors import NotFound
from app.adrhub.modules.projects.models import Project

from .models import DecisionComment, DecisionRecord, DecisionRelation, VersionSnapshot

# Fields copied verbatim into every snapshot.
SNAPSHOT_FIELDS = (
    "version",
    "title",
    "status",
    "context",
    "decision",
    "consequences",
    "alternatives",
    "tags",
    "team",
    "author",
)


class DecisionRecordStore:
    """
    Persistence for decision records and their snapshots. Nothing here
    commits; the service owns the transaction boundary.
    """

    def __init__(self, s: Session) -> None:
        self.s = s

    def get(self, record_id: int, project_id: int | None = None) -> DecisionRecord | None:
        rec = self.s.get(DecisionRecord, record_id)
        if rec is None:
            return None
        if project_id is not None and rec.project_id != project_id:
            return None
        return rec

    def list_for_project(self, project_id: int, *, include_archived: bool = False) -> list[DecisionRecord]:
        q = select(DecisionRecord).where(DecisionRecord.project_id == project_id)
        if not include_archived:
            q = q.where(DecisionRecord.archived.is_(False))
        q = q.order_by(DecisionRecord.created_at.desc(), DecisionRecord.id.desc())
        return list(self.s.execute(q).scalars())

    def count_by_project(self, project_id: int) -> int:
        return int(
            self.s.execute(
                select(func.count(DecisionRecord.id)).where(DecisionRecord.project_id == project_id)
            ).scalar_one()
        )

    def next_sequence_number(self, project_id: int) -> int:
        """
        Increment-and-read of the project's counter in the caller's transaction.
        On Postgres the UPDATE holds the row lock until commit, so concurrent
        creates in one project serialize here.
        """
        result = self.s.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(record_counter=Project.record_counter + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Project", project_id)
        return int(
            self.s.execute(select(Project.record_counter).where(Project.id == project_id)).scalar_one()
        )

    def create(self, fields: dict[str, Any]) -> DecisionRecord:
        rec = DecisionRecord(**fields)
        self.s.add(rec)
        self.s.flush()
        return rec

    def update(self, record_id: int, expected_version: str, values: dict[str, Any]) -> DecisionRecord | None:
        """
        Compare-and-swap on `version`. Returns None when another writer moved
        the record past `expected_version` first.
        """
        result = self.s.execute(
            update(DecisionRecord)
            .where(DecisionRecord.id == record_id, DecisionRecord.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        rec = self.s.get(DecisionRecord, record_id)
        if rec is not None:
            self.s.refresh(rec)
        return rec

    def set_archived(self, record: DecisionRecord, reason: str) -> DecisionRecord:
        record.archived = True
        record.archive_reason = reason
        record.updated_at = datetime.utcnow()
        self.s.flush()
        return record

    def search(
        self,
        project_ids: list[int] | None,
        *,
        q: str | None = None,
        status: str | None = None,
        team: str | None = None,
        tag: str | None = None,
        author: str | None = None,
        project_id: int | None = None,
        created_from: datetime | None = None,
        created_before: datetime | None = None,
        include_archived: bool = False,
        sort: str = "newest",
        limit: int = 20,
        offset: int = 0,
    ) -> list[tuple[DecisionRecord, Project]]:
        """
        Keyword and facet search joined to the owning project.
        `project_ids=None` searches every project; an empty list matches nothing.
        """
        if project_ids is not None and not project_ids:
            return []
        stmt = select(DecisionRecord, Project).join(Project, Project.id == DecisionRecord.project_id)
        if project_ids is not None:
            stmt = stmt.where(DecisionRecord.project_id.in_(project_ids))
        if project_id is not None:
            stmt = stmt.where(DecisionRecord.project_id == project_id)
        if not include_archived:
            stmt = stmt.where(DecisionRecord.archived.is_(False))
        if status:
            stmt = stmt.where(DecisionRecord.status == status)
        if team:
            stmt = stmt.where(DecisionRecord.team == team)
        if author:
            stmt = stmt.where(DecisionRecord.author == author)
        if created_from is not None:
            stmt = stmt.where(DecisionRecord.created_at >= created_from)
        if created_before is not None:
            stmt = stmt.where(DecisionRecord.created_at < created_before)
        if tag:
            # tags are stored as a JSON array; match one whole element
            stmt = stmt.where(cast(DecisionRecord.tags, String).ilike(_contains(json.dumps(tag)), escape="\\"))
        if q:
            pattern = _contains(q)
            stmt = stmt.where(
                or_(
                    DecisionRecord.title.ilike(pattern, escape="\\"),
                    DecisionRecord.context.ilike(pattern, escape="\\"),
                    DecisionRecord.decision.ilike(pattern, escape="\\"),
                    DecisionRecord.consequences.ilike(pattern, escape="\\"),
                )
            )
        stmt = stmt.order_by(*_SEARCH_ORDER[sort]).limit(limit).offset(offset)
        return [(rec, project) for rec, project in self.s.execute(stmt).all()]

    # ---- snapshots ----

    def append_snapshot(self, record: DecisionRecord, *, change_reason: str | None, changed_by: str) -> VersionSnapshot:
        snap = VersionSnapshot(
            record_id=record.id,
            change_reason=change_reason,
            changed_by=changed_by,
            **{f: _copy(getattr(record, f)) for f in SNAPSHOT_FIELDS},
        )
        self.s.add(snap)
        self.s.flush()
        return snap

    def list_snapshots(self, record_id: int) -> list[VersionSnapshot]:
        return list(
            self.s.execute(
                select(VersionSnapshot)
                .where(VersionSnapshot.record_id == record_id)
                .order_by(VersionSnapshot.created_at.asc(), VersionSnapshot.id.asc())
            ).scalars()
        )

    def get_snapshot(self, record_id: int, snapshot_id: int) -> VersionSnapshot | None:
        snap = self.s.get(VersionSnapshot, snapshot_id)
        if snap is None or snap.record_id != record_id:
            return None
        return snap

    # ---- comments / relations ----

    def add_comment(self, **fields: Any) -> DecisionComment:
        c = DecisionComment(**fields)
        self.s.add(c)
        self.s.flush()
        return c

    def get_comment(self, comment_id: int) -> DecisionComment | None:
        return self.s.get(DecisionComment, comment_id)

    def list_comments(self, record_id: int) -> list[DecisionComment]:
        return list(
            self.s.execute(
                select(DecisionComment)
                .where(DecisionComment.record_id == record_id)
                .order_by(DecisionComment.created_at.asc(), DecisionComment.id.asc())
            ).scalars()
        )

    def add_relation(self, **fields: Any) -> DecisionRelation:
        r = DecisionRelation(**fields)
        self.s.add(r)
        self.s.flush()
        return r

    def list_relations(self, record_id: int) -> list[DecisionRelation]:
        return list(
            self.s.execute(
                select(DecisionRelation)
                .where(
                    or_(
                        DecisionRelation.source_record_id == record_id,
                        DecisionRelation.target_record_id == record_id,
                    )
                )
                .order_by(DecisionRelation.id.asc())
            ).scalars()
        )


def _copy(value: Any) -> Any:
    # Snapshot rows must not share a mutable list with the live record.
    if isinstance(value, list):
        return list(value)
    return value


def _contains(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


_SEARCH_ORDER = {
    "newest": (DecisionRecord.created_at.desc(), DecisionRecord.id.desc()),
    "oldest": (DecisionRecord.created_at.asc(), DecisionRecord.id.asc()),
    "title": (DecisionRecord.title.asc(), DecisionRecord.id.asc()),
    "updated": (DecisionRecord.updated_at.desc(), DecisionRecord.id.desc()),
}
