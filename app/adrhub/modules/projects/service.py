from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.adrhub.audit import AuditRecorder
from app.adrhub.constants import (
    NOTIFY_MEMBER_ADDED,
    PROJECT_KEY_MAX_LENGTH,
    PROJECT_NAME_MAX_LENGTH,
    EntityType,
    ProjectRole,
)
from app.adrhub.errors import Conflict, NotFound, ValidationFailed
from app.adrhub.models import User
from app.adrhub.rbac import require_global_admin

from .models import Project, ProjectMembership
from .store import MembershipStore

if TYPE_CHECKING:
    from app.adrhub.auth import Principal
    from app.adrhub.notifications import Notifier
    from app.adrhub.rbac import AccessEvaluator

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Z0-9]+$")


def normalize_project_key(raw: str | None) -> str:
    return (raw or "").strip()


def parse_project_role(value: Any, field: str = "role") -> ProjectRole:
    try:
        return ProjectRole((value or "").strip() if isinstance(value, str) else "")
    except ValueError:
        raise ValidationFailed(
            "validation failed",
            field_errors={field: "Invalid role. Must be one of: " + ", ".join(r.value for r in ProjectRole)},
        ) from None


def _validate_name(raw: Any, errors: dict[str, str]) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        errors["name"] = "Name is required."
        return None
    name = raw.strip()
    if len(name) > PROJECT_NAME_MAX_LENGTH:
        errors["name"] = f"Name must be at most {PROJECT_NAME_MAX_LENGTH} characters."
        return None
    return name


class ProjectService:
    def __init__(
        self,
        s: Session,
        access: "AccessEvaluator",
        audit: AuditRecorder,
        notifier: "Notifier",
    ) -> None:
        self.s = s
        self.access = access
        self.audit = audit
        self.notifier = notifier
        self.memberships = MembershipStore(s)

    def _get_or_404(self, project_id: int) -> Project:
        p = self.s.get(Project, project_id)
        if p is None:
            raise NotFound("Project", project_id)
        return p

    # ---- projects ----

    def list_projects(self, actor: "Principal") -> list[Project]:
        q = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
        if not actor.is_global_admin:
            q = q.join(ProjectMembership, ProjectMembership.project_id == Project.id).where(
                ProjectMembership.user_id == actor.id
            )
        return list(self.s.execute(q).scalars())

    def get_project(self, project_id: int, actor: "Principal") -> Project:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        return self._get_or_404(project_id)

    def create_project(self, payload: dict[str, Any], actor: "Principal") -> Project:
        require_global_admin(actor)

        errors: dict[str, str] = {}
        name = _validate_name(payload.get("name"), errors)
        key = normalize_project_key(payload.get("key") if isinstance(payload.get("key"), str) else None)
        if not key:
            errors["key"] = "Key is required."
        elif len(key) > PROJECT_KEY_MAX_LENGTH:
            errors["key"] = f"Key must be at most {PROJECT_KEY_MAX_LENGTH} characters."
        elif not _KEY_RE.match(key):
            errors["key"] = "Key must be uppercase letters and numbers only."
        description = payload.get("description")
        if description is not None and not isinstance(description, str):
            errors["description"] = "Description must be text."
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        if self.s.execute(select(Project.id).where(Project.key == key)).first() is not None:
            raise Conflict("project key already in use")

        now = datetime.utcnow()
        p = Project(
            name=name,
            key=key,
            description=(description or "").strip() or None,
            record_counter=0,
            created_by_user_id=actor.id,
            created_at=now,
            updated_at=now,
        )
        try:
            self.s.add(p)
            self.s.flush()
            self.s.add(ProjectMembership(project_id=p.id, user_id=actor.id, role=ProjectRole.ADMIN.value))
            self.s.commit()
        except IntegrityError as e:
            self.s.rollback()
            raise Conflict("project key already in use") from e

        logger.info("Project created (id=%s key=%s)", p.id, p.key)
        self.audit.record(
            EntityType.PROJECT, p.id, "created", actor.display_name, metadata={"name": p.name, "key": p.key}
        )
        return p

    def update_project(self, project_id: int, payload: dict[str, Any], actor: "Principal") -> Project:
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        p = self._get_or_404(project_id)

        errors: dict[str, str] = {}
        values: dict[str, Any] = {}
        if "name" in payload:
            name = _validate_name(payload.get("name"), errors)
            if name is not None:
                values["name"] = name
        if "description" in payload:
            description = payload.get("description")
            if description is not None and not isinstance(description, str):
                errors["description"] = "Description must be text."
            else:
                values["description"] = (description or "").strip() or None
        if errors:
            raise ValidationFailed("validation failed", field_errors=errors)

        changes = {k: {"before": getattr(p, k), "after": v} for k, v in values.items() if getattr(p, k) != v}
        for k, v in values.items():
            setattr(p, k, v)
        p.updated_at = datetime.utcnow()
        self.s.commit()

        if changes:
            self.audit.record(EntityType.PROJECT, p.id, "updated", actor.display_name, changes=changes)
        return p

    def delete_project(self, project_id: int, actor: "Principal") -> None:
        require_global_admin(actor)
        p = self._get_or_404(project_id)
        meta = {"name": p.name, "key": p.key}

        # sqlite does not enforce ON DELETE CASCADE by default
        from app.adrhub.modules.decision_records.models import (
            DecisionComment,
            DecisionRecord,
            DecisionRelation,
            VersionSnapshot,
        )

        record_ids = select(DecisionRecord.id).where(DecisionRecord.project_id == p.id)
        self.s.execute(
            delete(DecisionRelation)
            .where(or_(DecisionRelation.source_record_id.in_(record_ids), DecisionRelation.target_record_id.in_(record_ids)))
            .execution_options(synchronize_session=False)
        )
        self.s.execute(
            delete(DecisionComment)
            .where(DecisionComment.record_id.in_(record_ids))
            .execution_options(synchronize_session=False)
        )
        self.s.execute(
            delete(VersionSnapshot)
            .where(VersionSnapshot.record_id.in_(record_ids))
            .execution_options(synchronize_session=False)
        )
        self.s.execute(
            delete(DecisionRecord)
            .where(DecisionRecord.project_id == p.id)
            .execution_options(synchronize_session=False)
        )
        self.s.delete(p)
        self.s.commit()

        logger.info("Project deleted (id=%s)", project_id)
        self.audit.record(EntityType.PROJECT, project_id, "deleted", actor.display_name, metadata=meta)

    # ---- memberships ----

    def list_members(self, project_id: int, actor: "Principal") -> list[ProjectMembership]:
        self.access.require(actor, project_id, ProjectRole.VIEWER)
        self._get_or_404(project_id)
        return self.memberships.list_members(project_id)

    def list_member_candidates(self, project_id: int, actor: "Principal") -> list[User]:
        """Users not yet in the project, for the add-member picker."""
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        self._get_or_404(project_id)
        member_ids = select(ProjectMembership.user_id).where(ProjectMembership.project_id == project_id)
        return list(
            self.s.execute(
                select(User).where(User.id.not_in(member_ids)).order_by(User.display_name.asc(), User.id.asc())
            ).scalars()
        )

    def add_member(self, project_id: int, user_id: Any, role: Any, actor: "Principal") -> ProjectMembership:
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        p = self._get_or_404(project_id)

        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise ValidationFailed("validation failed", field_errors={"userId": "User id is required."})
        prole = parse_project_role(role)
        user = self.s.get(User, user_id)
        if user is None:
            raise NotFound("User", user_id)
        if self.memberships.get_membership(project_id, user_id) is not None:
            raise Conflict("user is already a member")

        m = ProjectMembership(project_id=project_id, user_id=user_id, role=prole.value)
        try:
            self.s.add(m)
            self.s.commit()
        except IntegrityError as e:
            self.s.rollback()
            raise Conflict("user is already a member") from e

        self.audit.record(
            EntityType.PROJECT_MEMBER,
            m.id,
            "added",
            actor.display_name,
            metadata={"projectId": project_id, "userId": user_id, "role": prole.value},
        )
        self.notifier.notify_user(
            user_id,
            NOTIFY_MEMBER_ADDED,
            f"Added to project {p.name}",
            f"{actor.display_name} added you to {p.name} as {prole.value}",
            f"/projects/{project_id}",
        )
        return m

    def _get_membership_or_404(self, project_id: int, user_id: int) -> ProjectMembership:
        m = self.memberships.get_membership(project_id, user_id)
        if m is None:
            raise NotFound("Membership", user_id)
        return m

    def update_member_role(self, project_id: int, user_id: int, role: Any, actor: "Principal") -> ProjectMembership:
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        m = self._get_membership_or_404(project_id, user_id)
        prole = parse_project_role(role)

        before = m.role
        m.role = prole.value
        self.s.commit()

        self.audit.record(
            EntityType.PROJECT_MEMBER,
            m.id,
            "role_updated",
            actor.display_name,
            changes={"role": {"before": before, "after": prole.value}},
            metadata={"projectId": project_id, "userId": user_id},
        )
        return m

    def remove_member(self, project_id: int, user_id: int, actor: "Principal") -> None:
        self.access.require(actor, project_id, ProjectRole.ADMIN)
        m = self._get_membership_or_404(project_id, user_id)
        membership_id = m.id
        self.s.delete(m)
        self.s.commit()

        self.audit.record(
            EntityType.PROJECT_MEMBER,
            membership_id,
            "removed",
            actor.display_name,
            metadata={"projectId": project_id, "userId": user_id},
        )


def project_service(s: Session, config: dict | None = None) -> ProjectService:
    from app.adrhub.notifications import notifier_for
    from app.adrhub.rbac import access_evaluator_for

    return ProjectService(s, access_evaluator_for(s, config), AuditRecorder(s), notifier_for(s, config))


def project_to_dict(p: Project) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "key": p.key,
        "description": p.description,
        "createdBy": p.created_by_user_id,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
    }


def membership_to_dict(m: ProjectMembership) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": m.id,
        "projectId": m.project_id,
        "userId": m.user_id,
        "role": m.role,
        "createdAt": m.created_at.isoformat() if m.created_at else None,
    }
    if m.user is not None:
        d["username"] = m.user.username
        d["displayName"] = m.user.display_name
    return d
