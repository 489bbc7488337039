from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.adrhub.constants import ProjectRole

from .models import ProjectMembership


class MembershipStore:
    """Read side of project memberships."""

    def __init__(self, s: Session) -> None:
        self.s = s

    def get_membership(self, project_id: int, user_id: int) -> ProjectMembership | None:
        return self.s.execute(
            select(ProjectMembership).where(
                ProjectMembership.project_id == project_id,
                ProjectMembership.user_id == user_id,
            )
        ).scalar_one_or_none()

    def get_role(self, project_id: int, user_id: int) -> ProjectRole | None:
        m = self.get_membership(project_id, user_id)
        if m is None:
            return None
        try:
            return ProjectRole(m.role)
        except ValueError:
            return None

    def project_ids_for_user(self, user_id: int) -> list[int]:
        return list(
            self.s.execute(select(ProjectMembership.project_id).where(ProjectMembership.user_id == user_id)).scalars()
        )

    def list_members(self, project_id: int) -> list[ProjectMembership]:
        return list(
            self.s.execute(
                select(ProjectMembership)
                .where(ProjectMembership.project_id == project_id)
                .order_by(ProjectMembership.created_at.asc(), ProjectMembership.id.asc())
            ).scalars()
        )
