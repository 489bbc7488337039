"""
Project-scoped access control.

A principal's effective role in a project is "admin" when the principal is a
global admin (and the bypass is enabled), otherwise the role on their single
membership row. No membership means no access at all.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import current_app
from sqlalchemy.orm import Session

from app.adrhub.auth import Principal, current_principal
from app.adrhub.constants import ProjectRole
from app.adrhub.errors import AuthorizationDenied
from app.adrhub.modules.projects.store import MembershipStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    role: ProjectRole | None = None
    reason: str | None = None


class AccessEvaluator:
    """Side-effect free; never writes."""

    def __init__(self, memberships: MembershipStore, *, global_admin_bypass: bool = True) -> None:
        self.memberships = memberships
        self.global_admin_bypass = global_admin_bypass

    def resolve_role(self, principal: Principal, project_id: int) -> ProjectRole | None:
        if self.global_admin_bypass and principal.is_global_admin:
            return ProjectRole.ADMIN
        return self.memberships.get_role(project_id, principal.id)

    def accessible_project_ids(self, principal: Principal) -> list[int] | None:
        """Projects the principal can read. None means all of them."""
        if self.global_admin_bypass and principal.is_global_admin:
            return None
        return self.memberships.project_ids_for_user(principal.id)

    def authorize(
        self,
        principal: Principal,
        project_id: int,
        minimum_role: ProjectRole | None = None,
    ) -> AccessDecision:
        role = self.resolve_role(principal, project_id)
        if role is None:
            return AccessDecision(allowed=False, reason="no access")
        if minimum_role is not None and role.rank < minimum_role.rank:
            return AccessDecision(allowed=False, role=role, reason=f"requires {minimum_role.value}")
        return AccessDecision(allowed=True, role=role)

    def require(
        self,
        principal: Principal,
        project_id: int,
        minimum_role: ProjectRole | None = None,
    ) -> ProjectRole:
        decision = self.authorize(principal, project_id, minimum_role)
        if not decision.allowed or decision.role is None:
            logger.info(
                "Access denied (user_id=%s project_id=%s reason=%s)",
                principal.id,
                project_id,
                decision.reason,
            )
            raise AuthorizationDenied(decision.reason or "")
        return decision.role


def access_evaluator_for(s: Session, config: dict | None = None) -> AccessEvaluator:
    cfg = config if config is not None else current_app.config
    return AccessEvaluator(MembershipStore(s), global_admin_bypass=bool(cfg.get("GLOBAL_ADMIN_BYPASS", True)))


def require_global_admin(principal: Principal) -> None:
    if not principal.is_global_admin:
        raise AuthorizationDenied("requires global admin")


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        require_global_admin(current_principal())
        return fn(*args, **kwargs)

    return wrapped
