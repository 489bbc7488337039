from __future__ import annotations

import logging

from flask import Blueprint, current_app, request
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.adrhub.auth import current_principal
from app.adrhub.db import db_session
from app.adrhub.errors import NotFound
from app.adrhub.models import Notification
from app.adrhub.modules.projects.store import MembershipStore

logger = logging.getLogger(__name__)

bp = Blueprint("notifications", __name__)


class Notifier:
    """
    Best-effort fan-out of notification rows. Runs after the triggering
    mutation has committed; failures are logged and swallowed.
    """

    def __init__(self, s: Session, memberships: MembershipStore, *, enabled: bool = True) -> None:
        self.s = s
        self.memberships = memberships
        self.enabled = enabled

    def _create_many(self, rows: list[Notification]) -> int:
        if not rows:
            return 0
        self.s.add_all(rows)
        self.s.commit()
        return len(rows)

    def notify_user(self, user_id: int, type: str, title: str, body: str, href: str | None = None) -> int:
        if not self.enabled:
            return 0
        try:
            return self._create_many([Notification(user_id=user_id, type=type, title=title, body=body, href=href)])
        except Exception:
            logger.exception("Failed to create notification (user_id=%s type=%s)", user_id, type)
            self._rollback_quietly()
            return 0

    def notify_members(
        self,
        project_id: int,
        exclude_user_id: int | None,
        type: str,
        title: str,
        body: str,
        href: str | None = None,
    ) -> int:
        """One notification per project member other than `exclude_user_id`. Returns the count written."""
        if not self.enabled:
            return 0
        try:
            recipients = {
                m.user_id
                for m in self.memberships.list_members(project_id)
                if exclude_user_id is None or m.user_id != exclude_user_id
            }
            rows = [
                Notification(user_id=uid, type=type, title=title, body=body, href=href)
                for uid in sorted(recipients)
            ]
            return self._create_many(rows)
        except Exception:
            logger.exception("Failed to notify project members (project_id=%s type=%s)", project_id, type)
            self._rollback_quietly()
            return 0

    def _rollback_quietly(self) -> None:
        try:
            self.s.rollback()
        except Exception:
            logger.exception("Rollback after notification failure also failed")


def notifier_for(s: Session, config: dict | None = None) -> Notifier:
    cfg = config if config is not None else current_app.config
    return Notifier(s, MembershipStore(s), enabled=bool(cfg.get("NOTIFICATIONS_ENABLED", True)))


# ---- read side ----


def list_notifications(s: Session, user_id: int, *, limit: int = 50, offset: int = 0) -> list[Notification]:
    return list(
        s.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(max(1, limit))
            .offset(max(0, offset))
        ).scalars()
    )


def unread_count(s: Session, user_id: int) -> int:
    return int(
        s.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        ).scalar_one()
    )


def mark_read(s: Session, user_id: int, notification_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if not n or n.user_id != user_id:
        raise NotFound("Notification", notification_id)
    n.is_read = True
    s.commit()
    return n


def mark_all_read(s: Session, user_id: int) -> int:
    result = s.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    s.commit()
    return result.rowcount or 0


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "type": n.type,
        "title": n.title,
        "body": n.body,
        "href": n.href,
        "isRead": n.is_read,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@bp.get("/")
def list_mine():
    principal = current_principal()
    limit = min(_int_arg("limit", current_app.config.get("NOTIFICATION_PAGE_LIMIT", 50)), 200)
    rows = list_notifications(db_session(), principal.id, limit=limit, offset=_int_arg("offset", 0))
    return {"items": [notification_to_dict(n) for n in rows]}


@bp.get("/unread-count")
def unread():
    principal = current_principal()
    return {"count": unread_count(db_session(), principal.id)}


@bp.patch("/<int:notification_id>/read")
def read_one(notification_id: int):
    principal = current_principal()
    n = mark_read(db_session(), principal.id, notification_id)
    return notification_to_dict(n)


@bp.patch("/read-all")
def read_all():
    principal = current_principal()
    updated = mark_all_read(db_session(), principal.id)
    return {"message": "All notifications marked as read", "updated": updated}
