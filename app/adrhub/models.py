from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="viewer")  # global role
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AuditEntry(Base):
    """
    Append-only audit trail entry.
    Written only by app.adrhub.audit; never updated or deleted by the application.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("idx_audit_entries_entity", "entity_type", "entity_id"),
        Index("idx_audit_entries_performed_at", "performed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "adr"
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)  # string for flexibility
    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "status_changed"
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)  # display name snapshot

    changes_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # {"field": {"before":..,"after":..}}
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    href: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.adrhub.modules.projects.models import Project, ProjectMembership  # noqa: E402,F401
from app.adrhub.modules.decision_records.models import (  # noqa: E402,F401
    DecisionComment,
    DecisionRecord,
    DecisionRelation,
    VersionSnapshot,
)
