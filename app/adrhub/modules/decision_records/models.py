from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.adrhub.models import Base


class DecisionRecord(Base):
    __tablename__ = "decision_records"
    __table_args__ = (
        UniqueConstraint("project_id", "sequence_number", name="uq_decision_record_sequence"),
        Index("idx_decision_records_project", "project_id"),
        Index("idx_decision_records_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)  # ADR-<n> within the project

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    # draft -> proposed -> in_review -> accepted -> deprecated/superseded
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    context: Mapped[str] = mapped_column(Text, nullable=False)
    decision: Mapped[str] = mapped_column(Text, nullable=False)
    consequences: Mapped[str] = mapped_column(Text, nullable=False)
    alternatives: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    team: Mapped[str | None] = mapped_column(String(100), nullable=True)

    author: Mapped[str] = mapped_column(String(100), nullable=False)  # display name at creation
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")  # MAJOR.MINOR

    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    snapshots: Mapped[list["VersionSnapshot"]] = relationship(
        "VersionSnapshot",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="VersionSnapshot.id",
        lazy="select",
    )


class VersionSnapshot(Base):
    """Immutable copy of a record's content and status at one version."""

    __tablename__ = "version_snapshots"
    __table_args__ = (
        UniqueConstraint("record_id", "version", name="uq_version_snapshot_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    record_id: Mapped[int] = mapped_column(ForeignKey("decision_records.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    context: Mapped[str] = mapped_column(Text, nullable=False)
    decision: Mapped[str] = mapped_column(Text, nullable=False)
    consequences: Mapped[str] = mapped_column(Text, nullable=False)
    alternatives: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    team: Mapped[str | None] = mapped_column(String(100), nullable=True)
    author: Mapped[str] = mapped_column(String(100), nullable=False)

    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    record: Mapped[DecisionRecord] = relationship("DecisionRecord", back_populates="snapshots", lazy="select")


class DecisionComment(Base):
    __tablename__ = "decision_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    record_id: Mapped[int] = mapped_column(ForeignKey("decision_records.id", ondelete="CASCADE"), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("decision_comments.id", ondelete="CASCADE"), nullable=True)
    section: Mapped[str | None] = mapped_column(String(50), nullable=True)  # e.g. "context", "decision"
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class DecisionRelation(Base):
    __tablename__ = "decision_relations"
    __table_args__ = (
        UniqueConstraint("source_record_id", "target_record_id", "relation_type", name="uq_decision_relation"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    source_record_id: Mapped[int] = mapped_column(ForeignKey("decision_records.id", ondelete="CASCADE"), nullable=False)
    target_record_id: Mapped[int] = mapped_column(ForeignKey("decision_records.id", ondelete="CASCADE"), nullable=False)
    relation_type: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
