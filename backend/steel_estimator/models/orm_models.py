"""ORM Models for the steel estimator — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from steel_estimator.db import Base

# JSONB on Postgres, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def gen_uuid():
    return str(uuid.uuid4())


# ── PROJECT REGISTRY ──────────────────────────────────────────────────────────
class Project(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    project_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50), default="draft")   # draft | active | submitted | won | lost
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    lines: Mapped[list["EstimateLine"]] = relationship("EstimateLine", back_populates="project")


# ── ESTIMATE LINES ────────────────────────────────────────────────────────────
class EstimateLine(Base):
    """One stored line item; ``data`` holds the full camelCase record."""
    __tablename__ = "estimate_lines"
    __table_args__ = (
        UniqueConstraint("project_id", "line_id", name="uq_estimate_lines_project_line"),
        Index("ix_estimate_lines_project", "project_id"),
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id"), nullable=False)
    line_id: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="Active")
    data: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    project: Mapped["Project"] = relationship("Project", back_populates="lines")


# ── COMPANY SETTINGS ──────────────────────────────────────────────────────────
class CompanySettingsRecord(Base):
    __tablename__ = "company_settings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    data: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ── AUDIT ─────────────────────────────────────────────────────────────────────
class EstimateAdjustment(Base):
    """Append-only audit of live parameter changes."""
    __tablename__ = "estimate_adjustments"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id"), nullable=False, index=True)
    parameter: Mapped[str] = mapped_column(String(100), nullable=False)
    old_value: Mapped[Optional[float]] = mapped_column(Float)
    new_value: Mapped[Optional[float]] = mapped_column(Float)
    impact: Mapped[Optional[dict]] = mapped_column(JSONDocument)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    user_name: Mapped[Optional[str]] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
