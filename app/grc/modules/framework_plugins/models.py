from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.grc.models import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Framework(Base):
    __tablename__ = "compliance_frameworks"
    __table_args__ = (
        UniqueConstraint("short_code", name="uq_compliance_frameworks_short_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Natural key: manifest slug
    short_code: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="General")  # manifest.type

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    phases: Mapped[list["Phase"]] = relationship(
        "Phase",
        back_populates="framework",
        order_by="Phase.order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    requirements: Mapped[list["Requirement"]] = relationship(
        "Requirement",
        back_populates="framework",
        order_by="Requirement.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class Phase(Base):
    __tablename__ = "implementation_phases"
    __table_args__ = (
        UniqueConstraint("framework_id", "name", name="uq_implementation_phases_framework_name"),
        Index("idx_phase_framework", "framework_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    framework_id: Mapped[int] = mapped_column(ForeignKey("compliance_frameworks.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    # Set when a newer package no longer declares this phase (opt-in)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    framework: Mapped[Framework] = relationship("Framework", back_populates="phases")


class Requirement(Base):
    __tablename__ = "framework_requirements"
    __table_args__ = (
        UniqueConstraint("framework_id", "identifier", name="uq_framework_requirements_framework_identifier"),
        Index("idx_req_framework", "framework_id"),
        Index("idx_req_phase", "phase_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    framework_id: Mapped[int] = mapped_column(ForeignKey("compliance_frameworks.id", ondelete="CASCADE"), nullable=False)
    # Weak reference: lookup only, the requirement is owned by the framework
    phase_id: Mapped[int | None] = mapped_column(ForeignKey("implementation_phases.id", ondelete="SET NULL"), nullable=True)

    identifier: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "A.5.1", "CC6.1"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    mapping_tags: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)

    retired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    framework: Mapped[Framework] = relationship("Framework", back_populates="requirements")
    phase: Mapped[Phase | None] = relationship("Phase", lazy="joined")


class FrameworkInstallRun(Base):
    """One row per successful package install (catalog, upload or CLI)."""

    __tablename__ = "framework_install_runs"
    __table_args__ = (
        Index("idx_install_runs_slug", "slug"),
        Index("idx_install_runs_ran_at", "ran_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ran_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    framework_id: Mapped[int | None] = mapped_column(
        ForeignKey("compliance_frameworks.id", ondelete="SET NULL"), nullable=True
    )
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="api")  # catalog, upload, cli, api

    framework_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phases_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phases_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phases_retired: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requirements_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requirements_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requirements_retired: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warnings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    warnings_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    installed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
