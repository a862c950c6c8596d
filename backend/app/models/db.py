"""SQLAlchemy ORM models for the onboarding service.

Tables:
- hires: New hire profiles (read by the engine through the hire directory)
- workflow_templates: Published template versions, tasks stored as JSON
- onboarding_tasks: Materialized task instances
- onboarding_progress: Per-hire aggregate progress through the applied workflow
- notifications: Persisted notifications, deduplicated by dedup_key
- bulk_jobs / bulk_hire_results: Long-running bulk operations run via Temporal
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


# ─── Hires ───────────────────────────────────────────────────────────


class HireModel(Base):
    """A new hire going through onboarding."""

    __tablename__ = "hires"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    department: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="active",
        comment="pending | active | inactive",
    )
    manager_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Escalation target for overdue tasks",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    tasks: Mapped[List["OnboardingTaskModel"]] = relationship(
        back_populates="hire", cascade="all, delete-orphan",
        order_by="OnboardingTaskModel.order",
    )

    __table_args__ = (
        Index("ix_hires_role", "role"),
        Index("ix_hires_department", "department"),
        Index("ix_hires_status", "status"),
    )


# ─── Templates ───────────────────────────────────────────────────────


class WorkflowTemplateModel(Base):
    """One published version of a workflow template.

    Rows are never updated in place except for ``is_active``; publishing
    an existing template id inserts the next version.
    """

    __tablename__ = "workflow_templates"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role_targets: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    department_targets: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    tasks: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
        comment="TaskTemplate list: [{id, title, category, days_from_start, dependencies, ...}]",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_trigger: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    published_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    __table_args__ = (
        Index("ix_workflow_templates_active", "is_active"),
    )


# ─── Tasks & Progress ────────────────────────────────────────────────


class OnboardingTaskModel(Base):
    """A materialized task instance owned by one hire."""

    __tablename__ = "onboarding_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    hire_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("hires.id", ondelete="CASCADE"), nullable=False,
    )
    template_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    template_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    template_task_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True,
        comment="Source TaskTemplate id, or follow-up:<rule>:<source> for automation tasks",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending",
        comment="pending | active | completed | overdue",
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    dependencies: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=list, comment="Ids of prerequisite task instances",
    )
    order: Mapped[int] = mapped_column("task_order", Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    hire: Mapped["HireModel"] = relationship(back_populates="tasks")

    __table_args__ = (
        UniqueConstraint(
            "hire_id", "template_id", "template_task_id",
            name="uq_onboarding_tasks_hire_template_task",
        ),
        Index("ix_onboarding_tasks_hire_id", "hire_id"),
        Index("ix_onboarding_tasks_status", "status"),
        Index("ix_onboarding_tasks_due_date", "due_date"),
    )


class OnboardingProgressModel(Base):
    """Aggregate progress of one hire; one row per hire."""

    __tablename__ = "onboarding_progress"

    hire_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("hires.id", ondelete="CASCADE"), primary_key=True,
    )
    template_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    template_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="in_progress",
        comment="in_progress | completed",
    )
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    expected_completion_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )


# ─── Notifications ───────────────────────────────────────────────────


class NotificationModel(Base):
    """A notification addressed to a hire or manager."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    kind: Mapped[str] = mapped_column(String(64), nullable=False, default="notification")
    related_task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    dedup_key: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True,
        comment="Set for notifications that must be delivered at most once",
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    __table_args__ = (
        Index("ix_notifications_user_id", "user_id"),
        Index("ix_notifications_created_at", "created_at"),
    )


# ─── Bulk Jobs ───────────────────────────────────────────────────────


class BulkJobModel(Base):
    """Long-running bulk operation executed by the Temporal worker.

    Per-hire outcomes are stored in BulkHireResultModel.
    """

    __tablename__ = "bulk_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g., bulk_xxx
    operation: Mapped[str] = mapped_column(
        String(32), nullable=False,
        comment="apply_workflow | mark_completed | send_reminder | reset_overdue",
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="started",
        comment="started | running | completed | failed | cancelled",
    )
    template_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)

    # Operation parameters (extension_days, ...)
    params: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    # BulkReport summary once finished
    summary: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    temporal_workflow_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    hires: Mapped[List["BulkHireResultModel"]] = relationship(
        back_populates="job", cascade="all, delete-orphan",
        order_by="BulkHireResultModel.hire_index",
    )

    __table_args__ = (
        Index("ix_bulk_jobs_status", "status"),
        Index("ix_bulk_jobs_created_at", "created_at"),
    )


class BulkHireResultModel(Base):
    """Outcome for one hire within a bulk job."""

    __tablename__ = "bulk_hire_results"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    job_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("bulk_jobs.id", ondelete="CASCADE"), nullable=False,
    )
    hire_index: Mapped[int] = mapped_column(Integer, nullable=False)
    hire_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending",
        comment="pending | succeeded | failed | skipped | cancelled",
    )
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tasks_affected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    job: Mapped["BulkJobModel"] = relationship(back_populates="hires")

    __table_args__ = (
        Index("ix_bulk_hire_results_job_id", "job_id"),
        Index("ix_bulk_hire_results_hire_id", "hire_id"),
    )
