"""Pydantic models for the onboarding API.

Request bodies validate on the way in; responses are built from engine
dataclasses and ORM rows by the ``from_*`` helpers below.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from onboarding.bulk import BULK_OPERATIONS, BulkReport
from onboarding.models import (
    HireProfile,
    OnboardingProgress,
    TaskInstance,
    TaskTemplate,
    WorkflowTemplate,
)
from onboarding.service import ApplyResult
from onboarding.settings import OVERDUE_EXTENSION_DAYS

BulkOperationName = Literal["apply_workflow", "mark_completed", "send_reminder", "reset_overdue"]


# --- Hires ---


class HireCreateRequest(BaseModel):
    """Request for POST /api/v2/hires."""
    id: Optional[str] = Field(None, min_length=1, max_length=64, description="Caller-assigned id")
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    role: str = Field(..., min_length=1, max_length=64)
    department: str = Field(..., min_length=1, max_length=128)
    start_date: Optional[date] = None
    status: Literal["pending", "active", "inactive"] = "active"
    manager_id: Optional[str] = None


class HireStatusRequest(BaseModel):
    status: Literal["pending", "active", "inactive"]


class HireResponse(HireProfile):
    created_at: Optional[datetime] = None


class HireCreateResponse(BaseModel):
    hire: HireResponse
    workflow: Optional["ApplyResponse"] = None


class HireListResponse(BaseModel):
    hires: List[HireResponse]
    total: int
    page: int
    page_size: int


# --- Templates ---


class TemplatePublishRequest(BaseModel):
    """Request for POST /api/v2/templates. Publishing an existing id adds a version."""
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    role_targets: List[str] = Field(default_factory=list)
    department_targets: List[str] = Field(default_factory=list)
    tasks: List[TaskTemplate] = Field(..., min_length=1)
    is_active: bool = True
    auto_trigger: bool = False
    published_by: Optional[str] = None

    def to_template(self) -> WorkflowTemplate:
        return WorkflowTemplate(**self.model_dump(exclude={"published_by"}))


class TemplateListResponse(BaseModel):
    templates: List[WorkflowTemplate]
    total: int


class TemplateMatchResponse(BaseModel):
    hire_id: str
    template: Optional[WorkflowTemplate] = None


# --- Onboarding / tasks ---


class ApplyRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    template_id: Optional[str] = Field(
        None, description="Apply this template instead of the best match for the hire",
    )
    notify: bool = True


class ApplyResponse(BaseModel):
    hire_id: str
    status: Literal["applied", "no_template", "not_eligible", "no_tasks"]
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    created: List[TaskInstance] = Field(default_factory=list)
    reused: int = 0
    skipped: List[str] = Field(default_factory=list, description="Template task ids left out")

    @classmethod
    def from_result(cls, result: ApplyResult) -> "ApplyResponse":
        return cls(
            hire_id=result.hire_id,
            status=result.status,
            template_id=result.template_id,
            template_name=result.template_name,
            created=result.created,
            reused=result.reused,
            skipped=[task_id for task_id, _ in result.skipped],
        )


class TaskListResponse(BaseModel):
    hire_id: str
    tasks: List[TaskInstance]
    progress: OnboardingProgress


class CompleteTaskRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=2000)


class ActivateTaskRequest(BaseModel):
    due_date: Optional[date] = None


class ResetTaskRequest(BaseModel):
    due_date: date


class CompleteTaskResponse(BaseModel):
    task: TaskInstance
    progress: int
    changed: bool
    workflow_finished: bool


class DeleteTaskResponse(BaseModel):
    task_id: str
    hire_id: str
    progress: int


# --- Automation ---


class ActiveToggleRequest(BaseModel):
    is_active: bool


class ScanResponse(BaseModel):
    skipped: bool = False
    report: Optional[dict] = None


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    running: bool
    scan_in_progress: bool
    interval_seconds: Optional[float] = None
    skipped_ticks: int = 0
    last_report: Optional[dict] = None


# --- Bulk ---


class BulkRequest(BaseModel):
    """Body shared by the synchronous bulk endpoints and POST /bulk/jobs."""
    hire_ids: List[str] = Field(..., min_length=1, max_length=1000)
    actor: str = Field("system", min_length=1)
    template_id: Optional[str] = None
    extension_days: int = Field(OVERDUE_EXTENSION_DAYS, ge=1, le=365)

    @field_validator("hire_ids")
    @classmethod
    def _no_blank_ids(cls, v: List[str]) -> List[str]:
        ids = [h.strip() for h in v]
        if any(not h for h in ids):
            raise ValueError("hire_ids must not contain blank ids")
        return ids


class BulkJobCreateRequest(BulkRequest):
    operation: BulkOperationName

    @field_validator("operation")
    @classmethod
    def _known_operation(cls, v: str) -> str:
        if v not in BULK_OPERATIONS:
            raise ValueError(f"operation must be one of {', '.join(BULK_OPERATIONS)}")
        return v


class HireResultResponse(BaseModel):
    hire_id: str
    status: Literal["pending", "succeeded", "failed", "skipped", "cancelled"]
    detail: Optional[str] = ""
    tasks_affected: int = 0
    error: Optional[str] = None


class BulkReportResponse(BaseModel):
    operation: str
    total: int
    succeeded: int
    failed: int
    skipped: int
    cancelled: int
    partial_failure: bool
    summary: str
    results: List[HireResultResponse]

    @classmethod
    def from_report(cls, report: BulkReport) -> "BulkReportResponse":
        data = report.to_dict()
        return cls(**{k: v for k, v in data.items() if k in cls.model_fields})


class BulkJobResponse(BaseModel):
    """Response for POST /api/v2/bulk/jobs and GET /api/v2/bulk/jobs/{job_id}."""
    job_id: str
    operation: str
    status: Literal["started", "running", "completed", "failed", "cancelled"]
    template_id: Optional[str] = None
    actor: Optional[str] = None
    total: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    pending: int = 0
    error: Optional[str] = None
    summary: Optional[str] = None
    hires: List[HireResultResponse] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class BulkJobListResponse(BaseModel):
    jobs: List[BulkJobResponse]
    total: int
    page: int
    page_size: int


class JobControlResponse(BaseModel):
    """Response for job control operations (cancel)."""
    success: bool
    job_id: str
    status: str
    message: str


# --- Notifications ---


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    priority: str
    kind: str
    related_task_id: Optional[str] = None
    read: bool
    created_at: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int
    page: int
    page_size: int


HireCreateResponse.model_rebuild()
