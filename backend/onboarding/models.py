"""Domain models for the onboarding engine.

Templates, task instances, hire profiles and automation rules are pydantic
models so they validate on the way in (API payloads, JSON template columns)
and serialize cleanly into Temporal activity params.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TaskCategory = Literal["documentation", "training", "setup", "meeting", "other"]
TaskPriority = Literal["low", "medium", "high", "critical"]
TaskStatus = Literal["pending", "active", "completed", "overdue"]
RuleTrigger = Literal["task_completed", "task_overdue", "user_created", "deadline_approaching"]

# Statuses the automation scan considers "live"
OPEN_STATUSES = ("pending", "active", "overdue")


# ─── Templates ───────────────────────────────────────────────────────


class TaskTemplate(BaseModel):
    """One task definition inside a workflow template.

    ``dependencies`` reference other task ids of the same template.
    Empty ``role_specific`` / ``department_specific`` lists mean the task
    applies to everyone.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    category: TaskCategory = "other"
    days_from_start: int = Field(default=0, ge=0)
    priority: TaskPriority = "medium"
    estimated_hours: float = Field(default=1.0, gt=0)
    dependencies: List[str] = Field(default_factory=list)
    auto_assign: bool = False
    role_specific: List[str] = Field(default_factory=list)
    department_specific: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class WorkflowTemplate(BaseModel):
    """A named, versioned bundle of task definitions plus audience targeting."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    role_targets: List[str] = Field(default_factory=list)
    department_targets: List[str] = Field(default_factory=list)
    tasks: List[TaskTemplate] = Field(default_factory=list)
    is_active: bool = True
    auto_trigger: bool = False
    version: int = Field(default=1, ge=1)

    def task_by_id(self, task_id: str) -> Optional[TaskTemplate]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


# ─── Hires & Tasks ───────────────────────────────────────────────────


class HireProfile(BaseModel):
    """Read-only view of a new hire, used for matching and date arithmetic."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = ""
    email: Optional[str] = None
    role: str = ""
    department: str = ""
    start_date: Optional[date] = None
    status: str = "active"
    manager_id: Optional[str] = None


class TaskInstance(BaseModel):
    """A materialized, hire-specific task."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    hire_id: str
    template_id: Optional[str] = None
    template_version: Optional[int] = None
    template_task_id: Optional[str] = None
    title: str
    description: str = ""
    category: TaskCategory = "other"
    priority: TaskPriority = "medium"
    status: TaskStatus = "pending"
    due_date: date
    completed_date: Optional[datetime] = None
    completed_by: Optional[str] = None
    assigned_by: Optional[str] = None
    notes: str = ""
    dependencies: List[str] = Field(default_factory=list)
    order: int = 0
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        # Older clients send "in_progress" for an active task
        if value == "in_progress":
            return "active"
        return value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []


class OnboardingProgress(BaseModel):
    """Aggregate progress of one hire through its applied workflow."""

    model_config = ConfigDict(from_attributes=True)

    hire_id: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    status: Literal["in_progress", "completed"] = "in_progress"
    completion_percentage: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expected_completion_date: Optional[date] = None


# ─── Automation ──────────────────────────────────────────────────────


class RuleConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_category: Optional[TaskCategory] = None
    user_role: List[str] = Field(default_factory=list)
    days_before_due: Optional[int] = Field(default=None, ge=0)


class RuleActions(BaseModel):
    model_config = ConfigDict(frozen=True)

    send_notification: bool = False
    escalate_to_manager: bool = False
    assign_follow_up_task: Optional[str] = None
    update_task_status: Optional[Literal["active", "completed"]] = None


class AutomationRule(BaseModel):
    """Trigger / condition / action tuple evaluated against live task state."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    trigger: RuleTrigger
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: RuleActions = Field(default_factory=RuleActions)
    is_active: bool = True

    def matches(self, task: Optional[TaskInstance], hire: Optional[HireProfile]) -> bool:
        """Check the optional category / role filters."""
        cond = self.conditions
        if cond.task_category and (task is None or task.category != cond.task_category):
            return False
        if cond.user_role and (hire is None or hire.role not in cond.user_role):
            return False
        return True
