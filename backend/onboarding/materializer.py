"""Task materializer: expand a workflow template into hire-specific tasks.

Resolution is a single left-to-right pass over the applicable tasks:

- a task whose dependencies were all created earlier in the pass (or
  already exist for the hire) is materialized;
- a dependency on a task the hire's audience filters exclude counts as
  satisfied;
- a dependency on an applicable task that has not been created yet skips
  the dependent task for this run. Skips cascade to its own dependants.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .models import HireProfile, TaskInstance, TaskTemplate, WorkflowTemplate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


@dataclass
class MaterializationPlan:
    """Outcome of one materialization pass."""

    tasks: List[TaskInstance] = field(default_factory=list)
    reused: Dict[str, str] = field(default_factory=dict)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    applicable_count: int = 0


def task_applies(task: TaskTemplate, hire: HireProfile) -> bool:
    if task.role_specific and (hire.role or "") not in task.role_specific:
        return False
    if task.department_specific and (hire.department or "") not in task.department_specific:
        return False
    return True


def applicable_tasks(template: WorkflowTemplate, hire: HireProfile) -> List[TaskTemplate]:
    """Template tasks whose audience filters admit the hire, in template order."""
    return [task for task in template.tasks if task_applies(task, hire)]


def baseline_date(hire: HireProfile, now: Optional[datetime] = None) -> date:
    """Hire start date, or today when the directory has none."""
    if hire.start_date is not None:
        return hire.start_date
    return (now or _utcnow()).date()


def build_note(template: WorkflowTemplate, task: TaskTemplate) -> str:
    return (
        f"Auto-assigned via {template.name} workflow. "
        f"Estimated: {task.estimated_hours:g}h. Priority: {task.priority}"
    )


def plan_materialization(
    hire: HireProfile,
    template: WorkflowTemplate,
    actor: str,
    *,
    existing: Iterable[TaskInstance] = (),
    now: Optional[datetime] = None,
) -> MaterializationPlan:
    """Compute the task instances to create for ``hire`` from ``template``.

    Args:
        hire: Target hire profile
        template: Template chosen for the hire
        actor: User id recorded as ``assigned_by``
        existing: Tasks the hire already has; instances from the same
            template task are reused instead of recreated
        now: Clock override for the start-date fallback

    Returns:
        MaterializationPlan with unsaved instances (ids preassigned) in
        creation order
    """
    plan = MaterializationPlan()
    existing = list(existing)
    applicable = applicable_tasks(template, hire)
    plan.applicable_count = len(applicable)
    applicable_ids = {task.id for task in applicable}

    already: Dict[str, str] = {
        inst.template_task_id: inst.id
        for inst in existing
        if inst.template_id == template.id and inst.template_task_id and inst.id
    }

    start = baseline_date(hire, now)
    created: Dict[str, str] = {}
    next_order = len(existing)

    for task in applicable:
        if task.id in already:
            created[task.id] = already[task.id]
            plan.reused[task.id] = already[task.id]
            continue

        missing = [
            dep for dep in task.dependencies
            if dep in applicable_ids and dep not in created
        ]
        if missing:
            plan.skipped.append((task.id, f"dependencies not materialized: {', '.join(missing)}"))
            continue

        instance = TaskInstance(
            id=_gen_uuid(),
            hire_id=hire.id,
            template_id=template.id,
            template_version=template.version,
            template_task_id=task.id,
            title=task.title,
            description=task.description,
            category=task.category,
            priority=task.priority,
            status="pending",
            due_date=start + timedelta(days=task.days_from_start),
            assigned_by=actor,
            notes=build_note(template, task),
            dependencies=[created[dep] for dep in task.dependencies if dep in created],
            order=next_order,
        )
        next_order += 1
        created[task.id] = instance.id
        plan.tasks.append(instance)

    return plan


def materialize(
    hire: HireProfile,
    template: WorkflowTemplate,
    actor: str,
    *,
    existing: Iterable[TaskInstance] = (),
    now: Optional[datetime] = None,
) -> List[TaskInstance]:
    """Return the new task instances for ``hire`` (empty when nothing applies)."""
    return plan_materialization(hire, template, actor, existing=existing, now=now).tasks


def expected_completion_date(
    hire: HireProfile,
    template: WorkflowTemplate,
    buffer_days: int,
    now: Optional[datetime] = None,
) -> date:
    """Baseline + the latest task offset + a buffer."""
    offsets = [task.days_from_start for task in applicable_tasks(template, hire)] or [0]
    return baseline_date(hire, now) + timedelta(days=max(offsets) + buffer_days)
