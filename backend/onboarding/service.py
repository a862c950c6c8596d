"""Onboarding service: wires targeting, materialization, lifecycle and automation.

This is the surface the API routes, the bulk coordinator and the Temporal
activity call. It owns no state beyond its collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional, Tuple

from .automation import AutomationEngine
from .errors import NotFoundError
from .interfaces import HireDirectory, Notifier, TaskStore, TemplateCatalogSource
from .lifecycle import CompletionResult, TaskLifecycleManager
from .locks import HireLockRegistry
from .materializer import expected_completion_date, plan_materialization
from .models import HireProfile, OnboardingProgress, TaskInstance, WorkflowTemplate
from .settings import COMPLETION_BUFFER_DAYS
from .targeting import select_template, template_matches

logger = logging.getLogger("onboarding.service")

ApplyStatus = Literal["applied", "no_template", "not_eligible", "no_tasks"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApplyResult:
    hire_id: str
    status: ApplyStatus
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    created: List[TaskInstance] = field(default_factory=list)
    reused: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.status == "applied"


class OnboardingService:
    """Entry points for applying workflows and driving task lifecycle."""

    def __init__(
        self,
        catalog: TemplateCatalogSource,
        task_store: TaskStore,
        hire_directory: HireDirectory,
        notifier: Notifier,
        lifecycle: TaskLifecycleManager,
        automation: Optional[AutomationEngine] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.catalog = catalog
        self.task_store = task_store
        self.hire_directory = hire_directory
        self.notifier = notifier
        self.lifecycle = lifecycle
        self.automation = automation
        self.clock = clock
        if automation is not None:
            lifecycle.add_completion_listener(automation.on_task_completed)

    @property
    def locks(self) -> HireLockRegistry:
        return self.lifecycle.locks

    async def get_hire(self, hire_id: str) -> HireProfile:
        hire = await self.hire_directory.get_hire(hire_id)
        if hire is None:
            raise NotFoundError("Hire", hire_id)
        return hire

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        template = await self.catalog.get_template(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        return template

    async def select_for_hire(self, hire: HireProfile) -> Optional[WorkflowTemplate]:
        return select_template(hire, await self.catalog.list_active_templates())

    # --- Apply ---

    async def apply_for_hire(self, hire_id: str, actor: str, notify: bool = True) -> ApplyResult:
        """Select the best template for the hire and apply it."""
        hire = await self.get_hire(hire_id)
        template = await self.select_for_hire(hire)
        if template is None:
            logger.info(f"Hire {hire_id}: no applicable workflow template")
            return ApplyResult(hire_id=hire_id, status="no_template")
        return await self.apply_template(hire, template, actor, notify=notify)

    async def apply_template(
        self,
        hire: HireProfile,
        template: WorkflowTemplate,
        actor: str,
        notify: bool = True,
        check_audience: bool = True,
    ) -> ApplyResult:
        """Materialize ``template`` for ``hire`` and persist the new tasks.

        Tasks the hire already has from the same template are not recreated.
        Returns ``not_eligible`` without side effects when the template's
        role/department targets exclude the hire.
        """
        if check_audience and not template_matches(template, hire):
            return ApplyResult(
                hire_id=hire.id, status="not_eligible",
                template_id=template.id, template_name=template.name,
            )

        async with self.locks.hold(hire.id):
            existing = await self.task_store.get_tasks_for_hire(hire.id)
            plan = plan_materialization(hire, template, actor, existing=existing, now=self.clock())

            # Left to right: dependency ids refer to instances created earlier
            stored_ids: Dict[str, str] = {}
            for instance in plan.tasks:
                planned_id = instance.id
                instance.dependencies = [stored_ids.get(dep, dep) for dep in instance.dependencies]
                instance.id = await self.task_store.create_task(instance)
                stored_ids[planned_id] = instance.id

            result = ApplyResult(
                hire_id=hire.id,
                status="applied" if plan.applicable_count else "no_tasks",
                template_id=template.id,
                template_name=template.name,
                created=plan.tasks,
                reused=len(plan.reused),
                skipped=plan.skipped,
            )
            if not plan.applicable_count:
                logger.info(f"Hire {hire.id}: template {template.id} has no applicable tasks")
                return result

            progress = await self.task_store.get_progress(hire.id)
            if progress is None or progress.template_id != template.id:
                progress = OnboardingProgress(
                    hire_id=hire.id,
                    template_id=template.id,
                    template_name=template.name,
                    started_at=self.clock(),
                    expected_completion_date=expected_completion_date(
                        hire, template, COMPLETION_BUFFER_DAYS, now=self.clock(),
                    ),
                )
                await self.task_store.save_progress(progress)
            await self.lifecycle.recompute_progress_locked(hire.id)

        for task_id, reason in plan.skipped:
            logger.info(f"Hire {hire.id}: task {task_id} skipped ({reason})")
        logger.info(
            f"Hire {hire.id}: applied {template.id} v{template.version} "
            f"({len(plan.tasks)} created, {len(plan.reused)} existing, {len(plan.skipped)} skipped)"
        )

        if notify and plan.tasks:
            try:
                await self.notifier.notify(
                    hire.id,
                    f"{template.name} Assigned",
                    f'Your onboarding workflow "{template.name}" has been assigned '
                    f"with {plan.applicable_count} tasks.",
                    "high",
                    kind="workflow_assigned",
                    dedup_key=f"assigned:{template.id}:v{template.version}:{hire.id}",
                )
            except Exception as e:
                logger.error(f"Hire {hire.id}: assignment notification failed: {e}")
        return result

    async def handle_hire_created(self, hire_id: str, actor: str) -> Optional[ApplyResult]:
        """Auto-trigger the best template for an active hire with no tasks, then run user_created rules."""
        hire = await self.get_hire(hire_id)
        result = None
        if hire.status == "active":
            template = await self.select_for_hire(hire)
            tasks = await self.task_store.get_tasks_for_hire(hire.id)
            if template is not None and template.auto_trigger and not tasks:
                result = await self.apply_template(hire, template, actor)

        if self.automation is not None:
            await self.automation.on_hire_created(hire)
        return result

    # --- Lifecycle passthrough ---

    async def complete_task(self, task_id: str, actor: str, note: Optional[str] = None) -> CompletionResult:
        return await self.lifecycle.complete(task_id, actor, note)

    async def get_progress(self, hire_id: str) -> OnboardingProgress:
        await self.get_hire(hire_id)
        progress = await self.task_store.get_progress(hire_id)
        return progress or OnboardingProgress(hire_id=hire_id)
