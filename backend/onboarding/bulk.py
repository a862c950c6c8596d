"""Bulk operations across many hires.

Each hire is processed independently: a failure is recorded in that hire's
result and never aborts its siblings. Hires run concurrently (bounded by a
semaphore); per-hire serialization comes from the hire locks the service
and lifecycle manager already take. With a ``scope``, each hire gets its own
service (and so its own transaction), which is what makes a hire atomic.

Cancellation is cooperative and checked before a hire starts: hires that
have not started when ``cancel_event`` is set report ``cancelled``, work
already done for other hires is kept.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import (
    AsyncContextManager,
    AsyncGenerator,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Sequence,
)

from .errors import OnboardingError
from .models import OPEN_STATUSES, WorkflowTemplate
from .service import OnboardingService
from .settings import BULK_CONCURRENCY, OVERDUE_EXTENSION_DAYS

logger = logging.getLogger("onboarding.bulk")

BulkOperation = Literal["apply_workflow", "mark_completed", "send_reminder", "reset_overdue"]
HireStatus = Literal["succeeded", "failed", "skipped", "cancelled"]

BULK_OPERATIONS = ("apply_workflow", "mark_completed", "send_reminder", "reset_overdue")

# Completing a task can create automation follow-ups; re-read a few times to finish them too
_MAX_COMPLETION_PASSES = 3

ResultCallback = Callable[["HireResult"], Awaitable[None]]
# Opens an isolated unit of work (e.g. its own DB session) for one hire
ServiceScope = Callable[[], AsyncContextManager[OnboardingService]]
HireHandler = Callable[[OnboardingService, str], Awaitable["HireResult"]]


@dataclass
class HireResult:
    hire_id: str
    status: HireStatus
    detail: str = ""
    tasks_affected: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "hire_id": self.hire_id,
            "status": self.status,
            "detail": self.detail,
            "tasks_affected": self.tasks_affected,
            "error": self.error,
        }


@dataclass
class BulkReport:
    operation: str
    results: List[HireResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def count(self, status: HireStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self.count("succeeded")

    @property
    def failed(self) -> int:
        return self.count("failed")

    @property
    def skipped(self) -> int:
        return self.count("skipped")

    @property
    def cancelled(self) -> int:
        return self.count("cancelled")

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0

    @property
    def summary(self) -> str:
        return f"{self.succeeded} of {len(self.results)} hires updated"

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "total": len(self.results),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "partial_failure": self.partial_failure,
            "summary": self.summary,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results],
        }


class BulkOperationsCoordinator:
    """Runs one operation over a list of hires with per-hire isolation."""

    def __init__(
        self,
        service: OnboardingService,
        concurrency: int = BULK_CONCURRENCY,
        scope: Optional[ServiceScope] = None,
    ):
        self.service = service
        self.concurrency = max(1, concurrency)
        self.scope = scope

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncGenerator[OnboardingService, None]:
        if self.scope is None:
            yield self.service
        else:
            async with self.scope() as service:
                yield service

    # --- Operations ---

    async def apply_workflow(
        self,
        template_id: str,
        hire_ids: Sequence[str],
        actor: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkReport:
        """Apply one template to every hire; hires outside its audience are skipped.

        An unknown template id raises NotFoundError before any hire is touched.
        """
        template = await self.service.get_template(template_id)

        async def handle(service: OnboardingService, hire_id: str) -> HireResult:
            return await _apply_one(service, hire_id, template, actor)

        return await self._run("apply_workflow", hire_ids, handle, cancel_event, on_result)

    async def mark_completed(
        self,
        hire_ids: Sequence[str],
        actor: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkReport:
        """Complete every open task of each hire, in materialization order."""

        async def handle(service: OnboardingService, hire_id: str) -> HireResult:
            return await _complete_all(service, hire_id, actor)

        return await self._run("mark_completed", hire_ids, handle, cancel_event, on_result)

    async def send_reminder(
        self,
        hire_ids: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkReport:
        """Notify each hire of how many onboarding tasks are still open."""
        return await self._run("send_reminder", hire_ids, _remind, cancel_event, on_result)

    async def reset_overdue(
        self,
        hire_ids: Sequence[str],
        extension_days: int = OVERDUE_EXTENSION_DAYS,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkReport:
        """Move each hire's overdue tasks back to pending, due ``extension_days`` from today."""

        async def handle(service: OnboardingService, hire_id: str) -> HireResult:
            return await _reset_one(service, hire_id, extension_days)

        return await self._run("reset_overdue", hire_ids, handle, cancel_event, on_result)

    async def run_operation(
        self,
        operation: BulkOperation,
        hire_ids: Sequence[str],
        *,
        actor: str,
        template_id: Optional[str] = None,
        extension_days: int = OVERDUE_EXTENSION_DAYS,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkReport:
        """Dispatch by operation name (used by the Temporal activity)."""
        if operation == "apply_workflow":
            if not template_id:
                raise ValueError("apply_workflow requires a template_id")
            return await self.apply_workflow(template_id, hire_ids, actor, cancel_event, on_result)
        if operation == "mark_completed":
            return await self.mark_completed(hire_ids, actor, cancel_event, on_result)
        if operation == "send_reminder":
            return await self.send_reminder(hire_ids, cancel_event, on_result)
        if operation == "reset_overdue":
            return await self.reset_overdue(hire_ids, extension_days, cancel_event, on_result)
        raise ValueError(f"Unknown bulk operation: {operation}")

    # --- Runner ---

    async def _run(
        self,
        operation: str,
        hire_ids: Sequence[str],
        handler: HireHandler,
        cancel_event: Optional[asyncio.Event],
        on_result: Optional[ResultCallback],
    ) -> BulkReport:
        report = BulkReport(operation=operation, started_at=datetime.now(timezone.utc))
        # Duplicate ids would race each other for the same hire lock
        unique_ids = list(dict.fromkeys(hire_ids))
        semaphore = asyncio.Semaphore(self.concurrency)

        logger.info(f"Bulk {operation}: starting for {len(unique_ids)} hires")

        async def guarded(hire_id: str) -> HireResult:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    result = HireResult(hire_id, "cancelled", detail="operation cancelled")
                else:
                    try:
                        async with self._unit_of_work() as service:
                            result = await handler(service, hire_id)
                    except Exception as e:
                        logger.error(f"Bulk {operation}: hire {hire_id} failed: {e}")
                        result = HireResult(hire_id, "failed", error=str(e))
            if on_result is not None:
                try:
                    await on_result(result)
                except Exception as e:
                    logger.error(f"Bulk {operation}: result callback for hire {hire_id} failed: {e}")
            return result

        report.results = list(await asyncio.gather(*(guarded(h) for h in unique_ids)))
        report.finished_at = datetime.now(timezone.utc)

        logger.info(
            f"Bulk {operation}: {report.summary} "
            f"({report.failed} failed, {report.skipped} skipped, {report.cancelled} cancelled)"
        )
        return report


# --- Per-hire handlers ---


async def _apply_one(
    service: OnboardingService,
    hire_id: str,
    template: WorkflowTemplate,
    actor: str,
) -> HireResult:
    hire = await service.get_hire(hire_id)
    result = await service.apply_template(hire, template, actor)
    if result.status == "not_eligible":
        return HireResult(hire_id, "skipped", detail=f"not in the audience of {template.name}")
    if result.status == "no_tasks":
        return HireResult(hire_id, "skipped", detail=f"no tasks of {template.name} apply to this hire")
    detail = f"{len(result.created)} tasks created"
    if result.reused:
        detail += f", {result.reused} already assigned"
    return HireResult(hire_id, "succeeded", detail=detail, tasks_affected=len(result.created))


async def _complete_all(service: OnboardingService, hire_id: str, actor: str) -> HireResult:
    await service.get_hire(hire_id)
    completed = 0
    for _ in range(_MAX_COMPLETION_PASSES):
        tasks = await service.task_store.get_tasks_for_hire(hire_id)
        open_tasks = sorted((t for t in tasks if t.status != "completed"), key=lambda t: t.order)
        if not open_tasks:
            break
        for task in open_tasks:
            outcome = await service.lifecycle.complete(task.id, actor, note="Completed via bulk operation")
            if outcome.changed:
                completed += 1

    if completed == 0:
        return HireResult(hire_id, "skipped", detail="no open tasks")
    return HireResult(hire_id, "succeeded", detail=f"{completed} tasks completed", tasks_affected=completed)


async def _remind(service: OnboardingService, hire_id: str) -> HireResult:
    await service.get_hire(hire_id)
    tasks = await service.task_store.get_tasks_for_hire(hire_id)
    open_count = sum(1 for t in tasks if t.status in OPEN_STATUSES)
    if open_count == 0:
        return HireResult(hire_id, "skipped", detail="no pending tasks")

    noun = "task" if open_count == 1 else "tasks"
    await service.notifier.notify(
        hire_id,
        "Onboarding Reminder",
        f"You have {open_count} pending onboarding {noun}. Please log in to complete them.",
        "medium",
        kind="reminder",
    )
    return HireResult(hire_id, "succeeded", detail=f"reminded of {open_count} {noun}", tasks_affected=open_count)


async def _reset_one(service: OnboardingService, hire_id: str, extension_days: int) -> HireResult:
    await service.get_hire(hire_id)
    lifecycle = service.lifecycle
    new_due = lifecycle.today() + timedelta(days=extension_days)
    tasks = await service.task_store.get_tasks_for_hire(hire_id)
    overdue = [t for t in tasks if t.status == "overdue"]
    if not overdue:
        return HireResult(hire_id, "skipped", detail="no overdue tasks")

    reset = 0
    errors: Dict[str, str] = {}
    for task in overdue:
        try:
            await lifecycle.reset(task.id, new_due)
            reset += 1
        except OnboardingError as e:
            # Another actor moved it since we read the list
            errors[task.id] = str(e)

    if reset == 0:
        return HireResult(hire_id, "failed", error="; ".join(errors.values()))
    return HireResult(
        hire_id, "succeeded",
        detail=f"{reset} tasks due {new_due.isoformat()}",
        tasks_affected=reset,
    )
