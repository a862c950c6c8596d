"""Task lifecycle manager.

State machine::

    pending --activate--> active --complete--> completed
       |                    |
       +----(past due)------+--> overdue --activate--> active
    overdue/completed --reset--> pending

Every transition re-reads the task from the store under the hire's lock and
writes with an expected-status guard, so repeating an operation (or two
actors racing on the same task) ends in the same state as doing it once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional

from .errors import DependencyBlockedError, InvalidTransitionError, NotFoundError
from .interfaces import HireDirectory, Notifier, TaskStore
from .locks import HireLockRegistry
from .models import OnboardingProgress, TaskInstance

logger = logging.getLogger("onboarding.lifecycle")

CompletionListener = Callable[[TaskInstance], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def completion_percentage(tasks: Iterable[TaskInstance]) -> int:
    """completed / total * 100, rounded half up; 0 for an empty task set."""
    tasks = list(tasks)
    total = len(tasks)
    if total == 0:
        return 0
    completed = sum(1 for t in tasks if t.status == "completed")
    # Integer form of floor(x + 0.5) avoids float ties like 12.5
    return (completed * 200 + total) // (2 * total)


@dataclass
class ProgressUpdate:
    hire_id: str
    percentage: int
    total: int
    completed: int
    workflow_finished: bool = False


@dataclass
class CompletionResult:
    task: TaskInstance
    progress: int
    changed: bool
    workflow_finished: bool = False


class TaskLifecycleManager:
    """Owns status transitions of task instances and the hire's aggregate progress."""

    def __init__(
        self,
        task_store: TaskStore,
        notifier: Notifier,
        hire_directory: Optional[HireDirectory] = None,
        locks: Optional[HireLockRegistry] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.task_store = task_store
        self.notifier = notifier
        self.hire_directory = hire_directory
        self.locks = locks or HireLockRegistry()
        self.clock = clock
        self._completion_listeners: List[CompletionListener] = []

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a coroutine called after a task actually transitions to completed."""
        self._completion_listeners.append(listener)

    # --- Helpers ---

    async def _load(self, task_id: str) -> TaskInstance:
        task = await self.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def blocking_dependencies(self, task: TaskInstance) -> List[str]:
        """Ids of dependencies that exist and are not completed yet."""
        blocking = []
        for dep_id in task.dependencies:
            dep = await self.task_store.get_task(dep_id)
            if dep is not None and dep.status != "completed":
                blocking.append(dep_id)
        return blocking

    def today(self) -> date:
        return self.clock().date()

    # --- Transitions ---

    async def activate(self, task_id: str, new_due_date: Optional[date] = None) -> TaskInstance:
        """pending|overdue -> active. No-op for active or completed tasks."""
        task = await self._load(task_id)
        async with self.locks.hold(task.hire_id):
            task = await self._load(task_id)
            if task.status in ("active", "completed"):
                return task

            blocking = await self.blocking_dependencies(task)
            if blocking:
                raise DependencyBlockedError(task_id, blocking)

            fields = {"due_date": new_due_date} if new_due_date else None
            changed = await self.task_store.update_task_status(
                task_id, "active", fields, expected=(task.status,),
            )
            if changed:
                logger.info(f"Task {task_id}: {task.status} -> active")
            return await self._load(task_id)

    async def complete(
        self,
        task_id: str,
        actor: str,
        note: Optional[str] = None,
    ) -> CompletionResult:
        """Any open status -> completed, then recompute the hire's progress.

        Completing an already completed task returns ``changed=False`` and
        leaves everything untouched.
        """
        task = await self._load(task_id)
        async with self.locks.hold(task.hire_id):
            task = await self._load(task_id)
            if task.status == "completed":
                tasks = await self.task_store.get_tasks_for_hire(task.hire_id)
                return CompletionResult(task, completion_percentage(tasks), changed=False)

            blocking = await self.blocking_dependencies(task)
            if blocking:
                raise DependencyBlockedError(task_id, blocking)

            notes = task.notes
            if note:
                notes = f"{notes}\n{actor}: {note}" if notes else f"{actor}: {note}"

            changed = await self.task_store.update_task_status(
                task_id,
                "completed",
                {"completed_date": self.clock(), "completed_by": actor, "notes": notes},
                expected=("pending", "active", "overdue"),
            )
            if not changed:
                # Lost a race with another completion
                task = await self._load(task_id)
                tasks = await self.task_store.get_tasks_for_hire(task.hire_id)
                return CompletionResult(task, completion_percentage(tasks), changed=False)

            update = await self.recompute_progress_locked(task.hire_id)
            task = await self._load(task_id)

        logger.info(
            f"Task {task_id} completed by {actor} "
            f"({update.percentage}% overall for hire {task.hire_id})"
        )
        await self._notify_unblocked(task)
        for listener in self._completion_listeners:
            try:
                await listener(task)
            except Exception as e:
                logger.error(f"Task {task_id}: completion listener failed: {e}")

        return CompletionResult(
            task, update.percentage, changed=True, workflow_finished=update.workflow_finished,
        )

    async def mark_overdue(self, task_id: str) -> bool:
        """pending|active with a past due date -> overdue.

        Returns True only for the call that performed the transition.
        """
        task = await self._load(task_id)
        if not self._is_past_due(task):
            return False
        async with self.locks.hold(task.hire_id):
            task = await self._load(task_id)
            if not self._is_past_due(task):
                return False
            changed = await self.task_store.update_task_status(
                task_id, "overdue", expected=("pending", "active"),
            )
        if changed:
            logger.info(f"Task {task_id}: marked overdue (due {task.due_date})")
        return changed

    def _is_past_due(self, task: TaskInstance) -> bool:
        return task.status in ("pending", "active") and task.due_date < self.today()

    async def reset(self, task_id: str, new_due_date: date) -> TaskInstance:
        """overdue|completed -> pending with a new due date."""
        task = await self._load(task_id)
        async with self.locks.hold(task.hire_id):
            task = await self._load(task_id)
            if task.status not in ("overdue", "completed"):
                raise InvalidTransitionError(
                    task_id, task.status, "pending", "only overdue or completed tasks can be reset",
                )
            was_completed = task.status == "completed"
            await self.task_store.update_task_status(
                task_id,
                "pending",
                {"due_date": new_due_date, "completed_date": None, "completed_by": None},
                expected=(task.status,),
            )
            if was_completed:
                await self.recompute_progress_locked(task.hire_id)
            logger.info(f"Task {task_id}: {task.status} -> pending, due {new_due_date}")
            return await self._load(task_id)

    async def delete(self, task_id: str) -> ProgressUpdate:
        """Administrative removal; the hire's progress is recomputed."""
        task = await self._load(task_id)
        async with self.locks.hold(task.hire_id):
            await self.task_store.delete_task(task_id)
            logger.info(f"Task {task_id}: deleted from hire {task.hire_id}")
            return await self.recompute_progress_locked(task.hire_id)

    async def recompute_progress(self, hire_id: str) -> ProgressUpdate:
        async with self.locks.hold(hire_id):
            return await self.recompute_progress_locked(hire_id)

    # --- Progress ---

    async def recompute_progress_locked(self, hire_id: str) -> ProgressUpdate:
        tasks = await self.task_store.get_tasks_for_hire(hire_id)
        percentage = completion_percentage(tasks)
        completed = sum(1 for t in tasks if t.status == "completed")
        update = ProgressUpdate(hire_id, percentage, total=len(tasks), completed=completed)

        now = self.clock()
        progress = await self.task_store.get_progress(hire_id)
        if progress is None:
            progress = OnboardingProgress(hire_id=hire_id, started_at=now)

        if tasks and percentage >= 100:
            await self.task_store.save_progress(
                progress.model_copy(update={"completion_percentage": 100})
            )
            update.workflow_finished = await self.task_store.mark_progress_finished(hire_id, now)
        else:
            await self.task_store.save_progress(progress.model_copy(update={
                "completion_percentage": percentage,
                "status": "in_progress",
                "completed_at": None,
            }))

        if update.workflow_finished:
            await self._notify_finished(hire_id, progress)
        return update

    async def _notify_finished(self, hire_id: str, progress: OnboardingProgress) -> None:
        workflow_name = progress.template_name or "onboarding"
        try:
            await self.notifier.notify(
                hire_id,
                "Onboarding Complete! 🎉",
                "Congratulations! You have successfully completed your onboarding process.",
                "high",
                kind="onboarding_complete",
            )
            hire = await self.hire_directory.get_hire(hire_id) if self.hire_directory else None
            if hire and hire.manager_id:
                await self.notifier.notify(
                    hire.manager_id,
                    "Onboarding Complete",
                    f"{hire.name or hire_id} has completed the {workflow_name} workflow.",
                    "medium",
                    kind="onboarding_complete",
                )
        except Exception as e:
            logger.error(f"Hire {hire_id}: completion notification failed: {e}")
        logger.info(f"Hire {hire_id}: {workflow_name} finished")

    async def _notify_unblocked(self, completed: TaskInstance) -> None:
        """Tell the hire about pending tasks whose last open dependency just completed."""
        try:
            tasks = await self.task_store.get_tasks_for_hire(completed.hire_id)
            by_id = {t.id: t for t in tasks}
            for task in tasks:
                if task.status != "pending" or completed.id not in task.dependencies:
                    continue
                if any(by_id[d].status != "completed" for d in task.dependencies if d in by_id):
                    continue
                await self.notifier.notify(
                    task.hire_id,
                    "New Onboarding Task",
                    f"New task available: {task.title}",
                    "high" if task.priority in ("high", "critical") else "medium",
                    kind="task_assigned",
                    related_task_id=task.id,
                    dedup_key=f"unblocked:{task.id}",
                )
        except Exception as e:
            logger.error(f"Task {completed.id}: unblocked-task notification failed: {e}")
