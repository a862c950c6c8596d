"""Automation rule engine.

Evaluates AutomationRules against live task state, either as a full scan
(run by the scheduler) or on explicit events (task completed, hire
created). Side effects are delegated to the Notifier and the lifecycle
manager; a failing action is logged and counted, never allowed to stop the
rest of the pass.

Re-entrancy: overdue actions fire only for the scan that performed the
pending/active -> overdue transition, deadline reminders carry a dedup key
the notifier uses to drop repeats, and follow-up tasks have a deterministic
template task id so they are never created twice.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .config import SYSTEM_ACTOR
from .errors import OnboardingError
from .interfaces import HireDirectory, Notifier, TaskStore
from .lifecycle import TaskLifecycleManager
from .logging_config import get_automation_logger
from .models import AutomationRule, HireProfile, RuleTrigger, TaskInstance
from .settings import DEADLINE_REMINDER_DAYS

logger = get_automation_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_until_due(task: TaskInstance, now: datetime) -> int:
    """Whole days from ``now`` to the start (00:00 UTC) of the due date, rounded up."""
    due_at = datetime.combine(task.due_date, time.min, tzinfo=timezone.utc)
    return math.ceil((due_at - now).total_seconds() / 86400)


def follow_up_key(rule: AutomationRule, source_id: str) -> str:
    return f"follow-up:{rule.id}:{source_id}"


@dataclass
class ScanReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    tasks_scanned: int = 0
    marked_overdue: List[str] = field(default_factory=list)
    notifications: int = 0
    escalations: int = 0
    reminders: int = 0
    follow_ups: int = 0
    status_updates: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "tasks_scanned": self.tasks_scanned,
            "marked_overdue": list(self.marked_overdue),
            "notifications": self.notifications,
            "escalations": self.escalations,
            "reminders": self.reminders,
            "follow_ups": self.follow_ups,
            "status_updates": self.status_updates,
            "errors": list(self.errors),
        }


class AutomationEngine:
    """Fires notify / escalate / follow-up / status actions for matching rules."""

    def __init__(
        self,
        rules: Iterable[AutomationRule],
        task_store: TaskStore,
        hire_directory: HireDirectory,
        notifier: Notifier,
        lifecycle: TaskLifecycleManager,
        clock: Callable[[], datetime] = _utcnow,
        actor: str = SYSTEM_ACTOR,
    ):
        # A list passed in is shared, so rule toggles reach every engine built on it
        self.rules: List[AutomationRule] = rules if isinstance(rules, list) else list(rules)
        self.task_store = task_store
        self.hire_directory = hire_directory
        self.notifier = notifier
        self.lifecycle = lifecycle
        self.clock = clock
        self.actor = actor
        self.enabled = True

    # --- Rule management ---

    def active_rules(self, trigger: RuleTrigger) -> List[AutomationRule]:
        return [r for r in self.rules if r.is_active and r.trigger == trigger]

    def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def set_rule_active(self, rule_id: str, is_active: bool) -> Optional[AutomationRule]:
        for idx, rule in enumerate(self.rules):
            if rule.id == rule_id:
                self.rules[idx] = rule.model_copy(update={"is_active": is_active})
                return self.rules[idx]
        return None

    # --- Scan ---

    async def scan(self) -> ScanReport:
        """One full pass over live tasks: overdue transitions and deadline reminders."""
        now = self.clock()
        report = ScanReport(started_at=now)
        if not self.enabled:
            report.finished_at = self.clock()
            return report

        overdue_rules = self.active_rules("task_overdue")
        deadline_rules = self.active_rules("deadline_approaching")
        hires: Dict[str, Optional[HireProfile]] = {}

        tasks = await self.task_store.list_all_active_tasks()
        report.tasks_scanned = len(tasks)
        today = now.date()

        for task in tasks:
            try:
                if task.status in ("pending", "active") and task.due_date < today:
                    transitioned = await self.lifecycle.mark_overdue(task.id)
                    if transitioned:
                        report.marked_overdue.append(task.id)
                        await self._fire_overdue(task, overdue_rules, hires, report)
                    continue

                if task.status == "pending" and deadline_rules:
                    await self._fire_deadline(task, deadline_rules, hires, now, report)
            except Exception as e:
                logger.error(f"Automation scan: task {task.id} failed: {e}")
                report.errors.append(f"{task.id}: {e}")

        report.finished_at = self.clock()
        logger.info(
            f"Automation scan: {report.tasks_scanned} tasks, "
            f"{len(report.marked_overdue)} overdue, {report.reminders} reminders, "
            f"{len(report.errors)} errors"
        )
        return report

    async def _fire_overdue(
        self,
        task: TaskInstance,
        rules: List[AutomationRule],
        hires: Dict[str, Optional[HireProfile]],
        report: ScanReport,
    ) -> None:
        hire = await self._get_hire(task.hire_id, hires)
        matched = [r for r in rules if r.matches(task, hire)]
        if not matched:
            return

        # Several rules may match one transition; notify and escalate once
        if any(r.actions.send_notification for r in matched):
            if await self._safe_notify(
                report,
                task.hire_id,
                "Task Overdue",
                f'Your task "{task.title}" is now overdue. Please complete it as soon as possible.',
                "high",
                kind="task_overdue",
                related_task_id=task.id,
                dedup_key=f"overdue:{task.id}:{task.due_date.isoformat()}",
            ):
                report.notifications += 1

        if any(r.actions.escalate_to_manager for r in matched):
            if hire is None or not hire.manager_id:
                logger.warning(f"Task {task.id}: no manager on record for hire {task.hire_id}, escalation skipped")
            elif await self._safe_notify(
                report,
                hire.manager_id,
                "Overdue Task Escalation",
                f'Task "{task.title}" for {hire.name or hire.id} is overdue (due {task.due_date.isoformat()}).',
                "high",
                kind="escalation",
                related_task_id=task.id,
                dedup_key=f"escalation:{task.id}:{task.due_date.isoformat()}",
            ):
                report.escalations += 1

        for rule in matched:
            await self._apply_follow_up_and_status(rule, task, report)

    async def _fire_deadline(
        self,
        task: TaskInstance,
        rules: List[AutomationRule],
        hires: Dict[str, Optional[HireProfile]],
        now: datetime,
        report: ScanReport,
    ) -> None:
        remaining = days_until_due(task, now)
        for rule in rules:
            threshold = rule.conditions.days_before_due
            if threshold is None:
                threshold = DEADLINE_REMINDER_DAYS
            if remaining != threshold:
                continue
            hire = await self._get_hire(task.hire_id, hires)
            if not rule.matches(task, hire):
                continue

            if rule.actions.send_notification:
                sent = await self._safe_notify(
                    report,
                    task.hire_id,
                    "Task Due Soon",
                    f'Reminder: Your task "{task.title}" is due in {threshold} days.',
                    "medium",
                    kind="deadline_reminder",
                    related_task_id=task.id,
                    dedup_key=f"deadline:{rule.id}:{task.id}:{task.due_date.isoformat()}",
                )
                if sent:
                    report.reminders += 1
            await self._apply_follow_up_and_status(rule, task, report)

    # --- Event triggers ---

    async def on_task_completed(self, task: TaskInstance) -> List[TaskInstance]:
        """Run task_completed rules for a task that just transitioned to completed."""
        if not self.enabled:
            return []
        rules = self.active_rules("task_completed")
        if not rules:
            return []

        report = ScanReport(started_at=self.clock())
        hire = await self._get_hire(task.hire_id, {})
        created: List[TaskInstance] = []
        for rule in rules:
            if not rule.matches(task, hire):
                continue
            follow_up = None
            if rule.actions.assign_follow_up_task:
                follow_up = await self._create_follow_up(rule, task.hire_id, task.id, report)
                if follow_up:
                    created.append(follow_up)
            if rule.actions.send_notification:
                if follow_up:
                    title, message = "Follow-up Task Assigned", (
                        f'You completed "{task.title}". Next: {follow_up.title}'
                    )
                else:
                    title, message = "Task Completed", f'Task "{task.title}" has been completed.'
                await self._safe_notify(
                    report, task.hire_id, title, message, "medium",
                    kind="task_completed", related_task_id=task.id,
                    dedup_key=f"completed:{rule.id}:{task.id}",
                )
            if rule.actions.update_task_status:
                logger.warning(
                    f"Rule {rule.id}: update_task_status is ignored for task_completed triggers"
                )
        return created

    async def on_hire_created(self, hire: HireProfile) -> List[TaskInstance]:
        """Run user_created rules for a newly created or activated hire."""
        if not self.enabled:
            return []
        report = ScanReport(started_at=self.clock())
        created: List[TaskInstance] = []
        for rule in self.active_rules("user_created"):
            if not rule.matches(None, hire):
                continue
            if rule.actions.send_notification:
                greeting = f"Welcome {hire.name}!" if hire.name else "Welcome!"
                await self._safe_notify(
                    report, hire.id, "Welcome Aboard",
                    f"{greeting} Your onboarding journey has begun.",
                    "high", kind="welcome", dedup_key=f"welcome:{rule.id}:{hire.id}",
                )
            if rule.actions.assign_follow_up_task:
                follow_up = await self._create_follow_up(rule, hire.id, "hire", report)
                if follow_up:
                    created.append(follow_up)
        return created

    # --- Actions ---

    async def _apply_follow_up_and_status(
        self,
        rule: AutomationRule,
        task: TaskInstance,
        report: ScanReport,
    ) -> None:
        if rule.actions.assign_follow_up_task:
            await self._create_follow_up(rule, task.hire_id, task.id, report)

        target = rule.actions.update_task_status
        if not target:
            return
        try:
            if target == "active":
                await self.lifecycle.activate(task.id)
            elif target == "completed":
                await self.lifecycle.complete(task.id, self.actor, note=f"Completed by rule {rule.name}")
            report.status_updates += 1
        except OnboardingError as e:
            logger.warning(f"Rule {rule.id}: status update on task {task.id} skipped: {e}")
            report.errors.append(f"{task.id}: {e}")

    async def _create_follow_up(
        self,
        rule: AutomationRule,
        hire_id: str,
        source_id: str,
        report: ScanReport,
    ) -> Optional[TaskInstance]:
        key = follow_up_key(rule, source_id)
        try:
            async with self.lifecycle.locks.hold(hire_id):
                existing = await self.task_store.get_tasks_for_hire(hire_id)
                if any(t.template_task_id == key for t in existing):
                    return None
                follow_up = TaskInstance(
                    id=str(uuid.uuid4()),
                    hire_id=hire_id,
                    template_task_id=key,
                    title=rule.actions.assign_follow_up_task,
                    description=f"Assigned by automation rule: {rule.name}",
                    category="other",
                    priority="medium",
                    status="pending",
                    due_date=self.clock().date(),
                    assigned_by=self.actor,
                    notes=f"Follow-up created by rule {rule.id}",
                    order=len(existing),
                )
                follow_up.id = await self.task_store.create_task(follow_up)
            await self.lifecycle.recompute_progress(hire_id)
        except Exception as e:
            logger.error(f"Rule {rule.id}: follow-up for hire {hire_id} failed: {e}")
            report.errors.append(f"follow-up {key}: {e}")
            return None

        report.follow_ups += 1
        logger.info(f"Rule {rule.id}: follow-up task {follow_up.id} assigned to hire {hire_id}")
        return follow_up

    async def _safe_notify(self, report: ScanReport, user_id: str, title: str, message: str,
                           priority: str, **kwargs) -> bool:
        try:
            return await self.notifier.notify(user_id, title, message, priority, **kwargs)
        except Exception as e:
            logger.error(f"Notification to {user_id} failed ({kwargs.get('kind')}): {e}")
            report.errors.append(f"notify {user_id}: {e}")
            return False

    async def _get_hire(
        self,
        hire_id: str,
        cache: Dict[str, Optional[HireProfile]],
    ) -> Optional[HireProfile]:
        if hire_id not in cache:
            try:
                cache[hire_id] = await self.hire_directory.get_hire(hire_id)
            except Exception as e:
                logger.error(f"Hire {hire_id}: lookup failed: {e}")
                cache[hire_id] = None
        return cache[hire_id]
