"""Tests for bulk operations across hires (onboarding/bulk.py)."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date

import pytest

from onboarding.bulk import BulkOperationsCoordinator
from onboarding.errors import NotFoundError
from onboarding.models import HireProfile, TaskTemplate, WorkflowTemplate


def _hire(hire_id: str, role: str = "staff") -> HireProfile:
    return HireProfile(id=hire_id, name=hire_id, role=role, department="Engineering",
                       start_date=date(2024, 1, 1))


def _staff_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id="staff-basics",
        name="Staff Basics",
        role_targets=["staff"],
        tasks=[
            TaskTemplate(id="a", title="Accounts", category="setup"),
            TaskTemplate(id="b", title="Benefits", category="documentation", days_from_start=3,
                         dependencies=["a"]),
        ],
    )


@pytest.fixture
def staffed(harness):
    harness.publish(_staff_template())
    for hire_id in ("A", "B", "C"):
        harness.add_hire(_hire(hire_id))
    return harness


@pytest.mark.asyncio
class TestApplyWorkflow:

    async def test_failure_for_one_hire_does_not_affect_others(self, staffed):
        staffed.tasks.fail_on_create_for = {"B"}

        report = await staffed.bulk.apply_workflow("staff-basics", ["A", "B", "C"], "hr-admin")

        by_hire = {r.hire_id: r for r in report.results}
        assert by_hire["A"].status == "succeeded"
        assert by_hire["C"].status == "succeeded"
        assert by_hire["B"].status == "failed"
        assert "storage unavailable" in by_hire["B"].error

        assert len(await staffed.tasks.get_tasks_for_hire("A")) == 2
        assert len(await staffed.tasks.get_tasks_for_hire("C")) == 2
        assert report.partial_failure
        assert report.summary == "2 of 3 hires updated"

    async def test_hire_outside_audience_is_skipped(self, staffed):
        staffed.add_hire(_hire("I", role="intern"))

        report = await staffed.bulk.apply_workflow("staff-basics", ["A", "I"], "hr-admin")

        by_hire = {r.hire_id: r for r in report.results}
        assert by_hire["A"].status == "succeeded"
        assert by_hire["I"].status == "skipped"
        assert await staffed.tasks.get_tasks_for_hire("I") == []
        assert not report.partial_failure

    async def test_unknown_hire_fails_only_that_hire(self, staffed):
        report = await staffed.bulk.apply_workflow("staff-basics", ["A", "ghost"], "hr-admin")
        by_hire = {r.hire_id: r for r in report.results}
        assert by_hire["ghost"].status == "failed"
        assert "not found" in by_hire["ghost"].error
        assert by_hire["A"].status == "succeeded"

    async def test_unknown_template_raises_before_any_hire(self, staffed):
        with pytest.raises(NotFoundError):
            await staffed.bulk.apply_workflow("missing", ["A", "C"], "hr-admin")
        assert staffed.tasks.tasks == {}

    async def test_reapplying_reuses_existing_tasks(self, staffed):
        await staffed.bulk.apply_workflow("staff-basics", ["A"], "hr-admin")
        report = await staffed.bulk.apply_workflow("staff-basics", ["A"], "hr-admin")

        assert report.results[0].status == "succeeded"
        assert report.results[0].tasks_affected == 0
        assert "2 already assigned" in report.results[0].detail
        assert len(await staffed.tasks.get_tasks_for_hire("A")) == 2

    async def test_duplicate_ids_processed_once(self, staffed):
        report = await staffed.bulk.apply_workflow("staff-basics", ["A", "A", "C"], "hr-admin")
        assert [r.hire_id for r in report.results] == ["A", "C"]
        assert len(await staffed.tasks.get_tasks_for_hire("A")) == 2

    async def test_results_reported_through_callback(self, staffed):
        seen = []

        async def on_result(result):
            seen.append(result.hire_id)

        await staffed.bulk.apply_workflow("staff-basics", ["A", "C"], "hr-admin", on_result=on_result)
        assert sorted(seen) == ["A", "C"]


@pytest.mark.asyncio
class TestCancellation:

    async def test_unstarted_hires_report_cancelled(self, staffed):
        cancel = asyncio.Event()
        coordinator = BulkOperationsCoordinator(staffed.service, concurrency=1)

        async def cancel_after_first(result):
            cancel.set()

        report = await coordinator.apply_workflow(
            "staff-basics", ["A", "B", "C"], "hr-admin",
            cancel_event=cancel, on_result=cancel_after_first,
        )

        statuses = [r.status for r in report.results]
        assert statuses == ["succeeded", "cancelled", "cancelled"]
        # Work already done is kept
        assert len(await staffed.tasks.get_tasks_for_hire("A")) == 2
        assert await staffed.tasks.get_tasks_for_hire("B") == []
        assert report.cancelled == 2

    async def test_cancel_before_start_touches_nothing(self, staffed):
        cancel = asyncio.Event()
        cancel.set()
        report = await staffed.bulk.mark_completed(["A", "C"], "hr-admin", cancel_event=cancel)
        assert report.cancelled == 2
        assert report.succeeded == 0


@pytest.mark.asyncio
class TestOtherOperations:

    async def test_mark_completed_finishes_dependency_chain(self, staffed):
        await staffed.bulk.apply_workflow("staff-basics", ["A", "C"], "hr-admin")

        report = await staffed.bulk.mark_completed(["A", "C"], "hr-lead")

        assert report.succeeded == 2
        assert all(r.tasks_affected == 2 for r in report.results)
        tasks = await staffed.tasks.get_tasks_for_hire("A")
        assert {t.status for t in tasks} == {"completed"}
        assert {t.completed_by for t in tasks} == {"hr-lead"}
        assert (await staffed.service.get_progress("A")).completion_percentage == 100

    async def test_mark_completed_skips_hire_with_nothing_open(self, staffed):
        report = await staffed.bulk.mark_completed(["A"], "hr-lead")
        assert report.results[0].status == "skipped"

    async def test_send_reminder_counts_open_tasks(self, staffed):
        await staffed.bulk.apply_workflow("staff-basics", ["A"], "hr-admin")
        a_first = await staffed.task_for("A", "a")
        await staffed.lifecycle.complete(a_first.id, "A")

        report = await staffed.bulk.send_reminder(["A", "C"])

        by_hire = {r.hire_id: r for r in report.results}
        assert by_hire["A"].status == "succeeded"
        assert by_hire["C"].status == "skipped"
        reminder = staffed.notifier.of_kind("reminder", "A")[0]
        assert reminder.message == "You have 1 pending onboarding task. Please log in to complete them."

    async def test_reset_overdue_moves_due_date(self, staffed, clock):
        await staffed.bulk.apply_workflow("staff-basics", ["A"], "hr-admin")
        clock.advance(days=10)
        await staffed.automation.scan()
        assert {t.status for t in await staffed.tasks.get_tasks_for_hire("A")} == {"overdue"}

        report = await staffed.bulk.reset_overdue(["A", "C"], extension_days=7)

        by_hire = {r.hire_id: r for r in report.results}
        assert by_hire["A"].tasks_affected == 2
        assert by_hire["C"].status == "skipped"
        tasks = await staffed.tasks.get_tasks_for_hire("A")
        assert {t.status for t in tasks} == {"pending"}
        assert {t.due_date for t in tasks} == {date(2024, 1, 18)}

    async def test_run_operation_dispatch(self, staffed):
        report = await staffed.bulk.run_operation("apply_workflow", ["A"], actor="hr-admin",
                                                  template_id="staff-basics")
        assert report.operation == "apply_workflow"
        with pytest.raises(ValueError):
            await staffed.bulk.run_operation("apply_workflow", ["A"], actor="hr-admin")
        with pytest.raises(ValueError):
            await staffed.bulk.run_operation("archive", ["A"], actor="hr-admin")


@pytest.mark.asyncio
class TestScopedUnitOfWork:

    async def test_each_hire_opens_its_own_scope(self, staffed):
        opened = []

        @asynccontextmanager
        async def scope():
            opened.append(True)
            yield staffed.service

        coordinator = BulkOperationsCoordinator(staffed.service, concurrency=2, scope=scope)
        report = await coordinator.send_reminder(["A", "B", "C"])

        assert len(opened) == 3
        assert report.skipped == 3

    async def test_scope_failure_is_isolated(self, staffed):
        @asynccontextmanager
        async def scope():
            raise RuntimeError("no connection")
            yield staffed.service  # pragma: no cover

        coordinator = BulkOperationsCoordinator(staffed.service, scope=scope)
        report = await coordinator.send_reminder(["A", "C"])
        assert report.failed == 2
        assert report.summary == "0 of 2 hires updated"
