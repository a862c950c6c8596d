"""Unit tests for the bulk job Temporal activity and its helpers.

Tests cover:
- _push_event (HTTP push with error handling)
- _periodic_heartbeat (heartbeat loop)
- state_sync helpers against the in-memory database
- execute_bulk_operation_activity (engine over in-memory fakes, DB helpers mocked)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import app.database as db_module
from app.repositories.bulk_job import BulkJobRepository
from onboarding.bulk import HireResult
from onboarding.models import HireProfile, TaskTemplate, WorkflowTemplate
from onboarding.temporal.bulk_activities import execute_bulk_operation_activity
from onboarding.temporal.bulk_workflow import activity_timeout
from onboarding.temporal.sse_events import _periodic_heartbeat, _push_event
from onboarding.temporal.state_sync import (
    _record_hire_result,
    _remaining_hire_ids,
    _update_job_status,
)

MODULE = "onboarding.temporal.bulk_activities"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _activity_mock(attempt: int = 1) -> MagicMock:
    mock = MagicMock()
    mock.info.return_value = SimpleNamespace(attempt=attempt)
    return mock


@asynccontextmanager
async def _fake_session_ctx():
    yield MagicMock()


@pytest.fixture
def staffed(harness):
    harness.publish(WorkflowTemplate(
        id="staff-basics",
        name="Staff Basics",
        role_targets=["staff"],
        tasks=[TaskTemplate(id="a", title="Accounts"), TaskTemplate(id="b", title="Benefits")],
    ))
    for hire_id in ("A", "B", "C"):
        harness.add_hire(HireProfile(id=hire_id, role="staff", start_date=date(2024, 1, 1)))
    return harness


@pytest.fixture
def worker_env(staffed):
    """Patch the activity's DB and Temporal touch points; the engine runs on fakes."""
    context = SimpleNamespace(bulk=staffed.bulk)
    mocks = SimpleNamespace(
        activity=_activity_mock(),
        push=AsyncMock(),
        update_status=AsyncMock(return_value=True),
        record=AsyncMock(return_value=True),
        remaining=AsyncMock(),
    )
    with patch(f"{MODULE}.activity", mocks.activity), \
            patch(f"{MODULE}._push_event", mocks.push), \
            patch(f"{MODULE}._update_job_status", mocks.update_status), \
            patch(f"{MODULE}._record_hire_result", mocks.record), \
            patch(f"{MODULE}._remaining_hire_ids", mocks.remaining), \
            patch("app.database.get_session_ctx", _fake_session_ctx), \
            patch("app.dependencies.build_context", MagicMock(return_value=context)):
        yield mocks


def _pushed_types(push_mock: AsyncMock) -> list:
    return [c.args[1] for c in push_mock.await_args_list]


# ---------------------------------------------------------------------------
# 1. _push_event / _periodic_heartbeat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPushEvent:

    async def test_posts_to_internal_endpoint(self):
        client = MagicMock()
        client.post = AsyncMock(return_value=MagicMock(status_code=200))
        with patch("onboarding.temporal.sse_events._get_http_client", AsyncMock(return_value=client)):
            await _push_event("job:bulk_1", "hire_done", {"hire_id": "A"})

        url = client.post.call_args.args[0]
        assert url.endswith("/api/internal/events/job:bulk_1")
        assert client.post.call_args.kwargs["json"] == {
            "event_type": "hire_done", "data": {"hire_id": "A"},
        }

    async def test_swallows_errors(self):
        client = MagicMock()
        client.post = AsyncMock(side_effect=ConnectionError("connection refused"))
        with patch("onboarding.temporal.sse_events._get_http_client", AsyncMock(return_value=client)):
            # Should NOT raise
            await _push_event("job:bulk_1", "hire_done", {})


@pytest.mark.asyncio
class TestPeriodicHeartbeat:

    async def test_stops_when_heartbeat_fails(self):
        with patch("onboarding.temporal.sse_events.activity") as mock_activity:
            mock_activity.heartbeat.side_effect = RuntimeError("not in activity")
            await asyncio.wait_for(_periodic_heartbeat("bulk_1", interval_seconds=0.01), timeout=1)
            mock_activity.heartbeat.assert_called_once_with("alive:job:bulk_1")

    async def test_runs_until_cancelled(self):
        with patch("onboarding.temporal.sse_events.activity") as mock_activity:
            task = asyncio.create_task(_periodic_heartbeat("bulk_1", interval_seconds=0.01))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert mock_activity.heartbeat.call_count >= 1


# ---------------------------------------------------------------------------
# 2. state_sync against the in-memory database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def worker_db(test_engine):
    """Point get_session_ctx() at the test engine, as the worker process would use it."""
    original_factory = db_module.async_session_factory
    db_module.async_session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    async with db_module.get_session_ctx() as session:
        await BulkJobRepository(session).create("bulk_1", "send_reminder", ["A", "B", "C"], actor="hr")
    try:
        yield
    finally:
        db_module.async_session_factory = original_factory


@pytest.mark.asyncio
class TestStateSync:

    async def test_record_and_remaining(self, worker_db):
        assert await _record_hire_result("bulk_1", HireResult("A", "succeeded", detail="reminded")) is True
        assert await _record_hire_result("bulk_1", HireResult("ghost", "failed")) is False

        assert await _remaining_hire_ids("bulk_1", ["A", "B", "C"]) == ["B", "C"]

    async def test_update_job_status(self, worker_db):
        assert await _update_job_status("bulk_1", "completed", summary={"summary": "3 of 3 hires updated"})

        async with db_module.get_session_ctx() as session:
            job = await BulkJobRepository(session).get("bulk_1")
        assert job.status == "completed"
        assert job.completed_at is not None

    async def test_remaining_falls_back_when_db_unreadable(self):
        @asynccontextmanager
        async def broken():
            raise RuntimeError("database is locked")
            yield  # pragma: no cover

        with patch("app.database.get_session_ctx", broken):
            assert await _remaining_hire_ids("bulk_1", ["A", "B"]) == ["A", "B"]

    async def test_update_failure_pushes_warning(self):
        @asynccontextmanager
        async def broken():
            raise RuntimeError("database is locked")
            yield  # pragma: no cover

        with patch("app.database.get_session_ctx", broken), \
                patch("onboarding.temporal.sse_events._push_event", new_callable=AsyncMock) as push:
            assert await _update_job_status("bulk_1", "running") is False
        assert push.await_args.args[1] == "db_sync_warning"


# ---------------------------------------------------------------------------
# 3. execute_bulk_operation_activity
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestExecuteBulkOperationActivity:

    async def test_isolated_failure_completes_job(self, staffed, worker_env):
        staffed.tasks.fail_on_create_for = {"B"}

        result = await execute_bulk_operation_activity({
            "job_id": "bulk_1",
            "operation": "apply_workflow",
            "hire_ids": ["A", "B", "C"],
            "actor": "hr-admin",
            "template_id": "staff-basics",
        })

        assert result["success"] is True
        assert result["succeeded"] == 2
        assert result["failed"] == 1
        assert result["partial_failure"] is True

        recorded = {c.args[1].hire_id: c.args[1].status for c in worker_env.record.await_args_list}
        assert recorded == {"A": "succeeded", "B": "failed", "C": "succeeded"}

        statuses = [c.args[1] for c in worker_env.update_status.await_args_list]
        assert statuses == ["running", "completed"]

        pushed = _pushed_types(worker_env.push)
        assert pushed[0] == "job_started"
        assert pushed.count("hire_done") == 3
        assert pushed[-1] == "job_done"
        assert worker_env.activity.heartbeat.call_count == 3

    async def test_retry_processes_only_remaining_hires(self, staffed, worker_env):
        worker_env.activity.info.return_value = SimpleNamespace(attempt=2)
        worker_env.remaining.return_value = ["C"]

        result = await execute_bulk_operation_activity({
            "job_id": "bulk_1",
            "operation": "apply_workflow",
            "hire_ids": ["A", "B", "C"],
            "actor": "hr-admin",
            "template_id": "staff-basics",
        })

        assert result["total"] == 1
        worker_env.remaining.assert_awaited_once_with("bulk_1", ["A", "B", "C"])
        assert await staffed.tasks.get_tasks_for_hire("A") == []
        assert len(await staffed.tasks.get_tasks_for_hire("C")) == 2

    async def test_operation_error_marks_job_failed(self, worker_env):
        result = await execute_bulk_operation_activity({
            "job_id": "bulk_1",
            "operation": "apply_workflow",
            "hire_ids": ["A"],
        })

        assert result["success"] is False
        assert "template_id" in result["error"]
        last = worker_env.update_status.await_args_list[-1]
        assert last.args[1] == "failed"
        assert _pushed_types(worker_env.push)[-1] == "job_done"

    async def test_missing_actor_defaults_to_system(self, staffed, worker_env):
        await execute_bulk_operation_activity({
            "job_id": "bulk_1",
            "operation": "apply_workflow",
            "hire_ids": ["A"],
            "template_id": "staff-basics",
        })
        task = await staffed.task_for("A", "a")
        assert task.assigned_by == "system"


# ---------------------------------------------------------------------------
# 4. Workflow timeout budget
# ---------------------------------------------------------------------------


class TestActivityTimeout:

    def test_small_jobs_get_the_floor(self):
        assert activity_timeout(1) == timedelta(minutes=10)

    def test_large_jobs_scale_per_hire(self):
        assert activity_timeout(100) == timedelta(seconds=3000)
