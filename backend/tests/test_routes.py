"""Tests for the onboarding API routes (app/routes/).

Covers:
- /api/v2/hires (create with auto-trigger, list, status, tasks)
- /api/v2/templates (publish, versions, match, toggle)
- /api/v2/onboarding (apply, activate, complete, reset, delete)
- /api/v2/automation (rules, scan, scheduler status)
- /api/v2/bulk (synchronous operations and Temporal-backed jobs)
- /api/v2/notifications (inbox, mark read)
- Engine error to HTTP status mapping
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

STAFF_TEMPLATE = {
    "id": "staff-basics",
    "name": "Staff Basics",
    "role_targets": ["staff"],
    "auto_trigger": True,
    "tasks": [
        {"id": "a", "title": "Accounts", "category": "setup"},
        {"id": "b", "title": "Benefits", "category": "documentation", "days_from_start": 3,
         "dependencies": ["a"]},
        {"id": "c", "title": "Team Lunch", "category": "meeting", "days_from_start": 5},
    ],
}


def _hire_payload(hire_id: str = "h1", **overrides) -> dict:
    payload = {
        "id": hire_id,
        "name": "Ada Lovelace",
        "role": "staff",
        "department": "Engineering",
        "start_date": "2024-01-01",
        "manager_id": "mgr-1",
    }
    payload.update(overrides)
    return payload


async def _publish(client: AsyncClient, template: dict = STAFF_TEMPLATE) -> dict:
    resp = await client.post("/api/v2/templates", json=template)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _create_hire(client: AsyncClient, hire_id: str = "h1", **overrides) -> dict:
    resp = await client.post("/api/v2/hires", json=_hire_payload(hire_id, **overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _tasks_by_template_id(client: AsyncClient, hire_id: str) -> dict:
    resp = await client.get(f"/api/v2/hires/{hire_id}/tasks")
    assert resp.status_code == 200, resp.text
    return {t["template_task_id"]: t for t in resp.json()["tasks"]}


# ---------------------------------------------------------------------------
# Hires
# ---------------------------------------------------------------------------


class TestHires:

    @pytest.mark.asyncio
    async def test_create_hire_applies_auto_trigger_template(self, client: AsyncClient):
        await _publish(client)
        data = await _create_hire(client)

        assert data["hire"]["id"] == "h1"
        assert data["workflow"]["status"] == "applied"
        assert data["workflow"]["template_id"] == "staff-basics"
        assert len(data["workflow"]["created"]) == 3

        tasks = await _tasks_by_template_id(client, "h1")
        assert set(tasks) == {"a", "b", "c"}
        assert tasks["b"]["dependencies"] == [tasks["a"]["id"]]

    @pytest.mark.asyncio
    async def test_pending_hire_gets_workflow_on_activation(self, client: AsyncClient):
        await _publish(client)
        data = await _create_hire(client, status="pending")
        assert data["workflow"] is None

        resp = await client.patch("/api/v2/hires/h1/status", json={"status": "active"})
        assert resp.status_code == 200
        assert resp.json()["workflow"]["status"] == "applied"

    @pytest.mark.asyncio
    async def test_hire_without_matching_template_has_no_tasks(self, client: AsyncClient):
        await _publish(client)
        data = await _create_hire(client, role="contractor")

        assert data["workflow"] is None
        assert await _tasks_by_template_id(client, "h1") == {}

    @pytest.mark.asyncio
    async def test_duplicate_id_conflict(self, client: AsyncClient):
        await _create_hire(client)
        resp = await client.post("/api/v2/hires", json=_hire_payload())
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_hire_is_404(self, client: AsyncClient):
        resp = await client.get("/api/v2/hires/ghost")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NotFoundError"

        resp = await client.get("/api/v2/hires/ghost/progress")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_list_filters(self, client: AsyncClient):
        await _create_hire(client, "h1")
        await _create_hire(client, "h2", department="Sales")

        resp = await client.get("/api/v2/hires", params={"department": "Sales"})
        data = resp.json()
        assert data["total"] == 1
        assert data["hires"][0]["id"] == "h2"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TestTemplates:

    @pytest.mark.asyncio
    async def test_publish_twice_creates_version(self, client: AsyncClient):
        v1 = await _publish(client)
        v2 = await _publish(client, {**STAFF_TEMPLATE, "name": "Staff Basics (2024)"})
        assert (v1["version"], v2["version"]) == (1, 2)

        resp = await client.get("/api/v2/templates/staff-basics", params={"version": 1})
        assert resp.json()["name"] == "Staff Basics"
        resp = await client.get("/api/v2/templates/staff-basics/versions")
        assert [t["version"] for t in resp.json()] == [1, 2]

    @pytest.mark.asyncio
    async def test_cycle_rejected_with_problems(self, client: AsyncClient):
        cyclic = {
            "id": "loop",
            "name": "Loop",
            "tasks": [
                {"id": "x", "title": "X", "dependencies": ["y"]},
                {"id": "y", "title": "Y", "dependencies": ["x"]},
            ],
        }
        resp = await client.post("/api/v2/templates", json=cyclic)
        assert resp.status_code == 422
        assert resp.json()["code"] == "InvalidTemplateError"
        assert resp.json()["problems"]

        resp = await client.get("/api/v2/templates/loop")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_match_and_deactivate(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client, status="pending")

        resp = await client.get("/api/v2/templates/match/h1")
        assert resp.json()["template"]["id"] == "staff-basics"

        resp = await client.patch("/api/v2/templates/staff-basics/active", json={"is_active": False})
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        resp = await client.get("/api/v2/templates/match/h1")
        assert resp.json()["template"] is None
        resp = await client.get("/api/v2/templates", params={"include_inactive": True})
        assert resp.json()["total"] == 1


# ---------------------------------------------------------------------------
# Onboarding / task lifecycle
# ---------------------------------------------------------------------------


class TestTaskLifecycle:

    @pytest.mark.asyncio
    async def test_blocked_activation_is_409(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)
        tasks = await _tasks_by_template_id(client, "h1")

        resp = await client.post(f"/api/v2/onboarding/tasks/{tasks['b']['id']}/activate", json={})
        assert resp.status_code == 409
        assert resp.json()["blocking"] == [tasks["a"]["id"]]

    @pytest.mark.asyncio
    async def test_complete_is_idempotent(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)
        tasks = await _tasks_by_template_id(client, "h1")
        url = f"/api/v2/onboarding/tasks/{tasks['a']['id']}/complete"

        first = await client.post(url, json={"actor": "ada", "note": "done"})
        second = await client.post(url, json={"actor": "ada"})

        assert first.status_code == 200 and second.status_code == 200
        assert first.json()["changed"] is True
        assert second.json()["changed"] is False
        assert first.json()["progress"] == second.json()["progress"] == 33

    @pytest.mark.asyncio
    async def test_finishing_workflow(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)
        tasks = await _tasks_by_template_id(client, "h1")

        finished = []
        for key in ("a", "b", "c"):
            resp = await client.post(
                f"/api/v2/onboarding/tasks/{tasks[key]['id']}/complete", json={"actor": "ada"},
            )
            finished.append(resp.json()["workflow_finished"])
        assert finished == [False, False, True]

        progress = (await client.get("/api/v2/hires/h1/progress")).json()
        assert progress["status"] == "completed"
        assert progress["completion_percentage"] == 100

    @pytest.mark.asyncio
    async def test_reset_pending_is_409(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)
        tasks = await _tasks_by_template_id(client, "h1")

        resp = await client.post(
            f"/api/v2/onboarding/tasks/{tasks['a']['id']}/reset", json={"due_date": "2030-01-01"},
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "InvalidTransitionError"

    @pytest.mark.asyncio
    async def test_explicit_template_outside_audience(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client, role="intern")

        resp = await client.post(
            "/api/v2/onboarding/hires/h1/apply",
            json={"actor": "hr-admin", "template_id": "staff-basics"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "not_eligible"

    @pytest.mark.asyncio
    async def test_apply_unknown_template_is_404(self, client: AsyncClient):
        await _create_hire(client)
        resp = await client.post(
            "/api/v2/onboarding/hires/h1/apply", json={"actor": "hr-admin", "template_id": "nope"},
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_recomputes_progress(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)
        tasks = await _tasks_by_template_id(client, "h1")
        await client.post(f"/api/v2/onboarding/tasks/{tasks['a']['id']}/complete", json={"actor": "ada"})

        resp = await client.delete(f"/api/v2/onboarding/tasks/{tasks['c']['id']}")
        assert resp.status_code == 200
        assert resp.json()["progress"] == 50

        resp = await client.get(f"/api/v2/onboarding/tasks/{tasks['c']['id']}")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


class TestAutomation:

    @pytest.mark.asyncio
    async def test_rules_toggle(self, client: AsyncClient):
        resp = await client.get("/api/v2/automation/rules")
        ids = [r["id"] for r in resp.json()]
        assert "deadline-reminder" in ids

        resp = await client.patch("/api/v2/automation/rules/deadline-reminder", json={"is_active": False})
        assert resp.json()["is_active"] is False

        resp = await client.get("/api/v2/automation/rules")
        rule = next(r for r in resp.json() if r["id"] == "deadline-reminder")
        assert rule["is_active"] is False

        resp = await client.patch("/api/v2/automation/rules/nope", json={"is_active": False})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_scan_marks_past_due_tasks_overdue(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)  # started 2024-01-01, everything is past due

        resp = await client.post("/api/v2/automation/scan")
        assert resp.status_code == 200
        report = resp.json()["report"]
        assert len(report["marked_overdue"]) == 3

        resp = await client.post("/api/v2/automation/scan")
        assert resp.json()["report"]["marked_overdue"] == []

        escalations = (await client.get("/api/v2/notifications/mgr-1")).json()
        assert {n["kind"] for n in escalations["notifications"]} == {"escalation"}

    @pytest.mark.asyncio
    async def test_scheduler_status_when_disabled(self, client: AsyncClient):
        resp = await client.get("/api/v2/automation/scheduler")
        assert resp.json() == {
            "enabled": False, "running": False, "scan_in_progress": False,
            "interval_seconds": None, "skipped_ticks": 0, "last_report": None,
        }


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


class TestBulkSync:

    @pytest.mark.asyncio
    async def test_partial_failure_is_207(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client, "h1", status="pending")
        await _create_hire(client, "h2", status="pending")

        resp = await client.post(
            "/api/v2/bulk/apply-workflow",
            json={"hire_ids": ["h1", "ghost", "h2"], "template_id": "staff-basics", "actor": "hr-admin"},
        )
        assert resp.status_code == 207
        data = resp.json()
        by_hire = {r["hire_id"]: r for r in data["results"]}
        assert by_hire["h1"]["status"] == "succeeded"
        assert by_hire["h2"]["status"] == "succeeded"
        assert by_hire["ghost"]["status"] == "failed"
        assert data["summary"] == "2 of 3 hires updated"

        assert len(await _tasks_by_template_id(client, "h2")) == 3

    @pytest.mark.asyncio
    async def test_all_succeeded_is_200(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)

        resp = await client.post("/api/v2/bulk/send-reminder", json={"hire_ids": ["h1"]})
        assert resp.status_code == 200
        assert resp.json()["succeeded"] == 1

        inbox = (await client.get("/api/v2/notifications/h1")).json()
        assert "reminder" in {n["kind"] for n in inbox["notifications"]}

    @pytest.mark.asyncio
    async def test_apply_requires_template_id(self, client: AsyncClient):
        resp = await client.post("/api/v2/bulk/apply-workflow", json={"hire_ids": ["h1"]})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_hire_id_rejected(self, client: AsyncClient):
        resp = await client.post("/api/v2/bulk/send-reminder", json={"hire_ids": ["h1", "  "]})
        assert resp.status_code == 422


class TestBulkJobs:

    @pytest.mark.asyncio
    async def test_create_job_starts_workflow(self, client: AsyncClient, mock_temporal_client):
        resp = await client.post(
            "/api/v2/bulk/jobs",
            json={"operation": "send_reminder", "hire_ids": ["h1", "h2", "h1"]},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["job_id"].startswith("bulk_")
        assert data["status"] == "started"
        assert data["total"] == 2
        assert data["pending"] == 2

        mock_temporal_client.start_workflow.assert_awaited_once()
        args, kwargs = mock_temporal_client.start_workflow.call_args
        assert args[0] == "BulkOnboardingWorkflow"
        assert args[1]["hire_ids"] == ["h1", "h2"]
        assert kwargs["id"] == f"bulk-{data['job_id']}"

    @pytest.mark.asyncio
    async def test_unknown_template_rejected_before_job_created(self, client: AsyncClient):
        resp = await client.post(
            "/api/v2/bulk/jobs",
            json={"operation": "apply_workflow", "hire_ids": ["h1"], "template_id": "nope"},
        )
        assert resp.status_code == 404
        assert (await client.get("/api/v2/bulk/jobs")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_unknown_operation_rejected(self, client: AsyncClient):
        resp = await client.post("/api/v2/bulk/jobs", json={"operation": "archive", "hire_ids": ["h1"]})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_temporal_down_is_503_and_job_failed(self, client: AsyncClient):
        with patch("app.temporal_adapter.get_client", AsyncMock(side_effect=RuntimeError("Temporal is not connected"))):
            resp = await client.post(
                "/api/v2/bulk/jobs", json={"operation": "send_reminder", "hire_ids": ["h1"]},
            )
        assert resp.status_code == 503

        jobs = (await client.get("/api/v2/bulk/jobs")).json()
        assert jobs["total"] == 1
        assert jobs["jobs"][0]["status"] == "failed"
        assert "Temporal is not connected" in jobs["jobs"][0]["error"]

    @pytest.mark.asyncio
    async def test_cancel_then_delete(self, client: AsyncClient, mock_temporal_client):
        job = (await client.post(
            "/api/v2/bulk/jobs", json={"operation": "mark_completed", "hire_ids": ["h1", "h2"]},
        )).json()
        job_id = job["job_id"]

        resp = await client.delete(f"/api/v2/bulk/jobs/{job_id}")
        assert resp.status_code == 400

        resp = await client.post(f"/api/v2/bulk/jobs/{job_id}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        mock_temporal_client.get_workflow_handle.return_value.cancel.assert_awaited_once()

        data = (await client.get(f"/api/v2/bulk/jobs/{job_id}")).json()
        assert data["status"] == "cancelled"
        assert data["cancelled"] == 2

        resp = await client.post(f"/api/v2/bulk/jobs/{job_id}/cancel")
        assert resp.status_code == 400

        resp = await client.get(f"/api/v2/bulk/jobs/{job_id}/events")
        assert resp.text.startswith("event: job_state")

        resp = await client.delete(f"/api/v2/bulk/jobs/{job_id}")
        assert resp.status_code == 200
        assert (await client.get(f"/api/v2/bulk/jobs/{job_id}")).status_code == 404


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:

    @pytest.mark.asyncio
    async def test_inbox_and_mark_read(self, client: AsyncClient):
        await _publish(client)
        await _create_hire(client)

        inbox = (await client.get("/api/v2/notifications/h1")).json()
        assigned = next(n for n in inbox["notifications"] if n["kind"] == "workflow_assigned")
        assert assigned["title"] == "Staff Basics Assigned"

        resp = await client.post(f"/api/v2/notifications/mgr-1/{assigned['id']}/read")
        assert resp.status_code == 404

        resp = await client.post(f"/api/v2/notifications/h1/{assigned['id']}/read")
        assert resp.status_code == 200

        unread = (await client.get("/api/v2/notifications/h1", params={"unread_only": True})).json()
        assert assigned["id"] not in {n["id"] for n in unread["notifications"]}


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}
