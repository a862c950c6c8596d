"""Temporal Workflow for bulk onboarding operations.

Gives long bulk jobs Temporal's durability, timeout management and
cancellation; the work itself happens in a single activity.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from ..settings import (
        BULK_WORKFLOW_HEARTBEAT_TIMEOUT_MINUTES,
        BULK_WORKFLOW_MIN_TIMEOUT_MINUTES,
        BULK_WORKFLOW_PER_HIRE_SECONDS,
    )
    from .bulk_activities import execute_bulk_operation_activity


def activity_timeout(hire_count: int) -> timedelta:
    """Schedule-to-close budget: a per-hire allowance with a floor."""
    return max(
        timedelta(minutes=BULK_WORKFLOW_MIN_TIMEOUT_MINUTES),
        timedelta(seconds=hire_count * BULK_WORKFLOW_PER_HIRE_SECONDS),
    )


@workflow.defn
class BulkOnboardingWorkflow:
    """Runs one bulk operation (apply / complete / remind / reset) over many hires."""

    def __init__(self) -> None:
        self._result: dict = {}

    @workflow.run
    async def run(self, params: dict) -> dict:
        """Execute a bulk job.

        Args:
            params: Dict with keys:
                - job_id: Bulk job identifier
                - operation: Bulk operation name
                - hire_ids: Hires to process
                - actor: Requesting user
                - template_id / extension_days: operation arguments
        """
        hire_count = len(params.get("hire_ids", []))

        self._result = await workflow.execute_activity(
            execute_bulk_operation_activity,
            params,
            schedule_to_close_timeout=activity_timeout(hire_count),
            # Cancellation only reaches an activity that heartbeats
            heartbeat_timeout=timedelta(minutes=BULK_WORKFLOW_HEARTBEAT_TIMEOUT_MINUTES),
        )
        return self._result

    @workflow.query
    def get_result(self) -> dict:
        """Query the current workflow result."""
        return self._result
