"""Temporal Activity for bulk onboarding operations.

Runs a BulkOperationsCoordinator pass inside the Temporal Worker process,
records every hire's outcome in the bulk_hire_results table as soon as it
is known, and pushes progress events to the API server for SSE clients.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from temporalio import activity

from ..bulk import BulkReport, HireResult
from ..config import SYSTEM_ACTOR
from ..settings import BULK_HEARTBEAT_INTERVAL, OVERDUE_EXTENSION_DAYS
from .sse_events import _periodic_heartbeat, _push_event, _schedule_push
from .state_sync import _record_hire_result, _remaining_hire_ids, _update_job_status

logger = logging.getLogger("onboarding.temporal.bulk_activities")


def _publish_notification(row) -> None:
    """Forward notifications created in the worker to the API's user streams."""
    from app.event_bus import user_stream
    from app.repositories.notification import notification_to_dict

    _schedule_push(user_stream(row.user_id), "notification", notification_to_dict(row))


@activity.defn
async def execute_bulk_operation_activity(params: dict) -> dict:
    """Execute a bulk operation as a Temporal activity.

    Args:
        params: Dict with keys:
            - job_id: Bulk job identifier
            - operation: apply_workflow | mark_completed | send_reminder | reset_overdue
            - hire_ids: Hires to process
            - actor: Who requested the job
            - template_id: Template to apply (apply_workflow only)
            - extension_days: Due date extension (reset_overdue only)

    Returns:
        Dict with the job's BulkReport summary
    """
    from app.database import get_session_ctx
    from app.dependencies import build_context
    from app.event_bus import job_stream

    job_id = params["job_id"]
    operation = params["operation"]
    hire_ids = list(params.get("hire_ids", []))
    actor = params.get("actor") or SYSTEM_ACTOR
    stream = job_stream(job_id)

    logger.info(f"Job {job_id}: Starting bulk {operation} for {len(hire_ids)} hires")
    await _update_job_status(job_id, "running")

    # A retried attempt only processes hires the earlier attempt didn't finish
    attempt = activity.info().attempt
    if attempt > 1:
        hire_ids = await _remaining_hire_ids(job_id, hire_ids)
        logger.info(f"Job {job_id}: Retry attempt {attempt}, {len(hire_ids)} hires remaining")

    await _push_event(stream, "job_started", {
        "operation": operation,
        "total": len(hire_ids),
        "attempt": attempt,
    })

    async def on_result(result: HireResult) -> None:
        await _record_hire_result(job_id, result)
        await _push_event(stream, "hire_done", result.to_dict())
        activity.heartbeat(f"hire:{result.hire_id}")

    heartbeat_task = asyncio.create_task(
        _periodic_heartbeat(job_id, interval_seconds=BULK_HEARTBEAT_INTERVAL)
    )
    cancel_event = asyncio.Event()
    cancelled = False

    try:
        async with get_session_ctx() as session:
            ctx = build_context(session, publisher=_publish_notification)
            run = asyncio.create_task(ctx.bulk.run_operation(
                operation,
                hire_ids,
                actor=actor,
                template_id=params.get("template_id"),
                extension_days=params.get("extension_days", OVERDUE_EXTENSION_DAYS),
                cancel_event=cancel_event,
                on_result=on_result,
            ))
            try:
                report: BulkReport = await asyncio.shield(run)
            except asyncio.CancelledError:
                # Let hires already in flight finish; the rest report cancelled
                logger.info(f"Job {job_id}: Cancellation requested, finishing in-flight hires")
                cancel_event.set()
                cancelled = True
                report = await run

        summary = report.to_dict()
        status = "cancelled" if cancelled else "completed"
        await _update_job_status(job_id, status, summary=summary)
        await _push_event(stream, "job_done", {
            "status": status,
            "succeeded": report.succeeded,
            "failed": report.failed,
            "skipped": report.skipped,
            "cancelled": report.cancelled,
            "total": len(report.results),
            "message": report.summary,
        })
        logger.info(f"Job {job_id}: Bulk {operation} {status} ({report.summary})")
        return {"success": not cancelled, "job_id": job_id, "cancelled": cancelled, **_counts(summary)}

    except Exception as e:
        logger.error(f"Job {job_id}: Activity failed: {e}")
        await _update_job_status(job_id, "failed", error=str(e))
        await _push_event(stream, "job_done", {
            "status": "failed",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return {"success": False, "job_id": job_id, "error": str(e)}

    finally:
        heartbeat_task.cancel()
        try:
            await heartbeat_task
        except asyncio.CancelledError:
            pass


def _counts(summary: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("total", "succeeded", "failed", "skipped", "cancelled", "partial_failure")
    return {k: summary[k] for k in keys}
