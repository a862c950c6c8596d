"""Database synchronization helpers for bulk job activities.

Each helper opens its own short session so a job's bookkeeping commits
independently of the per-hire work.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..bulk import HireResult

logger = logging.getLogger("onboarding.temporal.state_sync")


async def _update_job_status(
    job_id: str,
    status: str,
    error: Optional[str] = None,
    summary: Optional[Dict[str, Any]] = None,
) -> bool:
    """Update job status in database. Returns True on success."""
    from .sse_events import _push_event
    from app.database import get_session_ctx
    from app.event_bus import job_stream
    from app.repositories.bulk_job import BulkJobRepository

    try:
        async with get_session_ctx() as session:
            repo = BulkJobRepository(session)
            await repo.update_status(job_id, status, error=error, summary=summary)
        logger.info(f"Job {job_id}: DB status -> {status}")
        return True
    except Exception as e:
        logger.error(f"Job {job_id}: Failed to update status in DB: {e}")
        await _push_event(job_stream(job_id), "db_sync_warning", {
            "message": f"Failed to record job status: {status}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return False


async def _record_hire_result(job_id: str, result: HireResult) -> bool:
    """Persist one hire's outcome. Returns True on success."""
    from app.database import get_session_ctx
    from app.repositories.bulk_job import BulkJobRepository

    try:
        async with get_session_ctx() as session:
            repo = BulkJobRepository(session)
            row = await repo.update_hire_result(
                job_id,
                result.hire_id,
                result.status,
                detail=result.detail,
                tasks_affected=result.tasks_affected,
                error=result.error,
            )
        if row is None:
            logger.warning(f"Job {job_id}: no result row for hire {result.hire_id}")
            return False
        return True
    except Exception as e:
        logger.error(f"Job {job_id}: Failed to record result for hire {result.hire_id}: {e}")
        return False


async def _remaining_hire_ids(job_id: str, hire_ids: List[str]) -> List[str]:
    """Hires still pending in the DB, for a retried activity attempt.

    Falls back to the full list when the job can't be read.
    """
    from app.database import get_session_ctx
    from app.repositories.bulk_job import BulkJobRepository

    try:
        async with get_session_ctx() as session:
            pending = set(await BulkJobRepository(session).pending_hire_ids(job_id))
    except Exception as e:
        logger.error(f"Job {job_id}: Failed to read pending hires: {e}")
        return list(hire_ids)
    return [h for h in hire_ids if h in pending]
