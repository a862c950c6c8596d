"""Bulk operation API endpoints.

Two ways to run an operation over many hires:
- ``POST /api/v2/bulk/<operation>`` runs it inside the request and returns
  the per-hire report (207 when some hires failed).
- ``POST /api/v2/bulk/jobs`` stores a job and hands it to the Temporal
  Worker; progress arrives over SSE at /jobs/{job_id}/events, pushed by the
  worker through /api/internal/events/{stream_id}.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from app.database import get_session_ctx
from app.dependencies import OnboardingContext, get_context
from app.event_bus import get_event_bus, job_stream, push_event
from app.models.db import BulkJobModel
from app.repositories.bulk_job import TERMINAL_JOB_STATUSES, BulkJobRepository
from app.temporal_adapter import cancel_bulk_job, start_bulk_job
from onboarding.bulk import BulkReport
from onboarding.errors import NotFoundError

from .schemas import (
    BulkJobCreateRequest,
    BulkJobListResponse,
    BulkJobResponse,
    BulkReportResponse,
    BulkRequest,
    HireResultResponse,
    JobControlResponse,
)

logger = logging.getLogger("app.routes.bulk")

router = APIRouter(prefix="/api/v2/bulk", tags=["bulk"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# --- Helpers ---


def _report_response(report: BulkReport) -> JSONResponse:
    body = BulkReportResponse.from_report(report).model_dump(mode="json")
    return JSONResponse(status_code=207 if report.partial_failure else 200, content=body)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _job_to_response(db_job: BulkJobModel) -> BulkJobResponse:
    """Convert a job row (with hires loaded) to its API shape."""
    counts = {s: 0 for s in ("pending", "succeeded", "failed", "skipped", "cancelled")}
    for hire in db_job.hires:
        if hire.status in counts:
            counts[hire.status] += 1
    summary = (db_job.summary or {}).get("summary")
    return BulkJobResponse(
        job_id=db_job.id,
        operation=db_job.operation,
        status=db_job.status,
        template_id=db_job.template_id,
        actor=db_job.actor,
        total=len(db_job.hires),
        error=db_job.error,
        summary=summary,
        hires=[
            HireResultResponse(
                hire_id=h.hire_id,
                status=h.status,
                detail=h.detail or "",
                tasks_affected=h.tasks_affected,
                error=h.error,
            )
            for h in db_job.hires
        ],
        created_at=_iso(db_job.created_at),
        updated_at=_iso(db_job.updated_at),
        completed_at=_iso(db_job.completed_at),
        **counts,
    )


def _require_template_id(payload: BulkRequest) -> str:
    if not payload.template_id:
        raise HTTPException(status_code=422, detail="template_id is required for apply_workflow")
    return payload.template_id


# --- Synchronous operations ---


@router.post("/apply-workflow", response_model=BulkReportResponse)
async def bulk_apply_workflow(payload: BulkRequest, ctx: OnboardingContext = Depends(get_context)):
    """Apply one template to every listed hire. Hires outside its audience are skipped."""
    template_id = _require_template_id(payload)
    report = await ctx.bulk.apply_workflow(template_id, payload.hire_ids, payload.actor)
    return _report_response(report)


@router.post("/mark-completed", response_model=BulkReportResponse)
async def bulk_mark_completed(payload: BulkRequest, ctx: OnboardingContext = Depends(get_context)):
    report = await ctx.bulk.mark_completed(payload.hire_ids, payload.actor)
    return _report_response(report)


@router.post("/send-reminder", response_model=BulkReportResponse)
async def bulk_send_reminder(payload: BulkRequest, ctx: OnboardingContext = Depends(get_context)):
    report = await ctx.bulk.send_reminder(payload.hire_ids)
    return _report_response(report)


@router.post("/reset-overdue", response_model=BulkReportResponse)
async def bulk_reset_overdue(payload: BulkRequest, ctx: OnboardingContext = Depends(get_context)):
    """Reset each hire's overdue tasks to pending, due ``extension_days`` from today."""
    report = await ctx.bulk.reset_overdue(payload.hire_ids, payload.extension_days)
    return _report_response(report)


# --- Long-running jobs (Temporal) ---


@router.post("/jobs", response_model=BulkJobResponse, status_code=201)
async def create_bulk_job(payload: BulkJobCreateRequest, ctx: OnboardingContext = Depends(get_context)):
    """Store a bulk job and start its Temporal workflow.

    Returns 503 (and marks the job failed) when the workflow can't be started.
    """
    if payload.operation == "apply_workflow":
        await ctx.service.get_template(_require_template_id(payload))

    job_id = f"bulk_{uuid.uuid4().hex[:12]}"
    hire_ids = list(dict.fromkeys(payload.hire_ids))
    params: Dict[str, Any] = {"extension_days": payload.extension_days}

    # Committed before the workflow starts so the worker can see it
    async with get_session_ctx() as session:
        repo = BulkJobRepository(session)
        await repo.create(
            job_id=job_id,
            operation=payload.operation,
            hire_ids=hire_ids,
            actor=payload.actor,
            template_id=payload.template_id,
            params=params,
        )
    logger.info(f"Job {job_id}: created ({payload.operation}, {len(hire_ids)} hires)")

    try:
        workflow_id = await start_bulk_job(
            job_id,
            payload.operation,
            hire_ids,
            payload.actor,
            template_id=payload.template_id,
            extension_days=payload.extension_days,
        )
    except Exception as e:
        logger.error(f"Job {job_id}: Failed to start Temporal workflow: {e}")
        try:
            async with get_session_ctx() as session:
                await BulkJobRepository(session).update_status(job_id, "failed", error=str(e))
        except Exception as db_err:
            logger.error(f"Job {job_id}: Failed to mark orphan job as failed in DB: {db_err}")
        raise HTTPException(
            status_code=503,
            detail=f"Failed to start workflow: {e}. Is Temporal running?",
        )

    async with get_session_ctx() as session:
        repo = BulkJobRepository(session)
        await repo.set_workflow_id(job_id, workflow_id)
        db_job = await repo.get(job_id)
        return _job_to_response(db_job)


@router.get("/jobs", response_model=BulkJobListResponse)
async def list_bulk_jobs(
    status: Optional[str] = Query(None, description="Filter by job status (comma-separated)"),
    operation: Optional[str] = Query(None, description="Filter by operation"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
):
    async with get_session_ctx() as session:
        repo = BulkJobRepository(session)
        jobs, total = await repo.list(
            status=status, operation=operation, page=page, page_size=page_size,
        )
        return BulkJobListResponse(
            jobs=[_job_to_response(j) for j in jobs],
            total=total,
            page=page,
            page_size=page_size,
        )


@router.get("/jobs/{job_id}", response_model=BulkJobResponse)
async def get_bulk_job(job_id: str):
    async with get_session_ctx() as session:
        db_job = await BulkJobRepository(session).get(job_id)
        if not db_job:
            raise NotFoundError("Job", job_id)
        return _job_to_response(db_job)


@router.post("/jobs/{job_id}/cancel", response_model=JobControlResponse)
async def cancel_job(job_id: str):
    """Cancel a running bulk job.

    Hires already being processed finish; hires not started yet are
    recorded as cancelled. Work done for earlier hires is kept.
    """
    async with get_session_ctx() as session:
        db_job = await BulkJobRepository(session).get(job_id)
        if not db_job:
            raise NotFoundError("Job", job_id)
        status = db_job.status

    if status in TERMINAL_JOB_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot cancel job with status '{status}'")

    try:
        await cancel_bulk_job(job_id)
        logger.info(f"Job {job_id}: Temporal workflow cancelled")
    except Exception as e:
        logger.warning(f"Job {job_id}: Failed to cancel Temporal workflow: {e}")

    cancelled = 0
    try:
        async with get_session_ctx() as session:
            repo = BulkJobRepository(session)
            cancelled = await repo.cancel_pending(job_id)
            await repo.update_status(job_id, "cancelled")
        logger.info(f"Job {job_id}: Status updated to cancelled in database")
    except Exception as e:
        logger.error(f"Job {job_id}: Failed to update database: {e}")

    push_event(job_stream(job_id), "job_done", {
        "status": "cancelled",
        "cancelled": cancelled,
        "message": "Job cancelled by user",
    })

    return JobControlResponse(
        success=True,
        job_id=job_id,
        status="cancelled",
        message=f"Job cancelled, {cancelled} hires not started",
    )


@router.delete("/jobs/{job_id}", response_model=JobControlResponse)
async def delete_job(job_id: str):
    """Delete a finished job and its per-hire results."""
    async with get_session_ctx() as session:
        repo = BulkJobRepository(session)
        db_job = await repo.get(job_id)
        if not db_job:
            raise NotFoundError("Job", job_id)
        if db_job.status not in TERMINAL_JOB_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot delete job with status '{db_job.status}', cancel it first",
            )
        await repo.delete(job_id)

    # Followers of a deleted job get nothing more
    await get_event_bus().close_stream(job_stream(job_id))

    return JobControlResponse(success=True, job_id=job_id, status="deleted", message="Job deleted")


# --- SSE Progress Streaming ---


async def _job_sse_generator(job_id: str, initial_state: Dict[str, Any], finished: bool):
    """Initial job state from the DB, then live events until ``job_done``."""
    yield f"event: job_state\ndata: {json.dumps(initial_state, default=str)}\n\n"
    if finished:
        return
    async for event_str in get_event_bus().subscribe(job_stream(job_id)):
        yield event_str


@router.get("/jobs/{job_id}/events")
async def stream_job_events(job_id: str):
    """Stream real-time progress of a bulk job via SSE.

    Events:
    - job_state: Initial job state when connected
    - job_started: The worker picked the job up (data: {operation, total, attempt})
    - hire_done: One hire finished (data: {hire_id, status, detail, tasks_affected, error})
    - db_sync_warning: The worker could not record a status change
    - job_done: The job finished (data: {status, succeeded, failed, skipped, cancelled})

    Usage:
        const sse = new EventSource('/api/v2/bulk/jobs/bulk_xxx/events');
        sse.addEventListener('hire_done', (e) => console.log(JSON.parse(e.data)));
    """
    async with get_session_ctx() as session:
        db_job = await BulkJobRepository(session).get(job_id)
        if not db_job:
            raise NotFoundError("Job", job_id)
        state = _job_to_response(db_job).model_dump(mode="json")

    return StreamingResponse(
        _job_sse_generator(job_id, state, finished=state["status"] in TERMINAL_JOB_STATUSES),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )
