"""Repository layer for bulk job persistence.

Provides async CRUD operations for BulkJobModel and BulkHireResultModel.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.db import BulkHireResultModel, BulkJobModel

TERMINAL_JOB_STATUSES = ("completed", "failed", "cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BulkJobRepository:
    """Data access layer for bulk jobs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        job_id: str,
        operation: str,
        hire_ids: List[str],
        actor: str,
        template_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> BulkJobModel:
        """Create a job with one pending result row per hire.

        Returns:
            Created BulkJobModel with hires relationship loaded
        """
        job = BulkJobModel(
            id=job_id,
            operation=operation,
            status="started",
            template_id=template_id,
            actor=actor,
            params=params,
        )
        self.session.add(job)

        for idx, hire_id in enumerate(hire_ids):
            self.session.add(BulkHireResultModel(
                job_id=job_id,
                hire_index=idx,
                hire_id=hire_id,
                status="pending",
            ))

        await self.session.flush()
        return await self.get(job_id)

    async def get(self, job_id: str) -> Optional[BulkJobModel]:
        """Get a bulk job by ID with per-hire results loaded."""
        result = await self.session.execute(
            select(BulkJobModel)
            .options(selectinload(BulkJobModel.hires))
            .where(BulkJobModel.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        status: Optional[str] = None,
        operation: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[BulkJobModel], int]:
        """List jobs, newest first.

        Args:
            status: Filter by job status; comma-separated for several
            operation: Filter by operation name
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (jobs, total_count)
        """
        query = select(BulkJobModel).options(selectinload(BulkJobModel.hires))
        count_query = select(func.count()).select_from(BulkJobModel)

        if status:
            statuses = [s.strip() for s in status.split(",") if s.strip()]
            query = query.where(BulkJobModel.status.in_(statuses))
            count_query = count_query.where(BulkJobModel.status.in_(statuses))

        if operation:
            query = query.where(BulkJobModel.operation == operation)
            count_query = count_query.where(BulkJobModel.operation == operation)

        query = query.order_by(BulkJobModel.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.session.execute(query)
        jobs = list(result.scalars().all())

        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0

        return jobs, total

    async def update_status(
        self,
        job_id: str,
        status: str,
        error: Optional[str] = None,
        summary: Optional[Dict[str, Any]] = None,
    ) -> Optional[BulkJobModel]:
        job = await self.get(job_id)
        if not job:
            return None

        job.status = status
        if error:
            job.error = error
        if summary is not None:
            job.summary = summary
        if status in TERMINAL_JOB_STATUSES:
            job.completed_at = _utcnow()
        job.updated_at = _utcnow()

        await self.session.flush()
        return job

    async def set_workflow_id(self, job_id: str, workflow_id: str) -> None:
        await self.session.execute(
            update(BulkJobModel)
            .where(BulkJobModel.id == job_id)
            .values(temporal_workflow_id=workflow_id, updated_at=_utcnow())
        )
        await self.session.flush()

    async def update_hire_result(
        self,
        job_id: str,
        hire_id: str,
        status: str,
        detail: Optional[str] = None,
        tasks_affected: int = 0,
        error: Optional[str] = None,
    ) -> Optional[BulkHireResultModel]:
        """Record the outcome for one hire of a job."""
        result = await self.session.execute(
            select(BulkHireResultModel).where(
                BulkHireResultModel.job_id == job_id,
                BulkHireResultModel.hire_id == hire_id,
            )
        )
        row = result.scalar_one_or_none()
        if not row:
            return None

        row.status = status
        row.detail = detail
        row.tasks_affected = tasks_affected
        row.error = error
        row.completed_at = _utcnow()

        await self.session.execute(
            update(BulkJobModel)
            .where(BulkJobModel.id == job_id)
            .values(updated_at=_utcnow())
        )
        await self.session.flush()
        return row

    async def pending_hire_ids(self, job_id: str) -> List[str]:
        """Hires without an outcome yet, in submission order (used on activity retry)."""
        result = await self.session.execute(
            select(BulkHireResultModel.hire_id)
            .where(
                BulkHireResultModel.job_id == job_id,
                BulkHireResultModel.status == "pending",
            )
            .order_by(BulkHireResultModel.hire_index)
        )
        return list(result.scalars().all())

    async def get_stats(self, job_id: str) -> Dict[str, int]:
        """Per-status counts of a job's hire results."""
        result = await self.session.execute(
            select(BulkHireResultModel.status, func.count())
            .where(BulkHireResultModel.job_id == job_id)
            .group_by(BulkHireResultModel.status)
        )
        counts = {status: count for status, count in result.all()}
        stats = {
            status: counts.get(status, 0)
            for status in ("pending", "succeeded", "failed", "skipped", "cancelled")
        }
        stats["total"] = sum(counts.values())
        return stats

    async def delete(self, job_id: str) -> bool:
        job = await self.get(job_id)
        if not job:
            return False
        await self.session.delete(job)
        await self.session.flush()
        return True

    async def cancel_pending(self, job_id: str) -> int:
        """Mark hires without an outcome as cancelled. Returns the number changed."""
        result = await self.session.execute(
            update(BulkHireResultModel)
            .where(
                BulkHireResultModel.job_id == job_id,
                BulkHireResultModel.status == "pending",
            )
            .values(status="cancelled", detail="job cancelled", completed_at=_utcnow())
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount
