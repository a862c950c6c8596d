"""Repository layer for onboarding tasks and progress.

Implements the engine's TaskStore protocol on top of async SQLAlchemy.
Status changes are conditional UPDATEs, so a write guarded by ``expected``
statuses fails cleanly when another session got there first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import OnboardingProgressModel, OnboardingTaskModel
from onboarding.models import OPEN_STATUSES, OnboardingProgress, TaskInstance, TaskStatus

# Columns a status update may touch besides ``status``
_UPDATABLE_FIELDS = frozenset({
    "due_date", "completed_date", "completed_by", "notes", "priority", "assigned_by",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_instance(row: OnboardingTaskModel) -> TaskInstance:
    return TaskInstance.model_validate(row)


class TaskRepository:
    """Data access layer for task instances and per-hire progress."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Tasks ---

    async def create_task(self, instance: TaskInstance) -> str:
        data = instance.model_dump(exclude={"created_at"})
        if not data.get("id"):
            data.pop("id", None)
        row = OnboardingTaskModel(**data)
        self.session.add(row)
        await self.session.flush()
        return row.id

    async def _get_row(self, task_id: str) -> Optional[OnboardingTaskModel]:
        result = await self.session.execute(
            select(OnboardingTaskModel)
            .where(OnboardingTaskModel.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_task(self, task_id: str) -> Optional[TaskInstance]:
        row = await self._get_row(task_id)
        return _to_instance(row) if row else None

    async def get_tasks_for_hire(self, hire_id: str) -> List[TaskInstance]:
        result = await self.session.execute(
            select(OnboardingTaskModel)
            .where(OnboardingTaskModel.hire_id == hire_id)
            .order_by(OnboardingTaskModel.order, OnboardingTaskModel.created_at)
            .execution_options(populate_existing=True)
        )
        return [_to_instance(row) for row in result.scalars().all()]

    async def list_all_active_tasks(self) -> List[TaskInstance]:
        result = await self.session.execute(
            select(OnboardingTaskModel)
            .where(OnboardingTaskModel.status.in_(OPEN_STATUSES))
            .order_by(OnboardingTaskModel.due_date, OnboardingTaskModel.hire_id)
            .execution_options(populate_existing=True)
        )
        return [_to_instance(row) for row in result.scalars().all()]

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        fields: Optional[Dict[str, Any]] = None,
        expected: Optional[Iterable[TaskStatus]] = None,
    ) -> bool:
        """Set ``status`` (and ``fields``); with ``expected``, only from one of those statuses.

        Returns True when a row was written.
        """
        values: Dict[str, Any] = {"status": status, "updated_at": _utcnow()}
        for key, value in (fields or {}).items():
            if key not in _UPDATABLE_FIELDS:
                raise ValueError(f"Field '{key}' cannot be changed with a status update")
            values[key] = value

        stmt = update(OnboardingTaskModel).where(OnboardingTaskModel.id == task_id)
        if expected is not None:
            stmt = stmt.where(OnboardingTaskModel.status.in_(list(expected)))
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount == 1

    async def delete_task(self, task_id: str) -> bool:
        result = await self.session.execute(
            delete(OnboardingTaskModel)
            .where(OnboardingTaskModel.id == task_id)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount == 1

    # --- Progress ---

    async def get_progress(self, hire_id: str) -> Optional[OnboardingProgress]:
        result = await self.session.execute(
            select(OnboardingProgressModel)
            .where(OnboardingProgressModel.hire_id == hire_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return OnboardingProgress.model_validate(row) if row else None

    async def save_progress(self, progress: OnboardingProgress) -> None:
        row = await self.session.get(OnboardingProgressModel, progress.hire_id)
        data = progress.model_dump(exclude={"hire_id"})
        if row is None:
            self.session.add(OnboardingProgressModel(hire_id=progress.hire_id, **data))
        else:
            for key, value in data.items():
                setattr(row, key, value)
        await self.session.flush()

    async def mark_progress_finished(self, hire_id: str, when: datetime) -> bool:
        """Flip progress to completed; True only if this call changed it."""
        result = await self.session.execute(
            update(OnboardingProgressModel)
            .where(
                OnboardingProgressModel.hire_id == hire_id,
                OnboardingProgressModel.status != "completed",
            )
            .values(status="completed", completed_at=when, completion_percentage=100)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount == 1
