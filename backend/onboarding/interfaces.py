"""Collaborator protocols consumed by the engine.

The engine never implements these; concrete adapters live in
app/repositories (SQLAlchemy) and onboarding/catalog.py (static catalog).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .models import (
    HireProfile,
    OnboardingProgress,
    TaskInstance,
    TaskStatus,
    WorkflowTemplate,
)


class TaskStore(Protocol):
    """Single source of truth for task state."""

    async def create_task(self, instance: TaskInstance) -> str:
        """Persist ``instance`` and return its id.

        Stores may keep the id already set on the instance or assign their
        own; callers use the returned id for later dependency references.
        """
        ...

    async def get_task(self, task_id: str) -> Optional[TaskInstance]: ...

    async def get_tasks_for_hire(self, hire_id: str) -> List[TaskInstance]: ...

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        fields: Optional[Dict[str, Any]] = None,
        expected: Optional[Iterable[TaskStatus]] = None,
    ) -> bool:
        """Write a status change; with ``expected``, only if the stored status is one of them."""
        ...

    async def list_all_active_tasks(self) -> List[TaskInstance]: ...

    async def delete_task(self, task_id: str) -> bool: ...

    async def get_progress(self, hire_id: str) -> Optional[OnboardingProgress]: ...

    async def save_progress(self, progress: OnboardingProgress) -> None: ...

    async def mark_progress_finished(self, hire_id: str, when: datetime) -> bool:
        """Flip the workflow to completed; True only for the call that flipped it."""
        ...


class HireDirectory(Protocol):
    async def get_hire(self, hire_id: str) -> Optional[HireProfile]: ...

    async def list_hires(
        self,
        role: Optional[str] = None,
        department: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[HireProfile]: ...


class Notifier(Protocol):
    """Fire-and-forget, at-least-once notification sink."""

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: str = "medium",
        *,
        kind: str = "notification",
        related_task_id: Optional[str] = None,
        dedup_key: Optional[str] = None,
    ) -> bool:
        """Returns False when the notification was dropped as a duplicate."""
        ...


class TemplateCatalogSource(Protocol):
    async def list_active_templates(self) -> List[WorkflowTemplate]: ...

    async def get_template(self, template_id: str) -> Optional[WorkflowTemplate]: ...
