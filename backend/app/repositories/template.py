"""Repository layer for published workflow templates.

Implements the engine's TemplateCatalogSource: the catalog serves the
latest version of every template id, older versions stay queryable for
hires whose tasks were materialized from them.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import WorkflowTemplateModel
from onboarding.catalog import validate_template
from onboarding.models import TaskTemplate, WorkflowTemplate

logger = logging.getLogger("app.repositories.template")


def _to_template(row: WorkflowTemplateModel) -> WorkflowTemplate:
    return WorkflowTemplate(
        id=row.id,
        name=row.name,
        description=row.description or "",
        role_targets=row.role_targets or [],
        department_targets=row.department_targets or [],
        tasks=[TaskTemplate.model_validate(t) for t in (row.tasks or [])],
        is_active=row.is_active,
        auto_trigger=row.auto_trigger,
        version=row.version,
    )


class TemplateRepository:
    """Data access layer for workflow template versions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def publish(
        self,
        template: WorkflowTemplate,
        published_by: Optional[str] = None,
    ) -> WorkflowTemplate:
        """Validate and store ``template`` as the next version of its id.

        Raises:
            InvalidTemplateError: cycle, unknown or duplicate task ids
        """
        validate_template(template)

        result = await self.session.execute(
            select(func.max(WorkflowTemplateModel.version))
            .where(WorkflowTemplateModel.id == template.id)
        )
        latest = result.scalar()
        version = (latest or 0) + 1

        row = WorkflowTemplateModel(
            id=template.id,
            version=version,
            name=template.name,
            description=template.description,
            role_targets=list(template.role_targets),
            department_targets=list(template.department_targets),
            tasks=[t.model_dump() for t in template.tasks],
            is_active=template.is_active,
            auto_trigger=template.auto_trigger,
            published_by=published_by,
        )
        self.session.add(row)
        await self.session.flush()
        logger.info(f"Template {template.id}: published version {version}")
        return _to_template(row)

    async def _latest_rows(self) -> List[WorkflowTemplateModel]:
        latest = (
            select(
                WorkflowTemplateModel.id.label("tid"),
                func.max(WorkflowTemplateModel.version).label("max_version"),
                func.min(WorkflowTemplateModel.created_at).label("first_published"),
            )
            .group_by(WorkflowTemplateModel.id)
            .subquery()
        )
        result = await self.session.execute(
            select(WorkflowTemplateModel)
            .join(
                latest,
                (WorkflowTemplateModel.id == latest.c.tid)
                & (WorkflowTemplateModel.version == latest.c.max_version),
            )
            .order_by(latest.c.first_published, WorkflowTemplateModel.id)
        )
        return list(result.scalars().all())

    async def list_templates(self, include_inactive: bool = False) -> List[WorkflowTemplate]:
        """Latest version of every template, ordered by first publication."""
        rows = await self._latest_rows()
        templates = [_to_template(r) for r in rows]
        if include_inactive:
            return templates
        return [t for t in templates if t.is_active]

    async def list_active_templates(self) -> List[WorkflowTemplate]:
        return await self.list_templates()

    async def get_template(
        self,
        template_id: str,
        version: Optional[int] = None,
    ) -> Optional[WorkflowTemplate]:
        query = select(WorkflowTemplateModel).where(WorkflowTemplateModel.id == template_id)
        if version is not None:
            query = query.where(WorkflowTemplateModel.version == version)
        else:
            query = query.order_by(WorkflowTemplateModel.version.desc()).limit(1)
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return _to_template(row) if row else None

    async def list_versions(self, template_id: str) -> List[WorkflowTemplate]:
        result = await self.session.execute(
            select(WorkflowTemplateModel)
            .where(WorkflowTemplateModel.id == template_id)
            .order_by(WorkflowTemplateModel.version)
        )
        return [_to_template(r) for r in result.scalars().all()]

    async def set_active(self, template_id: str, is_active: bool) -> Optional[WorkflowTemplate]:
        """Toggle availability of the latest version (no new version is created)."""
        current = await self.get_template(template_id)
        if current is None:
            return None
        await self.session.execute(
            update(WorkflowTemplateModel)
            .where(
                WorkflowTemplateModel.id == template_id,
                WorkflowTemplateModel.version == current.version,
            )
            .values(is_active=is_active)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return current.model_copy(update={"is_active": is_active})

    async def seed_defaults(self, templates: Iterable[WorkflowTemplate]) -> int:
        """Publish ``templates`` when the table is empty. Returns how many were stored."""
        result = await self.session.execute(
            select(func.count()).select_from(WorkflowTemplateModel)
        )
        if result.scalar():
            return 0
        count = 0
        for template in templates:
            await self.publish(template, published_by="seed")
            count += 1
        logger.info(f"Seeded {count} default workflow templates")
        return count
