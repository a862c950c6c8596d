"""Repository layer for hire profiles.

Also serves as the engine's HireDirectory.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import HireModel
from onboarding.models import HireProfile


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HireRepository:
    """Data access layer for hires."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        role: str,
        department: str,
        start_date: Optional[date] = None,
        email: Optional[str] = None,
        status: str = "active",
        manager_id: Optional[str] = None,
        hire_id: Optional[str] = None,
    ) -> HireModel:
        hire = HireModel(
            name=name,
            email=email,
            role=role,
            department=department,
            start_date=start_date,
            status=status,
            manager_id=manager_id,
        )
        if hire_id:
            hire.id = hire_id
        self.session.add(hire)
        await self.session.flush()
        return hire

    async def get(self, hire_id: str) -> Optional[HireModel]:
        return await self.session.get(HireModel, hire_id)

    async def list(
        self,
        role: Optional[str] = None,
        department: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[HireModel], int]:
        """List hires with optional filters and pagination.

        Returns:
            Tuple of (hires, total_count)
        """
        query = select(HireModel)
        count_query = select(func.count()).select_from(HireModel)

        filters = []
        if role:
            filters.append(HireModel.role == role)
        if department:
            filters.append(HireModel.department == department)
        if status:
            filters.append(HireModel.status == status)
        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        query = query.order_by(HireModel.created_at.desc(), HireModel.id)
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.session.execute(query)
        hires = list(result.scalars().all())

        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0
        return hires, total

    async def update_status(self, hire_id: str, status: str) -> Optional[HireModel]:
        hire = await self.get(hire_id)
        if not hire:
            return None
        hire.status = status
        hire.updated_at = _utcnow()
        await self.session.flush()
        return hire

    # --- HireDirectory ---

    async def get_hire(self, hire_id: str) -> Optional[HireProfile]:
        hire = await self.get(hire_id)
        return HireProfile.model_validate(hire) if hire else None

    async def list_hires(
        self,
        role: Optional[str] = None,
        department: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[HireProfile]:
        query = select(HireModel).order_by(HireModel.id)
        if role:
            query = query.where(HireModel.role == role)
        if department:
            query = query.where(HireModel.department == department)
        if status:
            query = query.where(HireModel.status == status)
        result = await self.session.execute(query)
        return [HireProfile.model_validate(h) for h in result.scalars().all()]
