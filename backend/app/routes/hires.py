"""Hire API routes.

Creating (or activating) a hire runs the hire-created hook: the best
matching auto-trigger template is applied and user_created rules fire.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import OnboardingContext, get_context
from onboarding.errors import NotFoundError

from .schemas import (
    ApplyResponse,
    HireCreateRequest,
    HireCreateResponse,
    HireListResponse,
    HireResponse,
    HireStatusRequest,
    TaskListResponse,
)

logger = logging.getLogger("app.routes.hires")

router = APIRouter(prefix="/api/v2/hires", tags=["hires"])


@router.post("", response_model=HireCreateResponse, status_code=201)
async def create_hire(
    payload: HireCreateRequest,
    actor: str = Query("system", min_length=1, description="Recorded as assigned_by on auto-created tasks"),
    ctx: OnboardingContext = Depends(get_context),
):
    """Create a hire and run the hire-created hook."""
    if payload.id and await ctx.hires.get(payload.id):
        raise HTTPException(status_code=409, detail=f"Hire '{payload.id}' already exists")

    row = await ctx.hires.create(
        name=payload.name,
        role=payload.role,
        department=payload.department,
        start_date=payload.start_date,
        email=payload.email,
        status=payload.status,
        manager_id=payload.manager_id,
        hire_id=payload.id,
    )
    logger.info(f"Hire {row.id} created ({row.role}/{row.department}, {row.status})")

    result = await ctx.service.handle_hire_created(row.id, actor)
    return HireCreateResponse(
        hire=HireResponse.model_validate(row),
        workflow=ApplyResponse.from_result(result) if result else None,
    )


@router.get("", response_model=HireListResponse)
async def list_hires(
    role: Optional[str] = Query(None, description="Filter by role"),
    department: Optional[str] = Query(None, description="Filter by department"),
    status: Optional[str] = Query(None, description="Filter by hire status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    ctx: OnboardingContext = Depends(get_context),
):
    hires, total = await ctx.hires.list(
        role=role, department=department, status=status, page=page, page_size=page_size,
    )
    return HireListResponse(
        hires=[HireResponse.model_validate(h) for h in hires],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{hire_id}", response_model=HireResponse)
async def get_hire(hire_id: str, ctx: OnboardingContext = Depends(get_context)):
    row = await ctx.hires.get(hire_id)
    if not row:
        raise NotFoundError("Hire", hire_id)
    return HireResponse.model_validate(row)


@router.patch("/{hire_id}/status", response_model=HireCreateResponse)
async def update_hire_status(
    hire_id: str,
    payload: HireStatusRequest,
    actor: str = Query("system", min_length=1),
    ctx: OnboardingContext = Depends(get_context),
):
    """Change a hire's status. Becoming active runs the hire-created hook."""
    row = await ctx.hires.get(hire_id)
    if not row:
        raise NotFoundError("Hire", hire_id)

    was_active = row.status == "active"
    row = await ctx.hires.update_status(hire_id, payload.status)
    result = None
    if payload.status == "active" and not was_active:
        result = await ctx.service.handle_hire_created(hire_id, actor)
    return HireCreateResponse(
        hire=HireResponse.model_validate(row),
        workflow=ApplyResponse.from_result(result) if result else None,
    )


@router.get("/{hire_id}/tasks", response_model=TaskListResponse)
async def list_hire_tasks(hire_id: str, ctx: OnboardingContext = Depends(get_context)):
    """The hire's tasks in materialization order, with aggregate progress."""
    progress = await ctx.service.get_progress(hire_id)
    tasks = await ctx.tasks.get_tasks_for_hire(hire_id)
    return TaskListResponse(hire_id=hire_id, tasks=tasks, progress=progress)


@router.get("/{hire_id}/progress")
async def get_hire_progress(hire_id: str, ctx: OnboardingContext = Depends(get_context)):
    progress = await ctx.service.get_progress(hire_id)
    return progress.model_dump(mode="json")
