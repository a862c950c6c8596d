"""Onboarding API routes: applying workflows and driving task lifecycle.

Every action is idempotent: applying a template twice creates no new tasks,
completing a completed task changes nothing and sends no notifications.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.dependencies import OnboardingContext, get_context
from onboarding.errors import NotFoundError
from onboarding.models import TaskInstance

from .schemas import (
    ActivateTaskRequest,
    ApplyRequest,
    ApplyResponse,
    CompleteTaskRequest,
    CompleteTaskResponse,
    DeleteTaskResponse,
    ResetTaskRequest,
)

logger = logging.getLogger("app.routes.onboarding")

router = APIRouter(prefix="/api/v2/onboarding", tags=["onboarding"])


@router.post("/hires/{hire_id}/apply", response_model=ApplyResponse)
async def apply_workflow(
    hire_id: str,
    payload: ApplyRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    """Apply the best matching template, or ``template_id`` when given.

    A hire no template targets gets ``status="no_template"``; an explicit
    template whose audience excludes the hire gets ``"not_eligible"``.
    """
    if payload.template_id is None:
        result = await ctx.service.apply_for_hire(hire_id, payload.actor, notify=payload.notify)
    else:
        hire = await ctx.service.get_hire(hire_id)
        template = await ctx.service.get_template(payload.template_id)
        result = await ctx.service.apply_template(hire, template, payload.actor, notify=payload.notify)
    return ApplyResponse.from_result(result)


@router.get("/tasks/{task_id}", response_model=TaskInstance)
async def get_task(task_id: str, ctx: OnboardingContext = Depends(get_context)):
    task = await ctx.tasks.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


@router.post("/tasks/{task_id}/activate", response_model=TaskInstance)
async def activate_task(
    task_id: str,
    payload: ActivateTaskRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    """Start a task. 409 while any of its dependencies is incomplete."""
    return await ctx.lifecycle.activate(task_id, new_due_date=payload.due_date)


@router.post("/tasks/{task_id}/complete", response_model=CompleteTaskResponse)
async def complete_task(
    task_id: str,
    payload: CompleteTaskRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    outcome = await ctx.service.complete_task(task_id, payload.actor, payload.note)
    return CompleteTaskResponse(
        task=outcome.task,
        progress=outcome.progress,
        changed=outcome.changed,
        workflow_finished=outcome.workflow_finished,
    )


@router.post("/tasks/{task_id}/reset", response_model=TaskInstance)
async def reset_task(
    task_id: str,
    payload: ResetTaskRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    """Move an overdue or completed task back to pending with a new due date."""
    return await ctx.lifecycle.reset(task_id, payload.due_date)


@router.delete("/tasks/{task_id}", response_model=DeleteTaskResponse)
async def delete_task(task_id: str, ctx: OnboardingContext = Depends(get_context)):
    task = await ctx.tasks.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    update = await ctx.lifecycle.delete(task_id)
    return DeleteTaskResponse(task_id=task_id, hire_id=task.hire_id, progress=update.percentage)
