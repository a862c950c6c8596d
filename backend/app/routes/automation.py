"""Automation API routes: rule listing and toggles, on-demand scans.

Rule toggles are process-wide and kept in memory; they reset to the
built-in rules on restart.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends

from app.dependencies import OnboardingContext, get_context, get_scheduler
from onboarding.errors import NotFoundError
from onboarding.models import AutomationRule

from .schemas import ActiveToggleRequest, ScanResponse, SchedulerStatusResponse

logger = logging.getLogger("app.routes.automation")

router = APIRouter(prefix="/api/v2/automation", tags=["automation"])


@router.get("/rules", response_model=List[AutomationRule])
async def list_rules(ctx: OnboardingContext = Depends(get_context)):
    return ctx.automation.rules


@router.patch("/rules/{rule_id}", response_model=AutomationRule)
async def toggle_rule(
    rule_id: str,
    payload: ActiveToggleRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    rule = ctx.automation.set_rule_active(rule_id, payload.is_active)
    if rule is None:
        raise NotFoundError("Rule", rule_id)
    logger.info(f"Rule {rule_id}: is_active -> {payload.is_active}")
    return rule


@router.post("/scan", response_model=ScanResponse)
async def run_scan(ctx: OnboardingContext = Depends(get_context)):
    """Run one automation pass now.

    With the scheduler running, the pass goes through it so it can't overlap
    a scheduled one; ``skipped`` is true when a scan was already in progress.
    """
    scheduler = get_scheduler()
    if scheduler is not None:
        report = await scheduler.tick()
        if report is None:
            return ScanResponse(skipped=True)
        return ScanResponse(report=report.to_dict())

    report = await ctx.automation.scan()
    return ScanResponse(report=report.to_dict())


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_status():
    scheduler = get_scheduler()
    if scheduler is None:
        return SchedulerStatusResponse(enabled=False, running=False, scan_in_progress=False)
    return SchedulerStatusResponse(
        enabled=True,
        running=scheduler.is_running,
        scan_in_progress=scheduler.scan_in_progress,
        interval_seconds=scheduler.interval,
        skipped_ticks=scheduler.skipped_ticks,
        last_report=scheduler.last_report.to_dict() if scheduler.last_report else None,
    )
