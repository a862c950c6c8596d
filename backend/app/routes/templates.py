"""Workflow template API routes.

Templates are immutable once published: publishing an existing id stores
the next version, and hires keep the version they were materialized from.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import OnboardingContext, get_context
from onboarding.errors import NotFoundError
from onboarding.models import WorkflowTemplate

from .schemas import (
    ActiveToggleRequest,
    TemplateListResponse,
    TemplateMatchResponse,
    TemplatePublishRequest,
)

logger = logging.getLogger("app.routes.templates")

router = APIRouter(prefix="/api/v2/templates", tags=["templates"])


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    include_inactive: bool = Query(False, description="Include deactivated templates"),
    ctx: OnboardingContext = Depends(get_context),
):
    """Latest version of every template, in publication order."""
    templates = await ctx.templates.list_templates(include_inactive=include_inactive)
    return TemplateListResponse(templates=templates, total=len(templates))


@router.post("", response_model=WorkflowTemplate, status_code=201)
async def publish_template(
    payload: TemplatePublishRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    """Publish a template (or a new version of one). Invalid graphs are rejected with 422."""
    template = await ctx.templates.publish(payload.to_template(), published_by=payload.published_by)
    logger.info(f"Template {template.id} v{template.version} published by {payload.published_by}")
    return template


@router.get("/match/{hire_id}", response_model=TemplateMatchResponse)
async def match_template(hire_id: str, ctx: OnboardingContext = Depends(get_context)):
    """The template that would be applied to the hire, or null when none targets them."""
    hire = await ctx.service.get_hire(hire_id)
    template = await ctx.service.select_for_hire(hire)
    return TemplateMatchResponse(hire_id=hire_id, template=template)


@router.get("/{template_id}", response_model=WorkflowTemplate)
async def get_template(
    template_id: str,
    version: Optional[int] = Query(None, ge=1, description="Specific version; latest when omitted"),
    ctx: OnboardingContext = Depends(get_context),
):
    template = await ctx.templates.get_template(template_id, version=version)
    if template is None:
        raise NotFoundError("Template", template_id if version is None else f"{template_id}@v{version}")
    return template


@router.get("/{template_id}/versions", response_model=List[WorkflowTemplate])
async def list_template_versions(template_id: str, ctx: OnboardingContext = Depends(get_context)):
    versions = await ctx.templates.list_versions(template_id)
    if not versions:
        raise NotFoundError("Template", template_id)
    return versions


@router.patch("/{template_id}/active", response_model=WorkflowTemplate)
async def set_template_active(
    template_id: str,
    payload: ActiveToggleRequest,
    ctx: OnboardingContext = Depends(get_context),
):
    """Activate or deactivate the latest version of a template."""
    if ctx.catalog is not ctx.templates:
        raise HTTPException(
            status_code=409,
            detail="Templates are served from the static catalog and cannot be toggled",
        )
    template = await ctx.templates.set_active(template_id, payload.is_active)
    if template is None:
        raise NotFoundError("Template", template_id)
    logger.info(f"Template {template_id}: is_active -> {payload.is_active}")
    return template
