"""Wires the onboarding engine to a database session.

Repositories are bound to one AsyncSession, so the engine objects are
rebuilt per request (and per scheduler tick / worker activity). What must be
shared across them lives at process level here: the per-hire lock registry,
the automation rule list, and the static catalog when that source is used.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncGenerator, Callable, List, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.automation import AutomationEngine, ScanReport
from onboarding.bulk import BulkOperationsCoordinator
from onboarding.catalog import DEFAULT_AUTOMATION_RULES, StaticTemplateCatalog
from onboarding.interfaces import TemplateCatalogSource
from onboarding.lifecycle import TaskLifecycleManager
from onboarding.locks import HireLockRegistry
from onboarding.models import AutomationRule
from onboarding.scheduler import AutomationScheduler
from onboarding.service import OnboardingService
from onboarding.settings import AUTOMATION_SCAN_INTERVAL, BULK_CONCURRENCY, TEMPLATE_CATALOG_SOURCE

from .database import get_session, get_session_ctx
from .event_bus import push_event, user_stream
from .models.db import NotificationModel
from .repositories.hire import HireRepository
from .repositories.notification import NotificationRepository, Publisher, notification_to_dict
from .repositories.task import TaskRepository
from .repositories.template import TemplateRepository

_locks = HireLockRegistry()
_rules: List[AutomationRule] = list(DEFAULT_AUTOMATION_RULES)
_static_catalog: Optional[StaticTemplateCatalog] = None


def get_locks() -> HireLockRegistry:
    return _locks


def get_rules() -> List[AutomationRule]:
    return _rules


def get_static_catalog() -> StaticTemplateCatalog:
    global _static_catalog
    if _static_catalog is None:
        _static_catalog = StaticTemplateCatalog()
    return _static_catalog


def publish_to_event_bus(row: NotificationModel) -> None:
    push_event(user_stream(row.user_id), "notification", notification_to_dict(row))


@dataclass
class OnboardingContext:
    session: AsyncSession
    tasks: TaskRepository
    hires: HireRepository
    templates: TemplateRepository
    notifications: NotificationRepository
    catalog: TemplateCatalogSource
    lifecycle: TaskLifecycleManager
    automation: AutomationEngine
    service: OnboardingService
    bulk: BulkOperationsCoordinator


def build_context(
    session: AsyncSession,
    publisher: Optional[Publisher] = publish_to_event_bus,
    locks: Optional[HireLockRegistry] = None,
    rules: Optional[List[AutomationRule]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    catalog_source: str = TEMPLATE_CATALOG_SOURCE,
) -> OnboardingContext:
    """Assemble repositories and engine components around ``session``."""
    tasks = TaskRepository(session)
    hires = HireRepository(session)
    templates = TemplateRepository(session)
    notifications = NotificationRepository(session, publisher=publisher)
    catalog: TemplateCatalogSource = get_static_catalog() if catalog_source == "static" else templates
    locks = locks or _locks
    clock_kwargs = {"clock": clock} if clock else {}

    lifecycle = TaskLifecycleManager(tasks, notifications, hires, locks=locks, **clock_kwargs)
    automation = AutomationEngine(
        rules if rules is not None else _rules,
        tasks, hires, notifications, lifecycle, **clock_kwargs,
    )
    service = OnboardingService(
        catalog, tasks, hires, notifications, lifecycle, automation=automation, **clock_kwargs,
    )

    @asynccontextmanager
    async def hire_scope() -> AsyncGenerator[OnboardingService, None]:
        # Own session per hire: one hire commits or rolls back on its own
        async with get_session_ctx() as hire_session:
            yield build_context(
                hire_session, publisher=publisher, locks=locks, rules=rules,
                clock=clock, catalog_source=catalog_source,
            ).service

    bulk = BulkOperationsCoordinator(service, concurrency=BULK_CONCURRENCY, scope=hire_scope)
    return OnboardingContext(
        session=session,
        tasks=tasks,
        hires=hires,
        templates=templates,
        notifications=notifications,
        catalog=catalog,
        lifecycle=lifecycle,
        automation=automation,
        service=service,
        bulk=bulk,
    )


async def get_context(
    session: AsyncSession = Depends(get_session),
) -> AsyncGenerator[OnboardingContext, None]:
    """FastAPI dependency: engine bound to the request's session."""
    yield build_context(session)


class SessionScopedAutomation:
    """Runs each automation scan in its own session; what the scheduler drives."""

    def __init__(self, publisher: Optional[Publisher] = publish_to_event_bus):
        self.publisher = publisher

    async def scan(self) -> ScanReport:
        async with get_session_ctx() as session:
            ctx = build_context(session, publisher=self.publisher)
            return await ctx.automation.scan()


_scheduler: Optional[AutomationScheduler] = None


def get_scheduler() -> Optional[AutomationScheduler]:
    """The running automation scheduler, or None when automation is disabled."""
    return _scheduler


def start_scheduler(interval: float = AUTOMATION_SCAN_INTERVAL) -> AutomationScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AutomationScheduler(SessionScopedAutomation(), interval=interval, locks=_locks)
    _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
