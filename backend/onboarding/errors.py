"""Error taxonomy for the onboarding engine."""

from __future__ import annotations

from typing import List, Optional


class OnboardingError(Exception):
    """Base class for engine errors."""


class NotFoundError(OnboardingError):
    """A task, hire or template id could not be resolved."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class InvalidTemplateError(OnboardingError):
    """Template rejected at publish time (cycles, unknown or duplicate ids)."""

    def __init__(self, template_id: str, problems: List[str]):
        self.template_id = template_id
        self.problems = problems
        super().__init__(f"Template '{template_id}' is invalid: {'; '.join(problems)}")


class DependencyBlockedError(OnboardingError):
    """Task cannot leave pending while a dependency is not completed."""

    def __init__(self, task_id: str, blocking: List[str]):
        self.task_id = task_id
        self.blocking = blocking
        super().__init__(
            f"Task '{task_id}' is blocked by incomplete dependencies: {', '.join(blocking)}"
        )


class InvalidTransitionError(OnboardingError):
    """Requested status change is not allowed from the task's current status."""

    def __init__(self, task_id: str, current: str, target: str, reason: Optional[str] = None):
        self.task_id = task_id
        self.current = current
        self.target = target
        message = f"Task '{task_id}' cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
