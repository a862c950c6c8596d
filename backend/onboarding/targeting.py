"""Targeting resolver: pick the best-matching workflow template for a hire.

Pure functions, no I/O, so selection can be tested without storage.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .models import HireProfile, WorkflowTemplate


def _audience_matches(targets: Iterable[str], value: Optional[str]) -> bool:
    targets = list(targets)
    return not targets or (value or "") in targets


def template_matches(template: WorkflowTemplate, hire: HireProfile) -> bool:
    """True when the template's role and department targets admit the hire.

    Empty target lists admit everyone. Ignores ``is_active``: bulk apply
    checks an explicitly chosen template with this too.
    """
    return (
        _audience_matches(template.role_targets, hire.role)
        and _audience_matches(template.department_targets, hire.department)
    )


def specificity(template: WorkflowTemplate) -> int:
    """Number of targeting dimensions the template constrains (0..2)."""
    return (1 if template.role_targets else 0) + (1 if template.department_targets else 0)


def select_template(
    hire: HireProfile,
    catalog: Iterable[WorkflowTemplate],
) -> Optional[WorkflowTemplate]:
    """Return the most specific active template that applies to ``hire``.

    Ties keep catalog order (``sorted`` is stable), so the first
    equally-specific template wins. Returns None when nothing applies.
    """
    candidates = [t for t in catalog if t.is_active and template_matches(t, hire)]
    if not candidates:
        return None
    ranked = sorted(candidates, key=specificity, reverse=True)
    return ranked[0]
