"""Template catalog: built-in templates, publish-time validation, static source.

Templates are immutable once published. Re-publishing an id stores a new
version; hires already mid-workflow keep the version recorded on their tasks.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .errors import InvalidTemplateError
from .models import AutomationRule, RuleActions, RuleConditions, TaskTemplate, WorkflowTemplate

logger = logging.getLogger("onboarding.catalog")


def validate_template(template: WorkflowTemplate) -> WorkflowTemplate:
    """Reject templates whose task graph cannot be materialized safely.

    Checks duplicate task ids, dependencies on unknown ids, and dependency
    cycles (self-dependencies included).

    Raises:
        InvalidTemplateError: listing every problem found
    """
    problems: List[str] = []
    ids: Dict[str, TaskTemplate] = {}
    for task in template.tasks:
        if task.id in ids:
            problems.append(f"duplicate task id '{task.id}'")
        ids[task.id] = task

    for task in template.tasks:
        for dep in task.dependencies:
            if dep not in ids:
                problems.append(f"task '{task.id}' depends on unknown task '{dep}'")

    # Iterative DFS with white/grey/black marking
    WHITE, GREY, BLACK = 0, 1, 2
    color = {task_id: WHITE for task_id in ids}
    for root in ids:
        if color[root] != WHITE:
            continue
        stack = [(root, iter(ids[root].dependencies))]
        color[root] = GREY
        while stack:
            node, deps = stack[-1]
            advanced = False
            for dep in deps:
                if dep not in ids:
                    continue
                if color[dep] == GREY:
                    problems.append(f"dependency cycle through '{node}' -> '{dep}'")
                elif color[dep] == WHITE:
                    color[dep] = GREY
                    stack.append((dep, iter(ids[dep].dependencies)))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                stack.pop()

    if problems:
        raise InvalidTemplateError(template.id, problems)
    return template


class StaticTemplateCatalog:
    """In-memory template catalog, ordered by first publication.

    Serves the latest version of every template id; earlier versions stay
    retrievable through ``get_version``.
    """

    def __init__(self, templates: Optional[Iterable[WorkflowTemplate]] = None):
        self._order: List[str] = []
        self._versions: Dict[str, List[WorkflowTemplate]] = {}
        for template in templates if templates is not None else DEFAULT_TEMPLATES:
            self.publish(template)

    def publish(self, template: WorkflowTemplate) -> WorkflowTemplate:
        validate_template(template)
        history = self._versions.get(template.id)
        if history is None:
            self._order.append(template.id)
            self._versions[template.id] = [template]
            return template

        published = template.model_copy(update={"version": history[-1].version + 1})
        history.append(published)
        logger.info(f"Template {template.id}: published version {published.version}")
        return published

    async def list_active_templates(self) -> List[WorkflowTemplate]:
        latest = [self._versions[tid][-1] for tid in self._order]
        return [t for t in latest if t.is_active]

    async def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        history = self._versions.get(template_id)
        return history[-1] if history else None

    def get_version(self, template_id: str, version: int) -> Optional[WorkflowTemplate]:
        for template in self._versions.get(template_id, []):
            if template.version == version:
                return template
        return None


# ─── Built-in templates ──────────────────────────────────────────────

_ALL_ROLES = ["admin", "staff", "team_lead", "intern"]
_ENGINEERING = ["Engineering", "IT", "Product"]

DEFAULT_TASKS: List[TaskTemplate] = [
    # Day 1: critical setup
    TaskTemplate(
        id="i9-form", title="Complete I-9 Form",
        description="Fill out employment eligibility verification",
        category="documentation", days_from_start=1, priority="high",
        estimated_hours=0.5, auto_assign=True,
    ),
    TaskTemplate(
        id="nda", title="Sign NDA and Confidentiality Agreement",
        description="Review and sign non-disclosure agreement",
        category="documentation", days_from_start=1, priority="high",
        estimated_hours=0.5, auto_assign=True,
    ),
    TaskTemplate(
        id="direct-deposit", title="Submit Direct Deposit Form",
        description="Provide banking information for payroll",
        category="documentation", days_from_start=1, priority="high",
        estimated_hours=0.25, auto_assign=True,
    ),
    TaskTemplate(
        id="work-email", title="Setup Work Email",
        description="Activate company email account",
        category="setup", days_from_start=1, priority="high",
        estimated_hours=1, auto_assign=True,
    ),
    TaskTemplate(
        id="hr-meeting", title="Meet with HR Manager",
        description="Initial HR orientation meeting",
        category="meeting", days_from_start=1, priority="high",
        estimated_hours=1, auto_assign=True,
    ),
    # Day 2: IT setup & security
    TaskTemplate(
        id="install-software", title="Install Required Software",
        description="Download and install necessary tools",
        category="setup", days_from_start=2, priority="high",
        estimated_hours=2, dependencies=["work-email"],
        role_specific=_ALL_ROLES, auto_assign=True,
    ),
    TaskTemplate(
        id="security-training", title="Complete IT Security Training",
        description="Mandatory security awareness training",
        category="training", days_from_start=2, priority="high",
        estimated_hours=1.5, auto_assign=True,
    ),
    TaskTemplate(
        id="manager-meeting", title="Meet with Direct Manager",
        description="Introduction and role expectations",
        category="meeting", days_from_start=2, priority="high",
        estimated_hours=1, auto_assign=True,
    ),
    # Week 1: integration
    TaskTemplate(
        id="team-intro", title="Team Introduction Meeting",
        description="Meet your immediate team members",
        category="meeting", days_from_start=3, priority="medium",
        estimated_hours=1, dependencies=["manager-meeting"], auto_assign=True,
    ),
    TaskTemplate(
        id="department-overview", title="Department Overview Session",
        description="Learn about department goals and structure",
        category="training", days_from_start=4, priority="medium",
        estimated_hours=2, dependencies=["team-intro"], auto_assign=True,
    ),
    TaskTemplate(
        id="benefits", title="Complete Benefits Enrollment",
        description="Select health insurance and other benefits",
        category="documentation", days_from_start=5, priority="high",
        estimated_hours=1, auto_assign=True,
    ),
    TaskTemplate(
        id="handbook", title="Review Employee Handbook",
        description="Read and acknowledge company policies",
        category="documentation", days_from_start=5, priority="medium",
        estimated_hours=2, auto_assign=True,
    ),
    TaskTemplate(
        id="dev-environment", title="Setup Development Environment",
        description="Configure local development tools",
        category="setup", days_from_start=5, priority="medium",
        estimated_hours=3, dependencies=["install-software"],
        role_specific=["admin", "staff", "team_lead"],
        department_specific=_ENGINEERING,
    ),
    # Weeks 2-3: role-specific training
    TaskTemplate(
        id="role-training", title="Complete Role-Specific Training",
        description="Job-specific skills and processes",
        category="training", days_from_start=10, priority="high",
        estimated_hours=8, dependencies=["department-overview", "handbook"],
        auto_assign=True,
    ),
    TaskTemplate(
        id="shadowing", title="Shadow Team Member",
        description="Observe daily workflows and processes",
        category="training", days_from_start=12, priority="medium",
        estimated_hours=4, dependencies=["role-training"], auto_assign=True,
    ),
    TaskTemplate(
        id="first-project", title="First Project Assignment",
        description="Receive and begin first project",
        category="other", days_from_start=14, priority="medium",
        estimated_hours=8, dependencies=["shadowing"],
        role_specific=["staff", "team_lead", "intern"],
    ),
    # Weeks 3-4: integration complete
    TaskTemplate(
        id="first-milestone", title="Complete First Project Milestone",
        description="Deliver initial project deliverable",
        category="other", days_from_start=21, priority="medium",
        estimated_hours=8, dependencies=["first-project"],
        role_specific=["staff", "team_lead", "intern"],
    ),
    TaskTemplate(
        id="checkin-30", title="30-Day Check-in with Manager",
        description="Progress review and feedback session",
        category="meeting", days_from_start=30, priority="high",
        estimated_hours=1, auto_assign=True,
    ),
]

_LEADERSHIP_TASKS: List[TaskTemplate] = [
    TaskTemplate(
        id="leadership-training", title="Leadership Training Module",
        description="Complete management and leadership fundamentals",
        category="training", days_from_start=7, priority="high",
        estimated_hours=4, role_specific=["team_lead", "admin"],
    ),
    TaskTemplate(
        id="team-management-setup", title="Team Management Setup",
        description="Review team structure and management tools",
        category="training", days_from_start=10, priority="high",
        estimated_hours=2, role_specific=["team_lead", "admin"],
    ),
]

DEFAULT_TEMPLATES: List[WorkflowTemplate] = [
    WorkflowTemplate(
        id="full-onboarding",
        name="Complete Onboarding Program",
        description="Full 30-day onboarding workflow for all new hires",
        role_targets=_ALL_ROLES,
        tasks=DEFAULT_TASKS,
        auto_trigger=True,
    ),
    WorkflowTemplate(
        id="developer-onboarding",
        name="Developer-Specific Onboarding",
        description="Technical onboarding for engineering roles",
        role_targets=["staff", "team_lead"],
        department_targets=_ENGINEERING,
        tasks=[
            t for t in DEFAULT_TASKS
            if not t.role_specific or any(r in ("staff", "team_lead") for r in t.role_specific)
        ],
        auto_trigger=True,
    ),
    WorkflowTemplate(
        id="intern-onboarding",
        name="Intern Onboarding Program",
        description="Streamlined onboarding for interns",
        role_targets=["intern"],
        tasks=[t for t in DEFAULT_TASKS if not t.role_specific or "intern" in t.role_specific],
        auto_trigger=True,
    ),
    WorkflowTemplate(
        id="manager-onboarding",
        name="Leadership Onboarding",
        description="Enhanced onboarding for management roles",
        role_targets=["team_lead", "admin"],
        tasks=DEFAULT_TASKS + _LEADERSHIP_TASKS,
        auto_trigger=True,
    ),
]

DEFAULT_AUTOMATION_RULES: List[AutomationRule] = [
    AutomationRule(
        id="overdue-notification",
        name="Overdue Task Notification",
        description="Send notification when tasks become overdue",
        trigger="task_overdue",
        actions=RuleActions(send_notification=True, escalate_to_manager=True),
    ),
    AutomationRule(
        id="deadline-reminder",
        name="Deadline Approaching Reminder",
        description="Remind users 2 days before task due date",
        trigger="deadline_approaching",
        conditions=RuleConditions(days_before_due=2),
        actions=RuleActions(send_notification=True),
    ),
    AutomationRule(
        id="training-completion-followup",
        name="Training Completion Follow-up",
        description="Assign practical task after training completion",
        trigger="task_completed",
        conditions=RuleConditions(task_category="training"),
        actions=RuleActions(
            send_notification=True,
            assign_follow_up_task="Apply training knowledge in practical scenario",
        ),
    ),
    AutomationRule(
        id="documentation-escalation",
        name="Critical Documentation Escalation",
        description="Escalate overdue critical documentation to manager",
        trigger="task_overdue",
        conditions=RuleConditions(task_category="documentation"),
        actions=RuleActions(escalate_to_manager=True, send_notification=True),
    ),
]
