"""Onboarding workflow engine package.

Modules:
- catalog / targeting: template definitions and best-match selection
- materializer: template -> hire-specific task instances
- lifecycle: task state transitions and progress recomputation
- automation / scheduler: rule evaluation and the recurring scan
- bulk: multi-hire operations with per-hire isolation
- temporal: Temporal workflow/activity definitions and worker for bulk jobs
"""
