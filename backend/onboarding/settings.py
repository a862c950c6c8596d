"""Onboarding runtime settings: tunable parameters for the engine.

All values read from environment variables with sensible defaults.
Import from here instead of hardcoding.

Infrastructure config (Temporal address, API host) stays in
onboarding/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


def _bool(key: str, default: bool) -> bool:
    return os.getenv(key, "true" if default else "false").lower() in ("true", "1", "yes")


# =====================================================================
# Automation
# =====================================================================

# Run the recurring automation scan inside the API process
AUTOMATION_ENABLED = _bool("AUTOMATION_ENABLED", True)

# Seconds between automation scans (a tick is skipped while a pass is running)
AUTOMATION_SCAN_INTERVAL = _float("AUTOMATION_SCAN_INTERVAL", 300.0)

# Default lead time for deadline_approaching rules without their own threshold
DEADLINE_REMINDER_DAYS = _int("DEADLINE_REMINDER_DAYS", 2)


# =====================================================================
# Lifecycle
# =====================================================================

# Days granted when overdue tasks are reset in bulk
OVERDUE_EXTENSION_DAYS = _int("OVERDUE_EXTENSION_DAYS", 7)

# Buffer added to the last task offset for the expected completion date
COMPLETION_BUFFER_DAYS = _int("COMPLETION_BUFFER_DAYS", 5)


# =====================================================================
# Bulk Operations
# =====================================================================

# Max hires processed concurrently within one bulk operation
BULK_CONCURRENCY = _int("BULK_CONCURRENCY", 4)

# Temporal workflow timeouts
BULK_HEARTBEAT_INTERVAL = _float("BULK_HEARTBEAT_INTERVAL", 30.0)
BULK_WORKFLOW_MIN_TIMEOUT_MINUTES = _int("BULK_WORKFLOW_MIN_TIMEOUT_MINUTES", 10)
BULK_WORKFLOW_PER_HIRE_SECONDS = _int("BULK_WORKFLOW_PER_HIRE_SECONDS", 30)
BULK_WORKFLOW_HEARTBEAT_TIMEOUT_MINUTES = _int("BULK_WORKFLOW_HEARTBEAT_TIMEOUT_MINUTES", 5)


# =====================================================================
# Template Catalog
# =====================================================================

# template_source: "database" (default) | "static"
#   database: published templates from the workflow_templates table
#   static: built-in DEFAULT_TEMPLATES only
TEMPLATE_CATALOG_SOURCE = _str("TEMPLATE_CATALOG_SOURCE", "database")

# Seed the built-in templates into an empty template table on startup
SEED_DEFAULT_TEMPLATES = _bool("SEED_DEFAULT_TEMPLATES", True)


# =====================================================================
# SSE push (Worker → API)
# =====================================================================

SSE_HTTP_TIMEOUT = _float("SSE_HTTP_TIMEOUT", 10.0)
SSE_HTTP_MAX_CONNECTIONS = _int("SSE_HTTP_MAX_CONNECTIONS", 10)
SSE_HTTP_MAX_KEEPALIVE = _int("SSE_HTTP_MAX_KEEPALIVE", 5)
