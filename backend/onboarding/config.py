"""Onboarding service configuration constants: single source of truth for infrastructure env vars."""

import os

# Temporal
TEMPORAL_ADDRESS = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
TASK_QUEUE = os.getenv("TEMPORAL_TASK_QUEUE", "onboarding-task-queue")

# Server binding used by entrypoint / uvicorn
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Actor recorded on tasks created or changed by automation
SYSTEM_ACTOR = os.getenv("ONBOARDING_SYSTEM_ACTOR", "system")

# API base URL the worker pushes SSE events to.
# 127.0.0.1 rather than localhost avoids IPv6 resolution stalls
API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
