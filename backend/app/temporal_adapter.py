"""Temporal Client Adapter

Manages the Temporal client lifecycle and starts/cancels bulk job workflows.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from temporalio.client import Client

from onboarding.config import TASK_QUEUE as TEMPORAL_TASK_QUEUE, TEMPORAL_ADDRESS

logger = logging.getLogger(__name__)

# Singleton client instance (initialized via lifespan)
_client: Optional[Client] = None
_client_lock = asyncio.Lock()


async def init_temporal_client() -> Optional[Client]:
    """Initialize and return the Temporal client singleton.

    Returns None if Temporal is not available (graceful degradation).
    """
    global _client
    async with _client_lock:
        if _client is None:
            try:
                _client = await Client.connect(TEMPORAL_ADDRESS)
                logger.info(f"Temporal connected: {TEMPORAL_ADDRESS}")
            except Exception as e:
                logger.warning(
                    f"Temporal not connected ({TEMPORAL_ADDRESS}): {e}. "
                    "Bulk job endpoints will return 503, everything else keeps working"
                )
                _client = None
    return _client


async def close_temporal_client() -> None:
    """Release the Temporal client (the SDK needs no explicit close)."""
    global _client
    _client = None


async def get_client() -> Client:
    """Get the Temporal client, connecting if needed.

    Raises RuntimeError if Temporal is not reachable.
    """
    if _client is None:
        await init_temporal_client()
    if _client is None:
        raise RuntimeError("Temporal is not connected, start the Temporal service first")
    return _client


def bulk_workflow_id(job_id: str) -> str:
    return f"bulk-{job_id}"


async def start_bulk_job(
    job_id: str,
    operation: str,
    hire_ids: List[str],
    actor: str,
    template_id: Optional[str] = None,
    extension_days: Optional[int] = None,
) -> str:
    """Start a BulkOnboardingWorkflow and return its workflow ID."""
    client = await get_client()
    params: Dict[str, Any] = {
        "job_id": job_id,
        "operation": operation,
        "hire_ids": hire_ids,
        "actor": actor,
        "template_id": template_id,
    }
    if extension_days is not None:
        params["extension_days"] = extension_days

    workflow_id = bulk_workflow_id(job_id)
    await client.start_workflow(
        "BulkOnboardingWorkflow",
        params,
        id=workflow_id,
        task_queue=TEMPORAL_TASK_QUEUE,
    )
    logger.info(f"Job {job_id}: started workflow {workflow_id} ({operation}, {len(hire_ids)} hires)")
    return workflow_id


async def cancel_bulk_job(job_id: str) -> None:
    """Request cancellation; the activity stops between hires."""
    client = await get_client()
    handle = client.get_workflow_handle(bulk_workflow_id(job_id))
    await handle.cancel()
