"""SSE event push helpers and heartbeat for Temporal activities.

These run in the Temporal Worker process and push events via HTTP POST
to the FastAPI API server, which forwards them to its event bus.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Set

import httpx
from temporalio import activity

from ..config import API_BASE_URL
from ..logging_config import get_worker_logger
from ..settings import SSE_HTTP_MAX_CONNECTIONS, SSE_HTTP_MAX_KEEPALIVE, SSE_HTTP_TIMEOUT

logger = get_worker_logger()

# Shared client with connection pooling; a bulk job pushes one event per hire
_http_client: Optional[httpx.AsyncClient] = None

# Fire-and-forget pushes scheduled from sync callbacks
_pending_pushes: Set[asyncio.Task] = set()


async def _get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=SSE_HTTP_TIMEOUT,
            limits=httpx.Limits(
                max_connections=SSE_HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=SSE_HTTP_MAX_KEEPALIVE,
            ),
        )
    return _http_client


async def _push_event(stream_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """POST an event to /api/internal/events/{stream_id}.

    Never raises: a missed progress event must not fail the bulk job.
    """
    url = f"{API_BASE_URL}/api/internal/events/{stream_id}"
    try:
        client = await _get_http_client()
        resp = await client.post(url, json={"event_type": event_type, "data": data})
        if resp.status_code >= 400:
            logger.warning(f"Push {event_type} to {stream_id}: HTTP {resp.status_code}")
    except Exception as e:
        logger.error(f"Failed to push SSE event {event_type} to {stream_id}: {e}")


def _schedule_push(stream_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """Sync wrapper: schedule _push_event on the running loop."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return  # No event loop running, skip
    task = loop.create_task(_push_event(stream_id, event_type, data))
    _pending_pushes.add(task)
    task.add_done_callback(_pending_pushes.discard)


async def _periodic_heartbeat(job_id: str, interval_seconds: float = 30.0) -> None:
    """Heartbeat Temporal while the activity runs, so cancellation gets delivered.

    Runs as a background task and is cancelled when the activity completes.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            activity.heartbeat(f"alive:job:{job_id}")
        except Exception:
            # Activity may have been cancelled; stop heartbeating
            return
