"""SSE event bus for bulk job progress and user notifications.

Streams are keyed by a string id:
  - ``job:<job_id>``   bulk job progress, closed by a ``job_done`` event
  - ``user:<user_id>`` notifications for one hire or manager, long-lived

Architecture:
  - In-process callers (routes, notifier, scheduler) use EventBus.push()
  - The Temporal Worker runs in another process and POSTs to
    /api/internal/events/{stream_id}, which delegates to EventBus.push()
  - Clients subscribe via EventBus.subscribe(), an async generator of
    SSE-formatted strings

Event Envelope:
  {
    "event": "<event_type>",
    "data": {"timestamp": "<ISO 8601>", ...payload}
  }
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, Optional, Set

from fastapi import APIRouter
from pydantic import BaseModel

from onboarding.logging_config import get_sse_logger

logger = get_sse_logger()

router = APIRouter()

# Buffer limits: prevent unbounded memory growth for streams nobody reads
BUFFER_MAX_EVENTS = 200
BUFFER_MAX_AGE_SECS = 600  # 10 minutes

# Events that tell a job stream's generator to close the connection
STOP_EVENTS = frozenset({"job_done"})


def job_stream(job_id: str) -> str:
    return f"job:{job_id}"


def user_stream(user_id: str) -> str:
    return f"user:{user_id}"


class EventBus:
    """Fan-out of events to connected SSE clients, with pre-connection buffering."""

    def __init__(
        self,
        buffer_max_events: int = BUFFER_MAX_EVENTS,
        buffer_max_age_secs: int = BUFFER_MAX_AGE_SECS,
    ):
        self._streams: Dict[str, Set[asyncio.Queue]] = {}
        self._buffers: Dict[str, dict] = {}
        self._buffer_max_events = buffer_max_events
        self._buffer_max_age_secs = buffer_max_age_secs
        self._lock = asyncio.Lock()

    def push(self, stream_id: str, event_type: str, data: dict) -> None:
        """Deliver an event to every subscriber of ``stream_id``, or buffer it.

        Synchronous on purpose: no await between lookup and put, so it can be
        called from sync callbacks without racing subscribe/cleanup.
        """
        data = dict(data)
        data.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

        event = {"event": event_type, "data": data}
        queues = self._streams.get(stream_id)
        if queues:
            for queue in queues:
                queue.put_nowait(event)
            logger.info(f"Event sent: {event_type} for {stream_id} ({len(queues)} clients)")
        else:
            self._buffer_event(stream_id, event, event_type)

    def has_subscribers(self, stream_id: str) -> bool:
        return bool(self._streams.get(stream_id))

    async def subscribe(
        self,
        stream_id: str,
        stop_events: Optional[frozenset] = None,
        keepalive_interval: float = 30.0,
    ) -> AsyncGenerator[str, None]:
        """Yield SSE strings for ``stream_id``: buffered events first, then live ones.

        Args:
            stream_id: Stream to follow (see job_stream / user_stream)
            stop_events: Event types that end the stream. Defaults to STOP_EVENTS.
            keepalive_interval: Seconds between keepalive comments.
        """
        if stop_events is None:
            stop_events = STOP_EVENTS

        logger.info(f"Client subscribed: {stream_id}")
        queue: asyncio.Queue = asyncio.Queue()

        # Register and take the buffer together so nothing slips in between
        async with self._lock:
            self._streams.setdefault(stream_id, set()).add(queue)
            buf = self._buffers.pop(stream_id, None)

        try:
            buffered = buf["events"] if buf else []
            if buffered:
                logger.info(f"Flushing {len(buffered)} buffered events for {stream_id}")
            for event in buffered:
                yield _format_sse(event)
                if event.get("event") in stop_events:
                    return

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event is None:  # Sentinel to stop
                    break
                yield _format_sse(event)
                if event.get("event") in stop_events:
                    break
        finally:
            async with self._lock:
                queues = self._streams.get(stream_id)
                if queues is not None:
                    queues.discard(queue)
                    if not queues:
                        del self._streams[stream_id]
            logger.info(f"Client unsubscribed: {stream_id}")

    async def close_stream(self, stream_id: str) -> None:
        """Send the stop sentinel to every subscriber of ``stream_id``."""
        async with self._lock:
            queues = list(self._streams.get(stream_id, ()))
        for queue in queues:
            queue.put_nowait(None)

    def _buffer_event(self, stream_id: str, event: dict, event_type: str) -> None:
        if stream_id not in self._buffers:
            self._cleanup_stale_buffers()
            self._buffers[stream_id] = {"events": [], "created_at": time.monotonic()}

        buf = self._buffers[stream_id]
        if len(buf["events"]) < self._buffer_max_events:
            buf["events"].append(event)
            logger.info(f"Event buffered ({len(buf['events'])}): {event_type} for {stream_id}")
        else:
            logger.warning(
                f"Buffer full ({self._buffer_max_events}), dropping: {event_type} for {stream_id}"
            )

    def _cleanup_stale_buffers(self) -> None:
        now = time.monotonic()
        stale = [
            sid for sid, buf in self._buffers.items()
            if now - buf["created_at"] > self._buffer_max_age_secs
        ]
        for sid in stale:
            removed = self._buffers.pop(sid, None)
            if removed:
                logger.info(f"Cleaned up stale buffer for {sid} ({len(removed['events'])} events)")


def _format_sse(event: dict) -> str:
    return f"event: {event['event']}\ndata: {json.dumps(event['data'], default=str)}\n\n"


# --- Singleton ---

_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global EventBus singleton."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus


def push_event(stream_id: str, event_type: str, data: dict) -> None:
    get_event_bus().push(stream_id, event_type, data)


# --- Internal API for cross-process push (Temporal Worker → FastAPI) ---


class InternalEventRequest(BaseModel):
    event_type: str
    data: dict


@router.post("/api/internal/events/{stream_id}")
async def push_event_endpoint(stream_id: str, payload: InternalEventRequest):
    """Internal endpoint for the worker to push SSE events."""
    logger.info(f"Received event via API: {payload.event_type} for {stream_id}")
    get_event_bus().push(stream_id, payload.event_type, payload.data)
    return {"status": "ok", "stream_id": stream_id}
