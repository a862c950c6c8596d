"""Notification API routes: per-user inbox and live SSE stream."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.dependencies import OnboardingContext, get_context
from app.event_bus import get_event_bus, user_stream
from app.repositories.notification import notification_to_dict
from onboarding.errors import NotFoundError

from .schemas import NotificationListResponse, NotificationResponse

router = APIRouter(prefix="/api/v2/notifications", tags=["notifications"])


@router.get("/{user_id}", response_model=NotificationListResponse)
async def list_notifications(
    user_id: str,
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    ctx: OnboardingContext = Depends(get_context),
):
    """A hire's (or manager's) notifications, newest first."""
    rows, total = await ctx.notifications.list_for_user(
        user_id, unread_only=unread_only, page=page, page_size=page_size,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse(**notification_to_dict(r)) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{user_id}/{notification_id}/read")
async def mark_notification_read(
    user_id: str,
    notification_id: str,
    ctx: OnboardingContext = Depends(get_context),
):
    if not await ctx.notifications.mark_read(notification_id, user_id=user_id):
        raise NotFoundError("Notification", notification_id)
    return {"status": "ok", "notification_id": notification_id}


@router.get("/{user_id}/stream")
async def stream_notifications(user_id: str):
    """Live notifications for one user via SSE (event type ``notification``).

    The stream stays open; a keepalive comment is sent every 30 seconds.
    """
    return StreamingResponse(
        get_event_bus().subscribe(user_stream(user_id), stop_events=frozenset()),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
