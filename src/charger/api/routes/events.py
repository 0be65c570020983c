"""Server-sent events stream."""

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from charger.api.deps import get_services
from charger.services import Services
from charger.sessions import NotificationChannel

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 25.0

SSE_HEADERS = {
    "X-Accel-Buffering": "no",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def event_stream(
    channel: NotificationChannel, keepalive: float = KEEPALIVE_SECONDS
) -> AsyncIterator[str]:
    """Render channel events as text/event-stream chunks."""
    async for event in channel.listen(keepalive=keepalive):
        if event is None:
            yield ": ping\n\n"
        else:
            yield event.encode()


@router.get("/events")
async def events(
    session: str = Query(...),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Open the session's notification stream."""
    channel = services.sessions.subscribe(session)
    logger.debug(f"Event stream opened for session {session[:8]}")
    return StreamingResponse(
        event_stream(channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
