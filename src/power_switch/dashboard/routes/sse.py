"""Server-Sent Events for live dashboard updates."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/events")
async def event_stream(request: Request, once: bool = False) -> StreamingResponse:
    """SSE endpoint streaming the session status payload.

    ``once`` sends a single event and closes the stream.
    """
    session = request.app.state.session
    interval = request.app.state.config.dashboard.sse_interval_seconds

    async def generate():
        last_notification = 0
        while True:
            if await request.is_disconnected():
                break

            try:
                data = session.status()
                notifications = session.notifier.recent(limit=10, after_id=last_notification)
                if notifications:
                    last_notification = notifications[0]["id"]
                data["notifications"] = notifications
                yield f"data: {json.dumps(data)}\n\n"
            except Exception as e:
                logger.error("SSE error: %s", e)
                yield f"data: {json.dumps({'error': str(e)})}\n\n"

            if once:
                break
            await asyncio.sleep(interval)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
