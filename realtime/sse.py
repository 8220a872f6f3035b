from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from app.settings import split_csv
from realtime.bus import Notification


router = APIRouter()


def format_sse(notification: Notification) -> str:
    data = json.dumps(notification.data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {notification.type}\ndata: {data}\n\n"


@router.get("/sse")
async def sse(request: Request, topics: str | None = None) -> StreamingResponse:
    """Stream bus notifications; ``?topics=feed,weather`` narrows the stream."""
    monitor = request.app.state.monitor
    queue = await monitor.bus.subscribe(split_csv(topics))

    async def event_stream():
        try:
            # Late subscribers start from the current feed state.
            yield format_sse(
                Notification(type="feed.status", data=monitor.state.to_dict())
            )
            while True:
                if await request.is_disconnected():
                    return
                try:
                    notification = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    ts = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
                    yield format_sse(Notification(type="heartbeat", data={"ts": ts}))
                    continue
                yield format_sse(notification)
        finally:
            await monitor.bus.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
