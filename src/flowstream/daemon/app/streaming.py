"""Server-sent event stream of session snapshots."""

import asyncio
import json

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ..utils.logging_config import StructuredLogger
from .lifecycle import get_hub

logger = StructuredLogger(__name__)

router = APIRouter(tags=["events"])

KEEPALIVE_SECONDS = 15.0


@router.get("/events")
async def events(request: Request):
    """
    Stream the session snapshot to one subscriber.

    Protocol:
    - First event is the current full snapshot
    - Every publish pushes the full snapshot again (never a diff)
    - Comment lines keep idle connections open
    - The stream ends only when the client goes away
    """
    hub = get_hub()
    subscription = hub.subscribe()

    async def stream_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    snapshot = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(snapshot.as_payload())}\n\n"
        finally:
            subscription.close()
            if subscription.dropped:
                logger.info("Subscriber lagged; snapshots superseded", dropped=subscription.dropped)

    return StreamingResponse(
        stream_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
