from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from ksef_gui.application.events import EventHub
from ksef_gui.routes.dependencies import get_hub
from ksef_gui.routes.errors import JsonErrorRoute

router = APIRouter(tags=["events"], route_class=JsonErrorRoute)

logger = logging.getLogger(__name__)


@router.get("/events")
async def stream_events(hub: EventHub = Depends(get_hub)) -> EventSourceResponse:
    """Progress stream; every message is ``{"type": ..., "data": ...}``."""

    subscription = await hub.subscribe()

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        try:
            async for message in subscription:
                yield {"data": message}
        finally:
            await hub.unsubscribe(subscription)
            logger.debug("SSE subscriber closed (%d open)", hub.subscriber_count)

    return EventSourceResponse(event_generator(), sep="\n", ping=15)
