"""Server-sent events for generation endpoints.

Frames are `event: <type>` plus `data: <json>`; the JSON also carries
`type`, so clients that only read `data:` lines can tell events apart.
"""

import json
from collections.abc import AsyncIterator

from fastapi import HTTPException
from fastapi.responses import StreamingResponse

from world_tavern.session import GenerationInProgress, GenerationStarted, StreamEvent
from world_tavern.storage import NotFoundError


def format_event(event: StreamEvent) -> str:
    payload = event.model_dump(mode="json", by_alias=True, exclude_none=True)
    return f"event: {event.type}\ndata: {json.dumps(payload)}\n\n"


async def open_event_stream(events: AsyncIterator[StreamEvent]) -> StreamingResponse:
    """Start the generation and return it as an SSE response.

    The first event is awaited here so that validation errors and a busy
    session become proper HTTP errors instead of a 200 with an error frame.
    """
    try:
        first = await anext(events)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e), headers={"Retry-After": "1"})
    except ValueError as e:
        raise HTTPException(400, str(e))

    async def body():
        try:
            if not isinstance(first, GenerationStarted):
                yield format_event(first)
            async for event in events:
                yield format_event(event)
        finally:
            await events.aclose()

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
