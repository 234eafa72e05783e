"""Per-message endpoints: regenerate (SSE), swipe, edit, delete."""

from fastapi import APIRouter, Depends, HTTPException

from world_tavern.session import GenerationInProgress, SessionEngine
from world_tavern.storage import NotFoundError

from .deps import get_engine
from .models import EditMessage, GenerateBody, SwipeBody
from .sessions import timeline_response
from .streaming import open_event_stream

router = APIRouter()


@router.post("/messages/{message_id}/regenerate")
async def regenerate(
    message_id: str,
    body: GenerateBody | None = None,
    engine: SessionEngine = Depends(get_engine),
):
    """Generate a new swipe for an assistant message (SSE)."""
    body = body or GenerateBody()
    return await open_event_stream(
        engine.regenerate(message_id, model=body.model, overrides=body.overrides)
    )


@router.post("/messages/{message_id}/swipe")
async def swipe(message_id: str, body: SwipeBody, engine: SessionEngine = Depends(get_engine)):
    """Move to the previous or next swipe of an assistant message."""
    try:
        result = engine.swipe(message_id, body.direction)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    if result.needs_generation:
        return {
            "needsGeneration": True,
            "activeSwipeIndex": result.active_swipe_index,
            "totalSwipes": result.total_swipes,
        }
    return {
        "activeSwipeIndex": result.active_swipe_index,
        "totalSwipes": result.total_swipes,
        "content": result.message.content,
        "stateChanges": result.message.state_changes,
    }


@router.patch("/messages/{message_id}")
async def edit_message(message_id: str, body: EditMessage, engine: SessionEngine = Depends(get_engine)):
    """Replace a message's text. State changes are left as recorded."""
    try:
        return engine.edit_message(message_id, body.content)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))


@router.delete("/messages/{message_id}")
async def delete_message(message_id: str, engine: SessionEngine = Depends(get_engine)):
    """Delete a single message; state is rebuilt from the remaining timeline."""
    try:
        view = engine.delete_message(message_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    return timeline_response(view)
