"""Named checkpoints: save, list, restore, delete."""

from fastapi import APIRouter, Depends, HTTPException

from world_tavern.session import GenerationInProgress, SessionEngine
from world_tavern.storage import NotFoundError

from .deps import get_engine
from .models import CreateCheckpoint
from .sessions import timeline_response

router = APIRouter()


def _summary(checkpoint) -> dict:
    return checkpoint.model_dump(mode="json", by_alias=True, exclude={"messages", "state"})


@router.post("/sessions/{session_id}/checkpoints", status_code=201)
async def save_checkpoint(
    session_id: str,
    body: CreateCheckpoint | None = None,
    engine: SessionEngine = Depends(get_engine),
):
    """Snapshot the session's timeline and state under a name."""
    body = body or CreateCheckpoint()
    try:
        checkpoint = engine.save_checkpoint(session_id, body.name)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return _summary(checkpoint)


@router.get("/sessions/{session_id}/checkpoints")
async def list_checkpoints(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """List a session's checkpoints, oldest first (without their payloads)."""
    try:
        return [_summary(c) for c in engine.list_checkpoints(session_id)]
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.post("/checkpoints/{checkpoint_id}/restore")
async def restore_checkpoint(checkpoint_id: str, engine: SessionEngine = Depends(get_engine)):
    """Replace the session's timeline and state with the checkpoint's."""
    try:
        view = engine.restore_checkpoint(checkpoint_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    return timeline_response(view)


@router.delete("/checkpoints/{checkpoint_id}")
async def delete_checkpoint(checkpoint_id: str, engine: SessionEngine = Depends(get_engine)):
    """Delete a checkpoint. The session itself is untouched."""
    try:
        engine.delete_checkpoint(checkpoint_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {"ok": True}
