"""Session lifecycle, the send/continue streams and timeline operations."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from world_tavern.session import GenerationInProgress, SessionEngine, TimelineView
from world_tavern.storage import NotFoundError

from .deps import get_engine
from .models import CreateSession, GenerateBody, RevertBody, SendMessage
from .streaming import open_event_stream

router = APIRouter()


def timeline_response(view: TimelineView) -> dict:
    return {"messages": view.messages, "state": view.state}


@router.post("/sessions", status_code=201)
async def create_session(body: CreateSession, engine: SessionEngine = Depends(get_engine)):
    """Start a session: state from the world's defaults, greeting seeded."""
    try:
        session = engine.create_session(body.world_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {"session": session, "messages": engine.storage.get_messages(session.id)}


@router.get("/sessions")
async def list_sessions(world_id: str | None = None, engine: SessionEngine = Depends(get_engine)):
    """List sessions, newest first, optionally for one world."""
    return engine.storage.list_sessions(world_id)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Get a session with its current state."""
    session = engine.storage.get_session(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


@router.get("/sessions/{session_id}/messages")
async def get_messages(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Get the session's timeline, oldest first."""
    if engine.storage.get_session(session_id) is None:
        raise HTTPException(404, "Session not found")
    return engine.storage.get_messages(session_id)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Delete a session with its timeline and checkpoints."""
    try:
        engine.delete_session(session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    return {"ok": True}


@router.post("/sessions/{session_id}/messages")
async def send_message(session_id: str, body: SendMessage, engine: SessionEngine = Depends(get_engine)):
    """Send a player message and stream the reply (SSE)."""
    if engine.guard.is_busy(session_id):
        raise HTTPException(409, "A generation is already in progress", headers={"Retry-After": "1"})
    return await open_event_stream(
        engine.send(
            session_id,
            body.content,
            model=body.model,
            attachments=body.attachments,
            overrides=body.overrides,
        )
    )


@router.post("/sessions/{session_id}/continue")
async def continue_message(
    session_id: str,
    body: GenerateBody | None = None,
    engine: SessionEngine = Depends(get_engine),
):
    """Extend the last assistant reply (SSE)."""
    body = body or GenerateBody()
    return await open_event_stream(
        engine.continue_generation(session_id, model=body.model, overrides=body.overrides)
    )


@router.post("/sessions/{session_id}/abort")
async def abort_generation(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Stop the in-flight generation. Nothing from it is kept."""
    try:
        aborted = engine.abort(session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {"aborted": aborted}


@router.post("/sessions/{session_id}/revert")
async def revert(
    session_id: str,
    body: RevertBody | None = None,
    engine: SessionEngine = Depends(get_engine),
):
    """Delete from a message (default: the last player message) onward."""
    body = body or RevertBody()
    try:
        view = engine.revert(session_id, body.message_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return timeline_response(view)


@router.post("/sessions/{session_id}/restart")
async def restart(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Clear the timeline and reset state to the world's defaults."""
    try:
        view = engine.restart(session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except GenerationInProgress as e:
        raise HTTPException(409, str(e))
    return timeline_response(view)


@router.get("/sessions/{session_id}/prompt-preview")
async def prompt_preview(session_id: str, engine: SessionEngine = Depends(get_engine)):
    """The prompt the next turn would start from, with a token breakdown."""
    try:
        prompt = engine.preview_prompt(session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {
        "messages": [m.model_dump() for m in prompt.messages],
        "breakdown": asdict(prompt.breakdown),
        "trimmedMessages": prompt.trimmed_messages,
    }
