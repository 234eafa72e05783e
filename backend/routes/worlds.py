"""World definition CRUD and authoring warnings."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from world_tavern.importer import import_st_card
from world_tavern.migration import migrate_world
from world_tavern.models import WorldDefinition
from world_tavern.parser import build_response_schema
from world_tavern.session import SessionEngine
from world_tavern.validation import validate_world

from .deps import get_engine

router = APIRouter()


def _require_world(engine: SessionEngine, world_id: str) -> WorldDefinition:
    world = engine.storage.get_world(world_id)
    if world is None:
        raise HTTPException(404, "World not found")
    return world


@router.get("/worlds")
async def list_worlds(engine: SessionEngine = Depends(get_engine)):
    """List all stored worlds."""
    return engine.storage.list_worlds()


@router.post("/worlds", status_code=201)
async def save_world(body: dict[str, Any], engine: SessionEngine = Depends(get_engine)):
    """Create or replace a world. Older documents are migrated first."""
    try:
        world = WorldDefinition.model_validate(migrate_world(body))
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))
    engine.storage.save_world(world)
    return {"world": world, "warnings": validate_world(world)}


@router.post("/worlds/import", status_code=201)
async def import_world(body: dict[str, Any], engine: SessionEngine = Depends(get_engine)):
    """Create a world from a SillyTavern character card or world book."""
    try:
        world = WorldDefinition.model_validate(import_st_card(body))
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))
    engine.storage.save_world(world)
    return {"world": world, "warnings": validate_world(world)}


@router.get("/worlds/{world_id}")
async def get_world(world_id: str, engine: SessionEngine = Depends(get_engine)):
    """Get a single world by id."""
    return _require_world(engine, world_id)


@router.get("/worlds/{world_id}/warnings")
async def get_world_warnings(world_id: str, engine: SessionEngine = Depends(get_engine)):
    """Authoring warnings (orphaned references, empty entries, unused variables)."""
    return validate_world(_require_world(engine, world_id))


@router.get("/worlds/{world_id}/response-schema")
async def get_response_schema(world_id: str, engine: SessionEngine = Depends(get_engine)):
    """JSON Schema of the structured-output envelope for this world."""
    world = _require_world(engine, world_id)
    return build_response_schema(world.variables, world.audio_tracks)


@router.delete("/worlds/{world_id}")
async def delete_world(world_id: str, engine: SessionEngine = Depends(get_engine)):
    """Delete a world. Existing sessions keep their timelines but can't generate."""
    if not engine.storage.delete_world(world_id):
        raise HTTPException(404, "World not found")
    return {"ok": True}
