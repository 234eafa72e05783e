"""Health check, settings, and connection check endpoints."""

import logging

import httpx
from fastapi import APIRouter, Depends, Request

from backend.config import build_llm, get_config, public_config, update_config
from world_tavern.session import SessionEngine

from .deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(request: Request):
    """Quick health check against the configured provider."""
    conn = get_config(request.app.state.data_dir)["llm_connection"]
    if not conn["provider_url"]:
        return {"ok": False}
    base = conn["provider_url"].rstrip("/")
    url = f"{base}/v1/models" if conn["provider_format"] == "openai" else f"{base}/api/v1/model"
    headers: dict[str, str] = {}
    if conn["api_key"]:
        headers["Authorization"] = f"Bearer {conn['api_key']}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError as e:
        logger.info("Connection check against %s failed: %s", url, e)
        return {"ok": False}


@router.get("/settings")
async def get_settings(request: Request):
    """Get global settings (model connection, summarisation, compaction). The API key is masked."""
    return public_config(get_config(request.app.state.data_dir))


@router.patch("/settings")
async def update_settings(body: dict, request: Request, engine: SessionEngine = Depends(get_engine)):
    """Update global settings (partial merge). The new connection is used from the next turn."""
    config = update_config(request.app.state.data_dir, body)
    engine.configure(
        build_llm(config),
        default_model=config["llm_connection"]["model"],
        summary_model=config["summary_model"] or None,
    )
    return public_config(config)
