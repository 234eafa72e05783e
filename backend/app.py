import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.config import build_llm, get_config
from backend.routes import router
from world_tavern.llm import LLM
from world_tavern.session import SessionEngine
from world_tavern.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, llm: LLM | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage = Storage(resolved)
    # Nothing survives a restart mid-generation
    storage.reset_generation_status()

    config = get_config(resolved)
    engine = SessionEngine(
        storage,
        llm or build_llm(config),
        default_model=config["llm_connection"]["model"],
        summary_model=config["summary_model"] or None,
        compaction_threshold=config["compaction_threshold"],
        keep_recent_messages=config["keep_recent_messages"],
    )
    logger.info("Data directory: %s", resolved)

    app = FastAPI(title="World Tavern")
    app.state.data_dir = resolved
    app.state.engine = engine
    app.include_router(router, prefix="/api")

    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
