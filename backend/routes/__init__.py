"""FastAPI API endpoints under /api.

Endpoint groups: worlds, sessions (send/continue streams, revert, restart,
prompt preview), messages (regenerate stream, swipe, edit, delete),
checkpoints, settings. Generation endpoints answer with server-sent events.
"""

from fastapi import APIRouter

from .checkpoints import router as checkpoints_router
from .messages import router as messages_router
from .sessions import router as sessions_router
from .settings import router as settings_router
from .worlds import router as worlds_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(worlds_router)
router.include_router(sessions_router)
router.include_router(messages_router)
router.include_router(checkpoints_router)
