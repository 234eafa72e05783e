"""Session timeline and generation orchestration.

The SessionEngine owns the turn pipeline (send, regenerate, continue) and the
timeline operations (swipe, revert, restart, checkpoints). At most one
generation runs per session; see guard.py.
"""

from world_tavern.session.engine import (  # noqa: F401
    GenerationStarted,
    SessionEngine,
    StreamEvent,
    TextDelta,
    TurnDone,
    TurnError,
)
from world_tavern.session.guard import GenerationInProgress  # noqa: F401
from world_tavern.session.timeline import SwipeResult, TimelineView  # noqa: F401
