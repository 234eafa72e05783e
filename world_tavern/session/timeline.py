"""Pure timeline operations: swipes, revert points and state replay."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from world_tavern.models import GameState, Message, StateChange, Swipe, WorldDefinition
from world_tavern.state import GameStateManager

SwipeDirection = Literal["left", "right"]


@dataclass
class SwipeResult:
    message: Message
    needs_generation: bool = False

    @property
    def active_swipe_index(self) -> int:
        return self.message.active_swipe_index

    @property
    def total_swipes(self) -> int:
        return len(self.message.swipes)


@dataclass
class TimelineView:
    messages: list[Message] = field(default_factory=list)
    state: GameState | None = None


def activate_swipe(message: Message, index: int) -> None:
    """Make swipe `index` the visible content of `message`."""
    swipe = message.swipes[index]
    message.active_swipe_index = index
    message.content = swipe.content
    message.state_changes = list(swipe.state_changes)
    message.model = swipe.model
    message.token_count = swipe.token_count


def add_swipe(message: Message, swipe: Swipe) -> int:
    """Append `swipe`, make it active and return its index."""
    message.swipes.append(swipe)
    index = len(message.swipes) - 1
    activate_swipe(message, index)
    return index


def move_swipe(message: Message, direction: SwipeDirection) -> SwipeResult:
    if message.role != "assistant":
        raise ValueError("Only assistant messages have swipes")
    index = message.active_swipe_index
    if direction == "left":
        if index == 0:
            raise ValueError("Already at the first swipe")
        activate_swipe(message, index - 1)
        return SwipeResult(message=message)
    if direction == "right":
        if index >= len(message.swipes) - 1:
            return SwipeResult(message=message, needs_generation=True)
        activate_swipe(message, index + 1)
        return SwipeResult(message=message)
    raise ValueError(f"Unknown swipe direction: {direction!r}")


def revert_index(messages: Sequence[Message], message_id: str | None = None) -> int:
    """Index of the first message removed by a revert.

    With a message id, the revert starts at that message. Without one it
    starts at the last user message, undoing the latest exchange.
    """
    if message_id is not None:
        for i, message in enumerate(messages):
            if message.id == message_id:
                return i
        raise LookupError(f"Message not found: {message_id}")
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "user":
            return i
    raise ValueError("Nothing to revert")


def message_metadata(messages: Sequence[Message]) -> dict[str, str]:
    """Timeline-derived metadata for macros: last user/char/any message."""
    metadata: dict[str, str] = {}
    for message in reversed(messages):
        if "lastMessage" not in metadata and message.role != "system":
            metadata["lastMessage"] = message.content
        if message.role == "user" and "lastUserMessage" not in metadata:
            metadata["lastUserMessage"] = message.content
            metadata["lastUserMessageAt"] = message.created_at.isoformat()
        if message.role == "assistant" and "lastCharMessage" not in metadata:
            metadata["lastCharMessage"] = message.content
            if message.model:
                metadata["model"] = message.model
        if "lastUserMessage" in metadata and "lastCharMessage" in metadata:
            break
    return metadata


def replay_state(world: WorldDefinition, current: GameState, messages: Sequence[Message]) -> GameState:
    """Rebuild state from defaults by replaying the recorded changes of `messages`.

    Nothing is re-parsed or re-evaluated: the stored state_changes of each
    message are set again in timeline order.
    """
    manager = GameStateManager(world, current)
    manager.reset()
    changes: list[StateChange] = []
    for message in messages:
        changes.extend(message.state_changes)
    manager.replay(changes)
    manager.set_turn_count(sum(1 for m in messages if m.role == "user"))
    for key, value in message_metadata(messages).items():
        manager.set_metadata(key, value)
    return manager.snapshot()
