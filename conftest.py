from collections.abc import AsyncIterator

import pytest

from world_tavern.llm import GenerateRequest, StreamChunk, Usage
from world_tavern.models import WorldDefinition
from world_tavern.session import SessionEngine
from world_tavern.storage import Storage


class StubLLM:
    """Scripted stand-in for a model backend.

    Each call to generate_stream pops the next reply. A reply is a string
    (streamed word by word, then done), a list of StreamChunks (streamed as
    is), or an exception (raised before anything is streamed). When the
    script runs out, the last reply is repeated. Every request is recorded.
    """

    def __init__(self, *replies) -> None:
        self.replies = list(replies) or ["ok"]
        self.requests: list[GenerateRequest] = []

    def _next(self):
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        reply = self._next()
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            words = reply.split(" ")
            chunks = [StreamChunk(type="text", content=w if i == 0 else f" {w}") for i, w in enumerate(words)]
            chunks.append(StreamChunk(type="done", usage=Usage(completion_tokens=len(words))))
        else:
            chunks = reply
        for chunk in chunks:
            yield chunk


DEMO = {
    "id": "hollow",
    "name": "Dragon's Hollow",
    "entries": [
        {"id": "sys", "name": "Narrator", "role": "system", "position": "top",
         "alwaysSend": True, "content": "You narrate for {{user}}."},
        {"id": "dragon", "name": "Dragon", "keywords": ["dragon"],
         "content": "The dragon sleeps under the mountain."},
        {"id": "hello", "name": "Greeting", "role": "greeting", "position": "greeting",
         "content": "Welcome, {{user}}. You have {{hp}} health."},
    ],
    "variables": [
        {"id": "hp", "name": "Health", "type": "number", "defaultValue": 10, "min": 0, "max": 10},
        {"id": "gold", "name": "Gold", "type": "number", "defaultValue": 0},
        {"id": "dead", "name": "Dead", "type": "boolean", "defaultValue": False},
    ],
    "rules": [
        {"id": "death", "name": "Death",
         "conditions": [{"variableId": "hp", "operator": "lte", "value": 0}],
         "effects": [{"variableId": "dead", "operation": "set", "value": True}],
         "notify": "toast", "notification": "You died."},
    ],
    "audioTracks": [{"id": "battle", "name": "Battle"}],
    "settings": {"playerName": "Ava"},
}


async def collect(events) -> list:
    """Drain an engine event stream into a list."""
    return [event async for event in events]


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "data")


@pytest.fixture
def world(storage) -> WorldDefinition:
    return storage.save_world(WorldDefinition.model_validate(DEMO))


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM("The road is quiet.")


@pytest.fixture
def engine(storage, llm) -> SessionEngine:
    return SessionEngine(storage, llm, default_model="test-model")
