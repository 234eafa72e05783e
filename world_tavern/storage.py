"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump JSON. Records are written with their camelCase
aliases; every write goes to a temp file first and is moved into place.

Directory layout:

    {base}/
      worlds/
        {world_id}.json         ← WorldDefinition (migrated on read)
      sessions/
        {session_id}.json       ← Session (state, summary, generation status)
        {session_id}/
          messages.json         ← timeline, oldest first
          checkpoints/
            {checkpoint_id}.json
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Any

from world_tavern.migration import migrate_world
from world_tavern.models import Checkpoint, GenerationStatus, Message, Session, WorldDefinition, is_valid_id

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    """Raised when a world, session, message or checkpoint does not exist."""


def _checked(record_id: str) -> str:
    if not is_valid_id(record_id):
        raise ValueError(f"Invalid id: {record_id!r}")
    return record_id


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._worlds_root = base_path / "worlds"
        self._sessions_root = base_path / "sessions"
        self._worlds_root.mkdir(parents=True, exist_ok=True)
        self._sessions_root.mkdir(parents=True, exist_ok=True)
        self._status_lock = threading.Lock()

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _world_file(self, world_id: str) -> Path:
        return self._worlds_root / f"{_checked(world_id)}.json"

    def _session_file(self, session_id: str) -> Path:
        return self._sessions_root / f"{_checked(session_id)}.json"

    def _session_dir(self, session_id: str) -> Path:
        return self._sessions_root / _checked(session_id)

    def _messages_file(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "messages.json"

    def _checkpoints_dir(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "checkpoints"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_text(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text)
        os.replace(tmp, path)

    def _write_json(self, path: Path, data: Any) -> None:
        self._write_text(path, json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Worlds
    # ------------------------------------------------------------------

    def save_world(self, world: WorldDefinition) -> WorldDefinition:
        self._write_text(self._world_file(world.id), world.model_dump_json(by_alias=True, indent=2))
        return world

    def get_world(self, world_id: str) -> WorldDefinition | None:
        if not is_valid_id(world_id):
            return None
        path = self._world_file(world_id)
        if not path.exists():
            return None
        return WorldDefinition.model_validate(migrate_world(self._read_json(path)))

    def list_worlds(self) -> list[WorldDefinition]:
        worlds = []
        for path in sorted(self._worlds_root.glob("*.json")):
            worlds.append(WorldDefinition.model_validate(migrate_world(self._read_json(path))))
        return worlds

    def delete_world(self, world_id: str) -> bool:
        if not is_valid_id(world_id):
            return False
        path = self._world_file(world_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def save_session(self, session: Session) -> Session:
        self._write_text(self._session_file(session.id), session.model_dump_json(by_alias=True, indent=2))
        return session

    def get_session(self, session_id: str) -> Session | None:
        if not is_valid_id(session_id):
            return None
        path = self._session_file(session_id)
        if not path.exists():
            return None
        return Session.model_validate_json(path.read_text())

    def require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return session

    def list_sessions(self, world_id: str | None = None) -> list[Session]:
        sessions = [
            Session.model_validate_json(p.read_text())
            for p in self._sessions_root.glob("*.json")
        ]
        if world_id is not None:
            sessions = [s for s in sessions if s.world_id == world_id]
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    def delete_session(self, session_id: str) -> bool:
        if not is_valid_id(session_id):
            return False
        path = self._session_file(session_id)
        if not path.exists():
            return False
        path.unlink()
        shutil.rmtree(self._session_dir(session_id), ignore_errors=True)
        return True

    def compare_and_set_status(
        self,
        session_id: str,
        expected: GenerationStatus,
        new: GenerationStatus,
    ) -> bool:
        """Atomically move generation_status from `expected` to `new`.

        Returns False (and writes nothing) when the stored status isn't
        `expected`. This is the authoritative one-generation-per-session check.
        """
        with self._status_lock:
            session = self.require_session(session_id)
            if session.generation_status != expected:
                return False
            session.generation_status = new
            self.save_session(session)
            return True

    def reset_generation_status(self) -> int:
        """Mark every session idle. Run at startup to clear crashed generations."""
        count = 0
        with self._status_lock:
            for session in self.list_sessions():
                if session.generation_status != "idle":
                    session.generation_status = "idle"
                    self.save_session(session)
                    count += 1
        if count:
            logger.info("Reset %d stale generating sessions to idle", count)
        return count

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def get_messages(self, session_id: str) -> list[Message]:
        path = self._messages_file(session_id)
        if not path.exists():
            return []
        return [Message.model_validate(m) for m in self._read_json(path)]

    def save_messages(self, session_id: str, messages: list[Message]) -> None:
        """Replace the whole timeline."""
        self._write_json(
            self._messages_file(session_id),
            [m.model_dump(mode="json", by_alias=True) for m in messages],
        )

    def append_messages(self, session_id: str, messages: list[Message]) -> None:
        existing = self.get_messages(session_id)
        existing.extend(messages)
        self.save_messages(session_id, existing)

    def find_message(self, message_id: str) -> Message | None:
        """Look a message up by id across every session's timeline."""
        for path in self._sessions_root.glob("*/messages.json"):
            for raw in self._read_json(path):
                if raw.get("id") == message_id:
                    return Message.model_validate(raw)
        return None

    def commit_turn(self, session: Session, messages: list[Message]) -> None:
        """Persist a finished turn: the timeline first, then the session state."""
        self.save_messages(session.id, messages)
        self.save_session(session)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        self._write_text(
            self._checkpoints_dir(checkpoint.session_id) / f"{_checked(checkpoint.id)}.json",
            checkpoint.model_dump_json(by_alias=True, indent=2),
        )
        return checkpoint

    def _checkpoint_path(self, checkpoint_id: str) -> Path | None:
        if not is_valid_id(checkpoint_id):
            return None
        for path in self._sessions_root.glob(f"*/checkpoints/{checkpoint_id}.json"):
            return path
        return None

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        path = self._checkpoint_path(checkpoint_id)
        if path is None:
            return None
        return Checkpoint.model_validate_json(path.read_text())

    def list_checkpoints(self, session_id: str) -> list[Checkpoint]:
        checkpoints = [
            Checkpoint.model_validate_json(p.read_text())
            for p in self._checkpoints_dir(session_id).glob("*.json")
        ]
        return sorted(checkpoints, key=lambda c: c.created_at)

    def delete_checkpoint(self, checkpoint_id: str) -> bool:
        path = self._checkpoint_path(checkpoint_id)
        if path is None:
            return False
        path.unlink()
        return True
