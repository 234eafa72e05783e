"""Core domain models.

Every component (retrieval, assembly, parsing, rules, the session engine and
storage) operates on these types. Pydantic is used for validation and
serialisation at every data boundary. Attributes are snake_case in Python;
persisted JSON and the HTTP wire format use camelCase aliases.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from world_tavern.values import Operator, Scalar, VariableType


# Ids name files on disk
ID_PATTERN = r"^[A-Za-z0-9_-]+$"
_ID_RE = re.compile(ID_PATTERN)


def new_id() -> str:
    return uuid4().hex


def is_valid_id(record_id: str) -> bool:
    return _ID_RE.fullmatch(record_id) is not None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base for every record: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


EntryRole = Literal[
    "system",
    "character",
    "persona",
    "lore",
    "plot",
    "style",
    "greeting",
    "custom",
]

EntryPosition = Literal[
    "top",
    "before_char",
    "character",
    "after_char",
    "persona",
    "bottom",
    "depth",
    "greeting",
    "post_history",
]

SecondaryLogic = Literal["AND_ANY", "AND_ALL", "NOT_ANY", "NOT_ALL"]
ConditionLogic = Literal["all", "any"]
EffectOperation = Literal["set", "add", "subtract", "multiply", "toggle", "append"]
AudioAction = Literal["play", "stop", "crossfade", "volume"]
MessageRole = Literal["user", "assistant", "system"]
GenerationStatus = Literal["idle", "generating"]


# ---------------------------------------------------------------------------
# World definition
# ---------------------------------------------------------------------------

class Condition(CamelModel):
    variable_id: str
    operator: Operator
    value: Scalar


class Effect(CamelModel):
    variable_id: str
    operation: EffectOperation
    value: Scalar = True  # toggle carries no operand


class AudioEffect(CamelModel):
    track_id: str
    action: AudioAction
    volume: float | None = None
    fade_seconds: float | None = None
    to_track_id: str | None = None


class Entry(CamelModel):
    """A named piece of prompt content with its retrieval and placement rules."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    content: str = ""
    role: EntryRole = "lore"
    position: EntryPosition = "after_char"
    depth: int = 4  # position == "depth" only
    always_send: bool = False
    keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)
    secondary_keyword_logic: SecondaryLogic = "AND_ANY"
    match_whole_words: bool = False
    use_fuzzy_match: bool = False
    prevent_recursion: bool = False
    exclude_recursion: bool = False
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    priority: int = 0
    enabled: bool = True


class Variable(CamelModel):
    """A typed slot of game state."""

    id: str
    name: str = ""
    type: VariableType = "number"
    default_value: Scalar = 0
    min: float | None = None
    max: float | None = None
    description: str = ""
    update_hints: str = ""
    category: str = ""


class Rule(CamelModel):
    """Condition set → effects, evaluated after every turn."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    description: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    effects: list[Effect] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    priority: int = 0
    trigger: Literal["always", "on_change"] = "always"
    notify: Literal["silent", "toast"] = "silent"
    notification: str = ""
    enabled: bool = True


class AudioTrack(CamelModel):
    """Presentational; only the id is used, to classify audio directives."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""


class WorldSettings(CamelModel):
    max_tokens: int = 2048
    max_context: int = 8192
    temperature: float = 0.8
    player_name: str = ""
    structured_output: bool = False
    lorebook_scan_depth: int = 2
    lorebook_budget_percent: float = 25
    lorebook_budget_cap: int | None = None
    lorebook_recursion_depth: int = 0
    enable_choices: bool = False
    compaction_enabled: bool = True


class WorldDefinition(CamelModel):
    """An author-defined world. Presentational collections are stored as-is."""

    id: str = Field(default_factory=new_id, pattern=ID_PATTERN)
    schema_version: int = 3
    version: str = "1.0.0"
    name: str = ""
    description: str = ""
    author: str = ""
    entries: list[Entry] = Field(default_factory=list)
    variables: list[Variable] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    settings: WorldSettings = Field(default_factory=WorldSettings)
    components: list[dict[str, Any]] = Field(default_factory=list)
    audio_tracks: list[AudioTrack] = Field(default_factory=list)
    custom_ui: dict[str, Any] | None = None
    display_transforms: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_variable_ids(self) -> WorldDefinition:
        seen: set[str] = set()
        for variable in self.variables:
            if variable.id in seen:
                raise ValueError(f"Duplicate variable id: {variable.id!r}")
            seen.add(variable.id)
        return self

    def variable(self, variable_id: str) -> Variable | None:
        for v in self.variables:
            if v.id == variable_id:
                return v
        return None


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

class StateChange(CamelModel):
    variable_id: str
    old_value: Scalar
    new_value: Scalar


class GameState(CamelModel):
    world_id: str
    variables: dict[str, Scalar] = Field(default_factory=dict)
    turn_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class Attachment(CamelModel):
    type: Literal["image"] = "image"
    url: str
    name: str = ""


class Swipe(CamelModel):
    """One alternative generation for an assistant message."""

    content: str
    state_changes: list[StateChange] = Field(default_factory=list)
    model: str | None = None
    token_count: int | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Message(CamelModel):
    """A single entry in a session's timeline."""

    id: str = Field(default_factory=new_id)
    session_id: str
    role: MessageRole
    content: str
    state_changes: list[StateChange] = Field(default_factory=list)
    swipes: list[Swipe] = Field(default_factory=list)
    active_swipe_index: int = 0
    model: str | None = None
    token_count: int | None = None
    generation_time_ms: int | None = None
    compacted: bool = False
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _assistant_has_swipe(self) -> Message:
        if self.role != "assistant":
            return self
        if not self.swipes:
            self.swipes = [
                Swipe(
                    content=self.content,
                    state_changes=list(self.state_changes),
                    model=self.model,
                    token_count=self.token_count,
                )
            ]
        if not 0 <= self.active_swipe_index < len(self.swipes):
            raise ValueError(
                f"activeSwipeIndex {self.active_swipe_index} out of range "
                f"for {len(self.swipes)} swipes"
            )
        return self

    @property
    def active_swipe(self) -> Swipe | None:
        if not self.swipes:
            return None
        return self.swipes[self.active_swipe_index]


class Session(CamelModel):
    id: str = Field(default_factory=new_id)
    world_id: str
    state: GameState
    summary: str | None = None
    generation_status: GenerationStatus = "idle"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Checkpoint(CamelModel):
    """Immutable snapshot of a session's timeline and state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    session_id: str
    name: str
    message_count: int
    messages: list[Message] = Field(default_factory=list)
    state: GameState
    summary: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class GenerationOverrides(CamelModel):
    """Per-request knobs that win over the world's settings."""

    max_tokens: int | None = None
    max_context: int | None = None
    temperature: float | None = None
