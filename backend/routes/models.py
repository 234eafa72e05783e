"""Pydantic request models for API endpoints (camelCase on the wire)."""

from typing import Literal

from pydantic import Field

from world_tavern.models import Attachment, CamelModel, GenerationOverrides


class CreateSession(CamelModel):
    world_id: str


class SendMessage(CamelModel):
    content: str
    model: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    overrides: GenerationOverrides | None = None


class GenerateBody(CamelModel):
    """Body of regenerate and continue."""

    model: str | None = None
    overrides: GenerationOverrides | None = None


class SwipeBody(CamelModel):
    direction: Literal["left", "right"]


class RevertBody(CamelModel):
    message_id: str | None = None


class EditMessage(CamelModel):
    content: str


class CreateCheckpoint(CamelModel):
    name: str = ""
