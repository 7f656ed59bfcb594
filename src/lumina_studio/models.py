"""Pydantic models shared across dispatch, normalization, and persistence layers."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
ArtifactKind = Literal["generated", "edited"]
ModelFamily = Literal["gemini", "imagen"]


class InputImage(BaseModel):
    """Caller-supplied image used as an edit source or analysis subject."""

    data: bytes
    mime_type: str = "image/png"


class ImagePayload(BaseModel):
    """Normalized inline image bytes returned by either model family."""

    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    data: bytes
    mime_type: str = "image/png"


class TextPayload(BaseModel):
    """Normalized text result (analysis, enhanced prompt, template text)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


ArtifactPayload = Annotated[Union[ImagePayload, TextPayload], Field(discriminator="type")]


class NewArtifact(BaseModel):
    """Artifact content before the store assigns identity and timestamp."""

    model_config = ConfigDict(frozen=True)

    payload: ArtifactPayload
    prompt: str
    model_name: str
    kind: ArtifactKind
    aspect_ratio: AspectRatio | None = None


class Artifact(NewArtifact):
    """Fully materialized artifact record stored in the database."""

    artifact_id: str
    created_at: datetime


class ModelDescriptor(BaseModel):
    """Backend family and capabilities derived from a model identifier."""

    model_config = ConfigDict(frozen=True)

    family: ModelFamily
    supports_editing: bool
    supports_multi_image_output: bool


class PromptTemplateSection(BaseModel):
    """One category of ready-made prompts."""

    category: str
    prompts: list[str] = Field(default_factory=list)


class PromptTemplateIdeas(BaseModel):
    """Structured-output schema requested from the model for template ideas."""

    sections: list[PromptTemplateSection] = Field(default_factory=list)
