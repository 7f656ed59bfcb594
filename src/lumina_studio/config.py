"""Runtime settings and credential resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from lumina_studio.catalog import DEFAULT_EDIT_MODEL, DEFAULT_GENERATION_MODEL, DEFAULT_TEXT_MODEL

DEFAULT_GEMINI_KEY_FILE = Path(".api_keys/Gemini.md")
DEFAULT_DB_PATH = Path(".lumina/lumina.db")

BatchPolicy = Literal["all_or_nothing", "partial"]


def resolve_gemini_api_key(key_file: Path = DEFAULT_GEMINI_KEY_FILE) -> str | None:
    """Resolve the Gemini API key from environment or fallback file.

    Resolution order:
    1. ``GEMINI_API_KEY`` environment variable.
    2. ``key_file`` plaintext contents.

    Args:
        key_file: Optional fallback file containing only the API key.

    Returns:
        The non-empty API key when found, otherwise ``None``.
    """
    api_key = (os.getenv("GEMINI_API_KEY") or "").strip()
    if api_key:
        return api_key

    if key_file.exists():
        fallback_key = key_file.read_text(encoding="utf-8").strip()
        if fallback_key:
            return fallback_key

    return None


class StudioSettings(BaseModel):
    """Settings shared by the orchestrator, store, and CLI."""

    db_path: Path = DEFAULT_DB_PATH
    generation_model: str = DEFAULT_GENERATION_MODEL
    edit_model: str = DEFAULT_EDIT_MODEL
    text_model: str = DEFAULT_TEXT_MODEL
    batch_policy: BatchPolicy = "all_or_nothing"
    batch_timeout: float | None = Field(default=None, gt=0)


def load_settings(**overrides: object) -> StudioSettings:
    """Build settings from ``LUMINA_*`` environment variables plus explicit overrides.

    Overrides whose value is ``None`` are ignored so CLI options can be passed
    through unconditionally.

    Raises:
        pydantic.ValidationError: If any value fails validation.
    """
    data: dict[str, object] = {}
    env_map = {
        "LUMINA_DB_PATH": "db_path",
        "LUMINA_BATCH_POLICY": "batch_policy",
        "LUMINA_BATCH_TIMEOUT": "batch_timeout",
    }
    for env_name, field in env_map.items():
        value = (os.getenv(env_name) or "").strip()
        if value:
            data[field] = value

    data.update({key: value for key, value in overrides.items() if value is not None})
    return StudioSettings.model_validate(data)
