from __future__ import annotations

import sys
import types
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from lumina_studio.models import ImagePayload, InputImage, NewArtifact
from lumina_studio.store import ArtifactStore

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png-body"

Handler = Callable[[int, dict[str, Any]], Awaitable[Any]]


def image_part(data: bytes, mime_type: str = "image/png") -> types.SimpleNamespace:
    return types.SimpleNamespace(text=None, inline_data=types.SimpleNamespace(data=data, mime_type=mime_type))


def text_part(text: str) -> types.SimpleNamespace:
    return types.SimpleNamespace(text=text, inline_data=None)


def content_response(*parts: types.SimpleNamespace, text: str | None = None) -> types.SimpleNamespace:
    return types.SimpleNamespace(
        text=text,
        candidates=[types.SimpleNamespace(content=types.SimpleNamespace(parts=list(parts)))],
    )


def images_response(*blobs: bytes) -> types.SimpleNamespace:
    return types.SimpleNamespace(
        generated_images=[
            types.SimpleNamespace(image=types.SimpleNamespace(image_bytes=blob, mime_type="image/png"))
            for blob in blobs
        ]
    )


def text_response(text: str | None) -> types.SimpleNamespace:
    return types.SimpleNamespace(text=text, candidates=[])


class FakeModels:
    """Stands in for ``client.aio.models`` and records every request."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.on_generate_content: Handler | None = None
        self.on_generate_images: Handler | None = None

    def _record(self, method: str, kwargs: dict[str, Any]) -> int:
        index = sum(1 for name, _ in self.calls if name == method)
        self.calls.append((method, kwargs))
        return index

    async def generate_content(self, **kwargs: Any) -> Any:
        index = self._record("generate_content", kwargs)
        if self.on_generate_content is None:
            raise AssertionError("unexpected generate_content call")
        return await self.on_generate_content(index, kwargs)

    async def generate_images(self, **kwargs: Any) -> Any:
        index = self._record("generate_images", kwargs)
        if self.on_generate_images is None:
            raise AssertionError("unexpected generate_images call")
        return await self.on_generate_images(index, kwargs)


class FakeClient:
    def __init__(self) -> None:
        self.models = FakeModels()
        self.aio = types.SimpleNamespace(models=self.models)


@pytest.fixture
def responses() -> types.SimpleNamespace:
    return types.SimpleNamespace(
        image_part=image_part,
        text_part=text_part,
        content=content_response,
        images=images_response,
        text=text_response,
    )


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def png_image() -> InputImage:
    return InputImage(data=PNG_BYTES, mime_type="image/png")


@pytest.fixture
def new_artifact() -> NewArtifact:
    return NewArtifact(
        payload=ImagePayload(data=PNG_BYTES, mime_type="image/png"),
        prompt="Cinematic style. a lighthouse in fog",
        model_name="gemini-2.5-flash-image",
        kind="generated",
        aspect_ratio="16:9",
    )


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "lumina.db")
