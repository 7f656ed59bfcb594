"""Single-call adapter around the Google GenAI async model surface."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from google.genai import types

from lumina_studio.catalog import classify
from lumina_studio.config import resolve_gemini_api_key
from lumina_studio.errors import MissingCredentialError, RemoteCallError, UnsupportedModelError
from lumina_studio.models import InputImage
from lumina_studio.prompting import DEFAULT_ANALYSIS_QUESTION

logger = logging.getLogger(__name__)

MAX_EDIT_IMAGES = 3


class ModelDispatcher:
    """Issue exactly one remote call per invocation, routed by model family.

    The dispatcher never retries and never fans out. Callers that need several
    images from a single-call model invoke it once per image.
    """

    def __init__(self, client: Any | None = None):
        """Create a dispatcher.

        Args:
            client: Optional pre-built ``genai.Client`` (or compatible fake).
                When omitted, one is created lazily from the resolved API key.
        """
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = resolve_gemini_api_key()
            if not api_key:
                raise MissingCredentialError("Missing GEMINI_API_KEY (set env var or .api_keys/Gemini.md)")

            from google import genai

            self._client = genai.Client(api_key=api_key)
        return self._client

    async def _call(self, operation: str, model_name: str, request: Callable[[Any], Awaitable[Any]]) -> Any:
        models = self._get_client().aio.models
        logger.debug("Dispatching %s call to %s", operation, model_name)
        try:
            return await request(models)
        except Exception as exc:
            raise RemoteCallError(f"{operation} call to {model_name} failed: {exc}") from exc

    async def dispatch_generate(self, model_name: str, prompt: str, aspect_ratio: str, count: int = 1) -> Any:
        """Request images for a prompt.

        Batch-capable models receive one call asking for ``count`` images.
        Single-call models always produce one image and ignore ``count``.
        """
        if count < 1:
            raise ValueError("count must be at least 1")

        descriptor = classify(model_name)
        if descriptor.supports_multi_image_output:
            config = types.GenerateImagesConfig(
                number_of_images=count,
                aspect_ratio=aspect_ratio,
                output_mime_type="image/png",
            )
            return await self._call(
                "generate_images",
                model_name,
                lambda models: models.generate_images(model=model_name, prompt=prompt, config=config),
            )

        return await self._generate_content(
            model_name,
            [types.Part.from_text(text=prompt)],
            aspect_ratio,
        )

    async def dispatch_edit(
        self,
        model_name: str,
        images: Sequence[InputImage],
        prompt: str,
        aspect_ratio: str,
    ) -> Any:
        """Edit or combine up to three images according to a text instruction.

        Parts are sent positionally: primary image, reference images, then the
        instruction text.

        Raises:
            ValueError: If the image count is outside 1..3 or the prompt is blank.
            UnsupportedModelError: If the model family cannot edit images.
        """
        if not images:
            raise ValueError("At least one image is required for editing.")
        if len(images) > MAX_EDIT_IMAGES:
            raise ValueError(f"At most {MAX_EDIT_IMAGES} images can be edited together.")
        if not prompt or not prompt.strip():
            raise ValueError("Edit prompt must be a non-empty string.")

        descriptor = classify(model_name)
        if not descriptor.supports_editing:
            raise UnsupportedModelError(
                f"Model {model_name} does not support image editing. Please use one of the Gemini image models."
            )

        parts = [types.Part.from_bytes(data=image.data, mime_type=image.mime_type) for image in images]
        parts.append(types.Part.from_text(text=prompt))
        return await self._generate_content(model_name, parts, aspect_ratio)

    async def dispatch_analyze(self, model_name: str, image: InputImage, question: str = "") -> Any:
        parts = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
            types.Part.from_text(text=question.strip() or DEFAULT_ANALYSIS_QUESTION),
        ]
        return await self._call(
            "analyze",
            model_name,
            lambda models: models.generate_content(model=model_name, contents=parts),
        )

    async def dispatch_text(self, model_name: str, prompt: str, response_schema: Any | None = None) -> Any:
        """Run a text-only generation, optionally constrained to a JSON schema."""
        config = None
        if response_schema is not None:
            config = types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=response_schema,
            )
        return await self._call(
            "generate_text",
            model_name,
            lambda models: models.generate_content(model=model_name, contents=prompt, config=config),
        )

    async def _generate_content(self, model_name: str, parts: list[types.Part], aspect_ratio: str) -> Any:
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        )
        return await self._call(
            "generate_content",
            model_name,
            lambda models: models.generate_content(model=model_name, contents=parts, config=config),
        )
