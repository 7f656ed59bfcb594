"""Public generation operations: fan-out, aggregation, and persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from lumina_studio.catalog import classify, validate_aspect_ratio
from lumina_studio.config import StudioSettings
from lumina_studio.dispatcher import ModelDispatcher
from lumina_studio.errors import RemoteCallError
from lumina_studio.models import (
    Artifact,
    ArtifactKind,
    ImagePayload,
    InputImage,
    NewArtifact,
    PromptTemplateIdeas,
    PromptTemplateSection,
)
from lumina_studio.normalizer import (
    normalize_analysis,
    normalize_batch_images,
    normalize_single_image,
    normalize_text,
    parse_template_sections,
)
from lumina_studio.prompting import (
    UPSCALE_INSTRUCTION,
    UPSCALE_LABEL,
    build_enhance_prompt,
    build_template_ideas_prompt,
    compose_prompt,
)
from lumina_studio.store import ArtifactStore

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_REQUEST = 4


class GenerationOrchestrator:
    """Entry point for every generate/edit/analyze/prompt-assist operation.

    Every successful generate or edit result is persisted into the injected
    ``ArtifactStore`` before it is returned. Analysis and prompt assistance
    are never persisted.
    """

    def __init__(
        self,
        dispatcher: ModelDispatcher,
        store: ArtifactStore,
        settings: StudioSettings | None = None,
    ):
        self.dispatcher = dispatcher
        self.store = store
        self.settings = settings or StudioSettings()

    async def generate(
        self,
        prompt: str,
        style: str = "none",
        negative_prompt: str = "",
        aspect_ratio: str = "1:1",
        model_name: str | None = None,
        count: int = 1,
    ) -> list[Artifact]:
        """Generate ``count`` images and persist them in request order.

        Batch-capable models get a single call asking for ``count`` images.
        Single-call models get ``count`` concurrent calls whose results are
        ordered by slot, not by completion.

        Raises:
            ValueError: On invalid prompt, style, aspect ratio, or count.
            RemoteCallError: If a dispatch call fails or the batch times out.
            EmptyResponseError: If a response carries no image.
        """
        model_name = model_name or self.settings.generation_model
        final_prompt = compose_prompt(prompt, style=style, negative_prompt=negative_prompt)
        validate_aspect_ratio(aspect_ratio)
        if not 1 <= count <= MAX_IMAGES_PER_REQUEST:
            raise ValueError(f"count must be between 1 and {MAX_IMAGES_PER_REQUEST}")

        if classify(model_name).supports_multi_image_output:
            raw = await self.dispatcher.dispatch_generate(model_name, final_prompt, aspect_ratio, count)
            payloads = normalize_batch_images(raw)
        else:
            payloads = await self._fan_out(model_name, final_prompt, aspect_ratio, count)

        return await self._persist_all(payloads, final_prompt, model_name, "generated", aspect_ratio)

    async def _generate_slot(self, slot: int, model_name: str, prompt: str, aspect_ratio: str) -> ImagePayload:
        raw = await self.dispatcher.dispatch_generate(model_name, prompt, aspect_ratio, 1)
        payload = normalize_single_image(raw)
        logger.debug("Slot %d of %s generation completed", slot, model_name)
        return payload

    async def _fan_out(self, model_name: str, prompt: str, aspect_ratio: str, count: int) -> list[ImagePayload]:
        """Run ``count`` single-image calls concurrently and join once all settle."""
        tasks = [
            asyncio.ensure_future(self._generate_slot(slot, model_name, prompt, aspect_ratio))
            for slot in range(count)
        ]
        joined = asyncio.gather(*tasks, return_exceptions=True)
        try:
            if self.settings.batch_timeout is None:
                results = await joined
            else:
                results = await asyncio.wait_for(joined, timeout=self.settings.batch_timeout)
        except asyncio.TimeoutError as exc:
            raise RemoteCallError(
                f"Batch of {count} images from {model_name} timed out after {self.settings.batch_timeout}s"
            ) from exc

        failures = [(slot, result) for slot, result in enumerate(results) if isinstance(result, BaseException)]
        if not failures:
            return list(results)

        for slot, error in failures:
            logger.warning("Slot %d of %d failed for %s: %s", slot, count, model_name, error)

        if self.settings.batch_policy == "partial" and len(failures) < count:
            return [result for result in results if not isinstance(result, BaseException)]
        raise failures[0][1]

    async def _persist_all(
        self,
        payloads: Sequence[ImagePayload],
        prompt: str,
        model_name: str,
        kind: ArtifactKind,
        aspect_ratio: str,
    ) -> list[Artifact]:
        return await self.store.insert_many(
            [
                NewArtifact(
                    payload=payload,
                    prompt=prompt,
                    model_name=model_name,
                    kind=kind,
                    aspect_ratio=aspect_ratio,
                )
                for payload in payloads
            ]
        )

    async def edit(
        self,
        images: Sequence[InputImage],
        prompt: str,
        aspect_ratio: str = "1:1",
        model_name: str | None = None,
    ) -> Artifact:
        """Edit the primary image (optionally guided by references) and persist the result."""
        return await self._edit(images, prompt, prompt, aspect_ratio, model_name)

    async def upscale(
        self,
        images: Sequence[InputImage],
        aspect_ratio: str = "1:1",
        model_name: str | None = None,
    ) -> Artifact:
        """Enhance resolution and detail; history records the short upscale label."""
        return await self._edit(images, UPSCALE_INSTRUCTION, UPSCALE_LABEL, aspect_ratio, model_name)

    async def _edit(
        self,
        images: Sequence[InputImage],
        instruction: str,
        recorded_prompt: str,
        aspect_ratio: str,
        model_name: str | None,
    ) -> Artifact:
        model_name = model_name or self.settings.edit_model
        validate_aspect_ratio(aspect_ratio)
        raw = await self.dispatcher.dispatch_edit(model_name, list(images), instruction, aspect_ratio)
        payload = normalize_single_image(raw)
        stored = await self._persist_all([payload], recorded_prompt, model_name, "edited", aspect_ratio)
        return stored[0]

    async def analyze(self, image: InputImage, question: str = "", model_name: str | None = None) -> str:
        raw = await self.dispatcher.dispatch_analyze(model_name or self.settings.text_model, image, question)
        return normalize_analysis(raw)

    async def enhance_prompt(self, original: str, model_name: str | None = None) -> str:
        """Rewrite a prompt into a richer one; returns ``original`` on any failure."""
        try:
            raw = await self.dispatcher.dispatch_text(
                model_name or self.settings.text_model,
                build_enhance_prompt(original),
            )
            enhanced = normalize_text(raw)
        except Exception as exc:
            logger.warning("Prompt enhancement failed, keeping original prompt: %s", exc)
            return original
        return enhanced or original

    async def suggest_templates(self, model_name: str | None = None) -> list[PromptTemplateSection]:
        """Ask the model for fresh prompt template sections; ``[]`` when unavailable."""
        try:
            raw = await self.dispatcher.dispatch_text(
                model_name or self.settings.text_model,
                build_template_ideas_prompt(),
                response_schema=PromptTemplateIdeas,
            )
            return parse_template_sections(getattr(raw, "text", None))
        except Exception as exc:
            logger.warning("Template suggestion failed: %s", exc)
            return []
