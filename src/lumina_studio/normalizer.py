"""Convert family-specific model responses into normalized payloads."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from lumina_studio.errors import EmptyResponseError
from lumina_studio.models import ImagePayload, PromptTemplateIdeas, PromptTemplateSection

logger = logging.getLogger(__name__)

NO_ANALYSIS_PLACEHOLDER = "No analysis generated."
DEFAULT_IMAGE_MIME = "image/png"


def normalize_batch_images(response: Any) -> list[ImagePayload]:
    """Extract every generated image from a ``generate_images`` response.

    Args:
        response: Raw response from the batch-capable family.

    Returns:
        One payload per returned image, in response order.

    Raises:
        EmptyResponseError: If no entry carries image bytes.
    """
    payloads: list[ImagePayload] = []
    for generated in getattr(response, "generated_images", None) or []:
        image = getattr(generated, "image", None)
        data = getattr(image, "image_bytes", None)
        if not data:
            continue
        mime_type = getattr(image, "mime_type", None) or DEFAULT_IMAGE_MIME
        payloads.append(ImagePayload(data=data, mime_type=mime_type))

    if not payloads:
        raise EmptyResponseError("No image data found in Imagen response")
    return payloads


def normalize_single_image(response: Any) -> ImagePayload:
    """Return the first inline image part of a ``generate_content`` response.

    Raises:
        EmptyResponseError: If no part carries inline image bytes.
    """
    for part in _content_parts(response):
        inline = getattr(part, "inline_data", None)
        data = getattr(inline, "data", None)
        if data:
            mime_type = getattr(inline, "mime_type", None) or DEFAULT_IMAGE_MIME
            return ImagePayload(data=data, mime_type=mime_type)

    raise EmptyResponseError("No image data found in Gemini response")


def normalize_text(response: Any) -> str:
    return (getattr(response, "text", None) or "").strip()


def normalize_analysis(response: Any) -> str:
    """Return analysis text verbatim, or a placeholder when the model said nothing."""
    text = getattr(response, "text", None)
    return text if text else NO_ANALYSIS_PLACEHOLDER


def _content_parts(response: Any) -> list[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _strip_json_fence(text: str) -> str:
    """Remove a surrounding Markdown JSON code fence when present."""
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        return fenced.group(1).strip()
    return text.strip()


def parse_template_sections(raw: str | None) -> list[PromptTemplateSection]:
    """Parse structured template ideas into sections.

    Malformed JSON or a payload that fails the schema yields an empty list so
    callers can keep showing the templates they already have. Sections with a
    blank category or no prompts are dropped.
    """
    if not raw or not raw.strip():
        return []

    try:
        data = json.loads(_strip_json_fence(raw))
    except json.JSONDecodeError:
        logger.warning("Template ideas payload was not valid JSON")
        return []

    if isinstance(data, list):
        data = {"sections": data}

    try:
        ideas = PromptTemplateIdeas.model_validate(data)
    except ValidationError as exc:
        logger.warning("Template ideas payload failed schema validation: %s", exc)
        return []

    sections: list[PromptTemplateSection] = []
    for section in ideas.sections:
        prompts = [prompt.strip() for prompt in section.prompts if prompt.strip()]
        if section.category.strip() and prompts:
            sections.append(PromptTemplateSection(category=section.category.strip(), prompts=prompts))
    return sections
