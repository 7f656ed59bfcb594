"""Static catalogs: model classification table, aspect ratios, and style presets."""

from __future__ import annotations

from typing import get_args

from lumina_studio.models import AspectRatio, ModelDescriptor

DEFAULT_GENERATION_MODEL = "gemini-2.5-flash-image"
DEFAULT_EDIT_MODEL = "gemini-2.5-flash-image"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"

ASPECT_RATIOS: tuple[str, ...] = get_args(AspectRatio)

_GEMINI_IMAGE = ModelDescriptor(family="gemini", supports_editing=True, supports_multi_image_output=False)
_GEMINI_TEXT = ModelDescriptor(family="gemini", supports_editing=False, supports_multi_image_output=False)
_IMAGEN = ModelDescriptor(family="imagen", supports_editing=False, supports_multi_image_output=True)

MODEL_CATALOG: dict[str, ModelDescriptor] = {
    "gemini-2.5-flash-image": _GEMINI_IMAGE,
    "gemini-2.5-flash-image-preview": _GEMINI_IMAGE,
    "gemini-3-pro-image-preview": _GEMINI_IMAGE,
    "gemini-2.5-flash": _GEMINI_TEXT,
    "gemini-2.5-pro": _GEMINI_TEXT,
    "imagen-3.0-generate-001": _IMAGEN,
    "imagen-3.0-generate-002": _IMAGEN,
    "imagen-4.0-generate-001": _IMAGEN,
    "imagen-4.0-ultra-generate-001": _IMAGEN,
    "imagen-4.0-fast-generate-001": _IMAGEN,
}

# Unknown identifiers are sent through the freeform generate-content call.
FALLBACK_DESCRIPTOR = _GEMINI_IMAGE

GENERATION_MODELS: tuple[str, ...] = tuple(
    name for name, descriptor in MODEL_CATALOG.items() if descriptor != _GEMINI_TEXT
)
EDIT_MODELS: tuple[str, ...] = tuple(name for name, descriptor in MODEL_CATALOG.items() if descriptor.supports_editing)

STYLE_PRESETS: dict[str, str] = {
    "none": "No Style",
    "photorealistic": "Photorealistic",
    "cinematic": "Cinematic",
    "anime": "Anime / Manga",
    "digital-art": "Digital Art",
    "oil-painting": "Oil Painting",
    "watercolor": "Watercolor",
    "charcoal": "Charcoal Sketch",
    "3d-render": "3D Render",
    "cyberpunk": "Cyberpunk",
    "vintage": "Vintage Photo",
    "pixel-art": "Pixel Art",
    "neon-punk": "Neon Punk",
    "isometric": "Isometric",
    "low-poly": "Low Poly",
    "origami": "Origami",
    "line-art": "Line Art",
    "surrealism": "Surrealism",
    "pop-art": "Pop Art",
    "steampunk": "Steampunk",
    "fantasy": "Fantasy RPG",
}


def classify(model_name: str) -> ModelDescriptor:
    """Map a model identifier to its backend family and capabilities.

    Lookup is an exact match against ``MODEL_CATALOG`` after trimming
    whitespace. Anything not listed resolves to ``FALLBACK_DESCRIPTOR``.
    """
    return MODEL_CATALOG.get((model_name or "").strip(), FALLBACK_DESCRIPTOR)


def validate_aspect_ratio(aspect_ratio: str) -> str:
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValueError(f"Unsupported aspect ratio {aspect_ratio!r}; expected one of {', '.join(ASPECT_RATIOS)}")
    return aspect_ratio


def style_label(style: str) -> str | None:
    """Return the prompt label for a style id, or ``None`` for the ``none`` preset."""
    if style not in STYLE_PRESETS:
        raise ValueError(f"Unknown style preset: {style}")
    if style == "none":
        return None
    return STYLE_PRESETS[style]
