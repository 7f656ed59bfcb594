from __future__ import annotations

from lumina_studio.catalog import style_label
from lumina_studio.models import PromptTemplateSection

UPSCALE_LABEL = "Upscale & Enhance"
UPSCALE_INSTRUCTION = (
    "Upscale this image to high resolution 4K. Enhance fine details, sharpen textures, improve lighting, "
    "and remove noise while maintaining the original composition exactly. Photorealistic quality."
)
DEFAULT_ANALYSIS_QUESTION = "Analyze this image in detail."

PROMPT_TEMPLATES: list[PromptTemplateSection] = [
    PromptTemplateSection(
        category="Cinematic & Realistic",
        prompts=[
            "A futuristic cityscape at sunset, neon lights reflecting on wet pavement, cinematic lighting, "
            "highly detailed, 8k resolution, photorealistic.",
            "Close-up portrait of an old sailor with a white beard, weathering storm on a boat, dramatic lighting, "
            "detailed skin texture, intense eyes.",
            "A cozy cabin in a snowy forest during twilight, warm light coming from windows, smoke rising from "
            "chimney, magical atmosphere.",
        ],
    ),
    PromptTemplateSection(
        category="3D & CGI",
        prompts=[
            "A cute isometric living room with plants, a cat sleeping on the sofa, pastel colors, 3d render, "
            "blender style, soft lighting.",
            "A transparent glass robot with glowing internal circuits, standing in a laboratory, depth of field, "
            "octane render, ray tracing.",
            "Low poly floating island with a castle, waterfall cascading down into clouds, vibrant colors, "
            "game asset style.",
        ],
    ),
    PromptTemplateSection(
        category="Artistic & Abstract",
        prompts=[
            "Oil painting of a bustling market in Morocco, vibrant spices, dappled sunlight, expressive "
            "brushstrokes, impressionist style.",
            "A surreal dreamscape with melting clocks and floating elephants, dali style, desert background, "
            "vivid colors.",
            "Cyberpunk samurai standing in rain, watercolor style, dripping paint effects, neon red and blue palette.",
        ],
    ),
    PromptTemplateSection(
        category="Character Design",
        prompts=[
            "A fantasy elf warrior queen, wearing silver armor with intricate leaf patterns, glowing magical "
            "staff, forest background, digital art.",
            "Steampunk inventor with brass goggles, messy hair, holding a glowing gadget, workshop background, "
            "intricate details.",
            "A cute anthropomorphic fox wearing a detective coat and hat, rainy city street background, "
            "pixar style animation.",
        ],
    ),
]


def compose_prompt(prompt: str, style: str = "none", negative_prompt: str = "") -> str:
    """Build the final generation prompt from user text, style preset, and negatives.

    The style label is prefixed as ``"<Label> style. <prompt>"`` and negative
    terms are appended as ``"<prompt> --no <negative>"``.

    Raises:
        ValueError: If the prompt is blank or the style id is unknown.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("Prompt must be a non-empty string.")

    final = prompt.strip()
    label = style_label(style)
    if label:
        final = f"{label} style. {final}"

    negative = (negative_prompt or "").strip()
    if negative:
        final = f"{final} --no {negative}"
    return final


def build_enhance_prompt(original: str) -> str:
    return (
        "You are an expert AI prompt engineer. Rewrite the following simple prompt to be highly detailed, "
        "descriptive, and optimized for image generation models.\n"
        "Focus on lighting, texture, composition, and mood.\n"
        "Keep the original intent but elevate the quality.\n\n"
        f'Original Prompt: "{original}"\n\n'
        "Return ONLY the enhanced prompt text, nothing else."
    )


def build_template_ideas_prompt(categories: int = 4, prompts_per_category: int = 3) -> str:
    return (
        f"Generate a collection of {categories} distinct, creative categories for AI image generation prompts.\n"
        f"For each category, provide {prompts_per_category} unique, highly detailed, and descriptive prompts.\n"
        "Categories can be things like 'Cyberpunk', 'Nature Photography', 'Abstract Art', 'Fantasy', "
        "'Architecture', etc.\n"
        "Make them inspiring and diverse.\n"
        'Return JSON only with this shape: {"sections": [{"category": "string", "prompts": ["string"]}]}'
    )
