"""Prompt text for generation backends.

A shared pixel-art style vocabulary, a few words per asset type and a
negative list for diffusion models.
"""

from __future__ import annotations

from dataclasses import dataclass

from spriteforge.core.art.models import AssetSize, AssetType, GenerationRequest

BASE_STYLE = (
    "pixel art",
    "retro video game style",
    "limited color palette",
    "clean pixel edges",
    "no anti-aliasing",
)

TYPE_STYLE: dict[AssetType, tuple[str, ...]] = {
    AssetType.CHARACTER: (
        "16-bit RPG character portrait",
        "front-facing",
        "shoulders up",
        "black outline",
        "transparent background",
    ),
    AssetType.MONSTER: (
        "32-bit RPG monster sprite",
        "full body",
        "menacing pose",
        "dramatic lighting",
    ),
    AssetType.SCENE: (
        "16-bit RPG background",
        "side-scrolling perspective",
        "atmospheric lighting",
        "layered depth",
    ),
    AssetType.ROOM: (
        "top-down RPG dungeon room",
        "tile-based layout",
        "torch lighting",
    ),
    AssetType.EFFECT: (
        "spell effect sprite",
        "glowing particles",
        "transparent background",
    ),
}

NEGATIVE_COMMON = (
    "blurry",
    "realistic",
    "photographic",
    "3D render",
    "smooth gradients",
    "watermark",
    "text",
)

NEGATIVE_BY_TYPE: dict[AssetType, tuple[str, ...]] = {
    AssetType.CHARACTER: ("full body", "multiple characters", "background scenery"),
    AssetType.MONSTER: ("cute", "chibi"),
    AssetType.SCENE: ("characters", "people", "modern"),
    AssetType.ROOM: ("characters", "modern"),
    AssetType.EFFECT: ("characters", "background scenery"),
}


@dataclass(frozen=True)
class GeneratedPrompt:
    positive: str
    negative: str


class PromptBuilder:
    """Build prompt text from a request."""

    def build(self, request: GenerationRequest) -> GeneratedPrompt:
        """Comma-separated keyword prompt for diffusion models."""
        positive = [*BASE_STYLE, *TYPE_STYLE[request.asset_type], request.description.strip()]
        negative = [*NEGATIVE_COMMON, *NEGATIVE_BY_TYPE[request.asset_type]]
        return GeneratedPrompt(positive=", ".join(positive), negative=", ".join(negative))

    def build_natural(self, request: GenerationRequest, size: AssetSize | None = None) -> str:
        """Sentence-style prompt for instruction-following image models."""
        style = ", ".join(TYPE_STYLE[request.asset_type])
        avoid = ", ".join(NEGATIVE_COMMON)
        lines = [
            f"Create a {request.asset_type.value} in pixel art of {request.description.strip()}.",
            f"Style: {', '.join(BASE_STYLE)}, {style}.",
            f"Avoid: {avoid}.",
        ]
        if size is not None:
            lines.append(f"It will be displayed at {size} pixels, so keep shapes bold and readable.")
        return " ".join(lines)
