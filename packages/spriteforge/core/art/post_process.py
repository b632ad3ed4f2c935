"""Normalize raw provider output into the canonical asset size.

Resampling is nearest-neighbour only; smoothing filters would blur the hard
pixel edges the assets depend on. Sprite types (character, monster) are stored
as palette-quantized PNGs, everything else as compressed RGBA PNGs.
"""

from __future__ import annotations

import asyncio
from io import BytesIO
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from spriteforge.core.art.errors import GenerationFailureError
from spriteforge.core.art.models import AssetSize, AssetType

logger = logging.getLogger(__name__)

DEFAULT_PALETTE_COLORS = 256


def _decode(raw: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise GenerationFailureError(f"Provider returned undecodable image data: {e}") from e
    return img


def _resize(img: Image.Image, size: AssetSize) -> Image.Image:
    target = (size.width, size.height)
    if img.size == target:
        return img
    logger.debug("Resizing from %dx%d to %s", img.width, img.height, size)
    # Cover the target box, then centre-crop the overflow.
    return ImageOps.fit(img, target, method=Image.Resampling.NEAREST, centering=(0.5, 0.5))


def _encode_sprite(img: Image.Image, palette_colors: int) -> bytes:
    quantized = img.convert("RGBA").quantize(
        colors=palette_colors,
        method=Image.Quantize.FASTOCTREE,
        dither=Image.Dither.NONE,
    )
    buf = BytesIO()
    quantized.save(buf, "PNG", optimize=True)
    return buf.getvalue()


def _encode_full(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.convert("RGBA").save(buf, "PNG", compress_level=9)
    return buf.getvalue()


def post_process(
    raw: bytes,
    size: AssetSize,
    asset_type: AssetType,
    palette_colors: int = DEFAULT_PALETTE_COLORS,
) -> bytes:
    """Resize and re-encode raw image bytes for the cache.

    Pure CPU work. Use post_process_async from coroutines.

    Args:
        raw: Image bytes in any format Pillow can decode.
        size: Exact output size.
        asset_type: Decides palette quantization.
        palette_colors: Palette size for sprite types (1-256).

    Returns:
        PNG bytes of exactly ``size``.

    Raises:
        GenerationFailureError: If the input cannot be decoded.
    """
    if not 1 <= palette_colors <= 256:
        raise ValueError(f"palette_colors must be between 1 and 256, got {palette_colors}")

    img = _resize(_decode(raw), size)

    if asset_type.is_sprite():
        return _encode_sprite(img, palette_colors)
    return _encode_full(img)


async def post_process_async(
    raw: bytes,
    size: AssetSize,
    asset_type: AssetType,
    palette_colors: int = DEFAULT_PALETTE_COLORS,
) -> bytes:
    """post_process on a worker thread."""
    return await asyncio.to_thread(post_process, raw, size, asset_type, palette_colors)
