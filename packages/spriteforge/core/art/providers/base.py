"""Provider protocol and shared HTTP helpers."""

from __future__ import annotations

import base64
import binascii
from typing import Protocol, runtime_checkable

import httpx

from spriteforge.core.art.errors import GenerationFailureError, ProviderUnavailableError
from spriteforge.core.art.models import AssetSize, GenerationRequest, ProviderName


@runtime_checkable
class ArtProvider(Protocol):
    """A backend that turns a text description into raw image bytes.

    ``is_available`` is a cheap configuration check (credentials present and
    well-formed), not a network round trip.
    """

    name: ProviderName

    def is_available(self) -> bool: ...

    async def generate(self, request: GenerationRequest, size: AssetSize) -> bytes: ...

    def estimate_time_ms(self, request: GenerationRequest) -> float: ...

    def estimate_cost(self, request: GenerationRequest) -> float: ...

    async def aclose(self) -> None: ...


def safe_snippet(content: bytes, limit: int = 512) -> str:
    """Decode a response body prefix for error messages."""
    text = content[:limit].decode("utf-8", errors="replace")
    return text + "..." if len(content) > limit else text


def check_response(response: httpx.Response, provider: ProviderName) -> None:
    """Map a non-2xx response to the pipeline's error taxonomy.

    401/403 mean the credential is wrong, which retrying cannot fix. Everything
    else (rate limits, server errors, bad payloads) is treated as transient.

    Raises:
        ProviderUnavailableError: On authentication failures.
        GenerationFailureError: On any other non-success status.
    """
    if response.is_success:
        return

    detail = safe_snippet(response.content or b"")
    if response.status_code in (401, 403):
        raise ProviderUnavailableError(
            provider.value,
            f"{provider.value} rejected credentials ({response.status_code}): {detail}",
        )
    raise GenerationFailureError(
        f"{provider.value} API error {response.status_code} for "
        f"{response.request.method} {response.request.url}: {detail}"
    )


def decode_base64_image(data: str | None, provider: ProviderName) -> bytes:
    """Decode a base64 image payload, rejecting empty or malformed data."""
    if not data:
        raise GenerationFailureError(f"{provider.value} response contained no image data")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise GenerationFailureError(f"{provider.value} returned invalid base64 image: {e}") from e


async def download_image(client: httpx.AsyncClient, url: str, provider: ProviderName) -> bytes:
    """Fetch a generated image from a provider-hosted URL."""
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise GenerationFailureError(f"Failed to download {provider.value} image: {e}") from e
    check_response(response, provider)
    if not response.content:
        raise GenerationFailureError(f"{provider.value} image download was empty")
    return response.content
