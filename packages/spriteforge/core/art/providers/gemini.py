"""Google Imagen backend via the Generative Language REST API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from spriteforge.core.art.errors import GenerationFailureError, ProviderUnavailableError
from spriteforge.core.art.models import AssetSize, AssetType, GenerationRequest, ProviderName
from spriteforge.core.art.providers.base import check_response, decode_base64_image
from spriteforge.core.art.providers.prompts import PromptBuilder

if TYPE_CHECKING:
    from spriteforge.core.config.models import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "imagen-4.0-generate-001"

_ESTIMATE_MS: dict[AssetType, float] = {
    AssetType.CHARACTER: 3000,
    AssetType.MONSTER: 4000,
    AssetType.SCENE: 6000,
}
_DEFAULT_ESTIMATE_MS = 4000.0
_COST = 0.001


def aspect_ratio(size: AssetSize) -> str:
    """Imagen aspect ratio closest to the target size."""
    return "1:1" if size.is_square else "16:9"


class GeminiImageProvider:
    """Imagen ``:predict`` provider. Cheapest and fastest of the backends.

    Args:
        config: Provider credentials and model settings.
        client: Pre-built httpx client (tests pass one with a MockTransport).
        prompts: Prompt builder.
    """

    name = ProviderName.GEMINI

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        prompts: PromptBuilder | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._prompts = prompts or PromptBuilder()
        self.model = config.model or DEFAULT_MODEL

    def is_available(self) -> bool:
        return bool(self._config.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self.is_available():
                raise ProviderUnavailableError(self.name.value, "GEMINI_API_KEY not configured")
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url or DEFAULT_BASE_URL,
                timeout=self._config.timeout_seconds,
            )
        return self._client

    async def generate(self, request: GenerationRequest, size: AssetSize) -> bytes:
        """Request one Imagen sample and return its decoded bytes.

        Raises:
            ProviderUnavailableError: Missing or rejected API key.
            GenerationFailureError: API, transport, or payload failure.
        """
        client = self._get_client()
        body = {
            "instances": [{"prompt": self._prompts.build_natural(request, size)}],
            "parameters": {"sampleCount": 1, "aspectRatio": aspect_ratio(size)},
        }

        logger.debug("Imagen generating %s with %s", request.asset_type.value, self.model)

        try:
            response = await client.post(
                f"/v1beta/models/{self.model}:predict",
                headers={"x-goog-api-key": self._config.api_key or ""},
                json=body,
            )
            check_response(response, self.name)
            data = response.json()
        except httpx.HTTPError as e:
            raise GenerationFailureError(f"Imagen request failed: {e}") from e
        except ValueError as e:
            raise GenerationFailureError(f"Imagen returned invalid JSON: {e}") from e

        predictions = data.get("predictions") or []
        encoded = predictions[0].get("bytesBase64Encoded") if predictions else None
        return decode_base64_image(encoded, self.name)

    def estimate_time_ms(self, request: GenerationRequest) -> float:
        return _ESTIMATE_MS.get(request.asset_type, _DEFAULT_ESTIMATE_MS)

    def estimate_cost(self, request: GenerationRequest) -> float:
        return _COST

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
