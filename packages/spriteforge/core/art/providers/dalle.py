"""DALL-E backend via the OpenAI Images API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
)

from spriteforge.core.art.errors import GenerationFailureError, ProviderUnavailableError
from spriteforge.core.art.models import AssetSize, AssetType, GenerationRequest, ProviderName
from spriteforge.core.art.providers.base import decode_base64_image
from spriteforge.core.art.providers.prompts import PromptBuilder

if TYPE_CHECKING:
    from spriteforge.core.config.models import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "dall-e-3"

# DALL-E 3 renders at fixed sizes; output is resized locally afterwards.
_SQUARE = "1024x1024"
_LANDSCAPE = "1792x1024"
_LANDSCAPE_TYPES = {AssetType.SCENE, AssetType.ROOM}

_COST_SQUARE = 0.04
_COST_LANDSCAPE = 0.08
_ESTIMATE_MS = 10000.0


def _api_size(asset_type: AssetType) -> str:
    return _LANDSCAPE if asset_type in _LANDSCAPE_TYPES else _SQUARE


class DalleProvider:
    """OpenAI DALL-E 3 image provider.

    Args:
        config: Provider credentials and model settings.
        client: Pre-built AsyncOpenAI client (created lazily from config if None).
        prompts: Prompt builder.
    """

    name = ProviderName.DALLE

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: AsyncOpenAI | None = None,
        prompts: PromptBuilder | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._prompts = prompts or PromptBuilder()
        self._model = config.model or DEFAULT_MODEL

    def is_available(self) -> bool:
        key = self._config.api_key
        return bool(key) and key.startswith("sk-") and len(key) > 20

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.is_available():
                raise ProviderUnavailableError(self.name.value, "OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def generate(self, request: GenerationRequest, size: AssetSize) -> bytes:
        """Generate at the nearest DALL-E size; the caller resizes to ``size``.

        Raises:
            ProviderUnavailableError: Missing or rejected API key.
            GenerationFailureError: API, transport, or payload failure.
        """
        client = self._get_client()
        api_size = _api_size(request.asset_type)
        prompt = self._prompts.build_natural(request, size)

        logger.debug(
            "DALL-E generating %s at %s (target %s)", request.asset_type.value, api_size, size
        )

        try:
            response = await client.images.generate(
                model=self._model,
                prompt=prompt,
                n=1,
                size=api_size,  # type: ignore[arg-type]
                quality="standard",
                response_format="b64_json",
            )
        except (AuthenticationError, PermissionDeniedError) as e:
            raise ProviderUnavailableError(self.name.value, f"OpenAI rejected API key: {e}") from e
        except (APIConnectionError, APITimeoutError) as e:
            raise GenerationFailureError(f"OpenAI request failed: {e}") from e
        except APIError as e:
            raise GenerationFailureError(f"OpenAI API error: {e}") from e

        if not response.data:
            raise GenerationFailureError("OpenAI returned an empty data list")
        return decode_base64_image(response.data[0].b64_json, self.name)

    def estimate_time_ms(self, request: GenerationRequest) -> float:
        return _ESTIMATE_MS

    def estimate_cost(self, request: GenerationRequest) -> float:
        if request.asset_type in _LANDSCAPE_TYPES:
            return _COST_LANDSCAPE
        return _COST_SQUARE

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None
