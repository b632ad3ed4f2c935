"""Replicate backend (Stable Diffusion pixel-art models) over its REST API."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any

import httpx

from spriteforge.core.art.errors import GenerationFailureError, ProviderUnavailableError
from spriteforge.core.art.models import AssetSize, AssetType, GenerationRequest, ProviderName
from spriteforge.core.art.providers.base import check_response, download_image
from spriteforge.core.art.providers.prompts import PromptBuilder

if TYPE_CHECKING:
    from spriteforge.core.config.models import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.replicate.com"

PIXEL_ART_XL = "nerijs/pixel-art-xl:5c28a793c657a8c03be8af2daa3e7a61b28dddc2bc3356fa065b3053a9d72e6a"
SDXL = "stability-ai/sdxl:7762fd07cf82c948538e41f63f77d685e02b063e37e496e96eefd46c929f9bdc"

_MODELS: dict[AssetType, str] = {
    AssetType.CHARACTER: PIXEL_ART_XL,
    AssetType.MONSTER: PIXEL_ART_XL,
    AssetType.EFFECT: PIXEL_ART_XL,
    AssetType.SCENE: SDXL,
    AssetType.ROOM: SDXL,
}

_BASE_TIME_MS: dict[AssetType, float] = {
    AssetType.CHARACTER: 4000,
    AssetType.MONSTER: 5000,
    AssetType.EFFECT: 4000,
    AssetType.SCENE: 7000,
    AssetType.ROOM: 7000,
}

COST_PER_SECOND = 0.00115
_REFERENCE_AREA = 128 * 128
_TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


def model_for(asset_type: AssetType) -> str:
    return _MODELS[asset_type]


def build_input(prompt: str, negative: str, asset_type: AssetType, size: AssetSize) -> dict[str, Any]:
    """Model input parameters for a prediction."""
    params: dict[str, Any] = {
        "prompt": prompt,
        "negative_prompt": negative,
        "width": size.width,
        "height": size.height,
        "num_outputs": 1,
        "guidance_scale": 7.5,
        "num_inference_steps": 30,
    }
    if model_for(asset_type) == SDXL:
        params.update(scheduler="K_EULER", refine="expert_ensemble_refiner", high_noise_frac=0.8)
    return params


class ReplicateProvider:
    """Replicate predictions API provider.

    Creates a prediction with ``Prefer: wait`` so short runs finish in one round
    trip, polls the prediction URL otherwise, then downloads the first output.

    Args:
        config: Provider credentials and endpoint settings.
        client: Pre-built httpx client (tests pass one with a MockTransport).
        prompts: Prompt builder.
        poll_interval_seconds: Delay between prediction status polls.
    """

    name = ProviderName.REPLICATE

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        prompts: PromptBuilder | None = None,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._prompts = prompts or PromptBuilder()
        self._poll_interval = poll_interval_seconds

    def is_available(self) -> bool:
        token = self._config.api_key
        return bool(token) and (token.startswith("r8_") or len(token) > 20)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self.is_available():
                raise ProviderUnavailableError(self.name.value, "REPLICATE_API_TOKEN not configured")
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url or DEFAULT_BASE_URL,
                timeout=self._config.timeout_seconds,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.api_key}"}

    async def generate(self, request: GenerationRequest, size: AssetSize) -> bytes:
        """Run a prediction and return the first output image.

        Raises:
            ProviderUnavailableError: Missing or rejected token.
            GenerationFailureError: API, transport, or prediction failure.
        """
        client = self._get_client()
        prompt = self._prompts.build(request)
        model = model_for(request.asset_type)
        _, _, version = model.partition(":")

        logger.debug("Replicate generating %s with %s at %s", request.asset_type.value, model, size)

        try:
            response = await client.post(
                "/v1/predictions",
                headers={**self._auth_headers(), "Prefer": "wait"},
                json={
                    "version": version,
                    "input": build_input(prompt.positive, prompt.negative, request.asset_type, size),
                },
            )
            check_response(response, self.name)
            prediction = await self._wait_for_prediction(client, response.json())
        except httpx.HTTPError as e:
            raise GenerationFailureError(f"Replicate request failed: {e}") from e
        except ValueError as e:
            raise GenerationFailureError(f"Replicate returned invalid JSON: {e}") from e

        output = prediction.get("output")
        output_url = output[0] if isinstance(output, list) and output else output
        if not isinstance(output_url, str) or not output_url:
            raise GenerationFailureError("Unexpected output format from Replicate")

        return await download_image(client, output_url, self.name)

    async def _wait_for_prediction(
        self, client: httpx.AsyncClient, prediction: dict[str, Any]
    ) -> dict[str, Any]:
        while prediction.get("status") not in _TERMINAL_STATUSES:
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise GenerationFailureError("Replicate prediction has no status URL")
            await asyncio.sleep(self._poll_interval)
            response = await client.get(poll_url, headers=self._auth_headers())
            check_response(response, self.name)
            prediction = response.json()

        if prediction["status"] != "succeeded":
            raise GenerationFailureError(
                f"Replicate prediction {prediction.get('id')} {prediction['status']}: "
                f"{prediction.get('error') or 'no error detail'}"
            )
        return prediction

    def estimate_time_ms(self, request: GenerationRequest) -> float:
        size = request.effective_size
        scale = math.sqrt((size.width * size.height) / _REFERENCE_AREA)
        return round(_BASE_TIME_MS[request.asset_type] * scale)

    def estimate_cost(self, request: GenerationRequest) -> float:
        return self.estimate_time_ms(request) / 1000 * COST_PER_SECOND

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
