"""Provider registry and selection policy.

Selection is a pure function of (mode, asset type, availability, queue
pressure); the registry only gathers those live signals and looks up the
chosen provider.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING

from spriteforge.core.art.errors import NoProvidersAvailableError, ProviderUnavailableError
from spriteforge.core.art.models import AssetType, ProviderMode, ProviderName
from spriteforge.core.art.providers.base import ArtProvider
from spriteforge.core.art.providers.dalle import DalleProvider
from spriteforge.core.art.providers.gemini import GeminiImageProvider
from spriteforge.core.art.providers.replicate import ReplicateProvider

if TYPE_CHECKING:
    from spriteforge.core.config.models import ArtServiceConfig

logger = logging.getLogger(__name__)

# Used first in hybrid mode whenever it is available.
PREFERRED_PROVIDER = ProviderName.GEMINI

# Hybrid fallback order per asset type once the preferred provider is out.
HYBRID_FALLBACK_ORDER: dict[AssetType, tuple[ProviderName, ...]] = {
    AssetType.CHARACTER: (ProviderName.REPLICATE, ProviderName.DALLE),
    AssetType.MONSTER: (ProviderName.REPLICATE, ProviderName.DALLE),
    AssetType.EFFECT: (ProviderName.REPLICATE, ProviderName.DALLE),
    AssetType.SCENE: (ProviderName.REPLICATE, ProviderName.DALLE),
    AssetType.ROOM: (ProviderName.DALLE, ProviderName.REPLICATE),
}

DEFAULT_SATURATION_THRESHOLD = 5


def select_provider_name(
    mode: ProviderMode,
    asset_type: AssetType,
    availability: Mapping[ProviderName, bool],
    pending: int,
    saturation_threshold: int = DEFAULT_SATURATION_THRESHOLD,
) -> ProviderName:
    """Pick the provider for one request.

    Args:
        mode: A fixed provider, or hybrid.
        asset_type: Type being generated.
        availability: Live ``is_available`` result per provider.
        pending: Current queue pending count.
        saturation_threshold: Pending count above which the first per-type
            choice is skipped in favour of the next available one.

    Returns:
        The selected provider name.

    Raises:
        ProviderUnavailableError: A fixed provider is configured but unavailable.
        NoProvidersAvailableError: Hybrid mode found nothing usable.
    """
    if mode != ProviderMode.HYBRID:
        name = ProviderName(mode.value)
        if not availability.get(name, False):
            raise ProviderUnavailableError(name.value)
        return name

    if availability.get(PREFERRED_PROVIDER, False):
        return PREFERRED_PROVIDER

    candidates = [n for n in HYBRID_FALLBACK_ORDER[asset_type] if availability.get(n, False)]
    if not candidates:
        raise NoProvidersAvailableError()

    if pending > saturation_threshold and len(candidates) > 1:
        return candidates[1]
    return candidates[0]


class ProviderRegistry:
    """Closed set of configured providers plus the selection policy."""

    def __init__(
        self,
        providers: Mapping[ProviderName, ArtProvider],
        mode: ProviderMode = ProviderMode.HYBRID,
        saturation_threshold: int = DEFAULT_SATURATION_THRESHOLD,
    ) -> None:
        self._providers = dict(providers)
        self.mode = mode
        self.saturation_threshold = saturation_threshold

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def get(self, name: ProviderName) -> ArtProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderUnavailableError(
                name.value, f"Provider '{name.value}' is not registered"
            ) from None

    def availability(self) -> dict[ProviderName, bool]:
        return {name: provider.is_available() for name, provider in self._providers.items()}

    def select(self, asset_type: AssetType, pending: int = 0) -> ArtProvider:
        name = select_provider_name(
            self.mode,
            asset_type,
            self.availability(),
            pending,
            self.saturation_threshold,
        )
        logger.debug("Selected %s for %s (pending=%d)", name.value, asset_type.value, pending)
        return self._providers[name]

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def create_providers(config: ArtServiceConfig) -> dict[ProviderName, ArtProvider]:
    """Build every backend from configuration.

    Providers without credentials are still created; they report unavailable.
    """
    return {
        ProviderName.REPLICATE: ReplicateProvider(config.replicate),
        ProviderName.DALLE: DalleProvider(config.dalle),
        ProviderName.GEMINI: GeminiImageProvider(config.gemini),
    }


def create_registry(
    config: ArtServiceConfig,
    providers: Mapping[ProviderName, ArtProvider] | None = None,
) -> ProviderRegistry:
    """Registry for a configuration, optionally over pre-built providers."""
    return ProviderRegistry(
        providers if providers is not None else create_providers(config),
        mode=config.provider,
        saturation_threshold=config.saturation_threshold,
    )
