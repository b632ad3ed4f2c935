"""Image generation backends and provider selection."""

from spriteforge.core.art.providers.base import ArtProvider
from spriteforge.core.art.providers.dalle import DalleProvider
from spriteforge.core.art.providers.gemini import GeminiImageProvider
from spriteforge.core.art.providers.prompts import GeneratedPrompt, PromptBuilder
from spriteforge.core.art.providers.registry import (
    HYBRID_FALLBACK_ORDER,
    ProviderRegistry,
    create_providers,
    create_registry,
    select_provider_name,
)
from spriteforge.core.art.providers.replicate import ReplicateProvider

__all__ = [
    "ArtProvider",
    "DalleProvider",
    "GeminiImageProvider",
    "GeneratedPrompt",
    "HYBRID_FALLBACK_ORDER",
    "PromptBuilder",
    "ProviderRegistry",
    "ReplicateProvider",
    "create_providers",
    "create_registry",
    "select_provider_name",
]
