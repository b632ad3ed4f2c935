"""Configuration models for spriteforge."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from spriteforge.core.art.models import AssetType, ProviderMode


class ProviderConfig(BaseModel):
    """Credentials and connection settings for one generation backend."""

    model_config = ConfigDict(extra="ignore")

    api_key: str | None = Field(default=None, description="API key or token", repr=False)
    model: str | None = Field(default=None, description="Model override (provider default if None)")
    base_url: str | None = Field(default=None, description="API base URL override")
    timeout_seconds: float = Field(default=60.0, gt=0, description="HTTP timeout per request")


def _default_placeholders() -> dict[AssetType, str]:
    return {asset_type: f"/placeholders/{asset_type.value}.png" for asset_type in AssetType}


class ArtServiceConfig(BaseModel):
    """Art generation service configuration.

    Attributes:
        provider: Fixed backend, or ``hybrid`` for per-request selection.
        cache_dir: Root directory of the asset cache.
        url_prefix: Public URL prefix mapped onto cache_dir.
        cache_ttl_days: Age after which cached assets expire.
        max_concurrent_generations: Queue concurrency limit.
        generation_timeout_ms: Per-attempt timeout.
        max_retries: Total attempts per queued job.
        retry_backoff_ms: Linear backoff unit between attempts.
        job_retention_seconds: How long finished jobs stay queryable.
        saturation_threshold: Pending-job count above which hybrid mode
            moves past its first per-type choice.
        active_job_estimate_ms: Wait estimate for the next queued job.
        per_job_estimate_ms: Added wait per job ahead in the queue.
        palette_colors: Palette size for quantized sprites.
        placeholders: Placeholder URL per asset type for queued responses.
    """

    model_config = ConfigDict(extra="ignore")

    provider: ProviderMode = ProviderMode.HYBRID
    cache_dir: str = "./public/generated"
    url_prefix: str = "/generated"
    cache_ttl_days: float = Field(default=30.0, gt=0)
    max_concurrent_generations: int = Field(default=3, ge=1)
    generation_timeout_ms: int = Field(default=30000, gt=0)
    max_retries: int = Field(default=2, ge=1)
    retry_backoff_ms: int = Field(default=1000, ge=0)
    job_retention_seconds: float = Field(default=300.0, ge=0)
    saturation_threshold: int = Field(default=5, ge=0)
    active_job_estimate_ms: float = Field(default=2500.0, ge=0)
    per_job_estimate_ms: float = Field(default=5000.0, ge=0)
    palette_colors: int = Field(default=256, ge=1, le=256)
    placeholders: dict[AssetType, str] = Field(default_factory=_default_placeholders)

    replicate: ProviderConfig = Field(default_factory=ProviderConfig)
    dalle: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_days * 24 * 60 * 60

    @property
    def generation_timeout_seconds(self) -> float:
        return self.generation_timeout_ms / 1000

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000

    def placeholder_for(self, asset_type: AssetType) -> str:
        return self.placeholders.get(asset_type, f"/placeholders/{asset_type.value}.png")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    structured: bool = Field(default=False, description="Emit JSON lines instead of text")
    filename: str | None = Field(default=None, description="Log file (stderr if None)")


class AppConfig(BaseModel):
    """Application-level configuration."""

    model_config = ConfigDict(extra="ignore")

    art: ArtServiceConfig = Field(default_factory=ArtServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default_path(cls) -> Path:
        """Default path for application config."""
        return Path("spriteforge.yaml")
