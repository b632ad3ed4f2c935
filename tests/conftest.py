"""Shared pytest fixtures for spriteforge tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from io import BytesIO
from pathlib import Path

from PIL import Image
import pytest

from spriteforge.core.art.errors import GenerationFailureError
from spriteforge.core.art.models import AssetSize, GenerationRequest, ProviderMode, ProviderName
from spriteforge.core.art.service import ArtGenerationService, create_art_service
from spriteforge.core.config.models import ArtServiceConfig

# ============================================================================
# Helpers
# ============================================================================


def _png(width: int = 32, height: int = 32, color: tuple[int, int, int, int] = (200, 40, 40, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-memory ArtProvider that records calls.

    Fails the first ``failures`` calls with GenerationFailureError, then
    returns ``image``.
    """

    def __init__(
        self,
        name: ProviderName = ProviderName.GEMINI,
        *,
        available: bool = True,
        image: bytes | None = None,
        failures: int = 0,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.available = available
        self.image = image if image is not None else _png()
        self.failures = failures
        self.delay = delay
        self.error = error
        self.calls = 0
        self.requests: list[tuple[GenerationRequest, AssetSize]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    def is_available(self) -> bool:
        return self.available

    async def generate(self, request: GenerationRequest, size: AssetSize) -> bytes:
        self.calls += 1
        self.requests.append((request, size))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.calls <= self.failures:
                raise GenerationFailureError(f"simulated failure {self.calls}")
            return self.image
        finally:
            self.active -= 1

    def estimate_time_ms(self, request: GenerationRequest) -> float:
        return 1000.0

    def estimate_cost(self, request: GenerationRequest) -> float:
        return 0.0

    async def aclose(self) -> None:
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Factory for solid-colour PNG bytes."""
    return _png


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    """Factory for FakeProvider instances."""
    return FakeProvider


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "generated"


@pytest.fixture
def art_config(cache_dir: Path) -> ArtServiceConfig:
    """Service config pinned to a single provider with no retry delay."""
    return ArtServiceConfig(
        provider=ProviderMode.GEMINI,
        cache_dir=str(cache_dir),
        max_concurrent_generations=2,
        generation_timeout_ms=5000,
        max_retries=3,
        retry_backoff_ms=0,
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(ProviderName.GEMINI)


@pytest.fixture
async def service(
    art_config: ArtServiceConfig, fake_provider: FakeProvider
) -> AsyncIterator[ArtGenerationService]:
    """Initialized service backed by fake_provider."""
    svc = create_art_service(art_config, providers={ProviderName.GEMINI: fake_provider})
    async with svc:
        yield svc
