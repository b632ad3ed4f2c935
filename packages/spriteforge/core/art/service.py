"""Art generation orchestrator.

Flow for one request::

    validate -> cache lookup -> hit: CachedResponse
                             -> miss, wait_for_result: provider -> post-process -> cache -> GenerationResult
                             -> miss, async: enqueue (same steps as the job executor) -> QueuedResponse

Cache failures never fail a request: read errors count as misses and write
errors are logged, with the processed bytes returned in memory instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
import logging
import time
from typing import TYPE_CHECKING

from spriteforge.core.art.cache import AssetCache, generate_cache_key
from spriteforge.core.art.errors import ArtError, CacheIOError, GenerationFailureError
from spriteforge.core.art.events import (
    EventBus,
    EventHandler,
    EventType,
    LifecycleEvent,
    Subscription,
)
from spriteforge.core.art.models import (
    ArtResponse,
    AssetSize,
    AssetType,
    CachedResponse,
    CacheEntry,
    CacheStats,
    GenerationJob,
    GenerationPriority,
    GenerationRequest,
    GenerationResult,
    QueuedResponse,
    QueueStats,
    validate_request,
)
from spriteforge.core.art.post_process import post_process_async
from spriteforge.core.art.providers.base import ArtProvider
from spriteforge.core.art.providers.registry import ProviderRegistry, create_registry
from spriteforge.core.art.queue import AssetQueue

if TYPE_CHECKING:
    from spriteforge.core.art.models import ProviderName
    from spriteforge.core.config.models import ArtServiceConfig

logger = logging.getLogger(__name__)


class ArtGenerationService:
    """Single entry point for generated art.

    Construct once per process (see create_art_service) and pass it to
    whatever needs it. Use as an async context manager, or call initialize()
    and close() explicitly.

    Args:
        config: Service configuration.
        cache: Asset cache.
        queue: Job queue.
        registry: Providers plus selection policy.
        events: Lifecycle event bus (defaults to the queue's bus).
        clock: Timer used for generation_time_ms.
    """

    def __init__(
        self,
        config: ArtServiceConfig,
        *,
        cache: AssetCache,
        queue: AssetQueue,
        registry: ProviderRegistry,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config
        self.cache = cache
        self.queue = queue
        self.registry = registry
        self.events = events or queue.events
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        try:
            await self.cache.initialize()
        except (CacheIOError, OSError):
            logger.warning("Asset cache unavailable at %s", self.cache.root, exc_info=True)
        for name, available in self.registry.availability().items():
            logger.info("Provider %s available: %s", name.value, available)
        self._initialized = True

    async def close(self, *, wait: bool = True) -> None:
        """Stop the service.

        Args:
            wait: Let running jobs finish (queued ones are dropped either way).
                If False, running jobs are interrupted.
        """
        if wait:
            self.queue.clear()
            await self.queue.join()
        else:
            await self.queue.shutdown()
        await self.registry.aclose()
        self._initialized = False

    async def __aenter__(self) -> ArtGenerationService:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> ArtResponse:
        """Return a cached asset, generate one now, or queue its generation.

        Raises:
            InvalidRequestError: Before any cache or queue work.
            ProviderUnavailableError / NoProvidersAvailableError: No usable provider.
            GenerationFailureError: Synchronous generation failed.
        """
        size = validate_request(request)
        await self.initialize()

        cache_key = generate_cache_key(request.asset_type, request.description, size)

        entry = await self._lookup(cache_key)
        if entry is not None:
            logger.debug("Cache hit: %s", cache_key)
            self.events.publish(LifecycleEvent(type=EventType.CACHE_HIT, cache_key=cache_key))
            return CachedResponse(url=entry.url, cache_key=cache_key)

        self.events.publish(LifecycleEvent(type=EventType.CACHE_MISS, cache_key=cache_key))

        if request.wait_for_result:
            return await self._generate_now(request, size, cache_key)
        return self._enqueue(request, size, cache_key)

    async def _lookup(self, cache_key: str) -> CacheEntry | None:
        try:
            return await self.cache.get(cache_key)
        except (CacheIOError, OSError):
            logger.warning("Cache lookup failed for %s, treating as miss", cache_key, exc_info=True)
            return None

    def _select(self, asset_type: AssetType) -> ArtProvider:
        return self.registry.select(asset_type, self.queue.get_stats().pending)

    async def _generate_now(
        self,
        request: GenerationRequest,
        size: AssetSize,
        cache_key: str,
    ) -> GenerationResult:
        start = self._clock()
        provider = self._select(request.asset_type)

        logger.info(
            "Generating %s with %s: %r",
            request.asset_type.value,
            provider.name.value,
            request.description,
        )

        try:
            raw = await provider.generate(request, size)
        except ArtError:
            raise
        except Exception as e:
            raise GenerationFailureError(f"{provider.name.value} generation failed: {e}") from e

        processed = await post_process_async(
            raw, size, request.asset_type, self.config.palette_colors
        )

        result = await self._store(request, size, cache_key, processed, provider.name)
        result.generation_time_ms = max((self._clock() - start) * 1000, 0.0)
        return result

    async def _store(
        self,
        request: GenerationRequest,
        size: AssetSize,
        cache_key: str,
        image_bytes: bytes,
        provider: ProviderName,
    ) -> GenerationResult:
        try:
            entry = await self.cache.set(
                cache_key,
                request.asset_type,
                request.description,
                image_bytes,
                size.width,
                size.height,
                provider,
            )
        except (CacheIOError, OSError):
            logger.warning(
                "Failed to cache %s, returning result in memory", cache_key, exc_info=True
            )
            return GenerationResult(
                url=self.cache.url_for(cache_key, request.asset_type),
                local_path=str(self.cache.path_for(cache_key, request.asset_type)),
                cache_key=cache_key,
                width=size.width,
                height=size.height,
                provider=provider,
                generation_time_ms=0.0,
                image_bytes=image_bytes,
            )

        return GenerationResult(
            url=entry.url,
            local_path=entry.file_path,
            cache_key=cache_key,
            width=size.width,
            height=size.height,
            provider=provider,
            generation_time_ms=0.0,
        )

    def _enqueue(self, request: GenerationRequest, size: AssetSize, cache_key: str) -> QueuedResponse:
        # Select now so configuration errors surface to the caller, not the job.
        provider = self._select(request.asset_type)

        async def executor(job: GenerationJob) -> GenerationResult:
            return await self._generate_now(job.request, size, cache_key)

        job, future = self.queue.enqueue(request, executor)
        future.add_done_callback(self._log_job_outcome)

        estimated = provider.estimate_time_ms(request) + self.queue.get_estimated_wait(job.id)
        return QueuedResponse(
            job_id=job.id,
            placeholder=self.config.placeholder_for(request.asset_type),
            estimated_time_ms=estimated,
            position=self.queue.get_position(job.id),
        )

    @staticmethod
    def _log_job_outcome(future: asyncio.Future[GenerationResult]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("Queued generation failed: %s", error)

    async def pregenerate(self, requests: Iterable[GenerationRequest]) -> None:
        """Queue low-priority generations to warm the cache. Errors are only logged."""
        for request in requests:
            warm = request.model_copy(
                update={"priority": GenerationPriority.LOW, "wait_for_result": False}
            )
            try:
                await self.generate(warm)
            except Exception as e:
                logger.warning("Pre-generation failed for %r: %s", request.description, e)

    # ------------------------------------------------------------------
    # Status surfaces
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: str) -> GenerationJob | None:
        return self.queue.get_job(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.queue.cancel(job_id)

    def get_queue_stats(self) -> QueueStats:
        return self.queue.get_stats()

    async def get_cache_stats(self) -> CacheStats:
        return await self.cache.get_stats()

    async def search_cache(
        self,
        query: str,
        asset_type: AssetType | None = None,
        limit: int = 10,
    ) -> list[CacheEntry]:
        return await self.cache.search(query, asset_type, limit)

    async def cleanup_cache(self) -> int:
        return await self.cache.cleanup()

    def subscribe(self, handler: EventHandler, *types: EventType) -> Subscription:
        """Register a lifecycle event handler (see EventBus.subscribe)."""
        return self.events.subscribe(handler, *types)


def create_art_service(
    config: ArtServiceConfig,
    *,
    providers: Mapping[ProviderName, ArtProvider] | None = None,
) -> ArtGenerationService:
    """Wire a service with the default collaborators for a configuration.

    Args:
        config: Service configuration.
        providers: Provider overrides (built from config if None).
    """
    events = EventBus()
    cache = AssetCache(config.cache_dir, config.cache_ttl_seconds, url_prefix=config.url_prefix)
    queue = AssetQueue(
        concurrency=config.max_concurrent_generations,
        timeout_seconds=config.generation_timeout_seconds,
        max_retries=config.max_retries,
        backoff_seconds=config.retry_backoff_seconds,
        retention_seconds=config.job_retention_seconds,
        active_job_estimate_ms=config.active_job_estimate_ms,
        per_job_estimate_ms=config.per_job_estimate_ms,
        events=events,
    )
    registry = create_registry(config, providers)
    return ArtGenerationService(config, cache=cache, queue=queue, registry=registry, events=events)
