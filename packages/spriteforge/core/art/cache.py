"""Content-addressable, TTL-bound cache of generated assets.

Layout on disk::

    {root}/cache-index.json        single source of truth for what exists
    {root}/characters/{key}.png    one type-partitioned directory per AssetType
    {root}/monsters/{key}.png
    ...

The index is rewritten atomically (temp file + os.replace) after every mutation
so it survives a crash at its last successful write. Index corruption and
vanished backing files are treated as cache misses, never as fatal errors.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import hashlib
import logging
from pathlib import Path
import re
import time

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, ValidationError

from spriteforge.core.art.errors import CacheIOError
from spriteforge.core.art.models import (
    AssetSize,
    AssetType,
    CacheEntry,
    CacheStats,
    ProviderName,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = "cache-index.json"
CACHE_KEY_VERSION = "v1"
CACHE_KEY_LENGTH = 16

_NON_ALNUM_SPACE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """Normalize a description for cache keying and search.

    Lowercases, strips everything except ASCII letters, digits and whitespace,
    collapses whitespace runs and trims.

    Example:
        >>> normalize_description("Dwarf's  mechanical arm!")
        'dwarfs mechanical arm'
    """
    text = _NON_ALNUM_SPACE.sub("", description.lower())
    return _WHITESPACE.sub(" ", text).strip()


def generate_cache_key(asset_type: AssetType, description: str, size: AssetSize) -> str:
    """Derive the deterministic cache key for a request.

    Hashes ``v1:{type}:{normalized description}:{W}x{H}`` with SHA-256 and keeps
    the first 16 hex characters.
    """
    normalized = normalize_description(description)
    payload = f"{CACHE_KEY_VERSION}:{asset_type.value}:{normalized}:{size.width}x{size.height}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:CACHE_KEY_LENGTH]


class CacheCounters(BaseModel):
    """Cumulative hit/miss counters, persisted with the index."""

    hit_count: int = 0
    miss_count: int = 0


class CacheIndex(BaseModel):
    """On-disk index document."""

    version: int = 1
    entries: dict[str, CacheEntry] = Field(default_factory=dict)
    stats: CacheCounters = Field(default_factory=CacheCounters)


class AssetCache:
    """Filesystem-backed asset cache with a JSON index.

    The cache lazily initializes on first use. All mutation happens on the
    event loop thread; file I/O goes through aiofiles.

    Args:
        root: Cache root directory.
        ttl_seconds: Age after which an entry is stale.
        url_prefix: Public URL prefix that maps onto ``root``.
        clock: Time source returning Unix epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        root: Path | str,
        ttl_seconds: float,
        *,
        url_prefix: str = "/generated",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root)
        self.ttl_seconds = ttl_seconds
        self.url_prefix = url_prefix.rstrip("/")
        self._clock = clock
        self._index_path = self.root / INDEX_FILENAME
        self._index = CacheIndex()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create directories and load the index.

        Safe to call multiple times. A corrupt index is logged and replaced.
        """
        async with self._init_lock:
            if self._initialized:
                return
            for asset_type in AssetType:
                await aiofiles.os.makedirs(self.root / asset_type.subdir, exist_ok=True)
            loaded = await self._read_index()
            if loaded is None:
                await self._save_index()
            else:
                self._index = loaded
            self._initialized = True
            logger.debug(
                "Asset cache ready at %s (%d entries)", self.root, len(self._index.entries)
            )

    async def _read_index(self) -> CacheIndex | None:
        if not await aiofiles.os.path.exists(self._index_path):
            return None
        try:
            async with aiofiles.open(self._index_path, encoding="utf-8") as f:
                content: str = await f.read()
            return CacheIndex.model_validate_json(content)
        except (OSError, ValidationError, ValueError):
            logger.warning(
                "Failed to load cache index from %s, starting fresh",
                self._index_path,
                exc_info=True,
            )
            return None

    async def _write_index(self, payload: str) -> None:
        tmp_path = self._index_path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
            await f.write(payload)
        await aiofiles.os.replace(tmp_path, self._index_path)

    async def _save_index(self) -> None:
        """Persist the index atomically.

        Raises:
            CacheIOError: If the index cannot be written.
        """
        payload = self._index.model_dump_json(indent=2)
        try:
            await self._write_index(payload)
        except OSError as e:
            raise CacheIOError(f"Failed to write cache index {self._index_path}: {e}") from e

    async def _save_index_quietly(self) -> None:
        """Persist the index, logging instead of raising (read-path bookkeeping)."""
        try:
            await self._save_index()
        except CacheIOError as e:
            logger.warning("%s", e)

    # ------------------------------------------------------------------
    # Keys and paths
    # ------------------------------------------------------------------

    def generate_cache_key(self, asset_type: AssetType, description: str, size: AssetSize) -> str:
        """See module-level generate_cache_key."""
        return generate_cache_key(asset_type, description, size)

    def path_for(self, cache_key: str, asset_type: AssetType) -> Path:
        """Backing file path for a key."""
        return self.root / asset_type.subdir / f"{cache_key}.png"

    def url_for(self, cache_key: str, asset_type: AssetType) -> str:
        """Public URL for a key."""
        return f"{self.url_prefix}/{asset_type.subdir}/{cache_key}.png"

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def has(self, cache_key: str) -> bool:
        """Whether a live entry exists for the key.

        Expired entries and entries whose file has vanished are purged.
        """
        await self.initialize()

        entry = self._index.entries.get(cache_key)
        if entry is None:
            return False

        if not await aiofiles.os.path.exists(entry.file_path):
            logger.debug("Cache entry %s lost its file %s", cache_key, entry.file_path)
            del self._index.entries[cache_key]
            await self._save_index_quietly()
            return False

        if self._is_expired(entry, self._clock()):
            logger.debug("Cache entry %s expired", cache_key)
            await self._delete_entry(cache_key)
            return False

        return True

    async def get(self, cache_key: str) -> CacheEntry | None:
        """Fetch a live entry, updating hit/miss and access statistics."""
        await self.initialize()

        if not await self.has(cache_key):
            self._index.stats.miss_count += 1
            await self._save_index_quietly()
            return None

        entry = self._index.entries[cache_key]
        entry.last_accessed_at = self._clock()
        entry.access_count += 1
        self._index.stats.hit_count += 1
        await self._save_index_quietly()

        return entry.model_copy()

    async def set(
        self,
        cache_key: str,
        asset_type: AssetType,
        description: str,
        image_bytes: bytes,
        width: int,
        height: int,
        provider: ProviderName,
    ) -> CacheEntry:
        """Write the asset file and record a new index entry.

        Raises:
            CacheIOError: If the file or the index cannot be written.
        """
        await self.initialize()

        file_path = self.path_for(cache_key, asset_type)

        try:
            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, mode="wb") as f:
                await f.write(image_bytes)
        except OSError as e:
            raise CacheIOError(f"Failed to write cached asset {file_path}: {e}") from e

        now = self._clock()
        entry = CacheEntry(
            cache_key=cache_key,
            asset_type=asset_type,
            description=description,
            normalized_description=normalize_description(description),
            file_path=str(file_path),
            url=self.url_for(cache_key, asset_type),
            width=width,
            height=height,
            provider=provider,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
            size_bytes=len(image_bytes),
        )
        self._index.entries[cache_key] = entry
        await self._save_index()

        logger.debug("Cached %s %s (%d bytes)", asset_type.value, cache_key, len(image_bytes))
        return entry.model_copy()

    async def delete(self, cache_key: str) -> bool:
        """Remove the entry and its file. Returns False if the key is unknown."""
        await self.initialize()
        return await self._delete_entry(cache_key)

    async def _delete_entry(self, cache_key: str) -> bool:
        entry = self._index.entries.pop(cache_key, None)
        if entry is None:
            return False

        try:
            await aiofiles.os.remove(entry.file_path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove cached file %s", entry.file_path, exc_info=True)

        await self._save_index_quietly()
        return True

    async def cleanup(self) -> int:
        """Delete every entry older than the TTL. Returns the number removed."""
        await self.initialize()

        now = self._clock()
        expired = [
            key for key, entry in self._index.entries.items() if self._is_expired(entry, now)
        ]
        for key in expired:
            await self._delete_entry(key)

        if expired:
            logger.info("Cache cleanup removed %d expired entries", len(expired))
        return len(expired)

    async def search(
        self,
        query: str,
        asset_type: AssetType | None = None,
        limit: int = 10,
    ) -> list[CacheEntry]:
        """Rank entries by word overlap with the query.

        Score is ``|query ∩ entry| / max(|query|, |entry|)`` over normalized word
        sets; zero scores are dropped.
        """
        await self.initialize()

        query_words = set(normalize_description(query).split())
        if not query_words or limit <= 0:
            return []

        scored: list[tuple[float, CacheEntry]] = []
        for entry in self._index.entries.values():
            if asset_type is not None and entry.asset_type != asset_type:
                continue
            entry_words = set(entry.normalized_description.split())
            overlap = len(query_words & entry_words)
            if overlap == 0:
                continue
            score = overlap / max(len(query_words), len(entry_words))
            scored.append((score, entry))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [entry.model_copy() for _, entry in scored[:limit]]

    async def list_by_type(self, asset_type: AssetType) -> list[CacheEntry]:
        """All entries of a type, newest first."""
        await self.initialize()

        entries = [e for e in self._index.entries.values() if e.asset_type == asset_type]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy() for e in entries]

    async def get_stats(self) -> CacheStats:
        """Aggregate statistics over the index."""
        await self.initialize()

        entries_by_type = {asset_type: 0 for asset_type in AssetType}
        total_size = 0
        for entry in self._index.entries.values():
            entries_by_type[entry.asset_type] += 1
            total_size += entry.size_bytes

        hits = self._index.stats.hit_count
        misses = self._index.stats.miss_count
        lookups = hits + misses

        return CacheStats(
            total_entries=len(self._index.entries),
            total_size_bytes=total_size,
            hit_count=hits,
            miss_count=misses,
            hit_rate=hits / lookups if lookups else 0.0,
            entries_by_type=entries_by_type,
        )
