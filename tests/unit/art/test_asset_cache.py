"""Tests for AssetCache and cache key derivation."""

from __future__ import annotations

import json
from pathlib import Path
import shutil

import pytest

from spriteforge.core.art.cache import (
    INDEX_FILENAME,
    AssetCache,
    generate_cache_key,
    normalize_description,
)
from spriteforge.core.art.errors import CacheIOError
from spriteforge.core.art.models import AssetSize, AssetType, ProviderName

DAY = 86_400
SIZE_64 = AssetSize(width=64, height=64)


@pytest.fixture
def cache(cache_dir: Path, clock) -> AssetCache:
    return AssetCache(cache_dir, ttl_seconds=30 * DAY, clock=clock)


async def _store(cache: AssetCache, description: str, asset_type: AssetType = AssetType.CHARACTER) -> str:
    size = SIZE_64 if asset_type in (AssetType.CHARACTER, AssetType.EFFECT) else AssetSize(width=128, height=128)
    key = generate_cache_key(asset_type, description, size)
    await cache.set(key, asset_type, description, b"png-bytes", size.width, size.height, ProviderName.GEMINI)
    return key


class TestCacheKey:
    def test_normalize_description(self) -> None:
        assert normalize_description("  Grizzled   DWARF, blacksmith! ") == "grizzled dwarf blacksmith"

    def test_key_is_16_hex_chars(self) -> None:
        key = generate_cache_key(AssetType.CHARACTER, "elf archer", SIZE_64)
        assert len(key) == 16
        assert all(c in "0123456789abcdef" for c in key)

    def test_key_is_deterministic(self) -> None:
        a = generate_cache_key(AssetType.CHARACTER, "elf archer", SIZE_64)
        b = generate_cache_key(AssetType.CHARACTER, "elf archer", SIZE_64)
        assert a == b

    def test_key_ignores_case_punctuation_and_spacing(self) -> None:
        a = generate_cache_key(AssetType.CHARACTER, "Grizzled dwarf blacksmith", SIZE_64)
        b = generate_cache_key(AssetType.CHARACTER, "  grizzled   DWARF blacksmith!!", SIZE_64)
        assert a == b

    def test_key_differs_by_type_description_and_size(self) -> None:
        base = generate_cache_key(AssetType.CHARACTER, "elf archer", SIZE_64)

        assert base != generate_cache_key(AssetType.EFFECT, "elf archer", SIZE_64)
        assert base != generate_cache_key(AssetType.CHARACTER, "elf mage", SIZE_64)
        assert base != generate_cache_key(
            AssetType.CHARACTER, "elf archer", AssetSize(width=128, height=128)
        )


class TestInitialize:
    async def test_creates_type_directories_and_index(self, cache: AssetCache, cache_dir: Path) -> None:
        await cache.initialize()

        for asset_type in AssetType:
            assert (cache_dir / asset_type.subdir).is_dir()
        assert (cache_dir / INDEX_FILENAME).exists()

    async def test_corrupt_index_starts_fresh(self, cache_dir: Path, clock) -> None:
        cache_dir.mkdir(parents=True)
        (cache_dir / INDEX_FILENAME).write_text("{not json", encoding="utf-8")

        cache = AssetCache(cache_dir, ttl_seconds=DAY, clock=clock)
        stats = await cache.get_stats()

        assert stats.total_entries == 0
        json.loads((cache_dir / INDEX_FILENAME).read_text(encoding="utf-8"))

    async def test_index_survives_restart(self, cache: AssetCache, cache_dir: Path, clock) -> None:
        key = await _store(cache, "elf archer")

        reopened = AssetCache(cache_dir, ttl_seconds=30 * DAY, clock=clock)
        entry = await reopened.get(key)

        assert entry is not None
        assert entry.description == "elf archer"


class TestGetAndSet:
    async def test_set_writes_file_and_entry(self, cache: AssetCache, cache_dir: Path) -> None:
        key = await _store(cache, "elf archer")

        path = cache_dir / "characters" / f"{key}.png"
        assert path.read_bytes() == b"png-bytes"

        entry = await cache.get(key)
        assert entry is not None
        assert entry.url == f"/generated/characters/{key}.png"
        assert entry.file_path == str(path)
        assert entry.normalized_description == "elf archer"
        assert entry.size_bytes == len(b"png-bytes")

    async def test_hit_updates_access_statistics(self, cache: AssetCache, clock) -> None:
        key = await _store(cache, "elf archer")
        clock.advance(60)

        entry = await cache.get(key)

        assert entry is not None
        assert entry.access_count == 2
        assert entry.last_accessed_at == clock.now

    async def test_hit_and_miss_counts(self, cache: AssetCache) -> None:
        key = await _store(cache, "elf archer")

        await cache.get(key)
        await cache.get(key)
        await cache.get("0000000000000000")

        stats = await cache.get_stats()
        assert stats.hit_count == 2
        assert stats.miss_count == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    async def test_returned_entry_is_a_copy(self, cache: AssetCache) -> None:
        key = await _store(cache, "elf archer")

        entry = await cache.get(key)
        assert entry is not None
        entry.description = "tampered"

        again = await cache.get(key)
        assert again is not None
        assert again.description == "elf archer"

    async def test_missing_file_is_a_miss_and_purged(self, cache: AssetCache, cache_dir: Path) -> None:
        key = await _store(cache, "elf archer")
        (cache_dir / "characters" / f"{key}.png").unlink()

        assert await cache.get(key) is None
        assert (await cache.get_stats()).total_entries == 0

    async def test_expired_entry_is_a_miss_and_deleted(
        self, cache: AssetCache, cache_dir: Path, clock
    ) -> None:
        key = await _store(cache, "elf archer")
        clock.advance(31 * DAY)

        assert not await cache.has(key)
        assert not (cache_dir / "characters" / f"{key}.png").exists()
        assert (await cache.get_stats()).total_entries == 0

    async def test_write_failure_raises_cache_io_error(self, cache: AssetCache, cache_dir: Path) -> None:
        await cache.initialize()
        shutil.rmtree(cache_dir / "characters")
        (cache_dir / "characters").write_text("not a directory", encoding="utf-8")

        with pytest.raises(CacheIOError):
            await _store(cache, "elf archer")

    async def test_delete(self, cache: AssetCache, cache_dir: Path) -> None:
        key = await _store(cache, "elf archer")

        assert await cache.delete(key)
        assert not await cache.delete(key)
        assert not (cache_dir / "characters" / f"{key}.png").exists()


class TestCleanup:
    async def test_removes_only_expired_entries(self, cache: AssetCache, clock) -> None:
        old_key = await _store(cache, "old goblin")
        clock.advance(20 * DAY)
        young_key = await _store(cache, "young goblin")
        clock.advance(11 * DAY)

        removed = await cache.cleanup()

        assert removed == 1
        assert not await cache.has(old_key)
        assert await cache.has(young_key)

    async def test_nothing_to_remove(self, cache: AssetCache) -> None:
        await _store(cache, "elf archer")
        assert await cache.cleanup() == 0


class TestSearchAndListing:
    async def test_search_ranks_by_word_overlap(self, cache: AssetCache) -> None:
        await _store(cache, "red dragon")
        await _store(cache, "ancient red dragon of the north")
        await _store(cache, "blue slime")

        results = await cache.search("red dragon")

        assert [r.description for r in results] == ["red dragon", "ancient red dragon of the north"]

    async def test_search_drops_entries_without_overlap(self, cache: AssetCache) -> None:
        await _store(cache, "elven ranger")
        await _store(cache, "dwarf miner")
        await _store(cache, "grizzled dwarf blacksmith")

        results = await cache.search("dwarf blacksmith")

        assert [r.description for r in results] == ["grizzled dwarf blacksmith", "dwarf miner"]

    async def test_search_filters_by_type_and_limit(self, cache: AssetCache) -> None:
        await _store(cache, "fire spirit", AssetType.MONSTER)
        await _store(cache, "fire burst", AssetType.EFFECT)
        await _store(cache, "fire mage", AssetType.CHARACTER)

        monsters = await cache.search("fire", AssetType.MONSTER)
        assert [r.description for r in monsters] == ["fire spirit"]

        assert len(await cache.search("fire", limit=2)) == 2

    async def test_search_with_empty_query(self, cache: AssetCache) -> None:
        await _store(cache, "elf archer")
        assert await cache.search("  !! ") == []

    async def test_list_by_type_newest_first(self, cache: AssetCache, clock) -> None:
        await _store(cache, "first elf")
        clock.advance(10)
        await _store(cache, "second elf")
        await _store(cache, "some slime", AssetType.MONSTER)

        entries = await cache.list_by_type(AssetType.CHARACTER)

        assert [e.description for e in entries] == ["second elf", "first elf"]

    async def test_stats_count_every_type(self, cache: AssetCache) -> None:
        await _store(cache, "elf archer")
        await _store(cache, "cave troll", AssetType.MONSTER)

        stats = await cache.get_stats()

        assert stats.total_entries == 2
        assert stats.total_size_bytes == 2 * len(b"png-bytes")
        assert stats.entries_by_type[AssetType.CHARACTER] == 1
        assert stats.entries_by_type[AssetType.MONSTER] == 1
        assert stats.entries_by_type[AssetType.SCENE] == 0
