"""Tests for synthwiki.core.file_cache: the flat-file cache.

Tests cover:
- Text and binary round trips, including sidecar metadata.
- Age-based freshness checks driven by file modification times.
- Corrupt entries reported as misses.
- Statistics and removal of expired files.
"""

from __future__ import annotations

import json
import os
import time

from synthwiki.core.file_cache import FileCache
from synthwiki.core.models import CachedBinary


def _age(path, hours: float) -> None:
    """Move a file's modification time *hours* into the past."""
    past = time.time() - hours * 3600
    os.utime(path, (past, past))


class TestTextEntries:
    """Test text entries stored as <key>.json."""

    def test_set_then_get(self, cache: FileCache):
        assert cache.set("wiki_Roman_Empire", "<html>Rome</html>") is True
        assert cache.get("wiki_Roman_Empire") == "<html>Rome</html>"

    def test_structured_content(self, cache: FileCache):
        record = {"image_slug": "Eiffel_Tower", "ready": False, "prompt": None}
        cache.set("img_prompt_Eiffel_Tower", record)
        assert cache.get("img_prompt_Eiffel_Tower") == record

    def test_file_layout(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        data = json.loads((cache.cache_dir / "wiki_Paris.json").read_text(encoding="utf-8"))
        assert data["key"] == "wiki_Paris"
        assert data["content"] == "page"
        assert isinstance(data["timestamp"], float)
        assert "created" in data

    def test_overwrite(self, cache: FileCache):
        cache.set("wiki_Paris", "first")
        cache.set("wiki_Paris", "second")
        assert cache.get("wiki_Paris") == "second"

    def test_missing_entry(self, cache: FileCache):
        assert cache.get("wiki_Nowhere") is None

    def test_unsafe_key_characters_are_encoded(self, cache: FileCache):
        cache.set("wiki_a/b c", "x")
        assert (cache.cache_dir / "wiki_a%2Fb%20c.json").exists()
        assert cache.get("wiki_a/b c") == "x"

    def test_non_ascii_keys_do_not_collide(self, cache: FileCache):
        """Test that slugs of the same length in another script stay apart."""
        cache.set("wiki_Россия", "<html>Russia</html>")
        cache.set("img_prompt_Россия", {"ready": False})

        assert cache.get("wiki_Москва") is None
        assert not cache.is_cached("wiki_Москва")
        assert cache.get("wiki_Россия") == "<html>Russia</html>"

    def test_long_keys_are_shortened(self, cache: FileCache):
        first = "wiki_" + "Ж" * 80 + "_A"
        second = "wiki_" + "Ж" * 80 + "_B"
        cache.set(first, "a")
        cache.set(second, "b")

        assert cache.get(first) == "a"
        assert cache.get(second) == "b"
        assert all(len(path.name) < 255 for path in cache.cache_dir.iterdir())

    def test_corrupt_entry_is_a_miss(self, cache: FileCache):
        (cache.cache_dir / "wiki_Broken.json").write_text("{not json", encoding="utf-8")
        assert cache.get("wiki_Broken") is None

    def test_entry_without_content_is_a_miss(self, cache: FileCache):
        (cache.cache_dir / "wiki_Odd.json").write_text('{"key": "wiki_Odd"}', encoding="utf-8")
        assert cache.get("wiki_Odd") is None

    def test_no_temporary_files_left_behind(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        cache.set("image_Paris_webp", b"\x00\x01", binary=True)
        assert not [p for p in cache.cache_dir.iterdir() if p.name.startswith(".tmp-")]

    def test_unserialisable_content_returns_false(self, cache: FileCache):
        assert cache.set("wiki_Bad", object()) is False
        assert cache.get("wiki_Bad") is None


class TestFreshness:
    """Test is_cached."""

    def test_fresh_entry(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        assert cache.is_cached("wiki_Paris", 24) is True

    def test_missing_entry(self, cache: FileCache):
        assert cache.is_cached("wiki_Paris", 24) is False

    def test_zero_max_age_is_always_a_miss(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        assert cache.is_cached("wiki_Paris", 0) is False

    def test_expired_entry(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        _age(cache.cache_dir / "wiki_Paris.json", 25)
        assert cache.is_cached("wiki_Paris", 24) is False
        # Expired entries stay readable until replaced.
        assert cache.get("wiki_Paris") == "page"

    def test_binary_store_is_separate(self, cache: FileCache):
        cache.set("image_Paris_webp", b"bytes", binary=True)
        assert cache.is_cached("image_Paris_webp", 168, binary=True) is True
        assert cache.is_cached("image_Paris_webp", 168) is False


class TestBinaryEntries:
    """Test binary entries stored as <key>.bin plus <key>.meta.json."""

    def test_round_trip_with_metadata(self, cache: FileCache):
        cache.set("image_Paris_webp", b"\x89data", {"prompt": "Paris at night", "size": 5}, binary=True)
        entry = cache.get("image_Paris_webp", binary=True)
        assert isinstance(entry, CachedBinary)
        assert entry.data == b"\x89data"
        assert entry.metadata == {"prompt": "Paris at night", "size": "5"}

    def test_missing_sidecar_gives_empty_metadata(self, cache: FileCache):
        cache.set("image_Paris_webp", b"data", {"prompt": "p"}, binary=True)
        (cache.cache_dir / "image_Paris_webp.meta.json").unlink()
        entry = cache.get("image_Paris_webp", binary=True)
        assert entry.data == b"data"
        assert entry.metadata == {}

    def test_corrupt_sidecar_gives_empty_metadata(self, cache: FileCache):
        cache.set("image_Paris_webp", b"data", {"prompt": "p"}, binary=True)
        (cache.cache_dir / "image_Paris_webp.meta.json").write_text("[", encoding="utf-8")
        assert cache.get("image_Paris_webp", binary=True).metadata == {}

    def test_missing_binary(self, cache: FileCache):
        assert cache.get("image_Nothing_webp", binary=True) is None


class TestMaintenance:
    """Test stats and clear_expired."""

    def test_stats(self, cache: FileCache):
        cache.set("wiki_Paris", "page")
        cache.set("wiki_Rome", "page")
        cache.set("image_Paris_webp", b"x" * 2048, {"prompt": "p"}, binary=True)

        stats = cache.stats()
        assert stats.text_files == 2
        assert stats.binary_files == 1
        assert stats.file_count == 3
        assert stats.total_size_bytes > 2048
        assert stats.total_size_mb == f"{stats.total_size_bytes / (1024 * 1024):.2f}"

    def test_stats_of_empty_cache(self, cache: FileCache):
        stats = cache.stats()
        assert stats.file_count == 0
        assert stats.total_size_mb == "0.00"

    def test_clear_expired(self, cache: FileCache):
        cache.set("wiki_Old", "page")
        cache.set("wiki_New", "page")
        cache.set("image_Old_webp", b"data", {"prompt": "p"}, binary=True)
        _age(cache.cache_dir / "wiki_Old.json", 30)
        _age(cache.cache_dir / "image_Old_webp.bin", 30)
        _age(cache.cache_dir / "image_Old_webp.meta.json", 30)

        removed = cache.clear_expired(24)

        assert removed == 3
        assert cache.get("wiki_Old") is None
        assert cache.get("image_Old_webp", binary=True) is None
        assert cache.get("wiki_New") == "page"

    def test_clear_expired_keeps_listed_files(self, cache: FileCache):
        registry_file = cache.cache_dir / "validPages.json"
        registry_file.write_text('["Paris"]', encoding="utf-8")
        cache.set("wiki_Old", "page")
        _age(registry_file, 30)
        _age(cache.cache_dir / "wiki_Old.json", 30)

        removed = cache.clear_expired(24, keep=[registry_file])

        assert removed == 1
        assert registry_file.exists()

    def test_creates_directory(self, temp_dir):
        target = temp_dir / "nested" / "cache"
        FileCache(target)
        assert target.is_dir()
