"""Flat-file cache with age-based expiry.

Every cache key maps to one file in the cache directory, named after the
percent-encoded key:

- text entries are stored as ``<key>.json`` holding
  ``{"key", "content", "timestamp", "created"}``; ``content`` may be any
  JSON-serialisable value (rendered HTML, prompt records, ...)
- binary entries are stored as raw bytes in ``<key>.bin`` with a sidecar
  ``<key>.meta.json`` holding ``{"key", "metadata", "timestamp", "created"}``

The cache is best-effort.  I/O errors and corrupt files are logged and
reported as misses; nothing here raises to the caller.  Expiry is only
checked on read (:meth:`FileCache.is_cached`); expired files stay on disk
until overwritten or removed by :meth:`FileCache.clear_expired`.

Writes go to a temporary file in the cache directory followed by
``os.replace`` so a reader never observes a half-written entry.  There is
no locking between processes; the last writer wins.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from synthwiki.core.models import CachedBinary, CacheStats

logger = logging.getLogger(__name__)

# File systems cap names at 255 bytes; longer encoded keys are shortened.
MAX_FILE_STEM = 200

TEXT_SUFFIX = ".json"
BINARY_SUFFIX = ".bin"
META_SUFFIX = ".meta.json"


class FileCache:
    """Key/value cache backed by one file per key.

    Attributes:
        cache_dir (Path): Directory that holds the cache files.  Created on
            first use.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    # -- Paths ---------------------------------------------------------------

    def _safe_key(self, key: str) -> str:
        # Percent-encoding is injective, so distinct keys never share a file.
        stem = quote(key, safe="")
        if len(stem) > MAX_FILE_STEM:
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
            stem = f"{stem[: MAX_FILE_STEM - 41]}~{digest}"
        return stem

    def _text_path(self, key: str) -> Path:
        return self.cache_dir / f"{self._safe_key(key)}{TEXT_SUFFIX}"

    def _binary_path(self, key: str) -> Path:
        return self.cache_dir / f"{self._safe_key(key)}{BINARY_SUFFIX}"

    def _meta_path(self, key: str) -> Path:
        return self.cache_dir / f"{self._safe_key(key)}{META_SUFFIX}"

    # -- Public interface ----------------------------------------------------

    def is_cached(self, key: str, max_age_hours: float = 24, binary: bool = False) -> bool:
        """Return whether *key* exists and is younger than *max_age_hours*.

        Args:
            key: Cache key.
            max_age_hours: Maximum age of the entry, measured from the file
                modification time.  ``0`` always reports a miss.
            binary: Check the binary store instead of the text store.

        Returns:
            ``True`` if a fresh entry exists.
        """
        path = self._binary_path(key) if binary else self._text_path(key)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not stat cache file %s: %s", path, exc)
            return False

        age_hours = (time.time() - mtime) / 3600
        return age_hours < max_age_hours

    def get(self, key: str, binary: bool = False) -> Any | CachedBinary | None:
        """Read an entry regardless of its age.

        Args:
            key: Cache key.
            binary: Read from the binary store.

        Returns:
            The stored text content, a :class:`CachedBinary` for binary
            entries, or ``None`` when the entry is missing or unreadable.
        """
        if binary:
            return self._get_binary(key)

        path = self._text_path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as handle:
                cached = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("Corrupt cache entry %s: %s", key, exc)
            return None
        if not isinstance(cached, dict) or "content" not in cached:
            logger.warning("Corrupt cache entry %s: missing content", key)
            return None
        return cached["content"]

    def set(
        self,
        key: str,
        content: Any,
        metadata: dict[str, str] | None = None,
        binary: bool = False,
    ) -> bool:
        """Write an entry, replacing any previous one.

        Args:
            key: Cache key.
            content: JSON-serialisable value, or ``bytes`` when *binary*.
            metadata: Sidecar metadata for binary entries (ignored for text).
            binary: Store *content* as raw bytes with a metadata sidecar.

        Returns:
            ``True`` if the entry was written, ``False`` if the write failed
            (the failure is logged).
        """
        now = time.time()
        created = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()

        try:
            if binary:
                sidecar = {
                    "key": key,
                    "metadata": {k: str(v) for k, v in (metadata or {}).items()},
                    "timestamp": now,
                    "created": created,
                }
                self._atomic_write(self._binary_path(key), bytes(content))
                self._atomic_write(
                    self._meta_path(key),
                    json.dumps(sidecar, indent=2).encode("utf-8"),
                )
            else:
                record = {"key": key, "content": content, "timestamp": now, "created": created}
                self._atomic_write(
                    self._text_path(key),
                    json.dumps(record, indent=2, ensure_ascii=False).encode("utf-8"),
                )
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error writing cache entry %s: %s", key, exc)
            return False

        logger.info("Cached %s entry for key: %s", "binary" if binary else "text", key)
        return True

    def clear_expired(self, max_age_hours: float = 24, keep: Iterable[Path] = ()) -> int:
        """Delete cache files older than *max_age_hours*.

        The pipeline never calls this; it is a maintenance operation.

        Args:
            max_age_hours: Age limit, measured from the file modification time.
            keep: Files in the cache directory that are never removed, such
                as the valid-page registry.

        Returns:
            Number of files removed.
        """
        cutoff = time.time() - max_age_hours * 3600
        kept = {Path(path).resolve() for path in keep}
        removed = 0
        try:
            paths = list(self.cache_dir.iterdir())
        except OSError as exc:
            logger.error("Error listing cache directory %s: %s", self.cache_dir, exc)
            return 0

        for path in paths:
            if not path.is_file() or not path.name.endswith((TEXT_SUFFIX, BINARY_SUFFIX)):
                continue
            if path.resolve() in kept:
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info("Removed expired cache file: %s", path.name)
            except OSError as exc:
                logger.error("Error removing cache file %s: %s", path, exc)
        return removed

    def stats(self) -> CacheStats:
        """Scan the cache directory and summarise its contents."""
        text_files = 0
        binary_files = 0
        total_size = 0
        try:
            for path in self.cache_dir.iterdir():
                if not path.is_file():
                    continue
                name = path.name
                if name.endswith(META_SUFFIX):
                    pass
                elif name.endswith(TEXT_SUFFIX):
                    text_files += 1
                elif name.endswith(BINARY_SUFFIX):
                    binary_files += 1
                else:
                    continue
                total_size += path.stat().st_size
        except OSError as exc:
            logger.error("Error getting cache stats: %s", exc)
            return CacheStats()

        return CacheStats(
            file_count=text_files + binary_files,
            text_files=text_files,
            binary_files=binary_files,
            total_size_bytes=total_size,
            total_size_mb=f"{total_size / (1024 * 1024):.2f}",
        )

    # -- Internals -----------------------------------------------------------

    def _get_binary(self, key: str) -> CachedBinary | None:
        path = self._binary_path(key)
        if not path.exists():
            return None
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Could not read binary cache entry %s: %s", key, exc)
            return None

        metadata: dict[str, str] = {}
        meta_path = self._meta_path(key)
        if meta_path.exists():
            try:
                with open(meta_path, encoding="utf-8") as handle:
                    sidecar = json.load(handle)
                metadata = {k: str(v) for k, v in sidecar.get("metadata", {}).items()}
            except (OSError, ValueError, AttributeError) as exc:
                logger.warning("Corrupt metadata sidecar for %s: %s", key, exc)

        return CachedBinary(data=data, metadata=metadata)

    def _atomic_write(self, path: Path, payload: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
