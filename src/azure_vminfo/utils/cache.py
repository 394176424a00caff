"""File-backed result cache for vminfo queries."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from azure_vminfo.models.query import CacheEntry, QueryDescriptor
from azure_vminfo.models.vm import VirtualMachine
from azure_vminfo.utils.atomic import atomic_write_text
from azure_vminfo.utils.errors import CacheCorrupt

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


class ResultCache:
    """Fingerprint -> complete result set, persisted in one JSON file.

    There is no TTL: whether a cached entry is trusted is the caller's call.
    Every entry is the output of one complete fetch; ``put`` takes the full
    record list and replaces the entry, it never merges.
    """

    def __init__(self, path: Path, enabled: bool = True) -> None:
        self._path = Path(path)
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def path(self) -> Path:
        return self._path

    @staticmethod
    def make_fingerprint(descriptor: QueryDescriptor) -> str:
        """Generate a deterministic cache key."""
        return descriptor.fingerprint()

    def get(self, fingerprint: str) -> CacheEntry | None:
        """Retrieve a cached result set, regardless of its age."""
        if not self._enabled:
            return None
        try:
            entries = self._load()
        except CacheCorrupt as e:
            logger.warning(f"{e}; treating as a cache miss")
            return None
        return entries.get(fingerprint)

    def put(self, fingerprint: str, records: list[VirtualMachine]) -> None:
        """Store a complete result set, replacing any previous entry."""
        if not self._enabled:
            return
        try:
            entries = self._load()
        except CacheCorrupt as e:
            logger.warning(f"{e}; starting a fresh cache file")
            entries = {}

        entries[fingerprint] = CacheEntry(fingerprint=fingerprint, records=list(records))
        try:
            self._dump(entries)
        except OSError as e:
            logger.warning(f"Could not write result cache {self._path}: {e}")
            return
        logger.debug(f"Cached {len(records)} records under {fingerprint[:12]}")

    def clear(self) -> int:
        """Clear the entire cache. Returns the number of entries removed."""
        try:
            count = len(self._load())
        except CacheCorrupt:
            count = 0
        self._path.unlink(missing_ok=True)
        return count

    @property
    def size(self) -> int:
        """Number of entries currently in the cache."""
        try:
            return len(self._load())
        except CacheCorrupt:
            return 0

    def _load(self) -> dict[str, CacheEntry]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorrupt(f"Result cache {self._path} is unreadable: {e}") from e

        try:
            data = json.loads(raw)
            if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
                raise ValueError("unexpected cache layout")
            return {
                key: CacheEntry.model_validate(value)
                for key, value in data.get("entries", {}).items()
            }
        except (ValueError, TypeError, AttributeError, ValidationError) as e:
            raise CacheCorrupt(f"Result cache {self._path} is corrupt: {e}") from e

    def _dump(self, entries: dict[str, CacheEntry]) -> None:
        payload = {
            "version": CACHE_VERSION,
            "entries": {key: entry.model_dump(mode="json") for key, entry in entries.items()},
        }
        atomic_write_text(self._path, json.dumps(payload, indent=2), mode=0o600)
