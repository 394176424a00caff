"""File-backed persistence for the most recently obtained token."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from azure_vminfo.models.auth import TokenRecord
from azure_vminfo.utils.atomic import atomic_write_text
from azure_vminfo.utils.errors import CacheCorrupt

logger = logging.getLogger(__name__)


class TokenStore:
    """Single-record token store.

    Stores a :class:`TokenRecord` as JSON at ``path``. Writes are atomic and
    owner-readable only. An absent or unreadable file reads as "no token".
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> TokenRecord | None:
        """Return the stored record, or None when there is nothing usable on disk."""
        try:
            return self._read()
        except CacheCorrupt as e:
            logger.warning(f"{e}. Ignoring it; the next login will overwrite it.")
            return None

    def _read(self) -> TokenRecord | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorrupt(f"Token store {self._path} is unreadable: {e}") from e

        if not raw.strip():
            return None
        try:
            return TokenRecord.model_validate_json(raw)
        except ValidationError as e:
            raise CacheCorrupt(f"Token store {self._path} is corrupt") from e

    def save(self, record: TokenRecord) -> None:
        """Replace the stored record."""
        atomic_write_text(self._path, record.model_dump_json(indent=2), mode=0o600)
        logger.debug(f"Saved {record.kind} token to {self._path}")

    def clear(self) -> bool:
        """Delete the store file. Returns True if a file was removed."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed token store {self._path}")
        return True
