"""On-disk TTL cache for GitHub API responses.

Makes repeated synchronization passes cheap: each call result is stored as
one JSON file named after a hash of the call signature.

- Entries expire after a fixed TTL and are deleted when read past expiry
- Read failures (missing, half-written or corrupt files) are cache misses
- Write failures propagate to the caller
- No locking: concurrent writers to the same key are last-writer-wins
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import AwareDatetime, BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from pydantic import TypeAdapter

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "reviewsync" / "github-api"


def _now() -> datetime:
    return datetime.now(UTC)


class CacheEntry(BaseModel):
    """A cached payload and its validity window."""

    data: Any = Field(default=None, description="Cached payload (JSON-compatible)")
    cached_at: AwareDatetime = Field(description="When the entry was written")
    expires_at: AwareDatetime = Field(description="When the entry stops being served")

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) > self.expires_at


def _discard(path: Path) -> None:
    """Best-effort removal of a stale entry; failures leave it for the next prune."""
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def make_key(operation: str, owner: str, repo: str, *params: Any) -> str:
    """Derive the storage key for a call signature.

    Parameters are joined in call order, so ``(1, 2)`` and ``(2, 1)`` hash
    differently.
    """
    raw = f"{operation}-{owner}-{repo}"
    for param in params:
        raw += f"-{param}"
    return hashlib.md5(raw.encode(), usedforsecurity=False).hexdigest()


class ResponseCache:
    """Filesystem-backed response cache rooted at *directory*."""

    def __init__(self, directory: str | Path | None = None, ttl: timedelta = DEFAULT_TTL) -> None:
        self.directory = Path(directory).expanduser() if directory else DEFAULT_CACHE_DIR
        self.ttl = ttl

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read_entry(self, path: Path) -> CacheEntry | None:
        try:
            raw = path.read_text(encoding="utf-8")
            return CacheEntry.model_validate_json(raw)
        except (OSError, ValidationError):
            return None

    def get(
        self,
        operation: str,
        owner: str,
        repo: str,
        *params: Any,
        adapter: TypeAdapter[Any] | None = None,
    ) -> tuple[Any, bool]:
        """Return ``(value, True)`` on a hit, ``(None, False)`` otherwise.

        If *adapter* is given the payload is validated through it and a
        validation failure counts as a miss.
        """
        key = make_key(operation, owner, repo, *params)
        path = self._path(key)
        entry = self._read_entry(path)
        if entry is None:
            logger.debug("Cache miss: %s %s", operation, key)
            return None, False

        if entry.is_expired():
            logger.debug("Cache expired: %s %s", operation, key)
            _discard(path)
            return None, False

        if adapter is None:
            logger.debug("Cache hit: %s %s", operation, key)
            return entry.data, True

        try:
            value = adapter.validate_python(entry.data)
        except ValidationError:
            logger.debug("Cache entry undecodable: %s %s", operation, key)
            return None, False
        logger.debug("Cache hit: %s %s", operation, key)
        return value, True

    def set(self, operation: str, owner: str, repo: str, value: Any, *params: Any) -> None:
        """Store *value*, overwriting any entry for the same call signature.

        Raises:
            OSError: If the entry cannot be written.
        """
        key = make_key(operation, owner, repo, *params)
        now = _now()
        entry = CacheEntry(data=value, cached_at=now, expires_at=now + self.ttl)

        self.directory.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file then rename, so readers never see a partial entry
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entry.model_dump_json(indent=2))
            Path(tmp_name).replace(self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Cache put: %s %s", operation, key)

    def _entries(self) -> list[Path]:
        try:
            return [p for p in self.directory.iterdir() if p.suffix == ".json"]
        except FileNotFoundError:
            return []

    def clear(self) -> None:
        """Remove every cached entry."""
        entries = self._entries()
        for path in entries:
            path.unlink(missing_ok=True)
        if entries:
            logger.debug("Cache cleared (%d entries)", len(entries))

    def clear_expired(self) -> None:
        """Remove expired and undecodable entries, keeping live ones."""
        now = _now()
        removed = 0
        for path in self._entries():
            entry = self._read_entry(path)
            if entry is None or entry.is_expired(now):
                _discard(path)
                removed += 1
        if removed:
            logger.debug("Cache pruned (%d entries)", removed)

    def size(self) -> int:
        """Return the number of entries on disk (for testing)."""
        return len(self._entries())
