"""API key pool with per-key error tracking and rotation.

The pool is an explicit service object handed to the pipeline; nothing in the
package keeps a module-level pool.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from .models import KeyRotationResult
from .session import API_KEY_STORAGE_KEY, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class KeyStatus:
    key: str
    error: str | None = None
    errored_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return self.error is None


def mask_key(key: str) -> str:
    """Display form of a key, e.g. ``AIza...9xQ2``."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}...{key[-4:]}"


class ApiKeyPool:
    """Ordered pool of candidate keys; the active key is persisted when a store is given."""

    def __init__(self, keys: list[str], store: KeyValueStore | None = None) -> None:
        self._lock = threading.Lock()
        self._store = store
        self._keys: list[KeyStatus] = []
        for key in keys:
            key = key.strip()
            if key and not any(k.key == key for k in self._keys):
                self._keys.append(KeyStatus(key))
        self._active = 0

        saved = None
        if store is not None:
            try:
                saved = store.get(API_KEY_STORAGE_KEY)
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable saved API key: %s", exc)
        if isinstance(saved, str) and saved:
            self._select(saved)

    # ------------------------------------------------------------------
    # Helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _index_of(self, key: str) -> int | None:
        for i, status in enumerate(self._keys):
            if status.key == key:
                return i
        return None

    def _select(self, key: str) -> None:
        idx = self._index_of(key)
        if idx is None:
            self._keys.insert(0, KeyStatus(key))
            idx = 0
        self._active = idx

    def _persist(self) -> None:
        if self._store is None or not self._keys:
            return
        try:
            self._store.set(API_KEY_STORAGE_KEY, self._keys[self._active].key)
        except OSError as exc:
            logger.warning("Could not persist active API key: %s", exc)

    def _rotate(self, reason: str) -> KeyRotationResult:
        n = len(self._keys)
        for offset in range(1, n):
            idx = (self._active + offset) % n
            if self._keys[idx].healthy:
                self._active = idx
                self._persist()
                new_key = self._keys[idx].key
                logger.info("Rotated API key (%s) to %s", reason, mask_key(new_key))
                return KeyRotationResult(
                    success=True,
                    new_key=new_key,
                    message=f"Đã chuyển sang API key {idx + 1}/{n}",
                )
        logger.warning("No healthy API key left to rotate to (%s)", reason)
        return KeyRotationResult(success=False, message="Tất cả API key đều đã gặp lỗi")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._keys)

    def get_active_key(self) -> str | None:
        with self._lock:
            if not self._keys:
                return None
            current = self._keys[self._active]
            if current.healthy:
                return current.key
            for status in self._keys:
                if status.healthy:
                    return status.key
            return None

    def mark_key_error(self, key: str, reason: str) -> KeyRotationResult:
        """Record a failure for *key* and move to the next healthy key, if any."""
        with self._lock:
            idx = self._index_of(key)
            if idx is None:
                return KeyRotationResult(success=False, message="API key không có trong danh sách")
            self._keys[idx].error = str(reason)
            self._keys[idx].errored_at = datetime.now(timezone.utc)
            logger.warning("API key %s marked as %s", mask_key(key), reason)
            self._active = idx
            return self._rotate(str(reason))

    def rotate_to_next_key(self, reason: str) -> KeyRotationResult:
        with self._lock:
            return self._rotate(reason)

    def reset_all_keys(self) -> None:
        with self._lock:
            for status in self._keys:
                status.error = None
                status.errored_at = None
            self._active = 0
            self._persist()
        logger.info("Reset error state of %d API keys", len(self._keys))

    def use_key(self, key: str) -> None:
        """Make a user-supplied key active, adding it to the pool if new."""
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty")
        with self._lock:
            self._select(key)
            self._keys[self._active].error = None
            self._keys[self._active].errored_at = None
            self._persist()

    def statuses(self) -> list[KeyStatus]:
        with self._lock:
            return [KeyStatus(s.key, s.error, s.errored_at) for s in self._keys]
