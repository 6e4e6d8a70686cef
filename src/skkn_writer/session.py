"""Session persistence: key-value stores, snapshots and debounced auto-save."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from pydantic import ValidationError

from .errors import StorageQuotaError
from .models import (
    ChatTurn,
    GenerationState,
    GenerationStep,
    SessionData,
    SnapshotState,
    SolutionsState,
    UserInfo,
)

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "skkn_session_data"
REF_DOCS_STORAGE_KEY = "skkn_ref_docs"
API_KEY_STORAGE_KEY = "gemini_api_key"
MODEL_STORAGE_KEY = "selected_model"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    """String key-value storage."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


class FileKeyValueStore:
    """Durable store: one UTF-8 file per key under *directory*."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / key

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self._path(key).with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(key))

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class VolatileStore:
    """In-memory store for the lifetime of the process.

    With ``max_chars`` set, a ``set`` that would push the total stored size
    past the limit raises ``StorageQuotaError`` and leaves the store unchanged.
    """

    def __init__(self, max_chars: int | None = None) -> None:
        self.max_chars = max_chars
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.max_chars is not None:
            others = sum(len(v) for k, v in self._data.items() if k != key)
            if others + len(value) > self.max_chars:
                raise StorageQuotaError(
                    f"{key}: {len(value):,} chars exceeds the {self.max_chars:,} char limit"
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


# ---------------------------------------------------------------------------
# Snapshot controller
# ---------------------------------------------------------------------------

class SessionController:
    """Builds, saves and loads ``SessionData`` snapshots."""

    def __init__(self, store: KeyValueStore, volatile: KeyValueStore) -> None:
        self.store = store
        self.volatile = volatile
        self.last_saved_at: str | None = None

    @staticmethod
    def build_snapshot(
        user_info: UserInfo,
        state: GenerationState,
        solutions: SolutionsState,
        *,
        appendix_document: str = "",
        outline_feedback: str = "",
        chat_history: list[ChatTurn] | None = None,
    ) -> SessionData:
        """Snapshot the session with reference text blanked out."""
        return SessionData(
            user_info=user_info.model_copy(update={"reference_documents": ""}),
            has_reference_documents=bool(user_info.reference_documents),
            state=SnapshotState(
                step=state.step,
                messages=list(state.messages),
                full_document=state.full_document,
                blocks=[b.model_copy() for b in state.blocks],
            ),
            solutions_state=solutions.model_copy(deep=True),
            appendix_document=appendix_document,
            outline_feedback=outline_feedback,
            chat_history=list(chat_history or []),
            saved_at=datetime.now().astimezone().isoformat(),
        )

    def save(self, snapshot: SessionData) -> bool:
        """Persist *snapshot*. Storage failures are logged and swallowed."""
        if snapshot.state.step <= GenerationStep.INPUT_FORM:
            return False
        try:
            self.store.set(SESSION_STORAGE_KEY, snapshot.model_dump_json())
        except (OSError, StorageQuotaError) as exc:
            logger.warning("Could not save session (data may be too large): %s", exc)
            return False
        self.last_saved_at = datetime.now().strftime("%H:%M:%S")
        logger.debug("Session saved at step %d", snapshot.state.step)
        return True

    def load_pending(self) -> SessionData | None:
        """Return a restorable snapshot, deleting it if it is corrupt."""
        try:
            raw = self.store.get(SESSION_STORAGE_KEY)
            if not raw:
                return None
            data = SessionData.model_validate_json(raw)
        except ValidationError as exc:
            return self._discard(exc.errors()[0]["msg"])
        except ValueError as exc:
            # undecodable bytes on disk
            return self._discard(exc)
        except OSError as exc:
            logger.warning("Could not read saved session: %s", exc)
            return None
        if data.state.step <= GenerationStep.INPUT_FORM:
            return None
        return data

    def _discard(self, reason: object) -> None:
        logger.warning("Discarding corrupt saved session: %s", reason)
        try:
            self.store.delete(SESSION_STORAGE_KEY)
        except OSError as exc:
            logger.warning("Could not delete saved session: %s", exc)
        return None

    def clear(self) -> None:
        self.store.delete(SESSION_STORAGE_KEY)
        self.last_saved_at = None
        logger.info("Saved session cleared")

    def remember_reference_documents(self, text: str) -> None:
        if not text:
            self.volatile.delete(REF_DOCS_STORAGE_KEY)
            return
        try:
            self.volatile.set(REF_DOCS_STORAGE_KEY, text)
        except (OSError, StorageQuotaError) as exc:
            logger.warning("Reference text too large to keep, skipping: %s", exc)

    def recall_reference_documents(self) -> str:
        return self.volatile.get(REF_DOCS_STORAGE_KEY) or ""

    def remember_model(self, model: str) -> None:
        try:
            self.store.set(MODEL_STORAGE_KEY, model)
        except OSError as exc:
            logger.warning("Could not persist model choice: %s", exc)

    def recall_model(self) -> str | None:
        try:
            return self.store.get(MODEL_STORAGE_KEY)
        except (OSError, ValueError):
            return None


# ---------------------------------------------------------------------------
# Debounced auto-save
# ---------------------------------------------------------------------------

class AutoSaver:
    """Runs *callback* once, *delay* seconds after the last ``schedule`` call."""

    def __init__(self, callback: Callable[[], object], delay: float = 2.0) -> None:
        self.callback = callback
        self.delay = delay
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.callback()

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> None:
        """Run a pending save now."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self.callback()
