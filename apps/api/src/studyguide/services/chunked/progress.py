from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
import logging
from threading import Lock
from time import monotonic
from typing import Protocol

from studyguide.services.chunked.types import ProgressRecord

logger = logging.getLogger(__name__)

ProgressKey = tuple[str, str]


class ProgressStore(Protocol):
    def get(self, key: ProgressKey) -> ProgressRecord | None: ...

    def set(self, key: ProgressKey, record: ProgressRecord, *, expires_at: float | None) -> None: ...

    def delete(self, key: ProgressKey) -> None: ...

    def sweep(self, now: float) -> int: ...


class InMemoryProgressStore:
    """Process-local progress map. Lost on restart."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[ProgressKey, tuple[ProgressRecord, float | None]] = {}

    def get(self, key: ProgressKey) -> ProgressRecord | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return replace(entry[0], errors=list(entry[0].errors))

    def set(self, key: ProgressKey, record: ProgressRecord, *, expires_at: float | None) -> None:
        with self._lock:
            self._entries[key] = (record, expires_at)

    def delete(self, key: ProgressKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [
                key
                for key, (_, expires_at) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class ProgressReporter:
    def __init__(
        self,
        store: ProgressStore,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def update(self, user_id: str, document_id: str, record: ProgressRecord) -> None:
        now = self._clock()
        stamped = replace(
            record,
            errors=list(record.errors),
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        # terminal records are kept just long enough for the client to see them
        expires_at = now + self._ttl_seconds if stamped.is_terminal else None
        try:
            self._store.set((user_id, document_id), stamped, expires_at=expires_at)
            self._store.sweep(now)
        except Exception:
            logger.warning(
                "progress update failed user_id=%s document_id=%s status=%s",
                user_id,
                document_id,
                record.status,
                exc_info=True,
            )

    def get(self, user_id: str, document_id: str) -> ProgressRecord:
        try:
            self._store.sweep(self._clock())
            record = self._store.get((user_id, document_id))
        except Exception:
            logger.warning(
                "progress read failed user_id=%s document_id=%s",
                user_id,
                document_id,
                exc_info=True,
            )
            record = None
        return record if record is not None else ProgressRecord()

    def clear(self, user_id: str, document_id: str) -> None:
        try:
            self._store.delete((user_id, document_id))
        except Exception:
            logger.warning(
                "progress clear failed user_id=%s document_id=%s",
                user_id,
                document_id,
                exc_info=True,
            )

    def callback_for(self, user_id: str, document_id: str) -> Callable[[ProgressRecord], None]:
        def _on_progress(record: ProgressRecord) -> None:
            self.update(user_id, document_id, record)

        return _on_progress
