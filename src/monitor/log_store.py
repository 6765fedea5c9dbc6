"""Log store — bounded in-memory buffer of recent log lines.

Oldest entries are dropped once ``max_entries`` is reached. ``attach()`` adds
a ``logging.Handler`` to a stdlib logger (root by default), which also sees
structlog events routed through ``ProcessorFormatter``; the callable it
returns removes the handler again.
"""

from __future__ import annotations

import datetime
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from src.core.exceptions import ConfigurationError

# structlog keys that are already represented by the entry itself.
_ENVELOPE_KEYS = frozenset({"event", "level", "timestamp", "logger"})


@dataclass(frozen=True)
class LogLine:
    level: str
    message: str
    timestamp: datetime.datetime
    meta: dict[str, Any] = field(default_factory=dict)


class LogStore:
    """Ring buffer of ``LogLine`` with filtered queries."""

    def __init__(self, max_entries: int = 10_000) -> None:
        if max_entries < 1:
            raise ConfigurationError("max_entries must be >= 1")
        self._buffer: deque[LogLine] = deque(maxlen=max_entries)

    @property
    def size(self) -> int:
        return len(self._buffer)

    @property
    def max_entries(self) -> int:
        return self._buffer.maxlen or 0

    def capture(
        self,
        level: str,
        message: str,
        meta: dict[str, Any] | None = None,
        timestamp: datetime.datetime | None = None,
    ) -> None:
        self._buffer.append(LogLine(
            level=level.lower(),
            message=message,
            timestamp=timestamp or datetime.datetime.now(datetime.UTC),
            meta=dict(meta or {}),
        ))

    def query(
        self,
        *,
        levels: Iterable[str] | None = None,
        since: datetime.datetime | None = None,
        until: datetime.datetime | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[LogLine]:
        """Matching entries, oldest first, keeping the newest *limit*.

        Levels and *search* compare case-insensitively; *since* and *until*
        are inclusive.
        """
        wanted = {lvl.lower() for lvl in levels} if levels else None
        needle = search.lower() if search else None

        results = [
            line
            for line in self._buffer
            if (wanted is None or line.level in wanted)
            and (since is None or line.timestamp >= since)
            and (until is None or line.timestamp <= until)
            and (needle is None or needle in line.message.lower())
        ]
        return results[-limit:] if limit > 0 else results

    def recent_errors(self, limit: int = 50) -> list[LogLine]:
        return self.query(levels=("error", "critical"), limit=limit)

    def clear(self) -> None:
        self._buffer.clear()

    def snapshot(self) -> list[LogLine]:
        return list(self._buffer)

    def attach(
        self,
        logger: logging.Logger | None = None,
        level: int = logging.NOTSET,
    ) -> Callable[[], None]:
        """Capture records from *logger*; returns a callable that detaches."""
        target = logger or logging.getLogger()
        handler = _StoreHandler(self, level)
        target.addHandler(handler)

        def _detach() -> None:
            target.removeHandler(handler)

        return _detach


class _StoreHandler(logging.Handler):
    def __init__(self, store: LogStore, level: int) -> None:
        super().__init__(level)
        self._store = store

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message, meta = _unpack(record)
            self._store.capture(
                record.levelname,
                message,
                meta,
                timestamp=datetime.datetime.fromtimestamp(record.created, datetime.UTC),
            )
        except Exception:
            self.handleError(record)


def _unpack(record: logging.LogRecord) -> tuple[str, dict[str, Any]]:
    # structlog's wrap_for_formatter leaves the event dict in ``msg``.
    if isinstance(record.msg, dict):
        event = record.msg
        meta = {
            k: v
            for k, v in event.items()
            if k not in _ENVELOPE_KEYS and not k.startswith("_")
        }
        return str(event.get("event", "")), meta
    return record.getMessage(), {}
