"""Alert deduplication with a per-fingerprint cooldown window."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from src.monitor.types import Alert, Severity, fingerprint

# Monotonic clock in milliseconds.
Clock = Callable[[], float]

DEFAULT_COOLDOWN_MS = 300_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class DedupEntry:
    """Send history for a single fingerprint."""

    last_sent_at: float
    occurrences: int = 1
    suppressed_since_last_send: int = 0


class AlertDeduplicator:
    """Suppresses repeated alerts (same severity + title) within a cooldown.

    The first occurrence of a fingerprint is always sent. Entries are never
    evicted, so memory grows with the number of distinct titles seen; callers
    with unbounded title cardinality should reset keys themselves.
    """

    def __init__(
        self,
        cooldown_ms: float = DEFAULT_COOLDOWN_MS,
        clock: Clock | None = None,
    ) -> None:
        if cooldown_ms <= 0:
            raise ValueError(f"cooldown_ms must be positive, got {cooldown_ms}")
        self._cooldown_ms = cooldown_ms
        self._clock = clock or _monotonic_ms
        self._entries: dict[str, DedupEntry] = {}

    @property
    def cooldown_ms(self) -> float:
        return self._cooldown_ms

    def should_send(self, alert: Alert) -> bool:
        """Return True if the alert is outside its fingerprint's cooldown."""
        key = alert.fingerprint
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None:
            self._entries[key] = DedupEntry(last_sent_at=now)
            return True

        if now - entry.last_sent_at >= self._cooldown_ms:
            entry.last_sent_at = now
            entry.occurrences += 1
            entry.suppressed_since_last_send = 0
            return True

        # Suppressed: lastSentAt stays put so the window is not extended.
        entry.occurrences += 1
        entry.suppressed_since_last_send += 1
        return False

    @property
    def suppressed_count(self) -> int:
        """Sum over fingerprints of ``occurrences - 1``."""
        return sum(max(0, e.occurrences - 1) for e in self._entries.values())

    def entry(self, severity: Severity | str, title: str) -> DedupEntry | None:
        """Return a copy of the entry for one fingerprint, if any."""
        found = self._entries.get(fingerprint(severity, title))
        if found is None:
            return None
        return DedupEntry(
            last_sent_at=found.last_sent_at,
            occurrences=found.occurrences,
            suppressed_since_last_send=found.suppressed_since_last_send,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def reset(self) -> None:
        """Clear all dedup state."""
        self._entries.clear()

    def reset_key(self, severity: Severity | str, title: str) -> None:
        """Clear the state for one fingerprint."""
        self._entries.pop(fingerprint(severity, title), None)
