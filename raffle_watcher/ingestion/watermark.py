"""Per-watcher dedup and progress state."""

from typing import Iterable

from ..models import NormalizedEvent
from .fields import now_ms


class Watermark:
    """
    Seen event keys plus the last processed timestamp.

    Keys are kept in insertion order and compacted to the most recent
    ``keep_keys`` once more than ``max_keys`` accumulate. After initialization,
    anything at or before ``last_processed_ms`` counts as already seen even if
    its key was compacted away.
    """

    def __init__(self, max_keys: int = 200, keep_keys: int = 100):
        self.max_keys = max_keys
        self.keep_keys = keep_keys
        self._seen: dict[str, None] = {}
        self.last_processed_ms = 0
        self.initialized = False

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def reset(self):
        """Forget everything (raffle change or stop)."""
        self._seen.clear()
        self.last_processed_ms = 0
        self.initialized = False

    def seed(self, events: Iterable[NormalizedEvent], fallback_ms: int | None = None):
        """Absorb the current tip without processing it, then mark initialized."""
        latest = 0
        for event in events:
            self._seen[event.event_key] = None
            latest = max(latest, event.timestamp_ms)
        if not latest:
            latest = fallback_ms if fallback_ms is not None else now_ms()
        self.last_processed_ms = max(self.last_processed_ms, latest)
        self.initialized = True
        self.compact()

    def is_behind(self, event: NormalizedEvent) -> bool:
        """True when the event predates the watermark of an initialized watcher."""
        return self.initialized and event.timestamp_ms <= self.last_processed_ms

    def should_skip(self, event: NormalizedEvent) -> bool:
        return event.event_key in self._seen or self.is_behind(event)

    def mark_seen(self, key: str):
        self._seen[key] = None

    def record(self, event: NormalizedEvent):
        """Record a processed event and advance the timestamp."""
        self._seen[event.event_key] = None
        self.last_processed_ms = max(self.last_processed_ms, event.timestamp_ms)

    def compact(self):
        if len(self._seen) <= self.max_keys:
            return
        recent = list(self._seen)[-self.keep_keys :]
        self._seen = dict.fromkeys(recent)
