"""Best-effort in-memory log of recently committed placements."""

from collections import deque
from typing import TypedDict


class ActivityRecord(TypedDict):
    x: int
    y: int
    color: str
    writer_id: str
    writer_name: str
    was_override: bool
    previous_writer_id: str | None
    written_at: int


class ActivityLog:
    """Bounded log of recent commits; the oldest entries fall off.

    Not durable and not an audit trail. Lost on restart.
    """

    def __init__(self, max_entries: int = 100):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: deque[ActivityRecord] = deque(maxlen=max_entries)

    def record(self, entry: ActivityRecord) -> None:
        self._entries.append(entry)

    def recent(self, limit: int | None = None) -> list[ActivityRecord]:
        """Return up to ``limit`` entries, newest first."""
        entries = list(reversed(self._entries))
        if limit is not None:
            entries = entries[: max(0, limit)]
        return entries

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
