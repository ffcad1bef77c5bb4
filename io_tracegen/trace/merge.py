from __future__ import annotations

import numpy as np

from io_tracegen.events import EVENT_DTYPE, EventBuffer


def merge_sorted(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Stable two-way merge of start-ordered event rows; on ties rows of ``a`` come first."""
    n, m = len(a), len(b)
    out = np.empty(n + m, dtype=EVENT_DTYPE)
    if not m:
        out[:] = a
        return out
    pos_b = np.searchsorted(a["start_time"], b["start_time"], side="right") + np.arange(m)
    from_a = np.ones(n + m, dtype=bool)
    from_a[pos_b] = False
    out[pos_b] = b
    out[from_a] = a
    return out


class RankTimeline:
    def __init__(self, capacity: int, name: str = "rank"):
        self.buffer = EventBuffer(capacity, name=name)
        self.last_close_time = 0.0

    def __len__(self) -> int:
        return self.buffer.count

    @property
    def rows(self) -> np.ndarray:
        return self.buffer.rows

    def merge(self, file_events: EventBuffer, open_time: float, close_time: float) -> "RankTimeline":
        incoming = file_events.rows
        if not len(incoming):
            return self

        if not self.buffer.count:
            self.buffer.assign(incoming)
            self.last_close_time = close_time
            return self

        current = self.buffer.rows
        if open_time >= self.last_close_time and incoming["start_time"][0] >= current["start_time"][-1]:
            self.buffer.extend(incoming)
        else:
            self.buffer.assign(merge_sorted(current, incoming))
        self.last_close_time = max(self.last_close_time, close_time)
        return self

    def clear(self) -> None:
        self.buffer.clear()
        self.last_close_time = 0.0
