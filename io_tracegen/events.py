from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List, Tuple, Union

import numpy as np

from io_tracegen.errors import CapacityExceededError


class EventKind(IntEnum):
    OPEN = 1
    CLOSE = 2
    READ = 3
    WRITE = 4
    BARRIER = 5


@dataclass(frozen=True)
class OpenPayload:
    file_hash: int
    created: bool = False


@dataclass(frozen=True)
class ClosePayload:
    file_hash: int


@dataclass(frozen=True)
class IOPayload:
    file_hash: int
    size: int
    offset: int


@dataclass(frozen=True)
class BarrierPayload:
    participant_count: int = -1  # -1 for all procs
    root: int = 0


Payload = Union[OpenPayload, ClosePayload, IOPayload, BarrierPayload]


@dataclass(frozen=True)
class SyntheticEvent:
    rank: int
    kind: EventKind
    start_time: float
    end_time: float
    payload: Payload


# Fixed stride: the READ/WRITE payload (hash, size, offset) is the widest variant.
EVENT_DTYPE = np.dtype(
    [
        ("rank", "<i8"),
        ("kind", "<i4"),
        ("pad", "<i4"),
        ("start_time", "<f8"),
        ("end_time", "<f8"),
        ("file_hash", "<u8"),
        ("arg0", "<i8"),
        ("arg1", "<i8"),
    ]
)
RECORD_SIZE = EVENT_DTYPE.itemsize


def event_to_row(event: SyntheticEvent) -> Tuple[int, int, int, float, float, int, int, int]:
    p = event.payload
    if isinstance(p, IOPayload):
        file_hash, arg0, arg1 = p.file_hash, p.size, p.offset
    elif isinstance(p, OpenPayload):
        file_hash, arg0, arg1 = p.file_hash, int(p.created), 0
    elif isinstance(p, ClosePayload):
        file_hash, arg0, arg1 = p.file_hash, 0, 0
    else:
        file_hash, arg0, arg1 = 0, p.participant_count, p.root
    return (event.rank, int(event.kind), 0, event.start_time, event.end_time, file_hash, arg0, arg1)


def row_to_event(row: np.void) -> SyntheticEvent:
    kind = EventKind(int(row["kind"]))
    file_hash = int(row["file_hash"])
    arg0 = int(row["arg0"])
    arg1 = int(row["arg1"])
    if kind in (EventKind.READ, EventKind.WRITE):
        payload: Payload = IOPayload(file_hash=file_hash, size=arg0, offset=arg1)
    elif kind == EventKind.OPEN:
        payload = OpenPayload(file_hash=file_hash, created=bool(arg0))
    elif kind == EventKind.CLOSE:
        payload = ClosePayload(file_hash=file_hash)
    else:
        payload = BarrierPayload(participant_count=arg0, root=arg1)
    return SyntheticEvent(
        rank=int(row["rank"]),
        kind=kind,
        start_time=float(row["start_time"]),
        end_time=float(row["end_time"]),
        payload=payload,
    )


class EventBuffer:
    """Pre-sized event arena; overflowing it means the sizing pass undercounted."""

    def __init__(self, capacity: int, name: str = "event"):
        self.capacity = max(int(capacity), 0)
        self.name = name
        self._data = np.zeros(self.capacity, dtype=EVENT_DTYPE)
        self.count = 0

    def __len__(self) -> int:
        return self.count

    @property
    def rows(self) -> np.ndarray:
        return self._data[: self.count]

    def _reserve(self, n: int) -> None:
        if self.count + n > self.capacity:
            raise CapacityExceededError(
                f"{self.name} buffer capacity {self.capacity} exceeded ({self.count + n} events)"
            )

    def append(self, event: SyntheticEvent) -> None:
        self._reserve(1)
        self._data[self.count] = event_to_row(event)
        self.count += 1

    def extend(self, rows: np.ndarray) -> None:
        n = len(rows)
        self._reserve(n)
        self._data[self.count : self.count + n] = rows
        self.count += n

    def assign(self, rows: np.ndarray) -> None:
        self.count = 0
        self.extend(rows)

    def clear(self) -> None:
        self.count = 0

    def events(self) -> List[SyntheticEvent]:
        return [row_to_event(r) for r in self.rows]


def format_event(event: SyntheticEvent) -> str:
    p = event.payload
    span = f"({event.start_time:f} - {event.end_time:f})"
    if event.kind == EventKind.OPEN:
        label = "CREATE" if p.created else "OPEN"
        return f"Rank {event.rank} {label} {p.file_hash} {span}"
    if event.kind == EventKind.CLOSE:
        return f"Rank {event.rank} CLOSE {p.file_hash} {span}"
    if event.kind in (EventKind.READ, EventKind.WRITE):
        return f"Rank {event.rank} {event.kind.name} {p.file_hash} [sz = {p.size}, off = {p.offset}] {span}"
    return f"** BARRIER ** [nprocs = {p.participant_count}, root = {p.root}] {span}"


def file_event_counters(events: Iterable[SyntheticEvent], nprocs: int) -> Dict[str, int]:
    out = {"opens": 0, "reads": 0, "writes": 0, "bytes_read": 0, "bytes_written": 0}
    for ev in events:
        if ev.kind == EventKind.OPEN:
            out["opens"] += nprocs if ev.rank < 0 else 1
        elif ev.kind == EventKind.READ:
            out["reads"] += 1
            out["bytes_read"] += ev.payload.size
        elif ev.kind == EventKind.WRITE:
            out["writes"] += 1
            out["bytes_written"] += ev.payload.size
    return out
