"""
Binary trace layout.

    [0, (nprocs + 2) * 8)   header: nprocs, offset of rank 0 .. nprocs-1, offset of collective events
    [header end, EOF)       fixed-size event records, one contiguous region per header slot

All integers are little-endian. A region runs from its slot offset to the next
slot offset (end of file for the collective slot).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Tuple

import numpy as np

from io_tracegen.errors import TraceFormatError
from io_tracegen.events import EVENT_DTYPE, RECORD_SIZE
from io_tracegen.types import COLLECTIVE_RANK

HEADER_DTYPE = np.dtype("<u8")


def header_size(nprocs: int) -> int:
    return (nprocs + 2) * HEADER_DTYPE.itemsize


@dataclass(frozen=True)
class TraceHeader:
    nprocs: int
    offsets: Tuple[int, ...]  # nprocs rank offsets followed by the collective offset

    def __post_init__(self) -> None:
        if len(self.offsets) != self.nprocs + 1:
            raise ValueError(f"expected {self.nprocs + 1} offsets, got {len(self.offsets)}")

    @classmethod
    def from_counts(cls, nprocs: int, event_counts: np.ndarray) -> "TraceHeader":
        sizes = np.asarray(event_counts, dtype=np.int64) * RECORD_SIZE
        starts = header_size(nprocs) + np.concatenate([[0], np.cumsum(sizes)[:-1]])
        return cls(nprocs=nprocs, offsets=tuple(int(x) for x in starts))

    def offset_for(self, rank: int) -> int:
        if rank == COLLECTIVE_RANK:
            return self.offsets[self.nprocs]
        return self.offsets[rank]

    def to_array(self) -> np.ndarray:
        return np.array([self.nprocs, *self.offsets], dtype=HEADER_DTYPE)

    def tobytes(self) -> bytes:
        return self.to_array().tobytes()

    @property
    def size(self) -> int:
        return header_size(self.nprocs)

    @classmethod
    def from_bytes(cls, data: bytes) -> "TraceHeader":
        if len(data) < HEADER_DTYPE.itemsize:
            raise TraceFormatError("trace file too short for a header")
        nprocs = int(np.frombuffer(data, dtype=HEADER_DTYPE, count=1)[0])
        if len(data) < header_size(nprocs):
            raise TraceFormatError(f"trace header truncated: need {header_size(nprocs)} bytes for {nprocs} ranks")
        slots = np.frombuffer(data, dtype=HEADER_DTYPE, count=nprocs + 2)
        return cls(nprocs=nprocs, offsets=tuple(int(x) for x in slots[1:]))


def read_trace(path: str | Path) -> Tuple[TraceHeader, Dict[int, np.ndarray]]:
    data = Path(path).read_bytes()
    header = TraceHeader.from_bytes(data)
    bounds = list(header.offsets) + [len(data)]
    regions: Dict[int, np.ndarray] = {}
    for slot in range(header.nprocs + 1):
        start, end = bounds[slot], bounds[slot + 1]
        if end < start or (end - start) % RECORD_SIZE:
            raise TraceFormatError(f"region {slot} spans {start}..{end}, not a whole number of records")
        rank = COLLECTIVE_RANK if slot == header.nprocs else slot
        count = (end - start) // RECORD_SIZE
        if count:
            regions[rank] = np.frombuffer(data, dtype=EVENT_DTYPE, count=count, offset=start)
        else:
            regions[rank] = np.zeros(0, dtype=EVENT_DTYPE)
    return header, regions
