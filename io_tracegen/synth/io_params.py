from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from io_tracegen.errors import NegativeCounterError
from io_tracegen.types import (
    ACCESS_COUNTS,
    ACCESS_SIZES,
    CP_BYTES_READ,
    CP_BYTES_WRITTEN,
    CP_MAX_BYTE_READ,
    CP_MAX_BYTE_WRITTEN,
    CP_SEQ_READS,
    CP_SEQ_WRITES,
    READ_SIZE_BINS,
    WRITE_SIZE_BINS,
    FileAggregate,
)

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB

# lower bounds of the 10 access-size histogram bins; the last bin is unbounded
SIZE_BIN_MIN = [0, 100, KiB, 10 * KiB, 100 * KiB, MiB, 4 * MiB, 10 * MiB, 100 * MiB, GiB]


def size_bin_index(size: int) -> int:
    return bisect_right(SIZE_BIN_MIN, size) - 1


@dataclass
class _SideState:
    total_ops: int
    total_bytes: int
    max_byte: int
    seq_count: int
    size_bins: np.ndarray
    ops_left: int = 0
    bytes_left: int = 0
    seq_flag: bool | None = None
    next_offset: int = 0

    def __post_init__(self) -> None:
        self.ops_left = self.total_ops
        self.bytes_left = self.total_bytes


@dataclass
class IOParamSynthesizer:
    """Per-file (size, offset) generator, created fresh for every file."""

    record: FileAggregate
    rng: np.random.Generator
    access_sizes: np.ndarray = field(init=False)
    access_counts: np.ndarray = field(init=False)
    all_common: bool | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        rec = self.record
        self.access_sizes = np.array([rec.counter(c) for c in ACCESS_SIZES], dtype=np.int64)
        self.access_counts = np.array([rec.counter(c) for c in ACCESS_COUNTS], dtype=np.int64)
        self._sides: List[_SideState] = [
            _SideState(
                total_ops=rec.reads,
                total_bytes=rec.counter(CP_BYTES_READ),
                max_byte=rec.counter(CP_MAX_BYTE_READ),
                seq_count=rec.counter(CP_SEQ_READS),
                size_bins=np.array([rec.counter(c) for c in READ_SIZE_BINS], dtype=np.int64),
            ),
            _SideState(
                total_ops=rec.writes,
                total_bytes=rec.counter(CP_BYTES_WRITTEN),
                max_byte=rec.counter(CP_MAX_BYTE_WRITTEN),
                seq_count=rec.counter(CP_SEQ_WRITES),
                size_bins=np.array([rec.counter(c) for c in WRITE_SIZE_BINS], dtype=np.int64),
            ),
        ]
        self.reset()

    def reset(self) -> None:
        for side in self._sides:
            side.seq_flag = None
            side.next_offset = 0
        # remaining per-cycle share of each common access, keyed by (is_write, is_collective)
        self._shares = {key: np.zeros(4, dtype=np.int64) for key in [(0, 0), (0, 1), (1, 0), (1, 1)]}
        self.all_common = None

    @property
    def reads_left(self) -> int:
        return self._sides[0].ops_left

    @property
    def writes_left(self) -> int:
        return self._sides[1].ops_left

    @property
    def ops_left(self) -> int:
        return self.reads_left + self.writes_left

    def next_io_params(self, is_write: bool, is_collective: bool, cycles_remaining: int) -> Tuple[int, int]:
        side = self._sides[int(is_write)]
        if side.ops_left <= 0:
            kind = "write" if is_write else "read"
            raise NegativeCounterError(f"file {self.record.file_hash}: no {kind} operations left to synthesize")

        if self.all_common is None:
            explained = int(np.dot(self.access_sizes, self.access_counts))
            total = self._sides[0].total_bytes + self._sides[1].total_bytes
            self.all_common = explained == total
        if side.seq_flag is None:
            side.seq_flag = self._is_sequential(side)

        last_op = self.ops_left == 1
        if side.bytes_left == 0 or side.ops_left == 1:
            size = side.bytes_left
        else:
            size = None
            if self.all_common:
                size = self._draw_common_size((int(is_write), int(is_collective)), cycles_remaining)
            if size is None:
                size = self._draw_histogram_size(side)
            size = min(size, side.bytes_left)

        side.bytes_left -= size
        side.ops_left -= 1
        idx = size_bin_index(size)
        if side.size_bins[idx] > 0:
            side.size_bins[idx] -= 1

        offset = self._next_offset(side, size, last_op)

        if self.ops_left == 0:
            self.reset()
        return int(size), int(offset)

    @staticmethod
    def _is_sequential(side: _SideState) -> bool:
        if side.total_ops == 0:
            return False
        # passes over [0, max_byte] beyond the first one break the sequential run
        restarts = (side.total_bytes - side.max_byte - 1) // (side.max_byte + 1)
        return side.total_ops - restarts - 1 == side.seq_count

    def _draw_common_size(self, key: Tuple[int, int], cycles_remaining: int) -> int | None:
        share = self._shares[key]
        for i in range(4):
            if share[i] > 0 and self.access_counts[i] > 0:
                share[i] -= 1
                self.access_counts[i] -= 1
                return int(self.access_sizes[i])

        cycles = max(int(cycles_remaining), 1)
        size = None
        for i in range(4):
            share[i] = -(-int(self.access_counts[i]) // cycles)
            if size is None and share[i] > 0:
                size = int(self.access_sizes[i])
                share[i] -= 1
                self.access_counts[i] -= 1
        return size

    def _draw_histogram_size(self, side: _SideState) -> int:
        mean = int(round(side.bytes_left / max(side.ops_left, 1)))
        weights = np.clip(side.size_bins, 0, None).astype(float)
        if weights.sum() <= 0:
            return mean
        idx = int(self.rng.choice(len(weights), p=weights / weights.sum()))
        lo = SIZE_BIN_MIN[idx]
        hi = SIZE_BIN_MIN[idx + 1] - 1 if idx + 1 < len(SIZE_BIN_MIN) else max(lo, mean)
        return min(max(mean, lo), hi)

    def _next_offset(self, side: _SideState, size: int, last_op: bool) -> int:
        eof = side.max_byte + 1
        if size == 0 or last_op:
            return eof
        if side.seq_flag:
            if side.next_offset + size > eof:
                side.next_offset = 0
            offset = side.next_offset
            side.next_offset += size
            return offset
        if size < side.max_byte:
            return int(self.rng.integers(0, side.max_byte - size))
        return 0
