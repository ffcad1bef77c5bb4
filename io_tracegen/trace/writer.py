from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable

import numpy as np

from io_tracegen.errors import OutOfOrderRankError, SizingMismatchError, TraceFormatError, TraceResourceError, TraceWriteError
from io_tracegen.events import EventBuffer, file_event_counters, format_event
from io_tracegen.synth import count_file_events, generate_file_events
from io_tracegen.trace.layout import TraceHeader
from io_tracegen.trace.merge import RankTimeline
from io_tracegen.types import COLLECTIVE_RANK, CP_BYTES_WRITTEN, FileAggregate, JobMeta

logger = logging.getLogger(__name__)


@dataclass
class SizingResult:
    header: TraceHeader
    event_counts: Dict[int, int]
    file_capacity: int
    rank_capacity: int
    created_times: Dict[int, float] = field(default_factory=dict)

    @property
    def total_events(self) -> int:
        return sum(self.event_counts.values())


def _check_rank_order(prev_rank: int | None, record: FileAggregate) -> None:
    if prev_rank is not None and record.rank < prev_rank:
        raise OutOfOrderRankError(
            f"file {record.file_hash}: rank {record.rank} follows rank {prev_rank}; log records must be rank ordered"
        )


def size_trace(job: JobMeta, records: Iterable[FileAggregate], aggregator_count: int) -> SizingResult:
    nprocs = job.nprocs
    counts = np.zeros(nprocs + 1, dtype=np.int64)
    created_times: Dict[int, float] = {}
    file_capacity = 0
    n_records = 0
    prev_rank: int | None = None

    for record in records:
        n_records += 1
        n = count_file_events(record, job, aggregator_count)
        file_capacity = max(file_capacity, n)
        if record.is_collective:
            counts[nprocs] += n
            continue

        _check_rank_order(prev_rank, record)
        prev_rank = record.rank
        counts[record.rank] += n
        if record.counter(CP_BYTES_WRITTEN) and record.opens:
            prev = created_times.get(record.file_hash)
            if prev is None or record.open_time < prev:
                created_times[record.file_hash] = record.open_time

    if not n_records:
        raise TraceFormatError("log contains no file records")

    event_counts = {rank: int(counts[rank]) for rank in range(nprocs)}
    event_counts[COLLECTIVE_RANK] = int(counts[nprocs])
    header = TraceHeader.from_counts(nprocs, counts)
    result = SizingResult(
        header=header,
        event_counts=event_counts,
        file_capacity=file_capacity,
        rank_capacity=int(counts.max()),
        created_times=created_times,
    )
    logger.info(
        "Sizing pass: %d file records, %d events, max %d per file, max %d per rank",
        n_records,
        result.total_events,
        result.file_capacity,
        result.rank_capacity,
    )
    return result


class TraceWriter:
    def __init__(self, path: str | Path, header: TraceHeader):
        self.path = Path(path)
        self.header = header
        try:
            # unbuffered, so a short write is visible to the caller
            self._fh = open(self.path, "wb", buffering=0)
        except OSError as exc:
            raise TraceResourceError(f"cannot create trace file {self.path}: {exc}") from exc
        try:
            self._write_at(0, header.tobytes())
        except TraceWriteError:
            self._fh.close()
            raise

    def __enter__(self) -> "TraceWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._fh.close()

    def _write_at(self, offset: int, data: bytes) -> None:
        try:
            self._fh.seek(offset)
            written = self._fh.write(data)
        except OSError as exc:
            raise TraceWriteError(f"write to {self.path} at offset {offset} failed: {exc}", 0, len(data)) from exc
        if written != len(data):
            raise TraceWriteError(f"short write to {self.path} at offset {offset}", written or 0, len(data))

    def store(self, rank: int, rows: np.ndarray) -> int:
        self._write_at(self.header.offset_for(rank), rows.tobytes())
        return len(rows)


def _log_file_events(record: FileAggregate, events: EventBuffer, nprocs: int) -> None:
    decoded = events.events()
    for ev in decoded:
        logger.info("%s", format_event(ev))
    c = file_event_counters(decoded, nprocs)
    logger.info(
        "File %d (rank %d): opens=%d reads=%d writes=%d bytes_read=%d bytes_written=%d",
        record.file_hash,
        record.rank,
        c["opens"],
        c["reads"],
        c["writes"],
        c["bytes_read"],
        c["bytes_written"],
    )


def generate_trace(
    job: JobMeta,
    records: Iterable[FileAggregate],
    sizing: SizingResult,
    writer: TraceWriter,
    aggregator_count: int,
    rng: np.random.Generator,
    verbose: bool = False,
) -> Dict[int, int]:
    file_events = EventBuffer(sizing.file_capacity, name="file event")
    rank_timeline = RankTimeline(sizing.rank_capacity, name="rank event")
    coll_timeline = RankTimeline(sizing.event_counts[COLLECTIVE_RANK], name="collective event")
    written: Dict[int, int] = {}

    def flush(rank: int, timeline: RankTimeline) -> None:
        expected = sizing.event_counts[rank]
        if len(timeline) != expected:
            raise SizingMismatchError(f"rank {rank}: generated {len(timeline)} events, sizing pass counted {expected}")
        written[rank] = writer.store(rank, timeline.rows)
        logger.debug("Stored %d events for rank %d at offset %d", written[rank], rank, writer.header.offset_for(rank))
        timeline.clear()

    cur_rank: int | None = None
    for record in records:
        file_events.clear()
        generate_file_events(record, job, sizing.created_times, aggregator_count, rng, file_events)
        if verbose:
            _log_file_events(record, file_events, job.nprocs)

        if record.is_collective:
            coll_timeline.merge(file_events, record.open_time, record.close_time)
            continue

        _check_rank_order(cur_rank, record)
        if cur_rank is not None and record.rank != cur_rank:
            flush(cur_rank, rank_timeline)
        cur_rank = record.rank
        rank_timeline.merge(file_events, record.open_time, record.close_time)

    if cur_rank is not None:
        flush(cur_rank, rank_timeline)
    flush(COLLECTIVE_RANK, coll_timeline)

    for rank, expected in sizing.event_counts.items():
        if expected and rank not in written:
            raise SizingMismatchError(f"rank {rank}: sizing pass counted {expected} events but none were generated")

    logger.info("Data pass: wrote %d events for %d regions", sum(written.values()), len(written))
    return written
