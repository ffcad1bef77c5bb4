"""
Reader for the text form of a darshan 2.x log (``darshan-parser <log>``).

Job metadata comes from the ``# key: value`` header comments, and each run of
consecutive data lines sharing ``(rank, file hash)`` becomes one FileAggregate:

    #<rank>  <file>  <counter>  <value>  <name suffix>  <mount pt>  <fs type>
    -1  4150137924128436124  CP_POSIX_OPENS  64  ...out.dat  /scratch  lustre

Records are yielded in log order; rank ordering is checked by the trace writer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterator, List, TextIO, Tuple

from io_tracegen.errors import MissingCounterError, TraceFormatError, TraceInputError, TraceParseError
from io_tracegen.types import (
    CP_F_CLOSE_TIMESTAMP,
    CP_F_OPEN_TIMESTAMP,
    CP_POSIX_FOPENS,
    CP_POSIX_FREADS,
    CP_POSIX_FWRITES,
    CP_POSIX_OPENS,
    CP_POSIX_READS,
    CP_POSIX_WRITES,
    OPTIONAL_COUNTERS,
    REQUIRED_COUNTERS,
    REQUIRED_FCOUNTERS,
    TIMESTAMP_FCOUNTERS,
    FileAggregate,
    JobMeta,
    is_float_counter,
)

HEADER_RE = re.compile(r"#\s*(exe|uid|jobid|start_time|start_time_asci|end_time|end_time_asci|nprocs|run time):\s*(.*)")

UNKNOWN_VALUE = -1


@dataclass
class DarshanTextLog:
    path: Path
    handle: TextIO
    header: Dict[str, str] = field(default_factory=dict)
    line_no: int = 0
    _pending: Tuple[int, str] | None = None

    def close(self) -> None:
        self.handle.close()

    def __enter__(self) -> "DarshanTextLog":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _next_line(self) -> Tuple[int, str] | None:
        if self._pending is not None:
            pending, self._pending = self._pending, None
            return pending
        line = self.handle.readline()
        if not line:
            return None
        self.line_no += 1
        return self.line_no, line


def open_log(path: str | Path) -> DarshanTextLog:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {path}")
    log = DarshanTextLog(path=path, handle=path.open("r", encoding="utf-8", errors="ignore"))

    # header comments precede the first data line; keep that line for the record iterator
    while True:
        item = log._next_line()
        if item is None:
            break
        line_no, line = item
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            m = HEADER_RE.match(stripped)
            if m:
                key = "run_time" if m.group(1) == "run time" else m.group(1)
                log.header[key] = m.group(2).strip()
            continue
        log._pending = (line_no, line)
        break

    if "nprocs" not in log.header:
        log.close()
        raise TraceFormatError(f"{path}: no job header found (is this darshan-parser output?)")
    return log


def read_job_meta(log: DarshanTextLog) -> JobMeta:
    hdr = log.header
    missing = [k for k in ("nprocs", "start_time", "end_time") if k not in hdr]
    if missing:
        raise TraceFormatError(f"{log.path}: job record is missing {', '.join(missing)}")
    try:
        nprocs = int(hdr["nprocs"])
        start_time = int(hdr["start_time"])
        end_time = int(hdr["end_time"])
    except ValueError as exc:
        raise TraceFormatError(f"{log.path}: invalid job record: {exc}") from exc
    if nprocs < 1:
        raise TraceFormatError(f"{log.path}: nprocs must be >= 1, got {nprocs}")
    return JobMeta(
        nprocs=nprocs,
        start_time=start_time,
        end_time=end_time,
        jobid=hdr.get("jobid", ""),
        exe=hdr.get("exe", ""),
    )


def _parse_data_line(line_no: int, line: str) -> Tuple[int, int, str, float | int, str]:
    parts = line.rstrip("\n").split("\t")
    if len(parts) < 4:
        parts = line.split()
    if len(parts) < 4:
        raise TraceParseError(f"expected at least 4 fields, got {len(parts)}", line_no)
    try:
        rank = int(parts[0])
        file_hash = int(parts[1])
        counter = parts[2].strip()
        raw = parts[3].strip()
        value: float | int = float(raw) if is_float_counter(counter) else int(raw)
    except ValueError as exc:
        raise TraceParseError(str(exc), line_no) from exc
    name = parts[4].strip() if len(parts) > 4 else ""
    return rank, file_hash, counter, value, name


def iter_file_records(log: DarshanTextLog) -> Iterator[FileAggregate]:
    key: Tuple[int, int] | None = None
    values: Dict[str, float | int] = {}
    name = ""
    while True:
        item = log._next_line()
        if item is None:
            break
        line_no, line = item
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        rank, file_hash, counter, value, suffix = _parse_data_line(line_no, line)
        if key is not None and (rank, file_hash) != key:
            yield FileAggregate.from_counters(key[0], key[1], values, name=name)
            values = {}
        key = (rank, file_hash)
        values[counter] = value
        name = suffix or name
    if key is not None:
        yield FileAggregate.from_counters(key[0], key[1], values, name=name)


def check_file_counters(record: FileAggregate) -> None:
    missing: List[str] = [c for c in REQUIRED_COUNTERS if c not in record.counters]
    missing += [c for c in REQUIRED_FCOUNTERS if c not in record.fcounters]
    if missing:
        raise MissingCounterError(f"file {record.file_hash} (rank {record.rank}) is missing counters: {', '.join(missing)}")
    for name in REQUIRED_COUNTERS + OPTIONAL_COUNTERS:
        if record.counter(name) < 0:
            raise MissingCounterError(
                f"file {record.file_hash} (rank {record.rank}) has unknown value for {name}: {record.counter(name)}"
            )
    for name in REQUIRED_FCOUNTERS:
        if record.fcounter(name) == UNKNOWN_VALUE:
            raise MissingCounterError(f"file {record.file_hash} (rank {record.rank}) has unknown value for {name}")


def normalize_record(record: FileAggregate, job: JobMeta) -> FileAggregate:
    check_file_counters(record)
    if record.rank >= job.nprocs or record.rank < -1:
        raise TraceInputError(f"file {record.file_hash} has rank {record.rank} outside [-1, {job.nprocs})")

    counters = dict(record.counters)
    fcounters = dict(record.fcounters)

    # timestamps may be absolute unix times; make them job relative
    if fcounters[CP_F_OPEN_TIMESTAMP] > job.start_time:
        for name in TIMESTAMP_FCOUNTERS:
            fcounters[name] = max(fcounters[name] - job.start_time, 0.0)

    if fcounters[CP_F_CLOSE_TIMESTAMP] == 0.0:
        fcounters[CP_F_CLOSE_TIMESTAMP] = float(job.run_time)

    counters[CP_POSIX_OPENS] = record.counter(CP_POSIX_OPENS) + record.counter(CP_POSIX_FOPENS)
    counters[CP_POSIX_READS] = record.counter(CP_POSIX_READS) + record.counter(CP_POSIX_FREADS)
    counters[CP_POSIX_WRITES] = record.counter(CP_POSIX_WRITES) + record.counter(CP_POSIX_FWRITES)
    counters[CP_POSIX_FOPENS] = 0
    counters[CP_POSIX_FREADS] = 0
    counters[CP_POSIX_FWRITES] = 0
    return replace(record, counters=counters, fcounters=fcounters)
