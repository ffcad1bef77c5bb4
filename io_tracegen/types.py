from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

COLLECTIVE_RANK = -1

CP_POSIX_OPENS = "CP_POSIX_OPENS"
CP_POSIX_FOPENS = "CP_POSIX_FOPENS"
CP_POSIX_READS = "CP_POSIX_READS"
CP_POSIX_FREADS = "CP_POSIX_FREADS"
CP_POSIX_WRITES = "CP_POSIX_WRITES"
CP_POSIX_FWRITES = "CP_POSIX_FWRITES"
CP_COLL_OPENS = "CP_COLL_OPENS"
CP_INDEP_OPENS = "CP_INDEP_OPENS"
CP_COLL_READS = "CP_COLL_READS"
CP_COLL_WRITES = "CP_COLL_WRITES"
CP_INDEP_READS = "CP_INDEP_READS"
CP_INDEP_WRITES = "CP_INDEP_WRITES"
CP_BYTES_READ = "CP_BYTES_READ"
CP_BYTES_WRITTEN = "CP_BYTES_WRITTEN"
CP_MAX_BYTE_READ = "CP_MAX_BYTE_READ"
CP_MAX_BYTE_WRITTEN = "CP_MAX_BYTE_WRITTEN"
CP_SEQ_READS = "CP_SEQ_READS"
CP_SEQ_WRITES = "CP_SEQ_WRITES"
CP_RW_SWITCHES = "CP_RW_SWITCHES"

CP_F_OPEN_TIMESTAMP = "CP_F_OPEN_TIMESTAMP"
CP_F_CLOSE_TIMESTAMP = "CP_F_CLOSE_TIMESTAMP"
CP_F_READ_START_TIMESTAMP = "CP_F_READ_START_TIMESTAMP"
CP_F_WRITE_START_TIMESTAMP = "CP_F_WRITE_START_TIMESTAMP"
CP_F_READ_END_TIMESTAMP = "CP_F_READ_END_TIMESTAMP"
CP_F_WRITE_END_TIMESTAMP = "CP_F_WRITE_END_TIMESTAMP"
CP_F_POSIX_READ_TIME = "CP_F_POSIX_READ_TIME"
CP_F_POSIX_WRITE_TIME = "CP_F_POSIX_WRITE_TIME"
CP_F_POSIX_META_TIME = "CP_F_POSIX_META_TIME"

_BIN_SUFFIXES = ["0_100", "100_1K", "1K_10K", "10K_100K", "100K_1M", "1M_4M", "4M_10M", "10M_100M", "100M_1G", "1G_PLUS"]
READ_SIZE_BINS: List[str] = [f"CP_SIZE_READ_{s}" for s in _BIN_SUFFIXES]
WRITE_SIZE_BINS: List[str] = [f"CP_SIZE_WRITE_{s}" for s in _BIN_SUFFIXES]

ACCESS_SIZES: List[str] = [f"CP_ACCESS{i}_ACCESS" for i in range(1, 5)]
ACCESS_COUNTS: List[str] = [f"CP_ACCESS{i}_COUNT" for i in range(1, 5)]
STRIDE_SIZES: List[str] = [f"CP_STRIDE{i}_STRIDE" for i in range(1, 5)]
STRIDE_COUNTS: List[str] = [f"CP_STRIDE{i}_COUNT" for i in range(1, 5)]

TIMESTAMP_FCOUNTERS = [
    CP_F_OPEN_TIMESTAMP,
    CP_F_READ_START_TIMESTAMP,
    CP_F_WRITE_START_TIMESTAMP,
    CP_F_CLOSE_TIMESTAMP,
    CP_F_READ_END_TIMESTAMP,
    CP_F_WRITE_END_TIMESTAMP,
]

REQUIRED_COUNTERS = [
    CP_POSIX_OPENS,
    CP_COLL_OPENS,
    CP_POSIX_READS,
    CP_POSIX_WRITES,
    CP_BYTES_READ,
    CP_BYTES_WRITTEN,
    CP_RW_SWITCHES,
]
REQUIRED_FCOUNTERS = TIMESTAMP_FCOUNTERS + [
    CP_F_POSIX_READ_TIME,
    CP_F_POSIX_WRITE_TIME,
    CP_F_POSIX_META_TIME,
]
OPTIONAL_COUNTERS = [
    CP_POSIX_FOPENS,
    CP_POSIX_FREADS,
    CP_POSIX_FWRITES,
    CP_INDEP_OPENS,
    CP_COLL_READS,
    CP_COLL_WRITES,
    CP_INDEP_READS,
    CP_INDEP_WRITES,
    CP_MAX_BYTE_READ,
    CP_MAX_BYTE_WRITTEN,
    CP_SEQ_READS,
    CP_SEQ_WRITES,
    *READ_SIZE_BINS,
    *WRITE_SIZE_BINS,
    *ACCESS_SIZES,
    *ACCESS_COUNTS,
    *STRIDE_SIZES,
    *STRIDE_COUNTS,
]


def is_float_counter(name: str) -> bool:
    return name.startswith("CP_F_")


@dataclass(frozen=True)
class JobMeta:
    nprocs: int
    start_time: int
    end_time: int
    jobid: str = ""
    exe: str = ""

    @property
    def run_time(self) -> int:
        return self.end_time - self.start_time + 1


@dataclass(frozen=True)
class FileAggregate:
    rank: int
    file_hash: int
    counters: Mapping[str, int] = field(default_factory=dict)
    fcounters: Mapping[str, float] = field(default_factory=dict)
    name: str = ""

    @property
    def is_collective(self) -> bool:
        return self.rank == COLLECTIVE_RANK

    def counter(self, name: str) -> int:
        return int(self.counters.get(name, 0))

    def fcounter(self, name: str) -> float:
        return float(self.fcounters.get(name, 0.0))

    @property
    def opens(self) -> int:
        return self.counter(CP_POSIX_OPENS)

    @property
    def reads(self) -> int:
        return self.counter(CP_POSIX_READS)

    @property
    def writes(self) -> int:
        return self.counter(CP_POSIX_WRITES)

    @property
    def open_time(self) -> float:
        return self.fcounter(CP_F_OPEN_TIMESTAMP)

    @property
    def close_time(self) -> float:
        return self.fcounter(CP_F_CLOSE_TIMESTAMP)

    @classmethod
    def from_counters(cls, rank: int, file_hash: int, values: Mapping[str, float], name: str = "") -> "FileAggregate":
        counters: Dict[str, int] = {}
        fcounters: Dict[str, float] = {}
        for key, value in values.items():
            if is_float_counter(key):
                fcounters[key] = float(value)
            else:
                counters[key] = int(value)
        return cls(rank=rank, file_hash=file_hash, counters=counters, fcounters=fcounters, name=name)
