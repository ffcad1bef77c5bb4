from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

import pytest

from io_tracegen.types import OPTIONAL_COUNTERS, REQUIRED_COUNTERS, REQUIRED_FCOUNTERS, FileAggregate, JobMeta


def _record(rank: int = 0, file_hash: int = 1, **values) -> FileAggregate:
    base = {name: 0 for name in REQUIRED_COUNTERS + OPTIONAL_COUNTERS}
    base.update({name: 0.0 for name in REQUIRED_FCOUNTERS})
    base.update(values)
    return FileAggregate.from_counters(rank, file_hash, base, name="data.out")


@pytest.fixture
def make_record() -> Callable[..., FileAggregate]:
    return _record


@pytest.fixture
def job4() -> JobMeta:
    return JobMeta(nprocs=4, start_time=1_000, end_time=1_099, jobid="42", exe="./app")


@pytest.fixture
def write_log() -> Callable[[Path, JobMeta, Iterable[FileAggregate]], Path]:
    def _write(path: Path, job: JobMeta, records: Iterable[FileAggregate]) -> Path:
        lines = [
            "# darshan log version: 2.06",
            f"# exe: {job.exe}",
            "# uid: 1000",
            f"# jobid: {job.jobid}",
            f"# start_time: {job.start_time}",
            f"# end_time: {job.end_time}",
            f"# nprocs: {job.nprocs}",
            f"# run time: {job.run_time}",
            "",
            "#<rank>\t<file>\t<counter>\t<value>\t<name suffix>\t<mount pt>\t<fs type>",
        ]
        for rec in records:
            for name, value in list(rec.counters.items()) + list(rec.fcounters.items()):
                text = f"{value:f}" if isinstance(value, float) else str(value)
                lines.append(f"{rec.rank}\t{rec.file_hash}\t{name}\t{text}\t...{rec.name}\t/scratch\tlustre")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
