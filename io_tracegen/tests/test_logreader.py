import pytest

from io_tracegen.errors import MissingCounterError, TraceFormatError, TraceInputError, TraceParseError
from io_tracegen.logreader import iter_file_records, normalize_record, open_log, read_job_meta
from io_tracegen.types import CP_F_CLOSE_TIMESTAMP, CP_F_OPEN_TIMESTAMP, CP_POSIX_OPENS, CP_POSIX_READS


def test_reads_job_header_and_groups_records(tmp_path, make_record, job4, write_log) -> None:
    records = [
        make_record(rank=0, file_hash=1, CP_POSIX_OPENS=1, CP_F_OPEN_TIMESTAMP=0.25),
        make_record(rank=1, file_hash=1, CP_POSIX_OPENS=2),
        make_record(rank=-1, file_hash=7, CP_POSIX_OPENS=4, CP_COLL_OPENS=4),
    ]
    path = write_log(tmp_path / "job.txt", job4, records)

    with open_log(path) as log:
        job = read_job_meta(log)
        got = list(iter_file_records(log))

    assert job == job4
    assert [(r.rank, r.file_hash) for r in got] == [(0, 1), (1, 1), (-1, 7)]
    assert got[0].opens == 1
    assert got[0].open_time == 0.25
    assert got[2].is_collective
    assert got[0].name == "...data.out"


def test_missing_log_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        open_log(tmp_path / "nope.txt")


def test_log_without_job_header(tmp_path) -> None:
    path = tmp_path / "bad.txt"
    path.write_text("0\t1\tCP_POSIX_OPENS\t1\n", encoding="utf-8")
    with pytest.raises(TraceFormatError):
        open_log(path)


def test_job_header_without_times(tmp_path) -> None:
    path = tmp_path / "partial.txt"
    path.write_text("# nprocs: 2\n", encoding="utf-8")
    with open_log(path) as log:
        with pytest.raises(TraceFormatError):
            read_job_meta(log)


def test_malformed_data_line_reports_line_number(tmp_path) -> None:
    path = tmp_path / "garbled.txt"
    path.write_text(
        "# nprocs: 2\n# start_time: 10\n# end_time: 20\n0\t1\tCP_POSIX_OPENS\t1\n0\tabc\tCP_POSIX_READS\t2\n",
        encoding="utf-8",
    )
    with open_log(path) as log:
        read_job_meta(log)
        with pytest.raises(TraceParseError) as exc_info:
            list(iter_file_records(log))
    assert exc_info.value.line_no == 5


def test_normalize_shifts_absolute_timestamps(make_record, job4) -> None:
    rec = make_record(
        CP_POSIX_OPENS=1,
        CP_POSIX_FOPENS=2,
        CP_POSIX_READS=3,
        CP_POSIX_FREADS=1,
        CP_F_OPEN_TIMESTAMP=1_005.0,
        CP_F_CLOSE_TIMESTAMP=1_010.5,
        CP_F_READ_START_TIMESTAMP=1_006.0,
    )
    out = normalize_record(rec, job4)
    assert out.fcounters[CP_F_OPEN_TIMESTAMP] == 5.0
    assert out.fcounters[CP_F_CLOSE_TIMESTAMP] == 10.5
    assert out.fcounter("CP_F_READ_START_TIMESTAMP") == 6.0
    # unused timestamps stay at zero
    assert out.fcounter("CP_F_WRITE_START_TIMESTAMP") == 0.0
    assert out.counters[CP_POSIX_OPENS] == 3
    assert out.counters[CP_POSIX_READS] == 4


def test_normalize_fills_missing_close_with_run_time(make_record, job4) -> None:
    rec = make_record(CP_POSIX_OPENS=1, CP_F_OPEN_TIMESTAMP=1.0, CP_F_CLOSE_TIMESTAMP=0.0)
    assert normalize_record(rec, job4).close_time == float(job4.run_time)


def test_unknown_counter_value_is_rejected(make_record, job4) -> None:
    with pytest.raises(MissingCounterError):
        normalize_record(make_record(CP_POSIX_OPENS=-1), job4)
    with pytest.raises(MissingCounterError):
        normalize_record(make_record(CP_F_POSIX_META_TIME=-1.0), job4)


def test_missing_required_counter(make_record, job4) -> None:
    rec = make_record(CP_POSIX_OPENS=1)
    counters = dict(rec.counters)
    del counters["CP_RW_SWITCHES"]
    with pytest.raises(MissingCounterError):
        normalize_record(rec.__class__(rec.rank, rec.file_hash, counters, rec.fcounters), job4)


def test_rank_beyond_nprocs_is_rejected(make_record, job4) -> None:
    with pytest.raises(TraceInputError):
        normalize_record(make_record(rank=4, CP_POSIX_OPENS=1), job4)
