import numpy as np
import pytest

from io_tracegen.errors import TraceInputError
from io_tracegen.events import EventBuffer, EventKind
from io_tracegen.synth.collective import generate_collective_events, plan_collective
from io_tracegen.types import COLLECTIVE_RANK


def _shared_write_file(make_record, **extra):
    values = dict(
        CP_POSIX_OPENS=4,
        CP_COLL_OPENS=4,
        CP_POSIX_WRITES=8,
        CP_COLL_WRITES=8,
        CP_BYTES_WRITTEN=8 * 1024,
        CP_MAX_BYTE_WRITTEN=8 * 1024 - 1,
        CP_SEQ_WRITES=7,
        CP_ACCESS1_ACCESS=1024,
        CP_ACCESS1_COUNT=8,
        CP_F_OPEN_TIMESTAMP=1.0,
        CP_F_CLOSE_TIMESTAMP=5.0,
        CP_F_WRITE_START_TIMESTAMP=1.5,
        CP_F_WRITE_END_TIMESTAMP=4.5,
        CP_F_POSIX_WRITE_TIME=0.8,
        CP_F_POSIX_META_TIME=0.4,
    )
    values.update(extra)
    return make_record(rank=COLLECTIVE_RANK, file_hash=9, **values)


def test_collective_open_cycle_layout(make_record) -> None:
    rec = _shared_write_file(make_record)
    plan = plan_collective(rec, nprocs=4, aggregator_count=2)
    assert plan.full_cycles == 1
    assert plan.partial_ranks == 0
    assert plan.coll_write_ops == 2
    assert plan.ind_writes == 0

    out = generate_collective_events(rec, 4, 2, np.random.default_rng(0), EventBuffer(plan.event_count))
    events = out.events()
    assert len(events) == plan.event_count

    kinds = [ev.kind for ev in events]
    assert kinds[0] == EventKind.BARRIER
    assert kinds[1] == EventKind.OPEN and events[1].rank == COLLECTIVE_RANK
    assert kinds[-1] == EventKind.CLOSE and events[-1].rank == COLLECTIVE_RANK
    assert kinds.count(EventKind.OPEN) == 1
    assert kinds.count(EventKind.CLOSE) == 1
    assert kinds.count(EventKind.READ) == 0
    assert kinds.count(EventKind.WRITE) == 8
    # one barrier before the open and one per collective write
    assert kinds.count(EventKind.BARRIER) == 3

    io_ranks = {ev.rank for ev in events if ev.kind == EventKind.WRITE}
    assert io_ranks <= {0, 2}
    assert events[1].payload.created
    assert sum(ev.payload.size for ev in events if ev.kind == EventKind.WRITE) == 8 * 1024
    starts = [ev.start_time for ev in events]
    assert starts == sorted(starts)


def test_partial_cycle_opens_per_rank(make_record) -> None:
    rec = _shared_write_file(
        make_record,
        CP_POSIX_OPENS=6,
        CP_COLL_OPENS=0,
        CP_COLL_WRITES=0,
        CP_POSIX_WRITES=6,
        CP_BYTES_WRITTEN=6 * 1024,
        CP_ACCESS1_COUNT=6,
    )
    plan = plan_collective(rec, nprocs=4, aggregator_count=16)
    assert plan.full_cycles == 1
    assert plan.partial_ranks == 2
    assert plan.extra_opens == 0

    out = generate_collective_events(rec, 4, 16, np.random.default_rng(1), EventBuffer(plan.event_count))
    events = out.events()
    assert len(events) == plan.event_count
    assert not any(ev.kind == EventKind.BARRIER for ev in events)

    per_rank_opens = [ev.rank for ev in events if ev.kind == EventKind.OPEN and ev.rank != COLLECTIVE_RANK]
    assert per_rank_opens == [0, 1]
    per_rank_closes = [ev.rank for ev in events if ev.kind == EventKind.CLOSE and ev.rank != COLLECTIVE_RANK]
    assert per_rank_closes == [0, 1]


def test_extra_opens_go_to_rank_zero(make_record) -> None:
    rec = _shared_write_file(
        make_record,
        CP_POSIX_OPENS=10,
        CP_COLL_OPENS=8,
        CP_INDEP_OPENS=0,
        CP_COLL_WRITES=8,
    )
    plan = plan_collective(rec, nprocs=4, aggregator_count=4)
    assert plan.extra_opens == 2
    assert plan.full_cycles == 2
    assert sum(plan.extra_schedule.values()) == 2

    out = generate_collective_events(rec, 4, 4, np.random.default_rng(2), EventBuffer(plan.event_count))
    events = out.events()
    assert len(events) == plan.event_count
    rank0_opens = [ev for ev in events if ev.kind == EventKind.OPEN and ev.rank == 0]
    assert len(rank0_opens) == 2
    # the first open of the file carries the create flag, and only that one
    opens = [ev for ev in events if ev.kind == EventKind.OPEN]
    assert [ev.payload.created for ev in opens].count(True) == 1
    assert opens[0].payload.created


def test_more_collective_than_posix_opens_is_input_error(make_record) -> None:
    rec = _shared_write_file(make_record, CP_POSIX_OPENS=2, CP_COLL_OPENS=4)
    with pytest.raises(TraceInputError):
        plan_collective(rec, nprocs=4, aggregator_count=16)


def test_counters_reach_zero_for_random_collective_files(make_record) -> None:
    rng = np.random.default_rng(99)
    for i in range(80):
        nprocs = int(rng.integers(1, 9))
        cycles = int(rng.integers(1, 4))
        coll = bool(rng.random() < 0.6)
        coll_opens = nprocs * cycles if coll else 0
        opens = coll_opens + int(rng.integers(0, 3)) if coll else nprocs * cycles + int(rng.integers(0, nprocs))
        reads = int(rng.integers(0, 30))
        writes = int(rng.integers(0, 30))
        indep_reads = int(rng.integers(0, reads + 1)) if coll else 0
        indep_writes = int(rng.integers(0, writes + 1)) if coll else 0
        bytes_read = reads * int(rng.integers(1, 5000))
        bytes_written = writes * int(rng.integers(1, 5000))
        rec = make_record(
            rank=COLLECTIVE_RANK,
            file_hash=1000 + i,
            CP_POSIX_OPENS=opens,
            CP_COLL_OPENS=coll_opens,
            CP_POSIX_READS=reads,
            CP_POSIX_WRITES=writes,
            CP_INDEP_READS=indep_reads,
            CP_INDEP_WRITES=indep_writes,
            CP_COLL_READS=(reads - indep_reads) * int(rng.integers(0, 2)),
            CP_COLL_WRITES=(writes - indep_writes) * int(rng.integers(0, 2)),
            CP_BYTES_READ=bytes_read,
            CP_BYTES_WRITTEN=bytes_written,
            CP_MAX_BYTE_READ=max(bytes_read - 1, 0),
            CP_MAX_BYTE_WRITTEN=max(bytes_written - 1, 0),
            CP_SIZE_READ_1K_10K=reads,
            CP_SIZE_WRITE_1K_10K=writes,
            CP_RW_SWITCHES=int(rng.integers(0, 3 * nprocs + 1)),
            CP_F_OPEN_TIMESTAMP=0.5,
            CP_F_CLOSE_TIMESTAMP=float(rng.uniform(0.5, 30.0)),
            CP_F_READ_START_TIMESTAMP=1.0 if reads else 0.0,
            CP_F_WRITE_START_TIMESTAMP=2.0 if writes else 0.0,
            CP_F_POSIX_READ_TIME=0.2 * nprocs if reads else 0.0,
            CP_F_POSIX_WRITE_TIME=0.3 * nprocs if writes else 0.0,
            CP_F_POSIX_META_TIME=0.05 * nprocs,
        )
        agg = int(rng.integers(1, 20))
        plan = plan_collective(rec, nprocs, agg)
        out = generate_collective_events(rec, nprocs, agg, np.random.default_rng(i), EventBuffer(plan.event_count))
        events = out.events()

        assert len(events) == plan.event_count
        kinds = [ev.kind for ev in events]
        assert kinds.count(EventKind.READ) == reads
        assert kinds.count(EventKind.WRITE) == writes
        assert sum(ev.payload.size for ev in events if ev.kind == EventKind.READ) == bytes_read
        assert sum(ev.payload.size for ev in events if ev.kind == EventKind.WRITE) == bytes_written
        assert all(-1 <= ev.rank < nprocs for ev in events)
        starts = [ev.start_time for ev in events]
        assert starts == sorted(starts)
