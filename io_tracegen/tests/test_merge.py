import numpy as np
import pytest

from io_tracegen.errors import CapacityExceededError
from io_tracegen.events import ClosePayload, EventBuffer, EventKind, IOPayload, OpenPayload, SyntheticEvent
from io_tracegen.trace.merge import RankTimeline, merge_sorted


def _file_buffer(file_hash: int, open_t: float, close_t: float, capacity: int = 8) -> EventBuffer:
    buf = EventBuffer(capacity)
    buf.append(SyntheticEvent(0, EventKind.OPEN, open_t, open_t, OpenPayload(file_hash)))
    mid = (open_t + close_t) / 2
    buf.append(SyntheticEvent(0, EventKind.READ, mid, mid + 0.1, IOPayload(file_hash, 10, 0)))
    buf.append(SyntheticEvent(0, EventKind.CLOSE, close_t, close_t, ClosePayload(file_hash)))
    return buf


def test_merge_into_empty_timeline_copies_file_events() -> None:
    timeline = RankTimeline(capacity=8)
    buf = _file_buffer(1, 0.0, 4.0)
    timeline.merge(buf, open_time=0.0, close_time=4.0)

    assert len(timeline) == 3
    assert np.array_equal(timeline.rows, buf.rows)
    assert timeline.last_close_time == 4.0


def test_later_file_is_appended_in_order() -> None:
    timeline = RankTimeline(capacity=8)
    timeline.merge(_file_buffer(1, 0.0, 4.0), 0.0, 4.0)
    timeline.merge(_file_buffer(2, 5.0, 9.0), 5.0, 9.0)

    hashes = [int(h) for h in timeline.rows["file_hash"]]
    assert hashes == [1, 1, 1, 2, 2, 2]
    assert timeline.last_close_time == 9.0


def test_overlapping_files_are_interleaved_by_start_time() -> None:
    timeline = RankTimeline(capacity=8)
    timeline.merge(_file_buffer(1, 0.0, 10.0), 0.0, 10.0)
    timeline.merge(_file_buffer(2, 2.0, 4.0), 2.0, 4.0)

    starts = timeline.rows["start_time"]
    assert np.all(np.diff(starts) >= 0)
    assert [int(h) for h in timeline.rows["file_hash"]] == [1, 2, 2, 2, 1, 1]
    # watermark never moves backwards
    assert timeline.last_close_time == 10.0


def test_merge_sorted_is_stable_on_ties() -> None:
    a = _file_buffer(1, 0.0, 2.0).rows
    b = _file_buffer(2, 0.0, 2.0).rows
    merged = merge_sorted(a, b)
    assert [int(h) for h in merged["file_hash"]] == [1, 2, 1, 2, 1, 2]


def test_random_merges_keep_rank_timeline_ordered() -> None:
    rng = np.random.default_rng(5)
    timeline = RankTimeline(capacity=3 * 40)
    for i in range(40):
        open_t = float(rng.uniform(0, 100))
        close_t = open_t + float(rng.uniform(0, 20))
        timeline.merge(_file_buffer(i, open_t, close_t), open_t, close_t)
        assert np.all(np.diff(timeline.rows["start_time"]) >= 0)
    assert len(timeline) == 120

    timeline.clear()
    assert len(timeline) == 0
    assert timeline.last_close_time == 0.0


def test_overfilled_buffer_raises_capacity_error() -> None:
    buf = _file_buffer(1, 0.0, 1.0, capacity=3)
    with pytest.raises(CapacityExceededError):
        buf.append(SyntheticEvent(0, EventKind.CLOSE, 2.0, 2.0, ClosePayload(1)))
    assert len(buf) == 3

    timeline = RankTimeline(capacity=4)
    timeline.merge(buf, 0.0, 1.0)
    with pytest.raises(CapacityExceededError):
        timeline.merge(_file_buffer(2, 0.5, 1.5), 0.5, 1.5)
