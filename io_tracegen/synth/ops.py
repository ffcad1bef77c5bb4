from __future__ import annotations

from io_tracegen.events import (
    BarrierPayload,
    ClosePayload,
    EventBuffer,
    EventKind,
    IOPayload,
    OpenPayload,
    SyntheticEvent,
)

BARRIER_TIME = 0.000001


def emit_open(out: EventBuffer, rank: int, file_hash: int, created: bool, meta_op_time: float, cur_time: float) -> float:
    end = cur_time + meta_op_time
    out.append(SyntheticEvent(rank, EventKind.OPEN, cur_time, end, OpenPayload(file_hash, created)))
    return end


def emit_close(out: EventBuffer, rank: int, file_hash: int, meta_op_time: float, cur_time: float) -> float:
    end = cur_time + meta_op_time
    out.append(SyntheticEvent(rank, EventKind.CLOSE, cur_time, end, ClosePayload(file_hash)))
    return end


def emit_barrier(out: EventBuffer, rank: int, root: int, cur_time: float) -> float:
    end = cur_time + BARRIER_TIME
    out.append(SyntheticEvent(rank, EventKind.BARRIER, cur_time, end, BarrierPayload(-1, root)))
    return end


def emit_io(
    out: EventBuffer,
    rank: int,
    is_write: bool,
    file_hash: int,
    size: int,
    offset: int,
    cur_time: float,
    duration: float,
) -> float:
    kind = EventKind.WRITE if is_write else EventKind.READ
    end = cur_time + duration
    out.append(SyntheticEvent(rank, kind, cur_time, end, IOPayload(file_hash, size, offset)))
    return end


def bandwidth(nbytes: int, seconds: float) -> float:
    return nbytes / seconds if seconds else 0.0


def io_duration(size: int, bw: float, meta_op_time: float) -> float:
    return (size / bw if bw else 0.0) + meta_op_time
