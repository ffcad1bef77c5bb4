from __future__ import annotations

import math
from typing import Mapping

import numpy as np

from io_tracegen.events import EventBuffer
from io_tracegen.synth.delay import file_delay_fractions
from io_tracegen.synth.io_params import IOParamSynthesizer
from io_tracegen.synth.ops import bandwidth, emit_close, emit_io, emit_open, io_duration
from io_tracegen.synth.rw_switch import ReadWriteToggle
from io_tracegen.types import (
    CP_BYTES_READ,
    CP_BYTES_WRITTEN,
    CP_F_POSIX_META_TIME,
    CP_F_POSIX_READ_TIME,
    CP_F_POSIX_WRITE_TIME,
    CP_RW_SWITCHES,
    FileAggregate,
)


def count_independent_events(record: FileAggregate) -> int:
    if record.opens == 0:
        return 0
    return 2 * record.opens + record.reads + record.writes


def generate_independent_events(
    record: FileAggregate,
    created_times: Mapping[int, float],
    rng: np.random.Generator,
    out: EventBuffer,
) -> EventBuffer:
    opens = record.opens
    # never really opened (stat only): no timing info to work with
    if opens == 0:
        return out

    reads, writes = record.reads, record.writes
    read_time = record.fcounter(CP_F_POSIX_READ_TIME)
    write_time = record.fcounter(CP_F_POSIX_WRITE_TIME)
    meta_time = record.fcounter(CP_F_POSIX_META_TIME)

    delay_per_open = (record.close_time - record.open_time - read_time - write_time - meta_time) / opens
    fractions = file_delay_fractions(record, opens, reads + writes, delay_per_open)
    inter_open_delay = 0.0
    if opens > 1:
        inter_open_delay = fractions.inter_open * delay_per_open * (opens / (opens - 1))

    meta_op_time = meta_time / (2 * opens + reads + writes)
    created = created_times.get(record.file_hash) == record.open_time

    gen = _IndependentCycles(
        record=record,
        synth=IOParamSynthesizer(record, rng),
        toggle=ReadWriteToggle(record, record.counter(CP_RW_SWITCHES), opens, rng),
        out=out,
        meta_op_time=meta_op_time,
        read_bw=bandwidth(record.counter(CP_BYTES_READ), read_time),
        write_bw=bandwidth(record.counter(CP_BYTES_WRITTEN), write_time),
    )

    cur_time = record.open_time
    for cycle in range(opens):
        opens_left = opens - cycle
        cur_time = emit_open(out, record.rank, record.file_hash, created, meta_op_time, cur_time)
        created = False

        cur_time += fractions.first_io * delay_per_open
        cur_time = gen.io_cycle(cycle, opens_left, fractions.inter_io * delay_per_open, cur_time)
        cur_time += fractions.close * delay_per_open

        cur_time = emit_close(out, record.rank, record.file_hash, meta_op_time, cur_time)
        if opens_left > 1:
            cur_time += inter_open_delay
    return out


class _IndependentCycles:
    def __init__(
        self,
        record: FileAggregate,
        synth: IOParamSynthesizer,
        toggle: ReadWriteToggle,
        out: EventBuffer,
        meta_op_time: float,
        read_bw: float,
        write_bw: float,
    ):
        self.record = record
        self.synth = synth
        self.toggle = toggle
        self.out = out
        self.meta_op_time = meta_op_time
        self.read_bw = read_bw
        self.write_bw = write_bw

    def io_cycle(self, cycle: int, opens_left: int, inter_io_delay: float, cur_time: float) -> float:
        synth = self.synth
        if not synth.ops_left:
            return cur_time

        n_ops = math.ceil(synth.ops_left / opens_left)
        self.toggle.start_cycle()
        for i in range(n_ops):
            is_write = self.toggle.side_for(synth.reads_left, synth.writes_left)
            size, offset = synth.next_io_params(is_write, False, opens_left)
            bw = self.write_bw if is_write else self.read_bw
            cur_time = emit_io(
                self.out,
                self.record.rank,
                is_write,
                self.record.file_hash,
                size,
                offset,
                cur_time,
                io_duration(size, bw, self.meta_op_time),
            )

            # the concluding op of a cycle never switches and is not followed by a delay
            if i != n_ops - 1:
                self.toggle.maybe_toggle(synth.reads_left, synth.writes_left, opens_left, synth.ops_left)
                cur_time += inter_io_delay / (n_ops - 1)

        self.toggle.end_cycle(cycle, opens_left)
        return cur_time


__all__ = ["count_independent_events", "generate_independent_events"]
