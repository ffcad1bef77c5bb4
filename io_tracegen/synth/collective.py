from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict

import numpy as np

from io_tracegen.errors import TraceInputError
from io_tracegen.events import EventBuffer
from io_tracegen.synth.delay import file_delay_fractions
from io_tracegen.synth.io_params import IOParamSynthesizer
from io_tracegen.synth.ops import bandwidth, emit_barrier, emit_close, emit_io, emit_open, io_duration
from io_tracegen.synth.rw_switch import ReadWriteToggle
from io_tracegen.types import (
    COLLECTIVE_RANK,
    CP_BYTES_READ,
    CP_BYTES_WRITTEN,
    CP_COLL_OPENS,
    CP_COLL_READS,
    CP_COLL_WRITES,
    CP_F_POSIX_META_TIME,
    CP_F_POSIX_READ_TIME,
    CP_F_POSIX_WRITE_TIME,
    CP_INDEP_OPENS,
    CP_INDEP_READS,
    CP_INDEP_WRITES,
    CP_RW_SWITCHES,
    FileAggregate,
)


@dataclass(frozen=True)
class CollectivePlan:
    """How the opens and i/o ops of one shared file are laid out over cycles."""

    nprocs: int
    cycle_opens: int = 0
    full_cycles: int = 0
    partial_ranks: int = 0
    extra_opens: int = 0
    extra_schedule: Dict[int, int] = field(default_factory=dict)
    collective_opens: int = 0
    ind_reads: int = 0
    ind_writes: int = 0
    coll_read_ops: int = 0
    coll_write_ops: int = 0
    coll_posix_reads: int = 0
    coll_posix_writes: int = 0
    aggregator_cnt: int = 1
    ranks_per_aggregator: int = 1

    @property
    def cycles(self) -> int:
        return self.full_cycles + (1 if self.partial_ranks else 0)

    @property
    def coll_ops(self) -> int:
        return self.coll_read_ops + self.coll_write_ops

    @property
    def event_count(self) -> int:
        if not self.cycles:
            return 0
        per_full = 3 if self.collective_opens else 2
        io_ops = self.ind_reads + self.ind_writes + self.coll_posix_reads + self.coll_posix_writes
        return (
            2 * self.extra_opens
            + per_full * self.full_cycles
            + 2 * self.partial_ranks
            + io_ops
            + self.coll_ops
        )


def _extra_open_schedule(extra: int, full_cycles: int) -> Dict[int, int]:
    if not extra:
        return {}
    if not full_cycles:
        return {0: extra}
    stride = max(1, full_cycles // extra)
    return dict(Counter(min(k * stride, full_cycles - 1) for k in range(extra)))


def _split_pool(total: int, independent: int, coll_counter: int, nprocs: int):
    ind = min(max(independent, 0), total)
    coll_posix = total - ind
    coll_ops = min(max(coll_counter, 0) // nprocs, coll_posix)
    if coll_posix and not coll_ops:
        ind, coll_posix = total, 0
    return ind, coll_ops, coll_posix


def plan_collective(record: FileAggregate, nprocs: int, aggregator_count: int) -> CollectivePlan:
    opens = record.opens
    if opens == 0:
        return CollectivePlan(nprocs=nprocs)

    coll_opens = record.counter(CP_COLL_OPENS)
    indep_opens = record.counter(CP_INDEP_OPENS)
    if opens < coll_opens:
        # deferred MPI opens never reached the posix layer
        raise TraceInputError(
            f"file {record.file_hash}: collective opens ({coll_opens}) exceed posix opens ({opens})"
        )

    if coll_opens:
        extra = max(0, opens - coll_opens - indep_opens)
        cycle_opens = coll_opens
    else:
        extra = opens % nprocs
        if not (extra and opens - extra >= nprocs and ((opens - extra) // nprocs) % extra == 0):
            extra = 0
        cycle_opens = opens - extra

    full_cycles, partial_ranks = divmod(cycle_opens, nprocs)

    reads, writes = record.reads, record.writes
    if coll_opens:
        ind_reads, coll_read_ops, coll_posix_reads = _split_pool(
            reads, record.counter(CP_INDEP_READS), record.counter(CP_COLL_READS), nprocs
        )
        ind_writes, coll_write_ops, coll_posix_writes = _split_pool(
            writes, record.counter(CP_INDEP_WRITES), record.counter(CP_COLL_WRITES), nprocs
        )
        aggregator_cnt = max(1, min(int(aggregator_count), nprocs))
        ranks_per_aggregator = max(1, nprocs // aggregator_cnt)
    else:
        ind_reads, coll_read_ops, coll_posix_reads = reads, 0, 0
        ind_writes, coll_write_ops, coll_posix_writes = writes, 0, 0
        aggregator_cnt = nprocs
        ranks_per_aggregator = 1

    return CollectivePlan(
        nprocs=nprocs,
        cycle_opens=cycle_opens,
        full_cycles=full_cycles,
        partial_ranks=partial_ranks,
        extra_opens=extra,
        extra_schedule=_extra_open_schedule(extra, full_cycles),
        collective_opens=coll_opens,
        ind_reads=ind_reads,
        ind_writes=ind_writes,
        coll_read_ops=coll_read_ops,
        coll_write_ops=coll_write_ops,
        coll_posix_reads=coll_posix_reads,
        coll_posix_writes=coll_posix_writes,
        aggregator_cnt=aggregator_cnt,
        ranks_per_aggregator=ranks_per_aggregator,
    )


def count_collective_events(record: FileAggregate, nprocs: int, aggregator_count: int) -> int:
    return plan_collective(record, nprocs, aggregator_count).event_count


def generate_collective_events(
    record: FileAggregate,
    nprocs: int,
    aggregator_count: int,
    rng: np.random.Generator,
    out: EventBuffer,
) -> EventBuffer:
    plan = plan_collective(record, nprocs, aggregator_count)
    if not plan.event_count:
        return out

    reads, writes = record.reads, record.writes
    read_time = record.fcounter(CP_F_POSIX_READ_TIME)
    write_time = record.fcounter(CP_F_POSIX_WRITE_TIME)
    meta_time = record.fcounter(CP_F_POSIX_META_TIME)
    cycles = plan.cycles

    # read/write/meta times are summed over all ranks of the file
    delay_per_cycle = (
        record.close_time - record.open_time - read_time / nprocs - write_time / nprocs - meta_time / nprocs
    ) / cycles
    fractions = file_delay_fractions(record, cycles, round((reads + writes) / nprocs), delay_per_cycle)

    meta_op_time = meta_time / (2 * record.opens + reads + writes)

    gen = _CollectiveCycles(
        record=record,
        plan=plan,
        synth=IOParamSynthesizer(record, rng),
        toggle=ReadWriteToggle(record, record.counter(CP_RW_SWITCHES) // plan.aggregator_cnt, cycles, rng),
        rng=rng,
        out=out,
        meta_op_time=meta_op_time,
        read_bw=bandwidth(record.counter(CP_BYTES_READ), read_time),
        write_bw=bandwidth(record.counter(CP_BYTES_WRITTEN), write_time),
    )

    # rewriting an existing shared file is rare, so written files are taken as created
    created = record.counter(CP_BYTES_WRITTEN) > 0
    cur_time = record.open_time
    extra_pending = dict(plan.extra_schedule)
    opens_left = plan.cycle_opens

    for cycle in range(cycles):
        # surplus opens belong to rank 0 alone
        for _ in range(extra_pending.pop(cycle, 0)):
            cur_time = emit_open(out, 0, record.file_hash, created, meta_op_time, cur_time)
            cur_time = emit_close(out, 0, record.file_hash, meta_op_time, cur_time)
            created = False

        cycles_left = cycles - cycle
        rank_cnt = nprocs if opens_left >= nprocs else opens_left
        if rank_cnt == nprocs:
            if plan.collective_opens:
                cur_time = emit_barrier(out, COLLECTIVE_RANK, 0, cur_time)
            cur_time = emit_open(out, COLLECTIVE_RANK, record.file_hash, created, meta_op_time, cur_time)
        else:
            start = end = cur_time
            for rank in range(rank_cnt):
                end = emit_open(out, rank, record.file_hash, created and rank == 0, meta_op_time, start)
            cur_time = end
        created = False

        cur_time += fractions.first_io * delay_per_cycle
        cur_time = gen.io_cycle(cycle, cycles_left, opens_left, rank_cnt, fractions.inter_io * delay_per_cycle, cur_time)
        cur_time += fractions.close * delay_per_cycle

        if rank_cnt == nprocs:
            cur_time = emit_close(out, COLLECTIVE_RANK, record.file_hash, meta_op_time, cur_time)
        else:
            start = end = cur_time
            for rank in range(rank_cnt):
                end = emit_close(out, rank, record.file_hash, meta_op_time, start)
            cur_time = end

        opens_left -= rank_cnt
        if cycles_left > 1:
            cur_time += fractions.inter_open * delay_per_cycle
    return out


class _CollectiveCycles:
    def __init__(
        self,
        record: FileAggregate,
        plan: CollectivePlan,
        synth: IOParamSynthesizer,
        toggle: ReadWriteToggle,
        rng: np.random.Generator,
        out: EventBuffer,
        meta_op_time: float,
        read_bw: float,
        write_bw: float,
    ):
        self.record = record
        self.plan = plan
        self.synth = synth
        self.toggle = toggle
        self.rng = rng
        self.out = out
        self.meta_op_time = meta_op_time
        self.read_bw = read_bw
        self.write_bw = write_bw
        # [reads, writes] still to be issued from each pool
        self.ind_left = [plan.ind_reads, plan.ind_writes]
        self.coll_ops_left = [plan.coll_read_ops, plan.coll_write_ops]
        self.coll_posix_left = [plan.coll_posix_reads, plan.coll_posix_writes]

    @property
    def ind_total(self) -> int:
        return self.ind_left[0] + self.ind_left[1]

    @property
    def coll_total(self) -> int:
        return self.coll_ops_left[0] + self.coll_ops_left[1]

    def _io(self, rank: int, is_write: bool, is_collective: bool, cycles: int, cur_time: float) -> float:
        size, offset = self.synth.next_io_params(is_write, is_collective, cycles)
        bw = self.write_bw if is_write else self.read_bw
        return emit_io(
            self.out,
            rank,
            is_write,
            self.record.file_hash,
            size,
            offset,
            cur_time,
            io_duration(size, bw, self.meta_op_time),
        )

    def io_cycle(
        self,
        cycle: int,
        cycles_left: int,
        opens_left: int,
        rank_cnt: int,
        inter_io_delay: float,
        cur_time: float,
    ) -> float:
        ind_n = math.ceil(self.ind_total * rank_cnt / opens_left) if opens_left else 0
        coll_n = math.ceil(self.coll_total / cycles_left)
        total = ind_n + coll_n
        if not total:
            return cur_time

        plan = self.plan
        agg_span = plan.ranks_per_aggregator * plan.aggregator_cnt
        next_ind_rank = 0
        max_end = cur_time
        self.toggle.start_cycle()
        for i in range(total):
            if self.rng.random() < ind_n / (total - i):
                is_write = self.toggle.side_for(self.ind_left[0], self.ind_left[1])
                self.ind_left[int(is_write)] -= 1
                ind_n -= 1
                end = self._io(next_ind_rank % rank_cnt, is_write, False, cycles_left, cur_time)
                next_ind_rank += 1
                max_end = max(max_end, end)
            else:
                is_write = self.toggle.side_for(self.coll_ops_left[0], self.coll_ops_left[1])
                side = int(is_write)
                cur_time = emit_barrier(self.out, COLLECTIVE_RANK, 0, cur_time)
                max_end = max(max_end, cur_time)
                io_cnt = math.ceil(self.coll_posix_left[side] / self.coll_ops_left[side])
                coll_ops_remaining = self.coll_total
                self.coll_ops_left[side] -= 1
                self.coll_posix_left[side] -= io_cnt
                coll_n -= 1
                rank = 0
                for _ in range(io_cnt):
                    end = self._io(rank, is_write, True, coll_ops_remaining, cur_time)
                    max_end = max(max_end, end)
                    rank += plan.ranks_per_aggregator
                    if rank >= agg_span:
                        rank = 0

            self.toggle.maybe_toggle(
                self.synth.reads_left, self.synth.writes_left, cycles_left, self.ind_total + self.coll_total
            )
            cur_time = max_end
            if i != total - 1:
                cur_time += inter_io_delay / (total - 1)

        self.toggle.end_cycle(cycle, cycles_left)
        return cur_time
