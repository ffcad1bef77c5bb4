"""
Delay-budget model.

Time inside an open-close cycle that is not explained by recorded read, write
and meta time is spread over four phases: open -> first i/o, between i/o ops,
last i/o -> close, and between consecutive open-close cycles. The returned
fractions always sum to 1 (or are all 0 when there is nothing to spread).
"""

from __future__ import annotations

from dataclasses import dataclass

from io_tracegen.types import (
    CP_F_READ_END_TIMESTAMP,
    CP_F_READ_START_TIMESTAMP,
    CP_F_WRITE_END_TIMESTAMP,
    CP_F_WRITE_START_TIMESTAMP,
    FileAggregate,
)

DEF_INTER_IO_DELAY_PCT = 0.2
DEF_INTER_CYC_DELAY_PCT = 0.4


@dataclass(frozen=True)
class DelayFractions:
    first_io: float = 0.0
    inter_io: float = 0.0
    inter_open: float = 0.0
    close: float = 0.0

    @property
    def total(self) -> float:
        return self.first_io + self.inter_io + self.inter_open + self.close


def first_io_time(record: FileAggregate) -> float:
    rd = record.fcounter(CP_F_READ_START_TIMESTAMP)
    wr = record.fcounter(CP_F_WRITE_START_TIMESTAMP)
    if not wr:
        return rd
    if not rd:
        return wr
    return min(rd, wr)


def last_io_time(record: FileAggregate) -> float:
    return max(record.fcounter(CP_F_READ_END_TIMESTAMP), record.fcounter(CP_F_WRITE_END_TIMESTAMP))


def delay_fractions(
    open_time: float,
    close_time: float,
    first_io: float,
    last_io: float,
    num_opens: int,
    num_io_ops: int,
    delay_per_cycle: float,
) -> DelayFractions:
    if delay_per_cycle <= 0.0:
        return DelayFractions()

    inter_open = DEF_INTER_CYC_DELAY_PCT if num_opens > 1 else 0.0
    inter_io = DEF_INTER_IO_DELAY_PCT if num_io_ops > 1 else 0.0

    if first_io != 0.0:
        first_pct = max((first_io - open_time) / delay_per_cycle, 0.0)
        close_pct = max((close_time - last_io) / delay_per_cycle, 0.0)
    else:
        first_pct = 0.0
        close_pct = 1.0 - inter_open

    total = inter_open + inter_io + first_pct + close_pct
    if total < 1.0 and (inter_open or inter_io):
        # underestimate: only the inter-phase delays absorb the shortfall
        rest = 1.0 - first_pct - close_pct
        inter_sum = inter_open + inter_io
        inter_open, inter_io = (inter_open / inter_sum) * rest, (inter_io / inter_sum) * rest
    elif total > 0.0:
        # x + (x / total) * (1 - total), without the cancellation
        inter_open, inter_io = inter_open / total, inter_io / total
        first_pct, close_pct = first_pct / total, close_pct / total
    else:
        close_pct = 1.0

    return DelayFractions(first_io=first_pct, inter_io=inter_io, inter_open=inter_open, close=close_pct)


def file_delay_fractions(
    record: FileAggregate,
    num_opens: int,
    num_io_ops: int,
    delay_per_cycle: float,
) -> DelayFractions:
    return delay_fractions(
        record.open_time,
        record.close_time,
        first_io_time(record),
        last_io_time(record),
        num_opens,
        num_io_ops,
        delay_per_cycle,
    )
