from __future__ import annotations

import math

import numpy as np

from io_tracegen.types import CP_F_READ_START_TIMESTAMP, CP_F_WRITE_START_TIMESTAMP, FileAggregate


def first_op_is_write(record: FileAggregate) -> bool:
    rd = record.fcounter(CP_F_READ_START_TIMESTAMP)
    wr = record.fcounter(CP_F_WRITE_START_TIMESTAMP)
    if wr == 0.0:
        return False
    if rd == 0.0:
        return True
    return wr <= rd


class ReadWriteToggle:
    def __init__(self, record: FileAggregate, switches: int, cycles: int, rng: np.random.Generator):
        self.rng = rng
        self.is_write = first_op_is_write(record)
        self.switches_left = max(int(switches), 0)
        self.next_switch_cycle = math.ceil(cycles / (self.switches_left + 1))
        self.last_probability = 0.0

    def side_for(self, reads_avail: int, writes_avail: int) -> bool:
        # a side with nothing left is never chosen; this does not spend a switch
        if self.is_write and not writes_avail and reads_avail:
            self.is_write = False
        elif not self.is_write and not reads_avail and writes_avail:
            self.is_write = True
        return self.is_write

    def probability(self, reads_left: int, writes_left: int, cycles_left: int, ops_left: int) -> float:
        s = self.switches_left
        current_left = writes_left if self.is_write else reads_left
        if s and current_left <= s // 2:
            return 1.0
        if not s or s < cycles_left or (s == 1 and current_left):
            return 0.0
        if ops_left <= 1:
            return 0.0
        return min(s / (ops_left - 1), 1.0)

    def maybe_toggle(self, reads_left: int, writes_left: int, cycles_left: int, ops_left: int) -> bool:
        p = self.probability(reads_left, writes_left, cycles_left, ops_left)
        self.last_probability = p
        if self.rng.random() < p:
            self.is_write = not self.is_write
            self.switches_left -= 1
            return True
        return False

    def start_cycle(self) -> None:
        self.last_probability = 0.0

    def end_cycle(self, cycle_index: int, cycles_left: int) -> None:
        if cycles_left <= 1:
            return
        if self.last_probability == 0.0 and self.switches_left and self.next_switch_cycle == cycle_index + 1:
            self.is_write = not self.is_write
            self.switches_left -= 1
            self.next_switch_cycle += math.ceil((cycles_left - 1) / (self.switches_left + 1))
