from __future__ import annotations

from typing import Mapping

import numpy as np

from io_tracegen.events import EventBuffer
from io_tracegen.synth.collective import CollectivePlan, count_collective_events, generate_collective_events, plan_collective
from io_tracegen.synth.delay import DelayFractions, delay_fractions, file_delay_fractions
from io_tracegen.synth.independent import count_independent_events, generate_independent_events
from io_tracegen.synth.io_params import IOParamSynthesizer, size_bin_index
from io_tracegen.synth.rw_switch import ReadWriteToggle
from io_tracegen.types import FileAggregate, JobMeta


def count_file_events(record: FileAggregate, job: JobMeta, aggregator_count: int) -> int:
    if record.is_collective:
        return count_collective_events(record, job.nprocs, aggregator_count)
    return count_independent_events(record)


def generate_file_events(
    record: FileAggregate,
    job: JobMeta,
    created_times: Mapping[int, float],
    aggregator_count: int,
    rng: np.random.Generator,
    out: EventBuffer,
) -> EventBuffer:
    if record.is_collective:
        return generate_collective_events(record, job.nprocs, aggregator_count, rng, out)
    return generate_independent_events(record, created_times, rng, out)


__all__ = [
    "CollectivePlan",
    "DelayFractions",
    "IOParamSynthesizer",
    "ReadWriteToggle",
    "count_file_events",
    "delay_fractions",
    "file_delay_fractions",
    "generate_file_events",
    "plan_collective",
    "size_bin_index",
]
