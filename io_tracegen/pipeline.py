from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping

import numpy as np
import yaml

from io_tracegen.logreader import iter_file_records, normalize_record, open_log, read_job_meta
from io_tracegen.trace import SizingResult, TraceWriter, generate_trace, size_trace
from io_tracegen.types import FileAggregate, JobMeta

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
_HANDLERS: list[logging.Handler] = []


@dataclass
class TraceGenConfig:
    aggregator_count: int = 16
    verbose: bool = False
    seed: int | None = None
    log_file: str | None = None
    summary_dir: str | None = None


@dataclass
class TraceArtifacts:
    job: JobMeta
    sizing: SizingResult
    written: Dict[int, int]
    trace_path: Path
    summary_path: Path | None = None
    plot_path: Path | None = None


def load_config(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_config(cfg: Mapping) -> TraceGenConfig:
    seed = cfg.get("seed")
    log_file = cfg.get("log_file")
    summary_dir = cfg.get("summary_dir")
    out = TraceGenConfig(
        aggregator_count=int(cfg.get("aggregator_count", 16)),
        verbose=bool(cfg.get("verbose", False)),
        seed=int(seed) if seed is not None else None,
        log_file=str(log_file) if log_file else None,
        summary_dir=str(summary_dir) if summary_dir else None,
    )
    if out.aggregator_count < 1:
        raise ValueError(f"aggregator_count must be >= 1, got {out.aggregator_count}")
    return out


def setup_logging(log_file: str | None = None, level: int = logging.INFO) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(level)
    # repeated calls replace our handlers instead of stacking them
    while _HANDLERS:
        h = _HANDLERS.pop()
        root.removeHandler(h)
        h.close()
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)
    _HANDLERS.append(ch)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(fmt)
        root.addHandler(fh)
        _HANDLERS.append(fh)
    return root


def _normalized_records(log, job: JobMeta) -> Iterator[FileAggregate]:
    for record in iter_file_records(log):
        yield normalize_record(record, job)


def run_trace_generation(log_path: str | Path, trace_path: str | Path, cfg: TraceGenConfig) -> TraceArtifacts:
    trace_path = Path(trace_path)
    rng = np.random.default_rng(cfg.seed)

    logger.info(f"Sizing pass over {log_path}")
    with open_log(log_path) as log:
        job = read_job_meta(log)
        sizing = size_trace(job, _normalized_records(log, job), cfg.aggregator_count)
    logger.info(
        "Job %s: %d ranks, header %d bytes, collective region at offset %d",
        job.jobid or "?",
        job.nprocs,
        sizing.header.size,
        sizing.header.offset_for(-1),
    )

    logger.info(f"Data pass: writing {trace_path}")
    with open_log(log_path) as log, TraceWriter(trace_path, sizing.header) as writer:
        job = read_job_meta(log)
        written = generate_trace(
            job,
            _normalized_records(log, job),
            sizing,
            writer,
            cfg.aggregator_count,
            rng,
            verbose=cfg.verbose,
        )

    art = TraceArtifacts(job=job, sizing=sizing, written=written, trace_path=trace_path)
    if cfg.summary_dir:
        # imported lazily so plain trace generation does not pull in pandas/matplotlib
        from io_tracegen.eval import plot_rank_activity, summarize_trace, trace_to_frame

        out_dir = Path(cfg.summary_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        frame = trace_to_frame(trace_path)
        art.summary_path = out_dir / "summary.csv"
        summarize_trace(frame).to_csv(art.summary_path, index=False)
        art.plot_path = plot_rank_activity(frame, out_dir)
        logger.info(f"Wrote summary to {art.summary_path}")
    return art
