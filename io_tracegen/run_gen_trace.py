#!/usr/bin/env python3
"""
Synthetic I/O trace generator

WHAT THIS DOES
- Reads the text form of one darshan log (``darshan-parser <log> > log.txt``)
- Sizes every rank's event region in a first pass, then regenerates the events
  per file, merges them into per-rank timelines and writes one binary trace
- Optionally writes a per-region summary CSV and a rank activity plot

USAGE
  python3 -m io_tracegen.run_gen_trace log.txt out.trace -a 16 --seed 7
  python3 -m io_tracegen.run_gen_trace log.txt out.trace -v --summary-dir artifacts

NOTES
- Command line flags override values from --config.
- A failed run leaves whatever part of the trace was already written.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Sequence

os.environ.setdefault("MPLCONFIGDIR", "/tmp/mplconfig")

from io_tracegen.errors import TraceInputError, TraceInvariantError, TraceResourceError
from io_tracegen.pipeline import load_config, parse_config, run_trace_generation, setup_logging


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate a synthetic I/O event trace from a darshan text log")
    p.add_argument("log_file", help="darshan-parser output for one job")
    p.add_argument("trace_file", help="Binary trace to write")
    p.add_argument(
        "--config",
        type=str,
        default=str(Path(__file__).with_name("config.yaml")),
        help="Path to YAML config",
    )
    p.add_argument("-a", "--aggregators", type=int, default=None, help="Number of collective i/o aggregators")
    p.add_argument("-v", "--verbose", action="store_true", default=None, help="Log every generated event")
    p.add_argument("--seed", type=int, default=None, help="Seed for the random generator")
    p.add_argument("--log", default=None, help="Optional path for a processing log file")
    p.add_argument("--summary-dir", default=None, help="Write summary.csv and rank_activity.png here")
    return p.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    raw = load_config(args.config) if Path(args.config).is_file() else {}
    overrides = {
        "aggregator_count": args.aggregators,
        "verbose": args.verbose,
        "seed": args.seed,
        "log_file": args.log,
        "summary_dir": args.summary_dir,
    }
    raw.update({k: v for k, v in overrides.items() if v is not None})

    try:
        cfg = parse_config(raw)
    except ValueError as exc:
        setup_logging()
        logging.error(f"Invalid configuration: {exc}")
        return 1

    setup_logging(cfg.log_file)
    try:
        art = run_trace_generation(args.log_file, args.trace_file, cfg)
    except (TraceInputError, TraceResourceError, TraceInvariantError, OSError) as exc:
        logging.error(f"{type(exc).__name__}: {exc}")
        return 1

    print(f"Ranks: {art.job.nprocs}")
    print(f"Total events: {art.sizing.total_events}")
    print(f"Trace: {art.trace_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
