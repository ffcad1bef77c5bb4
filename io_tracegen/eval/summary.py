from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from io_tracegen.events import EventKind
from io_tracegen.trace.layout import read_trace

IO_KINDS = (int(EventKind.READ), int(EventKind.WRITE))


def trace_to_frame(path: str | Path) -> pd.DataFrame:
    header, regions = read_trace(path)
    frames = []
    for region, rows in regions.items():
        if not len(rows):
            continue
        kind = rows["kind"].astype(np.int64)
        is_io = np.isin(kind, IO_KINDS)
        frames.append(
            pd.DataFrame(
                {
                    "region": region,
                    "rank": rows["rank"].astype(np.int64),
                    "kind": [EventKind(k).name for k in kind],
                    "start_time": rows["start_time"],
                    "end_time": rows["end_time"],
                    "file_hash": rows["file_hash"],
                    "size": np.where(is_io, rows["arg0"], 0),
                    "offset": np.where(is_io, rows["arg1"], 0),
                }
            )
        )
    columns = ["region", "rank", "kind", "start_time", "end_time", "file_hash", "size", "offset"]
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)[columns]


def summarize_trace(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty:
        return pd.DataFrame(columns=["region", "kind", "events", "bytes", "first_start", "last_end"])
    return (
        frame.groupby(["region", "kind"], sort=True)
        .agg(
            events=("start_time", "size"),
            bytes=("size", "sum"),
            first_start=("start_time", "min"),
            last_end=("end_time", "max"),
        )
        .reset_index()
    )
