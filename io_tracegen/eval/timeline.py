from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd


def plot_rank_activity(frame: pd.DataFrame, out_dir: Path, max_ranks: int = 16) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / "rank_activity.png"
    io = frame[frame["kind"].isin(["READ", "WRITE"])].sort_values("start_time", kind="stable")

    plt.figure(figsize=(6, 4))
    for rank, group in list(io.groupby("rank"))[:max_ranks]:
        plt.step(group["start_time"], group["size"].cumsum(), where="post", label=f"rank {rank}")
    plt.xlabel("Time (s)")
    plt.ylabel("Cumulative bytes")
    plt.grid(alpha=0.3)
    if not io.empty:
        plt.legend(fontsize="small")
    plt.tight_layout()
    plt.savefig(out_path, dpi=160)
    plt.close()
    return out_path
