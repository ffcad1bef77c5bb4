from io_tracegen.eval.summary import summarize_trace, trace_to_frame
from io_tracegen.eval.timeline import plot_rank_activity

__all__ = ["plot_rank_activity", "summarize_trace", "trace_to_frame"]
