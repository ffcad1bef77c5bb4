from io_tracegen.trace.layout import TraceHeader, header_size, read_trace
from io_tracegen.trace.merge import RankTimeline, merge_sorted
from io_tracegen.trace.writer import SizingResult, TraceWriter, generate_trace, size_trace

__all__ = [
    "RankTimeline",
    "SizingResult",
    "TraceHeader",
    "TraceWriter",
    "generate_trace",
    "header_size",
    "merge_sorted",
    "read_trace",
    "size_trace",
]
