from __future__ import annotations


class TraceInputError(ValueError):
    pass


class TraceFormatError(TraceInputError):
    pass


class TraceParseError(TraceInputError):
    def __init__(self, message: str, line_no: int | None = None):
        if line_no is not None:
            message = f"line {line_no}: {message}"
        super().__init__(message)
        self.line_no = line_no


class OutOfOrderRankError(TraceInputError):
    pass


class MissingCounterError(TraceInputError):
    pass


class TraceResourceError(RuntimeError):
    pass


class TraceInvariantError(RuntimeError):
    pass


class CapacityExceededError(TraceInvariantError):
    pass


class NegativeCounterError(TraceInvariantError):
    pass


class SizingMismatchError(TraceInvariantError):
    pass


class TraceWriteError(OSError):
    def __init__(self, message: str, bytes_written: int, expected: int):
        super().__init__(f"{message} (wrote {bytes_written} of {expected} bytes)")
        self.bytes_written = bytes_written
        self.expected = expected
