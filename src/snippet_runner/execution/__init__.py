from .engine import ExecutionEngine
from .types import FailureKind, RawFailure, RawOutcome, WrappedProgram

__all__ = [
    "ExecutionEngine",
    "FailureKind",
    "RawFailure",
    "RawOutcome",
    "WrappedProgram",
]
