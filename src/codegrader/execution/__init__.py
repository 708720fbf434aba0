"""Execution engine package."""

from codegrader.execution.base import (
    MISSING,
    CodeExecutor,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
)
from codegrader.execution.local_exec import LocalExecutor

__all__ = [
    "MISSING",
    "CodeExecutor",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "LocalExecutor",
]
