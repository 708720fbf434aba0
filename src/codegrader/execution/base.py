"""Execution engine base types and interfaces."""

from __future__ import annotations

import asyncio
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Final

DEFAULT_TIMEOUT_MS: Final[int] = 5000


class _Missing:
    """Marker type for an expected output that was never supplied."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


class ExecutionOutcome(str, enum.Enum):
    """How a single execution ended. Exactly one applies to every result."""

    COMPLETED = "completed"
    TIMEOUT = "timeout"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class ExecutionRequest:
    """Input to one execution.

    Attributes:
        code: Untrusted source text, written to disk verbatim.
        language: Language identifier resolved through the LanguageRegistry.
        input: Optional value fed to standard input. Strings pass through,
            anything else is JSON-encoded.
        expected_output: Value the output is judged against. ``MISSING`` means
            no judgment is requested and a clean exit counts as passed.
        timeout_ms: Wall-clock budget for the compile step and the run step,
            each.
    """

    code: str
    language: str
    input: Any = None
    expected_output: Any = MISSING
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
            raise ValueError("timeout_ms must be an integer")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def has_expected_output(self) -> bool:
        """Return whether a pass/fail judgment was requested."""

        return self.expected_output is not MISSING


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one execution.

    Attributes:
        outcome: Tagged outcome describing how the execution ended.
        raw_output: Captured standard output, untrimmed.
        stderr: Captured standard error (compiler diagnostics for compile errors).
        execution_time_ms: Wall-clock run time; 0 when no run step happened.
        error_message: Human-readable failure reason, None for completed runs.
        passed: Whether the submission passed this execution.
        actual_output: Parsed or trimmed output used in the comparison, or
            None when the run did not complete.
    """

    outcome: ExecutionOutcome
    raw_output: str = ""
    stderr: str = ""
    execution_time_ms: float = 0.0
    error_message: str | None = None
    passed: bool = False
    actual_output: Any = None

    @property
    def succeeded(self) -> bool:
        """Return whether the program ran to a clean exit."""

        return self.outcome is ExecutionOutcome.COMPLETED


class CodeExecutor(ABC):
    """Abstract base class for code execution engines."""

    @abstractmethod
    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Compile and run a request and judge its output.

        Args:
            request: The code, language, input and expectation to execute.
            cancel_event: Optional event; setting it kills an in-flight run.

        Returns:
            ExecutionResult describing the tagged outcome.

        Raises:
            UnsupportedLanguageError: If the language cannot be resolved. No
                other failure escapes; they are encoded in the result.
        """
