"""Grading data types and their wire representations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from codegrader.execution.base import MISSING, ExecutionOutcome, ExecutionResult

NOT_APPLICABLE = "N/A"
HIDDEN_PLACEHOLDER = "hidden"


@dataclass(frozen=True)
class TestCase:
    """One (input, expected output) pair used to judge a submission.

    Attributes:
        input: Value fed to standard input.
        expected_output: Value the program output must match.
        is_hidden: Whether students may see the case contents.
    """

    __test__ = False

    input: Any
    expected_output: Any
    is_hidden: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> TestCase:
        """Build a test case from a camelCase or snake_case mapping.

        Raises:
            ValueError: If the mapping has no expected output.
        """

        if "expectedOutput" in raw:
            expected = raw["expectedOutput"]
        elif "expected_output" in raw:
            expected = raw["expected_output"]
        else:
            raise ValueError("Test case requires 'expectedOutput'.")
        hidden = raw.get("isHidden", raw.get("is_hidden", False))
        return cls(input=raw.get("input"), expected_output=expected, is_hidden=bool(hidden))


@dataclass(frozen=True)
class TestCaseResult:
    """Outcome of running a submission against one test case.

    A ``test_case_id`` of -1 marks the synthetic entry recorded when the
    grading run aborted.
    """

    __test__ = False

    test_case_id: int
    input: Any
    expected_output: Any
    actual_output: Any
    passed: bool
    execution_time_ms: float | None = None
    error: str | None = None
    outcome: ExecutionOutcome | None = None
    is_hidden: bool = False


@dataclass(frozen=True)
class GradingReport:
    """Aggregate pass/fail counts for one submission.

    Attributes:
        passed: Number of passing test cases.
        failed: Number of failing test cases.
        total: Number of test cases supplied.
        details: Per-case results in input order.
        aborted: Whether the run stopped early on an executor fault.
    """

    passed: int
    failed: int
    total: int
    details: list[TestCaseResult] = field(default_factory=list)
    aborted: bool = False

    def grade(self, points: float) -> float:
        """Return the score out of ``points``, rounded to two decimals."""

        if self.total == 0:
            return 0.0
        return round(self.passed / self.total * points, 2)


def result_to_dict(result: ExecutionResult) -> dict[str, Any]:
    """Serialize a single execution into its JSON-compatible response shape."""

    return {
        "output": result.raw_output,
        "executionTimeMs": result.execution_time_ms,
        "error": result.error_message,
        "passed": result.passed,
        "actualOutput": result.actual_output,
        "outcome": result.outcome.value,
    }


def report_to_dict(report: GradingReport, *, reveal_hidden: bool = True) -> dict[str, Any]:
    """Serialize a grading report into its JSON-compatible response shape.

    Args:
        report: Report to serialize.
        reveal_hidden: When False, inputs and expected outputs of hidden test
            cases are replaced with a placeholder.
    """

    return {
        "passed": report.passed,
        "failed": report.failed,
        "total": report.total,
        "details": [_detail_to_dict(detail, reveal_hidden) for detail in report.details],
    }


def _detail_to_dict(detail: TestCaseResult, reveal_hidden: bool) -> dict[str, Any]:
    masked = detail.is_hidden and not reveal_hidden
    expected = None if detail.expected_output is MISSING else detail.expected_output
    payload: dict[str, Any] = {
        "testCaseId": detail.test_case_id,
        "input": HIDDEN_PLACEHOLDER if masked else detail.input,
        "expectedOutput": HIDDEN_PLACEHOLDER if masked else expected,
        "actualOutput": detail.actual_output,
        "passed": detail.passed,
    }
    if detail.execution_time_ms is not None:
        payload["executionTimeMs"] = detail.execution_time_ms
    if detail.error is not None:
        payload["error"] = detail.error
    return payload
