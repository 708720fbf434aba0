"""Sequential grading of a submission against its test cases."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Mapping

from codegrader.execution.base import (
    DEFAULT_TIMEOUT_MS,
    CodeExecutor,
    ExecutionRequest,
    ExecutionResult,
)
from codegrader.grading.report import NOT_APPLICABLE, GradingReport, TestCase, TestCaseResult
from codegrader.util.logging import get_logger
from codegrader.util.observability import (
    EventLogger,
    MetricsCollector,
    ObservabilityManager,
)

ABORT_MESSAGE = "Error executing test cases"

_LOGGER = get_logger("codegrader.grading")


class GradingRunner:
    """Run a submission through every test case and aggregate the verdicts."""

    def __init__(
        self,
        executor: CodeExecutor,
        *,
        observability: ObservabilityManager | None = None,
    ) -> None:
        """Initialize the grading runner.

        Args:
            executor: Engine used to execute each test case.
            observability: Optional event logger and metrics bundle.
        """

        self._executor = executor
        self._observability = observability or ObservabilityManager(
            events=EventLogger("codegrader.grading.events"),
            metrics=MetricsCollector(),
        )

    async def run(
        self,
        code: str,
        language: str,
        test_cases: Iterable[TestCase | Mapping[str, Any]],
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> GradingReport:
        """Grade a submission.

        Test cases run one at a time in input order; a timeout or failure in one
        case never stops the remaining ones. If the executor raises instead of
        returning a result, a synthetic failed entry is recorded, every case
        that did not run is counted as failed and the partial report is
        returned.

        Args:
            code: Submitted source code.
            language: Language identifier.
            test_cases: Test cases, as TestCase objects or mappings.
            timeout_ms: Per-execution wall-clock budget.
            cancel_event: Optional event forwarded to every execution.

        Returns:
            GradingReport with ``passed + failed == total == len(test_cases)``.
        """

        cases = [
            case if isinstance(case, TestCase) else TestCase.from_dict(case)
            for case in test_cases
        ]
        start = time.perf_counter()
        details: list[TestCaseResult] = []
        passed = 0
        failed = 0
        aborted = False

        for index, case in enumerate(cases):
            try:
                result = await self._executor.execute(
                    ExecutionRequest(
                        code=code,
                        language=language,
                        input=case.input,
                        expected_output=case.expected_output,
                        timeout_ms=timeout_ms,
                    ),
                    cancel_event=cancel_event,
                )
            except Exception as exc:
                _LOGGER.error("Error executing test cases: %s", exc)
                self._observability.log_event(
                    "grading.aborted",
                    {"language": language, "test_case_id": index, "error": str(exc)},
                    level="ERROR",
                )
                self._observability.metrics.increment("grading.aborted")
                details.append(
                    TestCaseResult(
                        test_case_id=-1,
                        input=NOT_APPLICABLE,
                        expected_output=NOT_APPLICABLE,
                        actual_output=NOT_APPLICABLE,
                        passed=False,
                        error=ABORT_MESSAGE,
                    )
                )
                failed = len(cases) - passed
                aborted = True
                break

            detail = _detail_for(index, case, result)
            details.append(detail)
            if detail.passed:
                passed += 1
            else:
                failed += 1
            self._record_case(language, detail, result)

        duration_ms = (time.perf_counter() - start) * 1000
        self._observability.metrics.record_duration("grading.total", duration_ms)
        self._observability.log_event(
            "grading.completed",
            {
                "language": language,
                "passed": passed,
                "failed": failed,
                "total": len(cases),
                "aborted": aborted,
                "duration_ms": duration_ms,
            },
        )
        return GradingReport(
            passed=passed,
            failed=failed,
            total=len(cases),
            details=details,
            aborted=aborted,
        )

    def run_sync(
        self,
        code: str,
        language: str,
        test_cases: Iterable[TestCase | Mapping[str, Any]],
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> GradingReport:
        """Run a grading from synchronous code."""

        return asyncio.run(self.run(code, language, test_cases, timeout_ms))

    def metrics_snapshot(self) -> dict[str, object]:
        """Return a snapshot of grading metrics."""

        return self._observability.metrics.snapshot()

    def _record_case(self, language: str, detail: TestCaseResult, result: ExecutionResult) -> None:
        metrics = self._observability.metrics
        metrics.increment("grading.cases")
        metrics.increment(f"grading.outcome.{result.outcome.value}")
        metrics.increment("grading.passed" if detail.passed else "grading.failed")
        if result.execution_time_ms:
            metrics.record_duration(f"execution.{language.lower()}", result.execution_time_ms)
        self._observability.log_event(
            "grading.case_finished",
            {
                "test_case_id": detail.test_case_id,
                "outcome": result.outcome.value,
                "passed": detail.passed,
                "execution_time_ms": result.execution_time_ms,
            },
        )


def _detail_for(index: int, case: TestCase, result: ExecutionResult) -> TestCaseResult:
    if result.succeeded:
        actual = result.actual_output
    else:
        actual = result.raw_output or None
    return TestCaseResult(
        test_case_id=index,
        input=case.input,
        expected_output=case.expected_output,
        actual_output=actual,
        passed=result.passed,
        execution_time_ms=result.execution_time_ms,
        error=result.error_message,
        outcome=result.outcome,
        is_hidden=case.is_hidden,
    )
