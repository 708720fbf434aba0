"""Application wiring for CLI-friendly grading."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from codegrader.config import (
    ConfigError,
    GraderConfig,
    build_language_registry,
    config_to_dict,
    load_config,
    update_timeout,
)
from codegrader.execution.base import MISSING, CodeExecutor, ExecutionRequest, ExecutionResult
from codegrader.execution.local_exec import LocalExecutor
from codegrader.grading.report import GradingReport, TestCase
from codegrader.grading.runner import GradingRunner
from codegrader.languages import LanguageRegistry
from codegrader.util.logging import get_logger
from codegrader.util.observability import ObservabilityManager, create_observability_manager


class GraderAppError(RuntimeError):
    """Raised when configuration or runtime setup fails."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for the services a grading call needs."""

    config: GraderConfig
    registry: LanguageRegistry
    executor: CodeExecutor
    runner: GradingRunner
    observability: ObservabilityManager


_LOGGER = get_logger("codegrader.app")


def initialize_config(workspace: Path) -> Path:
    """Create a default configuration file in the workspace.

    Args:
        workspace: Directory where the config should be written.

    Returns:
        Path to the generated configuration file.

    Raises:
        GraderAppError: If the config file already exists.
    """

    workspace = workspace.resolve()
    config_path = workspace / "codegrader.yaml"
    if config_path.exists():
        raise GraderAppError(
            f"Config file already exists at {config_path}. Remove it or choose another "
            "workspace."
        )
    config = GraderConfig(scratch_dir=workspace / ".codegrader-scratch")
    config_path.write_text(json.dumps(config_to_dict(config), indent=2), encoding="utf-8")
    _LOGGER.info("Initialized configuration at %s", config_path)
    return config_path


def build_runtime(
    config: GraderConfig,
    *,
    executor: CodeExecutor | None = None,
) -> RuntimeContext:
    """Build the grading services for a configuration.

    Args:
        config: Grader configuration.
        executor: Optional pre-built executor (for testing).

    Returns:
        RuntimeContext with initialized services.

    Raises:
        GraderAppError: If the configured toolchains are invalid.
    """

    try:
        registry = build_language_registry(config)
    except ConfigError as exc:
        raise GraderAppError(str(exc)) from exc
    observability = create_observability_manager()
    executor_instance = executor or LocalExecutor(
        registry,
        scratch_root=config.scratch_dir,
        env=config.executor.env,
    )
    runner = GradingRunner(executor_instance, observability=observability)
    _LOGGER.info(
        "Runtime initialized with %s languages, scratch directory %s.",
        len(registry.languages()),
        config.scratch_dir,
    )
    return RuntimeContext(
        config=config,
        registry=registry,
        executor=executor_instance,
        runner=runner,
        observability=observability,
    )


def load_runtime(
    config_path: Path | None = None,
    *,
    timeout_ms: int | None = None,
) -> RuntimeContext:
    """Load configuration from disk and build the runtime.

    Args:
        config_path: Optional config file or directory containing one.
        timeout_ms: Optional override for the configured default timeout.
    """

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise GraderAppError(str(exc)) from exc
    if timeout_ms is not None:
        config = update_timeout(config, timeout_ms)
    return build_runtime(config)


def execute_code(
    runtime: RuntimeContext,
    code: str,
    language: str,
    *,
    input_value: Any = None,
    expected_output: Any = MISSING,
    timeout_ms: int | None = None,
) -> ExecutionResult:
    """Execute a single snippet synchronously."""

    request = ExecutionRequest(
        code=code,
        language=language,
        input=input_value,
        expected_output=expected_output,
        timeout_ms=timeout_ms or runtime.config.executor.timeout_ms,
    )
    return asyncio.run(runtime.executor.execute(request))


def grade_submission(
    runtime: RuntimeContext,
    code: str,
    language: str,
    test_cases: list[TestCase],
    *,
    timeout_ms: int | None = None,
) -> GradingReport:
    """Grade a submission synchronously."""

    return runtime.runner.run_sync(
        code,
        language,
        test_cases,
        timeout_ms or runtime.config.executor.timeout_ms,
    )


def load_test_cases(path: Path) -> list[TestCase]:
    """Read test cases from a JSON file.

    The file holds either a list of test cases or an object with a
    ``testCases`` list, each entry shaped ``{input, expectedOutput, isHidden}``.

    Raises:
        GraderAppError: If the file is not valid JSON or has the wrong shape.
    """

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise GraderAppError(f"Cannot read test cases from {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("testCases", data.get("test_cases"))
    if not isinstance(data, list):
        raise GraderAppError("Test case file must contain a list of test cases.")
    try:
        return [TestCase.from_dict(item) for item in data]
    except (TypeError, ValueError, AttributeError) as exc:
        raise GraderAppError(f"Invalid test case in {path}: {exc}") from exc
