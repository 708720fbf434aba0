"""Local execution engine implementation."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

from codegrader.execution.base import (
    CodeExecutor,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
)
from codegrader.execution.comparison import (
    outputs_match,
    parse_actual_output,
    serialize_input,
)
from codegrader.execution.process import run_shell
from codegrader.execution.scratch import ScratchSpace
from codegrader.languages import LanguageConfig, LanguageRegistry
from codegrader.util.logging import get_logger

TIMEOUT_MESSAGE = "Execution timed out"
CANCELLED_MESSAGE = "Execution cancelled"
COMPILE_TIMEOUT_MESSAGE = "Compilation timed out"


def default_scratch_root() -> Path:
    """Return the scratch directory used when none is configured."""

    return Path(tempfile.gettempdir()) / "codegrader"


class LocalExecutor(CodeExecutor):
    """Compile and run submissions as child processes on the local host.

    Each execution gets its own uniquely named scratch directory, so instances
    are safe to share between concurrently running gradings. There is no
    sandboxing beyond the process boundary.
    """

    def __init__(
        self,
        registry: LanguageRegistry | None = None,
        scratch_root: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            registry: Toolchain table. Defaults to the built-in languages.
            scratch_root: Directory under which scratch directories are created.
            env: Extra environment variables merged over the host environment.
        """

        self._registry = registry or LanguageRegistry()
        self._scratch_root = (scratch_root or default_scratch_root()).resolve()
        self._env = dict(env or {})
        self._logger = get_logger(self.__class__.__name__)

    @property
    def registry(self) -> LanguageRegistry:
        return self._registry

    @property
    def scratch_root(self) -> Path:
        return self._scratch_root

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Compile and run a request locally and judge its output.

        Args:
            request: The code, language, input and expectation to execute.
            cancel_event: Optional event; setting it kills an in-flight run.

        Returns:
            ExecutionResult describing the tagged outcome.

        Raises:
            UnsupportedLanguageError: If the language cannot be resolved.
        """

        language = self._registry.resolve(request.language)
        try:
            async with ScratchSpace(self._scratch_root) as scratch:
                return await self._execute_in(scratch, language, request, cancel_event)
        except Exception as exc:
            self._logger.exception("Internal error while executing %s code", language.id)
            return ExecutionResult(
                outcome=ExecutionOutcome.INTERNAL_ERROR,
                error_message=str(exc) or "Unknown error occurred",
            )

    async def _execute_in(
        self,
        scratch: ScratchSpace,
        language: LanguageConfig,
        request: ExecutionRequest,
        cancel_event: asyncio.Event | None,
    ) -> ExecutionResult:
        source_path = await asyncio.to_thread(
            scratch.write_source, language.source_name(scratch.execution_id), request.code
        )
        env = self._child_env()

        compile_command = language.compile_command(source_path)
        if compile_command is not None:
            self._logger.debug("Compiling %s: %s", scratch.execution_id, compile_command)
            compiled = await run_shell(
                compile_command,
                cwd=scratch.path,
                timeout_ms=request.timeout_ms,
                env=env,
                cancel_event=cancel_event,
            )
            if compiled.timed_out or compiled.cancelled or compiled.exit_code != 0:
                if compiled.timed_out:
                    detail = COMPILE_TIMEOUT_MESSAGE
                elif compiled.cancelled:
                    detail = CANCELLED_MESSAGE
                else:
                    detail = compiled.stderr.strip() or (
                        f"Compiler exited with code {compiled.exit_code}"
                    )
                self._logger.info("Compilation failed for %s", scratch.execution_id)
                return ExecutionResult(
                    outcome=ExecutionOutcome.COMPILE_ERROR,
                    stderr=compiled.stderr,
                    error_message=f"Compilation error: {detail}",
                )

        run_command = language.run_command(source_path)
        self._logger.debug("Running %s: %s", scratch.execution_id, run_command)
        run = await run_shell(
            run_command,
            cwd=scratch.path,
            timeout_ms=request.timeout_ms,
            stdin_data=serialize_input(request.input),
            env=env,
            cancel_event=cancel_event,
        )
        self._logger.info(
            "Execution %s finished with exit code %s in %.2fms.",
            scratch.execution_id,
            run.exit_code,
            run.duration_ms,
        )

        if run.timed_out:
            return ExecutionResult(
                outcome=ExecutionOutcome.TIMEOUT,
                raw_output=run.stdout,
                stderr=run.stderr,
                execution_time_ms=run.duration_ms,
                error_message=TIMEOUT_MESSAGE,
            )
        if run.cancelled:
            return ExecutionResult(
                outcome=ExecutionOutcome.RUNTIME_ERROR,
                raw_output=run.stdout,
                stderr=run.stderr,
                execution_time_ms=run.duration_ms,
                error_message=CANCELLED_MESSAGE,
            )
        if run.exit_code != 0:
            return ExecutionResult(
                outcome=ExecutionOutcome.RUNTIME_ERROR,
                raw_output=run.stdout,
                stderr=run.stderr,
                execution_time_ms=run.duration_ms,
                error_message=run.stderr or f"Process exited with code {run.exit_code}",
            )

        if request.has_expected_output:
            passed, actual = outputs_match(run.stdout, request.expected_output)
        else:
            passed, actual = True, parse_actual_output(run.stdout)
        return ExecutionResult(
            outcome=ExecutionOutcome.COMPLETED,
            raw_output=run.stdout,
            stderr=run.stderr,
            execution_time_ms=run.duration_ms,
            passed=passed,
            actual_output=actual,
        )

    def _child_env(self) -> dict[str, str] | None:
        if not self._env:
            return None
        merged_env = os.environ.copy()
        merged_env.update(self._env)
        return merged_env
