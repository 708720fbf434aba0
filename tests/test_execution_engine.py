from __future__ import annotations

import asyncio
import logging
import shlex
import shutil
import sys
import threading
from pathlib import Path
from typing import Any

import pytest

from codegrader.execution.base import ExecutionOutcome, ExecutionRequest
from codegrader.execution.local_exec import LocalExecutor
from codegrader.execution.scratch import ScratchSpace
from codegrader.languages import LanguageConfig, LanguageRegistry, UnsupportedLanguageError

PYTHON = shlex.quote(sys.executable)

ECHO_PROGRAMS = {
    "python": "print(input())\n",
    "javascript": (
        "let data = '';\n"
        "process.stdin.on('data', (chunk) => { data += chunk; });\n"
        "process.stdin.on('end', () => { console.log(data.trim()); });\n"
    ),
    "c": (
        "#include <stdio.h>\n"
        "int main(void) { char buf[256]; if (fgets(buf, sizeof buf, stdin)) "
        "fputs(buf, stdout); return 0; }\n"
    ),
    "cpp": (
        "#include <iostream>\n#include <string>\n"
        "int main() { std::string line; std::getline(std::cin, line); "
        "std::cout << line << std::endl; return 0; }\n"
    ),
    "java": (
        "import java.util.Scanner;\n"
        "public class Main { public static void main(String[] args) { "
        "Scanner in = new Scanner(System.in); System.out.println(in.nextLine()); } }\n"
    ),
}
TOOLCHAIN_BINARIES = {
    "javascript": "node",
    "c": "gcc",
    "cpp": "g++",
    "java": "javac",
}


def _registry() -> LanguageRegistry:
    return LanguageRegistry().with_overrides(
        [
            LanguageConfig(
                id="python",
                file_extension="py",
                run_command_template=f"{PYTHON} {{source}}",
            ),
            LanguageConfig(
                id="copyshell",
                file_extension="sh",
                compile_command_template="cp {source} {binary}",
                run_command_template="sh {binary}",
            ),
            LanguageConfig(
                id="brokencc",
                file_extension="x",
                compile_command_template=(
                    f"{PYTHON} -c \"import sys; sys.stderr.write('error: expected ; near line 1'); "
                    "sys.exit(1)\""
                ),
                run_command_template="touch ran-anyway",
            ),
        ]
    )


def _executor(tmp_path: Path) -> LocalExecutor:
    return LocalExecutor(_registry(), scratch_root=tmp_path / "scratch")


def _execute(executor: LocalExecutor, **kwargs: Any):
    return asyncio.run(executor.execute(ExecutionRequest(**kwargs)))


def test_python_echo_passes(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="print(input())",
        language="python",
        input="hello",
        expected_output="hello",
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.actual_output == "hello"
    assert result.raw_output == "hello\n"
    assert result.passed is True
    assert result.error_message is None
    assert result.execution_time_ms > 0


@pytest.mark.parametrize("language", ["javascript", "c", "cpp", "java"])
def test_echo_passes_for_installed_toolchains(tmp_path: Path, language: str) -> None:
    if shutil.which(TOOLCHAIN_BINARIES[language]) is None:
        pytest.skip(f"{TOOLCHAIN_BINARIES[language]} is not installed")

    result = _execute(
        _executor(tmp_path),
        code=ECHO_PROGRAMS[language],
        language=language,
        input="hello\n",
        expected_output="hello",
        timeout_ms=30000,
    )

    assert result.outcome is ExecutionOutcome.COMPLETED, result.error_message
    assert result.actual_output == "hello"
    assert result.passed is True


@pytest.mark.parametrize(
    ("language", "binary"), [("c", "gcc"), ("cpp", "g++"), ("java", "javac")]
)
def test_syntax_error_reports_compiler_diagnostics(
    tmp_path: Path, language: str, binary: str
) -> None:
    if shutil.which(binary) is None:
        pytest.skip(f"{binary} is not installed")

    result = _execute(
        _executor(tmp_path),
        code="this is not a program {",
        language=language,
        expected_output="x",
        timeout_ms=30000,
    )

    assert result.outcome is ExecutionOutcome.COMPILE_ERROR
    assert result.passed is False
    assert result.error_message is not None
    assert result.error_message.startswith("Compilation error: ")
    assert "error" in result.error_message.lower()
    assert result.execution_time_ms == 0


def test_compile_failure_skips_run_step(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="anything",
        language="brokencc",
        expected_output="x",
    )

    assert result.outcome is ExecutionOutcome.COMPILE_ERROR
    assert result.error_message == "Compilation error: error: expected ; near line 1"
    assert result.execution_time_ms == 0
    assert result.raw_output == ""
    assert list((tmp_path / "scratch").iterdir()) == []


def test_compiled_language_runs_artifact(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="read line\necho \"got $line\"\n",
        language="copyshell",
        input="42\n",
        expected_output="got 42",
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is True


def test_timeout_kills_process(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="import time\ntime.sleep(10)\nprint('late')\n",
        language="python",
        expected_output="late",
        timeout_ms=300,
    )

    assert result.outcome is ExecutionOutcome.TIMEOUT
    assert result.passed is False
    assert result.error_message == "Execution timed out"
    assert 270 <= result.execution_time_ms < 5000


def test_clean_exit_with_background_child_completes(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="import subprocess\nsubprocess.Popen(['sleep', '20'])\nprint('ok')\n",
        language="python",
        expected_output="ok",
        timeout_ms=2000,
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is True
    assert result.error_message is None
    assert result.execution_time_ms < 2000


def test_non_zero_exit_reports_stderr(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="import sys\nsys.stderr.write('boom')\nsys.exit(1)\n",
        language="python",
        expected_output="",
    )

    assert result.outcome is ExecutionOutcome.RUNTIME_ERROR
    assert result.error_message == "boom"
    assert result.passed is False


def test_non_zero_exit_without_stderr_reports_code(tmp_path: Path) -> None:
    result = _execute(_executor(tmp_path), code="raise SystemExit(3)", language="python")

    assert result.outcome is ExecutionOutcome.RUNTIME_ERROR
    assert result.error_message == "Process exited with code 3"


def test_uncaught_exception_is_runtime_error(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="raise ValueError('bad input')",
        language="python",
        expected_output="ok",
    )

    assert result.outcome is ExecutionOutcome.RUNTIME_ERROR
    assert result.error_message is not None
    assert "ValueError: bad input" in result.error_message


def test_mismatch_is_not_an_error(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="print('abd')",
        language="python",
        expected_output="abc",
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is False
    assert result.error_message is None
    assert result.actual_output == "abd"


def test_structured_output_compared_structurally(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="print('{\"b\": 2, \"a\": 1}')",
        language="python",
        expected_output={"a": 1, "b": 2},
    )

    assert result.passed is True
    assert result.actual_output == {"a": 1, "b": 2}


def test_structured_input_is_json_encoded(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="import json, sys\nprint(json.dumps(sum(json.load(sys.stdin))))\n",
        language="python",
        input=[1, 2, 3],
        expected_output="6",
    )

    assert result.passed is True


def test_without_expected_output_clean_exit_passes(tmp_path: Path) -> None:
    result = _execute(_executor(tmp_path), code="print('anything')", language="python")

    assert result.passed is True
    assert result.actual_output == "anything"


def test_stdin_is_closed_when_no_input(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="import sys\nprint(len(sys.stdin.read()))\n",
        language="python",
        expected_output="0",
        timeout_ms=3000,
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is True


def test_program_ignoring_stdin_still_completes(tmp_path: Path) -> None:
    result = _execute(
        _executor(tmp_path),
        code="print('done')",
        language="python",
        input="x" * 500_000,
        expected_output="done",
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is True


def test_unsupported_language_raises_before_filesystem_activity(tmp_path: Path) -> None:
    executor = _executor(tmp_path)

    with pytest.raises(UnsupportedLanguageError):
        _execute(executor, code="x", language="fortran")

    assert not (tmp_path / "scratch").exists()


def test_internal_error_becomes_result(tmp_path: Path, monkeypatch: Any) -> None:
    def fail_write(self: ScratchSpace, file_name: str, code: str) -> Path:
        raise OSError("disk full")

    monkeypatch.setattr(ScratchSpace, "write_source", fail_write)

    result = _execute(_executor(tmp_path), code="print(1)", language="python")

    assert result.outcome is ExecutionOutcome.INTERNAL_ERROR
    assert result.error_message == "disk full"
    assert result.passed is False
    assert list((tmp_path / "scratch").iterdir()) == []


def test_cleanup_failure_is_logged_without_changing_result(
    tmp_path: Path, monkeypatch: Any, caplog: Any
) -> None:
    def fail_rmtree(path: Any, *args: Any, **kwargs: Any) -> None:
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("codegrader.execution.scratch.shutil.rmtree", fail_rmtree)
    caplog.set_level(logging.ERROR, logger="codegrader.execution.scratch")

    result = _execute(
        _executor(tmp_path), code="print(42)", language="python", expected_output="42"
    )

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.passed is True
    assert result.error_message is None
    assert "Error cleaning up scratch directory" in caplog.text


def test_scratch_io_runs_off_the_event_loop_thread(tmp_path: Path, monkeypatch: Any) -> None:
    loop_thread = threading.get_ident()
    seen: dict[str, int] = {}
    real_write = ScratchSpace.write_source
    real_rmtree = shutil.rmtree

    def recording_write(self: ScratchSpace, file_name: str, code: str) -> Path:
        seen["write"] = threading.get_ident()
        return real_write(self, file_name, code)

    def recording_rmtree(path: Any, *args: Any, **kwargs: Any) -> None:
        seen["cleanup"] = threading.get_ident()
        real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(ScratchSpace, "write_source", recording_write)
    monkeypatch.setattr("codegrader.execution.scratch.shutil.rmtree", recording_rmtree)

    result = _execute(
        _executor(tmp_path), code="print(1)", language="python", expected_output="1"
    )

    assert result.passed is True
    assert seen["write"] != loop_thread
    assert seen["cleanup"] != loop_thread
    assert list((tmp_path / "scratch").iterdir()) == []


def test_scratch_directory_is_empty_after_runs(tmp_path: Path) -> None:
    executor = _executor(tmp_path)

    _execute(executor, code="print(1)", language="python", expected_output="1")
    _execute(executor, code="raise SystemExit(1)", language="python")
    _execute(executor, code="import time; time.sleep(5)", language="python", timeout_ms=200)
    _execute(executor, code="x", language="brokencc")
    _execute(executor, code="echo hi", language="copyshell")

    assert list((tmp_path / "scratch").iterdir()) == []


def test_concurrent_executions_do_not_interfere(tmp_path: Path) -> None:
    executor = _executor(tmp_path)
    code = "import time\nvalue = input()\ntime.sleep(0.1)\nprint(value)\n"

    async def run_all() -> list[Any]:
        return await asyncio.gather(
            *(
                executor.execute(
                    ExecutionRequest(
                        code=code,
                        language="python",
                        input=f"job-{index}",
                        expected_output=f"job-{index}",
                    )
                )
                for index in range(6)
            )
        )

    results = asyncio.run(run_all())

    assert [result.actual_output for result in results] == [f"job-{i}" for i in range(6)]
    assert all(result.passed for result in results)
    assert list((tmp_path / "scratch").iterdir()) == []


def test_cancel_event_kills_running_process(tmp_path: Path) -> None:
    executor = _executor(tmp_path)

    async def run_and_cancel() -> Any:
        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            executor.execute(
                ExecutionRequest(
                    code="import time\ntime.sleep(10)\n",
                    language="python",
                    timeout_ms=10000,
                ),
                cancel_event=cancel_event,
            )
        )
        await asyncio.sleep(0.2)
        cancel_event.set()
        return await task

    result = asyncio.run(run_and_cancel())

    assert result.outcome is ExecutionOutcome.RUNTIME_ERROR
    assert result.error_message == "Execution cancelled"
    assert result.execution_time_ms < 5000


def test_request_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        ExecutionRequest(code="", language="python", timeout_ms=0)
