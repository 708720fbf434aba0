"""CLI entrypoints for codegrader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from codegrader.app import (
    GraderAppError,
    execute_code,
    grade_submission,
    initialize_config,
    load_runtime,
    load_test_cases,
)
from codegrader.execution.base import MISSING
from codegrader.grading.report import report_to_dict, result_to_dict
from codegrader.languages import UnsupportedLanguageError
from codegrader.util.logging import configure_logging

app = typer.Typer(help="Compile, run and grade code submissions.")


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (e.g., DEBUG, INFO, WARNING).",
    ),
) -> None:
    """Configure CLI-level options."""

    configure_logging(log_level)


@app.command()
def init(workspace: Path = typer.Argument(Path("."))) -> None:
    """Write a default codegrader.yaml into a workspace."""

    try:
        config_path = initialize_config(workspace)
    except GraderAppError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Created configuration at {config_path}")


@app.command("languages")
def languages_command(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file or directory."),
) -> None:
    """List the supported languages and their toolchains."""

    try:
        runtime = load_runtime(config)
    except GraderAppError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    for language_id in runtime.registry.languages():
        language = runtime.registry.resolve(language_id)
        compile_template = language.compile_command_template or "-"
        typer.echo(
            f"{language.id}\t.{language.file_extension}\t"
            f"compile: {compile_template}\trun: {language.run_command_template}"
        )


@app.command("run")
def run_command(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source file to run."),
    language: str = typer.Option(..., "--language", "-l", help="Language identifier."),
    input_text: Optional[str] = typer.Option(None, "--input", "-i", help="Text fed to stdin."),
    expected: Optional[str] = typer.Option(
        None, "--expected", "-e", help="Expected output; JSON values are compared structurally."
    ),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=1, help="Timeout in ms."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file or directory."),
) -> None:
    """Run one source file and print the execution result as JSON."""

    try:
        runtime = load_runtime(config, timeout_ms=timeout_ms)
        result = execute_code(
            runtime,
            source.read_text(encoding="utf-8"),
            language,
            input_value=input_text,
            expected_output=MISSING if expected is None else _parse_expected(expected),
        )
    except (GraderAppError, UnsupportedLanguageError) as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps(result_to_dict(result), indent=2, default=str))
    if not result.passed:
        raise typer.Exit(code=2)


@app.command("grade")
def grade_command(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Submission source file."),
    language: str = typer.Option(..., "--language", "-l", help="Language identifier."),
    tests: Path = typer.Option(..., "--tests", "-t", exists=True, help="JSON test case file."),
    points: Optional[float] = typer.Option(None, "--points", help="Assignment points for a grade."),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=1, help="Timeout in ms."),
    hide: bool = typer.Option(False, "--hide", help="Mask hidden test case contents."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file or directory."),
) -> None:
    """Grade a submission against a test case file and print the report as JSON."""

    try:
        runtime = load_runtime(config, timeout_ms=timeout_ms)
        test_cases = load_test_cases(tests)
        report = grade_submission(
            runtime,
            source.read_text(encoding="utf-8"),
            language,
            test_cases,
        )
    except GraderAppError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    payload: dict[str, Any] = report_to_dict(report, reveal_hidden=not hide)
    if points is not None:
        payload["grade"] = report.grade(points)
    typer.echo(json.dumps(payload, indent=2, default=str))


def _parse_expected(text: str) -> Any:
    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            return text
    return text
