"""Compile, run and grade untrusted code submissions against test cases."""

from codegrader.execution.base import (
    MISSING,
    CodeExecutor,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
)
from codegrader.execution.local_exec import LocalExecutor
from codegrader.grading.report import GradingReport, TestCase, TestCaseResult
from codegrader.grading.runner import GradingRunner
from codegrader.languages import LanguageConfig, LanguageRegistry, UnsupportedLanguageError

__all__ = [
    "MISSING",
    "CodeExecutor",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "GradingReport",
    "GradingRunner",
    "LanguageConfig",
    "LanguageRegistry",
    "LocalExecutor",
    "TestCase",
    "TestCaseResult",
    "UnsupportedLanguageError",
]
