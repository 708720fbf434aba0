"""Submission grading package."""

from codegrader.grading.report import (
    GradingReport,
    TestCase,
    TestCaseResult,
    report_to_dict,
    result_to_dict,
)
from codegrader.grading.runner import GradingRunner

__all__ = [
    "GradingReport",
    "GradingRunner",
    "TestCase",
    "TestCaseResult",
    "report_to_dict",
    "result_to_dict",
]
