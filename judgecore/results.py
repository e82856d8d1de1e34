"""Comparison and result assembly shared by the executors."""

from __future__ import annotations

from typing import Any, Sequence

from judgecore.models import RuntimeFailure, TestCase, TestCaseResult

ENTRY_POINT_WARNING = (
    "Code has a main() function - test cases cannot be validated automatically. "
    "Remove main() and submit only the function to validate test cases."
)
SIMPLE_RUN_NOT_VALIDATED = "Test cases are not validated in simple-run mode"
MISSING_MARKER = "No result marker was produced for this test case"


def normalize_output(text: str | None) -> str | None:
    """Trim surrounding whitespace and unify line endings."""
    if text is None:
        return None
    return str(text).replace("\r\n", "\n").replace("\r", "\n").strip()


def outputs_match(expected: str | None, actual: str | None) -> bool:
    """Exact comparison of trimmed expected and actual output."""
    if expected is None or actual is None:
        return False
    return normalize_output(expected) == normalize_output(actual)


def judge(
    tc_id: int,
    tc: TestCase,
    actual: Any = None,
    actual_serialized: str | None = None,
    error: str | None = None,
    console: list[str] | None = None,
    failure: RuntimeFailure | None = None,
    input_text: str | None = None,
) -> TestCaseResult:
    """Build a ``TestCaseResult``, deciding ``passed`` from the other fields.

    A test passes only when it produced a value without error and the
    serialized value equals the trimmed expected output, so ``passed``
    always implies ``error is None`` and ``actual_serialized == expected``.
    """
    expected = normalize_output(tc.expected_output)
    if error is not None:
        actual = None
        actual_serialized = None
    elif actual_serialized is not None:
        actual_serialized = normalize_output(actual_serialized)
    passed = error is None and outputs_match(expected, actual_serialized)
    return TestCaseResult(
        test_case_id=tc_id,
        input=tc.input if input_text is None else input_text,
        expected=expected,
        actual=actual,
        actual_serialized=actual_serialized,
        passed=passed,
        error=error,
        description=tc.description,
        console=console,
        failure=failure,
    )


def failed_results(
    test_cases: Sequence[TestCase],
    error: str,
    console: list[str] | None = None,
    failure: RuntimeFailure | None = None,
) -> list[TestCaseResult]:
    """One failed result per test case, all carrying the same error."""
    return [
        judge(i, tc, error=error, console=console, failure=failure)
        for i, tc in enumerate(test_cases, 1)
    ]
