"""Data models for judgecore."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from judgecore.errors import UnsupportedLanguageError


class Language(enum.Enum):
    PYTHON = "python"
    C = "c"
    CPP = "cpp"

    @property
    def is_native(self) -> bool:
        return self is not Language.PYTHON

    @property
    def source_suffix(self) -> str:
        return {Language.PYTHON: ".py", Language.C: ".c", Language.CPP: ".cpp"}[self]

    @property
    def display_name(self) -> str:
        return {Language.PYTHON: "Python", Language.C: "C", Language.CPP: "C++"}[self]

    @classmethod
    def parse(cls, value: str | Language) -> Language:
        if isinstance(value, Language):
            return value
        key = (value or "").strip().lower()
        language = _LANGUAGE_ALIASES.get(key)
        if language is None:
            supported = ", ".join(sorted(_LANGUAGE_ALIASES))
            raise UnsupportedLanguageError(f"Language '{value}' is not supported. Supported: {supported}")
        return language


_LANGUAGE_ALIASES = {
    "python": Language.PYTHON,
    "python3": Language.PYTHON,
    "py": Language.PYTHON,
    "c": Language.C,
    "cpp": Language.CPP,
    "c++": Language.CPP,
    "cxx": Language.CPP,
}


class ExecutionMode(enum.Enum):
    FUNCTION = "function"
    STDIO = "stdio"
    SIMPLE = "simple"

    @classmethod
    def parse(cls, value: str | ExecutionMode | None) -> ExecutionMode | None:
        if value is None or isinstance(value, ExecutionMode):
            return value
        key = value.strip().lower()
        if not key:
            return None
        if key in ("function", "function-invocation", "function_invocation"):
            return cls.FUNCTION
        if key == "stdio":
            return cls.STDIO
        if key in ("simple", "simple-run", "simple_run"):
            return cls.SIMPLE
        raise ValueError(f"Unknown execution mode: {value!r}")


@dataclass(frozen=True)
class Limits:
    compile_timeout_ms: int
    run_timeout_ms: int
    max_output_bytes: int


@dataclass(frozen=True)
class TestCase:
    __test__ = False  # not a pytest class

    input: str
    expected_output: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ExecutionRequest:
    code: str
    language: Language
    test_cases: tuple[TestCase, ...] = ()
    mode: ExecutionMode | None = None
    limits: Limits | None = None


@dataclass
class ProcessOutcome:
    """Raw outcome of one bounded subprocess run."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    signal_number: int | None = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class Severity(enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass(frozen=True)
class CompileDiagnostic:
    line: int | None
    column: int | None
    end_column: int | None
    severity: Severity
    raw_message: str
    localized_message: str
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "column": self.column,
            "end_column": self.end_column,
            "severity": self.severity.value,
            "message_raw": self.raw_message,
            "message": self.localized_message,
            "suggestion": self.suggestion,
        }


class RuntimeCategory(enum.Enum):
    TIMEOUT = "timeout"
    SEGMENTATION_VIOLATION = "segmentation-violation"
    ARITHMETIC_EXCEPTION = "arithmetic-exception"
    ABNORMAL_TERMINATION = "abnormal-termination"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RuntimeFailure:
    category: RuntimeCategory
    raw_message: str
    localized_message: str
    hints: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message_raw": self.raw_message,
            "message": self.localized_message,
            "hints": list(self.hints),
        }


@dataclass
class TestCaseResult:
    __test__ = False

    test_case_id: int
    input: str
    expected: str | None
    actual: Any = None
    actual_serialized: str | None = None
    passed: bool = False
    error: str | None = None
    description: str | None = None
    console: list[str] | None = None
    failure: RuntimeFailure | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "test_case_id": self.test_case_id,
            "input": self.input,
            "expected": self.expected,
            "actual": self.actual,
            "actual_serialized": self.actual_serialized,
            "passed": self.passed,
            "error": self.error,
            "description": self.description,
        }
        if self.console is not None:
            data["console"] = list(self.console)
        if self.failure is not None:
            data["failure"] = self.failure.to_dict()
        return data


class Verdict(enum.Enum):
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    TIMEOUT = "timeout"
    LOAD_ERROR = "load_error"
    SYSTEM_ERROR = "system_error"
    NOT_VALIDATED = "not_validated"


@dataclass
class ExecutionResult:
    success: bool
    results: list[TestCaseResult] = field(default_factory=list)
    compile_error: str | None = None
    runtime_error: str | None = None
    system_error: str | None = None
    load_error: str | None = None
    timed_out: bool = False
    raw_stdout: str | None = None
    mode: ExecutionMode | None = None
    diagnostics: list[CompileDiagnostic] = field(default_factory=list)
    runtime_failure: RuntimeFailure | None = None
    entry_point_warning: bool = False
    compile_report: str | None = None
    diagnostics_summary: str | None = None
    runtime_report: str | None = None

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def score(self) -> int:
        """Percentage of passed test cases, rounded to an integer."""
        if not self.results:
            return 0
        return round(self.passed_count * 100 / len(self.results))

    @property
    def verdict(self) -> Verdict:
        if self.system_error:
            return Verdict.SYSTEM_ERROR
        if self.compile_error:
            return Verdict.COMPILE_ERROR
        if self.load_error:
            return Verdict.LOAD_ERROR
        if self.entry_point_warning:
            return Verdict.NOT_VALIDATED
        if self.mode is ExecutionMode.SIMPLE and self.results and not (self.runtime_error or self.timed_out):
            return Verdict.NOT_VALIDATED
        if self.results and self.passed_count == len(self.results):
            return Verdict.ACCEPTED
        if self.timed_out:
            return Verdict.TIMEOUT
        if self.runtime_error or any(r.failure is not None for r in self.results):
            return Verdict.RUNTIME_ERROR
        if not self.results:
            return Verdict.ACCEPTED if self.success else Verdict.SYSTEM_ERROR
        return Verdict.WRONG_ANSWER

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "compile_error": self.compile_error,
            "runtime_error": self.runtime_error,
            "system_error": self.system_error,
            "load_error": self.load_error,
            "timed_out": self.timed_out,
            "raw_stdout": self.raw_stdout,
            "mode": self.mode.value if self.mode else None,
            "verdict": self.verdict.value,
            "score": self.score,
            "entry_point_warning": self.entry_point_warning,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "diagnostics_summary": self.diagnostics_summary,
            "compile_report": self.compile_report,
            "runtime_report": self.runtime_report,
            "runtime_failure": self.runtime_failure.to_dict() if self.runtime_failure else None,
            "results": [r.to_dict() for r in self.results],
        }


def _first(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def test_case_from_dict(data: dict) -> TestCase:
    expected = _first(data, "output", "expected", "expected_output")
    description = data.get("description")
    return TestCase(
        input="" if data.get("input") is None else str(data["input"]),
        expected_output=None if expected is None else str(expected),
        description=None if description is None else str(description),
    )


def request_from_dict(payload: dict) -> ExecutionRequest:
    """Parse the external input contract into an ``ExecutionRequest``."""
    if not isinstance(payload, dict):
        raise ValueError("Execution request must be a JSON object")
    code = payload.get("code")
    if not isinstance(code, str):
        raise ValueError("'code' is required and must be a string")
    if not isinstance(payload.get("language"), (str, Language)) or not payload["language"]:
        raise ValueError("'language' is required and must be a string")
    language = Language.parse(payload["language"])
    raw_mode = payload.get("mode")
    if raw_mode is not None and not isinstance(raw_mode, (str, ExecutionMode)):
        raise ValueError("'mode' must be a string")
    mode = ExecutionMode.parse(raw_mode)

    raw_cases = _first(payload, "testCases", "test_cases", default=[])
    if not isinstance(raw_cases, list):
        raise ValueError("'testCases' must be a list")
    for index, tc in enumerate(raw_cases):
        if not isinstance(tc, dict):
            raise ValueError(f"Test case {index + 1} must be an object")
    test_cases = tuple(test_case_from_dict(tc) for tc in raw_cases)

    limits = None
    raw_limits = payload.get("limits")
    if raw_limits is not None and not isinstance(raw_limits, dict):
        raise ValueError("'limits' must be an object")
    if raw_limits:
        limits = Limits(
            compile_timeout_ms=int(_first(raw_limits, "compileTimeout", "compile_timeout_ms", default=0)),
            run_timeout_ms=int(_first(raw_limits, "runTimeout", "run_timeout_ms", default=0)),
            max_output_bytes=int(_first(raw_limits, "maxOutputBytes", "max_output_bytes", default=0)),
        )
    return ExecutionRequest(code=code, language=language, test_cases=test_cases, mode=mode, limits=limits)
