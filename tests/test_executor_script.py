"""Tests for the Python script executor (runs real child interpreters)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from judgecore.config import Config
from judgecore.errors import ToolchainNotFoundError
from judgecore.executor_script import RUNNER_SCRIPT, ScriptExecutor, _find_report
from judgecore.harness import UNSUPPORTED_FORMAT
from judgecore.models import (
    ExecutionMode,
    ExecutionRequest,
    Language,
    Limits,
    ProcessOutcome,
    RuntimeCategory,
    TestCase,
    Verdict,
)
from judgecore.results import SIMPLE_RUN_NOT_VALIDATED

LIMITS = Limits(compile_timeout_ms=5000, run_timeout_ms=2000, max_output_bytes=50 * 1024)


def _execute(code, tests, mode=ExecutionMode.FUNCTION, limits=LIMITS, config=None):
    executor = ScriptExecutor(config or Config())
    request = ExecutionRequest(code=code, language=Language.PYTHON, test_cases=tuple(tests))
    return executor.execute(request, mode, limits)


class TestFunctionMode:
    def test_multiple_tests(self):
        code = "def add(a, b):\n    return a + b\n"
        result = _execute(code, [TestCase("add(2, 3)", "5"), TestCase("add(-1, 1)", "0")])
        assert [r.passed for r in result.results] == [True, True]
        assert result.results[0].actual == 5
        assert result.results[0].actual_serialized == "5"
        assert result.verdict is Verdict.ACCEPTED

    def test_wrong_answer(self):
        result = _execute("def add(a, b):\n    return a - b\n", [TestCase("add(2, 3)", "5")])
        assert not result.results[0].passed
        assert result.results[0].error is None
        assert result.results[0].actual_serialized == "-1"
        assert result.verdict is Verdict.WRONG_ANSWER

    def test_json_serialization(self):
        code = "def f():\n    return [1, None, True, {'a': 'b'}]\n\ndef g():\n    return 'text'\n"
        result = _execute(code, [TestCase("f()", '[1,null,true,{"a":"b"}]'), TestCase("g()", "text")])
        assert result.results[0].passed
        assert result.results[0].actual == [1, None, True, {"a": "b"}]
        assert result.results[1].passed

    def test_non_json_value_falls_back_to_str(self):
        result = _execute("def f():\n    return {1, 2}\n", [TestCase("f()", "{1, 2}")])
        assert result.results[0].actual_serialized == "{1, 2}"
        assert result.results[0].passed

    def test_bare_arguments(self):
        result = _execute("def add(a, b):\n    return a + b\n", [TestCase("2, 3", "5")])
        assert result.results[0].passed
        assert result.results[0].input == "add(2, 3)"

    def test_unsupported_format(self):
        result = _execute("x = 1\n", [TestCase("2 3", "5")])
        assert result.results[0].error == UNSUPPORTED_FORMAT
        assert result.results[0].failure is None

    def test_per_test_exception_is_isolated(self):
        code = "def div(a, b):\n    return a // b\n"
        result = _execute(code, [TestCase("div(1, 0)", "0"), TestCase("div(4, 2)", "2")])
        first, second = result.results
        assert first.error.startswith("ZeroDivisionError")
        assert first.failure.category is RuntimeCategory.ARITHMETIC_EXCEPTION
        assert second.passed
        assert result.verdict is Verdict.RUNTIME_ERROR

    def test_per_test_timeout(self):
        code = "def spin(n):\n    while n:\n        pass\n\ndef ok():\n    return 1\n"
        limits = Limits(compile_timeout_ms=5000, run_timeout_ms=200, max_output_bytes=1024)
        result = _execute(code, [TestCase("spin(1)", "1"), TestCase("ok()", "1")], limits=limits)
        assert result.results[0].error == "Timeout after 200ms"
        assert result.results[0].failure.category is RuntimeCategory.TIMEOUT
        assert result.results[1].passed
        assert result.timed_out

    def test_console_capture(self):
        code = "import sys\n\ndef f(x):\n    print('seen', x)\n    print('oops', file=sys.stderr)\n    return x\n"
        result = _execute(code, [TestCase("f(1)", "1")])
        assert result.results[0].passed
        assert result.results[0].console == ["seen 1", "[error] oops"]

    def test_console_keeps_most_recent_lines(self):
        code = "def f():\n    for i in range(10):\n        print(i)\n    return 0\n"
        result = _execute(code, [TestCase("f()", "0")], config=Config(max_console_lines=3))
        assert result.results[0].console == ["7", "8", "9"]

    def test_console_is_per_test(self):
        code = "print('loading')\n\ndef f(x):\n    print('call', x)\n    return x\n"
        result = _execute(code, [TestCase("f(1)", "1"), TestCase("f(2)", "2")])
        assert [r.console for r in result.results] == [["call 1"], ["call 2"]]
        assert result.raw_stdout == "loading\ncall 1\ncall 2"

    def test_chatty_tests_still_report(self):
        code = "def f():\n    for _ in range(50):\n        print('x' * 8000)\n    return 1\n"
        result = _execute(code, [TestCase("f()", "1")] * 60)
        assert all(r.passed for r in result.results)
        assert result.runtime_error is None
        assert result.verdict is Verdict.ACCEPTED

    def test_console_bounded_by_output_bytes(self):
        code = "def f():\n    print('y' * 200_000)\n    print('tail')\n    return 1\n"
        limits = Limits(compile_timeout_ms=5000, run_timeout_ms=2000, max_output_bytes=1024)
        result = _execute(code, [TestCase("f()", "1")], limits=limits)
        console = result.results[0].console
        assert result.results[0].passed
        assert sum(len(line.encode()) for line in console) <= 1024
        assert console[-1] == "tail"
        assert len(result.raw_stdout.encode()) <= 1024 + len(console)

    def test_exports_names_available(self):
        code = "module['exports']['x'] = 1\nexports['y'] = 2\n\ndef f():\n    return module['exports']['x'] + exports['y']\n"
        assert _execute(code, [TestCase("f()", "3")]).results[0].passed

    def test_fresh_namespace_per_request(self):
        _execute("STATE = 41\ndef f():\n    return STATE\n", [TestCase("f()", "41")])
        result = _execute("def f():\n    return STATE\n", [TestCase("f()", "41")])
        assert result.results[0].error.startswith("NameError")


class TestLoadErrors:
    def test_syntax_error(self):
        result = _execute("def add(a, b)\n    return a + b\n", [TestCase("add(1, 2)", "3"), TestCase("add(2, 2)", "4")])
        assert result.load_error.startswith("SyntaxError")
        assert all(r.error == result.results[0].error for r in result.results)
        assert result.results[0].error.startswith("Load error: SyntaxError")
        assert result.verdict is Verdict.LOAD_ERROR

    def test_load_error_keeps_console(self):
        result = _execute("print('before')\nraise RuntimeError('bad')\n", [TestCase("f()", "1")])
        assert result.load_error == "RuntimeError: bad"
        assert result.results[0].console == ["before"]

    def test_load_timeout(self):
        limits = Limits(compile_timeout_ms=5000, run_timeout_ms=200, max_output_bytes=1024)
        result = _execute("while True:\n    pass\n", [TestCase("f()", "1")], limits=limits)
        assert result.load_error == "Timeout after 200ms"
        assert result.timed_out

    def test_sanitized_exit_does_not_kill_runner(self):
        result = _execute("def f():\n    return 1\nexit(3)\n", [TestCase("f()", "1")])
        assert result.results[0].passed


class TestStdioMode:
    def test_sum(self):
        code = 'if __name__ == "__main__":\n    a, b = map(int, input().split())\n    print(a + b)\n'
        result = _execute(code, [TestCase("2 3", "5"), TestCase("10 -4", "6")], mode=ExecutionMode.STDIO)
        assert [r.passed for r in result.results] == [True, True]
        assert result.results[0].actual == "5"

    def test_runtime_error(self):
        code = "print(1 // int(input()))\n"
        result = _execute(code, [TestCase("0", "0"), TestCase("1", "1")], mode=ExecutionMode.STDIO)
        assert result.results[0].error.startswith("Runtime error (exit code 1)")
        assert result.results[0].failure.category is RuntimeCategory.ARITHMETIC_EXCEPTION
        assert result.results[1].passed

    def test_syntax_error(self):
        result = _execute("print(", [TestCase("", "")], mode=ExecutionMode.STDIO)
        assert result.load_error
        assert not result.results[0].passed

    def test_timeout(self):
        limits = Limits(compile_timeout_ms=5000, run_timeout_ms=300, max_output_bytes=1024)
        result = _execute("while True:\n    pass\n", [TestCase("", "1")], mode=ExecutionMode.STDIO, limits=limits)
        assert result.timed_out
        assert result.results[0].error == "Runtime timeout after 300ms"


class TestSimpleRun:
    def test_raw_output(self):
        result = ScriptExecutor(Config()).run("print('hi')\nprint(input())\n", Language.PYTHON, "there\n", LIMITS)
        assert result.raw_stdout == "hi\nthere\n"
        assert result.runtime_error is None
        assert result.mode is ExecutionMode.SIMPLE

    def test_runtime_error(self):
        result = ScriptExecutor(Config()).run("raise KeyError('k')\n", Language.PYTHON, "", LIMITS)
        assert "KeyError" in result.runtime_error
        assert result.runtime_failure is not None

    def test_tests_not_validated(self):
        result = _execute("print(5)\n", [TestCase("", "5")], mode=ExecutionMode.SIMPLE)
        assert result.results[0].error == SIMPLE_RUN_NOT_VALIDATED
        assert result.results[0].console == ["5"]
        assert result.verdict is Verdict.NOT_VALIDATED


def test_missing_interpreter():
    config = Config(python_executable="/nonexistent/python-xyz")
    with pytest.raises(ToolchainNotFoundError):
        _execute("def f():\n    return 1\n", [TestCase("f()", "1")], config=config)


def test_crashed_runner_reports_every_test():
    with patch("judgecore.executor_script.run_process") as mock_run:
        mock_run.return_value = ProcessOutcome(stdout="", stderr="Killed", exit_code=-9, signal_number=9)
        result = _execute("def f():\n    return 1\n", [TestCase("f()", "1"), TestCase("f()", "1")])
    assert result.runtime_error == "Runtime error (exit code -9): Killed"
    assert [r.error for r in result.results] == [result.runtime_error] * 2


def test_find_report_ignores_user_lines():
    stdout = "noise\n__JUDGE_REPORT__:{\"results\": []}\n"
    assert _find_report(stdout) == {"results": []}
    assert _find_report("no report") is None


def test_runner_script_is_valid_python():
    compile(RUNNER_SCRIPT, "<runner>", "exec")


def test_clean_exit_without_report_is_not_runtime_error():
    with patch("judgecore.executor_script.run_process") as mock_run:
        mock_run.return_value = ProcessOutcome(stdout="partial output", stderr="", exit_code=0)
        result = _execute("def f():\n    return 1\n", [TestCase("f()", "1")])
    assert result.runtime_error is None
    assert result.system_error == "System error: test runner exited without producing a report"
    assert result.results[0].error == result.system_error
    assert result.verdict is Verdict.SYSTEM_ERROR


def test_report_budget_grows_with_tests_and_output_limit():
    with patch("judgecore.executor_script.run_process") as mock_run:
        mock_run.return_value = ProcessOutcome(stdout="", stderr="", exit_code=-9, signal_number=9)
        _execute("def f():\n    return 1\n", [TestCase("f()", "1")] * 3)
    payload = json.loads(mock_run.call_args.kwargs["stdin"])
    assert payload["max_output_bytes"] == LIMITS.max_output_bytes
    assert mock_run.call_args.kwargs["max_output_bytes"] > 4 * LIMITS.max_output_bytes


def test_runner_crash_carries_runtime_report():
    with patch("judgecore.executor_script.run_process") as mock_run:
        mock_run.return_value = ProcessOutcome(stdout="", stderr="Segmentation fault", exit_code=-11, signal_number=11)
        result = _execute("def f():\n    return 1\n", [TestCase("f()", "1")])
    assert result.runtime_failure.category is RuntimeCategory.SEGMENTATION_VIOLATION
    assert result.runtime_report.startswith(result.runtime_failure.localized_message)
    assert "Common causes:" in result.runtime_report
    assert result.diagnostics[0].line is None
