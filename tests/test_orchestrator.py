"""Tests for the orchestrator: dispatch, limits and fault containment."""

from __future__ import annotations

import os
import shutil
from unittest.mock import patch

import pytest

from judgecore.config import Config
from judgecore.errors import WorkspaceError
from judgecore.models import (
    ExecutionMode,
    ExecutionRequest,
    ExecutionResult,
    Language,
    Limits,
    TestCase,
    TestCaseResult,
    Verdict,
)
from judgecore.orchestrator import Orchestrator, execute_payload

needs_gcc = pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
needs_gxx = pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")


@pytest.fixture
def orchestrator(tmp_path):
    return Orchestrator(Config(workspace_root=str(tmp_path), script_timeout_ms=2000))


class TestLimits:
    def test_defaults_when_missing(self, orchestrator):
        assert orchestrator.resolve_limits(Language.C, None) == orchestrator.config.default_limits(Language.C)

    def test_zero_means_default(self, orchestrator):
        limits = orchestrator.resolve_limits(Language.C, Limits(0, 200, 0))
        assert limits.run_timeout_ms == 200
        assert limits.compile_timeout_ms == orchestrator.config.compile_timeout_ms
        assert limits.max_output_bytes == orchestrator.config.max_output_bytes


class TestFaultContainment:
    def test_executor_exception_becomes_system_error(self, orchestrator):
        request = ExecutionRequest("int f(){return 1;}", Language.C, (TestCase("f()", "1"), TestCase("f()", "1")))
        with patch("judgecore.orchestrator.create_executor") as factory:
            factory.return_value.execute.side_effect = WorkspaceError("disk full")
            result = orchestrator.execute(request)
        assert not result.success
        assert result.system_error == "System error: disk full"
        assert [r.error for r in result.results] == ["System error: disk full"] * 2
        assert result.verdict is Verdict.SYSTEM_ERROR

    def test_missing_compiler_is_system_error(self, tmp_path):
        orchestrator = Orchestrator(Config(cpp_compiler="no-such-compiler-xyz", workspace_root=str(tmp_path)))
        request = ExecutionRequest("int f(){return 1;}", Language.CPP, (TestCase("f()", "1"),))
        result = orchestrator.execute(request)
        assert result.system_error
        assert "no-such-compiler-xyz" in result.system_error
        assert len(result.results) == 1
        assert os.listdir(tmp_path) == []

    def test_run_system_error(self, orchestrator):
        with patch("judgecore.orchestrator.create_executor") as factory:
            factory.return_value.run.side_effect = RuntimeError("bug")
            result = orchestrator.run("x", Language.PYTHON)
        assert result.system_error == "System error: bug"
        assert result.results == []


class TestDispatch:
    def test_mode_detection_and_explicit_override(self, orchestrator):
        with patch("judgecore.orchestrator.create_executor") as factory:
            factory.return_value.execute.return_value = ExecutionResult(success=True)
            orchestrator.execute(ExecutionRequest("int main(){}", Language.C, (TestCase("1", "1"),)))
            orchestrator.execute(
                ExecutionRequest("int main(){}", Language.C, (TestCase("1", "1"),), mode=ExecutionMode.SIMPLE)
            )
        modes = [c.args[1] for c in factory.return_value.execute.call_args_list]
        assert modes == [ExecutionMode.STDIO, ExecutionMode.SIMPLE]

    def test_results_normalized(self, orchestrator):
        returned = ExecutionResult(
            success=True,
            results=[
                TestCaseResult(test_case_id=2, input="b", expected="2", passed=True),
                TestCaseResult(test_case_id=7, input="x", expected="x"),
            ],
        )
        request = ExecutionRequest("def f(): pass", Language.PYTHON, (TestCase("a", "1"), TestCase("b", "2")))
        with patch("judgecore.orchestrator.create_executor") as factory:
            factory.return_value.execute.return_value = returned
            result = orchestrator.execute(request)
        assert [r.test_case_id for r in result.results] == [1, 2]
        assert not result.results[0].passed
        assert result.results[0].error
        assert result.results[1].passed


class TestScenarios:
    @needs_gcc
    def test_stdio_success(self, orchestrator):
        code = '#include <stdio.h>\nint main(void) { int a, b; scanf("%d %d", &a, &b); printf("%d\\n", a + b); return 0; }\n'
        result = orchestrator.execute(ExecutionRequest(code, Language.C, (TestCase("2 3", "5"),)))
        assert result.mode is ExecutionMode.STDIO
        assert result.results[0].passed
        assert result.results[0].actual == "5"

    @needs_gcc
    def test_compile_error(self, orchestrator):
        code = "#include <stdio.h>\nint main(void) { printf(\"x\") return 0; }\n"
        result = orchestrator.execute(ExecutionRequest(code, Language.C, (TestCase("", "x"), TestCase("", "y"))))
        assert result.compile_error
        assert [r.passed for r in result.results] == [False, False]

    @needs_gxx
    def test_function_invocation(self, orchestrator):
        code = "int add(int a, int b) { return a + b; }\n"
        tests = (TestCase("add(2,3)", "5"), TestCase("add(-1,1)", "0"))
        result = orchestrator.execute(ExecutionRequest(code, Language.CPP, tests))
        assert result.mode is ExecutionMode.FUNCTION
        assert all(r.passed for r in result.results)
        assert result.score == 100

    @needs_gcc
    def test_timeout(self, orchestrator):
        code = "int main(void) { for (;;) {} return 0; }\n"
        request = ExecutionRequest(code, Language.C, (TestCase("", ""),), limits=Limits(0, 200, 0))
        result = orchestrator.execute(request)
        assert result.timed_out
        assert "timeout" in result.results[0].error.lower()

    def test_script_load_error(self, orchestrator):
        code = "print('partial')\ndef broken(:\n"
        tests = (TestCase("broken(1)", "1"), TestCase("broken(2)", "2"))
        result = orchestrator.execute(ExecutionRequest(code, Language.PYTHON, tests))
        assert result.load_error
        assert result.results[0].error == result.results[1].error
        assert result.verdict is Verdict.LOAD_ERROR

    def test_script_run(self, orchestrator):
        result = orchestrator.run("print(sum(map(int, input().split())))", "python", "1 2 3\n")
        assert result.raw_stdout == "6\n"

    def test_script_run_runtime_report(self, orchestrator):
        result = orchestrator.run("print('before')\nprint(1 // 0)\n", Language.PYTHON)
        assert result.raw_stdout == "before\n"
        assert "ZeroDivisionError" in result.runtime_error
        assert result.runtime_report.startswith(result.runtime_failure.localized_message)
        assert "Common causes:" in result.runtime_report
        assert [(d.line, d.severity.value) for d in result.diagnostics] == [(None, "error")]
        assert result.to_dict()["runtime_report"] == result.runtime_report

    @needs_gcc
    def test_compile_report(self, orchestrator, tmp_path):
        code = "int main(void) {\n    int x = 1\n    return x;\n}\n"
        result = orchestrator.run(code, "c")
        assert result.compile_report.startswith("Compilation failed (C):")
        assert "[error] Line" in result.compile_report
        assert result.diagnostics_summary.endswith("to fix")
        assert result.runtime_report is None
        assert os.listdir(tmp_path) == []

    @needs_gcc
    def test_run_crash_is_cleaned_up(self, orchestrator, tmp_path):
        code = "#include <stdlib.h>\nint main(void) { abort(); }\n"
        result = orchestrator.run(code, "c")
        assert result.runtime_failure.category.value == "abnormal-termination"
        assert result.runtime_report
        assert os.listdir(tmp_path) == []

    def test_idempotent(self, orchestrator):
        request = ExecutionRequest("def sq(x):\n    return x * x\n", Language.PYTHON, (TestCase("sq(4)", "16"),))
        first = orchestrator.execute(request).to_dict()
        second = orchestrator.execute(request).to_dict()
        assert first == second


class TestExecutePayload:
    def test_round_trip(self, tmp_path):
        payload = {
            "code": "def add(a, b):\n    return a + b\n",
            "language": "python",
            "testCases": [{"input": "add(1, 2)", "output": "3"}, {"input": "add(1, 1)", "output": "3"}],
        }
        data = execute_payload(payload, Config(workspace_root=str(tmp_path)))
        assert data["success"] is True
        assert data["mode"] == "function"
        assert [r["passed"] for r in data["results"]] == [True, False]
        assert data["verdict"] == "wrong_answer"
        assert data["score"] == 50

    def test_bad_payload(self):
        with pytest.raises(ValueError):
            execute_payload({"code": "x", "language": "brainfuck"})

    @pytest.mark.parametrize(
        "payload",
        [
            {"code": "x", "language": "python", "testCases": ["add(1, 2)"]},
            {"code": "x", "language": "python", "mode": 2},
        ],
    )
    def test_malformed_fields_raise_value_error(self, payload):
        with pytest.raises(ValueError):
            execute_payload(payload)
