"""Compile-and-run execution of C and C++ submissions."""

from __future__ import annotations

import logging
import os
from typing import Callable, Sequence

from judgecore.config import Config
from judgecore.diagnostics import (
    classify_runtime_failure,
    format_compile_report,
    format_runtime_report,
    parse_compile_output,
    parse_runtime_output,
    summarize_diagnostics,
)
from judgecore.errors import ToolchainNotFoundError
from judgecore.harness import UNSUPPORTED_FORMAT, HarnessBuilder, parse_markers
from judgecore.invocation import has_entry_point
from judgecore.models import (
    ExecutionMode,
    ExecutionRequest,
    ExecutionResult,
    Language,
    Limits,
    ProcessOutcome,
    TestCase,
    TestCaseResult,
)
from judgecore.process import run_process
from judgecore.results import (
    ENTRY_POINT_WARNING,
    MISSING_MARKER,
    SIMPLE_RUN_NOT_VALIDATED,
    failed_results,
    judge,
)
from judgecore.sanitize import sanitize
from judgecore.workspace import Workspace

logger = logging.getLogger(__name__)

_STANDARD_FLAGS = {
    Language.C: "-std=c11",
    Language.CPP: "-std=c++17",
}


def _runtime_error_text(outcome: ProcessOutcome, timeout_ms: int) -> str:
    if outcome.timed_out:
        return f"Runtime timeout after {timeout_ms}ms"
    stderr = outcome.stderr.strip()
    return f"Runtime error (exit code {outcome.exit_code})" + (f": {stderr}" if stderr else "")


class NativeExecutor:
    """Compiles a submission with the host toolchain and runs the binary.

    Three shapes share one compile step:

    - stdio: the submission is a complete program, run once per test case
      with the test input on stdin.
    - simple: compile and run once, returning raw output.
    - function: the submission is wrapped in a generated harness that calls
      each test expression and prints a tagged marker per result, so every
      test case is validated by a single run.
    """

    def __init__(self, language: Language, config: Config) -> None:
        if not language.is_native:
            raise ValueError(f"{language.value} is not a compiled language")
        self.language = language
        self.config = config
        self.compiler = config.compiler_for(language)

    def execute(self, request: ExecutionRequest, mode: ExecutionMode, limits: Limits) -> ExecutionResult:
        code = sanitize(request.code, self.language)
        with Workspace(self.language, root=self.config.workspace_root) as ws:
            if mode is ExecutionMode.STDIO:
                return self._execute_stdio(ws, code, request.test_cases, limits)
            if mode is ExecutionMode.SIMPLE:
                result = self._execute_simple(ws, code, "", limits)
                self._attach_unvalidated(result, request.test_cases, SIMPLE_RUN_NOT_VALIDATED)
                return result
            if has_entry_point(code, self.language):
                # A full program cannot be driven by the harness; run it as-is.
                result = self._execute_simple(ws, code, "", limits)
                result.mode = ExecutionMode.FUNCTION
                result.entry_point_warning = result.compile_error is None
                self._attach_unvalidated(result, request.test_cases, ENTRY_POINT_WARNING)
                return result
            return self._execute_functions(ws, code, request.test_cases, limits)

    def run(self, code: str, language: Language, stdin: str, limits: Limits) -> ExecutionResult:
        code = sanitize(code, self.language)
        with Workspace(self.language, root=self.config.workspace_root) as ws:
            return self._execute_simple(ws, code, stdin, limits)

    # -- compile / run --------------------------------------------------

    def _compile(
        self,
        ws: Workspace,
        source: str,
        limits: Limits,
        mode: ExecutionMode,
        test_cases: Sequence[TestCase],
        line_map: Callable[[int], int | None] | None = None,
    ) -> ExecutionResult | None:
        """Compile ``source`` into the workspace binary.

        Returns a finished failure result when compilation fails, else None.
        """
        src = ws.write_source(source)
        argv = [
            self.compiler,
            _STANDARD_FLAGS[self.language],
            "-O2",
            str(src),
            "-o",
            str(ws.binary_path),
            "-lm",
        ]
        env = {"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "LANG": "C", "LC_ALL": "C"}
        logger.debug("Compiling %s with %s", src.name, self.compiler)
        try:
            outcome = run_process(
                argv,
                timeout_ms=limits.compile_timeout_ms,
                max_output_bytes=limits.max_output_bytes,
                cwd=str(ws.path),
                merge_stderr=True,
                env=env,
            )
        except FileNotFoundError as e:
            raise ToolchainNotFoundError(self.compiler) from e

        if outcome.timed_out:
            error = f"Compilation timed out after {limits.compile_timeout_ms}ms"
            return ExecutionResult(
                success=True,
                mode=mode,
                compile_error=error,
                timed_out=True,
                results=failed_results(test_cases, error),
            )
        if outcome.exit_code != 0:
            error = outcome.stdout.strip() or f"Compiler exited with code {outcome.exit_code}"
            diagnostics = parse_compile_output(
                outcome.stdout,
                self.language,
                self.config.locale,
                source_name=src.name,
                line_map=line_map,
            )
            return ExecutionResult(
                success=True,
                mode=mode,
                compile_error=error,
                diagnostics=diagnostics,
                diagnostics_summary=summarize_diagnostics(diagnostics, self.config.locale),
                compile_report=format_compile_report(outcome.stdout, diagnostics, self.language, self.config.locale),
                results=failed_results(test_cases, error),
            )
        return None

    def _run_binary(self, ws: Workspace, stdin: str | None, limits: Limits) -> ProcessOutcome:
        return run_process(
            [str(ws.binary_path)],
            stdin=stdin,
            timeout_ms=limits.run_timeout_ms,
            max_output_bytes=limits.max_output_bytes,
            cwd=str(ws.path),
            max_memory_mb=self.config.max_memory_mb,
        )

    def _classify(self, error: str, outcome: ProcessOutcome):
        return classify_runtime_failure(
            error, outcome.exit_code, outcome.signal_number, outcome.timed_out, self.config.locale
        )

    def _attach_runtime_report(self, result: ExecutionResult, outcome: ProcessOutcome) -> None:
        result.runtime_failure = self._classify(result.runtime_error, outcome)
        result.runtime_report = format_runtime_report(result.runtime_failure, self.config.locale)
        result.diagnostics.extend(
            parse_runtime_output(
                result.runtime_error, outcome.exit_code, outcome.signal_number, outcome.timed_out, self.config.locale
            )
        )

    # -- shapes -----------------------------------------------------------

    def _execute_stdio(
        self, ws: Workspace, code: str, test_cases: Sequence[TestCase], limits: Limits
    ) -> ExecutionResult:
        failed = self._compile(ws, code, limits, ExecutionMode.STDIO, test_cases)
        if failed:
            return failed

        results: list[TestCaseResult] = []
        timed_out = False
        for tc_id, tc in enumerate(test_cases, 1):
            outcome = self._run_binary(ws, tc.input or "", limits)
            if outcome.ok:
                results.append(judge(tc_id, tc, actual=outcome.stdout.strip(), actual_serialized=outcome.stdout))
                continue
            timed_out = timed_out or outcome.timed_out
            error = _runtime_error_text(outcome, limits.run_timeout_ms)
            logger.debug("Test case %d failed: %s", tc_id, error)
            results.append(judge(tc_id, tc, error=error, failure=self._classify(error, outcome)))
        return ExecutionResult(success=True, mode=ExecutionMode.STDIO, timed_out=timed_out, results=results)

    def _execute_simple(self, ws: Workspace, code: str, stdin: str, limits: Limits) -> ExecutionResult:
        failed = self._compile(ws, code, limits, ExecutionMode.SIMPLE, ())
        if failed:
            return failed

        outcome = self._run_binary(ws, stdin, limits)
        result = ExecutionResult(
            success=True,
            mode=ExecutionMode.SIMPLE,
            raw_stdout=outcome.stdout,
            timed_out=outcome.timed_out,
        )
        if not outcome.ok:
            result.runtime_error = _runtime_error_text(outcome, limits.run_timeout_ms)
            self._attach_runtime_report(result, outcome)
        return result

    def _attach_unvalidated(self, result: ExecutionResult, test_cases: Sequence[TestCase], message: str) -> None:
        if result.compile_error:
            result.results = failed_results(test_cases, result.compile_error)
        else:
            console = (result.raw_stdout or "").splitlines()
            result.results = failed_results(test_cases, message, console=console)

    def _execute_functions(
        self, ws: Workspace, code: str, test_cases: Sequence[TestCase], limits: Limits
    ) -> ExecutionResult:
        program = HarnessBuilder(self.language).build(code, test_cases)
        failed = self._compile(
            ws, program.source, limits, ExecutionMode.FUNCTION, test_cases, line_map=program.user_line
        )
        if failed:
            return failed

        outcome = self._run_binary(ws, None, limits)
        markers = parse_markers(outcome.stdout, len(test_cases))
        result = ExecutionResult(
            success=True,
            mode=ExecutionMode.FUNCTION,
            raw_stdout=outcome.stdout,
            timed_out=outcome.timed_out,
        )
        run_error = None
        if not outcome.ok:
            run_error = _runtime_error_text(outcome, limits.run_timeout_ms)
            result.runtime_error = run_error
            self._attach_runtime_report(result, outcome)
            logger.debug("Harness run failed after %d of %d markers", len(markers), len(test_cases))

        for tc_id, tc in enumerate(test_cases, 1):
            marker = markers.get(tc_id)
            if marker is None:
                result.results.append(
                    judge(tc_id, tc, error=run_error or MISSING_MARKER, failure=result.runtime_failure)
                )
            elif marker.error is not None:
                failure = None
                if marker.error != UNSUPPORTED_FORMAT:
                    failure = classify_runtime_failure(marker.error, locale=self.config.locale)
                result.results.append(judge(tc_id, tc, error=marker.error, failure=failure))
            else:
                result.results.append(judge(tc_id, tc, actual=marker.value, actual_serialized=marker.value))
        return result
