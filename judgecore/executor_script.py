"""Sandboxed execution of Python submissions in a child interpreter.

Isolation model:
  - Every request runs in a fresh child interpreter (``python -I``), so the
    submission never shares globals, modules or console state with the host
    process or with other requests.
  - In function mode the child is driven by RUNNER_SCRIPT: the submission is
    loaded once into a fresh namespace, then each test expression is
    evaluated under its own SIGALRM interval timer. Console output is
    captured into a ring of the most recent lines, bounded both by line
    count and by the output byte limit. Each test result carries only the
    lines printed while that test ran.
  - An outer wall-clock watchdog kills the child if it overruns the total
    budget.
  - The textual sanitizer is best-effort only. This is NOT a security
    boundary: the child has the same filesystem and network access as the
    host user.
"""

from __future__ import annotations

import ast
import json
import logging
from typing import Sequence

from judgecore.config import Config
from judgecore.diagnostics import classify_runtime_failure, format_runtime_report, parse_runtime_output
from judgecore.errors import ToolchainNotFoundError
from judgecore.harness import UNSUPPORTED_FORMAT
from judgecore.invocation import detect_function_name, resolve_script_invocation
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
from judgecore.results import SIMPLE_RUN_NOT_VALIDATED, failed_results, judge
from judgecore.sanitize import sanitize

logger = logging.getLogger(__name__)

REPORT_PREFIX = "__JUDGE_REPORT__:"

# Grace period for interpreter start-up on top of the load and test budgets.
_WATCHDOG_GRACE_MS = 2000

# Room in the runner report for returned values, on top of the console lines.
_REPORT_BASE_BYTES = 16 * 1024 * 1024

# Worst-case growth of console text once escaped into the JSON report.
_JSON_ESCAPE_FACTOR = 6

RUNNER_SCRIPT = r'''
import builtins, io, json, signal, sys
from collections import deque

REPORT_PREFIX = "__JUDGE_REPORT__:"


class _Timeout(BaseException):
    pass


def _on_alarm(signum, frame):
    raise _Timeout()


def _arm(ms):
    signal.setitimer(signal.ITIMER_REAL, ms / 1000.0)


def _disarm():
    signal.setitimer(signal.ITIMER_REAL, 0)


class _Console:
    def __init__(self, max_lines, max_bytes):
        self.lines = deque()
        self.max_lines = max_lines
        self.max_bytes = max_bytes
        self.size = 0
        self.appended = 0
        self.streams = []

    def append(self, line):
        data = line.encode("utf-8", "replace")
        if len(data) > self.max_bytes:
            data = data[-self.max_bytes:]
            line = data.decode("utf-8", "ignore")
        self.lines.append((line, len(data)))
        self.size += len(data)
        self.appended += 1
        while self.lines and (len(self.lines) > self.max_lines or self.size > self.max_bytes):
            self.size -= self.lines.popleft()[1]

    def flush(self):
        for stream in self.streams:
            stream.flush_partial()

    def snapshot(self):
        self.flush()
        return [line for line, _ in self.lines]

    def since(self, mark):
        self.flush()
        count = min(self.appended - mark, len(self.lines))
        if count <= 0:
            return []
        return [line for line, _ in list(self.lines)[-count:]]


class _Stream(io.TextIOBase):
    def __init__(self, console, prefix=""):
        self._console = console
        self._prefix = prefix
        self._partial = ""
        console.streams.append(self)

    def writable(self):
        return True

    def write(self, text):
        text = str(text)
        self._partial += text
        if "\n" in self._partial:
            *done, self._partial = self._partial.split("\n")
            for line in done:
                self._console.append(self._prefix + line)
        if len(self._partial) > self._console.max_bytes:
            self._partial = self._partial[-self._console.max_bytes:]
        return len(text)

    def flush_partial(self):
        if self._partial:
            self._console.append(self._prefix + self._partial)
            self._partial = ""


def _serialize(value):
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError):
        pass
    try:
        return str(value)
    except Exception:
        return "<unprintable %s>" % type(value).__name__


def _transportable(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError, RecursionError):
        return _serialize(value)


def _error_text(exc):
    message = str(exc)
    return "%s: %s" % (type(exc).__name__, message) if message else type(exc).__name__


def main():
    payload = json.loads(sys.stdin.read())
    timeout_ms = payload["timeout_ms"]
    real_stdout = sys.stdout
    console = _Console(payload["max_console_lines"], payload["max_output_bytes"])
    sys.stdout = _Stream(console)
    sys.stderr = _Stream(console, "[error] ")
    sys.stdin = io.StringIO("")
    signal.signal(signal.SIGALRM, _on_alarm)

    namespace = {
        "__name__": "__submission__",
        "__builtins__": builtins,
        "exports": {},
        "module": {"exports": {}},
    }
    report = {"load_error": None, "load_timed_out": False, "console": [], "results": []}

    try:
        code = compile(payload["code"], "user_code.py", "exec")
        _arm(timeout_ms)
        try:
            exec(code, namespace)
        finally:
            _disarm()
    except _Timeout:
        report["load_error"] = "Timeout after %dms" % timeout_ms
        report["load_timed_out"] = True
    except (Exception, SystemExit) as exc:
        report["load_error"] = _error_text(exc)

    if report["load_error"] is None:
        for test in payload["tests"]:
            entry = {
                "id": test["id"],
                "actual": None,
                "actual_serialized": None,
                "error": test.get("error"),
                "timed_out": False,
            }
            console.flush()
            mark = console.appended
            if entry["error"] is None:
                try:
                    expression = compile(test["expression"], "<test %d>" % test["id"], "eval")
                    _arm(timeout_ms)
                    try:
                        value = eval(expression, namespace)
                    finally:
                        _disarm()
                    entry["actual"] = _transportable(value)
                    entry["actual_serialized"] = _serialize(value)
                except _Timeout:
                    entry["error"] = "Timeout after %dms" % timeout_ms
                    entry["timed_out"] = True
                except (Exception, SystemExit) as exc:
                    entry["error"] = _error_text(exc)
            entry["console"] = console.since(mark)
            report["results"].append(entry)

    report["console"] = console.snapshot()
    real_stdout.write("\n" + REPORT_PREFIX + json.dumps(report) + "\n")
    real_stdout.flush()


main()
'''

STDIO_BOOTSTRAP = r'''
import io, json, sys
_payload = json.loads(sys.stdin.readline())
sys.stdin = io.StringIO(_payload["stdin"])
_code = compile(_payload["code"], "main.py", "exec")
del io, json, _payload
exec(_code, {"__name__": "__main__", "__builtins__": __builtins__})
'''


def _find_report(stdout: str) -> dict | None:
    for line in reversed(stdout.splitlines()):
        if line.startswith(REPORT_PREFIX):
            try:
                return json.loads(line[len(REPORT_PREFIX) :])
            except json.JSONDecodeError:
                return None
    return None


def _runtime_error_text(outcome: ProcessOutcome, timeout_ms: int) -> str:
    if outcome.timed_out:
        return f"Runtime timeout after {timeout_ms}ms"
    stderr = outcome.stderr.strip()
    return f"Runtime error (exit code {outcome.exit_code})" + (f": {stderr}" if stderr else "")


class ScriptExecutor:
    """Executes Python submissions."""

    language = Language.PYTHON

    def __init__(self, config: Config) -> None:
        self.config = config

    def _interpreter(self, script: str) -> list[str]:
        return [self.config.python_executable, "-I", "-X", "utf8", "-c", script]

    def _spawn(self, script: str, payload: dict, timeout_ms: int, max_output_bytes: int) -> ProcessOutcome:
        try:
            return run_process(
                self._interpreter(script),
                stdin=json.dumps(payload) + "\n",
                timeout_ms=timeout_ms,
                max_output_bytes=max_output_bytes,
                max_memory_mb=self.config.max_memory_mb,
            )
        except FileNotFoundError as e:
            raise ToolchainNotFoundError(self.config.python_executable) from e

    def execute(self, request: ExecutionRequest, mode: ExecutionMode, limits: Limits) -> ExecutionResult:
        code = sanitize(request.code, self.language)
        if mode is ExecutionMode.STDIO:
            return self._execute_stdio(code, request.test_cases, limits)
        if mode is ExecutionMode.SIMPLE:
            result = self._run_program(code, "", limits)
            if result.load_error:
                result.results = failed_results(request.test_cases, f"Load error: {result.load_error}")
            else:
                result.results = failed_results(
                    request.test_cases, SIMPLE_RUN_NOT_VALIDATED, console=_lines(result.raw_stdout)
                )
            return result
        return self._execute_functions(code, request.test_cases, limits)

    def run(self, code: str, language: Language, stdin: str, limits: Limits) -> ExecutionResult:
        return self._run_program(sanitize(code, self.language), stdin, limits)

    # -- function mode --------------------------------------------------

    def _execute_functions(self, code: str, test_cases: Sequence[TestCase], limits: Limits) -> ExecutionResult:
        timeout_ms = limits.run_timeout_ms
        function_name = detect_function_name(code)
        tests = []
        expressions: list[str] = []
        for tc_id, tc in enumerate(test_cases, 1):
            invocation = resolve_script_invocation(tc.input, function_name)
            expression = invocation.expression if invocation else (tc.input or "").strip()
            expressions.append(expression)
            if invocation is None:
                tests.append({"id": tc_id, "error": UNSUPPORTED_FORMAT})
            else:
                tests.append({"id": tc_id, "expression": expression})

        payload = {
            "code": code,
            "tests": tests,
            "timeout_ms": timeout_ms,
            "max_console_lines": self.config.max_console_lines,
            "max_output_bytes": max(1, limits.max_output_bytes),
        }
        watchdog_ms = timeout_ms * (1 + len(tests)) + _WATCHDOG_GRACE_MS
        report_bytes = _REPORT_BASE_BYTES + (1 + len(tests)) * payload["max_output_bytes"] * _JSON_ESCAPE_FACTOR
        outcome = self._spawn(RUNNER_SCRIPT, payload, watchdog_ms, report_bytes)
        report = _find_report(outcome.stdout)

        if report is None and outcome.ok:
            error = "System error: test runner exited without producing a report"
            logger.warning("Script runner exited cleanly without a report (%d bytes of output)", len(outcome.stdout))
            return ExecutionResult(
                success=False,
                mode=ExecutionMode.FUNCTION,
                system_error=error,
                results=failed_results(test_cases, error),
            )
        if report is None:
            # the runner never reported: the child was killed or crashed
            error = _runtime_error_text(outcome, watchdog_ms)
            logger.debug("Script runner produced no report: %s", error)
            result = ExecutionResult(
                success=True,
                mode=ExecutionMode.FUNCTION,
                runtime_error=error,
                timed_out=outcome.timed_out,
            )
            self._attach_runtime_report(result, outcome)
            result.results = failed_results(test_cases, error, failure=result.runtime_failure)
            return result

        console = report.get("console") or []
        if report.get("load_error"):
            error = f"Load error: {report['load_error']}"
            return ExecutionResult(
                success=True,
                mode=ExecutionMode.FUNCTION,
                load_error=report["load_error"],
                timed_out=bool(report.get("load_timed_out")),
                raw_stdout="\n".join(console),
                results=failed_results(test_cases, error, console=console),
            )

        by_id = {entry["id"]: entry for entry in report.get("results", [])}
        results: list[TestCaseResult] = []
        timed_out = False
        for tc_id, tc in enumerate(test_cases, 1):
            entry = by_id.get(tc_id, {})
            failure = None
            timed_out = timed_out or bool(entry.get("timed_out"))
            if entry.get("error") and entry["error"] != UNSUPPORTED_FORMAT:
                failure = classify_runtime_failure(
                    entry["error"], timed_out=bool(entry.get("timed_out")), locale=self.config.locale
                )
            results.append(
                judge(
                    tc_id,
                    tc,
                    actual=entry.get("actual"),
                    actual_serialized=entry.get("actual_serialized"),
                    error=entry.get("error"),
                    console=entry.get("console"),
                    failure=failure,
                    input_text=expressions[tc_id - 1],
                )
            )
        return ExecutionResult(
            success=True,
            mode=ExecutionMode.FUNCTION,
            timed_out=timed_out,
            raw_stdout="\n".join(console),
            results=results,
        )

    # -- program modes --------------------------------------------------

    def _syntax_error(self, code: str) -> str | None:
        try:
            ast.parse(code, filename="main.py")
        except (SyntaxError, ValueError, RecursionError, MemoryError) as e:
            return f"{type(e).__name__}: {e}"
        return None

    def _run_once(self, code: str, stdin: str, limits: Limits) -> ProcessOutcome:
        return self._spawn(
            STDIO_BOOTSTRAP, {"code": code, "stdin": stdin}, limits.run_timeout_ms, limits.max_output_bytes
        )

    def _execute_stdio(self, code: str, test_cases: Sequence[TestCase], limits: Limits) -> ExecutionResult:
        syntax_error = self._syntax_error(code)
        if syntax_error:
            return ExecutionResult(
                success=True,
                mode=ExecutionMode.STDIO,
                load_error=syntax_error,
                results=failed_results(test_cases, f"Load error: {syntax_error}"),
            )

        results: list[TestCaseResult] = []
        timed_out = False
        for tc_id, tc in enumerate(test_cases, 1):
            outcome = self._run_once(code, tc.input or "", limits)
            if outcome.ok:
                results.append(judge(tc_id, tc, actual=outcome.stdout.strip(), actual_serialized=outcome.stdout))
                continue
            timed_out = timed_out or outcome.timed_out
            error = _runtime_error_text(outcome, limits.run_timeout_ms)
            failure = classify_runtime_failure(
                error, outcome.exit_code, outcome.signal_number, outcome.timed_out, self.config.locale
            )
            results.append(judge(tc_id, tc, error=error, failure=failure))
        return ExecutionResult(success=True, mode=ExecutionMode.STDIO, timed_out=timed_out, results=results)

    def _run_program(self, code: str, stdin: str, limits: Limits) -> ExecutionResult:
        syntax_error = self._syntax_error(code)
        if syntax_error:
            return ExecutionResult(success=True, mode=ExecutionMode.SIMPLE, load_error=syntax_error, raw_stdout="")

        outcome = self._run_once(code, stdin, limits)
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

    def _attach_runtime_report(self, result: ExecutionResult, outcome: ProcessOutcome) -> None:
        args = (result.runtime_error, outcome.exit_code, outcome.signal_number, outcome.timed_out, self.config.locale)
        result.runtime_failure = classify_runtime_failure(*args)
        result.runtime_report = format_runtime_report(result.runtime_failure, self.config.locale)
        result.diagnostics.extend(parse_runtime_output(*args))


def _lines(text: str | None) -> list[str]:
    return (text or "").splitlines()
