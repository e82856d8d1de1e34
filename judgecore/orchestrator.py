"""Request entry point: mode selection, limits, dispatch and fault containment."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from judgecore.config import Config
from judgecore.executor_factory import create_executor
from judgecore.invocation import detect_mode
from judgecore.models import (
    ExecutionMode,
    ExecutionRequest,
    ExecutionResult,
    Language,
    Limits,
    TestCaseResult,
    request_from_dict,
)
from judgecore.results import failed_results

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs one ``ExecutionRequest`` at a time and always returns a result.

    User-code failures come back from the executors as data. Anything that
    escapes an executor (no workspace, missing toolchain, a bug) becomes a
    ``system_error`` result with one failed entry per test case.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config.from_env()

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        mode = request.mode or detect_mode(request.code, request.language, request.test_cases)
        limits = self.resolve_limits(request.language, request.limits)
        self._log(
            f"Executing {request.language.value} submission: mode={mode.value}, "
            f"tests={len(request.test_cases)}, run_timeout={limits.run_timeout_ms}ms"
        )
        try:
            executor = create_executor(request.language, self.config)
            result = executor.execute(request, mode, limits)
        except Exception as e:
            logger.exception("Execution failed for %s submission", request.language.value)
            return self._system_error(e, mode, request)

        result.results = self._normalize(result.results, request)
        self._log(f"Verdict: {result.verdict.value} ({result.passed_count}/{len(result.results)} passed)")
        return result

    def run(self, code: str, language: Language | str, stdin: str = "", limits: Limits | None = None) -> ExecutionResult:
        """Execute ``code`` once with ``stdin`` and return its raw output."""
        language = Language.parse(language)
        limits = self.resolve_limits(language, limits)
        self._log(f"Running {language.value} submission with {len(stdin)} bytes of stdin")
        try:
            return create_executor(language, self.config).run(code, language, stdin, limits)
        except Exception as e:
            logger.exception("Run failed for %s submission", language.value)
            return self._system_error(e, ExecutionMode.SIMPLE)

    def resolve_limits(self, language: Language, limits: Limits | None) -> Limits:
        """Fill missing or non-positive request limits from the configured defaults."""
        defaults = self.config.default_limits(language)
        if limits is None:
            return defaults
        return replace(
            defaults,
            **{
                name: value
                for name, value in (
                    ("compile_timeout_ms", limits.compile_timeout_ms),
                    ("run_timeout_ms", limits.run_timeout_ms),
                    ("max_output_bytes", limits.max_output_bytes),
                )
                if value and value > 0
            },
        )

    def _normalize(self, results: list[TestCaseResult], request: ExecutionRequest) -> list[TestCaseResult]:
        """One result per test case, ordered by id."""
        n = len(request.test_cases)
        by_id = {r.test_case_id: r for r in results if 1 <= r.test_case_id <= n}
        if len(by_id) == n:
            return [by_id[i] for i in range(1, n + 1)]
        missing = failed_results(request.test_cases, "No result was produced for this test case")
        return [by_id.get(i, missing[i - 1]) for i in range(1, n + 1)]

    def _system_error(
        self, error: Exception, mode: ExecutionMode, request: ExecutionRequest | None = None
    ) -> ExecutionResult:
        message = f"System error: {error}"
        return ExecutionResult(
            success=False,
            mode=mode,
            system_error=message,
            results=failed_results(request.test_cases, message) if request else [],
        )

    def _log(self, msg: str) -> None:
        logger.debug(msg)


def execute_payload(payload: dict, config: Config | None = None) -> dict[str, Any]:
    """Execute a request given in the external JSON contract.

    Raises ``ValueError`` only for a malformed payload.
    """
    request = request_from_dict(payload)
    return Orchestrator(config).execute(request).to_dict()
