"""Abstract executor interface for running submissions."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from judgecore.models import ExecutionMode, ExecutionRequest, ExecutionResult, Language, Limits


@runtime_checkable
class LanguageExecutor(Protocol):
    def execute(
        self,
        request: ExecutionRequest,
        mode: ExecutionMode,
        limits: Limits,
    ) -> ExecutionResult: ...

    def run(
        self,
        code: str,
        language: Language,
        stdin: str,
        limits: Limits,
    ) -> ExecutionResult: ...
