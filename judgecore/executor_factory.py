"""Factory for creating language executors based on the request language."""

from __future__ import annotations

from typing import TYPE_CHECKING

from judgecore.executor_base import LanguageExecutor
from judgecore.executor_native import NativeExecutor
from judgecore.executor_script import ScriptExecutor
from judgecore.models import Language

if TYPE_CHECKING:
    from judgecore.config import Config


def create_executor(language: Language, config: Config) -> LanguageExecutor:
    """Script languages run in the sandbox; compiled languages get a native executor."""
    if language.is_native:
        return NativeExecutor(language, config)
    return ScriptExecutor(config)
