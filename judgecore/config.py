"""Configuration for judgecore, loaded from environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

from judgecore.models import Language, Limits


@dataclass
class Config:
    compile_timeout_ms: int = 5000
    run_timeout_ms: int = 3000  # per native run
    script_timeout_ms: int = 1000  # per script load and per script test
    max_output_bytes: int = 50 * 1024
    max_console_lines: int = 50
    max_memory_mb: int = 256
    c_compiler: str = "gcc"
    cpp_compiler: str = "g++"
    workspace_root: str | None = None  # None -> system temp dir
    locale: str = "en"
    python_executable: str = field(default_factory=lambda: sys.executable or "python3")

    def __post_init__(self) -> None:
        for name in (
            "compile_timeout_ms",
            "run_timeout_ms",
            "script_timeout_ms",
            "max_output_bytes",
            "max_console_lines",
            "max_memory_mb",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer")

    def compiler_for(self, language: Language) -> str:
        if language is Language.C:
            return self.c_compiler
        if language is Language.CPP:
            return self.cpp_compiler
        raise ValueError(f"{language.value} is not a compiled language")

    def default_limits(self, language: Language) -> Limits:
        run_timeout = self.run_timeout_ms if language.is_native else self.script_timeout_ms
        return Limits(
            compile_timeout_ms=self.compile_timeout_ms,
            run_timeout_ms=run_timeout,
            max_output_bytes=self.max_output_bytes,
        )

    @classmethod
    def from_env(cls, **overrides) -> Config:
        kwargs: dict = {}
        env_map: dict[str, tuple[str, type]] = {
            "JUDGE_COMPILE_TIMEOUT_MS": ("compile_timeout_ms", int),
            "JUDGE_RUN_TIMEOUT_MS": ("run_timeout_ms", int),
            "JUDGE_SCRIPT_TIMEOUT_MS": ("script_timeout_ms", int),
            "JUDGE_MAX_OUTPUT_BYTES": ("max_output_bytes", int),
            "JUDGE_MAX_CONSOLE_LINES": ("max_console_lines", int),
            "JUDGE_MAX_MEMORY_MB": ("max_memory_mb", int),
            "JUDGE_CC": ("c_compiler", str),
            "JUDGE_CXX": ("cpp_compiler", str),
            "JUDGE_WORKSPACE_ROOT": ("workspace_root", str),
            "JUDGE_LOCALE": ("locale", str),
            "JUDGE_PYTHON": ("python_executable", str),
        }
        for env_var, (field_name, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val is not None and val != "":
                try:
                    kwargs[field_name] = conv(val)
                except ValueError:
                    raise ValueError(f"{env_var} must be an integer, got {val!r}") from None
        kwargs.update(overrides)
        return cls(**kwargs)
