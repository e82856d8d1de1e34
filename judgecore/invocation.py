"""Test-expression grammar and execution-mode detection.

Everything here is pure text analysis: no processes are spawned, so mode
selection can be unit tested on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from judgecore.models import ExecutionMode, Language, TestCase

_CALL_START = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_PAIRS = {")": "(", "]": "[", "}": "{"}
_FORBIDDEN = {";", "\n", "\r", "#"}

_C_NOISE = re.compile(
    r"(\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*')|(//[^\n]*|/\*.*?\*/)",
    re.DOTALL,
)
_C_MAIN = re.compile(r"\b(?:int|void)\s+main\s*\(")
_PY_MAIN = re.compile(r"^if\s+__name__\s*==\s*(['\"])__main__\1\s*:", re.MULTILINE)
_PY_TOP_LEVEL_DEF = re.compile(r"^(?:async\s+)?def\s+([A-Za-z_][A-Za-z0-9_]*)\s*\(", re.MULTILINE)


@dataclass(frozen=True)
class Invocation:
    """A validated ``name(args)`` test expression."""

    name: str
    arguments: str

    @property
    def expression(self) -> str:
        return f"{self.name}({self.arguments})"


def parse_invocation(text: str) -> Invocation | None:
    """Validate ``text`` as an identifier followed by one balanced argument list.

    The argument list may nest (), [] and {} and contain string or char
    literals, but the call's own closing parenthesis must end the text.
    Statement separators, newlines and comment openers outside literals are
    rejected so the expression can be spliced into generated code verbatim.
    Returns None when the text does not fit.
    """
    text = (text or "").strip()
    match = _CALL_START.match(text)
    if not match:
        return None
    name = match.group(1)
    open_index = match.end() - 1

    stack: list[str] = []
    quote: str | None = None
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
            elif ch in "\r\n":
                return None
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in _FORBIDDEN or text.startswith("//", i) or text.startswith("/*", i):
            return None
        elif ch in "([{":
            stack.append(ch)
        elif ch in _PAIRS:
            if not stack or stack.pop() != _PAIRS[ch]:
                return None
            if not stack:
                # the call's own argument list closed; nothing may follow
                if i != len(text) - 1:
                    return None
                return Invocation(name=name, arguments=text[open_index + 1 : i].strip())
        i += 1
    return None


def strip_c_comments(code: str) -> str:
    """Blank out comments and string/char literal contents in C-family code."""

    def _replace(m: re.Match[str]) -> str:
        if m.group(1):
            return m.group(1)[0] * 2
        return " "

    return _C_NOISE.sub(_replace, code or "")


def has_entry_point(code: str, language: Language) -> bool:
    """Whether ``code`` defines its own program entry point."""
    if language.is_native:
        return bool(_C_MAIN.search(strip_c_comments(code)))
    return bool(_PY_MAIN.search(code or ""))


def detect_function_name(code: str) -> str | None:
    """Name of the first top-level function defined in a Python script."""
    match = _PY_TOP_LEVEL_DEF.search(code or "")
    return match.group(1) if match else None


def resolve_script_invocation(text: str, function_name: str | None) -> Invocation | None:
    """Resolve a script test input to a callable expression.

    An input that is already ``name(args)`` is used as is. Otherwise, when a
    top-level function was detected, the input is treated as a bare argument
    list: ``"2, 3"`` becomes ``add(2, 3)``.
    """
    invocation = parse_invocation(text)
    if invocation is not None:
        return invocation
    if function_name:
        return parse_invocation(f"{function_name}({(text or '').strip()})")
    return None


def detect_mode(code: str, language: Language, test_cases: Sequence[TestCase]) -> ExecutionMode:
    """Pick an execution mode for a request that did not name one."""
    if not test_cases:
        return ExecutionMode.SIMPLE
    if has_entry_point(code, language):
        return ExecutionMode.STDIO
    # call-shaped first input or not, function mode is the fallback; bare
    # argument lists are wrapped later when a function name can be found
    return ExecutionMode.FUNCTION
