"""Harness synthesis for function-invocation mode on native languages.

A harness is one translation unit made of three sections:

1. a preamble (standard includes and marker helpers),
2. the submitted code, verbatim,
3. a generated ``main`` that evaluates every test expression in order and
   prints one tagged marker line per test case.

Marker lines are ``__TC_<id>:<value>`` or ``__TC_<id>__ERR:<message>`` with
ids starting at 1, so a single compiled run validates all test cases.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from judgecore.invocation import parse_invocation
from judgecore.models import Language, TestCase

UNSUPPORTED_FORMAT = "Unsupported test case format (expected functionCall(...))"

_MARKER = re.compile(r"__TC_(\d+)(__ERR)?:(.*)$")

_CPP_PREAMBLE = [
    "#include <bits/stdc++.h>",
    "using namespace std;",
]

_C_PREAMBLE = [
    "#include <stdio.h>",
    "#include <stdlib.h>",
    "#include <string.h>",
    "static void harness_emit_ll(int id, long long v) { printf(\"__TC_%d:%lld\\n\", id, v); fflush(stdout); }",
    "static void harness_emit_ull(int id, unsigned long long v) { printf(\"__TC_%d:%llu\\n\", id, v); fflush(stdout); }",
    "static void harness_emit_double(int id, double v) { printf(\"__TC_%d:%g\\n\", id, v); fflush(stdout); }",
    "static void harness_emit_char(int id, int v) { printf(\"__TC_%d:%c\\n\", id, v); fflush(stdout); }",
    "static void harness_emit_bool(int id, _Bool v) { printf(\"__TC_%d:%d\\n\", id, v ? 1 : 0); fflush(stdout); }",
    "static void harness_emit_str(int id, const char *v) { printf(\"__TC_%d:%s\\n\", id, v ? v : \"(null)\"); fflush(stdout); }",
    "static void harness_emit_other(int id, ...) { printf(\"__TC_%d__ERR:Unsupported return type\\n\", id); fflush(stdout); }",
    "#define HARNESS_EMIT(id, expr) _Generic((expr), \\",
    "    _Bool: harness_emit_bool, char: harness_emit_char, \\",
    "    signed char: harness_emit_ll, short: harness_emit_ll, int: harness_emit_ll, \\",
    "    long: harness_emit_ll, long long: harness_emit_ll, \\",
    "    unsigned char: harness_emit_ull, unsigned short: harness_emit_ull, unsigned int: harness_emit_ull, \\",
    "    unsigned long: harness_emit_ull, unsigned long long: harness_emit_ull, \\",
    "    float: harness_emit_double, double: harness_emit_double, long double: harness_emit_double, \\",
    "    char *: harness_emit_str, const char *: harness_emit_str, \\",
    "    default: harness_emit_other)(id, (expr))",
]


@dataclass(frozen=True)
class HarnessProgram:
    source: str
    user_first_line: int
    user_line_count: int

    def user_line(self, line: int) -> int | None:
        """Map a line of the generated source back to the submission."""
        offset = line - self.user_first_line
        if 0 <= offset < self.user_line_count:
            return offset + 1
        return None


class HarnessBuilder:
    def __init__(self, language: Language) -> None:
        if not language.is_native:
            raise ValueError(f"No harness for {language.value}")
        self.language = language

    def preamble(self) -> list[str]:
        return list(_CPP_PREAMBLE if self.language is Language.CPP else _C_PREAMBLE)

    def driver(self, test_cases: Sequence[TestCase]) -> list[str]:
        lines = ["int main(void) {" if self.language is Language.C else "int main() {"]
        for tc_id, tc in enumerate(test_cases, 1):
            invocation = parse_invocation(tc.input)
            if invocation is None:
                lines.append(self._emit_error(tc_id, UNSUPPORTED_FORMAT))
            elif self.language is Language.CPP:
                lines.append(
                    f"    try {{ auto _v{tc_id} = {invocation.expression}; "
                    f"cout << \"__TC_{tc_id}:\" << _v{tc_id} << endl; }} "
                    f"catch (const std::exception &e) {{ cout << \"__TC_{tc_id}__ERR:\" << e.what() << endl; }} "
                    f"catch (...) {{ cout << \"__TC_{tc_id}__ERR:unknown exception\" << endl; }}"
                )
            else:
                lines.append(f"    HARNESS_EMIT({tc_id}, {invocation.expression});")
        lines.append("    return 0;")
        lines.append("}")
        return lines

    def _emit_error(self, tc_id: int, message: str) -> str:
        if self.language is Language.CPP:
            return f"    cout << \"__TC_{tc_id}__ERR:{message}\" << endl;"
        return f"    printf(\"__TC_{tc_id}__ERR:{message}\\n\"); fflush(stdout);"

    def build(self, user_code: str, test_cases: Sequence[TestCase]) -> HarnessProgram:
        preamble = self.preamble() + [""]
        user_lines = user_code.split("\n")
        lines = preamble + user_lines + [""] + self.driver(test_cases)
        return HarnessProgram(
            source="\n".join(lines) + "\n",
            user_first_line=len(preamble) + 1,
            user_line_count=len(user_lines),
        )


@dataclass(frozen=True)
class Marker:
    value: str | None = None
    error: str | None = None


def parse_markers(stdout: str, test_count: int) -> dict[int, Marker]:
    """Collect result markers from harness output.

    Markers with ids outside ``[1, test_count]`` are ignored; when an id
    repeats, the last marker wins.
    """
    markers: dict[int, Marker] = {}
    for line in (stdout or "").splitlines():
        match = _MARKER.search(line)
        if not match:
            continue
        tc_id = int(match.group(1))
        if not 1 <= tc_id <= test_count:
            continue
        text = match.group(3).strip()
        markers[tc_id] = Marker(error=text) if match.group(2) else Marker(value=text)
    return markers
