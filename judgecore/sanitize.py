"""Best-effort textual defanging of dangerous constructs.

This is NOT a security boundary. Matching constructs are commented out in
place so that obvious attempts to terminate the host, load modules
dynamically or spawn processes fail loudly (usually as a syntax or compile
error) instead of running.
"""

from __future__ import annotations

import re

from judgecore.models import Language

_SCRIPT_RULES: list[tuple[re.Pattern[str], str]] = [
    # process termination
    (re.compile(r"\b(?:sys\.exit|os\._exit|os\.kill|os\.abort)\s*\("), "# blocked {0}"),
    (re.compile(r"(?<![\w.])(?:exit|quit)\s*\("), "# blocked {0}"),
    # dynamic module loading
    (re.compile(r"\b__import__\s*\("), "# blocked {0}"),
    (re.compile(r"\bimportlib\b"), "# blocked {0}"),
    # subprocess spawning
    (re.compile(r"\bsubprocess\b"), "# blocked {0}"),
    (re.compile(r"\bos\.(?:system|popen|fork|forkpty|exec\w*|spawn\w*|posix_spawn\w*)\s*\("), "# blocked {0}"),
]

_NATIVE_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bsystem\s*\("), "/* blocked {0} */"),
    (re.compile(r"\b(?:v?fork)\s*\("), "/* blocked {0} */"),
    (re.compile(r"\bexec(?:ve|vp|vpe|v|l|lp|le)\s*\("), "/* blocked {0} */"),
    (re.compile(r"\bpopen\s*\("), "/* blocked {0} */"),
    (re.compile(r"#\s*include\s*<unistd\.h>"), "/* blocked unistd */"),
]


def _apply(code: str, rules: list[tuple[re.Pattern[str], str]]) -> str:
    for pattern, template in rules:
        code = pattern.sub(lambda m, t=template: t.format(m.group(0)), code)
    return code


def sanitize(code: str, language: Language) -> str:
    """Return ``code`` with known dangerous constructs commented out."""
    code = code or ""
    if language.is_native:
        return _apply(code, _NATIVE_RULES)
    return _apply(code, _SCRIPT_RULES)
