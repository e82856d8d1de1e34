"""Turn raw compiler and runtime failure text into student-facing diagnostics.

Every function here is total: any input text, however malformed, produces a
result (at worst an empty list or the generic runtime category) and never an
exception.
"""

from __future__ import annotations

import os
import re
import signal
from typing import Callable

from judgecore.models import (
    CompileDiagnostic,
    Language,
    RuntimeCategory,
    RuntimeFailure,
    Severity,
)

DEFAULT_LOCALE = "en"

_DIAGNOSTIC_LINE = re.compile(
    r"^(?P<file>[^:\n]*?\.(?:c|cc|cpp|cxx|h|hh|hpp))"
    r":(?P<line>\d+)(?::(?P<column>\d+))?:\s*"
    r"(?P<severity>fatal error|error|warning|note):\s*(?P<message>.+)$",
    re.IGNORECASE,
)
_QUOTED = re.compile(r"'([^']+)'")
_CURLY_QUOTES = str.maketrans({"‘": "'", "’": "'"})

# Message catalog: key -> locale -> text. Texts may use {name} / {header}.
_MESSAGES: dict[str, dict[str, str]] = {
    "missing_semicolon": {"en": "Missing ';' at the end of a statement", "vi": "Thiếu dấu ';' cuối câu lệnh"},
    "missing_close_paren": {"en": "Missing closing parenthesis ')'", "vi": "Thiếu dấu ')' đóng ngoặc"},
    "missing_open_paren": {"en": "Missing opening parenthesis '('", "vi": "Thiếu dấu '(' mở ngoặc"},
    "missing_close_brace": {"en": "Missing '}}' to close a block", "vi": "Thiếu dấu '}}' đóng block"},
    "missing_open_brace": {"en": "Missing '{{' to open a block", "vi": "Thiếu dấu '{{' mở block"},
    "missing_close_bracket": {"en": "Missing ']' to close an array index", "vi": "Thiếu dấu ']' đóng mảng"},
    "bad_declaration": {"en": "Malformed declaration", "vi": "Cú pháp khai báo không đúng"},
    "undeclared_use": {"en": "'{name}' is used but never declared", "vi": "Sử dụng '{name}' nhưng chưa khai báo"},
    "undeclared": {"en": "'{name}' has not been declared", "vi": "'{name}' chưa được khai báo"},
    "implicit_declaration": {
        "en": "Function '{name}' is used before it is declared (missing #include?)",
        "vi": "Hàm '{name}' chưa được khai báo (thiếu #include?)",
    },
    "missing_header": {
        "en": "Header file not found, check your #include lines",
        "vi": "Không tìm thấy file header. Kiểm tra lại #include",
    },
    "incompatible_types": {"en": "Incompatible data types", "vi": "Kiểu dữ liệu không tương thích"},
    "invalid_conversion": {"en": "Invalid type conversion", "vi": "Chuyển đổi kiểu không hợp lệ"},
    "cannot_convert": {"en": "Cannot convert between these data types", "vi": "Không thể chuyển đổi kiểu dữ liệu"},
    "too_few_args": {"en": "Too few arguments in function call", "vi": "Thiếu tham số khi gọi hàm"},
    "too_many_args": {"en": "Too many arguments in function call", "vi": "Thừa tham số khi gọi hàm"},
    "redefinition": {"en": "Duplicate definition of the same name", "vi": "Khai báo trùng lặp"},
    "array_subscript": {"en": "Invalid array element access", "vi": "Lỗi truy cập phần tử mảng"},
    "variable_sized": {
        "en": "A variable cannot be used as the array size here (use malloc or a constant)",
        "vi": "Không thể dùng biến làm kích thước mảng (dùng malloc hoặc const)",
    },
    "missing_return": {
        "en": "Function must return a value but a return is missing",
        "vi": "Hàm cần return nhưng thiếu giá trị trả về",
    },
    "return_type": {"en": "Wrong function return type", "vi": "Lỗi kiểu trả về của hàm"},
    "invalid_void": {"en": "Invalid use of void", "vi": "Sử dụng void không đúng cách"},
    "dereference": {"en": "Invalid pointer dereference", "vi": "Lỗi truy cập con trỏ"},
    "no_match": {"en": "No matching function or operator", "vi": "Không tìm thấy hàm/toán tử phù hợp"},
    "no_member": {"en": "No member with this name", "vi": "Không có thành viên với tên này"},
    "cpp_in_c": {
        "en": "C++ library used in C code (use stdio.h instead of iostream)",
        "vi": "Đang dùng thư viện C++ trong code C (dùng stdio.h thay vì iostream)",
    },
}

_SUGGESTIONS: dict[str, dict[str, str]] = {
    "add_semicolon": {"en": "Add ';' at the end of the previous statement", "vi": "Thêm dấu ';' vào cuối câu lệnh trước đó"},
    "check_parens": {
        "en": "Check that every '(' has a matching ')'",
        "vi": "Kiểm tra các cặp ngoặc (), đảm bảo mở và đóng đúng",
    },
    "check_braces": {
        "en": "Check that every '{{' has a matching '}}'",
        "vi": "Kiểm tra các cặp ngoặc {{}}, đảm bảo mở và đóng đúng",
    },
    "declare_first": {
        "en": "Declare the variable before using it, or check the spelling of its name",
        "vi": "Khai báo biến trước khi sử dụng, hoặc kiểm tra lỗi chính tả tên biến",
    },
    "include_header": {"en": "Add #include <{header}> at the top of the file", "vi": "Thêm #include <{header}> ở đầu file"},
    "include_or_prototype": {
        "en": "Add the missing #include or declare a prototype for the function",
        "vi": "Thêm #include cần thiết hoặc khai báo prototype hàm",
    },
    "check_include": {
        "en": "Check the header name; C programs use headers such as stdio.h",
        "vi": "Kiểm tra tên header; chương trình C dùng các header như stdio.h",
    },
    "check_types": {
        "en": "Check the data types of the variable and the assigned value",
        "vi": "Kiểm tra kiểu dữ liệu của biến và giá trị gán",
    },
    "check_arg_count": {"en": "Check how many arguments the function expects", "vi": "Kiểm tra số lượng tham số khi gọi hàm"},
    "extra_args": {
        "en": "You are passing extra arguments, check the function definition",
        "vi": "Bạn đang truyền thừa tham số, kiểm tra lại định nghĩa hàm",
    },
    "use_stdio": {
        "en": "Replace #include <iostream> with #include <stdio.h> and use printf/scanf instead of cout/cin",
        "vi": "Thay #include <iostream> bằng #include <stdio.h>, dùng printf/scanf thay cout/cin",
    },
}

_KNOWN_HEADERS = {
    "printf": "stdio.h", "scanf": "stdio.h", "puts": "stdio.h", "gets": "stdio.h",
    "getchar": "stdio.h", "putchar": "stdio.h", "fgets": "stdio.h",
    "malloc": "stdlib.h", "free": "stdlib.h", "realloc": "stdlib.h", "calloc": "stdlib.h",
    "abs": "stdlib.h", "atoi": "stdlib.h", "rand": "stdlib.h", "qsort": "stdlib.h",
    "strlen": "string.h", "strcpy": "string.h", "strcmp": "string.h", "strcat": "string.h",
    "memset": "string.h", "memcpy": "string.h",
    "sqrt": "math.h", "pow": "math.h", "fabs": "math.h", "floor": "math.h", "ceil": "math.h",
    "isdigit": "ctype.h", "isalpha": "ctype.h", "toupper": "ctype.h", "tolower": "ctype.h",
}

_REPORT_TEXT: dict[str, dict[str, str]] = {
    "header": {"en": "Compilation failed ({language}):", "vi": "LỖI BIÊN DỊCH ({language}):"},
    "location": {"en": "Line {line}, column {column}", "vi": "Dòng {line}, cột {column}"},
    "line_only": {"en": "Line {line}", "vi": "Dòng {line}"},
    "hint": {"en": "Hint", "vi": "Gợi ý"},
    "tips": {"en": "General tips:", "vi": "MẸO CHUNG:"},
    "tip_semicolon": {
        "en": "Every statement in C/C++ must end with a semicolon (;)",
        "vi": "Mỗi câu lệnh trong C phải kết thúc bằng dấu chấm phẩy (;)",
    },
    "tip_spelling": {"en": "Check that variable names are spelled correctly", "vi": "Kiểm tra tên biến có viết đúng chính tả không"},
    "tip_declare": {"en": "Make sure every variable is declared before use", "vi": "Đảm bảo đã khai báo biến trước khi sử dụng"},
    "tip_include": {"en": "Add the right #include for library functions", "vi": "Thêm #include phù hợp cho các hàm thư viện"},
    "errors": {"en": "{count} error{plural}", "vi": "{count} lỗi"},
    "warnings": {"en": "{count} warning{plural}", "vi": "{count} cảnh báo"},
    "summary": {"en": "{parts} to fix", "vi": "Có {parts} cần sửa"},
    "causes": {"en": "Common causes:", "vi": "NGUYÊN NHÂN PHỔ BIẾN:"},
}

_RUNTIME_TEXT: dict[RuntimeCategory, dict[str, tuple[str, tuple[str, ...]]]] = {
    RuntimeCategory.TIMEOUT: {
        "en": (
            "The program ran too long and was stopped (timeout).",
            (
                "An infinite loop (a loop condition that never becomes false)",
                "Waiting for keyboard input that was never provided",
                "An algorithm that is too slow for the input size",
            ),
        ),
        "vi": (
            "Chương trình chạy quá lâu và bị dừng (timeout).",
            (
                "Vòng lặp vô hạn (điều kiện dừng sai)",
                "Đang chờ input từ bàn phím nhưng không có input được cung cấp",
                "Thuật toán chưa tối ưu",
            ),
        ),
    },
    RuntimeCategory.SEGMENTATION_VIOLATION: {
        "en": (
            "The program accessed invalid memory (segmentation fault).",
            (
                "Reading or writing an array out of bounds (arr[n] instead of arr[n-1])",
                "Dereferencing a NULL or uninitialized pointer",
                "Recursion that is too deep (stack overflow)",
            ),
        ),
        "vi": (
            "Chương trình truy cập vùng nhớ không hợp lệ (Segmentation fault).",
            (
                "Truy cập mảng ngoài phạm vi (arr[n] thay vì arr[n-1])",
                "Sử dụng con trỏ NULL",
                "Gọi đệ quy quá sâu (tràn stack)",
            ),
        ),
    },
    RuntimeCategory.ARITHMETIC_EXCEPTION: {
        "en": (
            "The program performed an invalid arithmetic operation (usually division by zero).",
            (
                "Dividing by zero or taking a remainder modulo zero",
                "Integer overflow in a division",
            ),
        ),
        "vi": (
            "Lỗi phép tính (thường do chia cho 0).",
            (
                "Chia cho 0",
                "Lỗi overflow số học",
            ),
        ),
    },
    RuntimeCategory.ABNORMAL_TERMINATION: {
        "en": (
            "The program was aborted.",
            (
                "A failed assertion",
                "Writing past the end of an array (stack smashing / buffer overflow)",
                "Freeing the same memory twice or an uncaught exception",
            ),
        ),
        "vi": (
            "Chương trình bị hủy (abort).",
            (
                "Assertion failed",
                "Ghi dữ liệu vượt quá kích thước mảng (tràn bộ đệm)",
                "Giải phóng bộ nhớ hai lần (double free) hoặc ngoại lệ không được bắt",
            ),
        ),
    },
    RuntimeCategory.UNKNOWN: {
        "en": ("The program stopped with a runtime error.", ("Check the logic of your code and its calculations",)),
        "vi": ("Lỗi khi chạy chương trình (Runtime Error).", ("Kiểm tra lại logic code và các phép tính",)),
    },
}


def _text(table: dict[str, dict[str, str]], key: str, locale: str, **fields: object) -> str:
    entry = table[key]
    template = entry.get(locale) or entry[DEFAULT_LOCALE]
    return template.format(**fields)


def _quoted_name(message: str) -> str | None:
    match = _QUOTED.search(message)
    return match.group(1) if match else None


def _match_message(lower: str, language: Language) -> str | None:
    """Return the catalog key for a compiler message, or None."""
    if "expected ';'" in lower:
        return "missing_semicolon"
    if "expected ')'" in lower:
        return "missing_close_paren"
    if "expected '('" in lower:
        return "missing_open_paren"
    if "expected '}'" in lower:
        return "missing_close_brace"
    if "expected '{'" in lower:
        return "missing_open_brace"
    if "expected ']'" in lower:
        return "missing_close_bracket"
    if "expected declaration" in lower:
        return "bad_declaration"
    if "use of undeclared identifier" in lower:
        return "undeclared_use"
    if "undeclared" in lower or "was not declared" in lower:
        return "undeclared"
    if "implicit declaration of function" in lower:
        return "implicit_declaration"
    if language is Language.C and ("iostream" in lower or "cout" in lower or "cin" in lower):
        return "cpp_in_c"
    if "no such file or directory" in lower:
        return "missing_header"
    if "incompatible type" in lower:
        return "incompatible_types"
    if "invalid conversion" in lower:
        return "invalid_conversion"
    if "cannot convert" in lower:
        return "cannot_convert"
    if "too few arguments" in lower:
        return "too_few_args"
    if "too many arguments" in lower:
        return "too_many_args"
    if "redefinition" in lower or "redeclared" in lower:
        return "redefinition"
    if "array subscript" in lower:
        return "array_subscript"
    if "variable-sized object" in lower:
        return "variable_sized"
    if "non-void function" in lower and "return" in lower:
        return "missing_return"
    if "return type" in lower or "void return" in lower:
        return "return_type"
    if "invalid use of void" in lower:
        return "invalid_void"
    if "dereferencing" in lower:
        return "dereference"
    if language is Language.CPP:
        if "no match for" in lower:
            return "no_match"
        if "no member named" in lower:
            return "no_member"
    return None


def localize_compile_message(message: str, language: Language, locale: str = DEFAULT_LOCALE) -> str:
    key = _match_message(message.lower(), language)
    if key is None:
        return message
    return _text(_MESSAGES, key, locale, name=_quoted_name(message) or "?")


def suggest_fix(message: str, language: Language, locale: str = DEFAULT_LOCALE) -> str | None:
    lower = message.lower()
    if "expected ';'" in lower:
        key = "add_semicolon"
    elif "expected ')'" in lower:
        key = "check_parens"
    elif "expected '}'" in lower:
        key = "check_braces"
    elif "undeclared" in lower or "was not declared" in lower:
        key = "declare_first"
    elif "implicit declaration" in lower:
        header = _KNOWN_HEADERS.get(_quoted_name(message) or "")
        if header:
            return _text(_SUGGESTIONS, "include_header", locale, header=header)
        key = "include_or_prototype"
    elif language is Language.C and ("iostream" in lower or "cout" in lower):
        key = "use_stdio"
    elif "no such file or directory" in lower:
        key = "check_include"
    elif "incompatible type" in lower:
        key = "check_types"
    elif "too few arguments" in lower:
        key = "check_arg_count"
    elif "too many arguments" in lower:
        key = "extra_args"
    else:
        return None
    return _text(_SUGGESTIONS, key, locale)


def _estimate_end_column(column: int | None, message: str) -> int | None:
    if column is None:
        return None
    name = _quoted_name(message)
    if name:
        return column + len(name)
    return column + 10


def parse_compile_output(
    text: str | None,
    language: Language,
    locale: str = DEFAULT_LOCALE,
    source_name: str | None = None,
    line_map: Callable[[int], int | None] | None = None,
) -> list[CompileDiagnostic]:
    """Parse ``<file>:<line>:<column>: <severity>: <message>`` compiler lines.

    ``source_name`` restricts line positions to the submission's own file
    (diagnostics from other files keep their message but lose their
    position); ``line_map`` translates generated-source lines back to
    submission lines and returns None for lines outside the submission.
    Results are de-duplicated on (line, column, message) and sorted by
    position, position-less entries last.
    """
    diagnostics: list[CompileDiagnostic] = []
    seen: set[tuple[int | None, int | None, str]] = set()
    for raw_line in (text or "").splitlines():
        match = _DIAGNOSTIC_LINE.match(raw_line.strip())
        if not match:
            continue
        message = match.group("message").strip().translate(_CURLY_QUOTES)
        line: int | None = int(match.group("line"))
        column = int(match.group("column")) if match.group("column") else None

        in_source = source_name is None or os.path.basename(match.group("file")) == source_name
        if not in_source:
            line = column = None
        elif line_map is not None:
            line = line_map(line)
            if line is None:
                column = None

        key = (line, column, message)
        if key in seen:
            continue
        seen.add(key)

        severity_text = match.group("severity").lower()
        severity = Severity.ERROR if severity_text == "fatal error" else Severity(severity_text)
        diagnostics.append(
            CompileDiagnostic(
                line=line,
                column=column,
                end_column=_estimate_end_column(column, message),
                severity=severity,
                raw_message=message,
                localized_message=localize_compile_message(message, language, locale),
                suggestion=suggest_fix(message, language, locale),
            )
        )
    diagnostics.sort(key=lambda d: (d.line is None, d.line or 0, d.column or 0))
    return diagnostics


def summarize_diagnostics(diagnostics: list[CompileDiagnostic], locale: str = DEFAULT_LOCALE) -> str | None:
    """Short count line such as ``"2 errors, 1 warning to fix"``."""
    errors = sum(1 for d in diagnostics if d.severity is Severity.ERROR)
    warnings = sum(1 for d in diagnostics if d.severity is Severity.WARNING)
    parts = []
    if errors:
        parts.append(_text(_REPORT_TEXT, "errors", locale, count=errors, plural="" if errors == 1 else "s"))
    if warnings:
        parts.append(_text(_REPORT_TEXT, "warnings", locale, count=warnings, plural="" if warnings == 1 else "s"))
    if not parts:
        return None
    return _text(_REPORT_TEXT, "summary", locale, parts=", ".join(parts))


def format_compile_report(
    raw: str | None,
    diagnostics: list[CompileDiagnostic],
    language: Language,
    locale: str = DEFAULT_LOCALE,
) -> str | None:
    """Multi-line compile error report for students, grouped by line."""
    if not raw and not diagnostics:
        return None
    header = _text(_REPORT_TEXT, "header", locale, language=language.display_name)
    shown = [d for d in diagnostics if d.severity is not Severity.NOTE]
    if not shown:
        return f"{header}\n\n{(raw or '').strip()}"

    lines = [header, ""]
    hint_label = _text(_REPORT_TEXT, "hint", locale)
    for d in shown:
        marker = "[error]" if d.severity is Severity.ERROR else "[warning]"
        if d.line is not None and d.column is not None:
            where = _text(_REPORT_TEXT, "location", locale, line=d.line, column=d.column) + ": "
        elif d.line is not None:
            where = _text(_REPORT_TEXT, "line_only", locale, line=d.line) + ": "
        else:
            where = ""
        lines.append(f"{marker} {where}{d.localized_message}")
        if d.suggestion:
            lines.append(f"    {hint_label}: {d.suggestion}")

    raw_lower = [d.raw_message.lower() for d in diagnostics]
    tips = []
    if any("expected ';'" in m for m in raw_lower):
        tips.append(_text(_REPORT_TEXT, "tip_semicolon", locale))
    if any("undeclared" in m or "was not declared" in m for m in raw_lower):
        tips.append(_text(_REPORT_TEXT, "tip_spelling", locale))
        tips.append(_text(_REPORT_TEXT, "tip_declare", locale))
    if any("implicit declaration" in m for m in raw_lower):
        tips.append(_text(_REPORT_TEXT, "tip_include", locale))
    if tips:
        lines.append("")
        lines.append(_text(_REPORT_TEXT, "tips", locale))
        lines.extend(f"- {tip}" for tip in tips)
    return "\n".join(lines)


def _signal_numbers(*names: str) -> set[int]:
    return {getattr(signal, name) for name in names if hasattr(signal, name)}


_SEGV_SIGNALS = _signal_numbers("SIGSEGV", "SIGBUS")
_FPE_SIGNALS = _signal_numbers("SIGFPE")
_ABORT_SIGNALS = _signal_numbers("SIGABRT")

_SIGNATURES: list[tuple[RuntimeCategory, set[int], set[int], tuple[str, ...]]] = [
    (
        RuntimeCategory.SEGMENTATION_VIOLATION,
        _SEGV_SIGNALS,
        {139, 138},
        ("segmentation fault", "sigsegv", "sigbus", "recursionerror", "maximum recursion depth"),
    ),
    (
        RuntimeCategory.ARITHMETIC_EXCEPTION,
        _FPE_SIGNALS,
        {136},
        ("floating point exception", "sigfpe", "zerodivisionerror", "division by zero"),
    ),
    (
        RuntimeCategory.ABNORMAL_TERMINATION,
        _ABORT_SIGNALS,
        {134},
        (
            "sigabrt", "abort", "assertion", "assertionerror", "stack smashing",
            "buffer overflow", "terminate called", "double free",
        ),
    ),
]


def classify_runtime_failure(
    raw: str | None,
    exit_code: int | None = None,
    signal_number: int | None = None,
    timed_out: bool = False,
    locale: str = DEFAULT_LOCALE,
) -> RuntimeFailure:
    """Map a failed run to a runtime category with explanation and hints."""
    raw_text = str(raw or "")
    lower = raw_text.lower()
    category = RuntimeCategory.UNKNOWN
    if timed_out or "timeout" in lower or "timed out" in lower or "time limit" in lower:
        category = RuntimeCategory.TIMEOUT
    else:
        for candidate, signals, exit_codes, needles in _SIGNATURES:
            if (
                (signal_number is not None and signal_number in signals)
                or (exit_code is not None and exit_code in exit_codes)
                or any(needle in lower for needle in needles)
            ):
                category = candidate
                break

    entry = _RUNTIME_TEXT[category]
    explanation, hints = entry.get(locale) or entry[DEFAULT_LOCALE]
    if category is RuntimeCategory.UNKNOWN and raw_text.strip():
        explanation = f"{explanation}\n\n{raw_text.strip()}"
    return RuntimeFailure(
        category=category,
        raw_message=raw_text,
        localized_message=explanation,
        hints=hints,
    )


def format_runtime_report(failure: RuntimeFailure, locale: str = DEFAULT_LOCALE) -> str:
    lines = [failure.localized_message]
    if failure.hints:
        lines.append("")
        lines.append(_text(_REPORT_TEXT, "causes", locale))
        lines.extend(f"- {hint}" for hint in failure.hints)
    return "\n".join(lines)


def parse_runtime_output(
    raw: str | None,
    exit_code: int | None = None,
    signal_number: int | None = None,
    timed_out: bool = False,
    locale: str = DEFAULT_LOCALE,
) -> list[CompileDiagnostic]:
    """Position-less inline entries for a runtime failure, for editor display."""
    if not raw and exit_code in (None, 0) and signal_number is None and not timed_out:
        return []
    failure = classify_runtime_failure(raw, exit_code, signal_number, timed_out, locale)
    return [
        CompileDiagnostic(
            line=None,
            column=None,
            end_column=None,
            severity=Severity.ERROR,
            raw_message=failure.raw_message.strip() or failure.category.value,
            localized_message=failure.localized_message,
            suggestion=failure.hints[0] if failure.hints else None,
        )
    ]
