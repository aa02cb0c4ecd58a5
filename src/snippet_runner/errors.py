from __future__ import annotations

import re

from .execution.local_engine import JS_FILENAME, PYTHON_FILENAME
from .execution.types import FailureKind, RawFailure, WrappedProgram
from .languages import Backend, CodeLanguage
from .models import EnhancedError

BASE_ERROR_KIND = "Error"

_LOCAL_JS_FRAME = re.compile(r"user-function\.js:(\d+)(?::(\d+))?")
_LOCAL_PY_FRAME = re.compile(r'File "user-function\.py", line (\d+)')
_CELL_LINE = re.compile(r"Cell In\[\d+\], line (\d+)")
_DETECTED_AT = re.compile(r"\s*\(detected at line \d+\)")
_FILE_LINE = re.compile(r"\s*\([^()]+\.py, line \d+\)")
_PYTHON_KIND = re.compile(r"^(\w+):\s*(.*)$", re.DOTALL)
_JS_LOCATED = re.compile(r"^(\w+Error):\s*[^:]+:\s*([^(]+)\.\s*\((\d+):(\d+)\)")
_JS_POINTER = re.compile(r"^>\s*(\d+)\s*\|", re.MULTILINE)
_JS_KIND = re.compile(r"^(\w+Error):\s*(.+)")
_PATH_PREFIX = re.compile(r"^\S*[/\\]\S*:\s*")
_LINE_COLUMN_SUFFIX = re.compile(r"\s*\(\d+:\d+\)\s*$")
_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_ON_LINE = re.compile(r"\bon line (\d+)")
_ENGINE_INTERNALS = ("node:vm", "vm.js", "internal/", "vm_harness.js")

_KIND_LABELS = {
    "SyntaxError": "Syntax Error",
    "TypeError": "Type Error",
    "ReferenceError": "Reference Error",
}


def strip_ansi(text: str) -> str:
    """Remove terminal colour escapes from backend output.

    Example:
        ```python
        strip_ansi("\\x1b[0;31mNameError\\x1b[0m")  # "NameError"
        ```
    """
    return _ANSI.sub("", text)


def _clean_stack(stack: str) -> str | None:
    """Keep stack lines that reference user code rather than engine internals.

    Example:
        ```python
        cleaned = _clean_stack("Error: x\\n    at user-function.js:3:5\\n    at node:vm:1:1")
        ```
    """
    if not stack:
        return None
    kept = [
        re.sub(r"^\s+at\s+", "    at ", line)
        for line in stack.split("\n")
        if JS_FILENAME in line
        or PYTHON_FILENAME in line
        or not any(marker in line for marker in _ENGINE_INTERNALS)
    ]
    return "\n".join(kept) or None


def _line_content(code_lines: list[str], line: int) -> str | None:
    """Return the trimmed text of a 1-based user line, None when out of range.

    Example:
        ```python
        _line_content(["a = 1", "  b"], 2)  # "b"
        ```
    """
    if 1 <= line <= len(code_lines):
        return code_lines[line - 1].strip()
    return None


def _is_unterminated_syntax_error(kind: str, message: str) -> bool:
    """Detect engine messages typical of a snippet that ends mid-construct.

    Example:
        ```python
        _is_unterminated_syntax_error("SyntaxError", "Unexpected end of input")  # True
        ```
    """
    return kind == "SyntaxError" and (
        "Unexpected token" in message or "Unexpected end of input" in message
    )


def _translate_local(failure: RawFailure, program: WrappedProgram, user_code: str) -> EnhancedError:
    """Map a local sandbox stack trace onto the user's snippet.

    Example:
        ```python
        err = _translate_local(failure, program, "undefinedVar")
        ```
    """
    kind = failure.error_name or BASE_ERROR_KIND
    message = failure.message
    if program.language is CodeLanguage.PYTHON:
        message = _ON_LINE.sub(lambda m: f"on line {int(m.group(1)) - program.offset}", message)
    enhanced = EnhancedError(
        message=message, kind=kind, stack=_clean_stack(failure.stack_or_trace)
    )

    raw_line: int | None = None
    raw_column: int | None = None
    if program.language is CodeLanguage.PYTHON:
        frames = _LOCAL_PY_FRAME.findall(failure.stack_or_trace)
        if frames:
            raw_line = int(frames[-1])
    else:
        match = _LOCAL_JS_FRAME.search(failure.stack_or_trace)
        if match:
            raw_line = int(match.group(1))
            raw_column = int(match.group(2)) if match.group(2) else None
    if raw_line is None:
        return enhanced

    start = program.user_code_start_line
    code_lines = user_code.split("\n")
    adjusted = raw_line - start + 1

    if raw_line > start and _is_unterminated_syntax_error(kind, failure.message) and user_code:
        # Wrapper footer errors usually come from a dangling bracket on the last user line.
        enhanced.line = len(code_lines)
        enhanced.column = len(code_lines[-1])
        enhanced.line_content = code_lines[-1].strip()
        return enhanced

    if adjusted > 0:
        line = min(adjusted, len(code_lines))
        enhanced.line = line
        if raw_column is not None:
            enhanced.column = max(1, raw_column - program.body_indent)
        enhanced.line_content = _line_content(code_lines, line)
        return enhanced

    enhanced.line = raw_line
    enhanced.column = raw_column
    return enhanced


def _translate_remote_python(failure: RawFailure, program: WrappedProgram) -> tuple[str, str, int | None]:
    """Extract kind, message and user line from a remote Python failure.

    Example:
        ```python
        kind, message, line = _translate_remote_python(failure, program)
        ```
    """
    text = strip_ansi(f"{failure.stack_or_trace}\n{failure.message}")
    user_line = None
    cell = _CELL_LINE.search(text)
    if cell:
        user_line = int(cell.group(1)) - program.offset

    message = _DETECTED_AT.sub("", strip_ansi(failure.message))
    message = _FILE_LINE.sub("", message).strip()
    kind = failure.error_name or BASE_ERROR_KIND
    match = _PYTHON_KIND.match(message)
    if match and match.group(1) == kind:
        message = match.group(2).strip()
    return kind, message, user_line


def _translate_remote_javascript(failure: RawFailure, program: WrappedProgram) -> tuple[str, str, int | None]:
    """Extract kind, message and user line from a remote JavaScript failure.

    Example:
        ```python
        kind, message, line = _translate_remote_javascript(failure, program)
        ```
    """
    text = strip_ansi(failure.message)
    first_line = text.split("\n", 1)[0]
    user_line = None

    located = _JS_LOCATED.match(first_line)
    if located:
        return located.group(1), located.group(2).strip(), int(located.group(3)) - program.offset

    pointer = _JS_POINTER.search(text) or _JS_POINTER.search(strip_ansi(failure.stack_or_trace))
    if pointer:
        user_line = int(pointer.group(1)) - program.offset

    loose = _JS_KIND.match(first_line)
    if loose:
        message = _PATH_PREFIX.sub("", loose.group(2))
        message = _LINE_COLUMN_SUFFIX.sub("", message).strip()
        return loose.group(1), message, user_line
    return failure.error_name or BASE_ERROR_KIND, first_line, user_line


def _translate_remote(failure: RawFailure, program: WrappedProgram, user_code: str) -> EnhancedError:
    """Map a remote sandbox error report onto the user's snippet.

    Example:
        ```python
        err = _translate_remote(failure, program, "print(x)")
        ```
    """
    if program.language is CodeLanguage.PYTHON:
        kind, message, user_line = _translate_remote_python(failure, program)
    else:
        kind, message, user_line = _translate_remote_javascript(failure, program)

    enhanced = EnhancedError(
        message=message or failure.message,
        kind=kind,
        stack=strip_ansi(failure.stack_or_trace) or None,
    )
    if user_line is not None and user_line > 0:
        code_lines = user_code.split("\n")
        line = min(user_line, len(code_lines))
        enhanced.line = line
        enhanced.line_content = _line_content(code_lines, line)
    return enhanced


def translate_failure(failure: RawFailure, program: WrappedProgram, user_code: str) -> EnhancedError:
    """Translate a raw backend failure into user-facing coordinates.

    Timeouts and transport failures carry no line mapping.

    Example:
        ```python
        enhanced = translate_failure(outcome.failure, program, resolved.resolved_code)
        ```
    """
    if failure.kind in (FailureKind.TIMEOUT, FailureKind.TRANSPORT):
        return EnhancedError(
            message=failure.message,
            kind=BASE_ERROR_KIND,
            stack=failure.stack_or_trace or None,
        )
    if failure.backend is Backend.LOCAL:
        return _translate_local(failure, program, user_code)
    return _translate_remote(failure, program, user_code)


def _has_unbalanced_pair(text: str | None) -> bool:
    """Naively check a line for an opening bracket without its closer.

    Example:
        ```python
        _has_unbalanced_pair("foo(bar")  # True
        ```
    """
    if not text:
        return False
    return any(opener in text and closer not in text for opener, closer in ("()", "[]", "{}"))


def format_error_message(enhanced: EnhancedError) -> str:
    """Assemble the single human-readable error string.

    Example:
        ```python
        format_error_message(EnhancedError("x is not defined", "ReferenceError", line=1, line_content="x"))
        # "Reference Error: Line 1: `x` - x is not defined"
        ```
    """
    message = enhanced.message
    if enhanced.line is not None:
        info = f"Line {enhanced.line}"
        if enhanced.column is not None:
            info += f":{enhanced.column}"
        if enhanced.line_content:
            info += f": `{enhanced.line_content}`"
        message = f"{info} - {message}"

    if enhanced.kind != BASE_ERROR_KIND:
        label = _KIND_LABELS.get(enhanced.kind, enhanced.kind)
        if label.lower() not in message.lower():
            message = f"{label}: {message}"

    if enhanced.kind == "SyntaxError":
        if "Invalid or unexpected token" in message:
            message += " (Check for missing quotes, brackets, or semicolons)"
        elif "Unexpected end of input" in message:
            message += " (Check for missing closing brackets or braces)"
        elif "Unexpected token" in message:
            if _has_unbalanced_pair(enhanced.line_content):
                message += " (Check for missing closing parentheses, brackets, or braces)"
            else:
                message += " (Check your syntax)"
    return message
