from __future__ import annotations

from enum import Enum
from typing import Any


class CodeLanguage(str, Enum):
    """Languages a snippet can be written in.

    Example:
        ```python
        lang = CodeLanguage("python")
        ```
    """

    JAVASCRIPT = "javascript"
    PYTHON = "python"


class Backend(str, Enum):
    """Execution backends a snippet can be routed to.

    Example:
        ```python
        backend = Backend.LOCAL
        ```
    """

    LOCAL = "local"
    REMOTE = "remote"


DEFAULT_CODE_LANGUAGE = CodeLanguage.JAVASCRIPT


def parse_language(value: Any) -> CodeLanguage:
    """Return the language named by `value`, falling back to the default.

    Example:
        ```python
        lang = parse_language("ruby")  # CodeLanguage.JAVASCRIPT
        ```
    """
    if isinstance(value, CodeLanguage):
        return value
    try:
        return CodeLanguage(str(value).strip().lower())
    except ValueError:
        return DEFAULT_CODE_LANGUAGE


def language_display_name(language: CodeLanguage) -> str:
    """Return the human-readable name of a language.

    Example:
        ```python
        name = language_display_name(CodeLanguage.PYTHON)  # "Python"
        ```
    """
    if language is CodeLanguage.JAVASCRIPT:
        return "JavaScript"
    if language is CodeLanguage.PYTHON:
        return "Python"
    return str(language.value)
