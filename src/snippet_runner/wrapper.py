from __future__ import annotations

import json
from typing import Any, Mapping

from .execution.types import WrappedProgram
from .languages import Backend, CodeLanguage
from .resolver import ResolvedSource

RESULT_MARKER = "__SIM_RESULT__="
PYTHON_ENTRYPOINT = "__sim_main__"

_LOCAL_JS_HEADER = ["(async () => {", "  try {"]
_LOCAL_JS_FOOTER = [
    "  } catch (error) {",
    "    console.error(error);",
    "    throw error;",
    "  }",
    "})()",
]
_REMOTE_JS_HEADER = [
    ";(async () => {",
    "  try {",
    "    const __sim_result = await (async () => {",
]
_REMOTE_JS_FOOTER = [
    "    })();",
    f"    console.log('{RESULT_MARKER}' + JSON.stringify(__sim_result === undefined ? null : __sim_result));",
    "  } catch (error) {",
    "    console.log(String((error && (error.stack || error.message)) || error));",
    "    throw error;",
    "  }",
    "})();",
]
_PYTHON_HEADER = [f"def {PYTHON_ENTRYPOINT}():"]
_REMOTE_PYTHON_FOOTER = [
    f"__sim_result__ = {PYTHON_ENTRYPOINT}()",
    f"print('{RESULT_MARKER}' + json.dumps(__sim_result__, default=str))",
]

REMOTE_JS_WRAPPER_LINES = len(_REMOTE_JS_HEADER)
PYTHON_WRAPPER_LINES = len(_PYTHON_HEADER)


def json_literal(value: Any) -> str:
    """Encode a value as a string literal holding its JSON text.

    The ASCII-escaped double encoding is a valid literal in JavaScript and Python.

    Example:
        ```python
        json_literal({"a": 1})  # '"{\\"a\\": 1}"'
        ```
    """
    return json.dumps(json.dumps(value, default=str))


def _indent(code: str, width: int) -> list[str]:
    """Indent every line of `code` by `width` spaces.

    Example:
        ```python
        _indent("a\\nb", 2)  # ["  a", "  b"]
        ```
    """
    pad = " " * width
    return [f"{pad}{line}" for line in code.split("\n")]


def _python_body(code: str) -> list[str]:
    """Indent a Python body, substituting `pass` for a blank one.

    Example:
        ```python
        _python_body("")  # ["    pass"]
        ```
    """
    if not code.strip():
        return ["    pass"]
    return _indent(code, 4)


def _local_bindings(
    resolved: ResolvedSource, params: Mapping[str, Any], env_vars: Mapping[str, str]
) -> dict[str, Any]:
    """Build the names seeded into a local evaluation context.

    Example:
        ```python
        bindings = _local_bindings(resolved, {"x": 1}, {})
        ```
    """
    return {
        "params": dict(params),
        "environmentVariables": dict(env_vars),
        **resolved.context_variables,
    }


def _wrap_local(
    resolved: ResolvedSource,
    language: CodeLanguage,
    params: Mapping[str, Any],
    env_vars: Mapping[str, str],
    is_custom_tool: bool,
) -> WrappedProgram:
    """Wrap code for the local sandbox, where values travel as bindings.

    Example:
        ```python
        program = _wrap_local(resolved, CodeLanguage.JAVASCRIPT, {}, {}, False)
        ```
    """
    bindings = _local_bindings(resolved, params, env_vars)
    if language is CodeLanguage.PYTHON:
        lines = [*_PYTHON_HEADER, *_python_body(resolved.resolved_code)]
        return WrappedProgram(
            source_text="\n".join(lines),
            prologue_line_count=0,
            wrapper_line_count=len(_PYTHON_HEADER),
            backend=Backend.LOCAL,
            language=language,
            body_indent=4,
            bindings=bindings,
        )

    header = list(_LOCAL_JS_HEADER)
    if is_custom_tool:
        header.extend(f"    const {key} = params.{key};" for key in params)
    lines = [*header, *_indent(resolved.resolved_code, 4), *_LOCAL_JS_FOOTER]
    return WrappedProgram(
        source_text="\n".join(lines),
        prologue_line_count=0,
        wrapper_line_count=len(header),
        backend=Backend.LOCAL,
        language=language,
        body_indent=4,
        bindings=bindings,
    )


def _wrap_remote(
    resolved: ResolvedSource,
    language: CodeLanguage,
    params: Mapping[str, Any],
    env_vars: Mapping[str, str],
) -> WrappedProgram:
    """Wrap code for the remote sandbox, where values are decoded from literals.

    Example:
        ```python
        program = _wrap_remote(resolved, CodeLanguage.PYTHON, {"x": 1}, {})
        ```
    """
    if language is CodeLanguage.PYTHON:
        prologue = [
            f"import json; params = json.loads({json_literal(dict(params))})",
            f"environmentVariables = json.loads({json_literal(dict(env_vars))})",
        ]
        prologue.extend(
            f"{name} = json.loads({json_literal(value)})"
            for name, value in resolved.context_variables.items()
        )
        header = _PYTHON_HEADER
        body = _python_body(resolved.resolved_code)
        footer = _REMOTE_PYTHON_FOOTER
        indent = 4
    else:
        prologue = [
            f"const params = JSON.parse({json_literal(dict(params))});",
            f"const environmentVariables = JSON.parse({json_literal(dict(env_vars))});",
        ]
        prologue.extend(
            f"const {name} = JSON.parse({json_literal(value)});"
            for name, value in resolved.context_variables.items()
        )
        header = _REMOTE_JS_HEADER
        body = _indent(resolved.resolved_code, 6)
        footer = _REMOTE_JS_FOOTER
        indent = 6
    return WrappedProgram(
        source_text="\n".join([*prologue, *header, *body, *footer]),
        prologue_line_count=len(prologue),
        wrapper_line_count=len(header),
        backend=Backend.REMOTE,
        language=language,
        body_indent=indent,
    )


def wrap_code(
    resolved: ResolvedSource,
    backend: Backend,
    language: CodeLanguage,
    *,
    params: Mapping[str, Any] | None = None,
    env_vars: Mapping[str, str] | None = None,
    is_custom_tool: bool = False,
) -> WrappedProgram:
    """Produce the program text for a backend and record its line offset.

    Example:
        ```python
        program = wrap_code(resolve_code_variables("return 1"), Backend.REMOTE, CodeLanguage.JAVASCRIPT)
        ```
    """
    if backend is Backend.LOCAL:
        return _wrap_local(resolved, language, params or {}, env_vars or {}, is_custom_tool)
    if backend is Backend.REMOTE:
        return _wrap_remote(resolved, language, params or {}, env_vars or {})
    raise ValueError(f"Unknown backend: {backend!r}")
