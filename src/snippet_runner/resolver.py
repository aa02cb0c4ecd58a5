from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from .models import WorkflowVariable

logger = logging.getLogger(__name__)

_VARIABLE_PATTERN = re.compile(r"<variable\.([^>]+)>")
_ENV_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_TAG_PATTERN = re.compile(r"<([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)>")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")
_WHITESPACE = re.compile(r"\s+")

# Stringified JSON shorter than this is left alone.
_REPARSE_MIN_LENGTH = 100


@dataclass(slots=True)
class ResolvedSource:
    """Snippet text with references replaced by generated identifiers.

    Example:
        ```python
        resolved = ResolvedSource(resolved_code="return __var_TOKEN", context_variables={"__var_TOKEN": "abc"})
        ```
    """

    resolved_code: str
    context_variables: dict[str, Any] = field(default_factory=dict)


def sanitize_identifier(name: str) -> str:
    """Replace every character outside `[A-Za-z0-9_]` with `_`.

    Example:
        ```python
        sanitize_identifier("my block.out")  # "my_block_out"
        ```
    """
    return _UNSAFE_CHARS.sub("_", name)


def normalize_block_name(name: str) -> str:
    """Normalize a block display name the way reference paths spell it.

    Example:
        ```python
        normalize_block_name("Block 1")  # "block1"
        ```
    """
    return _WHITESPACE.sub("", name).lower()


def get_nested_value(obj: Any, path: str) -> Any:
    """Look up a dotted path in nested mappings, returning None when absent.

    A key equal to the whole path wins over segment traversal.

    Example:
        ```python
        get_nested_value({"a": {"b": [10, 20]}}, "a.b.1")  # 20
        ```
    """
    if obj is None or not path:
        return None
    if isinstance(obj, Mapping) and path in obj:
        return obj[path]
    current = obj
    for key in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
        if current is None:
            return None
    return current


def _to_number(value: Any) -> Any:
    """Coerce a stored variable value to a number, None when unparsable.

    Example:
        ```python
        _to_number("42")  # 42
        ```
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def coerce_variable_value(variable: WorkflowVariable) -> Any:
    """Convert a workflow variable's stored value according to its type.

    Example:
        ```python
        coerce_variable_value(WorkflowVariable("flag", "boolean", "true"))  # True
        ```
    """
    value = variable.value
    if value is None:
        return None
    kind = "plain" if variable.type == "string" else variable.type
    if kind == "number":
        return _to_number(value)
    if kind == "boolean":
        return value is True or value == "true"
    if kind == "json" and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _find_variable(
    workflow_variables: Mapping[str, WorkflowVariable], name: str
) -> WorkflowVariable | None:
    """Find a workflow variable by its whitespace-stripped display name.

    Example:
        ```python
        var = _find_variable({"v1": WorkflowVariable("my var")}, "myvar")
        ```
    """
    for variable in workflow_variables.values():
        if _WHITESPACE.sub("", variable.name or "") == name:
            return variable
    return None


def _distinct_matches(pattern: re.Pattern[str], code: str) -> list[re.Match[str]]:
    """Return the first match for every distinct token text, in source order.

    Example:
        ```python
        matches = _distinct_matches(_ENV_PATTERN, "{{A}} + {{A}}")  # one match
        ```
    """
    seen: set[str] = set()
    matches: list[re.Match[str]] = []
    for match in pattern.finditer(code):
        if match.group(0) in seen:
            continue
        seen.add(match.group(0))
        matches.append(match)
    return matches


def resolve_workflow_variables(
    code: str,
    workflow_variables: Mapping[str, WorkflowVariable],
    context_variables: dict[str, Any],
) -> str:
    """Replace `<variable.NAME>` tokens with `__variable_*` identifiers.

    Unknown variables are replaced with an empty string.

    Example:
        ```python
        ctx = {}
        code = resolve_workflow_variables("return <variable.n>", {"v": WorkflowVariable("n", "number", "4")}, ctx)
        ```
    """
    resolved = code
    for match in _distinct_matches(_VARIABLE_PATTERN, code):
        token = match.group(0)
        name = match.group(1).strip()
        variable = _find_variable(workflow_variables, name)
        if variable is None:
            logger.debug("Workflow variable %r not found, removing reference", name)
            resolved = resolved.replace(token, "")
            continue
        identifier = f"__variable_{sanitize_identifier(name)}"
        context_variables[identifier] = coerce_variable_value(variable)
        resolved = resolved.replace(token, identifier)
    return resolved


def resolve_environment_variables(
    code: str,
    params: Mapping[str, Any],
    env_vars: Mapping[str, str],
    context_variables: dict[str, Any],
) -> str:
    """Replace `{{NAME}}` tokens with `__var_*` identifiers.

    Example:
        ```python
        ctx = {}
        code = resolve_environment_variables("fetch({{URL}})", {}, {"URL": "https://x"}, ctx)
        ```
    """
    resolved = code
    for match in _distinct_matches(_ENV_PATTERN, code):
        token = match.group(0)
        name = match.group(1).strip()
        value = env_vars.get(name)
        if value is None:
            value = params.get(name)
        if value is None:
            value = ""
        identifier = f"__var_{sanitize_identifier(name)}"
        context_variables[identifier] = value
        resolved = resolved.replace(token, identifier)
    return resolved


def _lookup_tag(
    path: str,
    params: Mapping[str, Any],
    block_data: Mapping[str, Any],
    block_name_mapping: Mapping[str, str],
) -> Any:
    """Resolve a tag path against params, block data, then block names.

    Example:
        ```python
        value = _lookup_tag("block1.out", {}, {"b1": {"out": 3}}, {"Block 1": "b1"})
        ```
    """
    value = get_nested_value(params, path)
    if value is None:
        value = get_nested_value(block_data, path)
    if value is None and "." in path:
        head, _, rest = path.partition(".")
        wanted = normalize_block_name(head)
        for block_name, block_id in block_name_mapping.items():
            if normalize_block_name(block_name) == wanted:
                value = get_nested_value(block_data, f"{block_id}.{rest}")
                break
    if (
        isinstance(value, str)
        and len(value) > _REPARSE_MIN_LENGTH
        and value.startswith(("{", "["))
    ):
        try:
            value = json.loads(value)
        except ValueError:
            pass
    return "" if value is None else value


def resolve_tag_variables(
    code: str,
    params: Mapping[str, Any],
    block_data: Mapping[str, Any],
    block_name_mapping: Mapping[str, str],
    context_variables: dict[str, Any],
) -> str:
    """Replace `<path.to.value>` tokens with `__tag_*` identifiers.

    Example:
        ```python
        ctx = {}
        code = resolve_tag_variables("return <start.input>", {}, {"start": {"input": 1}}, {}, ctx)
        ```
    """
    resolved = code
    for match in _distinct_matches(_TAG_PATTERN, code):
        token = match.group(0)
        path = match.group(1)
        identifier = f"__tag_{sanitize_identifier(path)}"
        context_variables[identifier] = _lookup_tag(path, params, block_data, block_name_mapping)
        resolved = resolved.replace(token, identifier)
    return resolved


def resolve_code_variables(
    code: str,
    params: Mapping[str, Any] | None = None,
    env_vars: Mapping[str, str] | None = None,
    block_data: Mapping[str, Any] | None = None,
    block_name_mapping: Mapping[str, str] | None = None,
    workflow_variables: Mapping[str, WorkflowVariable] | None = None,
) -> ResolvedSource:
    """Run the workflow-variable, environment and tag passes in that order.

    Example:
        ```python
        resolved = resolve_code_variables("return {{KEY}}", env_vars={"KEY": "v"})
        ```
    """
    context_variables: dict[str, Any] = {}
    resolved = resolve_workflow_variables(code, workflow_variables or {}, context_variables)
    resolved = resolve_environment_variables(
        resolved, params or {}, env_vars or {}, context_variables
    )
    resolved = resolve_tag_variables(
        resolved, params or {}, block_data or {}, block_name_mapping or {}, context_variables
    )
    return ResolvedSource(resolved_code=resolved, context_variables=context_variables)


def collect_block_data(
    block_outputs: Mapping[str, Any],
    block_names: Mapping[str, str],
) -> tuple[dict[str, Any], dict[str, str]]:
    """Build `block_data` and `block_name_mapping` from executed block outputs.

    Both the display name and its normalized form map to the block ID.

    Example:
        ```python
        data, names = collect_block_data({"b1": {"out": 1}}, {"b1": "Block 1"})
        ```
    """
    block_data: dict[str, Any] = {}
    block_name_mapping: dict[str, str] = {}
    for block_id, output in block_outputs.items():
        if output is None:
            continue
        block_data[block_id] = output
        name = block_names.get(block_id)
        if name:
            block_name_mapping[name] = block_id
            block_name_mapping[normalize_block_name(name)] = block_id
    return block_data, block_name_mapping
