from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .languages import DEFAULT_CODE_LANGUAGE, CodeLanguage, parse_language

DEFAULT_TIMEOUT_MS = 5000


@dataclass(frozen=True, slots=True)
class WorkflowVariable:
    """Typed workflow variable referenced as `<variable.NAME>` in snippets.

    Example:
        ```python
        var = WorkflowVariable(name="retries", type="number", value="3")
        ```
    """

    name: str
    type: str = "plain"
    value: Any = None

    @classmethod
    def from_obj(cls, raw: Any) -> "WorkflowVariable":
        """Build a variable from a mapping or return an existing instance.

        Example:
            ```python
            var = WorkflowVariable.from_obj({"name": "flag", "type": "boolean", "value": "true"})
            ```
        """
        if isinstance(raw, WorkflowVariable):
            return raw
        if not isinstance(raw, Mapping):
            raise ValueError("Workflow variables must be objects with name, type and value")
        return cls(
            name=str(raw.get("name") or ""),
            type=str(raw.get("type") or "plain"),
            value=raw.get("value"),
        )


def _join_code(code: Any) -> str:
    """Normalize snippet code given as a string or as a list of chunks.

    Example:
        ```python
        text = _join_code([{"id": "a", "content": "const x = 1"}, {"id": "b", "content": "return x"}])
        ```
    """
    if code is None:
        return ""
    if isinstance(code, str):
        return code
    if isinstance(code, list):
        parts: list[str] = []
        for chunk in code:
            if isinstance(chunk, Mapping):
                parts.append(str(chunk.get("content", "")))
            else:
                parts.append(str(chunk))
        return "\n".join(parts)
    raise ValueError("'code' must be a string or a list of code chunks")


def _mapping(value: Any, field_name: str) -> dict[str, Any]:
    """Validate an optional object field of the inbound payload.

    Example:
        ```python
        env = _mapping({"TOKEN": "x"}, "envVars")
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{field_name}' must be an object")
    return dict(value)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One snippet execution request as delivered by the routing layer.

    Example:
        ```python
        req = ExecutionRequest(code="return 1 + 1", language=CodeLanguage.JAVASCRIPT)
        ```
    """

    code: str
    language: CodeLanguage = DEFAULT_CODE_LANGUAGE
    params: dict[str, Any] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    prefer_local: bool = False
    env_vars: dict[str, str] = field(default_factory=dict)
    block_data: dict[str, Any] = field(default_factory=dict)
    block_name_mapping: dict[str, str] = field(default_factory=dict)
    workflow_variables: dict[str, WorkflowVariable] = field(default_factory=dict)
    is_custom_tool: bool = False

    def __post_init__(self) -> None:
        """Validate the timeout after dataclass initialization.

        Example:
            ```python
            ExecutionRequest(code="return 1", timeout_ms=1000)
            ```
        """
        if int(self.timeout_ms) <= 0:
            raise ValueError("timeout_ms must be a positive number of milliseconds")

    @classmethod
    def from_payload(cls, body: Mapping[str, Any]) -> "ExecutionRequest":
        """Parse the camelCase request body sent by the routing layer.

        Example:
            ```python
            req = ExecutionRequest.from_payload({"code": "return 2", "language": "javascript", "useLocalVM": True})
            ```
        """
        params = _mapping(body.get("params"), "params")
        params.pop("_context", None)
        raw_variables = _mapping(body.get("workflowVariables"), "workflowVariables")
        timeout = body.get("timeout")
        return cls(
            code=_join_code(body.get("code")),
            language=parse_language(body.get("language")),
            params=params,
            timeout_ms=int(timeout) if timeout else DEFAULT_TIMEOUT_MS,
            prefer_local=bool(body.get("useLocalVM", body.get("preferLocal", False))),
            env_vars={str(k): str(v) for k, v in _mapping(body.get("envVars"), "envVars").items()},
            block_data=_mapping(body.get("blockData"), "blockData"),
            block_name_mapping={
                str(k): str(v)
                for k, v in _mapping(body.get("blockNameMapping"), "blockNameMapping").items()
            },
            workflow_variables={
                str(k): WorkflowVariable.from_obj(v) for k, v in raw_variables.items()
            },
            is_custom_tool=bool(body.get("isCustomTool", False)),
        )


@dataclass(slots=True)
class EnhancedError:
    """Failure details mapped back onto the user's own snippet.

    Example:
        ```python
        err = EnhancedError(message="x is not defined", kind="ReferenceError", line=1)
        ```
    """

    message: str
    kind: str = "Error"
    line: int | None = None
    column: int | None = None
    line_content: str | None = None
    stack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the debug payload.

        Example:
            ```python
            payload = EnhancedError(message="boom").to_dict()
            ```
        """
        return {
            "line": self.line,
            "column": self.column,
            "errorType": self.kind,
            "lineContent": self.line_content,
            "stack": self.stack,
        }


@dataclass(slots=True)
class ExecutionResult:
    """Uniform result returned for every execution request.

    Example:
        ```python
        result = ExecutionResult(success=True, result=2, stdout="", execution_time_ms=12)
        ```
    """

    success: bool
    result: Any = None
    stdout: str = ""
    execution_time_ms: int = 0
    error: str | None = None
    debug: EnhancedError | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the response body returned to the routing layer.

        Example:
            ```python
            body = ExecutionResult(success=True, result=2).to_dict()
            ```
        """
        body: dict[str, Any] = {
            "success": self.success,
            "output": {
                "result": self.result,
                "stdout": self.stdout,
                "executionTime": self.execution_time_ms,
            },
        }
        if self.error is not None:
            body["error"] = self.error
        if self.debug is not None:
            body["debug"] = self.debug.to_dict()
        return body
