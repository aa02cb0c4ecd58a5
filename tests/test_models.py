import pytest

from snippet_runner import CodeLanguage, EnhancedError, ExecutionRequest, ExecutionResult, WorkflowVariable
from snippet_runner.models import DEFAULT_TIMEOUT_MS


def test_from_payload_reads_camel_case_fields() -> None:
    request = ExecutionRequest.from_payload(
        {
            "code": "return x",
            "language": "python",
            "params": {"x": 1, "_context": {"workflowId": "wf"}},
            "timeout": 2000,
            "useLocalVM": True,
            "envVars": {"TOKEN": "abc"},
            "blockData": {"b1": {"out": 3}},
            "blockNameMapping": {"Block 1": "b1"},
            "workflowVariables": {"v1": {"name": "retries", "type": "number", "value": "3"}},
            "isCustomTool": True,
        }
    )

    assert request.language is CodeLanguage.PYTHON
    assert request.params == {"x": 1}
    assert request.timeout_ms == 2000
    assert request.prefer_local is True
    assert request.env_vars == {"TOKEN": "abc"}
    assert request.block_name_mapping == {"Block 1": "b1"}
    assert request.workflow_variables["v1"] == WorkflowVariable("retries", "number", "3")
    assert request.is_custom_tool is True


def test_from_payload_defaults() -> None:
    request = ExecutionRequest.from_payload({"code": "return 1", "language": "cobol"})

    assert request.language is CodeLanguage.JAVASCRIPT
    assert request.timeout_ms == DEFAULT_TIMEOUT_MS
    assert request.prefer_local is False
    assert request.params == {}


def test_from_payload_joins_code_chunks() -> None:
    request = ExecutionRequest.from_payload(
        {"code": [{"id": "a", "content": "const x = 1"}, {"id": "b", "content": "return x"}]}
    )
    assert request.code == "const x = 1\nreturn x"


def test_from_payload_rejects_non_object_fields() -> None:
    with pytest.raises(ValueError, match="'params' must be an object"):
        ExecutionRequest.from_payload({"code": "return 1", "params": [1, 2]})


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError, match="timeout_ms"):
        ExecutionRequest(code="return 1", timeout_ms=0)


def test_result_body_shape() -> None:
    ok = ExecutionResult(success=True, result=2, stdout="", execution_time_ms=7).to_dict()
    assert ok == {"success": True, "output": {"result": 2, "stdout": "", "executionTime": 7}}

    failed = ExecutionResult(
        success=False,
        stdout="partial\n",
        error="Reference Error: Line 1: `x` - x is not defined",
        debug=EnhancedError("x is not defined", "ReferenceError", line=1, column=1, line_content="x"),
    ).to_dict()
    assert failed["error"].startswith("Reference Error")
    assert failed["output"]["stdout"] == "partial\n"
    assert failed["debug"] == {
        "line": 1,
        "column": 1,
        "errorType": "ReferenceError",
        "lineContent": "x",
        "stack": None,
    }
