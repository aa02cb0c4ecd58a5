import asyncio
import shutil

import pytest

from snippet_runner import CodeLanguage, ExecutionRequest, LocalEngine, RunnerSettings, run_function
from snippet_runner.execution.local_engine import filename_for
from snippet_runner.execution.types import FailureKind
from snippet_runner.languages import Backend
from snippet_runner.resolver import ResolvedSource
from snippet_runner.wrapper import wrap_code

ENGINE = LocalEngine()

requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="Node.js is not installed")


def run_js(code: str, **kwargs):
    request = ExecutionRequest(code=code, language=CodeLanguage.JAVASCRIPT, **kwargs)
    return asyncio.run(run_function(request, RunnerSettings(), local_engine=ENGINE))


def test_local_engine_requires_node_binary() -> None:
    with pytest.raises(ValueError, match="node_binary"):
        LocalEngine(node_binary="  ")


def test_missing_node_is_a_transport_failure() -> None:
    engine = LocalEngine(node_binary="definitely-not-a-node-binary")
    program = wrap_code(ResolvedSource("return 1"), Backend.LOCAL, CodeLanguage.JAVASCRIPT)

    outcome = asyncio.run(engine.invoke(program, ExecutionRequest(code="return 1")))

    assert outcome.ok is False
    assert outcome.failure is not None
    assert outcome.failure.kind is FailureKind.TRANSPORT
    assert "Node.js runtime was not found" in outcome.failure.message


def test_invalid_sandbox_output_is_a_transport_failure() -> None:
    program = wrap_code(ResolvedSource("return 1"), Backend.LOCAL, CodeLanguage.JAVASCRIPT)

    outcome = ENGINE._parse_response(program, ExecutionRequest(code="return 1"), b"not json", b"boom", 1)

    assert outcome.failure is not None
    assert outcome.failure.kind is FailureKind.TRANSPORT
    assert outcome.failure.stack_or_trace == "boom"


def test_vm_timeout_code_maps_to_timeout() -> None:
    program = wrap_code(ResolvedSource("while (true) {}"), Backend.LOCAL, CodeLanguage.JAVASCRIPT)
    body = (
        b'{"ok": false, "stdout": "", "error": {"name": "Error", '
        b'"message": "Script execution timed out after 50ms", "stack": "", '
        b'"code": "ERR_SCRIPT_EXECUTION_TIMEOUT"}}'
    )

    outcome = ENGINE._parse_response(program, ExecutionRequest(code="x", timeout_ms=50), body, b"", 0)

    assert outcome.failure is not None
    assert outcome.failure.kind is FailureKind.TIMEOUT
    assert outcome.failure.message == "Execution timed out after 50ms"


@requires_node
def test_javascript_returns_value() -> None:
    result = run_js("return 1+1")

    assert result.success is True
    assert result.result == 2
    assert result.stdout == ""


@requires_node
def test_javascript_captures_console_and_params() -> None:
    result = run_js(
        "console.log('hello', params.name)\nreturn { greeting: `hi ${params.name}` }",
        params={"name": "Ada"},
    )

    assert result.success is True
    assert result.result == {"greeting": "hi Ada"}
    assert result.stdout == "hello Ada\n"


@requires_node
def test_javascript_resolves_references() -> None:
    result = run_js(
        "return [{{TOKEN}}, <start.input>]",
        env_vars={"TOKEN": "secret"},
        block_data={"start": {"input": 5}},
    )

    assert result.success is True
    assert result.result == ["secret", 5]


@requires_node
def test_javascript_custom_tool_exposes_params() -> None:
    result = run_js("return city.toUpperCase()", params={"city": "paris"}, is_custom_tool=True)

    assert result.success is True
    assert result.result == "PARIS"


@requires_node
def test_javascript_reference_error_maps_to_line_one() -> None:
    result = run_js("undefinedVar")

    assert result.success is False
    assert "Line 1" in (result.error or "")
    assert "undefinedVar" in (result.error or "")


@requires_node
def test_javascript_runtime_error_on_later_line() -> None:
    result = run_js("const a = 1\nconst b = null\nreturn b.value")

    assert result.success is False
    assert result.debug is not None
    assert result.debug.line == 3
    assert result.debug.line_content == "return b.value"
    assert "Type Error" in (result.error or "")


@requires_node
def test_javascript_unclosed_brace_points_at_last_line() -> None:
    result = run_js("if (true) {\n  return 1")

    assert result.success is False
    assert "Syntax Error" in (result.error or "")
    assert result.debug is not None
    assert result.debug.line == 2


@requires_node
def test_javascript_synchronous_loop_times_out() -> None:
    result = run_js("while (true) {}", timeout_ms=200)

    assert result.success is False
    assert result.error == "Execution timed out after 200ms"


def test_filename_for_language() -> None:
    assert filename_for(CodeLanguage.JAVASCRIPT) == "user-function.js"
    assert filename_for(CodeLanguage.PYTHON) == "user-function.py"


@requires_node
def test_javascript_loop_after_await_keeps_stdout() -> None:
    result = run_js("console.log('before')\nawait Promise.resolve()\nwhile (true) {}", timeout_ms=200)

    assert result.success is False
    assert result.error == "Execution timed out after 200ms"
    assert result.stdout == "before\n"
    assert result.execution_time_ms < 2000


@requires_node
def test_javascript_unsettled_promise_is_an_execution_failure() -> None:
    result = run_js("console.log('waiting')\nawait new Promise(() => {})")

    assert result.success is False
    assert "Execution did not complete" in (result.error or "")
    assert result.stdout == "waiting\n"
