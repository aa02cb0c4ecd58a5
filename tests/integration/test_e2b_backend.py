import os

import pytest

from snippet_runner import CodeLanguage, ExecutionRequest, RunnerSettings, run_function_sync

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.getenv("RUN_E2B_TESTS") != "1" or not os.getenv("E2B_API_KEY"),
        reason="Set RUN_E2B_TESTS=1 and E2B_API_KEY to run live E2B tests",
    ),
]


def _settings() -> RunnerSettings:
    return RunnerSettings.from_env({"E2B_ENABLED": "true", "E2B_API_KEY": os.environ["E2B_API_KEY"]})


def test_e2b_python_returns_value() -> None:
    request = ExecutionRequest(
        code="print('hello')\nreturn params['x'] * 2",
        language=CodeLanguage.PYTHON,
        params={"x": 21},
        timeout_ms=20000,
    )
    result = run_function_sync(request, _settings())

    assert result.success is True
    assert result.result == 42
    assert "hello" in result.stdout


def test_e2b_javascript_returns_value() -> None:
    request = ExecutionRequest(code="return 1+1", timeout_ms=20000)
    result = run_function_sync(request, _settings())

    assert result.success is True
    assert result.result == 2


def test_e2b_python_error_maps_to_user_line() -> None:
    request = ExecutionRequest(
        code="a = 1\nreturn missing_name",
        language=CodeLanguage.PYTHON,
        timeout_ms=20000,
    )
    result = run_function_sync(request, _settings())

    assert result.success is False
    assert "Line 2" in (result.error or "")
    assert "missing_name" in (result.error or "")
