from pathlib import Path

from snippet_runner import CodeLanguage, ExecutionRequest, RunnerPolicy, RunnerSettings, run_function_sync


def run_code(code: str, policy: RunnerPolicy | None = None, **kwargs):
    settings = RunnerSettings(policy=policy or RunnerPolicy())
    request = ExecutionRequest(code=code, language=CodeLanguage.PYTHON, **kwargs)
    return run_function_sync(request, settings)


def test_policy_file_path_blocks_imports_and_builtins(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text(
        (
            "[policy]\n"
            "mode = \"restrict\"\n"
            "blocked_imports = [\"math\"]\n"
            "blocked_builtins = [\"len\"]\n"
        ),
        encoding="utf-8",
    )
    policy = RunnerPolicy.from_file(str(policy_file))

    import_result = run_code("import math", policy=policy)
    assert import_result.success is False
    assert "blocked by policy" in (import_result.error or "")

    builtin_result = run_code("return len([1, 2, 3])", policy=policy)
    assert builtin_result.success is False
    assert "name 'len' is not defined" in (builtin_result.error or "")


def test_allow_mode_allows_only_selected_symbols() -> None:
    policy = RunnerPolicy(
        mode="allow",
        allowed_imports=["math"],
        allowed_builtins=["len", "sum", "range"],
    )

    allowed = run_code("import math\nreturn math.sqrt(params['x']) + len([1])", policy=policy, params={"x": 16})
    assert allowed.success is True
    assert allowed.result == 5.0

    blocked_import = run_code("import json", policy=policy)
    assert blocked_import.success is False
    assert "not allowed by policy" in (blocked_import.error or "")

    blocked_builtin = run_code("return abs(-1)", policy=policy)
    assert blocked_builtin.success is False
    assert "name 'abs' is not defined" in (blocked_builtin.error or "")


def test_output_is_capped_by_policy() -> None:
    policy = RunnerPolicy(max_output_kb=1)

    result = run_code("print('x' * 5000)\nreturn 1", policy=policy)

    assert result.success is True
    assert len(result.stdout) == 1024
