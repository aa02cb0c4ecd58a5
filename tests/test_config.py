import sys
from pathlib import Path

import pytest

from snippet_runner import RunnerPolicy, RunnerSettings
from snippet_runner.execution.config import is_truthy


def test_is_truthy_accepts_common_spellings() -> None:
    assert is_truthy("TRUE")
    assert is_truthy(" yes ")
    assert is_truthy("1")
    assert not is_truthy("false")
    assert not is_truthy(None)
    assert not is_truthy("")


def test_from_env_reads_flags() -> None:
    settings = RunnerSettings.from_env(
        {"E2B_ENABLED": "true", "E2B_API_KEY": "e2b_key", "SNIPPET_RUNNER_NODE": "/opt/node"}
    )

    assert settings.remote_enabled is True
    assert settings.e2b_api_key == "e2b_key"
    assert settings.node_binary == "/opt/node"
    assert settings.python_executable == sys.executable


def test_from_env_defaults_to_local() -> None:
    settings = RunnerSettings.from_env({})

    assert settings.remote_enabled is False
    assert settings.e2b_api_key is None
    assert settings.node_binary == "node"


def test_from_file_layers_over_environment(tmp_path: Path) -> None:
    config = tmp_path / "runner.toml"
    config.write_text(
        (
            "[runner]\n"
            "remote_enabled = true\n"
            "sandbox_timeout_seconds = 60\n"
            "\n"
            "[policy]\n"
            "mode = \"restrict\"\n"
            "memory_limit_mb = 128\n"
            "blocked_imports = [\"math\"]\n"
        ),
        encoding="utf-8",
    )

    settings = RunnerSettings.from_file(str(config), {"E2B_API_KEY": "from-env"})

    assert settings.remote_enabled is True
    assert settings.e2b_api_key == "from-env"
    assert settings.sandbox_timeout_seconds == 60
    assert settings.policy.memory_limit_mb == 128
    assert settings.policy.blocked_imports == ["math"]
    assert settings.policy.config_path == str(config)


def test_from_file_without_policy_keeps_defaults(tmp_path: Path) -> None:
    config = tmp_path / "runner.toml"
    config.write_text("[runner]\nnode_binary = \"nodejs\"\n", encoding="utf-8")

    settings = RunnerSettings.from_file(str(config), {})

    assert settings.node_binary == "nodejs"
    assert settings.policy == RunnerPolicy()


def test_settings_reject_non_positive_timeouts() -> None:
    with pytest.raises(ValueError, match="timeouts must be positive"):
        RunnerSettings(request_timeout_seconds=0)


def test_policy_validation() -> None:
    with pytest.raises(ValueError, match="mode must be"):
        RunnerPolicy(mode="deny")
    with pytest.raises(ValueError, match="must be positive"):
        RunnerPolicy(memory_limit_mb=0)
    with pytest.raises(ValueError, match="list of strings"):
        RunnerPolicy.from_mapping({"blocked_imports": "os"})


def test_default_policy_comes_from_bundled_toml() -> None:
    policy = RunnerPolicy()

    assert policy.mode == "restrict"
    assert "os" in policy.blocked_imports
    assert "eval" in policy.blocked_builtins
    assert policy.to_payload()["max_output_kb"] == policy.max_output_kb
