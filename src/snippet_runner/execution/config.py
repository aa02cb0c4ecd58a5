from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ..policy import RunnerPolicy

DEFAULT_NODE_BINARY = "node"
DEFAULT_SANDBOX_TIMEOUT_SECONDS = 300
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
# Wall-clock slack before a local sandbox that ignored its own deadline is killed.
LOCAL_GRACE_SECONDS = 2.0
_TRUTHY = {"1", "true", "yes", "on"}


def is_truthy(value: Any) -> bool:
    """Interpret an environment flag value.

    Example:
        ```python
        is_truthy("TRUE")  # True
        ```
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    """Read-only configuration shared by every dispatch.

    Example:
        ```python
        settings = RunnerSettings(remote_enabled=True, e2b_api_key="e2b_...")
        ```
    """

    remote_enabled: bool = False
    e2b_api_key: str | None = None
    node_binary: str = DEFAULT_NODE_BINARY
    python_executable: str = sys.executable
    sandbox_timeout_seconds: int = DEFAULT_SANDBOX_TIMEOUT_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    policy: RunnerPolicy = field(default_factory=RunnerPolicy)

    def __post_init__(self) -> None:
        """Validate timeouts after dataclass initialization.

        Example:
            ```python
            RunnerSettings(sandbox_timeout_seconds=60)
            ```
        """
        if self.sandbox_timeout_seconds <= 0 or self.request_timeout_seconds <= 0:
            raise ValueError("Sandbox and request timeouts must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RunnerSettings":
        """Build settings from environment variables.

        Example:
            ```python
            settings = RunnerSettings.from_env({"E2B_ENABLED": "true", "E2B_API_KEY": "key"})
            ```
        """
        env = os.environ if environ is None else environ
        return cls(
            remote_enabled=is_truthy(env.get("E2B_ENABLED")),
            e2b_api_key=env.get("E2B_API_KEY") or None,
            node_binary=env.get("SNIPPET_RUNNER_NODE") or DEFAULT_NODE_BINARY,
            python_executable=env.get("SNIPPET_RUNNER_PYTHON") or sys.executable,
        )

    @classmethod
    def from_file(
        cls, config_path: str, environ: Mapping[str, str] | None = None
    ) -> "RunnerSettings":
        """Build settings from a TOML file layered over environment variables.

        Example:
            ```python
            settings = RunnerSettings.from_file("/etc/snippet-runner.toml")
            ```
        """
        raw = tomllib.loads(Path(config_path).read_text(encoding="utf-8"))
        runner = raw.get("runner", {})
        policy_raw = raw.get("policy", {})
        if not isinstance(runner, dict) or not isinstance(policy_raw, dict):
            raise ValueError("'runner' and 'policy' must be TOML tables")
        base = cls.from_env(environ)
        return cls(
            remote_enabled=is_truthy(runner.get("remote_enabled", base.remote_enabled)),
            e2b_api_key=runner.get("e2b_api_key") or base.e2b_api_key,
            node_binary=str(runner.get("node_binary", base.node_binary)),
            python_executable=str(runner.get("python_executable", base.python_executable)),
            sandbox_timeout_seconds=int(
                runner.get("sandbox_timeout_seconds", base.sandbox_timeout_seconds)
            ),
            request_timeout_seconds=int(
                runner.get("request_timeout_seconds", base.request_timeout_seconds)
            ),
            policy=RunnerPolicy.from_mapping(policy_raw, config_path=config_path)
            if policy_raw
            else base.policy,
        )
