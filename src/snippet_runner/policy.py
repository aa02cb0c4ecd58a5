from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

BUNDLED_POLICY = Path(__file__).with_name("default_policy.toml")
_MODES = {"allow", "restrict"}
_LIST_FIELDS = ("allowed_imports", "blocked_imports", "allowed_builtins", "blocked_builtins")


def _policy_table(path: Path) -> dict[str, Any]:
    """Load the `[policy]` table of a TOML file, or the whole file when absent.

    Example:
        ```python
        table = _policy_table(BUNDLED_POLICY)
        ```
    """
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    table = raw.get("policy", raw)
    if not isinstance(table, dict):
        raise ValueError(f"Policy config in {path} must be a TOML table")
    return table


def _names(table: dict[str, Any], key: str, fallback: list[str]) -> list[str]:
    """Read one list-of-names setting, using `fallback` when the key is absent.

    Example:
        ```python
        blocked = _names({"blocked_imports": ["os"]}, "blocked_imports", [])
        ```
    """
    value = table.get(key, fallback)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{key}' must be a list of strings")
    return list(value)


_BUNDLED = _policy_table(BUNDLED_POLICY)


def _bundled_names(key: str) -> list[str]:
    """Return a fresh copy of a bundled list setting.

    Example:
        ```python
        blocked = _bundled_names("blocked_builtins")
        ```
    """
    return _names(_BUNDLED, key, [])


@dataclass(slots=True)
class RunnerPolicy:
    """Guardrails applied by the local sandbox.

    Memory and output caps apply to both languages; import and builtin lists
    apply to local Python snippets.

    Example:
        ```python
        policy = RunnerPolicy(memory_limit_mb=128, blocked_imports=["os"])
        ```
    """

    mode: str = str(_BUNDLED.get("mode", "restrict"))
    memory_limit_mb: int = int(_BUNDLED.get("memory_limit_mb", 256))
    max_output_kb: int = int(_BUNDLED.get("max_output_kb", 128))
    allowed_imports: list[str] = field(default_factory=lambda: _bundled_names("allowed_imports"))
    blocked_imports: list[str] = field(default_factory=lambda: _bundled_names("blocked_imports"))
    allowed_builtins: list[str] = field(default_factory=lambda: _bundled_names("allowed_builtins"))
    blocked_builtins: list[str] = field(default_factory=lambda: _bundled_names("blocked_builtins"))
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate mode and limits after dataclass initialization.

        Example:
            ```python
            RunnerPolicy(mode="restrict")
            ```
        """
        if self.mode not in _MODES:
            raise ValueError("mode must be 'allow' or 'restrict'")
        if self.memory_limit_mb <= 0 or self.max_output_kb <= 0:
            raise ValueError("memory_limit_mb and max_output_kb must be positive")

    @classmethod
    def from_mapping(cls, raw: dict[str, Any], config_path: str | None = None) -> "RunnerPolicy":
        """Create a policy from a parsed TOML table, layered over the bundled defaults.

        Example:
            ```python
            policy = RunnerPolicy.from_mapping({"mode": "allow", "allowed_imports": ["math"]})
            ```
        """
        defaults = cls()
        lists = {key: _names(raw, key, getattr(defaults, key)) for key in _LIST_FIELDS}
        return cls(
            mode=str(raw.get("mode", defaults.mode)),
            memory_limit_mb=int(raw.get("memory_limit_mb", defaults.memory_limit_mb)),
            max_output_kb=int(raw.get("max_output_kb", defaults.max_output_kb)),
            config_path=config_path,
            **lists,
        )

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/tmp/policy.toml")
            ```
        """
        return cls.from_mapping(_policy_table(Path(config_path)), config_path=config_path)

    def to_payload(self) -> dict[str, Any]:
        """Serialize the policy for a local worker payload.

        Example:
            ```python
            payload = RunnerPolicy().to_payload()
            ```
        """
        payload: dict[str, Any] = {
            "mode": self.mode,
            "memory_limit_mb": self.memory_limit_mb,
            "max_output_kb": self.max_output_kb,
        }
        payload.update({key: list(getattr(self, key)) for key in _LIST_FIELDS})
        return payload
