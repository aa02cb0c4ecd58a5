from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..languages import Backend, CodeLanguage


@dataclass(frozen=True, slots=True)
class WrappedProgram:
    """Program text handed to an engine plus its line accounting.

    `prologue_line_count + wrapper_line_count` lines precede the first line of
    user code in `source_text`.

    Example:
        ```python
        program = WrappedProgram("def __sim_main__():\\n    return 1", 0, 1, backend=Backend.LOCAL, language=CodeLanguage.PYTHON)
        ```
    """

    source_text: str
    prologue_line_count: int
    wrapper_line_count: int
    backend: Backend
    language: CodeLanguage
    body_indent: int = 0
    bindings: dict[str, Any] | None = None

    @property
    def offset(self) -> int:
        """Number of generated lines ahead of the first user line.

        Example:
            ```python
            assert program.offset == program.prologue_line_count + program.wrapper_line_count
            ```
        """
        return self.prologue_line_count + self.wrapper_line_count

    @property
    def user_code_start_line(self) -> int:
        """1-based line of `source_text` holding the first user line.

        Example:
            ```python
            first = program.user_code_start_line
            ```
        """
        return self.offset + 1


class FailureKind(str, Enum):
    """Coarse failure classes reported by engines.

    Example:
        ```python
        kind = FailureKind.TIMEOUT
        ```
    """

    EXECUTION = "execution"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"


@dataclass(frozen=True, slots=True)
class RawFailure:
    """Backend failure before translation into user coordinates.

    Example:
        ```python
        failure = RawFailure("ReferenceError: x is not defined", "...", Backend.LOCAL, CodeLanguage.JAVASCRIPT)
        ```
    """

    message: str
    stack_or_trace: str
    backend: Backend
    language: CodeLanguage
    kind: FailureKind = FailureKind.EXECUTION
    error_name: str | None = None


@dataclass(frozen=True, slots=True)
class RawOutcome:
    """Normalized response returned by an execution engine.

    Example:
        ```python
        out = RawOutcome(stdout="hi\\n", result=2)
        ```
    """

    stdout: str
    result: Any = None
    failure: RawFailure | None = None
    sandbox_id: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the engine completed without a failure.

        Example:
            ```python
            if outcome.ok: ...
            ```
        """
        return self.failure is None
