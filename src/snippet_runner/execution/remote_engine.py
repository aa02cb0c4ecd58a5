from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from e2b import TimeoutException
from e2b_code_interpreter import AsyncSandbox

from ..languages import Backend, CodeLanguage
from ..models import ExecutionRequest
from ..wrapper import RESULT_MARKER
from .config import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SANDBOX_TIMEOUT_SECONDS,
    RunnerSettings,
)
from .types import FailureKind, RawFailure, RawOutcome, WrappedProgram

logger = logging.getLogger(__name__)

SandboxFactory = Callable[..., Awaitable[Any]]


def extract_marked_result(stdout: str) -> tuple[Any, str]:
    """Recover the marked return value and strip the marker line from stdout.

    Example:
        ```python
        result, cleaned = extract_marked_result('hi\\n__SIM_RESULT__={"a": 1}\\n')
        ```
    """
    lines = stdout.split("\n")
    marker = next((line for line in lines if line.startswith(RESULT_MARKER)), None)
    if marker is None:
        return None, stdout
    encoded = marker[len(RESULT_MARKER):]
    try:
        result = json.loads(encoded)
    except ValueError:
        result = encoded
    cleaned = "\n".join(line for line in lines if not line.startswith(RESULT_MARKER))
    return result, cleaned


def _sandbox_language(language: CodeLanguage) -> str:
    """Return the sandbox kernel name for a language.

    Example:
        ```python
        _sandbox_language(CodeLanguage.PYTHON)  # "python"
        ```
    """
    return "python" if language is CodeLanguage.PYTHON else "javascript"


class E2BEngine:
    """Execute wrapped programs in an ephemeral E2B sandbox.

    One sandbox is created per invocation and always killed afterwards.

    Example:
        ```python
        engine = E2BEngine(api_key="e2b_...")
        ```
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        sandbox_timeout_seconds: int = DEFAULT_SANDBOX_TIMEOUT_SECONDS,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        sandbox_factory: SandboxFactory | None = None,
    ) -> None:
        """Initialize credentials, timeouts and the sandbox factory.

        Example:
            ```python
            engine = E2BEngine(api_key="e2b_...", sandbox_timeout_seconds=120)
            ```
        """
        self._api_key = api_key
        self._sandbox_timeout_seconds = sandbox_timeout_seconds
        self._request_timeout_seconds = request_timeout_seconds
        self._sandbox_factory = sandbox_factory or AsyncSandbox.create

    @classmethod
    def from_settings(cls, settings: RunnerSettings) -> "E2BEngine":
        """Create an engine from shared runner settings.

        Example:
            ```python
            engine = E2BEngine.from_settings(RunnerSettings.from_env())
            ```
        """
        return cls(
            api_key=settings.e2b_api_key,
            sandbox_timeout_seconds=settings.sandbox_timeout_seconds,
            request_timeout_seconds=settings.request_timeout_seconds,
        )

    async def invoke(self, program: WrappedProgram, request: ExecutionRequest) -> RawOutcome:
        """Run one wrapped program in a fresh sandbox and collect its output.

        Example:
            ```python
            outcome = await engine.invoke(program, ExecutionRequest(code="return 1"))
            ```
        """
        if not self._api_key:
            return self._failure(
                program, "E2B_API_KEY is required when remote execution is enabled"
            )

        try:
            sandbox = await self._sandbox_factory(
                api_key=self._api_key,
                timeout=self._sandbox_timeout_seconds,
                request_timeout=self._request_timeout_seconds,
            )
        except Exception as exc:
            logger.error("Failed to create E2B sandbox: %s", exc)
            return self._failure(program, f"Failed to create remote sandbox: {exc}")

        sandbox_id = getattr(sandbox, "sandbox_id", None)
        try:
            execution = await sandbox.run_code(
                program.source_text,
                language=_sandbox_language(program.language),
                timeout=request.timeout_ms / 1000,
                request_timeout=self._request_timeout_seconds + request.timeout_ms / 1000,
            )
        except TimeoutException as exc:
            logger.warning("E2B sandbox %s timed out: %s", sandbox_id, exc)
            return self._failure(
                program,
                f"Execution timed out after {request.timeout_ms}ms",
                kind=FailureKind.TIMEOUT,
                sandbox_id=sandbox_id,
            )
        except Exception as exc:
            logger.error("E2B sandbox %s failed: %s", sandbox_id, exc)
            return self._failure(
                program, f"Remote sandbox request failed: {exc}", sandbox_id=sandbox_id
            )
        finally:
            await self._teardown(sandbox, sandbox_id)

        logs = getattr(execution, "logs", None)
        chunks = list(getattr(logs, "stdout", None) or []) + list(
            getattr(logs, "stderr", None) or []
        )
        stdout = "".join(chunks)

        error = getattr(execution, "error", None)
        if error is not None:
            name = str(getattr(error, "name", "") or "Error")
            value = str(getattr(error, "value", "") or "")
            message = f"{name}: {value}"
            logger.error("E2B execution error in sandbox %s: %s", sandbox_id, message)
            return RawOutcome(
                stdout=extract_marked_result(stdout)[1],
                failure=RawFailure(
                    message=message,
                    stack_or_trace=str(getattr(error, "traceback", "") or message),
                    backend=Backend.REMOTE,
                    language=program.language,
                    kind=FailureKind.EXECUTION,
                    error_name=name,
                ),
                sandbox_id=sandbox_id,
            )

        result, cleaned = extract_marked_result(stdout)
        return RawOutcome(stdout=cleaned, result=result, sandbox_id=sandbox_id)

    @staticmethod
    async def _teardown(sandbox: Any, sandbox_id: str | None) -> None:
        """Kill a sandbox, logging rather than raising on failure.

        Example:
            ```python
            await E2BEngine._teardown(sandbox, "sbx_123")
            ```
        """
        try:
            await sandbox.kill()
        except Exception as exc:
            logger.warning("Failed to kill E2B sandbox %s: %s", sandbox_id, exc)

    @staticmethod
    def _failure(
        program: WrappedProgram,
        message: str,
        *,
        kind: FailureKind = FailureKind.TRANSPORT,
        sandbox_id: str | None = None,
    ) -> RawOutcome:
        """Build the outcome for a sandbox that timed out or could not answer.

        Example:
            ```python
            outcome = E2BEngine._failure(program, "Remote sandbox request failed: 503")
            ```
        """
        return RawOutcome(
            stdout="",
            failure=RawFailure(
                message=message,
                stack_or_trace="",
                backend=Backend.REMOTE,
                language=program.language,
                kind=kind,
            ),
            sandbox_id=sandbox_id,
        )
