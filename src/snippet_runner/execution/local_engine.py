from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any

from ..languages import Backend, CodeLanguage
from ..models import ExecutionRequest
from ..policy import RunnerPolicy
from ..wrapper import PYTHON_ENTRYPOINT
from .config import LOCAL_GRACE_SECONDS, RunnerSettings
from .types import FailureKind, RawFailure, RawOutcome, WrappedProgram

logger = logging.getLogger(__name__)

JS_FILENAME = "user-function.js"
PYTHON_FILENAME = "user-function.py"
_TIMEOUT_CODE = "ERR_SCRIPT_EXECUTION_TIMEOUT"


def _package_root() -> Path:
    """Return the directory holding the bundled sandbox scripts.

    Example:
        ```python
        root = _package_root()
        ```
    """
    return Path(__file__).resolve().parents[1]


def _harness_path() -> Path:
    """Return the absolute path to the Node.js vm harness.

    Example:
        ```python
        path = _harness_path()
        ```
    """
    return _package_root() / "vm_harness.js"


def _worker_path() -> Path:
    """Return the absolute path to the Python worker module file.

    Example:
        ```python
        path = _worker_path()
        ```
    """
    return _package_root() / "worker.py"


def filename_for(language: CodeLanguage) -> str:
    """Return the synthetic program name used for a language.

    Example:
        ```python
        filename_for(CodeLanguage.JAVASCRIPT)  # "user-function.js"
        ```
    """
    return PYTHON_FILENAME if language is CodeLanguage.PYTHON else JS_FILENAME


class LocalEngine:
    """Execute wrapped programs in an isolated local evaluation context.

    JavaScript runs inside a Node.js `vm` context; Python runs in a
    policy-guarded worker interpreter. Both run as short-lived subprocesses.

    Example:
        ```python
        engine = LocalEngine(node_binary="node", policy=RunnerPolicy(memory_limit_mb=128))
        ```
    """

    def __init__(
        self,
        *,
        node_binary: str = "node",
        python_executable: str | None = None,
        policy: RunnerPolicy | None = None,
    ) -> None:
        """Initialize runtime paths and guardrails.

        Example:
            ```python
            engine = LocalEngine(python_executable="/usr/bin/python3")
            ```
        """
        cleaned = node_binary.strip()
        if not cleaned:
            raise ValueError("LocalEngine requires a non-empty 'node_binary'")
        self._node_binary = cleaned
        self._python_executable = python_executable or RunnerSettings().python_executable
        self._policy = policy or RunnerPolicy()

    @classmethod
    def from_settings(cls, settings: RunnerSettings) -> "LocalEngine":
        """Create an engine from shared runner settings.

        Example:
            ```python
            engine = LocalEngine.from_settings(RunnerSettings.from_env())
            ```
        """
        return cls(
            node_binary=settings.node_binary,
            python_executable=settings.python_executable,
            policy=settings.policy,
        )

    async def invoke(self, program: WrappedProgram, request: ExecutionRequest) -> RawOutcome:
        """Execute one wrapped program in a local sandbox subprocess.

        Example:
            ```python
            outcome = await engine.invoke(program, ExecutionRequest(code="return 1"))
            ```
        """
        filename = filename_for(program.language)
        if program.language is CodeLanguage.PYTHON:
            cmd = [self._python_executable, str(_worker_path())]
            payload: dict[str, Any] = {
                "source": program.source_text,
                "filename": filename,
                "entrypoint": PYTHON_ENTRYPOINT,
                "bindings": program.bindings or {},
                "timeout_ms": int(request.timeout_ms),
                "policy": self._policy.to_payload(),
            }
        else:
            if shutil.which(self._node_binary) is None:
                return self._transport_failure(
                    program,
                    "Node.js runtime was not found. Install Node.js and ensure it is on PATH.",
                )
            cmd = [
                self._node_binary,
                f"--max-old-space-size={self._policy.memory_limit_mb}",
                str(_harness_path()),
            ]
            payload = {
                "source": program.source_text,
                "filename": filename,
                "bindings": program.bindings or {},
                "timeoutMs": int(request.timeout_ms),
                "memoryLimitMb": self._policy.memory_limit_mb,
                "maxOutputBytes": self._policy.max_output_kb * 1024,
            }

        # Both sandboxes enforce timeout_ms themselves; this kill only catches a wedged process.
        deadline = request.timeout_ms / 1000 + LOCAL_GRACE_SECONDS
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return self._transport_failure(program, f"Failed to start local sandbox: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(json.dumps(payload, default=str).encode("utf-8")),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            return RawOutcome(
                stdout="",
                failure=RawFailure(
                    message=f"Execution timed out after {request.timeout_ms}ms",
                    stack_or_trace="",
                    backend=Backend.LOCAL,
                    language=program.language,
                    kind=FailureKind.TIMEOUT,
                ),
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        return self._parse_response(program, request, stdout, stderr, proc.returncode)

    def _parse_response(
        self,
        program: WrappedProgram,
        request: ExecutionRequest,
        stdout: bytes,
        stderr: bytes,
        returncode: int | None,
    ) -> RawOutcome:
        """Turn the sandbox's JSON document into a raw outcome.

        Example:
            ```python
            outcome = engine._parse_response(program, request, b'{"ok": true, "result": 2}', b"", 0)
            ```
        """
        raw = stdout.decode("utf-8", errors="replace").strip()
        try:
            parsed = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.warning("Local sandbox exited with %s and no result document", returncode)
            return self._transport_failure(
                program,
                f"Local sandbox returned invalid output (exit code {returncode})",
                detail,
            )

        captured = str(parsed.get("stdout") or "")
        error = parsed.get("error")
        if parsed.get("ok") or not isinstance(error, dict):
            return RawOutcome(stdout=captured, result=parsed.get("result"))

        name = str(error.get("name") or "Error")
        message = str(error.get("message") or "Unknown error")
        kind = FailureKind.EXECUTION
        if error.get("code") == _TIMEOUT_CODE:
            kind = FailureKind.TIMEOUT
            message = f"Execution timed out after {request.timeout_ms}ms"
        return RawOutcome(
            stdout=captured,
            failure=RawFailure(
                message=message,
                stack_or_trace=str(error.get("stack") or ""),
                backend=Backend.LOCAL,
                language=program.language,
                kind=kind,
                error_name=name,
            ),
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Terminate a sandbox subprocess and reap it.

        Example:
            ```python
            await LocalEngine._kill(proc)
            ```
        """
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    @staticmethod
    def _transport_failure(program: WrappedProgram, message: str, detail: str = "") -> RawOutcome:
        """Build the outcome for a sandbox that could not run or answer.

        Example:
            ```python
            outcome = LocalEngine._transport_failure(program, "Node.js runtime was not found.")
            ```
        """
        return RawOutcome(
            stdout="",
            failure=RawFailure(
                message=message,
                stack_or_trace=detail,
                backend=Backend.LOCAL,
                language=program.language,
                kind=FailureKind.TRANSPORT,
            ),
        )
