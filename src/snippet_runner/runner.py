from __future__ import annotations

import asyncio
import logging
import time
import uuid

from .errors import format_error_message, translate_failure
from .execution.capabilities import preflight_validate_backend_capabilities
from .execution.config import RunnerSettings
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.remote_engine import E2BEngine
from .execution.types import RawFailure, WrappedProgram
from .languages import Backend
from .models import EnhancedError, ExecutionRequest, ExecutionResult
from .resolver import resolve_code_variables
from .wrapper import wrap_code

logger = logging.getLogger(__name__)


def select_backend(request: ExecutionRequest, settings: RunnerSettings) -> Backend:
    """Choose the backend for a request from the read-only settings.

    Example:
        ```python
        backend = select_backend(ExecutionRequest(code="return 1"), RunnerSettings(remote_enabled=True))
        ```
    """
    if settings.remote_enabled and not request.prefer_local:
        return Backend.REMOTE
    return Backend.LOCAL


def _engine_for(
    backend: Backend,
    settings: RunnerSettings,
    local_engine: ExecutionEngine | None,
    remote_engine: ExecutionEngine | None,
) -> ExecutionEngine:
    """Return the injected engine for a backend or build one from settings.

    Example:
        ```python
        engine = _engine_for(Backend.LOCAL, RunnerSettings(), None, None)
        ```
    """
    if backend is Backend.REMOTE:
        return remote_engine or E2BEngine.from_settings(settings)
    return local_engine or LocalEngine.from_settings(settings)


def _failure_result(
    request_id: str,
    failure: RawFailure,
    program: WrappedProgram,
    user_code: str,
    stdout: str,
    started: float,
) -> ExecutionResult:
    """Translate a raw failure into the uniform failed result.

    Example:
        ```python
        result = _failure_result("ab12cd34", outcome.failure, program, code, outcome.stdout, started)
        ```
    """
    enhanced = translate_failure(failure, program, user_code)
    message = format_error_message(enhanced)
    logger.error(
        "[%s] Function execution failed (%s, %s): %s",
        request_id,
        failure.backend.value,
        failure.kind.value,
        message,
    )
    logger.debug(
        "[%s] Enhanced error details: line=%s column=%s type=%s start_line=%s",
        request_id,
        enhanced.line,
        enhanced.column,
        enhanced.kind,
        program.user_code_start_line,
    )
    return ExecutionResult(
        success=False,
        result=None,
        stdout=stdout,
        execution_time_ms=int((time.monotonic() - started) * 1000),
        error=message,
        debug=enhanced,
    )


async def run_function(
    request: ExecutionRequest,
    settings: RunnerSettings | None = None,
    *,
    local_engine: ExecutionEngine | None = None,
    remote_engine: ExecutionEngine | None = None,
) -> ExecutionResult:
    """Resolve, wrap and execute one snippet, returning a uniform result.

    Execution problems never raise; cancellation propagates after the engine
    has released its sandbox.

    Example:
        ```python
        result = await run_function(ExecutionRequest(code="return 1 + 1"))
        ```
    """
    settings = settings or RunnerSettings.from_env()
    request_id = uuid.uuid4().hex[:8]
    started = time.monotonic()
    backend = select_backend(request, settings)
    preflight_validate_backend_capabilities(backend, request.language)

    logger.info(
        "[%s] Function execution request: backend=%s language=%s params=%d timeout=%dms custom_tool=%s",
        request_id,
        backend.value,
        request.language.value,
        len(request.params),
        request.timeout_ms,
        request.is_custom_tool,
    )

    resolved = resolve_code_variables(
        request.code,
        request.params,
        request.env_vars,
        request.block_data,
        request.block_name_mapping,
        request.workflow_variables,
    )
    program = wrap_code(
        resolved,
        backend,
        request.language,
        params=request.params,
        env_vars=request.env_vars,
        is_custom_tool=request.is_custom_tool,
    )
    engine = _engine_for(backend, settings, local_engine, remote_engine)

    try:
        outcome = await engine.invoke(program, request)
    except asyncio.CancelledError:
        logger.warning("[%s] Function execution cancelled", request_id)
        raise
    except Exception as exc:
        logger.exception("[%s] Engine raised unexpectedly", request_id)
        elapsed = int((time.monotonic() - started) * 1000)
        return ExecutionResult(
            success=False,
            stdout="",
            execution_time_ms=elapsed,
            error=f"Execution backend failed: {exc}",
            debug=EnhancedError(message=str(exc), kind=type(exc).__name__),
        )

    if outcome.failure is not None:
        return _failure_result(
            request_id, outcome.failure, program, resolved.resolved_code, outcome.stdout, started
        )

    elapsed = int((time.monotonic() - started) * 1000)
    logger.info(
        "[%s] Function executed successfully using %s in %dms (sandbox=%s)",
        request_id,
        backend.value,
        elapsed,
        outcome.sandbox_id,
    )
    return ExecutionResult(
        success=True,
        result=outcome.result,
        stdout=outcome.stdout,
        execution_time_ms=elapsed,
    )


def run_function_sync(
    request: ExecutionRequest,
    settings: RunnerSettings | None = None,
    *,
    local_engine: ExecutionEngine | None = None,
    remote_engine: ExecutionEngine | None = None,
) -> ExecutionResult:
    """Synchronous wrapper around `run_function` for non-async callers.

    Example:
        ```python
        result = run_function_sync(ExecutionRequest(code="return 1 + 1"))
        ```
    """
    return asyncio.run(
        run_function(
            request, settings, local_engine=local_engine, remote_engine=remote_engine
        )
    )
