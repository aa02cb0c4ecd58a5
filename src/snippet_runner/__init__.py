from .languages import Backend, CodeLanguage
from .models import EnhancedError, ExecutionRequest, ExecutionResult, WorkflowVariable
from .policy import RunnerPolicy
from .runner import run_function, run_function_sync
from .execution.config import RunnerSettings
from .execution.local_engine import LocalEngine
from .execution.remote_engine import E2BEngine

__all__ = [
    "Backend",
    "CodeLanguage",
    "EnhancedError",
    "ExecutionRequest",
    "ExecutionResult",
    "WorkflowVariable",
    "RunnerPolicy",
    "RunnerSettings",
    "run_function",
    "run_function_sync",
    "LocalEngine",
    "E2BEngine",
]
