from __future__ import annotations

from typing import Protocol

from ..models import ExecutionRequest
from .types import RawOutcome, WrappedProgram


class ExecutionEngine(Protocol):
    async def invoke(self, program: WrappedProgram, request: ExecutionRequest) -> RawOutcome:
        """Execute one wrapped program and return the normalized raw outcome.

        Example:
            ```python
            outcome = await engine.invoke(program, ExecutionRequest(code="return 1"))
            ```
        """
        ...
