"""
toolmount.core.tools.executor - Execution Runtime

Runs a primitive's handler against validated input inside the sandbox,
with a deadline, and records the outcome.
"""

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from functools import lru_cache
from time import time
from typing import Any
from uuid import UUID

from toolmount.exceptions import ExecutionError, ExecutionTimeoutError, ValidationError
from toolmount.settings import ToolmountSettings, get_settings

from .base import (
    ExecutionOutcome,
    ExecutionRecordCreate,
    ExecutionRecorder,
    ExecutionResult,
    MountedTool,
    PrimitiveSnapshot,
)
from .registry import MountCache
from .sandbox import (
    DataAccess,
    ExecutionContext,
    normalize_output,
    run_handler,
    source_digest,
)
from .schema import ParameterSet, convert_schema
from .validator import scan_security_warnings

logger = logging.getLogger(__name__)

DataAccessFactory = Callable[[PrimitiveSnapshot], DataAccess]

TIMEOUT_ERROR = "timeout"


@lru_cache(maxsize=512)
def _parameters(primitive_id: UUID, version: int, name: str, schema_json: str) -> ParameterSet:
    return convert_schema(json.loads(schema_json), name=name)


def parameters_for(primitive: PrimitiveSnapshot) -> ParameterSet:
    """Typed parameter set of a primitive, cached per (id, version)."""
    schema_json = json.dumps(primitive.input_schema)
    return _parameters(primitive.id, primitive.version, primitive.name, schema_json)


class ExecutionRuntime:
    """
    Executes primitives in the sandbox and records every outcome.

    Features:
    - Input validation/coercion through the schema converter before the
      handler runs
    - Hard deadline per call (the primitive's timeout_ms); the worker
      process is killed when it passes
    - Advisory security warnings attached to every result
    - Execution record + mount cache counters updated for every call that
      reaches the runtime, successful or not
    - Output size cap

    This class NEVER raises for handler or input problems: everything is
    captured in ExecutionResult so the caller (an agent or an operator)
    decides whether to retry, fix the primitive, or give up. Nothing here
    retries automatically.

    Example:
        >>> runtime = ExecutionRuntime(cache=cache, recorder=history)
        >>> result = await runtime.execute(cache.get_by_name("echo"), {"message": "hi"})
        >>> result.success, result.result
        (True, {'message': 'hi'})
    """

    def __init__(
        self,
        cache: MountCache | None = None,
        recorder: ExecutionRecorder | None = None,
        data_access_factory: DataAccessFactory | None = None,
        settings: ToolmountSettings | None = None,
    ) -> None:
        """
        Initialize execution runtime.

        Args:
            cache: Mount cache whose counters are bumped per invocation
            recorder: Sink for execution records (None disables recording)
            data_access_factory: Builds the scoped ``context.db`` for a primitive
            settings: Runtime settings (defaults to get_settings())
        """
        self.cache = cache
        self.recorder = recorder
        self.data_access_factory = data_access_factory
        self.settings = settings or get_settings()

    async def execute(
        self,
        tool: MountedTool | PrimitiveSnapshot,
        raw_input: dict[str, Any] | None,
        agent_id: str | None = None,
        user_id: str | None = None,
    ) -> ExecutionResult:
        """
        Execute a primitive.

        Args:
            tool: Mounted tool or primitive snapshot to run
            raw_input: Arguments as received from the caller
            agent_id: Calling agent, if any
            user_id: Calling user, if any

        Returns:
            ExecutionResult with outcome, result/error, timing and warnings
        """
        primitive = tool.primitive if isinstance(tool, MountedTool) else tool
        started_at = datetime.now(UTC)
        start_time = time()
        warnings = scan_security_warnings(primitive.handler)
        validated: dict[str, Any] = {}

        try:
            validated = parameters_for(primitive).validate(raw_input)
        except ValidationError as e:
            logger.warning(
                f"Input validation failed for {primitive.name}: {e}",
                extra={"primitive_id": str(primitive.id), "errors": e.errors},
            )
            result = ExecutionResult(
                success=False,
                outcome=ExecutionOutcome.VALIDATION_FAILED,
                error=str(e),
                validation_errors=e.errors,
                execution_time_ms=(time() - start_time) * 1000,
                security_warnings=warnings,
            )
            raw = raw_input if isinstance(raw_input, dict) else {}
            return await self._finish(primitive, raw, result, started_at, agent_id, user_id)

        context = ExecutionContext(
            tool_name=primitive.name,
            tool_id=primitive.id,
            db=self.data_access_factory(primitive) if self.data_access_factory else None,
            agent_id=agent_id,
            user_id=user_id,
        )

        try:
            output = await run_handler(
                primitive.handler,
                validated,
                context,
                timeout_ms=primitive.timeout_ms,
                sandboxed=primitive.sandboxed,
                startup_timeout_ms=self.settings.worker_startup_timeout_ms,
                max_output_bytes=self.settings.max_output_bytes,
            )
            output = normalize_output(output, self.settings.max_output_bytes)

        except ExecutionTimeoutError:
            logger.warning(
                f"Primitive {primitive.name} timed out after {primitive.timeout_ms}ms",
                extra={"primitive_id": str(primitive.id), "timeout_ms": primitive.timeout_ms},
            )
            result = ExecutionResult(
                success=False,
                outcome=ExecutionOutcome.TIMEOUT,
                error=TIMEOUT_ERROR,
                execution_time_ms=primitive.timeout_ms,
                security_warnings=warnings,
            )

        except Exception as e:
            # HandlerError (the handler raised) or another ExecutionError from the worker
            error_msg = str(e) if isinstance(e, ExecutionError) else f"{type(e).__name__}: {e}"
            logger.warning(
                f"Primitive {primitive.name} failed: {error_msg}",
                extra={
                    "primitive_id": str(primitive.id),
                    "handler": self._describe_handler(primitive),
                    "error": error_msg,
                },
            )
            result = ExecutionResult(
                success=False,
                outcome=ExecutionOutcome.ERROR,
                error=error_msg,
                execution_time_ms=(time() - start_time) * 1000,
                security_warnings=warnings,
            )

        else:
            duration_ms = (time() - start_time) * 1000
            logger.info(
                f"Primitive {primitive.name} executed successfully",
                extra={"primitive_id": str(primitive.id), "duration_ms": duration_ms},
            )
            result = ExecutionResult(
                success=True,
                outcome=ExecutionOutcome.SUCCESS,
                result=output,
                execution_time_ms=duration_ms,
                security_warnings=warnings,
            )

        return await self._finish(primitive, validated, result, started_at, agent_id, user_id)

    async def _finish(
        self,
        primitive: PrimitiveSnapshot,
        input: dict[str, Any],
        result: ExecutionResult,
        started_at: datetime,
        agent_id: str | None,
        user_id: str | None,
    ) -> ExecutionResult:
        """Bump counters, persist the record, stamp identity onto the result."""
        completed_at = datetime.now(UTC)
        if self.cache is not None:
            self.cache.record_invocation(primitive.id, at=completed_at)

        record_id: UUID | None = None
        if self.recorder is not None:
            record = ExecutionRecordCreate(
                primitive_id=primitive.id,
                primitive_name=primitive.name,
                input=_jsonable(input),
                output=result.result,
                error=result.error,
                success=result.success,
                outcome=result.outcome,
                execution_time_ms=result.execution_time_ms,
                security_warnings=result.security_warnings,
                agent_id=agent_id,
                user_id=user_id,
                started_at=started_at,
                completed_at=completed_at,
            )
            try:
                record_id = await self.recorder.record(record)
            except Exception as e:
                # Recording failures never fail the call
                logger.error(
                    f"Failed to record execution of {primitive.name}: {e}",
                    exc_info=True,
                    extra={"primitive_id": str(primitive.id)},
                )

        return result.model_copy(
            update={
                "primitive_id": primitive.id,
                "primitive_name": primitive.name,
                "record_id": record_id,
            }
        )

    def _describe_handler(self, primitive: PrimitiveSnapshot) -> str:
        if self.settings.log_handler_source:
            return primitive.handler
        return f"[handler:{source_digest(primitive.handler)}]"

    def __repr__(self) -> str:
        return f"ExecutionRuntime(recording={self.recorder is not None})"


def _jsonable(value: dict[str, Any]) -> dict[str, Any]:
    try:
        return normalize_output(value, max_bytes=2**31)
    except ExecutionError:
        return {"_unserializable": repr(value)[:200]}


__all__ = ["TIMEOUT_ERROR", "DataAccessFactory", "ExecutionRuntime", "parameters_for"]
