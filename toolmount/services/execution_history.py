"""
toolmount.services.execution_history - Execution History Service

Service for recording and querying primitive executions.
Used for the operator history views and the 24h rolling stats.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolmount.core.tools.base import ExecutionRecordCreate
from toolmount.models.primitive import PrimitiveExecution

logger = logging.getLogger(__name__)


class ExecutionHistoryService:
    """
    Service for recording and querying primitive executions.

    Provides methods to:
    - Record finished executions (append-only)
    - Query history with filtering and pagination
    - Get rolling execution counts
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize execution history service.

        Args:
            session: Database session for all operations
        """
        self.session = session

    async def record(self, data: ExecutionRecordCreate) -> PrimitiveExecution:
        """
        Record a finished execution.

        Args:
            data: Outcome of one invocation

        Returns:
            Created execution record
        """
        execution = PrimitiveExecution(
            primitive_id=data.primitive_id,
            primitive_name=data.primitive_name,
            input=data.input,
            output=data.output,
            error=data.error,
            success=data.success,
            outcome=data.outcome.value,
            execution_time_ms=data.execution_time_ms,
            security_warnings=data.security_warnings,
            agent_id=data.agent_id,
            user_id=data.user_id,
            started_at=data.started_at,
            completed_at=data.completed_at,
        )

        self.session.add(execution)
        await self.session.flush()

        logger.debug(
            f"Recorded execution of {data.primitive_name}: {data.outcome}",
            extra={"execution_id": str(execution.id), "outcome": data.outcome.value},
        )

        return execution

    async def get_executions(
        self,
        primitive_id: UUID | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[PrimitiveExecution], int]:
        """
        Query executions with filtering and pagination.

        Args:
            primitive_id: Filter by primitive
            success: Filter by success flag
            since: Executions started after this time
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (executions, total_count)
        """
        query = select(PrimitiveExecution)

        if primitive_id:
            query = query.where(PrimitiveExecution.primitive_id == primitive_id)

        if success is not None:
            query = query.where(PrimitiveExecution.success.is_(success))

        if since:
            query = query.where(PrimitiveExecution.started_at >= since)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total_result = await self.session.execute(count_query)
        total = total_result.scalar() or 0

        # Apply pagination and ordering
        offset = (max(page, 1) - 1) * page_size
        query = (
            query.order_by(PrimitiveExecution.started_at.desc()).offset(offset).limit(page_size)
        )

        result = await self.session.execute(query)
        executions = list(result.scalars().all())

        return executions, total

    async def count_since(self, hours: int = 24, primitive_id: UUID | None = None) -> int:
        """
        Count executions started in the last ``hours``.

        Args:
            hours: Time window in hours
            primitive_id: Optional primitive filter

        Returns:
            Number of executions in the window
        """
        since = datetime.now(UTC) - timedelta(hours=hours)
        query = select(func.count(PrimitiveExecution.id)).where(
            PrimitiveExecution.started_at >= since
        )
        if primitive_id:
            query = query.where(PrimitiveExecution.primitive_id == primitive_id)

        result = await self.session.execute(query)
        return result.scalar() or 0


class ExecutionHistoryRecorder:
    """
    ExecutionRecorder backed by the database.

    Opens a short-lived session per record so the runtime never shares a
    session across concurrent invocations.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def record(self, record: ExecutionRecordCreate) -> UUID | None:
        async with self._sessionmaker() as session:
            execution = await ExecutionHistoryService(session).record(record)
            await session.commit()
            return execution.id


__all__ = ["ExecutionHistoryRecorder", "ExecutionHistoryService"]
