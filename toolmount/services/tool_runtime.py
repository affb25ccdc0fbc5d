"""
toolmount.services.tool_runtime - Runtime Owner

Wires the registry store, mount cache, execution runtime, permission gate,
management tools and router into one object with an explicit lifecycle.
The API server and the CLI each hold exactly one ToolRuntime.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolmount.core.tools.base import ExecutionResult, MountedTool
from toolmount.core.tools.decorator import collect_tools
from toolmount.core.tools.executor import ExecutionRuntime
from toolmount.core.tools.registry import MountCache
from toolmount.core.tools.router import ToolRouter
from toolmount.exceptions import NotFoundError
from toolmount.models.primitive import PrimitiveExecution
from toolmount.services.builtin_primitives import seed_builtin_primitives
from toolmount.services.data_access import data_access_factory
from toolmount.services.execution_history import (
    ExecutionHistoryRecorder,
    ExecutionHistoryService,
)
from toolmount.services.management_tools import ManagementToolkit
from toolmount.services.permission_gate import Approver, PermissionGate
from toolmount.services.primitive_registry import PrimitiveRegistry
from toolmount.settings import ToolmountSettings, get_settings

logger = logging.getLogger(__name__)


class ToolRuntime:
    """
    Owns every moving part of a toolmount process.

    Usage:
        runtime = ToolRuntime(sessionmaker)
        await runtime.start()
        result = await runtime.invoke("format_price", {"cents": 1999})
        await runtime.shutdown()
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: ToolmountSettings | None = None,
        approver: Approver | None = None,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings or get_settings()

        self.cache = MountCache()
        self.registry = PrimitiveRegistry(sessionmaker, self.cache, settings=self.settings)
        self.recorder = ExecutionHistoryRecorder(sessionmaker)
        self.executor = ExecutionRuntime(
            cache=self.cache,
            recorder=self.recorder,
            data_access_factory=data_access_factory(sessionmaker),
            settings=self.settings,
        )
        self.gate = PermissionGate(
            sessionmaker,
            approver=approver,
            default_mode=self.settings.default_permission_mode,
        )
        self.toolkit = ManagementToolkit(self)
        self.router = ToolRouter(
            self.cache,
            self.executor,
            gate=self.gate,
            management_tools=collect_tools(self.toolkit),
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Load the permission mode, seed built-ins and rebuild the mount cache."""
        if self._started:
            return

        await self.gate.load()
        if self.settings.seed_builtins:
            await seed_builtin_primitives(self.registry)
        mounted = await self.registry.initialize()

        self._started = True
        logger.info(
            f"Tool runtime started: {mounted} mounted, mode={self.gate.mode.value}",
            extra={"mounted": mounted, "mode": self.gate.mode.value},
        )

    async def shutdown(self) -> None:
        """Drop in-memory state."""
        self.cache.clear()
        self._started = False
        logger.info("Tool runtime stopped")

    # =========================================================================
    # Invocation
    # =========================================================================

    def _require_mounted(self, name_or_id: str | UUID) -> MountedTool:
        tool = None
        if isinstance(name_or_id, UUID):
            tool = self.cache.get(name_or_id)
        else:
            tool = self.cache.get_by_name(name_or_id)
            if tool is None:
                try:
                    tool = self.cache.get(UUID(name_or_id))
                except ValueError:
                    tool = None
        if tool is None:
            raise NotFoundError(f"Tool is not mounted: {name_or_id}")
        return tool

    async def invoke(
        self,
        name_or_id: str | UUID,
        arguments: dict[str, Any] | None,
        agent_id: str | None = None,
        user_id: str | None = None,
    ) -> ExecutionResult:
        """
        Unattended invocation of a mounted primitive (permission-gated).

        Raises:
            NotFoundError: Nothing by that name or id is mounted
        """
        tool = self._require_mounted(name_or_id)
        return await self.router.invoke_mounted(
            tool, arguments, agent_id=agent_id, user_id=user_id
        )

    async def execute(
        self,
        name_or_id: str | UUID,
        arguments: dict[str, Any] | None,
        agent_id: str | None = None,
        user_id: str | None = None,
    ) -> ExecutionResult:
        """
        Attended invocation of a mounted primitive (operator-initiated, not gated).

        Raises:
            NotFoundError: Nothing by that name or id is mounted
        """
        tool = self._require_mounted(name_or_id)
        return await self.executor.execute(tool, arguments, agent_id=agent_id, user_id=user_id)

    async def test(
        self,
        id_or_name: str | UUID,
        arguments: dict[str, Any] | None,
        user_id: str | None = None,
    ) -> ExecutionResult:
        """
        Run a primitive once, mounted or not.

        Raises:
            NotFoundError: No such primitive
        """
        primitive = await self.registry.require(id_or_name)
        return await self.executor.execute(primitive, arguments, agent_id="test", user_id=user_id)

    # =========================================================================
    # History
    # =========================================================================

    async def history(
        self,
        primitive_id: UUID | None = None,
        success: bool | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[PrimitiveExecution], int]:
        """Execution records, newest first, with the total count."""
        async with self.sessionmaker() as session:
            return await ExecutionHistoryService(session).get_executions(
                primitive_id=primitive_id,
                success=success,
                page=page,
                page_size=page_size,
            )

    def __repr__(self) -> str:
        return (
            f"ToolRuntime(started={self._started}, mounted={len(self.cache)}, "
            f"mode={self.gate.mode})"
        )


__all__ = ["ToolRuntime"]
