"""
toolmount.services.permission_gate - Permission Gate

Two-state approval switch consulted before unattended execution:

- ask (default): gated calls need an external approval decision first.
  A declined (or unavailable) approval raises NotApprovedError and the call
  never reaches the execution runtime.
- autonomous: calls proceed directly.

Transitions are explicit, persisted first, and then published as a new
immutable snapshot. Reads never block and never see a half-applied change;
calls already in flight keep the decision they were made under.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolmount.core.tools.base import (
    ApprovalPolicy,
    ApprovalRequest,
    PermissionMode,
    PermissionSettings,
)
from toolmount.exceptions import NotApprovedError
from toolmount.models.runtime_setting import RuntimeSetting

logger = logging.getLogger(__name__)

SETTINGS_KEY = "permission_gate"

Approver = Callable[[ApprovalRequest], Awaitable[bool]]


async def decline_all(request: ApprovalRequest) -> bool:
    """Default approver: nobody is there to say yes."""
    return False


class PermissionGate:
    """
    Process-wide approval mode, persisted in the runtime_settings table.

    Example:
        >>> gate = PermissionGate(sessionmaker, approver=ask_operator)
        >>> await gate.load()
        >>> await gate.check(ApprovalRequest(tool_name="echo", arguments={"message": "hi"}))
        >>> await gate.enable_autonomous(updated_by="ops@example.com")
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        approver: Approver | None = None,
        default_mode: PermissionMode | str = PermissionMode.ASK,
    ) -> None:
        """
        Initialize permission gate.

        Args:
            sessionmaker: Session factory for the persisted settings row
            approver: Async callable deciding approval requests (default: decline)
            default_mode: Mode used when nothing has been persisted yet
        """
        self._sessionmaker = sessionmaker
        self._approver: Approver = approver or decline_all
        self._settings = PermissionSettings(mode=PermissionMode(default_mode))

    # =========================================================================
    # State
    # =========================================================================

    @property
    def settings(self) -> PermissionSettings:
        """Current settings snapshot."""
        return self._settings

    @property
    def mode(self) -> PermissionMode:
        return self._settings.mode

    @property
    def is_autonomous(self) -> bool:
        return self._settings.mode is PermissionMode.AUTONOMOUS

    def set_approver(self, approver: Approver | None) -> None:
        """Install the approver (None restores decline-all)."""
        self._approver = approver or decline_all

    async def load(self) -> PermissionSettings:
        """
        Load persisted settings, persisting the defaults on first start.

        Returns:
            The active settings
        """
        async with self._sessionmaker() as session:
            row = await session.get(RuntimeSetting, SETTINGS_KEY)
            if row is None:
                row = RuntimeSetting(
                    key=SETTINGS_KEY, value=self._settings.model_dump(mode="json")
                )
                session.add(row)
                await session.commit()
                logger.info(f"Permission gate initialized in {self._settings.mode} mode")
                return self._settings

            self._settings = PermissionSettings.model_validate(row.value)

        logger.info(f"Permission gate loaded in {self._settings.mode} mode")
        return self._settings

    # =========================================================================
    # Decisions
    # =========================================================================

    def requires_approval(self, policy: ApprovalPolicy, management: bool = False) -> bool:
        """Whether a call under ``policy`` needs an approval right now."""
        if policy is ApprovalPolicy.NEVER:
            return False
        if policy is ApprovalPolicy.ALWAYS:
            return True

        settings = self._settings
        if settings.mode is PermissionMode.AUTONOMOUS:
            return False
        if management and not settings.require_approval_for_management:
            return False
        return True

    async def check(self, request: ApprovalRequest) -> None:
        """
        Let a call through, or raise.

        Raises:
            NotApprovedError: Approval was needed and declined
        """
        if not self.requires_approval(request.policy, management=request.management):
            return

        try:
            approved = await self._approver(request)
        except Exception as e:
            logger.error(
                f"Approver failed for {request.tool_name}: {e}",
                exc_info=True,
                extra={"tool_name": request.tool_name},
            )
            raise NotApprovedError(f"Approval for '{request.tool_name}' failed: {e}") from e

        if not approved:
            logger.info(
                f"Call to {request.tool_name} was not approved",
                extra={"tool_name": request.tool_name, "policy": request.policy.value},
            )
            raise NotApprovedError(f"Call to '{request.tool_name}' was not approved")

    # =========================================================================
    # Transitions
    # =========================================================================

    async def enable_autonomous(self, updated_by: str | None = None) -> PermissionSettings:
        return await self.update_settings(mode=PermissionMode.AUTONOMOUS, updated_by=updated_by)

    async def disable_autonomous(self, updated_by: str | None = None) -> PermissionSettings:
        return await self.update_settings(mode=PermissionMode.ASK, updated_by=updated_by)

    async def update_settings(
        self,
        mode: PermissionMode | str | None = None,
        require_approval_for_management: bool | None = None,
        updated_by: str | None = None,
    ) -> PermissionSettings:
        """
        Persist a settings change, then publish it.

        Args:
            mode: New mode (unchanged if None)
            require_approval_for_management: New flag (unchanged if None)
            updated_by: Who made the change

        Returns:
            The new settings
        """
        current = self._settings
        new = PermissionSettings(
            mode=PermissionMode(mode) if mode is not None else current.mode,
            require_approval_for_management=(
                require_approval_for_management
                if require_approval_for_management is not None
                else current.require_approval_for_management
            ),
            updated_at=datetime.now(UTC),
            updated_by=updated_by,
        )

        async with self._sessionmaker() as session:
            row = await session.get(RuntimeSetting, SETTINGS_KEY)
            if row is None:
                session.add(RuntimeSetting(key=SETTINGS_KEY, value=new.model_dump(mode="json")))
            else:
                row.value = new.model_dump(mode="json")
            await session.commit()

        self._settings = new
        logger.info(
            f"Permission gate: {current.mode} -> {new.mode}",
            extra={
                "mode": new.mode.value,
                "require_approval_for_management": new.require_approval_for_management,
                "updated_by": updated_by,
            },
        )
        return new

    def __repr__(self) -> str:
        return f"PermissionGate(mode={self.mode})"


__all__ = ["SETTINGS_KEY", "Approver", "PermissionGate", "decline_all"]
