"""
Integration tests for the permission gate (persisted in runtime_settings).
"""

from unittest.mock import AsyncMock

import pytest

from toolmount.core.tools.base import ApprovalPolicy, ApprovalRequest, PermissionMode
from toolmount.exceptions import NotApprovedError
from toolmount.services.permission_gate import PermissionGate, decline_all

pytestmark = pytest.mark.integration


@pytest.fixture
async def gate(sessionmaker) -> PermissionGate:
    gate = PermissionGate(sessionmaker)
    await gate.load()
    return gate


def request(policy: ApprovalPolicy = ApprovalPolicy.ASK_MODE, **kwargs) -> ApprovalRequest:
    return ApprovalRequest(tool_name="echo", arguments={"message": "hi"}, policy=policy, **kwargs)


# ============================================================================
# Decisions
# ============================================================================


class TestRequiresApproval:
    async def test_ask_mode(self, gate):
        assert gate.mode is PermissionMode.ASK
        assert gate.requires_approval(ApprovalPolicy.NEVER) is False
        assert gate.requires_approval(ApprovalPolicy.ASK_MODE) is True
        assert gate.requires_approval(ApprovalPolicy.ALWAYS) is True

    async def test_autonomous_mode(self, gate):
        await gate.enable_autonomous()
        assert gate.requires_approval(ApprovalPolicy.NEVER) is False
        assert gate.requires_approval(ApprovalPolicy.ASK_MODE) is False
        assert gate.requires_approval(ApprovalPolicy.ALWAYS) is True

    async def test_management_approval_can_be_waived(self, gate):
        await gate.update_settings(require_approval_for_management=False)

        assert gate.requires_approval(ApprovalPolicy.ASK_MODE, management=True) is False
        assert gate.requires_approval(ApprovalPolicy.ASK_MODE) is True
        assert gate.requires_approval(ApprovalPolicy.ALWAYS, management=True) is True


class TestCheck:
    async def test_default_approver_declines(self, gate):
        assert await decline_all(request()) is False
        with pytest.raises(NotApprovedError):
            await gate.check(request())

    async def test_never_policy_skips_approver(self, gate):
        approver = AsyncMock(return_value=False)
        gate.set_approver(approver)

        await gate.check(request(ApprovalPolicy.NEVER))

        approver.assert_not_awaited()

    async def test_approver_accepts(self, gate):
        approver = AsyncMock(return_value=True)
        gate.set_approver(approver)

        await gate.check(request(agent_id="agent-1"))

        approver.assert_awaited_once()
        assert approver.await_args.args[0].agent_id == "agent-1"

    async def test_failing_approver_is_a_decline(self, gate):
        gate.set_approver(AsyncMock(side_effect=RuntimeError("approval UI offline")))

        with pytest.raises(NotApprovedError, match="approval UI offline"):
            await gate.check(request())

    async def test_autonomous_skips_approver(self, gate):
        approver = AsyncMock(return_value=False)
        gate.set_approver(approver)
        await gate.enable_autonomous()

        await gate.check(request())

        approver.assert_not_awaited()


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    async def test_transition_is_persisted(self, gate, sessionmaker):
        settings = await gate.enable_autonomous(updated_by="ops@example.com")

        assert settings.mode is PermissionMode.AUTONOMOUS
        assert settings.updated_by == "ops@example.com"
        assert settings.updated_at is not None

        reloaded = PermissionGate(sessionmaker)
        await reloaded.load()
        assert reloaded.is_autonomous
        assert reloaded.settings.updated_by == "ops@example.com"

    async def test_round_trip(self, gate):
        await gate.enable_autonomous()
        settings = await gate.disable_autonomous(updated_by="cli")

        assert settings.mode is PermissionMode.ASK
        assert gate.is_autonomous is False

    async def test_default_mode_applies_only_before_first_persist(self, sessionmaker):
        first = PermissionGate(sessionmaker, default_mode="autonomous")
        await first.load()
        assert first.is_autonomous

        second = PermissionGate(sessionmaker, default_mode="ask")
        await second.load()
        # Persisted state wins over the configured default
        assert second.is_autonomous

    async def test_snapshot_replaced_not_mutated(self, gate):
        before = gate.settings
        await gate.enable_autonomous()
        assert before.mode is PermissionMode.ASK
        assert gate.settings is not before
