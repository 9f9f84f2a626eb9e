"""
Tests for Approval Manager
==========================

Tests for suspending confirm-level calls until a decision arrives.
"""

import asyncio

import pytest

from codeforge_agent.approval import ApprovalManager
from codeforge_agent.audit import AuditLog
from codeforge_agent.models import ApprovalStatus, PendingApproval, RiskLevel, ToolCall
from codeforge_agent.risk import RiskGate
from codeforge_agent.tools import ExecutorRegistry, create_default_registry


def make_pending(tool_name="delete_file"):
    call = ToolCall(id="call_1", tool_name=tool_name, args={"nodeId": "a.ts"})
    return PendingApproval(tool_call=call, description="Delete: a.ts", risk_level=RiskLevel.CONFIRM)


async def wait_for_pending(manager: ApprovalManager) -> PendingApproval:
    for _ in range(100):
        pending = manager.get_pending()
        if pending:
            return pending[0]
        await asyncio.sleep(0)
    raise AssertionError("no approval became pending")


# =============================================================================
# ApprovalManager Tests
# =============================================================================

class TestApprovalManager:
    """Tests for resolve, dismiss and timeout."""

    @pytest.mark.asyncio
    async def test_resolve_approves(self):
        manager = ApprovalManager()
        pending = make_pending()
        task = asyncio.create_task(manager.request(pending))

        waiting = await wait_for_pending(manager)
        assert waiting is pending
        assert manager.resolve(pending.id, approved=True)

        assert await task is True
        assert pending.status == ApprovalStatus.APPROVED
        assert manager.get_pending() == []
        assert manager.history[0].decided_by == "user"

    @pytest.mark.asyncio
    async def test_resolve_rejects(self):
        manager = ApprovalManager()
        pending = make_pending()
        task = asyncio.create_task(manager.request(pending))
        await wait_for_pending(manager)

        manager.resolve(pending.id, approved=False)
        assert await task is False
        assert pending.status == ApprovalStatus.REJECTED

    @pytest.mark.asyncio
    async def test_resolve_unknown_id(self):
        manager = ApprovalManager()
        assert manager.resolve("approval_missing", approved=True) is False

    @pytest.mark.asyncio
    async def test_dismiss_counts_as_rejection(self):
        manager = ApprovalManager()
        pending = make_pending()
        task = asyncio.create_task(manager.request(pending))
        await wait_for_pending(manager)

        assert manager.dismiss(pending.id)
        assert await task is False
        assert manager.history[0].decided_by == "dismissed"
        assert manager.get_stats()["dismissed"] == 1

    @pytest.mark.asyncio
    async def test_dismiss_all(self):
        manager = ApprovalManager()
        tasks = [asyncio.create_task(manager.request(make_pending())) for _ in range(3)]
        while len(manager.get_pending()) < 3:
            await asyncio.sleep(0)

        assert manager.dismiss_all() == 3
        assert await asyncio.gather(*tasks) == [False, False, False]
        assert manager.get_stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_timeout_rejects(self):
        manager = ApprovalManager(timeout_seconds=0.01)
        approved = await manager.request(make_pending())

        assert approved is False
        assert manager.history[0].decided_by == "timeout"
        assert manager.get_stats()["timed_out"] == 1

    @pytest.mark.asyncio
    async def test_on_request_hook(self):
        seen = []
        manager = ApprovalManager(on_request=seen.append)
        pending = make_pending()
        task = asyncio.create_task(manager.request(pending))
        await wait_for_pending(manager)

        assert seen == [pending]
        manager.resolve(pending.id, approved=True)
        await task

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_block(self):
        def broken(pending):
            raise RuntimeError("no ui")

        manager = ApprovalManager(timeout_seconds=0.01, on_request=broken)
        assert await manager.request(make_pending()) is False


# =============================================================================
# Risk Gate Integration Tests
# =============================================================================

class TestGateWithManager:
    """The manager plugged in as the gate's approval callback."""

    @pytest.mark.asyncio
    async def test_delete_runs_after_resolve(self):
        deleted = []

        async def delete(args):
            deleted.append(args["nodeId"])
            return {"success": True}

        executors = ExecutorRegistry()
        executors.register("delete_file", delete)
        manager = ApprovalManager()
        gate = RiskGate(create_default_registry(), executors, AuditLog(), approval_callback=manager.request)

        task = asyncio.create_task(
            gate.execute(ToolCall(id="c1", tool_name="delete_file", args={"nodeId": "old.ts"}))
        )
        pending = await wait_for_pending(manager)
        assert deleted == []

        manager.resolve(pending.id, approved=True)
        result = await task
        assert result.success
        assert deleted == ["old.ts"]
