"""
Tests for Risk Gate Module
==========================

Tests for risk classification, gated execution, approvals and auditing.
"""

import asyncio

import pytest

from codeforge_agent.audit import APPROVED_BY_AUTO, APPROVED_BY_USER, AuditLog
from codeforge_agent.models import (
    REJECTED_BY_USER,
    ApprovalStatus,
    RiskLevel,
    ToolCall,
    ToolCallResult,
    ToolCallStatus,
    ToolCategory,
    ToolDefinition,
)
from codeforge_agent.risk import (
    RiskGate,
    classify,
    coerce_result,
    describe_tool_call,
    extract_affected_files,
    is_sensitive_file,
)
from codeforge_agent.tools import ExecutorRegistry, create_default_registry


# =============================================================================
# Fixtures
# =============================================================================

class RecordingExecutor:
    """Async executor that records every invocation."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.calls = []
        self.result = result if result is not None else {"success": True, "data": "ok"}
        self.error = error
        self.delay = delay

    async def __call__(self, args):
        self.calls.append(args)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def registry():
    return create_default_registry()


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def executors():
    return ExecutorRegistry()


def make_gate(registry, executors, audit_log, **kwargs):
    return RiskGate(registry, executors, audit_log, **kwargs)


def call(tool_name, **args):
    return ToolCall(id=f"call_{tool_name}", tool_name=tool_name, args=args)


# =============================================================================
# Classification Tests
# =============================================================================

class TestClassification:
    """Tests for classify and its helpers."""

    def test_declared_level_kept(self, registry):
        assessment = classify(registry.get_by_name("update_file"), {"fileId": "src/app.ts"})
        assert assessment.level == RiskLevel.NOTIFY
        assert not assessment.escalated

    def test_sensitive_file_escalates_write(self, registry):
        assessment = classify(registry.get_by_name("update_file"), {"fileId": "package.json"})
        assert assessment.level == RiskLevel.CONFIRM
        assert assessment.escalated
        assert "package.json" in assessment.concerns[0]

    def test_env_file_escalates_create(self, registry):
        assessment = classify(registry.get_by_name("create_file"), {"name": ".env.local", "content": ""})
        assert assessment.level == RiskLevel.CONFIRM

    def test_reading_sensitive_file_not_escalated(self, registry):
        assessment = classify(registry.get_by_name("read_file"), {"filePath": "package.json"})
        assert assessment.level == RiskLevel.AUTO

    def test_never_lowered(self, registry):
        assessment = classify(registry.get_by_name("delete_file"), {"nodeId": "notes.md"})
        assert assessment.level == RiskLevel.CONFIRM

    def test_destructive_name_at_least_notify(self):
        tool = ToolDefinition(
            name="cache_reset",
            description="Reset the cache",
            parameters={"type": "object", "properties": {}, "required": []},
            risk_level=RiskLevel.AUTO,
            category=ToolCategory.UTILITY,
        )
        assert classify(tool, {}).level == RiskLevel.NOTIFY

    def test_is_sensitive_file(self):
        assert is_sensitive_file("package.json")
        assert is_sensitive_file("apps/web/tsconfig.json")
        assert is_sensitive_file(".env")
        assert is_sensitive_file(".env.production")
        assert not is_sensitive_file("src/env.ts")

    def test_extract_affected_files(self):
        files = extract_affected_files({
            "filePath": "a.ts",
            "paths": ["b.ts", "a.ts"],
            "files": [{"path": "c.ts", "content": ""}],
        })
        assert files == ["a.ts", "b.ts", "c.ts"]

    def test_describe_special_cases(self, registry):
        assert describe_tool_call(registry.get_by_name("delete_file"), {"nodeId": "x.ts"}) == "Delete: x.ts"
        assert "main" in describe_tool_call(registry.get_by_name("git_push"), {"branch": "main"})
        assert describe_tool_call(
            registry.get_by_name("git_create_pr"), {"title": "Fix bug"}
        ) == "Create Pull Request: Fix bug"

    def test_coerce_result(self):
        assert coerce_result({"success": False, "error": "nope"}) == ToolCallResult.fail("nope")
        assert coerce_result({"success": True, "items": [1]}).data == {"items": [1]}
        assert coerce_result("plain").data == "plain"


# =============================================================================
# Auto / Notify Execution Tests
# =============================================================================

class TestAutoExecution:
    """Tests for auto- and notify-level calls."""

    @pytest.mark.asyncio
    async def test_auto_runs_once_and_audits(self, registry, executors, audit_log):
        read = RecordingExecutor(result={"success": True, "data": {"content": "hi"}})
        executors.register("read_file", read)
        gate = make_gate(registry, executors, audit_log)

        tool_call = call("read_file", filePath="a.ts")
        result = await gate.execute(tool_call)

        assert result.success
        assert result.data == {"content": "hi"}
        assert read.calls == [{"filePath": "a.ts"}]
        assert tool_call.status == ToolCallStatus.COMPLETED
        assert tool_call.result is result

        entries = audit_log.get_all()
        assert len(entries) == 1
        assert entries[0].approved_by == APPROVED_BY_AUTO
        assert entries[0].risk_level == "auto"
        assert entries[0].category == "filesystem"

    @pytest.mark.asyncio
    async def test_notify_sends_notification(self, registry, executors, audit_log):
        executors.register("create_file", RecordingExecutor())
        notifications = []
        gate = make_gate(
            registry, executors, audit_log,
            notify=lambda message, level: notifications.append((message, level)),
        )

        result = await gate.execute(call("create_file", name="new.ts", content=""))

        assert result.success
        assert notifications == [("create_file new.ts", "success")]
        assert audit_log.get_all()[0].approved_by == APPROVED_BY_AUTO

    @pytest.mark.asyncio
    async def test_notification_failure_ignored(self, registry, executors, audit_log):
        executors.register("create_file", RecordingExecutor())

        def broken(message, level):
            raise RuntimeError("ui gone")

        gate = make_gate(registry, executors, audit_log, notify=broken)
        result = await gate.execute(call("create_file", name="new.ts", content=""))
        assert result.success

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_failed_result(self, registry, executors, audit_log):
        executors.register("read_file", RecordingExecutor(error=OSError("disk on fire")))
        gate = make_gate(registry, executors, audit_log)

        result = await gate.execute(call("read_file", filePath="a.ts"))

        assert not result.success
        assert "disk on fire" in result.error
        assert audit_log.get_all()[0].success is False

    @pytest.mark.asyncio
    async def test_executor_timeout(self, registry, executors, audit_log):
        executors.register("read_file", RecordingExecutor(delay=1.0))
        gate = make_gate(registry, executors, audit_log, tool_timeout=0.01)

        result = await gate.execute(call("read_file", filePath="a.ts"))
        assert not result.success
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_missing_executor(self, registry, executors, audit_log):
        gate = make_gate(registry, executors, audit_log)
        result = await gate.execute(call("git_status"))
        assert not result.success
        assert "No executor" in result.error

    @pytest.mark.asyncio
    async def test_unknown_tool_not_audited(self, registry, executors, audit_log):
        gate = make_gate(registry, executors, audit_log)
        result = await gate.execute(call("format_disk"))
        assert result.error == "Unknown tool: format_disk"
        assert len(audit_log) == 0

    @pytest.mark.asyncio
    async def test_parse_error_short_circuits(self, registry, executors, audit_log):
        read = RecordingExecutor()
        executors.register("read_file", read)
        gate = make_gate(registry, executors, audit_log)

        tool_call = call("read_file")
        tool_call.parse_error = "Invalid JSON arguments for read_file"
        result = await gate.execute(tool_call)

        assert not result.success
        assert result.error == tool_call.parse_error
        assert read.calls == []


# =============================================================================
# Confirm Execution Tests
# =============================================================================

class TestConfirmExecution:
    """Tests for confirm-level calls."""

    @pytest.mark.asyncio
    async def test_not_executed_before_approval(self, registry, executors, audit_log):
        delete = RecordingExecutor()
        executors.register("delete_file", delete)
        released = asyncio.Event()
        seen = []

        async def approve(pending):
            seen.append(pending)
            await released.wait()
            return True

        gate = make_gate(registry, executors, audit_log, approval_callback=approve)
        task = asyncio.create_task(gate.execute(call("delete_file", nodeId="old.ts")))
        await asyncio.sleep(0.01)

        assert delete.calls == []
        assert len(gate.get_pending()) == 1
        assert seen[0].description == "Delete: old.ts"
        assert seen[0].affected_files == ["old.ts"]

        released.set()
        result = await task

        assert result.success
        assert delete.calls == [{"nodeId": "old.ts"}]
        assert seen[0].status == ApprovalStatus.APPROVED
        assert audit_log.get_all()[0].approved_by == APPROVED_BY_USER

    @pytest.mark.asyncio
    async def test_rejection(self, registry, executors, audit_log):
        delete = RecordingExecutor()
        executors.register("delete_file", delete)

        async def reject(pending):
            return False

        gate = make_gate(registry, executors, audit_log, approval_callback=reject)
        tool_call = call("delete_file", nodeId="old.ts")
        result = await gate.execute(tool_call)

        assert result == ToolCallResult(success=False, error=REJECTED_BY_USER)
        assert delete.calls == []
        assert tool_call.status == ToolCallStatus.REJECTED

        entry = audit_log.get_all()[0]
        assert entry.approved_by == APPROVED_BY_USER
        assert entry.rejected
        assert audit_log.get_stats()["rejected"] == 1

    @pytest.mark.asyncio
    async def test_no_callback_rejects(self, registry, executors, audit_log):
        push = RecordingExecutor()
        executors.register("git_push", push)
        gate = make_gate(registry, executors, audit_log)

        result = await gate.execute(call("git_push", branch="main"))
        assert result.error == REJECTED_BY_USER
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_callback_error_rejects(self, registry, executors, audit_log):
        push = RecordingExecutor()
        executors.register("git_push", push)

        async def broken(pending):
            raise RuntimeError("dialog crashed")

        gate = make_gate(registry, executors, audit_log, approval_callback=broken)
        result = await gate.execute(call("git_push"))
        assert result.error == REJECTED_BY_USER
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_truthy_non_true_rejects(self, registry, executors, audit_log):
        push = RecordingExecutor()
        executors.register("git_push", push)

        async def sloppy(pending):
            return "yes"

        gate = make_gate(registry, executors, audit_log, approval_callback=sloppy)
        result = await gate.execute(call("git_push"))
        assert not result.success
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_escalated_call_needs_approval(self, registry, executors, audit_log):
        update = RecordingExecutor()
        executors.register("update_file", update)
        requests = []

        async def reject(pending):
            requests.append(pending)
            return False

        gate = make_gate(registry, executors, audit_log, approval_callback=reject)
        await gate.execute(call("update_file", fileId="package.json", newContent="{}"))

        assert update.calls == []
        assert requests[0].risk_level == RiskLevel.CONFIRM

    @pytest.mark.asyncio
    async def test_stats(self, registry, executors, audit_log):
        executors.register("read_file", RecordingExecutor())
        executors.register("delete_file", RecordingExecutor())

        async def reject(pending):
            return False

        gate = make_gate(registry, executors, audit_log, approval_callback=reject)
        await gate.execute(call("read_file", filePath="a"))
        await gate.execute(call("delete_file", nodeId="a"))

        stats = gate.get_stats()
        assert stats["executed"] == 1
        assert stats["rejected"] == 1
        assert stats["by_level"]["auto"] == 1
        assert stats["by_level"]["confirm"] == 1
