"""
Tests for Chat CLI
==================

Tests for terminal approvals and the rendering of OODA events.
"""

import asyncio

import pytest

from codeforge_agent import output
from codeforge_agent.cli import chat_cli
from codeforge_agent.cli.chat_cli import TerminalApprovals, show_ooda_event
from codeforge_agent.models import PendingApproval, RiskLevel, ToolCall
from codeforge_agent.ooda import OODAEvent


def make_pending():
    call = ToolCall(id="call_1", tool_name="delete_file", args={"nodeId": "a.ts"})
    return PendingApproval(tool_call=call, description="Delete: a.ts", risk_level=RiskLevel.CONFIRM)


# =============================================================================
# Terminal Approval Tests
# =============================================================================

class TestTerminalApprovals:
    """Tests for answering approvals at the terminal."""

    @pytest.mark.asyncio
    async def test_answer_resolves_request(self):
        async def ask(pending):
            return True

        approvals = TerminalApprovals(ask=ask)
        assert await approvals.request(make_pending()) is True
        assert approvals.open_prompts == 0

    @pytest.mark.asyncio
    async def test_failed_prompt_dismisses(self):
        async def ask(pending):
            raise EOFError()

        approvals = TerminalApprovals(ask=ask)
        assert await approvals.request(make_pending()) is False
        assert approvals.manager.stats["dismissed"] == 1

    @pytest.mark.asyncio
    async def test_drain_waits_for_prompt_left_by_timeout(self, monkeypatch):
        muted, warnings = [], []
        monkeypatch.setattr(chat_cli, "print_muted", muted.append)
        monkeypatch.setattr(chat_cli, "print_warning", warnings.append)
        answer = asyncio.Event()

        async def ask(pending):
            await answer.wait()
            return True

        approvals = TerminalApprovals(timeout_seconds=0.01, ask=ask)
        assert await approvals.request(make_pending()) is False
        assert approvals.open_prompts == 1

        drain = asyncio.ensure_future(approvals.drain())
        await asyncio.sleep(0)
        assert not drain.done()
        assert len(warnings) == 1

        answer.set()
        await drain
        assert approvals.open_prompts == 0
        assert muted == ["That approval had already timed out; the answer was ignored."]
        assert approvals.manager.stats["timed_out"] == 1
        assert approvals.manager.stats["approved"] == 0

    @pytest.mark.asyncio
    async def test_drain_without_prompts_returns(self, monkeypatch):
        warnings = []
        monkeypatch.setattr(chat_cli, "print_warning", warnings.append)
        await TerminalApprovals().drain()
        assert warnings == []


# =============================================================================
# Rendering Tests
# =============================================================================

class TestRendering:

    def test_verification_and_rollback_events(self, monkeypatch):
        calls = []
        monkeypatch.setattr(chat_cli, "print_success", lambda m: calls.append(("success", m)))
        monkeypatch.setattr(chat_cli, "print_warning", lambda m: calls.append(("warning", m)))

        show_ooda_event(OODAEvent("verify", "verification_result", "Verification passed", data={"passed": True}))
        show_ooda_event(OODAEvent("verify", "verification_result", "Failed checks: syntax_sanity", data={"passed": False}))
        show_ooda_event(OODAEvent("verify", "rollback", "Rolled back 1 of 1 changes", data={"files": ["a.ts"]}))

        assert calls == [
            ("success", "Verification passed"),
            ("warning", "Failed checks: syntax_sanity"),
            ("warning", "Rolled back 1 of 1 changes"),
        ]

    def test_success_notification(self, monkeypatch):
        seen = []
        monkeypatch.setattr(output, "print_success", seen.append)
        output.print_notification("Updated: a.ts", "success")
        assert seen == ["Updated: a.ts"]
