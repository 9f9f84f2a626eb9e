"""
Tests for Agent Orchestrator
============================

Tests for the bounded tool loop, result ordering and self-improvement routing.
"""

import pytest

from codeforge_agent.audit import AuditLog
from codeforge_agent.errors import ProviderError
from codeforge_agent.models import AgentMessage, MessageRole, ToolCall
from codeforge_agent.ooda import CycleStatus, OODACycle
from codeforge_agent.orchestrator import (
    DONE_MESSAGE,
    REPHRASE_MESSAGE,
    AgentOrchestrator,
    trim_history,
)
from codeforge_agent.providers.base import ProviderResponse, TokenUsage
from codeforge_agent.risk import RiskGate
from codeforge_agent.tools import ExecutorRegistry, create_default_registry


# =============================================================================
# Fixtures
# =============================================================================

class ScriptedProvider:
    """Replays a fixed list of responses and records what it was sent."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def send(self, messages, tools, system_prompt=""):
        self.requests.append((list(messages), tools, system_prompt))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FailingProvider:
    async def send(self, messages, tools, system_prompt=""):
        raise ProviderError("groq", "rate limited", status=429)


class StubEngine:
    """Stands in for an OODAEngine with a canned cycle outcome."""

    def __init__(self, cycle, ready=True):
        self.cycle = cycle
        self.ready = ready
        self.issues = []

    def is_ready(self):
        return self.ready

    async def run_cycle(self, issue):
        self.issues.append(issue)
        return self.cycle

    def format_cycle(self, cycle):
        return f"report for {cycle.id}"


def tool_response(*calls, text=""):
    return ProviderResponse(
        text=text,
        tool_calls=[ToolCall(id=cid, tool_name=name, args=args) for cid, name, args in calls],
        usage=TokenUsage(prompt_tokens=10, completion_tokens=2),
    )


def text_response(text):
    return ProviderResponse(text=text, usage=TokenUsage(prompt_tokens=5, completion_tokens=1))


@pytest.fixture
def executed():
    return []


@pytest.fixture
def risk_gate(executed):
    executors = ExecutorRegistry()

    async def read_file(args):
        executed.append(args["filePath"])
        return {"success": True, "data": {"content": f"contents of {args['filePath']}"}}

    executors.register("read_file", read_file)
    return RiskGate(create_default_registry(), executors, AuditLog())


def make_orchestrator(provider, risk_gate, **kwargs):
    return AgentOrchestrator(provider, create_default_registry(), risk_gate, **kwargs)


# =============================================================================
# Tool Loop Tests
# =============================================================================

class TestToolLoop:
    """Tests for the message/tool loop."""

    @pytest.mark.asyncio
    async def test_plain_reply_single_message(self, risk_gate):
        provider = ScriptedProvider([text_response("Hello!")])
        orchestrator = make_orchestrator(provider, risk_gate)

        result = await orchestrator.run_turn([AgentMessage.user("hi")])

        assert result.message.content == "Hello!"
        assert result.new_messages == [result.message]
        assert result.provider_calls == 1
        assert result.tool_calls == 0
        assert not result.hit_iteration_limit

    @pytest.mark.asyncio
    async def test_empty_reply_becomes_done(self, risk_gate):
        orchestrator = make_orchestrator(ScriptedProvider([text_response("")]), risk_gate)
        message = await orchestrator.send_message([AgentMessage.user("do it")])
        assert message.content == DONE_MESSAGE

    @pytest.mark.asyncio
    async def test_tool_results_follow_calls_in_order(self, risk_gate, executed):
        provider = ScriptedProvider([
            tool_response(
                ("c1", "read_file", {"filePath": "a.ts"}),
                ("c2", "read_file", {"filePath": "b.ts"}),
            ),
            text_response("Both read."),
        ])
        orchestrator = make_orchestrator(provider, risk_gate)

        result = await orchestrator.run_turn([AgentMessage.user("read a and b")])

        assert executed == ["a.ts", "b.ts"]
        roles = [m.role for m in result.new_messages]
        assert roles == [MessageRole.ASSISTANT, MessageRole.TOOL, MessageRole.TOOL, MessageRole.ASSISTANT]
        assert [m.tool_call_id for m in result.new_messages[1:3]] == ["c1", "c2"]
        assert "contents of a.ts" in result.new_messages[1].content
        assert result.tool_calls == 2
        assert result.usage.total_tokens == 18

        second_transcript = provider.requests[1][0]
        assert second_transcript[-1].tool_call_id == "c2"

    @pytest.mark.asyncio
    async def test_stops_after_max_iterations(self, risk_gate):
        provider = ScriptedProvider([tool_response(("c1", "read_file", {"filePath": "loop.ts"}))])
        orchestrator = make_orchestrator(provider, risk_gate)

        result = await orchestrator.run_turn([AgentMessage.user("loop forever")])

        assert len(provider.requests) == 10
        assert result.provider_calls == 10
        assert result.hit_iteration_limit
        assert result.message.content == REPHRASE_MESSAGE
        assert orchestrator.get_stats()["iteration_limit_hits"] == 1

    @pytest.mark.asyncio
    async def test_repeated_ids_are_replaced(self, risk_gate):
        provider = ScriptedProvider([
            tool_response(("dup", "read_file", {"filePath": "a.ts"}), ("dup", "read_file", {"filePath": "b.ts"})),
            tool_response(("", "read_file", {"filePath": "c.ts"})),
            text_response("ok"),
        ])
        orchestrator = make_orchestrator(provider, risk_gate)

        result = await orchestrator.run_turn([AgentMessage.user("read")])

        ids = [m.tool_call_id for m in result.new_messages if m.role == MessageRole.TOOL]
        assert len(ids) == 3
        assert len(set(ids)) == 3
        assert all(ids)

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_abort(self, risk_gate):
        provider = ScriptedProvider([
            tool_response(("c1", "format_disk", {})),
            text_response("That tool does not exist."),
        ])
        orchestrator = make_orchestrator(provider, risk_gate)

        result = await orchestrator.run_turn([AgentMessage.user("wipe")])

        assert "Unknown tool: format_disk" in result.new_messages[1].content
        assert result.message.content == "That tool does not exist."

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, risk_gate):
        orchestrator = make_orchestrator(FailingProvider(), risk_gate)
        with pytest.raises(ProviderError, match="429"):
            await orchestrator.run_turn([AgentMessage.user("hi")])

    @pytest.mark.asyncio
    async def test_tool_call_hook(self, risk_gate):
        seen = []
        provider = ScriptedProvider([
            tool_response(("c1", "read_file", {"filePath": "a.ts"})),
            text_response("done"),
        ])
        orchestrator = make_orchestrator(provider, risk_gate, on_tool_call=lambda c: seen.append(c.tool_name))
        await orchestrator.run_turn([AgentMessage.user("read")])
        assert seen == ["read_file"]

    @pytest.mark.asyncio
    async def test_system_prompt_includes_project(self, risk_gate):
        from codeforge_agent.prompts import ProjectContext

        provider = ScriptedProvider([text_response("ok")])
        orchestrator = make_orchestrator(provider, risk_gate)
        await orchestrator.run_turn([AgentMessage.user("hi")], ProjectContext(project_name="shop-front"))

        assert "shop-front" in provider.requests[0][2]


# =============================================================================
# Self-Improvement Routing Tests
# =============================================================================

class TestSelfImproveRouting:
    """Tests for routing problem reports to the OODA engine."""

    @pytest.mark.asyncio
    async def test_successful_cycle_returns_report(self, risk_gate):
        cycle = OODACycle(issue="x", category="ui_bug", status=CycleStatus.COMPLETED)
        engine = StubEngine(cycle)
        provider = ScriptedProvider([text_response("should not be used")])
        orchestrator = make_orchestrator(provider, risk_gate, ooda_engine=engine)

        result = await orchestrator.run_turn([AgentMessage.user("الزر لا يعمل في الشريط الجانبي")])

        assert result.message.content == f"report for {cycle.id}"
        assert result.cycle is cycle
        assert provider.requests == []
        assert engine.issues == ["الزر لا يعمل في الشريط الجانبي"]

    @pytest.mark.asyncio
    async def test_failed_cycle_falls_back(self, risk_gate):
        cycle = OODACycle(issue="x", category="ui_bug", status=CycleStatus.FAILED, error="model offline")
        provider = ScriptedProvider([text_response("Here is what I can tell you.")])
        orchestrator = make_orchestrator(provider, risk_gate, ooda_engine=StubEngine(cycle))

        result = await orchestrator.run_turn([AgentMessage.user("the sidebar button is broken")])

        assert result.message.content == (
            "Self-improvement cycle failed: model offline\n\nHere is what I can tell you."
        )
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_engine_not_ready_skips_cycle(self, risk_gate):
        engine = StubEngine(OODACycle(issue="x", category="ui_bug"), ready=False)
        provider = ScriptedProvider([text_response("normal reply")])
        orchestrator = make_orchestrator(provider, risk_gate, ooda_engine=engine)

        result = await orchestrator.run_turn([AgentMessage.user("the button is broken")])

        assert result.message.content == "normal reply"
        assert engine.issues == []

    @pytest.mark.asyncio
    async def test_ordinary_request_skips_cycle(self, risk_gate):
        engine = StubEngine(OODACycle(issue="x", category="ui_bug"))
        provider = ScriptedProvider([text_response("sure")])
        orchestrator = make_orchestrator(provider, risk_gate, ooda_engine=engine)

        await orchestrator.run_turn([AgentMessage.user("list the files please")])
        assert engine.issues == []


# =============================================================================
# History Tests
# =============================================================================

class TestTrimHistory:
    def test_short_history_unchanged(self):
        messages = [AgentMessage.user(str(i)) for i in range(3)]
        assert trim_history(messages, 5) == messages

    def test_drops_orphaned_tool_results(self):
        call = ToolCall(id="c1", tool_name="read_file")
        messages = [
            AgentMessage.user("read"),
            AgentMessage.assistant("", tool_calls=[call]),
            AgentMessage.tool(call),
            AgentMessage.tool(call),
            AgentMessage.assistant("done"),
        ]
        trimmed = trim_history(messages, 3)
        assert [m.role for m in trimmed] == [MessageRole.ASSISTANT]
