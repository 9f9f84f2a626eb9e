"""
Agent Orchestrator
==================

The bounded message/tool loop behind one chat turn.

Each iteration calls the provider with the transcript and the registered
tools. A reply without tool calls ends the turn. Otherwise the tool calls
run one after another through the risk gate, their results are appended to
the transcript in the same order, and the loop goes again. After
MAX_TOOL_ITERATIONS provider calls the turn ends with a fixed request to
rephrase.

Turns for one conversation must be serialized by the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from codeforge_agent.config import MAX_HISTORY_MESSAGES, MAX_TOOL_ITERATIONS
from codeforge_agent.errors import IterationLimitExceeded
from codeforge_agent.models import AgentMessage, MessageRole, ToolCall, ToolDefinition, new_id
from codeforge_agent.prompts import ProjectContext, build_system_prompt
from codeforge_agent.providers.base import ProviderResponse, TokenUsage
from codeforge_agent.risk import RiskGate
from codeforge_agent.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from codeforge_agent.ooda import OODACycle, OODAEngine

logger = logging.getLogger(__name__)


DONE_MESSAGE = "Done."
REPHRASE_MESSAGE = (
    "I reached the maximum number of steps for this request without finishing. "
    "Please rephrase it or split it into smaller steps."
)


class Provider(Protocol):
    """What the loop needs from an LLM backend."""

    async def send(
        self,
        messages: list[AgentMessage],
        tools: list[ToolDefinition],
        system_prompt: str = "",
    ) -> ProviderResponse: ...


ToolCallHook = Callable[[ToolCall], None]


@dataclass
class TurnResult:
    """Everything one turn produced."""
    message: AgentMessage
    # Messages appended during the turn, final message included
    new_messages: list[AgentMessage] = field(default_factory=list)
    provider_calls: int = 0
    tool_calls: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    hit_iteration_limit: bool = False
    cycle: Optional["OODACycle"] = None


def trim_history(messages: list[AgentMessage], limit: int = MAX_HISTORY_MESSAGES) -> list[AgentMessage]:
    """
    Keep the newest messages, never starting on an orphaned tool result.
    """
    if len(messages) <= limit:
        return list(messages)
    window = list(messages[-limit:])
    while window and window[0].role == MessageRole.TOOL:
        window.pop(0)
    return window


def last_user_text(messages: list[AgentMessage]) -> str:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message.content
    return ""


class AgentOrchestrator:
    """
    Runs chat turns against one provider.

    Optionally routes self-improvement requests to an OODAEngine and falls
    back to the normal loop when the cycle fails.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        risk_gate: RiskGate,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        max_history: int = MAX_HISTORY_MESSAGES,
        base_prompt: Optional[str] = None,
        ooda_engine: Optional["OODAEngine"] = None,
        on_tool_call: Optional[ToolCallHook] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.risk_gate = risk_gate
        self.max_iterations = max_iterations
        self.max_history = max_history
        self.base_prompt = base_prompt
        self.ooda_engine = ooda_engine
        self.on_tool_call = on_tool_call

        self.stats = {
            "turns": 0,
            "provider_calls": 0,
            "tool_calls": 0,
            "iteration_limit_hits": 0,
            "self_improve_cycles": 0,
        }

    async def send_message(
        self,
        messages: list[AgentMessage],
        project_context: Optional[ProjectContext] = None,
    ) -> AgentMessage:
        """Run one turn and return the final assistant message."""
        result = await self.run_turn(messages, project_context)
        return result.message

    async def run_turn(
        self,
        messages: list[AgentMessage],
        project_context: Optional[ProjectContext] = None,
    ) -> TurnResult:
        """
        Run one turn over the given transcript.

        Args:
            messages: Conversation so far, ending with the user's message
            project_context: Optional project description for the system prompt

        Returns:
            TurnResult with the final message and everything appended

        Raises:
            ProviderError: If the provider could not be reached; the turn is aborted
        """
        self.stats["turns"] += 1

        prefix = ""
        cycle = None
        if self._should_self_improve(messages):
            cycle = await self._run_self_improve(last_user_text(messages))
            if cycle.succeeded:
                message = AgentMessage.assistant(self.ooda_engine.format_cycle(cycle))
                return TurnResult(message=message, new_messages=[message], cycle=cycle)
            prefix = f"Self-improvement cycle failed: {cycle.error}\n\n"

        result = await self._run_loop(messages, project_context)
        result.cycle = cycle
        if prefix:
            result.message.content = prefix + result.message.content
        return result

    def _should_self_improve(self, messages: list[AgentMessage]) -> bool:
        if self.ooda_engine is None or not self.ooda_engine.is_ready():
            return False
        from codeforge_agent.ooda import is_self_improve_request

        return is_self_improve_request(last_user_text(messages))

    async def _run_self_improve(self, issue: str) -> "OODACycle":
        self.stats["self_improve_cycles"] += 1
        logger.info("Routing request to self-improvement cycle")
        return await self.ooda_engine.run_cycle(issue)

    async def _run_loop(
        self,
        messages: list[AgentMessage],
        project_context: Optional[ProjectContext],
    ) -> TurnResult:
        system_prompt = build_system_prompt(project_context, base=self.base_prompt)
        tools = self.registry.get_all()
        transcript = trim_history(messages, self.max_history)
        new_messages: list[AgentMessage] = []
        usage = TokenUsage()
        seen_ids: set[str] = set()
        tool_call_count = 0

        for iteration in range(self.max_iterations):
            response = await self.provider.send(transcript, tools, system_prompt)
            self.stats["provider_calls"] += 1
            usage.add(response.usage)

            if not response.tool_calls:
                final = AgentMessage.assistant(response.text or DONE_MESSAGE)
                new_messages.append(final)
                return TurnResult(
                    message=final,
                    new_messages=new_messages,
                    provider_calls=iteration + 1,
                    tool_calls=tool_call_count,
                    usage=usage,
                )

            calls = self._dedupe_ids(response.tool_calls, seen_ids)
            assistant = AgentMessage.assistant(response.text, tool_calls=calls)
            transcript.append(assistant)
            new_messages.append(assistant)

            # Each result lands before the next call starts
            for call in calls:
                if self.on_tool_call is not None:
                    self.on_tool_call(call)
                await self.risk_gate.execute(call)
                tool_call_count += 1
                self.stats["tool_calls"] += 1
                tool_message = AgentMessage.tool(call)
                transcript.append(tool_message)
                new_messages.append(tool_message)

        limit = IterationLimitExceeded(self.max_iterations)
        logger.warning("%s", limit)
        self.stats["iteration_limit_hits"] += 1
        final = AgentMessage.assistant(REPHRASE_MESSAGE)
        new_messages.append(final)
        return TurnResult(
            message=final,
            new_messages=new_messages,
            provider_calls=self.max_iterations,
            tool_calls=tool_call_count,
            usage=usage,
            hit_iteration_limit=True,
        )

    @staticmethod
    def _dedupe_ids(calls: list[ToolCall], seen: set[str]) -> list[ToolCall]:
        """Give every call in the turn a distinct id."""
        for call in calls:
            if not call.id or call.id in seen:
                call.id = new_id("call")
            seen.add(call.id)
        return calls

    def get_stats(self) -> dict:
        return self.stats.copy()
