"""
Agent Errors
============

Exception types raised by the agent core.

ParseError and ToolExecutionError never leave the tool-execution boundary:
the risk gate turns them into failed tool results the model can react to.
ProviderError aborts the current turn. CycleFailure marks a self-improvement
cycle failed. A user rejecting a tool call is a normal result, not an error.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for agent core errors."""


class ParseError(AgentError):
    """Malformed tool-call arguments from a provider."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ProviderError(AgentError):
    """Network or HTTP failure while reaching an LLM backend."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        self.provider = provider
        self.status = status
        label = PROVIDER_LABELS.get(provider, provider)
        if status is not None:
            super().__init__(f"{label} API error ({status}): {message}")
        else:
            super().__init__(f"{label} API error: {message}")


class ToolExecutionError(AgentError):
    """A registered tool executor raised."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class IterationLimitExceeded(AgentError):
    """The tool loop hit its iteration bound."""

    def __init__(self, iterations: int):
        super().__init__(f"Tool loop stopped after {iterations} iterations")
        self.iterations = iterations


class CycleFailure(AgentError):
    """A self-improvement phase could not complete."""

    def __init__(self, phase: str, message: str):
        super().__init__(message)
        self.phase = phase


PROVIDER_LABELS = {
    "openai": "OpenAI",
    "google": "Gemini",
    "groq": "Groq",
    "anthropic": "Anthropic",
}
