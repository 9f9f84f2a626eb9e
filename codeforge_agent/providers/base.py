"""
Provider Types
==============

Normalized request and response shapes shared by all provider adapters.

Each backend contributes two pure functions: one that turns the transcript
and tool list into an HTTP request, and one that turns the raw JSON reply
into a ProviderResponse. They are wired together by a ProviderAdapter
record and selected by provider id, never by subclassing.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple, Optional

from codeforge_agent.config import AgentConfig
from codeforge_agent.models import AgentMessage, ToolCall, ToolDefinition


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ProviderRequest:
    """A fully formatted HTTP call to a provider."""
    url: str
    headers: dict
    body: dict


@dataclass
class ProviderResponse:
    """A provider reply normalized to text plus tool calls."""
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    raw: Optional[dict] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


FormatRequest = Callable[
    [list[AgentMessage], list[ToolDefinition], AgentConfig, str],
    ProviderRequest,
]
ParseResponse = Callable[[dict], ProviderResponse]


class ProviderAdapter(NamedTuple):
    """The pair of pure functions that make up one provider."""
    provider_id: str
    format_request: FormatRequest
    parse_response: ParseResponse
    extract_error: Callable[[Any], str]


def join_text(fragments: list[str]) -> str:
    """Concatenate the text parts of a reply, skipping empty ones."""
    return "".join(f for f in fragments if f)


def tool_result_payload(message: AgentMessage) -> Any:
    """Decode the JSON result carried by a tool message."""
    try:
        return json.loads(message.content)
    except (TypeError, json.JSONDecodeError):
        return message.content


def default_error_message(body: Any) -> str:
    """Pull a readable message out of an error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    if isinstance(body, str) and body:
        return body[:500]
    return "Unknown error"
