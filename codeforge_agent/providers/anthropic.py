"""
Anthropic Provider
==================

Messages API wire format for Claude models.

Replies are a list of content blocks tagged text or tool_use; tool results
are sent back as tool_result blocks inside a user message.
"""

from codeforge_agent.config import AgentConfig
from codeforge_agent.models import AgentMessage, MessageRole, ToolCall, ToolDefinition, new_id
from codeforge_agent.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    default_error_message,
    join_text,
)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def format_messages(messages: list[AgentMessage]) -> list[dict]:
    formatted: list[dict] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            continue

        if message.role == MessageRole.TOOL and message.tool_calls:
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_calls[0].id,
                "content": message.content,
            }
            # All results for one assistant turn share a single user message
            previous = formatted[-1] if formatted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                formatted.append({"role": "user", "content": [block]})
        elif message.role == MessageRole.ASSISTANT and message.tool_calls:
            content: list[dict] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.tool_name,
                    "input": call.args,
                })
            formatted.append({"role": "assistant", "content": content})
        else:
            formatted.append({
                "role": "user" if message.role == MessageRole.USER else "assistant",
                "content": message.content,
            })
    return formatted


def format_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.schema()}
        for tool in tools
    ]


def format_request(messages, tools, config: AgentConfig, system_prompt: str) -> ProviderRequest:
    body: dict = {
        "model": config.model,
        "messages": format_messages(messages),
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }
    if system_prompt:
        body["system"] = system_prompt
    if tools:
        body["tools"] = format_tools(tools)

    headers = {
        "Content-Type": "application/json",
        "x-api-key": config.api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        **config.headers,
    }
    return ProviderRequest(url=config.base_url or ANTHROPIC_API_URL, headers=headers, body=body)


def parse_response(raw: dict) -> ProviderResponse:
    """Normalize a Messages API reply."""
    fragments: list[str] = []
    calls: list[ToolCall] = []
    for block in raw.get("content") or []:
        block_type = block.get("type")
        if block_type == "text":
            fragments.append(block.get("text") or "")
        elif block_type == "tool_use":
            args = block.get("input")
            call = ToolCall(
                id=block.get("id") or new_id("toolu"),
                tool_name=block.get("name", ""),
                args=args if isinstance(args, dict) else {},
            )
            if args is not None and not isinstance(args, dict):
                call.parse_error = f"Arguments for {call.tool_name} must be an object"
            calls.append(call)

    usage = raw.get("usage") or {}
    return ProviderResponse(
        text=join_text(fragments),
        tool_calls=calls,
        usage=TokenUsage(
            prompt_tokens=int(usage.get("input_tokens") or 0),
            completion_tokens=int(usage.get("output_tokens") or 0),
        ),
        raw=raw,
    )


ANTHROPIC_ADAPTER = ProviderAdapter("anthropic", format_request, parse_response, default_error_message)
