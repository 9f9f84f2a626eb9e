"""
OpenAI-Compatible Provider
==========================

Chat-completions wire format, shared by OpenAI and Groq.

Replies carry tool calls in choices[0].message.tool_calls, each with its
arguments encoded as a JSON string. Arguments that fail to decode produce
a call tagged with a parse error instead of raising.
"""

import json
from typing import Any

from codeforge_agent.config import AgentConfig
from codeforge_agent.errors import ParseError
from codeforge_agent.models import AgentMessage, MessageRole, ToolCall, ToolDefinition, new_id
from codeforge_agent.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    default_error_message,
    join_text,
)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


def format_messages(messages: list[AgentMessage], system_prompt: str) -> list[dict]:
    formatted: list[dict] = []
    if system_prompt:
        formatted.append({"role": "system", "content": system_prompt})

    for message in messages:
        if message.role == MessageRole.TOOL:
            formatted.append({
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            })
        elif message.role == MessageRole.ASSISTANT and message.tool_calls:
            formatted.append({
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.tool_name,
                            "arguments": json.dumps(call.args, ensure_ascii=False),
                        },
                    }
                    for call in message.tool_calls
                ],
            })
        else:
            formatted.append({"role": message.role.value, "content": message.content})

    return formatted


def format_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.schema(),
            },
        }
        for tool in tools
    ]


def _format_request(url: str, messages, tools, config: AgentConfig, system_prompt: str) -> ProviderRequest:
    body: dict = {
        "model": config.model,
        "messages": format_messages(messages, system_prompt),
        "temperature": config.temperature,
        "max_tokens": config.max_tokens,
    }
    if tools:
        body["tools"] = format_tools(tools)
        body["tool_choice"] = "auto"

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.api_key}",
        **config.headers,
    }
    return ProviderRequest(url=config.base_url or url, headers=headers, body=body)


def format_openai_request(messages, tools, config, system_prompt) -> ProviderRequest:
    return _format_request(OPENAI_URL, messages, tools, config, system_prompt)


def format_groq_request(messages, tools, config, system_prompt) -> ProviderRequest:
    return _format_request(GROQ_URL, messages, tools, config, system_prompt)


def decode_arguments(name: str, arguments: Any) -> dict:
    """
    Decode a JSON-string argument payload.

    Raises:
        ParseError: If the payload is not a JSON object
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        decoded = json.loads(arguments)
    except (TypeError, json.JSONDecodeError) as e:
        raise ParseError(f"Invalid JSON arguments for {name}: {e}", raw=str(arguments)) from e
    if not isinstance(decoded, dict):
        raise ParseError(f"Arguments for {name} must be a JSON object", raw=str(arguments))
    return decoded


def parse_response(raw: dict) -> ProviderResponse:
    """Normalize a chat-completions reply."""
    choices = raw.get("choices") or []
    message = (choices[0].get("message") if choices else None) or {}

    calls: list[ToolCall] = []
    for entry in message.get("tool_calls") or []:
        function = entry.get("function") or {}
        name = function.get("name", "")
        call = ToolCall(id=entry.get("id") or new_id("call"), tool_name=name)
        try:
            call.args = decode_arguments(name, function.get("arguments"))
        except ParseError as e:
            call.parse_error = str(e)
        calls.append(call)

    content = message.get("content")
    if isinstance(content, list):
        text = join_text([part.get("text", "") for part in content if isinstance(part, dict)])
    else:
        text = content or ""

    usage = raw.get("usage") or {}
    return ProviderResponse(
        text=text,
        tool_calls=calls,
        usage=TokenUsage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        ),
        raw=raw,
    )


OPENAI_ADAPTER = ProviderAdapter("openai", format_openai_request, parse_response, default_error_message)
GROQ_ADAPTER = ProviderAdapter("groq", format_groq_request, parse_response, default_error_message)
