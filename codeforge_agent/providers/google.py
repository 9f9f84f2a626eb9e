"""
Gemini Provider
===============

generateContent wire format for Google Gemini models.

Replies interleave {text} and {functionCall} parts in
candidates[0].content.parts. Arguments arrive already decoded, and no call
ids are supplied, so ids are synthesized here.
"""

from urllib.parse import quote

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

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"


def format_contents(messages: list[AgentMessage]) -> list[dict]:
    contents: list[dict] = []
    for message in messages:
        # System text travels in systemInstruction
        if message.role == MessageRole.SYSTEM:
            continue

        if message.role == MessageRole.TOOL and message.tool_calls:
            contents.append({
                "role": "function",
                "parts": [{
                    "functionResponse": {
                        "name": message.tool_calls[0].tool_name,
                        "response": {"result": message.content},
                    },
                }],
            })
        elif message.role == MessageRole.ASSISTANT and message.tool_calls:
            parts: list[dict] = []
            if message.content:
                parts.append({"text": message.content})
            parts.extend(
                {"functionCall": {"name": call.tool_name, "args": call.args}}
                for call in message.tool_calls
            )
            contents.append({"role": "model", "parts": parts})
        else:
            contents.append({
                "role": "model" if message.role == MessageRole.ASSISTANT else "user",
                "parts": [{"text": message.content}],
            })
    return contents


def format_tools(tools: list[ToolDefinition]) -> list[dict]:
    declarations = []
    for tool in tools:
        declaration = {"name": tool.name, "description": tool.description}
        schema = tool.schema()
        # Gemini rejects an empty properties object
        if schema.get("properties"):
            declaration["parameters"] = schema
        declarations.append(declaration)
    return [{"functionDeclarations": declarations}]


def format_request(messages, tools, config: AgentConfig, system_prompt: str) -> ProviderRequest:
    body: dict = {
        "contents": format_contents(messages),
        "generationConfig": {
            "temperature": config.temperature,
            "maxOutputTokens": config.max_tokens,
        },
    }
    if system_prompt:
        body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
    if tools:
        body["tools"] = format_tools(tools)

    base = config.base_url or GEMINI_API_URL
    url = f"{base}/models/{config.model}:generateContent?key={quote(config.api_key, safe='')}"
    return ProviderRequest(
        url=url,
        headers={"Content-Type": "application/json", **config.headers},
        body=body,
    )


def parse_response(raw: dict) -> ProviderResponse:
    """Normalize a generateContent reply."""
    candidates = raw.get("candidates") or []
    content = (candidates[0].get("content") if candidates else None) or {}

    fragments: list[str] = []
    calls: list[ToolCall] = []
    for index, part in enumerate(content.get("parts") or []):
        if "text" in part:
            fragments.append(part.get("text") or "")
        function_call = part.get("functionCall")
        if function_call:
            args = function_call.get("args")
            call = ToolCall(
                id=new_id(f"gemini_{index}"),
                tool_name=function_call.get("name", ""),
                args=args if isinstance(args, dict) else {},
            )
            if args is not None and not isinstance(args, dict):
                call.parse_error = f"Arguments for {call.tool_name} must be an object"
            calls.append(call)

    usage = raw.get("usageMetadata") or {}
    return ProviderResponse(
        text=join_text(fragments),
        tool_calls=calls,
        usage=TokenUsage(
            prompt_tokens=int(usage.get("promptTokenCount") or 0),
            completion_tokens=int(usage.get("candidatesTokenCount") or 0),
        ),
        raw=raw,
    )


GOOGLE_ADAPTER = ProviderAdapter("google", format_request, parse_response, default_error_message)
