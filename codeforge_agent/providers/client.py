"""
Provider Client
===============

Sends formatted requests to an LLM backend over httpx and normalizes the
reply with the adapter selected by provider id.

Transport and HTTP failures surface as ProviderError; nothing from httpx
escapes this module.
"""

import logging
from typing import Optional

import httpx

from codeforge_agent.config import AgentConfig
from codeforge_agent.errors import ProviderError
from codeforge_agent.models import AgentMessage, ToolDefinition
from codeforge_agent.providers.anthropic import ANTHROPIC_ADAPTER
from codeforge_agent.providers.base import ProviderAdapter, ProviderRequest, ProviderResponse, TokenUsage
from codeforge_agent.providers.google import GOOGLE_ADAPTER
from codeforge_agent.providers.openai import GROQ_ADAPTER, OPENAI_ADAPTER

logger = logging.getLogger(__name__)


ADAPTERS: dict[str, ProviderAdapter] = {
    "openai": OPENAI_ADAPTER,
    "google": GOOGLE_ADAPTER,
    "groq": GROQ_ADAPTER,
    "anthropic": ANTHROPIC_ADAPTER,
}


def get_adapter(provider_id: str) -> ProviderAdapter:
    try:
        return ADAPTERS[provider_id]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider_id}") from None


def format_request(
    messages: list[AgentMessage],
    tools: list[ToolDefinition],
    config: AgentConfig,
    system_prompt: str = "",
) -> ProviderRequest:
    return get_adapter(config.provider).format_request(messages, tools, config, system_prompt)


def parse_response(provider_id: str, raw: dict) -> ProviderResponse:
    return get_adapter(provider_id).parse_response(raw)


class ProviderClient:
    """
    One configured connection to an LLM backend.

    Accumulates token usage across calls so callers can report per-turn
    or per-cycle consumption.
    """

    def __init__(
        self,
        config: AgentConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.adapter = get_adapter(config.provider)
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

        self.usage = TokenUsage()
        self.stats = {
            "requests": 0,
            "errors": 0,
        }

    @property
    def provider_id(self) -> str:
        return self.config.provider

    def is_configured(self) -> bool:
        return self.config.is_configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(
        self,
        messages: list[AgentMessage],
        tools: list[ToolDefinition],
        system_prompt: str = "",
    ) -> ProviderResponse:
        """
        Call the provider and normalize its reply.

        Args:
            messages: Transcript in order
            tools: Tools the model may call
            system_prompt: System instructions

        Returns:
            Normalized response

        Raises:
            ProviderError: On transport failure, HTTP error status or an
                undecodable body
        """
        request = self.adapter.format_request(messages, tools, self.config, system_prompt)
        self.stats["requests"] += 1
        logger.debug(
            "%s request: %d messages, %d tools", self.provider_id, len(messages), len(tools)
        )

        try:
            response = await self._get_client().post(
                request.url, headers=request.headers, json=request.body
            )
        except httpx.HTTPError as e:
            self.stats["errors"] += 1
            raise ProviderError(self.provider_id, str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            self.stats["errors"] += 1
            try:
                body = response.json()
            except ValueError:
                body = response.text or response.reason_phrase
            raise ProviderError(
                self.provider_id,
                self.adapter.extract_error(body),
                status=response.status_code,
            )

        try:
            raw = response.json()
        except ValueError as e:
            self.stats["errors"] += 1
            raise ProviderError(
                self.provider_id, "Invalid JSON in response", status=response.status_code
            ) from e

        if not isinstance(raw, dict):
            self.stats["errors"] += 1
            raise ProviderError(
                self.provider_id, "Unexpected response shape", status=response.status_code
            )

        parsed = self.adapter.parse_response(raw)
        self.usage.add(parsed.usage)
        return parsed

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def get_stats(self) -> dict:
        return {
            **self.stats,
            "provider": self.provider_id,
            "model": self.config.model,
            "usage": self.usage.to_dict(),
        }


async def send(
    messages: list[AgentMessage],
    tools: list[ToolDefinition],
    config: AgentConfig,
    system_prompt: str = "",
) -> ProviderResponse:
    """One-shot provider call with a throwaway HTTP client."""
    client = ProviderClient(config)
    try:
        return await client.send(messages, tools, system_prompt)
    finally:
        await client.aclose()
