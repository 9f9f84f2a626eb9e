"""
LLM Providers
=============

Adapters for the four supported backends (openai, google, groq, anthropic)
and the client that drives them.
"""

from codeforge_agent.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
)
from codeforge_agent.providers.client import (
    ADAPTERS,
    ProviderClient,
    format_request,
    get_adapter,
    parse_response,
    send,
)
