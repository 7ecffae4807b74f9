"""LLM gateway: one entry point that dispatches a ChatRequest to a provider adapter."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

import httpx

from livecoach.errors import ApiKeyMissing, ModelUnavailable
from livecoach.models import ChatRequest
from livecoach.providers import anthropic as anthropic_provider
from livecoach.providers import gemini as gemini_provider
from livecoach.providers import ollama as ollama_provider
from livecoach.providers import openai as openai_provider

logger = logging.getLogger(__name__)

ProviderFn = Callable[..., Awaitable[str]]
Gateway = Callable[[ChatRequest], Awaitable[str]]

# Provider registry
PROVIDERS: Dict[str, ProviderFn] = {
    "openai": openai_provider.generate,
    "azure": openai_provider.generate,
    "anthropic": anthropic_provider.generate,
    "gemini": gemini_provider.generate,
    "ollama": ollama_provider.generate,
}

# Providers that run without an API key
KEYLESS_PROVIDERS = frozenset({"ollama"})

DEFAULT_MODELS = {
    "gemini": gemini_provider.DEFAULT_GEMINI_MODEL,
    "anthropic": anthropic_provider.DEFAULT_ANTHROPIC_MODEL,
    "ollama": ollama_provider.DEFAULT_LOCAL_MODEL,
}


def default_model(provider: str) -> str:
    return DEFAULT_MODELS.get((provider or "").lower(), openai_provider.DEFAULT_OPENAI_MODEL)


def requires_api_key(provider: str) -> bool:
    return (provider or "").lower() not in KEYLESS_PROVIDERS


async def send_chat_request(
    request: ChatRequest,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Send one chat request and return the raw model text.

    Raises:
        ApiKeyMissing before any I/O when the provider needs a key and none is set.
        LLMGatewayError with the provider's error text on an HTTP failure.
    """
    provider_name = (request.provider or "").strip().lower()
    provider = PROVIDERS.get(provider_name)
    if provider is None:
        raise ModelUnavailable(
            f"Provider '{request.provider}' is not supported. Valid: {', '.join(PROVIDERS.keys())}"
        )
    if requires_api_key(provider_name) and not request.api_key:
        raise ApiKeyMissing()

    logger.debug("LLM request provider=%s model=%s chars=%d", provider_name, request.model, len(request.user_message))
    return await provider(request, transport=transport)
