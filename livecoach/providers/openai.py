from __future__ import annotations

from typing import Optional

import httpx

from livecoach.config import Config
from livecoach.errors import LLMGatewayError, error_from_response
from livecoach.models import ChatRequest

DEFAULT_OPENAI_MODEL = "gpt-4o"


async def generate(request: ChatRequest, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """OpenAI (and Azure-compatible) chat completions."""
    base_url = Config.OPENAI_BASE_URL.rstrip("/")
    url = f"{base_url}/v1/chat/completions"

    payload = {
        "model": request.model or DEFAULT_OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": request.user_message},
        ],
        "temperature": request.temperature,
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {request.api_key}",
    }

    async with httpx.AsyncClient(timeout=90, transport=transport) as client:
        r = await client.post(url, json=payload, headers=headers)
        if r.status_code >= 400:
            raise error_from_response(r, service="OpenAI")
        data = r.json()

    choices = data.get("choices") or []
    if not choices:
        raise LLMGatewayError("OpenAI returned no choices.")
    return (choices[0].get("message") or {}).get("content") or ""
