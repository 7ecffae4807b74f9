from __future__ import annotations

from typing import Optional

import httpx

from livecoach.config import Config
from livecoach.errors import error_from_response
from livecoach.models import ChatRequest

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-latest"
ANTHROPIC_VERSION = "2023-06-01"


async def generate(request: ChatRequest, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    base_url = Config.ANTHROPIC_BASE_URL.rstrip("/")
    url = f"{base_url}/v1/messages"

    body = {
        "model": request.model or DEFAULT_ANTHROPIC_MODEL,
        "max_tokens": request.max_tokens,
        "system": request.system_prompt or "",
        "messages": [{"role": "user", "content": request.user_message}],
        "temperature": request.temperature,
    }
    headers = {
        "Content-Type": "application/json",
        "x-api-key": request.api_key or "",
        "anthropic-version": ANTHROPIC_VERSION,
    }

    async with httpx.AsyncClient(timeout=90, transport=transport) as client:
        r = await client.post(url, json=body, headers=headers)
        if r.status_code >= 400:
            raise error_from_response(r, service="Anthropic")
        data = r.json()

    # content is a list of blocks; keep the text ones
    blocks = data.get("content") or []
    return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")
