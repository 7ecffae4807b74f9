from __future__ import annotations

from typing import Optional

import httpx

from livecoach.config import Config
from livecoach.errors import error_from_response
from livecoach.models import ChatRequest

DEFAULT_LOCAL_MODEL = "gemma3:4b"


async def generate(request: ChatRequest, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """Local model through Ollama's chat API. No API key."""
    base_url = Config.OLLAMA_URL.rstrip("/")
    payload = {
        "model": request.model or DEFAULT_LOCAL_MODEL,
        "messages": [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": request.user_message},
        ],
        "stream": False,
        "options": {"temperature": request.temperature},
    }

    async with httpx.AsyncClient(timeout=90, transport=transport) as client:
        r = await client.post(f"{base_url}/api/chat", json=payload)
        if r.status_code >= 400:
            raise error_from_response(r, service="Ollama")
        data = r.json()

    return (data.get("message") or {}).get("content", "") or ""
