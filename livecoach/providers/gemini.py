from __future__ import annotations

from typing import Optional

import httpx

from livecoach.config import Config
from livecoach.errors import LLMGatewayError, error_from_response
from livecoach.models import ChatRequest

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


async def generate(request: ChatRequest, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """
    Uses the Gemini Developer API generateContent endpoint.
    """
    base_url = Config.GEMINI_BASE_URL.rstrip("/")
    model = request.model or DEFAULT_GEMINI_MODEL

    # Gemini REST: POST /v1beta/models/{model}:generateContent
    url = f"{base_url}/v1beta/models/{model}:generateContent"

    body = {
        "contents": [
            {"role": "user", "parts": [{"text": request.user_message}]}
        ],
        "generationConfig": {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        },
    }
    if request.system_prompt:
        body["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

    headers = {
        "Content-Type": "application/json",
        "x-goog-api-key": request.api_key or "",
    }

    async with httpx.AsyncClient(timeout=90, transport=transport) as client:
        r = await client.post(url, json=body, headers=headers)
        if r.status_code >= 400:
            raise error_from_response(r, service="Gemini")
        data = r.json()

    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        raise LLMGatewayError(f"Gemini returned no candidates ({feedback.get('blockReason') or 'empty response'}).")

    parts = ((candidates[0].get("content") or {}).get("parts") or [])
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))
