"""Error taxonomy for capture, transcription and coaching.

Every error carries a ``category`` so callers can tell a configuration
problem (bad or missing key, unavailable model) from a transient one
(network, rate limit) or an unexpected one (malformed model output).
"""

from __future__ import annotations

import re
from typing import Optional

import aiohttp
import httpx


CONFIGURATION = "configuration"
TRANSIENT = "transient"
UNEXPECTED = "unexpected"


class LiveCoachError(Exception):
    """Base class for all errors surfaced to the user."""

    code = "error"
    category = UNEXPECTED
    fatal = False
    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def user_message(self) -> str:
        """Dismissible, human-readable text for a banner."""
        if self.category == CONFIGURATION:
            return f"Configuration problem: {self.message}"
        if self.category == TRANSIENT:
            return f"Temporary problem: {self.message}"
        return f"Unexpected error: {self.message}"


# -------------------- Capture --------------------

class CaptureError(LiveCoachError):
    code = "capture_error"


class MediaPermissionDenied(CaptureError):
    code = "media_permission_denied"
    category = CONFIGURATION
    fatal = True
    default_message = "Microphone permission denied."


class MediaNotSupported(CaptureError):
    code = "media_not_supported"
    category = CONFIGURATION
    fatal = True
    default_message = "No usable microphone was found."


class SystemAudioUnavailable(CaptureError):
    code = "system_audio_unavailable"
    category = TRANSIENT
    default_message = "System audio is not available. Using microphone only."


# -------------------- Transcription / configuration --------------------

class EngineNotSupported(LiveCoachError):
    code = "engine_not_supported"
    category = CONFIGURATION
    default_message = "This transcription engine is not available here."


class ApiKeyMissing(LiveCoachError):
    code = "api_key_missing"
    category = CONFIGURATION
    default_message = "An API key is required. Add one in your settings."


# -------------------- Coaching / LLM gateway --------------------

class NetworkError(LiveCoachError):
    code = "network_error"
    category = TRANSIENT
    default_message = "Connection error. Check your internet connection."


class AuthError(LiveCoachError):
    code = "auth_error"
    category = CONFIGURATION
    default_message = "API key is invalid or expired. Check your key in settings."


class RateLimitError(LiveCoachError):
    code = "rate_limit_error"
    category = TRANSIENT
    default_message = "Request limit reached. Wait a few seconds or check your API plan."


class QuotaError(LiveCoachError):
    code = "quota_error"
    category = CONFIGURATION
    default_message = "Insufficient credits. Set up billing on your API account."


class ModelUnavailable(LiveCoachError):
    code = "model_unavailable"
    category = CONFIGURATION
    default_message = "Model not available. Try another model or provider."


class ResponseParseError(LiveCoachError):
    code = "response_parse_error"
    category = UNEXPECTED
    default_message = "The coach returned a response that could not be read."


class LLMGatewayError(LiveCoachError):
    """Upstream provider failure; ``message`` is the provider's error text."""

    code = "llm_gateway_error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


def error_from_response(response: httpx.Response, service: str = "Provider") -> LLMGatewayError:
    """Build an LLMGatewayError carrying the upstream error text of a failed response."""
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            message = err.get("message")
        elif isinstance(err, str):
            message = err

    if not message:
        message = (response.text or "").strip()[:500] or f"{service} error: {response.status_code}"
    return LLMGatewayError(message, status_code=response.status_code)


# Checked in order; the first pattern hit wins. Word boundaries keep "rate"
# from matching inside words like "generate".
_KEYWORD_RULES = [
    (re.compile(r"insufficient|billing"), QuotaError),
    (re.compile(r"quota|\brate\b|rate.?limit|\blimit\b|429"), RateLimitError),
    (re.compile(r"auth|\bkey\b|api.?key|invalid|401|403"), AuthError),
    (re.compile(r"model|not found|not supported"), ModelUnavailable),
    (re.compile(r"network|fetch|connection|timeout|timed out"), NetworkError),
]


def classify_error(exc: BaseException) -> LiveCoachError:
    """Map any exception raised while coaching into the taxonomy.

    Upstream providers report failures as free text, so this matches
    keywords in the message. It is a heuristic tied to provider wording.
    """
    if isinstance(exc, LiveCoachError) and not isinstance(exc, LLMGatewayError):
        return exc

    if isinstance(exc, (httpx.TransportError, aiohttp.ClientConnectionError, ConnectionError)):
        return NetworkError(f"{NetworkError.default_message} ({exc})")

    text = str(exc)
    lowered = text.lower()
    for pattern, error_cls in _KEYWORD_RULES:
        if pattern.search(lowered):
            return error_cls(f"{error_cls.default_message} ({text})" if text else None)

    return LiveCoachError(text or type(exc).__name__)
