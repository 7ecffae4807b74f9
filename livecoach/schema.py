from __future__ import annotations

import json
import re
import time
from typing import Any, Dict, Optional

from livecoach.errors import ResponseParseError
from livecoach.models import CoachTip

MAX_TIPS = 3

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """
    Return the first balanced {...} object in an LLM response.
    Markdown fences and surrounding prose are ignored. Anything else fails
    with ResponseParseError; partial structure is never guessed.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from the model.")
    s = strip_code_fences(text)

    start = s.find("{")
    while start != -1:
        end = _matching_brace(s, start)
        if end == -1:
            break
        try:
            obj = json.loads(s[start:end + 1])
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = s.find("{", start + 1)

    raise ResponseParseError(f"No JSON object found in model response: {s[:200]!r}")


def _matching_brace(s: str, start: int) -> int:
    """Index of the brace closing s[start], honouring JSON strings. -1 if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def parse_coach_tip(text: str, question_text: Optional[str] = None, timestamp: Optional[float] = None) -> CoachTip:
    """
    Validate a model response into a CoachTip.
    Requires a ``tips`` array; keeps at most MAX_TIPS in order.
    """
    obj = extract_json_object(text)

    tips = obj.get("tips")
    if not isinstance(tips, list):
        raise ResponseParseError("Model response has no 'tips' array.")
    tips = [str(t).strip() for t in tips if t is not None and str(t).strip()][:MAX_TIPS]

    keywords = obj.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [keywords]
    if not isinstance(keywords, list):
        keywords = []
    keywords = [str(k).strip() for k in keywords if k is not None and str(k).strip()]

    method = obj.get("method")
    method = str(method).strip() if method not in (None, "") else None
    if method is not None and method.lower() == "null":
        method = None

    return CoachTip(
        type=str(obj.get("type") or "general").strip(),
        tips=tips,
        keywords=keywords,
        method=method,
        timestamp=time.time() if timestamp is None else timestamp,
        question_text=question_text,
    )
