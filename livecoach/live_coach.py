"""
Coaching pipeline: transcript segments -> debounced LLM call -> CoachTip list.

- analyze_transcript() is called every time the segment store grows and
  restarts a quiet-period timer.
- When the timer fires, the last MAX_CONTEXT_SEGMENTS segments are rendered
  with speaker labels. The call is skipped if the text is too short or
  identical to the last text actually analyzed.
- One request in flight at a time. A trigger that fires meanwhile is kept
  and re-debounced once the request finishes.
- Failures are classified into the error taxonomy and exposed as the single
  current error. They are not retried; the next debounce cycle is the retry.
- After close(), late responses are dropped.

Runs on the session's event loop; not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from livecoach.coach import Gateway, default_model, requires_api_key, send_chat_request
from livecoach.config import Config
from livecoach.errors import ApiKeyMissing, LiveCoachError, classify_error
from livecoach.events import EventChannel
from livecoach.models import ChatRequest, CoachTip, Speaker, TranscriptSegment
from livecoach.prompt import build_coach_prompt
from livecoach.schema import parse_coach_tip
from livecoach.state import SessionContext

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_LENGTH = 20
MAX_CONTEXT_SEGMENTS = 20  # roughly the last 60s
TEMPERATURE = 0.7

SPEAKER_LABELS = {
    Speaker.RECRUITER: "Recruiter",
    Speaker.CANDIDATE: "Candidate",
    Speaker.UNKNOWN: "Unknown",
}


def render_transcript(segments: Sequence[TranscriptSegment]) -> str:
    return "\n".join(f"{SPEAKER_LABELS.get(s.speaker, 'Unknown')}: {s.text}" for s in segments)


def extract_last_question(segments: Sequence[TranscriptSegment]) -> Optional[str]:
    """Newest question-like utterance from the remote party."""
    for segment in reversed(segments):
        if segment.speaker == Speaker.RECRUITER and "?" in segment.text:
            return segment.text
    return None


@dataclass
class CoachState:
    tips: List[CoachTip] = field(default_factory=list)
    is_analyzing: bool = False
    last_analyzed_at: Optional[float] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_category: Optional[str] = None

    def to_dict(self):
        return {
            "tips": [t.to_dict() for t in self.tips],
            "is_analyzing": self.is_analyzing,
            "last_analyzed_at": self.last_analyzed_at,
            "error": self.error,
            "error_code": self.error_code,
            "error_category": self.error_category,
        }


class LiveCoach:
    def __init__(
        self,
        context: SessionContext,
        gateway: Gateway = send_chat_request,
        debounce_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.context = context
        self.gateway = gateway
        self.debounce_seconds = Config.COACH_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._clock = clock

        self.state = CoachState()
        self.tip_added: EventChannel[CoachTip] = EventChannel("coach.tip_added")
        self.error_changed: EventChannel[Optional[LiveCoachError]] = EventChannel("coach.error_changed")

        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._pending: Optional[Tuple[TranscriptSegment, ...]] = None
        self._last_transcript = ""
        self._closed = False

    @property
    def is_analyzing(self) -> bool:
        return self.state.is_analyzing

    @property
    def tips(self) -> List[CoachTip]:
        return list(self.state.tips)

    @property
    def in_flight(self) -> Optional[asyncio.Task]:
        return self._in_flight

    # -------------------- triggers --------------------

    def analyze_transcript(self, segments: Sequence[TranscriptSegment]) -> None:
        """Restart the debounce timer with the latest segments."""
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._fire, tuple(segments))

    def _fire(self, segments: Tuple[TranscriptSegment, ...]) -> None:
        self._debounce_handle = None
        if self._closed:
            return

        if self._in_flight is not None:
            logger.debug("Coaching request in flight; deferring trigger")
            self._pending = segments
            return

        recent = segments[-MAX_CONTEXT_SEGMENTS:]
        text = render_transcript(recent)

        if text == self._last_transcript:
            return
        if len(text) < MIN_TRANSCRIPT_LENGTH:
            return

        if requires_api_key(self.context.provider) and not self.context.api_key:
            self._set_error(ApiKeyMissing())
            return

        self._last_transcript = text
        self.state.is_analyzing = True
        self._set_error(None)
        self._in_flight = asyncio.get_running_loop().create_task(self._analyze(recent, text))

    async def _analyze(self, recent: Tuple[TranscriptSegment, ...], text: str) -> None:
        ctx = self.context
        try:
            system_prompt, user_message = build_coach_prompt(
                ctx.language, ctx.resume_summary, ctx.job, text, ctx.ai_mode,
            )
            request = ChatRequest(
                provider=ctx.provider,
                api_key=ctx.api_key,
                model=ctx.model or default_model(ctx.provider),
                system_prompt=system_prompt,
                user_message=user_message,
                temperature=TEMPERATURE,
            )
            raw = await self.gateway(request)
            tip = parse_coach_tip(raw, question_text=extract_last_question(recent), timestamp=self._clock())
        except Exception as e:
            if self._closed:
                logger.debug("Dropping coaching error after close: %r", e)
                return
            error = classify_error(e)
            logger.warning("Coaching failed (%s): %s", error.code, e)
            self._set_error(error)
        else:
            if self._closed:
                logger.debug("Dropping late coaching response")
                return
            self.state.tips.append(tip)
            self.state.last_analyzed_at = tip.timestamp
            logger.info("Tip: type=%s tips=%d", tip.type, len(tip.tips))
            self.tip_added.emit(tip)
        finally:
            self.state.is_analyzing = False
            self._in_flight = None
            pending, self._pending = self._pending, None
            if pending is not None and not self._closed:
                self.analyze_transcript(pending)

    # -------------------- state --------------------

    def _set_error(self, error: Optional[LiveCoachError]) -> None:
        if error is None and self.state.error is None:
            return
        self.state.error = error.user_message if error else None
        self.state.error_code = error.code if error else None
        self.state.error_category = error.category if error else None
        self.error_changed.emit(error)

    def clear_tips(self) -> None:
        self.state.tips = []
        self._set_error(None)
        self._last_transcript = ""

    def close(self) -> None:
        """Cancel the pending debounce. An in-flight request finishes but is ignored."""
        self._closed = True
        self._pending = None
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
