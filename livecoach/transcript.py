"""Append-only transcript segment store plus the in-progress partial."""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Tuple

from livecoach.models import Speaker, TranscriptSegment

# Minimum spacing forced between consecutive timestamps (seconds)
TIMESTAMP_STEP = 0.001


class TranscriptStore:
    """Owned and mutated by the session orchestrator only."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._segments: List[TranscriptSegment] = []
        self._next_id = 1
        self.current_partial = ""

    def append(self, text: str, speaker: Speaker = Speaker.UNKNOWN, timestamp: Optional[float] = None) -> Optional[TranscriptSegment]:
        """Finalize one utterance. Empty text is ignored. Clears the partial."""
        text = (text or "").strip()
        self.current_partial = ""
        if not text:
            return None

        ts = self._clock() if timestamp is None else float(timestamp)
        if self._segments and ts <= self._segments[-1].timestamp:
            ts = self._segments[-1].timestamp + TIMESTAMP_STEP

        segment = TranscriptSegment(id=self._next_id, text=text, speaker=speaker, timestamp=ts)
        self._segments.append(segment)
        self._next_id += 1
        return segment

    def set_partial(self, text: str) -> str:
        self.current_partial = text or ""
        return self.current_partial

    def append_delta(self, text: str) -> str:
        self.current_partial += text or ""
        return self.current_partial

    @property
    def segments(self) -> Tuple[TranscriptSegment, ...]:
        return tuple(self._segments)

    def recent(self, n: int) -> Tuple[TranscriptSegment, ...]:
        return tuple(self._segments[-n:]) if n > 0 else ()

    def clear(self) -> None:
        # ids keep counting so they stay unique for the whole session
        self._segments.clear()
        self.current_partial = ""

    def __len__(self) -> int:
        return len(self._segments)
