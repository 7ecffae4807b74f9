"""
Volume-based speaker attribution.

- Consumes (mic_volume, system_volume) pairs on the sampling cadence.
- Smooths both channels over a short rolling window.
- A new classification must be dominant for HYSTERESIS consecutive samples
  before it replaces the current one, so cross-talk and noise spikes do not flap.

Limitations:
- No content or biometric signal. In call mode, bleed between the local mic
  and the system audio can misattribute an utterance.
- Silence (or an undecided overlap) keeps the current classification.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Tuple

from livecoach.models import Speaker

logger = logging.getLogger(__name__)

ACTIVITY_THRESHOLD = 0.02
WINDOW_SIZE = 5
HYSTERESIS = 3
DOMINANCE_RATIO = 1.5


class SpeakerTracker:
    """Classifies the active speaker. In call mode the mic is the candidate (the user)."""

    def __init__(
        self,
        mode: str = "presential",
        threshold: float = ACTIVITY_THRESHOLD,
        window: int = WINDOW_SIZE,
        hysteresis: int = HYSTERESIS,
        ratio: float = DOMINANCE_RATIO,
    ):
        self.mode = mode
        self.threshold = threshold
        self.hysteresis = hysteresis
        self.ratio = ratio
        self._window: Deque[Tuple[float, float]] = deque(maxlen=window)
        self._pending: Optional[Speaker] = None
        self._pending_count = 0
        self.current = Speaker.UNKNOWN

    def reset(self) -> None:
        self._window.clear()
        self._pending = None
        self._pending_count = 0
        self.current = Speaker.UNKNOWN

    def set_mode(self, mode: str) -> None:
        self.mode = mode
        self.reset()

    def smoothed(self) -> Tuple[float, float]:
        if not self._window:
            return 0.0, 0.0
        n = len(self._window)
        return (
            sum(m for m, _ in self._window) / n,
            sum(s for _, s in self._window) / n,
        )

    def _dominant(self, mic: float, system: float) -> Optional[Speaker]:
        mic_active = mic >= self.threshold
        if self.mode != "call":
            return Speaker.CANDIDATE if mic_active else None

        system_active = system >= self.threshold
        if mic_active and mic >= system * self.ratio:
            return Speaker.CANDIDATE
        if system_active and system >= mic * self.ratio:
            return Speaker.RECRUITER
        return None

    def push(self, mic_volume: float, system_volume: float) -> Speaker:
        self._window.append((float(mic_volume), float(system_volume)))
        dominant = self._dominant(*self.smoothed())

        if dominant is None or dominant == self.current:
            self._pending = None
            self._pending_count = 0
            return self.current

        if dominant == self._pending:
            self._pending_count += 1
        else:
            self._pending = dominant
            self._pending_count = 1

        if self._pending_count >= self.hysteresis:
            logger.debug("Speaker %s -> %s", self.current.value, dominant.value)
            self.current = dominant
            self._pending = None
            self._pending_count = 0

        return self.current
