"""Transcriber abstraction for audio-to-text conversion."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from livecoach.events import EventChannel
from livecoach.media import MediaStream
from livecoach.models import EngineStatus, TranscriptionEvent

logger = logging.getLogger(__name__)


class Transcriber(ABC):
    """Abstract interface for transcription engines.

    Engines borrow the mixed stream (they never stop its tracks) and report
    everything through ``events``. They never tag speakers or write
    segments; the session decides what becomes a segment.
    """

    name = "transcriber"

    def __init__(self):
        self.events: EventChannel[TranscriptionEvent] = EventChannel(f"{self.name}.events")
        self.status = EngineStatus.IDLE

    @abstractmethod
    async def start(
        self,
        stream: MediaStream,
        api_key: Optional[str] = None,
        mode: str = "presential",
        language: str = "en",
    ) -> None:
        """Start transcribing ``stream``.

        Raises:
            ApiKeyMissing / EngineNotSupported before any I/O when the engine
            cannot run with the given configuration.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Stop all underlying work. Safe to call more than once."""

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    # -------------------- event helpers --------------------

    def _set_status(self, status: EngineStatus) -> None:
        if status == self.status:
            return
        logger.debug("%s status %s -> %s", self.name, self.status.value, status.value)
        self.status = status
        self.events.emit(TranscriptionEvent.status_change(status))

    def _emit_partial(self, text: str) -> None:
        self.events.emit(TranscriptionEvent.partial(text))

    def _emit_delta(self, text: str) -> None:
        self.events.emit(TranscriptionEvent.delta(text))

    def _emit_final(self, text: str) -> None:
        text = (text or "").strip()
        if text:
            self.events.emit(TranscriptionEvent.final(text))

    def _emit_error(self, message: str, fatal: bool = False) -> None:
        log = logger.error if fatal else logger.warning
        log("%s error: %s", self.name, message)
        self.events.emit(TranscriptionEvent.error(message, fatal=fatal))
