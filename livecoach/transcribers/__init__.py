"""Transcription engines and the factory that picks one by name."""

from __future__ import annotations

from typing import Callable, Dict

from livecoach.errors import EngineNotSupported
from livecoach.transcribers.base_transcriber import Transcriber
from livecoach.transcribers.local_transcriber import LocalTranscriber
from livecoach.transcribers.realtime_transcriber import RealtimeTranscriber
from livecoach.transcribers.whisper_transcriber import WhisperTranscriber

# Registry of available engines
TRANSCRIBERS: Dict[str, Callable[[], Transcriber]] = {
    "browser": LocalTranscriber,
    "whisper": WhisperTranscriber,
    "realtime": RealtimeTranscriber,
}


def create_transcriber(engine: str) -> Transcriber:
    """Create a transcription engine by name (browser, whisper, realtime)."""
    factory = TRANSCRIBERS.get((engine or "").strip().lower())
    if factory is None:
        raise EngineNotSupported(
            f"Unknown transcription engine '{engine}'. Valid: {', '.join(TRANSCRIBERS.keys())}"
        )
    return factory()


__all__ = [
    "Transcriber",
    "LocalTranscriber",
    "WhisperTranscriber",
    "RealtimeTranscriber",
    "TRANSCRIBERS",
    "create_transcriber",
]
