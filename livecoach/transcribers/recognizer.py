"""
On-device speech recognition capability.

SpeechRecognizer mirrors a continuous recognition service: it is configured
with a language tag and a continuous flag, started on a stream, and reports
``started``, ``results`` (interim/final text), ``errors`` (string codes) and
``ended``. Like the services it models, a run ends on its own from time to
time; the owner decides whether to start it again.

WhisperRecognizer is the default implementation using faster-whisper:
- Energy gate on the incoming frames decides when an utterance is in progress.
- INTERIM: beam_size=1 decode of the utterance so far, at most once per interval.
- FINAL: beam_size=5 decode once the speaker has been quiet for ``silence_seconds``.
- A run ends after ``max_session_seconds``, or with ``no-speech`` when nothing
  was heard for ``no_speech_timeout``.
- Decoding runs on the recognizer's worker thread; events fire on that thread.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from livecoach.audio_codec import resample_to, rms
from livecoach.config import Config
from livecoach.errors import EngineNotSupported
from livecoach.events import EventChannel
from livecoach.media import MediaStream, MediaTrack

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000

ERROR_MESSAGES = {
    "no-speech": "No speech detected",
    "audio-capture": "Microphone not available",
    "not-allowed": "Microphone permission denied",
    "network": "Network error",
    "aborted": "Recognition aborted",
    "language-not-supported": "Language not supported",
    "service-not-allowed": "Speech service not allowed",
}


def error_message(code: str) -> str:
    return ERROR_MESSAGES.get(code, f"Speech recognition error: {code}")


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


class SpeechRecognizer(ABC):
    """A continuous recognition service."""

    def __init__(self):
        self.lang = "en-US"
        self.continuous = True
        self.interim_results = True
        self.started: EventChannel[None] = EventChannel("recognizer.started")
        self.results: EventChannel[RecognitionResult] = EventChannel("recognizer.results")
        self.errors: EventChannel[str] = EventChannel("recognizer.errors")
        self.ended: EventChannel[None] = EventChannel("recognizer.ended")

    def prepare(self) -> None:
        """Load whatever the recognizer needs. May block; raises EngineNotSupported."""

    @abstractmethod
    def start(self, stream: MediaStream) -> None:
        """Begin one recognition run. Raises RuntimeError if a run is in progress."""

    @abstractmethod
    def stop(self) -> None:
        """End the current run, delivering any pending final result."""

    def abort(self) -> None:
        self.stop()


# Loaded WhisperModels, shared by every recognizer with the same settings
_MODELS: Dict[Tuple[str, str, str], Any] = {}
_MODELS_LOCK = threading.Lock()


def load_whisper_model(model_size: str, device: str, compute_type: str):
    key = (model_size, device, compute_type)
    with _MODELS_LOCK:
        model = _MODELS.get(key)
        if model is not None:
            return model
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise EngineNotSupported(
                "On-device transcription needs faster-whisper. Install with: pip install 'livecoach[local]'"
            ) from e
        logger.info("Loading Whisper model %s (%s, %s)", model_size, device, compute_type)
        model = WhisperModel(model_size, device=device, compute_type=compute_type)
        _MODELS[key] = model
        return model


class WhisperRecognizer(SpeechRecognizer):
    def __init__(
        self,
        model: Any = None,
        model_size: Optional[str] = None,
        device: Optional[str] = None,
        compute_type: Optional[str] = None,
        sample_rate: Optional[int] = None,
        energy_threshold: float = 0.01,
        silence_seconds: float = 0.8,
        interim_interval: float = 1.0,
        max_utterance_seconds: float = 30.0,
        max_session_seconds: float = 60.0,
        no_speech_timeout: float = 8.0,
    ):
        super().__init__()
        self._model = model
        self.model_size = model_size or Config.LOCAL_WHISPER_MODEL
        self.device = device or Config.LOCAL_WHISPER_DEVICE
        self.compute_type = compute_type or Config.LOCAL_WHISPER_COMPUTE_TYPE
        self.sample_rate = sample_rate or Config.SAMPLE_RATE
        self.energy_threshold = energy_threshold
        self.silence_seconds = silence_seconds
        self.interim_interval = interim_interval
        self.max_utterance_seconds = max_utterance_seconds
        self.max_session_seconds = max_session_seconds
        self.no_speech_timeout = no_speech_timeout

        self._frames: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=1000)
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._track: Optional[MediaTrack] = None

    def prepare(self) -> None:
        if self._model is None:
            self._model = load_whisper_model(self.model_size, self.device, self.compute_type)

    def start(self, stream: MediaStream) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("recognition already started")
        tracks = stream.get_audio_tracks()
        if not tracks:
            raise RuntimeError("stream has no audio track")

        self.prepare()
        self._stop_evt.clear()
        self._frames = queue.Queue(maxsize=1000)
        self._track = tracks[0]
        self._track.add_sink(self._on_frame)
        self._thread = threading.Thread(target=self._run, name="whisper-recognizer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_evt.set()

    def _on_frame(self, frame: np.ndarray) -> None:
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            # keep audio current: drop the oldest frame
            try:
                self._frames.get_nowait()
            except queue.Empty:
                pass
            self._frames.put_nowait(frame)

    def _language(self) -> str:
        return (self.lang or "en").split("-")[0]

    def _decode(self, frames: List[np.ndarray], is_final: bool) -> str:
        audio = resample_to(np.concatenate(frames), self.sample_rate, WHISPER_SAMPLE_RATE)
        segments, _ = self._model.transcribe(
            audio,
            language=self._language(),
            beam_size=5 if is_final else 1,
            vad_filter=True,
            vad_parameters=dict(min_silence_duration_ms=300, speech_pad_ms=100),
            condition_on_previous_text=is_final,
        )
        return " ".join((s.text or "").strip() for s in segments).strip()

    def _finalize(self, frames: List[np.ndarray]) -> None:
        text = self._decode(frames, is_final=True)
        if text:
            self.results.emit(RecognitionResult(text, True))

    def _run(self) -> None:
        self.started.emit(None)
        started_at = time.monotonic()
        utterance: List[np.ndarray] = []
        utterance_samples = 0
        last_voice: Optional[float] = None
        last_interim = 0.0
        heard_speech = False

        try:
            while not self._stop_evt.is_set():
                try:
                    frame = self._frames.get(timeout=0.1)
                except queue.Empty:
                    frame = None
                now = time.monotonic()

                if frame is not None:
                    voiced = rms(frame) >= self.energy_threshold
                    if voiced:
                        last_voice = now
                        heard_speech = True
                    if voiced or utterance:
                        utterance.append(frame)
                        utterance_samples += frame.size

                too_long = utterance_samples >= self.max_utterance_seconds * self.sample_rate
                if utterance and (too_long or (last_voice is not None and now - last_voice >= self.silence_seconds)):
                    self._finalize(utterance)
                    utterance, utterance_samples, last_voice = [], 0, None
                    if not self.continuous:
                        break
                elif utterance and self.interim_results and now - last_interim >= self.interim_interval:
                    last_interim = now
                    text = self._decode(utterance, is_final=False)
                    if text:
                        self.results.emit(RecognitionResult(text, False))

                if not heard_speech and now - started_at >= self.no_speech_timeout:
                    self.errors.emit("no-speech")
                    break
                if now - started_at >= self.max_session_seconds:
                    break

            if utterance:
                self._finalize(utterance)
        except Exception as e:
            logger.exception("Whisper recognizer failed: %s", e)
            self.errors.emit("audio-capture")
        finally:
            if self._track is not None:
                self._track.remove_sink(self._on_frame)
                self._track = None
            self.ended.emit(None)
