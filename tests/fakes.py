"""Test doubles for media devices, recognizers, engines and the LLM gateway."""

import asyncio
import json
import time
from typing import List, Optional

import numpy as np

from livecoach.media import MediaDevices, MediaStream, MediaTrack
from livecoach.models import EngineStatus
from livecoach.transcribers.base_transcriber import Transcriber
from livecoach.transcribers.recognizer import RecognitionResult, SpeechRecognizer


def tone(value: float, n: int = 960) -> np.ndarray:
    return np.full(n, value, dtype=np.float32)


async def wait_for(predicate, timeout: float = 2.0, step: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()


class FakeMedia(MediaDevices):
    def __init__(
        self,
        display: bool = True,
        display_audio: bool = True,
        mic_error: Optional[Exception] = None,
        display_error: Optional[Exception] = None,
    ):
        self.display = display
        self.display_audio = display_audio
        self.mic_error = mic_error
        self.display_error = display_error
        self.mic_track: Optional[MediaTrack] = None
        self.system_track: Optional[MediaTrack] = None
        self.video_track: Optional[MediaTrack] = None
        self.mic_constraints = None

    @property
    def supports_display_media(self) -> bool:
        return self.display

    def get_user_media(self, audio=None) -> MediaStream:
        self.mic_constraints = audio
        if self.mic_error is not None:
            raise self.mic_error
        self.mic_track = MediaTrack("audio", "mic")
        return MediaStream([self.mic_track])

    def get_display_media(self, video=None, audio=None) -> MediaStream:
        if self.display_error is not None:
            raise self.display_error
        self.video_track = MediaTrack("video", "screen")
        tracks = [self.video_track]
        if self.display_audio:
            self.system_track = MediaTrack("audio", "system")
            tracks.append(self.system_track)
        return MediaStream(tracks)


class FakeRecognizer(SpeechRecognizer):
    """Starts and ends synchronously; tests drive results and errors."""

    def __init__(self, prepare_error: Optional[Exception] = None):
        super().__init__()
        self.prepare_error = prepare_error
        self.starts = 0
        self.stops = 0
        self.running = False

    def prepare(self) -> None:
        if self.prepare_error is not None:
            raise self.prepare_error

    def start(self, stream: MediaStream) -> None:
        self.starts += 1
        self.running = True
        self.started.emit(None)

    def stop(self) -> None:
        self.stops += 1
        if self.running:
            self.running = False
            self.ended.emit(None)

    def end_unexpectedly(self) -> None:
        self.running = False
        self.ended.emit(None)

    def result(self, text: str, is_final: bool = True) -> None:
        self.results.emit(RecognitionResult(text, is_final))

    def error(self, code: str) -> None:
        self.errors.emit(code)


class FakeTranscriber(Transcriber):
    name = "fake"

    def __init__(self, start_error: Optional[Exception] = None):
        super().__init__()
        self.start_error = start_error
        self.stream: Optional[MediaStream] = None
        self.api_key = None
        self.language = None
        self.paused = False
        self.disconnected = False

    async def start(self, stream, api_key=None, mode="presential", language="en") -> None:
        if self.start_error is not None:
            raise self.start_error
        self.stream = stream
        self.api_key = api_key
        self.language = language
        self._set_status(EngineStatus.LISTENING)

    async def disconnect(self) -> None:
        self.disconnected = True
        self._set_status(EngineStatus.IDLE)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def final(self, text: str) -> None:
        self._emit_final(text)

    def partial(self, text: str) -> None:
        self._emit_partial(text)

    def delta(self, text: str) -> None:
        self._emit_delta(text)


def tip_json(tips: Optional[List[str]] = None, **extra) -> str:
    body = {"type": "behavioral", "tips": tips or ["Use STAR", "Quantify results"], "keywords": ["impact"]}
    body.update(extra)
    return json.dumps(body)


class FakeGateway:
    """Records requests; optionally blocks until released."""

    def __init__(self, response: Optional[str] = None, error: Optional[Exception] = None, block: bool = False):
        self.response = response if response is not None else tip_json()
        self.error = error
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._release: Optional[asyncio.Event] = asyncio.Event() if block else None

    def release(self) -> None:
        if self._release is not None:
            self._release.set()

    async def __call__(self, request) -> str:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._release is not None:
                await self._release.wait()
            if self.error is not None:
                raise self.error
            return self.response
        finally:
            self.in_flight -= 1
