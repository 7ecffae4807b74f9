"""Chunked hosted transcription ("whisper" engine).

Accumulates mixed-stream audio and every ``interval`` seconds posts it as a
16 kHz WAV to the OpenAI transcription endpoint. Short chunks wait for the
next cycle; a failed chunk goes back to the front of the buffer.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

import httpx
import numpy as np

from livecoach.audio_codec import encode_wav, resample_to
from livecoach.config import Config
from livecoach.errors import ApiKeyMissing, LLMGatewayError, error_from_response
from livecoach.media import MediaStream, MediaTrack
from livecoach.models import EngineStatus
from livecoach.transcribers.base_transcriber import Transcriber

logger = logging.getLogger(__name__)

CHUNK_INTERVAL = 5.0
MIN_CHUNK_SECONDS = 1.0
MAX_BUFFER_SECONDS = 60.0
UPLOAD_SAMPLE_RATE = 16000
WHISPER_MODEL = "whisper-1"


class WhisperTranscriber(Transcriber):
    name = "whisper"

    def __init__(
        self,
        interval: float = CHUNK_INTERVAL,
        min_chunk_seconds: float = MIN_CHUNK_SECONDS,
        sample_rate: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.interval = interval
        self.min_chunk_seconds = min_chunk_seconds
        self.sample_rate = sample_rate or Config.SAMPLE_RATE
        self.url = f"{(base_url or Config.OPENAI_BASE_URL).rstrip('/')}/v1/audio/transcriptions"
        self._transport = transport

        self._chunks: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._track: Optional[MediaTrack] = None
        self._client: Optional[httpx.AsyncClient] = None
        self._task: Optional[asyncio.Task] = None
        self._api_key: Optional[str] = None
        self._language: Optional[str] = None

    async def start(
        self,
        stream: MediaStream,
        api_key: Optional[str] = None,
        mode: str = "presential",
        language: str = "en",
    ) -> None:
        if not api_key:
            raise ApiKeyMissing("An OpenAI API key is required for Whisper transcription.")
        if self._task is not None:
            return

        tracks = stream.get_audio_tracks()
        if not tracks:
            raise ValueError("stream has no audio track")

        self._api_key = api_key
        self._language = (language or "").split("-")[0] or None
        self._chunks = []
        self._track = tracks[0]
        self._track.add_sink(self._on_frame)
        self._client = httpx.AsyncClient(timeout=60, transport=self._transport)

        self._set_status(EngineStatus.RECORDING)
        self._task = asyncio.create_task(self._run())
        logger.info("Whisper transcription started (every %.1fs)", self.interval)

    async def disconnect(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._track is not None:
            self._track.remove_sink(self._on_frame)
            self._track = None

        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

        with self._lock:
            self._chunks = []
        self._set_status(EngineStatus.IDLE)

    def _on_frame(self, frame: np.ndarray) -> None:
        with self._lock:
            self._chunks.append(frame.copy())

    def buffered_seconds(self) -> float:
        with self._lock:
            return sum(c.size for c in self._chunks) / float(self.sample_rate)

    def _put_back(self, chunks: List[np.ndarray]) -> None:
        with self._lock:
            merged = chunks + self._chunks
            limit = int(MAX_BUFFER_SECONDS * self.sample_rate)
            while merged and sum(c.size for c in merged) > limit:
                merged.pop(0)
            self._chunks = merged

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.transcribe_pending()
            except Exception as e:
                logger.exception("Whisper transcription cycle failed")
                self._emit_error(f"Transcription failed: {e}")

    async def transcribe_pending(self) -> None:
        """Send everything buffered so far as one chunk."""
        with self._lock:
            chunks, self._chunks = self._chunks, []
        if not chunks:
            return

        samples = np.concatenate(chunks)
        if samples.size < self.min_chunk_seconds * self.sample_rate:
            self._put_back(chunks)
            return

        self._set_status(EngineStatus.TRANSCRIBING)
        try:
            text = await self._transcribe(samples)
        except (httpx.HTTPError, LLMGatewayError) as e:
            self._put_back(chunks)
            self._emit_error(f"Transcription failed: {e}")
        else:
            self._emit_final(text)
        finally:
            if self._client is not None:
                self._set_status(EngineStatus.RECORDING)

    async def _transcribe(self, samples: np.ndarray) -> str:
        audio = resample_to(samples, self.sample_rate, UPLOAD_SAMPLE_RATE)
        files = {"file": ("audio.wav", encode_wav(audio, UPLOAD_SAMPLE_RATE), "audio/wav")}
        data = {"model": WHISPER_MODEL}
        if self._language:
            data["language"] = self._language

        r = await self._client.post(
            self.url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            data=data,
            files=files,
        )
        if r.status_code >= 400:
            raise error_from_response(r, service="Whisper API")
        try:
            body = r.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise LLMGatewayError(
                f"Unexpected Whisper API response: {r.text.strip()[:200]!r}"
            )
        return str(body.get("text") or "").strip()
