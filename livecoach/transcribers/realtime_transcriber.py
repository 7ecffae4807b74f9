"""Streaming transcription over the OpenAI Realtime API ("realtime" engine).

One websocket per session:
  - sender:   mixed-stream frames -> 24 kHz PCM16 -> input_audio_buffer.append
  - receiver: transcription deltas / completions / errors -> engine events
  - health:   no message for STALE_AFTER seconds -> close and reconnect

Audio frames arrive on the capture thread and are handed to the loop with
call_soon_threadsafe. Reconnects back off as min(2**attempt, 10) seconds and
give up after MAX_RECONNECT_ATTEMPTS.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import aiohttp
import numpy as np

from livecoach.audio_codec import StreamResampler, encode_pcm16_base64
from livecoach.config import Config
from livecoach.errors import ApiKeyMissing
from livecoach.media import MediaStream, MediaTrack
from livecoach.models import EngineStatus
from livecoach.transcribers.base_transcriber import Transcriber

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime?intent=transcription"
REALTIME_SAMPLE_RATE = 24000
MAX_RECONNECT_ATTEMPTS = 3
MAX_BACKOFF = 10.0
STALE_AFTER = 30.0
HEALTH_CHECK_INTERVAL = 10.0
MAX_BATCH = 32

DELTA_EVENT = "conversation.item.input_audio_transcription.delta"
COMPLETED_EVENT = "conversation.item.input_audio_transcription.completed"


class RealtimeTranscriber(Transcriber):
    name = "realtime"

    def __init__(
        self,
        url: str = REALTIME_URL,
        sample_rate: Optional[int] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        backoff_unit: float = 1.0,
        stale_after: float = STALE_AFTER,
        health_interval: float = HEALTH_CHECK_INTERVAL,
    ):
        super().__init__()
        self.url = url
        self.sample_rate = sample_rate or Config.SAMPLE_RATE
        self._resampler = StreamResampler(self.sample_rate, REALTIME_SAMPLE_RATE)
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_unit = backoff_unit
        self.stale_after = stale_after
        self.health_interval = health_interval

        self.reconnect_attempts = 0
        self._active = False
        self._api_key: Optional[str] = None
        self._language: Optional[str] = None
        self._track: Optional[MediaTrack] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._audio_q: Optional["asyncio.Queue[np.ndarray]"] = None
        self._task: Optional[asyncio.Task] = None
        self._last_message_at = 0.0

    async def start(
        self,
        stream: MediaStream,
        api_key: Optional[str] = None,
        mode: str = "presential",
        language: str = "en",
    ) -> None:
        if not api_key:
            raise ApiKeyMissing("An OpenAI API key is required for realtime transcription.")
        if self._task is not None:
            return

        tracks = stream.get_audio_tracks()
        if not tracks:
            raise ValueError("stream has no audio track")

        self._api_key = api_key
        self._language = (language or "").split("-")[0] or None
        self._loop = asyncio.get_running_loop()
        self._audio_q = asyncio.Queue(maxsize=200)
        self._track = tracks[0]
        self._track.add_sink(self._on_frame)

        self._active = True
        self.reconnect_attempts = 0
        self._set_status(EngineStatus.CONNECTING)
        self._task = asyncio.create_task(self._connection_loop())

    async def disconnect(self) -> None:
        self._active = False
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
        self._audio_q = None
        if self.status != EngineStatus.ERROR:
            self._set_status(EngineStatus.IDLE)

    # -------------------- audio in --------------------

    def _on_frame(self, frame: np.ndarray) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._enqueue, frame.copy())

    def _enqueue(self, frame: np.ndarray) -> None:
        q = self._audio_q
        if q is None:
            return
        # keep audio current: drop oldest if behind
        if q.full():
            q.get_nowait()
        q.put_nowait(frame)

    # -------------------- connection --------------------

    def session_update(self) -> dict:
        transcription = {"model": "whisper-1"}
        if self._language:
            transcription["language"] = self._language
        return {
            "type": "transcription_session.update",
            "session": {
                "input_audio_format": "pcm16",
                "input_audio_transcription": transcription,
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.5,
                    "prefix_padding_ms": 300,
                    "silence_duration_ms": 1000,
                },
            },
        }

    async def _connection_loop(self) -> None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        timeout = aiohttp.ClientTimeout(total=None)
        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            while self._active:
                try:
                    await self._connect_and_stream(session)
                except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as e:
                    logger.warning("Realtime connection failed: %r", e)

                if not self._active:
                    break

                self._set_status(EngineStatus.DISCONNECTED)
                if self.reconnect_attempts >= self.max_reconnect_attempts:
                    self._active = False
                    self._set_status(EngineStatus.ERROR)
                    self._emit_error("Connection lost and could not be restored", fatal=True)
                    break

                self.reconnect_attempts += 1
                delay = min(2 ** self.reconnect_attempts, MAX_BACKOFF) * self.backoff_unit
                logger.info(
                    "Realtime reconnect %d/%d in %.1fs",
                    self.reconnect_attempts, self.max_reconnect_attempts, delay,
                )
                await asyncio.sleep(delay)
                self._set_status(EngineStatus.CONNECTING)

    async def _connect_and_stream(self, session: aiohttp.ClientSession) -> None:
        async with session.ws_connect(self.url, heartbeat=20) as ws:
            self.reconnect_attempts = 0
            self._last_message_at = self._loop.time()
            self._resampler.reset()
            await ws.send_json(self.session_update())
            self._set_status(EngineStatus.CONNECTED)

            tasks = [
                asyncio.create_task(self._sender(ws)),
                asyncio.create_task(self._receiver(ws)),
                asyncio.create_task(self._health_check(ws)),
            ]
            try:
                done, pending = await asyncio.wait(set(tasks), return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in tasks:
                    t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

            for t in done:
                if not t.cancelled() and t.exception() is not None:
                    raise t.exception()

    async def _sender(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            batch = [await self._audio_q.get()]
            for _ in range(MAX_BATCH - 1):
                try:
                    batch.append(self._audio_q.get_nowait())
                except asyncio.QueueEmpty:
                    break

            samples = self._resampler.process(np.concatenate(batch))
            await ws.send_json({
                "type": "input_audio_buffer.append",
                "audio": encode_pcm16_base64(samples),
            })

    async def _receiver(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            msg = await ws.receive()

            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.info("Realtime websocket closed")
                return
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"WebSocket error: {ws.exception()}")
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue

            self._last_message_at = self._loop.time()
            try:
                data = json.loads(msg.data)
            except ValueError:
                logger.debug("Ignoring malformed realtime message")
                continue
            if isinstance(data, dict):
                self.handle_message(data)

    async def _health_check(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self.health_interval)
            if self._loop.time() - self._last_message_at > self.stale_after:
                logger.warning("Realtime connection appears stale, reconnecting")
                await ws.close()
                return

    def handle_message(self, data: dict) -> None:
        msg_type = data.get("type")

        if msg_type == DELTA_EVENT:
            delta = data.get("delta") or ""
            if delta:
                self._set_status(EngineStatus.TRANSCRIBING)
                self._emit_delta(delta)

        elif msg_type == COMPLETED_EVENT:
            self._emit_final(data.get("transcript") or "")
            self._set_status(EngineStatus.CONNECTED)

        elif msg_type == "error":
            err = data.get("error")
            message = err.get("message") if isinstance(err, dict) else None
            self._emit_error(message or "Realtime API error")
