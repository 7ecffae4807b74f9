"""
Session orchestrator.

One CoachSession owns everything a live session mutates: the capture
coordinator, the transcription engine, the speaker tracker, the transcript
store and the coaching pipeline. All of it is touched from a single asyncio
loop. Engine events and track-ended notifications may be produced on other
threads; they are posted here with ``loop.call_soon_threadsafe`` and applied
in arrival order.

Teardown order on stop(): engine -> volume sampling -> coaching -> capture.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from livecoach.audio_capture import AudioCaptureCoordinator, AudioSession
from livecoach.coach import Gateway, send_chat_request
from livecoach.errors import ApiKeyMissing, EngineNotSupported, LiveCoachError
from livecoach.events import EventChannel
from livecoach.live_coach import CoachState, LiveCoach
from livecoach.media import MediaDevices, MediaStream
from livecoach.models import CoachTip, EngineStatus, TranscriptionEvent
from livecoach.speaker import SpeakerTracker
from livecoach.state import SessionContext
from livecoach.transcribers import Transcriber, create_transcriber
from livecoach.transcript import TranscriptStore

logger = logging.getLogger(__name__)

VOLUME_INTERVAL = 0.1  # seconds

TranscriberFactory = Callable[[str], Transcriber]


class CoachSession:
    def __init__(
        self,
        context: SessionContext,
        media: Optional[MediaDevices] = None,
        transcriber_factory: Optional[TranscriberFactory] = None,
        gateway: Optional[Gateway] = None,
        volume_interval: float = VOLUME_INTERVAL,
        coach_debounce: Optional[float] = None,
    ):
        self.context = context
        self.media = media
        self.transcriber_factory = transcriber_factory or create_transcriber
        self.gateway = gateway or send_chat_request
        self.volume_interval = volume_interval
        self.coach_debounce = coach_debounce

        self.updates: EventChannel[dict] = EventChannel("session.updates")
        self.transcript = TranscriptStore()
        self.tracker = SpeakerTracker(context.mode)

        self.capture: Optional[AudioCaptureCoordinator] = None
        self.transcriber: Optional[Transcriber] = None
        self.coach: Optional[LiveCoach] = None

        self.is_running = False
        self.is_paused = False
        self.engine_status = EngineStatus.IDLE
        self.error: Optional[str] = None
        self.error_code: Optional[str] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._volume_task: Optional[asyncio.Task] = None
        self._unsubscribes: List[Callable[[], None]] = []

    # -------------------- lifecycle --------------------

    async def start(self) -> None:
        """
        Start capture, the transcription engine and coaching.

        Raises:
            MediaPermissionDenied / MediaNotSupported when the microphone
            cannot be opened. Nothing is left running in that case.
        """
        if self.is_running:
            await self.stop()

        self._loop = asyncio.get_running_loop()
        self.error = None
        self.error_code = None

        self.capture = AudioCaptureCoordinator(media=self.media, dispatch=self._dispatch)
        self._unsubscribes.append(self.capture.state_changed.subscribe(self._on_capture_changed))
        result = self.capture.start_capture(self.context.mode)

        self.tracker.set_mode(self.context.mode)
        self.coach = LiveCoach(self.context, gateway=self.gateway, debounce_seconds=self.coach_debounce)
        self._unsubscribes.extend([
            self.coach.tip_added.subscribe(self._on_tip),
            self.coach.error_changed.subscribe(self._on_coach_error),
        ])

        self.is_running = True
        self.is_paused = False
        self._volume_task = self._loop.create_task(self._sample_volumes())

        await self._start_engine(result.mixed_stream)

        logger.info(
            "Session started: mode=%s engine=%s provider=%s language=%s",
            self.context.mode, self.context.engine, self.context.provider, self.context.language,
        )
        self._publish_status()

    async def _start_engine(self, stream: MediaStream) -> None:
        try:
            transcriber = self.transcriber_factory(self.context.engine)
        except EngineNotSupported as e:
            self._engine_failed(e)
            return

        unsubscribe = transcriber.events.subscribe(self._on_engine_event)
        try:
            await transcriber.start(
                stream,
                api_key=self.context.transcription_api_key,
                mode=self.context.mode,
                language=self.context.language,
            )
        except (ApiKeyMissing, EngineNotSupported) as e:
            unsubscribe()
            self._engine_failed(e)
            return

        self.transcriber = transcriber
        self._unsubscribes.append(unsubscribe)

    def _engine_failed(self, error: LiveCoachError) -> None:
        # capture keeps running; the user can fix the setting and restart
        logger.warning("Transcription engine not started: %s", error.message)
        self.engine_status = EngineStatus.ERROR
        self.error = error.user_message
        self.error_code = error.code

    async def stop(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if not self.is_running and self.capture is None:
            return
        self.is_running = False

        if self.transcriber is not None:
            await self.transcriber.disconnect()
            self.transcriber = None

        if self._volume_task is not None:
            self._volume_task.cancel()
            try:
                await self._volume_task
            except asyncio.CancelledError:
                pass
            self._volume_task = None

        if self.coach is not None:
            self.coach.close()

        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

        if self.capture is not None:
            self.capture.stop_capture()
            self.capture = None

        self.is_paused = False
        self.engine_status = EngineStatus.IDLE
        self.transcript.set_partial("")
        self.tracker.reset()
        logger.info("Session stopped (%d segments)", len(self.transcript))
        self._publish_status()

    # -------------------- controls --------------------

    def toggle_mute(self) -> bool:
        if self.capture is None:
            return False
        muted = self.capture.toggle_mute()
        self._publish_status()
        return muted

    def pause(self) -> None:
        if not self.is_running or self.is_paused:
            return
        self.is_paused = True
        if self.transcriber is not None:
            self.transcriber.pause()
        self.transcript.set_partial("")
        self._publish_status()

    def resume(self) -> None:
        if not self.is_running or not self.is_paused:
            return
        self.is_paused = False
        if self.transcriber is not None:
            self.transcriber.resume()
        self._publish_status()

    def clear_transcript(self) -> None:
        self.transcript.clear()
        self._publish_status()

    def clear_tips(self) -> None:
        if self.coach is not None:
            self.coach.clear_tips()
        self._publish_status()

    # -------------------- event intake --------------------

    def _dispatch(self, fn: Callable[[], None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn)

    def _on_engine_event(self, event: TranscriptionEvent) -> None:
        self._dispatch(lambda: self._apply_engine_event(event))

    def _apply_engine_event(self, event: TranscriptionEvent) -> None:
        if not self.is_running:
            return

        if event.kind == "status":
            self.engine_status = event.status
            self._publish_status()
            return

        if event.kind == "error":
            self.error = event.text
            self.error_code = "engine_error"
            if event.fatal:
                self.engine_status = EngineStatus.ERROR
            self._publish_status()
            return

        if self.is_paused:
            return

        if event.kind == "partial":
            self.updates.emit({"type": "partial", "text": self.transcript.set_partial(event.text)})
        elif event.kind == "delta":
            self.updates.emit({"type": "partial", "text": self.transcript.append_delta(event.text)})
        elif event.kind == "final":
            segment = self.transcript.append(event.text, self.tracker.current)
            if segment is None:
                return
            self.updates.emit({"type": "segment", "segment": segment.to_dict()})
            if self.coach is not None:
                self.coach.analyze_transcript(self.transcript.segments)

    def _on_capture_changed(self, state: AudioSession) -> None:
        if self.is_running:
            self._publish_status()

    def _on_tip(self, tip: CoachTip) -> None:
        self.updates.emit({"type": "tip", "tip": tip.to_dict()})

    def _on_coach_error(self, error: Optional[LiveCoachError]) -> None:
        self.updates.emit({
            "type": "coach_error",
            "error": error.user_message if error else None,
            "code": error.code if error else None,
            "category": error.category if error else None,
        })

    async def _sample_volumes(self) -> None:
        while True:
            if self.capture is not None:
                mic, system = self.capture.sample_volumes()
                self.tracker.push(mic, system)
            await asyncio.sleep(self.volume_interval)

    # -------------------- status --------------------

    def _publish_status(self) -> None:
        self.updates.emit({"type": "status", "status": self.status()})

    def status(self) -> dict:
        audio = self.capture.state if self.capture is not None else AudioSession(mode=self.context.mode)
        return {
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "mode": self.context.mode,
            "engine": self.context.engine,
            "engine_status": self.engine_status.value,
            "provider": self.context.provider,
            "language": self.context.language,
            "speaker": self.tracker.current.value,
            "partial": self.transcript.current_partial,
            "error": self.error,
            "error_code": self.error_code,
            "audio": audio.to_dict(),
        }

    def snapshot(self) -> dict:
        """Status plus the full transcript and coaching state."""
        data = self.status()
        data["segments"] = [s.to_dict() for s in self.transcript.segments]
        data["coach"] = (self.coach.state if self.coach is not None else CoachState()).to_dict()
        return data
