"""On-device continuous transcription ("browser" engine).

Recognition services stop themselves periodically even in continuous mode,
so the engine keeps two pieces of state and reconciles them on every
recognizer start/end/error event:

    desired: running | paused | stopped   (what the caller asked for)
    actual:  idle | starting | running | stopping   (what the recognizer is doing)

An end while desired is running schedules a restart after RESTART_DELAY.
Pause and disconnect change desired first, so the end they cause is not
mistaken for an unexpected stop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from livecoach.errors import EngineNotSupported
from livecoach.media import MediaStream
from livecoach.models import EngineStatus
from livecoach.transcribers.base_transcriber import Transcriber
from livecoach.transcribers.recognizer import RecognitionResult, SpeechRecognizer, WhisperRecognizer, error_message

logger = logging.getLogger(__name__)

RESTART_DELAY = 0.1
RECOVERABLE_CODES = frozenset({"no-speech", "aborted"})
TERMINAL_CODES = frozenset({"not-allowed", "service-not-allowed"})

LANGUAGE_TAGS = {"pt": "pt-BR", "es": "es-ES"}


def language_tag(language: Optional[str]) -> str:
    base = (language or "en").split("-")[0].lower()
    return LANGUAGE_TAGS.get(base, "en-US")


class LocalTranscriber(Transcriber):
    name = "browser"

    def __init__(
        self,
        recognizer: Optional[SpeechRecognizer] = None,
        restart_delay: float = RESTART_DELAY,
    ):
        super().__init__()
        self.recognizer = recognizer
        self.restart_delay = restart_delay
        self.desired = "stopped"
        self.actual = "idle"
        self._stream: Optional[MediaStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._unsubscribes: List[Callable[[], None]] = []

    async def start(
        self,
        stream: MediaStream,
        api_key: Optional[str] = None,
        mode: str = "presential",
        language: str = "en",
    ) -> None:
        if self.desired != "stopped":
            await self.disconnect()

        self._loop = asyncio.get_running_loop()
        if self.recognizer is None:
            self.recognizer = WhisperRecognizer()

        try:
            await self._loop.run_in_executor(None, self.recognizer.prepare)
        except EngineNotSupported:
            self._set_status(EngineStatus.ERROR)
            raise

        self.recognizer.lang = language_tag(language)
        self.recognizer.continuous = True
        self.recognizer.interim_results = True

        self._unsubscribes = [
            self.recognizer.started.subscribe(lambda _: self._post(self._on_started)),
            self.recognizer.results.subscribe(lambda r: self._post(self._on_result, r)),
            self.recognizer.errors.subscribe(lambda code: self._post(self._on_error, code)),
            self.recognizer.ended.subscribe(lambda _: self._post(self._on_ended)),
        ]

        self._stream = stream
        self.desired = "running"
        self.actual = "idle"
        logger.info("Local transcription starting (lang=%s)", self.recognizer.lang)
        self._reconcile()

    async def disconnect(self) -> None:
        self.desired = "stopped"
        self._cancel_restart()
        self._reconcile()
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []
        self._stream = None
        self.actual = "idle"
        if self.status != EngineStatus.ERROR:
            self._set_status(EngineStatus.IDLE)

    def pause(self) -> None:
        if self.desired != "running":
            return
        self.desired = "paused"
        self._cancel_restart()
        self._reconcile()
        self._set_status(EngineStatus.IDLE)

    def resume(self) -> None:
        if self.desired != "paused":
            return
        self.desired = "running"
        self._reconcile()

    # -------------------- reconciliation --------------------

    def _post(self, fn, *args) -> None:
        # recognizer events arrive on its own thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _reconcile(self) -> None:
        if self.recognizer is None:
            return

        if self.desired == "running" and self.actual == "idle":
            self.actual = "starting"
            try:
                self.recognizer.start(self._stream)
            except RuntimeError as e:
                # previous run still winding down; its end event will bring us back here
                logger.debug("Recognizer start skipped: %s", e)
                self.actual = "running"
            except EngineNotSupported as e:
                self.desired = "stopped"
                self.actual = "idle"
                self._set_status(EngineStatus.ERROR)
                self._emit_error(e.message, fatal=True)

        elif self.desired != "running" and self.actual in ("starting", "running"):
            self.actual = "stopping"
            self.recognizer.stop()

    def _restart(self) -> None:
        self._restart_handle = None
        self._reconcile()

    def _on_started(self) -> None:
        self.actual = "running"
        if self.desired == "running":
            self._set_status(EngineStatus.LISTENING)
        else:
            self._reconcile()

    def _on_result(self, result: RecognitionResult) -> None:
        if self.desired == "stopped":
            return
        if result.is_final:
            self._emit_final(result.text)
        elif result.text:
            self._emit_partial(result.text)

    def _on_error(self, code: str) -> None:
        if code in RECOVERABLE_CODES:
            logger.debug("Recoverable recognizer error: %s", code)
            return

        if code in TERMINAL_CODES:
            self.desired = "stopped"
            self._cancel_restart()
            self._set_status(EngineStatus.ERROR)
            self._emit_error(error_message(code), fatal=True)
            return

        self._emit_error(error_message(code))

    def _on_ended(self) -> None:
        self.actual = "idle"
        if self.desired == "running":
            self._cancel_restart()
            self._restart_handle = self._loop.call_later(self.restart_delay, self._restart)
        elif self.status != EngineStatus.ERROR:
            self._set_status(EngineStatus.IDLE)
