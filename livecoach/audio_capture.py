"""Audio capture coordinator.

Acquires the microphone and, in call mode, the system audio source, and
wires each one through its own gain into a shared mix destination and its
own analyser:

    mic    -> mic_gain    -> mic_analyser
                          -> mix
    system -> system_gain -> system_analyser
                          -> mix

The microphone is required. The system source is strictly additive: it may
be missing at start or disappear mid-session without ending capture.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from livecoach.audio_graph import AnalyserNode, AudioGraph, GainNode, MixDestination, SourceNode, get_volume
from livecoach.config import Config
from livecoach.errors import CaptureError, MediaNotSupported, MediaPermissionDenied, SystemAudioUnavailable
from livecoach.events import EventChannel
from livecoach.media import MediaDevices, MediaStream, MediaTrack, SoundDeviceMedia

logger = logging.getLogger(__name__)

MIC_GAIN_DEFAULT = 1.0
MIC_GAIN_MAX = 2.0
SYSTEM_GAIN_DEFAULT = 1.5  # loopback audio usually arrives attenuated
SYSTEM_GAIN_MAX = 3.0
FFT_SIZE = 256

MIC_CONSTRAINTS = {
    "echo_cancellation": True,
    "noise_suppression": True,
    "auto_gain_control": True,
    "channel_count": 1,
}
DISPLAY_VIDEO = {"width": 1, "height": 1, "frame_rate": 1}
DISPLAY_AUDIO = {
    "echo_cancellation": False,
    "noise_suppression": False,
    "auto_gain_control": False,
}

Dispatch = Callable[[Callable[[], None]], None]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


@dataclass
class AudioSession:
    mic_stream: Optional[MediaStream] = None
    system_stream: Optional[MediaStream] = None
    mixed_stream: Optional[MediaStream] = None
    is_capturing: bool = False
    is_muted: bool = False
    mode: str = "presential"
    mic_volume: float = 0.0
    system_volume: float = 0.0
    has_system_audio: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self):
        return {
            "is_capturing": self.is_capturing,
            "is_muted": self.is_muted,
            "mode": self.mode,
            "mic_volume": round(self.mic_volume, 4),
            "system_volume": round(self.system_volume, 4),
            "has_system_audio": self.has_system_audio,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class CaptureResult:
    mixed_stream: MediaStream
    mic_stream: MediaStream
    system_stream: Optional[MediaStream] = None


class AudioCaptureCoordinator:
    """Owns the raw media tracks and the audio graph of one session.

    ``dispatch`` receives callables produced on audio threads (track ended)
    and is expected to run them on the owner's loop. The default runs them
    immediately.
    """

    def __init__(
        self,
        media: Optional[MediaDevices] = None,
        sample_rate: Optional[int] = None,
        dispatch: Optional[Dispatch] = None,
    ):
        self.media = media or SoundDeviceMedia(
            mic_device=Config.MIC_DEVICE,
            system_device=Config.SYSTEM_AUDIO_DEVICE,
            sample_rate=Config.SAMPLE_RATE,
            blocksize=Config.BLOCKSIZE,
        )
        self.sample_rate = sample_rate or Config.SAMPLE_RATE
        self.dispatch: Dispatch = dispatch or (lambda fn: fn())
        self.state = AudioSession()
        self.state_changed: EventChannel[AudioSession] = EventChannel("capture_state")

        self.mic_gain_value = MIC_GAIN_DEFAULT
        self.system_gain_value = SYSTEM_GAIN_DEFAULT

        self._graph: Optional[AudioGraph] = None
        self._destination: Optional[MixDestination] = None
        self._mic_gain: Optional[GainNode] = None
        self._system_gain: Optional[GainNode] = None
        self._mic_analyser: Optional[AnalyserNode] = None
        self._system_analyser: Optional[AnalyserNode] = None
        self._system_source: Optional[SourceNode] = None
        self._system_track: Optional[MediaTrack] = None
        self._unsubscribe_ended: Optional[Callable[[], None]] = None

    # -------------------- start / stop --------------------

    def start_capture(self, mode: str = "presential") -> CaptureResult:
        """Acquire sources and build the mix.

        Raises:
            MediaPermissionDenied / MediaNotSupported if the microphone cannot be opened.
        """
        if self.state.is_capturing:
            self.stop_capture()

        self.state = AudioSession(mode=mode)

        try:
            mic_stream = self.media.get_user_media(MIC_CONSTRAINTS)
            if not mic_stream.get_audio_tracks():
                raise MediaNotSupported("The microphone stream has no audio track.")
        except (MediaPermissionDenied, MediaNotSupported) as e:
            self.state.error = e.message
            self.state.error_code = e.code
            logger.error("Microphone capture failed: %s", e.message)
            raise

        system_stream: Optional[MediaStream] = None
        warning: Optional[SystemAudioUnavailable] = None
        if mode == "call":
            system_stream, warning = self._acquire_system_audio()

        graph = AudioGraph(self.sample_rate)
        destination = graph.create_destination()

        mic_source = graph.create_source(mic_stream.get_audio_tracks()[0])
        self._mic_gain = graph.create_gain(self.mic_gain_value)
        self._mic_analyser = graph.create_analyser(FFT_SIZE)
        mic_source.connect(self._mic_gain)
        self._mic_gain.connect(self._mic_analyser)
        self._mic_gain.connect(destination)
        destination.add_input(mic_source)

        if system_stream is not None:
            track = system_stream.get_audio_tracks()[0]
            self._system_source = graph.create_source(track)
            self._system_gain = graph.create_gain(self.system_gain_value)
            self._system_analyser = graph.create_analyser(FFT_SIZE)
            self._system_source.connect(self._system_gain)
            self._system_gain.connect(self._system_analyser)
            self._system_gain.connect(destination)
            destination.add_input(self._system_source)

            self._system_track = track
            self._unsubscribe_ended = track.ended.subscribe(self._on_system_track_ended)

        self._graph = graph
        self._destination = destination

        self.state.mic_stream = mic_stream
        self.state.system_stream = system_stream
        self.state.mixed_stream = destination.stream
        self.state.is_capturing = True
        self.state.has_system_audio = system_stream is not None
        if warning is not None:
            self.state.error = warning.message
            self.state.error_code = warning.code

        logger.info(
            "Capture started: mode=%s system_audio=%s inputs=%s",
            mode, self.state.has_system_audio, destination.inputs,
        )
        return CaptureResult(destination.stream, mic_stream, system_stream)

    def _acquire_system_audio(self) -> Tuple[Optional[MediaStream], Optional[SystemAudioUnavailable]]:
        if not self.media.supports_display_media:
            warning = SystemAudioUnavailable(
                "System audio capture is not supported here. Using microphone only."
            )
            logger.warning(warning.message)
            return None, warning

        try:
            stream = self.media.get_display_media(DISPLAY_VIDEO, DISPLAY_AUDIO)
        except SystemAudioUnavailable as e:
            logger.warning("System audio unavailable: %s", e.message)
            return None, e
        except CaptureError as e:
            # a denied share prompt is a cancellation, not a fatal error
            warning = SystemAudioUnavailable(f"Could not capture system audio: {e.message}. Using microphone only.")
            logger.warning(warning.message)
            return None, warning

        for video in stream.get_video_tracks():
            video.stop()
            stream.remove_track(video)

        if not stream.get_audio_tracks():
            warning = SystemAudioUnavailable(
                "No audio was shared. Enable audio sharing when selecting the source. Using microphone only."
            )
            logger.warning(warning.message)
            return None, warning

        return stream, None

    def _on_system_track_ended(self, track: MediaTrack) -> None:
        # audio thread; hand over to the owner
        self.dispatch(lambda: self._handle_system_ended(track))

    def _handle_system_ended(self, track: MediaTrack) -> None:
        if track is not self._system_track or not self.state.has_system_audio:
            return

        if self._destination is not None and self._system_source is not None:
            self._destination.remove_input(self._system_source)
        if self._system_source is not None:
            self._system_source.release()
        if self._system_analyser is not None:
            self._system_analyser.reset()

        self._system_source = None
        self._system_gain = None
        self._system_analyser = None

        self.state.has_system_audio = False
        self.state.system_volume = 0.0
        logger.warning("System audio source ended; continuing with microphone only")
        self.state_changed.emit(self.state)

    def stop_capture(self) -> None:
        """Release every track and the graph. Safe to call when idle."""
        was_capturing = self.state.is_capturing

        if self._unsubscribe_ended is not None:
            self._unsubscribe_ended()
            self._unsubscribe_ended = None

        for stream in (self.state.mic_stream, self.state.system_stream):
            if stream is None:
                continue
            for track in stream.get_tracks():
                track.stop()

        if self._graph is not None:
            self._graph.close()

        self._graph = None
        self._destination = None
        self._mic_gain = None
        self._system_gain = None
        self._mic_analyser = None
        self._system_analyser = None
        self._system_source = None
        self._system_track = None

        self.state = AudioSession(mode=self.state.mode)
        if was_capturing:
            logger.info("Capture stopped")

    # -------------------- controls --------------------

    def toggle_mute(self) -> bool:
        """Enable/disable the microphone track(s). Returns the new muted flag."""
        if self.state.mic_stream is None:
            return self.state.is_muted

        muted = not self.state.is_muted
        for track in self.state.mic_stream.get_audio_tracks():
            track.enabled = not muted
        self.state.is_muted = muted
        if muted:
            self.state.mic_volume = 0.0
        logger.info("Microphone %s", "muted" if muted else "unmuted")
        return muted

    def set_mic_gain(self, value: float) -> float:
        self.mic_gain_value = _clamp(value, 0.0, MIC_GAIN_MAX)
        if self._mic_gain is not None:
            self._mic_gain.gain = self.mic_gain_value
        return self.mic_gain_value

    def set_system_gain(self, value: float) -> float:
        self.system_gain_value = _clamp(value, 0.0, SYSTEM_GAIN_MAX)
        if self._system_gain is not None:
            self._system_gain.gain = self.system_gain_value
        return self.system_gain_value

    def sample_volumes(self) -> Tuple[float, float]:
        """Read both analysers and record the values. (0, 0) when idle."""
        if not self.state.is_capturing:
            return 0.0, 0.0

        mic = 0.0 if self.state.is_muted else get_volume(self._mic_analyser)
        system = get_volume(self._system_analyser) if self.state.has_system_audio else 0.0
        self.state.mic_volume = mic
        self.state.system_volume = system
        return mic, system
