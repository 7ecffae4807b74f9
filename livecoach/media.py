"""Live media tracks and the capture capabilities behind them.

A MediaTrack is a live source of mono float32 frames. Consumers attach
sinks; a disabled track delivers silence instead of samples. ``stop()`` is
the consumer releasing the track, ``ended`` fires only when the source
itself goes away (device unplugged, loopback closed).

SoundDeviceMedia is the default capability: the microphone and the
system-audio loopback are both sounddevice InputStreams. sounddevice is
imported lazily so the rest of the package works where PortAudio is absent.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from livecoach.errors import MediaNotSupported, MediaPermissionDenied, SystemAudioUnavailable
from livecoach.events import EventChannel

logger = logging.getLogger(__name__)

FrameSink = Callable[[np.ndarray], None]
Device = Union[int, str, None]


def to_mono_float32(indata: np.ndarray) -> np.ndarray:
    """
    Convert a sounddevice callback block into mono float32 in [-1, 1].
    Uses LEFT channel only (avoids phase-cancellation artifacts from stereo system audio).
    """
    x = np.asarray(indata)

    if x.ndim == 2 and x.shape[1] >= 1:
        mono = x[:, 0]
    else:
        mono = x.reshape(-1)

    if mono.dtype == np.int16:
        f = mono.astype(np.float32) / 32768.0
    else:
        f = mono.astype(np.float32)

    return np.clip(f, -1.0, 1.0)


class MediaTrack:
    """One live audio (or video) track."""

    def __init__(self, kind: str = "audio", label: str = ""):
        self.kind = kind
        self.label = label
        self.enabled = True
        self.ready_state = "live"
        self.ended: EventChannel["MediaTrack"] = EventChannel(f"{label or kind}.ended")
        self._sinks: List[FrameSink] = []
        self._lock = threading.Lock()

    def add_sink(self, sink: FrameSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: FrameSink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def push(self, frame: np.ndarray) -> None:
        """Deliver one frame to every sink (called from the source's thread)."""
        if self.ready_state != "live":
            return
        if not self.enabled:
            frame = np.zeros_like(frame)
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            sink(frame)

    def stop(self) -> None:
        if self.ready_state == "ended":
            return
        self.ready_state = "ended"
        self._release()

    def end(self) -> None:
        """The source went away on its own."""
        if self.ready_state == "ended":
            return
        self.ready_state = "ended"
        self._release()
        logger.info("Track ended: %s", self.label or self.kind)
        self.ended.emit(self)

    def _release(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<MediaTrack {self.kind} {self.label!r} {self.ready_state}>"


class MediaStream:
    """An ordered collection of tracks."""

    def __init__(self, tracks: Optional[List[MediaTrack]] = None):
        self._tracks: List[MediaTrack] = list(tracks or [])

    def add_track(self, track: MediaTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: MediaTrack) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def get_tracks(self) -> List[MediaTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[MediaTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[MediaTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    @property
    def active(self) -> bool:
        return any(t.ready_state == "live" for t in self._tracks)


class MediaDevices(ABC):
    """Capture capabilities: a microphone and an optional screen/system audio source."""

    @property
    def supports_display_media(self) -> bool:
        return True

    @abstractmethod
    def get_user_media(self, audio: Optional[Dict[str, Any]] = None) -> MediaStream:
        """Return an audio-only live stream from the microphone.

        Raises:
            MediaPermissionDenied, MediaNotSupported
        """

    @abstractmethod
    def get_display_media(
        self,
        video: Optional[Dict[str, Any]] = None,
        audio: Optional[Dict[str, Any]] = None,
    ) -> MediaStream:
        """Return a screen/system capture. May hold a video track and zero or one audio tracks.

        Raises:
            SystemAudioUnavailable when the user cancels or the source fails.
        """


# -------------------- sounddevice implementation --------------------

class SoundDeviceTrack(MediaTrack):
    """A MediaTrack fed by a sounddevice InputStream."""

    def __init__(
        self,
        device: Device,
        sample_rate: int = 48000,
        blocksize: int = 960,
        label: str = "",
        channels: Optional[int] = None,
    ):
        super().__init__("audio", label)
        import sounddevice as sd

        if channels is None:
            info = sd.query_devices(device, "input")
            channels = max(1, min(2, int(info.get("max_input_channels", 1))))

        self.device = device
        self._stream = sd.InputStream(
            device=device,
            samplerate=int(sample_rate),
            channels=int(channels),
            dtype="float32",
            blocksize=int(blocksize),
            callback=self._callback,
            finished_callback=self._finished,
        )
        self._stream.start()

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("sd_status %s: %s", self.label, status)
        self.push(to_mono_float32(indata))

    def _finished(self):
        # Also called after our own stop(); only a live track means the source vanished.
        if self.ready_state != "live":
            return
        self.ready_state = "ended"
        stream, self._stream = self._stream, None
        if stream is not None:
            threading.Thread(target=stream.close, kwargs={"ignore_errors": True}, daemon=True).start()
        logger.info("Track ended: %s", self.label)
        self.ended.emit(self)

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop(ignore_errors=True)
        finally:
            stream.close(ignore_errors=True)


def _import_sounddevice():
    try:
        import sounddevice as sd
    except OSError as e:
        # PortAudio shared library not found
        raise MediaNotSupported(f"Audio capture is not available: {e}") from e
    return sd


def _classify_open_error(e: Exception) -> Exception:
    msg = str(e) or type(e).__name__
    lowered = msg.lower()
    if "permission" in lowered or "denied" in lowered or "not allowed" in lowered:
        return MediaPermissionDenied(msg)
    return MediaNotSupported(msg)


class SoundDeviceMedia(MediaDevices):
    """Microphone and loopback capture through PortAudio."""

    def __init__(
        self,
        mic_device: Device = None,
        system_device: Device = None,
        sample_rate: int = 48000,
        blocksize: int = 960,
    ):
        self.mic_device = mic_device
        self.system_device = system_device
        self.sample_rate = sample_rate
        self.blocksize = blocksize

    @property
    def supports_display_media(self) -> bool:
        return self.system_device is not None

    def get_user_media(self, audio: Optional[Dict[str, Any]] = None) -> MediaStream:
        sd = _import_sounddevice()
        channels = (audio or {}).get("channel_count")
        try:
            track = SoundDeviceTrack(self.mic_device, self.sample_rate, self.blocksize, "mic", channels)
        except sd.PortAudioError as e:
            raise _classify_open_error(e) from e
        except ValueError as e:
            # query_devices: no such input device
            raise MediaNotSupported(str(e)) from e
        return MediaStream([track])

    def get_display_media(
        self,
        video: Optional[Dict[str, Any]] = None,
        audio: Optional[Dict[str, Any]] = None,
    ) -> MediaStream:
        if self.system_device is None:
            raise SystemAudioUnavailable("No system audio device configured (set SYSTEM_AUDIO_DEVICE).")
        sd = _import_sounddevice()
        try:
            track = SoundDeviceTrack(self.system_device, self.sample_rate, self.blocksize, "system")
        except (sd.PortAudioError, ValueError) as e:
            raise SystemAudioUnavailable(f"Could not open system audio device: {e}") from e
        # Loopback devices carry no video track.
        return MediaStream([track])


def list_audio_devices():
    """
    Returns available INPUT audio devices.
    This is used by main.py / UI for device selection.
    """
    try:
        import sounddevice as sd

        devices = []
        for idx, d in enumerate(sd.query_devices()):
            if int(d.get("max_input_channels", 0)) <= 0:
                continue

            devices.append(
                {
                    "index": idx,
                    "name": d.get("name", f"Device {idx}"),
                    "max_input_channels": int(d.get("max_input_channels", 0)),
                    "default_samplerate": int(d.get("default_samplerate", 0) or 0),
                }
            )
    except Exception as e:
        return {
            "ok": False,
            "error": repr(e),
            "devices": [],
        }

    return {
        "ok": True,
        "devices": devices,
    }
