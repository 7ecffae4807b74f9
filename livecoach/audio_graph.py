"""Audio graph: per-source gain, analysis and a shared mix destination.

Frames flow source -> gain -> (analyser, destination). Sources push on
their own audio threads, so nodes that keep state guard it with a lock.
The destination is clocked by its first input (the microphone): every
microphone frame is emitted with whatever audio the other inputs have
queued for the same span mixed in.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

import numpy as np

from livecoach.media import MediaStream, MediaTrack


class AudioNode:
    def __init__(self, graph: "AudioGraph"):
        self.graph = graph
        self._outputs: List["AudioNode"] = []

    def connect(self, node: "AudioNode") -> "AudioNode":
        if node not in self._outputs:
            self._outputs.append(node)
        return node

    def disconnect(self, node: Optional["AudioNode"] = None) -> None:
        if node is None:
            self._outputs.clear()
        elif node in self._outputs:
            self._outputs.remove(node)

    def process(self, frame: np.ndarray) -> np.ndarray:
        return frame

    def receive(self, frame: np.ndarray, origin: "SourceNode") -> None:
        self._forward(self.process(frame), origin)

    def _forward(self, frame: np.ndarray, origin: "SourceNode") -> None:
        for node in list(self._outputs):
            node.receive(frame, origin)


class SourceNode(AudioNode):
    """Feeds a live track into the graph."""

    def __init__(self, graph: "AudioGraph", track: MediaTrack):
        super().__init__(graph)
        self.track = track
        track.add_sink(self._on_frame)

    @property
    def label(self) -> str:
        return self.track.label

    def _on_frame(self, frame: np.ndarray) -> None:
        if self.graph.state != "running":
            return
        self._forward(frame, self)

    def release(self) -> None:
        self.track.remove_sink(self._on_frame)
        self.disconnect()


class GainNode(AudioNode):
    def __init__(self, graph: "AudioGraph", gain: float = 1.0):
        super().__init__(graph)
        self.gain = float(gain)

    def process(self, frame: np.ndarray) -> np.ndarray:
        return (frame * self.gain).astype(np.float32, copy=False)


class AnalyserNode(AudioNode):
    """Keeps the most recent ``fft_size`` samples for volume sampling."""

    def __init__(self, graph: "AudioGraph", fft_size: int = 256):
        super().__init__(graph)
        self.fft_size = int(fft_size)
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._lock = threading.Lock()

    def receive(self, frame: np.ndarray, origin: "SourceNode") -> None:
        data = np.asarray(frame, dtype=np.float32).reshape(-1)
        with self._lock:
            if data.size >= self.fft_size:
                self._buffer = data[-self.fft_size:].copy()
            elif data.size:
                self._buffer = np.concatenate([self._buffer[data.size:], data])
        self._forward(frame, origin)

    def get_time_domain_data(self) -> np.ndarray:
        with self._lock:
            return self._buffer.copy()

    def reset(self) -> None:
        with self._lock:
            self._buffer = np.zeros(self.fft_size, dtype=np.float32)


def get_volume(analyser: Optional[AnalyserNode]) -> float:
    """RMS loudness (0..1) of the analyser's current window."""
    if analyser is None:
        return 0.0
    data = analyser.get_time_domain_data()
    if data.size == 0:
        return 0.0
    return min(1.0, float(np.sqrt(np.mean(data * data))))


class MixDestination(AudioNode):
    """Sums every input into one output track."""

    def __init__(self, graph: "AudioGraph", max_pending_seconds: float = 1.0):
        super().__init__(graph)
        self.track = MediaTrack("audio", "mix")
        self.stream = MediaStream([self.track])
        self._inputs: List[SourceNode] = []
        self._pending: Dict[int, np.ndarray] = {}
        self._max_pending = int(graph.sample_rate * max_pending_seconds)
        self._lock = threading.Lock()

    def add_input(self, source: SourceNode) -> None:
        with self._lock:
            if source not in self._inputs:
                self._inputs.append(source)

    def remove_input(self, source: SourceNode) -> None:
        with self._lock:
            if source in self._inputs:
                self._inputs.remove(source)
            self._pending.pop(id(source), None)

    @property
    def inputs(self) -> List[str]:
        with self._lock:
            return [s.label for s in self._inputs]

    def receive(self, frame: np.ndarray, origin: SourceNode) -> None:
        with self._lock:
            if origin not in self._inputs:
                return
            if origin is not self._inputs[0]:
                key = id(origin)
                queued = self._pending.get(key)
                queued = frame if queued is None else np.concatenate([queued, frame])
                self._pending[key] = queued[-self._max_pending:]
                return

            mixed = np.array(frame, dtype=np.float32, copy=True)
            n = mixed.size
            for key, queued in list(self._pending.items()):
                take = queued[:n]
                mixed[: take.size] += take
                self._pending[key] = queued[n:]
            np.clip(mixed, -1.0, 1.0, out=mixed)

        self.track.push(mixed)


class AudioGraph:
    """Owns every node of one capture session."""

    def __init__(self, sample_rate: int = 48000):
        self.sample_rate = int(sample_rate)
        self.state = "running"
        self._sources: List[SourceNode] = []

    def create_source(self, track: MediaTrack) -> SourceNode:
        source = SourceNode(self, track)
        self._sources.append(source)
        return source

    def create_gain(self, gain: float = 1.0) -> GainNode:
        return GainNode(self, gain)

    def create_analyser(self, fft_size: int = 256) -> AnalyserNode:
        return AnalyserNode(self, fft_size)

    def create_destination(self) -> MixDestination:
        return MixDestination(self)

    def close(self) -> None:
        if self.state == "closed":
            return
        self.state = "closed"
        for source in self._sources:
            source.release()
        self._sources.clear()
