"""Sample-rate conversion and PCM/WAV encoding for the transcription engines."""

from __future__ import annotations

import base64
import io

import numpy as np
from scipy.io import wavfile
from scipy.signal import firwin, lfilter, resample


def resample_to(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Resample mono float32 audio. Returns the input unchanged when rates match."""
    if src_rate == dst_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    num_out = int(round(samples.size * dst_rate / src_rate))
    if num_out <= 0:
        return np.zeros(0, dtype=np.float32)
    return resample(samples, num_out).astype(np.float32)


class StreamResampler:
    """Resampler for audio that arrives in small blocks.

    Integer downsampling ratios (48 kHz to 24 or 16 kHz) run a low-pass FIR
    whose state carries over from block to block, so block edges leave no
    seams. Other ratios fall back to resampling each block on its own.
    """

    def __init__(self, src_rate: int, dst_rate: int, num_taps: int = 63):
        self.src_rate = int(src_rate)
        self.dst_rate = int(dst_rate)
        self.factor = 0
        if self.src_rate > self.dst_rate and self.src_rate % self.dst_rate == 0:
            self.factor = self.src_rate // self.dst_rate
            self._taps = firwin(num_taps, 1.0 / self.factor)
        self.reset()

    def reset(self) -> None:
        if self.factor:
            self._zi = np.zeros(len(self._taps) - 1)
        self._offset = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        if not self.factor or samples.size == 0:
            return resample_to(samples, self.src_rate, self.dst_rate)
        filtered, self._zi = lfilter(self._taps, 1.0, samples.astype(np.float64), zi=self._zi)
        out = filtered[self._offset::self.factor]
        # index of the next kept sample, counted from the start of the next block
        self._offset = (self._offset - samples.size) % self.factor
        return out.astype(np.float32)


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """16-bit mono WAV bytes."""
    buf = io.BytesIO()
    wavfile.write(buf, int(sample_rate), float_to_pcm16(samples))
    return buf.getvalue()


def encode_pcm16_base64(samples: np.ndarray) -> str:
    """Little-endian PCM16, base64 encoded (realtime input_audio_buffer format)."""
    return base64.b64encode(float_to_pcm16(samples).astype("<i2").tobytes()).decode("ascii")


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))
