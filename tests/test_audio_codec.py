import numpy as np
import pytest

from livecoach.audio_codec import StreamResampler, resample_to


def sine(freq=440.0, rate=48000, seconds=0.2):
    t = np.arange(int(rate * seconds)) / rate
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.mark.parametrize("dst_rate", [24000, 16000])
def test_blocks_match_one_pass(dst_rate):
    signal = sine()
    whole = StreamResampler(48000, dst_rate).process(signal)

    blocked = StreamResampler(48000, dst_rate)
    # uneven block sizes so the kept-sample phase has to carry over
    parts = [blocked.process(block) for block in np.split(signal, [960, 1100, 2880, 5000, 7000])]
    joined = np.concatenate(parts)

    assert joined.size == whole.size == signal.size * dst_rate // 48000
    assert np.allclose(joined, whole, atol=1e-6)


def test_downsampled_sine_keeps_its_shape():
    out = StreamResampler(48000, 24000, num_taps=63).process(sine())
    # a symmetric 63-tap FIR delays by 31 input samples
    k = np.arange(out.size)
    expected = 0.5 * np.sin(2 * np.pi * 440.0 * (2 * k - 31) / 48000)
    assert np.max(np.abs(out[100:] - expected[100:])) < 0.01


def test_reset_restarts_the_filter():
    resampler = StreamResampler(48000, 24000)
    first = resampler.process(sine())
    resampler.reset()
    assert np.allclose(resampler.process(sine()), first)


def test_matching_rates_pass_through():
    block = sine(rate=24000)
    assert np.array_equal(StreamResampler(24000, 24000).process(block), block)


def test_non_integer_ratio_uses_block_resampling():
    block = sine(rate=44100)
    out = StreamResampler(44100, 24000).process(block)
    assert out.size == resample_to(block, 44100, 24000).size
