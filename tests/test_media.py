import numpy as np
import pytest

from livecoach.audio_graph import AudioGraph, get_volume
from livecoach.errors import SystemAudioUnavailable
from livecoach.media import MediaStream, MediaTrack, SoundDeviceMedia, to_mono_float32
from tests.fakes import tone


def test_to_mono_float32_takes_left_channel_of_int16():
    stereo = np.array([[16384, -32768], [-16384, 0]], dtype=np.int16)
    mono = to_mono_float32(stereo)
    assert mono.dtype == np.float32
    assert np.allclose(mono, [0.5, -0.5])


def test_disabled_track_delivers_silence():
    track = MediaTrack("audio", "mic")
    got = []
    track.add_sink(got.append)
    track.enabled = False
    track.push(tone(0.7, 4))
    assert np.all(got[0] == 0)


def test_stop_is_silent_end_notifies():
    stopped, ended = MediaTrack(), MediaTrack()
    events = []
    stopped.ended.subscribe(events.append)
    ended.ended.subscribe(events.append)

    stopped.stop()
    ended.end()
    ended.end()

    assert events == [ended]
    assert stopped.ready_state == ended.ready_state == "ended"


def test_ended_track_drops_frames():
    track = MediaTrack()
    got = []
    track.add_sink(got.append)
    track.stop()
    track.push(tone(0.1))
    assert got == []


def test_stream_filters_tracks_by_kind():
    audio, video = MediaTrack("audio"), MediaTrack("video")
    stream = MediaStream([audio, video])
    assert stream.get_audio_tracks() == [audio]
    assert stream.get_video_tracks() == [video]
    stream.remove_track(video)
    assert stream.get_tracks() == [audio]
    assert stream.active
    audio.stop()
    assert not stream.active


def test_closed_graph_stops_forwarding():
    graph = AudioGraph(48000)
    track = MediaTrack()
    source = graph.create_source(track)
    analyser = graph.create_analyser(256)
    source.connect(analyser)

    track.push(tone(0.5))
    assert get_volume(analyser) == pytest.approx(0.5)

    analyser.reset()
    graph.close()
    graph.close()
    track.push(tone(0.5))
    assert get_volume(analyser) == 0.0


def test_get_volume_without_analyser():
    assert get_volume(None) == 0.0


def test_sounddevice_media_without_loopback_device():
    media = SoundDeviceMedia(mic_device=None, system_device=None)
    assert media.supports_display_media is False
    with pytest.raises(SystemAudioUnavailable):
        media.get_display_media()


def test_amplified_volume_is_clamped():
    graph = AudioGraph(48000)
    track = MediaTrack()
    gain = graph.create_gain(3.0)
    analyser = graph.create_analyser(256)
    graph.create_source(track).connect(gain).connect(analyser)

    track.push(tone(0.8))
    assert get_volume(analyser) == 1.0
