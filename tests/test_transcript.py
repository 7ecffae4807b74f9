import dataclasses

import pytest

from livecoach.models import Speaker
from livecoach.transcript import TranscriptStore


def test_append_assigns_increasing_ids_and_clears_partial():
    store = TranscriptStore(clock=lambda: 100.0)
    store.set_partial("hel")
    a = store.append("Hello there", Speaker.RECRUITER)
    b = store.append("Hi!", Speaker.CANDIDATE)

    assert (a.id, b.id) == (1, 2)
    assert a.speaker == Speaker.RECRUITER
    assert store.current_partial == ""
    assert len(store) == 2


def test_timestamps_strictly_increase_with_a_stalled_clock():
    store = TranscriptStore(clock=lambda: 100.0)
    a = store.append("one")
    b = store.append("two")
    c = store.append("three", timestamp=50.0)
    assert a.timestamp < b.timestamp < c.timestamp


def test_empty_text_is_ignored():
    store = TranscriptStore()
    assert store.append("   ") is None
    assert store.append("") is None
    assert len(store) == 0


def test_delta_appends_to_partial():
    store = TranscriptStore()
    store.append_delta("Hel")
    assert store.append_delta("lo") == "Hello"
    assert store.set_partial("Bye") == "Bye"


def test_recent_and_clear_keep_ids_unique():
    store = TranscriptStore()
    for word in ("a", "b", "c"):
        store.append(word)
    assert [s.text for s in store.recent(2)] == ["b", "c"]
    assert store.recent(0) == ()

    store.clear()
    assert store.segments == ()
    assert store.append("d").id == 4


def test_segments_are_frozen():
    store = TranscriptStore()
    seg = store.append("fixed")
    with pytest.raises(dataclasses.FrozenInstanceError):
        seg.text = "changed"
    assert store.segments[0].text == "fixed"
