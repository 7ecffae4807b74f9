import asyncio

import pytest

from livecoach.errors import EngineNotSupported
from livecoach.media import MediaStream, MediaTrack
from livecoach.models import EngineStatus
from livecoach.transcribers.local_transcriber import LocalTranscriber, language_tag
from tests.fakes import FakeRecognizer, wait_for


def setup(**kwargs):
    recognizer = FakeRecognizer(**kwargs)
    engine = LocalTranscriber(recognizer=recognizer, restart_delay=0.01)
    events = []
    engine.events.subscribe(events.append)
    return recognizer, engine, events


def stream():
    return MediaStream([MediaTrack("audio", "mix")])


def test_language_tags():
    assert language_tag("pt") == "pt-BR"
    assert language_tag("es-MX") == "es-ES"
    assert language_tag("en") == "en-US"
    assert language_tag("fr") == "en-US"


def test_start_listens_and_forwards_results():
    async def main():
        rec, engine, events = setup()
        await engine.start(stream(), language="pt")
        assert await wait_for(lambda: engine.status == EngineStatus.LISTENING)
        assert rec.lang == "pt-BR"
        assert rec.continuous and rec.interim_results

        rec.result("olá", is_final=False)
        rec.result("olá, tudo bem?", is_final=True)
        assert await wait_for(lambda: any(e.kind == "final" for e in events))

        kinds = [(e.kind, e.text) for e in events if e.kind in ("partial", "final")]
        assert kinds == [("partial", "olá"), ("final", "olá, tudo bem?")]
        await engine.disconnect()

    asyncio.run(main())


def test_restarts_after_unexpected_end():
    async def main():
        rec, engine, _ = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        rec.end_unexpectedly()
        assert await wait_for(lambda: rec.starts == 2)
        assert engine.desired == "running"
        await engine.disconnect()

    asyncio.run(main())


def test_pause_does_not_restart_and_resume_does():
    async def main():
        rec, engine, _ = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        engine.pause()
        assert rec.stops == 1
        await asyncio.sleep(0.05)
        assert rec.starts == 1
        assert engine.status == EngineStatus.IDLE

        engine.resume()
        assert await wait_for(lambda: rec.starts == 2)
        assert await wait_for(lambda: engine.status == EngineStatus.LISTENING)
        await engine.disconnect()

    asyncio.run(main())


def test_disconnect_prevents_restart_and_drops_results():
    async def main():
        rec, engine, events = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        await engine.disconnect()
        rec.result("late", is_final=True)
        await asyncio.sleep(0.05)

        assert rec.starts == 1
        assert engine.status == EngineStatus.IDLE
        assert not any(e.kind == "final" for e in events)

    asyncio.run(main())


def test_not_allowed_is_terminal():
    async def main():
        rec, engine, events = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        rec.error("not-allowed")
        rec.end_unexpectedly()
        assert await wait_for(lambda: engine.status == EngineStatus.ERROR)
        await asyncio.sleep(0.05)

        assert rec.starts == 1
        errors = [e for e in events if e.kind == "error"]
        assert len(errors) == 1 and errors[0].fatal
        assert "permission" in errors[0].text.lower()
        await engine.disconnect()

    asyncio.run(main())


def test_no_speech_is_recoverable():
    async def main():
        rec, engine, events = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        rec.error("no-speech")
        rec.end_unexpectedly()
        assert await wait_for(lambda: rec.starts == 2)
        assert not any(e.kind == "error" for e in events)
        await engine.disconnect()

    asyncio.run(main())


def test_other_errors_are_reported_but_not_fatal():
    async def main():
        rec, engine, events = setup()
        await engine.start(stream())
        await wait_for(lambda: engine.status == EngineStatus.LISTENING)

        rec.error("network")
        assert await wait_for(lambda: any(e.kind == "error" for e in events))
        error = [e for e in events if e.kind == "error"][0]
        assert not error.fatal
        assert engine.status == EngineStatus.LISTENING
        await engine.disconnect()

    asyncio.run(main())


def test_unavailable_recognizer_raises():
    async def main():
        _, engine, _ = setup(prepare_error=EngineNotSupported("no model"))
        with pytest.raises(EngineNotSupported):
            await engine.start(stream())
        assert engine.status == EngineStatus.ERROR

    asyncio.run(main())
