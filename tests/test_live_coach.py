import asyncio

from livecoach.errors import LLMGatewayError
from livecoach.live_coach import LiveCoach, extract_last_question, render_transcript
from livecoach.models import Speaker
from livecoach.state import SessionContext
from livecoach.transcript import TranscriptStore
from tests.fakes import FakeGateway, wait_for

DEBOUNCE = 0.02


def conversation(*lines):
    store = TranscriptStore()
    for speaker, text in lines:
        store.append(text, speaker)
    return store


INTERVIEW = (
    (Speaker.RECRUITER, "Thanks for joining. What is your biggest weakness?"),
    (Speaker.CANDIDATE, "Good question, let me think."),
)


def make_coach(gateway, **ctx):
    context = SessionContext(provider="openai", api_key="sk-test", language="en", **ctx)
    coach = LiveCoach(context, gateway=gateway, debounce_seconds=DEBOUNCE, clock=lambda: 1000.0)
    return coach


def test_render_and_question_extraction():
    store = conversation(
        (Speaker.RECRUITER, "Where are you based?"),
        (Speaker.CANDIDATE, "Lisbon. Is that ok?"),
        (Speaker.UNKNOWN, "noise"),
    )
    assert render_transcript(store.segments) == (
        "Recruiter: Where are you based?\nCandidate: Lisbon. Is that ok?\nUnknown: noise"
    )
    assert extract_last_question(store.segments) == "Where are you based?"
    assert extract_last_question(conversation((Speaker.CANDIDATE, "Any news?")).segments) is None


def test_debounced_analysis_produces_a_tip():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway, model=None)
        received = []
        coach.tip_added.subscribe(received.append)
        store = conversation(*INTERVIEW)

        for _ in range(5):
            coach.analyze_transcript(store.segments)
        assert await wait_for(lambda: coach.tips)

        assert len(gateway.requests) == 1
        req = gateway.requests[0]
        assert req.model == "gpt-4o"
        assert req.provider == "openai"
        assert "Recruiter: Thanks for joining. What is your biggest weakness?" in req.user_message
        assert req.system_prompt

        tip = coach.tips[0]
        assert tip.question_text == "Thanks for joining. What is your biggest weakness?"
        assert tip.timestamp == 1000.0
        assert coach.state.last_analyzed_at == 1000.0
        assert received == [tip]
        assert not coach.is_analyzing

    asyncio.run(main())


def test_short_transcript_is_skipped():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway)
        coach.analyze_transcript(conversation((Speaker.CANDIDATE, "hi")).segments)
        await asyncio.sleep(DEBOUNCE * 5)
        assert gateway.requests == []

    asyncio.run(main())


def test_unchanged_transcript_is_not_reanalyzed():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway)
        store = conversation(*INTERVIEW)

        coach.analyze_transcript(store.segments)
        await wait_for(lambda: coach.tips)
        coach.analyze_transcript(store.segments)
        await asyncio.sleep(DEBOUNCE * 5)
        assert len(gateway.requests) == 1

        coach.clear_tips()
        assert coach.tips == []
        coach.analyze_transcript(store.segments)
        assert await wait_for(lambda: len(gateway.requests) == 2)

    asyncio.run(main())


def test_missing_key_sets_error_without_calling():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway)
        coach.context.api_key = None
        errors = []
        coach.error_changed.subscribe(errors.append)

        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        assert await wait_for(lambda: coach.state.error_code is not None)
        assert coach.state.error_code == "api_key_missing"
        assert coach.state.error_category == "configuration"
        assert gateway.requests == []
        assert errors[0].code == "api_key_missing"

    asyncio.run(main())


def test_local_provider_runs_without_key():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway)
        coach.context.provider = "ollama"
        coach.context.api_key = None

        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        assert await wait_for(lambda: coach.tips)
        assert gateway.requests[0].model == "gemma3:4b"

    asyncio.run(main())


def test_only_one_request_in_flight():
    async def main():
        gateway = FakeGateway(block=True)
        coach = make_coach(gateway)
        store = conversation(*INTERVIEW)

        coach.analyze_transcript(store.segments)
        assert await wait_for(lambda: coach.is_analyzing)

        store.append("Tell me about a conflict at work?", Speaker.RECRUITER)
        coach.analyze_transcript(store.segments)
        await asyncio.sleep(DEBOUNCE * 5)
        assert len(gateway.requests) == 1

        gateway.release()
        assert await wait_for(lambda: len(gateway.requests) == 2)
        assert await wait_for(lambda: len(coach.tips) == 2)
        assert gateway.max_in_flight == 1
        assert coach.tips[1].question_text == "Tell me about a conflict at work?"

    asyncio.run(main())


def test_gateway_failure_is_classified():
    async def main():
        gateway = FakeGateway(error=LLMGatewayError("Rate limit reached for requests", status_code=429))
        coach = make_coach(gateway)

        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        assert await wait_for(lambda: coach.state.error is not None)
        assert coach.state.error_code == "rate_limit_error"
        assert coach.state.error_category == "transient"
        assert coach.tips == []
        assert not coach.is_analyzing

    asyncio.run(main())


def test_unreadable_response_is_a_parse_error():
    async def main():
        coach = make_coach(FakeGateway(response="I think you should relax."))
        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        assert await wait_for(lambda: coach.state.error is not None)
        assert coach.state.error_code == "response_parse_error"
        assert coach.state.error_category == "unexpected"

    asyncio.run(main())


def test_success_clears_previous_error():
    async def main():
        gateway = FakeGateway(error=LLMGatewayError("network down"))
        coach = make_coach(gateway)
        store = conversation(*INTERVIEW)

        coach.analyze_transcript(store.segments)
        assert await wait_for(lambda: coach.state.error is not None)

        gateway.error = None
        store.append("And your strengths?", Speaker.RECRUITER)
        coach.analyze_transcript(store.segments)
        assert await wait_for(lambda: coach.tips)
        assert coach.state.error is None

    asyncio.run(main())


def test_response_after_close_is_dropped():
    async def main():
        gateway = FakeGateway(block=True)
        coach = make_coach(gateway)

        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        assert await wait_for(lambda: coach.is_analyzing)
        task = coach.in_flight

        coach.close()
        gateway.release()
        await task

        assert coach.tips == []
        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        await asyncio.sleep(DEBOUNCE * 5)
        assert len(gateway.requests) == 1

    asyncio.run(main())


def test_close_cancels_pending_debounce():
    async def main():
        gateway = FakeGateway()
        coach = make_coach(gateway)
        coach.analyze_transcript(conversation(*INTERVIEW).segments)
        coach.close()
        await asyncio.sleep(DEBOUNCE * 5)
        assert gateway.requests == []

    asyncio.run(main())
