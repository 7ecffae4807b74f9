from livecoach.prompt import MAX_JOB_DESCRIPTION, SYSTEM_PROMPTS, build_coach_prompt, normalize_language
from livecoach.state import JobContext


def test_language_selects_system_prompt():
    system, _ = build_coach_prompt("pt-BR", "", None, "Recruiter: Oi?")
    assert system == SYSTEM_PROMPTS["pt"]
    assert normalize_language("es-ES") == "es"
    assert normalize_language("de") == "en"
    assert normalize_language(None) == "en"


def test_user_message_carries_persona_context_and_transcript():
    job = JobContext(company_name="Acme", job_title="Backend Engineer", job_description="Build APIs")
    _, user = build_coach_prompt(
        "en", "10 years of Python", job, "Recruiter: Tell me about yourself?", ai_mode="interview",
    )
    assert user.startswith("MANDATORY PERSONA: INTERVIEW")
    assert "RESUME:\n10 years of Python" in user
    assert "JOB: Acme - Backend Engineer" in user
    assert "DESCRIPTION / GOAL:\nBuild APIs" in user
    assert "Recruiter: Tell me about yourself?" in user
    assert user.index("RECENT TRANSCRIPT") > user.index("JOB:")


def test_job_label_follows_mode():
    job = JobContext(company_name="Globex")
    _, sales = build_coach_prompt("en", "", job, "x", ai_mode="sales")
    _, support = build_coach_prompt("en", "", job, "x", ai_mode="support")
    _, other = build_coach_prompt("en", "", job, "x", ai_mode="negotiation")
    assert "CLIENT / TARGET: Globex" in sales
    assert "CLIENT / SUPPORT: Globex" in support
    assert "CONTEXT: Globex" in other


def test_description_is_truncated():
    job = JobContext(job_description="x" * (MAX_JOB_DESCRIPTION + 500))
    _, user = build_coach_prompt("en", "", job, "Recruiter: hi")
    assert "x" * MAX_JOB_DESCRIPTION in user
    assert "x" * (MAX_JOB_DESCRIPTION + 1) not in user


def test_empty_job_is_omitted():
    _, user = build_coach_prompt("en", "", JobContext(), "Candidate: hello")
    assert "CLIENT" not in user
    assert "DESCRIPTION" not in user
