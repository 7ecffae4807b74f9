from dataclasses import dataclass, field
from typing import Optional

from livecoach.config import Config


@dataclass
class JobContext:
    company_name: str = ""
    job_title: str = ""
    job_description: str = ""

    def is_empty(self) -> bool:
        return not (self.company_name or self.job_title or self.job_description)


@dataclass
class SessionContext:
    """Everything one coaching session needs to know, built once per session
    and passed by reference to the orchestrator, capture and coach."""
    mode: str = "presential"
    engine: str = "browser"
    language: str = "en"
    provider: str = "openai"
    api_key: Optional[str] = None
    model: Optional[str] = None
    transcription_api_key: Optional[str] = None
    ai_mode: str = "sales"
    resume_summary: str = ""
    job: JobContext = field(default_factory=JobContext)

    @classmethod
    def from_config(cls, **overrides) -> "SessionContext":
        ctx = cls(
            mode=Config.CAPTURE_MODE,
            engine=Config.TRANSCRIPTION_ENGINE,
            language=Config.LANGUAGE,
            provider=Config.LLM_PROVIDER,
            api_key=Config.get_api_key(),
            model=Config.LLM_MODEL,
            transcription_api_key=Config.OPENAI_API_KEY,
            ai_mode=Config.AI_MODE,
        )
        for k, v in overrides.items():
            if v is not None:
                setattr(ctx, k, v)
        if overrides.get("provider") and overrides.get("api_key") is None:
            ctx.api_key = Config.get_api_key(ctx.provider)
        # An OpenAI chat key doubles as the transcription key unless one is given.
        if not overrides.get("transcription_api_key") and ctx.provider in ("openai", "azure") and ctx.api_key:
            ctx.transcription_api_key = ctx.api_key
        return ctx
