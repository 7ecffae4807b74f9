"""Data models for the live coaching pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional


CaptureMode = Literal["call", "presential"]
EngineName = Literal["browser", "whisper", "realtime"]


class Speaker(str, Enum):
    """Who is talking. In call mode the mic is the candidate (the user)."""
    RECRUITER = "recruiter"
    CANDIDATE = "candidate"
    UNKNOWN = "unknown"


class EngineStatus(str, Enum):
    """Shared transcription engine state machine."""
    IDLE = "idle"
    CONNECTING = "connecting"
    RECORDING = "recording"
    LISTENING = "listening"
    CONNECTED = "connected"
    TRANSCRIBING = "transcribing"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptSegment:
    """A finalized utterance. Never mutated after creation."""
    id: int
    text: str
    speaker: Speaker
    timestamp: float  # Unix timestamp
    is_final: bool = True

    def to_dict(self):
        return {
            "id": self.id,
            "text": self.text,
            "speaker": self.speaker.value,
            "timestamp": self.timestamp,
            "is_final": self.is_final,
        }


@dataclass(frozen=True)
class TranscriptionEvent:
    """One event from a transcription engine.

    kind:
      - "partial": replace the in-progress text
      - "delta":   append to the in-progress text
      - "final":   a finalized utterance
      - "status":  engine status change
      - "error":   engine error (fatal=True means the engine gave up)
    """
    kind: Literal["partial", "delta", "final", "status", "error"]
    text: str = ""
    status: Optional[EngineStatus] = None
    fatal: bool = False

    @classmethod
    def partial(cls, text: str) -> "TranscriptionEvent":
        return cls(kind="partial", text=text)

    @classmethod
    def delta(cls, text: str) -> "TranscriptionEvent":
        return cls(kind="delta", text=text)

    @classmethod
    def final(cls, text: str) -> "TranscriptionEvent":
        return cls(kind="final", text=text)

    @classmethod
    def status_change(cls, status: EngineStatus) -> "TranscriptionEvent":
        return cls(kind="status", status=status)

    @classmethod
    def error(cls, message: str, fatal: bool = False) -> "TranscriptionEvent":
        return cls(kind="error", text=message, fatal=fatal)


@dataclass(frozen=True)
class ChatRequest:
    """One call to the LLM gateway."""
    provider: str
    api_key: Optional[str]
    model: str
    system_prompt: str
    user_message: str
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass(frozen=True)
class CoachTip:
    """A structured coaching suggestion from one LLM call."""
    type: str
    tips: List[str]
    keywords: List[str] = field(default_factory=list)
    method: Optional[str] = None
    timestamp: float = 0.0
    question_text: Optional[str] = None

    def to_dict(self):
        return {
            "type": self.type,
            "tips": list(self.tips),
            "keywords": list(self.keywords),
            "method": self.method,
            "timestamp": self.timestamp,
            "question_text": self.question_text,
        }
