"""Configuration management for API keys and settings."""

import logging
import os
from typing import Optional
from pathlib import Path

from dotenv import load_dotenv

# config.py is in livecoach/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path, override=True)


def _device(value: Optional[str]):
    """sounddevice accepts either a device index or a (partial) device name."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    return int(value) if value.isdigit() else value


class Config:
    """Application configuration from environment variables."""

    # Capture
    CAPTURE_MODE: str = os.getenv("CAPTURE_MODE", "presential")  # "call" or "presential"
    MIC_DEVICE = _device(os.getenv("MIC_DEVICE"))
    SYSTEM_AUDIO_DEVICE = _device(os.getenv("SYSTEM_AUDIO_DEVICE"))
    SAMPLE_RATE: int = int(os.getenv("SAMPLE_RATE", "48000"))
    BLOCKSIZE: int = int(os.getenv("BLOCKSIZE", "960"))  # ~20ms @ 48k

    # Transcription
    TRANSCRIPTION_ENGINE: str = os.getenv("TRANSCRIPTION_ENGINE", "browser")  # browser | whisper | realtime
    LANGUAGE: str = os.getenv("LANGUAGE", "en")
    LOCAL_WHISPER_MODEL: str = os.getenv("LOCAL_WHISPER_MODEL", "base")
    LOCAL_WHISPER_DEVICE: str = os.getenv("LOCAL_WHISPER_DEVICE", "cpu")
    LOCAL_WHISPER_COMPUTE_TYPE: str = os.getenv("LOCAL_WHISPER_COMPUTE_TYPE", "int8")

    # LLM gateway
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: Optional[str] = os.getenv("LLM_MODEL") or None
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com")
    ANTHROPIC_BASE_URL: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11434")

    # Coaching
    AI_MODE: str = os.getenv("AI_MODE", "sales")  # sales | support | interview
    COACH_DEBOUNCE_SECONDS: float = float(os.getenv("COACH_DEBOUNCE_SECONDS", "2.0"))

    # Server / logging
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8010"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    @classmethod
    def get_api_key(cls, provider: Optional[str] = None) -> Optional[str]:
        """Return the API key for an LLM provider (defaults to LLM_PROVIDER)."""
        provider = (provider or cls.LLM_PROVIDER).lower()
        if provider in ("openai", "azure"):
            return cls.OPENAI_API_KEY
        if provider == "anthropic":
            return cls.ANTHROPIC_API_KEY
        if provider == "gemini":
            return cls.GEMINI_API_KEY
        return None

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if cls.CAPTURE_MODE not in ("call", "presential"):
            missing.append(f"CAPTURE_MODE must be 'call' or 'presential' (got '{cls.CAPTURE_MODE}')")

        if cls.TRANSCRIPTION_ENGINE in ("whisper", "realtime") and not cls.OPENAI_API_KEY:
            missing.append(f"OPENAI_API_KEY (required when TRANSCRIPTION_ENGINE={cls.TRANSCRIPTION_ENGINE})")

        if cls.LLM_PROVIDER != "ollama" and not cls.get_api_key():
            missing.append(f"API key for LLM_PROVIDER={cls.LLM_PROVIDER}")

        if cls.CAPTURE_MODE == "call" and cls.SYSTEM_AUDIO_DEVICE is None:
            missing.append("SYSTEM_AUDIO_DEVICE (call mode will fall back to microphone only)")

        return missing


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging once from LOG_LEVEL / LOG_FILE."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = Config.LOG_FILE if log_file is None else log_file
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
    )
