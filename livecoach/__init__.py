"""Live conversation coaching: audio capture, transcription and LLM tips."""

__version__ = "0.1.0"
