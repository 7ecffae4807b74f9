"""LLM provider adapters. Each exposes ``async generate(request, *, transport=None) -> str``."""
