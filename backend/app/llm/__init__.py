"""LLM provider integration for agent blocks."""

from app.llm.client import (
    DEFAULT_MODEL,
    LLMClient,
    ProviderError,
    ProviderResponse,
    extract_json,
)

__all__ = [
    "DEFAULT_MODEL",
    "LLMClient",
    "ProviderError",
    "ProviderResponse",
    "extract_json",
]
