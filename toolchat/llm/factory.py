"""Adapter selection by configuration."""

from __future__ import annotations

from toolchat.config import Settings, find_model
from toolchat.credentials import CredentialStore
from toolchat.llm.base import ProviderAdapter
from toolchat.llm.gemini import GeminiAdapter
from toolchat.llm.groq import GroqAdapter


def build_adapter(settings: Settings, credentials: CredentialStore, model_id: str | None = None) -> ProviderAdapter:
    """Build the adapter serving ``model_id`` (or the configured model)."""

    model_id = model_id or settings.resolved_model_id()
    info = find_model(model_id)
    provider = info.provider if info else settings.provider
    common = {
        "credentials": credentials,
        "model": model_id,
        "timeout": settings.request_timeout_seconds,
        "max_retries": settings.provider_max_retries,
        "retry_base_seconds": settings.provider_retry_base_seconds,
    }
    if provider == "groq":
        return GroqAdapter(base_url=settings.groq_base_url, **common)
    return GeminiAdapter(base_url=settings.gemini_base_url, **common)
