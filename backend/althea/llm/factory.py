"""
LLM Provider Factory - Creates the configured LLM provider instance.
"""

from typing import Any, Dict, Optional
from .base import LLMProvider
from .openai_provider import OpenAIProvider

# Both presets speak the OpenAI Chat Completions dialect.
PROVIDER_PRESETS: Dict[str, Dict[str, str]] = {
    "openai": {
        "model": "gpt-4o-mini",
        "base_url": "https://api.openai.com/v1",
    },
    "volcengine": {
        "model": "doubao-1-5-pro-32k-250115",
        "base_url": "https://ark.cn-beijing.volces.com/api/v3",
    },
}


def create_llm_provider(
    provider: str = "openai",
    api_key: Optional[str] = "",
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    **kwargs: Any
) -> Optional[LLMProvider]:
    """
    Create an LLM provider instance based on configuration.

    Args:
        provider: Provider name ("openai" or "volcengine")
        api_key: API key for the provider
        model: Model name (uses provider default if not specified)
        base_url: Custom base URL (uses provider default if not specified)
        **kwargs: Additional provider parameters (e.g. timeout)

    Returns:
        LLMProvider instance, or None if api_key is not configured

    Raises:
        ValueError: If the provider name is unknown
    """
    if not api_key:
        return None

    preset = PROVIDER_PRESETS.get(provider)
    if preset is None:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    return OpenAIProvider(
        api_key=api_key,
        model=model or preset["model"],
        base_url=base_url or preset["base_url"],
        provider_name=provider,
        **kwargs
    )
