"""AI provider plugin system.

This package contains the abstract provider contract and one adapter per
supported vendor (OpenAI, Anthropic, Google Gemini, DeepSeek). The
registry module instantiates providers by name.

Quick start:
    from ai_providers import get_llm_provider

    llm = get_llm_provider()            # reads Config.AI_PROVIDER
    llm = get_llm_provider("google")
"""

from ai_providers.base import BaseLLMProvider
from ai_providers.registry import get_llm_provider, list_llm_providers

__all__ = [
    "BaseLLMProvider",
    "get_llm_provider",
    "list_llm_providers",
]
