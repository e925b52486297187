"""Switch-style factory over the provider adapters.

Adapters are imported on first use, so a deployment that only sets
OPENAI_API_KEY never loads the Anthropic or Google SDKs.
"""

import importlib
from typing import Dict, Optional

from ai_providers.base import BaseLLMProvider

# name -> "module:ClassName"
_LLM_REGISTRY = {
    "openai": "ai_providers.llm_openai:OpenAILLMProvider",
    "anthropic": "ai_providers.llm_anthropic:AnthropicLLMProvider",
    "google": "ai_providers.llm_google:GoogleLLMProvider",
    "deepseek": "ai_providers.llm_deepseek:DeepSeekLLMProvider",
}


def _import_class(target: str):
    module_path, class_name = target.split(":")
    return getattr(importlib.import_module(module_path), class_name)


def get_llm_provider(provider_name: Optional[str] = None) -> BaseLLMProvider:
    """Build the adapter for *provider_name* (default ``Config.AI_PROVIDER``).

    Raises:
        ValueError: for an unknown provider or one without an API key
    """
    from supportdesk.config import Config

    name = (provider_name or Config.AI_PROVIDER).lower()
    target = _LLM_REGISTRY.get(name)
    if target is None:
        raise ValueError(
            f"Unknown LLM provider: '{name}'. Supported providers: {', '.join(sorted(_LLM_REGISTRY))}"
        )

    api_key = Config.get_api_key(name)
    if not api_key:
        raise ValueError(f"No API key configured for provider '{name}'")

    provider_class = _import_class(target)
    if name == "deepseek":
        return provider_class(api_key=api_key, base_url=Config.DEEPSEEK_BASE_URL)
    return provider_class(api_key=api_key)


def list_llm_providers() -> Dict[str, dict]:
    """Map each registered provider to ``{"available", "module"}``."""
    from supportdesk.config import Config

    configured = set(Config.get_available_providers())
    return {
        name: {"available": name in configured, "module": target.split(":")[0]}
        for name, target in _LLM_REGISTRY.items()
    }
