"""DeepSeek LLM provider.

DeepSeek exposes an OpenAI-compatible chat completions API, so this
provider reuses the OpenAI client pointed at ``DEEPSEEK_BASE_URL``.

Environment:
    DEEPSEEK_API_KEY  - Required.
    DEEPSEEK_BASE_URL - Optional, defaults to https://api.deepseek.com/v1
"""

from ai_providers.llm_openai import OpenAILLMProvider

DEFAULT_BASE_URL = "https://api.deepseek.com/v1"


class DeepSeekLLMProvider(OpenAILLMProvider):
    PROVIDER_NAME = "deepseek"

    def __init__(self, api_key: str = None, base_url: str = None):
        super().__init__(api_key=api_key, base_url=base_url or DEFAULT_BASE_URL)
