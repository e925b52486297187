"""OpenAI LLM provider implementation.

Wraps the OpenAI AsyncOpenAI client to conform to the BaseLLMProvider
interface. This is the default provider.

Usage:
    from ai_providers.llm_openai import OpenAILLMProvider

    provider = OpenAILLMProvider(api_key="sk-...")
    result = await provider.generate_response(history, system_prompt, model="gpt-4o")
"""

import time
from typing import List, Dict, Any

from openai import AsyncOpenAI

from ai_providers.base import BaseLLMProvider


class OpenAILLMProvider(BaseLLMProvider):
    """OpenAI provider using the chat.completions API.

    The system prompt is sent as the leading ``system`` message.
    """

    PROVIDER_NAME = "openai"

    def __init__(self, api_key: str = None, base_url: str = None):
        # base_url=None keeps the SDK default endpoint
        self._client = AsyncOpenAI(api_key=self._require_key(api_key), base_url=base_url)

    async def generate_response(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Dict[str, Any]:
        started_at = time.monotonic()
        chat_messages = [{"role": "system", "content": system_prompt}]
        chat_messages.extend(self.to_chat_messages(messages))

        response = await self._client.chat.completions.create(
            model=model,
            messages=chat_messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )

        usage = response.usage
        return self._build_result(
            response.choices[0].message.content,
            model,
            started_at,
            prompt_tokens=getattr(usage, "prompt_tokens", 0),
            completion_tokens=getattr(usage, "completion_tokens", 0),
            total_tokens=getattr(usage, "total_tokens", 0),
        )
