"""Anthropic (Claude) LLM provider.

The Messages API takes the system prompt as its own ``system`` argument
and rejects a conversation that opens with an assistant turn, so the
greeting-style AI messages at the start of a chat are skipped.
"""

import time
from typing import List, Dict, Any

from anthropic import AsyncAnthropic

from ai_providers.base import BaseLLMProvider


class AnthropicLLMProvider(BaseLLMProvider):
    PROVIDER_NAME = "anthropic"

    def __init__(self, api_key: str = None):
        self._client = AsyncAnthropic(api_key=self._require_key(api_key))

    @classmethod
    def _conversation_turns(cls, messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        turns = cls.to_chat_messages(messages)
        first_user = next((i for i, t in enumerate(turns) if t["role"] == "user"), len(turns))
        return turns[first_user:]

    async def generate_response(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Dict[str, Any]:
        started_at = time.monotonic()
        response = await self._client.messages.create(
            model=model,
            system=system_prompt,
            messages=self._conversation_turns(messages),
            max_tokens=max_tokens,
            temperature=temperature,
        )

        # Tool-use and other non-text blocks carry no text attribute
        text = "".join(getattr(block, "text", "") for block in response.content)
        return self._build_result(
            text,
            model,
            started_at,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )
