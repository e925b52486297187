"""Abstract base class for the AI provider plugin system.

Each provider adapts one vendor SDK to a single call: given the stored
chat messages and a system prompt, produce one reply plus usage metadata.

To add a new provider, subclass :class:`BaseLLMProvider`, implement
``generate_response`` and register it in ai_providers/registry.py.
"""

import time
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class BaseLLMProvider(ABC):
    """Abstract base for LLM backends.

    Messages passed in are rows from the ``messages`` table shaped as
    ``{"type": "user"|"ai"|"system", "content": str}``. Subclasses convert
    them to their SDK's chat format with :meth:`to_chat_messages`.

    Example usage:
        provider = OpenAILLMProvider(api_key="sk-...")
        result = await provider.generate_response(history, system_prompt, model="gpt-4o")
        print(result["content"], result["metadata"]["tokens_used"])
    """

    #: Name reported in response metadata
    PROVIDER_NAME = ""

    def _require_key(self, api_key: str) -> str:
        if not api_key:
            raise ValueError(f"An API key is required for the {self.PROVIDER_NAME} provider")
        return api_key

    @staticmethod
    def to_chat_messages(
        messages: List[Dict[str, Any]],
        assistant_role: str = "assistant",
    ) -> List[Dict[str, str]]:
        """Map stored messages to ``{"role", "content"}`` chat turns.

        Only ``user`` messages keep the user role; AI and system messages
        become *assistant_role* turns.
        """
        return [
            {
                "role": "user" if msg.get("type") == "user" else assistant_role,
                "content": msg.get("content", ""),
            }
            for msg in messages
        ]

    def _build_result(
        self,
        content: str,
        model: str,
        started_at: float,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: int = 0,
    ) -> Dict[str, Any]:
        """Package a reply in the common response shape."""
        return {
            "content": content or "",
            "metadata": {
                "model": model,
                "provider": self.PROVIDER_NAME,
                "tokens_used": {
                    "prompt": prompt_tokens or 0,
                    "completion": completion_tokens or 0,
                    "total": total_tokens or (prompt_tokens or 0) + (completion_tokens or 0),
                },
                "response_time": int((time.monotonic() - started_at) * 1000),
            },
        }

    @abstractmethod
    async def generate_response(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Dict[str, Any]:
        """Generate one assistant reply.

        Args:
            messages: Conversation so far, oldest first, ending with the
                      user's latest message.
            system_prompt: Instructions plus retrieved company context.
            model: Model identifier (e.g. "gpt-4o", "gemini-pro").
            temperature: Sampling temperature.
            max_tokens: Upper bound on generated tokens.

        Returns:
            {"content": str, "metadata": {"model", "provider",
             "tokens_used": {"prompt", "completion", "total"},
             "response_time": milliseconds}}
        """
        pass
