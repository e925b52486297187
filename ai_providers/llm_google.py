"""Google Gemini LLM provider implementation.

Uses the google-generativeai SDK. Gemini has no separate system prompt
slot in chat sessions here, so the system prompt is prepended to the
user's latest message and earlier turns are replayed as chat history.
"""

import time
from typing import List, Dict, Any, Tuple

from ai_providers.base import BaseLLMProvider


class GoogleLLMProvider(BaseLLMProvider):
    PROVIDER_NAME = "google"

    def __init__(self, api_key: str = None):
        api_key = self._require_key(api_key)
        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError("Install google-generativeai to use the Google provider")

        genai.configure(api_key=api_key)
        self._genai = genai

    @classmethod
    def build_chat_input(
        cls,
        messages: List[Dict[str, Any]],
        system_prompt: str,
    ) -> Tuple[List[Dict[str, Any]], str]:
        """Split messages into Gemini chat history and the prompt to send.

        Returns:
            (history, prompt) where history holds every message but the
            last as ``{"role": "user"|"model", "parts": [text]}`` and prompt
            is the last message prefixed with the system prompt.
        """
        turns = cls.to_chat_messages(messages, assistant_role="model")
        history = [{"role": t["role"], "parts": [t["content"]]} for t in turns[:-1]]
        last_content = turns[-1]["content"] if turns else ""
        return history, f"{system_prompt}\n\nUser: {last_content}"

    async def generate_response(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Dict[str, Any]:
        started_at = time.monotonic()

        generative_model = self._genai.GenerativeModel(
            model,
            generation_config=self._genai.types.GenerationConfig(
                max_output_tokens=max_tokens,
                temperature=temperature,
            ),
        )
        history, prompt = self.build_chat_input(messages, system_prompt)
        chat = generative_model.start_chat(history=history)
        response = await chat.send_message_async(prompt)

        usage = getattr(response, "usage_metadata", None)
        return self._build_result(
            response.text,
            model,
            started_at,
            prompt_tokens=getattr(usage, "prompt_token_count", 0),
            completion_tokens=getattr(usage, "candidates_token_count", 0),
            total_tokens=getattr(usage, "total_token_count", 0),
        )
