import asyncio
from types import SimpleNamespace

import pytest

from ai_providers import get_llm_provider, list_llm_providers
from ai_providers.base import BaseLLMProvider
from ai_providers.llm_anthropic import AnthropicLLMProvider
from ai_providers.llm_deepseek import DeepSeekLLMProvider
from ai_providers.llm_google import GoogleLLMProvider
from ai_providers.llm_openai import OpenAILLMProvider
from supportdesk.config import Config

HISTORY = [
    {"type": "ai", "content": "Welcome! How can I help?"},
    {"type": "user", "content": "Where is my order?"},
    {"type": "ai", "content": "Let me check."},
    {"type": "user", "content": "Order 42"},
]


class RecordingCreate:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        return self.response


def test_to_chat_messages_maps_types():
    turns = BaseLLMProvider.to_chat_messages(HISTORY)
    assert [t["role"] for t in turns] == ["assistant", "user", "assistant", "user"]
    assert BaseLLMProvider.to_chat_messages([{"type": "system", "content": "x"}], "model")[0]["role"] == "model"


def test_google_chat_input_splits_history_and_prompt():
    history, prompt = GoogleLLMProvider.build_chat_input(HISTORY, "SYSTEM")
    assert history[0] == {"role": "model", "parts": ["Welcome! How can I help?"]}
    assert len(history) == 3
    assert prompt == "SYSTEM\n\nUser: Order 42"


def test_anthropic_turns_start_with_user():
    turns = AnthropicLLMProvider._conversation_turns(HISTORY)
    assert turns[0] == {"role": "user", "content": "Where is my order?"}
    assert len(turns) == 3


def test_openai_provider_sends_system_prompt_first():
    provider = OpenAILLMProvider(api_key="sk-test")
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="It ships today."))],
        usage=SimpleNamespace(prompt_tokens=30, completion_tokens=5, total_tokens=35),
    )
    create = RecordingCreate(response)
    provider._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    result = asyncio.run(provider.generate_response(HISTORY, "SYSTEM", model="gpt-4o", max_tokens=100))

    assert create.kwargs["messages"][0] == {"role": "system", "content": "SYSTEM"}
    assert create.kwargs["max_tokens"] == 100
    assert result["content"] == "It ships today."
    assert result["metadata"]["provider"] == "openai"
    assert result["metadata"]["tokens_used"] == {"prompt": 30, "completion": 5, "total": 35}


def test_anthropic_provider_joins_text_blocks():
    provider = AnthropicLLMProvider(api_key="test-key")
    response = SimpleNamespace(
        content=[SimpleNamespace(text="Part one. "), SimpleNamespace(text="Part two.")],
        usage=SimpleNamespace(input_tokens=12, output_tokens=4),
    )
    create = RecordingCreate(response)
    provider._client = SimpleNamespace(messages=SimpleNamespace(create=create))

    result = asyncio.run(provider.generate_response(HISTORY, "SYSTEM", model="claude-3-haiku-20240307"))

    assert create.kwargs["system"] == "SYSTEM"
    assert result["content"] == "Part one. Part two."
    assert result["metadata"]["tokens_used"]["total"] == 16


def test_deepseek_reports_its_own_name():
    provider = DeepSeekLLMProvider(api_key="ds-test", base_url="https://api.deepseek.com/v1")
    assert provider.PROVIDER_NAME == "deepseek"
    assert isinstance(provider, OpenAILLMProvider)


def test_registry_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        get_llm_provider("ollama")


def test_registry_requires_api_key(monkeypatch):
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", "")
    with pytest.raises(ValueError, match="No API key"):
        get_llm_provider("anthropic")


def test_registry_builds_configured_provider(monkeypatch):
    monkeypatch.setattr(Config, "DEEPSEEK_API_KEY", "ds-test")
    provider = get_llm_provider("deepseek")
    assert isinstance(provider, DeepSeekLLMProvider)
    assert list_llm_providers()["deepseek"]["available"] is True
