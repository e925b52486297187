import asyncio

import pytest
from fastapi import HTTPException

from supportdesk import ai_service
from supportdesk.config import Config


class EchoProvider:
    PROVIDER_NAME = "echo"

    def __init__(self):
        self.calls = []

    async def generate_response(self, messages, system_prompt, model, temperature=0.7, max_tokens=2048):
        self.calls.append((messages, system_prompt, model))
        return {"content": messages[-1]["content"], "metadata": {"model": model, "provider": "echo"}}


@pytest.fixture(autouse=True)
def reset_runtime(monkeypatch):
    monkeypatch.setattr(ai_service, "_runtime_provider", "openai")
    monkeypatch.setattr(ai_service, "_runtime_model", "gpt-4o-mini")
    monkeypatch.setattr(ai_service, "_providers", {})


def test_system_prompt_includes_context():
    prompt = ai_service.build_system_prompt({
        "documents": [{"title": "Refund Policy", "content_raw": "Refunds within 30 days."}],
        "faqs": [{"question": "Do you offer refunds?", "answer": "Yes."}],
        "company_name": "Acme",
    })

    assert "customer support AI assistant for Acme" in prompt
    assert "--- COMPANY DOCUMENTATION ---" in prompt
    assert "[Document 1: Refund Policy]\nRefunds within 30 days." in prompt
    assert "Q1: Do you offer refunds?\nA: Yes." in prompt
    assert prompt.endswith("based ONLY on the information provided above.")


def test_system_prompt_without_context_has_no_sections():
    prompt = ai_service.build_system_prompt({"documents": [], "faqs": []})
    assert "COMPANY DOCUMENTATION" not in prompt
    assert "FREQUENTLY ASKED QUESTIONS" not in prompt
    assert "--- END OF CONTEXT ---" in prompt


def test_system_prompt_truncates_documents(monkeypatch):
    monkeypatch.setattr(Config, "CONTEXT_DOCUMENT_CHARS", 10)
    prompt = ai_service.build_system_prompt({"documents": [{"title": "Long", "content_raw": "x" * 50}]})
    assert "x" * 10 + "\n" in prompt
    assert "x" * 11 not in prompt


def test_contact_lines_from_config(monkeypatch):
    monkeypatch.setattr(Config, "SUPPORT_EMAIL", "help@acme.test, billing@acme.test")
    monkeypatch.setattr(Config, "SUPPORT_PHONE", "+1 555 0100")
    prompt = ai_service.build_system_prompt({})
    assert "* Email at help@acme.test or billing@acme.test" in prompt
    assert "* Phone at +1 555 0100" in prompt


def test_get_provider_falls_back_to_runtime_provider(monkeypatch):
    echo = EchoProvider()

    def load(name):
        if name == "anthropic":
            raise ValueError("No API key configured for provider 'anthropic'")
        return echo

    monkeypatch.setattr(ai_service, "_load_provider", load)
    provider, model = ai_service.get_provider("anthropic")
    assert provider is echo
    assert model == "gpt-4o-mini"


def test_get_provider_without_any_key(monkeypatch):
    def load(name):
        raise ValueError("missing key")

    monkeypatch.setattr(ai_service, "_load_provider", load)
    with pytest.raises(RuntimeError, match="No AI provider available"):
        ai_service.get_provider()


def test_generate_response_uses_configured_limits(monkeypatch):
    echo = EchoProvider()
    monkeypatch.setattr(ai_service, "_load_provider", lambda name: echo)

    result = asyncio.run(ai_service.generate_response([{"type": "user", "content": "hi"}], "SYS"))

    assert result["content"] == "hi"
    assert echo.calls == [([{"type": "user", "content": "hi"}], "SYS", "gpt-4o-mini")]


def test_select_unknown_provider():
    with pytest.raises(HTTPException) as exc:
        ai_service.set_runtime_provider_model("ollama", "llama3")
    assert exc.value.status_code == 400


def test_select_unconfigured_provider(monkeypatch):
    monkeypatch.setattr(Config, "get_available_providers", classmethod(lambda cls: ["openai"]))
    with pytest.raises(HTTPException) as exc:
        ai_service.set_runtime_provider_model("anthropic", "claude-3-5-haiku-latest")
    assert "not configured" in exc.value.detail


def test_select_model_switches_runtime(monkeypatch):
    monkeypatch.setattr(Config, "get_available_providers", classmethod(lambda cls: ["deepseek"]))
    monkeypatch.setattr(ai_service, "_load_provider", lambda name: EchoProvider())
    model = Config.AVAILABLE_MODELS["deepseek"][0]

    assert ai_service.set_runtime_provider_model("DeepSeek", model) == ("deepseek", model)
    assert ai_service.get_runtime_provider_model() == ("deepseek", model)


def test_select_model_not_offered(monkeypatch):
    monkeypatch.setattr(Config, "get_available_providers", classmethod(lambda cls: ["openai"]))
    with pytest.raises(HTTPException) as exc:
        ai_service.set_runtime_provider_model("openai", "not-a-model")
    assert "not available" in exc.value.detail
