"""AI reply generation: provider selection and system prompt assembly."""
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException

from ai_providers.base import BaseLLMProvider
from ai_providers.registry import get_llm_provider

from .config import Config, AI_PROVIDERS

logger = logging.getLogger("support.ai")

NO_PROVIDER_MESSAGE = "No AI provider available. Please configure API keys."

# Runtime model override, switchable by admins via /api/models/select
_runtime_provider = Config.AI_PROVIDER
_runtime_model = Config.DEFAULT_MODELS.get(Config.AI_PROVIDER)

_providers: Dict[str, BaseLLMProvider] = {}
_providers_lock = threading.Lock()


def get_runtime_provider_model() -> Tuple[str, str]:
    """Get the currently active provider and model (may be changed at runtime)."""
    return _runtime_provider, _runtime_model


def set_runtime_provider_model(provider: str, model: str) -> Tuple[str, str]:
    """Switch the active provider and model.

    Raises:
        HTTPException: 400 if the provider is unknown, unconfigured, or the
                       model is not offered for it
    """
    global _runtime_provider, _runtime_model

    provider = provider.lower()
    if provider not in AI_PROVIDERS:
        raise HTTPException(400, f"Unknown provider: {provider}")

    if provider not in Config.get_available_providers():
        raise HTTPException(400, f"Provider '{provider}' is not configured (missing API key)")

    allowed_models = Config.AVAILABLE_MODELS.get(provider, [])
    if model not in allowed_models:
        raise HTTPException(
            400, f"Model '{model}' not available for provider '{provider}'. Available: {allowed_models}"
        )

    try:
        _load_provider(provider)
    except ValueError as e:
        raise HTTPException(400, str(e))

    _runtime_provider = provider
    _runtime_model = model
    logger.info("Active AI model switched to %s/%s", provider, model)
    return provider, model


def list_models() -> Dict[str, Any]:
    """Describe every provider, its models and the active selection."""
    provider, model = get_runtime_provider_model()
    available = set(Config.get_available_providers())
    return {
        "current_provider": provider,
        "current_model": model,
        "providers": {
            name: {
                "available": name in available,
                "models": Config.AVAILABLE_MODELS.get(name, []),
                "default_model": Config.DEFAULT_MODELS.get(name, ""),
            }
            for name in AI_PROVIDERS
        },
    }


def _load_provider(name: str) -> BaseLLMProvider:
    """Return a cached provider instance, creating it on first use."""
    with _providers_lock:
        if name not in _providers:
            _providers[name] = get_llm_provider(name)
            logger.info("Initialised AI provider: %s", name)
        return _providers[name]


def get_provider(provider_name: Optional[str] = None) -> Tuple[BaseLLMProvider, str]:
    """Resolve the provider instance and model to use for a request.

    A requested provider that is not configured falls back to the active
    runtime provider.

    Raises:
        RuntimeError: If neither provider can be initialised.
    """
    default_provider, default_model = get_runtime_provider_model()

    if provider_name and provider_name != default_provider:
        try:
            return _load_provider(provider_name), Config.DEFAULT_MODELS.get(provider_name)
        except ValueError as e:
            logger.warning("Provider %s unavailable (%s), using %s", provider_name, e, default_provider)

    try:
        return _load_provider(default_provider), default_model
    except ValueError as e:
        logger.error("Default AI provider %s unavailable: %s", default_provider, e)
        raise RuntimeError(NO_PROVIDER_MESSAGE)


async def generate_response(
    messages: List[Dict[str, Any]],
    system_prompt: str,
    provider_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Ask the selected provider for a reply to *messages*.

    Returns the provider result: ``{"content", "metadata"}``.
    """
    provider, model = get_provider(provider_name)
    try:
        return await provider.generate_response(
            messages,
            system_prompt,
            model=model,
            temperature=Config.AI_TEMPERATURE,
            max_tokens=Config.AI_MAX_TOKENS,
        )
    except Exception as e:
        logger.error("AI generation failed (%s/%s): %s", provider.PROVIDER_NAME, model, e)
        raise


def _contact_lines() -> List[str]:
    lines = []
    if Config.SUPPORT_EMAIL:
        emails = [e.strip() for e in Config.SUPPORT_EMAIL.split(",") if e.strip()]
        lines.append(f"* Email at {' or '.join(emails)}")
    if Config.SUPPORT_PHONE:
        lines.append(f"* Phone at {Config.SUPPORT_PHONE}")
    if not lines:
        lines.append("* Use the contact options listed on our website")
    return lines


def build_system_prompt(context: Dict[str, Any]) -> str:
    """Assemble the assistant instructions and the retrieved company context.

    Args:
        context: {"documents": [{"title", "content_raw"}, ...],
                  "faqs": [{"question", "answer"}, ...]}

    Returns:
        The system prompt text.
    """
    documents = context.get("documents") or []
    faqs = context.get("faqs") or []
    company_name = context.get("company_name") or Config.COMPANY_NAME

    prompt = (
        f"You are a helpful customer support AI assistant for {company_name}. "
        "Your role is to assist customers with their questions and concerns in a friendly, professional manner.\n"
        "\n"
        "IMPORTANT GUIDELINES:\n"
        "1. ONLY answer questions based on the provided context below\n"
        "2. If the answer is not in the context, politely say you don't have that information "
        "and suggest contacting human support\n"
        "3. Be concise but thorough in your responses\n"
        "4. Use a friendly, professional tone\n"
        "5. If asked about topics outside customer support, politely redirect to relevant topics\n"
        "6. Never make up information that's not in the provided context\n"
        "7. Format responses clearly with bullet points or numbered lists when appropriate\n"
        "\n"
        "CONTACT INFORMATION FOR HUMAN SUPPORT:\n"
        + "\n".join(_contact_lines())
        + "\n\n"
    )

    if documents:
        prompt += "\n--- COMPANY DOCUMENTATION ---\n"
        for index, doc in enumerate(documents, 1):
            content = (doc.get("content_raw") or "")[:Config.CONTEXT_DOCUMENT_CHARS]
            prompt += f"\n[Document {index}: {doc.get('title', '')}]\n{content}\n"

    if faqs:
        prompt += "\n--- FREQUENTLY ASKED QUESTIONS ---\n"
        for index, faq in enumerate(faqs, 1):
            prompt += f"\nQ{index}: {faq.get('question', '')}\nA: {faq.get('answer', '')}\n"

    prompt += (
        "\n--- END OF CONTEXT ---\n\n"
        "Now, please help the customer with their question based ONLY on the information provided above."
    )
    return prompt
