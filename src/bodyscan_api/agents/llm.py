"""Chat model used to phrase daily scan insights (OpenAI or Gemini)."""

import logging

from langchain_core.language_models import BaseChatModel

from bodyscan_api.core.config import LLMProvider, Settings, get_settings

logger = logging.getLogger(__name__)


def get_insight_llm(settings: Settings | None = None) -> BaseChatModel | None:
    """
    Build the insight model, or None when the provider has no API key.

    Without a model, InsightWriter produces its templated summary. Client
    side retries are disabled: the pipeline's retry policy owns attempts
    and backoff, so one insight call is one request.

    Args:
        settings: Application settings (uses default if not provided)

    Raises:
        ValueError: If the provider is unsupported
    """
    if settings is None:
        settings = get_settings()

    if not settings.is_llm_configured:
        logger.info(
            f"{settings.llm_provider.value} has no API key; insights will use templated text"
        )
        return None

    match settings.llm_provider:
        case LLMProvider.OPENAI:
            from langchain_openai import ChatOpenAI

            return ChatOpenAI(
                model=settings.openai_model,
                api_key=settings.openai_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.insight_max_tokens,
                timeout=settings.llm_timeout,
                max_retries=0,
            )
        case LLMProvider.GEMINI:
            from langchain_google_genai import ChatGoogleGenerativeAI

            return ChatGoogleGenerativeAI(
                model=settings.gemini_model,
                google_api_key=settings.google_api_key,
                temperature=settings.llm_temperature,
                max_output_tokens=settings.insight_max_tokens,
                timeout=settings.llm_timeout,
                max_retries=0,
            )
        case _:
            raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")


def get_llm_info(settings: Settings | None = None) -> dict:
    """Provider summary for the health endpoint (never includes keys)."""
    if settings is None:
        settings = get_settings()

    model = (
        settings.gemini_model
        if settings.llm_provider == LLMProvider.GEMINI
        else settings.openai_model
    )
    return {
        "provider": settings.llm_provider.value,
        "model": model,
        "configured": settings.is_llm_configured,
        "insight_source": "llm" if settings.is_llm_configured else "template",
    }
