"""LLM Provider 工厂."""

from briefings.config import Settings
from briefings.llm.base import LLMConfig, LLMProvider, RetryPolicy
from briefings.llm.gemini import GeminiProvider
from briefings.llm.openai import OpenAIProvider


def create_llm_provider(settings: Settings) -> LLMProvider:
    """根据配置创建 LLM Provider."""
    retry_policy = RetryPolicy(max_retries=settings.gemini_max_retries)

    if settings.llm_provider == "openai":
        config = LLMConfig(model=settings.openai_model)
        return OpenAIProvider(
            config=config,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            retry_policy=retry_policy,
        )

    # 默认使用 Gemini
    config = LLMConfig(model=settings.daily_summary_model)
    return GeminiProvider(
        config=config,
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_base_url,
        timeout=settings.gemini_timeout_seconds,
        retry_policy=retry_policy,
    )
