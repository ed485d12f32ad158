"""LLM 抽象层."""

from briefings.llm.base import GenerationResult, LLMConfig, LLMProvider, RetryPolicy
from briefings.llm.factory import create_llm_provider
from briefings.llm.gemini import GeminiProvider
from briefings.llm.openai import OpenAIProvider
from briefings.llm.prompts import PromptLibrary, get_prompt_library, render_prompt

__all__ = [
    "GeminiProvider",
    "GenerationResult",
    "LLMConfig",
    "LLMProvider",
    "OpenAIProvider",
    "PromptLibrary",
    "RetryPolicy",
    "create_llm_provider",
    "get_prompt_library",
    "render_prompt",
]
