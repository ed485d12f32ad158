"""OpenAI LLM Provider."""

import openai
from openai import AsyncOpenAI

from briefings.core.errors import ApiError, ApiTimeoutError, ErrorCode, RateLimitError
from briefings.llm.base import GenerationResult, LLMConfig, LLMProvider, RetryPolicy


class OpenAIProvider(LLMProvider):
    """OpenAI API Provider（支持所有 OpenAI 兼容接口）.

    该接口没有 thinking 参数，thinking_level 被忽略。
    """

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(config, retry_policy)
        # 重试由 generate_with_retry 负责
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def generate(self, prompt: str, config: LLMConfig | None = None) -> GenerationResult:
        """调用 chat.completions."""
        cfg = config or self.config
        try:
            response = await self.client.chat.completions.create(
                model=cfg.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=cfg.temperature,
                top_p=cfg.top_p,
                max_tokens=cfg.max_tokens,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

        if not response.choices:
            msg = "No choices in OpenAI response"
            raise ApiError(msg, ErrorCode.API_ERROR, 500, {"service": "openai"})

        choice = response.choices[0]
        content = choice.message.content or ""
        if not content:
            msg = "No text content in OpenAI response"
            raise ApiError(msg, ErrorCode.API_ERROR, 500, {"service": "openai"})

        return GenerationResult(text=content, finish_reason=choice.finish_reason)


def map_openai_error(error: openai.OpenAIError) -> ApiError:
    """将 openai 异常映射到统一错误分类."""
    context = {"service": "openai", "operation": "chat.completions"}

    if isinstance(error, openai.APITimeoutError):
        return ApiTimeoutError("OpenAI request timed out", context=context)
    if isinstance(error, openai.APIConnectionError):
        return ApiError(f"OpenAI connection failed: {error}", ErrorCode.API_ERROR, 500, context)
    if isinstance(error, openai.RateLimitError):
        retry_after = error.response.headers.get("retry-after")
        return RateLimitError(
            f"OpenAI rate limit exceeded: {error.message}",
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            context=context,
        )
    if isinstance(error, openai.AuthenticationError):
        return ApiError(error.message, ErrorCode.API_AUTHENTICATION, 401, context)
    if isinstance(error, openai.NotFoundError):
        return ApiError(error.message, ErrorCode.API_NOT_FOUND, 404, context)
    if isinstance(error, openai.APIStatusError):
        return ApiError(error.message, ErrorCode.API_ERROR, error.status_code, context)
    return ApiError(str(error), ErrorCode.API_ERROR, 500, context)
