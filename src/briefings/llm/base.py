"""LLM 抽象基类."""

import asyncio
import json
import logging
import random
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel

from briefings.core.errors import ApiError, ApiTimeoutError, ErrorCode, RateLimitError

logger = logging.getLogger(__name__)

ThinkingLevel = Literal["LOW", "MEDIUM", "HIGH"]

JSON_INSTRUCTION = (
    "\n\nIMPORTANT: Return your response as valid JSON only. "
    "Do not include any markdown formatting, code blocks, or explanations. "
    "Only output the raw JSON object."
)


class LLMConfig(BaseModel):
    """LLM 生成参数."""

    model: str
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_tokens: int = 8192
    thinking_level: ThinkingLevel | None = None


class GenerationResult(BaseModel):
    """生成结果."""

    text: str
    finish_reason: str | None = None


class RetryPolicy(BaseModel):
    """指数退避参数（秒）."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 32.0

    def backoff(self, attempt: int) -> float:
        """第 attempt 次重试前的等待时间（带抖动）."""
        delay = self.base_delay * (2**attempt) * (0.5 + random.random() * 0.5)
        return min(delay, self.max_delay)


class LLMProvider(ABC):
    """LLM 服务提供者抽象基类."""

    def __init__(self, config: LLMConfig, retry_policy: RetryPolicy | None = None) -> None:
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()

    def resolve_config(self, **overrides: Any) -> LLMConfig:
        """合并默认配置与单次调用参数."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return self.config.model_copy(update=values)

    @abstractmethod
    async def generate(self, prompt: str, config: LLMConfig | None = None) -> GenerationResult:
        """生成文本."""
        ...

    async def generate_json(self, prompt: str, config: LLMConfig | None = None) -> Any:
        """生成 JSON 并解析."""
        result = await self.generate(prompt + JSON_INSTRUCTION, config)
        text = strip_code_fence(result.text)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"JSON 解析失败: {result.text[:200]}")
            msg = "Failed to parse JSON response from LLM"
            raise ApiError(
                msg,
                ErrorCode.API_ERROR,
                500,
                context={"responsePreview": result.text[:200], "parseError": str(e)},
            ) from e

    async def generate_with_retry(
        self,
        prompt: str,
        config: LLMConfig | None = None,
        max_retries: int | None = None,
        on_retry: Callable[[int, Exception], None] | None = None,
    ) -> GenerationResult:
        """
        带重试的生成.

        4xx 客户端错误立即抛出，限流（429）和超时（408）除外。
        """
        retries = self.retry_policy.max_retries if max_retries is None else max_retries
        last_error: Exception | None = None

        for attempt in range(retries + 1):
            try:
                return await self.generate(prompt, config)
            except ApiError as e:
                last_error = e
                retryable_client_error = isinstance(e, RateLimitError | ApiTimeoutError)
                if 400 <= e.status_code < 500 and not retryable_client_error:
                    raise

            if attempt < retries:
                delay = self.retry_policy.backoff(attempt)
                if isinstance(last_error, RateLimitError) and last_error.retry_after:
                    delay = min(
                        max(delay, float(last_error.retry_after)),
                        self.retry_policy.max_delay,
                    )
                logger.warning(
                    f"LLM 调用重试 {attempt + 1}/{retries}，{delay:.1f}s 后: {last_error}"
                )
                if on_retry:
                    on_retry(attempt + 1, last_error)
                await asyncio.sleep(delay)

        if last_error is None:
            msg = "LLM generation failed after retries"
            raise ApiError(msg)
        raise last_error


def strip_code_fence(text: str) -> str:
    """移除 markdown 代码块标记."""
    text = text.strip()
    text = re.sub(r"^```[a-zA-Z]*\s*", "", text)
    text = re.sub(r"```\s*$", "", text)
    return text.strip()
