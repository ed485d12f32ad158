"""Gemini LLM Provider（REST 接口）."""

import logging
from typing import Any

import httpx

from briefings.core.errors import (
    ApiError,
    ApiTimeoutError,
    ErrorCode,
    RateLimitError,
)
from briefings.llm.base import GenerationResult, LLMConfig, LLMProvider, RetryPolicy

logger = logging.getLogger(__name__)

# thinking 等级对应的思考 token 预算
THINKING_BUDGETS = {
    "LOW": 1024,
    "MEDIUM": 8192,
    "HIGH": 24576,
}

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

TRUNCATION_MARKER = "\n\n[Response truncated due to length]"


class GeminiProvider(LLMProvider):
    """Google Gemini generateContent 接口."""

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, retry_policy)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def generate(self, prompt: str, config: LLMConfig | None = None) -> GenerationResult:
        """调用 generateContent."""
        cfg = config or self.config
        logger.info(f"[Gemini] 生成内容: model={cfg.model}, prompt 长度={len(prompt)}")

        generation_config: dict[str, Any] = {
            "temperature": cfg.temperature,
            "topP": cfg.top_p,
            "topK": cfg.top_k,
            "maxOutputTokens": cfg.max_tokens,
        }
        if cfg.thinking_level:
            generation_config["thinkingConfig"] = {
                "thinkingBudget": THINKING_BUDGETS[cfg.thinking_level]
            }

        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        }

        data = await self._request(cfg.model, body)
        result = extract_response(data)

        logger.info(
            f"[Gemini] 生成完成: {len(result.text)} 字符, finish={result.finish_reason}"
        )
        return result

    async def _request(self, model: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/models/{model}:generateContent"
        context = {"service": "gemini", "operation": "generateContent", "model": model}

        try:
            response = await self._client.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            msg = "Gemini API request timed out"
            raise ApiTimeoutError(msg, context={**context, "timeout": self.timeout}) from e
        except httpx.HTTPError as e:
            msg = f"Gemini API request failed: {e}"
            raise ApiError(msg, ErrorCode.API_ERROR, 500, context) from e

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            text = response.text
            if response.status_code == 524 or "error code: 524" in text:
                msg = "Gateway timeout (524): origin server did not respond in time"
                raise ApiTimeoutError(msg, context=context)
            msg = f"Unexpected response format from API: {text[:100]}"
            raise ApiError(msg, ErrorCode.API_ERROR, response.status_code, context)

        data: dict[str, Any] = response.json()

        if data.get("error"):
            raise create_api_error(data["error"], response.status_code)

        if response.is_error:
            msg = f"Gemini API request failed: {response.reason_phrase}"
            raise ApiError(msg, ErrorCode.API_ERROR, response.status_code, context)

        return data


def create_api_error(error: dict[str, Any], status_code: int) -> ApiError:
    """根据响应错误体构造异常."""
    message = error.get("message") or "Gemini API error"
    context = {"service": "gemini", "operation": "generateContent"}

    if status_code == 429 or error.get("code") == 429:
        return RateLimitError(
            f"Gemini API rate limit exceeded: {message}",
            retry_after=extract_retry_after(error),
            context=context,
        )

    code = ErrorCode.API_ERROR
    if status_code == 401 or error.get("status") == "UNAUTHENTICATED":
        code = ErrorCode.API_AUTHENTICATION
    elif status_code == 404:
        code = ErrorCode.API_NOT_FOUND

    return ApiError(message, code, status_code, context)


def extract_retry_after(error: dict[str, Any]) -> int | None:
    """从错误详情中取 retry-after."""
    for detail in error.get("details") or []:
        metadata = detail.get("metadata") or {}
        value = metadata.get("retry-after")
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


def extract_response(data: dict[str, Any]) -> GenerationResult:
    """从响应中提取文本."""
    context = {"service": "gemini", "operation": "extractResponse"}
    candidates = data.get("candidates") or []
    if not candidates:
        msg = "No candidates in Gemini response"
        raise ApiError(msg, ErrorCode.API_ERROR, 500, context)

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    parts = (candidate.get("content") or {}).get("parts") or []
    text = parts[0].get("text", "") if parts else ""

    if not text and finish_reason == "MAX_TOKENS":
        partial = "".join(part.get("text", "") for part in parts)
        if partial:
            return GenerationResult(text=partial + TRUNCATION_MARKER, finish_reason=finish_reason)
        msg = "Response truncated: Maximum token limit reached. Try reducing input size."
        raise ApiError(msg, ErrorCode.API_ERROR, 500, context)

    if not text:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            msg = f"Content blocked by Gemini: {block_reason}"
            raise ApiError(msg, ErrorCode.API_ERROR, 400, context)
        msg = "No text content in Gemini response"
        raise ApiError(msg, ErrorCode.API_ERROR, 500, context)

    return GenerationResult(text=text, finish_reason=finish_reason)
