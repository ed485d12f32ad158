"""测试 LLM Provider 与重试."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from briefings.config import Settings
from briefings.core.context import PipelineContext
from briefings.core.errors import ApiError, ApiTimeoutError, ErrorCode, RateLimitError
from briefings.core.messages import DAILY_SUMMARY_PROCESSOR_QUEUE
from briefings.core.queue import QueueBroker, QueueMessage
from briefings.llm.base import LLMConfig, RetryPolicy
from briefings.llm.factory import create_llm_provider
from briefings.llm.gemini import TRUNCATION_MARKER, GeminiProvider, extract_response
from briefings.llm.openai import OpenAIProvider
from briefings.models.article import Article
from briefings.queues.daily_processor import handle_daily_processor_batch

from conftest import FakeLLMProvider

RATE_LIMIT_BODY = {
    "error": {
        "code": 429,
        "message": "Resource exhausted",
        "status": "RESOURCE_EXHAUSTED",
        "details": [{"metadata": {"retry-after": "7"}}],
    }
}


def ok_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}


def make_gemini(handler, max_retries: int = 2) -> GeminiProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiProvider(
        LLMConfig(model="gemini-test"),
        api_key="key",
        base_url="https://gemini.test/v1beta",
        retry_policy=RetryPolicy(max_retries=max_retries),
        client=client,
    )


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """跳过退避等待."""
    sleep = AsyncMock()
    monkeypatch.setattr("briefings.llm.base.asyncio.sleep", sleep)
    return sleep


class TestGeminiProvider:
    """Gemini REST 调用."""

    @pytest.mark.asyncio
    async def test_generate_request_body(self) -> None:
        """请求体包含生成参数和思考预算."""
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=ok_body("hello"))

        provider = make_gemini(handler)
        config = provider.resolve_config(temperature=1.0, thinking_level="LOW", max_tokens=100)
        result = await provider.generate("prompt", config)

        assert result.text == "hello"
        assert "/models/gemini-test:generateContent" in captured["url"]
        generation = captured["body"]["generationConfig"]
        assert generation["temperature"] == 1.0
        assert generation["maxOutputTokens"] == 100
        assert generation["thinkingConfig"] == {"thinkingBudget": 1024}
        assert captured["body"]["contents"][0]["parts"][0]["text"] == "prompt"

    @pytest.mark.asyncio
    async def test_rate_limit_error(self) -> None:
        """429 映射为 RateLimitError 并带 retry_after."""
        provider = make_gemini(lambda request: httpx.Response(429, json=RATE_LIMIT_BODY))

        with pytest.raises(RateLimitError) as exc_info:
            await provider.generate("prompt")
        assert exc_info.value.retry_after == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error", "code"),
        [
            (401, {"message": "bad key", "status": "UNAUTHENTICATED"}, ErrorCode.API_AUTHENTICATION),
            (404, {"message": "no model"}, ErrorCode.API_NOT_FOUND),
            (500, {"message": "internal"}, ErrorCode.API_ERROR),
        ],
    )
    async def test_error_codes(self, status: int, error: dict, code: ErrorCode) -> None:
        """错误体按状态码映射."""
        provider = make_gemini(lambda request: httpx.Response(status, json={"error": error}))

        with pytest.raises(ApiError) as exc_info:
            await provider.generate("prompt")
        assert exc_info.value.code == code
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_gateway_timeout(self) -> None:
        """非 JSON 的 524 视为超时."""
        provider = make_gemini(lambda request: httpx.Response(524, text="error code: 524"))

        with pytest.raises(ApiTimeoutError):
            await provider.generate("prompt")

    @pytest.mark.asyncio
    async def test_network_timeout(self) -> None:
        """网络超时映射为 ApiTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ApiTimeoutError):
            await make_gemini(handler).generate("prompt")


class TestExtractResponse:
    """响应解析."""

    def test_no_candidates(self) -> None:
        """没有候选结果."""
        with pytest.raises(ApiError, match="No candidates"):
            extract_response({"candidates": []})

    def test_max_tokens_partial(self) -> None:
        """达到 token 上限时返回已生成部分并加标记."""
        data = {
            "candidates": [
                {
                    "content": {"parts": [{"text": ""}, {"text": "partial"}]},
                    "finishReason": "MAX_TOKENS",
                }
            ]
        }
        result = extract_response(data)
        assert result.text == "partial" + TRUNCATION_MARKER

    def test_blocked(self) -> None:
        """被安全策略拦截为 400."""
        data = {"candidates": [{"content": {"parts": []}}], "promptFeedback": {"blockReason": "SAFETY"}}
        with pytest.raises(ApiError) as exc_info:
            extract_response(data)
        assert exc_info.value.status_code == 400

    def test_empty_text(self) -> None:
        """空文本."""
        with pytest.raises(ApiError, match="No text content"):
            extract_response({"candidates": [{"content": {"parts": [{"text": ""}]}}]})


class TestGenerateWithRetry:
    """重试策略."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, no_sleep: AsyncMock) -> None:
        """5xx 重试后成功."""
        provider = FakeLLMProvider([ApiError("down", status_code=503), "recovered"])

        result = await provider.generate_with_retry("prompt")
        assert result.text == "recovered"
        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, no_sleep: AsyncMock) -> None:
        """4xx 立即抛出."""
        provider = FakeLLMProvider([ApiError("bad", ErrorCode.API_AUTHENTICATION, 401), "never"])

        with pytest.raises(ApiError):
            await provider.generate_with_retry("prompt")
        assert len(provider.prompts) == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_raised(self, no_sleep: AsyncMock) -> None:
        """429 用尽重试后抛出 RateLimitError，等待至少 retry_after 秒."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, json=RATE_LIMIT_BODY)

        on_retry_attempts: list[int] = []
        provider = make_gemini(handler, max_retries=2)

        with pytest.raises(RateLimitError):
            await provider.generate_with_retry(
                "prompt", on_retry=lambda attempt, error: on_retry_attempts.append(attempt)
            )

        assert calls == 3
        assert on_retry_attempts == [1, 2]
        assert all(call.args[0] >= 7 for call in no_sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_generate_json(self) -> None:
        """JSON 输出去掉代码块后解析."""
        provider = FakeLLMProvider(['```json\n["a", "b"]\n```', "not json"])

        assert await provider.generate_json("topics") == ["a", "b"]
        with pytest.raises(ApiError):
            await provider.generate_json("topics")


@pytest.mark.asyncio
async def test_rate_limited_summary_is_retried_by_queue(
    context: PipelineContext,
    broker: QueueBroker,
    sample_articles: list[Article],
    no_sleep: AsyncMock,
) -> None:
    """LLM 持续限流时，processor 消息保持未确认状态等待重投."""
    context.llm = make_gemini(lambda request: httpx.Response(429, json=RATE_LIMIT_BODY))
    message = QueueMessage(
        body={
            "date": "2025-06-01",
            "feedName": "A",
            "articleIds": ["article-a1", "article-a2"],
        }
    )

    await handle_daily_processor_batch([message], context)

    assert message.state == "retry"
    queue = broker.get(DAILY_SUMMARY_PROCESSOR_QUEUE)
    queue.settle([message])
    assert queue.size == 1


def test_factory_selects_provider(settings: Settings) -> None:
    """按配置选择 Provider."""
    assert isinstance(create_llm_provider(settings), GeminiProvider)

    openai_settings = settings.model_copy(
        update={"llm_provider": "openai", "openai_api_key": "sk-test"}
    )
    provider = create_llm_provider(openai_settings)
    assert isinstance(provider, OpenAIProvider)
    assert provider.config.model == openai_settings.openai_model
