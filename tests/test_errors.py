"""测试错误分类."""

import asyncio

import httpx
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from briefings.core.errors import (
    ApiError,
    ApiTimeoutError,
    ConfigurationError,
    DatabaseError,
    ErrorClassification,
    ErrorCode,
    FeedError,
    RateLimitError,
    SummarizationError,
    ValidationError,
    classify_error,
    is_duplicate_error,
    is_retryable,
    serialize_error,
)


class TestClassifyError:
    """classify_error 测试."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (RateLimitError("slow down", retry_after=5), ErrorClassification.RATE_LIMIT),
            (ApiTimeoutError("timed out"), ErrorClassification.TRANSIENT),
            (ApiError("upstream broke", status_code=503), ErrorClassification.TRANSIENT),
            (ApiError("bad request", status_code=400), ErrorClassification.PERMANENT),
            (
                ApiError("missing", ErrorCode.API_NOT_FOUND, 404),
                ErrorClassification.PERMANENT,
            ),
            (
                ApiError("bad key", ErrorCode.API_AUTHENTICATION, 401),
                ErrorClassification.PERMANENT,
            ),
            (ValidationError("bad input"), ErrorClassification.PERMANENT),
            (ConfigurationError("no binding"), ErrorClassification.PERMANENT),
            (
                DatabaseError("dup", ErrorCode.DUPLICATE_ENTRY),
                ErrorClassification.PERMANENT,
            ),
            (DatabaseError("locked"), ErrorClassification.TRANSIENT),
            (FeedError("unreachable"), ErrorClassification.TRANSIENT),
            (
                FeedError("not xml", ErrorCode.FEED_PARSE_ERROR),
                ErrorClassification.PERMANENT,
            ),
        ],
    )
    def test_typed_errors(self, error: Exception, expected: ErrorClassification) -> None:
        """业务错误按类型和错误码分类."""
        assert classify_error(error) == expected

    def test_network_exceptions_are_transient(self) -> None:
        """网络层异常可重试."""
        request = httpx.Request("GET", "https://example.com")
        assert classify_error(httpx.ConnectError("refused", request=request)) == (
            ErrorClassification.TRANSIENT
        )
        assert classify_error(asyncio.TimeoutError()) == ErrorClassification.TRANSIENT
        assert classify_error(ConnectionResetError()) == ErrorClassification.TRANSIENT

    def test_unknown_error_message_fallback(self) -> None:
        """未知异常按消息文本兜底."""
        assert classify_error(RuntimeError("socket timed out")) == ErrorClassification.TRANSIENT
        assert classify_error(RuntimeError("ECONNRESET")) == ErrorClassification.TRANSIENT
        assert classify_error(RuntimeError("boom")) == ErrorClassification.PERMANENT

    def test_raw_database_exceptions(self) -> None:
        """未包装的数据库异常：锁和连接问题重试，约束冲突不重试."""
        locked = OperationalError("SELECT 1", {}, Exception("database is locked"))
        unique = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        assert classify_error(locked) == ErrorClassification.TRANSIENT
        assert is_retryable(locked)
        assert classify_error(unique) == ErrorClassification.PERMANENT
        assert not is_retryable(unique)

    def test_wrapped_error_uses_original(self) -> None:
        """SummarizationError 按原始错误分类."""
        wrapped_limit = SummarizationError("failed", original_error=RateLimitError("429"))
        wrapped_auth = SummarizationError(
            "failed",
            original_error=ApiError("bad key", ErrorCode.API_AUTHENTICATION, 401),
        )
        bare = SummarizationError("failed")

        assert classify_error(wrapped_limit) == ErrorClassification.RATE_LIMIT
        assert classify_error(wrapped_auth) == ErrorClassification.PERMANENT
        assert classify_error(bare) == ErrorClassification.TRANSIENT

    def test_is_retryable(self) -> None:
        """限流和临时错误可重试."""
        assert is_retryable(RateLimitError("429"))
        assert is_retryable(ApiTimeoutError("slow"))
        assert not is_retryable(ValidationError("bad"))


class TestHelpers:
    """辅助函数测试."""

    def test_is_duplicate_error(self) -> None:
        """只识别 DUPLICATE_ENTRY."""
        assert is_duplicate_error(DatabaseError("dup", ErrorCode.DUPLICATE_ENTRY))
        assert not is_duplicate_error(DatabaseError("other"))
        assert not is_duplicate_error(ValueError("dup"))

    def test_serialize_error(self) -> None:
        """序列化保留错误码和原始错误."""
        error = SummarizationError(
            "failed",
            original_error=ValueError("root cause"),
            context={"feedName": "A"},
        )
        data = serialize_error(error)

        assert data["code"] == "SUMMARIZATION_ERROR"
        assert data["context"] == {"feedName": "A"}
        assert data["originalError"] == {"name": "ValueError", "message": "root cause"}
        assert serialize_error(KeyError("x"))["name"] == "KeyError"
