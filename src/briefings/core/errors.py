"""错误分类与重试判定."""

import asyncio
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class ErrorCode(str, Enum):
    """错误码."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    API_ERROR = "API_ERROR"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_TIMEOUT = "API_TIMEOUT"
    API_AUTHENTICATION = "API_AUTHENTICATION"
    API_NOT_FOUND = "API_NOT_FOUND"

    QUEUE_ERROR = "QUEUE_ERROR"
    QUEUE_MESSAGE_INVALID = "QUEUE_MESSAGE_INVALID"
    QUEUE_SEND_FAILED = "QUEUE_SEND_FAILED"

    DATABASE_ERROR = "DATABASE_ERROR"
    DATABASE_CONNECTION = "DATABASE_CONNECTION"
    DATABASE_CONSTRAINT = "DATABASE_CONSTRAINT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    FEED_FETCH_ERROR = "FEED_FETCH_ERROR"
    FEED_PARSE_ERROR = "FEED_PARSE_ERROR"
    SUMMARIZATION_ERROR = "SUMMARIZATION_ERROR"
    PUBLISH_ERROR = "PUBLISH_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"


class ErrorClassification(str, Enum):
    """错误分类."""

    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    RATE_LIMIT = "RATE_LIMIT"


class BriefingsError(Exception):
    """业务错误基类."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        status_code: int = 500,
        is_operational: bool = True,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.is_operational = is_operational
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """序列化为字典（用于日志和响应）."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "statusCode": self.status_code,
            "isOperational": self.is_operational,
            "context": self.context,
        }


class ValidationError(BriefingsError):
    """输入校验失败."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, 400, True, context)


class ConfigurationError(BriefingsError):
    """配置缺失或错误."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, 500, False, context)


class ApiError(BriefingsError):
    """上游 API 错误（LLM、邮件等）."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.API_ERROR,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, status_code, True, context)


class RateLimitError(ApiError):
    """上游限流."""

    def __init__(
        self,
        message: str,
        retry_after: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.API_RATE_LIMIT, 429, context)
        self.retry_after = retry_after


class ApiTimeoutError(ApiError):
    """上游请求超时."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.API_TIMEOUT, 408, context)


class QueueError(BriefingsError):
    """队列错误."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.QUEUE_ERROR,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, 500, True, context)


class DatabaseError(BriefingsError):
    """数据库错误."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, 500, True, context)


class FeedError(BriefingsError):
    """Feed 抓取/解析错误.

    解析失败说明 feed 本身结构无效，不重试；抓取失败可重试。
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FEED_FETCH_ERROR,
        context: dict[str, Any] | None = None,
    ) -> None:
        status_code = 422 if code == ErrorCode.FEED_PARSE_ERROR else 502
        super().__init__(message, code, status_code, True, context)


class SummarizationError(BriefingsError):
    """摘要生成失败，保留原始错误."""

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.SUMMARIZATION_ERROR, 500, True, context)
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.original_error is not None:
            data["originalError"] = serialize_error(self.original_error)
        return data


# 永久错误码：重试也不会成功
PERMANENT_CODES = frozenset(
    {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.CONFIGURATION_ERROR,
        ErrorCode.API_AUTHENTICATION,
        ErrorCode.API_NOT_FOUND,
        ErrorCode.QUEUE_MESSAGE_INVALID,
        ErrorCode.DATABASE_CONSTRAINT,
        ErrorCode.DUPLICATE_ENTRY,
        ErrorCode.FEED_PARSE_ERROR,
    }
)

# 网络层异常类型
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.TransportError,
    asyncio.TimeoutError,
    ConnectionError,
)

# 仅用于无法识别类型的第三方异常
TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "connection reset",
    "network",
)


def classify_error(error: BaseException) -> ErrorClassification:
    """根据错误类型分类."""
    if isinstance(error, RateLimitError):
        return ErrorClassification.RATE_LIMIT

    # 包装错误按原始错误分类
    if isinstance(error, SummarizationError) and error.original_error is not None:
        return classify_error(error.original_error)

    if isinstance(error, BriefingsError):
        if error.code in PERMANENT_CODES:
            return ErrorClassification.PERMANENT
        if isinstance(error, ApiTimeoutError):
            return ErrorClassification.TRANSIENT
        if 400 <= error.status_code < 500:
            return ErrorClassification.PERMANENT
        return ErrorClassification.TRANSIENT

    if isinstance(error, PydanticValidationError):
        return ErrorClassification.PERMANENT

    # 未包装的数据库异常：约束冲突不重试，其余（锁、连接）重试
    if isinstance(error, IntegrityError):
        return ErrorClassification.PERMANENT
    if isinstance(error, SQLAlchemyError):
        return ErrorClassification.TRANSIENT

    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return ErrorClassification.TRANSIENT

    message = str(error).lower()
    if any(pattern in message for pattern in TRANSIENT_PATTERNS):
        return ErrorClassification.TRANSIENT

    return ErrorClassification.PERMANENT


def is_retryable(error: BaseException) -> bool:
    """队列消费者的重试判定."""
    return classify_error(error) != ErrorClassification.PERMANENT


def is_duplicate_error(error: BaseException) -> bool:
    """是否为重复写入."""
    return isinstance(error, BriefingsError) and error.code == ErrorCode.DUPLICATE_ENTRY


def serialize_error(error: BaseException) -> dict[str, Any]:
    """序列化任意异常."""
    if isinstance(error, BriefingsError):
        return error.to_dict()
    return {"name": type(error).__name__, "message": str(error)}
