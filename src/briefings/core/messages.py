"""队列消息定义.

每条消息都带 requestId（链路追踪）和 ISO 时间戳，字段名与线上格式保持 camelCase。
"""

import re
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, TypeVar
from urllib.parse import urlparse
from uuid import UUID, uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from briefings.core.errors import ErrorCode, ValidationError

FEED_FETCH_QUEUE = "briefings-feed-fetch"
DAILY_SUMMARY_INITIATOR_QUEUE = "briefings-daily-summary-initiator"
DAILY_SUMMARY_PROCESSOR_QUEUE = "briefings-daily-summary-processor"
WEEKLY_DIGEST_QUEUE = "briefings-weekly-digest"

QUEUE_NAMES = (
    FEED_FETCH_QUEUE,
    DAILY_SUMMARY_INITIATOR_QUEUE,
    DAILY_SUMMARY_PROCESSOR_QUEUE,
    WEEKLY_DIGEST_QUEUE,
)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _check_date(value: str) -> str:
    if not _DATE_RE.match(value):
        msg = "Date must be in YYYY-MM-DD format"
        raise ValueError(msg)
    # 同时校验日期本身合法
    datetime.strptime(value, "%Y-%m-%d")
    return value


DateString = Annotated[str, AfterValidator(_check_date)]


def _check_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = "Invalid feed URL"
        raise ValueError(msg)
    return value


UrlString = Annotated[str, AfterValidator(_check_url)]


class QueueMessageBase(BaseModel):
    """消息公共字段."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(default_factory=lambda: str(uuid4()), alias="requestId")
    timestamp: str = Field(default_factory=_now_iso)

    @field_validator("request_id")
    @classmethod
    def _check_request_id(cls, value: str) -> str:
        try:
            uuid_value = str(UUID(value))
        except ValueError as e:
            msg = "requestId must be a UUID"
            raise ValueError(msg) from e
        return uuid_value

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            msg = "timestamp must be ISO 8601"
            raise ValueError(msg) from e
        return value

    def to_body(self) -> dict[str, Any]:
        """序列化为线上格式."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FeedFetchMessage(QueueMessageBase):
    """feed-fetch 消息."""

    feed_url: UrlString = Field(alias="feedUrl")
    feed_name: str = Field(alias="feedName", min_length=1)
    feed_id: str | None = Field(default=None, alias="feedId")
    action: Literal["fetch", "validate"] = "fetch"


class DailySummaryInitiatorMessage(QueueMessageBase):
    """daily-summary-initiate 消息."""

    date: DateString
    feed_name: str | None = Field(default=None, alias="feedName")
    force: bool = False


class DailySummaryProcessorMessage(QueueMessageBase):
    """daily-summary-process 消息."""

    date: DateString
    feed_name: str = Field(alias="feedName", min_length=1)
    article_ids: list[str] = Field(alias="articleIds", min_length=1)
    force: bool = False


class WeeklyDigestMessage(QueueMessageBase):
    """weekly-digest 消息."""

    week_end_date: DateString = Field(alias="weekEndDate")
    force_regenerate: bool | None = Field(default=None, alias="forceRegenerate")


MessageT = TypeVar("MessageT", bound=QueueMessageBase)


def validate_queue_message(body: Any, model: type[MessageT]) -> MessageT:
    """校验消息体，失败抛出 QUEUE_MESSAGE_INVALID."""
    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        errors = [
            {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        msg = f"Invalid {model.__name__}: {errors}"
        raise ValidationError(
            msg,
            code=ErrorCode.QUEUE_MESSAGE_INVALID,
            context={"errors": errors},
        ) from e
