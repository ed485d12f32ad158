"""Feed 订阅源模型."""

from datetime import datetime
from uuid import uuid4

from sqlmodel import Field, SQLModel

from briefings.utils.timestamps import utcnow


class Feed(SQLModel, table=True):
    """RSS 订阅源."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, description="Feed 名称")
    url: str = Field(unique=True, description="Feed URL（全局唯一）")
    category: str = Field(default="General", description="分类")
    is_active: bool = Field(default=True, description="是否启用")
    is_valid: bool = Field(default=True, description="最近一次校验是否通过")
    validation_error: str | None = Field(default=None, description="校验错误信息")
    last_fetched_at: datetime | None = Field(default=None, description="最近成功抓取时间")
    last_error: str | None = Field(default=None, description="最近抓取错误")
    error_count: int = Field(default=0, description="连续失败次数")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
