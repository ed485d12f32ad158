"""Article 文章模型."""

from datetime import datetime
from uuid import uuid4

from sqlmodel import Field, SQLModel

from briefings.utils.timestamps import utcnow


class Article(SQLModel, table=True):
    """RSS 文章."""

    __tablename__ = "articles"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    feed_id: str = Field(foreign_key="feeds.id", index=True, description="关联 Feed")
    title: str = Field(description="标题")
    link: str = Field(unique=True, description="原文链接（去重键）")
    content: str | None = Field(default=None, description="正文")
    content_snippet: str | None = Field(default=None, description="摘要片段")
    creator: str | None = Field(default=None, description="作者")
    pub_date: datetime | None = Field(default=None, index=True, description="发布时间")
    processed: bool = Field(default=False, description="是否已处理")
    created_at: datetime = Field(default_factory=utcnow)
