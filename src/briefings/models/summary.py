"""日报摘要模型."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from briefings.utils.timestamps import utcnow


class DailySummary(SQLModel, table=True):
    """单个 Feed 的每日摘要."""

    __tablename__ = "daily_summaries"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("feed_id", "summary_date", name="uq_daily_summary_feed_date"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    feed_id: str = Field(foreign_key="feeds.id", index=True, description="关联 Feed")
    summary_date: datetime = Field(index=True, description="摘要日期（截断到天）")
    summary_content: str = Field(description="Markdown 内容")
    structured_content: str | None = Field(default=None, description="结构化 JSON 内容（保留，当前不写入）")
    schema_version: str | None = Field(default=None, description="结构化内容版本")
    sentiment: float | None = Field(default=None, description="情感分数（保留，当前不写入）")
    topics_list: str | None = Field(default=None, description="主题列表（逗号分隔）")
    entity_list: str | None = Field(default=None, description="实体列表（逗号分隔，保留，当前不写入）")
    article_count: int = Field(default=0, description="文章数")
    created_at: datetime = Field(default_factory=utcnow)


class ArticleSummaryRelation(SQLModel, table=True):
    """文章与日报的关联."""

    __tablename__ = "article_summary_relations"  # type: ignore[assignment]

    article_id: str = Field(foreign_key="articles.id", primary_key=True)
    daily_summary_id: str = Field(foreign_key="daily_summaries.id", primary_key=True)
