"""周报模型."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from briefings.utils.timestamps import utcnow


class WeeklySummary(SQLModel, table=True):
    """周报."""

    __tablename__ = "weekly_summaries"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("week_start_date", "week_end_date", name="uq_weekly_summary_range"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    week_start_date: datetime = Field(description="周起始日")
    week_end_date: datetime = Field(description="周结束日")
    title: str = Field(description="标题")
    recap_content: str = Field(description="正文")
    below_the_fold_content: str | None = Field(default=None, description="Below the Fold 段落")
    so_what_content: str | None = Field(default=None, description="So What? 段落")
    topics: str | None = Field(default=None, description="主题（逗号分隔）")
    sent_at: datetime | None = Field(default=None, description="邮件发送时间")
    created_at: datetime = Field(default_factory=utcnow)


class DailyWeeklySummaryRelation(SQLModel, table=True):
    """日报与周报的关联."""

    __tablename__ = "daily_weekly_summary_relations"  # type: ignore[assignment]

    daily_summary_id: str = Field(foreign_key="daily_summaries.id", primary_key=True)
    weekly_summary_id: str = Field(foreign_key="weekly_summaries.id", primary_key=True)
