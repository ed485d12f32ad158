"""数据模型."""

from briefings.models.article import Article
from briefings.models.database import Database, get_session
from briefings.models.feed import Feed
from briefings.models.summary import ArticleSummaryRelation, DailySummary
from briefings.models.weekly import DailyWeeklySummaryRelation, WeeklySummary

__all__ = [
    "Article",
    "ArticleSummaryRelation",
    "DailySummary",
    "DailyWeeklySummaryRelation",
    "Database",
    "Feed",
    "WeeklySummary",
    "get_session",
]
