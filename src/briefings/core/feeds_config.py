"""订阅源配置 - 从 feeds.yaml 同步到数据库."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from briefings.core.messages import UrlString
from briefings.models.feed import Feed
from briefings.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class FeedEntry(BaseModel):
    """配置中的单个订阅源."""

    name: str = Field(min_length=1)
    url: UrlString
    category: str = "General"


class FeedsConfig(BaseModel):
    """feeds.yaml 根结构."""

    feeds: list[FeedEntry] = Field(min_length=1)


@dataclass
class SyncResult:
    """同步结果."""

    created: int = 0
    updated: int = 0
    deactivated: int = 0


def parse_feeds_config(content: str) -> list[FeedEntry]:
    """解析 YAML 内容."""
    raw = yaml.safe_load(content) or {}
    return FeedsConfig.model_validate(raw).feeds


def load_feeds_config(path: str | Path) -> list[FeedEntry]:
    """读取并解析 feeds.yaml."""
    with Path(path).open(encoding="utf-8") as f:
        return parse_feeds_config(f.read())


async def sync_feeds(session: AsyncSession, entries: list[FeedEntry]) -> SyncResult:
    """按 URL 同步：配置中的 upsert 并启用，不在配置中的停用."""
    result = SyncResult()
    existing = {feed.url: feed for feed in (await session.execute(select(Feed))).scalars().all()}
    config_urls = {entry.url for entry in entries}
    now = utcnow()

    for entry in entries:
        feed = existing.get(entry.url)
        if feed is None:
            session.add(
                Feed(
                    name=entry.name,
                    url=entry.url,
                    category=entry.category,
                    is_active=True,
                    is_valid=True,
                )
            )
            result.created += 1
            continue

        if feed.name != entry.name or feed.category != entry.category or not feed.is_active:
            feed.name = entry.name
            feed.category = entry.category
            feed.is_active = True
            feed.updated_at = now
            result.updated += 1

    for url, feed in existing.items():
        if url not in config_urls and feed.is_active:
            feed.is_active = False
            feed.updated_at = now
            result.deactivated += 1

    await session.commit()
    logger.info(
        f"订阅源同步完成: 新增={result.created}, 更新={result.updated}, "
        f"停用={result.deactivated}"
    )
    return result
