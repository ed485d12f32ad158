"""Feed 服务 - 抓取、去重入库、维护 feed 健康状态."""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from time import struct_time
from typing import Any

import feedparser
import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from briefings.core.dispatcher import QueueDispatcher
from briefings.core.errors import DatabaseError, ErrorCode, FeedError
from briefings.models.article import Article
from briefings.models.feed import Feed
from briefings.utils.html_parser import make_snippet, sanitize_text
from briefings.utils.timestamps import from_timestamp, utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "Briefings/1.0"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


@dataclass
class ParsedFeedItem:
    """解析后的 feed 条目（屏蔽 RSS/Atom 差异）."""

    title: str
    link: str | None
    content: str | None = None
    content_snippet: str | None = None
    creator: str | None = None
    pub_date: datetime | None = None
    guid: str | None = None


def _struct_to_datetime(value: struct_time | None) -> datetime | None:
    if value is None:
        return None
    return from_timestamp(calendar.timegm(value) * 1000)


def parse_feed_content(content: bytes | str, feed_url: str = "") -> list[ParsedFeedItem]:
    """
    解析 RSS/Atom 内容.

    Raises:
        FeedError: 内容无法解析为 feed（FEED_PARSE_ERROR）
    """
    parsed = feedparser.parse(content)

    if parsed.bozo and not parsed.entries and not parsed.feed:
        msg = f"Failed to parse feed: {parsed.get('bozo_exception')}"
        raise FeedError(
            msg,
            ErrorCode.FEED_PARSE_ERROR,
            context={"feedUrl": feed_url},
        )

    items: list[ParsedFeedItem] = []
    for entry in parsed.entries:
        items.append(_map_entry(entry))
    return items


def _map_entry(entry: Any) -> ParsedFeedItem:
    """映射单个条目."""
    content = None
    if entry.get("content"):
        content = entry["content"][0].get("value")
    summary = entry.get("summary")

    link = entry.get("link") or entry.get("id")
    pub_date = _struct_to_datetime(
        entry.get("published_parsed") or entry.get("updated_parsed")
    )

    return ParsedFeedItem(
        title=entry.get("title") or "Untitled",
        link=link,
        content=content or summary,
        content_snippet=make_snippet(summary) if summary else None,
        creator=entry.get("author"),
        pub_date=pub_date,
        guid=entry.get("id"),
    )


class FeedService:
    """Feed 服务."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: QueueDispatcher | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.timeout = timeout
        self._client = client

    async def fetch_feed(self, feed_url: str) -> list[ParsedFeedItem]:
        """
        抓取并解析 feed.

        Raises:
            FeedError: 网络失败（FEED_FETCH_ERROR）或解析失败（FEED_PARSE_ERROR）
        """
        headers = {"User-Agent": USER_AGENT, "Accept": ACCEPT}
        client = self._client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            response = await client.get(feed_url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Failed to fetch feed: {e}"
            raise FeedError(
                msg,
                ErrorCode.FEED_FETCH_ERROR,
                context={"feedUrl": feed_url},
            ) from e
        finally:
            if self._client is None:
                await client.aclose()

        items = parse_feed_content(response.content, feed_url)
        logger.info(f"Feed 解析完成: {feed_url}, 条目数={len(items)}")
        return items

    async def get_feed_by_url(self, url: str) -> Feed | None:
        """按 URL 查找 feed."""
        result = await self.session.execute(select(Feed).where(Feed.url == url))
        return result.scalar_one_or_none()

    async def get_feed_by_name(self, name: str) -> Feed | None:
        """按名称查找 feed."""
        result = await self.session.execute(select(Feed).where(Feed.name == name).limit(1))
        return result.scalar_one_or_none()

    async def get_or_create_feed(
        self,
        url: str,
        name: str,
        category: str = "General",
    ) -> Feed:
        """查找 feed，不存在则创建（默认启用且有效）."""
        feed = await self.get_feed_by_url(url)
        if feed:
            return feed

        feed = Feed(name=name, url=url, category=category, is_active=True, is_valid=True)
        self.session.add(feed)
        await self.session.commit()
        await self.session.refresh(feed)
        logger.info(f"创建新 Feed: {name} ({url})")
        return feed

    async def process_articles(
        self,
        feed_id: str,
        items: list[ParsedFeedItem],
    ) -> list[Article]:
        """去重后写入新文章，返回新建的文章."""
        if not items:
            return []

        links = [item.link for item in items if item.link]
        existing_links: set[str] = set()
        try:
            if links:
                # 一次批量查询已有链接
                result = await self.session.execute(
                    select(Article.link).where(
                        Article.link.in_(links)  # type: ignore[attr-defined]
                    )
                )
                existing_links = set(result.scalars().all())

            new_articles: list[Article] = []
            for item in items:
                if not item.link or item.link in existing_links:
                    continue
                # 同一批次内重复的链接也跳过
                existing_links.add(item.link)

                content = sanitize_text(item.content, 5000)
                snippet = item.content_snippet or make_snippet(item.content)
                new_articles.append(
                    Article(
                        feed_id=feed_id,
                        title=sanitize_text(item.title, 500) or "Untitled",
                        link=item.link,
                        content=content,
                        content_snippet=sanitize_text(snippet, 500),
                        creator=sanitize_text(item.creator, 255),
                        pub_date=item.pub_date,
                    )
                )

            if not new_articles:
                logger.info(f"没有新文章: feed_id={feed_id}, 检查数={len(items)}")
                return []

            self.session.add_all(new_articles)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            msg = f"Failed to process articles: {e}"
            raise DatabaseError(msg, context={"feedId": feed_id}) from e

        logger.info(
            f"新文章入库: feed_id={feed_id}, 新增={len(new_articles)}, "
            f"跳过重复={len(items) - len(new_articles)}"
        )
        return new_articles

    async def mark_articles_processed(self, article_ids: list[str]) -> None:
        """标记文章已处理."""
        if not article_ids:
            return
        result = await self.session.execute(
            select(Article).where(
                Article.id.in_(article_ids)  # type: ignore[attr-defined]
            )
        )
        for article in result.scalars().all():
            article.processed = True
        await self.session.commit()

    async def update_feed_timestamp(self, feed_id: str) -> None:
        """抓取成功：记录时间并清除错误状态."""
        feed = await self.session.get(Feed, feed_id)
        if feed is None:
            return
        now = utcnow()
        feed.last_fetched_at = now
        feed.last_error = None
        feed.error_count = 0
        feed.updated_at = now
        await self.session.commit()

    async def update_feed_error(self, feed_url: str, error_message: str) -> None:
        """抓取失败：记录错误并累加失败次数（不抛出）."""
        try:
            await self.session.rollback()
            feed = await self.get_feed_by_url(feed_url)
            if feed is None:
                return
            feed.last_error = error_message[:1000]
            feed.error_count += 1
            feed.updated_at = utcnow()
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.exception(f"记录 Feed 错误失败: {feed_url}, {e}")

    async def get_active_feeds(self) -> list[Feed]:
        """获取启用且有效的 feed，无效的 feed 排队重新校验."""
        result = await self.session.execute(
            select(Feed).where(Feed.is_active == True).order_by(Feed.name)  # noqa: E712
        )
        feeds = list(result.scalars().all())

        valid = [feed for feed in feeds if feed.is_valid]
        invalid = [feed for feed in feeds if not feed.is_valid]

        if invalid and self.dispatcher is not None:
            logger.info(f"{len(invalid)} 个 Feed 无效，排队重新校验")
            for feed in invalid:
                await self.dispatcher.send_feed_fetch_message(
                    feed.url, feed.name, feed_id=feed.id, action="validate"
                )

        return valid
