"""摘要服务 - 日报与周报的生成和持久化."""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from briefings.config import Settings
from briefings.core.errors import (
    ApiError,
    DatabaseError,
    ErrorCode,
    SummarizationError,
)
from briefings.llm.base import LLMProvider
from briefings.llm.prompts import PromptLibrary
from briefings.models.article import Article
from briefings.models.summary import ArticleSummaryRelation, DailySummary
from briefings.models.weekly import DailyWeeklySummaryRelation, WeeklySummary
from briefings.utils.timestamps import (
    format_display_date,
    format_short_date,
    truncate_to_day,
)

logger = logging.getLogger(__name__)

MAX_ARTICLES_PER_SUMMARY = 10
MAX_ARTICLE_CONTENT_LENGTH = 2000
MAX_RELATED_SUMMARIES = 5
RELATED_CONTEXT_DAYS = 7
MAX_DAILY_SUMMARY_LENGTH = 5000
MAX_TOTAL_PROMPT_LENGTH = 200_000
RELATION_BATCH_SIZE = 20
DEFAULT_TITLE = "Weekly Briefing"
SCHEMA_VERSION = "1.0"

NO_ARTICLES_SUMMARY = "# No Articles\n\nNo articles were found for this date."
NO_SUMMARIES_RECAP = "# No Summaries\n\nNo daily summaries were found for this week."
RELATED_CONTEXT_HEADER = (
    "\n\n---\n\nRelated Context from Recent Summaries (for continuity):\n\n"
)
PREVIOUS_WEEKS_HEADER = (
    "\n\n---\n\nPrevious Weeks' Context (avoid repetition, find fresh angles):\n\n"
)
PROMPT_TRUNCATED_MARKER = (
    "\n\n[Prompt truncated to prevent timeout - proceeding with available content]"
)
SUMMARY_TRUNCATED_MARKER = "...\n\n[Content truncated for processing efficiency]"

_BELOW_THE_FOLD_RE = re.compile(r"## Below the Fold\n([\s\S]*?)(?=## |$)")
_SO_WHAT_RE = re.compile(r"## So What\?\n([\s\S]*?)(?=## |$)")


@dataclass
class RecapSections:
    """周报拆分后的三个段落."""

    recap_content: str
    below_the_fold_content: str | None = None
    so_what_content: str | None = None


def format_markdown(content: str) -> str:
    """清理 LLM 输出的 markdown."""
    content = content.strip()
    content = re.sub(r"```markdown\n?", "", content)
    content = re.sub(r"```\n?$", "", content)
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.strip()


def parse_recap_sections(content: str) -> RecapSections:
    """按 `## Below the Fold` 和 `## So What?` 拆分周报."""
    below = _BELOW_THE_FOLD_RE.search(content)
    so_what = _SO_WHAT_RE.search(content)

    recap = content
    if below:
        recap = recap.replace(below.group(0), "", 1)
    if so_what:
        recap = recap.replace(so_what.group(0), "", 1)

    return RecapSections(
        recap_content=recap.strip(),
        below_the_fold_content=(below.group(1).strip() or None) if below else None,
        so_what_content=(so_what.group(1).strip() or None) if so_what else None,
    )


def build_fallback_summary(articles: list[Article]) -> str:
    """LLM 无输出时，用标题/链接/片段拼出列表."""
    lines = []
    for article in articles:
        title = article.title or "Untitled"
        link = article.link or "#"
        snippet = (article.content or article.content_snippet or "")[:200]
        suffix = "..." if len(snippet) >= 200 else ""
        lines.append(f"* [{title}]({link}): {snippet}{suffix}")
    return "\n\n".join(lines) or "# No Articles\n\nNo articles were available for summarization."


def _truncate(content: str, limit: int) -> str:
    if len(content) > limit:
        return content[: limit - 3] + "..."
    return content


class SummarizationService:
    """摘要服务."""

    def __init__(
        self,
        provider: LLMProvider,
        prompts: PromptLibrary,
        settings: Settings,
    ) -> None:
        self.provider = provider
        self.prompts = prompts
        self.settings = settings

    # ------------------------------------------------------------------
    # 日报
    # ------------------------------------------------------------------

    async def get_related_context(
        self,
        articles: list[Article],
        session: AsyncSession,
    ) -> list[str]:
        """取最早文章之前 7 天内的日报作为上下文（失败返回空）."""
        pub_dates = [a.pub_date for a in articles if a.pub_date]
        if not pub_dates:
            return []

        oldest = min(pub_dates)
        try:
            stmt = (
                select(DailySummary)
                .where(DailySummary.summary_date >= oldest - timedelta(days=RELATED_CONTEXT_DAYS))
                .where(DailySummary.summary_date < oldest)
                .order_by(DailySummary.summary_date.desc())  # type: ignore[attr-defined]
                .limit(MAX_RELATED_SUMMARIES)
            )
            result = await session.execute(stmt)
            summaries = result.scalars().all()
        except SQLAlchemyError as e:
            logger.warning(f"获取相关上下文失败: {e}")
            return []

        return [
            f"## Previous Summary ({format_short_date(s.summary_date.date())})\n"
            f"{s.summary_content}"
            for s in summaries
        ]

    async def generate_daily_summary(
        self,
        articles: list[Article],
        feed_name: str,
        summary_date: date,
        session: AsyncSession | None = None,
    ) -> str:
        """
        生成单个 feed 的日报.

        Raises:
            SummarizationError: 生成失败（保留原始错误）
        """
        logger.info(
            f"生成日报: feed={feed_name}, date={summary_date}, 文章数={len(articles)}"
        )
        if not articles:
            return NO_ARTICLES_SUMMARY

        to_summarize = articles[:MAX_ARTICLES_PER_SUMMARY]
        if len(articles) > MAX_ARTICLES_PER_SUMMARY:
            logger.warning(
                f"文章过多，仅摘要前 {MAX_ARTICLES_PER_SUMMARY} 篇: "
                f"feed={feed_name}, 总数={len(articles)}"
            )

        try:
            related = await self.get_related_context(articles, session) if session else []
            prompt = self.build_daily_prompt(to_summarize, feed_name, summary_date, related)

            config = self.provider.resolve_config(
                model=self.settings.model_for("daily"),
                temperature=1.0,
                thinking_level="LOW",
                max_tokens=16384,
            )
            try:
                result = await self.provider.generate_with_retry(prompt, config)
                summary = format_markdown(result.text)
            except ApiError as e:
                if "No text content" not in e.message:
                    raise
                logger.warning(f"LLM 返回空内容，使用兜底摘要: feed={feed_name}")
                summary = build_fallback_summary(to_summarize)
        except Exception as e:
            logger.exception(f"日报生成失败: feed={feed_name}, date={summary_date}")
            msg = f"Failed to generate daily summary: {e}"
            raise SummarizationError(
                msg,
                original_error=e,
                context={"feedName": feed_name, "date": summary_date.isoformat()},
            ) from e

        logger.info(f"日报生成完成: feed={feed_name}, 长度={len(summary)}")
        return summary

    def build_daily_prompt(
        self,
        articles: list[Article],
        feed_name: str,
        summary_date: date,
        related_context: list[str],
    ) -> str:
        """构建日报 prompt."""
        context: dict[str, Any] = {
            "feedName": feed_name,
            "date": summary_date.isoformat(),
            "displayDate": format_display_date(summary_date),
            "articleCount": len(articles),
            "articles": [
                {
                    "title": article.title,
                    "link": article.link,
                    "content": _truncate(
                        article.content or article.content_snippet or "",
                        MAX_ARTICLE_CONTENT_LENGTH,
                    ),
                    "creator": article.creator,
                    "pubDate": article.pub_date.strftime("%b %d, %Y, %H:%M")
                    if article.pub_date
                    else None,
                    "articleNumber": index + 1,
                }
                for index, article in enumerate(articles)
            ],
        }

        prompt = self.prompts.render("daily-summary", context)
        if related_context:
            prompt += RELATED_CONTEXT_HEADER + "\n\n".join(related_context)
        return prompt

    async def get_existing_daily_summary(
        self,
        session: AsyncSession,
        feed_id: str,
        summary_date: date,
    ) -> DailySummary | None:
        """按 (feed_id, 日期) 查找已有日报."""
        stmt = select(DailySummary).where(
            DailySummary.feed_id == feed_id,
            DailySummary.summary_date == truncate_to_day(summary_date),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_daily_summary(self, session: AsyncSession, summary: DailySummary) -> None:
        """删除日报及其文章关联（不提交，由调用方所在事务决定）."""
        await session.execute(
            delete(ArticleSummaryRelation).where(
                ArticleSummaryRelation.daily_summary_id == summary.id  # type: ignore[arg-type]
            )
        )
        await session.delete(summary)
        await session.flush()

    async def save_daily_summary(
        self,
        session: AsyncSession,
        feed_id: str,
        feed_name: str,
        summary_date: date,
        content: str,
        article_ids: list[str],
        topics: list[str] | None = None,
        replace: DailySummary | None = None,
    ) -> DailySummary:
        """
        保存日报及文章关联.

        replace 为强制重新生成时的旧日报，与新日报在同一事务中删除，
        写入失败时回滚保留旧日报。

        Raises:
            DatabaseError: (feed_id, 日期) 已存在时为 DUPLICATE_ENTRY
        """
        summary = DailySummary(
            feed_id=feed_id,
            summary_date=truncate_to_day(summary_date),
            summary_content=content,
            schema_version=SCHEMA_VERSION,
            topics_list=",".join(topics) if topics else None,
            article_count=len(article_ids),
        )
        try:
            if replace is not None:
                await self.delete_daily_summary(session, replace)
            session.add(summary)
            await session.flush()
            session.add_all(
                ArticleSummaryRelation(article_id=article_id, daily_summary_id=summary.id)
                for article_id in article_ids
            )
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            msg = (
                f"Daily summary already exists for {feed_name} on {summary_date.isoformat()}. "
                "Use 'force' option to regenerate."
            )
            raise DatabaseError(
                msg,
                ErrorCode.DUPLICATE_ENTRY,
                context={"feedId": feed_id, "date": summary_date.isoformat()},
            ) from e
        except SQLAlchemyError as e:
            await session.rollback()
            msg = f"Failed to save daily summary: {e}"
            raise DatabaseError(msg, context={"feedId": feed_id}) from e

        logger.info(
            f"日报已保存: id={summary.id}, feed={feed_name}, 文章数={len(article_ids)}"
        )
        return summary

    # ------------------------------------------------------------------
    # 周报
    # ------------------------------------------------------------------

    def build_weekly_prompt(
        self,
        summaries: list[DailySummary],
        week_start: date,
        week_end: date,
        previous_context: str | None = None,
        source_ids: set[str] | None = None,
    ) -> str:
        """构建周报 prompt（单篇日报与总长度都有上限）."""
        story_count = sum(s.article_count or 0 for s in summaries) or len(summaries) * 7
        context: dict[str, Any] = {
            "weekStartDate": week_start.isoformat(),
            "weekEndDate": week_end.isoformat(),
            "displayDateRange": (
                f"{week_start.strftime('%b')} {week_start.day} - "
                f"{format_short_date(week_end)}"
            ),
            "summaries": [
                {
                    "date": s.summary_date.date().isoformat(),
                    "displayDate": f"{s.summary_date.strftime('%A, %B')} {s.summary_date.day}",
                    "content": s.summary_content[:MAX_DAILY_SUMMARY_LENGTH]
                    + SUMMARY_TRUNCATED_MARKER
                    if len(s.summary_content) > MAX_DAILY_SUMMARY_LENGTH
                    else s.summary_content,
                }
                for s in summaries
            ],
            "summaryCount": len(summaries),
            "storyCount": story_count,
            "sourceCount": len(source_ids) if source_ids else len(summaries),
        }

        prompt = self.prompts.render("weekly-digest", context)
        if previous_context:
            prompt += PREVIOUS_WEEKS_HEADER + previous_context

        if len(prompt) > MAX_TOTAL_PROMPT_LENGTH:
            logger.warning(
                f"周报 prompt 过长，截断: 原长度={len(prompt)}, 上限={MAX_TOTAL_PROMPT_LENGTH}"
            )
            prompt = prompt[:MAX_TOTAL_PROMPT_LENGTH] + PROMPT_TRUNCATED_MARKER
        return prompt

    async def generate_weekly_recap(
        self,
        summaries: list[DailySummary],
        week_start: date,
        week_end: date,
        previous_context: str | None = None,
        source_ids: set[str] | None = None,
    ) -> str:
        """
        生成周报正文.

        Raises:
            SummarizationError: 重试后仍失败
        """
        logger.info(
            f"生成周报: {week_start} ~ {week_end}, 日报数={len(summaries)}"
        )
        if not summaries:
            return NO_SUMMARIES_RECAP

        prompt = self.build_weekly_prompt(
            summaries, week_start, week_end, previous_context, source_ids
        )
        config = self.provider.resolve_config(
            model=self.settings.model_for("weekly"),
            temperature=1.0,
            thinking_level="HIGH",
            max_tokens=65536,
        )

        try:
            result = await self.provider.generate_with_retry(
                prompt,
                config,
                max_retries=3,
                on_retry=lambda attempt, error: logger.warning(
                    f"周报生成重试 (第 {attempt} 次): {error}"
                ),
            )
        except Exception as e:
            logger.exception("周报生成失败")
            msg = f"Failed to generate weekly recap: {e}"
            raise SummarizationError(
                msg,
                original_error=e,
                context={"startDate": week_start.isoformat(), "endDate": week_end.isoformat()},
            ) from e

        recap = format_markdown(result.text)
        logger.info(f"周报生成完成: 长度={len(recap)}")
        return recap

    async def extract_topics(self, recap: str) -> list[str]:
        """提取主题（失败返回空列表）."""
        prompt = self.prompts.render("topic-extraction", {"recapContent": recap})
        config = self.provider.resolve_config(
            model=self.settings.model_for("topic"),
            temperature=0.3,
            max_tokens=1024,
        )
        try:
            data = await self.provider.generate_json(prompt, config)
        except Exception as e:
            logger.warning(f"主题提取失败: {type(e).__name__}: {e}")
            return []

        if isinstance(data, dict):
            data = data.get("topics", [])
        if not isinstance(data, list):
            return []
        return [str(topic).strip() for topic in data if str(topic).strip()]

    async def generate_title(self, recap: str, topics: list[str]) -> str:
        """生成标题（失败使用默认标题）."""
        prompt = self.prompts.render(
            "title-generator",
            {"recapContent": recap, "topics": ", ".join(topics)},
        )
        config = self.provider.resolve_config(
            model=self.settings.model_for("title"),
            temperature=0.9,
            max_tokens=256,
        )
        try:
            result = await self.provider.generate_with_retry(prompt, config)
        except Exception as e:
            logger.warning(f"标题生成失败，使用默认标题: {type(e).__name__}: {e}")
            return DEFAULT_TITLE

        title = result.text.strip().splitlines()[0] if result.text.strip() else ""
        title = title.strip().strip('"').strip("*").strip("#").strip()
        return title or DEFAULT_TITLE

    async def get_existing_weekly_summary(
        self,
        session: AsyncSession,
        week_start: date,
        week_end: date,
    ) -> WeeklySummary | None:
        """按周范围查找已有周报."""
        stmt = select(WeeklySummary).where(
            WeeklySummary.week_start_date == truncate_to_day(week_start),
            WeeklySummary.week_end_date == truncate_to_day(week_end),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_weekly_summary(self, session: AsyncSession, weekly: WeeklySummary) -> None:
        """删除周报及其日报关联（不提交，由调用方所在事务决定）."""
        await session.execute(
            delete(DailyWeeklySummaryRelation).where(
                DailyWeeklySummaryRelation.weekly_summary_id == weekly.id  # type: ignore[arg-type]
            )
        )
        await session.delete(weekly)
        await session.flush()

    async def save_weekly_summary(
        self,
        session: AsyncSession,
        week_start: date,
        week_end: date,
        title: str,
        sections: RecapSections,
        topics: list[str],
        daily_summary_ids: list[str],
        replace: WeeklySummary | None = None,
    ) -> WeeklySummary:
        """
        保存周报及日报关联（关联分批写入）.

        replace 为强制重新生成时的旧周报，在同一事务中删除。

        Raises:
            DatabaseError: 周范围已存在时为 DUPLICATE_ENTRY
        """
        weekly = WeeklySummary(
            week_start_date=truncate_to_day(week_start),
            week_end_date=truncate_to_day(week_end),
            title=title,
            recap_content=sections.recap_content,
            below_the_fold_content=sections.below_the_fold_content,
            so_what_content=sections.so_what_content,
            topics=", ".join(topics) if topics else None,
        )
        try:
            if replace is not None:
                await self.delete_weekly_summary(session, replace)
            session.add(weekly)
            await session.flush()
            for i in range(0, len(daily_summary_ids), RELATION_BATCH_SIZE):
                batch = daily_summary_ids[i : i + RELATION_BATCH_SIZE]
                session.add_all(
                    DailyWeeklySummaryRelation(
                        daily_summary_id=daily_id, weekly_summary_id=weekly.id
                    )
                    for daily_id in batch
                )
                await session.flush()
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            msg = (
                f"Weekly summary already exists for {week_start.isoformat()} to "
                f"{week_end.isoformat()}. Use 'force' option to regenerate."
            )
            raise DatabaseError(
                msg,
                ErrorCode.DUPLICATE_ENTRY,
                context={"weekStart": week_start.isoformat(), "weekEnd": week_end.isoformat()},
            ) from e
        except SQLAlchemyError as e:
            await session.rollback()
            msg = f"Failed to save weekly summary: {e}"
            raise DatabaseError(msg) from e

        logger.info(
            f"周报已保存: id={weekly.id}, {week_start} ~ {week_end}, "
            f"日报数={len(daily_summary_ids)}"
        )
        return weekly

    async def mark_weekly_sent(self, session: AsyncSession, weekly: WeeklySummary, sent_at: datetime) -> None:
        """记录邮件发送时间."""
        weekly.sent_at = sent_at
        session.add(weekly)
        await session.commit()
