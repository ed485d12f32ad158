"""weekly-digest 队列消费者 - 单次调用完成整个周报流程.

1. 读取本周日报
2. 读取历史周报作为上下文（尽力而为）
3. 生成周报正文
4. 提取主题、生成标题
5. 拆分段落并保存
6. 归档（尽力而为）
7. 发送邮件（尽力而为）
"""

import logging
import time
from datetime import date, timedelta

from sqlmodel import select

from briefings.core.context import PipelineContext
from briefings.core.errors import ApiError, ErrorCode
from briefings.core.messages import WeeklyDigestMessage, validate_queue_message
from briefings.core.queue import QueueMessage
from briefings.core.summarization import parse_recap_sections
from briefings.models.summary import DailySummary
from briefings.models.weekly import WeeklySummary
from briefings.queues.common import elapsed_ms, settle_failure
from briefings.utils.timestamps import parse_date, truncate_to_day, utcnow

logger = logging.getLogger(__name__)

STAGE = "weekly-digest"
CONTEXT_WEEKS = 4


async def handle_weekly_digest_batch(
    batch: list[QueueMessage],
    context: PipelineContext,
) -> None:
    """顺序处理."""
    logger.info(f"处理 weekly-digest 批次: 消息数={len(batch)}")
    for message in batch:
        try:
            await process_weekly_digest_message(message.body, context)
        except Exception as e:
            settle_failure(message, e, STAGE)
        else:
            message.ack()


async def load_week_summaries(
    context: PipelineContext,
    week_start: date,
    week_end: date,
) -> list[DailySummary]:
    """本周日报，按日期倒序."""
    stmt = (
        select(DailySummary)
        .where(DailySummary.summary_date >= truncate_to_day(week_start))
        .where(DailySummary.summary_date <= truncate_to_day(week_end))
        .order_by(DailySummary.summary_date.desc())  # type: ignore[attr-defined]
    )
    async with context.database.session() as session:
        return list((await session.execute(stmt)).scalars().all())


async def build_previous_context(context: PipelineContext, today: date) -> str | None:
    """历史周报上下文，失败时返回 None."""
    try:
        digest_context = await context.archive.build_digest_context(CONTEXT_WEEKS, today)
    except Exception as e:
        logger.warning(f"读取历史周报失败，不使用上下文: {e}")
        return None

    if not digest_context.digest_count:
        return None
    logger.info(
        f"历史周报上下文: 周报数={digest_context.digest_count}, "
        f"主题数={len(digest_context.recent_topics)}"
    )
    return digest_context.context_string


async def process_weekly_digest_message(
    body: dict,
    context: PipelineContext,
) -> WeeklySummary | None:
    """
    处理单条消息.

    Raises:
        ApiError: 本周没有日报（API_NOT_FOUND，不重试）
    """
    start = time.monotonic()
    message = validate_queue_message(body, WeeklyDigestMessage)
    week_end = parse_date(message.week_end_date)
    week_start = week_end - timedelta(days=6)
    summarizer = context.summarizer
    logger.info(
        f"处理周报: requestId={message.request_id}, {week_start} ~ {week_end}, "
        f"forceRegenerate={message.force_regenerate}"
    )

    async with context.database.session() as session:
        existing = await summarizer.get_existing_weekly_summary(session, week_start, week_end)
        if existing and not message.force_regenerate:
            logger.info(
                f"周报已存在，跳过: requestId={message.request_id}, id={existing.id}"
            )
            return None

    summaries = await load_week_summaries(context, week_start, week_end)
    if not summaries:
        msg = "No daily summaries found for the week"
        raise ApiError(
            msg,
            ErrorCode.API_NOT_FOUND,
            404,
            context={"weekStart": week_start.isoformat(), "weekEnd": week_end.isoformat()},
        )
    logger.info(f"本周日报数: {len(summaries)}")

    previous_context = await build_previous_context(context, week_end)

    recap = await summarizer.generate_weekly_recap(
        summaries,
        week_start,
        week_end,
        previous_context,
        source_ids={s.feed_id for s in summaries},
    )
    topics = await summarizer.extract_topics(recap)
    title = await summarizer.generate_title(recap, topics)
    sections = parse_recap_sections(recap)

    async with context.database.session() as session:
        stale = (
            await summarizer.get_existing_weekly_summary(session, week_start, week_end)
            if existing
            else None
        )
        weekly = await summarizer.save_weekly_summary(
            session,
            week_start,
            week_end,
            title,
            sections,
            topics,
            [s.id for s in summaries],
            replace=stale,
        )
        if stale:
            logger.info(f"已替换旧周报: new={weekly.id}")

        await archive_digest(context, week_start, week_end, title, topics, sections.recap_content)
        sent = await send_digest_email(context, title, recap, week_start, week_end)
        if sent:
            await summarizer.mark_weekly_sent(session, weekly, utcnow())

    logger.info(
        f"周报完成: requestId={message.request_id}, id={weekly.id}, title={title}, "
        f"主题数={len(topics)}, 日报数={len(summaries)}, 邮件={sent}, "
        f"耗时={elapsed_ms(start)}ms"
    )
    return weekly


async def archive_digest(
    context: PipelineContext,
    week_start: date,
    week_end: date,
    title: str,
    topics: list[str],
    recap_content: str,
) -> None:
    """归档周报（失败只记录日志）."""
    try:
        await context.archive.store_digest(week_start, week_end, title, topics, recap_content)
    except Exception as e:
        logger.warning(f"周报归档失败: {e}")


async def send_digest_email(
    context: PipelineContext,
    title: str,
    recap: str,
    week_start: date,
    week_end: date,
) -> bool:
    """发送周报邮件，返回是否成功（失败只记录日志）."""
    if context.email is None:
        logger.info("未配置邮件，跳过发送")
        return False

    try:
        result = await context.email.send_weekly_digest(
            title, recap, week_start.isoformat(), week_end.isoformat()
        )
    except Exception:
        logger.exception("周报邮件发送异常")
        return False

    if not result.success:
        logger.error(f"周报邮件发送失败: {result.error}")
        return False
    logger.info(f"周报邮件已发送: id={result.message_id}")
    return True
