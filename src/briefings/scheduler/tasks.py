"""定时任务定义（UTC，cron 表达式固定）."""

import asyncio
import logging
from datetime import date, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import select

from briefings.core.context import PipelineContext
from briefings.core.feed_service import FeedService
from briefings.models.feed import Feed
from briefings.utils.timestamps import calculate_week_range, utcnow

logger = logging.getLogger(__name__)

FEED_FETCH_CRON = "0 */4 * * *"
FEED_VALIDATION_CRON = "0 6 * * *"
DAILY_SUMMARY_CRON = "0 10 * * *"
WEEKLY_DIGEST_CRON = "0 13 * * sun"


async def feed_fetch_task(context: PipelineContext) -> int:
    """为每个启用且有效的 feed 排队抓取任务，返回排队数."""
    async with context.database.session() as session:
        feeds = await FeedService(session, context.dispatcher).get_active_feeds()

    if not feeds:
        logger.warning("没有启用的 Feed，跳过抓取")
        return 0

    queued = 0
    for feed in feeds:
        try:
            await context.dispatcher.send_to_feed_fetch_queue(feed.url, feed.name)
            queued += 1
        except Exception:
            logger.exception(f"抓取任务排队失败: {feed.name} ({feed.url})")

    logger.info(f"Feed 抓取任务已排队: 总数={len(feeds)}, 成功={queued}")
    return queued


async def feed_validation_task(context: PipelineContext) -> int:
    """为所有启用的 feed 排队校验任务，返回排队数."""
    async with context.database.session() as session:
        result = await session.execute(
            select(Feed).where(Feed.is_active == True)  # noqa: E712
        )
        feeds = list(result.scalars().all())

    if not feeds:
        logger.warning("没有启用的 Feed，跳过校验")
        return 0

    results = await asyncio.gather(
        *(
            context.dispatcher.send_feed_fetch_message(
                feed.url, feed.name, feed_id=feed.id, action="validate"
            )
            for feed in feeds
        ),
        return_exceptions=True,
    )
    failed = [r for r in results if isinstance(r, BaseException)]
    for error in failed:
        logger.error(f"校验任务排队失败: {error}")

    logger.info(
        f"Feed 校验任务已排队: 总数={len(feeds)}, "
        f"有效={sum(1 for f in feeds if f.is_valid)}, 失败={len(failed)}"
    )
    return len(feeds) - len(failed)


async def daily_summary_task(context: PipelineContext, today: date | None = None) -> str:
    """为昨天排队日报任务，返回 requestId."""
    target = (today or utcnow().date()) - timedelta(days=1)
    request_id = await context.dispatcher.send_to_daily_summary_queue(target.isoformat())
    logger.info(f"日报任务已排队: date={target}, requestId={request_id}")
    return request_id


async def weekly_digest_task(context: PipelineContext, today: date | None = None) -> str:
    """为截至今天的一周排队周报任务，返回 requestId."""
    week_start, week_end = calculate_week_range(today or utcnow().date())
    request_id = await context.dispatcher.send_to_weekly_digest_queue(week_end.isoformat())
    logger.info(
        f"周报任务已排队: {week_start} ~ {week_end}, requestId={request_id}"
    )
    return request_id


def create_scheduler(context: PipelineContext) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    scheduler = AsyncIOScheduler(timezone="UTC")

    jobs = [
        (feed_fetch_task, FEED_FETCH_CRON, "feed_fetch", "Feed 抓取"),
        (feed_validation_task, FEED_VALIDATION_CRON, "feed_validation", "Feed 校验"),
        (daily_summary_task, DAILY_SUMMARY_CRON, "daily_summary", "日报"),
        (weekly_digest_task, WEEKLY_DIGEST_CRON, "weekly_digest", "周报"),
    ]
    for func, cron, job_id, name in jobs:
        scheduler.add_job(
            func,
            CronTrigger.from_crontab(cron, timezone="UTC"),
            args=[context],
            id=job_id,
            name=name,
            replace_existing=True,
        )

    scheduler.start()
    logger.info(f"定时任务调度器已启动: {', '.join(job[2] for job in jobs)}")
    return scheduler


def shutdown_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    """关闭定时任务调度器."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
