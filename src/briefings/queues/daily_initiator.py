"""daily-summary-initiator 队列消费者 - 按 feed 拆分当天文章并分发."""

import asyncio
import logging
import time

from sqlmodel import select

from briefings.core.context import PipelineContext
from briefings.core.messages import DailySummaryInitiatorMessage, validate_queue_message
from briefings.core.queue import QueueMessage
from briefings.models.article import Article
from briefings.models.feed import Feed
from briefings.queues.common import elapsed_ms, settle_failure
from briefings.utils.timestamps import day_bounds, parse_date

logger = logging.getLogger(__name__)

STAGE = "daily-summary-initiator"


async def handle_daily_initiator_batch(
    batch: list[QueueMessage],
    context: PipelineContext,
) -> None:
    """逐条处理."""
    logger.info(f"处理 daily-summary-initiator 批次: 消息数={len(batch)}")
    for message in batch:
        try:
            await process_daily_initiator_message(message.body, context)
        except Exception as e:
            settle_failure(message, e, STAGE)
        else:
            message.ack()


async def group_articles_by_feed(
    context: PipelineContext,
    message: DailySummaryInitiatorMessage,
) -> dict[str, list[str]]:
    """查询当天文章，按 feed 名称分组（保持首次出现顺序）."""
    start, end = day_bounds(parse_date(message.date))
    stmt = (
        select(Article.id, Feed.name)
        .join(Feed, Article.feed_id == Feed.id)  # type: ignore[arg-type]
        .where(Article.pub_date >= start)  # type: ignore[operator]
        .where(Article.pub_date <= end)  # type: ignore[operator]
    )
    if message.feed_name:
        stmt = stmt.where(Feed.name == message.feed_name)

    async with context.database.session() as session:
        rows = (await session.execute(stmt)).all()

    groups: dict[str, list[str]] = {}
    for article_id, feed_name in rows:
        groups.setdefault(feed_name, []).append(article_id)
    return groups


async def process_daily_initiator_message(body: dict, context: PipelineContext) -> int:
    """处理单条消息，返回分发的 processor 消息数."""
    start = time.monotonic()
    message = validate_queue_message(body, DailySummaryInitiatorMessage)
    logger.info(
        f"发起日报: requestId={message.request_id}, date={message.date}, "
        f"feed={message.feed_name}, force={message.force}"
    )

    groups = await group_articles_by_feed(context, message)
    if not groups:
        logger.info(
            f"当天没有文章，跳过: requestId={message.request_id}, date={message.date}"
        )
        return 0

    total = sum(len(ids) for ids in groups.values())
    logger.info(
        f"文章按 Feed 分组: requestId={message.request_id}, 文章数={total}, "
        f"Feed 数={len(groups)}, feeds={list(groups)}"
    )

    # 任一分发失败则整个阶段失败
    await asyncio.gather(
        *(
            context.dispatcher.send_to_daily_summary_processor_queue(
                date=message.date,
                feed_name=feed_name,
                article_ids=article_ids,
                request_id=message.request_id,
                force=message.force,
            )
            for feed_name, article_ids in groups.items()
        )
    )

    logger.info(
        f"日报发起完成: requestId={message.request_id}, date={message.date}, "
        f"Feed 数={len(groups)}, 耗时={elapsed_ms(start)}ms"
    )
    return len(groups)
