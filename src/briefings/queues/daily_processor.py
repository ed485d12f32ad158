"""daily-summary-processor 队列消费者 - 为单个 feed 生成并保存日报."""

import logging
import time

from sqlmodel import select

from briefings.core.context import PipelineContext
from briefings.core.errors import is_duplicate_error
from briefings.core.feed_service import FeedService
from briefings.core.messages import DailySummaryProcessorMessage, validate_queue_message
from briefings.core.queue import QueueMessage
from briefings.models.article import Article
from briefings.models.summary import DailySummary
from briefings.queues.common import elapsed_ms, settle_failure
from briefings.utils.timestamps import parse_date

logger = logging.getLogger(__name__)

STAGE = "daily-summary-processor"


async def handle_daily_processor_batch(
    batch: list[QueueMessage],
    context: PipelineContext,
) -> None:
    """顺序处理（受 LLM 限流和唯一约束影响，不并行）."""
    logger.info(f"处理 daily-summary-processor 批次: 消息数={len(batch)}")
    for message in batch:
        try:
            await process_daily_processor_message(message.body, context)
        except Exception as e:
            settle_failure(message, e, STAGE)
        else:
            message.ack()


async def process_daily_processor_message(
    body: dict,
    context: PipelineContext,
) -> DailySummary | None:
    """
    处理单条消息.

    已存在的日报（预检查或唯一约束冲突）视为成功，返回 None。
    """
    start = time.monotonic()
    message = validate_queue_message(body, DailySummaryProcessorMessage)
    summary_date = parse_date(message.date)
    summarizer = context.summarizer
    logger.info(
        f"处理日报: requestId={message.request_id}, date={message.date}, "
        f"feed={message.feed_name}, 文章数={len(message.article_ids)}, force={message.force}"
    )

    async with context.database.session() as session:
        try:
            feed = await FeedService(session).get_feed_by_name(message.feed_name)
            existing = (
                await summarizer.get_existing_daily_summary(session, feed.id, summary_date)
                if feed
                else None
            )
            if existing and not message.force:
                logger.info(
                    f"日报已存在，跳过: requestId={message.request_id}, "
                    f"feed={message.feed_name}, date={message.date}, id={existing.id}"
                )
                return None
            replaced_id = existing.id if existing else None

            result = await session.execute(
                select(Article)
                .where(Article.id.in_(message.article_ids))  # type: ignore[attr-defined]
                .order_by(Article.pub_date.desc())  # type: ignore[union-attr]
            )
            articles = list(result.scalars().all())
            if not articles:
                logger.warning(
                    f"未找到文章，跳过: requestId={message.request_id}, "
                    f"articleIds={message.article_ids}"
                )
                return None

            content = await summarizer.generate_daily_summary(
                articles, message.feed_name, summary_date, session
            )
            saved = await summarizer.save_daily_summary(
                session,
                feed_id=articles[0].feed_id,
                feed_name=message.feed_name,
                summary_date=summary_date,
                content=content,
                article_ids=[article.id for article in articles],
                replace=existing,
            )
            await FeedService(session).mark_articles_processed([a.id for a in articles])
            if replaced_id:
                logger.info(f"已替换旧日报: old={replaced_id}, new={saved.id}")
        except Exception as e:
            if is_duplicate_error(e):
                logger.info(
                    f"并发写入的重复日报，跳过: requestId={message.request_id}, "
                    f"feed={message.feed_name}, date={message.date}, 耗时={elapsed_ms(start)}ms"
                )
                return None
            logger.exception(
                f"日报处理失败: requestId={message.request_id}, feed={message.feed_name}, "
                f"date={message.date}, 文章数={len(message.article_ids)}, "
                f"耗时={elapsed_ms(start)}ms"
            )
            raise

    logger.info(
        f"日报处理完成: requestId={message.request_id}, id={saved.id}, "
        f"feed={message.feed_name}, 长度={len(content)}, 耗时={elapsed_ms(start)}ms"
    )
    return saved
