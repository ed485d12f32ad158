"""feed-fetch 队列消费者 - 抓取或校验订阅源."""

import asyncio
import logging
import time

from briefings.core.context import PipelineContext
from briefings.core.feed_service import FeedService
from briefings.core.messages import FeedFetchMessage, validate_queue_message
from briefings.core.queue import QueueMessage
from briefings.queues.common import elapsed_ms, settle_failure
from briefings.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

STAGE = "feed-fetch"


async def handle_feed_fetch_batch(batch: list[QueueMessage], context: PipelineContext) -> None:
    """并行处理一批消息，单条失败不影响其他消息."""
    logger.info(f"处理 feed-fetch 批次: 消息数={len(batch)}")

    results = await asyncio.gather(
        *(process_feed_fetch_message(message.body, context) for message in batch),
        return_exceptions=True,
    )

    failed = 0
    for message, result in zip(batch, results, strict=True):
        if isinstance(result, BaseException):
            failed += 1
            settle_failure(message, result, STAGE)
        else:
            message.ack()

    logger.info(
        f"feed-fetch 批次完成: 总数={len(batch)}, 成功={len(batch) - failed}, 失败={failed}"
    )


async def process_feed_fetch_message(body: dict, context: PipelineContext) -> int:
    """处理单条消息，返回新增文章数（校验动作返回 0）."""
    start = time.monotonic()
    message = validate_queue_message(body, FeedFetchMessage)
    logger.info(
        f"处理 feed-fetch 消息: requestId={message.request_id}, "
        f"feed={message.feed_name}, url={message.feed_url}, action={message.action}"
    )

    if message.action == "validate":
        await validate_feed(message, context)
        return 0

    async with context.database.session() as session:
        service = FeedService(session, context.dispatcher, timeout=context.fetch_timeout)
        try:
            items = await service.fetch_feed(message.feed_url)
            if not items:
                logger.info(f"Feed 中没有条目: {message.feed_name}")
                return 0

            feed = await service.get_or_create_feed(message.feed_url, message.feed_name)
            articles = await service.process_articles(feed.id, items)
            await service.update_feed_timestamp(feed.id)
        except Exception as e:
            logger.exception(
                f"Feed 抓取失败: requestId={message.request_id}, feed={message.feed_name}, "
                f"耗时={elapsed_ms(start)}ms"
            )
            await service.update_feed_error(message.feed_url, str(e))
            raise

    logger.info(
        f"Feed 抓取完成: requestId={message.request_id}, feed={message.feed_name}, "
        f"新文章={len(articles)}, 跳过重复={len(items) - len(articles)}, "
        f"耗时={elapsed_ms(start)}ms"
    )
    return len(articles)


async def validate_feed(message: FeedFetchMessage, context: PipelineContext) -> None:
    """校验订阅源并保存结果（校验本身不抛出）."""
    result = await context.validator.validate(message.feed_url)

    async with context.database.session() as session:
        service = FeedService(session)
        feed = await service.get_feed_by_url(message.feed_url)
        if feed is None:
            logger.warning(f"待校验的 Feed 不存在: {message.feed_url}")
            return

        feed.is_valid = result.is_valid
        feed.validation_error = result.error
        if result.is_valid and result.feed_title:
            feed.name = result.feed_title
        feed.updated_at = utcnow()
        await session.commit()

    if result.is_valid:
        logger.info(f"Feed 校验通过: {message.feed_url} ({result.feed_type})")
    else:
        logger.warning(
            f"Feed 校验失败: {message.feed_url}, 类型={result.error_type}, 原因={result.error}"
        )
