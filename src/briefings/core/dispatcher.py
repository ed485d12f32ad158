"""队列消息分发器.

发送前校验消息（生产端快速失败），并补全 requestId 和时间戳。
"""

import logging
from typing import Any, Protocol

from briefings.core.errors import ConfigurationError, ErrorCode, QueueError
from briefings.core.messages import (
    DAILY_SUMMARY_INITIATOR_QUEUE,
    DAILY_SUMMARY_PROCESSOR_QUEUE,
    FEED_FETCH_QUEUE,
    WEEKLY_DIGEST_QUEUE,
    DailySummaryInitiatorMessage,
    DailySummaryProcessorMessage,
    FeedFetchMessage,
    MessageT,
    WeeklyDigestMessage,
    validate_queue_message,
)

logger = logging.getLogger(__name__)


class QueueBinding(Protocol):
    """队列绑定：能发送消息的对象."""

    async def send(self, body: dict[str, Any]) -> None: ...

    async def send_batch(self, bodies: list[dict[str, Any]]) -> None: ...


class QueueDispatcher:
    """类型安全的消息发送."""

    def __init__(self, bindings: dict[str, QueueBinding]) -> None:
        self.bindings = bindings

    def _get_queue(self, queue_name: str) -> QueueBinding:
        queue = self.bindings.get(queue_name)
        if queue is None:
            msg = f"Queue binding not found: {queue_name}"
            raise ConfigurationError(msg, context={"queue": queue_name})
        return queue

    async def send(
        self,
        queue_name: str,
        model: type[MessageT],
        payload: dict[str, Any],
    ) -> MessageT:
        """校验并发送单条消息，返回校验后的消息."""
        queue = self._get_queue(queue_name)
        message = validate_queue_message(payload, model)

        try:
            await queue.send(message.to_body())
        except Exception as e:
            msg = f"Failed to send message to {queue_name}: {e}"
            raise QueueError(
                msg,
                code=ErrorCode.QUEUE_SEND_FAILED,
                context={"queue": queue_name, "requestId": message.request_id},
            ) from e

        logger.info(
            f"消息已发送: queue={queue_name}, requestId={message.request_id}"
        )
        return message

    async def send_batch(
        self,
        queue_name: str,
        model: type[MessageT],
        payloads: list[dict[str, Any]],
    ) -> list[MessageT]:
        """批量发送：全部校验通过后才发送."""
        queue = self._get_queue(queue_name)
        messages = [validate_queue_message(payload, model) for payload in payloads]

        try:
            await queue.send_batch([m.to_body() for m in messages])
        except Exception as e:
            msg = f"Failed to send batch to {queue_name}: {e}"
            raise QueueError(
                msg,
                code=ErrorCode.QUEUE_SEND_FAILED,
                context={"queue": queue_name, "count": len(messages)},
            ) from e

        logger.info(f"批量消息已发送: queue={queue_name}, count={len(messages)}")
        return messages

    async def send_to_feed_fetch_queue(self, feed_url: str, feed_name: str) -> str:
        """发送抓取任务，返回 requestId."""
        message = await self.send(
            FEED_FETCH_QUEUE,
            FeedFetchMessage,
            {"feedUrl": feed_url, "feedName": feed_name, "action": "fetch"},
        )
        return message.request_id

    async def send_feed_fetch_message(
        self,
        feed_url: str,
        feed_name: str,
        feed_id: str | None = None,
        action: str = "fetch",
    ) -> str:
        """发送抓取/校验任务，返回 requestId."""
        payload: dict[str, Any] = {
            "feedUrl": feed_url,
            "feedName": feed_name,
            "action": action,
        }
        if feed_id:
            payload["feedId"] = feed_id
        message = await self.send(FEED_FETCH_QUEUE, FeedFetchMessage, payload)
        return message.request_id

    async def send_to_daily_summary_queue(
        self,
        date: str,
        feed_name: str | None = None,
        force: bool = False,
    ) -> str:
        """发送日报发起任务，返回 requestId."""
        payload: dict[str, Any] = {"date": date, "force": force}
        if feed_name:
            payload["feedName"] = feed_name
        message = await self.send(
            DAILY_SUMMARY_INITIATOR_QUEUE, DailySummaryInitiatorMessage, payload
        )
        return message.request_id

    async def send_to_daily_summary_processor_queue(
        self,
        date: str,
        feed_name: str,
        article_ids: list[str],
        request_id: str,
        force: bool = False,
    ) -> str:
        """发送日报处理任务，沿用上游 requestId，时间戳重新生成."""
        message = await self.send(
            DAILY_SUMMARY_PROCESSOR_QUEUE,
            DailySummaryProcessorMessage,
            {
                "date": date,
                "feedName": feed_name,
                "articleIds": article_ids,
                "force": force,
                "requestId": request_id,
            },
        )
        return message.request_id

    async def send_to_weekly_digest_queue(
        self,
        week_end_date: str,
        force_regenerate: bool = False,
    ) -> str:
        """发送周报任务，返回 requestId."""
        message = await self.send(
            WEEKLY_DIGEST_QUEUE,
            WeeklyDigestMessage,
            {"weekEndDate": week_end_date, "forceRegenerate": force_regenerate},
        )
        return message.request_id
