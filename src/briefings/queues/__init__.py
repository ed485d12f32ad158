"""队列消费者."""

from functools import partial

from briefings.core.context import PipelineContext
from briefings.core.messages import (
    DAILY_SUMMARY_INITIATOR_QUEUE,
    DAILY_SUMMARY_PROCESSOR_QUEUE,
    FEED_FETCH_QUEUE,
    WEEKLY_DIGEST_QUEUE,
)
from briefings.core.queue import QueueBroker
from briefings.queues.daily_initiator import handle_daily_initiator_batch
from briefings.queues.daily_processor import handle_daily_processor_batch
from briefings.queues.feed_fetch import handle_feed_fetch_batch
from briefings.queues.weekly_digest import handle_weekly_digest_batch


def register_consumers(broker: QueueBroker, context: PipelineContext) -> None:
    """为四个队列注册消费者."""
    broker.register(FEED_FETCH_QUEUE, partial(handle_feed_fetch_batch, context=context))
    broker.register(
        DAILY_SUMMARY_INITIATOR_QUEUE,
        partial(handle_daily_initiator_batch, context=context),
    )
    broker.register(
        DAILY_SUMMARY_PROCESSOR_QUEUE,
        partial(handle_daily_processor_batch, context=context),
    )
    broker.register(WEEKLY_DIGEST_QUEUE, partial(handle_weekly_digest_batch, context=context))


__all__ = ["register_consumers"]
