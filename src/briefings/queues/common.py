"""队列消费者公共逻辑."""

import logging
import time

from briefings.core.errors import ErrorClassification, classify_error, serialize_error
from briefings.core.queue import QueueMessage

logger = logging.getLogger(__name__)


def elapsed_ms(start: float) -> int:
    """从 start（time.monotonic）到现在的毫秒数."""
    return int((time.monotonic() - start) * 1000)


def settle_failure(message: QueueMessage, error: BaseException, stage: str) -> None:
    """失败消息：永久错误 ack，可重试错误交给队列重新投递."""
    classification = classify_error(error)
    details = serialize_error(error)
    request_id = message.body.get("requestId")

    if classification == ErrorClassification.PERMANENT:
        logger.error(
            f"[{stage}] 永久错误，不再重试: requestId={request_id}, error={details}"
        )
        message.ack()
        return

    logger.warning(
        f"[{stage}] 可重试错误 ({classification.value})，等待重新投递: "
        f"requestId={request_id}, attempt={message.attempts}, error={details}"
    )
    message.retry()
