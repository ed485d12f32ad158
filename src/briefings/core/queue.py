"""进程内消息队列运行时.

至少一次投递：消费者未 ack 的消息会在延迟后重新投递，
超过最大重试次数后进入死信列表。
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class QueueMessage:
    """队列中的单条消息."""

    body: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))
    attempts: int = 1
    state: Literal["pending", "acked", "retry"] = "pending"
    retry_delay_seconds: float | None = None

    def ack(self) -> None:
        """确认处理完成，不再投递."""
        self.state = "acked"

    def retry(self, delay_seconds: float | None = None) -> None:
        """请求重新投递."""
        self.state = "retry"
        self.retry_delay_seconds = delay_seconds


BatchHandler = Callable[[list[QueueMessage]], Awaitable[None]]


class InMemoryQueue:
    """基于 asyncio.Queue 的消息队列."""

    def __init__(
        self,
        name: str,
        max_retries: int = 3,
        retry_delay_seconds: float = 30.0,
    ) -> None:
        self.name = name
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.dead_letters: list[QueueMessage] = []
        self._queue: asyncio.Queue[QueueMessage] = asyncio.Queue()

    @property
    def size(self) -> int:
        """待投递消息数."""
        return self._queue.qsize()

    async def send(self, body: dict[str, Any]) -> None:
        """发送单条消息."""
        await self._queue.put(QueueMessage(body=body))

    async def send_batch(self, bodies: list[dict[str, Any]]) -> None:
        """批量发送."""
        for body in bodies:
            await self._queue.put(QueueMessage(body=body))

    async def receive_batch(
        self,
        max_size: int = 10,
        timeout: float | None = None,
    ) -> list[QueueMessage]:
        """
        拉取一批消息.

        等待第一条消息（最多 timeout 秒），然后取出已就绪的消息直到 max_size。
        """
        batch: list[QueueMessage] = []
        if self._queue.empty():
            try:
                first = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return batch
        else:
            first = self._queue.get_nowait()

        batch.append(first)
        while len(batch) < max_size and not self._queue.empty():
            batch.append(self._queue.get_nowait())
        return batch

    def settle(self, batch: list[QueueMessage]) -> None:
        """根据 ack 状态结算一批消息."""
        for message in batch:
            if message.state == "acked":
                continue
            self._redeliver(message)

    def _redeliver(self, message: QueueMessage) -> None:
        if message.attempts >= self.max_retries:
            logger.error(
                f"[{self.name}] 消息超过最大重试次数，进入死信: "
                f"id={message.id}, attempts={message.attempts}"
            )
            self.dead_letters.append(message)
            return

        delay = message.retry_delay_seconds
        if delay is None:
            delay = self.retry_delay_seconds

        redelivered = QueueMessage(
            body=message.body,
            id=message.id,
            attempts=message.attempts + 1,
        )
        logger.info(
            f"[{self.name}] 消息将在 {delay}s 后重新投递: "
            f"id={message.id}, attempt={redelivered.attempts}"
        )

        loop = asyncio.get_running_loop()
        if delay <= 0:
            self._queue.put_nowait(redelivered)
        else:
            loop.call_later(delay, self._queue.put_nowait, redelivered)


class QueueWorker:
    """单个队列的消费循环."""

    def __init__(
        self,
        queue: InMemoryQueue,
        handler: BatchHandler,
        max_batch_size: int = 10,
        batch_timeout: float = 5.0,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.max_batch_size = max_batch_size
        self.batch_timeout = batch_timeout
        self._task: asyncio.Task[None] | None = None

    async def run_once(self, timeout: float | None = 0.0) -> int:
        """拉取并处理一批，返回处理的消息数."""
        batch = await self.queue.receive_batch(self.max_batch_size, timeout=timeout)
        if not batch:
            return 0

        try:
            await self.handler(batch)
        except Exception as e:
            # 整批失败：未 ack 的消息全部重投
            logger.exception(f"[{self.queue.name}] 批处理失败: {e}")
        finally:
            self.queue.settle(batch)
        return len(batch)

    async def _loop(self) -> None:
        while True:
            await self.run_once(timeout=self.batch_timeout)

    def start(self) -> None:
        """启动后台消费."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name=f"worker:{self.queue.name}")

    async def stop(self) -> None:
        """停止后台消费."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class QueueBroker:
    """持有所有队列及其消费者."""

    def __init__(
        self,
        queue_names: tuple[str, ...] | list[str],
        max_retries: int = 3,
        retry_delay_seconds: float = 30.0,
        max_batch_size: int = 10,
        batch_timeout: float = 5.0,
    ) -> None:
        self.queues = {
            name: InMemoryQueue(name, max_retries, retry_delay_seconds)
            for name in queue_names
        }
        self.max_batch_size = max_batch_size
        self.batch_timeout = batch_timeout
        self.workers: dict[str, QueueWorker] = {}

    def get(self, name: str) -> InMemoryQueue:
        """按名称取队列."""
        return self.queues[name]

    def bindings(self) -> dict[str, InMemoryQueue]:
        """供 QueueDispatcher 使用的队列绑定."""
        return dict(self.queues)

    def register(self, name: str, handler: BatchHandler) -> QueueWorker:
        """为队列注册消费者."""
        worker = QueueWorker(
            self.queues[name],
            handler,
            max_batch_size=self.max_batch_size,
            batch_timeout=self.batch_timeout,
        )
        self.workers[name] = worker
        return worker

    def start(self) -> None:
        """启动所有消费者."""
        for worker in self.workers.values():
            worker.start()
        logger.info(f"队列消费者已启动: {', '.join(self.workers)}")

    async def stop(self) -> None:
        """停止所有消费者."""
        for worker in self.workers.values():
            await worker.stop()
        logger.info("队列消费者已停止")
