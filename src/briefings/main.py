"""Briefings 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from briefings import __version__
from briefings.api import health, run
from briefings.api.deps import register_exception_handlers
from briefings.config import Settings, get_settings
from briefings.core.context import build_pipeline_context
from briefings.core.dispatcher import QueueDispatcher
from briefings.core.feeds_config import load_feeds_config, sync_feeds
from briefings.core.messages import QUEUE_NAMES
from briefings.core.queue import QueueBroker
from briefings.models.database import Database
from briefings.queues import register_consumers
from briefings.scheduler import create_scheduler, shutdown_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _sync_feeds_config(database: Database, settings: Settings) -> None:
    """feeds.yaml 存在时同步到数据库."""
    path = Path(settings.feeds_config_path)
    if not path.exists():
        logger.info(f"未找到 {path}，跳过订阅源同步")
        return

    entries = load_feeds_config(path)
    async with database.session() as session:
        await sync_feeds(session, entries)


def create_app(settings: Settings | None = None) -> FastAPI:
    """创建应用."""
    app_settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """应用生命周期管理."""
        logger.info("正在初始化数据库...")
        database = Database(app_settings.database_url)
        await database.init()

        logger.info("正在同步订阅源配置...")
        await _sync_feeds_config(database, app_settings)

        broker = QueueBroker(
            QUEUE_NAMES,
            max_retries=app_settings.queue_max_retries,
            retry_delay_seconds=app_settings.queue_retry_delay_seconds,
            max_batch_size=app_settings.queue_max_batch_size,
            batch_timeout=app_settings.queue_batch_timeout_seconds,
        )
        dispatcher = QueueDispatcher(broker.bindings())
        context = build_pipeline_context(app_settings, database, dispatcher)

        app.state.database = database
        app.state.broker = broker
        app.state.context = context

        logger.info("正在启动队列消费者...")
        register_consumers(broker, context)
        broker.start()

        scheduler = None
        if app_settings.scheduler_enabled:
            logger.info("正在启动定时任务...")
            scheduler = create_scheduler(context)

        logger.info("Briefings 启动完成！")
        yield

        # 关闭时清理
        logger.info("正在关闭...")
        shutdown_scheduler(scheduler)
        await broker.stop()
        await database.dispose()
        logger.info("Briefings 已关闭")

    app = FastAPI(
        title="Briefings",
        description="RSS 日报与周报生成服务",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # 注册路由
    app.include_router(run.router)
    app.include_router(health.router)

    @app.get("/")
    async def root() -> dict:
        """根路径."""
        return {
            "name": "Briefings",
            "version": __version__,
            "description": "RSS 日报与周报生成服务",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "briefings.main:app",
        host="0.0.0.0",
        port=8000,
    )
