"""数据库初始化和会话管理."""

import logging
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)


class Database:
    """数据库句柄：持有引擎和会话工厂，显式传递给各组件."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init(self) -> None:
        """创建所有表."""
        # 注册所有表模型
        from briefings.models import article, feed, summary, weekly  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("数据库表已就绪")

    def session(self) -> AsyncSession:
        """创建新会话（async with 使用）."""
        return self.session_factory()

    async def ping(self) -> bool:
        """连通性检查."""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        """释放连接池."""
        await self.engine.dispose()


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（用于依赖注入）."""
    database: Database | None = getattr(request.app.state, "database", None)
    if database is None:
        msg = "数据库未初始化"
        raise RuntimeError(msg)

    async with database.session() as session:
        yield session
