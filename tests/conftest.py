"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from briefings.config import Settings
from briefings.core.archive import DigestArchive, LocalObjectStore
from briefings.core.context import PipelineContext
from briefings.core.dispatcher import QueueDispatcher
from briefings.core.messages import QUEUE_NAMES
from briefings.core.queue import QueueBroker
from briefings.llm.base import GenerationResult, LLMConfig, LLMProvider
from briefings.llm.prompts import PromptLibrary
from briefings.main import create_app
from briefings.models.article import Article
from briefings.models.database import Database
from briefings.models.feed import Feed

API_KEY = "test-api-key"


class FakeLLMProvider(LLMProvider):
    """按顺序返回预设结果的 LLM.

    responses 中的元素可以是字符串、异常或接收 prompt 的函数。
    """

    def __init__(self, responses: list | None = None, default: str = "# Summary\n\nContent") -> None:
        super().__init__(LLMConfig(model="fake-model"))
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []
        self.configs: list[LLMConfig | None] = []

    async def generate(self, prompt: str, config: LLMConfig | None = None) -> GenerationResult:
        self.prompts.append(prompt)
        self.configs.append(config)
        response: str | Exception | Callable[[str], str] = (
            self.responses.pop(0) if self.responses else self.default
        )
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(prompt)
        return GenerationResult(text=response, finish_reason="STOP")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """测试配置（不读取 .env）."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        environment="test",
        api_key=API_KEY,
        archive_dir=str(tmp_path / "archive"),
        feeds_config_path=str(tmp_path / "feeds.yaml"),
        scheduler_enabled=False,
        queue_retry_delay_seconds=0,
        queue_batch_timeout_seconds=0,
    )


@pytest_asyncio.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """临时文件数据库."""
    db = Database(settings.database_url)
    await db.init()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def async_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """数据库会话."""
    async with database.session() as session:
        yield session


@pytest.fixture
def broker() -> QueueBroker:
    """进程内队列（立即重投）."""
    return QueueBroker(QUEUE_NAMES, max_retries=3, retry_delay_seconds=0, batch_timeout=0)


@pytest.fixture
def dispatcher(broker: QueueBroker) -> QueueDispatcher:
    """绑定到测试队列的分发器."""
    return QueueDispatcher(broker.bindings())


@pytest.fixture
def fake_llm() -> FakeLLMProvider:
    """假 LLM."""
    return FakeLLMProvider()


@pytest.fixture
def archive(tmp_path: Path) -> DigestArchive:
    """本地归档."""
    return DigestArchive(LocalObjectStore(tmp_path / "archive"))


@pytest.fixture
def context(
    settings: Settings,
    database: Database,
    dispatcher: QueueDispatcher,
    fake_llm: FakeLLMProvider,
    archive: DigestArchive,
) -> PipelineContext:
    """流水线上下文."""
    return PipelineContext(
        settings=settings,
        database=database,
        dispatcher=dispatcher,
        llm=fake_llm,
        prompts=PromptLibrary(),
        archive=archive,
    )


@pytest_asyncio.fixture
async def client(
    settings: Settings,
    database: Database,
    context: PipelineContext,
) -> AsyncGenerator[AsyncClient, None]:
    """创建测试用的 HTTP 客户端（不触发 lifespan）."""
    app = create_app(settings)
    app.state.database = database
    app.state.context = context
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def sample_feeds(async_session: AsyncSession) -> list[Feed]:
    """创建两个测试 Feed."""
    feeds = [
        Feed(id="feed-a", name="A", url="https://a.example.com/feed.xml"),
        Feed(id="feed-b", name="B", url="https://b.example.com/feed.xml"),
    ]
    async_session.add_all(feeds)
    await async_session.commit()
    return feeds


@pytest_asyncio.fixture
async def sample_articles(
    async_session: AsyncSession,
    sample_feeds: list[Feed],
) -> list[Article]:
    """2025-06-01 的文章：A 两篇，B 一篇，另有一篇在前一天."""
    articles = [
        Article(
            id="article-a1",
            feed_id="feed-a",
            title="A story one",
            link="https://a.example.com/1",
            content="First story from A",
            pub_date=datetime(2025, 6, 1, 8, 0),
        ),
        Article(
            id="article-a2",
            feed_id="feed-a",
            title="A story two",
            link="https://a.example.com/2",
            content="Second story from A",
            pub_date=datetime(2025, 6, 1, 23, 59, 59, 999000),
        ),
        Article(
            id="article-b1",
            feed_id="feed-b",
            title="B story",
            link="https://b.example.com/1",
            content="Story from B",
            pub_date=datetime(2025, 6, 1, 0, 0),
        ),
        Article(
            id="article-a0",
            feed_id="feed-a",
            title="Older A story",
            link="https://a.example.com/0",
            content="Yesterday's story",
            pub_date=datetime(2025, 5, 31, 23, 59),
        ),
    ]
    async_session.add_all(articles)
    await async_session.commit()
    return articles
