"""测试 HTTP 接口."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from briefings.core.context import PipelineContext
from briefings.core.dispatcher import QueueDispatcher
from briefings.core.messages import (
    DAILY_SUMMARY_INITIATOR_QUEUE,
    FEED_FETCH_QUEUE,
    WEEKLY_DIGEST_QUEUE,
)
from briefings.core.queue import QueueBroker
from briefings.models.feed import Feed
from briefings.utils.timestamps import calculate_week_range, utcnow

from conftest import API_KEY

HEADERS = {"X-API-Key": API_KEY}


class TestAuth:
    """鉴权."""

    @pytest.mark.asyncio
    async def test_missing_key(self, client: AsyncClient) -> None:
        """缺少 API key."""
        response = await client.post("/api/run/daily-summary", json={})
        assert response.status_code == 401
        data = response.json()
        assert data["success"] is False
        assert data["code"] == "MISSING_API_KEY"

    @pytest.mark.asyncio
    async def test_invalid_key(self, client: AsyncClient) -> None:
        """错误的 API key."""
        response = await client.post(
            "/api/run/daily-summary", json={}, headers={"X-API-Key": "wrong"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_API_KEY"

    @pytest.mark.asyncio
    async def test_not_configured_outside_development(
        self, client: AsyncClient, context: PipelineContext
    ) -> None:
        """非开发环境未配置 key 时拒绝."""
        context.settings = context.settings.model_copy(update={"api_key": ""})
        response = await client.post("/api/run/daily-summary", json={}, headers=HEADERS)
        assert response.status_code == 500
        assert response.json()["code"] == "AUTH_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_docs_require_auth(self, client: AsyncClient) -> None:
        """GET 说明接口同样需要鉴权."""
        response = await client.get("/api/run/weekly-summary")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_REQUIRED"

        response = await client.get("/api/run/weekly-summary", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["method"] == "POST"


class TestDailySummaryEndpoint:
    """POST /api/run/daily-summary."""

    @pytest.mark.asyncio
    async def test_defaults_to_yesterday(self, client: AsyncClient, broker: QueueBroker) -> None:
        """未指定日期时为昨天."""
        response = await client.post("/api/run/daily-summary", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        yesterday = (utcnow().date() - timedelta(days=1)).isoformat()
        assert data["success"] is True
        assert data["data"]["date"] == yesterday
        assert data["requestId"] == data["data"]["requestId"]

        batch = await broker.get(DAILY_SUMMARY_INITIATOR_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["date"] == yesterday

    @pytest.mark.asyncio
    async def test_specific_feed_and_force(
        self, client: AsyncClient, broker: QueueBroker
    ) -> None:
        """指定 feed 和 force."""
        response = await client.post(
            "/api/run/daily-summary",
            json={"date": "2025-06-01", "feedName": "A", "force": True},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Daily summary task initiated for A on 2025-06-01"
        batch = await broker.get(DAILY_SUMMARY_INITIATOR_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["feedName"] == "A"
        assert batch[0].body["force"] is True

    @pytest.mark.asyncio
    async def test_future_date(self, client: AsyncClient) -> None:
        """未来日期被拒绝."""
        tomorrow = (utcnow().date() + timedelta(days=1)).isoformat()
        response = await client.post(
            "/api/run/daily-summary", json={"date": tomorrow}, headers=HEADERS
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATE"

    @pytest.mark.asyncio
    async def test_bad_date_format(self, client: AsyncClient) -> None:
        """日期格式错误."""
        response = await client.post(
            "/api/run/daily-summary", json={"date": "06/01/2025"}, headers=HEADERS
        )
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["details"]["errors"][0]["field"].endswith("date")


class TestWeeklySummaryEndpoint:
    """POST /api/run/weekly-summary."""

    @pytest.mark.asyncio
    async def test_defaults_to_last_complete_week(
        self, client: AsyncClient, broker: QueueBroker
    ) -> None:
        """默认最近一个完整周."""
        response = await client.post("/api/run/weekly-summary", headers=HEADERS)

        assert response.status_code == 200
        week_start, week_end = calculate_week_range(utcnow().date())
        data = response.json()["data"]
        assert data["weekStartDate"] == week_start.isoformat()
        assert data["weekEndDate"] == week_end.isoformat()
        assert data["daysDiff"] == 6

        batch = await broker.get(WEEKLY_DIGEST_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["weekEndDate"] == week_end.isoformat()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("start", "end"),
        [("2025-06-08", "2025-06-08"), ("2025-06-08", "2025-06-01"), ("2025-05-01", "2025-06-01")],
    )
    async def test_invalid_span(self, client: AsyncClient, start: str, end: str) -> None:
        """跨度必须在 1 到 14 天之间."""
        response = await client.post(
            "/api/run/weekly-summary",
            json={"weekStartDate": start, "weekEndDate": end},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_WEEK_SPAN"

    @pytest.mark.asyncio
    async def test_custom_span_reports_effective_range(
        self, client: AsyncClient, broker: QueueBroker
    ) -> None:
        """自定义跨度时返回实际处理的 7 天范围."""
        response = await client.post(
            "/api/run/weekly-summary",
            json={"weekStartDate": "2025-06-05", "weekEndDate": "2025-06-08"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["weekStartDate"] == "2025-06-05"
        assert body["data"]["effectiveWeekStartDate"] == "2025-06-02"
        assert body["data"]["daysDiff"] == 3
        assert body["message"] == "Weekly summary task initiated for 2025-06-02 to 2025-06-08"
        batch = await broker.get(WEEKLY_DIGEST_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["weekEndDate"] == "2025-06-08"

    @pytest.mark.asyncio
    async def test_future_week(self, client: AsyncClient) -> None:
        """未来日期被拒绝."""
        today = utcnow().date()
        response = await client.post(
            "/api/run/weekly-summary",
            json={
                "weekStartDate": today.isoformat(),
                "weekEndDate": (today + timedelta(days=6)).isoformat(),
            },
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATE"

    @pytest.mark.asyncio
    async def test_requires_both_dates(self, client: AsyncClient) -> None:
        """起止日期需同时提供."""
        response = await client.post(
            "/api/run/weekly-summary", json={"weekStartDate": "2025-06-02"}, headers=HEADERS
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_force(self, client: AsyncClient, broker: QueueBroker) -> None:
        """force 转为 forceRegenerate."""
        response = await client.post(
            "/api/run/weekly-summary",
            json={"weekStartDate": "2025-06-02", "weekEndDate": "2025-06-08", "force": True},
            headers=HEADERS,
        )
        assert response.status_code == 200
        batch = await broker.get(WEEKLY_DIGEST_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["weekEndDate"] == "2025-06-08"
        assert batch[0].body["forceRegenerate"] is True


class TestFeedFetchEndpoint:
    """POST /api/run/feed-fetch."""

    @pytest.mark.asyncio
    async def test_single_feed(self, client: AsyncClient, broker: QueueBroker) -> None:
        """指定 feed."""
        response = await client.post(
            "/api/run/feed-fetch",
            json={"feedUrl": "https://example.com/rss", "feedName": "Example"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["data"]["feedCount"] == 1
        batch = await broker.get(FEED_FETCH_QUEUE).receive_batch(timeout=0)
        assert batch[0].body["feedUrl"] == "https://example.com/rss"

    @pytest.mark.asyncio
    async def test_url_requires_name(self, client: AsyncClient) -> None:
        """只给 URL 时校验失败."""
        response = await client.post(
            "/api/run/feed-fetch", json={"feedUrl": "https://example.com/rss"}, headers=HEADERS
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_all_active_feeds(
        self, client: AsyncClient, broker: QueueBroker, sample_feeds: list[Feed]
    ) -> None:
        """未指定时抓取所有启用的 feed."""
        response = await client.post("/api/run/feed-fetch", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["data"]["feedCount"] == 2
        assert broker.get(FEED_FETCH_QUEUE).size == 2

    @pytest.mark.asyncio
    async def test_no_active_feeds(self, client: AsyncClient) -> None:
        """没有启用的 feed."""
        response = await client.post("/api/run/feed-fetch", json={}, headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["code"] == "NO_ACTIVE_FEEDS"


class TestHealth:
    """GET /api/health."""

    @pytest.mark.asyncio
    async def test_healthy(self, client: AsyncClient) -> None:
        """所有检查通过."""
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"] == {"database": True, "archive": True, "queues": True}
        assert response.headers["cache-control"].startswith("no-cache")

    @pytest.mark.asyncio
    async def test_degraded_without_queues(
        self, client: AsyncClient, context: PipelineContext
    ) -> None:
        """缺少队列绑定时降级."""
        context.dispatcher = QueueDispatcher({})
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["queues"] is False
        assert data["errors"][0].startswith("Queues: Missing bindings")

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient) -> None:
        """根路径."""
        response = await client.get("/")
        assert response.json()["name"] == "Briefings"

