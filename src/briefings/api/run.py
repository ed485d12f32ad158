"""手动触发 API - 向各阶段入口队列发送消息."""

import logging
from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from briefings.api.deps import (
    RequestError,
    get_context,
    require_api_key,
    require_authenticated,
    success_response,
)
from briefings.core.context import PipelineContext
from briefings.core.feed_service import FeedService
from briefings.core.messages import DateString, UrlString
from briefings.models.database import get_session
from briefings.utils.timestamps import calculate_week_range, parse_date, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/run", tags=["run"])

MAX_WEEK_SPAN_DAYS = 14
WEEK_WINDOW_DAYS = 6


class FeedFetchRequest(BaseModel):
    """抓取请求."""

    model_config = ConfigDict(populate_by_name=True)

    feed_url: UrlString | None = Field(default=None, alias="feedUrl")
    feed_name: str | None = Field(default=None, alias="feedName")
    force: bool = False

    @model_validator(mode="after")
    def _require_name_with_url(self) -> "FeedFetchRequest":
        if self.feed_url and not self.feed_name:
            msg = "feedName is required when feedUrl is provided"
            raise ValueError(msg)
        return self


class DailySummaryRequest(BaseModel):
    """日报请求."""

    model_config = ConfigDict(populate_by_name=True)

    date: DateString | None = None
    feed_name: str | None = Field(default=None, alias="feedName")
    force: bool = False


class WeeklySummaryRequest(BaseModel):
    """周报请求（起止日期需同时提供）."""

    model_config = ConfigDict(populate_by_name=True)

    week_start_date: DateString | None = Field(default=None, alias="weekStartDate")
    week_end_date: DateString | None = Field(default=None, alias="weekEndDate")
    force: bool = False

    @model_validator(mode="after")
    def _require_both_dates(self) -> "WeeklySummaryRequest":
        if bool(self.week_start_date) != bool(self.week_end_date):
            msg = "Both weekStartDate and weekEndDate must be provided"
            raise ValueError(msg)
        return self


def _today() -> date:
    return utcnow().date()


@router.post("/feed-fetch", dependencies=[Depends(require_api_key)])
async def run_feed_fetch(
    body: FeedFetchRequest | None = None,
    context: PipelineContext = Depends(get_context),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """抓取指定 feed，未指定时抓取所有启用的 feed."""
    body = body or FeedFetchRequest()

    if body.feed_url and body.feed_name:
        request_id = await context.dispatcher.send_to_feed_fetch_queue(
            body.feed_url, body.feed_name
        )
        request_ids = [request_id]
        message = f"Feed fetch task initiated for {body.feed_name}"
    else:
        feeds = await FeedService(session, context.dispatcher).get_active_feeds()
        if not feeds:
            logger.warning("没有启用的 Feed")
            msg = "No active feeds configured"
            raise RequestError(msg, 404, "NO_ACTIVE_FEEDS")
        request_ids = [
            await context.dispatcher.send_to_feed_fetch_queue(feed.url, feed.name)
            for feed in feeds
        ]
        message = f"Feed fetch tasks initiated for {len(request_ids)} feeds"

    logger.info(f"手动触发抓取: feed 数={len(request_ids)}")
    return success_response(
        message,
        {"requestIds": request_ids, "feedCount": len(request_ids), "force": body.force},
        request_ids[0] if len(request_ids) == 1 else None,
    )


@router.post("/daily-summary", dependencies=[Depends(require_api_key)])
async def run_daily_summary(
    body: DailySummaryRequest | None = None,
    context: PipelineContext = Depends(get_context),
) -> dict:
    """发起日报，默认为昨天."""
    body = body or DailySummaryRequest()
    today = _today()
    target = parse_date(body.date) if body.date else today - timedelta(days=1)

    if target > today:
        msg = "Cannot generate summary for future dates"
        raise RequestError(
            msg,
            400,
            "INVALID_DATE",
            {"targetDate": target.isoformat(), "today": today.isoformat()},
        )

    request_id = await context.dispatcher.send_to_daily_summary_queue(
        target.isoformat(), body.feed_name, body.force
    )
    message = (
        f"Daily summary task initiated for {body.feed_name} on {target.isoformat()}"
        if body.feed_name
        else f"Daily summary task initiated for {target.isoformat()}"
    )
    logger.info(f"手动触发日报: date={target}, feed={body.feed_name}, requestId={request_id}")
    return success_response(
        message,
        {
            "requestId": request_id,
            "date": target.isoformat(),
            "feedName": body.feed_name,
            "force": body.force,
        },
        request_id,
    )


@router.post("/weekly-summary", dependencies=[Depends(require_api_key)])
async def run_weekly_summary(
    body: WeeklySummaryRequest | None = None,
    context: PipelineContext = Depends(get_context),
) -> dict:
    """发起周报，默认为最近完整的一周."""
    body = body or WeeklySummaryRequest()
    today = _today()

    if body.week_start_date and body.week_end_date:
        week_start = parse_date(body.week_start_date)
        week_end = parse_date(body.week_end_date)
    else:
        week_start, week_end = calculate_week_range(today)

    details: dict[str, Any] = {
        "weekStartDate": week_start.isoformat(),
        "weekEndDate": week_end.isoformat(),
    }
    if week_start > today or week_end > today:
        msg = "Cannot generate summary for future dates"
        raise RequestError(msg, 400, "INVALID_DATE", {**details, "today": today.isoformat()})

    days_diff = (week_end - week_start).days
    if not 1 <= days_diff <= MAX_WEEK_SPAN_DAYS:
        msg = f"Week span must be between 1 and {MAX_WEEK_SPAN_DAYS} days"
        raise RequestError(msg, 400, "INVALID_WEEK_SPAN", {**details, "daysDiff": days_diff})

    # 队列消息只携带结束日期，消费者总是处理以其结束的 7 天
    effective_start = week_end - timedelta(days=WEEK_WINDOW_DAYS)
    request_id = await context.dispatcher.send_to_weekly_digest_queue(
        week_end.isoformat(), body.force
    )
    logger.info(
        f"手动触发周报: {effective_start} ~ {week_end} (请求 {week_start} 起), "
        f"requestId={request_id}"
    )
    return success_response(
        f"Weekly summary task initiated for {effective_start.isoformat()} to {week_end.isoformat()}",
        {
            **details,
            "effectiveWeekStartDate": effective_start.isoformat(),
            "requestId": request_id,
            "daysDiff": days_diff,
            "force": body.force,
        },
        request_id,
    )


@router.get("/feed-fetch", dependencies=[Depends(require_authenticated)])
async def describe_feed_fetch() -> dict:
    """抓取接口说明."""
    return {
        "endpoint": "/api/run/feed-fetch",
        "method": "POST",
        "description": "Trigger feed fetching",
        "headers": {"X-API-Key": "Required - Your API key"},
        "body": {
            "feedUrl": "(optional) Specific feed URL. Fetches all active feeds when omitted.",
            "feedName": "(optional) Feed name, required when feedUrl is provided",
            "force": "(optional) Force fetch",
        },
    }


@router.get("/daily-summary", dependencies=[Depends(require_authenticated)])
async def describe_daily_summary() -> dict:
    """日报接口说明."""
    return {
        "endpoint": "/api/run/daily-summary",
        "method": "POST",
        "description": "Trigger daily summary generation",
        "headers": {"X-API-Key": "Required - Your API key"},
        "body": {
            "date": "(optional) Date in YYYY-MM-DD format. Defaults to yesterday.",
            "feedName": "(optional) Specific feed name. All feeds are summarized when omitted.",
            "force": "(optional) Force regeneration even if summary exists",
        },
    }


@router.get("/weekly-summary", dependencies=[Depends(require_authenticated)])
async def describe_weekly_summary() -> dict:
    """周报接口说明."""
    return {
        "endpoint": "/api/run/weekly-summary",
        "method": "POST",
        "description": "Trigger weekly digest generation",
        "headers": {"X-API-Key": "Required - Your API key"},
        "body": {
            "weekStartDate": "(optional) Start date YYYY-MM-DD, requires weekEndDate",
            "weekEndDate": "(optional) End date YYYY-MM-DD, requires weekStartDate",
            "force": "(optional) Force regeneration even if summary exists",
        },
        "notes": [
            "Defaults to the most recent Monday to Sunday week",
            f"Week span must be between 1 and {MAX_WEEK_SPAN_DAYS} days",
            "The digest always covers the 7 days ending on weekEndDate (see effectiveWeekStartDate)",
        ],
    }
