"""Feed URL 校验.

轻量抓取并嗅探内容是否为 RSS/Atom，不做完整解析。
"""

import html
import re
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlparse

import httpx

ValidationErrorType = Literal[
    "HTTP_ERROR",
    "NOT_FOUND",
    "NOT_XML",
    "NOT_RSS",
    "MALFORMED",
    "TIMEOUT",
    "NETWORK_ERROR",
    "INVALID_URL",
]

USER_AGENT = "Mozilla/5.0 (compatible; FeedValidator/1.0)"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"
ATOM_NAMESPACE = 'xmlns="http://www.w3.org/2005/atom"'

_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)


@dataclass
class FeedValidationResult:
    """校验结果."""

    is_valid: bool
    error: str | None = None
    error_type: ValidationErrorType | None = None
    feed_title: str | None = None
    feed_type: Literal["rss", "atom"] | None = None


class FeedValidator:
    """Feed 校验器（从不抛出异常）."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_bytes: int = 1024 * 1024,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client

    async def validate(self, url: str) -> FeedValidationResult:
        """校验 URL 是否为有效 feed."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return FeedValidationResult(
                is_valid=False,
                error="Invalid URL - only http and https are supported",
                error_type="INVALID_URL",
            )

        try:
            status, reason, body = await self._fetch(url)
        except httpx.TimeoutException:
            return FeedValidationResult(
                is_valid=False,
                error=f"Request timeout - feed took too long to respond ({self.timeout:g}s)",
                error_type="TIMEOUT",
            )
        except httpx.HTTPError as e:
            return FeedValidationResult(
                is_valid=False,
                error=f"Network error: {e}",
                error_type="NETWORK_ERROR",
            )

        if status == 404:
            return FeedValidationResult(
                is_valid=False,
                error="URL not found (404) - this page does not exist",
                error_type="NOT_FOUND",
            )
        if not 200 <= status < 300:
            return FeedValidationResult(
                is_valid=False,
                error=f"HTTP {status}: {reason}",
                error_type="HTTP_ERROR",
            )

        return sniff_feed(body)

    async def _fetch(self, url: str) -> tuple[int, str, str]:
        """抓取内容，超过 max_bytes 截断."""
        headers = {"User-Agent": USER_AGENT, "Accept": ACCEPT}
        client = self._client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            async with client.stream("GET", url, headers=headers, timeout=self.timeout) as response:
                chunks: list[bytes] = []
                size = 0
                if response.is_success:
                    async for chunk in response.aiter_bytes():
                        chunks.append(chunk)
                        size += len(chunk)
                        if size >= self.max_bytes:
                            break
                body = b"".join(chunks)[: self.max_bytes]
                encoding = response.encoding or "utf-8"
                return response.status_code, response.reason_phrase, body.decode(
                    encoding, errors="replace"
                )
        finally:
            if self._client is None:
                await client.aclose()


def sniff_feed(body: str) -> FeedValidationResult:
    """根据内容判断 feed 类型."""
    content = body.lstrip("\ufeff").strip()
    lowered = content.lower()

    if not (
        lowered.startswith("<?xml") or lowered.startswith("<rss") or lowered.startswith("<feed")
    ):
        if lowered.startswith("<!doctype html") or lowered.startswith("<html"):
            return FeedValidationResult(
                is_valid=False,
                error="This URL returns an HTML page, not an RSS feed",
                error_type="NOT_XML",
            )
        return FeedValidationResult(
            is_valid=False,
            error="Response does not appear to be XML content",
            error_type="NOT_XML",
        )

    feed_type: Literal["rss", "atom"] | None = None
    if "<rss" in lowered or "<channel>" in lowered:
        feed_type = "rss"
    elif "<feed" in lowered and ATOM_NAMESPACE in lowered:
        feed_type = "atom"

    if feed_type is None:
        return FeedValidationResult(
            is_valid=False,
            error="This is valid XML but not an RSS or Atom feed",
            error_type="NOT_RSS",
        )

    title = None
    match = _TITLE_RE.search(content)
    if match:
        title = html.unescape(match.group(1)).strip() or None

    return FeedValidationResult(is_valid=True, feed_title=title, feed_type=feed_type)
