"""测试周报归档与邮件."""

import json
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

import briefings.core.archive as archive_module
from briefings.core.archive import DigestArchive, LocalObjectStore
from briefings.core.email import EmailService, render_digest_html
from briefings.core.errors import BriefingsError, ErrorCode


class TestLocalObjectStore:
    """本地对象存储."""

    @pytest.mark.asyncio
    async def test_put_get_list_delete(self, tmp_path: Path) -> None:
        """基本读写."""
        store = LocalObjectStore(tmp_path)
        await store.put("digests/a.json", "A")
        await store.put("digests/b.json", "B")

        assert await store.get("digests/a.json") == "A"
        assert await store.get("digests/missing.json") is None
        assert await store.list("digests") == ["digests/a.json", "digests/b.json"]

        await store.delete("digests/a.json")
        assert await store.list("digests") == ["digests/b.json"]
        assert await store.ping()

    @pytest.mark.asyncio
    async def test_file_io_runs_in_thread(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """所有文件操作经由 asyncio.to_thread."""
        calls: list[str] = []

        async def recording_to_thread(func: Callable, *args: Any, **kwargs: Any) -> Any:
            calls.append(func.__name__)
            return func(*args, **kwargs)

        monkeypatch.setattr(archive_module.asyncio, "to_thread", recording_to_thread)
        store = LocalObjectStore(tmp_path / "root")

        await store.put("digests/a.json", "A")
        assert await store.get("digests/a.json") == "A"
        assert await store.list("digests") == ["digests/a.json"]
        await store.delete("digests/a.json")
        assert await store.ping()

        assert calls == ["_write", "_read", "_list", "unlink", "_ping"]

    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self, tmp_path: Path) -> None:
        """键不能跳出根目录."""
        store = LocalObjectStore(tmp_path / "root")
        with pytest.raises(BriefingsError) as exc_info:
            await store.put("../escape.json", "x")
        assert exc_info.value.code == ErrorCode.STORAGE_ERROR


class TestDigestArchive:
    """周报归档."""

    @pytest.mark.asyncio
    async def test_store_and_get(self, archive: DigestArchive, tmp_path: Path) -> None:
        """按 ISO 周保存，字段为 camelCase."""
        key = await archive.store_digest(
            date(2025, 6, 2),
            date(2025, 6, 8),
            "Title",
            ["AI"],
            "recap",
            generated_at=datetime(2025, 6, 9, 1, 0),
        )

        assert key == "digests/2025-W23.json"
        raw = json.loads((tmp_path / "archive" / key).read_text(encoding="utf-8"))
        assert raw == {
            "weekStart": "2025-06-02",
            "weekEnd": "2025-06-08",
            "title": "Title",
            "topics": ["AI"],
            "recapContent": "recap",
            "generatedAt": "2025-06-09T01:00:00Z",
        }
        digest = await archive.get_digest(date(2025, 6, 4))
        assert digest is not None
        assert digest.title == "Title"

    @pytest.mark.asyncio
    async def test_recent_digests_skip_gaps(self, archive: DigestArchive) -> None:
        """中间缺失的周被跳过，最多回看 count + 2 周."""
        await archive.store_digest(date(2025, 6, 2), date(2025, 6, 8), "W23", ["a"], "r")
        await archive.store_digest(date(2025, 5, 19), date(2025, 5, 25), "W21", ["b"], "r")
        await archive.store_digest(date(2025, 4, 28), date(2025, 5, 4), "W18", ["c"], "r")

        digests = await archive.get_recent_digests(2, today=date(2025, 6, 11))
        assert [d.title for d in digests] == ["W23", "W21"]

        digests = await archive.get_recent_digests(1, today=date(2025, 6, 9))
        assert [d.title for d in digests] == ["W23"]

    @pytest.mark.asyncio
    async def test_build_context(self, archive: DigestArchive) -> None:
        """上下文字符串."""
        empty = await archive.build_digest_context(today=date(2025, 6, 11))
        assert empty.digest_count == 0
        assert empty.context_string == "No previous digests available."

        await archive.store_digest(date(2025, 6, 2), date(2025, 6, 8), "W23", ["AI", "Chips"], "r")
        context = await archive.build_digest_context(today=date(2025, 6, 11))

        assert context.digest_count == 1
        assert context.recent_titles == ["W23"]
        assert context.recent_topics == ["AI", "Chips"]
        assert context.context_string == 'Week of Jun 2: "W23"\n  Topics: AI, Chips'

    @pytest.mark.asyncio
    async def test_list_and_delete(self, archive: DigestArchive) -> None:
        """列出与删除."""
        await archive.store_digest(date(2025, 6, 2), date(2025, 6, 8), "W23", [], "r")
        assert await archive.list_digest_keys() == ["digests/2025-W23.json"]

        await archive.delete_digest(date(2025, 6, 2))
        assert await archive.list_digest_keys() == []


class TestEmail:
    """邮件发送."""

    def test_render_html(self) -> None:
        """markdown 渲染并转义标题."""
        html = render_digest_html(
            "Week <1>", "## Heading\n\n* one\n* two", "2025-06-02", "2025-06-08"
        )
        assert "<h1>Week &lt;1&gt;</h1>" in html
        assert "<h2>Heading</h2>" in html
        assert "<li>one</li>" in html
        assert "Week of 2025-06-02 to 2025-06-08" in html

    @pytest.mark.asyncio
    async def test_send_weekly_digest(self) -> None:
        """请求体、鉴权头和标签."""
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email-123"})

        service = EmailService(
            api_key="re_test",
            sender="digest@example.com",
            recipients=["me@example.com"],
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await service.send_weekly_digest("Title", "Body", "2025-06-02", "2025-06-08")

        assert result.success
        assert result.message_id == "email-123"
        assert captured["url"] == "https://api.resend.com/emails"
        assert captured["auth"] == "Bearer re_test"
        assert captured["body"]["to"] == ["me@example.com"]
        assert captured["body"]["subject"] == "Title"
        assert {"name": "week_start", "value": "2025-06-02"} in captured["body"]["tags"]

    @pytest.mark.asyncio
    async def test_send_failure_returns_result(self) -> None:
        """HTTP 错误不抛出."""
        service = EmailService(
            api_key="re_test",
            sender="digest@example.com",
            recipients=["me@example.com"],
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(422, text="bad"))
            ),
        )
        result = await service.send_email("Title", "<p>x</p>")

        assert not result.success
        assert "HTTP 422" in (result.error or "")
