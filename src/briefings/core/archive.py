"""周报归档 - 保存历史周报，为新周报提供"近期已覆盖"上下文."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from briefings.core.errors import BriefingsError, ErrorCode
from briefings.utils.timestamps import iso_week_key, monday_of, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "digests"
NO_DIGESTS_CONTEXT = "No previous digests available."


class ObjectStore(Protocol):
    """键值对象存储."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def list(self, prefix: str, limit: int = 50) -> list[str]: ...

    async def delete(self, key: str) -> None: ...


class LocalObjectStore:
    """本地文件系统对象存储，键即相对路径."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            msg = f"Invalid storage key: {key}"
            raise BriefingsError(msg, ErrorCode.STORAGE_ERROR, 400, context={"key": key})
        return path

    def _read(self, path: Path) -> str | None:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, path: Path, value: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(value, encoding="utf-8")

    def _list(self, prefix: str, limit: int) -> list[str]:
        base = self.root / prefix
        if not base.exists():
            return []
        keys = sorted(p.relative_to(self.root).as_posix() for p in base.rglob("*") if p.is_file())
        return keys[:limit]

    def _ping(self) -> bool:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root.is_dir()

    # 文件操作在线程中执行
    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read, self._path(key))

    async def put(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, self._path(key), value)

    async def list(self, prefix: str, limit: int = 50) -> list[str]:
        return await asyncio.to_thread(self._list, prefix, limit)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    async def ping(self) -> bool:
        """存储可用性检查."""
        return await asyncio.to_thread(self._ping)


class StoredDigest(BaseModel):
    """归档的周报."""

    model_config = ConfigDict(populate_by_name=True)

    week_start: str = Field(alias="weekStart")
    week_end: str = Field(alias="weekEnd")
    title: str
    topics: list[str] = Field(default_factory=list)
    recap_content: str = Field(alias="recapContent")
    generated_at: str = Field(alias="generatedAt")


@dataclass
class DigestContext:
    """近期周报上下文."""

    digest_count: int
    recent_titles: list[str] = field(default_factory=list)
    recent_topics: list[str] = field(default_factory=list)
    context_string: str = NO_DIGESTS_CONTEXT


def _to_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00")).date()


class DigestArchive:
    """按 ISO 周保存周报，键为 digests/2025-W23.json."""

    def __init__(self, store: ObjectStore, prefix: str = DEFAULT_PREFIX) -> None:
        self.store = store
        self.prefix = prefix

    def key_for(self, week_start: date | datetime | str) -> str:
        """周起始日对应的键."""
        return f"{self.prefix}/{iso_week_key(_to_date(week_start))}.json"

    async def store_digest(
        self,
        week_start: date,
        week_end: date,
        title: str,
        topics: list[str],
        recap_content: str,
        generated_at: datetime | None = None,
    ) -> str:
        """保存周报，返回键."""
        key = self.key_for(week_start)
        digest = StoredDigest(
            week_start=week_start.isoformat(),
            week_end=week_end.isoformat(),
            title=title,
            topics=topics,
            recap_content=recap_content,
            generated_at=(generated_at or utcnow()).isoformat() + "Z",
        )
        await self.store.put(key, json.dumps(digest.model_dump(by_alias=True), indent=2))
        logger.info(f"周报已归档: {key}")
        return key

    async def get_digest(self, week_start: date) -> StoredDigest | None:
        """按周起始日读取."""
        raw = await self.store.get(self.key_for(week_start))
        if raw is None:
            return None
        return StoredDigest.model_validate_json(raw)

    async def get_recent_digests(self, count: int, today: date | None = None) -> list[StoredDigest]:
        """最近 count 篇周报（最多回看 count + 2 周，允许中间缺失）."""
        today = today or utcnow().date()
        digests: list[StoredDigest] = []
        for i in range(1, count + 3):
            if len(digests) >= count:
                break
            week_start = monday_of(today - timedelta(weeks=i))
            digest = await self.get_digest(week_start)
            if digest:
                digests.append(digest)
        return digests

    async def build_digest_context(
        self,
        max_digests: int = 4,
        today: date | None = None,
    ) -> DigestContext:
        """构建 prompt 用的近期周报上下文."""
        digests = await self.get_recent_digests(max_digests, today)
        if not digests:
            return DigestContext(digest_count=0)

        entries = []
        for digest in digests:
            week = _to_date(digest.week_start)
            entries.append(
                f'Week of {week.strftime("%b")} {week.day}: "{digest.title}"\n'
                f"  Topics: {', '.join(digest.topics)}"
            )

        return DigestContext(
            digest_count=len(digests),
            recent_titles=[d.title for d in digests],
            recent_topics=[t for d in digests for t in d.topics],
            context_string="\n\n".join(entries),
        )

    async def list_digest_keys(self, limit: int = 50) -> list[str]:
        """列出所有归档键."""
        return await self.store.list(self.prefix, limit)

    async def delete_digest(self, week_start: date) -> None:
        """删除归档."""
        key = self.key_for(week_start)
        await self.store.delete(key)
        logger.info(f"周报归档已删除: {key}")
