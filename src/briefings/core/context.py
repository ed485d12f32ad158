"""流水线上下文 - 各阶段共享的依赖，显式传递."""

from dataclasses import dataclass, field
from pathlib import Path

from briefings.config import Settings
from briefings.core.archive import DigestArchive, LocalObjectStore
from briefings.core.dispatcher import QueueDispatcher
from briefings.core.email import EmailService
from briefings.core.feed_validator import FeedValidator
from briefings.core.summarization import SummarizationService
from briefings.llm.base import LLMProvider
from briefings.llm.factory import create_llm_provider
from briefings.llm.prompts import PromptLibrary, get_prompt_library
from briefings.models.database import Database


@dataclass
class PipelineContext:
    """队列消费者和 HTTP 接口使用的依赖集合."""

    settings: Settings
    database: Database
    dispatcher: QueueDispatcher
    llm: LLMProvider
    prompts: PromptLibrary
    archive: DigestArchive
    email: EmailService | None = None
    validator: FeedValidator = field(default_factory=FeedValidator)
    fetch_timeout: float = 30.0

    @property
    def summarizer(self) -> SummarizationService:
        """摘要服务."""
        return SummarizationService(self.llm, self.prompts, self.settings)


def build_pipeline_context(
    settings: Settings,
    database: Database,
    dispatcher: QueueDispatcher,
) -> PipelineContext:
    """根据配置组装上下文."""
    email = None
    if settings.email_enabled:
        email = EmailService(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            recipients=settings.email_recipients,
            base_url=settings.resend_base_url,
        )

    return PipelineContext(
        settings=settings,
        database=database,
        dispatcher=dispatcher,
        llm=create_llm_provider(settings),
        prompts=get_prompt_library(settings.prompts_config_path),
        archive=DigestArchive(LocalObjectStore(Path(settings.archive_dir))),
        email=email,
    )
