"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./briefings.db"
    environment: str = "development"
    api_key: str = ""

    # LLM 配置
    llm_provider: Literal["gemini", "openai"] = "gemini"

    # Gemini 配置
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 60.0
    gemini_max_retries: int = 3

    # OpenAI 兼容接口配置
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # 各用途模型
    daily_summary_model: str = "gemini-2.5-flash"
    weekly_summary_model: str = "gemini-2.5-pro"
    topic_model: str = "gemini-2.5-flash"
    title_model: str = "gemini-2.5-flash"

    # 邮件配置（Resend）
    resend_api_key: str = ""
    resend_base_url: str = "https://api.resend.com"
    email_from: str = ""
    email_to: str = ""

    # 周报归档
    archive_dir: str = "./archive"

    # 配置文件
    feeds_config_path: str = "config/feeds.yaml"
    prompts_config_path: str = ""

    # 队列配置
    queue_max_retries: int = 3
    queue_max_batch_size: int = 10
    queue_batch_timeout_seconds: float = 5.0
    queue_retry_delay_seconds: float = 30.0

    # 定时任务
    scheduler_enabled: bool = True

    def model_for(self, purpose: Literal["daily", "weekly", "topic", "title"]) -> str:
        """各用途使用的模型（OpenAI 兼容接口统一使用 openai_model）."""
        if self.llm_provider == "openai":
            return self.openai_model
        return {
            "daily": self.daily_summary_model,
            "weekly": self.weekly_summary_model,
            "topic": self.topic_model,
            "title": self.title_model,
        }[purpose]

    @property
    def email_recipients(self) -> list[str]:
        """收件人列表."""
        return [addr.strip() for addr in self.email_to.split(",") if addr.strip()]

    @property
    def email_enabled(self) -> bool:
        """API key、收件人、发件人齐全时才发送邮件."""
        return bool(self.resend_api_key and self.email_recipients and self.email_from)


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
