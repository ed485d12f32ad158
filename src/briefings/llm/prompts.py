"""Prompt 模板与渲染.

内置四个模板，可通过 YAML 文件覆盖：

    daily-summary:
      name: Daily Summary
      template: |
        ...
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PromptType = Literal["daily-summary", "topic-extraction", "title-generator", "weekly-digest"]

DAILY_SUMMARY_TEMPLATE = """You are writing the daily briefing for the news source "{{feedName}}" covering {{displayDate}} ({{date}}).

Summarize the articles below into a concise markdown briefing:
- Open with a one-paragraph overview of the day.
- Group related stories under short `###` headings.
- Link each story to its source using markdown links.
- Keep a neutral, informative tone. Do not invent facts.

{{#articles}}
## Article {{articleNumber}}: {{title}}
Link: {{link}}
Author: {{creator}}
Published: {{pubDate}}

{{content}}

{{/articles}}"""

TOPIC_EXTRACTION_TEMPLATE = """Extract the 3 to 6 most important topics covered in the weekly recap below.
Return a JSON array of short topic strings, for example ["Topic A", "Topic B"].

Recap:
{{recapContent}}"""

TITLE_GENERATOR_TEMPLATE = """Write a short, engaging title (at most 12 words) for this weekly news digest.
Key topics: {{topics}}

Return only the title text, without quotes or markdown.

Digest:
{{recapContent}}"""

WEEKLY_DIGEST_TEMPLATE = """You are the editor of a weekly news digest covering {{displayDateRange}} ({{weekStartDate}} to {{weekEndDate}}).
This week there were {{summaryCount}} daily summaries covering roughly {{storyCount}} stories from {{sourceCount}} sources.

Write the weekly recap in markdown:
- Start with the most important developments of the week, grouped by theme.
- Reference specific stories and link sources where available.
- Add a section titled `## Below the Fold` with notable smaller stories.
- End with a section titled `## So What?` explaining why this week matters.

Daily summaries:
{{#summaries}}
### {{displayDate}} ({{date}})
{{content}}

{{/summaries}}"""

DEFAULT_PROMPTS: dict[str, str] = {
    "daily-summary": DAILY_SUMMARY_TEMPLATE,
    "topic-extraction": TOPIC_EXTRACTION_TEMPLATE,
    "title-generator": TITLE_GENERATOR_TEMPLATE,
    "weekly-digest": WEEKLY_DIGEST_TEMPLATE,
}

_SECTION_RE = re.compile(r"\{\{([#^])(\w+)\}\}(.*?)\{\{/\2\}\}", re.DOTALL)
_VARIABLE_RE = re.compile(r"\{\{(\w+)\}\}")


class PromptEntry(BaseModel):
    """YAML 中的单个模板."""

    name: str
    description: str | None = None
    template: str


class PromptsConfig(BaseModel):
    """YAML 模板文件（四个模板都必须提供）."""

    daily_summary: PromptEntry
    topic_extraction: PromptEntry
    title_generator: PromptEntry
    weekly_digest: PromptEntry


def render_prompt(template: str, data: dict[str, Any]) -> str:
    """
    渲染模板.

    支持 {{name}} 占位符，以及 {{#list}}...{{/list}} 循环段落
    和 {{^name}}...{{/name}} 反向段落。未知占位符保持原样。
    """

    def render_section(match: re.Match[str]) -> str:
        kind, key, inner = match.group(1), match.group(2), match.group(3)
        value = data.get(key)

        if kind == "^":
            return render_prompt(inner, data) if not value else ""

        if not value:
            return ""
        if isinstance(value, list):
            return "".join(
                render_prompt(inner, {**data, **item} if isinstance(item, dict) else data)
                for item in value
            )
        if isinstance(value, dict):
            return render_prompt(inner, {**data, **value})
        return render_prompt(inner, data)

    result = _SECTION_RE.sub(render_section, template)

    def render_variable(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in data:
            return match.group(0)
        value = data[key]
        return "" if value is None else str(value)

    return _VARIABLE_RE.sub(render_variable, result)


def load_prompts(path: str | Path) -> dict[str, str]:
    """从 YAML 文件加载模板."""
    with Path(path).open(encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    normalized = {str(k).replace("-", "_"): v for k, v in raw.items()}
    config = PromptsConfig.model_validate(normalized)
    return {
        "daily-summary": config.daily_summary.template,
        "topic-extraction": config.topic_extraction.template,
        "title-generator": config.title_generator.template,
        "weekly-digest": config.weekly_digest.template,
    }


class PromptLibrary:
    """模板集合."""

    def __init__(self, templates: dict[str, str] | None = None) -> None:
        self.templates = {**DEFAULT_PROMPTS, **(templates or {})}

    def get(self, prompt_type: PromptType) -> str:
        """按类型取模板."""
        template = self.templates.get(prompt_type)
        if template is None:
            msg = f"Unknown prompt type: {prompt_type}"
            raise KeyError(msg)
        return template

    def render(self, prompt_type: PromptType, data: dict[str, Any]) -> str:
        """取模板并渲染."""
        return render_prompt(self.get(prompt_type), data)


@lru_cache
def get_prompt_library(path: str = "") -> PromptLibrary:
    """获取模板集合（配置了 YAML 路径且文件存在时覆盖内置模板）."""
    if path and Path(path).exists():
        logger.info(f"从 {path} 加载 Prompt 模板")
        return PromptLibrary(load_prompts(path))
    return PromptLibrary()
