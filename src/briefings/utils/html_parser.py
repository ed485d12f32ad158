"""HTML 解析工具."""

import re

from bs4 import BeautifulSoup


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容

    Returns:
        提取的纯文本内容
    """
    if not html:
        return ""

    # 纯文本直接返回
    if "<" not in html:
        return html.strip()

    soup = BeautifulSoup(html, "lxml")

    # 移除 script 和 style 标签
    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator=" ")

    # 合并多余空白
    text = re.sub(r"\s+", " ", text)

    return text.strip()


def sanitize_text(text: str | None, max_length: int | None = None) -> str | None:
    """
    合并空白并截断.

    超长时截断到 max_length（含末尾省略号）。
    """
    if not text:
        return None

    sanitized = re.sub(r"\s+", " ", text.strip())
    if max_length and len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized or None


def make_snippet(content: str | None, length: int = 200) -> str | None:
    """从 HTML 正文生成摘要片段."""
    if not content:
        return None
    return sanitize_text(html_to_text(content), length)
