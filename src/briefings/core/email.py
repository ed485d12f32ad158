"""邮件发送 - 通过 Resend REST API 发送周报."""

import html
import logging
from dataclasses import dataclass

import httpx
from markdown import markdown as md

from briefings.core.errors import ApiError, ErrorCode

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
           line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;
           background-color: #f5f5f5; }}
    .container {{ background-color: #ffffff; padding: 30px; border-radius: 8px; }}
    h1 {{ font-size: 24px; border-bottom: 2px solid #e0e0e0; padding-bottom: 10px; }}
    h2 {{ font-size: 20px; margin-top: 24px; }}
    a {{ color: #0066cc; text-decoration: none; }}
    code, pre {{ background-color: #f4f4f4; border-radius: 3px; }}
    .meta {{ font-size: 14px; color: #666; margin-bottom: 20px; }}
    .footer {{ margin-top: 30px; padding-top: 20px; border-top: 1px solid #e0e0e0;
              font-size: 14px; color: #666; text-align: center; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <div class="meta">Week of {week_start} to {week_end}</div>
    <div class="content">
{content}
    </div>
    <div class="footer">
      <p>Thanks for reading! This is your weekly digest.</p>
    </div>
  </div>
</body>
</html>"""


@dataclass
class EmailResult:
    """发送结果."""

    success: bool
    message_id: str | None = None
    error: str | None = None


def render_digest_html(title: str, content: str, week_start: str, week_end: str) -> str:
    """周报 markdown 渲染为 HTML 邮件."""
    body = md(content, extensions=["extra", "sane_lists", "nl2br"])
    return EMAIL_TEMPLATE.format(
        title=html.escape(title),
        week_start=html.escape(week_start),
        week_end=html.escape(week_end),
        content=body,
    )


class EmailService:
    """Resend 邮件服务."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        recipients: list[str],
        base_url: str = "https://api.resend.com",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.recipients = recipients
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def send_email(
        self,
        subject: str,
        html_body: str,
        tags: list[dict[str, str]] | None = None,
    ) -> EmailResult:
        """发送邮件（失败返回 success=False，不抛出）."""
        payload: dict = {
            "from": self.sender,
            "to": self.recipients,
            "subject": subject,
            "html": html_body,
        }
        if tags:
            payload["tags"] = tags

        logger.info(f"发送邮件: subject={subject}, to={self.recipients}")
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(
                f"{self.base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            if response.status_code >= 400:
                msg = f"Failed to send email: HTTP {response.status_code} {response.text[:200]}"
                raise ApiError(
                    msg,
                    ErrorCode.API_ERROR,
                    response.status_code,
                    context={"service": "resend", "subject": subject},
                )
            message_id = response.json().get("id")
        except (httpx.HTTPError, ApiError, ValueError) as e:
            logger.exception(f"邮件发送失败: subject={subject}")
            return EmailResult(success=False, error=str(e))
        finally:
            if self._client is None:
                await client.aclose()

        logger.info(f"邮件发送成功: id={message_id}")
        return EmailResult(success=True, message_id=message_id)

    async def send_weekly_digest(
        self,
        title: str,
        content: str,
        week_start: str,
        week_end: str,
    ) -> EmailResult:
        """发送周报邮件."""
        html_body = render_digest_html(title, content, week_start, week_end)
        return await self.send_email(
            subject=title,
            html_body=html_body,
            tags=[
                {"name": "type", "value": "weekly-digest"},
                {"name": "week_start", "value": week_start},
                {"name": "week_end", "value": week_end},
            ],
        )
