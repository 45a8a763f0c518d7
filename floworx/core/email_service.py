"""Email service for sending transactional emails via Postmark.

Security notes:
- All email headers are sanitized to prevent injection attacks
- Postmark API key stored in environment variables only
- Reset links are never logged
- Sends run in a worker thread under a bounded timeout so a slow mail
  provider never blocks a request indefinitely
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

import html2text
from jinja2 import Environment, FileSystemLoader, select_autoescape
from postmarker.core import PostmarkClient

from floworx.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "emails"

_template_env: Optional[Environment] = None


def get_template_env() -> Environment:
    """Get or create Jinja2 environment for email templates."""
    global _template_env
    if _template_env is None:
        _template_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )
    return _template_env


def render_email_template(template_name: str, data: Dict[str, Any]) -> tuple[str, str]:
    """
    Render email template (HTML + text version).

    Args:
        template_name: Template filename (e.g., "password_reset.html")
        data: Template variables dict

    Returns:
        Tuple of (html_body, text_body)
    """
    template = get_template_env().get_template(template_name)
    html_body = template.render(**data)

    converter = html2text.HTML2Text()
    converter.ignore_links = False
    converter.ignore_images = True
    converter.body_width = 78
    text_body = converter.handle(html_body)

    return html_body, text_body


def get_postmark_client() -> PostmarkClient:
    """
    Get Postmark API client instance.

    Raises:
        ValueError: If POSTMARK_API_KEY not configured
    """
    if not settings.POSTMARK_API_KEY:
        raise ValueError("POSTMARK_API_KEY not configured in environment")

    return PostmarkClient(server_token=settings.POSTMARK_API_KEY)


def sanitize_email_header(value: str) -> str:
    """
    Sanitize email header to prevent injection attacks.

    Example:
        >>> sanitize_email_header("user@example.com\\r\\nBcc: attacker@evil.com")
        'user@example.comBcc: attacker@evil.com'
    """
    sanitized = re.sub(r"[\x00-\x1f\x7f]", "", value)
    return sanitized.strip()


def validate_email(email: str) -> bool:
    """Basic email validation (same rule as registration)."""
    return bool(re.match(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", email))


async def send_email(
    to: str,
    subject: str,
    html_body: str,
    text_body: str,
    tag: Optional[str] = None,
    timeout: Optional[float] = None,
) -> bool:
    """
    Send transactional email via Postmark.

    Returns:
        True if email sent successfully, False otherwise (errors are
        logged, never raised)
    """
    to_sanitized = sanitize_email_header(to)
    if not validate_email(to_sanitized):
        logger.warning("Refusing to send email to invalid address", extra={"tag": tag})
        return False

    def _send_sync():
        client = get_postmark_client()
        return client.emails.send(
            From=sanitize_email_header(settings.POSTMARK_FROM_EMAIL),
            To=to_sanitized,
            Subject=sanitize_email_header(subject),
            HtmlBody=html_body,
            TextBody=text_body,
            Tag=tag,
            TrackLinks="None",
        )

    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(_send_sync),
            timeout=timeout or settings.EMAIL_SEND_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error("Email send timed out", extra={"tag": tag})
        return False
    except Exception as e:
        logger.error(f"Email send failed: {type(e).__name__}: {e}", extra={"tag": tag})
        return False

    logger.info(
        "Email sent",
        extra={"tag": tag, "message_id": (response or {}).get("MessageID")},
    )
    return True


async def send_password_reset_email(to: str, first_name: Optional[str], reset_link: str) -> bool:
    """
    Send password reset link.

    Args:
        to: Account email address
        first_name: Used in the greeting when present
        reset_link: Frontend URL carrying the raw token (NEVER log this)
    """
    html_body, text_body = render_email_template(
        "password_reset.html",
        {
            "app_name": settings.APP_NAME,
            "first_name": first_name,
            "reset_link": reset_link,
            "ttl_minutes": settings.PASSWORD_RESET_TOKEN_TTL_MINUTES,
        },
    )
    return await send_email(
        to=to,
        subject=f"Reset your {settings.APP_NAME} password",
        html_body=html_body,
        text_body=text_body,
        tag="password-reset",
    )
