"""Email service using Resend API."""

from __future__ import annotations

import logging

from glassflow.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()


def _send(to: str, subject: str, html: str) -> bool:
    """Send an email via Resend. Returns True on success."""
    if not to:
        return False
    if not _settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set, email to %s not sent: %s", to, subject)
        return False

    import resend
    resend.api_key = _settings.resend_api_key

    try:
        resend.Emails.send({
            "from": _settings.mail_from,
            "to": [to],
            "subject": subject,
            "html": html,
        })
        return True
    except Exception:
        logger.exception("Failed to send email to %s", to)
        return False


def _button(url: str, label: str) -> str:
    return (
        f'<p><a href="{url}" style="display:inline-block;padding:12px 24px;background:#0a84ff;'
        f'color:#ffffff;text-decoration:none;border-radius:6px;font-weight:600;">{label}</a></p>'
    )


def send_customer_update(email: str, tracking_token: str, short_code: str, subject: str, body: str) -> bool:
    """Status update to the customer with a link to their tracking page."""
    url = f"{_settings.app_url}/track/{tracking_token}"
    html = f"""
    <h2>{subject}</h2>
    <p>{body}</p>
    {_button(url, "View your repair")}
    <p style="color:#888;font-size:12px;">Job code: {short_code}</p>
    """
    return _send(email, subject, html)


def send_shop_update(email: str, subject: str, body: str) -> bool:
    """Notification to a shop's inbox pointing at the dashboard."""
    html = f"""
    <h2>{subject}</h2>
    <p>{body}</p>
    {_button(f"{_settings.app_url}/shop", "Open dashboard")}
    """
    return _send(email, subject, html)
