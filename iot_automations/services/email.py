import html
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from iot_automations.config import settings

logger = logging.getLogger(__name__)


class _SafeFormatDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _render_template(template: str, context: dict[str, Any]) -> str:
    """Fill ``{placeholder}`` keys from context; unknown keys render empty."""
    if not template:
        return ""
    try:
        return template.format_map(_SafeFormatDict(context))
    except (KeyError, IndexError, ValueError, AttributeError, TypeError):
        logger.debug("Email template could not be rendered, sending it verbatim.", exc_info=True)
        return template


def render_automation_email(subject: str, body: str, context: dict[str, Any]) -> RenderedEmail:
    """Render an automation email into plain-text and HTML bodies."""
    rendered_subject = _render_template(subject, context).strip() or "Automation notification"
    text = _render_template(body, context)
    workspace_name = html.escape(str(context.get("workspace_name") or ""))
    body_html = html.escape(text).replace("\n", "<br>\n")
    footer = ""
    if workspace_name:
        footer = f'<p style="color:#888;font-size:12px">Sent by an automation in {workspace_name}</p>'
    html_doc = (
        "<html><body>"
        f"<h2>{html.escape(rendered_subject)}</h2>"
        f"<p>{body_html}</p>"
        f"{footer}"
        "</body></html>"
    )
    return RenderedEmail(subject=rendered_subject, html=html_doc, text=text)


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: float):
    if use_ssl:
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    return smtplib.SMTP(host, port, timeout=timeout)


def _build_email_message(subject: str, from_name: str, from_email: str, to_email: str, body_html: str, body_text: str):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to_email
    if body_text:
        msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))
    return msg


def send_email(to_email: str, subject: str, body_html: str, body_text: str) -> tuple[bool, str | None]:
    """Send an email via SMTP.

    Returns:
        (True, None) on success, (False, error message) otherwise.
    """
    msg = _build_email_message(
        subject=subject,
        from_name=settings.smtp_from_name,
        from_email=settings.smtp_from_email,
        to_email=to_email,
        body_html=body_html,
        body_text=body_text,
    )
    try:
        server = _create_smtp_client(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_use_ssl,
            settings.smtp_timeout_seconds,
        )
        if settings.smtp_use_tls and not settings.smtp_use_ssl:
            server.starttls()
        if settings.smtp_username and settings.smtp_password:
            server.login(settings.smtp_username, settings.smtp_password)
        refused = server.sendmail(settings.smtp_from_email, to_email, msg.as_string())
        server.quit()
    except smtplib.SMTPAuthenticationError as exc:
        logger.error("SMTP authentication failed for %s: %s", to_email, exc)
        return False, "SMTP authentication failed"
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", to_email, exc)
        return False, str(exc)

    if refused:
        logger.warning("SMTP sendmail refused recipients: %s", refused)
        return False, f"Recipient refused: {', '.join(sorted(refused))}"
    return True, None


class SmtpEmailClient:
    """Email collaborator used by the action pipeline."""

    def render(self, subject: str, body: str, context: dict[str, Any]) -> RenderedEmail:
        return render_automation_email(subject, body, context)

    def send(self, to_email: str, subject: str, body_html: str, body_text: str) -> tuple[bool, str | None]:
        return send_email(to_email, subject, body_html, body_text)
