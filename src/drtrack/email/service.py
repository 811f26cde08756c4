"""
Email dispatcher with provider abstraction.

Supports SMTP (default) and the Resend API, selected via configuration.
``EmailDispatcher.send`` never raises: every outcome comes back as a
``SendResult`` and is written to ``email_logs`` when a repository is attached.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

import aiosmtplib
import httpx
import structlog

from drtrack.config import Settings, get_settings
from drtrack.db.models import EmailLog
from drtrack.email.templates import (
    daily_batch,
    dr_change_alert,
    inactivity_warning,
    milestone_celebration,
    weekly_recap,
)

if TYPE_CHECKING:
    from drtrack.repository import Repository

logger = structlog.get_logger()

# Template kind -> renderer returning (subject, html, text)
TEMPLATES: dict[str, Callable[..., tuple[str, str, str]]] = {
    "dr_change_alert": dr_change_alert,
    "daily_batch": daily_batch,
    "weekly_recap": weekly_recap,
    "milestone_celebration": milestone_celebration,
    "inactivity_warning": inactivity_warning,
}


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None


class EmailDeliveryError(Exception):
    """Raised by a provider when the message was not accepted."""


class BaseEmailProvider(ABC):
    """Abstract base class for email delivery providers."""

    name = "base"

    @abstractmethod
    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        """Hand the message to the provider. Raises EmailDeliveryError on failure."""


class SMTPProvider(BaseEmailProvider):
    """Send emails via SMTP using aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls

    def _build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = self._build_message(to_email, subject, html_body, text_body)
        tls_context = ssl.create_default_context() if self.use_tls else None
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                tls_context=tls_context,
            )
        except aiosmtplib.SMTPException as exc:
            raise EmailDeliveryError(str(exc)) from exc


class ResendProvider(BaseEmailProvider):
    """Send emails via the Resend HTTP API."""

    name = "resend"
    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: str, from_address: str, from_name: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.API_URL,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{self.from_name} <{self.from_address}>",
                        "to": [to_email],
                        "subject": subject,
                        "html": html_body,
                        "text": text_body,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(str(exc)) from exc


def create_provider(settings: Settings | None = None) -> BaseEmailProvider:
    """Create the email provider named by configuration."""
    settings = settings or get_settings()
    provider_name = settings.email_provider.lower()

    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


def render(template_kind: str, template_data: Mapping[str, Any]) -> tuple[str, str, str]:
    """Render a template by kind.

    Raises:
        ValueError: If the template kind is unknown.
    """
    template_func = TEMPLATES.get(template_kind)
    if template_func is None:
        msg = f"Unknown template: {template_kind}"
        raise ValueError(msg)
    return template_func(**template_data)


class EmailDispatcher:
    """Renders notification templates and hands them to a provider."""

    def __init__(self, provider: BaseEmailProvider, repo: Repository | None = None) -> None:
        self.provider = provider
        self.repo = repo

    async def send(
        self,
        recipient: str,
        template_kind: str,
        template_data: Mapping[str, Any],
        domain_id: int | None = None,
    ) -> SendResult:
        try:
            subject, html_body, text_body = render(template_kind, template_data)
            await self.provider.deliver(recipient, subject, html_body, text_body)
        except (EmailDeliveryError, ValueError, TypeError, KeyError) as exc:
            logger.warning(
                "email_send_failed",
                to=recipient,
                template=template_kind,
                provider=self.provider.name,
                error=str(exc),
            )
            result = SendResult(success=False, error=str(exc))
        else:
            logger.info("email_sent", to=recipient, template=template_kind, provider=self.provider.name)
            result = SendResult(success=True)

        await self._log(recipient, template_kind, result, domain_id)
        return result

    async def _log(self, recipient: str, template_kind: str, result: SendResult, domain_id: int | None) -> None:
        if self.repo is None:
            return
        entry = EmailLog(
            domain_id=domain_id,
            email_to=recipient,
            email_type=template_kind,
            status="sent" if result.success else "failed",
            error_message=result.error,
            sent_at=datetime.now(timezone.utc),
        )
        try:
            await self.repo.add_email_log(entry)
        except Exception:
            logger.exception("email_log_write_failed", to=recipient, template=template_kind)
