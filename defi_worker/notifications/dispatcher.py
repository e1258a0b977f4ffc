"""Alert notification delivery over webhook, Telegram and email.

Dispatch targets:
- Webhook: JSON POST of the payload to the destination URL
- Telegram: Bot API ``sendMessage`` with the destination as ``chat_id``
- Email: plain-text + HTML message via SMTP (STARTTLS on port 587)

Every failure, including an unconfigured channel, raises
``NotificationError`` so the evaluator can record it on the history row.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

import httpx
import structlog

from defi_worker.core.config import Settings
from defi_worker.core.enums import NotificationChannel
from defi_worker.core.errors import NotificationError
from defi_worker.core.utils.logging_config import get_logger

TELEGRAM_API_URL = "https://api.telegram.org"


class Notifier(Protocol):
    async def send(
        self,
        channel: NotificationChannel,
        destination: str,
        payload: dict[str, Any],
    ) -> None:
        """Deliver *payload*. Raises NotificationError on failure."""
        ...


def format_alert_message(payload: dict[str, Any]) -> str:
    """One-line human readable summary of an alert payload."""
    return (
        f"{str(payload.get('type', 'alert')).upper()} alert on {payload.get('target')}: "
        f"value {payload.get('observed_value')} is {payload.get('comparator')} "
        f"threshold {payload.get('threshold')}"
    )


class NotificationDispatcher:
    """Routes a triggered alert to its delivery channel.

    Args:
        smtp_host: SMTP server host. Email is disabled when empty.
        smtp_port: SMTP port; 587 uses STARTTLS.
        smtp_user: SMTP login user (optional).
        smtp_password: SMTP login password (optional).
        smtp_from: Sender address.
        telegram_bot_token: Bot token. Telegram is disabled when empty.
        timeout_seconds: Timeout for each HTTP or SMTP delivery.
        http_client: Shared httpx client; one is created lazily otherwise.
        telegram_api_url: Telegram Bot API base URL.
        log: Optional bound logger.
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_from: str = "alerts@defi-dashboard.local",
        telegram_bot_token: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        telegram_api_url: str = TELEGRAM_API_URL,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_from = smtp_from
        self.telegram_bot_token = telegram_bot_token
        self.timeout_seconds = timeout_seconds
        self.telegram_api_url = telegram_api_url.rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None
        self.log = log or get_logger("notifications")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "NotificationDispatcher":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_from=settings.smtp_from,
            telegram_bot_token=settings.telegram_bot_token,
            timeout_seconds=settings.notification_timeout_seconds,
            **kwargs,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        channel: NotificationChannel,
        destination: str,
        payload: dict[str, Any],
    ) -> None:
        """Deliver *payload* to *destination* over *channel*.

        Raises:
            NotificationError: If the channel is unconfigured or delivery fails.
        """
        if channel == NotificationChannel.WEBHOOK:
            await self.send_webhook(destination, payload)
        elif channel == NotificationChannel.TELEGRAM:
            await self.send_telegram(destination, payload)
        elif channel == NotificationChannel.EMAIL:
            await self.send_email(destination, payload)
        else:
            raise NotificationError(f"unsupported notification channel: {channel!r}")

    # ---------------------------------------------------------------------------
    # Channels
    # ---------------------------------------------------------------------------
    async def send_webhook(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.log.error("webhook_send_failed", url=url, error=str(exc))
            raise NotificationError(f"webhook delivery to {url} failed: {exc}") from exc
        self.log.info("webhook_sent", url=url, alert_id=payload.get("alert_id"))

    async def send_telegram(self, chat_id: str, payload: dict[str, Any]) -> None:
        if not self.telegram_bot_token:
            raise NotificationError("telegram bot token not configured")

        url = f"{self.telegram_api_url}/bot{self.telegram_bot_token}/sendMessage"
        body = {"chat_id": chat_id, "text": format_alert_message(payload)}
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.log.error("telegram_send_failed", chat_id=chat_id, error=str(exc))
            raise NotificationError(f"telegram delivery failed: {exc}") from exc

        if not isinstance(result, dict):
            self.log.error("telegram_send_failed", chat_id=chat_id, error="unexpected response")
            raise NotificationError("telegram delivery failed: unexpected response")
        if not result.get("ok"):
            description = result.get("description", "unknown error")
            self.log.error("telegram_send_failed", chat_id=chat_id, error=description)
            raise NotificationError(f"telegram delivery failed: {description}")
        self.log.info("telegram_sent", chat_id=chat_id, alert_id=payload.get("alert_id"))

    async def send_email(self, recipient: str, payload: dict[str, Any]) -> None:
        if not self.smtp_host:
            raise NotificationError("SMTP host not configured")

        msg = self._build_email(recipient, payload)
        try:
            await asyncio.to_thread(self._smtp_send, recipient, msg)
        except (smtplib.SMTPException, OSError) as exc:
            self.log.error("email_send_failed", recipient=recipient, error=str(exc))
            raise NotificationError(f"email delivery to {recipient} failed: {exc}") from exc
        self.log.info("email_sent", recipient=recipient, alert_id=payload.get("alert_id"))

    def _build_email(self, recipient: str, payload: dict[str, Any]) -> MIMEMultipart:
        summary = format_alert_message(payload)
        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>{summary}</h2>
            <table style="width: 100%; border-collapse: collapse;">
                <tr><td style="padding: 8px; font-weight: bold;">Alert</td>
                <td style="padding: 8px;">{payload.get('alert_id')}</td></tr>
                <tr><td style="padding: 8px; font-weight: bold;">Observed</td>
                <td style="padding: 8px;">{payload.get('observed_value')}</td></tr>
                <tr><td style="padding: 8px; font-weight: bold;">Threshold</td>
                <td style="padding: 8px;">{payload.get('comparator')} {payload.get('threshold')}</td></tr>
                <tr><td style="padding: 8px; font-weight: bold;">Time</td>
                <td style="padding: 8px;">{payload.get('triggered_at')}</td></tr>
            </table>
        </body>
        </html>
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[DeFi Alert] {summary}"
        msg["From"] = self.smtp_from
        msg["To"] = recipient
        msg.attach(MIMEText(summary, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _smtp_send(self, recipient: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as server:
            if self.smtp_port == 587:
                server.starttls()
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.smtp_from, [recipient], msg.as_string())
