"""Tests for the notification dispatcher.

Verifies:
- Webhook JSON POST and failure mapping
- Telegram Bot API sendMessage (chat id, ok=false handling)
- SMTP email via a patched smtplib.SMTP
- Channel routing and NotificationError on unconfigured channels
"""

from __future__ import annotations

import json
import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import respx

from defi_worker.core.config import Settings
from defi_worker.core.enums import NotificationChannel
from defi_worker.core.errors import NotificationError
from defi_worker.notifications.dispatcher import NotificationDispatcher, format_alert_message

PAYLOAD = {
    "alert_id": "2b1d5a7e-6a51-4b8e-9a0e-1f0f5b3c9d11",
    "type": "price",
    "target": "eth",
    "observed_value": 2650.0,
    "threshold": 2600.0,
    "comparator": "above",
    "triggered_at": "2025-03-14T12:00:00+00:00",
}


def test_format_alert_message():
    assert format_alert_message(PAYLOAD) == (
        "PRICE alert on eth: value 2650.0 is above threshold 2600.0"
    )


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_webhook_posts_payload_as_json():
    dispatcher = NotificationDispatcher()
    with respx.mock() as mock:
        route = mock.post("https://hooks.example.com/alerts").respond(204)
        await dispatcher.send(NotificationChannel.WEBHOOK, "https://hooks.example.com/alerts", PAYLOAD)
    await dispatcher.aclose()

    assert json.loads(route.calls.last.request.content) == PAYLOAD


@pytest.mark.asyncio
async def test_webhook_error_status_raises():
    dispatcher = NotificationDispatcher()
    with respx.mock() as mock:
        mock.post("https://hooks.example.com/alerts").respond(500)
        with pytest.raises(NotificationError):
            await dispatcher.send_webhook("https://hooks.example.com/alerts", PAYLOAD)
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_webhook_transport_error_raises():
    dispatcher = NotificationDispatcher()
    with respx.mock() as mock:
        mock.post("https://hooks.example.com/alerts").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(NotificationError) as exc_info:
            await dispatcher.send_webhook("https://hooks.example.com/alerts", PAYLOAD)
    await dispatcher.aclose()

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_telegram_send_message():
    dispatcher = NotificationDispatcher(telegram_bot_token="123:abc")
    with respx.mock(base_url="https://api.telegram.org") as mock:
        route = mock.post("/bot123:abc/sendMessage").respond(200, json={"ok": True})
        await dispatcher.send(NotificationChannel.TELEGRAM, "-100200300", PAYLOAD)
    await dispatcher.aclose()

    body = json.loads(route.calls.last.request.content)
    assert body["chat_id"] == "-100200300"
    assert "PRICE alert on eth" in body["text"]


@pytest.mark.asyncio
async def test_telegram_not_ok_raises():
    dispatcher = NotificationDispatcher(telegram_bot_token="123:abc")
    with respx.mock(base_url="https://api.telegram.org") as mock:
        mock.post("/bot123:abc/sendMessage").respond(
            200, json={"ok": False, "description": "Bad Request: chat not found"}
        )
        with pytest.raises(NotificationError, match="chat not found"):
            await dispatcher.send_telegram("42", PAYLOAD)
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_telegram_non_object_response_raises():
    dispatcher = NotificationDispatcher(telegram_bot_token="123:abc")
    with respx.mock(base_url="https://api.telegram.org") as mock:
        mock.post("/bot123:abc/sendMessage").respond(200, json=["ok"])
        with pytest.raises(NotificationError, match="unexpected response"):
            await dispatcher.send_telegram("42", PAYLOAD)
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_telegram_without_token_raises():
    dispatcher = NotificationDispatcher()
    with pytest.raises(NotificationError):
        await dispatcher.send(NotificationChannel.TELEGRAM, "42", PAYLOAD)


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_email_sent_over_smtp_with_starttls():
    dispatcher = NotificationDispatcher(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="worker",
        smtp_password="secret",
        smtp_from="alerts@example.com",
    )
    server = MagicMock()
    with patch("defi_worker.notifications.dispatcher.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = server
        await dispatcher.send(NotificationChannel.EMAIL, "user@example.com", PAYLOAD)

    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("worker", "secret")
    from_addr, to_addrs, message = server.sendmail.call_args.args
    assert from_addr == "alerts@example.com"
    assert to_addrs == ["user@example.com"]
    assert "[DeFi Alert]" in message


@pytest.mark.asyncio
async def test_email_smtp_failure_raises():
    dispatcher = NotificationDispatcher(smtp_host="smtp.example.com", smtp_port=25)
    with patch("defi_worker.notifications.dispatcher.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value.sendmail.side_effect = (
            smtplib.SMTPRecipientsRefused({"user@example.com": (550, b"no such user")})
        )
        with pytest.raises(NotificationError):
            await dispatcher.send_email("user@example.com", PAYLOAD)


@pytest.mark.asyncio
async def test_email_without_host_raises():
    dispatcher = NotificationDispatcher()
    with pytest.raises(NotificationError, match="SMTP host"):
        await dispatcher.send_email("user@example.com", PAYLOAD)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_send_routes_by_channel():
    dispatcher = NotificationDispatcher()
    dispatcher.send_email = AsyncMock()
    dispatcher.send_webhook = AsyncMock()

    await dispatcher.send(NotificationChannel.EMAIL, "a@example.com", PAYLOAD)

    dispatcher.send_email.assert_awaited_once_with("a@example.com", PAYLOAD)
    dispatcher.send_webhook.assert_not_awaited()


def test_from_settings_reads_notification_fields():
    settings = Settings(
        _env_file=None,
        smtp_host="mail.internal",
        smtp_port=2525,
        telegram_bot_token="999:xyz",
        notification_timeout_seconds=3.0,
    )
    dispatcher = NotificationDispatcher.from_settings(settings)
    assert dispatcher.smtp_host == "mail.internal"
    assert dispatcher.smtp_port == 2525
    assert dispatcher.telegram_bot_token == "999:xyz"
    assert dispatcher.timeout_seconds == 3.0
