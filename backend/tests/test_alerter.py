from __future__ import annotations

import smtplib
from datetime import datetime, timedelta

import httpx
import pytest

from conftest import make_domain, make_monitor, make_settings
from watchpost.services.alerter import AlerterService, alert_type_for, format_message
from watchpost.services.checker import CheckOutcome, CheckResult
from watchpost.services.email_sender import EmailConfig, EmailSenderService, parse_recipients

UP = CheckResult(subject_key="1", outcome=CheckOutcome.SUCCESS, response_time_ms=20)
DOWN = CheckResult(subject_key="1", outcome=CheckOutcome.FAILURE, error="Connection error: refused")


def test_monitor_alerts_on_transitions_only() -> None:
    monitor = make_monitor(1)

    assert alert_type_for(monitor, DOWN, "up") == "down"
    assert alert_type_for(monitor, DOWN, "pending") == "down"
    assert alert_type_for(monitor, DOWN, "down") is None
    assert alert_type_for(monitor, UP, "down") == "up"
    assert alert_type_for(monitor, UP, "up") is None


def test_domain_alerts_on_expiry_thresholds() -> None:
    domain = make_domain("example.com")
    expiring = CheckResult(subject_key="example.com", outcome=CheckOutcome.SUCCESS,
                           expiry_date=datetime.utcnow() + timedelta(days=7),
                           days_until_expiry=7, is_expiring_soon=True)
    expired = CheckResult(subject_key="example.com", outcome=CheckOutcome.SUCCESS,
                          expiry_date=datetime.utcnow() - timedelta(days=1),
                          days_until_expiry=-1, is_expired=True, is_expiring_soon=True)

    assert alert_type_for(domain, expiring, "ok") == "expiring"
    assert alert_type_for(domain, expired, "expiring") == "expired"
    assert alert_type_for(domain, DOWN, "ok") is None
    assert "expires in 7 days" in format_message(domain, expiring, "expiring")


def test_disabled_alerts_never_fire() -> None:
    assert alert_type_for(make_monitor(1, alerts_enabled=False), DOWN, "up") is None


@pytest.mark.asyncio
async def test_webhook_delivery(monkeypatch) -> None:
    posted = []

    async def fake_post(self, url, json=None, **kwargs):
        posted.append((url, json))
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    alerter = AlerterService(webhook_url="https://hooks.example.com/x", session_factory=None)

    sent = await alerter.notify_if_threshold_crossed(make_monitor(1), DOWN, "up")

    assert sent == "down"
    assert len(posted) == 1
    url, payload = posted[0]
    assert url == "https://hooks.example.com/x"
    assert payload["event"] == "down"
    assert "DOWN" in payload["text"]


@pytest.mark.asyncio
async def test_failed_delivery_does_not_raise(monkeypatch) -> None:
    async def broken_post(self, url, json=None, **kwargs):
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(httpx.AsyncClient, "post", broken_post)
    alerter = AlerterService(
        webhook_url="https://hooks.example.com/x",
        telegram_bot_token="token",
        telegram_chat_id="42",
        session_factory=None,
    )

    assert await alerter.notify_if_threshold_crossed(make_monitor(1), DOWN, "up") == "down"


class FakeSMTP:
    """Records what would have gone over the wire."""

    instances: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.tls = False
        self.login_as = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.tls = True

    def login(self, username, password):
        self.login_as = username

    def sendmail(self, from_addr, to_addrs, msg):
        self.sent.append((from_addr, to_addrs, msg))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_recipients_are_split_and_trimmed() -> None:
    assert parse_recipients(" ops@example.com, ,oncall@example.com ") == ["ops@example.com", "oncall@example.com"]
    assert parse_recipients("") == []


def test_email_channel_needs_host_and_recipients() -> None:
    assert EmailConfig.from_settings(make_settings()) is None
    assert EmailConfig.from_settings(make_settings(smtp_host="smtp.example.com")) is None

    config = EmailConfig.from_settings(make_settings(
        smtp_host="smtp.example.com",
        smtp_username="bot@example.com",
        alert_email_to="ops@example.com",
    ))
    assert config.port == 587
    assert config.sender == "bot@example.com"


@pytest.mark.asyncio
async def test_email_delivery(fake_smtp) -> None:
    config = EmailConfig(
        host="smtp.example.com",
        username="bot@example.com",
        password="secret",
        from_address="alerts@example.com",
        to_address="ops@example.com, oncall@example.com",
    )
    alerter = AlerterService(email_config=config, session_factory=None)

    sent = await alerter.notify_if_threshold_crossed(make_monitor(1), DOWN, "up")

    assert sent == "down"
    [server] = fake_smtp.instances
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.tls is True
    assert server.login_as == "bot@example.com"
    [(from_addr, to_addrs, msg)] = server.sent
    assert from_addr == "alerts@example.com"
    assert to_addrs == ["ops@example.com", "oncall@example.com"]
    assert "[Watchpost] DOWN: https://service-1.example.com" in msg


@pytest.mark.asyncio
async def test_email_failure_is_reported_not_raised(monkeypatch) -> None:
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    config = EmailConfig(host="smtp.example.com", use_tls=False, to_address="ops@example.com")

    assert await EmailSenderService().send_email(config, "subject", "body") is False


@pytest.mark.asyncio
async def test_email_without_recipients_is_skipped(fake_smtp) -> None:
    config = EmailConfig(host="smtp.example.com", to_address=" , ")

    assert await EmailSenderService().send_email(config, "subject", "body") is False
    assert fake_smtp.instances == []
