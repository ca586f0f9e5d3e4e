"""Alerter service - sends webhook, Telegram and email notifications when a threshold is crossed."""
import logging
from typing import List, Optional

import httpx

from ..config import settings
from ..database import async_session
from ..models import Alert
from ..utils.db_utils import retry_on_lock
from .checker import CheckResult
from .email_sender import EmailConfig, EmailSenderService, email_sender_service
from .subjects import Subject, SubjectKind

logger = logging.getLogger(__name__)


def alert_type_for(subject: Subject, result: CheckResult, previous_status: Optional[str]) -> Optional[str]:
    """Decide whether a result crosses an alert threshold.

    Monitors alert on the transition to down and on recovery. Domains alert on
    every successful lookup that finds them expiring or expired.
    """
    if not subject.alerts_enabled:
        return None

    if subject.kind == SubjectKind.MONITOR:
        if not result.ok and previous_status != "down":
            return "down"
        if result.ok and previous_status == "down":
            return "up"
        return None

    if not result.ok:
        return None
    if result.is_expired:
        return "expired"
    if result.is_expiring_soon:
        return "expiring"
    return None


def format_message(subject: Subject, result: CheckResult, alert_type: str) -> str:
    if alert_type == "down":
        return f"🔴 {subject.target} is DOWN: {result.error or result.outcome.value}"
    if alert_type == "up":
        return f"🟢 {subject.target} is back UP ({result.response_time_ms}ms)"
    expiry = result.expiry_date.date().isoformat() if result.expiry_date else "unknown"
    if alert_type == "expired":
        return f"⛔ Domain {subject.target} EXPIRED on {expiry}"
    return f"⚠️ Domain {subject.target} expires in {result.days_until_expiry} days ({expiry})"


class AlerterService:
    """Service for sending notifications."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        email_config: Optional[EmailConfig] = None,
        email_sender: EmailSenderService = email_sender_service,
        session_factory=async_session,
        timeout: float = 10,
    ):
        self.webhook_url = webhook_url
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.email_config = email_config
        self.email_sender = email_sender
        self._session_factory = session_factory
        self.timeout = timeout

    async def notify_if_threshold_crossed(
        self,
        subject: Subject,
        result: CheckResult,
        previous_status: Optional[str],
    ) -> Optional[str]:
        """Send notifications if the result crosses a threshold. Returns the alert type sent."""
        alert_type = alert_type_for(subject, result, previous_status)
        if alert_type is None:
            return None

        message = format_message(subject, result, alert_type)
        logger.warning(f"Alert for {subject.ref}: {message}")

        deliveries: List[Alert] = []
        if self.webhook_url:
            ok = await self._send_webhook(subject, alert_type, message)
            deliveries.append(self._alert_row(subject, alert_type, "webhook", message, ok))
        if self.telegram_bot_token and self.telegram_chat_id:
            ok = await self._send_telegram(message)
            deliveries.append(self._alert_row(subject, alert_type, "telegram", message, ok))
        if self.email_config:
            ok = await self.email_sender.send_email(
                self.email_config,
                f"[Watchpost] {alert_type.upper()}: {subject.target}",
                message,
            )
            deliveries.append(self._alert_row(subject, alert_type, "email", message, ok))

        if deliveries and self._session_factory:
            await self._record(deliveries)
        return alert_type

    def _alert_row(self, subject: Subject, alert_type: str, channel: str, message: str, ok: bool) -> Alert:
        return Alert(
            subject_kind=subject.kind.value,
            subject_id=subject.record_id,
            alert_type=alert_type,
            channel=channel,
            message=message,
            success=ok,
        )

    async def _send_webhook(self, subject: Subject, alert_type: str, message: str) -> bool:
        # "text" makes the payload acceptable to Slack incoming webhooks as-is
        payload = {
            "text": message,
            "event": alert_type,
            "subject_kind": subject.kind.value,
            "subject": subject.ref.key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Webhook alert failed for {subject.ref}: {e}")
            return False

    async def _send_telegram(self, message: str) -> bool:
        url = f"https://api.telegram.org/bot{self.telegram_bot_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json={"chat_id": self.telegram_chat_id, "text": message})
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Telegram alert failed: {e}")
            return False

    async def _record(self, deliveries: List[Alert]):
        try:
            async with self._session_factory() as session:
                session.add_all(deliveries)
                await retry_on_lock(session.commit)
        except Exception as e:
            logger.error(f"Could not record alert deliveries: {e}")


# Global instance
alerter_service = AlerterService(
    webhook_url=settings.alert_webhook_url,
    telegram_bot_token=settings.telegram_bot_token,
    telegram_chat_id=settings.telegram_chat_id,
    email_config=EmailConfig.from_settings(settings),
)
