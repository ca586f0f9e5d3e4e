"""Email sender - delivers alert mail over SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP server and addressing for alert mail."""
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = ""
    to_address: str = ""  # Comma-separated list of recipients
    timeout: float = 30

    @property
    def sender(self) -> str:
        return self.from_address or self.username

    @classmethod
    def from_settings(cls, config: Settings) -> Optional["EmailConfig"]:
        """The configured SMTP channel, or None when host or recipients are missing."""
        if not config.smtp_host or not config.alert_email_to:
            return None
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username or "",
            password=config.smtp_password or "",
            use_tls=config.smtp_use_tls,
            from_address=config.smtp_from_address or "",
            to_address=config.alert_email_to,
        )


def parse_recipients(to_address: str) -> List[str]:
    if not to_address:
        return []
    return [address.strip() for address in to_address.split(",") if address.strip()]


class EmailSenderService:
    """Sends plain-text mail; SMTP runs on a worker thread."""

    def build_message(self, config: EmailConfig, recipients: List[str], subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))
        return msg

    async def send_email(self, config: EmailConfig, subject: str, body: str) -> bool:
        """Send one message to every recipient. Returns True on success, False on failure."""
        recipients = parse_recipients(config.to_address)
        if not config.host or not recipients:
            logger.warning("Email not configured - missing host or recipients")
            return False

        msg = self.build_message(config, recipients, subject, body)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._deliver, config, recipients, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except OSError as e:
            # Refused connections and timeouts
            logger.error(f"Could not reach SMTP server {config.host}:{config.port}: {e}")
            return False

        logger.info(f"Alert email sent to {len(recipients)} recipient(s): {subject}")
        return True

    def _deliver(self, config: EmailConfig, recipients: List[str], msg: MIMEMultipart):
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(config.sender, recipients, msg.as_string())


# Global instance
email_sender_service = EmailSenderService()
