"""
Delivery Channels
Strategy interface for getting a notification in front of a person
(log sink, email, SMS)
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from enum import Enum
from typing import List, Optional

from config import Settings, settings as default_settings
from exceptions import DeliveryError


logger = logging.getLogger(__name__)


class ChannelKind(str, Enum):
    """Available delivery channels"""
    CONSOLE = "console"
    EMAIL = "email"
    SMS = "sms"


@dataclass
class Recipient:
    """Who a message goes to and how they can be reached"""
    user_id: int
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    email_enabled: bool = True
    sms_enabled: bool = True


@dataclass
class OutboundMessage:
    """Channel-independent message content"""
    subject: str
    body: str
    short_text: Optional[str] = None  # SMS-sized variant
    html: Optional[str] = None

    @property
    def sms_text(self) -> str:
        return self.short_text or f"{self.subject}: {self.body}"


@dataclass
class ChannelResult:
    """Result of one delivery attempt"""
    channel: ChannelKind
    success: bool
    error: Optional[str] = None
    delivered_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "error": self.error,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None
        }


class DeliveryChannel(ABC):
    """A way of delivering an OutboundMessage"""

    kind: ChannelKind

    def accepts(self, recipient: Recipient) -> bool:
        """Whether this channel can reach the recipient"""
        return True

    @abstractmethod
    async def deliver(self, recipient: Recipient, message: OutboundMessage) -> None:
        """Send the message; raises DeliveryError on failure"""

    async def attempt(self, recipient: Recipient, message: OutboundMessage) -> ChannelResult:
        """Deliver and report the outcome instead of raising"""
        try:
            await self.deliver(recipient, message)
        except DeliveryError as e:
            logger.error(f"{self.kind.value} delivery to user {recipient.user_id} failed: {e}")
            return ChannelResult(channel=self.kind, success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected {self.kind.value} delivery error for user {recipient.user_id}")
            return ChannelResult(channel=self.kind, success=False, error=str(e))

        logger.info(f"Delivered via {self.kind.value} to user {recipient.user_id}")
        return ChannelResult(
            channel=self.kind,
            success=True,
            delivered_at=datetime.now(timezone.utc)
        )


class ConsoleChannel(DeliveryChannel):
    """Log sink; always available"""

    kind = ChannelKind.CONSOLE

    async def deliver(self, recipient: Recipient, message: OutboundMessage) -> None:
        logger.info(f"🔔 NOTIFICATION for user {recipient.user_id}: {message.subject}")
        logger.info(f"💬 {message.body}")


class EmailChannel(DeliveryChannel):
    """SMTP email delivery"""

    kind = ChannelKind.EMAIL

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: Optional[str] = None,
        timeout: int = 10
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings) -> Optional["EmailChannel"]:
        if not config.email_configured:
            return None
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            sender=config.SMTP_FROM,
            timeout=config.SMTP_TIMEOUT_SECONDS
        )

    def accepts(self, recipient: Recipient) -> bool:
        return bool(recipient.email) and recipient.email_enabled

    async def deliver(self, recipient: Recipient, message: OutboundMessage) -> None:
        await self.send_email(recipient.email, message.subject, message.body, message.html)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None
    ) -> None:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = to
        email["Subject"] = subject
        email.set_content(body)
        if html:
            email.add_alternative(html, subtype="html")

        def _send():
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.username, self.password)
                server.send_message(email)

        try:
            await asyncio.get_running_loop().run_in_executor(None, _send)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(ChannelKind.EMAIL.value, str(e)) from e
        logger.info(f"📧 Email sent to {to}")


class SmsChannel(DeliveryChannel):
    """Twilio SMS delivery"""

    kind = ChannelKind.SMS

    def __init__(self, account_sid: str, auth_token: str, from_number: str, client=None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client

    @classmethod
    def from_settings(cls, config: Settings) -> Optional["SmsChannel"]:
        if not config.sms_configured:
            return None
        return cls(
            account_sid=config.TWILIO_ACCOUNT_SID,
            auth_token=config.TWILIO_AUTH_TOKEN,
            from_number=config.TWILIO_PHONE_NUMBER
        )

    @property
    def client(self):
        if self._client is None:
            from twilio.rest import Client
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def accepts(self, recipient: Recipient) -> bool:
        return bool(recipient.phone) and recipient.sms_enabled

    async def deliver(self, recipient: Recipient, message: OutboundMessage) -> None:
        await self.send_sms(recipient.phone, message.sms_text)

    async def send_sms(self, to: str, text: str) -> None:
        from twilio.base.exceptions import TwilioException

        def _send():
            return self.client.messages.create(body=text, from_=self.from_number, to=to)

        try:
            sms = await asyncio.get_running_loop().run_in_executor(None, _send)
        except TwilioException as e:
            raise DeliveryError(ChannelKind.SMS.value, str(e)) from e
        logger.info(f"📱 SMS sent to {to} (sid={getattr(sms, 'sid', None)})")


def default_channels(config: Optional[Settings] = None) -> List[DeliveryChannel]:
    """Console always, email/SMS only when credentials are configured"""
    config = config or default_settings
    channels: List[DeliveryChannel] = [ConsoleChannel()]

    email = EmailChannel.from_settings(config)
    if email:
        channels.append(email)
    else:
        logger.info("Email channel disabled (SMTP credentials not configured)")

    sms = SmsChannel.from_settings(config)
    if sms:
        channels.append(sms)
    else:
        logger.info("SMS channel disabled (Twilio credentials not configured)")

    return channels
