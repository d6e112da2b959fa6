"""
Tests for Delivery Channels
Console, SMTP email and Twilio SMS channels
"""

import smtplib
import pytest
from unittest.mock import MagicMock, patch

from twilio.base.exceptions import TwilioException

from config import Settings
from exceptions import DeliveryError
from tools.delivery_channels import (
    ChannelKind,
    ConsoleChannel,
    EmailChannel,
    OutboundMessage,
    Recipient,
    SmsChannel,
    default_channels,
)


@pytest.fixture
def recipient():
    return Recipient(user_id=1, name="Pat", email="pat@example.com", phone="+15550001111")


@pytest.fixture
def message():
    return OutboundMessage(subject="💊 Time for Metformin", body="Take 500mg now")


@pytest.fixture
def email_channel():
    return EmailChannel(host="smtp.example.com", port=587, username="bot@example.com", password="secret")


# =============================================================================
# Console
# =============================================================================

class TestConsoleChannel:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_always_succeeds(self, recipient, message, caplog):
        caplog.set_level("INFO")

        result = await ConsoleChannel().attempt(recipient, message)

        assert result.success is True
        assert result.channel == ChannelKind.CONSOLE
        assert result.delivered_at is not None
        assert "Time for Metformin" in caplog.text


# =============================================================================
# Email
# =============================================================================

class TestEmailChannel:

    @pytest.mark.unit
    def test_accepts_only_opted_in_recipients_with_email(self, email_channel):
        assert email_channel.accepts(Recipient(user_id=1, email="a@b.c"))
        assert not email_channel.accepts(Recipient(user_id=1, email=None))
        assert not email_channel.accepts(Recipient(user_id=1, email="a@b.c", email_enabled=False))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_email(self, email_channel):
        with patch("tools.delivery_channels.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value

            await email_channel.send_email("pat@example.com", "Subject", "Body", html="<p>Body</p>")

        smtp.assert_called_once_with("smtp.example.com", 587, timeout=10)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        sent = server.send_message.call_args[0][0]
        assert sent["To"] == "pat@example.com"
        assert sent["From"] == "bot@example.com"
        assert sent["Subject"] == "Subject"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_smtp_failure_raises_delivery_error(self, email_channel):
        with patch("tools.delivery_channels.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

            with pytest.raises(DeliveryError) as exc_info:
                await email_channel.send_email("pat@example.com", "Subject", "Body")

        assert exc_info.value.channel == "email"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_attempt_reports_failure(self, email_channel, recipient, message):
        with patch("tools.delivery_channels.smtplib.SMTP", side_effect=OSError("connection refused")):
            result = await email_channel.attempt(recipient, message)

        assert result.success is False
        assert "connection refused" in result.error


# =============================================================================
# SMS
# =============================================================================

class TestSmsChannel:

    @pytest.mark.unit
    def test_accepts_only_opted_in_recipients_with_phone(self):
        channel = SmsChannel("sid", "token", "+15550000000", client=MagicMock())

        assert channel.accepts(Recipient(user_id=1, phone="+1555"))
        assert not channel.accepts(Recipient(user_id=1, phone=None))
        assert not channel.accepts(Recipient(user_id=1, phone="+1555", sms_enabled=False))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_sms(self, recipient, message):
        client = MagicMock()
        channel = SmsChannel("sid", "token", "+15550000000", client=client)

        result = await channel.attempt(recipient, message)

        assert result.success is True
        client.messages.create.assert_called_once_with(
            body="💊 Time for Metformin: Take 500mg now",
            from_="+15550000000",
            to="+15550001111",
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_twilio_failure_raises_delivery_error(self):
        client = MagicMock()
        client.messages.create.side_effect = TwilioException("invalid number")
        channel = SmsChannel("sid", "token", "+15550000000", client=client)

        with pytest.raises(DeliveryError) as exc_info:
            await channel.send_sms("+1", "hello")

        assert exc_info.value.channel == "sms"


# =============================================================================
# default_channels
# =============================================================================

class TestDefaultChannels:

    @pytest.mark.unit
    def test_console_only_without_credentials(self):
        config = Settings(SMTP_HOST=None, SMTP_USER=None, SMTP_PASSWORD=None,
                          TWILIO_ACCOUNT_SID=None, TWILIO_AUTH_TOKEN=None, TWILIO_PHONE_NUMBER=None)

        kinds = [c.kind for c in default_channels(config)]

        assert kinds == [ChannelKind.CONSOLE]

    @pytest.mark.unit
    def test_all_channels_when_configured(self):
        config = Settings(
            SMTP_HOST="smtp.example.com", SMTP_USER="bot", SMTP_PASSWORD="pw",
            TWILIO_ACCOUNT_SID="AC123", TWILIO_AUTH_TOKEN="tok", TWILIO_PHONE_NUMBER="+1555",
        )

        kinds = [c.kind for c in default_channels(config)]

        assert kinds == [ChannelKind.CONSOLE, ChannelKind.EMAIL, ChannelKind.SMS]
