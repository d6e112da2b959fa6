"""
Tests for Notification Dispatcher
Persist-then-deliver with generator fallback
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from actions.notification_dispatcher import NotificationDispatcher, fallback_message
from exceptions import GenerationError, PersistenceError, ScheduleNotFoundError
from models import NotificationType
from services.message_generator import ReminderOptions
from tools.delivery_channels import ChannelKind


NOW = datetime(2026, 1, 15, 13, 5, tzinfo=timezone.utc)


@pytest.fixture
def due_context(detector, test_user, make_schedule):
    make_schedule(test_user, time="08:00")
    return detector.find_due_doses(NOW)[0]


class TestDispatch:

    @pytest.mark.asyncio
    async def test_reminder_persisted_and_delivered(self, dispatcher, due_context, test_store, console_channel, email_channel):
        result = await dispatcher.dispatch(due_context, NotificationType.REMINDER)

        assert result.success is True
        assert result.ai_generated is True
        assert result.message == "💊 Generated reminder text"
        assert result.notification["type"] == "reminder"
        assert result.notification["title"] == "💊 Time for Metformin"
        assert result.notification["local_date"] == "2026-01-15"
        assert [d.channel for d in result.deliveries] == [ChannelKind.CONSOLE, ChannelKind.EMAIL]
        assert len(console_channel.sent) == 1
        assert email_channel.sent[0]["message"].subject == "💊 Time for Metformin"

        stored = test_store.list_notifications(due_context.user_id)
        assert len(stored) == 1

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back(self, dispatcher, due_context, fake_generator, test_store):
        fake_generator.generate_reminder.side_effect = GenerationError("no key")

        result = await dispatcher.dispatch(due_context, NotificationType.REMINDER)

        assert result.success is True
        assert result.ai_generated is False
        assert result.message == fallback_message(NotificationType.REMINDER, due_context.schedule)
        assert "Metformin" in result.message
        stored = test_store.list_notifications(due_context.user_id)
        assert stored[0].ai_generated is False

    @pytest.mark.asyncio
    async def test_unexpected_generator_error_falls_back(self, dispatcher, due_context, fake_generator):
        fake_generator.generate_reminder.side_effect = RuntimeError("kaboom")

        result = await dispatcher.dispatch(due_context, NotificationType.MISSED_DOSE)

        assert result.success is True
        assert result.notification["title"] == "🚨 Missed Dose: Metformin"
        assert "08:00" in result.message

    @pytest.mark.asyncio
    async def test_missed_dose_options(self, dispatcher, due_context, fake_generator):
        await dispatcher.dispatch(due_context, NotificationType.MISSED_DOSE)

        options = fake_generator.generate_reminder.call_args.args[2]
        assert options.is_missed is True
        assert options.delay_minutes == 5

    @pytest.mark.asyncio
    async def test_channel_failure_does_not_fail_dispatch(self, dispatcher, due_context, email_channel, console_channel):
        email_channel.fail = True

        result = await dispatcher.dispatch(due_context, NotificationType.REMINDER)

        assert result.success is True
        email_result = [d for d in result.deliveries if d.channel == ChannelKind.EMAIL][0]
        assert email_result.success is False
        assert len(console_channel.sent) == 1

    @pytest.mark.asyncio
    async def test_sms_only_when_user_opted_in(self, dispatcher, detector, make_user, make_schedule, sms_channel):
        user = make_user(phone="+15550001111", sms_notifications=True)
        make_schedule(user, time="08:00")
        context = detector.find_due_doses(NOW)[0]

        await dispatcher.dispatch(context, NotificationType.REMINDER)

        assert sms_channel.sent[0]["recipient"].phone == "+15550001111"

    @pytest.mark.asyncio
    async def test_persistence_failure_skips_delivery(self, due_context, fake_generator, console_channel):
        store = MagicMock()
        store.add_notification.side_effect = PersistenceError("disk full")
        dispatcher = NotificationDispatcher(store=store, generator=fake_generator, channels=[console_channel])

        result = await dispatcher.dispatch(due_context, NotificationType.REMINDER)

        assert result.success is False
        assert "disk full" in result.error
        assert console_channel.sent == []


class TestOtherNotifications:

    @pytest.mark.asyncio
    async def test_coaching(self, dispatcher, test_user, test_store):
        result = await dispatcher.dispatch_coaching(
            test_user.id, "💪 Daily Motivation", "Keep going", ai_generated=True, local_date="2026-01-15"
        )

        assert result.success is True
        assert result.notification["type"] == "coaching"
        assert result.notification["schedule_id"] is None
        assert test_store.count_notifications(test_user.id, "coaching", "2026-01-15") == 1

    @pytest.mark.asyncio
    async def test_test_notification(self, dispatcher, test_user):
        result = await dispatcher.send_test_notification(test_user.id)

        assert result.success is True
        assert result.notification["type"] == "test"
        assert result.notification["local_date"] is not None


class TestInstantReminder:

    @pytest.mark.asyncio
    async def test_returns_generated_text(self, dispatcher, test_schedule, test_store):
        text = await dispatcher.get_instant_reminder(test_schedule.user_id, test_schedule.id)

        assert text == "💊 Generated reminder text"
        assert test_store.list_notifications(test_schedule.user_id) == []

    @pytest.mark.asyncio
    async def test_fallback_for_missed(self, dispatcher, test_schedule, fake_generator):
        fake_generator.generate_reminder = AsyncMock(side_effect=GenerationError("down"))

        text = await dispatcher.get_instant_reminder(
            test_schedule.user_id, test_schedule.id, ReminderOptions(is_missed=True)
        )

        assert "may have missed" in text

    @pytest.mark.asyncio
    async def test_other_users_schedule(self, dispatcher, test_schedule, make_user):
        stranger = make_user()

        with pytest.raises(ScheduleNotFoundError):
            await dispatcher.get_instant_reminder(stranger.id, test_schedule.id)
