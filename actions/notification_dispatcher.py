"""
Notification Dispatcher
Renders a notification, stores it, then attempts delivery on every channel.

Storing comes first: once a row exists the notification is durable even if
every channel fails. Delivery is best-effort and never raises to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from exceptions import PersistenceError, ScheduleNotFoundError
from models import NotificationType
from services.message_generator import MessageGenerator, ReminderOptions, message_generator
from services.store import ScheduleRow, Store, store as default_store
from tools.delivery_channels import (
    ChannelResult,
    DeliveryChannel,
    OutboundMessage,
    Recipient,
    default_channels,
)
from tools.timezone_resolver import local_now


logger = logging.getLogger(__name__)


# Used whenever the generator is unavailable
FALLBACK_TEMPLATES: Dict[NotificationType, str] = {
    NotificationType.REMINDER: (
        "💊 Time for your {medication} ({dosage})! "
        "Keep up the great work with your medication routine."
    ),
    NotificationType.MISSED_DOSE: (
        "⏰ You may have missed your {medication} ({dosage}) scheduled for {time}. "
        "Take it now if it's still safe, or skip to your next dose. Never double up."
    ),
}

TITLE_TEMPLATES: Dict[NotificationType, str] = {
    NotificationType.REMINDER: "💊 Time for {medication}",
    NotificationType.MISSED_DOSE: "🚨 Missed Dose: {medication}",
}

TEST_TITLE = "🔔 Test Notification"
TEST_MESSAGE = "This is a test notification from PillPulse. Your reminders are set up correctly!"


@dataclass
class DispatchResult:
    """Outcome of one dispatch; success means the notification was stored"""
    success: bool
    message: str = ""
    notification: Optional[Dict[str, Any]] = None
    ai_generated: bool = False
    deliveries: List[ChannelResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return any(d.success for d in self.deliveries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "notification": self.notification,
            "ai_generated": self.ai_generated,
            "deliveries": [d.to_dict() for d in self.deliveries],
            "error": self.error,
        }


def fallback_message(notification_type: NotificationType, schedule: ScheduleRow) -> str:
    template = FALLBACK_TEMPLATES.get(notification_type, FALLBACK_TEMPLATES[NotificationType.REMINDER])
    return template.format(
        medication=schedule.medication_name,
        dosage=schedule.dosage,
        time=schedule.time,
    )


class NotificationDispatcher:
    """
    Produces reminder, missed-dose, coaching and test notifications

    Responsibilities:
    - Ask the generator for text, falling back to static templates
    - Persist the Notification row before any delivery
    - Deliver on each channel independently
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        generator: Optional[MessageGenerator] = None,
        channels: Optional[List[DeliveryChannel]] = None
    ):
        self.store = store or default_store
        self.generator = generator or message_generator
        self.channels = channels if channels is not None else default_channels()

    async def _render_reminder(
        self,
        schedule: ScheduleRow,
        notification_type: NotificationType,
        options: ReminderOptions
    ) -> tuple:
        """(message, ai_generated) for a reminder or missed-dose notification"""
        try:
            text = await self.generator.generate_reminder(schedule.user_id, schedule, options)
            if text and text.strip():
                return text.strip(), True
            logger.warning(f"Empty reminder text for user {schedule.user_id}; using fallback")
        except Exception as e:
            # GenerationError, timeouts and anything else from the generator
            logger.warning(f"⚠️ Reminder generation failed for user {schedule.user_id}: {e}")
        return fallback_message(notification_type, schedule), False

    def _recipient_for(self, user_id: int) -> Recipient:
        try:
            user = self.store.get_user(user_id)
        except PersistenceError as e:
            logger.warning(f"Could not load contact details for user {user_id}: {e}")
            user = None

        if not user:
            return Recipient(user_id=user_id, email_enabled=False, sms_enabled=False)

        return Recipient(
            user_id=user.id,
            name=user.display_name,
            email=user.email,
            phone=user.phone,
            email_enabled=user.email_notifications,
            sms_enabled=user.sms_notifications,
        )

    async def deliver(self, recipient: Recipient, outbound: OutboundMessage) -> List[ChannelResult]:
        """Attempt every channel that can reach the recipient; never raises"""
        results = []
        for channel in self.channels:
            if not channel.accepts(recipient):
                continue
            results.append(await channel.attempt(recipient, outbound))
        return results

    async def _persist_and_deliver(
        self,
        user_id: int,
        schedule_id: Optional[int],
        notification_type: NotificationType,
        title: str,
        message: str,
        ai_generated: bool,
        local_date: Optional[str]
    ) -> DispatchResult:
        try:
            notification = self.store.add_notification(
                user_id=user_id,
                schedule_id=schedule_id,
                notification_type=notification_type.value,
                title=title,
                message=message,
                ai_generated=ai_generated,
                local_date=local_date,
            )
        except PersistenceError as e:
            logger.error(f"❌ Failed to store {notification_type.value} notification for user {user_id}: {e}")
            return DispatchResult(
                success=False,
                message=message,
                ai_generated=ai_generated,
                error=str(e),
            )

        outbound = OutboundMessage(subject=title, body=message, short_text=f"{title}: {message}")
        deliveries = await self.deliver(self._recipient_for(user_id), outbound)

        return DispatchResult(
            success=True,
            message=message,
            notification=notification.to_dict(),
            ai_generated=ai_generated,
            deliveries=deliveries,
        )

    async def dispatch(
        self,
        context,
        notification_type: NotificationType,
        options: Optional[ReminderOptions] = None
    ) -> DispatchResult:
        """
        Send a reminder or missed-dose notification for a detected dose

        Args:
            context: DoseContext from the detector
            notification_type: REMINDER or MISSED_DOSE
            options: generation options; missed-dose fields are filled in

        Returns:
            DispatchResult (never raises)
        """
        options = options or ReminderOptions()
        if notification_type == NotificationType.MISSED_DOSE:
            options = options.model_copy(update={
                "is_missed": True,
                "delay_minutes": max(context.overdue_minutes, 0),
            })

        try:
            message, ai_generated = await self._render_reminder(context.schedule, notification_type, options)
            title = TITLE_TEMPLATES[notification_type].format(medication=context.medication_name)
            return await self._persist_and_deliver(
                user_id=context.user_id,
                schedule_id=context.schedule_id,
                notification_type=notification_type,
                title=title,
                message=message,
                ai_generated=ai_generated,
                local_date=context.local_date,
            )
        except Exception as e:
            logger.exception(f"❌ Error dispatching {notification_type.value} for user {context.user_id}")
            return DispatchResult(success=False, error=str(e))

    async def dispatch_coaching(
        self,
        user_id: int,
        title: str,
        message: str,
        ai_generated: bool,
        local_date: Optional[str] = None
    ) -> DispatchResult:
        """Store and deliver an already rendered coaching message"""
        try:
            return await self._persist_and_deliver(
                user_id=user_id,
                schedule_id=None,
                notification_type=NotificationType.COACHING,
                title=title,
                message=message,
                ai_generated=ai_generated,
                local_date=local_date,
            )
        except Exception as e:
            logger.exception(f"❌ Error dispatching coaching for user {user_id}")
            return DispatchResult(success=False, error=str(e))

    async def send_test_notification(self, user_id: int) -> DispatchResult:
        """Exercise the full persist-then-deliver path for a user"""
        try:
            user = self.store.get_user(user_id)
        except PersistenceError as e:
            return DispatchResult(success=False, error=str(e))

        local_date = local_now(user.timezone if user else None).date
        return await self._persist_and_deliver(
            user_id=user_id,
            schedule_id=None,
            notification_type=NotificationType.TEST,
            title=TEST_TITLE,
            message=TEST_MESSAGE,
            ai_generated=False,
            local_date=local_date,
        )

    async def get_instant_reminder(
        self,
        user_id: int,
        schedule_id: int,
        options: Optional[ReminderOptions] = None
    ) -> str:
        """
        Reminder text for immediate display, without storing anything

        Raises:
            ScheduleNotFoundError: if the schedule is not the user's
        """
        schedule = self.store.get_schedule(schedule_id, user_id=user_id)
        if not schedule:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found for user {user_id}")

        options = options or ReminderOptions()
        notification_type = NotificationType.MISSED_DOSE if options.is_missed else NotificationType.REMINDER
        message, _ = await self._render_reminder(schedule, notification_type, options)
        return message
