"""
Escalation Engine
Alerts a patient's emergency contacts when critical doses keep being missed
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from config import settings
from exceptions import PersistenceError
from models import NotificationType
from services.store import ContactRow, Store, store as default_store
from tools.delivery_channels import (
    ChannelKind,
    ChannelResult,
    DeliveryChannel,
    OutboundMessage,
    Recipient,
    default_channels,
)
from tools.streak_calculator import count_consecutive_missed
from tools.timezone_resolver import format_time_12h, utc_now
from actions.dose_detector import DoseContext, DoseDetector


logger = logging.getLogger(__name__)


@dataclass
class EscalationThresholds:
    """Tunable escalation policy"""
    consecutive_missed: int = 2
    critical_missed_hours: int = 4
    max_alerts_per_day: int = 3
    max_contacts: int = 3
    lookback_days: int = 7

    @classmethod
    def from_settings(cls) -> "EscalationThresholds":
        return cls(
            consecutive_missed=settings.ESCALATION_CONSECUTIVE_MISSED,
            critical_missed_hours=settings.ESCALATION_THRESHOLD_HOURS,
            max_alerts_per_day=settings.ESCALATION_MAX_ALERTS_PER_DAY,
            max_contacts=settings.ESCALATION_MAX_CONTACTS,
            lookback_days=settings.ESCALATION_LOOKBACK_DAYS,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class EscalationAlert:
    """Rendered alert for one contact"""
    subject: str
    body: str
    sms_text: str
    html: str

    def as_outbound(self) -> OutboundMessage:
        return OutboundMessage(subject=self.subject, body=self.body, short_text=self.sms_text, html=self.html)


@dataclass
class EscalationSummary:
    """What one escalation pass did"""
    candidates: int = 0
    triggered: int = 0
    suppressed: int = 0
    contacts_notified: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    alerts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": self.candidates,
            "triggered": self.triggered,
            "suppressed": self.suppressed,
            "contacts_notified": self.contacts_notified,
            "errors": self.errors,
            "alerts": self.alerts,
        }


def compose_alert(
    context: DoseContext,
    contact: ContactRow,
    patient: str,
    consecutive_missed: int,
    generated_at: Optional[datetime] = None
) -> EscalationAlert:
    """Email and SMS content for one emergency contact"""
    generated_at = generated_at or utc_now()
    scheduled = format_time_12h(context.schedule_time)
    stamp = generated_at.strftime("%Y-%m-%d %H:%M UTC")

    subject = f"🚨 URGENT: {patient} missed critical medication"
    body = f"""Dear {contact.name},

This is an emergency alert regarding {patient}'s medication adherence.

MISSED MEDICATION DETAILS:
• Medication: {context.medication_name}
• Dosage: {context.dosage}
• Scheduled Time: {scheduled}
• Consecutive Missed Doses: {consecutive_missed}
• Patient: {patient}

This medication was scheduled for {scheduled} and has not been taken.
Multiple consecutive doses have been missed, which may pose a health risk.

RECOMMENDED ACTIONS:
1. Contact {patient} immediately
2. Ensure they take the missed medication if safe to do so
3. Check on their overall well-being
4. Consider contacting their healthcare provider if needed

If this is a medical emergency, please call 911 immediately.

This alert was generated because you are listed as an emergency contact with priority {contact.priority}.

---
PillPulse Emergency Alert System
Generated at: {stamp}"""

    sms_text = (
        f"🚨 URGENT: {patient} missed {context.medication_name} ({context.dosage}). "
        f"{consecutive_missed} consecutive missed doses. Please check on them immediately."
    )

    html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: #dc2626; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0; }}
        .content {{ background: #f9f9f9; padding: 20px; border-left: 4px solid #dc2626; }}
        .medication-details {{ background: white; padding: 15px; margin: 15px 0; border-radius: 8px; }}
        .actions {{ background: #fef3c7; padding: 15px; margin: 15px 0; border-left: 4px solid #f59e0b; }}
        .footer {{ text-align: center; padding: 20px; font-size: 12px; color: #666; }}
        .urgent {{ color: #dc2626; font-weight: bold; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>🚨 EMERGENCY MEDICATION ALERT</h1></div>
        <div class="content">
            <p class="urgent">Critical medication missed by {patient}</p>
            <div class="medication-details">
                <h3>Medication Details:</h3>
                <ul>
                    <li><strong>Medication:</strong> {context.medication_name}</li>
                    <li><strong>Dosage:</strong> {context.dosage}</li>
                    <li><strong>Scheduled Time:</strong> {scheduled}</li>
                    <li><strong>Consecutive Missed:</strong> {consecutive_missed} doses</li>
                </ul>
            </div>
            <div class="actions">
                <h3>Immediate Actions Required:</h3>
                <ol>
                    <li>Contact {patient} immediately</li>
                    <li>Ensure they take the medication if safe</li>
                    <li>Check their overall well-being</li>
                    <li>Consider contacting healthcare provider</li>
                </ol>
            </div>
            <p><strong>If this is a medical emergency, call 911 immediately.</strong></p>
        </div>
        <div class="footer">
            <p>PillPulse Emergency Alert System<br>Generated: {stamp}</p>
        </div>
    </div>
</body>
</html>"""

    return EscalationAlert(subject=subject, body=body, sms_text=sms_text, html=html)


class EscalationEngine:
    """
    Escalation policy for critically missed doses.

    A dose escalates when it is critically overdue today and the schedule has
    at least `consecutive_missed` missed days in a row. Alerts per
    (user, schedule, local day) are capped at `max_alerts_per_day`.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        channels: Optional[List[DeliveryChannel]] = None,
        thresholds: Optional[EscalationThresholds] = None,
        detector: Optional[DoseDetector] = None
    ):
        self.store = store or default_store
        self.thresholds = thresholds or EscalationThresholds.from_settings()
        self.detector = detector or DoseDetector(
            store=self.store,
            escalation_threshold_hours=self.thresholds.critical_missed_hours,
        )
        all_channels = channels if channels is not None else default_channels()
        # Contacts are reached by email and SMS only
        self.channels = [c for c in all_channels if c.kind in (ChannelKind.EMAIL, ChannelKind.SMS)]

    def update_thresholds(self, **changes: int) -> EscalationThresholds:
        """Adjust thresholds at runtime; unknown names raise ValueError"""
        known = {f.name for f in fields(EscalationThresholds)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown escalation thresholds: {', '.join(sorted(unknown))}")

        self.thresholds = replace(self.thresholds, **changes)
        self.detector.escalation_threshold_hours = self.thresholds.critical_missed_hours
        logger.info(f"📊 Escalation thresholds updated: {self.thresholds.to_dict()}")
        return self.thresholds

    def consecutive_missed_for(self, context: DoseContext) -> int:
        today = date.fromisoformat(context.local_date)
        since = (today - timedelta(days=self.thresholds.lookback_days)).isoformat()
        records = self.store.list_adherence_records(context.schedule_id, since)
        return count_consecutive_missed(records, today, self.thresholds.lookback_days)

    async def notify_contact(self, contact: ContactRow, alert: EscalationAlert, user_id: int) -> List[ChannelResult]:
        """Send one alert over every channel the contact can be reached on"""
        recipient = Recipient(
            user_id=user_id,
            name=contact.name,
            email=contact.email,
            phone=contact.phone,
        )
        outbound = alert.as_outbound()

        results = []
        for channel in self.channels:
            if channel.accepts(recipient):
                results.append(await channel.attempt(recipient, outbound))

        if not results:
            logger.warning(
                f"⚠️ Emergency alert for {contact.name} not sent: no configured channel reaches this contact"
            )
        elif any(r.success for r in results):
            logger.info(f"📧 Emergency alert sent to {contact.name} ({contact.email or contact.phone})")
        return results

    async def process(self, context: DoseContext, summary: EscalationSummary) -> None:
        """
        Apply the policy to one critically missed dose

        Raises:
            PersistenceError: if the store cannot be read or written
        """
        th = self.thresholds
        consecutive = self.consecutive_missed_for(context)
        if consecutive < th.consecutive_missed:
            logger.debug(
                f"Schedule {context.schedule_id}: {consecutive} consecutive missed, below {th.consecutive_missed}"
            )
            return

        sent_today = self.store.count_notifications(
            context.user_id,
            NotificationType.ESCALATION.value,
            context.local_date,
            schedule_id=context.schedule_id,
        )
        if sent_today >= th.max_alerts_per_day:
            logger.info(f"⚠️ Already sent maximum alerts for {context.medication_name} today")
            summary.suppressed += 1
            return

        summary.triggered += 1
        user = self.store.get_user(context.user_id)
        patient = user.display_name if user else (context.schedule.user_email or f"user {context.user_id}")

        contacts = self.store.list_emergency_contacts(context.user_id, limit=th.max_contacts)
        if not contacts:
            logger.warning(f"⚠️ No emergency contacts found for user {context.user_id}")

        notified = 0
        for contact in contacts:
            alert = compose_alert(context, contact, patient, consecutive)
            results = await self.notify_contact(contact, alert, context.user_id)
            if any(r.success for r in results):
                notified += 1
        summary.contacts_notified += notified

        self.store.add_notification(
            user_id=context.user_id,
            schedule_id=context.schedule_id,
            notification_type=NotificationType.ESCALATION.value,
            title=f"🚨 Emergency Alert: {context.medication_name} missed",
            message=(
                f"Critical medication {context.medication_name} ({context.dosage}) has been missed. "
                f"{consecutive} consecutive doses missed. Emergency contacts have been notified."
            ),
            ai_generated=False,
            local_date=context.local_date,
        )

        summary.alerts.append({
            "user_id": context.user_id,
            "schedule_id": context.schedule_id,
            "medication_name": context.medication_name,
            "consecutive_missed": consecutive,
            "contacts": len(contacts),
            "contacts_notified": notified,
        })

    async def check_for_escalations(self, now: Optional[datetime] = None) -> EscalationSummary:
        """Run the policy over every critically missed dose"""
        logger.info("🚨 Checking for emergency alerts...")
        summary = EscalationSummary()

        candidates = self.detector.find_critically_missed_doses(now, errors=summary.errors)
        summary.candidates = len(candidates)

        for context in candidates:
            try:
                await self.process(context, summary)
            except PersistenceError as e:
                logger.error(f"❌ Error processing escalation for schedule {context.schedule_id}: {e}")
                summary.errors.append({
                    "type": "escalation",
                    "error": str(e),
                    "user_id": context.user_id,
                    "schedule_id": context.schedule_id,
                })

        logger.info(
            f"✅ Emergency alert check completed. {summary.candidates} candidates, "
            f"{summary.triggered} triggered, {summary.suppressed} suppressed"
        )
        return summary

    def get_alert_stats(self, days: int = 30) -> Dict[str, int]:
        since = (utc_now() - timedelta(days=days)).replace(tzinfo=None)
        return self.store.notification_stats(NotificationType.ESCALATION.value, since)


escalation_engine = EscalationEngine()
