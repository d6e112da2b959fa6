"""
Store
Typed reads and writes the reminder engine performs against the relational store
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import models
from database import engine as default_engine
from exceptions import PersistenceError


logger = logging.getLogger(__name__)


# ==================== SNAPSHOTS ====================

@dataclass(frozen=True)
class ScheduleRow:
    """A schedule joined with its owner's timezone, frozen for one cycle"""
    id: int
    user_id: int
    medication_name: str
    dosage: str
    time: str
    frequency: str
    timezone: Optional[str] = None
    user_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "medication_name": self.medication_name,
            "dosage": self.dosage,
            "time": self.time,
            "frequency": self.frequency,
        }


@dataclass(frozen=True)
class UserRow:
    id: int
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    api_key: Optional[str] = None
    email_notifications: bool = True
    sms_notifications: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.email


@dataclass(frozen=True)
class AdherenceRow:
    schedule_id: int
    date: str
    taken: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ContactRow:
    id: int
    user_id: int
    name: str
    phone: Optional[str]
    email: Optional[str]
    priority: int
    notify_missed_doses: bool


def _user_row(user: models.User) -> UserRow:
    return UserRow(
        id=user.id,
        email=user.email,
        name=user.name,
        phone=user.phone,
        timezone=user.timezone,
        api_key=user.api_key,
        email_notifications=bool(user.email_notifications),
        sms_notifications=bool(user.sms_notifications),
    )


def _adherence_row(record: models.AdherenceRecord) -> AdherenceRow:
    return AdherenceRow(
        schedule_id=record.schedule_id,
        date=record.date,
        taken=bool(record.taken),
        notes=record.notes,
        created_at=record.created_at,
    )


# ==================== STORE ====================

class Store:
    """
    Every database access the engine makes goes through here.

    Reads return frozen snapshots so nothing a cycle holds can change under
    it; the only writes are single-row notification inserts and read marks.
    SQLAlchemy failures surface as PersistenceError.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=default_engine
        )

    @contextmanager
    def _session(self, action: str) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store failure while {action}: {e}")
            raise PersistenceError(f"{action} failed: {e}") from e
        finally:
            session.close()

    # ---------- schedules & users ----------

    def list_schedules(self, frequency: Optional[str] = None) -> List[ScheduleRow]:
        """All schedules with their owner's timezone, ordered by user and time"""
        with self._session("listing schedules") as db:
            query = db.query(models.Schedule, models.User.timezone, models.User.email).join(
                models.User, models.Schedule.user_id == models.User.id
            )
            if frequency:
                query = query.filter(models.Schedule.frequency == frequency)
            rows = query.order_by(models.Schedule.user_id, models.Schedule.time).all()

            return [
                ScheduleRow(
                    id=schedule.id,
                    user_id=schedule.user_id,
                    medication_name=schedule.medication_name,
                    dosage=schedule.dosage,
                    time=schedule.time,
                    frequency=schedule.frequency,
                    timezone=tz,
                    user_email=email,
                )
                for schedule, tz, email in rows
            ]

    def get_schedule(self, schedule_id: int, user_id: Optional[int] = None) -> Optional[ScheduleRow]:
        with self._session("loading schedule") as db:
            query = db.query(models.Schedule, models.User.timezone, models.User.email).join(
                models.User, models.Schedule.user_id == models.User.id
            ).filter(models.Schedule.id == schedule_id)
            if user_id is not None:
                query = query.filter(models.Schedule.user_id == user_id)
            row = query.first()
            if not row:
                return None
            schedule, tz, email = row
            return ScheduleRow(
                id=schedule.id,
                user_id=schedule.user_id,
                medication_name=schedule.medication_name,
                dosage=schedule.dosage,
                time=schedule.time,
                frequency=schedule.frequency,
                timezone=tz,
                user_email=email,
            )

    def list_user_schedules(self, user_id: int) -> List[ScheduleRow]:
        return [s for s in self.list_schedules() if s.user_id == user_id]

    def get_user(self, user_id: int) -> Optional[UserRow]:
        with self._session("loading user") as db:
            user = db.query(models.User).filter(models.User.id == user_id).first()
            return _user_row(user) if user else None

    # ---------- adherence ----------

    def get_adherence_record(self, schedule_id: int, date: str) -> Optional[AdherenceRow]:
        with self._session("loading adherence record") as db:
            record = db.query(models.AdherenceRecord).filter(
                models.AdherenceRecord.schedule_id == schedule_id,
                models.AdherenceRecord.date == date
            ).first()
            return _adherence_row(record) if record else None

    def list_adherence_records(self, schedule_id: int, since_date: str) -> List[AdherenceRow]:
        """Records for one schedule on or after since_date, newest first"""
        with self._session("listing adherence records") as db:
            records = db.query(models.AdherenceRecord).filter(
                models.AdherenceRecord.schedule_id == schedule_id,
                models.AdherenceRecord.date >= since_date
            ).order_by(models.AdherenceRecord.date.desc()).all()
            return [_adherence_row(r) for r in records]

    def list_recent_adherence_for_user(
        self,
        user_id: int,
        since_date: str,
        schedule_id: Optional[int] = None
    ) -> List[AdherenceRow]:
        """Records across a user's schedules on or after since_date, newest first"""
        with self._session("listing user adherence") as db:
            query = db.query(models.AdherenceRecord).join(
                models.Schedule, models.AdherenceRecord.schedule_id == models.Schedule.id
            ).filter(
                models.Schedule.user_id == user_id,
                models.AdherenceRecord.date >= since_date
            )
            if schedule_id is not None:
                query = query.filter(models.Schedule.id == schedule_id)
            records = query.order_by(models.AdherenceRecord.date.desc()).all()
            return [_adherence_row(r) for r in records]

    def list_active_users(self, since_date: str) -> List[UserRow]:
        """Users with at least one adherence record on or after since_date"""
        with self._session("listing active users") as db:
            users = db.query(models.User).join(
                models.Schedule, models.Schedule.user_id == models.User.id
            ).join(
                models.AdherenceRecord, models.AdherenceRecord.schedule_id == models.Schedule.id
            ).filter(
                models.AdherenceRecord.date >= since_date
            ).distinct().order_by(models.User.id).all()
            return [_user_row(u) for u in users]

    # ---------- contacts ----------

    def list_emergency_contacts(
        self,
        user_id: int,
        notify_missed_doses_only: bool = True,
        limit: Optional[int] = None
    ) -> List[ContactRow]:
        """Contacts ordered by priority, most urgent first"""
        with self._session("listing emergency contacts") as db:
            query = db.query(models.EmergencyContact).filter(
                models.EmergencyContact.user_id == user_id
            )
            if notify_missed_doses_only:
                query = query.filter(models.EmergencyContact.notify_missed_doses.is_(True))
            query = query.order_by(models.EmergencyContact.priority.asc(), models.EmergencyContact.id.asc())
            if limit is not None:
                query = query.limit(limit)

            return [
                ContactRow(
                    id=c.id,
                    user_id=c.user_id,
                    name=c.name,
                    phone=c.phone,
                    email=c.email,
                    priority=c.priority,
                    notify_missed_doses=bool(c.notify_missed_doses),
                )
                for c in query.all()
            ]

    # ---------- notifications ----------

    def count_notifications(
        self,
        user_id: int,
        notification_type: str,
        local_date: str,
        schedule_id: Optional[int] = None
    ) -> int:
        with self._session("counting notifications") as db:
            query = db.query(func.count(models.Notification.id)).filter(
                models.Notification.user_id == user_id,
                models.Notification.type == notification_type,
                models.Notification.local_date == local_date
            )
            if schedule_id is not None:
                query = query.filter(models.Notification.schedule_id == schedule_id)
            return query.scalar() or 0

    def add_notification(
        self,
        user_id: int,
        schedule_id: Optional[int],
        notification_type: str,
        title: str,
        message: str,
        ai_generated: bool = False,
        local_date: Optional[str] = None
    ) -> models.Notification:
        with self._session("storing notification") as db:
            notification = models.Notification(
                user_id=user_id,
                schedule_id=schedule_id,
                type=notification_type,
                title=title,
                message=message,
                ai_generated=ai_generated,
                local_date=local_date,
            )
            db.add(notification)
            db.flush()
            db.refresh(notification)

        logger.info(f"📝 Stored {notification_type} notification for user {user_id}: {title}")
        return notification

    def list_notifications(
        self,
        user_id: int,
        notification_type: Optional[str] = None
    ) -> List[models.Notification]:
        with self._session("listing notifications") as db:
            query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
            if notification_type:
                query = query.filter(models.Notification.type == notification_type)
            return query.order_by(models.Notification.id.asc()).all()

    def mark_notification_read(self, notification_id: int, user_id: int) -> bool:
        with self._session("marking notification read") as db:
            notification = db.query(models.Notification).filter(
                models.Notification.id == notification_id,
                models.Notification.user_id == user_id
            ).first()
            if not notification:
                return False
            if notification.read_at is None:
                notification.read_at = datetime.now(timezone.utc).replace(tzinfo=None)
            return True

    def notification_stats(self, notification_type: str, since: datetime) -> Dict[str, int]:
        with self._session("computing notification stats") as db:
            total, users, schedules = db.query(
                func.count(models.Notification.id),
                func.count(func.distinct(models.Notification.user_id)),
                func.count(func.distinct(models.Notification.schedule_id)),
            ).filter(
                models.Notification.type == notification_type,
                models.Notification.sent_at >= since
            ).one()
            return {
                "total_alerts": total or 0,
                "affected_users": users or 0,
                "affected_schedules": schedules or 0,
            }


store = Store()
