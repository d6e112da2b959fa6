"""
Database Models
SQLAlchemy ORM models read and written by the reminder engine
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text,
    Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from enum import Enum as PyEnum

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ==================== ENUMS ====================

class Frequency(str, PyEnum):
    """How often a schedule repeats"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class NotificationType(str, PyEnum):
    """Types of notifications produced by the engine"""
    REMINDER = "reminder"
    MISSED_DOSE = "missed_dose"
    COACHING = "coaching"
    ESCALATION = "escalation"
    TEST = "test"


# ==================== MODELS ====================

class User(Base):
    """Patient account as seen by the reminder engine"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(200))
    phone = Column(String(20))

    # IANA zone; falls back to the configured default when missing or invalid
    timezone = Column(String(64))

    # Opaque per-user generator key (encryption handled by the account layer)
    api_key = Column(Text)

    # Notification preferences
    email_notifications = Column(Boolean, default=True)
    sms_notifications = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    schedules = relationship("Schedule", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    emergency_contacts = relationship("EmergencyContact", back_populates="user", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Schedule(Base):
    """Recurring medication schedule at a local time of day"""
    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    medication_name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)
    time = Column(String(5), nullable=False)  # "08:00", local to the user
    frequency = Column(String(20), nullable=False, default=Frequency.DAILY.value)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="schedules")
    adherence_records = relationship("AdherenceRecord", back_populates="schedule", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("frequency IN ('daily', 'weekly', 'monthly')", name="ck_schedules_frequency"),
        Index("ix_schedules_user_id", "user_id"),
        Index("ix_schedules_time", "time"),
    )


class AdherenceRecord(Base):
    """Whether a schedule's dose was taken on a local calendar date"""
    __tablename__ = "adherence_records"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)
    date = Column(String(10), nullable=False)  # "YYYY-MM-DD", local to the owner
    taken = Column(Boolean, nullable=False)
    notes = Column(Text)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    schedule = relationship("Schedule", back_populates="adherence_records")

    __table_args__ = (
        UniqueConstraint("schedule_id", "date", name="uq_adherence_schedule_date"),
        Index("ix_adherence_date", "date"),
    )


class Notification(Base):
    """Notification produced by the engine; append-only except read_at"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="SET NULL"))

    type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    ai_generated = Column(Boolean, default=False)

    local_date = Column(String(10), index=True)  # user's local date at send time
    sent_at = Column(DateTime, default=utcnow)
    read_at = Column(DateTime)

    # Relationships
    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        CheckConstraint(
            "type IN ('reminder', 'missed_dose', 'coaching', 'escalation', 'test')",
            name="ck_notifications_type"
        ),
        Index("ix_notifications_user_schedule_type", "user_id", "schedule_id", "type"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "schedule_id": self.schedule_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "ai_generated": bool(self.ai_generated),
            "local_date": self.local_date,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


class EmergencyContact(Base):
    """Person alerted when a patient keeps missing doses"""
    __tablename__ = "emergency_contacts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(200), nullable=False)
    phone = Column(String(20))
    email = Column(String(255))
    priority = Column(Integer, nullable=False, default=1)  # ascending = more urgent
    notify_missed_doses = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    user = relationship("User", back_populates="emergency_contacts")

    __table_args__ = (
        CheckConstraint("phone IS NOT NULL OR email IS NOT NULL", name="ck_contact_reachable"),
        Index("ix_emergency_contacts_user_priority", "user_id", "priority"),
    )
