#!/usr/bin/env python
"""
Seed Data
Script to seed the database with a demo user for development and testing
"""

import sys
import os
import argparse
import logging
import random
from datetime import date, timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import get_db_context, init_db
from models import AdherenceRecord, EmergencyContact, Schedule, User


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEMO_EMAIL = "demo@pillpulse.app"

DEMO_SCHEDULES = [
    ("Metformin", "500mg", "08:00"),
    ("Lisinopril", "10mg", "09:00"),
    ("Atorvastatin", "20mg", "21:00"),
]


def seed_demo_user(db) -> User:
    """Create the demo user with schedules and a contact"""
    existing = db.query(User).filter(User.email == DEMO_EMAIL).first()
    if existing:
        logger.info("Demo user already exists")
        return existing

    user = User(
        email=DEMO_EMAIL,
        name="Jordan Demo",
        phone="+15551234567",
        timezone="America/New_York",
        email_notifications=True,
        sms_notifications=False,
    )
    db.add(user)
    db.flush()

    for name, dosage, at in DEMO_SCHEDULES:
        db.add(Schedule(user_id=user.id, medication_name=name, dosage=dosage, time=at))

    db.add(EmergencyContact(
        user_id=user.id,
        name="Sam Demo",
        email="sam@example.com",
        phone="+15557654321",
        priority=1,
        notify_missed_doses=True,
    ))
    db.flush()

    logger.info(f"Created demo user {user.id} with {len(DEMO_SCHEDULES)} schedules")
    return user


def seed_adherence(db, user: User, days: int = 30, taken_rate: float = 0.85) -> int:
    """Random adherence history for the last `days` days, excluding today"""
    created = 0
    today = date.today()
    for schedule in user.schedules:
        for offset in range(1, days + 1):
            day = (today - timedelta(days=offset)).isoformat()
            exists = db.query(AdherenceRecord).filter(
                AdherenceRecord.schedule_id == schedule.id,
                AdherenceRecord.date == day
            ).first()
            if exists:
                continue
            db.add(AdherenceRecord(
                schedule_id=schedule.id,
                date=day,
                taken=random.random() < taken_rate,
            ))
            created += 1

    logger.info(f"Created {created} adherence records")
    return created


def seed_all(days: int = 30, taken_rate: float = 0.85):
    init_db()
    with get_db_context() as db:
        user = seed_demo_user(db)
        seed_adherence(db, user, days=days, taken_rate=taken_rate)
        print(f"\nDemo User ID: {user.id}")
        print(f"Demo User Email: {user.email}")


def main():
    parser = argparse.ArgumentParser(
        description="Seed the database with a demo user"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=30,
        help="Days of adherence history to generate"
    )
    parser.add_argument(
        "--taken-rate",
        type=float,
        default=0.85,
        help="Probability that a past dose was taken"
    )

    args = parser.parse_args()

    seed_all(days=args.days, taken_rate=args.taken_rate)


if __name__ == "__main__":
    main()
