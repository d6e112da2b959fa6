"""
Engine API Router
Operational endpoints for the reminder engine
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from actions.dose_detector import DoseDetector
from actions.escalation_engine import EscalationEngine
from actions.notification_dispatcher import NotificationDispatcher
from actions.reminder_scheduler import ReminderScheduler
from api.deps import (
    get_detector,
    get_dispatcher,
    get_escalation_engine,
    get_scheduler,
    get_store,
)
from config import engine_config
from exceptions import ScheduleNotFoundError
from services.message_generator import ReminderOptions, UserStatus
from services.store import Store
from tools.streak_calculator import calculate_streaks
from tools.timezone_resolver import local_now


router = APIRouter(prefix="/engine", tags=["engine"])


# ==================== REQUEST SCHEMAS ====================

class InstantReminderRequest(BaseModel):
    """Ask for reminder text for one schedule right now"""
    user_id: int
    schedule_id: int
    delay_minutes: int = Field(default=0, ge=0)
    user_status: UserStatus = UserStatus.NORMAL


class ThresholdUpdate(BaseModel):
    """Partial update of escalation thresholds"""
    consecutive_missed: Optional[int] = Field(None, ge=1)
    critical_missed_hours: Optional[int] = Field(None, ge=1)
    max_alerts_per_day: Optional[int] = Field(None, ge=1)
    max_contacts: Optional[int] = Field(None, ge=1)
    lookback_days: Optional[int] = Field(None, ge=1)


# ==================== RESPONSE SCHEMAS ====================

class InstantReminderResponse(BaseModel):
    reminder: str
    medication: str
    dosage: str
    scheduled_time: str
    current_time: str
    status: str
    delay_minutes: int
    user_status: UserStatus


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    schedule_id: Optional[int]
    type: str
    title: str
    message: str
    ai_generated: bool
    local_date: Optional[str]
    sent_at: Optional[str]
    read_at: Optional[str]


# ==================== ENDPOINTS ====================

@router.post("/run")
async def run_cycle(scheduler: ReminderScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    Run one reminder cycle immediately

    Waits for any cycle already in progress.
    """
    result = await scheduler.run_cycle_once()
    return result.to_dict()


@router.get("/status")
async def engine_status(
    scheduler: ReminderScheduler = Depends(get_scheduler),
    escalation: EscalationEngine = Depends(get_escalation_engine)
) -> Dict[str, Any]:
    return {
        "scheduler": scheduler.get_status(),
        "escalation_thresholds": escalation.thresholds.to_dict(),
        "generator": scheduler.dispatcher.generator.get_usage_stats(),
        "channels": [c.kind.value for c in scheduler.dispatcher.channels],
    }


@router.post("/test-notification/{user_id}")
async def send_test_notification(
    user_id: int,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    store: Store = Depends(get_store)
) -> Dict[str, Any]:
    """Send a test notification through every channel the user can receive"""
    if not store.get_user(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    result = await dispatcher.send_test_notification(user_id)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send test notification: {result.error}"
        )
    return result.to_dict()


@router.post("/instant-reminder", response_model=InstantReminderResponse)
async def instant_reminder(
    request: InstantReminderRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    detector: DoseDetector = Depends(get_detector),
    store: Store = Depends(get_store)
):
    """
    Generate reminder text for a schedule without storing a notification
    """
    schedule = store.get_schedule(request.schedule_id, user_id=request.user_id)
    if not schedule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")

    context = detector.classify(schedule)
    is_missed = context.overdue_minutes > 0
    options = ReminderOptions(
        is_missed=is_missed,
        is_early=context.overdue_minutes < 0,
        delay_minutes=request.delay_minutes,
        user_status=request.user_status,
    )

    try:
        reminder = await dispatcher.get_instant_reminder(request.user_id, request.schedule_id, options)
    except ScheduleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if is_missed:
        dose_status = "missed"
    elif request.delay_minutes > 0:
        dose_status = "delayed"
    else:
        dose_status = "on_time"

    return InstantReminderResponse(
        reminder=reminder,
        medication=schedule.medication_name,
        dosage=schedule.dosage,
        scheduled_time=schedule.time,
        current_time=context.local_time,
        status=dose_status,
        delay_minutes=request.delay_minutes,
        user_status=request.user_status,
    )


@router.get("/streaks/{user_id}")
async def get_streaks(
    user_id: int,
    schedule_id: Optional[int] = Query(None, ge=1),
    store: Store = Depends(get_store)
) -> Dict[str, Any]:
    """Current and longest streaks over the last 90 days"""
    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if schedule_id is not None and not store.get_schedule(schedule_id, user_id=user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied - invalid schedule ID"
        )

    today = date.fromisoformat(local_now(user.timezone).date)
    since = (today - timedelta(days=engine_config.STREAK_LOOKBACK_DAYS)).isoformat()
    records = store.list_recent_adherence_for_user(user_id, since, schedule_id=schedule_id)

    stats = calculate_streaks(records, today=today, history_limit=engine_config.STREAK_HISTORY_LIMIT)
    return {
        **stats.to_dict(),
        "period_days": engine_config.STREAK_LOOKBACK_DAYS,
        "schedule_id": schedule_id,
    }


@router.get("/escalations/stats")
async def escalation_stats(
    days: int = Query(30, ge=1, le=365),
    escalation: EscalationEngine = Depends(get_escalation_engine)
) -> Dict[str, Any]:
    stats = escalation.get_alert_stats(days)
    return {**stats, "period_days": days}


@router.put("/escalations/thresholds")
async def update_escalation_thresholds(
    update: ThresholdUpdate,
    escalation: EscalationEngine = Depends(get_escalation_engine)
) -> Dict[str, int]:
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No thresholds provided")
    return escalation.update_thresholds(**changes).to_dict()


@router.get("/notifications/{user_id}", response_model=List[NotificationResponse])
async def list_notifications(
    user_id: int,
    notification_type: Optional[str] = Query(None, alias="type"),
    store: Store = Depends(get_store)
):
    return [n.to_dict() for n in store.list_notifications(user_id, notification_type)]


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    user_id: int = Query(..., ge=1),
    store: Store = Depends(get_store)
) -> Dict[str, Any]:
    if not store.mark_notification_read(notification_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True, "notification_id": notification_id}
