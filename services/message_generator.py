"""
Message Generator
Personalized reminder and coaching text from an OpenAI-compatible chat API.

Callers must be ready for GenerationError: the API may be down, slow, or
simply not configured for the user. The engine always has a static fallback.
"""

import asyncio
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from exceptions import GenerationError, PersistenceError
from services.store import Store, ScheduleRow, store as default_store
from tools.streak_calculator import adherence_ratio


logger = logging.getLogger(__name__)


class UserStatus(str, Enum):
    """What the patient reported they are doing right now"""
    BUSY = "busy"
    TRAVELING = "traveling"
    SICK = "sick"
    NORMAL = "normal"


class ReminderOptions(BaseModel):
    """Recognized knobs for reminder generation; anything else is dropped"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    is_missed: bool = False
    delay_minutes: int = Field(default=0, ge=0)
    user_status: UserStatus = UserStatus.NORMAL
    is_early: bool = False


class CoachingType(str, Enum):
    """Coaching message categories"""
    MOTIVATION = "motivation"
    MISSED_DOSE = "missed_dose"
    TIMING = "timing"
    STREAK = "streak"
    IMPROVEMENT = "improvement"


REMINDER_GUIDELINES = """Guidelines:
- Keep it friendly, encouraging, and concise (2-3 sentences max)
- Use appropriate emoji (💊, ⏰, 💪, 🌟, etc.)
- If adherence is good (80%+), be congratulatory
- If adherence is poor (<80%), be more motivational
- For missed doses, be gentle but emphasize importance
- Include the medication name and dosage
- Make it personal and caring, not clinical"""

COACHING_GUIDELINES = """Guidelines:
- Be warm, encouraging, and personal
- Keep it concise (2-3 sentences)
- Use appropriate emojis
- Focus on health benefits and positive reinforcement
- Avoid being preachy or clinical"""


class MessageGenerator:
    """
    Generates reminder and coaching text with the configured chat model.

    A per-user key takes precedence over the service-wide key.
    """

    def __init__(self, store: Optional[Store] = None):
        self.store = store or default_store
        self.base_url = settings.CEREBRAS_BASE_URL
        self.model_name = settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE
        self.timeout = settings.LLM_TIMEOUT_SECONDS

        # Usage tracking
        self._request_count = 0
        self._total_tokens_used = 0

    def _api_key_for(self, user_id: int) -> str:
        try:
            user = self.store.get_user(user_id)
        except PersistenceError as e:
            raise GenerationError(f"Could not load generator key for user {user_id}: {e}") from e

        key = (user.api_key if user else None) or settings.CEREBRAS_API_KEY
        if not key:
            logger.info(f"⚠️ No generator API key configured for user {user_id}")
            raise GenerationError(f"No generator API key configured for user {user_id}")
        return key

    def _user_context(self, user_id: int) -> Dict[str, Any]:
        """Recent adherence summary used to personalize prompts"""
        since = (date.today() - timedelta(days=7)).isoformat()
        try:
            schedules = self.store.list_user_schedules(user_id)
            recent = self.store.list_recent_adherence_for_user(user_id, since)
        except PersistenceError as e:
            logger.warning(f"Using empty prompt context for user {user_id}: {e}")
            return {"adherence_rate": 0, "total_medications": 0, "has_missed_doses": False, "medications": []}

        ratio = adherence_ratio(recent)
        return {
            "adherence_rate": round(ratio * 100) if ratio is not None else 0,
            "total_medications": len(schedules),
            "has_missed_doses": any(not r.taken for r in recent),
            "medications": [s.medication_name for s in schedules],
        }

    async def _complete(self, api_key: str, prompt: str, max_tokens: int, temperature: float) -> str:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            resp = await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: requests.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                ),
            )
        except requests.RequestException as e:
            raise GenerationError(f"Generator request failed: {e}") from e

        if resp.status_code != 200:
            logger.error("Generator API error %s: %s", resp.status_code, resp.text[:200])
            raise GenerationError(f"Generator API error: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise GenerationError(f"Generator returned invalid JSON: {e}") from e

        choices = data.get("choices") or []
        text = (choices[0].get("message", {}).get("content") or "").strip() if choices else ""
        if not text:
            raise GenerationError("Empty generator response")

        usage = data.get("usage") or {}
        self._total_tokens_used += usage.get("total_tokens", 0)
        self._request_count += 1
        return text

    async def generate_reminder(
        self,
        user_id: int,
        schedule: ScheduleRow,
        options: Optional[ReminderOptions] = None
    ) -> str:
        """
        Personalized reminder for one dose.

        Raises:
            GenerationError: on any failure, including a missing key
        """
        options = options or ReminderOptions()
        api_key = self._api_key_for(user_id)
        context = self._user_context(user_id)

        situational = []
        if options.is_missed:
            situational.append("- This is a MISSED DOSE reminder")
        if options.delay_minutes:
            situational.append(f"- The dose is {options.delay_minutes} minutes late")
        if options.is_early:
            situational.append("- User is taking medication early")
        if options.user_status != UserStatus.NORMAL:
            situational.append(f"- User status: {options.user_status.value}")

        prompt = f"""You are a helpful, caring medication reminder assistant for PillPulse. Generate a personalized, encouraging reminder message.

User Context:
- Current medication: {schedule.medication_name} ({schedule.dosage})
- Scheduled time: {schedule.time}
- Overall adherence rate: {context['adherence_rate']}%
- Total medications: {context['total_medications']}
- Has missed recent doses: {context['has_missed_doses']}
- Frequency: {schedule.frequency}
{chr(10).join(situational)}

{REMINDER_GUIDELINES}

Generate a personalized reminder message:"""

        text = await self._complete(api_key, prompt, settings.LLM_REMINDER_MAX_TOKENS, self.temperature)
        logger.info(f"✅ Generated reminder for user {user_id}")
        return text

    async def generate_coaching(
        self,
        user_id: int,
        coaching_type: CoachingType,
        context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Coaching message of the given category.

        Raises:
            GenerationError: on any failure, including a missing key
        """
        context = context or {}
        api_key = self._api_key_for(user_id)
        user_context = self._user_context(user_id)
        rate = user_context["adherence_rate"]

        prompts = {
            CoachingType.MOTIVATION: f"Generate an encouraging, personalized message to motivate a user with {rate}% adherence rate taking {user_context['total_medications']} medications.",
            CoachingType.MISSED_DOSE: f"Generate a gentle, supportive message for a user who missed taking {context.get('medication_name', 'their medication')}. Help them get back on track without guilt.",
            CoachingType.TIMING: f"Generate advice for a user about taking medications at consistent times. Their current adherence rate is {rate}%.",
            CoachingType.STREAK: f"Congratulate a user who has taken their medications consistently for {context.get('streak_days', 0)} days. Their medications: {', '.join(user_context['medications'])}.",
            CoachingType.IMPROVEMENT: f"Celebrate a user whose adherence improved from {context.get('previous_rate', 0)}% to {rate}%. Encourage them to keep going.",
        }
        base_prompt = prompts.get(coaching_type, prompts[CoachingType.MOTIVATION])

        prompt = f"""You are a caring medication adherence coach for PillPulse. {base_prompt}

{COACHING_GUIDELINES}

Generate a coaching message:"""

        text = await self._complete(api_key, prompt, settings.LLM_COACHING_MAX_TOKENS, 0.8)
        logger.info(f"✅ Generated {coaching_type.value} coaching message for user {user_id}")
        return text

    def get_usage_stats(self) -> Dict[str, int]:
        return {
            "request_count": self._request_count,
            "total_tokens_used": self._total_tokens_used,
        }


message_generator = MessageGenerator()
