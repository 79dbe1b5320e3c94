from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .storage_service import DEFAULT_GOALS
from .translation_service import language_name

logger = logging.getLogger(__name__)


_ASSISTANT_BRIEF = """You are FoodyScan AI, a personal health companion and food recognizer.

Base your advice on the user's stored health data (medical reports, past scans, goals) and their
active health conditions. Support every condition the user has.

When the user shares a medical report: summarise it in simple, caring language, list foods to avoid
and foods to eat (Indian meals preferred), outline a one-month diet plan by week, and add lifestyle tips.

When the user asks about a food: compare its sugar, fat, salt, calories, fiber and allergens with their
conditions, say whether it is SAFE ✅ or HARMFUL ⚠️, explain how it affects them and offer a healthier
alternative.

Be friendly, conversational and encouraging. Use emojis sparingly for clarity (✅ ⚠️ 🥗 🏃 💪).
Always recommend consulting a healthcare professional for medical decisions."""


class ChatService:
    """Builds the user's health context and relays the conversation to the AI."""

    def __init__(self, ai_service, storage_service, max_workers: int = 6) -> None:
        self._ai = ai_service
        self._storage = storage_service
        self._max_workers = max_workers

    def reply(self, user_id: str, message: Optional[str], image: Optional[str] = None) -> str:
        context = self.gather_context(user_id)
        system_prompt = self.build_system_prompt(context)

        reply = self._ai.chat(system_prompt, context['history'], message, image)

        self._storage.append_chat_messages(
            user_id,
            [
                {'role': 'user', 'content': message or '[Image]'},
                {'role': 'assistant', 'content': reply},
            ],
        )
        logger.info('health_chat.replied', extra={'user_id': user_id, 'language': context['language']})
        return reply

    def gather_context(self, user_id: str) -> Dict[str, Any]:
        """Fetch every context source concurrently and wait for all of them."""

        storage = self._storage
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {
                'conditions': pool.submit(storage.fetch_health_conditions, user_id),
                'scans': pool.submit(storage.list_scans, user_id, 10),
                'goals': pool.submit(storage.fetch_goals, user_id),
                'reports': pool.submit(storage.list_medical_reports, user_id, 3),
                'history': pool.submit(storage.fetch_chat_history, user_id, 20),
                'language': pool.submit(storage.fetch_preferred_language, user_id),
            }
            return {key: future.result() for key, future in futures.items()}

    def build_system_prompt(self, context: Dict[str, Any]) -> str:
        lines: List[str] = ["User Health Profile:"]

        conditions = context.get('conditions') or []
        if conditions:
            lines.append("")
            lines.append("Active Health Conditions:")
            for condition in conditions:
                entry = f"- {condition.get('condition_name')}"
                if condition.get('severity'):
                    entry += f" ({condition['severity']})"
                if condition.get('notes'):
                    entry += f" - {condition['notes']}"
                lines.append(entry)

        scans = context.get('scans') or []
        if scans:
            lines.append("")
            lines.append("Recent Food Scans:")
            for scan in scans:
                lines.append(
                    f"- {scan.get('food_name')}: {scan.get('calories')} cal, Protein: {scan.get('protein')}g, "
                    f"Carbs: {scan.get('carbs')}g, Fat: {scan.get('fat')}g"
                )

        goals = context.get('goals')
        if goals:
            lines.append("")
            lines.append("Daily Nutritional Goals:")
            lines.append(f"- Calories: {goals.get('daily_calorie_goal') or DEFAULT_GOALS['daily_calorie_goal']} cal")
            lines.append(f"- Protein: {goals.get('daily_protein_goal') or DEFAULT_GOALS['daily_protein_goal']}g")
            lines.append(f"- Carbs: {goals.get('daily_carbs_goal') or DEFAULT_GOALS['daily_carbs_goal']}g")
            lines.append(f"- Fat: {goals.get('daily_fat_goal') or DEFAULT_GOALS['daily_fat_goal']}g")

        reports = context.get('reports') or []
        if reports:
            lines.append("")
            lines.append("Medical Report Summary:")
            for report in reports:
                lines.append(f"- {report.get('report_type')}: {report.get('recommendations')}")

        language = language_name(context.get('language') or 'en')
        return (
            f"{_ASSISTANT_BRIEF}\n\n"
            + "\n".join(lines)
            + f"\n\nRespond in {language}, using its native script. Keep any JSON keys in English. "
            "Focus on Indian diets when relevant."
        )
