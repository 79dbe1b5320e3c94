from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..utils.errors import UpstreamError, ValidationError
from ..utils.validation import decode_image

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_TIP = "Enjoy this food as part of a balanced diet!"
DEFAULT_CHAT_REPLY = "I'm sorry, I couldn't generate a response."
MEDICAL_DISCLAIMER = "⚠️ For information only - consult a doctor for medical advice."
CONDITION_DISCLAIMER = (
    "⚠️ For information only - consult a doctor for proper diagnosis and treatment."
)
NOT_MEDICAL_REPORT_MESSAGE = (
    "⚠️ We couldn't detect a valid medical report. Please upload a clear photo of your lab report."
)
NOT_MEAL_SCHEDULE_MESSAGE = (
    "⚠️ We couldn't detect a meal schedule. Please upload a clear photo of your diet plan or meal schedule."
)


class AIService:
    """Thin wrapper around the Gemini API.

    Every public method issues exactly one ``generate_content`` call. Failures
    are raised as :class:`UpstreamError` so handlers can map rate limiting and
    exhausted quota to user-facing messages; the service never retries.
    """

    _ENV_KEY_PRIORITY = (
        'GEMINI_API_KEY',
        'GOOGLE_API_KEY',
        'FOODYSCAN_GEMINI_API_KEY',
    )

    def __init__(self) -> None:
        self._api_key: Optional[str] = self._resolve_api_key()
        self._text_model_id = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')
        self.client: Optional[genai.Client] = self._configure_client(self._api_key)
        logger.info("Gemini client ready: %s", self.client is not None)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # --- Food scans ------------------------------------------------------

    def identify_foods(self, image: str) -> List[Dict[str, str]]:
        """Return the food items visible in ``image`` as ``{name, portion}`` dicts."""

        prompt = (
            "Identify every distinct food or drink item in this photo. "
            "Respond ONLY with JSON of the form "
            '{"items": [{"name": "grilled chicken breast", "portion": "1 piece"}]}. '
            "Names must be specific but concise and searchable in a nutrition database. "
            "Estimate the visible portion for each item. "
            'If there is no food in the image, respond with {"items": []}.'
        )
        raw = self._call_gemini([prompt, self._image_part(image)])
        data = self._extract_json_fragment(raw)

        items: List[Dict[str, str]] = []
        if isinstance(data, dict) and isinstance(data.get('items'), list):
            for item in data['items']:
                if isinstance(item, dict) and str(item.get('name') or '').strip():
                    items.append({
                        'name': str(item['name']).strip(),
                        'portion': str(item.get('portion') or '1 serving').strip(),
                    })
        elif raw and not data and '\n' not in raw.strip() and len(raw.strip()) < 80:
            # A bare food name is still a usable answer.
            items.append({'name': raw.strip().strip('."'), 'portion': '1 serving'})

        if not items:
            raise UpstreamError("Could not identify food in image")
        return items

    def estimate_nutrition(self, food_name: str) -> Optional[Dict[str, float]]:
        """Estimate per-serving nutrition for ``food_name``."""

        prompt = (
            "You are a nutrition estimator. Estimate the nutrition of one typical serving of the food "
            "below, assuming common Indian home-style preparation where relevant. Respond ONLY valid JSON "
            "with keys: calories, protein_g, fat_g, carbs_g, fiber_g (all numbers). "
            "Be conservative when uncertain.\n\n"
            f"Food: {food_name}\n"
            "JSON:"
        )
        data = self._extract_json_fragment(self._call_gemini([prompt]))
        if not isinstance(data, dict) or 'calories' not in data:
            return None

        result: Dict[str, float] = {}
        for source_key, key in (
            ('calories', 'calories'),
            ('protein_g', 'protein'),
            ('fat_g', 'fat'),
            ('carbs_g', 'carbs'),
            ('fiber_g', 'fiber'),
        ):
            try:
                result[key] = max(float(data.get(source_key) or 0), 0.0)
            except (TypeError, ValueError):
                result[key] = 0.0
        return result

    def health_tip(self, food_name: str) -> str:
        prompt = (
            f"Write a brief, friendly health tip about {food_name}. Focus on nutritional benefits, "
            "portion control, or healthier preparation. Keep it under 50 words, encouraging and practical."
        )
        return self._call_gemini([prompt]) or DEFAULT_HEALTH_TIP

    def quick_advice(self, food_name: str, nutrition: Dict[str, Any]) -> str:
        prompt = (
            "In one short sentence (max 20 words), tell the user whether this meal is a light, balanced "
            "or heavy choice and one thing to pair it with.\n"
            f"Meal: {food_name}\n"
            f"Calories: {nutrition.get('calories')} kcal, protein {nutrition.get('protein')} g, "
            f"carbs {nutrition.get('carbs')} g, fat {nutrition.get('fat')} g, fiber {nutrition.get('fiber')} g."
        )
        return self._call_gemini([prompt])

    # --- Medical reports -------------------------------------------------

    def analyze_medical_report(self, image: str) -> Dict[str, Any]:
        prompt = (
            "Analyze this medical report and extract the key lab values and health indicators: blood sugar "
            "(fasting/PP), cholesterol (total, LDL, HDL, triglycerides), hemoglobin, thyroid (TSH, T3, T4), "
            "blood pressure, kidney function (creatinine, urea), liver function (SGPT, SGOT), vitamin levels "
            "(D, B12) and similar.\n\n"
            "If the image is not a medical report, respond with exactly: NOT_MEDICAL_REPORT\n\n"
            "Otherwise respond ONLY with JSON:\n"
            "{\n"
            '  "valid": true,\n'
            '  "extracted": {"parameter": "value with unit"},\n'
            '  "abnormal": ["parameters outside the normal range"],\n'
            '  "conditions": [{"condition_name": "diabetes", "severity": "mild|moderate|severe", "notes": "..."}],\n'
            '  "recommendations": {\n'
            '    "foodsToEat": ["Indian veg and non-veg options"],\n'
            '    "foodsToAvoid": ["..."],\n'
            '    "plan30Days": "a simple 30-day improvement plan"\n'
            "  },\n"
            '  "critical": ["values that need an immediate doctor consultation"]\n'
            "}"
        )
        raw = self._call_gemini([prompt, self._image_part(image)])
        if 'NOT_MEDICAL_REPORT' in raw:
            raise ValidationError(NOT_MEDICAL_REPORT_MESSAGE)

        analysis = self._extract_json_fragment(raw)
        if not isinstance(analysis, dict):
            logger.warning('medical_report.unparsable_response')
            raise UpstreamError("Failed to analyze medical report")
        if not analysis.get('valid'):
            raise ValidationError(NOT_MEDICAL_REPORT_MESSAGE)
        return analysis

    def condition_advice(self, condition: str) -> Dict[str, Any]:
        prompt = (
            f"Provide dietary and lifestyle advice for someone experiencing: {condition}\n\n"
            "Focus on Indian diet recommendations with both veg and non-veg options. Respond ONLY with JSON:\n"
            '{"foodSuggestions": ["..."], "habits": ["..."], "rationale": "why these help", '
            f'"disclaimer": "{CONDITION_DISCLAIMER}"}}\n'
            "Keep it concise and practical."
        )
        raw = self._call_gemini([prompt])
        advice = self._extract_json_fragment(raw)
        if not isinstance(advice, dict):
            return {
                'foodSuggestions': [],
                'habits': [],
                'rationale': raw,
                'disclaimer': CONDITION_DISCLAIMER,
            }
        advice.setdefault('foodSuggestions', [])
        advice.setdefault('habits', [])
        advice.setdefault('rationale', '')
        advice.setdefault('disclaimer', CONDITION_DISCLAIMER)
        return advice

    def parse_meal_schedule(self, image: str) -> List[Dict[str, str]]:
        prompt = (
            "Extract the meal schedule from this image (a prescription, diet chart or meal plan table): "
            "meal times, what to eat at each time and any special instructions.\n\n"
            "If this is not a meal schedule or diet plan, respond with exactly: NOT_MEAL_SCHEDULE\n\n"
            'Otherwise respond ONLY with JSON: {"valid": true, "meals": [{"name": "Breakfast", '
            '"time": "08:00", "instructions": "what to eat"}]}\n'
            "Use 24-hour times. When no time is given use: Morning 07:00, Breakfast 08:00, "
            "Mid-morning 10:30, Lunch 13:00, Evening 16:00, Dinner 19:30."
        )
        raw = self._call_gemini([prompt, self._image_part(image)])
        if 'NOT_MEAL_SCHEDULE' in raw:
            raise ValidationError(NOT_MEAL_SCHEDULE_MESSAGE)

        schedule = self._extract_json_fragment(raw)
        if not isinstance(schedule, dict):
            raise UpstreamError("Failed to parse meal schedule")
        meals = schedule.get('meals')
        if not schedule.get('valid') or not isinstance(meals, list) or not meals:
            raise ValidationError(NOT_MEAL_SCHEDULE_MESSAGE)
        return [meal for meal in meals if isinstance(meal, dict)]

    # --- Chat ------------------------------------------------------------

    def chat(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        message: Optional[str],
        image: Optional[str] = None,
    ) -> str:
        contents: List[types.Content] = []
        for entry in history:
            role = 'model' if entry.get('role') == 'assistant' else 'user'
            text = entry.get('content') or ''
            if text:
                contents.append(types.Content(role=role, parts=[types.Part.from_text(text=text)]))

        parts = [types.Part.from_text(text=message or "What's in this image?")]
        if image:
            parts.append(self._image_part(image))
        contents.append(types.Content(role='user', parts=parts))

        config = types.GenerateContentConfig(system_instruction=system_prompt)
        return self._call_gemini(contents, config=config) or DEFAULT_CHAT_REPLY

    # --- Translation -----------------------------------------------------

    def translate(self, text: str, language_name: str) -> str:
        prompt = (
            f"Translate the following text to {language_name}. Keep the tone and meaning. "
            "Return only the translated text, nothing else.\n\n"
            f"Text: {text}"
        )
        return self._call_gemini([prompt]) or text

    def translate_batch(self, texts: Sequence[str], language_name: str) -> List[str]:
        """Translate many strings in one call; falls back to the input on a bad reply."""

        prompt = (
            f"Translate each string in the JSON array below to {language_name}. Keep the tone and meaning. "
            "Respond ONLY with a JSON array of the translated strings in the same order and of the same "
            "length.\n\n"
            f"{json.dumps(list(texts), ensure_ascii=False)}"
        )
        data = self._extract_json_fragment(self._call_gemini([prompt]))
        if not isinstance(data, list) or len(data) != len(texts):
            logger.warning('translate_batch.length_mismatch', extra={'expected': len(texts)})
            return list(texts)
        return [str(item) if item else original for item, original in zip(data, texts)]

    # --- Recommendations -------------------------------------------------

    def food_recommendations(self, food_name: str, language_name: str) -> List[Dict[str, Any]]:
        prompt = (
            "You are a food recommendation expert for Indian and international cuisine. "
            f'Suggest 4-5 dishes or products that complement or pair well with: "{food_name}". '
            "Think about what people typically order together on food delivery apps, healthier "
            "alternatives when the food is unhealthy, and packaged products.\n"
            f"Write names and descriptions in {language_name}.\n"
            "Respond ONLY with a JSON array of objects with keys: name, description (1-2 lines), "
            'tag (e.g. "Protein Rich", "Low Calorie", "Popular"), platform (one of Zomato, Swiggy, '
            "Amazon, Flipkart), searchTerm (a short search query)."
        )
        try:
            data = self._extract_json_fragment(self._call_gemini([prompt]))
        except UpstreamError:
            logger.warning('food_recommendations.ai_unavailable', exc_info=True)
            return []
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    def medical_food_recommendations(
        self, foods_to_eat: Sequence[str], foods_to_avoid: Sequence[str]
    ) -> List[Dict[str, Any]]:
        prompt = (
            "Based on these medical dietary recommendations:\n"
            f"Foods to eat: {', '.join(foods_to_eat)}\n"
            f"Foods to avoid: {', '.join(foods_to_avoid) or 'none'}\n\n"
            "Suggest 4 specific food items that can be ordered on Indian delivery platforms (Zomato, "
            "Swiggy, Blinkit, Amazon, Flipkart, Zepto) and that match the foods to eat. Mix prepared meals, "
            "fresh produce and pantry staples.\n"
            "Respond ONLY with a JSON array of objects with keys: name, description (the health benefit), "
            "tag (one short health tag), searchTerm, platform."
        )
        try:
            data = self._extract_json_fragment(self._call_gemini([prompt]))
        except UpstreamError:
            logger.warning('medical_recommendations.ai_unavailable', exc_info=True)
            return []
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    # --- Helper methods -------------------------------------------------

    def _resolve_api_key(self) -> Optional[str]:
        api_key = self._get_env_value(*self._ENV_KEY_PRIORITY)
        if not api_key:
            logger.warning('Gemini API key not found in environment; AI features are disabled.')
        return api_key

    def _configure_client(self, api_key: Optional[str]) -> Optional[genai.Client]:
        if not api_key:
            return None
        try:
            return genai.Client(api_key=api_key)
        except Exception as exc:  # pragma: no cover - external SDK
            logger.warning("Gemini client init failed: %s", exc)
            return None

    @staticmethod
    def _get_env_value(*names: str) -> Optional[str]:
        for name in names:
            value = os.getenv(name)
            if value:
                return value
        return None

    def _image_part(self, image: str) -> types.Part:
        if image.startswith('http://') or image.startswith('https://'):
            return types.Part.from_uri(file_uri=image, mime_type='image/jpeg')
        data, mime_type = decode_image(image)
        return types.Part.from_bytes(data=data, mime_type=mime_type)

    def _call_gemini(self, contents: List[Any], config: Optional[types.GenerateContentConfig] = None) -> str:
        if not self.client:
            raise UpstreamError("AI service is not configured")

        try:  # pragma: no cover - external service call
            response = self.client.models.generate_content(
                model=self._text_model_id,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as exc:
            logger.warning('Gemini request failed: %s', exc, extra={'status': exc.code})
            raise UpstreamError("AI request failed", exc.code) from exc
        except Exception as exc:
            logger.warning('Gemini request failed: %s', exc)
            raise UpstreamError("AI request failed") from exc

        if not response:
            return ''

        text = getattr(response, 'text', None)
        if text:
            return text.strip()

        candidates = getattr(response, 'candidates', None) or []
        for candidate in candidates:
            content = getattr(candidate, 'content', None)
            parts = getattr(content, 'parts', None) if content else None
            if not parts:
                continue
            assembled = ' '.join(getattr(part, 'text', '') for part in parts if getattr(part, 'text', ''))
            if assembled.strip():
                return assembled.strip()

        return ''

    def _extract_json_fragment(self, text: str) -> Optional[Any]:
        if not text:
            return None
        cleaned = self._strip_code_fences(text)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass

        match = re.search(r'(\{.*\}|\[.*\])', cleaned, re.DOTALL)
        if not match:
            return None
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            return None

    def _strip_code_fences(self, raw: str) -> str:
        cleaned = raw.strip()
        fenced = re.search(r'```(?:json)?\s*(.*?)```', cleaned, re.DOTALL)
        if fenced:
            return fenced.group(1).strip()
        return cleaned
