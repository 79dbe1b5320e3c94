from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..utils.errors import UpstreamError

logger = logging.getLogger(__name__)

_SALTY_KEYWORDS = ('salt', 'pickle', 'papad', 'chips', 'namkeen')
_MACRO_KEYS = ('calories', 'protein', 'fat', 'carbs', 'fiber')


def check_against_conditions(
    food_name: str, nutrition: Dict[str, Any], conditions: Sequence[Dict[str, Any]]
) -> Optional[Dict[str, str]]:
    """Rate a food against the user's active health conditions.

    Returns ``None`` when the user has no conditions on file. Later rules
    override earlier ones, so the last matching condition decides the status.
    """

    names = [str(item.get('condition_name') or '').lower() for item in conditions]
    names = [name for name in names if name]
    if not names:
        return None

    def has(*keywords: str) -> bool:
        return any(keyword in name for name in names for keyword in keywords)

    calories = float(nutrition.get('calories') or 0)
    protein = float(nutrition.get('protein') or 0)
    fat = float(nutrition.get('fat') or 0)
    carbs = float(nutrition.get('carbs') or 0)
    lowered_food = food_name.lower()

    status, message, reason = 'safe', '', ''

    if has('diabetes', 'blood sugar'):
        if carbs > 50:
            status, message, reason = (
                'harmful',
                '⚠️ High carbs may spike blood sugar',
                'This food is high in carbohydrates, which can raise blood glucose sharply.',
            )
        elif carbs > 30:
            status, message, reason = (
                'warning',
                '⚠️ Moderate carbs - watch the portion size',
                'Contains moderate carbohydrates. A smaller portion is a safer choice.',
            )

    if has('cholesterol'):
        if fat > 15:
            status, message, reason = (
                'harmful',
                '⚠️ High fat content not recommended',
                'High fat intake can worsen cholesterol levels.',
            )
        elif fat > 10:
            status, message, reason = (
                'warning',
                '⚠️ Moderate fat - limit intake',
                'Contains moderate fat. Best eaten occasionally.',
            )

    if has('pressure', 'bp', 'hypertension'):
        if any(keyword in lowered_food for keyword in _SALTY_KEYWORDS):
            status, message, reason = (
                'harmful',
                '⚠️ High sodium - avoid if possible',
                'Salty foods can raise blood pressure.',
            )

    if has('obesity', 'overweight'):
        if calories > 400:
            status, message, reason = (
                'warning',
                '⚠️ High calorie food',
                'This is calorie-dense. Consider a smaller portion.',
            )

    if has('kidney'):
        if protein > 25:
            status, message, reason = (
                'warning',
                '⚠️ High protein content',
                'A lot of protein can stress the kidneys. Ask your doctor about your protein limit.',
            )

    if status == 'safe':
        message = '✅ Safe for your health conditions'
        reason = 'This food appears suitable for your health profile.'

    return {'status': status, 'message': message, 'reason': reason}


class FoodAnalysisService:
    """Image -> identified items -> nutrition -> tips -> stored scan."""

    def __init__(self, ai_service, nutrition_service, storage_service) -> None:
        self._ai = ai_service
        self._nutrition = nutrition_service
        self._storage = storage_service

    def analyze(self, image: str, user_id: str) -> Dict[str, Any]:
        identified = self._ai.identify_foods(image)
        logger.info('analyze_food.identified', extra={'items': [item['name'] for item in identified]})

        items: List[Dict[str, Any]] = []
        for entry in identified:
            nutrition = self._nutrition.lookup(entry['name'])
            items.append({'name': entry['name'], 'portion': entry.get('portion'), **nutrition})

        totals = self._totals(items)
        food_name = ', '.join(item['name'] for item in items)

        health_tip = self._ai.health_tip(food_name)
        try:
            quick_advice = self._ai.quick_advice(food_name, totals)
        except UpstreamError:
            # Optional garnish; the scan is still useful without it.
            logger.info('analyze_food.quick_advice_failed', exc_info=True)
            quick_advice = ''

        conditions = self._storage.fetch_health_conditions(user_id)
        condition_check = check_against_conditions(food_name, totals, conditions)

        result = {
            'foodName': food_name,
            'calories': totals['calories'],
            'protein': totals['protein'],
            'fat': totals['fat'],
            'carbs': totals['carbs'],
            'fiber': totals['fiber'],
            'healthTip': health_tip,
            'quickAdvice': quick_advice,
            'items': items,
            'isMultiItem': len(items) > 1,
            'conditionCheck': condition_check,
        }

        scan = self._storage.record_scan(
            user_id,
            {
                'food_name': food_name,
                'calories': totals['calories'],
                'protein': totals['protein'],
                'fat': totals['fat'],
                'carbs': totals['carbs'],
                'fiber': totals['fiber'],
                'health_tip': health_tip,
                'items': items,
            },
        )
        result['scanId'] = scan.get('id')

        logger.info('analyze_food.complete', extra={'user_id': user_id, 'calories': totals['calories']})
        return result

    @staticmethod
    def _totals(items: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        totals: Dict[str, Any] = {}
        for key in _MACRO_KEYS:
            total = sum(float(item.get(key) or 0) for item in items)
            totals[key] = int(round(total)) if key == 'calories' else round(total, 1)
        return totals
