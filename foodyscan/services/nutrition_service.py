"""Nutrition lookup with local, CalorieNinjas and AI tiers."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import requests
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import NutritionReference
from ..utils.errors import UpstreamError

logger = logging.getLogger(__name__)

CALORIENINJAS_URL = "https://api.calorieninjas.com/v1/nutrition"

# name, aliases, serving, calories, protein, fat, carbs, fiber
REFERENCE_FOODS = [
    ("apple", ["red apple", "green apple"], "1 medium (182 g)", 95, 0.5, 0.3, 25.1, 4.4),
    ("banana", [], "1 medium (118 g)", 105, 1.3, 0.4, 27.0, 3.1),
    ("boiled egg", ["egg", "hard boiled egg"], "1 large (50 g)", 78, 6.3, 5.3, 0.6, 0.0),
    ("chapati", ["roti", "phulka"], "1 piece (40 g)", 120, 3.1, 3.7, 18.0, 2.0),
    ("steamed rice", ["rice", "white rice", "plain rice"], "1 cup (158 g)", 205, 4.3, 0.4, 44.5, 0.6),
    ("dal tadka", ["dal", "yellow dal", "dal fry"], "1 bowl (150 g)", 180, 9.0, 6.0, 22.0, 5.0),
    ("chicken biryani", ["biryani"], "1 plate (250 g)", 480, 22.0, 17.0, 58.0, 2.5),
    ("paneer butter masala", ["paneer makhani"], "1 bowl (150 g)", 340, 12.0, 26.0, 12.0, 1.5),
    ("masala dosa", ["dosa"], "1 piece (120 g)", 250, 5.0, 10.0, 36.0, 3.0),
    ("idli", [], "2 pieces (80 g)", 120, 4.0, 0.4, 25.0, 1.2),
    ("sambar", [], "1 bowl (150 g)", 130, 6.0, 4.0, 18.0, 4.5),
    ("poha", [], "1 plate (150 g)", 250, 5.0, 8.0, 40.0, 2.0),
    ("upma", [], "1 plate (150 g)", 230, 5.5, 8.5, 33.0, 2.5),
    ("samosa", [], "1 piece (60 g)", 260, 4.0, 17.0, 24.0, 2.0),
    ("grilled chicken breast", ["chicken breast"], "100 g", 165, 31.0, 3.6, 0.0, 0.0),
    ("curd", ["dahi", "yogurt", "plain yogurt"], "1 cup (200 g)", 120, 7.0, 6.5, 9.0, 0.0),
    ("green salad", ["salad"], "1 bowl (100 g)", 35, 1.5, 0.3, 7.0, 2.5),
    ("oats porridge", ["oatmeal", "oats"], "1 bowl (240 g)", 160, 6.0, 3.5, 27.0, 4.0),
    ("masala chai", ["chai", "tea with milk"], "1 cup (150 ml)", 90, 2.5, 3.0, 13.0, 0.0),
    ("gulab jamun", [], "2 pieces (80 g)", 300, 4.0, 12.0, 45.0, 0.5),
]


class NutritionService:
    """Resolve per-serving nutrition for a food name.

    Lookup order is fixed: the local ``nutrition_reference`` table, then the
    CalorieNinjas API, then an AI estimate. The first tier that returns data
    wins and its name is reported as ``source``.
    """

    def __init__(self, ai_service, session: Optional[requests.Session] = None) -> None:
        self._ai = ai_service
        self._http = session or requests.Session()
        self._api_key: Optional[str] = os.getenv('CALORIENINJAS_API_KEY')
        self._timeout = float(os.getenv('CALORIENINJAS_TIMEOUT', '10'))

    def lookup(self, food_name: str) -> Dict[str, Any]:
        name = food_name.strip()

        local = self.lookup_local(name)
        if local:
            return self._shape(local, 'local')

        remote = self.lookup_calorieninjas(name)
        if remote:
            self._remember(name, remote)
            return self._shape(remote, 'calorieninjas')

        estimate = self._ai.estimate_nutrition(name)
        if estimate:
            return self._shape(estimate, 'ai')

        raise UpstreamError("No nutrition data found for this food")

    def lookup_local(self, food_name: str) -> Optional[Dict[str, Any]]:
        needle = food_name.strip().lower()
        try:
            row = db.session.execute(
                db.select(NutritionReference).where(func.lower(NutritionReference.name) == needle)
            ).scalar_one_or_none()
            if row is None:
                for candidate in db.session.execute(db.select(NutritionReference)).scalars():
                    if candidate.matches(needle):
                        row = candidate
                        break
        except SQLAlchemyError:
            logger.warning('nutrition.local_lookup_failed', exc_info=True)
            return None

        if row is None:
            logger.debug('nutrition.local_miss', extra={'food': needle})
            return None
        return row.to_nutrition()

    def lookup_calorieninjas(self, food_name: str) -> Optional[Dict[str, Any]]:
        if not self._api_key:
            logger.info('nutrition.calorieninjas_disabled')
            return None

        try:
            response = self._http.get(
                CALORIENINJAS_URL,
                params={'query': food_name},
                headers={'X-Api-Key': self._api_key},
                timeout=self._timeout,
            )
        except requests.RequestException:
            logger.warning('nutrition.calorieninjas_request_failed', exc_info=True)
            return None

        if response.status_code != 200:
            logger.warning(
                'nutrition.calorieninjas_bad_status',
                extra={'status': response.status_code, 'food': food_name},
            )
            return None

        try:
            items = response.json().get('items') or []
        except ValueError:
            logger.warning('nutrition.calorieninjas_invalid_json')
            return None
        if not items:
            return None

        item = items[0]
        serving = item.get('serving_size_g')
        return {
            'calories': item.get('calories') or 0,
            'protein': item.get('protein_g') or 0,
            'fat': item.get('fat_total_g') or 0,
            'carbs': item.get('carbohydrates_total_g') or 0,
            'fiber': item.get('fiber_g') or 0,
            'serving': f'{serving} g' if serving else None,
        }

    def seed_reference_foods(self) -> int:
        """Insert the bundled reference foods when the table is empty."""

        existing = db.session.execute(db.select(func.count(NutritionReference.id))).scalar_one()
        if existing:
            return 0

        for name, aliases, serving, calories, protein, fat, carbs, fiber in REFERENCE_FOODS:
            db.session.add(
                NutritionReference(
                    name=name,
                    aliases=aliases,
                    serving=serving,
                    calories=calories,
                    protein=protein,
                    fat=fat,
                    carbs=carbs,
                    fiber=fiber,
                )
            )
        db.session.commit()
        logger.info('nutrition.reference_seeded', extra={'count': len(REFERENCE_FOODS)})
        return len(REFERENCE_FOODS)

    def upsert_reference(self, name: str, nutrition: Dict[str, Any], aliases=None) -> NutritionReference:
        """Add or refresh a reference food."""

        row = db.session.execute(
            db.select(NutritionReference).where(func.lower(NutritionReference.name) == name.lower())
        ).scalar_one_or_none()
        if row is None:
            row = NutritionReference(name=name.lower())
            db.session.add(row)
        row.aliases = aliases or row.aliases or []
        row.serving = nutrition.get('serving') or row.serving
        for key in ('calories', 'protein', 'fat', 'carbs', 'fiber'):
            setattr(row, key, float(nutrition.get(key) or 0))
        row.touch()
        db.session.commit()
        return row

    def _remember(self, name: str, nutrition: Dict[str, Any]) -> None:
        # API hits are cached locally so repeat scans skip the network.
        try:
            self.upsert_reference(name, nutrition)
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning('nutrition.cache_write_failed', exc_info=True, extra={'food': name})

    @staticmethod
    def _shape(nutrition: Dict[str, Any], source: str) -> Dict[str, Any]:
        return {
            'calories': int(round(float(nutrition.get('calories') or 0))),
            'protein': round(float(nutrition.get('protein') or 0), 1),
            'fat': round(float(nutrition.get('fat') or 0), 1),
            'carbs': round(float(nutrition.get('carbs') or 0), 1),
            'fiber': round(float(nutrition.get('fiber') or 0), 1),
            'serving': nutrition.get('serving'),
            'source': source,
        }
