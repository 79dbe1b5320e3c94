"""Orderable food suggestions built on top of AI recommendations."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence
from urllib.parse import quote

from .translation_service import language_name

logger = logging.getLogger(__name__)

_IMAGE = "https://images.unsplash.com/photo-{}?w=400&q=80"

# Checked in order; the first keyword contained in the name/description wins.
IMAGE_MAP = [
    ("biryani", _IMAGE.format("1563379091339-03b21ab4a4f8")),
    ("roti", _IMAGE.format("1619542558208-f490a2900e70")),
    ("naan", _IMAGE.format("1619542558208-f490a2900e70")),
    ("curry", _IMAGE.format("1565557623262-b51c2513a641")),
    ("salan", _IMAGE.format("1565557623262-b51c2513a641")),
    ("chicken", _IMAGE.format("1599487488170-d11ec9c172f0")),
    ("paneer", _IMAGE.format("1631452180519-c014fe946bc7")),
    ("dal", _IMAGE.format("1546833999-b9f581a1996d")),
    ("rice", _IMAGE.format("1516714435131-44d6b64dc6a2")),
    ("raita", _IMAGE.format("1625398407796-82650a8c135f")),
    ("papad", _IMAGE.format("1626019183442-e48e8b8a4e0b")),
    ("idli", _IMAGE.format("1589301760014-d929f3979dbc")),
    ("salad", _IMAGE.format("1546069901-ba9599a7e63c")),
    ("fruit", _IMAGE.format("1504711331083-98345f3f44d1")),
    ("fish", _IMAGE.format("1519708227418-c8fd9a32b7a2")),
    ("oats", _IMAGE.format("1517673132405-a56a62b18caf")),
    ("yogurt", _IMAGE.format("1488477181946-6428a0291777")),
    ("curd", _IMAGE.format("1604908553488-c6e6e8dc1bd8")),
    ("spinach", _IMAGE.format("1576045057995-568f588f82fb")),
    ("juice", _IMAGE.format("1505252585461-04db1eb84625")),
    ("lassi", _IMAGE.format("1561043433-aaf687c4cf04")),
    ("nuts", _IMAGE.format("1508747703725-719777637510")),
    ("soup", _IMAGE.format("1547592166-23ac45744acd")),
    ("protein", _IMAGE.format("1622597467836-f3285f2131b8")),
    ("dessert", _IMAGE.format("1576618148400-f54bed99fcfd")),
    ("jamun", _IMAGE.format("1576618148400-f54bed99fcfd")),
]
DEFAULT_IMAGE = _IMAGE.format("1540189549336-e6e99c3679fe")

PLATFORM_SEARCH_URLS = {
    "Zomato": "https://www.zomato.com/search?q={}",
    "Swiggy": "https://www.swiggy.com/search?q={}",
    "Amazon": "https://www.amazon.in/s?k={}",
    "Flipkart": "https://www.flipkart.com/search?q={}",
    "Blinkit": "https://blinkit.com/s/?q={}",
    "Zepto": "https://www.zeptonow.com/search?query={}",
}
FALLBACK_SEARCH_URL = "https://www.google.com/search?q={}"

_BIRYANI_PAIRINGS = [
    {"name": "Boondi Raita", "description": "Cool yogurt with crispy boondi", "tag": "Popular", "platform": "Zomato", "searchTerm": "raita"},
    {"name": "Mirchi Salan", "description": "Hyderabadi side for biryani", "tag": "Classic", "platform": "Zomato", "searchTerm": "mirchi salan"},
    {"name": "Gulab Jamun", "description": "Warm Indian dessert", "tag": "Sweet", "platform": "Swiggy", "searchTerm": "gulab jamun"},
    {"name": "Soft Drink Can", "description": "Cola or soda can", "tag": "Trending", "platform": "Blinkit", "searchTerm": "coke can"},
]
_GENERIC_PAIRINGS = [
    {"name": "Masala Papad", "description": "Crispy papad with toppings", "tag": "Snack", "platform": "Zomato", "searchTerm": "masala papad"},
    {"name": "Curd (Dahi)", "description": "Fresh curd", "tag": "Cooling", "platform": "Blinkit", "searchTerm": "dahi curd"},
    {"name": "Protein Shake", "description": "Whey protein pack", "tag": "Protein Rich", "platform": "Amazon", "searchTerm": "whey protein"},
]


def order_link(platform: str, search_term: str) -> str:
    template = PLATFORM_SEARCH_URLS.get(platform, FALLBACK_SEARCH_URL)
    return template.format(quote(search_term, safe=''))


def image_for(*texts: str) -> str:
    haystack = " ".join(text for text in texts if text).lower()
    for keyword, url in IMAGE_MAP:
        if keyword in haystack:
            return url
    return DEFAULT_IMAGE


def pairing_fallback(food_name: str) -> List[Dict[str, Any]]:
    source = _BIRYANI_PAIRINGS if "biryani" in food_name.lower() else _GENERIC_PAIRINGS
    return [dict(item) for item in source]


def medical_fallback(foods_to_eat: Sequence[str]) -> List[Dict[str, Any]]:
    lowered = [food.lower() for food in foods_to_eat]
    items: List[Dict[str, Any]] = []

    if any("protein" in food for food in lowered):
        items.append({
            "name": "Grilled Chicken Breast",
            "description": "High protein, low fat chicken",
            "tag": "Protein Rich",
            "searchTerm": "grilled chicken breast",
            "platform": "Swiggy",
        })
    if any("fiber" in food or "vegetable" in food for food in lowered):
        items.append({
            "name": "Fresh Salad Bowl",
            "description": "Mixed greens with fiber",
            "tag": "Fiber Rich",
            "searchTerm": "fresh salad bowl",
            "platform": "Zomato",
        })

    items.extend([
        {"name": "Mixed Fruit Bowl", "description": "Seasonal fresh fruits", "tag": "Vitamin Rich", "searchTerm": "mixed fruit bowl", "platform": "Blinkit"},
        {"name": "Greek Yogurt", "description": "Probiotic-rich yogurt", "tag": "Healthy", "searchTerm": "greek yogurt", "platform": "Blinkit"},
    ])
    return items[:4]


class RecommendationService:
    def __init__(self, ai_service) -> None:
        self._ai = ai_service

    def for_food(self, food_name: str, language: str) -> List[Dict[str, Any]]:
        items = self._ai.food_recommendations(food_name, language_name(language))
        if not items:
            logger.info('recommendations.fallback', extra={'food': food_name})
            items = pairing_fallback(food_name)
        return [self._decorate(item, match_description=False) for item in items]

    def for_medical_plan(self, foods_to_eat: Sequence[str], foods_to_avoid: Sequence[str]) -> List[Dict[str, Any]]:
        items = self._ai.medical_food_recommendations(foods_to_eat, foods_to_avoid)
        if not items:
            logger.info('medical_recommendations.fallback')
            items = medical_fallback(foods_to_eat)
        return [self._decorate(item, match_description=True) for item in items]

    @staticmethod
    def _decorate(item: Dict[str, Any], match_description: bool) -> Dict[str, Any]:
        name = str(item.get("name") or "")
        description = str(item.get("description") or "")
        platform = str(item.get("platform") or "")
        search_term = str(item.get("searchTerm") or name)
        image = image_for(name, description) if match_description else image_for(name)
        return {
            **item,
            "name": name,
            "description": description,
            "platform": platform,
            "imageUrl": image,
            "orderLink": order_link(platform, search_term),
        }
