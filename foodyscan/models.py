"""Database models for FoodyScan."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy.sql import func

from .extensions import db


class NutritionReference(db.Model):
    """Per-serving nutrition for foods we can answer without an API call.

    ``aliases`` holds alternative lowercase names ("dal" for "dal tadka") so a
    scan result matches even when the model words it differently.
    """

    __tablename__ = "nutrition_reference"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False, index=True)
    aliases = db.Column(db.JSON, nullable=True)
    serving = db.Column(db.String(64), nullable=True)
    calories = db.Column(db.Float, nullable=False, default=0)
    protein = db.Column(db.Float, nullable=False, default=0)
    fat = db.Column(db.Float, nullable=False, default=0)
    carbs = db.Column(db.Float, nullable=False, default=0)
    fiber = db.Column(db.Float, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        names: List[str] = [self.name.lower()] + [str(a).lower() for a in (self.aliases or [])]
        return needle in names

    def to_nutrition(self) -> Dict[str, Any]:
        return {
            "calories": self.calories,
            "protein": self.protein,
            "fat": self.fat,
            "carbs": self.carbs,
            "fiber": self.fiber,
            "serving": self.serving,
        }

    def touch(self) -> None:
        """Update the in-memory timestamp before commit."""

        self.updated_at = datetime.now(timezone.utc)
