from __future__ import annotations

from unittest.mock import patch

from support import ApiTestCase

from foodyscan.services.ai_service import MEDICAL_DISCLAIMER, NOT_MEDICAL_REPORT_MESSAGE
from foodyscan.utils.errors import ValidationError

IMAGE = "data:image/jpeg;base64,aGVsbG8gd29ybGQ="

REPORT = {
    "valid": True,
    "extracted": {"Fasting glucose": "142 mg/dL", "LDL": "168 mg/dL"},
    "abnormal": ["Fasting glucose", "LDL"],
    "conditions": [
        {"condition_name": "Diabetes", "severity": "mild", "notes": "Fasting glucose 142"},
        {"condition_name": "High Cholesterol", "severity": "moderate"},
    ],
    "recommendations": {
        "foodsToEat": ["oats", "leafy vegetables"],
        "foodsToAvoid": ["sweets"],
        "plan30Days": "Walk daily and cut refined sugar.",
    },
    "critical": [],
}


class MedicalReportRouteTests(ApiTestCase):
    def test_report_is_saved_and_conditions_replaced(self) -> None:
        self.storage.replace_health_conditions(self.user_id, [{"condition_name": "Anemia"}])

        with patch.object(self.ai, "analyze_medical_report", return_value=dict(REPORT)):
            response = self.post_json("/api/analyze-medical-report", {"image": IMAGE})

        self.assertEqual(200, response.status_code)
        body = response.get_json()
        self.assertEqual(REPORT["extracted"], body["extracted"])
        self.assertEqual(REPORT["abnormal"], body["abnormal"])
        self.assertEqual(REPORT["recommendations"], body["recommendations"])
        self.assertEqual(MEDICAL_DISCLAIMER, body["disclaimer"])

        reports = self.storage.list_medical_reports(self.user_id)
        self.assertEqual(1, len(reports))
        conditions = [row["condition_name"] for row in self.storage.fetch_health_conditions(self.user_id)]
        self.assertEqual({"Diabetes", "High Cholesterol"}, set(conditions))

    def test_not_a_report(self) -> None:
        with patch.object(
            self.ai, "analyze_medical_report", side_effect=ValidationError(NOT_MEDICAL_REPORT_MESSAGE)
        ):
            response = self.post_json("/api/analyze-medical-report", {"image": IMAGE})

        self.assertEqual(400, response.status_code)
        self.assertEqual({"error": NOT_MEDICAL_REPORT_MESSAGE}, response.get_json())
        self.assertEqual([], self.storage.list_medical_reports(self.user_id))


class ConditionAdviceRouteTests(ApiTestCase):
    def test_condition_is_required_and_bounded(self) -> None:
        response = self.post_json("/api/condition-advice", {"condition": ""})
        self.assertEqual({"error": "Valid condition is required"}, response.get_json())

        response = self.post_json("/api/condition-advice", {"condition": "x" * 501})
        self.assertEqual(400, response.status_code)

    def test_returns_advice(self) -> None:
        advice = {"foodSuggestions": ["jeera water"], "habits": ["walk"], "rationale": "r", "disclaimer": "d"}
        with patch.object(self.ai, "condition_advice", return_value=advice) as call:
            response = self.post_json("/api/condition-advice", {"condition": "  acidity "})

        self.assertEqual(advice, response.get_json())
        call.assert_called_once_with("acidity")


class MealScheduleRouteTests(ApiTestCase):
    def test_parsed_meals_are_saved(self) -> None:
        meals = [
            {"name": "Breakfast", "time": "08:00", "instructions": "Idli with sambar"},
            {"name": "Dinner", "time": "19:30", "instructions": "Roti and dal"},
        ]
        with patch.object(self.ai, "parse_meal_schedule", return_value=meals):
            response = self.post_json("/api/parse-meal-schedule", {"image": IMAGE})

        self.assertEqual({"success": True, "meals": meals}, response.get_json())
