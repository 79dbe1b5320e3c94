from __future__ import annotations

from unittest import TestCase

from foodyscan.services.food_analysis import check_against_conditions


def _conditions(*names):
    return [{"condition_name": name} for name in names]


class ConditionCheckTests(TestCase):
    def test_no_conditions_returns_none(self) -> None:
        self.assertIsNone(check_against_conditions("idli", {"carbs": 25}, []))
        self.assertIsNone(check_against_conditions("idli", {"carbs": 25}, [{"condition_name": ""}]))

    def test_diabetes_thresholds(self) -> None:
        cases = [(51, "harmful"), (35, "warning"), (30, "safe")]
        for carbs, expected in cases:
            with self.subTest(carbs=carbs):
                result = check_against_conditions("rice", {"carbs": carbs}, _conditions("Diabetes"))
                self.assertEqual(expected, result["status"])

    def test_cholesterol_thresholds(self) -> None:
        self.assertEqual(
            "harmful", check_against_conditions("samosa", {"fat": 17}, _conditions("High Cholesterol"))["status"]
        )
        self.assertEqual(
            "warning", check_against_conditions("paratha", {"fat": 12}, _conditions("cholesterol"))["status"]
        )

    def test_blood_pressure_flags_salty_foods(self) -> None:
        result = check_against_conditions("Mango Pickle", {}, _conditions("Hypertension"))
        self.assertEqual("harmful", result["status"])
        self.assertEqual(
            "safe", check_against_conditions("apple", {}, _conditions("High Blood Pressure"))["status"]
        )

    def test_obesity_and_kidney_warnings(self) -> None:
        self.assertEqual(
            "warning", check_against_conditions("pizza", {"calories": 650}, _conditions("Obesity"))["status"]
        )
        self.assertEqual(
            "warning", check_against_conditions("chicken", {"protein": 31}, _conditions("Kidney disease"))["status"]
        )

    def test_later_rule_overrides_earlier_one(self) -> None:
        result = check_against_conditions(
            "biryani", {"carbs": 58, "calories": 480}, _conditions("diabetes", "obesity")
        )
        self.assertEqual("warning", result["status"])
        self.assertEqual("⚠️ High calorie food", result["message"])

    def test_safe_message(self) -> None:
        result = check_against_conditions("salad", {"calories": 35, "carbs": 7}, _conditions("diabetes"))
        self.assertEqual(
            {
                "status": "safe",
                "message": "✅ Safe for your health conditions",
                "reason": "This food appears suitable for your health profile.",
            },
            result,
        )
