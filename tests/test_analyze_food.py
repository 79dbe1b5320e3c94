from __future__ import annotations

from unittest.mock import patch

from support import ApiTestCase

from foodyscan.utils.errors import UpstreamError
from foodyscan.utils.validation import MAX_IMAGE_LENGTH

SMALL_IMAGE = "data:image/jpeg;base64,aGVsbG8gd29ybGQ="


class AnalyzeFoodRouteTests(ApiTestCase):
    def test_oversized_image_is_rejected(self) -> None:
        with patch.object(self.ai, "identify_foods") as identify:
            response = self.post_json("/api/analyze-food", {"image": "a" * (MAX_IMAGE_LENGTH + 1)})

        self.assertEqual(400, response.status_code)
        self.assertEqual({"error": "Image too large. Maximum 5MB allowed."}, response.get_json())
        identify.assert_not_called()

    def test_missing_image_is_rejected(self) -> None:
        for payload in ({}, {"image": ""}, {"image": 42}):
            with self.subTest(payload=payload):
                response = self.post_json("/api/analyze-food", payload)
                self.assertEqual(400, response.status_code)
                self.assertEqual({"error": "Invalid image data"}, response.get_json())

    def test_multi_item_scan_is_totalled_and_recorded(self) -> None:
        with patch.object(
            self.ai,
            "identify_foods",
            return_value=[
                {"name": "Chicken Biryani", "portion": "1 plate"},
                {"name": "Curd", "portion": "1 cup"},
            ],
        ), patch.object(self.ai, "health_tip", return_value="Pair it with salad."), patch.object(
            self.ai, "quick_advice", return_value="A heavy meal."
        ):
            response = self.post_json("/api/analyze-food", {"image": SMALL_IMAGE})

        self.assertEqual(200, response.status_code)
        body = response.get_json()
        self.assertEqual("Chicken Biryani, Curd", body["foodName"])
        self.assertEqual(600, body["calories"])
        self.assertEqual(29.0, body["protein"])
        self.assertEqual(23.5, body["fat"])
        self.assertEqual(67.0, body["carbs"])
        self.assertEqual(2.5, body["fiber"])
        self.assertEqual("Pair it with salad.", body["healthTip"])
        self.assertEqual("A heavy meal.", body["quickAdvice"])
        self.assertTrue(body["isMultiItem"])
        self.assertIsNone(body["conditionCheck"])
        self.assertEqual(["local", "local"], [item["source"] for item in body["items"]])
        self.assertEqual("1 plate", body["items"][0]["portion"])

        scans = self.storage.list_scans(self.user_id)
        self.assertEqual(1, len(scans))
        self.assertEqual(body["scanId"], scans[0]["id"])
        self.assertEqual("Chicken Biryani, Curd", scans[0]["food_name"])

    def test_condition_check_uses_stored_conditions(self) -> None:
        self.storage.replace_health_conditions(self.user_id, [{"condition_name": "Type 2 Diabetes"}])

        with patch.object(
            self.ai, "identify_foods", return_value=[{"name": "chicken biryani", "portion": "1 plate"}]
        ), patch.object(self.ai, "health_tip", return_value="tip"), patch.object(
            self.ai, "quick_advice", side_effect=UpstreamError("AI request failed")
        ):
            response = self.post_json("/api/analyze-food", {"image": SMALL_IMAGE})

        body = response.get_json()
        self.assertEqual(200, response.status_code)
        self.assertFalse(body["isMultiItem"])
        self.assertEqual("", body["quickAdvice"])
        self.assertEqual("harmful", body["conditionCheck"]["status"])

    def test_rate_limited_upstream_maps_to_429(self) -> None:
        with patch.object(self.ai, "identify_foods", side_effect=UpstreamError("AI request failed", 429)):
            response = self.post_json("/api/analyze-food", {"image": SMALL_IMAGE})

        self.assertEqual(429, response.status_code)
        self.assertEqual({"error": "Rate limit exceeded. Please try again later."}, response.get_json())

    def test_exhausted_credits_map_to_402(self) -> None:
        with patch.object(self.ai, "identify_foods", side_effect=UpstreamError("AI request failed", 402)):
            response = self.post_json("/api/analyze-food", {"image": SMALL_IMAGE})

        self.assertEqual(402, response.status_code)
        self.assertEqual(
            {"error": "AI credits exhausted. Please add credits to continue."}, response.get_json()
        )

    def test_unconfigured_ai_is_a_server_error(self) -> None:
        response = self.post_json("/api/analyze-food", {"image": SMALL_IMAGE})

        self.assertEqual(500, response.status_code)
        self.assertEqual({"error": "AI service is not configured"}, response.get_json())
