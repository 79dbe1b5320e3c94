from __future__ import annotations

import os
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import Mock, patch

from google.genai import errors as genai_errors

from foodyscan.services.ai_service import (
    CONDITION_DISCLAIMER,
    DEFAULT_HEALTH_TIP,
    NOT_MEDICAL_REPORT_MESSAGE,
    AIService,
)
from foodyscan.utils.errors import UpstreamError, ValidationError

IMAGE = "data:image/png;base64,aGVsbG8="


class AIServiceTests(TestCase):
    def setUp(self) -> None:
        with patch.dict(
            os.environ, {"GEMINI_API_KEY": "", "GOOGLE_API_KEY": "", "FOODYSCAN_GEMINI_API_KEY": ""}
        ):
            self.service = AIService()
        self.generate = Mock()
        self.service.client = SimpleNamespace(models=SimpleNamespace(generate_content=self.generate))

    def reply(self, text: str) -> None:
        self.generate.return_value = SimpleNamespace(text=text, candidates=[])

    def test_disabled_without_key(self) -> None:
        with patch.dict(
            os.environ, {"GEMINI_API_KEY": "", "GOOGLE_API_KEY": "", "FOODYSCAN_GEMINI_API_KEY": ""}
        ):
            service = AIService()

        self.assertFalse(service.enabled)
        with self.assertRaises(UpstreamError) as ctx:
            service.health_tip("apple")
        self.assertEqual("AI service is not configured", ctx.exception.message)

    def test_identify_foods_reads_fenced_json(self) -> None:
        self.reply('```json\n{"items": [{"name": "Masala Dosa", "portion": "1 piece"}, {"name": "Sambar"}]}\n```')

        items = self.service.identify_foods(IMAGE)

        self.assertEqual(
            [{"name": "Masala Dosa", "portion": "1 piece"}, {"name": "Sambar", "portion": "1 serving"}], items
        )

    def test_identify_foods_empty_result(self) -> None:
        self.reply('{"items": []}')

        with self.assertRaises(UpstreamError) as ctx:
            self.service.identify_foods(IMAGE)
        self.assertEqual("Could not identify food in image", ctx.exception.message)

    def test_estimate_nutrition_maps_keys(self) -> None:
        self.reply('{"calories": 310, "protein_g": 9.5, "fat_g": "12", "carbs_g": 41, "fiber_g": null}')

        self.assertEqual(
            {"calories": 310.0, "protein": 9.5, "fat": 12.0, "carbs": 41.0, "fiber": 0.0},
            self.service.estimate_nutrition("aloo paratha"),
        )

        self.reply("I am not sure.")
        self.assertIsNone(self.service.estimate_nutrition("aloo paratha"))

    def test_health_tip_default(self) -> None:
        self.reply("")
        self.assertEqual(DEFAULT_HEALTH_TIP, self.service.health_tip("apple"))

    def test_medical_report_rejection(self) -> None:
        for text in ("NOT_MEDICAL_REPORT", '{"valid": false}'):
            with self.subTest(text=text):
                self.reply(text)
                with self.assertRaises(ValidationError) as ctx:
                    self.service.analyze_medical_report(IMAGE)
                self.assertEqual(NOT_MEDICAL_REPORT_MESSAGE, ctx.exception.message)

    def test_condition_advice_degrades_to_raw_text(self) -> None:
        self.reply("Drink more water and sleep well.")

        advice = self.service.condition_advice("headache")

        self.assertEqual("Drink more water and sleep well.", advice["rationale"])
        self.assertEqual([], advice["foodSuggestions"])
        self.assertEqual(CONDITION_DISCLAIMER, advice["disclaimer"])

    def test_translate_batch_length_mismatch_returns_input(self) -> None:
        self.reply('["एक"]')

        self.assertEqual(["One", "Two"], self.service.translate_batch(["One", "Two"], "Hindi"))

    def test_recommendations_swallow_upstream_failures(self) -> None:
        self.generate.side_effect = RuntimeError("boom")

        self.assertEqual([], self.service.food_recommendations("dosa", "English"))

    def test_sdk_errors_keep_rate_limit_status(self) -> None:
        self.generate.side_effect = genai_errors.APIError(
            429, {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}
        )

        with self.assertRaises(UpstreamError) as ctx:
            self.service.health_tip("apple")

        self.assertEqual(429, ctx.exception.status_code)
        self.assertEqual("Rate limit exceeded. Please try again later.", ctx.exception.message)

    def test_chat_sends_history_and_system_prompt(self) -> None:
        self.reply("Sure!")

        result = self.service.chat(
            "You are helpful.",
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            "Is upma healthy?",
        )

        self.assertEqual("Sure!", result)
        kwargs = self.generate.call_args.kwargs
        self.assertEqual(["user", "model", "user"], [content.role for content in kwargs["contents"]])
        self.assertEqual("You are helpful.", kwargs["config"].system_instruction)
