from __future__ import annotations

from unittest.mock import patch

from support import ApiTestCase

from foodyscan.utils.validation import MAX_CHAT_MESSAGE_LENGTH


class HealthChatRouteTests(ApiTestCase):
    def test_mismatched_user_id_is_forbidden(self) -> None:
        with patch.object(self.ai, "chat") as chat:
            response = self.post_json("/api/health-chat", {"message": "hi", "userId": "someone-else"})

        self.assertEqual(403, response.status_code)
        chat.assert_not_called()

    def test_requires_message_or_image(self) -> None:
        response = self.post_json("/api/health-chat", {"message": "   "})
        self.assertEqual(400, response.status_code)

        response = self.post_json("/api/health-chat", {"message": "x" * (MAX_CHAT_MESSAGE_LENGTH + 1)})
        self.assertEqual(400, response.status_code)
        self.assertEqual(
            {"error": f"Message too long. Maximum {MAX_CHAT_MESSAGE_LENGTH} characters."}, response.get_json()
        )

    def test_reply_is_persisted_with_history(self) -> None:
        self.storage.append_chat_messages(
            self.user_id,
            [
                {"role": "user", "content": "Is dosa healthy?"},
                {"role": "assistant", "content": "In moderation, yes."},
            ],
        )

        with patch.object(self.ai, "chat", return_value="Try ragi dosa next time.") as chat:
            response = self.post_json(
                "/api/health-chat", {"message": "What about ragi?", "userId": self.user_id}
            )

        self.assertEqual(200, response.status_code)
        self.assertEqual({"reply": "Try ragi dosa next time."}, response.get_json())

        system_prompt, history, message, image = chat.call_args.args
        self.assertIn("User Health Profile:", system_prompt)
        self.assertEqual(["Is dosa healthy?", "In moderation, yes."], [entry["content"] for entry in history])
        self.assertEqual("What about ragi?", message)
        self.assertIsNone(image)

        stored = self.storage.fetch_chat_history(self.user_id)
        self.assertEqual(
            ["Is dosa healthy?", "In moderation, yes.", "What about ragi?", "Try ragi dosa next time."],
            [entry["content"] for entry in stored],
        )

    def test_image_only_message_is_stored_as_placeholder(self) -> None:
        with patch.object(self.ai, "chat", return_value="Looks like poha."):
            response = self.post_json("/api/health-chat", {"image": "data:image/png;base64,aGVsbG8="})

        self.assertEqual(200, response.status_code)
        stored = self.storage.fetch_chat_history(self.user_id)
        self.assertEqual("[Image]", stored[0]["content"])


class ChatContextTests(ApiTestCase):
    def test_system_prompt_reflects_stored_health_data(self) -> None:
        self.storage.replace_health_conditions(
            self.user_id, [{"condition_name": "Diabetes", "severity": "moderate", "notes": "HbA1c 7.2"}]
        )
        self.storage.record_scan(
            self.user_id, {"food_name": "Poha", "calories": 250, "protein": 5, "carbs": 40, "fat": 8}
        )
        self.storage.save_goals(self.user_id, {"daily_calorie_goal": 1800})
        self.storage.save_profile({"id": self.user_id, "preferred_language": "te"})

        service = self.app.chat_service
        context = service.gather_context(self.user_id)
        prompt = service.build_system_prompt(context)

        self.assertEqual("te", context["language"])
        self.assertIn("- Diabetes (moderate) - HbA1c 7.2", prompt)
        self.assertIn("- Poha: 250 cal", prompt)
        self.assertIn("- Calories: 1800 cal", prompt)
        self.assertIn("- Protein: 50g", prompt)
        self.assertIn("Respond in Telugu", prompt)
