from __future__ import annotations

from datetime import timedelta
from unittest import TestCase

from support import JWT_SECRET, ApiTestCase, make_token

from foodyscan.utils.auth import AuthError, bearer_token, decode_access_token


class BearerTokenTests(TestCase):
    def test_extracts_token(self) -> None:
        self.assertEqual("abc.def", bearer_token("Bearer abc.def"))
        self.assertEqual("abc.def", bearer_token("bearer   abc.def "))

    def test_rejects_missing_or_malformed_header(self) -> None:
        for header in (None, "", "Bearer", "Basic abc", "Bearer    "):
            with self.subTest(header=header):
                with self.assertRaises(AuthError) as ctx:
                    bearer_token(header)
                self.assertEqual(401, ctx.exception.status_code)


class DecodeAccessTokenTests(TestCase):
    def test_valid_token_returns_claims(self) -> None:
        payload = decode_access_token(make_token("abc"), JWT_SECRET)
        self.assertEqual("abc", payload["sub"])

    def test_expired_token(self) -> None:
        token = make_token(expires_in=timedelta(minutes=-5))
        with self.assertRaises(AuthError) as ctx:
            decode_access_token(token, JWT_SECRET)
        self.assertEqual("Authorization token has expired.", ctx.exception.message)

    def test_wrong_secret_or_audience(self) -> None:
        for token in (
            make_token(secret="another-secret-that-is-long-enough-too"),
            make_token(audience="anon"),
            make_token(audience=None),
        ):
            with self.subTest(token=token):
                with self.assertRaises(AuthError) as ctx:
                    decode_access_token(token, JWT_SECRET)
                self.assertEqual("Authorization token is invalid.", ctx.exception.message)

    def test_missing_secret_is_a_server_error(self) -> None:
        with self.assertRaises(AuthError) as ctx:
            decode_access_token(make_token(), "")
        self.assertEqual(503, ctx.exception.status_code)


class ProtectedRouteTests(ApiTestCase):
    def test_missing_token_returns_401(self) -> None:
        response = self.client.get("/api/scans")

        self.assertEqual(401, response.status_code)
        self.assertEqual({"error": "Unauthorized"}, response.get_json())

    def test_invalid_token_returns_401(self) -> None:
        response = self.client.post(
            "/api/analyze-food",
            json={"image": "abc"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        self.assertEqual(401, response.status_code)
        self.assertIn("error", response.get_json())

    def test_every_protected_route_requires_a_token(self) -> None:
        for method, path in (
            ("post", "/api/analyze-food"),
            ("post", "/api/analyze-medical-report"),
            ("post", "/api/health-chat"),
            ("post", "/api/condition-advice"),
            ("post", "/api/translate-text"),
            ("post", "/api/get-food-recommendations"),
            ("post", "/api/get-medical-food-recommendations"),
            ("post", "/api/parse-meal-schedule"),
            ("post", "/api/create-razorpay-order"),
            ("post", "/api/verify-razorpay-payment"),
            ("post", "/api/stories"),
            ("get", "/api/stories"),
            ("get", "/api/goals"),
            ("put", "/api/goals"),
            ("get", "/api/subscription"),
            ("get", "/api/profile"),
        ):
            with self.subTest(path=path, method=method):
                response = getattr(self.client, method)(path, json={})
                self.assertEqual(401, response.status_code)

    def test_valid_token_reaches_the_handler(self) -> None:
        response = self.client.get("/api/scans", headers=self.auth_headers())

        self.assertEqual(200, response.status_code)
        self.assertEqual({"scans": []}, response.get_json())
