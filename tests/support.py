"""Shared fixtures for the API tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Dict, Optional
from unittest import TestCase
from unittest.mock import patch

import jwt

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foodyscan import create_app  # noqa: E402

JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!"
RAZORPAY_SECRET = "rzp_test_secret"


def isolated_environ(data_dir: str, **overrides: str) -> Dict[str, str]:
    """Environment with every external integration switched off."""

    environ = {
        "STORAGE_DATA_DIR": data_dir,
        "LOCAL_DATABASE_URI": "sqlite://",
        "DATABASE_URL": "",
        "SUPABASE_URL": "",
        "SUPABASE_PROJECT_URL": "",
        "SUPABASE_SERVICE_ROLE_KEY": "",
        "SUPABASE_ANON_KEY": "",
        "SUPABASE_JWT_SECRET": JWT_SECRET,
        "GEMINI_API_KEY": "",
        "GOOGLE_API_KEY": "",
        "FOODYSCAN_GEMINI_API_KEY": "",
        "CALORIENINJAS_API_KEY": "",
        "RAZORPAY_KEY_ID": "rzp_test_key",
        "RAZORPAY_KEY_SECRET": RAZORPAY_SECRET,
        "UPSTASH_REDIS_URL": "",
        "UPSTASH_REDIS_REST_URL": "",
        "UPSTASH_REDIS_REST_TOKEN": "",
        "MAIL_SERVER": "",
        "MAIL_SUPPRESS_SEND": "1",
        "CORS_ORIGINS": "*",
        "PASSWORD_RESET_URL": "https://app.foodyscan.test",
    }
    environ.update(overrides)
    return environ


def make_token(
    user_id: str = "user-1",
    secret: str = JWT_SECRET,
    expires_in: timedelta = timedelta(hours=1),
    audience: Optional[str] = "authenticated",
) -> str:
    claims = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    if audience:
        claims["aud"] = audience
    return jwt.encode(claims, secret, algorithm="HS256")


class ApiTestCase(TestCase):
    """Boots the app against temporary local storage and an in-memory database."""

    user_id = "user-1"
    extra_environ: Dict[str, str] = {}

    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

        self.env_patch = patch.dict(
            os.environ, isolated_environ(self.tmpdir.name, **self.extra_environ), clear=False
        )
        self.env_patch.start()
        self.addCleanup(self.env_patch.stop)

        self.app = create_app()
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.addCleanup(self.ctx.pop)

        self.storage = self.app.storage_service
        self.ai = self.app.ai_service

    def auth_headers(self, user_id: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id or self.user_id)}"}

    def post_json(self, path: str, payload, user_id: Optional[str] = None, authenticated: bool = True):
        headers = self.auth_headers(user_id) if authenticated else {}
        return self.client.post(path, json=payload, headers=headers)
